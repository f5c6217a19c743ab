"""Database module."""

from workflow_manager.db.database import close_database, get_db, init_database, transaction
from workflow_manager.db.definition_store import DefinitionStore, definition_store
from workflow_manager.db.registry_store import RegistryStore
from workflow_manager.db.subworkflow_store import SubWorkflowStore

subworkflow_store = SubWorkflowStore(definition_store)
registry_store = RegistryStore(definition_store)

__all__ = [
    "get_db",
    "init_database",
    "close_database",
    "transaction",
    "DefinitionStore",
    "definition_store",
    "SubWorkflowStore",
    "subworkflow_store",
    "RegistryStore",
    "registry_store",
]
