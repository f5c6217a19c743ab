"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from workflow_manager.db.database import close_database, init_database
from workflow_manager.db.definition_store import DefinitionStore
from workflow_manager.db.registry_store import RegistryStore
from workflow_manager.db.subworkflow_store import SubWorkflowStore
from workflow_manager.main import app
from workflow_manager.models import WorkflowDefinition, WorkflowDefinitionCreate


def pipeline_payload(def_id: str = "pipeline-x", **overrides) -> dict:
    """Three nodes in a line: n1 -> n2 -> n3."""
    payload = {
        "id": def_id,
        "name": "Pipeline X",
        "description": "Plan, draft and review a chapter",
        "graph": {
            "nodes": [
                {"id": "n1", "type": "planning", "data": {"name": "Outline", "agent": "planner"}},
                {"id": "n2", "type": "writing", "data": {"name": "Draft", "agent": "writer"}},
                {
                    "id": "n3",
                    "type": "gate",
                    "data": {"name": "Review", "gateCondition": "score >= 80"},
                },
            ],
            "edges": [
                {"id": "e1", "source": "n1", "target": "n2"},
                {"id": "e2", "source": "n2", "target": "n3"},
            ],
        },
        "dependencies": {
            "agents": ["planner", "writer"],
            "skills": ["chapter-review"],
            "mcpServers": ["book-planning"],
        },
        "tags": ["writing", "chapters"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    # Create a temporary database file
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    # Initialize the database
    await init_database(db_path)

    yield

    # Clean up
    await close_database()
    os.unlink(db_path)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def store() -> DefinitionStore:
    return DefinitionStore()


@pytest.fixture
def registry(store: DefinitionStore) -> RegistryStore:
    return RegistryStore(store)


@pytest.fixture
def sub_workflows(store: DefinitionStore) -> SubWorkflowStore:
    return SubWorkflowStore(store)


@pytest.fixture
async def pipeline(store: DefinitionStore) -> WorkflowDefinition:
    """The pipeline-x definition, imported."""
    return await store.import_definition(
        WorkflowDefinitionCreate.model_validate(pipeline_payload())
    )


@pytest.fixture
def make_payload():
    """Factory for definition payloads based on pipeline-x."""
    return pipeline_payload
