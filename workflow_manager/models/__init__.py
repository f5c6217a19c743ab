"""Pydantic models for the workflow manager."""

from workflow_manager.models.definition import (
    DEFAULT_VERSION,
    SourceType,
    VersionLock,
    VersionSnapshot,
    VersionSnapshotCreate,
    VersionSummary,
    WorkflowDefinition,
    WorkflowDefinitionCreate,
    WorkflowDefinitionSummary,
    WorkflowDependencies,
    WorkflowImport,
)
from workflow_manager.models.graph import Edge, EdgeKind, Graph, Node, NodeKind, NodePosition
from workflow_manager.models.registry import (
    ActiveWorkflow,
    AvailableNode,
    RegistryStatus,
    WorkflowSource,
)
from workflow_manager.models.subworkflow import SubWorkflowExecution, SubWorkflowStatus

__all__ = [
    # Graph
    "Graph",
    "Node",
    "NodeKind",
    "NodePosition",
    "Edge",
    "EdgeKind",
    # Definitions
    "DEFAULT_VERSION",
    "SourceType",
    "WorkflowDefinition",
    "WorkflowDefinitionCreate",
    "WorkflowDefinitionSummary",
    "WorkflowDependencies",
    "WorkflowImport",
    # Versions
    "VersionSnapshot",
    "VersionSnapshotCreate",
    "VersionSummary",
    "VersionLock",
    # Sub-workflows
    "SubWorkflowExecution",
    "SubWorkflowStatus",
    # Registry
    "ActiveWorkflow",
    "AvailableNode",
    "RegistryStatus",
    "WorkflowSource",
]
