"""Services for the workflow manager."""

from workflow_manager.services.graph_editor import GraphEditor, GraphEditResult
from workflow_manager.services.package_exporter import (
    ExportFormat,
    PackageExporter,
    PackageManifest,
    WorkflowPackage,
)

__all__ = [
    "GraphEditor",
    "GraphEditResult",
    "ExportFormat",
    "PackageExporter",
    "PackageManifest",
    "WorkflowPackage",
]
