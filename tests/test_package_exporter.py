"""Tests for workflow package export."""

import json

import pytest
import yaml

from workflow_manager.errors import DefinitionNotFoundError, WorkflowValidationError
from workflow_manager.services.package_exporter import ExportFormat, PackageExporter


@pytest.fixture
def exporter(store) -> PackageExporter:
    return PackageExporter(store)


class TestExportPackage:
    """Tests for building export packages."""

    async def test_manifest(self, exporter, pipeline):
        package = await exporter.export_package("pipeline-x")

        manifest = package.manifest
        assert manifest.id == "pipeline-x"
        assert manifest.version == "1.0.0"
        assert manifest.author == "Unknown"
        assert manifest.category == "Workflow"
        assert manifest.phase_count == 3
        assert manifest.requires.agents == ["planner", "writer"]
        assert manifest.requires.integrations == ["book-planning"]

    async def test_json_document(self, exporter, pipeline):
        package = await exporter.export_package("pipeline-x")

        document = json.loads(package.workflow_document)
        assert document["id"] == "pipeline-x"
        assert len(document["graph"]["nodes"]) == 3
        assert package.files[:3] == ["workflow.json", "manifest.json", "README.md"]

    async def test_yaml_document(self, exporter, pipeline):
        package = await exporter.export_package("pipeline-x", export_format="yaml")

        assert package.format == ExportFormat.YAML
        document = yaml.safe_load(package.workflow_document)
        assert document["graph"]["edges"][0]["source"] == "n1"
        assert "workflow.yaml" in package.files

    async def test_dependency_stubs(self, exporter, pipeline):
        package = await exporter.export_package("pipeline-x")

        assert [a.filename for a in package.agents] == ["planner.md", "writer.md"]
        assert [s.filename for s in package.skills] == ["chapter-review.md"]
        assert "agents/planner.md" in package.files
        assert "skills/chapter-review.md" in package.files

    async def test_dependency_stubs_can_be_skipped(self, exporter, pipeline):
        package = await exporter.export_package(
            "pipeline-x", include_agents=False, include_skills=False
        )
        assert package.agents == []
        assert package.skills == []
        assert package.files == ["workflow.json", "manifest.json", "README.md"]

    async def test_readme(self, exporter, pipeline):
        readme = (await exporter.export_package("pipeline-x")).readme

        assert readme.startswith("# Pipeline X")
        assert "**3 nodes**" in readme
        assert "**Review** (Quality Gate)" in readme
        assert "Condition: score >= 80" in readme
        assert "- book-planning" in readme
        assert "`writing`, `chapters`" in readme

    async def test_unknown_format(self, exporter, pipeline):
        with pytest.raises(WorkflowValidationError):
            await exporter.export_package("pipeline-x", export_format="xml")

    async def test_unknown_definition(self, exporter):
        with pytest.raises(DefinitionNotFoundError):
            await exporter.export_package("missing")
