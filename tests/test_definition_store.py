"""Tests for definition import, listing and lookup."""

import pytest

from workflow_manager.db.database import get_db
from workflow_manager.errors import DefinitionNotFoundError
from workflow_manager.models import SourceType, VersionSnapshotCreate, WorkflowDefinitionCreate


def create(payload: dict) -> WorkflowDefinitionCreate:
    return WorkflowDefinitionCreate.model_validate(payload)


class TestImport:
    """Tests for importing definitions."""

    async def test_import_defaults_version(self, store, make_payload):
        created = await store.import_definition(create(make_payload()))

        assert created.version == "1.0.0"
        assert created.revision == 1
        assert created.dependencies.integrations == ["book-planning"]

    async def test_import_round_trips_graph(self, store, pipeline):
        fetched = await store.get_definition("pipeline-x")

        assert fetched.graph == pipeline.graph
        assert fetched.tags == ["writing", "chapters"]
        assert fetched.description == "Plan, draft and review a chapter"

    async def test_reimport_adds_row_and_becomes_current(self, store, pipeline, make_payload):
        await store.import_definition(
            create(make_payload(version="0.9.0", name="Pipeline X (old numbering)"))
        )

        current = await store.get_definition("pipeline-x")
        assert current.version == "0.9.0"

        db = await get_db()
        cursor = await db.execute(
            "SELECT COUNT(*) FROM workflow_definitions WHERE id = ?", ("pipeline-x",)
        )
        assert (await cursor.fetchone())[0] == 2

    async def test_current_is_latest_created_not_highest_version(
        self, store, make_payload
    ):
        await store.import_definition(create(make_payload(version="2.0.0")))
        await store.import_definition(create(make_payload(version="1.5.0")))

        assert (await store.get_definition("pipeline-x")).version == "1.5.0"
        assert (await store.get_definition("pipeline-x", "2.0.0")).version == "2.0.0"

    async def test_import_records_provenance(self, store, make_payload):
        await store.import_definition(
            create(
                make_payload(
                    sourceType="marketplace",
                    sourcePath="https://example.org/pipeline-x.json",
                    createdBy="alice",
                )
            )
        )

        imports = await store.list_imports("pipeline-x")
        assert len(imports) == 1
        assert imports[0].source_type == SourceType.MARKETPLACE
        assert imports[0].imported_by == "alice"

    async def test_import_without_source_has_no_provenance(self, store, pipeline):
        assert await store.list_imports("pipeline-x") == []


class TestLookup:
    """Tests for definition lookup."""

    async def test_get_unknown_definition(self, store):
        with pytest.raises(DefinitionNotFoundError):
            await store.get_definition("missing")

    async def test_get_unknown_version(self, store, pipeline):
        with pytest.raises(DefinitionNotFoundError):
            await store.get_definition("pipeline-x", "9.9.9")

    async def test_find_definition_returns_none(self, store):
        assert await store.find_definition("missing") is None

    async def test_pinned_lookup_serves_snapshot_only_version(self, store, pipeline):
        await store.create_version(
            "pipeline-x", VersionSnapshotCreate(version="2.0.0", changelog="Next")
        )

        pinned = await store.get_definition("pipeline-x", "2.0.0")

        assert pinned.version == "2.0.0"
        assert [n.id for n in pinned.graph.nodes] == [n.id for n in pipeline.graph.nodes]
        # The imported row stays current
        assert (await store.get_definition("pipeline-x")).version == "1.0.0"


class TestList:
    """Tests for listing definitions."""

    async def test_list_ordered_by_name_one_per_id(self, store, make_payload):
        await store.import_definition(create(make_payload("zeta", name="Zeta")))
        await store.import_definition(create(make_payload("alpha", name="Alpha")))
        await store.import_definition(create(make_payload("alpha", name="Alpha", version="2.0.0")))

        summaries = await store.list_definitions()

        assert [s.id for s in summaries] == ["alpha", "zeta"]
        assert summaries[0].version == "2.0.0"
        assert summaries[0].node_count == 3
        assert summaries[0].edge_count == 2

    async def test_list_filters_by_tags(self, store, make_payload):
        await store.import_definition(create(make_payload("a", name="A", tags=["poetry"])))
        await store.import_definition(create(make_payload("b", name="B", tags=["prose"])))

        summaries = await store.list_definitions(tags=["poetry", "drama"])
        assert [s.id for s in summaries] == ["a"]

    async def test_list_filters_by_is_system(self, store, make_payload):
        await store.import_definition(create(make_payload("sys", name="Sys", isSystem=True)))
        await store.import_definition(create(make_payload("usr", name="Usr")))

        assert [s.id for s in await store.list_definitions(is_system=True)] == ["sys"]
        assert [s.id for s in await store.list_definitions(is_system=False)] == ["usr"]
