"""
Tests for the memory orchestrator.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from memvault.errors import InitializationError, StoreError, ValidationError
from memvault.memory.embeddings import EmbeddingEngine, HashingBackend
from memvault.memory.orchestrator import MemoryOrchestrator, matches_filters
from memvault.memory.store import TenantVectorStore
from memvault.memory.types import MemoryMetadata, MemoryResult, SearchFilters

from conftest import TEST_DIMENSION


class BrokenBackend(HashingBackend):
    """Hashing backend whose model never loads."""

    def load(self):
        raise OSError("weights missing")


@pytest_asyncio.fixture
async def memories(shared_config, engine):
    deployment = await TenantVectorStore.deploy_new()
    store = await TenantVectorStore.for_tenant(deployment.tenant_handle)
    yield MemoryOrchestrator(store, engine=engine)
    await store.release()


class TestCreateMemory:
    """Test creating memories."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, memories):
        """Test that a created memory is found by a related query."""
        created = await memories.create_memory(
            "User prefers dark mode",
            {"importance": 7, "tags": ["ui"]},
        )

        assert created.success
        assert created.memory_id == 0

        results = await memories.search_memories("dark mode preference", k=1)

        assert len(results) == 1
        assert results[0].id == 0
        assert results[0].content == "User prefers dark mode"
        assert results[0].metadata["importance"] == 7
        assert results[0].distance is not None

    @pytest.mark.asyncio
    async def test_round_trip(self, memories):
        """Test that get_memory returns exactly what was stored."""
        created = await memories.create_memory(
            "Meeting notes from Tuesday",
            {"context": "work", "sessionId": "s-42", "source": "import"},
        )

        memory = await memories.get_memory(created.memory_id)

        assert memory.content == "Meeting notes from Tuesday"
        assert memory.metadata == {
            "content": "Meeting notes from Tuesday",
            "context": "work",
            "sessionId": "s-42",
            "source": "import",
        }
        assert memory.distance is None

    @pytest.mark.asyncio
    async def test_content_overrides_metadata(self, memories):
        """Test that a caller-supplied content key is replaced."""
        created = await memories.create_memory("the real text", {"content": "spoofed"})

        memory = await memories.get_memory(created.memory_id)

        assert memory.content == "the real text"
        assert memory.metadata["content"] == "the real text"

    @pytest.mark.asyncio
    async def test_typed_metadata(self, memories):
        """Test that MemoryMetadata is accepted as metadata."""
        created = await memories.create_memory(
            "typed metadata", MemoryMetadata(importance=3, client="desktop")
        )

        memory = await memories.get_memory(created.memory_id)

        assert memory.metadata["client"] == "desktop"
        assert memory.metadata["importance"] == 3

    @pytest.mark.asyncio
    async def test_ids_increase(self, memories):
        """Test that memory ids are assigned in order."""
        ids = [(await memories.create_memory(f"memory number {i}")).memory_id for i in range(3)]

        assert ids == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_empty_content(self, memories):
        """Test that empty content is rejected."""
        with pytest.raises(ValidationError):
            await memories.create_memory("")
        with pytest.raises(ValidationError):
            await memories.create_memory("   \n")

    @pytest.mark.asyncio
    async def test_content_too_long(self, shared_config, engine):
        """Test that oversized content is rejected before embedding."""
        store = MagicMock()
        store.handle = "tenant"
        store.insert = AsyncMock()
        memories = MemoryOrchestrator(store, engine=engine, max_content_length=10)

        with pytest.raises(ValidationError):
            await memories.create_memory("x" * 11)
        store.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_metadata(self, memories):
        """Test that out-of-range importance is a ValidationError."""
        with pytest.raises(ValidationError):
            await memories.create_memory("valid text", {"importance": 11})
        with pytest.raises(ValidationError):
            await memories.create_memory("valid text", "not a mapping")

    @pytest.mark.asyncio
    async def test_model_failure(self, memories):
        """Test that a model that cannot load surfaces as InitializationError."""
        memories.engine = EmbeddingEngine(BrokenBackend(dimension=TEST_DIMENSION))

        with pytest.raises(InitializationError) as exc_info:
            await memories.create_memory("anything at all")

        assert str(exc_info.value).startswith("Failed to create memory")
        assert "weights missing" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_store_failure(self, engine):
        """Test that an index failure surfaces as StoreError."""
        store = MagicMock()
        store.handle = "tenant"
        store.insert = AsyncMock(side_effect=StoreError("Failed to insert vector"))
        memories = MemoryOrchestrator(store, engine=engine)

        with pytest.raises(StoreError) as exc_info:
            await memories.create_memory("some content")

        assert str(exc_info.value).startswith("Failed to create memory")


class TestSearchMemories:
    """Test searching memories."""

    @pytest.mark.asyncio
    async def test_empty_tenant(self, memories):
        """Test that searching an empty tenant returns nothing."""
        assert await memories.search_memories("anything", k=5) == []

    @pytest.mark.asyncio
    async def test_empty_query(self, memories):
        """Test that an empty query is rejected."""
        with pytest.raises(ValidationError):
            await memories.search_memories("", k=5)

    @pytest.mark.asyncio
    async def test_invalid_k(self, memories):
        """Test that k below 1 is rejected."""
        await memories.create_memory("something")

        with pytest.raises(ValidationError):
            await memories.search_memories("something", k=0)

    @pytest.mark.asyncio
    async def test_invalid_filters(self, memories):
        """Test that malformed filters are rejected."""
        with pytest.raises(ValidationError):
            await memories.search_memories("query", filters={"importance_min": 0})
        with pytest.raises(ValidationError):
            await memories.search_memories("query", filters={"date_from": "not a date"})

    @pytest.mark.asyncio
    async def test_ordered_by_distance(self, memories):
        """Test that results come back nearest first."""
        await memories.create_memory("dark mode theme settings")
        await memories.create_memory("quarterly revenue numbers")
        await memories.create_memory("dark mode theme")

        results = await memories.search_memories("dark mode theme", k=3)

        distances = [r.distance for r in results]
        assert distances == sorted(distances)
        assert results[0].content == "dark mode theme"

    @pytest.mark.asyncio
    async def test_filters_keep_order(self, memories):
        """Test that filtering drops hits without reordering the rest."""
        await memories.create_memory("project alpha kickoff", {"tags": ["work"], "importance": 8})
        await memories.create_memory("project alpha budget", {"tags": ["home"], "importance": 9})
        await memories.create_memory("project alpha review", {"tags": ["work"], "importance": 2})

        unfiltered = await memories.search_memories("project alpha", k=3)
        filtered = await memories.search_memories(
            "project alpha", k=3, filters={"tags": ["work"]}
        )

        expected = [r.id for r in unfiltered if "work" in r.metadata["tags"]]
        assert [r.id for r in filtered] == expected
        assert len(filtered) == 2

    @pytest.mark.asyncio
    async def test_importance_filter(self, memories):
        """Test filtering by importance range."""
        await memories.create_memory("low priority errand", {"importance": 2})
        await memories.create_memory("high priority errand", {"importance": 9})

        results = await memories.search_memories(
            "priority errand", k=10, filters=SearchFilters(importance_min=5)
        )

        assert [r.content for r in results] == ["high priority errand"]

    @pytest.mark.asyncio
    async def test_empty_filters_skip_matching(self, memories):
        """Test that filters which exclude nothing are not evaluated."""
        await memories.create_memory("untagged note")

        with patch("memvault.memory.orchestrator.matches_filters") as matcher:
            results = await memories.search_memories("note", filters={"tags": []})

        matcher.assert_not_called()
        assert [r.content for r in results] == ["untagged note"]


class TestGetMemory:
    """Test fetching memories by id."""

    @pytest.mark.asyncio
    async def test_missing(self, memories):
        """Test that unknown ids return None."""
        assert await memories.get_memory(0) is None
        assert await memories.get_memory(-5) is None

    @pytest.mark.asyncio
    async def test_to_dict(self, memories):
        """Test the serialized form of a fetched memory."""
        await memories.create_memory("serialize me")

        memory = await memories.get_memory(0)

        assert memory.to_dict() == {
            "id": 0,
            "content": "serialize me",
            "metadata": {"content": "serialize me"},
        }


class TestGetStats:
    """Test memory statistics."""

    @pytest.mark.asyncio
    async def test_stats(self, memories):
        """Test statistics after some inserts."""
        await memories.create_memory("first")
        await memories.create_memory("second")

        stats = await memories.get_stats()

        assert stats.total_memories == 2
        assert stats.store_ready is True
        assert stats.embedding_ready is True
        assert stats.embedding_model == f"hashing-{TEST_DIMENSION}"
        assert stats.tenant_handle == memories.store.handle

    @pytest.mark.asyncio
    async def test_stats_never_raise(self, engine):
        """Test that a failing store yields zeroed statistics."""
        store = MagicMock()
        store.handle = "tenant"
        store.get_stats = AsyncMock(side_effect=RuntimeError("boom"))
        memories = MemoryOrchestrator(store, engine=engine)

        stats = await memories.get_stats()

        assert stats.total_memories == 0
        assert stats.store_ready is False
        assert stats.tenant_handle == "tenant"


class TestMatchesFilters:
    """Test the post-search metadata filter."""

    def test_no_filters(self):
        """Test that empty filters keep everything."""
        assert matches_filters({"content": "x"}, SearchFilters())
        assert matches_filters(None, SearchFilters())

    def test_tags_any_overlap(self):
        """Test that one shared tag is enough."""
        filters = SearchFilters(tags=["work", "urgent"])

        assert matches_filters({"tags": ["urgent"]}, filters)
        assert not matches_filters({"tags": ["home"]}, filters)
        assert not matches_filters({}, filters)
        assert not matches_filters({"tags": "urgent"}, filters)

    def test_empty_tag_list(self):
        """Test that an empty tag filter applies no restriction."""
        assert matches_filters({}, SearchFilters(tags=[]))

    def test_importance_bounds(self):
        """Test inclusive importance bounds."""
        filters = SearchFilters(importance_min=3, importance_max=7)

        assert matches_filters({"importance": 3}, filters)
        assert matches_filters({"importance": 7}, filters)
        assert not matches_filters({"importance": 2}, filters)
        assert not matches_filters({"importance": 8}, filters)

    def test_missing_importance_counts_as_zero(self):
        """Test that absent or non-numeric importance counts as 0."""
        filters = SearchFilters(importance_min=1)

        assert not matches_filters({}, filters)
        assert not matches_filters({"importance": "high"}, filters)
        assert matches_filters({}, SearchFilters(importance_max=5))

    def test_client_substring(self):
        """Test that client matches by substring."""
        filters = SearchFilters(client="desk")

        assert matches_filters({"client": "desktop-app"}, filters)
        assert not matches_filters({"client": "mobile"}, filters)
        assert not matches_filters({}, filters)

    def test_date_range(self):
        """Test date filters against timestamp and createdAt."""
        filters = SearchFilters(date_from="2024-01-01T00:00:00Z", date_to="2024-12-31T23:59:59Z")

        assert matches_filters({"timestamp": "2024-06-01T12:00:00Z"}, filters)
        assert matches_filters({"createdAt": "2024-03-01T00:00:00+00:00"}, filters)
        assert not matches_filters({"timestamp": "2023-12-31T23:00:00Z"}, filters)
        assert not matches_filters({"timestamp": "2025-01-01T00:00:00Z"}, filters)

    def test_undated_hits_pass(self):
        """Test that hits without a parseable date are kept."""
        filters = SearchFilters(date_from="2024-01-01T00:00:00Z")

        assert matches_filters({}, filters)
        assert matches_filters({"timestamp": "last tuesday"}, filters)

    def test_all_filters_combined(self):
        """Test that every filter must pass."""
        filters = SearchFilters(tags=["work"], importance_min=5, client="web")
        metadata = {"tags": ["work"], "importance": 6, "client": "web"}

        assert matches_filters(metadata, filters)
        assert not matches_filters({**metadata, "client": "cli"}, filters)
        assert not matches_filters({**metadata, "importance": 4}, filters)

    def test_result_to_dict_includes_distance(self):
        """Test that search results serialize their distance."""
        result = MemoryResult(id=1, content="c", metadata={"content": "c"}, distance=0.25)

        assert result.to_dict()["distance"] == 0.25
