# tests/test_maintenance_services.py
# Tests for coverage statistics and orphan cleanup on their own

import pytest

from repository.embedding_repository import InMemoryEmbeddingStore, SQLiteEmbeddingRepository
from services.embedding_stats_service import EmbeddingStatsService, get_stats
from services.orphan_cleanup_service import OrphanCleanupService
from tests.fakes import BASE_TIME, FakePhotoSource, FlakyStore, make_embedding


class TestGetStats:
    """Test suite for the coverage formula."""

    def test_empty_library(self):
        """No photos means 0%, no division error."""
        stats = get_stats(0, 0)
        assert stats.coverage_percentage == 0
        assert stats.coverage == 0.0

    def test_four_of_ten(self):
        """4 of 10 → 40%."""
        stats = get_stats(10, 4)
        assert stats.total_photos == 10
        assert stats.photos_with_embeddings == 4
        assert stats.coverage_percentage == 40
        assert stats.photos_without_embeddings == 6

    def test_percentage_floors(self):
        """2 of 3 → 66, not 67."""
        assert get_stats(3, 2).coverage_percentage == 66

    def test_negative_counts_rejected(self):
        """Counts must be non-negative."""
        with pytest.raises(ValueError):
            get_stats(-1, 0)

    def test_to_dict(self):
        """to_dict includes the derived fields."""
        data = get_stats(4, 1).to_dict()
        assert data["coverage_percentage"] == 25
        assert data["coverage"] == pytest.approx(0.25)


class TestEmbeddingStatsService:
    """Test suite for stats collected against a photo source."""

    def test_counts_fresh_stale_orphaned(self):
        """Each stored embedding falls in exactly one bucket."""
        source = FakePhotoSource()
        store = InMemoryEmbeddingStore()
        source.add("fresh", modified_at=BASE_TIME)
        source.add("stale", modified_at=BASE_TIME.replace(year=2025))
        source.add("missing")
        for pid in ["fresh", "stale", "gone"]:
            store.put(make_embedding(pid, [1.0, 0.0], computed_at=BASE_TIME))

        stats = EmbeddingStatsService(store, source).collect(failed_photos=2)

        assert stats.total_photos == 3
        assert stats.photos_with_embeddings == 1
        assert stats.stale_embeddings == 1
        assert stats.orphaned_embeddings == 1
        assert stats.failed_photos == 2
        assert stats.coverage_percentage == 33


@pytest.fixture(params=["memory", "sqlite"])
def store(request, test_db_path):
    if request.param == "memory":
        return InMemoryEmbeddingStore()
    return SQLiteEmbeddingRepository(str(test_db_path), page_size=2)


class TestOrphanCleanupService:
    """Test suite for cleanup_orphaned."""

    def test_removes_exactly_missing(self, store):
        """A resolver reporting 2 of 5 missing removes those 2 only."""
        ids = ["a", "b", "c", "d", "e"]
        for pid in ids:
            store.put(make_embedding(pid, [1.0, 2.0]))
        missing = {"b", "e"}

        removed = OrphanCleanupService(store).cleanup_orphaned(lambda pid: pid not in missing)

        assert removed == 2
        assert [e.photo_id for e in store.list()] == ["a", "c", "d"]

    def test_nothing_to_remove(self, store):
        """All photos present, nothing removed."""
        store.put(make_embedding("a", [1.0]))
        assert OrphanCleanupService(store).cleanup_orphaned(lambda pid: True) == 0
        assert store.count() == 1

    def test_empty_store(self, store):
        """Empty store, zero removed."""
        assert OrphanCleanupService(store).cleanup_orphaned(lambda pid: False) == 0

    def test_delete_failure_continues(self):
        """A failed delete is logged and the rest still go."""
        from repository.embedding_repository import StorageWriteError

        class StubbornStore(FlakyStore):
            def delete(self, photo_id):
                if photo_id == "a":
                    raise StorageWriteError("locked")
                return super().delete(photo_id)

        store = StubbornStore()
        for pid in ["a", "b"]:
            store.put(make_embedding(pid, [1.0]))

        assert OrphanCleanupService(store).cleanup_orphaned(lambda pid: False) == 1
        assert [e.photo_id for e in store.list()] == ["a"]
