# tests/test_embedding_repository.py
# Tests for the embedding store layer

import os
from datetime import datetime, timezone
from pathlib import Path

import numpy as np
import pytest

from repository import (
    DatabaseConnection,
    InMemoryEmbeddingStore,
    SQLiteEmbeddingRepository,
    StorageUnavailableError,
    StorageWriteError
)
from repository.embedding_repository import decode_vector, encode_vector
from tests.fakes import BASE_TIME, make_embedding


class TestPhotoEmbedding:
    """Test suite for the PhotoEmbedding record."""

    def test_rejects_zero_vector(self):
        """A zero-norm vector cannot become a record."""
        with pytest.raises(ValueError):
            make_embedding("p1", [0.0, 0.0, 0.0])

    def test_rejects_nan_vector(self):
        """NaN vectors are rejected."""
        with pytest.raises(ValueError):
            make_embedding("p1", [1.0, float("nan"), 0.0])

    def test_rejects_empty_photo_id(self):
        """photo_id is required."""
        with pytest.raises(ValueError):
            make_embedding("", [1.0, 0.0])

    def test_vector_is_float32_and_read_only(self):
        """Stored vector is an immutable float32 copy."""
        source = np.array([3.0, 4.0], dtype=np.float64)
        record = make_embedding("p1", source)

        assert record.vector.dtype == np.float32
        assert record.norm == pytest.approx(5.0)
        assert source.flags.writeable
        with pytest.raises(ValueError):
            record.vector[0] = 1.0

    def test_naive_timestamps_become_utc(self):
        """Naive datetimes are treated as UTC."""
        record = make_embedding("p1", [1.0], computed_at=datetime(2024, 1, 1))
        assert record.computed_at.tzinfo is not None
        assert record.computed_at == BASE_TIME

    def test_staleness_is_strictly_later(self):
        """Stale iff modified strictly after computed_at."""
        record = make_embedding("p1", [1.0], computed_at=BASE_TIME)

        assert not record.is_stale(None)
        assert not record.is_stale(BASE_TIME)
        assert record.is_stale(datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc))


class TestVectorEncoding:
    """Test suite for BLOB encoding."""

    def test_half_precision_marks_negative_dim(self):
        """float16 blobs store the dimension as a negative number."""
        blob, dim = encode_vector(np.ones(4, dtype=np.float32), use_half_precision=True)
        assert dim == -4
        assert len(blob) == 8

    def test_length_mismatch_returns_none(self):
        """A blob that disagrees with its dim is unreadable."""
        blob, _ = encode_vector(np.ones(4, dtype=np.float32))
        assert decode_vector(blob, 5) is None


class TestDatabaseConnection:
    """Test suite for DatabaseConnection."""

    def test_creates_schema(self, test_db_path: Path):
        """Schema is created on first use."""
        db = DatabaseConnection(str(test_db_path))
        assert db.validate_schema()
        assert db.get_schema_version() == "1.0.0"

    def test_separate_instances(self, temp_dir: Path):
        """Each connection object is independent, no hidden singleton."""
        db1 = DatabaseConnection(str(temp_dir / "a.db"))
        db2 = DatabaseConnection(str(temp_dir / "b.db"))
        assert db1 is not db2
        assert db1.db_path != db2.db_path

    def test_dict_factory(self, test_db_path: Path):
        """Test that rows are returned as dicts."""
        db = DatabaseConnection(str(test_db_path))

        with db.get_connection() as conn:
            row = conn.execute("SELECT 1 as test_col").fetchone()
            assert isinstance(row, dict)
            assert row["test_col"] == 1


@pytest.fixture(params=["memory", "sqlite"])
def store(request, test_db_path: Path):
    if request.param == "memory":
        return InMemoryEmbeddingStore()
    return SQLiteEmbeddingRepository(str(test_db_path), page_size=2)


class TestEmbeddingStoreContract:
    """get/put/delete/list behaviour shared by every store."""

    def test_get_missing_returns_none(self, store):
        """No record, no error."""
        assert store.get("missing") is None

    def test_put_then_get(self, store):
        """A stored record reads back equal."""
        modified = datetime(2023, 12, 31, tzinfo=timezone.utc)
        store.put(make_embedding("p1", [0.1, 0.2, 0.3], source_modified_at=modified))

        record = store.get("p1")
        assert record is not None
        assert record.photo_id == "p1"
        np.testing.assert_allclose(record.vector, [0.1, 0.2, 0.3], rtol=1e-6)
        assert record.computed_at == BASE_TIME
        assert record.source_modified_at == modified

    def test_put_overwrites(self, store):
        """Upsert by photo_id keeps one record."""
        store.put(make_embedding("p1", [1.0, 0.0]))
        store.put(make_embedding("p1", [0.0, 1.0]))

        assert store.count() == 1
        np.testing.assert_allclose(store.get("p1").vector, [0.0, 1.0])

    def test_delete_is_idempotent(self, store):
        """Deleting twice, or deleting an absent id, is not an error."""
        store.put(make_embedding("p1", [1.0]))

        assert store.delete("p1") is True
        assert store.delete("p1") is False
        assert store.delete("never-there") is False
        assert store.get("p1") is None

    def test_list_is_restartable(self, store):
        """Each list() call re-enumerates the current state."""
        for pid in ["c", "a", "e", "b", "d"]:
            store.put(make_embedding(pid, [1.0, 2.0]))

        first = [e.photo_id for e in store.list()]
        second = [e.photo_id for e in store.list()]
        assert first == second == ["a", "b", "c", "d", "e"]

        store.delete("c")
        assert [e.photo_id for e in store.list()] == ["a", "b", "d", "e"]

    def test_delete_during_list(self, store):
        """Deleting records while listing visits every record once."""
        for pid in ["a", "b", "c", "d", "e"]:
            store.put(make_embedding(pid, [1.0, 2.0]))

        seen = []
        for record in store.list():
            seen.append(record.photo_id)
            store.delete(record.photo_id)

        assert seen == ["a", "b", "c", "d", "e"]
        assert store.count() == 0


class TestSQLiteEmbeddingRepository:
    """SQLite-specific behaviour."""

    def test_half_precision_round_trip(self, test_db_path: Path):
        """float16 storage reads back as float32 within tolerance."""
        repo = SQLiteEmbeddingRepository(str(test_db_path), use_half_precision=True)
        repo.put(make_embedding("p1", [0.125, 0.5, 0.75]))

        record = repo.get("p1")
        assert record.vector.dtype == np.float32
        np.testing.assert_allclose(record.vector, [0.125, 0.5, 0.75], atol=1e-3)

        stats = repo.get_storage_stats()
        assert stats["float16_count"] == 1
        assert stats["float32_count"] == 0

    def test_rejected_write_raises(self, test_db_path: Path):
        """A write the database refuses surfaces as StorageWriteError."""
        repo = SQLiteEmbeddingRepository(str(test_db_path))
        repo.db_connection.execute_script("""
            CREATE TRIGGER block_inserts BEFORE INSERT ON photo_embeddings
            BEGIN SELECT RAISE(ABORT, 'writes disabled'); END;
        """)

        with pytest.raises(StorageWriteError):
            repo.put(make_embedding("p1", [1.0]))
        assert repo.get("p1") is None

    def test_missing_database_is_unavailable(self, test_db_path: Path):
        """Reads against a vanished database raise StorageUnavailableError."""
        repo = SQLiteEmbeddingRepository(str(test_db_path))
        os.remove(test_db_path)

        with pytest.raises(StorageUnavailableError):
            repo.get("p1")

    def test_corrupt_row_is_skipped(self, test_db_path: Path):
        """Rows whose blob does not match dim are skipped, not fatal."""
        repo = SQLiteEmbeddingRepository(str(test_db_path))
        repo.put(make_embedding("good", [1.0, 0.0]))
        with repo.connection() as conn:
            conn.execute(
                "INSERT INTO photo_embeddings (photo_id, embedding, dim, norm, computed_at) "
                "VALUES (?, ?, ?, ?, ?)",
                ("bad", b"\x00\x00", 4, 1.0, BASE_TIME.isoformat())
            )
            conn.commit()

        assert repo.get("bad") is None
        assert [e.photo_id for e in repo.list()] == ["good"]

    def test_default_path_from_config(self, temp_dir: Path, monkeypatch):
        """Without a connection argument the configured db_path is used."""
        from config import embedding_config

        cfg = embedding_config.EmbeddingConfig.defaults()
        cfg.storage.db_path = str(temp_dir / "configured.db")
        monkeypatch.setattr(embedding_config, "_config", cfg)

        repo = SQLiteEmbeddingRepository()
        assert repo.db_connection.db_path == str(temp_dir / "configured.db")
