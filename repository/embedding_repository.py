# repository/embedding_repository.py
# Version 01.00.00.00 dated 20261017
# Embedding store: one PhotoEmbedding record per photo id

"""
EmbeddingStore - narrow persistence interface for photo embeddings.

Operations:
- get(photo_id)     -> Optional[PhotoEmbedding], no side effects
- put(embedding)    -> upsert by photo_id
- delete(photo_id)  -> idempotent
- list()            -> lazy, finite, restartable iteration over current records

Two implementations:
- SQLiteEmbeddingRepository: sqlite3-backed, vectors stored as BLOBs
  (float32, or float16 marked by a negative dim)
- InMemoryEmbeddingStore: dict-backed, for tests and ephemeral sessions

Writes are serialized by a single lock; reads never block each other.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from logging_config import get_logger
from .base_repository import BaseRepository, DatabaseConnection
from .models import PhotoEmbedding

logger = get_logger(__name__)


class StorageError(Exception):
    """Base class for embedding store failures."""
    pass


class StorageReadError(StorageError):
    """The persistence layer could not read a record."""
    pass


class StorageWriteError(StorageError):
    """The persistence layer rejected a write."""
    pass


class StorageUnavailableError(StorageError):
    """The persistence layer cannot be reached at all."""
    pass


def _is_unavailable(error: sqlite3.Error) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "unable to open" in str(error).lower()


def encode_vector(vector: np.ndarray, use_half_precision: bool = False) -> Tuple[bytes, int]:
    """
    Serialize a vector to (blob, stored_dim).

    Half-precision blobs are marked by storing the dimension as a negative number.
    """
    dim = int(vector.shape[0])
    if use_half_precision:
        return vector.astype('float16').tobytes(), -dim
    return vector.astype('float32').tobytes(), dim


def decode_vector(blob: bytes, stored_dim: int) -> Optional[np.ndarray]:
    """Deserialize a vector BLOB. Returns None when the length does not match the dim."""
    if isinstance(blob, str):
        blob = blob.encode('latin1')

    dtype = np.dtype('float16') if stored_dim < 0 else np.dtype('float32')
    actual_dim = abs(stored_dim)
    if blob is None or len(blob) != actual_dim * dtype.itemsize:
        return None

    return np.frombuffer(blob, dtype=dtype).astype('float32')


class EmbeddingStore(ABC):
    """Persistence of one embedding record per photo id."""

    @abstractmethod
    def get(self, photo_id: str) -> Optional[PhotoEmbedding]:
        """Return the stored record, or None if there is none."""

    @abstractmethod
    def put(self, embedding: PhotoEmbedding) -> None:
        """Insert or overwrite the record for embedding.photo_id."""

    @abstractmethod
    def delete(self, photo_id: str) -> bool:
        """Remove the record if present. Returns True when a record was removed."""

    @abstractmethod
    def list(self) -> Iterator[PhotoEmbedding]:
        """Iterate over current records. Each call starts a fresh enumeration."""

    def count(self) -> int:
        return sum(1 for _ in self.list())

    def snapshot(self) -> List[PhotoEmbedding]:
        """Materialize list() once, for in-memory similarity work."""
        return list(self.list())


class SQLiteEmbeddingRepository(BaseRepository, EmbeddingStore):
    """
    Repository for the photo_embeddings table.

    Usage:
        db = DatabaseConnection("photo_embeddings.db")
        repo = SQLiteEmbeddingRepository(db)
        repo.put(embedding)
        for record in repo.list():
            ...
    """

    def __init__(self,
                 db_connection: Union[DatabaseConnection, str, None] = None,
                 use_half_precision: bool = False,
                 page_size: int = 500):
        super().__init__(db_connection)
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.use_half_precision = use_half_precision
        self.page_size = page_size

    def _table_name(self) -> str:
        return "photo_embeddings"

    def _row_to_embedding(self, row: dict) -> Optional[PhotoEmbedding]:
        vector = decode_vector(row['embedding'], row['dim'])
        if vector is None:
            self.logger.warning(
                f"[EmbeddingRepository] Dimension mismatch for photo {row['photo_id']}: "
                f"expected {abs(row['dim'])}, skipping record"
            )
            return None

        modified = row.get('source_modified_at')
        try:
            return PhotoEmbedding(
                photo_id=row['photo_id'],
                vector=vector,
                content_hash=row.get('content_hash') or "",
                computed_at=datetime.fromisoformat(row['computed_at']),
                source_modified_at=datetime.fromisoformat(modified) if modified else None,
            )
        except ValueError as e:
            self.logger.warning(f"[EmbeddingRepository] Unreadable record for photo {row['photo_id']}: {e}")
            return None

    def get(self, photo_id: str) -> Optional[PhotoEmbedding]:
        try:
            row = self.find_by_id(photo_id, id_column="photo_id")
        except sqlite3.Error as e:
            if _is_unavailable(e):
                raise StorageUnavailableError(f"Embedding database unavailable: {e}") from e
            raise StorageReadError(f"Failed to read embedding for photo {photo_id}: {e}") from e

        if row is None:
            return None
        return self._row_to_embedding(row)

    def put(self, embedding: PhotoEmbedding) -> None:
        blob, stored_dim = encode_vector(embedding.vector, self.use_half_precision)
        modified = embedding.source_modified_at.isoformat() if embedding.source_modified_at else None

        try:
            with self.db_connection.write_lock, self.connection() as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO photo_embeddings
                    (photo_id, embedding, dim, norm, content_hash, computed_at, source_modified_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    embedding.photo_id,
                    blob,
                    stored_dim,
                    embedding.norm,
                    embedding.content_hash,
                    embedding.computed_at.isoformat(),
                    modified,
                ))
                conn.commit()
        except sqlite3.Error as e:
            if _is_unavailable(e):
                raise StorageUnavailableError(f"Embedding database unavailable: {e}") from e
            raise StorageWriteError(f"Failed to store embedding for photo {embedding.photo_id}: {e}") from e

        precision = "float16" if self.use_half_precision else "float32"
        self.logger.debug(f"[EmbeddingRepository] Stored {precision} embedding for photo {embedding.photo_id}")

    def delete(self, photo_id: str) -> bool:
        try:
            return self.delete_by_id(photo_id, id_column="photo_id")
        except sqlite3.Error as e:
            if _is_unavailable(e):
                raise StorageUnavailableError(f"Embedding database unavailable: {e}") from e
            raise StorageWriteError(f"Failed to delete embedding for photo {photo_id}: {e}") from e

    def list(self) -> Iterator[PhotoEmbedding]:
        """
        Keyset-paginated iteration ordered by photo_id.

        Each page uses its own short-lived connection, so no read lock is held
        while the caller processes records (deletes during iteration are safe).
        """
        last_id = None
        while True:
            try:
                with self.connection(read_only=True) as conn:
                    if last_id is None:
                        cur = conn.execute(
                            "SELECT * FROM photo_embeddings ORDER BY photo_id LIMIT ?",
                            (self.page_size,)
                        )
                    else:
                        cur = conn.execute(
                            "SELECT * FROM photo_embeddings WHERE photo_id > ? ORDER BY photo_id LIMIT ?",
                            (last_id, self.page_size)
                        )
                    rows = cur.fetchall()
            except sqlite3.Error as e:
                if _is_unavailable(e):
                    raise StorageUnavailableError(f"Embedding database unavailable: {e}") from e
                raise StorageReadError(f"Failed to list embeddings: {e}") from e

            for row in rows:
                embedding = self._row_to_embedding(row)
                if embedding is not None:
                    yield embedding

            if len(rows) < self.page_size:
                return
            last_id = rows[-1]['photo_id']

    def count(self) -> int:
        try:
            return super().count()
        except sqlite3.Error as e:
            raise StorageReadError(f"Failed to count embeddings: {e}") from e

    def get_storage_stats(self) -> dict:
        """Row count and BLOB bytes split by precision."""
        try:
            with self.connection(read_only=True) as conn:
                row = conn.execute("""
                    SELECT COUNT(*) AS total,
                           COALESCE(SUM(LENGTH(embedding)), 0) AS storage_bytes,
                           COALESCE(SUM(CASE WHEN dim < 0 THEN 1 ELSE 0 END), 0) AS float16_count,
                           COALESCE(SUM(CASE WHEN dim > 0 THEN 1 ELSE 0 END), 0) AS float32_count
                    FROM photo_embeddings
                """).fetchone()
        except sqlite3.Error as e:
            raise StorageReadError(f"Failed to read storage stats: {e}") from e

        return {
            'total': row['total'],
            'storage_bytes': row['storage_bytes'],
            'storage_mb': round(row['storage_bytes'] / (1024 * 1024), 3),
            'float16_count': row['float16_count'],
            'float32_count': row['float32_count'],
        }


class InMemoryEmbeddingStore(EmbeddingStore):
    """Dict-backed store. Reads work on a copy taken under the lock."""

    def __init__(self):
        self._records: Dict[str, PhotoEmbedding] = {}
        self._lock = threading.RLock()

    def get(self, photo_id: str) -> Optional[PhotoEmbedding]:
        with self._lock:
            return self._records.get(photo_id)

    def put(self, embedding: PhotoEmbedding) -> None:
        with self._lock:
            self._records[embedding.photo_id] = embedding

    def delete(self, photo_id: str) -> bool:
        with self._lock:
            return self._records.pop(photo_id, None) is not None

    def list(self) -> Iterator[PhotoEmbedding]:
        with self._lock:
            records = sorted(self._records.values(), key=lambda e: e.photo_id)
        yield from records

    def count(self) -> int:
        with self._lock:
            return len(self._records)
