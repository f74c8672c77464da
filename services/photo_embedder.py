# services/photo_embedder.py
# Version 01.00.00.00 dated 20261017
"""
PhotoEmbedder - compute-and-store for a single photo.

Steps for one PhotoDescriptor:
1. Look up the stored record (a read failure counts as "no record" but is
   logged as a read failure, never as "never computed")
2. Up to date? (photo modified_at <= computed_at) → nothing to do
3. Permanently failed? → skip
4. Decode → normalize → content hash → compute → validate
5. Upsert the record (same photo_id, overwritten in place)

Decode and compute failures are counted per photo; after max_retry_attempts
the photo is marked permanently failed until clear() is called.
Storage write failures are raised to the caller.
"""

import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from logging_config import get_logger
from repository.embedding_repository import EmbeddingStore, StorageReadError
from repository.models import PhotoEmbedding, utc_now
from services.embedding_computer import (
    EmbeddingComputer,
    EmbeddingComputeError,
    normalize_image,
    validate_vector
)
from services.photo_source import ImageDecodeError, PhotoDescriptor, PhotoSource

logger = get_logger(__name__)


class EmbedOutcome(Enum):
    """Result of one compute-and-store attempt."""
    COMPUTED = "computed"
    UP_TO_DATE = "up_to_date"
    SKIPPED_FAILED = "skipped_failed"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self in (EmbedOutcome.COMPUTED, EmbedOutcome.UP_TO_DATE)


class FailureTracker:
    """Thread-safe per-photo failure counts with a permanent-failure cut-off."""

    def __init__(self, max_retry_attempts: int = 3):
        if max_retry_attempts <= 0:
            raise ValueError("max_retry_attempts must be positive")
        self.max_retry_attempts = max_retry_attempts
        self._attempts: Dict[str, int] = {}
        self._failed: set = set()
        self._lock = threading.Lock()

    def record_failure(self, photo_id: str) -> int:
        with self._lock:
            attempts = self._attempts.get(photo_id, 0) + 1
            self._attempts[photo_id] = attempts
            if attempts >= self.max_retry_attempts:
                self._failed.add(photo_id)
            return attempts

    def record_success(self, photo_id: str) -> None:
        with self._lock:
            self._attempts.pop(photo_id, None)
            self._failed.discard(photo_id)

    def attempts(self, photo_id: str) -> int:
        with self._lock:
            return self._attempts.get(photo_id, 0)

    def is_permanently_failed(self, photo_id: str) -> bool:
        with self._lock:
            return photo_id in self._failed

    def failed_count(self) -> int:
        with self._lock:
            return len(self._failed)

    def failed_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._failed)

    def clear(self) -> None:
        with self._lock:
            self._attempts.clear()
            self._failed.clear()


class PhotoEmbedder:
    """Computes, validates and stores the embedding of one photo."""

    def __init__(self,
                 store: EmbeddingStore,
                 photo_source: PhotoSource,
                 computer: EmbeddingComputer,
                 image_size: int = 224,
                 load_max_dim: int = 512,
                 failure_tracker: Optional[FailureTracker] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.photo_source = photo_source
        self.computer = computer
        self.image_size = image_size
        self.load_max_dim = load_max_dim
        self.failure_tracker = failure_tracker or FailureTracker()
        self.clock = clock

    def lookup_existing(self, photo_id: str) -> Optional[PhotoEmbedding]:
        """Stored record for photo_id; None when absent or unreadable."""
        try:
            return self.store.get(photo_id)
        except StorageReadError as e:
            logger.error(f"[PhotoEmbedder] Embedding read failed for photo {photo_id}, treating as missing: {e}")
            return None

    def needs_embedding(self, existing: Optional[PhotoEmbedding], descriptor: PhotoDescriptor) -> bool:
        """Missing, modified since computed, or produced by a computer of another dimension."""
        return existing is None or existing.is_stale(descriptor.modified_at, self.computer.dimension)

    def embed(self, descriptor: PhotoDescriptor, force: bool = False) -> EmbedOutcome:
        """
        Make sure descriptor's photo has a fresh stored embedding.

        Args:
            descriptor: Photo to process
            force: Recompute even when the stored record is up to date

        Returns:
            EmbedOutcome

        Raises:
            StorageWriteError: The store rejected the write
        """
        photo_id = descriptor.photo_id
        existing = self.lookup_existing(photo_id)

        if not force and not self.needs_embedding(existing, descriptor):
            logger.debug(f"[PhotoEmbedder] Embedding up to date for photo {photo_id}")
            return EmbedOutcome.UP_TO_DATE

        if existing is not None and not force:
            logger.debug(f"[PhotoEmbedder] Embedding for photo {photo_id} is stale, recomputing")

        if self.failure_tracker.is_permanently_failed(photo_id):
            logger.debug(
                f"[PhotoEmbedder] Skipping photo {photo_id} - failed "
                f"{self.failure_tracker.attempts(photo_id)} times, marked as permanently failed"
            )
            return EmbedOutcome.SKIPPED_FAILED

        try:
            image = self.photo_source.load_image(photo_id, max_dim=self.load_max_dim)
            normalized = normalize_image(image, self.image_size)
            try:
                raw = self.computer.compute(normalized.pixels, normalized.size)
            except EmbeddingComputeError:
                raise
            except Exception as e:
                raise EmbeddingComputeError(f"{type(e).__name__}: {e}") from e
            vector = validate_vector(raw, self.computer.dimension)
        except (ImageDecodeError, EmbeddingComputeError) as e:
            attempts = self.failure_tracker.record_failure(photo_id)
            limit = self.failure_tracker.max_retry_attempts
            if attempts >= limit:
                logger.warning(f"[PhotoEmbedder] Photo {photo_id} failed {limit} times, marking as permanently failed: {e}")
            else:
                logger.warning(f"[PhotoEmbedder] Failed to embed photo {photo_id} (attempt {attempts}/{limit}): {e}")
            return EmbedOutcome.FAILED

        record = PhotoEmbedding(
            photo_id=photo_id,
            vector=vector,
            content_hash=normalized.content_hash,
            computed_at=self.clock(),
            source_modified_at=descriptor.modified_at,
        )
        self.store.put(record)
        self.failure_tracker.record_success(photo_id)

        logger.debug(f"[PhotoEmbedder] Stored embedding for photo {photo_id} (dim={record.dimension})")
        return EmbedOutcome.COMPUTED
