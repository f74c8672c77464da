# services/photo_embedding_service.py
# Version 01.00.00.00 dated 20261017
"""
PhotoEmbeddingService - facade for the photo embedding engine.

An explicitly constructed engine object: it owns no global state and is
handed its store, photo source and embedding computer. Hosts create one and
pass it to whoever needs it.

Operations:
- compute_and_store_embedding(photo_id) -> bool
- find_similar_photos(photo_id, threshold, limit) -> [PhotoSimilarity]
- compute_all_embeddings(progress_callback, cancel_event) -> BatchResult
- start_embedding_job(progress_callback) -> EmbeddingJob (background sweep)
- get_stats() -> EmbeddingStats
- cleanup_orphaned() -> removed count
- find_duplicates(threshold) -> [DuplicateGroup]
- build_photo_stacks(photo_ids) -> [PhotoStack]

Long-running maintenance (sweep, orphan cleanup) is serialized by one
maintenance lock; a second one started while the first runs raises
MaintenanceBusyError.

Usage:
    service = PhotoEmbeddingService(
        store=SQLiteEmbeddingRepository("photo_embeddings.db"),
        photo_source=FolderPhotoSource("/photos"),
        computer=ColorLayoutEmbeddingComputer(),
    )
    job = service.start_embedding_job()
    for processed, total in job.progress_updates():
        print(processed, total)
    print(service.find_similar_photos("2024/IMG_0001.jpg"))
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from config.embedding_config import EmbeddingConfig, get_embedding_config
from logging_config import get_logger
from repository.embedding_repository import EmbeddingStore
from repository.models import PhotoEmbedding, utc_now
from services.embedding_batch_service import BatchResult, EmbeddingBatchCoordinator
from services.embedding_computer import EmbeddingComputer
from services.embedding_job import EmbeddingJob
from services.embedding_similarity import (
    DuplicateGroup,
    PhotoSimilarity,
    PhotoStack,
    SimilarityIndex
)
from services.embedding_stats_service import EmbeddingStats, EmbeddingStatsService
from services.orphan_cleanup_service import OrphanCleanupService
from services.photo_embedder import FailureTracker, PhotoEmbedder
from services.photo_source import PhotoDescriptor, PhotoSource

logger = get_logger(__name__)


class MaintenanceBusyError(Exception):
    """Another sweep or orphan cleanup holds the maintenance lock."""
    pass


class PhotoEmbeddingService:
    """Embedding engine facade over one store, one photo source and one computer."""

    def __init__(self,
                 store: EmbeddingStore,
                 photo_source: PhotoSource,
                 computer: EmbeddingComputer,
                 config: Optional[EmbeddingConfig] = None,
                 similarity_index: Optional[SimilarityIndex] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.config = config or get_embedding_config()
        self.store = store
        self.photo_source = photo_source
        self.computer = computer
        self.similarity_index = similarity_index or SimilarityIndex()

        extraction = self.config.extraction
        self.failure_tracker = FailureTracker(extraction.max_retry_attempts)
        self.embedder = PhotoEmbedder(
            store=store,
            photo_source=photo_source,
            computer=computer,
            image_size=extraction.image_size,
            load_max_dim=extraction.load_max_dim,
            failure_tracker=self.failure_tracker,
            clock=clock,
        )
        self.batch = EmbeddingBatchCoordinator(self.embedder, self.config.batch.progress_log_interval)
        self.stats_service = EmbeddingStatsService(store, photo_source)
        self.orphan_cleanup = OrphanCleanupService(store)

        self._maintenance_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

        logger.info(f"[PhotoEmbeddingService] Initialized with computer={computer.name}")

    # ------------------------------------------------------------------
    # Maintenance lock
    # ------------------------------------------------------------------

    @contextmanager
    def _maintenance(self, operation: str):
        timeout = self.config.batch.maintenance_lock_timeout
        if timeout and timeout > 0:
            acquired = self._maintenance_lock.acquire(timeout=timeout)
        else:
            acquired = self._maintenance_lock.acquire(blocking=False)
        if not acquired:
            logger.warning(f"[PhotoEmbeddingService] Cannot start {operation}: maintenance already running")
            raise MaintenanceBusyError(f"Cannot start {operation}: another maintenance operation is running")
        try:
            yield
        finally:
            self._maintenance_lock.release()

    def is_maintenance_running(self) -> bool:
        return self._maintenance_lock.locked()

    # ------------------------------------------------------------------
    # Single photo
    # ------------------------------------------------------------------

    def _descriptor(self, photo_id: str) -> Optional[PhotoDescriptor]:
        descriptor = self.photo_source.get_descriptor(photo_id)
        if descriptor is None:
            logger.warning(f"[PhotoEmbeddingService] Unknown photo: {photo_id}")
        return descriptor

    def compute_and_store_embedding(self, photo_id: str, force: bool = False) -> bool:
        """
        Make sure photo_id has a fresh stored embedding.

        Returns:
            True when the stored embedding is fresh afterwards, False on decode
            or compute failure, unknown photo, or permanently failed photo.

        Raises:
            StorageWriteError: The store rejected the write
        """
        descriptor = self._descriptor(photo_id)
        if descriptor is None:
            return False
        return self.embedder.embed(descriptor, force=force).succeeded

    def get_embedding(self, photo_id: str) -> Optional[PhotoEmbedding]:
        """Stored embedding for photo_id (may be stale), or None."""
        return self.embedder.lookup_existing(photo_id)

    def delete_embedding(self, photo_id: str) -> bool:
        """Remove the stored embedding, e.g. after the photo itself is deleted."""
        removed = self.store.delete(photo_id)
        if removed:
            logger.debug(f"[PhotoEmbeddingService] Deleted embedding for {photo_id}")
        return removed

    def get_similarity(self, photo_a: str, photo_b: str) -> Optional[float]:
        """Similarity of two stored embeddings; None if either is missing."""
        a = self.get_embedding(photo_a)
        b = self.get_embedding(photo_b)
        if a is None or b is None:
            return None
        return self.similarity_index.similarity(a.vector, b.vector)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _fresh_snapshot(self, descriptors: Dict[str, PhotoDescriptor]) -> Dict[str, PhotoEmbedding]:
        """Stored embeddings whose photo exists and which are not stale."""
        dimension = self.computer.dimension
        fresh = {}
        stale = 0
        for embedding in self.store.list():
            descriptor = descriptors.get(embedding.photo_id)
            if descriptor is None:
                continue
            if embedding.is_stale(descriptor.modified_at, dimension):
                stale += 1
                continue
            fresh[embedding.photo_id] = embedding
        if stale:
            logger.debug(f"[PhotoEmbeddingService] Excluded {stale} stale embeddings from snapshot")
        return fresh

    def _ordered_fresh_embeddings(self) -> List[PhotoEmbedding]:
        """Fresh embeddings in photo source enumeration order."""
        photos = self.photo_source.list_photos()
        fresh = self._fresh_snapshot({d.photo_id: d for d in photos})
        return [fresh[d.photo_id] for d in photos if d.photo_id in fresh]

    # ------------------------------------------------------------------
    # Similarity queries
    # ------------------------------------------------------------------

    def find_similar_photos(self,
                            photo_id: str,
                            threshold: Optional[float] = None,
                            limit: Optional[int] = None) -> List[PhotoSimilarity]:
        """
        Rank stored photos by similarity to photo_id.

        The target's embedding is computed (or recomputed when stale) first.
        Candidates with missing photos or stale embeddings are skipped.

        Returns:
            Sorted by score descending, ties by photo_id; [] if the target
            cannot be embedded
        """
        settings = self.config.similarity
        threshold = settings.default_threshold if threshold is None else threshold
        limit = settings.default_limit if limit is None else limit

        # One enumeration of the library serves both the target and the candidates
        descriptors = self.photo_source.descriptors_by_id()
        descriptor = descriptors.get(photo_id)
        if descriptor is None:
            logger.warning(f"[PhotoEmbeddingService] Unknown photo: {photo_id}")
            return []

        if not self.embedder.embed(descriptor).succeeded:
            logger.warning(f"[PhotoEmbeddingService] No embedding for target photo {photo_id}")
            return []

        target = self.get_embedding(photo_id)
        if target is None:
            return []

        candidates = list(self._fresh_snapshot(descriptors).values())
        results = self.similarity_index.find_similar(target, candidates, threshold, limit)

        logger.info(
            f"[PhotoEmbeddingService] Found {len(results)} photos similar to {photo_id} "
            f"(threshold={threshold}, candidates={len(candidates)})"
        )
        return results

    def find_duplicates(self, threshold: Optional[float] = None) -> List[DuplicateGroup]:
        """Greedy duplicate groups over fresh embeddings, in enumeration order."""
        if threshold is None:
            threshold = self.config.similarity.duplicate_threshold
        embeddings = self._ordered_fresh_embeddings()
        groups = self.similarity_index.find_duplicate_groups(
            embeddings, threshold, dimension=self.computer.dimension
        )
        logger.info(
            f"[PhotoEmbeddingService] {sum(1 for g in groups if not g.is_singleton)} duplicate groups "
            f"among {len(embeddings)} photos (threshold={threshold})"
        )
        return groups

    def build_photo_stacks(self, photo_ids: Optional[Sequence[str]] = None) -> List[PhotoStack]:
        """
        Stack consecutive look-alike photos.

        Args:
            photo_ids: Time-ordered photo ids; defaults to the photo source's order
        """
        photos = self.photo_source.list_photos()
        if photo_ids is None:
            photo_ids = [d.photo_id for d in photos]
        fresh = self._fresh_snapshot({d.photo_id: d for d in photos})
        vectors = {pid: e.vector for pid, e in fresh.items()}

        settings = self.config.similarity
        return self.similarity_index.build_photo_stacks(
            photo_ids,
            vectors,
            threshold=settings.stack_threshold,
            max_comparisons=settings.stack_max_comparisons,
            max_photos=settings.stack_max_photos,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def compute_all_embeddings(self,
                               progress_callback: Optional[Callable[[int, int], None]] = None,
                               cancel_event: Optional[threading.Event] = None,
                               photos: Optional[Sequence[PhotoDescriptor]] = None) -> BatchResult:
        """
        Sweep the library, embedding every missing or stale photo.

        Raises:
            MaintenanceBusyError: A sweep or orphan cleanup is already running
            StorageUnavailableError: The store became unusable mid-sweep
        """
        with self._maintenance("embedding sweep"):
            if photos is None:
                photos = self.photo_source.list_photos()
            return self.batch.compute_all_embeddings(photos, progress_callback, cancel_event)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="embedding-sweep")
            return self._executor

    def start_embedding_job(self,
                            progress_callback: Optional[Callable[[int, int], None]] = None) -> EmbeddingJob:
        """Run compute_all_embeddings on a background thread."""
        job = EmbeddingJob(progress_callback)

        def run():
            try:
                return self.compute_all_embeddings(
                    progress_callback=job._report_progress,
                    cancel_event=job.cancel_event,
                )
            finally:
                job._finish()

        job._attach(self._get_executor().submit(run))
        logger.info(f"[PhotoEmbeddingService] Started background embedding job {job.job_id}")
        return job

    def cleanup_orphaned(self, resolve: Optional[Callable[[str], bool]] = None) -> int:
        """
        Remove embeddings whose photo no longer exists.

        Args:
            resolve: photo_id -> exists; defaults to the photo source

        Raises:
            MaintenanceBusyError: A sweep or cleanup is already running
        """
        with self._maintenance("orphan cleanup"):
            return self.orphan_cleanup.cleanup_orphaned(resolve or self.photo_source.photo_exists)

    def get_stats(self) -> EmbeddingStats:
        """Coverage of fresh embeddings over the photo source."""
        return self.stats_service.collect(
            failed_photos=self.failure_tracker.failed_count(),
            dimension=self.computer.dimension,
        )

    def clear_failure_tracking(self) -> None:
        """Forget recorded failures so permanently failed photos are retried."""
        self.failure_tracker.clear()
        logger.info("[PhotoEmbeddingService] Cleared failure tracking")

    def failed_photo_count(self) -> int:
        return self.failure_tracker.failed_count()

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
