# services/embedding_batch_service.py
# Version 01.00.00.00 dated 20261017
"""
EmbeddingBatchCoordinator - library-wide embedding sweep.

Walks a fixed photo list once, in enumeration order:
- one PhotoEmbedder.embed() per photo
- per-photo failures are counted and the sweep continues
- progress_callback(processed, total) fires after every photo
- cancel_event is checked between photos; stored work is kept
- StorageUnavailableError aborts the sweep (nothing else can be stored)

A sweep is restartable: photos that already have fresh embeddings report
UP_TO_DATE and cost only a storage read.
"""

import threading
import time
from dataclasses import dataclass, field, asdict
from typing import Callable, List, Optional, Sequence

from logging_config import get_logger
from repository.embedding_repository import StorageUnavailableError, StorageWriteError
from services.photo_embedder import EmbedOutcome, PhotoEmbedder
from services.photo_source import PhotoDescriptor

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class BatchResult:
    """Counters for one sweep."""
    total: int = 0
    processed: int = 0
    computed: int = 0
    up_to_date: int = 0
    failed: int = 0
    skipped_failed: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0
    failed_photo_ids: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.computed + self.up_to_date

    def to_dict(self) -> dict:
        data = asdict(self)
        data['succeeded'] = self.succeeded
        return data


class EmbeddingBatchCoordinator:
    """Runs PhotoEmbedder over a photo list with progress and cancellation."""

    def __init__(self, embedder: PhotoEmbedder, progress_log_interval: int = 10):
        self.embedder = embedder
        self.progress_log_interval = max(1, progress_log_interval)

    def _notify(self, callback: Optional[ProgressCallback], processed: int, total: int):
        if callback is None:
            return
        try:
            callback(processed, total)
        except Exception as e:
            logger.warning(f"[EmbeddingBatch] Progress callback failed: {e}")

    def compute_all_embeddings(self,
                               photos: Sequence[PhotoDescriptor],
                               progress_callback: Optional[ProgressCallback] = None,
                               cancel_event: Optional[threading.Event] = None) -> BatchResult:
        """
        Embed every photo in `photos`.

        Args:
            photos: Photos to process, in the order they should be visited
            progress_callback: Called as (processed, total) after each photo
            cancel_event: Set it to stop after the current photo

        Returns:
            BatchResult

        Raises:
            StorageUnavailableError: The store became unusable mid-sweep
        """
        photos = list(photos)
        result = BatchResult(total=len(photos))
        start = time.perf_counter()
        compute_seconds = 0.0

        logger.info(f"[EmbeddingBatch] Starting sweep over {result.total} photos")

        for descriptor in photos:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(f"[EmbeddingBatch] Sweep cancelled after {result.processed}/{result.total} photos")
                break

            photo_start = time.perf_counter()
            try:
                outcome = self.embedder.embed(descriptor)
            except StorageUnavailableError:
                logger.error(
                    f"[EmbeddingBatch] Storage unavailable, aborting sweep at "
                    f"{result.processed}/{result.total}"
                )
                raise
            except StorageWriteError as e:
                logger.error(f"[EmbeddingBatch] Failed to store embedding for {descriptor.photo_id}: {e}")
                outcome = EmbedOutcome.FAILED
            except Exception as e:
                logger.error(f"[EmbeddingBatch] Unexpected error for {descriptor.photo_id}: {e}", exc_info=True)
                outcome = EmbedOutcome.FAILED

            if outcome is EmbedOutcome.COMPUTED:
                result.computed += 1
                compute_seconds += time.perf_counter() - photo_start
            elif outcome is EmbedOutcome.UP_TO_DATE:
                result.up_to_date += 1
            elif outcome is EmbedOutcome.SKIPPED_FAILED:
                result.skipped_failed += 1
            else:
                result.failed += 1
                result.failed_photo_ids.append(descriptor.photo_id)

            result.processed += 1
            self._notify(progress_callback, result.processed, result.total)

            if result.processed % self.progress_log_interval == 0:
                logger.info(
                    f"[EmbeddingBatch] Progress: {result.processed}/{result.total} "
                    f"(computed={result.computed}, failed={result.failed})"
                )

        result.duration_seconds = time.perf_counter() - start
        avg_ms = (compute_seconds / result.computed * 1000) if result.computed else 0.0

        logger.info("[EmbeddingBatch] Sweep finished:")
        logger.info(f"  Processed:       {result.processed}/{result.total}")
        logger.info(f"  Computed:        {result.computed}")
        logger.info(f"  Up to date:      {result.up_to_date}")
        logger.info(f"  Failed:          {result.failed}")
        logger.info(f"  Skipped (perm.): {result.skipped_failed}")
        logger.info(f"  Avg compute:     {avg_ms:.1f} ms")
        logger.info(f"  Duration:        {result.duration_seconds:.2f}s")

        return result
