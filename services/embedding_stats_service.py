# services/embedding_stats_service.py
# Version 01.00.00.00 dated 20261017
"""Embedding coverage statistics."""

from dataclasses import dataclass, asdict
from typing import Optional

from logging_config import get_logger
from repository.embedding_repository import EmbeddingStore
from services.photo_source import PhotoSource

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmbeddingStats:
    total_photos: int
    photos_with_embeddings: int
    coverage_percentage: int
    stale_embeddings: int = 0
    orphaned_embeddings: int = 0
    failed_photos: int = 0

    @property
    def coverage(self) -> float:
        if self.total_photos == 0:
            return 0.0
        return self.photos_with_embeddings / self.total_photos

    @property
    def photos_without_embeddings(self) -> int:
        return max(0, self.total_photos - self.photos_with_embeddings)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['coverage'] = self.coverage
        data['photos_without_embeddings'] = self.photos_without_embeddings
        return data


def get_stats(total_photos: int,
              photos_with_embeddings: int,
              stale_embeddings: int = 0,
              orphaned_embeddings: int = 0,
              failed_photos: int = 0) -> EmbeddingStats:
    """
    Build coverage stats. coverage_percentage is floor(100 * embedded / total),
    and 0 for an empty library.
    """
    if total_photos < 0 or photos_with_embeddings < 0:
        raise ValueError("photo counts must be non-negative")

    percentage = (photos_with_embeddings * 100 // total_photos) if total_photos else 0
    return EmbeddingStats(
        total_photos=total_photos,
        photos_with_embeddings=photos_with_embeddings,
        coverage_percentage=percentage,
        stale_embeddings=stale_embeddings,
        orphaned_embeddings=orphaned_embeddings,
        failed_photos=failed_photos,
    )


class EmbeddingStatsService:
    """Counts fresh, stale and orphaned embeddings against the photo source."""

    def __init__(self, store: EmbeddingStore, photo_source: PhotoSource):
        self.store = store
        self.photo_source = photo_source

    def collect(self,
                failed_photos: Optional[int] = 0,
                dimension: Optional[int] = None) -> EmbeddingStats:
        """Records of another dimension than `dimension` count as stale."""
        descriptors = self.photo_source.descriptors_by_id()
        embedded = stale = orphaned = 0

        for embedding in self.store.list():
            descriptor = descriptors.get(embedding.photo_id)
            if descriptor is None:
                orphaned += 1
            elif embedding.is_stale(descriptor.modified_at, dimension):
                stale += 1
            else:
                embedded += 1

        stats = get_stats(len(descriptors), embedded, stale, orphaned, failed_photos or 0)
        logger.info(
            f"[EmbeddingStats] {stats.photos_with_embeddings}/{stats.total_photos} photos embedded "
            f"({stats.coverage_percentage}%), stale={stale}, orphaned={orphaned}"
        )
        return stats
