# repository/models.py
# Version 01.00.00.00 dated 20261017
# Persisted record types for the embedding store

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import numpy as np


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_degenerate_vector(vector: np.ndarray) -> bool:
    """True for empty, non-finite or zero-norm vectors."""
    if vector.ndim != 1 or vector.size == 0:
        return True
    if not np.all(np.isfinite(vector)):
        return True
    return float(np.linalg.norm(vector)) == 0.0


@dataclass(frozen=True, eq=False)
class PhotoEmbedding:
    """
    One stored embedding per photo.

    The vector is always a 1-D float32 array with a finite, nonzero norm;
    construction fails with ValueError otherwise.
    """
    photo_id: str
    vector: np.ndarray
    content_hash: str
    computed_at: datetime
    source_modified_at: Optional[datetime] = None
    norm: float = field(init=False)

    def __post_init__(self):
        if not self.photo_id:
            raise ValueError("photo_id must be a non-empty string")

        vector = np.array(self.vector, dtype=np.float32)
        if is_degenerate_vector(vector):
            raise ValueError(f"Degenerate embedding vector for photo {self.photo_id}")
        vector.setflags(write=False)

        object.__setattr__(self, 'vector', vector)
        object.__setattr__(self, 'norm', float(np.linalg.norm(vector)))
        object.__setattr__(self, 'computed_at', ensure_utc(self.computed_at))
        if self.source_modified_at is not None:
            object.__setattr__(self, 'source_modified_at', ensure_utc(self.source_modified_at))

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    def is_stale(self,
                 current_modified_at: Optional[datetime],
                 expected_dimension: Optional[int] = None) -> bool:
        """
        An embedding is stale iff the photo's current modification time is
        strictly later than the moment the vector was computed, or the
        vector's dimension differs from the computer's current one.
        """
        if expected_dimension is not None and self.dimension != expected_dimension:
            return True
        if current_modified_at is None:
            return False
        return ensure_utc(current_modified_at) > self.computed_at

    def __repr__(self) -> str:
        return (
            f"PhotoEmbedding(photo_id={self.photo_id!r}, dim={self.dimension}, "
            f"computed_at={self.computed_at.isoformat()})"
        )
