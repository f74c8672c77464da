# services/embedding_similarity.py
# Version 1.0.0 dated 20261017

"""
SimilarityIndex - cosine similarity ranking and duplicate grouping.

Core Principle:
Everything here is pure in-memory computation over a snapshot of stored
embeddings. Callers take one snapshot (store.list() once) and hand it in;
nothing in this module touches storage.

Scores:
- cosine similarity = dot(a, b) / (|a| * |b|)
- zero-norm, non-finite or mismatched-dimension inputs score 0 (never NaN)
- scores are clamped to [0, 1]; anti-correlated vectors count as dissimilar

Duplicate grouping is a single greedy pass in input order, NOT a transitive
clustering: with sim(A,B) >= t, sim(B,C) >= t and sim(A,C) < t, processing
A, B, C yields {A, B} and {C}.

Usage:
    index = SimilarityIndex()
    results = index.find_similar(target, store.snapshot(), threshold=0.7, limit=20)
    groups = index.find_duplicate_groups(store.snapshot(), threshold=0.95)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from logging_config import get_logger
from repository.models import PhotoEmbedding

logger = get_logger(__name__)


@dataclass(frozen=True)
class PhotoSimilarity:
    """One ranked match: photo id and score in [0, 1]."""
    photo_id: str
    score: float

    @property
    def percentage(self) -> int:
        return int(self.score * 100)


@dataclass
class DuplicateGroup:
    """A representative photo and the photos judged near-duplicates of it."""
    representative_id: str
    duplicates: List[PhotoSimilarity] = field(default_factory=list)

    @property
    def all_photo_ids(self) -> List[str]:
        return [self.representative_id] + [d.photo_id for d in self.duplicates]

    @property
    def count(self) -> int:
        return len(self.duplicates) + 1

    @property
    def is_singleton(self) -> bool:
        return not self.duplicates


@dataclass
class PhotoStack:
    """Consecutive photos (in time order) that look alike."""
    photo_ids: List[str]

    @property
    def count(self) -> int:
        return len(self.photo_ids)

    @property
    def is_stack(self) -> bool:
        return len(self.photo_ids) > 1


def _clamp_score(value: float) -> float:
    if not np.isfinite(value):
        return 0.0
    return float(min(1.0, max(0.0, value)))


def _unit_rows(matrix: np.ndarray) -> np.ndarray:
    """Row-normalize a matrix; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)


class SimilarityIndex:
    """Exhaustive cosine similarity over embedding snapshots."""

    @staticmethod
    def similarity(a, b) -> float:
        """
        Cosine similarity of two vectors, clamped to [0, 1].

        Returns 0.0 when either vector has zero norm, when the dimensions
        differ, or when the inputs are not finite.
        """
        va = np.asarray(a, dtype=np.float64).reshape(-1)
        vb = np.asarray(b, dtype=np.float64).reshape(-1)

        if va.shape != vb.shape:
            logger.warning(
                f"[SimilarityIndex] Embedding vectors must have the same length "
                f"({va.shape[0]} != {vb.shape[0]})"
            )
            return 0.0

        norm_a = float(np.linalg.norm(va))
        norm_b = float(np.linalg.norm(vb))
        if norm_a == 0.0 or norm_b == 0.0 or not np.isfinite(norm_a) or not np.isfinite(norm_b):
            return 0.0

        return _clamp_score(float(np.dot(va, vb)) / (norm_a * norm_b))

    def find_similar(self,
                     target: PhotoEmbedding,
                     candidates: Sequence[PhotoEmbedding],
                     threshold: float,
                     limit: int) -> List[PhotoSimilarity]:
        """
        Rank candidates against target.

        Args:
            target: Reference embedding (its own photo_id is never returned)
            candidates: Snapshot of stored embeddings
            threshold: Minimum score to keep
            limit: Maximum number of results

        Returns:
            Results sorted by score descending, ties by photo_id ascending
        """
        if limit < 0:
            raise ValueError("limit must be non-negative")
        if limit == 0:
            return []

        dim = target.dimension
        pool = [c for c in candidates if c.photo_id != target.photo_id]
        usable = [c for c in pool if c.dimension == dim]
        if len(usable) != len(pool):
            logger.warning(
                f"[SimilarityIndex] Skipped {len(pool) - len(usable)} candidates "
                f"with dimension != {dim}"
            )
        if not usable:
            return []

        matrix = np.stack([c.vector for c in usable]).astype(np.float64)
        target_vec = np.asarray(target.vector, dtype=np.float64)
        target_norm = float(np.linalg.norm(target_vec))
        if target_norm == 0.0:
            return []

        norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ target_vec
        denom = norms * target_norm
        scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)

        results = []
        for candidate, raw in zip(usable, scores):
            score = _clamp_score(float(raw))
            if score >= threshold:
                results.append(PhotoSimilarity(photo_id=candidate.photo_id, score=score))

        results.sort(key=lambda s: (-s.score, s.photo_id))
        return results[:limit]

    def find_duplicate_groups(self,
                              embeddings: Sequence[PhotoEmbedding],
                              threshold: float,
                              dimension: Optional[int] = None) -> List[DuplicateGroup]:
        """
        Greedy single-pass partition in the given input order.

        Every embedding ends up in exactly one group. A photo with no
        near-duplicates forms a singleton group.

        Args:
            embeddings: Snapshot in processing order
            threshold: Minimum score for a duplicate
            dimension: Current embedding dimension; embeddings of any other
                dimension are left out. Without it the snapshot must not mix
                dimensions.

        Raises:
            ValueError: Mixed dimensions and no dimension given
        """
        items = list(embeddings)
        if not items:
            return []

        if dimension is None:
            dimensions = sorted({e.dimension for e in items})
            if len(dimensions) > 1:
                raise ValueError(f"Embeddings have mixed dimensions {dimensions}; pass the current dimension")
            usable = items
        else:
            usable = [e for e in items if e.dimension == dimension]
            if len(usable) != len(items):
                logger.warning(
                    f"[SimilarityIndex] Duplicate scan skipped {len(items) - len(usable)} "
                    f"embeddings with dimension != {dimension}"
                )
            if not usable:
                return []

        ids = [e.photo_id for e in usable]
        unit = _unit_rows(np.stack([e.vector for e in usable]).astype(np.float64))
        assigned = np.zeros(len(usable), dtype=bool)
        groups: List[DuplicateGroup] = []

        for i in range(len(usable)):
            if assigned[i]:
                continue

            others = np.flatnonzero(~assigned)
            others = others[others != i]

            duplicates = []
            if others.size:
                scores = unit[others] @ unit[i]
                for j, raw in zip(others, scores):
                    score = _clamp_score(float(raw))
                    if score >= threshold:
                        duplicates.append(PhotoSimilarity(photo_id=ids[j], score=score))
                        assigned[j] = True

            assigned[i] = True
            groups.append(DuplicateGroup(representative_id=ids[i], duplicates=duplicates))

        multi = sum(1 for g in groups if not g.is_singleton)
        logger.debug(
            f"[SimilarityIndex] {len(groups)} groups from {len(usable)} embeddings "
            f"({multi} with duplicates, threshold={threshold})"
        )
        return groups

    def build_photo_stacks(self,
                           photo_ids: Sequence[str],
                           vectors_by_id: Dict[str, np.ndarray],
                           threshold: float = 0.95,
                           max_comparisons: int = 5,
                           max_photos: int = 100) -> List[PhotoStack]:
        """
        Stack consecutive look-alike photos from a time-ordered list.

        Each unstacked photo opens a stack and absorbs following photos while
        their similarity to the stack's first photo is above threshold. At most
        max_comparisons successors are examined; the scan stops at the first
        miss, missing vector, or already-stacked photo. Photos past max_photos
        are returned as singleton stacks.
        """
        ordered = list(photo_ids)
        head_ids = ordered[:max_photos]
        stacked = set()
        stacks: List[PhotoStack] = []

        for i, current in enumerate(head_ids):
            if current in stacked:
                continue

            stack = [current]
            stacked.add(current)
            current_vec: Optional[np.ndarray] = vectors_by_id.get(current)

            end = min(i + max_comparisons + 1, len(head_ids))
            for j in range(i + 1, end):
                nxt = head_ids[j]
                if nxt in stacked:
                    break
                next_vec = vectors_by_id.get(nxt)
                if current_vec is None or next_vec is None:
                    break
                if self.similarity(current_vec, next_vec) > threshold:
                    stack.append(nxt)
                    stacked.add(nxt)
                else:
                    break

            stacks.append(PhotoStack(photo_ids=stack))

        stacks.extend(PhotoStack(photo_ids=[pid]) for pid in ordered[max_photos:])
        return stacks
