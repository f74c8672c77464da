# services/orphan_cleanup_service.py
# Version 01.00.00.00 dated 20261017
"""
OrphanCleanupService - remove embeddings whose photo no longer exists.

The resolver decides existence. If the resolver itself fails for a photo,
the embedding is kept; only a definite "does not exist" deletes.
"""

from typing import Callable

from logging_config import get_logger
from repository.embedding_repository import (
    EmbeddingStore,
    StorageUnavailableError,
    StorageWriteError
)

logger = get_logger(__name__)


class OrphanCleanupService:

    def __init__(self, store: EmbeddingStore):
        self.store = store

    def cleanup_orphaned(self, resolve: Callable[[str], bool]) -> int:
        """
        Delete every stored embedding whose photo_id resolve() reports missing.

        Args:
            resolve: photo_id -> True if the photo still exists

        Returns:
            Number of embeddings removed
        """
        scanned = 0
        removed = 0

        for embedding in self.store.list():
            scanned += 1
            photo_id = embedding.photo_id
            try:
                exists = resolve(photo_id)
            except Exception as e:
                logger.warning(f"[OrphanCleanup] Could not resolve {photo_id}, keeping embedding: {e}")
                continue

            if exists:
                continue

            try:
                if self.store.delete(photo_id):
                    removed += 1
            except StorageUnavailableError:
                raise
            except StorageWriteError as e:
                logger.error(f"[OrphanCleanup] Failed to delete embedding for {photo_id}: {e}")

        logger.info(f"[OrphanCleanup] Removed {removed} orphaned embeddings out of {scanned}")
        return removed
