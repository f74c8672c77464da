"""
Configuration Module
Centralized configuration management for the photo embedding engine.

Usage:
    from config import get_embedding_config

    embedding_config = get_embedding_config()
    threshold = embedding_config.similarity.duplicate_threshold
"""

from config.embedding_config import (
    EmbeddingConfig,
    EmbeddingExtractionConfig,
    SimilaritySearchConfig,
    BatchConfig,
    StorageConfig,
    get_embedding_config,
    reload_config as reload_embedding_config
)

__all__ = [
    'EmbeddingConfig',
    'EmbeddingExtractionConfig',
    'SimilaritySearchConfig',
    'BatchConfig',
    'StorageConfig',
    'get_embedding_config',
    'reload_embedding_config',
]
