# repository/__init__.py
# Version 02.00.00.00 dated 20261017
# Repository package for data access layer

from .base_repository import (
    BaseRepository,
    DatabaseConnection
)

from .models import PhotoEmbedding

from .embedding_repository import (
    EmbeddingStore,
    SQLiteEmbeddingRepository,
    InMemoryEmbeddingStore,
    StorageError,
    StorageReadError,
    StorageWriteError,
    StorageUnavailableError
)

__all__ = [
    # Base classes
    'BaseRepository',
    'DatabaseConnection',

    # Records
    'PhotoEmbedding',

    # Embedding store
    'EmbeddingStore',
    'SQLiteEmbeddingRepository',
    'InMemoryEmbeddingStore',

    # Errors
    'StorageError',
    'StorageReadError',
    'StorageWriteError',
    'StorageUnavailableError',
]
