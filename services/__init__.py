# services/__init__.py
# Version 01.00.00.00 dated 20261017
# Service layer package - embedding computation, similarity and maintenance

from .photo_source import (
    PhotoSource,
    FolderPhotoSource,
    PhotoDescriptor,
    ImageDecodeError
)

from .embedding_computer import (
    EmbeddingComputer,
    ColorLayoutEmbeddingComputer,
    ClipEmbeddingComputer,
    EmbeddingComputeError,
    NormalizedImage,
    normalize_image,
    validate_vector
)

from .embedding_similarity import (
    SimilarityIndex,
    PhotoSimilarity,
    DuplicateGroup,
    PhotoStack
)

from .photo_embedder import (
    PhotoEmbedder,
    EmbedOutcome,
    FailureTracker
)

from .embedding_batch_service import (
    EmbeddingBatchCoordinator,
    BatchResult
)

from .embedding_job import EmbeddingJob

from .embedding_stats_service import (
    EmbeddingStats,
    EmbeddingStatsService,
    get_stats
)

from .orphan_cleanup_service import OrphanCleanupService

from .photo_embedding_service import (
    PhotoEmbeddingService,
    MaintenanceBusyError
)

__all__ = [
    # Photo source
    'PhotoSource',
    'FolderPhotoSource',
    'PhotoDescriptor',
    'ImageDecodeError',

    # Embedding computation
    'EmbeddingComputer',
    'ColorLayoutEmbeddingComputer',
    'ClipEmbeddingComputer',
    'EmbeddingComputeError',
    'NormalizedImage',
    'normalize_image',
    'validate_vector',

    # Similarity
    'SimilarityIndex',
    'PhotoSimilarity',
    'DuplicateGroup',
    'PhotoStack',

    # Pipeline
    'PhotoEmbedder',
    'EmbedOutcome',
    'FailureTracker',
    'EmbeddingBatchCoordinator',
    'BatchResult',
    'EmbeddingJob',

    # Maintenance
    'EmbeddingStats',
    'EmbeddingStatsService',
    'get_stats',
    'OrphanCleanupService',

    # Facade
    'PhotoEmbeddingService',
    'MaintenanceBusyError',
]
