"""
Embedding Configuration
Manages settings for photo embedding extraction, similarity search,
batch sweeps and storage.

Configuration is read from ~/.photo_embeddings/embedding_config.json when
that file exists. The file is only written by save().
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict, fields

from logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".photo_embeddings"
DEFAULT_CONFIG_FILE = "embedding_config.json"


@dataclass
class EmbeddingExtractionConfig:
    """Configuration for turning a photo into an embedding."""

    # Image preprocessing
    image_size: int = 224  # Side of the square normalized bitmap fed to the computer
    load_max_dim: int = 512  # Aspect-fit bound used when decoding the source photo

    # Storage
    use_half_precision: bool = False  # Store vectors as float16 BLOBs

    # Retry tracking
    max_retry_attempts: int = 3  # Failures before a photo is marked permanently failed


@dataclass
class SimilaritySearchConfig:
    """Configuration for similarity, duplicate and stack queries."""

    default_threshold: float = 0.7  # Minimum cosine similarity for find_similar_photos
    default_limit: int = 20  # Default number of similar photos returned

    duplicate_threshold: float = 0.95  # Near-duplicate cut-off

    # Sequential photo stacks
    stack_threshold: float = 0.95
    stack_max_comparisons: int = 5  # Successors compared against the stack head
    stack_max_photos: int = 100  # Photos beyond this become singleton stacks


@dataclass
class BatchConfig:
    """Configuration for library-wide sweeps and maintenance."""

    progress_log_interval: int = 10  # Log a progress line every N photos
    maintenance_lock_timeout: float = 0.0  # Seconds to wait for the maintenance lock


@dataclass
class StorageConfig:
    """Configuration for the SQLite embedding store."""

    db_path: str = "photo_embeddings.db"
    page_size: int = 500  # Rows fetched per page when listing embeddings


def _build_section(section_cls, data: Dict[str, Any], section_name: str):
    """Build a dataclass section from a dict, ignoring unknown keys."""
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"[EmbeddingConfig] Ignoring unknown keys in '{section_name}': {sorted(unknown)}")
    return section_cls(**{k: v for k, v in data.items() if k in known})


class EmbeddingConfig:
    """Main configuration manager for the embedding engine."""

    SECTIONS = {
        "extraction": EmbeddingExtractionConfig,
        "similarity": SimilaritySearchConfig,
        "batch": BatchConfig,
        "storage": StorageConfig,
    }

    def __init__(self, config_path: Optional[str] = None, load: bool = True):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses default location.
            load: Read the file immediately when it exists.
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

        self.config_path = Path(config_path)

        self.extraction = EmbeddingExtractionConfig()
        self.similarity = SimilaritySearchConfig()
        self.batch = BatchConfig()
        self.storage = StorageConfig()

        if load:
            self.load()

    @classmethod
    def defaults(cls) -> 'EmbeddingConfig':
        """Configuration with built-in defaults, never touching disk."""
        return cls(load=False)

    def load(self) -> None:
        """Load configuration from file."""
        if not self.config_path.exists():
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[EmbeddingConfig] Failed to load {self.config_path}: {e}, using defaults")
            return

        if not isinstance(data, dict):
            logger.warning(f"[EmbeddingConfig] {self.config_path} is not a JSON object, using defaults")
            return

        for name, section_cls in self.SECTIONS.items():
            section_data = data.get(name)
            if isinstance(section_data, dict):
                try:
                    setattr(self, name, _build_section(section_cls, section_data, name))
                except TypeError as e:
                    logger.warning(f"[EmbeddingConfig] Invalid '{name}' section: {e}, using defaults")

        logger.info(f"[EmbeddingConfig] Loaded from {self.config_path}")

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def save(self) -> None:
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"[EmbeddingConfig] Saved to {self.config_path}")

    def reset_to_defaults(self) -> None:
        """Reset all configuration to defaults."""
        self.extraction = EmbeddingExtractionConfig()
        self.similarity = SimilaritySearchConfig()
        self.batch = BatchConfig()
        self.storage = StorageConfig()

    def update_similarity_thresholds(self,
                                     default_threshold: Optional[float] = None,
                                     duplicate_threshold: Optional[float] = None,
                                     stack_threshold: Optional[float] = None) -> None:
        """Update similarity thresholds, rejecting values outside [0, 1].

        Args:
            default_threshold: Threshold for find_similar_photos
            duplicate_threshold: Threshold for duplicate detection
            stack_threshold: Threshold for sequential photo stacks
        """
        updates = {
            'default_threshold': default_threshold,
            'duplicate_threshold': duplicate_threshold,
            'stack_threshold': stack_threshold,
        }
        for name, value in updates.items():
            if value is None:
                continue
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
            setattr(self.similarity, name, float(value))


# Global configuration instance
_config: Optional[EmbeddingConfig] = None


def get_embedding_config() -> EmbeddingConfig:
    """Get global embedding configuration instance."""
    global _config
    if _config is None:
        _config = EmbeddingConfig()
    return _config


def reload_config() -> None:
    """Reload configuration from disk."""
    global _config
    _config = EmbeddingConfig()
