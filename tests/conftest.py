# tests/conftest.py
# Pytest fixtures for the photo embedding engine

import tempfile
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, List

import pytest
from PIL import Image

from config.embedding_config import EmbeddingConfig
from repository.embedding_repository import InMemoryEmbeddingStore, SQLiteEmbeddingRepository
from services.photo_embedding_service import PhotoEmbeddingService
from tests.fakes import FakeEmbeddingComputer, FakePhotoSource, MutableClock


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for test files."""
    tmpdir = tempfile.mkdtemp(prefix="photo_embeddings_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def test_db_path(temp_dir: Path) -> Path:
    """Create temporary database path."""
    return temp_dir / "test_embeddings.db"


@pytest.fixture
def test_images_dir(temp_dir: Path) -> Path:
    """Create directory for test images."""
    img_dir = temp_dir / "images"
    img_dir.mkdir(exist_ok=True)
    return img_dir


@pytest.fixture
def sample_images(test_images_dir: Path) -> List[Path]:
    """
    Create multiple test images with different properties.

    Returns list of paths to test images.
    """
    images = []

    # Image 1: Standard RGB JPEG
    img1 = test_images_dir / "photo_001.jpg"
    Image.new("RGB", (1920, 1080), color=(255, 0, 0)).save(img1, "JPEG")
    images.append(img1)

    # Image 2: Portrait orientation
    img2 = test_images_dir / "photo_002.jpg"
    Image.new("RGB", (1080, 1920), color=(0, 255, 0)).save(img2, "JPEG")
    images.append(img2)

    # Image 3: PNG format, nested folder
    nested = test_images_dir / "2024"
    nested.mkdir(exist_ok=True)
    img3 = nested / "photo_003.png"
    Image.new("RGB", (800, 600), color=(0, 0, 255)).save(img3, "PNG")
    images.append(img3)

    return images


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2024, 6, 1, tzinfo=timezone.utc))


@pytest.fixture
def photo_source() -> FakePhotoSource:
    return FakePhotoSource()


@pytest.fixture
def computer() -> FakeEmbeddingComputer:
    return FakeEmbeddingComputer()


@pytest.fixture
def memory_store() -> InMemoryEmbeddingStore:
    return InMemoryEmbeddingStore()


@pytest.fixture
def sqlite_store(test_db_path: Path) -> SQLiteEmbeddingRepository:
    return SQLiteEmbeddingRepository(str(test_db_path), page_size=2)


@pytest.fixture
def config() -> EmbeddingConfig:
    return EmbeddingConfig.defaults()


@pytest.fixture
def service(memory_store, photo_source, computer, config, clock) -> Generator[PhotoEmbeddingService, None, None]:
    svc = PhotoEmbeddingService(
        store=memory_store,
        photo_source=photo_source,
        computer=computer,
        config=config,
        clock=clock,
    )
    yield svc
    svc.shutdown()
