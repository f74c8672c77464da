# services/photo_source.py
# Version 01.00.00.00 dated 20261017
# Photo source abstraction: enumeration, decoding and existence checks

"""
PhotoSource - where photos come from.

The embedding engine only needs three things from a photo library:
- enumerate PhotoDescriptor records in a stable order
- decode one photo to a PIL image (aspect-fit inside a bounding box)
- tell whether a photo id still resolves to an existing photo

FolderPhotoSource implements this over a directory tree of image files,
using the path relative to the root (POSIX separators) as the photo id.

Usage:
    source = FolderPhotoSource("/photos")
    for descriptor in source.list_photos():
        image = source.load_image(descriptor.photo_id, max_dim=512)
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from logging_config import get_logger

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.webp', '.bmp', '.gif', '.tif', '.tiff',
}


class ImageDecodeError(Exception):
    """The source image is unavailable or cannot be decoded."""
    pass


@dataclass(frozen=True)
class PhotoDescriptor:
    """Identity and timestamps of one photo, as reported by the photo source."""
    photo_id: str
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


class PhotoSource(ABC):
    """Interface the embedding engine consumes from the photo library."""

    @abstractmethod
    def list_photos(self) -> List[PhotoDescriptor]:
        """All photos, in a stable enumeration order."""

    @abstractmethod
    def load_image(self, photo_id: str, max_dim: int = 512) -> Image.Image:
        """Decode a photo, fitted inside max_dim x max_dim. Raises ImageDecodeError."""

    @abstractmethod
    def photo_exists(self, photo_id: str) -> bool:
        """True while photo_id still resolves to an existing photo."""

    def get_descriptor(self, photo_id: str) -> Optional[PhotoDescriptor]:
        for descriptor in self.list_photos():
            if descriptor.photo_id == photo_id:
                return descriptor
        return None

    def descriptors_by_id(self) -> Dict[str, PhotoDescriptor]:
        return {d.photo_id: d for d in self.list_photos()}


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class FolderPhotoSource(PhotoSource):
    """
    Photo source backed by a directory tree.

    Enumeration order is newest first by creation time, ties broken by photo id,
    so repeated sweeps visit photos in the same order.
    """

    def __init__(self, root: str, recursive: bool = True):
        self.root = Path(root).resolve()
        self.recursive = recursive
        if not self.root.is_dir():
            raise FileNotFoundError(f"Photo folder not found: {self.root}")

    def _path_for(self, photo_id: str) -> Path:
        path = (self.root / photo_id).resolve()
        if self.root != path and self.root not in path.parents:
            raise ValueError(f"Photo id escapes the photo folder: {photo_id}")
        return path

    def _iter_files(self):
        pattern = "**/*" if self.recursive else "*"
        for path in self.root.glob(pattern):
            if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS:
                yield path

    def _describe(self, path: Path) -> PhotoDescriptor:
        st = path.stat()
        created = getattr(st, 'st_birthtime', None) or min(st.st_ctime, st.st_mtime)
        return PhotoDescriptor(
            photo_id=path.relative_to(self.root).as_posix(),
            created_at=_timestamp(created),
            modified_at=_timestamp(st.st_mtime),
        )

    def list_photos(self) -> List[PhotoDescriptor]:
        descriptors = []
        for path in self._iter_files():
            try:
                descriptors.append(self._describe(path))
            except OSError as e:
                logger.warning(f"[FolderPhotoSource] Cannot stat {path}: {e}")

        descriptors.sort(key=lambda d: d.photo_id)
        descriptors.sort(key=lambda d: d.created_at, reverse=True)
        return descriptors

    def get_descriptor(self, photo_id: str) -> Optional[PhotoDescriptor]:
        try:
            path = self._path_for(photo_id)
        except ValueError:
            return None
        if not path.is_file():
            return None
        try:
            return self._describe(path)
        except OSError as e:
            logger.warning(f"[FolderPhotoSource] Cannot stat {path}: {e}")
            return None

    def photo_exists(self, photo_id: str) -> bool:
        try:
            return self._path_for(photo_id).is_file()
        except ValueError:
            return False

    def load_image(self, photo_id: str, max_dim: int = 512) -> Image.Image:
        try:
            path = self._path_for(photo_id)
        except ValueError as e:
            raise ImageDecodeError(str(e)) from e

        if not path.is_file():
            raise ImageDecodeError(f"Photo not found: {photo_id}")

        try:
            with Image.open(path) as img:
                img.draft('RGB', (max_dim, max_dim))
                img = ImageOps.exif_transpose(img)
                img = img.convert('RGB')
                img.thumbnail((max_dim, max_dim))
                return img
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageDecodeError(f"Cannot decode {photo_id}: {e}") from e

    def __repr__(self) -> str:
        return f"FolderPhotoSource(root={os.fspath(self.root)!r})"
