# services/embedding_computer.py
# Version 01.00.00.00 dated 20261017
"""
EmbeddingComputer - image bitmap to fixed-dimension float vector.

The engine treats the computer as a black box: deterministic for identical
input bytes, dimension fixed for the lifetime of the store, and allowed to
fail with EmbeddingComputeError.

Pipeline around the computer:
    PIL image (aspect-fit decode)
        → normalize_image(): RGB, image_size x image_size
        → NormalizedImage.pixels (raw RGB bytes) + content_hash (SHA-256)
        → computer.compute(pixels, size)
        → validate_vector(): finite, nonzero norm, expected dimension

Two computers ship with the engine:
- ColorLayoutEmbeddingComputer: numpy-only colour layout + histogram
  fingerprint, no model download, good for near-duplicate detection.
- ClipEmbeddingComputer: CLIP image features via torch/transformers
  (optional dependency, imported lazily on first use).
"""

import hashlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image

from logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingComputeError(Exception):
    """The embedding computer could not produce a usable vector."""
    pass


@dataclass(frozen=True)
class NormalizedImage:
    """Fixed-size RGB bitmap handed to the embedding computer."""
    pixels: bytes
    size: int

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.pixels).hexdigest()

    def to_image(self) -> Image.Image:
        return Image.frombytes('RGB', (self.size, self.size), self.pixels)


def normalize_image(image: Image.Image, size: int = 224) -> NormalizedImage:
    """Stretch an image onto a size x size RGB canvas."""
    if size <= 0:
        raise ValueError("size must be positive")
    rgb = image if image.mode == 'RGB' else image.convert('RGB')
    resized = rgb.resize((size, size), Image.BILINEAR)
    return NormalizedImage(pixels=resized.tobytes(), size=size)


def validate_vector(vector, expected_dim: Optional[int] = None) -> np.ndarray:
    """
    Coerce a computer's output to a 1-D float32 vector, or raise EmbeddingComputeError.

    Never lets a degenerate (empty, NaN/inf, zero-norm) vector through.
    """
    try:
        vec = np.asarray(vector, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError) as e:
        raise EmbeddingComputeError(f"Embedding is not numeric: {e}") from e

    if vec.size == 0:
        raise EmbeddingComputeError("Embedding is empty")
    if expected_dim is not None and vec.size != expected_dim:
        raise EmbeddingComputeError(f"Embedding has dimension {vec.size}, expected {expected_dim}")
    if not np.all(np.isfinite(vec)):
        raise EmbeddingComputeError("Embedding contains NaN or infinite values")
    if float(np.linalg.norm(vec)) == 0.0:
        raise EmbeddingComputeError("Embedding has zero norm")
    return vec


class EmbeddingComputer(ABC):
    """Maps normalized image bytes to a vector."""

    name: str = "abstract"

    @property
    def dimension(self) -> Optional[int]:
        """Fixed output dimension, or None until known."""
        return None

    @abstractmethod
    def compute(self, pixels: bytes, size: int) -> np.ndarray:
        """Compute the embedding of a size x size RGB bitmap. Raises EmbeddingComputeError."""


class ColorLayoutEmbeddingComputer(EmbeddingComputer):
    """
    Colour layout fingerprint.

    - grid x grid block means per channel, centred to [-1, 1]
    - per-channel histogram with `bins` buckets, normalized to sum 1

    The result is L2-normalized.
    """

    name = "color-layout"

    def __init__(self, grid: int = 8, bins: int = 16):
        if grid <= 0 or bins <= 0:
            raise ValueError("grid and bins must be positive")
        self.grid = grid
        self.bins = bins

    @property
    def dimension(self) -> int:
        return self.grid * self.grid * 3 + self.bins * 3

    def compute(self, pixels: bytes, size: int) -> np.ndarray:
        expected = size * size * 3
        if len(pixels) != expected:
            raise EmbeddingComputeError(f"Expected {expected} bytes for a {size}x{size} RGB bitmap, got {len(pixels)}")

        image = Image.frombytes('RGB', (size, size), pixels)
        layout = np.asarray(image.resize((self.grid, self.grid), Image.BOX), dtype=np.float32)
        layout = layout.reshape(-1) / 127.5 - 1.0

        arr = np.frombuffer(pixels, dtype=np.uint8).reshape(-1, 3)
        histograms = []
        for channel in range(3):
            hist, _ = np.histogram(arr[:, channel], bins=self.bins, range=(0, 256))
            histograms.append(hist.astype(np.float32) / max(arr.shape[0], 1))

        vec = np.concatenate([layout] + histograms)
        norm = float(np.linalg.norm(vec))
        if norm == 0.0 or not np.isfinite(norm):
            raise EmbeddingComputeError("Colour layout fingerprint is degenerate")
        return (vec / norm).astype(np.float32)


class ClipEmbeddingComputer(EmbeddingComputer):
    """
    CLIP image features (torch + transformers, loaded lazily).

    Usage:
        computer = ClipEmbeddingComputer("openai/clip-vit-base-patch32")
        if computer.available:
            vec = computer.compute(normalized.pixels, normalized.size)
    """

    def __init__(self, model_name: str = "openai/clip-vit-base-patch32", device: str = 'auto'):
        self.model_name = model_name
        self.name = f"clip:{model_name}"
        self._requested_device = device

        self._model = None
        self._processor = None
        self._torch = None
        self._device = None
        self._dimension: Optional[int] = None
        self._config_checked = False
        self._load_error: Optional[str] = None
        self._load_lock = threading.Lock()

        # Defer heavy imports to _load_model(); just check availability here
        self._available = False
        try:
            import importlib
            importlib.import_module("torch")
            importlib.import_module("transformers")
            self._available = True
        except ImportError:
            logger.warning("[ClipEmbeddingComputer] PyTorch/Transformers not available")

    @property
    def available(self) -> bool:
        return self._available

    @property
    def dimension(self) -> Optional[int]:
        """Projection size; read from the model config so weights need not be loaded."""
        if self._dimension is None and self._available and not self._config_checked:
            self._config_checked = True
            try:
                from transformers import CLIPConfig
                self._dimension = int(CLIPConfig.from_pretrained(self.model_name).projection_dim)
            except Exception as e:
                logger.warning(f"[ClipEmbeddingComputer] Could not read config for {self.model_name}: {e}")
        return self._dimension

    def _select_device(self, torch) -> str:
        if self._requested_device != 'auto':
            return self._requested_device
        if torch.cuda.is_available():
            return 'cuda'
        if getattr(torch.backends, 'mps', None) is not None and torch.backends.mps.is_available():
            return 'mps'
        return 'cpu'

    def _load_model(self):
        """Double-checked lazy load; a failed load is not retried on every photo."""
        if self._model is not None:
            return
        if self._load_error is not None:
            raise EmbeddingComputeError(self._load_error)
        if not self._available:
            raise EmbeddingComputeError("PyTorch/Transformers not available")

        with self._load_lock:
            if self._model is not None:
                return
            try:
                import torch
                from transformers import CLIPModel, CLIPProcessor

                device = self._select_device(torch)
                logger.info(f"[ClipEmbeddingComputer] Loading {self.model_name} on {device}")
                model = CLIPModel.from_pretrained(self.model_name).to(device)
                model.eval()

                self._processor = CLIPProcessor.from_pretrained(self.model_name)
                self._torch = torch
                self._device = device
                self._dimension = int(model.config.projection_dim)
                self._model = model
            except Exception as e:
                self._load_error = f"Failed to load CLIP model {self.model_name}: {e}"
                logger.error(f"[ClipEmbeddingComputer] {self._load_error}")
                raise EmbeddingComputeError(self._load_error) from e

            logger.info(f"[ClipEmbeddingComputer] Model ready on {self._device} (dim={self._dimension})")

    def compute(self, pixels: bytes, size: int) -> np.ndarray:
        self._load_model()
        image = Image.frombytes('RGB', (size, size), pixels)

        try:
            inputs = self._processor(images=image, return_tensors="pt")
            inputs = {k: v.to(self._device) for k, v in inputs.items()}
            with self._torch.no_grad():
                features = self._model.get_image_features(**inputs)
        except Exception as e:
            raise EmbeddingComputeError(f"CLIP inference failed: {e}") from e

        vec = features.cpu().numpy()[0].astype('float32')
        norm = float(np.linalg.norm(vec))
        if norm == 0.0 or not np.isfinite(norm):
            raise EmbeddingComputeError("CLIP returned a degenerate vector")
        return vec / norm
