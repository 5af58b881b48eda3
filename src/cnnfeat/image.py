"""
Image helpers.

Images are handled as ``(H, W, C)`` arrays in RGB order (``C`` is 1 for
grayscale).  Decoding files is delegated to Pillow.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image

ImageLike = Union[np.ndarray, Image.Image]

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".ppm", ".pgm")


def load_image(path: str | Path) -> np.ndarray:
    """Decode an image file into an ``(H, W, 3)`` uint8 RGB array."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Image not found: {path}")
    with Image.open(path) as img:
        return np.asarray(img.convert("RGB"))


def as_array(image: ImageLike) -> np.ndarray:
    """Coerce a PIL image or array into an ``(H, W, C)`` array."""
    if isinstance(image, Image.Image):
        if image.mode not in ("L", "RGB"):
            image = image.convert("RGB")
        image = np.asarray(image)
    arr = np.asarray(image)
    if arr.ndim == 2:
        arr = arr[:, :, np.newaxis]
    if arr.ndim != 3 or arr.shape[2] not in (1, 3):
        raise ValueError(f"Expected an (H, W), (H, W, 1) or (H, W, 3) image, got shape {arr.shape}")
    return arr


def list_images(image_dir: str | Path, extensions: tuple[str, ...] = IMAGE_EXTENSIONS) -> list[Path]:
    """Sorted image files directly inside ``image_dir``."""
    image_dir = Path(image_dir)
    if not image_dir.is_dir():
        raise FileNotFoundError(f"Image directory not found: {image_dir}")
    paths = [p for p in image_dir.iterdir() if p.suffix.lower() in extensions and p.is_file()]
    paths.sort()
    if not paths:
        raise ValueError(f"No images found in {image_dir} with extensions {extensions}")
    return paths
