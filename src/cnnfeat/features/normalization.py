"""
Feature Normalization
=====================

Per-channel scaling and PCA projection applied to concatenated cell
features, plus readers/writers for their parameter files.

File formats::

    scales   text, one float per line (maximum magnitude of each raw channel)
    pca      int32 R, int32 C, then R float32 (mean m), then R*C float32
             (matrix A, row-major); a feature c becomes A^T (c - m)

Both are validated against the number of channels produced by the
selected layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from cnnfeat.errors import ConfigurationError
from cnnfeat.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Scales
# ---------------------------------------------------------------------------


def load_scales(path: str | Path, expected: Optional[int] = None) -> np.ndarray:
    """Read a scales file.

    Raises
    ------
    ConfigurationError
        If the file is missing, malformed, negative, or has the wrong length.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Scales file not found: {path}")
    try:
        scales = np.loadtxt(path, dtype=np.float32, ndmin=1)
    except ValueError as e:
        raise ConfigurationError(f"Scales file {path} is malformed: {e}") from e
    if scales.ndim != 1:
        raise ConfigurationError(f"Scales file {path} must contain one value per line")
    if expected is not None and scales.shape[0] != expected:
        raise ConfigurationError(
            f"Scales file {path} has {scales.shape[0]} values, expected {expected} "
            f"(one per output channel)"
        )
    if not np.all(np.isfinite(scales)) or np.any(scales < 0):
        raise ConfigurationError(f"Scales file {path} contains negative or non-finite values")
    logger.info("scales | file=%s channels=%d", path.name, scales.shape[0])
    return scales


def write_scales(path: str | Path, scales: np.ndarray) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(path, np.asarray(scales, dtype=np.float32).reshape(-1), fmt="%.9g")
    return path


def apply_scales(features: np.ndarray, scales: np.ndarray) -> np.ndarray:
    """Divide the last axis of ``features`` by ``scales``.

    Channels with a scale of 0 are mapped to 0.
    """
    inv = np.zeros_like(scales, dtype=np.float32)
    np.divide(1.0, scales, out=inv, where=scales > 0)
    return features * inv


# ---------------------------------------------------------------------------
# PCA
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class PCAParams:
    """Mean feature vector ``m`` (R,) and projection matrix ``A`` (R, C)."""

    mean: np.ndarray
    transform: np.ndarray

    def __post_init__(self):
        if self.transform.ndim != 2 or self.mean.shape != (self.transform.shape[0],):
            raise ValueError(
                f"PCA mean {self.mean.shape} does not match matrix {self.transform.shape}"
            )

    @property
    def input_dim(self) -> int:
        return self.transform.shape[0]

    @property
    def output_dim(self) -> int:
        return self.transform.shape[1]

    def project(self, features: np.ndarray) -> np.ndarray:
        """``A^T (c - m)`` for every feature vector on the last axis."""
        shape = features.shape[:-1]
        flat = features.reshape(-1, self.input_dim)
        out = (flat - self.mean) @ self.transform
        return out.reshape(*shape, self.output_dim).astype(np.float32, copy=False)


def load_pca(path: str | Path, expected: Optional[int] = None) -> PCAParams:
    """Read a PCA parameter file.

    Raises
    ------
    ConfigurationError
        If the file is missing, truncated/oversized, or ``R`` does not
        equal ``expected``.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"PCA file not found: {path}")
    with open(path, "rb") as f:
        header = np.fromfile(f, dtype=np.int32, count=2)
        payload = np.fromfile(f, dtype=np.float32)
    if header.shape[0] != 2:
        raise ConfigurationError(f"PCA file {path} is too short to hold its header")
    rows, cols = int(header[0]), int(header[1])
    if rows <= 0 or cols <= 0:
        raise ConfigurationError(f"PCA file {path} has invalid dimensions {rows}x{cols}")
    if payload.shape[0] != rows + rows * cols:
        raise ConfigurationError(
            f"PCA file {path} holds {payload.shape[0]} values, expected "
            f"{rows + rows * cols} for a {rows}x{cols} matrix plus mean"
        )
    if expected is not None and rows != expected:
        raise ConfigurationError(
            f"PCA file {path} expects {rows}-dimensional features, layers produce {expected}"
        )
    params = PCAParams(mean=payload[:rows].copy(), transform=payload[rows:].reshape(rows, cols).copy())
    logger.info("pca | file=%s %d -> %d", path.name, rows, cols)
    return params


def write_pca(path: str | Path, params: PCAParams) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        np.asarray(params.transform.shape, dtype=np.int32).tofile(f)
        np.asarray(params.mean, dtype=np.float32).tofile(f)
        np.asarray(params.transform, dtype=np.float32).tofile(f)
    return path
