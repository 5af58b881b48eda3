"""
Normalization Calibration
=========================

Estimates the parameters consumed by ``scalesFile`` and ``pcaFile`` from a
set of sample images.

Core Algorithm::

    scales = max over all cells of all images of |raw feature|   (per channel)
    pca    = sklearn PCA fitted on the scaled (unprojected) cell features;
             m = pca.mean_, A = pca.components_.T   so  A^T (c - m) = pca.transform(c)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

import numpy as np
from sklearn.decomposition import PCA

from cnnfeat.errors import ConfigurationError
from cnnfeat.features.normalization import PCAParams
from cnnfeat.image import ImageLike
from cnnfeat.utils.logging import get_logger

if TYPE_CHECKING:
    from cnnfeat.extractors.cnn import CNNFeatureExtractor

logger = get_logger(__name__)


def compute_scales(extractor: "CNNFeatureExtractor", images: Iterable[ImageLike]) -> np.ndarray:
    """Per-channel maximum magnitude of the raw features over ``images``."""
    scales: Optional[np.ndarray] = None
    n_images = 0
    for image in images:
        feat = extractor.extract(image, scale=False, project=False)
        n_images += 1
        if feat.shape[0] == 0 or feat.shape[1] == 0:
            continue
        img_max = np.abs(feat).reshape(-1, feat.shape[-1]).max(axis=0)
        scales = img_max if scales is None else np.maximum(scales, img_max)
    if scales is None:
        raise ConfigurationError(f"No feature cells extracted from {n_images} image(s)")
    logger.info("calibration | scales from %d images, %d channels", n_images, scales.shape[0])
    return scales.astype(np.float32)


def fit_pca(
    extractor: "CNNFeatureExtractor",
    images: Iterable[ImageLike],
    n_components: int,
    max_cells: Optional[int] = None,
    seed: int = 42,
) -> PCAParams:
    """Fit a PCA projection on scaled cell features.

    Parameters
    ----------
    extractor : CNNFeatureExtractor
        Configured extractor (scales, if set, are applied first).
    images : iterable of ImageLike
        Sample images.
    n_components : int
        Output dimensionality ``C``.
    max_cells : int or None
        Randomly subsample at most this many cells before fitting.
    seed : int
        Seed for subsampling.

    Returns
    -------
    PCAParams
    """
    chunks = []
    for image in images:
        feat = extractor.extract(image, scale=True, project=False)
        chunks.append(feat.reshape(-1, feat.shape[-1]))
    if not chunks:
        raise ConfigurationError("No images given for PCA fitting")
    cells = np.concatenate(chunks, axis=0)
    if max_cells is not None and cells.shape[0] > max_cells:
        rng = np.random.default_rng(seed)
        cells = cells[rng.choice(cells.shape[0], size=max_cells, replace=False)]
    if n_components > min(cells.shape):
        raise ConfigurationError(
            f"Cannot fit {n_components} components on {cells.shape[0]} cells "
            f"with {cells.shape[1]} channels"
        )

    pca = PCA(n_components=n_components, random_state=seed)
    pca.fit(cells)
    logger.info(
        "calibration | pca %d -> %d on %d cells, explained variance=%.3f",
        cells.shape[1],
        n_components,
        cells.shape[0],
        float(pca.explained_variance_ratio_.sum()),
    )
    return PCAParams(
        mean=pca.mean_.astype(np.float32),
        transform=np.ascontiguousarray(pca.components_.T, dtype=np.float32),
    )
