"""
Feature Assembler
=================

Runs the network on one image and turns the activations of the selected
layers into a ``(cells_y, cells_x, channels)`` feature grid.

Per cell::

    c = concat(activation[layer][:, y + offset_y, x + offset_x] for layer in layers)
    c = c / scales                   if scales are configured
    c = A^T (c - m)                  if PCA is configured

The assembler holds only immutable state, so ``extract`` may be called
from several threads when the network supports concurrent forward passes.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from cnnfeat.engines.base import Network
from cnnfeat.features.normalization import PCAParams, apply_scales
from cnnfeat.features.preprocess import Preprocessor
from cnnfeat.geometry import LayerGeometry, Size
from cnnfeat.image import ImageLike


def concatenate_layers(
    activations: list[np.ndarray], geometry: LayerGeometry, cells: Optional[Size] = None
) -> np.ndarray:
    """Stack per-layer ``(C, H, W)`` activations into one ``(H, W, sum C)`` grid.

    Each layer's grid is cropped by its cell offset (see
    ``LayerGeometry.cell_offsets``) and all grids are cut to the smallest
    common extent, and to ``cells`` if given.  Kernels or strides that
    do not divide the input leave an extra row/column past the cells the
    pixel geometry accounts for; the cut to ``cells`` removes it.
    """
    grids = []
    for act, off in zip(activations, geometry.cell_offsets()):
        if act.ndim == 1:
            act = act[:, np.newaxis, np.newaxis]
        grids.append(act[:, off.height:, off.width:])
    h = min(g.shape[1] for g in grids)
    w = min(g.shape[2] for g in grids)
    if cells is not None:
        h, w = min(h, cells.height), min(w, cells.width)
    stacked = np.concatenate([g[:, :h, :w] for g in grids], axis=0)
    return np.ascontiguousarray(stacked.transpose(1, 2, 0), dtype=np.float32)


class FeatureAssembler:
    """Image -> feature grid for one configured network and layer selection.

    Parameters
    ----------
    network : Network
        Loaded network.
    geometry : LayerGeometry
        Resolved layer selection.
    preprocessor : Preprocessor
        Input preparation for ``network``.
    scales : np.ndarray or None
        Per-channel maxima of the raw features.
    pca : PCAParams or None
        Dimensionality reduction applied after scaling.
    """

    def __init__(
        self,
        network: Network,
        geometry: LayerGeometry,
        preprocessor: Preprocessor,
        scales: Optional[np.ndarray] = None,
        pca: Optional[PCAParams] = None,
    ):
        self.network = network
        self.geometry = geometry
        self.preprocessor = preprocessor
        self.scales = scales
        self.pca = pca

    @property
    def num_features(self) -> int:
        if self.pca is not None:
            return self.pca.output_dim
        return self.geometry.output_channels

    def extract(self, image: ImageLike, scale: bool = True, project: bool = True) -> np.ndarray:
        """Compute the feature grid of ``image``.

        Parameters
        ----------
        image : ImageLike
            ``(H, W, C)`` RGB array or PIL image.
        scale : bool
            Apply the configured scales (if any).
        project : bool
            Apply the configured PCA (if any).  Ignored when ``scale`` is False.

        Returns
        -------
        np.ndarray, shape (cells_y, cells_x, D), float32
            ``(cells_y, cells_x)`` is ``geometry.cells_in`` of the network
            input size; inputs too small for one cell give an empty grid
            without running the network.
        """
        batch = self.preprocessor.prepare(image)
        cells = self.geometry.cells_in(Size(batch.shape[3], batch.shape[2]))
        if cells.width == 0 or cells.height == 0:
            shape = (cells.height, cells.width, self.geometry.output_channels)
            feat = np.zeros(shape, dtype=np.float32)
        else:
            names = self.geometry.layer_names
            acts = self.network.forward(batch, names)
            feat = concatenate_layers([acts[name][0] for name in names], self.geometry, cells)

        if scale and self.scales is not None:
            feat = apply_scales(feat, self.scales)
        if scale and project and self.pca is not None:
            feat = self.pca.project(feat)
        return feat
