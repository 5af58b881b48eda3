"""
Layer Geometry Analyzer
=======================

Static analysis of a network's layer graph.  For every layer selected for
extraction it derives how many input pixels one output cell spans
(``cell size``) and how many pixels at each image edge produce no output
because of unpadded convolutions or pooling (``border size``).

Core Algorithm::

    for each selected layer L:
        chain = layers from the network input up to L (following bottoms)
        cell, border = (1, 1), (0, 0)
        for layer in chain:
            border += ((kernel - 1) // 2 - pad) * cell     clamped to >= 0
            cell   *= stride

The border increment is weighted by the cell size *before* the layer:
a layer's kernel reaches ``(kernel - 1) // 2`` of its own input cells
past the cell centre, and each of those spans ``cell`` input pixels.

Layers other than convolution and pooling are pass-throughs
(kernel 1, stride 1, pad 0).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple, Sequence

from cnnfeat.errors import ConfigurationError
from cnnfeat.utils.logging import get_logger

if TYPE_CHECKING:
    from cnnfeat.engines.base import Network
    from cnnfeat.engines.definition import LayerSpec

logger = get_logger(__name__)


class Size(NamedTuple):
    """Width/height pair (x, y) in pixels or cells."""

    width: int
    height: int

    @classmethod
    def square(cls, n: int) -> "Size":
        return cls(n, n)

    def __str__(self) -> str:
        return f"({self.width}, {self.height})"


class LayerKind(Enum):
    CONVOLUTION = "conv"
    POOLING = "pool"
    OTHER = "other"


@dataclass(frozen=True)
class LayerGeometryParams:
    """Geometric facts about one layer.

    Every kind is evaluated by the same accumulation formula; for
    ``LayerKind.OTHER`` the defaults make the layer an identity.
    """

    kind: LayerKind = LayerKind.OTHER
    kernel_size: Size = Size(1, 1)
    padding: Size = Size(0, 0)
    stride: Size = Size(1, 1)

    @classmethod
    def from_layer(cls, layer: "LayerSpec") -> "LayerGeometryParams":
        kind = {
            "conv": LayerKind.CONVOLUTION,
            "pool": LayerKind.POOLING,
        }.get(layer.type, LayerKind.OTHER)
        if kind is LayerKind.OTHER:
            return cls()
        return cls(kind, layer.kernel_xy, layer.pad_xy, layer.stride_xy)


@dataclass(frozen=True)
class LayerGeometry:
    """Resolved layer selection with per-layer geometry.

    Attributes
    ----------
    layer_indices : tuple[int, ...]
        Indices of the selected layers, in network order.
    layer_names : tuple[str, ...]
        Names of the selected layers (same order).
    cell_sizes, border_sizes : tuple[Size, ...]
        Per-layer geometry relative to the network input.
    layer_channels : tuple[int, ...]
        Channel count of each selected layer.
    """

    layer_indices: tuple[int, ...]
    layer_names: tuple[str, ...]
    cell_sizes: tuple[Size, ...]
    border_sizes: tuple[Size, ...]
    layer_channels: tuple[int, ...]

    @property
    def output_channels(self) -> int:
        return sum(self.layer_channels)

    @property
    def cell_size(self) -> Size:
        return self.cell_sizes[0]

    @property
    def border_size(self) -> Size:
        return Size(
            max(b.width for b in self.border_sizes),
            max(b.height for b in self.border_sizes),
        )

    def cells_in(self, pixels: Size) -> Size:
        """Number of whole cells an input of ``pixels`` yields (floored, >= 0)."""
        cell, border = self.cell_size, self.border_size
        return Size(
            max(0, (pixels.width - 2 * border.width) // cell.width),
            max(0, (pixels.height - 2 * border.height) // cell.height),
        )

    def cell_offsets(self) -> tuple[Size, ...]:
        """Cells to crop from the top-left of each layer's grid.

        Layers with a smaller border start earlier in the image; dropping
        these leading cells aligns every grid with the one of the layer
        with the largest border.
        """
        border = self.border_size
        cell = self.cell_size
        return tuple(
            Size(
                (border.width - b.width) // cell.width,
                (border.height - b.height) // cell.height,
            )
            for b in self.border_sizes
        )


def accumulate(chain: Sequence[LayerGeometryParams]) -> tuple[Size, Size]:
    """Fold a chain of layers (input first) into ``(cell_size, border_size)``."""
    cell_x, cell_y = 1, 1
    border_x, border_y = 0, 0
    for p in chain:
        border_x = max(0, border_x + ((p.kernel_size.width - 1) // 2 - p.padding.width) * cell_x)
        border_y = max(0, border_y + ((p.kernel_size.height - 1) // 2 - p.padding.height) * cell_y)
        cell_x *= p.stride.width
        cell_y *= p.stride.height
    return Size(cell_x, cell_y), Size(border_x, border_y)


def layer_chain(network: "Network", index: int) -> list[int]:
    """Indices of the layers from the input up to and including ``index``.

    Walks backward along each layer's (first) bottom until the input is
    reached, then returns the path in forward order.
    """
    layers = network.layers
    chain = []
    current: int | None = index
    while current is not None:
        chain.append(current)
        bottom = layers[current].bottom
        current = network.index_of(bottom) if bottom is not None else None
    chain.reverse()
    return chain


def default_layer(network: "Network") -> int:
    """Last convolutional layer before the first fully-connected layer."""
    layers = network.layers
    end = next((i for i, l in enumerate(layers) if l.type == "fc"), len(layers))
    for i in range(end - 1, -1, -1):
        if layers[i].type == "conv":
            return i
    for i in range(len(layers) - 1, -1, -1):
        if layers[i].type == "conv":
            return i
    raise ConfigurationError("Network has no convolutional layer to extract features from")


def parse_layer_names(value: str) -> list[str]:
    return [n.strip() for n in value.split(",") if n.strip()]


def resolve_layers(network: "Network", names: Sequence[str]) -> list[int]:
    """Map layer names to indices in network order.

    Unknown names are skipped with a warning; if none resolve, the default
    layer (see ``default_layer``) is used.
    """
    indices = set()
    for name in names:
        idx = network.index_of(name)
        if idx is None:
            logger.warning("geometry | unknown layer '%s' ignored", name)
        else:
            indices.add(idx)
    if not indices:
        idx = default_layer(network)
        if names:
            logger.warning(
                "geometry | none of %s found, falling back to '%s'",
                list(names),
                network.layers[idx].name,
            )
        indices.add(idx)
    return sorted(indices)


def compute_geometry(network: "Network", layer_names: Sequence[str]) -> LayerGeometry:
    """Resolve ``layer_names`` and derive their cell and border sizes.

    Parameters
    ----------
    network : Network
        Loaded network.
    layer_names : sequence of str
        Requested layers, in any order.  Empty selects the default layer.

    Returns
    -------
    LayerGeometry

    Raises
    ------
    ConfigurationError
        If the selected layers do not share a common cell size, or the
        network has no layer to fall back to.
    """
    indices = resolve_layers(network, layer_names)
    layers = network.layers
    params = [LayerGeometryParams.from_layer(l) for l in layers]

    cell_sizes, border_sizes = [], []
    for idx in indices:
        cell, border = accumulate([params[i] for i in layer_chain(network, idx)])
        cell_sizes.append(cell)
        border_sizes.append(border)

    if len(set(cell_sizes)) > 1:
        detail = ", ".join(
            f"{layers[i].name}={c}" for i, c in zip(indices, cell_sizes)
        )
        raise ConfigurationError(
            f"Selected layers have different cell sizes and cannot be concatenated: {detail}"
        )

    geometry = LayerGeometry(
        layer_indices=tuple(indices),
        layer_names=tuple(layers[i].name for i in indices),
        cell_sizes=tuple(cell_sizes),
        border_sizes=tuple(border_sizes),
        layer_channels=tuple(network.layer_channels(i) for i in indices),
    )
    logger.info(
        "geometry | layers=%s cell=%s border=%s channels=%d",
        ",".join(geometry.layer_names),
        geometry.cell_size,
        geometry.border_size,
        geometry.output_channels,
    )
    return geometry
