"""
Network Base Class
==================

Abstract interface every inference engine implements.

Required Overrides:
    - ``load(definition_path, weights_path)`` classmethod -> Network
    - ``forward(batch, outputs)`` -> ``{layer name: activations}``

Structural queries (``layers``, ``index_of``, ``layer_channels``) are
answered from the parsed definition and are immutable once loaded, so a
network can be shared freely between extractors for concurrent reads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from cnnfeat.engines.definition import InputSpec, LayerSpec, NetDefinition


class Network(ABC):
    """A loaded network: definition + weights, ready for forward passes."""

    #: Whether ``forward`` may be called from several threads at once.
    supports_concurrent_forward: bool = False

    def __init__(self, definition: NetDefinition):
        self._definition = definition
        self._index = {layer.name: i for i, layer in enumerate(definition.layers)}
        self._channels = definition.channels()

    @classmethod
    @abstractmethod
    def load(cls, definition_path: Path, weights_path: Path) -> "Network":
        """Load a network from a definition file and a weights file."""
        ...

    @abstractmethod
    def forward(self, batch: np.ndarray, outputs: Sequence[str]) -> dict[str, np.ndarray]:
        """Run one forward pass.

        Parameters
        ----------
        batch : np.ndarray, shape (N, C, H, W), float32
            Preprocessed input images.
        outputs : sequence of str
            Names of the layers whose activations are returned.

        Returns
        -------
        dict[str, np.ndarray]
            ``(N, C, H', W')`` per layer, or ``(N, C)`` for fully-connected layers.
        """
        ...

    @property
    def definition(self) -> NetDefinition:
        return self._definition

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def input_spec(self) -> InputSpec:
        return self._definition.input

    @property
    def layers(self) -> list[LayerSpec]:
        return self._definition.layers

    def index_of(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def layer_channels(self, index: int) -> int:
        return self._channels[index]
