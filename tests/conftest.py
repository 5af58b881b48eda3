"""Shared pytest fixtures for cnnfeat tests.

Provides a structural stub engine (``stub``) that knows every layer's
output shape but fills activations with a position code instead of
running convolutions:

    activation[c, y, x] = 10000 * c + 100 * y + x
"""

from __future__ import annotations

import time
from pathlib import Path

import numpy as np
import pytest

from cnnfeat.engines.base import Network
from cnnfeat.engines.definition import load_definition
from cnnfeat.engines.registry import register_engine
from cnnfeat.extractors.cnn import CNNFeatureExtractor
from cnnfeat.network.cache import NetworkCache


class StubNetwork(Network):
    """Shape-only engine with a load counter."""

    load_count = 0
    load_delay = 0.0

    @classmethod
    def load(cls, definition_path, weights_path):
        if cls.load_delay:
            time.sleep(cls.load_delay)
        definition = load_definition(definition_path)
        if Path(weights_path).read_text().strip() == "corrupt":
            raise ValueError("weights do not match the definition")
        cls.load_count += 1
        return cls(definition)

    def output_shapes(self, height, width):
        shapes = {}
        for layer in self.layers:
            h, w = (height, width) if layer.bottom is None else shapes[layer.bottom]
            if layer.type in ("conv", "pool"):
                k, s, p = layer.kernel_xy, layer.stride_xy, layer.pad_xy
                h = (h + 2 * p.height - k.height) // s.height + 1
                w = (w + 2 * p.width - k.width) // s.width + 1
            shapes[layer.name] = (h, w)
        return shapes

    def forward(self, batch, outputs):
        self.last_batch = batch
        n, _, height, width = batch.shape
        shapes = self.output_shapes(height, width)
        result = {}
        for name in outputs:
            idx = self.index_of(name)
            channels = self.layer_channels(idx)
            if self.layers[idx].type == "fc":
                result[name] = np.zeros((n, channels), dtype=np.float32)
                continue
            h, w = shapes[name]
            c, y, x = np.meshgrid(np.arange(channels), np.arange(h), np.arange(w), indexing="ij")
            act = (10000 * c + 100 * y + x).astype(np.float32)
            result[name] = np.broadcast_to(act, (n, channels, h, w)).copy()
        return result


register_engine("stub", __name__, "StubNetwork")


# Unpadded conv 3x3 -> pool 2x2/2
TOY_SINGLE = """
name: toy-single
input: {channels: 3, channel_order: bgr}
layers:
  - {name: conv1, type: Convolution, num_output: 4, kernel_size: 3}
  - {name: pool1, type: Pooling, pool: max, kernel_size: 2, stride: 2}
"""

# Two conv/pool stages followed by a fully-connected layer
TOY_MULTI = """
name: toy-multi
layers:
  - {name: conv1, type: conv, num_output: 4, kernel_size: 3}
  - {name: relu1, type: relu}
  - {name: pool1, type: pool, kernel_size: 2, stride: 2}
  - {name: conv2, type: conv, num_output: 6, kernel_size: 3, pad: 1}
  - {name: relu2, type: relu}
  - {name: pool2, type: pool, kernel_size: 2, stride: 2}
  - {name: fc3, type: fc, num_output: 10}
"""

# Odd kernels: layers sharing a cell size but not a border
TOY_DEEP = """
name: toy-deep
input: {channel_order: rgb}
layers:
  - {name: c1, type: conv, num_output: 4, kernel_size: 5}
  - {name: p1, type: pool, kernel_size: 3, stride: 2}
  - {name: c2, type: conv, num_output: 6, kernel_size: 3}
"""


def write_net(directory: Path, name: str, text: str, weights: str = "ok") -> tuple[Path, Path]:
    definition = directory / f"{name}.yaml"
    definition.write_text(text)
    weights_path = directory / f"{name}.weights"
    weights_path.write_text(weights)
    return definition, weights_path


@pytest.fixture()
def rng():
    """Deterministic random generator."""
    return np.random.default_rng(42)


@pytest.fixture()
def stub_engine():
    """The stub engine class with its load counter reset."""
    StubNetwork.load_count = 0
    StubNetwork.load_delay = 0.0
    yield StubNetwork
    StubNetwork.load_delay = 0.0


@pytest.fixture()
def cache():
    """Private network cache, isolated from the process-wide one."""
    return NetworkCache()


@pytest.fixture()
def toy_single(tmp_path):
    return write_net(tmp_path, "toy_single", TOY_SINGLE)


@pytest.fixture()
def toy_multi(tmp_path):
    return write_net(tmp_path, "toy_multi", TOY_MULTI)


@pytest.fixture()
def toy_deep(tmp_path):
    return write_net(tmp_path, "toy_deep", TOY_DEEP)


@pytest.fixture()
def make_extractor(stub_engine, cache):
    """Factory: ``make_extractor((net, weights), layerName=..., ...)``."""

    def _make(paths, **params):
        net, weights = paths
        options = {"netFile": str(net), "weightsFile": str(weights), **params}
        return CNNFeatureExtractor.from_params(options, engine="stub", cache=cache)

    return _make
