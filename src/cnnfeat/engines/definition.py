"""
Network Definition Schema
=========================

Pydantic schema for YAML network definitions consumed by the engines.

Example::

    name: toynet
    input:
      channels: 3
      channel_order: bgr
    layers:
      - {name: conv1, type: Convolution, num_output: 16, kernel_size: 3}
      - {name: relu1, type: ReLU}
      - {name: pool1, type: Pooling, pool: max, kernel_size: 2, stride: 2}
      - {name: fc1, type: InnerProduct, num_output: 10}

Design Principles:
    - Caffe spellings (``Convolution``, ``InnerProduct``, ...) and short
      spellings (``conv``, ``fc``, ...) normalise to the same type
    - ``kernel_size`` / ``stride`` / ``pad`` take an int or ``[h, w]``
    - ``bottom`` defaults to the previous layer; the first layer reads the input
    - Unknown layer types are kept verbatim; engines decide what they can run
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from cnnfeat.geometry import Size

_TYPE_ALIASES = {
    "convolution": "conv",
    "conv": "conv",
    "conv2d": "conv",
    "pooling": "pool",
    "pool": "pool",
    "innerproduct": "fc",
    "inner_product": "fc",
    "fc": "fc",
    "linear": "fc",
    "relu": "relu",
    "lrn": "lrn",
    "dropout": "dropout",
    "softmax": "softmax",
}

# Layer types whose output channel count is their own ``num_output``.
PRODUCING_TYPES = ("conv", "fc")

IntPair = Union[int, tuple[int, int]]


def _pair(value: IntPair) -> Size:
    """``int`` or ``(h, w)`` -> ``Size(width, height)``."""
    if isinstance(value, int):
        return Size(value, value)
    h, w = value
    return Size(w, h)


class InputSpec(BaseModel):
    """Network input layout."""

    channels: int = Field(default=3, ge=1, description="Number of input channels")
    channel_order: Literal["rgb", "bgr"] = Field(
        default="bgr",
        description="Channel order expected by the network (Caffe models use BGR)",
    )


class LayerSpec(BaseModel):
    """Single layer of a network definition."""

    name: str
    type: str
    bottom: Optional[str] = None
    num_output: Optional[int] = Field(default=None, ge=1)
    kernel_size: IntPair = 1
    stride: IntPair = 1
    pad: IntPair = 0
    pool: Literal["max", "ave"] = "max"
    group: int = Field(default=1, ge=1)
    bias: bool = True
    local_size: int = 5
    alpha: float = 1e-4
    beta: float = 0.75
    k: float = 1.0

    model_config = {"extra": "forbid"}

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, v: str) -> str:
        v = str(v)
        return _TYPE_ALIASES.get(v.lower(), v.lower())

    @field_validator("kernel_size", "stride")
    @classmethod
    def _positive(cls, v: IntPair) -> IntPair:
        if min(_pair(v)) < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("pad")
    @classmethod
    def _non_negative(cls, v: IntPair) -> IntPair:
        if min(_pair(v)) < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def _needs_outputs(self) -> "LayerSpec":
        if self.type in PRODUCING_TYPES and self.num_output is None:
            raise ValueError(f"layer '{self.name}' of type '{self.type}' needs num_output")
        return self

    @property
    def kernel_xy(self) -> Size:
        return _pair(self.kernel_size)

    @property
    def stride_xy(self) -> Size:
        return _pair(self.stride)

    @property
    def pad_xy(self) -> Size:
        return _pair(self.pad)


class NetDefinition(BaseModel):
    """Complete network definition: input layout + ordered layers."""

    name: str = "net"
    input: InputSpec = Field(default_factory=InputSpec)
    layers: list[LayerSpec] = Field(..., min_length=1)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _link_layers(self) -> "NetDefinition":
        seen: set[str] = set()
        previous: Optional[str] = None
        for layer in self.layers:
            if layer.name in seen:
                raise ValueError(f"duplicate layer name '{layer.name}'")
            if layer.bottom is None:
                layer.bottom = previous
            elif layer.bottom not in seen:
                raise ValueError(
                    f"layer '{layer.name}' reads '{layer.bottom}', which is not an earlier layer"
                )
            seen.add(layer.name)
            previous = layer.name
        return self

    def channels(self) -> list[int]:
        """Output channel count of every layer, in order."""
        index = {}
        out: list[int] = []
        for i, layer in enumerate(self.layers):
            if layer.type in PRODUCING_TYPES:
                out.append(layer.num_output)
            elif layer.bottom is None:
                out.append(self.input.channels)
            else:
                out.append(out[index[layer.bottom]])
            index[layer.name] = i
        return out


def load_definition(path: str | Path) -> NetDefinition:
    """Parse and validate a YAML network definition.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    pydantic.ValidationError
        If the definition is structurally invalid.
    """
    path = Path(path)
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Network definition {path} is not a mapping")
    return NetDefinition(**raw)
