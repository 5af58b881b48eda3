"""
PyTorch Engine
==============

Runs YAML network definitions with PyTorch.

Design Principles:
    - One ``nn.Module`` per definition layer, kept in an ``nn.ModuleDict``
      so weight files are plain ``state_dict`` checkpoints
    - Strict weight loading: missing keys or shape mismatches fail the load
    - Inference only: ``eval()`` mode, ``torch.no_grad()``, dropout is identity
    - Forward passes on a shared module are safe to run concurrently

Usage::

    net = TorchNetwork.load(Path("toy.yaml"), Path("toy.pth"))
    acts = net.forward(batch, ["conv3"])
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np
import torch
from torch import nn

from cnnfeat.engines.base import Network
from cnnfeat.engines.definition import LayerSpec, NetDefinition, load_definition
from cnnfeat.utils.logging import get_logger

logger = get_logger(__name__)


def _module_key(name: str) -> str:
    # ModuleDict keys may not contain dots
    return name.replace(".", "_")


def _build_layer(layer: LayerSpec, in_channels: int) -> nn.Module:
    k, s, p = layer.kernel_xy, layer.stride_xy, layer.pad_xy
    if layer.type == "conv":
        return nn.Conv2d(
            in_channels,
            layer.num_output,
            kernel_size=(k.height, k.width),
            stride=(s.height, s.width),
            padding=(p.height, p.width),
            groups=layer.group,
            bias=layer.bias,
        )
    if layer.type == "pool":
        pool_cls = nn.MaxPool2d if layer.pool == "max" else nn.AvgPool2d
        return pool_cls(
            kernel_size=(k.height, k.width),
            stride=(s.height, s.width),
            padding=(p.height, p.width),
        )
    if layer.type == "fc":
        return nn.LazyLinear(layer.num_output, bias=layer.bias)
    if layer.type == "relu":
        return nn.ReLU()
    if layer.type == "lrn":
        return nn.LocalResponseNorm(layer.local_size, alpha=layer.alpha, beta=layer.beta, k=layer.k)
    if layer.type == "dropout":
        return nn.Identity()
    if layer.type == "softmax":
        return nn.Softmax(dim=1)
    raise ValueError(f"Layer '{layer.name}': type '{layer.type}' is not supported by the torch engine")


class DefinitionModule(nn.Module):
    """``nn.Module`` executing a ``NetDefinition`` layer by layer."""

    def __init__(self, definition: NetDefinition):
        super().__init__()
        self.definition = definition
        channels = definition.channels()
        index = {layer.name: i for i, layer in enumerate(definition.layers)}
        self.layers = nn.ModuleDict()
        for layer in definition.layers:
            in_ch = definition.input.channels if layer.bottom is None else channels[index[layer.bottom]]
            self.layers[_module_key(layer.name)] = _build_layer(layer, in_ch)

    def forward(self, x: torch.Tensor, outputs: Sequence[str]) -> dict[str, torch.Tensor]:
        wanted = set(outputs)
        blobs: dict[str, torch.Tensor] = {}
        result: dict[str, torch.Tensor] = {}
        for layer in self.definition.layers:
            inp = x if layer.bottom is None else blobs[layer.bottom]
            if layer.type == "fc" and inp.ndim > 2:
                inp = torch.flatten(inp, 1)
            out = self.layers[_module_key(layer.name)](inp)
            blobs[layer.name] = out
            if layer.name in wanted:
                result[layer.name] = out
                if len(result) == len(wanted):
                    break
        return result


class TorchNetwork(Network):
    """PyTorch-backed ``Network``.

    Parameters
    ----------
    definition : NetDefinition
        Parsed network definition.
    module : DefinitionModule
        Module built from ``definition`` with weights loaded.
    device : str
        Device for inference.
    """

    supports_concurrent_forward = True

    def __init__(self, definition: NetDefinition, module: DefinitionModule, device: str = "cpu"):
        super().__init__(definition)
        module.eval()
        module.to(device)
        self._module = module
        self._device = device

    @classmethod
    def load(cls, definition_path: Path, weights_path: Path, device: str = "cpu") -> "TorchNetwork":
        definition = load_definition(definition_path)
        module = DefinitionModule(definition)
        state_dict = torch.load(str(weights_path), map_location=device, weights_only=True)
        # Handle common state_dict wrappers
        if "state_dict" in state_dict:
            state_dict = state_dict["state_dict"]
        module.load_state_dict(state_dict, strict=True)
        logger.info(
            "TorchNetwork: net=%s, layers=%d, device=%s",
            definition.name,
            len(definition.layers),
            device,
        )
        return cls(definition, module, device)

    @property
    def module(self) -> DefinitionModule:
        return self._module

    def forward(self, batch: np.ndarray, outputs: Sequence[str]) -> dict[str, np.ndarray]:
        x = torch.from_numpy(np.ascontiguousarray(batch, dtype=np.float32)).to(self._device)
        with torch.no_grad():
            acts = self._module(x, outputs)
        return {name: t.cpu().numpy() for name, t in acts.items()}
