"""
Network Loader
==============

Turns configured file paths into a ready-to-run ``Network`` (through the
cache) and parses the optional channel mean.

Mean file formats:
    - Text with exactly three numbers (one per channel, in the network's
      input channel order)
    - NumPy ``.npy`` mean image, ``(H, W, 3)`` or ``(3, H, W)``; averaged
      over height and width to three values
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from cnnfeat.engines.base import Network
from cnnfeat.engines.registry import get_engine
from cnnfeat.errors import ConfigurationError, LoadFailure
from cnnfeat.network.cache import NetworkCache, cache_key, default_cache
from cnnfeat.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class ChannelMean:
    """Mean subtracted from every input image.

    Exactly one of ``values`` (per-channel scalars, shape ``(C,)``) and
    ``image`` (full mean image, shape ``(H, W, C)``) is set.  Both are in
    the network's input channel order.
    """

    values: Optional[np.ndarray] = None
    image: Optional[np.ndarray] = None

    def __post_init__(self):
        if (self.values is None) == (self.image is None):
            raise ValueError("ChannelMean needs exactly one of values or image")

    @classmethod
    def from_image(cls, image: np.ndarray, average: bool = True) -> "ChannelMean":
        image = np.asarray(image, dtype=np.float32)
        if image.ndim != 3:
            raise ConfigurationError(f"Mean image must be 3-D, got shape {image.shape}")
        if image.shape[0] in (1, 3) and image.shape[2] not in (1, 3):
            image = image.transpose(1, 2, 0)
        if average:
            return cls(values=image.mean(axis=(0, 1)))
        return cls(image=image)

    @property
    def is_image(self) -> bool:
        return self.image is not None


def _read_text_triple(path: Path) -> Optional[np.ndarray]:
    """Three whitespace-separated numbers, or None if the file is not that."""
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return None
    try:
        values = [float(tok) for tok in text.split()]
    except ValueError:
        return None
    if len(values) != 3:
        return None
    return np.asarray(values, dtype=np.float32)


def load_mean(path: str | Path) -> ChannelMean:
    """Load a channel mean from a text triple or a ``.npy`` mean image.

    Raises
    ------
    ConfigurationError
        If the file is missing or is neither format.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Mean file not found: {path}")

    values = _read_text_triple(path)
    if values is not None:
        logger.info("mean | file=%s values=%s", path.name, values.tolist())
        return ChannelMean(values=values)

    try:
        image = np.load(path, allow_pickle=False)
    except (OSError, ValueError) as e:
        raise ConfigurationError(
            f"Mean file {path} is neither a 3-value text file nor a .npy mean image"
        ) from e
    mean = ChannelMean.from_image(image)
    logger.info("mean | file=%s image=%s values=%s", path.name, image.shape, mean.values.tolist())
    return mean


def load_network(
    engine: str,
    definition_path: str | Path,
    weights_path: str | Path,
    cache: Optional[NetworkCache] = None,
) -> Network:
    """Load (or reuse) the network for a definition/weights pair.

    Parameters
    ----------
    engine : str
        Registered engine name (see ``cnnfeat.engines.registry``).
    definition_path, weights_path : str | Path
        Network definition and trained weights.
    cache : NetworkCache or None
        Cache to share the network through.  Defaults to the process-wide cache.

    Returns
    -------
    Network

    Raises
    ------
    ConfigurationError
        If either path is unset or the engine is unknown.
    LoadFailure
        If a file is missing or the engine fails to load the network.
    """
    if not definition_path or not weights_path:
        raise ConfigurationError("Both netFile and weightsFile are required to load a network")
    try:
        engine_cls = get_engine(engine)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    definition_path = Path(definition_path)
    weights_path = Path(weights_path)
    for label, p in (("Network definition", definition_path), ("Weights file", weights_path)):
        if not p.is_file():
            raise LoadFailure(f"{label} not found: {p}")

    cache = cache if cache is not None else default_cache

    def _load() -> Network:
        logger.info(
            "load | engine=%s net=%s weights=%s",
            engine,
            definition_path.name,
            weights_path.name,
        )
        try:
            return engine_cls.load(definition_path, weights_path)
        except Exception as e:
            raise LoadFailure(
                f"Could not load network {definition_path} with weights {weights_path}: {e}"
            ) from e

    return cache.acquire(cache_key(engine, definition_path, weights_path), _load)
