"""
Extractor Registry
==================

Factory for creating ``FeatureExtractor`` instances from config dicts.

Design Principles:
    - Maps extractor type -> concrete class via lazy imports
    - ``create_extractor(config)`` for raw dict construction
    - ``create_extractor_from_config(cfg)`` for the pydantic config
    - ``register_extractor()`` allows third-party extensions at runtime

Usage::

    from cnnfeat.extractors.registry import create_extractor

    ext = create_extractor({
        "type": "cnn",
        "engine": "torch",
        "netFile": "nets/toy.yaml",
        "weightsFile": "nets/toy.pth",
        "layerName": "conv3",
    })
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

from cnnfeat.extractors.base import FeatureExtractor
from cnnfeat.utils.logging import get_logger

if TYPE_CHECKING:
    from cnnfeat.config import ExtractorConfig

logger = get_logger(__name__)

# Registry of extractor type -> (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "cnn": ("cnnfeat.extractors.cnn", "CNNFeatureExtractor"),
}

# Config keys consumed by the constructor rather than applied as options
_CONSTRUCTOR_KEYS = ("engine", "cache")


def list_extractors() -> list[str]:
    """Return all registered extractor types."""
    return list(_REGISTRY.keys())


def register_extractor(name: str, module_path: str, class_name: str) -> None:
    """Register a custom extractor type.

    Parameters
    ----------
    name : str
        Extractor type (used in YAML config).
    module_path : str
        Dotted Python module path.
    class_name : str
        Class name within the module.
    """
    _REGISTRY[name] = (module_path, class_name)
    logger.info("Registered extractor: %s -> %s.%s", name, module_path, class_name)


def create_extractor(config: dict[str, Any]) -> FeatureExtractor:
    """Create a FeatureExtractor from a config dictionary.

    Parameters
    ----------
    config : dict
        Must contain a 'type' key.  ``engine``/``cache`` go to the
        constructor; all other keys are options applied in the
        extractor's canonical order.

    Returns
    -------
    FeatureExtractor

    Raises
    ------
    ValueError
        If the type is missing or not registered.
    UnknownParameterError
        If a key is not an option of the extractor.
    """
    config = dict(config)
    kind = config.pop("type", None)

    if kind is None:
        raise ValueError(f"Extractor config missing 'type' key. Available: {list_extractors()}")

    if kind not in _REGISTRY:
        raise ValueError(
            f"Unknown extractor type: '{kind}'. "
            f"Available: {list_extractors()}. "
            f"Register custom extractors with register_extractor()."
        )

    module_path, class_name = _REGISTRY[kind]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)

    kwargs = {k: config.pop(k) for k in _CONSTRUCTOR_KEYS if k in config}
    logger.info("Creating extractor: type=%s, %s", kind, config)
    return cls.from_params(config, **kwargs)


def create_extractor_from_config(extractor_config: "ExtractorConfig", **kwargs: Any) -> FeatureExtractor:
    """Create a FeatureExtractor from the ``extractor`` section of the config."""
    return create_extractor(
        {
            "type": extractor_config.type,
            "engine": extractor_config.engine,
            **extractor_config.params.to_options(),
            **kwargs,
        }
    )
