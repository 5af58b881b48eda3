"""
Engine Registry
===============

Maps engine names to ``Network`` implementations.

Design Principles:
    - Lazy imports so torch is only imported when the torch engine is used
    - ``register_engine()`` lets callers plug in other runtimes (or test stubs)

Usage::

    from cnnfeat.engines.registry import get_engine

    net = get_engine("torch").load(Path("toy.yaml"), Path("toy.pth"))
"""

from __future__ import annotations

import importlib

from cnnfeat.engines.base import Network
from cnnfeat.utils.logging import get_logger

logger = get_logger(__name__)

# Registry of engine name -> (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "torch": ("cnnfeat.engines.torch_engine", "TorchNetwork"),
}


def list_engines() -> list[str]:
    """Return all registered engine names."""
    return list(_REGISTRY.keys())


def register_engine(name: str, module_path: str, class_name: str) -> None:
    """Register an inference engine.

    Parameters
    ----------
    name : str
        Engine name (used in config and by extractors).
    module_path : str
        Dotted Python module path.
    class_name : str
        ``Network`` subclass within the module.
    """
    _REGISTRY[name] = (module_path, class_name)
    logger.info("Registered engine: %s -> %s.%s", name, module_path, class_name)


def get_engine(name: str) -> type[Network]:
    """Return the ``Network`` class registered under ``name``.

    Raises
    ------
    ValueError
        If no engine is registered under ``name``.
    """
    if name not in _REGISTRY:
        raise ValueError(
            f"Unknown engine: '{name}'. Available: {list_engines()}. "
            f"Register custom engines with register_engine()."
        )
    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
