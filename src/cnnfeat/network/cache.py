"""
Network Cache
=============

Process-wide registry of loaded networks shared between extractors.

Design Principles:
    - Entries are weak: the cache never keeps a network alive; the last
      extractor holding it releases it and the next acquire reloads
    - Lookup-and-load runs under one lock, so concurrent acquisitions of
      the same key never load twice
    - A failed load leaves no entry behind
"""

from __future__ import annotations

import threading
import weakref
from pathlib import Path
from typing import Callable

from cnnfeat.engines.base import Network
from cnnfeat.utils.logging import get_logger

logger = get_logger(__name__)

CacheKey = tuple[str, str, str]


def cache_key(engine: str, definition_path: str | Path, weights_path: str | Path) -> CacheKey:
    """Key for a (engine, definition, weights) triple with absolute paths."""
    return (
        engine,
        str(Path(definition_path).expanduser().resolve()),
        str(Path(weights_path).expanduser().resolve()),
    )


class NetworkCache:
    """Weakly-held mapping of ``CacheKey`` -> ``Network``."""

    def __init__(self):
        self._entries: weakref.WeakValueDictionary[CacheKey, Network] = weakref.WeakValueDictionary()
        self._lock = threading.Lock()

    def acquire(self, key: CacheKey, load: Callable[[], Network]) -> Network:
        """Return the live network for ``key``, calling ``load()`` if there is none.

        Exceptions raised by ``load`` propagate unchanged and nothing is stored.
        """
        with self._lock:
            net = self._entries.get(key)
            if net is not None:
                logger.debug("cache | hit key=%s", key)
                return net
            logger.debug("cache | miss key=%s", key)
            net = load()
            self._entries[key] = net
            return net

    def __contains__(self, key: CacheKey) -> bool:
        return self._entries.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Forget all entries; current holders keep their networks."""
        with self._lock:
            self._entries.clear()


default_cache = NetworkCache()
