"""Tests for network sharing (network/cache.py, network/loader.py).

Key properties:
  - extractors configured with the same files share one network
  - the cache holds networks weakly: once every holder is gone the next
    extractor reloads from disk
  - concurrent acquisitions of one key load once
  - failed loads leave no entry
"""

from __future__ import annotations

import gc
import threading
import weakref

import pytest

from cnnfeat.errors import ConfigurationError, LoadFailure
from cnnfeat.network.cache import NetworkCache, cache_key
from cnnfeat.network.loader import load_network

from conftest import TOY_MULTI, write_net


class TestSharing:
    def test_two_extractors_share_network(self, make_extractor, toy_multi, stub_engine):
        a = make_extractor(toy_multi)
        b = make_extractor(toy_multi, layerName="pool1")
        assert stub_engine.load_count == 1
        assert a.network is b.network

    def test_reload_after_all_holders_destroyed(self, make_extractor, toy_multi, stub_engine, cache):
        a = make_extractor(toy_multi)
        b = make_extractor(toy_multi)
        ref = weakref.ref(a.network)
        del a, b
        gc.collect()

        assert ref() is None
        assert len(cache) == 0

        c = make_extractor(toy_multi)
        assert stub_engine.load_count == 2
        assert c.network is not None

    def test_one_holder_keeps_entry_alive(self, make_extractor, toy_multi, stub_engine):
        a = make_extractor(toy_multi)
        b = make_extractor(toy_multi)
        del a
        gc.collect()
        c = make_extractor(toy_multi)
        assert stub_engine.load_count == 1
        assert c.network is b.network

    def test_different_weights_not_shared(self, make_extractor, tmp_path, stub_engine):
        first = write_net(tmp_path, "first", TOY_MULTI)
        second = write_net(tmp_path, "second", TOY_MULTI)
        a = make_extractor(first)
        b = make_extractor(second)
        assert stub_engine.load_count == 2
        assert a.network is not b.network


class TestNetworkCache:
    def test_relative_and_absolute_paths_share_key(self, toy_multi, monkeypatch):
        net, weights = toy_multi
        monkeypatch.chdir(net.parent)
        assert cache_key("stub", net.name, weights.name) == cache_key("stub", net, weights)

    def test_failed_load_not_retained(self, tmp_path, stub_engine, cache):
        net, weights = write_net(tmp_path, "bad", TOY_MULTI, weights="corrupt")
        with pytest.raises(LoadFailure, match="weights do not match"):
            load_network("stub", net, weights, cache)
        assert len(cache) == 0

        weights.write_text("ok")
        assert load_network("stub", net, weights, cache) is not None
        assert stub_engine.load_count == 1

    def test_concurrent_acquire_loads_once(self, toy_multi, stub_engine, cache):
        stub_engine.load_delay = 0.05
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(load_network("stub", *toy_multi, cache=cache))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert stub_engine.load_count == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)

    def test_clear_keeps_holders(self, toy_multi, stub_engine, cache):
        net = load_network("stub", *toy_multi, cache=cache)
        cache.clear()
        assert len(cache) == 0
        assert net.layers
        load_network("stub", *toy_multi, cache=cache)
        assert stub_engine.load_count == 2


class TestLoader:
    def test_missing_paths(self, cache):
        with pytest.raises(ConfigurationError, match="required"):
            load_network("stub", "", "weights.pth", cache)

    def test_missing_file(self, tmp_path, cache, stub_engine):
        with pytest.raises(LoadFailure, match="not found"):
            load_network("stub", tmp_path / "nope.yaml", tmp_path / "nope.pth", cache)

    def test_invalid_definition(self, tmp_path, cache, stub_engine):
        net, weights = write_net(tmp_path, "broken", "layers:\n  - {name: a, type: conv}\n")
        with pytest.raises(LoadFailure):
            load_network("stub", net, weights, cache)
        assert len(cache) == 0

    def test_unknown_engine(self, toy_multi, cache):
        with pytest.raises(ConfigurationError, match="Unknown engine"):
            load_network("caffe", *toy_multi, cache=cache)

    def test_uses_default_cache(self, toy_multi, stub_engine):
        a = load_network("stub", *toy_multi)
        b = load_network("stub", *toy_multi)
        assert a is b
        assert stub_engine.load_count == 1
