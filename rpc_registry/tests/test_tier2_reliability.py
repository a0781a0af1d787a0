"""Tests for tier2_reliability modules."""
from __future__ import annotations

import threading
import time

import pytest

from rpc_registry.tier0_core.errors import StoreUnavailableError
from rpc_registry.tier1_runtime.address import Address
from rpc_registry.tier2_reliability.cache import DiscoveryCache

A = Address.parse("10.0.0.1:9000")
B = Address.parse("10.0.0.2:9000")


# ── cache ──────────────────────────────────────────────────────────────────

class TestDiscoveryCache:
    def test_missing_entry(self):
        cache = DiscoveryCache()
        assert cache.get("echo") is None
        assert "echo" not in cache
        assert len(cache) == 0

    def test_entry_is_an_immutable_snapshot(self):
        cache = DiscoveryCache()
        source = [A, B]
        entry = cache.refresh("echo", lambda: source)
        source.clear()
        assert entry == (A, B)
        assert cache.get("echo") == (A, B)

    def test_get_or_load_loads_once(self):
        cache = DiscoveryCache()
        calls = []

        def loader():
            calls.append(1)
            return [A]

        assert cache.get_or_load("echo", loader) == ((A,), True)
        assert cache.get_or_load("echo", loader) == ((A,), False)
        assert len(calls) == 1

    def test_empty_entry_is_reloaded(self):
        cache = DiscoveryCache()
        cache.refresh("echo", lambda: [])
        entry, loaded = cache.get_or_load("echo", lambda: [B])
        assert entry == (B,)
        assert loaded is True

    def test_loader_failure_leaves_no_entry(self):
        cache = DiscoveryCache()

        def loader():
            raise StoreUnavailableError(user_message="down")

        with pytest.raises(StoreUnavailableError):
            cache.get_or_load("echo", loader)
        assert "echo" not in cache

    def test_refresh_replaces_whole_entry(self):
        cache = DiscoveryCache()
        cache.refresh("echo", lambda: [A, B])
        assert cache.refresh("echo", lambda: [B]) == (B,)
        assert cache.get("echo") == (B,)

    def test_refresh_failure_keeps_stale_entry(self):
        cache = DiscoveryCache()
        cache.refresh("echo", lambda: [A, B])

        def loader():
            raise StoreUnavailableError(user_message="down")

        with pytest.raises(StoreUnavailableError):
            cache.refresh("echo", loader)
        assert cache.get("echo") == (A, B)

    def test_concurrent_misses_load_once(self):
        cache = DiscoveryCache()
        calls = []
        barrier = threading.Barrier(8)
        results = []

        def loader():
            calls.append(1)
            time.sleep(0.05)
            return [A, B]

        def worker():
            barrier.wait()
            results.append(cache.get_or_load("echo", loader)[0])

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert results == [(A, B)] * 8

    def test_names_are_independent(self):
        cache = DiscoveryCache()
        cache.refresh("echo", lambda: [A])
        cache.refresh("blog", lambda: [B])
        assert cache.get("echo") == (A,)
        assert cache.get("blog") == (B,)
        assert len(cache) == 2

    def test_clear_drops_every_entry(self):
        cache = DiscoveryCache()
        cache.refresh("echo", lambda: [A])
        cache.refresh("blog", lambda: [B])
        cache.clear()
        assert len(cache) == 0
        assert "echo" not in cache
        assert cache.get_or_load("echo", lambda: [B]) == ((B,), True)

    def test_clear_waits_for_inflight_load(self):
        cache = DiscoveryCache()
        loading, release = threading.Event(), threading.Event()

        def slow_loader():
            loading.set()
            release.wait(timeout=5)
            return [A]

        loader = threading.Thread(target=cache.get_or_load, args=("echo", slow_loader))
        loader.start()
        assert loading.wait(timeout=5)
        clearer = threading.Thread(target=cache.clear)
        clearer.start()
        clearer.join(timeout=0.1)
        assert clearer.is_alive()
        release.set()
        loader.join()
        clearer.join()
        assert "echo" not in cache
