"""
rpc_registry test configuration.

All tests run against the in-memory store; no ZooKeeper required.
Override by setting environment variables before running pytest.
"""
from __future__ import annotations

import os

import pytest

# ── Force in-process backends for all tests ────────────────────────────────
# These must be set before any rpc_registry modules are imported.

os.environ.setdefault("REGISTRY_STORE_BACKEND", "memory")
os.environ.setdefault("REGISTRY_ERROR_BACKEND", "none")
os.environ.setdefault("REGISTRY_LOG_LEVEL", "WARNING")
os.environ.setdefault("APP_ENV", "test")


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """
    Reset cached singletons between tests so no registry, ensemble, or
    config leaks from one test into the next.
    """
    yield

    from rpc_registry.tier0_core.config import _reset_config
    from rpc_registry.tier3_platform.discovery import shutdown_registry
    from rpc_registry.tier3_platform.store import _reset_default_ensemble

    shutdown_registry()
    _reset_default_ensemble()
    _reset_config()


@pytest.fixture
def ensemble():
    """A fresh in-memory ensemble shared by every registry in one test."""
    from rpc_registry.tier3_platform.store import MemoryEnsemble
    return MemoryEnsemble()


@pytest.fixture
def make_registry(ensemble):
    """
    Factory for started registries, each with its own store session.
    Everything created is closed at teardown.
    """
    from rpc_registry.tier3_platform.discovery import ServiceRegistry
    from rpc_registry.tier3_platform.store import MemoryStoreClient

    created = []

    def _make(**kwargs):
        registry = ServiceRegistry(MemoryStoreClient(ensemble), **kwargs).start()
        created.append(registry)
        return registry

    yield _make

    for registry in created:
        registry.close()
