"""
rpc_registry.tier3_platform.loadbalance
──────────────────────────────────────────
Address selection among the live providers of one service.

  - RandomLoadBalancer:     uniform pick (default)
  - RoundRobinLoadBalancer: rotating cursor per service name

Select via: REGISTRY_LOAD_BALANCE=random|round_robin
"""
from __future__ import annotations

import itertools
import random
import threading
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from rpc_registry.tier0_core.errors import ConfigurationError, InvalidArgumentError
from rpc_registry.tier1_runtime.address import Address


@runtime_checkable
class LoadBalancer(Protocol):
    def select(self, candidates: Sequence[Address], service_name: str = "") -> Address: ...


def _require_candidates(candidates: Sequence[Address], service_name: str) -> None:
    if not candidates:
        raise InvalidArgumentError(
            user_message="Load balancer called with no candidates.",
            fields={"candidates": "empty"},
            service_name=service_name,
        )


class RandomLoadBalancer:
    """Uniform random choice. ``random.Random.choice`` draws without modulo bias."""

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(seed)
        self._lock = threading.Lock()

    def select(self, candidates: Sequence[Address], service_name: str = "") -> Address:
        _require_candidates(candidates, service_name)
        with self._lock:
            return self._random.choice(candidates)


class RoundRobinLoadBalancer:
    """
    One cursor per service name. The cursor is reduced modulo the length of
    the list passed in on each call, so membership changes between calls
    never index out of range.
    """

    def __init__(self) -> None:
        self._cursors: dict[str, itertools.count] = {}
        self._lock = threading.Lock()

    def select(self, candidates: Sequence[Address], service_name: str = "") -> Address:
        _require_candidates(candidates, service_name)
        with self._lock:
            cursor = self._cursors.setdefault(service_name, itertools.count())
            position = next(cursor)
        return candidates[position % len(candidates)]


def get_load_balancer(policy: str = "random") -> LoadBalancer:
    normalized = policy.lower().replace("-", "_")
    if normalized == "random":
        return RandomLoadBalancer()
    if normalized == "round_robin":
        return RoundRobinLoadBalancer()
    raise ConfigurationError(
        user_message=f"Unknown load balance policy {policy!r}.",
        policy=policy,
    )


__all__ = ["LoadBalancer", "RandomLoadBalancer", "RoundRobinLoadBalancer", "get_load_balancer"]
