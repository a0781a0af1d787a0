"""
rpc_registry.tier0_core.metrics
─────────────────────────────────
Counters and gauges with standard naming and labels.
Exposed through the default prometheus-client registry; the embedding
process decides how to serve it.

Every series carries ``service`` and ``env`` labels taken from
RegistryConfig (APP_NAME, APP_ENV) at the time the sample is recorded.

Minimal stack: prometheus-client
"""
from __future__ import annotations

from typing import Callable

from prometheus_client import Counter, Gauge

from rpc_registry.tier0_core.config import get_config

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]


def _default_label_values() -> dict[str, str]:
    config = get_config()
    return {"service": config.app_name, "env": config.environment}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a counter with standard labels.

    Usage:
        discover_total = counter("registry_discover_total", "Discover calls", ["outcome"])
        discover_total(outcome="hit").inc()
    """
    c = Counter(name, description, _DEFAULT_LABELS + (labels or []))

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_default_label_values(), **extra_labels)

    return _counter


def gauge(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """Create a gauge with standard labels. Called like ``counter``."""
    g = Gauge(name, description, _DEFAULT_LABELS + (labels or []))

    def _gauge(**extra_labels: str) -> Gauge:
        return g.labels(**_default_label_values(), **extra_labels)

    return _gauge


__all__ = ["counter", "gauge"]
