"""
rpc_registry.tier3_platform.watch
────────────────────────────────────
Keeps discovery cache entries coherent with the store.

A service name moves from unwatched to watched on its first discover miss
and stays watched until the registry closes. Each child event triggers a
full re-read of the service's children; the cache entry is swapped in one
step. Duplicate or reordered events are harmless because nothing is
applied as a delta.
"""
from __future__ import annotations

import threading
from collections.abc import Callable

from rpc_registry.tier0_core.errors import RegistryError
from rpc_registry.tier0_core.logging import get_logger
from rpc_registry.tier0_core.metrics import counter
from rpc_registry.tier1_runtime.address import Address
from rpc_registry.tier2_reliability.cache import DiscoveryCache
from rpc_registry.tier3_platform.store import ChildEventKind, CoordinationStore, Subscription

logger = get_logger(__name__)

_watch_refresh_total = counter(
    "registry_watch_refresh_total", "Cache refreshes driven by store events", ["outcome"]
)

AddressFetcher = Callable[[str], list[Address]]


class ChildWatchHandler:
    """Refreshes one service's cache entry on child events."""

    def __init__(
        self,
        service_name: str,
        cache: DiscoveryCache,
        fetch: AddressFetcher,
    ) -> None:
        self.service_name = service_name
        self._cache = cache
        self._fetch = fetch

    def on_child_event(self, kind: ChildEventKind, affected_path: str) -> None:
        try:
            entry = self._cache.refresh(self.service_name, lambda: self._fetch(self.service_name))
        except RegistryError as exc:
            # Stale but non-empty beats empty.
            _watch_refresh_total(outcome="failed").inc()
            logger.warning(
                "watch.refresh_failed",
                service_name=self.service_name,
                kind=kind.value,
                path=affected_path,
                error=exc.code,
            )
            return
        except Exception:
            _watch_refresh_total(outcome="failed").inc()
            logger.exception(
                "watch.refresh_crashed",
                service_name=self.service_name,
                kind=kind.value,
                path=affected_path,
            )
            return
        _watch_refresh_total(outcome="ok").inc()
        logger.info(
            "watch.refreshed",
            service_name=self.service_name,
            kind=kind.value,
            path=affected_path,
            providers=[str(a) for a in entry],
        )


class WatchRegistry:
    """At most one live subscription per service name."""

    def __init__(
        self,
        store: CoordinationStore,
        cache: DiscoveryCache,
        fetch: AddressFetcher,
        recursive: bool = True,
    ) -> None:
        self._store = store
        self._cache = cache
        self._fetch = fetch
        self._recursive = recursive
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def ensure(self, service_name: str, path: str) -> bool:
        """
        Subscribe ``path`` for ``service_name`` unless already watched. Returns
        True if new. A new subscription is followed by one refresh, so changes
        made after the caller's fetch but before the subscription existed
        still reach the cache.
        """
        with self._lock:
            if service_name in self._subscriptions:
                return False
            handler = ChildWatchHandler(service_name, self._cache, self._fetch)
            self._subscriptions[service_name] = self._store.subscribe(
                path, self._recursive, handler.on_child_event
            )
        logger.info("watch.subscribed", service_name=service_name, path=path, recursive=self._recursive)
        handler.on_child_event(ChildEventKind.UPDATED, path)
        return True

    def is_watching(self, service_name: str) -> bool:
        return service_name in self._subscriptions

    def cancel_all(self) -> None:
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, {}
        for service_name, subscription in subscriptions.items():
            subscription.cancel()
            logger.debug("watch.cancelled", service_name=service_name)

    def __len__(self) -> int:
        return len(self._subscriptions)


__all__ = ["ChildWatchHandler", "WatchRegistry"]
