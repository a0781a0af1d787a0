"""
rpc_registry.tier2_reliability.cache
───────────────────────────────────────
Local discovery cache: service name → ordered tuple of provider addresses.

Reads are lock-free; every write replaces the whole entry with a new tuple,
so a reader sees either the old list or the new one, never a mix. Writers
for the same name are serialized by a per-name lock, and the store fetch
that produces the new value runs inside that lock. A discover-miss populate
and a watch-driven refresh therefore cannot interleave, and whichever
fetched last is what stays cached.

Entries are never evicted; the set of service names is small and bounded.
"""
from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

from rpc_registry.tier1_runtime.address import Address

Candidates = tuple[Address, ...]


class DiscoveryCache:
    """Thread-safe in-process cache with per-name write locks."""

    def __init__(self) -> None:
        self._entries: dict[str, Candidates] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, service_name: str) -> threading.Lock:
        lock = self._locks.get(service_name)
        if lock is None:
            with self._guard:
                lock = self._locks.setdefault(service_name, threading.Lock())
        return lock

    def get(self, service_name: str) -> Candidates | None:
        return self._entries.get(service_name)

    def get_or_load(
        self, service_name: str, loader: Callable[[], Iterable[Address]]
    ) -> tuple[Candidates, bool]:
        """
        Return ``(entry, loaded)``. A present, non-empty entry is returned as-is;
        otherwise ``loader()`` is called under the name's lock and its result
        cached. Concurrent misses for one name call the loader once.
        """
        entry = self._entries.get(service_name)
        if entry:
            return entry, False
        with self._lock_for(service_name):
            entry = self._entries.get(service_name)
            if entry:
                return entry, False
            entry = tuple(loader())
            self._entries[service_name] = entry
            return entry, True

    def refresh(
        self, service_name: str, loader: Callable[[], Iterable[Address]]
    ) -> Candidates:
        """
        Replace the entry with ``loader()``'s result. If the loader raises, the
        current entry is left untouched and the exception propagates.
        """
        with self._lock_for(service_name):
            entry = tuple(loader())
            self._entries[service_name] = entry
            return entry

    def clear(self) -> None:
        """Drop every entry, each under its own name's lock."""
        with self._guard:
            locks = list(self._locks.items())
        for service_name, lock in locks:
            with lock:
                self._entries.pop(service_name, None)

    def __contains__(self, service_name: object) -> bool:
        return service_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["Candidates", "DiscoveryCache"]
