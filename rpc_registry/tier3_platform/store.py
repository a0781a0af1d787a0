"""
rpc_registry.tier3_platform.store
────────────────────────────────────
Coordination store clients. The registry talks to a hierarchical,
strongly consistent tree store with persistent and ephemeral nodes and
child-change subscriptions. Two implementations:

  - MemoryStoreClient: a session against an in-process MemoryEnsemble.
    Several clients can share one ensemble, which lets tests model
    providers and consumers with independent sessions.
  - ZooKeeperStore:    kazoo client against a real ZooKeeper ensemble.

Select via: REGISTRY_STORE_BACKEND=memory|zookeeper
"""
from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from rpc_registry.tier0_core.errors import NodeNotFoundError, StoreUnavailableError
from rpc_registry.tier0_core.logging import get_logger
from rpc_registry.tier1_runtime.retry import retry_policy

logger = get_logger(__name__)


class CreateResult(Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class ChildEventKind(Enum):
    ADDED = "child_added"
    REMOVED = "child_removed"
    UPDATED = "child_updated"


ChangeCallback = Callable[[ChildEventKind, str], None]


# ── Provider protocol ─────────────────────────────────────────────────────────

@runtime_checkable
class Subscription(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class CoordinationStore(Protocol):
    def start(self) -> None: ...
    def ensure_path(self, path: str) -> None: ...
    def create_ephemeral(self, path: str) -> CreateResult: ...
    def list_children(self, path: str) -> list[str]: ...
    def subscribe(self, path: str, recursive: bool, on_change: ChangeCallback) -> Subscription: ...
    def close(self) -> None: ...


# ── Path helpers ──────────────────────────────────────────────────────────────

def join_path(*segments: str) -> str:
    return "/" + "/".join(s.strip("/") for s in segments if s.strip("/"))


def _parent(path: str) -> str:
    head = path.rsplit("/", 1)[0]
    return head or "/"


def _normalize(path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


# ── In-memory ensemble (dev / tests) ──────────────────────────────────────────

@dataclass
class _Node:
    ephemeral_owner: int | None = None
    # dict used as an insertion-ordered set
    children: dict[str, None] = field(default_factory=dict)


@dataclass
class _Watch:
    session_id: int
    path: str
    recursive: bool
    callback: ChangeCallback

    def matches(self, affected: str) -> bool:
        if _parent(affected) == self.path:
            return True
        prefix = self.path if self.path.endswith("/") else self.path + "/"
        return self.recursive and affected.startswith(prefix)


class MemoryEnsemble:
    """
    In-process tree shared by any number of client sessions.

    Watch callbacks run synchronously on the thread that performed the
    mutation, after the tree lock has been released.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: dict[str, _Node] = {"/": _Node()}
        self._sessions: set[int] = set()
        self._watches: dict[int, _Watch] = {}
        self._session_ids = itertools.count(1)
        self._watch_ids = itertools.count(1)
        self._available = True

    @contextmanager
    def _locked(self, timeout: float | None) -> Iterator[None]:
        if not self._available:
            raise StoreUnavailableError(user_message="Coordination store is unreachable.")
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise StoreUnavailableError(
                user_message="Coordination store operation timed out.",
                timeout=timeout,
            )
        try:
            yield
        finally:
            self._lock.release()

    def set_available(self, available: bool) -> None:
        """Simulate the ensemble becoming unreachable (or reachable again)."""
        self._available = available

    # ── Sessions ──────────────────────────────────────────────────────────────

    def open_session(self) -> int:
        with self._lock:
            session_id = next(self._session_ids)
            self._sessions.add(session_id)
            return session_id

    def expire_session(self, session_id: int) -> None:
        """End a session: its ephemeral nodes and watches are removed."""
        with self._lock:
            if session_id not in self._sessions:
                return
            self._sessions.discard(session_id)
            for watch_id in [w for w, watch in self._watches.items() if watch.session_id == session_id]:
                del self._watches[watch_id]
            owned = [p for p, n in self._nodes.items() if n.ephemeral_owner == session_id]
            events = [(ChildEventKind.REMOVED, p) for p in owned]
            for path in owned:
                self._remove(path)
            pending = self._collect(events)
        self._dispatch(pending)

    def is_live(self, session_id: int) -> bool:
        return session_id in self._sessions

    # ── Tree operations ───────────────────────────────────────────────────────

    def ensure_path(self, session_id: int, path: str, timeout: float | None = None) -> None:
        path = _normalize(path)
        with self._locked(timeout):
            self._check_session(session_id)
            events = []
            current = ""
            for segment in path.strip("/").split("/"):
                if not segment:
                    continue
                parent = current or "/"
                current = f"{current}/{segment}"
                if current in self._nodes:
                    continue
                if self._nodes[parent].ephemeral_owner is not None:
                    raise StoreUnavailableError(
                        user_message=f"Ephemeral node {parent!r} cannot have children.",
                        path=current,
                    )
                self._nodes[current] = _Node()
                self._nodes[parent].children[segment] = None
                events.append((ChildEventKind.ADDED, current))
            pending = self._collect(events)
        self._dispatch(pending)

    def create(
        self, session_id: int, path: str, ephemeral: bool = False, timeout: float | None = None
    ) -> CreateResult:
        path = _normalize(path)
        with self._locked(timeout):
            self._check_session(session_id)
            if path in self._nodes:
                return CreateResult.ALREADY_EXISTS
            parent = _parent(path)
            if parent not in self._nodes:
                raise NodeNotFoundError(user_message=f"Parent of {path!r} does not exist.", path=path)
            if self._nodes[parent].ephemeral_owner is not None:
                raise StoreUnavailableError(
                    user_message=f"Ephemeral node {parent!r} cannot have children.",
                    path=path,
                )
            self._nodes[path] = _Node(ephemeral_owner=session_id if ephemeral else None)
            self._nodes[parent].children[path.rsplit("/", 1)[1]] = None
            pending = self._collect([(ChildEventKind.ADDED, path)])
        self._dispatch(pending)
        return CreateResult.CREATED

    def delete(self, session_id: int, path: str, timeout: float | None = None) -> None:
        path = _normalize(path)
        with self._locked(timeout):
            self._check_session(session_id)
            node = self._nodes.get(path)
            if node is None:
                raise NodeNotFoundError(user_message=f"Path {path!r} does not exist.", path=path)
            if node.children:
                raise StoreUnavailableError(user_message=f"Path {path!r} has children.", path=path)
            self._remove(path)
            pending = self._collect([(ChildEventKind.REMOVED, path)])
        self._dispatch(pending)

    def get_children(self, session_id: int, path: str, timeout: float | None = None) -> list[str]:
        path = _normalize(path)
        with self._locked(timeout):
            self._check_session(session_id)
            node = self._nodes.get(path)
            if node is None:
                raise NodeNotFoundError(user_message=f"Path {path!r} does not exist.", path=path)
            return list(node.children)

    def exists(self, path: str) -> bool:
        return _normalize(path) in self._nodes

    def add_watch(
        self, session_id: int, path: str, recursive: bool, callback: ChangeCallback,
        timeout: float | None = None,
    ) -> int:
        with self._locked(timeout):
            self._check_session(session_id)
            watch_id = next(self._watch_ids)
            self._watches[watch_id] = _Watch(session_id, _normalize(path), recursive, callback)
            return watch_id

    def remove_watch(self, watch_id: int) -> None:
        with self._lock:
            self._watches.pop(watch_id, None)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _check_session(self, session_id: int) -> None:
        if session_id not in self._sessions:
            raise StoreUnavailableError(
                user_message="Store session is not open.",
                session_id=session_id,
            )

    def _remove(self, path: str) -> None:
        self._nodes.pop(path, None)
        parent = self._nodes.get(_parent(path))
        if parent is not None:
            parent.children.pop(path.rsplit("/", 1)[1], None)

    def _collect(
        self, events: list[tuple[ChildEventKind, str]]
    ) -> list[tuple[ChangeCallback, ChildEventKind, str]]:
        return [
            (watch.callback, kind, path)
            for kind, path in events
            for watch in self._watches.values()
            if watch.matches(path)
        ]

    @staticmethod
    def _dispatch(pending: list[tuple[ChangeCallback, ChildEventKind, str]]) -> None:
        for callback, kind, path in pending:
            try:
                callback(kind, path)
            except Exception:
                logger.exception("store.watch_callback_failed", path=path, kind=kind.value)


class _MemorySubscription:
    def __init__(self, client: MemoryStoreClient, watch_id: int) -> None:
        self._client = client
        self._watch_id = watch_id

    def cancel(self) -> None:
        self._client._ensemble.remove_watch(self._watch_id)
        self._client._subscriptions.discard(self)


class MemoryStoreClient:
    """One session against a MemoryEnsemble."""

    def __init__(
        self, ensemble: MemoryEnsemble | None = None, operation_timeout: float | None = 10.0
    ) -> None:
        self._ensemble = ensemble or MemoryEnsemble()
        self._timeout = operation_timeout
        self._session_id: int | None = None
        self._subscriptions: set[_MemorySubscription] = set()

    @property
    def ensemble(self) -> MemoryEnsemble:
        return self._ensemble

    @property
    def session_id(self) -> int | None:
        return self._session_id

    def start(self) -> None:
        if self._session_id is None:
            self._session_id = self._ensemble.open_session()
            logger.info("store.session_started", backend="memory", session_id=self._session_id)

    def _session(self) -> int:
        if self._session_id is None:
            raise StoreUnavailableError(user_message="Store session has not been started.")
        return self._session_id

    def ensure_path(self, path: str) -> None:
        self._ensemble.ensure_path(self._session(), path, timeout=self._timeout)

    def create_ephemeral(self, path: str) -> CreateResult:
        return self._ensemble.create(self._session(), path, ephemeral=True, timeout=self._timeout)

    def list_children(self, path: str) -> list[str]:
        return self._ensemble.get_children(self._session(), path, timeout=self._timeout)

    def subscribe(self, path: str, recursive: bool, on_change: ChangeCallback) -> Subscription:
        watch_id = self._ensemble.add_watch(
            self._session(), path, recursive, on_change, timeout=self._timeout
        )
        subscription = _MemorySubscription(self, watch_id)
        self._subscriptions.add(subscription)
        return subscription

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()
        if self._session_id is not None:
            self._ensemble.expire_session(self._session_id)
            logger.info("store.session_closed", backend="memory", session_id=self._session_id)
            self._session_id = None


# ── ZooKeeper (kazoo) ─────────────────────────────────────────────────────────

class _ChildrenSubscription:
    """
    Direct-children subscription over kazoo's ChildrenWatch. The watch hands
    over full child lists; they are diffed into per-child events. The first
    call reports the current membership as an UPDATED event on the watched
    path so the subscriber re-reads anything that changed before the watch
    was in place.
    """

    def __init__(self, client: Any, path: str, on_change: ChangeCallback) -> None:
        from kazoo.recipe.watchers import ChildrenWatch

        self._path = path
        self._on_change = on_change
        self._known: set[str] | None = None
        self._cancelled = False
        self._watch = ChildrenWatch(client, path, self._on_children, allow_session_lost=True)

    def _on_children(self, children: list[str]) -> bool | None:
        if self._cancelled:
            return False
        current = set(children)
        if self._known is None:
            self._known = current
            self._on_change(ChildEventKind.UPDATED, self._path)
            return None
        added, removed = current - self._known, self._known - current
        self._known = current
        for child in sorted(removed):
            self._on_change(ChildEventKind.REMOVED, join_path(self._path, child))
        for child in sorted(added):
            self._on_change(ChildEventKind.ADDED, join_path(self._path, child))
        return None

    def cancel(self) -> None:
        self._cancelled = True


class _TreeSubscription:
    """Recursive subscription over kazoo's TreeCache."""

    def __init__(self, client: Any, path: str, on_change: ChangeCallback) -> None:
        from kazoo.recipe.cache import TreeCache, TreeEvent

        self._kinds = {
            TreeEvent.NODE_ADDED: ChildEventKind.ADDED,
            TreeEvent.NODE_REMOVED: ChildEventKind.REMOVED,
            TreeEvent.NODE_UPDATED: ChildEventKind.UPDATED,
        }
        self._on_change = on_change
        self._cache = TreeCache(client, path)
        self._cache.listen(self._on_tree_event)
        self._cache.start()

    def _on_tree_event(self, event: Any) -> None:
        kind = self._kinds.get(event.event_type)
        if kind is None or event.event_data is None:
            return
        self._on_change(kind, event.event_data.path)

    def cancel(self) -> None:
        self._cache.close()


class ZooKeeperStore:
    """
    ZooKeeper session via kazoo.
    Requires: pip install 'rpc-registry[zookeeper]'

    Every operation waits at most ``operation_timeout`` seconds. kazoo errors
    are mapped onto the registry taxonomy: NoNodeError → NodeNotFoundError,
    timeouts / connection loss / session expiry → StoreUnavailableError.
    """

    def __init__(
        self,
        hosts: str = "127.0.0.1:2181",
        session_timeout: float = 40.0,
        connect_timeout: float = 15.0,
        operation_timeout: float = 10.0,
        connect_max_attempts: int = 3,
        connect_base_delay: float = 1.0,
        auth: str | None = None,
    ) -> None:
        self._hosts = hosts
        self._session_timeout = session_timeout
        self._connect_timeout = connect_timeout
        self._operation_timeout = operation_timeout
        self._connect_max_attempts = connect_max_attempts
        self._connect_base_delay = connect_base_delay
        self._auth = auth
        self._client: Any = None
        self._subscriptions: list[_ChildrenSubscription | _TreeSubscription] = []

    def _new_client(self) -> Any:
        from kazoo.client import KazooClient

        auth_data = [("digest", self._auth)] if self._auth else None
        return KazooClient(hosts=self._hosts, timeout=self._session_timeout, auth_data=auth_data)

    def start(self) -> None:
        if self._client is not None:
            return

        @retry_policy(
            max_attempts=self._connect_max_attempts,
            min_wait=self._connect_base_delay,
            jitter=self._connect_base_delay / 2,
            on=[StoreUnavailableError],
        )
        def _connect() -> Any:
            client = self._new_client()
            try:
                client.start(timeout=self._connect_timeout)
            except client.handler.timeout_exception as exc:
                logger.warning("store.connect_timeout", hosts=self._hosts, timeout=self._connect_timeout)
                raise StoreUnavailableError(
                    user_message=f"Could not connect to ZooKeeper at {self._hosts}.",
                    hosts=self._hosts,
                ) from exc
            return client

        self._client = _connect()
        self._client.add_listener(self._on_state_change)
        logger.info("store.session_started", backend="zookeeper", hosts=self._hosts)

    def _on_state_change(self, state: Any) -> None:
        from kazoo.client import KazooState

        if state == KazooState.LOST:
            logger.error("store.session_lost", hosts=self._hosts)
        elif state == KazooState.SUSPENDED:
            logger.warning("store.session_suspended", hosts=self._hosts)
        else:
            logger.info("store.session_connected", hosts=self._hosts)

    def _require_client(self) -> Any:
        if self._client is None:
            raise StoreUnavailableError(user_message="Store session has not been started.")
        return self._client

    def _wait(self, op: str, path: str, async_result: Any) -> Any:
        from kazoo.exceptions import KazooException, NodeExistsError, NoNodeError

        client = self._require_client()
        try:
            return async_result.get(timeout=self._operation_timeout)
        except client.handler.timeout_exception as exc:
            raise StoreUnavailableError(
                user_message=f"ZooKeeper {op} timed out.",
                path=path, timeout=self._operation_timeout,
            ) from exc
        except NoNodeError as exc:
            raise NodeNotFoundError(user_message=f"Path {path!r} does not exist.", path=path) from exc
        except NodeExistsError:
            raise
        except KazooException as exc:
            raise StoreUnavailableError(
                user_message=f"ZooKeeper {op} failed: {type(exc).__name__}.",
                path=path,
            ) from exc

    def ensure_path(self, path: str) -> None:
        self._wait("ensure_path", path, self._require_client().ensure_path_async(path))

    def create_ephemeral(self, path: str) -> CreateResult:
        from kazoo.exceptions import NodeExistsError

        client = self._require_client()
        try:
            self._wait("create", path, client.create_async(path, ephemeral=True, makepath=True))
        except NodeExistsError:
            return CreateResult.ALREADY_EXISTS
        return CreateResult.CREATED

    def list_children(self, path: str) -> list[str]:
        children = self._wait("get_children", path, self._require_client().get_children_async(path))
        return sorted(children)

    def subscribe(self, path: str, recursive: bool, on_change: ChangeCallback) -> Subscription:
        client = self._require_client()
        subscription: _ChildrenSubscription | _TreeSubscription
        if recursive:
            subscription = _TreeSubscription(client, path, on_change)
        else:
            subscription = _ChildrenSubscription(client, path, on_change)
        self._subscriptions.append(subscription)
        return subscription

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        if self._client is not None:
            self._client.stop()
            self._client.close()
            self._client = None
            logger.info("store.session_closed", backend="zookeeper", hosts=self._hosts)


# ── Provider registry ─────────────────────────────────────────────────────────

_default_ensemble: MemoryEnsemble | None = None


def get_default_ensemble() -> MemoryEnsemble:
    """Process-wide ensemble backing memory-backend stores built from config."""
    global _default_ensemble
    if _default_ensemble is None:
        _default_ensemble = MemoryEnsemble()
    return _default_ensemble


def _reset_default_ensemble() -> None:
    global _default_ensemble
    _default_ensemble = None


def build_store(config: Any) -> CoordinationStore:
    """Build an unstarted store client for a RegistryConfig."""
    if config.store_backend == "zookeeper":
        return ZooKeeperStore(
            hosts=config.zk_hosts,
            session_timeout=config.session_timeout,
            connect_timeout=config.connect_timeout,
            operation_timeout=config.operation_timeout,
            connect_max_attempts=config.connect_max_attempts,
            connect_base_delay=config.connect_base_delay,
            auth=config.zk_auth.get_secret_value() if config.zk_auth else None,
        )
    return MemoryStoreClient(get_default_ensemble(), operation_timeout=config.operation_timeout)


__all__ = [
    "ChangeCallback",
    "ChildEventKind",
    "CoordinationStore",
    "CreateResult",
    "MemoryEnsemble",
    "MemoryStoreClient",
    "Subscription",
    "ZooKeeperStore",
    "build_store",
    "get_default_ensemble",
    "join_path",
]
