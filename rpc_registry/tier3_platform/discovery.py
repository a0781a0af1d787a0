"""
rpc_registry.tier3_platform.discovery
───────────────────────────────────────
Service registration and discovery on top of a coordination store.

Store layout:
    /{root}/{service_name}              persistent, created on first register
    /{root}/{service_name}/{host:port}  ephemeral, one per live provider

Write path (providers):
    registry.register("echo", "10.0.0.1:9000")

Read path (consumers):
    address = registry.discover("echo")
    cache hit  → load balancer → address
    cache miss → list children → populate cache → watch the service → load balancer

The registry never retries. Store failures surface to the caller, who owns
the retry policy.

Usage:
    with create_registry() as registry:
        registry.register("echo", Address.of("10.0.0.1", 9000))
        target = registry.discover("echo")
"""
from __future__ import annotations

import atexit
import threading
from enum import Enum
from typing import Any

from rpc_registry.tier0_core.config import RegistryConfig, get_config
from rpc_registry.tier0_core.errors import (
    AlreadyRegisteredError,
    InvalidArgumentError,
    NodeNotFoundError,
    NoProvidersAvailableError,
    ServiceUnavailableError,
    ServiceUnknownError,
    StoreUnavailableError,
)
from rpc_registry.tier0_core.logging import configure_logging, get_logger
from rpc_registry.tier0_core.metrics import counter, gauge
from rpc_registry.tier1_runtime.address import Address
from rpc_registry.tier1_runtime.validate import validate_segment, validate_service_name
from rpc_registry.tier2_reliability.cache import Candidates, DiscoveryCache
from rpc_registry.tier3_platform.loadbalance import LoadBalancer, RandomLoadBalancer, get_load_balancer
from rpc_registry.tier3_platform.store import CoordinationStore, CreateResult, build_store, join_path
from rpc_registry.tier3_platform.watch import WatchRegistry

logger = get_logger(__name__)

DEFAULT_ROOT = "MyRPC"

_register_total = counter("registry_register_total", "Provider registrations", ["outcome"])
_discover_total = counter(
    "registry_discover_total", "Discover calls", ["service_name", "outcome"]
)
_cached_services = gauge("registry_cached_services", "Service names held in the discovery cache")


class RegistrationStatus(Enum):
    REGISTERED = "registered"
    ALREADY_REGISTERED = "already_registered"


class ServiceRegistry:
    """
    Registers providers and resolves service names to addresses.

    The cache, load balancer, and watch subscriptions belong to this
    instance; nothing is shared between registries except what the store
    itself holds.
    """

    def __init__(
        self,
        store: CoordinationStore,
        root: str = DEFAULT_ROOT,
        load_balancer: LoadBalancer | None = None,
        cache: DiscoveryCache | None = None,
        watch_recursive: bool = True,
    ) -> None:
        self._store = store
        self._root = validate_segment(root, "root")
        self._load_balancer = load_balancer or RandomLoadBalancer()
        self._cache = cache or DiscoveryCache()
        self._watches = WatchRegistry(
            store, self._cache, self._fetch_addresses, recursive=watch_recursive
        )
        self._lifecycle = threading.Lock()
        self._started = False
        self._closed = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> ServiceRegistry:
        with self._lifecycle:
            if self._closed:
                raise StoreUnavailableError(user_message="Registry has been closed.")
            if not self._started:
                self._store.start()
                self._started = True
                logger.info("registry.started", root=self._root)
        return self

    def close(self) -> None:
        """
        Cancel every watch, end the store session and drop the cache, which
        nothing keeps coherent any more. Safe to call twice.
        """
        with self._lifecycle:
            if self._closed:
                return
            self._closed = True
            try:
                self._watches.cancel_all()
            finally:
                self._store.close()
                self._cache.clear()
                _cached_services().set(0)
            logger.info("registry.closed", root=self._root, cached_services=len(self._cache))

    def __enter__(self) -> ServiceRegistry:
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def cache(self) -> DiscoveryCache:
        return self._cache

    @property
    def watches(self) -> WatchRegistry:
        return self._watches

    # ── Paths ─────────────────────────────────────────────────────────────────

    def service_path(self, service_name: str) -> str:
        return join_path(self._root, service_name)

    def provider_path(self, service_name: str, address: Address) -> str:
        return join_path(self._root, service_name, str(address))

    # ── Write path ────────────────────────────────────────────────────────────

    def register(
        self, service_name: str, address: Address | str, strict: bool = False
    ) -> RegistrationStatus:
        """
        Publish ``address`` as a live provider of ``service_name``.

        The service node is created if missing (concurrent providers may race
        on it; that is fine). The provider node is ephemeral and disappears
        when this registry's store session ends.

        A provider node that already exists, e.g. from a previous session that
        has not expired yet, is logged and reported as ALREADY_REGISTERED.
        Pass ``strict=True`` to get AlreadyRegisteredError instead.

        Raises:
            InvalidArgumentError:  malformed name or address.
            StoreUnavailableError: the store could not be reached.
        """
        validate_service_name(service_name)
        address = Address.coerce(address)
        self._store.ensure_path(self.service_path(service_name))
        result = self._store.create_ephemeral(self.provider_path(service_name, address))

        if result is CreateResult.ALREADY_EXISTS:
            _register_total(outcome="already_registered").inc()
            logger.warning(
                "registry.already_registered",
                service_name=service_name,
                address=str(address),
            )
            if strict:
                raise AlreadyRegisteredError(
                    user_message=f"{address} is already registered for {service_name!r}.",
                    service_name=service_name,
                    address=str(address),
                )
            return RegistrationStatus.ALREADY_REGISTERED

        _register_total(outcome="registered").inc()
        logger.info("registry.registered", service_name=service_name, address=str(address))
        return RegistrationStatus.REGISTERED

    # ── Read path ─────────────────────────────────────────────────────────────

    def _fetch_addresses(self, service_name: str) -> list[Address]:
        """Read the live provider list from the store, skipping undecodable children."""
        addresses: list[Address] = []
        for child in self._store.list_children(self.service_path(service_name)):
            try:
                addresses.append(Address.parse(child))
            except InvalidArgumentError:
                logger.warning("registry.bad_provider_node", service_name=service_name, node=child)
        return addresses

    def lookup(self, service_name: str) -> Candidates:
        """
        Return every address currently believed live for ``service_name``.

        Raises:
            InvalidArgumentError:    malformed name.
            ServiceUnknownError:     the service has never been registered.
            ServiceUnavailableError: the store could not be read, or the
                                     registry is closed.
        """
        validate_service_name(service_name)
        if self._closed:
            raise ServiceUnavailableError(
                user_message=f"Could not resolve service {service_name!r}: registry has been closed.",
                service_name=service_name,
            )
        try:
            entry, loaded = self._cache.get_or_load(
                service_name, lambda: self._fetch_addresses(service_name)
            )
        except NodeNotFoundError as exc:
            # Unregistered names stay out of the label set.
            _discover_total(service_name="", outcome="unknown").inc()
            raise ServiceUnknownError(
                user_message=f"Service {service_name!r} is not registered.",
                service_name=service_name,
            ) from exc
        except StoreUnavailableError as exc:
            _discover_total(service_name=service_name, outcome="unavailable").inc()
            raise ServiceUnavailableError(
                user_message=f"Could not resolve service {service_name!r}: {exc.user_message}",
                service_name=service_name,
            ) from exc

        if loaded:
            _discover_total(service_name=service_name, outcome="miss").inc()
            _cached_services().set(len(self._cache))
            logger.info(
                "registry.cache_populated",
                service_name=service_name,
                providers=[str(a) for a in entry],
            )
        else:
            _discover_total(service_name=service_name, outcome="hit").inc()

        if not self._closed and not self._watches.is_watching(service_name):
            try:
                self._watches.ensure(service_name, self.service_path(service_name))
            except StoreUnavailableError as exc:
                # Entry stays cached; retried on the next lookup.
                logger.warning("registry.watch_failed", service_name=service_name, error=exc.code)
        return entry

    def discover(self, service_name: str) -> Address:
        """
        Resolve ``service_name`` to one provider address.

        Raises:
            InvalidArgumentError:      malformed name.
            ServiceUnknownError:       the service has never been registered.
            ServiceUnavailableError:   the store could not be read.
            NoProvidersAvailableError: the service exists but has no live providers.
        """
        candidates = self.lookup(service_name)
        if not candidates:
            raise NoProvidersAvailableError(
                user_message=f"Service {service_name!r} has no live providers.",
                service_name=service_name,
            )
        return self._load_balancer.select(candidates, service_name)


# ── Factories ─────────────────────────────────────────────────────────────────

def create_registry(config: RegistryConfig | None = None) -> ServiceRegistry:
    """Build an unstarted registry from config. Use it as a context manager."""
    if config is not None:
        configure_logging(config)
    config = config or get_config()
    return ServiceRegistry(
        build_store(config),
        root=config.root_path,
        load_balancer=get_load_balancer(config.load_balance_policy),
        watch_recursive=config.watch_recursive,
    )


_registry: ServiceRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> ServiceRegistry:
    """
    Return the process-wide registry, creating and starting it on first use.
    It is closed at interpreter exit, or earlier via shutdown_registry().
    """
    global _registry
    with _registry_lock:
        if _registry is None:
            registry = create_registry().start()
            atexit.register(shutdown_registry)
            _registry = registry
        return _registry


def shutdown_registry() -> None:
    global _registry
    with _registry_lock:
        registry, _registry = _registry, None
    if registry is not None:
        atexit.unregister(shutdown_registry)
        registry.close()


def register(service_name: str, address: Address | str) -> RegistrationStatus:
    """Register a provider with the process-wide registry."""
    return get_registry().register(service_name, address)


def discover(service_name: str) -> Address:
    """Resolve a service with the process-wide registry."""
    return get_registry().discover(service_name)


__all__ = [
    "DEFAULT_ROOT",
    "RegistrationStatus",
    "ServiceRegistry",
    "create_registry",
    "discover",
    "get_registry",
    "register",
    "shutdown_registry",
]
