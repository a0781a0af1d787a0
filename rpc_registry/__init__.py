"""
rpc_registry
────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from rpc_registry.tier0_core.logging import configure_logging, get_logger
from rpc_registry.tier0_core.errors import (
    RegistryError,
    StoreUnavailableError,
    AlreadyRegisteredError,
    ServiceUnavailableError,
    ServiceUnknownError,
    NoProvidersAvailableError,
    InvalidArgumentError,
    ConfigurationError,
)
from rpc_registry.tier0_core.config import get_config, RegistryConfig

from rpc_registry.tier1_runtime.address import Address
from rpc_registry.tier1_runtime.retry import retry_policy

from rpc_registry.tier2_reliability.cache import DiscoveryCache

from rpc_registry.tier3_platform.store import (
    CoordinationStore,
    MemoryEnsemble,
    MemoryStoreClient,
    ZooKeeperStore,
)
from rpc_registry.tier3_platform.loadbalance import (
    LoadBalancer,
    RandomLoadBalancer,
    RoundRobinLoadBalancer,
)
from rpc_registry.tier3_platform.discovery import (
    RegistrationStatus,
    ServiceRegistry,
    create_registry,
    get_registry,
    shutdown_registry,
    register,
    discover,
)

__version__ = "0.1.0"
__all__ = [
    # logging
    "configure_logging", "get_logger",
    # errors
    "RegistryError", "StoreUnavailableError", "AlreadyRegisteredError",
    "ServiceUnavailableError", "ServiceUnknownError", "NoProvidersAvailableError",
    "InvalidArgumentError", "ConfigurationError",
    # config
    "get_config", "RegistryConfig",
    # address
    "Address",
    # retry
    "retry_policy",
    # cache
    "DiscoveryCache",
    # store
    "CoordinationStore", "MemoryEnsemble", "MemoryStoreClient", "ZooKeeperStore",
    # load balancing
    "LoadBalancer", "RandomLoadBalancer", "RoundRobinLoadBalancer",
    # registry
    "RegistrationStatus", "ServiceRegistry", "create_registry",
    "get_registry", "shutdown_registry", "register", "discover",
]
