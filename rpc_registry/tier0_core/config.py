"""
rpc_registry.tier0_core.config
────────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; invalid values surface as
ConfigurationError when a registry is built from config.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rpc_registry.tier0_core.errors import ConfigurationError

STORE_BACKENDS = frozenset({"memory", "zookeeper"})
LOAD_BALANCE_POLICIES = frozenset({"random", "round_robin"})
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
LOG_FORMATS = frozenset({"json", "console"})


class RegistryConfig(BaseSettings):
    """
    Typed registry configuration. Env vars are prefixed with REGISTRY_
    except for the application identity fields.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="rpc-registry", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Coordination store ────────────────────────────────────────────────────
    store_backend: str = Field(default="memory", alias="REGISTRY_STORE_BACKEND")
    zk_hosts: str = Field(default="127.0.0.1:2181", alias="REGISTRY_ZK_HOSTS")
    zk_auth: SecretStr | None = Field(default=None, alias="REGISTRY_ZK_AUTH")
    root_path: str = Field(default="MyRPC", alias="REGISTRY_ROOT_PATH")
    session_timeout: float = Field(default=40.0, gt=0, alias="REGISTRY_SESSION_TIMEOUT")
    connect_timeout: float = Field(default=15.0, gt=0, alias="REGISTRY_CONNECT_TIMEOUT")
    operation_timeout: float = Field(default=10.0, gt=0, alias="REGISTRY_OPERATION_TIMEOUT")
    connect_max_attempts: int = Field(default=3, ge=1, alias="REGISTRY_CONNECT_MAX_ATTEMPTS")
    connect_base_delay: float = Field(default=1.0, ge=0, alias="REGISTRY_CONNECT_BASE_DELAY")

    # ── Discovery ─────────────────────────────────────────────────────────────
    load_balance_policy: str = Field(default="random", alias="REGISTRY_LOAD_BALANCE")
    watch_recursive: bool = Field(default=True, alias="REGISTRY_WATCH_RECURSIVE")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="REGISTRY_LOG_LEVEL")
    log_format: str = Field(default="json", alias="REGISTRY_LOG_FORMAT")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        if v.lower() not in STORE_BACKENDS:
            raise ValueError(f"store backend must be one of {sorted(STORE_BACKENDS)}, got {v!r}")
        return v.lower()

    @field_validator("load_balance_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        normalized = v.lower().replace("-", "_")
        if normalized not in LOAD_BALANCE_POLICIES:
            raise ValueError(
                f"load balance policy must be one of {sorted(LOAD_BALANCE_POLICIES)}, got {v!r}"
            )
        return normalized

    @field_validator("root_path")
    @classmethod
    def validate_root(cls, v: str) -> str:
        v = v.strip()
        if not v or "/" in v:
            raise ValueError(f"root path must be a single non-empty segment, got {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {sorted(LOG_LEVELS)}, got {v!r}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v.lower() not in LOG_FORMATS:
            raise ValueError(f"log format must be one of {sorted(LOG_FORMATS)}, got {v!r}")
        return v.lower()


@lru_cache(maxsize=1)
def get_config() -> RegistryConfig:
    """
    Return the singleton registry config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    try:
        return RegistryConfig()
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(loc) for loc in err["loc"]): err["msg"]
            for err in exc.errors()
        }
        raise ConfigurationError(
            user_message="Registry configuration is invalid.",
            detail=f"Invalid registry configuration: {fields}",
            fields=fields,
        ) from exc


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()
