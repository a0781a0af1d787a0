"""
rpc_registry.tier0_core.errors
───────────────────────────────
Registry error taxonomy. Every error carries a stable machine-readable code
so callers can branch on it without string matching. Raising a RegistryError
reports it to Sentry if an error backend is configured.

Expected races (duplicate registration, existing nodes) are NOT modelled as
errors on the normal path; see RegistrationStatus and CreateResult.

Select via: REGISTRY_ERROR_BACKEND=sentry|none
"""
from __future__ import annotations

import os
from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class RegistryError(Exception):
    """
    Base class for all registry errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: short human-readable summary
    - detail: internal context (defaults to user_message)
    - metadata: structured fields, also attached to the Sentry event
    """

    code: str = "registry_error"
    retryable: bool = False

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected registry error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)
        _capture(self)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "error": {
                "code": self.code,
                "message": self.user_message,
                "retryable": self.retryable,
            }
        }
        if self.metadata:
            d["error"]["metadata"] = dict(self.metadata)
        return d


# ── Typed error classes ───────────────────────────────────────────────────────

class StoreUnavailableError(RegistryError):
    """The coordination store could not be reached, or an operation timed out."""
    code = "store_unavailable"
    retryable = True


class NodeNotFoundError(RegistryError):
    """A store path does not exist. Raised by store clients, mapped by the registry."""
    code = "node_not_found"


class AlreadyRegisteredError(RegistryError):
    """The same (service, address) node is still held by a live session."""
    code = "already_registered"


class ServiceUnavailableError(RegistryError):
    """The discover miss path could not resolve the service from the store."""
    code = "service_unavailable"
    retryable = True


class ServiceUnknownError(ServiceUnavailableError):
    """The service name has never been registered (its path does not exist)."""
    code = "service_unknown"
    retryable = False


class NoProvidersAvailableError(RegistryError):
    """The service is known but has zero live providers right now."""
    code = "no_providers_available"
    retryable = True


class InvalidArgumentError(RegistryError):
    """Malformed service name or address, or a contract violation by the caller."""
    code = "invalid_argument"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Invalid argument.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class ConfigurationError(RegistryError):
    """Misconfiguration detected while building a registry."""
    code = "configuration_error"


# ── Error capture backend ─────────────────────────────────────────────────────

def _capture(error: RegistryError) -> None:
    """Send error to configured backend. Called automatically by RegistryError.__init__."""
    backend = os.getenv("REGISTRY_ERROR_BACKEND", "none").lower()
    if backend == "sentry":
        _capture_sentry(error)


def _capture_sentry(error: RegistryError) -> None:
    import sentry_sdk

    if error.retryable:
        sentry_sdk.capture_message(
            str(error),
            level="warning",
            extras={"code": error.code, **error.metadata},
        )
    else:
        sentry_sdk.capture_exception(error)


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry. Call once at application startup."""
    import sentry_sdk
    sentry_sdk.init(dsn=dsn, **kwargs)
    os.environ["REGISTRY_ERROR_BACKEND"] = "sentry"


__all__ = [
    "RegistryError",
    "StoreUnavailableError",
    "NodeNotFoundError",
    "AlreadyRegisteredError",
    "ServiceUnavailableError",
    "ServiceUnknownError",
    "NoProvidersAvailableError",
    "InvalidArgumentError",
    "ConfigurationError",
    "configure_sentry",
]
