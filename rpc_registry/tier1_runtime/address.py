"""
rpc_registry.tier1_runtime.address
─────────────────────────────────────
Provider network address. The canonical text form ``host:port`` is also the
ephemeral node name a provider registers under its service path.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rpc_registry.tier0_core.errors import InvalidArgumentError
from rpc_registry.tier1_runtime.validate import PATH_SEPARATOR, validate_input


class Address(BaseModel):
    """Immutable (host, port) pair. Hashable, so it can live in sets and tuples."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("host must not be empty")
        if PATH_SEPARATOR in v or any(ch.isspace() for ch in v):
            raise ValueError(f"host must not contain {PATH_SEPARATOR!r} or whitespace")
        return v

    @classmethod
    def of(cls, host: str, port: int) -> Address:
        return validate_input(cls, {"host": host, "port": port})

    @classmethod
    def parse(cls, value: str) -> Address:
        """
        Parse ``host:port``. The port is taken after the last colon, so bare
        IPv6 hosts survive a format/parse round trip. The port must be
        ASCII digits.
        """
        if not isinstance(value, str):
            raise InvalidArgumentError(
                user_message=f"Address must be a 'host:port' string, got {type(value).__name__}.",
                fields={"address": "not a string"},
            )
        host, sep, port = value.rpartition(":")
        if not sep or not (port.isascii() and port.isdecimal()):
            raise InvalidArgumentError(
                user_message=f"Address {value!r} is not in 'host:port' form.",
                fields={"address": "expected host:port"},
            )
        return cls.of(host, int(port))

    @classmethod
    def coerce(cls, value: Address | str) -> Address:
        if isinstance(value, Address):
            return value
        return cls.parse(value)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


__all__ = ["Address"]
