"""
rpc_registry.tier1_runtime.validate
──────────────────────────────────────
Input validation via Pydantic v2. Raises InvalidArgumentError (not raw
Pydantic errors) so callers see one error type for every malformed input.
"""
from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from rpc_registry.tier0_core.errors import InvalidArgumentError

T = TypeVar("T", bound=BaseModel)

PATH_SEPARATOR = "/"

# Node names the coordination store cannot hold.
_RESERVED_SEGMENTS = frozenset({".", ".."})


def validate_input(model: Type[T], data: Any) -> T:
    """
    Validate raw data against a Pydantic model.
    Raises InvalidArgumentError (not Pydantic's) on failure.

    Usage:
        address = validate_input(Address, {"host": "10.0.0.1", "port": 9000})
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(loc) for loc in err["loc"]) or "__root__": err["msg"]
            for err in exc.errors()
        }
        raise InvalidArgumentError(
            user_message=f"Invalid {model.__name__}.",
            fields=fields,
        ) from exc


def validate_segment(value: Any, what: str) -> str:
    """Check that ``value`` can be used as a single store path segment."""
    if not isinstance(value, str) or not value:
        raise InvalidArgumentError(
            user_message=f"{what} must be a non-empty string.",
            fields={what: "empty or not a string"},
        )
    if PATH_SEPARATOR in value:
        raise InvalidArgumentError(
            user_message=f"{what} must not contain {PATH_SEPARATOR!r}: {value!r}",
            fields={what: "contains path separator"},
        )
    if value in _RESERVED_SEGMENTS:
        raise InvalidArgumentError(
            user_message=f"{what} {value!r} is reserved.",
            fields={what: "reserved segment"},
        )
    return value


def validate_service_name(service_name: Any) -> str:
    """Return ``service_name`` unchanged if it is a valid ServiceName."""
    return validate_segment(service_name, "service_name")


__all__ = ["validate_input", "validate_segment", "validate_service_name", "PATH_SEPARATOR"]
