"""
rpc_registry.tier0_core.logging
────────────────────────────────
Structured registry logs. Event names are dotted (``registry.registered``,
``watch.refresh_failed``) and every record carries its fields as keys, so a
JSON pipeline can filter on ``service_name`` without parsing messages.

Level and renderer come from RegistryConfig (REGISTRY_LOG_LEVEL,
REGISTRY_LOG_FORMAT=json|console). ZooKeeper digest credentials never reach
the output: keys such as ``zk_auth`` are masked before rendering.

Minimal stack: structlog over the stdlib root logger
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from rpc_registry.tier0_core.config import RegistryConfig, get_config
from rpc_registry.tier0_core.errors import ConfigurationError

_REDACT_KEYS = frozenset({"auth", "auth_data", "zk_auth", "digest", "password", "credential"})
_REDACTED = "[REDACTED]"

_handler: logging.Handler | None = None


def _redact_processor(logger: Any, method: str, event_dict: dict) -> dict:
    for key, value in event_dict.items():
        if value is not None and key.lower() in _REDACT_KEYS:
            event_dict[key] = _REDACTED
    return event_dict


def configure_logging(config: RegistryConfig | None = None) -> None:
    """
    Route structlog through one stdout handler on the root logger, using
    ``config`` (or the process config) for level and format. Calling it
    again replaces the handler installed by the previous call.
    """
    global _handler
    if config is None:
        try:
            config = get_config()
        except ConfigurationError:
            # Reported again by create_registry(); logging runs on defaults until then.
            config = RegistryConfig.model_construct()
    level = logging.getLevelName(config.log_level)

    chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_processor,
    ]
    structlog.configure(
        processors=chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    renderer = (
        structlog.dev.ConsoleRenderer(colors=False)
        if config.log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(level)
    _handler = handler


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Usage:
        log = get_logger(__name__)
        log.info("registry.registered", service_name="echo", address="10.0.0.1:9000")
    """
    if _handler is None:
        configure_logging()
    return structlog.get_logger(name or "rpc_registry")


__all__ = ["configure_logging", "get_logger"]
