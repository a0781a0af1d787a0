"""Tests for tier0_core modules."""
from __future__ import annotations

import logging

import pytest
from prometheus_client import REGISTRY

from rpc_registry.tier0_core.config import RegistryConfig, _reset_config, get_config
from rpc_registry.tier0_core.errors import (
    AlreadyRegisteredError,
    ConfigurationError,
    InvalidArgumentError,
    NoProvidersAvailableError,
    RegistryError,
    ServiceUnavailableError,
    ServiceUnknownError,
    StoreUnavailableError,
)
from rpc_registry.tier0_core.logging import (
    _REDACTED,
    _redact_processor,
    configure_logging,
    get_logger,
)
from rpc_registry.tier0_core.metrics import counter


# ── errors ─────────────────────────────────────────────────────────────────

class TestErrors:
    def test_registry_error_has_code(self):
        e = RegistryError("custom_code", user_message="Something broke")
        assert e.code == "custom_code"
        assert "Something broke" in str(e)

    def test_class_level_codes(self):
        assert StoreUnavailableError().code == "store_unavailable"
        assert AlreadyRegisteredError().code == "already_registered"
        assert NoProvidersAvailableError().code == "no_providers_available"
        assert ServiceUnavailableError().code == "service_unavailable"
        assert ServiceUnknownError().code == "service_unknown"
        assert InvalidArgumentError().code == "invalid_argument"

    def test_unknown_service_is_a_service_unavailable(self):
        e = ServiceUnknownError(user_message="nope")
        assert isinstance(e, ServiceUnavailableError)
        assert isinstance(e, RegistryError)

    def test_retryable_flags(self):
        assert StoreUnavailableError().retryable is True
        assert NoProvidersAvailableError().retryable is True
        assert ServiceUnknownError().retryable is False
        assert InvalidArgumentError().retryable is False

    def test_metadata_in_dict(self):
        e = NoProvidersAvailableError(user_message="empty", service_name="echo")
        d = e.to_dict()
        assert d["error"]["code"] == "no_providers_available"
        assert d["error"]["metadata"] == {"service_name": "echo"}

    def test_invalid_argument_fields(self):
        e = InvalidArgumentError(user_message="bad", fields={"port": "out of range"})
        assert e.fields == {"port": "out of range"}
        assert e.to_dict()["error"]["fields"] == {"port": "out of range"}


# ── config ─────────────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self):
        cfg = RegistryConfig()
        assert cfg.root_path == "MyRPC"
        assert cfg.zk_hosts == "127.0.0.1:2181"
        assert cfg.session_timeout == 40.0
        assert cfg.connect_max_attempts == 3
        assert cfg.load_balance_policy == "random"
        assert cfg.watch_recursive is True

    def test_test_environment_from_conftest(self):
        assert get_config().environment == "test"

    def test_log_settings_normalized(self):
        cfg = RegistryConfig(log_level="debug", log_format="CONSOLE")
        assert cfg.log_level == "DEBUG"
        assert cfg.log_format == "console"

    @pytest.mark.parametrize("var, value", [
        ("REGISTRY_LOG_LEVEL", "LOUD"),
        ("REGISTRY_LOG_FORMAT", "xml"),
    ])
    def test_invalid_log_settings_rejected(self, monkeypatch, var, value):
        monkeypatch.setenv(var, value)
        _reset_config()
        with pytest.raises(ConfigurationError):
            get_config()

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("REGISTRY_LOAD_BALANCE", "Round-Robin")
        monkeypatch.setenv("REGISTRY_ROOT_PATH", "services")
        _reset_config()
        cfg = get_config()
        assert cfg.load_balance_policy == "round_robin"
        assert cfg.root_path == "services"

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_unknown_backend_is_configuration_error(self, monkeypatch):
        monkeypatch.setenv("REGISTRY_STORE_BACKEND", "etcd")
        _reset_config()
        with pytest.raises(ConfigurationError) as exc_info:
            get_config()
        assert "store_backend" in str(exc_info.value) or "REGISTRY_STORE_BACKEND" in str(exc_info.value)

    def test_root_path_with_separator_rejected(self, monkeypatch):
        monkeypatch.setenv("REGISTRY_ROOT_PATH", "a/b")
        _reset_config()
        with pytest.raises(ConfigurationError):
            get_config()

    def test_zk_auth_is_secret(self, monkeypatch):
        monkeypatch.setenv("REGISTRY_ZK_AUTH", "rpc:hunter2")
        _reset_config()
        cfg = get_config()
        assert "hunter2" not in repr(cfg)
        assert cfg.zk_auth.get_secret_value() == "rpc:hunter2"


# ── logging ────────────────────────────────────────────────────────────────

class TestLogging:
    def test_redacts_credentials(self):
        event = {"event": "store.connect", "zk_auth": "rpc:hunter2", "hosts": "zk:2181"}
        result = _redact_processor(None, "info", event)
        assert result["zk_auth"] == _REDACTED
        assert result["hosts"] == "zk:2181"

    def test_non_sensitive_keys_unchanged(self):
        event = {"event": "registry.registered", "service_name": "echo", "address": "10.0.0.1:9000"}
        assert _redact_processor(None, "info", dict(event)) == event

    def test_get_logger_returns_usable_logger(self):
        log = get_logger("rpc_registry.test")
        log.info("test.event", service_name="echo")

    def test_level_comes_from_config(self):
        configure_logging(RegistryConfig(log_level="ERROR"))
        try:
            assert logging.getLogger().level == logging.ERROR
        finally:
            configure_logging()
        assert logging.getLogger().level == logging.getLevelName(get_config().log_level)

    def test_reconfiguring_replaces_handler(self):
        configure_logging()
        root = logging.getLogger()
        before = len(root.handlers)
        configure_logging(RegistryConfig(log_format="console"))
        configure_logging()
        assert len(root.handlers) == before

    def test_invalid_config_falls_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("REGISTRY_LOG_LEVEL", "LOUD")
        _reset_config()
        try:
            configure_logging()
            assert logging.getLogger().level == logging.INFO
        finally:
            monkeypatch.undo()
            _reset_config()
            configure_logging()


# ── metrics ────────────────────────────────────────────────────────────────

class TestMetrics:
    def test_standard_labels_from_config(self):
        requests = counter("rpc_registry_test_requests_total", "Test counter", ["outcome"])
        requests(outcome="ok").inc()
        cfg = get_config()
        labels = {"service": cfg.app_name, "env": cfg.environment, "outcome": "ok"}
        assert REGISTRY.get_sample_value("rpc_registry_test_requests_total", labels) == 1.0
