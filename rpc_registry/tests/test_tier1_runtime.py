"""Tests for tier1_runtime modules."""
from __future__ import annotations

import pytest

from rpc_registry.tier0_core.errors import (
    InvalidArgumentError,
    ServiceUnknownError,
    StoreUnavailableError,
)
from rpc_registry.tier1_runtime.address import Address
from rpc_registry.tier1_runtime.retry import retry_policy
from rpc_registry.tier1_runtime.validate import validate_input, validate_service_name


# ── address ────────────────────────────────────────────────────────────────

class TestAddress:
    def test_parse_and_format(self):
        address = Address.parse("10.0.0.1:9000")
        assert address.host == "10.0.0.1"
        assert address.port == 9000
        assert str(address) == "10.0.0.1:9000"

    def test_of(self):
        assert Address.of("localhost", 8900) == Address.parse("localhost:8900")

    def test_bare_ipv6_host(self):
        address = Address.parse("::1:8080")
        assert address.host == "::1"
        assert address.port == 8080
        assert Address.parse(str(address)) == address

    @pytest.mark.parametrize("raw", ["", "10.0.0.1", "10.0.0.1:", ":9000", "host:abc", "host:-1"])
    def test_malformed_strings(self, raw):
        with pytest.raises(InvalidArgumentError):
            Address.parse(raw)

    @pytest.mark.parametrize("raw", ["h:\u00b2", "h:\u2460", "h:\u0663\u0660", "h:\uff19\uff10"])
    def test_non_ascii_digit_ports(self, raw):
        with pytest.raises(InvalidArgumentError) as exc_info:
            Address.parse(raw)
        assert "address" in exc_info.value.fields

    @pytest.mark.parametrize("port", [0, 65536, 70000])
    def test_port_out_of_range(self, port):
        with pytest.raises(InvalidArgumentError) as exc_info:
            Address.of("10.0.0.1", port)
        assert "port" in exc_info.value.fields

    def test_port_boundaries(self):
        assert Address.of("h", 1).port == 1
        assert Address.of("h", 65535).port == 65535

    def test_host_with_separator_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Address.of("a/b", 80)

    def test_hashable_and_frozen(self):
        a = Address.of("10.0.0.1", 9000)
        assert {a, Address.parse("10.0.0.1:9000")} == {a}
        with pytest.raises(Exception):
            a.port = 1  # type: ignore[misc]

    def test_coerce(self):
        a = Address.of("10.0.0.1", 9000)
        assert Address.coerce(a) is a
        assert Address.coerce("10.0.0.1:9000") == a
        with pytest.raises(InvalidArgumentError):
            Address.coerce(9000)  # type: ignore[arg-type]


# ── validate ───────────────────────────────────────────────────────────────

class TestValidate:
    def test_valid_service_name(self):
        assert validate_service_name("echo") == "echo"
        assert validate_service_name("com.example.UserService") == "com.example.UserService"

    @pytest.mark.parametrize("name", ["", "a/b", "/echo", ".", "..", None, 42])
    def test_invalid_service_names(self, name):
        with pytest.raises(InvalidArgumentError):
            validate_service_name(name)

    def test_validate_input_maps_fields(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validate_input(Address, {"host": "", "port": 99999})
        assert set(exc_info.value.fields) == {"host", "port"}


# ── retry ──────────────────────────────────────────────────────────────────

class TestRetry:
    def test_retries_until_success(self):
        calls = []

        @retry_policy(max_attempts=3, min_wait=0, jitter=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StoreUnavailableError(user_message="down")
            return "connected"

        assert flaky() == "connected"
        assert len(calls) == 3

    def test_gives_up_and_reraises(self):
        calls = []

        @retry_policy(max_attempts=2, min_wait=0, jitter=0, on=[StoreUnavailableError])
        def down():
            calls.append(1)
            raise StoreUnavailableError(user_message="down")

        with pytest.raises(StoreUnavailableError):
            down()
        assert len(calls) == 2

    def test_non_retryable_error_not_retried(self):
        calls = []

        @retry_policy(max_attempts=5, min_wait=0, jitter=0)
        def unknown():
            calls.append(1)
            raise ServiceUnknownError(user_message="never registered")

        with pytest.raises(ServiceUnknownError):
            unknown()
        assert len(calls) == 1

    def test_on_restricts_exception_types(self):
        calls = []

        @retry_policy(max_attempts=5, min_wait=0, jitter=0, on=[StoreUnavailableError])
        def broken():
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            broken()
        assert len(calls) == 1
