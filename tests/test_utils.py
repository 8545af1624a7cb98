"""Tests for utility functions."""

import pytest

from tailtunnel.common.utils import (
    MAX_PORT,
    MIN_PORT,
    is_loopback_host,
    is_self_loop,
    validate_non_empty_string,
    validate_port,
)


class TestValidatePort:
    """Test port validation function."""

    def test_valid_ports(self):
        """Test validation of valid ports."""
        validate_port(1, "Test port")
        validate_port(5432, "Postgres port")
        validate_port(65535, "Max port")

    def test_invalid_ports(self):
        """Test validation of out-of-range ports."""
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(0, "Test port")

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(65536, "Test port")

    def test_non_integer_ports(self):
        """Strings, floats and booleans are rejected."""
        for value in ("80", 80.5, True):
            with pytest.raises(ValueError, match="must be between"):
                validate_port(value, "Test port")  # type: ignore[arg-type]

    def test_port_constants(self):
        assert MIN_PORT == 1
        assert MAX_PORT == 65535


class TestValidateNonEmptyString:
    """Test non-empty string validation function."""

    def test_valid_strings(self):
        """Test validation of valid strings."""
        assert validate_non_empty_string("db", "Field") == "db"
        assert validate_non_empty_string("  db  ", "Field") == "db"

    def test_empty_strings(self):
        """Test validation of empty and whitespace-only strings."""
        with pytest.raises(ValueError, match="name cannot be empty"):
            validate_non_empty_string("", "name")

        with pytest.raises(ValueError, match="name cannot be empty"):
            validate_non_empty_string(" \t\n", "name")


class TestLoopbackDetection:
    """Test loopback host classification used for self-loop checks."""

    @pytest.mark.parametrize(
        "host",
        ["localhost", "LOCALHOST", " localhost ", "127.0.0.1", "127.8.9.10", "::1", "0.0.0.0"],
    )
    def test_loopback_hosts(self, host):
        assert is_loopback_host(host) is True

    @pytest.mark.parametrize(
        "host", ["10.0.0.5", "db.internal", "192.168.1.1", "::2", "local", "128.0.0.1"]
    )
    def test_non_loopback_hosts(self, host):
        assert is_loopback_host(host) is False

    def test_self_loop_requires_same_port(self):
        assert is_self_loop(8080, "localhost", 8080) is True
        assert is_self_loop(8080, "localhost", 8081) is False
        assert is_self_loop(8080, "10.0.0.5", 8080) is False
