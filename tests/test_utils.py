"""Tests for utility functions."""

import pytest

from iap_tunnel.common.utils import MAX_PORT, MIN_PORT, validate_port


class TestValidatePort:
    """Test port validation function."""

    def test_valid_ports(self):
        validate_port(MIN_PORT, "Min port")
        validate_port(22, "SSH port")
        validate_port(3389, "RDP port")
        validate_port(MAX_PORT, "Max port")

    def test_invalid_ports(self):
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(0, "Test port")

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(65536, "Test port")

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(-1, "Test port")

    def test_non_integer_ports(self):
        with pytest.raises(ValueError, match="Test port must be an integer"):
            validate_port("80", "Test port")  # type: ignore

        with pytest.raises(ValueError, match="Test port must be an integer"):
            validate_port(80.5, "Test port")  # type: ignore

        with pytest.raises(ValueError, match="Test port must be an integer"):
            validate_port(True, "Test port")  # type: ignore

    def test_default_port_name(self):
        with pytest.raises(ValueError, match="^Port must be between"):
            validate_port(0)
