"""
Tests for input validation utilities.

Tests: validate_order_number, client_ip_from_headers
"""
import pytest
from fastapi import HTTPException

from utils.validators import client_ip_from_headers, validate_order_number


class TestValidateOrderNumber:
    """Test suite for order number validation."""

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["ORD-1001", "ORD-1718000000000-K3J9Q2ZXA", "abc"])
    def test_valid_order_number_passes(self, value):
        assert validate_order_number(value) == value

    @pytest.mark.unit
    def test_empty_order_number_raises_400(self):
        with pytest.raises(HTTPException) as exc_info:
            validate_order_number("")
        assert exc_info.value.status_code == 400
        assert "required" in exc_info.value.detail.lower()

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["ab", "-ORD", "ORD 1", "ORD/1", "O" * 101])
    def test_malformed_order_number_raises_400(self, value):
        with pytest.raises(HTTPException) as exc_info:
            validate_order_number(value)
        assert exc_info.value.status_code == 400


class TestClientIp:

    @pytest.mark.unit
    def test_first_forwarded_entry_wins(self):
        assert client_ip_from_headers("203.0.113.9, 10.0.0.1", "10.0.0.2") == "203.0.113.9"

    @pytest.mark.unit
    def test_falls_back_to_peer_then_loopback(self):
        assert client_ip_from_headers(None, "10.0.0.2") == "10.0.0.2"
        assert client_ip_from_headers(" , ", None) == "127.0.0.1"
