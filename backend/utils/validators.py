"""
Input validation utilities for the storefront payments backend.

Order numbers are the join key for both gateways' callbacks, so every path
parameter carrying one is checked for shape before it reaches a query.
"""
import re

from fastapi import HTTPException, Path

ORDER_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{2,99}$")
DEFAULT_CLIENT_IP = "127.0.0.1"


def validate_order_number(order_number: str) -> str:
    """
    Validate an order number's format.

    Raises:
        HTTPException(400) if the value is empty or malformed
    """
    if not order_number:
        raise HTTPException(status_code=400, detail="Order number is required")

    if not ORDER_NUMBER_PATTERN.match(order_number):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid order number: {order_number[:24]}",
        )

    return order_number


def validated_order_number(
    order_number: str = Path(..., alias="orderNumber", description="Order number (e.g. ORD-1718000000000-K3J9Q2ZXA)"),
) -> str:
    """FastAPI dependency for validating orderNumber path parameters."""
    return validate_order_number(order_number)


def client_ip_from_headers(forwarded_for: str | None, fallback: str | None = None) -> str:
    """First X-Forwarded-For entry, else the socket peer, else 127.0.0.1."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return fallback or DEFAULT_CLIENT_IP
