"""
Domain enums for orders and payments.
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RECEIVED = "RECEIVED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    CANCELLED = "CANCELLED"


# Forward-only fulfillment flow; CANCELLED sits outside it.
STATUS_FLOW: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.RECEIVED,
    OrderStatus.RETURN_REQUESTED,
)


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentOutcome(str, Enum):
    """Gateway-agnostic result of a single callback."""
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    USER_CANCELLED = "USER_CANCELLED"
    FAILED = "FAILED"


class PaymentGateway(str, Enum):
    VNPAY = "VNPay"
    SEPAY = "SePay"


class Actor(str, Enum):
    """Who asked for a status transition."""
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"
