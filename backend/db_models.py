"""
SQLAlchemy ORM models for the storefront payments backend.

Tables:
    products     — catalog rows; only price and stock matter here
    orders       — order ledger (fulfillment status + payment status axes)
    order_items  — per-product lines with the unit price snapshot at checkout
"""
import json

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Text, ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship

from database import Base
from domain.enums import OrderStatus, PaymentStatus
from utils.clock import utcnow


# ════════════════════════════════════════════════════════════════════
# Catalog
# ════════════════════════════════════════════════════════════════════

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    stock_quantity = Column(Integer, nullable=True)  # null => unlimited
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ════════════════════════════════════════════════════════════════════
# Orders
# ════════════════════════════════════════════════════════════════════

class Order(Base):
    """
    One customer order.

    `status` is the fulfillment state machine and `payment_status` is an
    independent axis. `payment_metadata` is a JSON list that is only ever
    appended to (see append_audit). `version` is bumped on every UPDATE so a
    concurrent writer holding a stale row fails instead of double-applying.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(100), unique=True, nullable=False, index=True)
    user_id = Column(String(100), nullable=True, index=True)

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    shipping = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(30), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String(30), nullable=True)  # BANK_TRANSFER | CARD | QR
    payment_gateway = Column(String(20), nullable=True)  # VNPay | SePay
    payment_url = Column(Text, nullable=True)
    payment_transaction_id = Column(String(100), nullable=True, index=True)
    payment_metadata = Column(Text, nullable=False, default="[]")  # JSON list, append-only
    stock_restored = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    received_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    items = relationship(
        "OrderItem", back_populates="order", lazy="selectin", order_by="OrderItem.id"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # Expiry sweep: status + payment_status + created_at
        Index("ix_orders_status_payment_created", "status", "payment_status", "created_at"),
        # Customer order history
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    def audit_entries(self) -> list[dict]:
        try:
            entries = json.loads(self.payment_metadata or "[]")
        except (TypeError, ValueError):
            return []
        return entries if isinstance(entries, list) else []

    def append_audit(self, entry: dict) -> None:
        """Append one entry to payment_metadata. Existing entries are never rewritten."""
        entries = self.audit_entries()
        entries.append(entry)
        self.payment_metadata = json.dumps(entries, default=str, ensure_ascii=False)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)  # snapshot at checkout
    total = Column(Numeric(12, 2), nullable=False, default=0)

    order = relationship("Order", back_populates="items")
