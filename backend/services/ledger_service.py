"""
Order ledger — the only module that writes Order state.

Every write runs inside database.atomic() and re-reads the order row with
SELECT ... FOR UPDATE (populate_existing, so a stale identity-map copy is never
trusted). Orders also carry a version column, so a writer that slipped past the
lock on a backend without row locks (SQLite) fails with PersistenceFailureError
instead of double-applying.

Rules enforced here:
    - payment_status PAID is written at most once per order
    - status only moves forward along STATUS_FLOW; CANCELLED is terminal
    - stock is decremented once at checkout and restored at most once
      (guarded by Order.stock_restored, set in the same transaction)
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import atomic
from db_models import Order, OrderItem, Product
from domain import constants as c
from domain.enums import STATUS_FLOW, Actor, OrderStatus, PaymentOutcome, PaymentStatus
from domain.errors import (
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
    UnknownOrderError,
    ValidationError,
)
from utils.clock import isoformat, utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
RETURN_REQUEST_PREFIX = "[Yêu cầu hoàn hàng]"


@dataclass
class PaymentApplication:
    """Result of apply_payment_outcome. already_paid is the idempotent no-op case."""
    order: Order
    applied: bool
    already_paid: bool = False
    requires_refund: bool = False


# ── Reads ───────────────────────────────────────────────────────────

async def get_order(db: AsyncSession, order_id: int, *, user_id: str | None = None) -> Order:
    """Fetch an order; when user_id is given, other users' orders look missing."""
    res = await db.execute(select(Order).where(Order.id == order_id))
    order = res.scalar_one_or_none()
    if order is None or (user_id is not None and order.user_id != user_id):
        raise UnknownOrderError(str(order_id))
    return order


async def get_order_by_number(db: AsyncSession, order_number: str) -> Order:
    res = await db.execute(select(Order).where(Order.order_number == order_number))
    order = res.scalar_one_or_none()
    if order is None:
        raise UnknownOrderError(order_number)
    return order


async def list_orders(
    db: AsyncSession,
    *,
    status: str | None = None,
    payment_status: str | None = None,
    user_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    filters = []
    if status:
        filters.append(Order.status == OrderStatus(status).value)
    if payment_status:
        filters.append(Order.payment_status == PaymentStatus(payment_status).value)
    if user_id:
        filters.append(Order.user_id == user_id)

    total_res = await db.execute(select(func.count(Order.id)).where(*filters))
    total = total_res.scalar() or 0

    res = await db.execute(
        select(Order)
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(res.scalars().all()), total


async def _lock_order(db: AsyncSession, order_id: int) -> Order:
    res = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise UnknownOrderError(str(order_id))
    return order


async def _lock_order_by_number(db: AsyncSession, order_number: str) -> Order:
    res = await db.execute(
        select(Order)
        .where(Order.order_number == order_number)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise UnknownOrderError(order_number)
    return order


# ── Checkout ────────────────────────────────────────────────────────

def generate_order_number(now: datetime | None = None, prefix: str | None = None) -> str:
    """<prefix>-<epoch ms>-<9 upper-case alphanumerics>, e.g. ORD-1718000000000-K3J9Q2ZXA."""
    now = now or utcnow()
    epoch_ms = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    suffix = "".join(
        secrets.choice(c.ORDER_NUMBER_ALPHABET) for _ in range(c.ORDER_NUMBER_SUFFIX_LENGTH)
    )
    return f"{prefix or settings.order_number_prefix}-{epoch_ms}-{suffix}"


async def _unused_order_number(db: AsyncSession, now: datetime) -> str:
    for _ in range(5):
        candidate = generate_order_number(now)
        res = await db.execute(select(Order.id).where(Order.order_number == candidate))
        if res.scalar_one_or_none() is None:
            return candidate
    raise ConflictError("Could not allocate a unique order number")


async def create_order(
    db: AsyncSession,
    *,
    user_id: str | None,
    items: list[dict],
    payment_method: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Create a PENDING/PENDING order and reserve its stock in one transaction.

    items: [{product_id:int, quantity:int}]. Duplicate product lines are merged.
    Stock is decremented with a conditional UPDATE (stock_quantity >= qty), so
    two concurrent checkouts can never oversell.
    """
    if not items:
        raise ValidationError("Cart is empty", field="items")

    quantities: dict[int, int] = {}
    for line in items:
        pid = int(line["product_id"])
        qty = int(line.get("quantity", 1))
        if qty <= 0:
            raise ValidationError("Quantity must be positive", field="quantity")
        quantities[pid] = quantities.get(pid, 0) + qty

    now = now or utcnow()
    tax_rate = Decimal(settings.order_tax_rate)

    async with atomic(db):
        res = await db.execute(
            select(Product)
            .where(Product.id.in_(list(quantities)))
            .execution_options(populate_existing=True)
        )
        products = {p.id: p for p in res.scalars().all()}

        subtotal = Decimal("0")
        order_items: list[OrderItem] = []
        for pid, qty in quantities.items():
            product = products.get(pid)
            if product is None or not product.active:
                raise ValidationError(f"Product {pid} not available", field="items")
            if product.stock_quantity is not None and qty > product.stock_quantity:
                raise ConflictError(
                    f"Insufficient stock for {product.slug}",
                    details={"product_id": pid, "requested": qty, "available": product.stock_quantity},
                )
            unit_price = Decimal(product.price).quantize(CENT)
            line_total = (unit_price * qty).quantize(CENT)
            subtotal += line_total
            order_items.append(
                OrderItem(product_id=pid, quantity=qty, unit_price=unit_price, total=line_total)
            )

        for pid, qty in quantities.items():
            if products[pid].stock_quantity is None:
                continue
            result = await db.execute(
                update(Product)
                .where(Product.id == pid, Product.stock_quantity >= qty)
                .values(stock_quantity=Product.stock_quantity - qty, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    f"Insufficient stock for {products[pid].slug}",
                    details={"product_id": pid, "requested": qty},
                )

        subtotal = subtotal.quantize(CENT)
        tax = (subtotal * tax_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        shipping = Decimal("0.00")

        order = Order(
            order_number=await _unused_order_number(db, now),
            user_id=user_id,
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=subtotal + tax + shipping,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=payment_method,
            payment_metadata="[]",
            stock_restored=False,
            notes=notes,
            created_at=now,
            updated_at=now,
            items=order_items,
        )
        db.add(order)
        await db.flush()

    logger.info(f"Order {order.order_number} created: {len(order_items)} lines, total={order.total}")
    return order


# ── Payment axis ────────────────────────────────────────────────────

def ensure_payable(order: Order) -> None:
    """A payment may only be started for an unpaid PENDING order."""
    if order.payment_status == PaymentStatus.PAID.value:
        raise ConflictError("Order is already paid", details={"order_number": order.order_number})
    if order.status != OrderStatus.PENDING.value:
        raise ValidationError(f"Order is {order.status}, not awaiting payment", field="status")


async def attach_payment_request(
    db: AsyncSession,
    *,
    order_id: int,
    gateway: str,
    payment_url: str,
    kind: str,
    payment_method: str | None = None,
    now: datetime | None = None,
) -> Order:
    """Record which gateway the customer was sent to. payment_status stays PENDING."""
    now = now or utcnow()
    async with atomic(db):
        order = await _lock_order(db, order_id)
        ensure_payable(order)

        order.payment_gateway = gateway
        order.payment_url = payment_url
        if payment_method:
            order.payment_method = payment_method
        # A fresh attempt after a failed one is payable (and expirable) again.
        order.payment_status = PaymentStatus.PENDING.value
        order.updated_at = now
        order.append_audit({
            "event": "payment_request",
            "gateway": gateway,
            "kind": kind,
            "at": isoformat(now),
        })

    logger.info(f"Order {order.order_number}: payment request sent via {gateway} ({kind})")
    return order


async def apply_payment_outcome(
    db: AsyncSession,
    *,
    order_number: str,
    outcome: PaymentOutcome,
    gateway_transaction_id: str | None = None,
    raw_event: dict | None = None,
    gateway: str | None = None,
    now: datetime | None = None,
) -> PaymentApplication:
    """
    Apply one gateway outcome to the payment axis.

    Idempotent: once an order is PAID, every later outcome (duplicate or stale)
    is a no-op and the order is returned unchanged. USER_CANCELLED only appends
    an audit entry so the customer can retry. A SUCCESS on a CANCELLED order is
    still recorded (money moved) and flagged requiresRefund.
    """
    outcome = PaymentOutcome(outcome)
    now = now or utcnow()

    async with atomic(db):
        order = await _lock_order_by_number(db, order_number)

        if order.payment_status == PaymentStatus.PAID.value:
            logger.warning(
                f"Order {order_number} already PAID; ignoring {outcome.value} "
                f"(txn={gateway_transaction_id})"
            )
            return PaymentApplication(order=order, applied=False, already_paid=True)

        entry = {
            "event": "payment_callback",
            "outcome": outcome.value,
            "at": isoformat(now),
        }
        if raw_event:
            entry.update(raw_event)
        requires_refund = False

        if outcome is PaymentOutcome.SUCCESS:
            order.payment_status = PaymentStatus.PAID.value
            order.payment_transaction_id = gateway_transaction_id
            order.paid_at = now
            if gateway:
                order.payment_gateway = gateway
            if order.status == OrderStatus.CANCELLED.value:
                requires_refund = True
                entry["requiresRefund"] = True
                logger.warning(
                    f"Payment arrived for cancelled order {order_number} "
                    f"(txn={gateway_transaction_id}); flagged for refund"
                )
        elif outcome is PaymentOutcome.PENDING:
            order.payment_status = PaymentStatus.PENDING.value
            if gateway_transaction_id:
                order.payment_transaction_id = gateway_transaction_id
        elif outcome is PaymentOutcome.USER_CANCELLED:
            entry["reason"] = c.REASON_USER_CANCELLED
        else:
            order.payment_status = PaymentStatus.FAILED.value

        order.append_audit(entry)
        order.updated_at = now

    logger.info(f"Order {order_number}: applied {outcome.value} -> payment_status={order.payment_status}")
    return PaymentApplication(order=order, applied=True, requires_refund=requires_refund)


# ── Status axis ─────────────────────────────────────────────────────

def _within_window(order: Order, now: datetime, grace_days: int) -> bool:
    anchor = order.delivered_at or order.updated_at
    return anchor is not None and anchor >= now - timedelta(days=grace_days)


def check_transition(
    order: Order,
    new_status: OrderStatus,
    actor: Actor,
    *,
    now: datetime,
    grace_days: int,
) -> bool:
    """
    Validate a status change. Returns False for a same-status no-op.

    Raises InvalidTransitionError for moves the state machine forbids and
    PermissionDeniedError for moves the actor may not request.
    """
    current = OrderStatus(order.status)
    if new_status == current:
        return False

    if current is OrderStatus.CANCELLED:
        raise InvalidTransitionError(current.value, new_status.value, "cancelled orders are final")

    if new_status is OrderStatus.CANCELLED:
        if actor is Actor.CUSTOMER and current is not OrderStatus.PENDING:
            raise InvalidTransitionError(current.value, new_status.value, "only pending orders can be cancelled")
        return True

    if STATUS_FLOW.index(new_status) < STATUS_FLOW.index(current):
        raise InvalidTransitionError(current.value, new_status.value, "status cannot move backward")

    if actor is Actor.CUSTOMER:
        if new_status not in (OrderStatus.RECEIVED, OrderStatus.RETURN_REQUESTED):
            raise PermissionDeniedError(f"Customers cannot set status {new_status.value}")
        if current is not OrderStatus.DELIVERED:
            raise InvalidTransitionError(current.value, new_status.value, "order has not been delivered")
        if not _within_window(order, now, grace_days):
            raise InvalidTransitionError(
                current.value, new_status.value, f"the {grace_days}-day window after delivery has passed"
            )
    return True


async def _restore_stock(db: AsyncSession, order: Order, now: datetime) -> list[dict]:
    restored = []
    for item in order.items:
        if item.quantity <= 0:
            continue
        result = await db.execute(
            update(Product)
            .where(Product.id == item.product_id, Product.stock_quantity.is_not(None))
            .values(stock_quantity=Product.stock_quantity + item.quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            restored.append({"productId": item.product_id, "quantity": item.quantity})
    return restored


async def _apply_cancellation(
    db: AsyncSession,
    order: Order,
    *,
    actor: Actor,
    reason: str,
    now: datetime,
    fail_payment: bool = False,
    extra: dict | None = None,
) -> list[dict]:
    """
    Move a locked order into CANCELLED and restore its stock once.

    The single cancellation path for customer cancels, admin force-cancels
    and the expiry sweep. Must run inside the caller's atomic() block.
    """
    previous = order.status
    order.status = OrderStatus.CANCELLED.value

    restored: list[dict] = []
    if not order.stock_restored:
        restored = await _restore_stock(db, order, now)
        order.stock_restored = True

    if fail_payment and order.payment_status == PaymentStatus.PENDING.value:
        order.payment_status = PaymentStatus.FAILED.value

    entry = {
        "event": "cancelled",
        "from": previous,
        "reason": reason,
        "actor": actor.value,
        "cancelledAt": isoformat(now),
        "restoredItems": restored,
    }
    if extra:
        entry.update(extra)
    order.append_audit(entry)
    order.updated_at = now
    return restored


async def transition_status(
    db: AsyncSession,
    *,
    order_id: int,
    new_status: OrderStatus | str,
    actor: Actor,
    user_id: str | None = None,
    note: str | None = None,
    now: datetime | None = None,
    grace_days: int | None = None,
) -> Order:
    """
    Move an order along the fulfillment state machine.

    Same-status requests are no-ops (so a retried cancel never restores stock
    twice). DELIVERED and RECEIVED stamp delivered_at / received_at on first
    entry only.
    """
    new_status = OrderStatus(new_status)
    now = now or utcnow()
    grace_days = settings.auto_receive_days if grace_days is None else grace_days

    async with atomic(db):
        order = await _lock_order(db, order_id)
        if user_id is not None and order.user_id != user_id:
            raise UnknownOrderError(str(order_id))

        if not check_transition(order, new_status, actor, now=now, grace_days=grace_days):
            return order

        previous = order.status
        if new_status is OrderStatus.CANCELLED:
            reason = "admin_cancelled" if actor is Actor.ADMIN else "customer_cancelled"
            await _apply_cancellation(db, order, actor=actor, reason=reason, now=now)
        else:
            order.status = new_status.value
            if new_status is OrderStatus.DELIVERED and order.delivered_at is None:
                order.delivered_at = now
            if new_status is OrderStatus.RECEIVED and order.received_at is None:
                order.received_at = now
            if new_status is OrderStatus.RETURN_REQUESTED and note:
                line = f"{RETURN_REQUEST_PREFIX} {note.strip()}"
                order.notes = f"{order.notes}\n{line}" if order.notes else line
            order.append_audit({
                "event": "status_change",
                "from": previous,
                "to": new_status.value,
                "actor": actor.value,
                "at": isoformat(now),
            })
            order.updated_at = now

    logger.info(f"Order {order.order_number}: {previous} -> {new_status.value} by {actor.value}")
    return order


async def annotate_order(db: AsyncSession, *, order_id: int, notes: str, now: datetime | None = None) -> Order:
    """Replace the staff notes on an order."""
    now = now or utcnow()
    async with atomic(db):
        order = await _lock_order(db, order_id)
        order.notes = notes
        order.updated_at = now
    return order


# ── Time-based transitions (called by the reaper) ───────────────────

async def expire_order(
    db: AsyncSession,
    *,
    order_id: int,
    now: datetime,
    expiry_minutes: int,
) -> Order | None:
    """
    Cancel one stale unpaid order. Returns None when the order no longer
    matches the expiry predicate under lock (e.g. a callback just paid it).
    """
    cutoff = now - timedelta(minutes=expiry_minutes)
    async with atomic(db):
        order = await _lock_order(db, order_id)
        if not (
            order.status == OrderStatus.PENDING.value
            and order.payment_status == PaymentStatus.PENDING.value
            and order.created_at < cutoff
        ):
            return None
        await _apply_cancellation(
            db,
            order,
            actor=Actor.SYSTEM,
            reason=c.REASON_EXPIRED,
            now=now,
            fail_payment=True,
            extra={"expiryMinutes": expiry_minutes},
        )
    logger.info(f"Order {order.order_number} expired after {expiry_minutes} minutes unpaid")
    return order


async def auto_receive_order(
    db: AsyncSession,
    *,
    order_id: int,
    now: datetime,
    grace_days: int,
) -> Order | None:
    """Confirm receipt of one long-delivered order, or None if it no longer qualifies."""
    async with atomic(db):
        order = await _lock_order(db, order_id)
        if order.status != OrderStatus.DELIVERED.value or _within_window(order, now, grace_days):
            return None
        order.status = OrderStatus.RECEIVED.value
        if order.received_at is None:
            order.received_at = now
        order.append_audit({
            "event": "status_change",
            "from": OrderStatus.DELIVERED.value,
            "to": OrderStatus.RECEIVED.value,
            "actor": Actor.SYSTEM.value,
            "reason": c.REASON_AUTO_RECEIVED,
            "at": isoformat(now),
        })
        order.updated_at = now
    logger.info(f"Order {order.order_number} auto-received after {grace_days} days")
    return order


# ── Serialization ───────────────────────────────────────────────────

def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "userId": order.user_id,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "paymentGateway": order.payment_gateway,
        "paymentUrl": order.payment_url,
        "paymentTransactionId": order.payment_transaction_id,
        "paymentMetadata": order.audit_entries(),
        "stockRestored": order.stock_restored,
        "subtotal": str(order.subtotal),
        "tax": str(order.tax),
        "shipping": str(order.shipping),
        "total": str(order.total),
        "notes": order.notes,
        "items": [
            {
                "productId": item.product_id,
                "quantity": item.quantity,
                "unitPrice": str(item.unit_price),
                "total": str(item.total),
            }
            for item in order.items
        ],
        "createdAt": isoformat(order.created_at),
        "updatedAt": isoformat(order.updated_at),
        "paidAt": isoformat(order.paid_at),
        "deliveredAt": isoformat(order.delivered_at),
        "receivedAt": isoformat(order.received_at),
    }
