"""
Expiry reaper — time-based order transitions.

Two independent sweeps, each a plain function of (session, now) so they can be
driven by the background loop, by the cron HTTP trigger, or directly by tests:

    expire_unpaid_orders:          PENDING/PENDING orders older than the expiry
                                   window → CANCELLED/FAILED, stock restored
    auto_receive_delivered_orders: DELIVERED orders whose delivered_at (or
                                   updated_at) is older than the grace period
                                   → RECEIVED

Candidates are selected without locks; each order is then handled in its own
transaction by the ledger, which re-checks the predicate under lock. An order
a concurrent callback already moved is skipped, and a failed order is left
for the next sweep.

This runs as an asyncio background task during the FastAPI app lifespan.
"""
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session
from db_models import Order
from domain.enums import OrderStatus, PaymentStatus
from domain.errors import DomainError
from services import ledger_service
from utils.clock import isoformat, utcnow

logger = logging.getLogger(__name__)

_reaper_task: asyncio.Task | None = None
_is_running = False
_errors_count = 0
_runs_count = 0
_last_run_at: datetime | None = None
_last_result: dict = {}


# ════════════════════════════════════════════════════════════════════
# Sweeps
# ════════════════════════════════════════════════════════════════════

def _expirable_filter(cutoff: datetime):
    return (
        Order.status == OrderStatus.PENDING.value,
        Order.payment_status == PaymentStatus.PENDING.value,
        Order.created_at < cutoff,
    )


async def count_expirable_orders(
    db: AsyncSession,
    now: datetime | None = None,
    expiry_minutes: int | None = None,
) -> dict:
    """Report how many orders the unpaid sweep would cancel. Read-only."""
    now = now or utcnow()
    expiry_minutes = settings.order_expiry_minutes if expiry_minutes is None else expiry_minutes
    cutoff = now - timedelta(minutes=expiry_minutes)

    res = await db.execute(select(func.count(Order.id)).where(*_expirable_filter(cutoff)))
    return {
        "expiredCount": res.scalar() or 0,
        "expiryMinutes": expiry_minutes,
        "expiryTime": isoformat(cutoff),
    }


async def expire_unpaid_orders(
    db: AsyncSession,
    now: datetime | None = None,
    expiry_minutes: int | None = None,
) -> dict:
    """
    Cancel every unpaid order created more than `expiry_minutes` before `now`.

    Returns {expiredCount, restoredProducts, failedCount, expiryMinutes, orderNumbers};
    restoredProducts counts units returned to stock, not product lines.
    """
    now = now or utcnow()
    expiry_minutes = settings.order_expiry_minutes if expiry_minutes is None else expiry_minutes
    cutoff = now - timedelta(minutes=expiry_minutes)

    res = await db.execute(
        select(Order.id).where(*_expirable_filter(cutoff)).order_by(Order.created_at)
    )
    candidate_ids = list(res.scalars().all())

    expired: list[str] = []
    restored_products = 0
    failed = 0
    for order_id in candidate_ids:
        try:
            order = await ledger_service.expire_order(
                db, order_id=order_id, now=now, expiry_minutes=expiry_minutes
            )
        except DomainError as e:
            failed += 1
            logger.error(f"Expiry of order id={order_id} failed, will retry next sweep: {e.message}")
            continue
        if order is None:
            continue
        expired.append(order.order_number)
        entries = order.audit_entries()
        if entries:
            restored_products += sum(item["quantity"] for item in entries[-1].get("restoredItems", []))

    if candidate_ids:
        logger.info(
            f"Expiry sweep: {len(expired)} cancelled, {failed} failed, "
            f"{len(candidate_ids) - len(expired) - failed} skipped (window={expiry_minutes}m)"
        )
    return {
        "expiredCount": len(expired),
        "restoredProducts": restored_products,
        "failedCount": failed,
        "expiryMinutes": expiry_minutes,
        "orderNumbers": expired,
    }


async def auto_receive_delivered_orders(
    db: AsyncSession,
    now: datetime | None = None,
    grace_days: int | None = None,
) -> dict:
    """Move long-delivered orders to RECEIVED. Returns {receivedCount, failedCount, graceDays, orderNumbers}."""
    now = now or utcnow()
    grace_days = settings.auto_receive_days if grace_days is None else grace_days
    cutoff = now - timedelta(days=grace_days)

    res = await db.execute(
        select(Order.id).where(
            Order.status == OrderStatus.DELIVERED.value,
            func.coalesce(Order.delivered_at, Order.updated_at) < cutoff,
        )
    )
    candidate_ids = list(res.scalars().all())

    received: list[str] = []
    failed = 0
    for order_id in candidate_ids:
        try:
            order = await ledger_service.auto_receive_order(
                db, order_id=order_id, now=now, grace_days=grace_days
            )
        except DomainError as e:
            failed += 1
            logger.error(f"Auto-receipt of order id={order_id} failed, will retry next sweep: {e.message}")
            continue
        if order is not None:
            received.append(order.order_number)

    if candidate_ids:
        logger.info(f"Auto-receipt sweep: {len(received)} received, {failed} failed (grace={grace_days}d)")
    return {
        "receivedCount": len(received),
        "failedCount": failed,
        "graceDays": grace_days,
        "orderNumbers": received,
    }


# ════════════════════════════════════════════════════════════════════
# Background loop
# ════════════════════════════════════════════════════════════════════

async def run_once(now: datetime | None = None) -> dict:
    """Run both sweeps in a fresh session."""
    global _runs_count, _last_run_at, _last_result

    async with async_session() as db:
        expiry = await expire_unpaid_orders(db, now=now)
        receipt = await auto_receive_delivered_orders(db, now=now)

    _runs_count += 1
    _last_run_at = utcnow()
    _last_result = {"expiry": expiry, "autoReceive": receipt}
    return _last_result


async def _reaper_loop():
    """Main sweep loop. Runs forever as a background asyncio task."""
    global _errors_count

    interval = settings.reaper_interval_seconds
    logger.info(
        f"Reaper started (every {interval}s, expiry={settings.order_expiry_minutes}m, "
        f"auto-receive={settings.auto_receive_days}d)"
    )

    while _is_running:
        try:
            await asyncio.sleep(interval)
            await run_once()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _errors_count += 1
            logger.error(f"Reaper sweep error: {e}", exc_info=True)
            # Back off on repeated errors
            await asyncio.sleep(min(interval * 2, 300))


async def start():
    """Start the reaper as a background asyncio task."""
    global _reaper_task, _is_running

    if _reaper_task and not _reaper_task.done():
        logger.warning("Reaper already running")
        return

    _is_running = True
    _reaper_task = asyncio.create_task(_reaper_loop())
    logger.info("Reaper task created")


async def stop():
    """Stop the reaper gracefully."""
    global _reaper_task, _is_running
    _is_running = False

    if _reaper_task and not _reaper_task.done():
        _reaper_task.cancel()
        try:
            await _reaper_task
        except asyncio.CancelledError:
            pass

    _reaper_task = None
    logger.info("Reaper task stopped")


def get_status() -> dict:
    """Reaper status for /reaper/status and /health."""
    return {
        "enabled": settings.reaper_enabled,
        "running": _is_running,
        "runsCount": _runs_count,
        "errorsCount": _errors_count,
        "lastRunAt": isoformat(_last_run_at),
        "lastResult": _last_result,
        "intervalSeconds": settings.reaper_interval_seconds,
        "expiryMinutes": settings.order_expiry_minutes,
        "autoReceiveDays": settings.auto_receive_days,
    }
