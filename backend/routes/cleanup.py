"""
Scheduler-facing endpoints for the time-based sweeps.

    POST /orders/cleanup       — run the unpaid-expiry sweep now
    GET  /orders/cleanup       — how many orders the sweep would cancel (read-only)
    POST /orders/auto-receive  — run the auto-receipt sweep now
    GET  /reaper/status        — background reaper loop status

Guarded by `Authorization: Bearer <CRON_SECRET>` when a secret is configured.
This router must be included before routes/orders.py so /orders/cleanup is
not captured by /orders/{order_id}.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from deps import require_cron_secret
from domain.responses import success_response
from services import reaper_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["cleanup"], dependencies=[Depends(require_cron_secret)])


@router.post("/orders/cleanup")
async def run_expiry_sweep(db: AsyncSession = Depends(get_db)):
    result = await reaper_service.expire_unpaid_orders(db)
    logger.info(f"Cleanup trigger: {result['expiredCount']} order(s) expired")
    return success_response(result)


@router.get("/orders/cleanup")
async def preview_expiry_sweep(db: AsyncSession = Depends(get_db)):
    return success_response(await reaper_service.count_expirable_orders(db))


@router.post("/orders/auto-receive")
async def run_auto_receive_sweep(db: AsyncSession = Depends(get_db)):
    result = await reaper_service.auto_receive_delivered_orders(db)
    return success_response(result)


@router.get("/reaper/status")
async def reaper_status():
    return reaper_service.get_status()
