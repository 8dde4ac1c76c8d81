"""
Admin endpoints — order management and SePay back-office lookups.

All routes require the X-Admin-Token header (see deps.require_admin).
Admin transitions may force CANCELLED from any non-cancelled state; forward
moves follow the normal state machine.
"""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from deps import Pagination, get_sepay_api_client, pagination_params, require_admin
from domain.enums import Actor, OrderStatus, PaymentStatus
from domain.errors import ValidationError
from domain.responses import paginated_response, success_response
from services import ledger_service
from services.gateways.sepay import SePayApiClient
from utils.validators import validated_order_number

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class AdminOrderUpdateRequest(BaseModel):
    status: OrderStatus | None = None
    notes: str | None = Field(default=None, max_length=5000)


@router.get("/orders")
async def list_orders(
    status: OrderStatus | None = Query(default=None),
    payment_status: PaymentStatus | None = Query(default=None, alias="paymentStatus"),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    orders, total = await ledger_service.list_orders(
        db,
        status=status.value if status else None,
        payment_status=payment_status.value if payment_status else None,
        limit=page["limit"],
        offset=page["offset"],
    )
    return paginated_response(
        [ledger_service.order_to_dict(o) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/orders/{order_id}")
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    order = await ledger_service.get_order(db, order_id)
    return success_response(ledger_service.order_to_dict(order))


@router.patch("/orders/{order_id}")
async def update_order(
    order_id: int,
    body: AdminOrderUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    if body.status is None and body.notes is None:
        raise ValidationError("Nothing to update: provide status and/or notes")

    if body.status is not None:
        await ledger_service.transition_status(
            db, order_id=order_id, new_status=body.status, actor=Actor.ADMIN
        )
    if body.notes is not None:
        await ledger_service.annotate_order(db, order_id=order_id, notes=body.notes)

    order = await ledger_service.get_order(db, order_id)
    return success_response(ledger_service.order_to_dict(order))


# ── SePay back-office ───────────────────────────────────────────────

@router.get("/payments/sepay/orders/{orderNumber}")
async def sepay_order_detail(
    order_number: str = Depends(validated_order_number),
    client: SePayApiClient = Depends(get_sepay_api_client),
):
    return success_response(await client.fetch_order(order_number))


@router.post("/payments/sepay/orders/{orderNumber}/void")
async def sepay_void_transaction(
    order_number: str = Depends(validated_order_number),
    client: SePayApiClient = Depends(get_sepay_api_client),
):
    return success_response(await client.void_transaction(order_number))


@router.post("/payments/sepay/orders/{orderNumber}/cancel")
async def sepay_cancel_order(
    order_number: str = Depends(validated_order_number),
    client: SePayApiClient = Depends(get_sepay_api_client),
):
    return success_response(await client.cancel_order(order_number))
