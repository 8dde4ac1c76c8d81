"""
Customer order endpoints.

The caller's identity arrives in the X-User-Id header from the authenticating
proxy; other users' orders are indistinguishable from missing ones.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from deps import get_user_id
from domain.enums import Actor, OrderStatus
from domain.responses import success_response
from services import ledger_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["orders"])


class CartItem(BaseModel):
    product_id: int = Field(..., gt=0, alias="productId")
    quantity: int = Field(1, ge=1, le=100)

    model_config = {"populate_by_name": True}


class OrderCreateRequest(BaseModel):
    items: list[CartItem] = Field(..., min_length=1)
    payment_method: str | None = Field(default=None, alias="paymentMethod", max_length=30)
    notes: str | None = Field(default=None, max_length=2000)

    model_config = {"populate_by_name": True}


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus
    reason: str | None = Field(default=None, max_length=1000)


@router.post("", status_code=201)
async def create_order(
    body: OrderCreateRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    order = await ledger_service.create_order(
        db,
        user_id=user_id,
        items=[{"product_id": i.product_id, "quantity": i.quantity} for i in body.items],
        payment_method=body.payment_method,
        notes=body.notes,
    )
    return success_response(ledger_service.order_to_dict(order))


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    order = await ledger_service.get_order(db, order_id, user_id=user_id)
    return success_response(ledger_service.order_to_dict(order))


@router.patch("/{order_id}")
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdateRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Customer-initiated transitions:
      CANCELLED        — only while PENDING (stock is restored)
      RECEIVED         — only from DELIVERED, within the auto-receive window
      RETURN_REQUESTED — only from DELIVERED, within the window; reason goes to notes
    """
    order = await ledger_service.transition_status(
        db,
        order_id=order_id,
        new_status=body.status,
        actor=Actor.CUSTOMER,
        user_id=user_id,
        note=body.reason,
    )
    return success_response(ledger_service.order_to_dict(order))
