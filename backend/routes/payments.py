"""
Payment routes — gateway handoff and callbacks.

Endpoints:
    POST /payments/vnpay/create    — signed VNPay redirect URL for an order
    GET  /payments/vnpay/callback  — browser return from VNPay (302)
    GET  /payments/vnpay/ipn       — VNPay server-to-server confirmation (RspCode JSON)
    POST /payments/sepay/create    — SePay checkout URL + signed form fields
    GET  /payments/sepay/callback  — browser return from SePay (302)

Callback routes never answer with JSON errors: every failure is a redirect to
the failure page (see services/callback_service.py).
"""
import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from deps import get_sepay_adapter, get_user_id, get_vnpay_adapter
from domain import constants as c
from domain.responses import success_response
from services import callback_service, ledger_service
from services.gateways.base import PaymentRequest
from services.gateways.sepay import SePayAdapter
from services.gateways.vnpay import VNPayAdapter
from utils.validators import client_ip_from_headers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


# ════════════════════════════════════════════════════════════════════
# Request Models
# ════════════════════════════════════════════════════════════════════


class CreatePaymentRequest(BaseModel):
    order_id: int = Field(..., alias="orderId", gt=0)
    locale: str | None = Field(default=None, pattern="^(vn|en)$")
    payment_method: str | None = Field(default=None, alias="paymentMethod", max_length=30)

    model_config = {"populate_by_name": True}


# ════════════════════════════════════════════════════════════════════
# VNPay
# ════════════════════════════════════════════════════════════════════


@router.post("/vnpay/create")
async def create_vnpay_payment(
    body: CreatePaymentRequest,
    request: Request,
    x_forwarded_for: str | None = Header(default=None),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    adapter: VNPayAdapter = Depends(get_vnpay_adapter),
):
    """Build the signed VNPay redirect URL for one of the caller's orders."""
    order = await ledger_service.get_order(db, body.order_id, user_id=user_id)
    ledger_service.ensure_payable(order)

    payload = adapter.build_payment_request(
        PaymentRequest(
            order_number=order.order_number,
            amount=order.total,
            description=f"Thanh toan don hang {order.order_number}",
            client_ip=client_ip_from_headers(
                x_forwarded_for, request.client.host if request.client else None
            ),
            locale=body.locale,
        )
    )
    order = await ledger_service.attach_payment_request(
        db,
        order_id=order.id,
        gateway=adapter.gateway.value,
        payment_url=payload.url,
        kind=payload.kind,
        payment_method=body.payment_method or "BANK_TRANSFER",
    )
    return success_response({
        "orderId": order.id,
        "orderNumber": order.order_number,
        "gateway": payload.gateway.value,
        "kind": payload.kind,
        "paymentUrl": payload.url,
    })


@router.get("/vnpay/callback")
async def vnpay_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: VNPayAdapter = Depends(get_vnpay_adapter),
):
    """Browser return from VNPay. Always answers 302."""
    params = dict(request.query_params)
    try:
        result = await callback_service.process_callback(db, adapter, params)
    except Exception as e:
        logger.error(f"VNPay callback crashed: {e}", exc_info=True)
        result = callback_service.failure_redirect(c.ERROR_INTERNAL)
    return RedirectResponse(result.redirect_url, status_code=302)


@router.get("/vnpay/ipn")
async def vnpay_ipn(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: VNPayAdapter = Depends(get_vnpay_adapter),
):
    """VNPay server-to-server confirmation. Answers {RspCode, Message}."""
    params = dict(request.query_params)
    try:
        return await callback_service.process_ipn(db, adapter, params)
    except Exception as e:
        logger.error(f"VNPay IPN crashed: {e}", exc_info=True)
        return {"RspCode": c.VNPAY_IPN_RETRY[0], "Message": c.VNPAY_IPN_RETRY[1]}


# ════════════════════════════════════════════════════════════════════
# SePay
# ════════════════════════════════════════════════════════════════════


@router.post("/sepay/create")
async def create_sepay_payment(
    body: CreatePaymentRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    adapter: SePayAdapter = Depends(get_sepay_adapter),
):
    """Build the SePay checkout form for one of the caller's orders."""
    order = await ledger_service.get_order(db, body.order_id, user_id=user_id)
    ledger_service.ensure_payable(order)

    method = (body.payment_method or order.payment_method or "CARD").upper()
    urls = adapter.callback_urls(order.order_number)
    payload = adapter.build_payment_request(
        PaymentRequest(
            order_number=order.order_number,
            amount=order.total,
            description=f"Thanh toan don hang {order.order_number}",
            customer_id=order.user_id,
            custom_data=f'{{"orderId": {order.id}}}',
            payment_method=method,
            **urls,
        )
    )
    order = await ledger_service.attach_payment_request(
        db,
        order_id=order.id,
        gateway=adapter.gateway.value,
        payment_url=payload.url,
        kind=payload.kind,
        payment_method=method,
    )
    return success_response({
        "orderId": order.id,
        "orderNumber": order.order_number,
        "gateway": payload.gateway.value,
        "kind": payload.kind,
        "checkoutUrl": payload.url,
        "formFields": payload.form_fields,
    })


@router.get("/sepay/callback")
async def sepay_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: SePayAdapter = Depends(get_sepay_adapter),
):
    """Browser return from SePay (success/error/cancel URL). Always answers 302."""
    params = dict(request.query_params)
    try:
        result = await callback_service.process_callback(db, adapter, params)
    except Exception as e:
        logger.error(f"SePay callback crashed: {e}", exc_info=True)
        result = callback_service.failure_redirect(c.ERROR_INTERNAL)
    return RedirectResponse(result.redirect_url, status_code=302)
