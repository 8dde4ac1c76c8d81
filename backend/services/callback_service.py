"""
Callback processor — gateway callback → ledger transition → browser redirect.

Every callback is treated as possibly duplicated (gateways retry) and possibly
forged. The adapter verifies the signature before anything looks the order
up; every rejection path returns a redirect to the failure page with a
distinguishable `error` token and leaves the ledger untouched.

Redirects are always built from settings.app_base_url, never from anything
in the request.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from domain import constants as c
from domain.enums import PaymentOutcome, PaymentStatus
from domain.errors import PersistenceFailureError, UnknownOrderError
from domain.events import InvalidCallback
from services import ledger_service
from services.gateways.base import GatewayAdapter

logger = logging.getLogger(__name__)

_OUTCOME_PAGES = {
    PaymentOutcome.SUCCESS: "success",
    PaymentOutcome.PENDING: "pending",
    PaymentOutcome.USER_CANCELLED: "cancelled",
}


@dataclass
class CallbackResult:
    redirect_url: str
    outcome: PaymentOutcome | None = None
    error: str | None = None
    order_id: int | None = None
    applied: bool = False


def build_redirect(path: str, params: dict | None = None) -> str:
    url = f"{settings.app_base_url.rstrip('/')}{path}"
    query = {k: v for k, v in (params or {}).items() if v not in (None, "")}
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def failure_redirect(error: str, *, order_id: int | None = None, message: str | None = None) -> CallbackResult:
    return CallbackResult(
        redirect_url=build_redirect(
            c.PAYMENT_FAILED_PATH, {"orderId": order_id, "error": error, "message": message}
        ),
        error=error,
        order_id=order_id,
    )


def order_redirect(order_id: int, page: str) -> str:
    return build_redirect(c.ORDER_DETAIL_PATH.format(order_id=order_id), {"payment": page})


def amount_matches(reported: Decimal | None, expected: Decimal) -> bool:
    if reported is None:
        return True
    return Decimal(reported).quantize(Decimal("0.01")) == Decimal(expected).quantize(Decimal("0.01"))


async def process_callback(
    db: AsyncSession,
    adapter: GatewayAdapter,
    raw_params: dict[str, str],
    *,
    now: datetime | None = None,
) -> CallbackResult:
    """
    Handle one browser-redirect callback.

    SUCCESS        → PAID, /orders/{id}?payment=success
    PENDING        → PENDING, /orders/{id}?payment=pending
    USER_CANCELLED → audit only, /orders/{id}?payment=cancelled
    FAILED         → FAILED, /payment/failed?orderId=..&error=<gateway code>&message=..
    """
    gateway = adapter.gateway.value
    parsed = adapter.parse_callback(raw_params)

    if isinstance(parsed, InvalidCallback):
        logger.warning(f"{gateway} callback rejected ({parsed.error}) for order ref {parsed.order_number!r}")
        return failure_redirect(parsed.error)

    event = parsed
    try:
        order = await ledger_service.get_order_by_number(db, event.order_number)
    except UnknownOrderError:
        logger.warning(f"{gateway} callback for unknown order {event.order_number!r}: {event.raw_params}")
        return failure_redirect(c.ERROR_ORDER_NOT_FOUND)

    if event.outcome is PaymentOutcome.SUCCESS and not amount_matches(event.amount, order.total):
        logger.warning(
            f"{gateway} callback amount mismatch for {order.order_number}: "
            f"reported={event.amount} expected={order.total}"
        )
        return failure_redirect(c.ERROR_AMOUNT_MISMATCH, order_id=order.id)

    order_id = order.id
    try:
        application = await ledger_service.apply_payment_outcome(
            db,
            order_number=event.order_number,
            outcome=event.outcome,
            gateway_transaction_id=event.gateway_transaction_id,
            raw_event=event.audit_payload(),
            gateway=gateway,
            now=now,
        )
    except UnknownOrderError:
        return failure_redirect(c.ERROR_ORDER_NOT_FOUND)
    except PersistenceFailureError:
        logger.error(f"{gateway} callback for {event.order_number} could not be persisted")
        return failure_redirect(c.ERROR_INTERNAL, order_id=order_id)

    order = application.order
    if order.payment_status == PaymentStatus.PAID.value:
        page = "success"
    else:
        page = _OUTCOME_PAGES.get(event.outcome)

    if page is None:
        return CallbackResult(
            redirect_url=build_redirect(
                c.PAYMENT_FAILED_PATH,
                {
                    "orderId": order.id,
                    "error": event.response_code or "failed",
                    "message": event.message,
                },
            ),
            outcome=event.outcome,
            error=event.response_code or "failed",
            order_id=order.id,
            applied=application.applied,
        )

    return CallbackResult(
        redirect_url=order_redirect(order.id, page),
        outcome=event.outcome,
        order_id=order.id,
        applied=application.applied,
    )


async def process_ipn(
    db: AsyncSession,
    adapter: GatewayAdapter,
    raw_params: dict[str, str],
    *,
    now: datetime | None = None,
) -> dict[str, str]:
    """
    Handle a VNPay IPN (server-to-server) call and answer in its RspCode protocol.

    RspCode 99 asks VNPay to retry; everything else is final.
    """
    def answer(pair: tuple[str, str]) -> dict[str, str]:
        return {"RspCode": pair[0], "Message": pair[1]}

    gateway = adapter.gateway.value
    parsed = adapter.parse_callback(raw_params)

    if isinstance(parsed, InvalidCallback):
        logger.warning(f"{gateway} IPN rejected ({parsed.error}) for order ref {parsed.order_number!r}")
        if parsed.error == c.ERROR_VERIFICATION_FAILED:
            return answer(c.VNPAY_IPN_INVALID_SIGNATURE)
        return {"RspCode": c.VNPAY_IPN_RETRY[0], "Message": "Invalid request"}

    event = parsed
    try:
        order = await ledger_service.get_order_by_number(db, event.order_number)
    except UnknownOrderError:
        logger.warning(f"{gateway} IPN for unknown order {event.order_number!r}")
        return answer(c.VNPAY_IPN_ORDER_NOT_FOUND)

    if not amount_matches(event.amount, order.total):
        logger.warning(
            f"{gateway} IPN amount mismatch for {order.order_number}: "
            f"reported={event.amount} expected={order.total}"
        )
        return answer(c.VNPAY_IPN_INVALID_AMOUNT)

    if order.payment_status == PaymentStatus.PAID.value:
        return answer(c.VNPAY_IPN_ALREADY_CONFIRMED)

    try:
        application = await ledger_service.apply_payment_outcome(
            db,
            order_number=event.order_number,
            outcome=event.outcome,
            gateway_transaction_id=event.gateway_transaction_id,
            raw_event={**event.audit_payload(), "channel": "ipn"},
            gateway=gateway,
            now=now,
        )
    except PersistenceFailureError:
        logger.error(f"{gateway} IPN for {event.order_number} could not be persisted; asking for retry")
        return answer(c.VNPAY_IPN_RETRY)

    if application.already_paid:
        return answer(c.VNPAY_IPN_ALREADY_CONFIRMED)
    return answer(c.VNPAY_IPN_CONFIRMED)
