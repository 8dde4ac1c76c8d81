"""
VNPay adapter (Gateway A, bank transfer via signed redirect).

Outbound: a single redirect URL whose query string is the canonical string
plus vnp_SecureHash. Inbound: the same query string comes back on the return
URL (browser) and on the IPN URL (server-to-server).
"""
import logging
import re
from datetime import timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, Mapping

from config import VNPayConfig
from domain import constants as c
from domain.enums import PaymentGateway, PaymentOutcome
from domain.events import InvalidCallback, PaymentEvent, build_payment_event
from services.gateways.base import GatewayAdapter, OutboundPayload, PaymentRequest
from services.signature import VNPAY_SCHEME, SignatureCodec
from utils.clock import format_vnpay_date, utcnow

logger = logging.getLogger(__name__)

_UNSAFE_DESCRIPTION_CHARS = re.compile(r"[<>\"']")
_WHITESPACE = re.compile(r"\s+")


def clean_order_description(description: str) -> str:
    """Strip characters VNPay rejects, collapse whitespace, cap at 255 chars."""
    cleaned = _UNSAFE_DESCRIPTION_CHARS.sub("", description or "")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[: c.VNPAY_MAX_DESCRIPTION_LENGTH]


def to_vnpay_amount(amount: Decimal) -> str:
    """VND amount → vnp_Amount (× 100, rounded to an integer)."""
    return str(int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def from_vnpay_amount(raw: str | None) -> Decimal | None:
    if not raw:
        return None
    try:
        return (Decimal(raw) / 100).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


class VNPayAdapter(GatewayAdapter):
    gateway = PaymentGateway.VNPAY
    max_order_number_length = c.VNPAY_MAX_ORDER_REF_LENGTH

    def __init__(self, config: VNPayConfig, clock: Callable = utcnow):
        self.config = config
        self.codec = SignatureCodec(VNPAY_SCHEME, config.hash_secret)
        self._clock = clock

    # ── Outbound ────────────────────────────────────────────────────

    def build_payment_request(self, request: PaymentRequest) -> OutboundPayload:
        self.validate_request(request)

        created = self._clock()
        expires = created + timedelta(minutes=self.config.expire_minutes)
        description = request.description or f"Thanh toan don hang {request.order_number}"

        params = {
            "vnp_Version": c.VNPAY_VERSION,
            "vnp_Command": c.VNPAY_COMMAND,
            "vnp_TmnCode": self.config.tmn_code,
            "vnp_Amount": to_vnpay_amount(request.amount),
            "vnp_CurrCode": c.VNPAY_CURRENCY,
            "vnp_TxnRef": request.order_number,
            "vnp_OrderInfo": clean_order_description(description),
            "vnp_OrderType": c.VNPAY_ORDER_TYPE,
            "vnp_Locale": request.locale or c.VNPAY_DEFAULT_LOCALE,
            "vnp_ReturnUrl": request.success_url or self.config.return_url,
            "vnp_IpAddr": request.client_ip or c.VNPAY_DEFAULT_IP,
            "vnp_CreateDate": format_vnpay_date(created),
            "vnp_ExpireDate": format_vnpay_date(expires),
        }

        query = self.codec.canonicalize(params)
        signature = self.codec.sign(params)
        url = f"{self.config.url}?{query}&{c.VNPAY_SIGNATURE_FIELD}={signature}"

        logger.info(
            f"VNPay payment URL built for {request.order_number} "
            f"(amount={params['vnp_Amount']}, expires={params['vnp_ExpireDate']})"
        )
        return OutboundPayload(gateway=self.gateway, kind="redirect", url=url)

    # ── Inbound ─────────────────────────────────────────────────────

    def resolve_outcome(self, response_code: str | None, transaction_status: str | None) -> PaymentOutcome:
        outcome = c.VNPAY_RESPONSE_OUTCOMES.get(response_code or "")
        if outcome is PaymentOutcome.SUCCESS and transaction_status != c.VNPAY_SUCCESS_CODE:
            outcome = None
        if outcome is None:
            outcome = c.VNPAY_TRANSACTION_STATUS_OUTCOMES.get(transaction_status or "", PaymentOutcome.FAILED)
        return outcome

    def describe(self, code: str | None) -> str:
        return c.VNPAY_RESPONSE_MESSAGES.get(code or "", c.VNPAY_UNKNOWN_MESSAGE)

    def parse_callback(self, raw_params: Mapping[str, str]) -> PaymentEvent | InvalidCallback:
        params = {str(k): str(v) for k, v in raw_params.items()}
        order_number = params.get("vnp_TxnRef") or None

        response_code = params.get("vnp_ResponseCode")
        if not response_code:
            return InvalidCallback(
                gateway=self.gateway,
                error=c.ERROR_INVALID_RESPONSE,
                order_number=order_number,
                raw_params=params,
            )

        if not self.codec.verify(params):
            forensic = {k: v for k, v in params.items() if k != c.VNPAY_SIGNATURE_FIELD}
            logger.warning(f"VNPay callback failed signature check: {forensic}")
            return InvalidCallback(
                gateway=self.gateway,
                error=c.ERROR_VERIFICATION_FAILED,
                order_number=order_number,
                raw_params=params,
            )

        if not order_number:
            return InvalidCallback(
                gateway=self.gateway,
                error=c.ERROR_MISSING_ORDER_NUMBER,
                raw_params=params,
            )

        outcome = self.resolve_outcome(response_code, params.get("vnp_TransactionStatus"))
        return build_payment_event(
            outcome,
            gateway=self.gateway,
            order_number=order_number,
            gateway_transaction_id=params.get("vnp_TransactionNo") or None,
            amount=from_vnpay_amount(params.get("vnp_Amount")),
            response_code=response_code,
            message=self.describe(response_code),
            raw_params=params,
        )
