"""
SePay adapter (Gateway B, card / QR via form post) and back-office API client.

Outbound: checkout URL + form fields the browser POSTs, signed with
HMAC-SHA256/base64 over the SDK field order.

Inbound: the browser comes back on success/error/cancel URLs we built, with
`orderNumber` and `status` in the query string. That redirect carries no
signature, so by default it is accepted on transport trust
(TransportTrustVerifier). Set SEPAY_TRUST_CALLBACK_TRANSPORT=false to require
an HMAC `signature` over the callback fields (merchant, order_invoice_number,
order_amount, currency, status, transaction_id) instead. That field list differs
from the checkout form's, so the form signature handed to the browser never
verifies a callback.
"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from config import SePayConfig
from domain import constants as c
from domain.enums import PaymentGateway, PaymentOutcome
from domain.errors import GatewayUnavailableError, NotFoundError
from domain.events import InvalidCallback, PaymentEvent, build_payment_event
from services.gateways.base import GatewayAdapter, OutboundPayload, PaymentRequest, first_present
from services.signature import SEPAY_CALLBACK_SCHEME, SEPAY_SCHEME, SignatureCodec, TransportTrustVerifier

logger = logging.getLogger(__name__)

_TRANSACTION_ID_KEYS = ("transaction_id", "transactionId", "transaction_code")


def to_sepay_amount(amount: Decimal) -> str:
    """SePay takes whole VND."""
    return str(int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


class SePayAdapter(GatewayAdapter):
    gateway = PaymentGateway.SEPAY
    max_order_number_length = 100

    def __init__(self, config: SePayConfig):
        self.config = config
        self.codec = SignatureCodec(SEPAY_SCHEME, config.secret_key)
        if config.trust_callback_transport:
            self.callback_verifier = TransportTrustVerifier(self.gateway.value)
        else:
            self.callback_verifier = SignatureCodec(SEPAY_CALLBACK_SCHEME, config.secret_key)

    @property
    def verifies_callback_signature(self) -> bool:
        return not isinstance(self.callback_verifier, TransportTrustVerifier)

    def callback_urls(self, order_number: str) -> dict[str, str]:
        """success/error/cancel URLs pointing back at our SePay callback route."""
        urls = {}
        for kind, status in (("success_url", "success"), ("error_url", "error"), ("cancel_url", "cancel")):
            query = urlencode({"orderNumber": order_number, "status": status})
            urls[kind] = f"{self.config.return_url}?{query}"
        return urls

    # ── Outbound ────────────────────────────────────────────────────

    def build_payment_request(self, request: PaymentRequest) -> OutboundPayload:
        self.validate_request(request)

        defaults = self.callback_urls(request.order_number)
        fields = {
            "merchant": self.config.merchant_id,
            "operation": c.SEPAY_OPERATION,
            "payment_method": c.SEPAY_PAYMENT_METHODS.get(
                (request.payment_method or "").upper(), "BANK_TRANSFER"
            ),
            "order_amount": to_sepay_amount(request.amount),
            "currency": c.SEPAY_CURRENCY,
            "order_invoice_number": request.order_number,
            "order_description": request.description or f"Thanh toan don hang {request.order_number}",
            "customer_id": request.customer_id,
            "success_url": request.success_url or defaults["success_url"],
            "error_url": request.error_url or defaults["error_url"],
            "cancel_url": request.cancel_url or defaults["cancel_url"],
            "custom_data": request.custom_data,
        }
        form_fields = {k: str(v) for k, v in fields.items() if v not in (None, "")}
        form_fields[c.SEPAY_SIGNATURE_FIELD] = self.codec.sign(form_fields)

        logger.info(
            f"SePay checkout form built for {request.order_number} "
            f"(amount={form_fields['order_amount']}, env={self.config.env})"
        )
        return OutboundPayload(
            gateway=self.gateway,
            kind="form_post",
            url=self.config.checkout_url,
            form_fields=form_fields,
        )

    # ── Inbound ─────────────────────────────────────────────────────

    def resolve_outcome(self, status: str | None) -> PaymentOutcome:
        return c.SEPAY_STATUS_OUTCOMES.get((status or "").strip().lower(), PaymentOutcome.FAILED)

    def describe(self, code: str | None) -> str:
        outcome = self.resolve_outcome(code)
        return c.SEPAY_OUTCOME_MESSAGES.get(outcome, c.SEPAY_DEFAULT_FAILURE_MESSAGE)

    def parse_callback(self, raw_params: Mapping[str, str]) -> PaymentEvent | InvalidCallback:
        params = {str(k): str(v) for k, v in raw_params.items()}
        order_number = first_present(params, c.SEPAY_ORDER_REF_KEYS)

        verified = self.callback_verifier.verify(params)
        if verified and self.verifies_callback_signature and params.get("merchant") != self.config.merchant_id:
            verified = False
        if not verified:
            forensic = {k: v for k, v in params.items() if k != c.SEPAY_SIGNATURE_FIELD}
            logger.warning(f"SePay callback failed signature check: {forensic}")
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

        status = params.get("status")
        outcome = self.resolve_outcome(status)
        if outcome is PaymentOutcome.FAILED:
            message = params.get("response_message") or c.SEPAY_DEFAULT_FAILURE_MESSAGE
        else:
            message = self.describe(status)

        # An unsigned amount proves nothing, so only a verified one is reported.
        amount = None
        if self.verifies_callback_signature and params.get("order_amount"):
            try:
                amount = Decimal(params["order_amount"])
            except InvalidOperation:
                amount = None

        return build_payment_event(
            outcome,
            gateway=self.gateway,
            order_number=order_number,
            gateway_transaction_id=first_present(params, _TRANSACTION_ID_KEYS),
            amount=amount,
            response_code=status,
            message=message,
            raw_params=params,
        )


class SePayApiClient:
    """
    Thin async client for the SePay back-office API.

    Every call has a bounded timeout; transport failures surface as
    GatewayUnavailableError and never touch the ledger.
    """

    def __init__(self, config: SePayConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.api_url,
            auth=(self.config.merchant_id, self.config.secret_key),
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, order_invoice_number: str, **kwargs) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"SePay {method} {path} timed out: {e}")
            raise GatewayUnavailableError("sepay", "SePay API timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"SePay {method} {path} failed: {e}")
            raise GatewayUnavailableError("sepay") from e

        if response.status_code == 404:
            raise NotFoundError("SePay order", order_invoice_number)
        if response.status_code >= 400:
            logger.error(f"SePay {method} {path} returned {response.status_code}: {response.text[:200]}")
            raise GatewayUnavailableError(
                "sepay",
                f"SePay API returned {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailableError("sepay", "SePay API returned a non-JSON body") from e

    async def fetch_order(self, order_invoice_number: str) -> dict[str, Any]:
        path = c.SEPAY_API_ORDER_DETAIL.format(order_invoice_number=order_invoice_number)
        return await self._request("GET", path, order_invoice_number)

    async def void_transaction(self, order_invoice_number: str) -> dict[str, Any]:
        logger.info(f"Voiding SePay transaction for {order_invoice_number}")
        return await self._request(
            "POST",
            c.SEPAY_API_VOID_TRANSACTION,
            order_invoice_number,
            json={"order_invoice_number": order_invoice_number},
        )

    async def cancel_order(self, order_invoice_number: str) -> dict[str, Any]:
        logger.info(f"Cancelling SePay order {order_invoice_number}")
        return await self._request(
            "POST",
            c.SEPAY_API_CANCEL_ORDER,
            order_invoice_number,
            json={"order_invoice_number": order_invoice_number},
        )
