"""
Payment Gateway Adapter Base Class

Every gateway sits behind this interface so the callback processor, ledger and
tests stay gateway-agnostic. Adapters are pure translation: they never touch
the order store.

To add a gateway:
    1. Subclass GatewayAdapter
    2. Supply its SignatureScheme (services/signature.py) and code tables
       (domain/constants.py)
    3. Register it in deps.py
"""
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Literal, Mapping

from pydantic import BaseModel, Field

from domain.enums import PaymentGateway
from domain.errors import PaymentRequestError
from domain.events import InvalidCallback, PaymentEvent

logger = logging.getLogger(__name__)


class PaymentRequest(BaseModel):
    """What the checkout flow asks a gateway to collect."""
    order_number: str
    amount: Decimal
    description: str = ""
    success_url: str = ""
    error_url: str = ""
    cancel_url: str = ""
    customer_id: str | None = None
    custom_data: str | None = None
    payment_method: str = "BANK_TRANSFER"
    client_ip: str | None = None
    locale: str | None = None


class OutboundPayload(BaseModel):
    """
    How the browser reaches the gateway.

    kind="redirect":  navigate to `url` (signed query string included)
    kind="form_post": POST `form_fields` to `url`
    """
    gateway: PaymentGateway
    kind: Literal["redirect", "form_post"]
    url: str
    form_fields: dict[str, str] = Field(default_factory=dict)


def first_present(params: Mapping[str, str], keys: tuple[str, ...]) -> str | None:
    """Value of the first key in `keys` that is present and non-empty."""
    for key in keys:
        value = params.get(key)
        if value:
            return value
    return None


class GatewayAdapter(ABC):
    """Translate between PaymentRequest/PaymentEvent and one gateway's wire shape."""

    gateway: PaymentGateway
    max_order_number_length: int = 100

    def validate_request(self, request: PaymentRequest) -> None:
        """Reject requests the gateway would refuse anyway."""
        if not request.order_number:
            raise PaymentRequestError("Order number is required", field="order_number")
        if len(request.order_number) > self.max_order_number_length:
            raise PaymentRequestError(
                f"must be at most {self.max_order_number_length} characters",
                field="order_number",
            )
        if request.amount is None or request.amount <= 0:
            raise PaymentRequestError("Amount must be greater than 0", field="amount")

    @abstractmethod
    def build_payment_request(self, request: PaymentRequest) -> OutboundPayload:
        """Build the signed redirect URL or form post for `request`."""

    @abstractmethod
    def parse_callback(self, raw_params: Mapping[str, str]) -> PaymentEvent | InvalidCallback:
        """
        Verify and normalize an inbound callback.

        Returns InvalidCallback (never raises) for anything that must not reach
        the ledger: missing fields, bad signature, no order reference.
        """

    @abstractmethod
    def describe(self, code: str | None) -> str:
        """Human message for a gateway response/status code."""
