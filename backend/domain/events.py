"""
Normalized payment events.

Gateway adapters turn an untrusted query-string bag into exactly one of these
at the boundary. Everything downstream matches on `outcome` instead of poking
at gateway-specific keys.
"""
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from domain.enums import PaymentGateway, PaymentOutcome


class _PaymentEventBase(BaseModel):
    gateway: PaymentGateway
    order_number: str
    gateway_transaction_id: str | None = None
    amount: Decimal | None = None          # major units (VND), when the gateway reports one
    response_code: str | None = None
    message: str | None = None
    raw_params: dict[str, str] = Field(default_factory=dict)

    def audit_payload(self) -> dict:
        """Shape written into Order.payment_metadata."""
        return {
            "gateway": self.gateway.value,
            "outcome": self.outcome.value,
            "transactionId": self.gateway_transaction_id,
            "responseCode": self.response_code,
            "message": self.message,
            "raw": self.raw_params,
        }


class PaymentSucceeded(_PaymentEventBase):
    outcome: Literal[PaymentOutcome.SUCCESS] = PaymentOutcome.SUCCESS


class PaymentPending(_PaymentEventBase):
    outcome: Literal[PaymentOutcome.PENDING] = PaymentOutcome.PENDING


class PaymentCancelled(_PaymentEventBase):
    outcome: Literal[PaymentOutcome.USER_CANCELLED] = PaymentOutcome.USER_CANCELLED


class PaymentFailed(_PaymentEventBase):
    outcome: Literal[PaymentOutcome.FAILED] = PaymentOutcome.FAILED


PaymentEvent = Annotated[
    Union[PaymentSucceeded, PaymentPending, PaymentCancelled, PaymentFailed],
    Field(discriminator="outcome"),
]

_payment_event_adapter = TypeAdapter(PaymentEvent)


def build_payment_event(outcome: PaymentOutcome, **fields) -> PaymentEvent:
    """Instantiate the variant matching `outcome`."""
    return _payment_event_adapter.validate_python({"outcome": outcome, **fields})


class InvalidCallback(BaseModel):
    """A callback that must not touch the ledger. `error` is the failure-page token."""
    gateway: PaymentGateway
    error: str
    order_number: str | None = None
    raw_params: dict[str, str] = Field(default_factory=dict)
