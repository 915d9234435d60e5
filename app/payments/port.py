"""Payment processor port.

Services talk to this interface only, so the fake adapter used in
development and tests and the Stripe adapter used in production are
interchangeable.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

# Intent states in which the buyer can still complete payment.
OPEN_INTENT_STATUSES = frozenset({
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
})


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    amount: int
    currency: str
    status: str
    customer: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    last_error: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_INTENT_STATUSES


@dataclass(frozen=True)
class Refund:
    id: str
    amount: int
    status: str


class GatewayError(Exception):
    """The processor rejected a call or could not be reached."""


class WebhookVerificationError(Exception):
    pass


class InvalidPayload(WebhookVerificationError):
    pass


class InvalidSignature(WebhookVerificationError):
    pass


class PaymentGateway(ABC):

    @abstractmethod
    def find_or_create_customer(self, email: str, name: str = "", existing_id: Optional[str] = None,
                                metadata: Optional[dict] = None) -> str:
        """Processor customer id for this buyer, created when unknown."""

    @abstractmethod
    def create_payment_intent(self, amount: int, currency: str, customer: Optional[str] = None,
                              metadata: Optional[dict] = None, description: Optional[str] = None,
                              shipping: Optional[dict] = None,
                              idempotency_key: Optional[str] = None) -> PaymentIntent:
        """Amount is in minor units."""

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        ...

    @abstractmethod
    def cancel_payment_intent(self, intent_id: str) -> PaymentIntent:
        """Void an intent the buyer has not completed. Raises GatewayError once it succeeded."""

    @abstractmethod
    def create_refund(self, intent_id: str, amount: Optional[int] = None,
                      metadata: Optional[dict] = None) -> Refund:
        """Refund ``amount`` minor units, or the whole charge when omitted."""

    @abstractmethod
    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify the signature, then parse. Raises WebhookVerificationError."""
