"""In-memory payment processor for development and tests.

Intents live in a dict and webhooks are signed the way Stripe signs them
(``t=<ts>,v1=<hmac-sha256>``), so the webhook route runs the same code path
against either adapter.
"""
import hashlib
import hmac
import json
import time
from dataclasses import replace
from typing import Optional
from uuid import uuid4

from app.payments.port import (
    GatewayError,
    InvalidPayload,
    InvalidSignature,
    PaymentGateway,
    PaymentIntent,
    Refund,
)


class FakeGateway(PaymentGateway):

    def __init__(self, webhook_secret: str = "whsec_test") -> None:
        self.webhook_secret = webhook_secret
        self.intents: dict = {}
        self.customers: dict = {}
        self.refunds: list = []
        self.calls: list = []
        self._failures: dict = {}

    def fail_next(self, operation: str, message: str = "Card declined") -> None:
        """Make the next call to ``operation`` raise GatewayError."""
        self._failures[operation] = message

    def _record(self, operation: str, **kwargs) -> None:
        self.calls.append({"method": operation, **kwargs})
        message = self._failures.pop(operation, None)
        if message:
            raise GatewayError(message)

    def find_or_create_customer(self, email, name="", existing_id=None, metadata=None):
        self._record("find_or_create_customer", email=email)
        if existing_id and existing_id in self.customers:
            return existing_id
        customer_id = f"cus_fake_{uuid4().hex[:12]}"
        self.customers[customer_id] = {"email": email, "name": name, "metadata": metadata or {}}
        return customer_id

    def create_payment_intent(self, amount, currency, customer=None, metadata=None,
                              description=None, shipping=None, idempotency_key=None):
        self._record("create_payment_intent", amount=amount, currency=currency,
                     metadata=metadata, idempotency_key=idempotency_key)
        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            customer=customer,
            metadata=dict(metadata or {}),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id):
        self._record("retrieve_payment_intent", intent_id=intent_id)
        try:
            return self.intents[intent_id]
        except KeyError:
            raise GatewayError(f"No such payment_intent: '{intent_id}'")

    def set_intent_status(self, intent_id: str, status: str, last_error: Optional[str] = None) -> PaymentIntent:
        intent = replace(self.intents[intent_id], status=status, last_error=last_error)
        self.intents[intent_id] = intent
        return intent

    def cancel_payment_intent(self, intent_id):
        self._record("cancel_payment_intent", intent_id=intent_id)
        intent = self.intents.get(intent_id)
        if intent is None:
            raise GatewayError(f"No such payment_intent: '{intent_id}'")
        if not intent.is_open:
            raise GatewayError(f"You cannot cancel this PaymentIntent because it has a status of {intent.status}.")
        return self.set_intent_status(intent_id, "canceled")

    def create_refund(self, intent_id, amount=None, metadata=None):
        self._record("create_refund", intent_id=intent_id, amount=amount)
        intent = self.intents.get(intent_id)
        if intent is None:
            raise GatewayError(f"No such payment_intent: '{intent_id}'")
        refund = Refund(
            id=f"re_fake_{uuid4().hex[:12]}",
            amount=amount if amount is not None else intent.amount,
            status="succeeded",
        )
        self.refunds.append(refund)
        return refund

    def sign(self, payload, timestamp: Optional[int] = None) -> str:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        timestamp = timestamp or int(time.time())
        signed = f"{timestamp}.".encode("utf-8") + payload
        digest = hmac.new(self.webhook_secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    def event(self, event_type: str, obj: dict):
        """A serialized event body and its signature header."""
        body = json.dumps({
            "id": f"evt_fake_{uuid4().hex[:12]}",
            "type": event_type,
            "data": {"object": obj},
        }).encode("utf-8")
        return body, self.sign(body)

    def construct_webhook_event(self, payload, signature):
        if not signature:
            raise InvalidSignature("Missing signature header")
        parts = dict(p.split("=", 1) for p in signature.split(",") if "=" in p)
        timestamp, received = parts.get("t"), parts.get("v1")
        if not timestamp or not received:
            raise InvalidSignature("Malformed signature header")
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        expected = hmac.new(
            self.webhook_secret.encode("utf-8"),
            f"{timestamp}.".encode("utf-8") + payload,
            hashlib.sha256,
        ).hexdigest()
        if not hmac.compare_digest(expected, received):
            raise InvalidSignature("Signature mismatch")
        try:
            event = json.loads(payload)
        except ValueError:
            raise InvalidPayload("Payload is not valid JSON")
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidPayload("Payload is not an event")
        return event
