"""Stripe adapter over the official stripe-python SDK."""
import json
import logging
from typing import Optional

import stripe

from app.payments.port import (
    GatewayError,
    InvalidPayload,
    InvalidSignature,
    PaymentGateway,
    PaymentIntent,
    Refund,
)

logger = logging.getLogger(__name__)


def _shipping_params(address: Optional[dict]) -> Optional[dict]:
    if not address:
        return None
    return {
        "name": f"{address.get('firstName', '')} {address.get('lastName', '')}".strip(),
        "address": {
            "line1": address.get("address1"),
            "line2": address.get("address2"),
            "city": address.get("city"),
            "state": address.get("state"),
            "postal_code": address.get("zipCode"),
            "country": address.get("country") or "US",
        },
    }


def _to_intent(obj) -> PaymentIntent:
    last_error = obj.get("last_payment_error") or None
    return PaymentIntent(
        id=obj["id"],
        client_secret=obj.get("client_secret"),
        amount=obj["amount"],
        currency=obj["currency"],
        status=obj["status"],
        customer=obj.get("customer"),
        metadata=dict(obj.get("metadata") or {}),
        last_error=last_error.get("message") if last_error else None,
    )


class StripeGateway(PaymentGateway):

    def __init__(self, api_key: str, webhook_secret: str, api_version: Optional[str] = None) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version

    def _opts(self, **extra) -> dict:
        opts = {"api_key": self.api_key}
        if self.api_version:
            opts["stripe_version"] = self.api_version
        opts.update({k: v for k, v in extra.items() if v is not None})
        return opts

    def find_or_create_customer(self, email, name="", existing_id=None, metadata=None):
        try:
            if existing_id:
                try:
                    customer = stripe.Customer.retrieve(existing_id, **self._opts())
                    if not customer.get("deleted"):
                        return customer["id"]
                except stripe.InvalidRequestError:
                    logger.info("Stripe customer %s missing, creating a new one", existing_id)
            customer = stripe.Customer.create(
                email=email,
                name=name or None,
                metadata=metadata or {},
                **self._opts(),
            )
            return customer["id"]
        except stripe.StripeError as e:
            raise GatewayError(e.user_message or str(e)) from e

    def create_payment_intent(self, amount, currency, customer=None, metadata=None,
                              description=None, shipping=None, idempotency_key=None):
        params = {
            "amount": amount,
            "currency": currency,
            "metadata": metadata or {},
            "capture_method": "automatic",
        }
        if customer:
            params["customer"] = customer
        if description:
            params["description"] = description
        shipping_params = _shipping_params(shipping)
        if shipping_params:
            params["shipping"] = shipping_params
        try:
            intent = stripe.PaymentIntent.create(
                **params, **self._opts(idempotency_key=idempotency_key)
            )
        except stripe.StripeError as e:
            raise GatewayError(e.user_message or str(e)) from e
        return _to_intent(intent)

    def retrieve_payment_intent(self, intent_id):
        try:
            return _to_intent(stripe.PaymentIntent.retrieve(intent_id, **self._opts()))
        except stripe.StripeError as e:
            raise GatewayError(e.user_message or str(e)) from e

    def cancel_payment_intent(self, intent_id):
        try:
            return _to_intent(stripe.PaymentIntent.cancel(intent_id, **self._opts()))
        except stripe.StripeError as e:
            raise GatewayError(e.user_message or str(e)) from e

    def create_refund(self, intent_id, amount=None, metadata=None):
        params = {
            "payment_intent": intent_id,
            "reason": "requested_by_customer",
            "metadata": metadata or {},
        }
        if amount is not None:
            params["amount"] = amount
        try:
            refund = stripe.Refund.create(**params, **self._opts())
        except stripe.StripeError as e:
            raise GatewayError(e.user_message or str(e)) from e
        return Refund(id=refund["id"], amount=refund["amount"], status=refund["status"])

    def construct_webhook_event(self, payload, signature):
        if not signature:
            raise InvalidSignature("Missing signature header")
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e)) from e
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise InvalidPayload("Payload is not valid JSON") from e
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidPayload("Payload is not an event")
        return event
