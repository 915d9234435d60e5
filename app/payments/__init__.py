"""Payment gateway selection.

The adapter is chosen by ``PAYMENT_GATEWAY`` and stored on the app, so
tests can swap it per app with ``set_gateway``.
"""
from flask import current_app

from app.payments.fake_adapter import FakeGateway
from app.payments.port import PaymentGateway

EXTENSION_KEY = "payment_gateway"


def build_gateway(config) -> PaymentGateway:
    name = (config.get("PAYMENT_GATEWAY") or "fake").lower()
    if name == "stripe":
        from app.payments.stripe_adapter import StripeGateway

        return StripeGateway(
            api_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            api_version=config.get("STRIPE_API_VERSION"),
        )
    if name == "fake":
        return FakeGateway(webhook_secret=config.get("STRIPE_WEBHOOK_SECRET") or "whsec_test")
    raise RuntimeError(f"Unknown PAYMENT_GATEWAY: {name}")


def init_payments(app) -> None:
    app.extensions[EXTENSION_KEY] = build_gateway(app.config)


def get_gateway() -> PaymentGateway:
    return current_app.extensions[EXTENSION_KEY]


def set_gateway(app, gateway: PaymentGateway) -> None:
    app.extensions[EXTENSION_KEY] = gateway
