"""
Payment processor port and adapters.

`PaymentGateway` is the contract the payment routes depend on. `StripeGateway`
talks to Stripe through the official SDK; `FakeGateway` simulates the
processor in memory for development and tests. `get_gateway()` picks Stripe
when a secret key is configured and falls back to the fake otherwise.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Optional
from uuid import uuid4

import stripe

import config
from errors import InvalidSignature, NotFound, UpstreamPaymentError
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentIntent:
    """The parts of a processor-side payment intent this system cares about."""

    id: str
    client_secret: str
    amount: int
    currency: str
    status: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CardConfirmation:
    """Outcome of confirming an intent with card details."""

    status: str
    payment_intent_id: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentGateway(ABC):
    """Abstract payment processor interface."""

    @abstractmethod
    def create_payment_intent(self, amount: int, currency: str, metadata: dict, description: str) -> PaymentIntent:
        """Create an intent for `amount` minor units."""
        ...

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify a webhook payload against its signature header and return the decoded event."""
        ...


def intent_id_from_secret(client_secret: str) -> str:
    return client_secret.split("_secret_", 1)[0]


# -------------------- Stripe --------------------

def _plain(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway(PaymentGateway):
    """Stripe adapter built on the stripe-python SDK."""

    def __init__(self, api_key: str, webhook_secret: Optional[str], tolerance: int = 300) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    @staticmethod
    def _to_intent(intent) -> PaymentIntent:
        return PaymentIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
            metadata=_plain(intent.metadata),
        )

    def create_payment_intent(self, amount: int, currency: str, metadata: dict, description: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                description=description,
                payment_method_types=["card"],
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.error("stripe_create_intent_failed", error=str(exc), metadata=metadata)
            raise UpstreamPaymentError(exc.user_message or str(exc)) from exc
        return self._to_intent(intent)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.InvalidRequestError as exc:
            raise NotFound("Payment intent not found") from exc
        except stripe.StripeError as exc:
            raise UpstreamPaymentError(exc.user_message or str(exc)) from exc
        return self._to_intent(intent)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if not self.webhook_secret:
            raise InvalidSignature("Webhook secret is not configured")
        if not signature:
            raise InvalidSignature("Missing stripe-signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance)
            return json.loads(body)
        except stripe.SignatureVerificationError as exc:
            raise InvalidSignature(f"Webhook Error: {exc}") from exc
        except ValueError as exc:
            raise InvalidSignature(f"Webhook Error: invalid payload ({exc})") from exc


# -------------------- Fake --------------------

class FakeGateway(PaymentGateway):
    """Configurable in-memory processor.

    Intents live in `self.intents`; `confirm_card_payment` plays the part of the
    browser-side confirmation so a whole checkout can run without the network.
    """

    TEST_SIGNATURE = "test-signature"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Your card was declined."
        self.intents: dict[str, PaymentIntent] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Your card was declined.") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_payment_intent(self, amount: int, currency: str, metadata: dict, description: str) -> PaymentIntent:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount": amount,
                "currency": currency,
                "metadata": dict(metadata),
                "description": description,
            }
        )
        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:16]}",
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        self.calls.append({"method": "retrieve_payment_intent", "intent_id": intent_id})
        intent = self.intents.get(intent_id)
        if intent is None:
            raise NotFound("Payment intent not found")
        return intent

    def confirm_card_payment(self, client_secret: str, payment_method: str) -> CardConfirmation:
        self.calls.append({"method": "confirm_card_payment", "payment_method": payment_method})
        intent = self.intents.get(intent_id_from_secret(client_secret))
        if intent is None or intent.client_secret != client_secret:
            return CardConfirmation(status="failed", error_message="No such payment_intent")
        if not self.should_succeed:
            return CardConfirmation(status=intent.status, payment_intent_id=intent.id, error_message=self.failure_reason)
        self.intents[intent.id] = replace(intent, status="succeeded")
        return CardConfirmation(status="succeeded", payment_intent_id=intent.id)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if signature != self.TEST_SIGNATURE:
            raise InvalidSignature("Webhook Error: No signatures found matching the expected signature for payload")
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise InvalidSignature(f"Webhook Error: invalid payload ({exc})") from exc


# -------------------- Factory --------------------

_current_gateway: Optional[PaymentGateway] = None


def build_gateway() -> PaymentGateway:
    if config.STRIPE_SECRET_KEY:
        return StripeGateway(config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET)
    logger.warning("fake_gateway_in_use", reason="STRIPE_SECRET_KEY not set")
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    """Return the active payment gateway; also used as a FastAPI dependency."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = build_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
