"""
Client-side payment confirmation.

The card is confirmed with the processor directly; the backend is only told
afterwards. When that last call fails the charge still stands and the
webhook is left to reconcile the order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests
import stripe

import config
from errors import ApiError
from gateway import CardConfirmation, intent_id_from_secret
from logging_config import get_logger

logger = get_logger(__name__)

SUCCESS_MESSAGE = "Payment successful! Thank you for your purchase."
UNCONFIRMED_MESSAGE = "Payment was successful but order status may not update immediately."


class CardConfirmer(ABC):
    """Confirms a payment intent with card details, without going through the backend."""

    @abstractmethod
    def confirm_card_payment(self, client_secret: str, payment_method: str) -> CardConfirmation:
        ...


class StripeCardConfirmer(CardConfirmer):
    """Confirms with Stripe using the publishable key and the intent's client secret."""

    def __init__(self, publishable_key: Optional[str] = None) -> None:
        self.publishable_key = publishable_key or config.STRIPE_PUBLISHABLE_KEY

    def confirm_card_payment(self, client_secret: str, payment_method: str) -> CardConfirmation:
        intent_id = intent_id_from_secret(client_secret)
        try:
            intent = stripe.PaymentIntent.confirm(
                intent_id,
                client_secret=client_secret,
                payment_method=payment_method,
                api_key=self.publishable_key,
            )
        except stripe.StripeError as exc:
            return CardConfirmation(status="failed", payment_intent_id=intent_id, error_message=exc.user_message or str(exc))
        return CardConfirmation(status=intent.status, payment_intent_id=intent.id)


@dataclass(frozen=True)
class PaymentOutcome:
    status: str  # "succeeded", "unconfirmed" or "failed"
    message: str
    payment_intent_id: Optional[str] = None

    @property
    def charged(self) -> bool:
        return self.status in ("succeeded", "unconfirmed")


class PaymentConfirmationFlow:
    """Drives one order through intent creation, card confirmation and the backend callback.

    The client secret is held on the flow object only. A declined attempt
    discards it, so the next `submit` asks the backend for a fresh intent.
    """

    def __init__(self, api, confirmer: CardConfirmer, order_id: str) -> None:
        self.api = api
        self.confirmer = confirmer
        self.order_id = order_id
        self.client_secret: Optional[str] = None

    def start(self) -> Optional[PaymentOutcome]:
        """Request an intent; returns a failed outcome if the backend refuses."""
        try:
            self.client_secret = self.api.create_payment_intent(self.order_id)
        except ApiError as exc:
            logger.warning("payment_init_failed", order_id=self.order_id, error=exc.message)
            return PaymentOutcome(status="failed", message=exc.message)
        return None

    def submit(self, payment_method: str) -> PaymentOutcome:
        if self.client_secret is None:
            failed = self.start()
            if failed is not None:
                return failed

        result = self.confirmer.confirm_card_payment(self.client_secret, payment_method)
        if not result.succeeded:
            self.client_secret = None
            logger.info("payment_declined", order_id=self.order_id, error=result.error_message)
            message = result.error_message or f"Payment was not completed (status: {result.status})."
            return PaymentOutcome(status="failed", message=message, payment_intent_id=result.payment_intent_id)

        self.client_secret = None
        try:
            self.api.payment_success(self.order_id, result.payment_intent_id)
        except (ApiError, requests.RequestException) as exc:
            logger.warning("payment_callback_failed", order_id=self.order_id, payment_intent_id=result.payment_intent_id, error=str(exc))
            return PaymentOutcome(status="unconfirmed", message=UNCONFIRMED_MESSAGE, payment_intent_id=result.payment_intent_id)
        return PaymentOutcome(status="succeeded", message=SUCCESS_MESSAGE, payment_intent_id=result.payment_intent_id)
