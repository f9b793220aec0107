"""
Payment routes: intent creation, the browser's payment-success callback and
the processor webhook.

The browser callback and the webhook both end in `orders.mark_paid`, so they
can arrive in any order, or twice, without double-recording a payment.
"""

from fastapi import APIRouter, Depends, Request
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

import config
from auth import AuthUser, auth_dependency
from database import doc_to_json, get_db, utcnow
from errors import AlreadyPaid, Forbidden, NotFound, ValidationError
from gateway import PaymentGateway, get_gateway
from logging_config import get_logger
from orders import can_access, load_order, mark_paid
from schemas import PaymentIntentRequest, PaymentSuccessRequest

logger = get_logger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])

SIGNATURE_HEADER = "stripe-signature"


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def build_payment_result(intent_id: str, email_address=None) -> dict:
    return {
        "id": intent_id,
        "status": "completed",
        "update_time": utcnow().isoformat(),
        "email_address": email_address,
        "payment_method": "stripe",
    }


# -------------------- Intent bridge --------------------

def create_intent(db: Database, gateway: PaymentGateway, order_id: str, user: AuthUser) -> str:
    """Create a processor intent for the order's total and return its client secret."""
    order = load_order(db, order_id)
    if not can_access(order, user):
        raise Forbidden("Not authorized to access this order")
    if order.get("is_paid"):
        raise AlreadyPaid()

    amount = to_minor_units(order["total_price"])
    intent = gateway.create_payment_intent(
        amount=amount,
        currency=config.PAYMENT_CURRENCY,
        metadata={"order_id": order_id, "user_id": user.id},
        description=f"Order #{order_id[:8]} - {config.STORE_NAME}",
    )
    # Earlier intents for the same order stay live; the id is logged for reconciliation.
    logger.info("payment_intent_created", order_id=order_id, user_id=user.id, payment_intent_id=intent.id, amount=amount)
    return intent.client_secret


def record_payment_success(
    db: Database,
    gateway: PaymentGateway,
    order_id: str,
    payment_intent_id: str,
    user: AuthUser,
) -> dict:
    order = load_order(db, order_id)
    if not can_access(order, user):
        raise Forbidden("Not authorized to access this order")

    intent = gateway.retrieve_payment_intent(payment_intent_id)
    if intent.metadata.get("order_id") != order_id:
        raise ValidationError("Payment intent does not belong to this order")
    if intent.status != "succeeded":
        raise ValidationError(f"Payment has not succeeded (status: {intent.status})")

    return mark_paid(db, order_id, build_payment_result(intent.id, user.email))


# -------------------- Webhook --------------------

def _handle_intent_succeeded(db: Database, intent: dict) -> None:
    intent_id = intent.get("id")
    order_id = (intent.get("metadata") or {}).get("order_id")
    if not order_id:
        logger.warning("webhook_intent_without_order", payment_intent_id=intent_id)
        return
    try:
        order = load_order(db, order_id)
    except (NotFound, ValidationError) as exc:
        logger.warning("webhook_order_not_found", order_id=order_id, payment_intent_id=intent_id, error=exc.message)
        return
    if order.get("is_paid"):
        logger.info("webhook_order_already_paid", order_id=order_id, payment_intent_id=intent_id)
        return
    mark_paid(db, order_id, build_payment_result(intent_id, intent.get("receipt_email")))
    logger.info("webhook_order_paid", order_id=order_id, payment_intent_id=intent_id)


def handle_event(db: Database, event: dict) -> None:
    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}

    if event_type == "payment_intent.succeeded":
        _handle_intent_succeeded(db, intent)
    elif event_type == "payment_intent.payment_failed":
        error = intent.get("last_payment_error") or {}
        logger.warning(
            "payment_failed",
            payment_intent_id=intent.get("id"),
            order_id=(intent.get("metadata") or {}).get("order_id"),
            reason=error.get("message"),
        )
    else:
        logger.info("webhook_event_ignored", event_type=event_type)


# -------------------- Routes --------------------

@router.post("/create-payment-intent")
def create_payment_intent(
    payload: PaymentIntentRequest,
    user: AuthUser = Depends(auth_dependency),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    client_secret = create_intent(db, gateway, payload.order_id, user)
    return {"success": True, "data": {"client_secret": client_secret}}


@router.post("/payment-success")
def payment_success(
    payload: PaymentSuccessRequest,
    user: AuthUser = Depends(auth_dependency),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    order = record_payment_success(db, gateway, payload.order_id, payload.payment_intent_id, user)
    return {"success": True, "data": doc_to_json(order)}


@router.post("/webhook")
async def webhook(
    request: Request,
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    payload = await request.body()
    event = await run_in_threadpool(gateway.construct_event, payload, request.headers.get(SIGNATURE_HEADER))
    logger.info("webhook_received", event_type=event.get("type"), event_id=event.get("id"))
    await run_in_threadpool(handle_event, db, event)
    return {"success": True, "data": {"received": True}}
