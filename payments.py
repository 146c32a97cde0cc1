"""
Payments

Local mirror of Stripe PaymentIntents. A payment row is created once per
order when checkout starts; afterwards its status only moves through signed
webhook deliveries:

    payment_intent.succeeded       payment SUCCEEDED, order PAID
    payment_intent.payment_failed  payment FAILED, order stays PENDING so the
                                   customer can retry with the same intent

Webhook handlers are safe to replay: unknown intents are logged and
acknowledged, and transitions are conditional updates.
"""
import logging
import os
from functools import lru_cache
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Header, Request
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool

from auth import get_current_user
from database import create_document, get_db, now, to_object_id
from errors import BadRequest, InvalidState, NotFound, ServiceUnavailable
from schemas import CreatePaymentIntentRequest, OrderStatus, Payment as PaymentSchema, PaymentStatus

logger = logging.getLogger(__name__)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "eur")

router = APIRouter(prefix="/payments", tags=["payments"])


class StripeGateway:
    def __init__(self, api_key: str, webhook_secret: Optional[str] = None, currency: str = "eur"):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def create_payment_intent(self, amount: int, metadata: Dict[str, str], idempotency_key: str) -> Dict[str, str]:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=self.currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe error creating payment intent: %s", e)
            raise BadRequest(f"Payment provider error: {e.user_message or e}")
        return {"id": intent.id, "client_secret": intent.client_secret}

    def retrieve_payment_intent(self, intent_id: str) -> Dict[str, str]:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error("Stripe error retrieving payment intent %s: %s", intent_id, e)
            raise BadRequest(f"Payment provider error: {e.user_message or e}")
        return {"id": intent.id, "client_secret": intent.client_secret}

    def construct_event(self, payload: bytes, signature: str):
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not defined")
            raise ServiceUnavailable("Webhook secret not configured")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret, api_key=self.api_key)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Webhook verification failed: %s", e)
            raise BadRequest(f"Webhook Error: {e}")


@lru_cache
def _gateway() -> StripeGateway:
    return StripeGateway(STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, STRIPE_CURRENCY)


def get_gateway() -> StripeGateway:
    if not STRIPE_SECRET_KEY:
        logger.error("STRIPE_SECRET_KEY is not defined")
        raise ServiceUnavailable("Payments are not configured")
    return _gateway()


def _handle(intent: Dict[str, str]) -> Dict[str, str]:
    return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}


def create_payment_intent(db: Database, gateway: StripeGateway, order_id: str, user_id: str) -> Dict[str, str]:
    logger.info("Creating payment intent for order %s", order_id)
    order = db["order"].find_one({"_id": to_object_id(order_id), "user_id": user_id})
    if not order:
        raise NotFound("Order not found")
    if order["status"] != OrderStatus.PENDING.value:
        raise InvalidState("Order is not pending")

    order_id = str(order["_id"])
    payment = db["payment"].find_one({"order_id": order_id})
    if payment:
        logger.info("Payment already exists for order %s", order_id)
        return _handle(gateway.retrieve_payment_intent(payment["stripe_payment_intent_id"]))

    intent = gateway.create_payment_intent(
        order["total_amount"],
        metadata={"order_id": order_id, "user_id": user_id},
        idempotency_key=f"order-{order_id}",
    )
    payment = PaymentSchema(
        order_id=order_id,
        stripe_payment_intent_id=intent["id"],
        amount=order["total_amount"],
        status=PaymentStatus.PENDING,
    )
    try:
        create_document(db, "payment", payment)
    except DuplicateKeyError:
        # a concurrent checkout recorded the payment first
        existing = db["payment"].find_one({"order_id": order_id})
        logger.info("Payment for order %s recorded concurrently", order_id)
        return _handle(gateway.retrieve_payment_intent(existing["stripe_payment_intent_id"]))
    logger.info("Created payment intent %s for order %s", intent["id"], order_id)
    return _handle(intent)


def _payment_succeeded(db: Database, intent_id: str) -> None:
    payment = db["payment"].find_one({"stripe_payment_intent_id": intent_id})
    if not payment:
        logger.error("Payment not found for PaymentIntent: %s", intent_id)
        return
    db["payment"].update_one(
        {"_id": payment["_id"]},
        {"$set": {"status": PaymentStatus.SUCCEEDED.value, "updated_at": now()}},
    )
    db["order"].update_one(
        {"_id": to_object_id(payment["order_id"]), "status": OrderStatus.PENDING.value},
        {"$set": {"status": OrderStatus.PAID.value, "updated_at": now()}},
    )
    logger.info("Payment succeeded for order: %s", payment["order_id"])


def _payment_failed(db: Database, intent_id: str) -> None:
    payment = db["payment"].find_one({"stripe_payment_intent_id": intent_id})
    if not payment:
        logger.error("Payment not found for PaymentIntent: %s", intent_id)
        return
    # a late failure never downgrades a settled payment
    db["payment"].update_one(
        {"_id": payment["_id"], "status": {"$ne": PaymentStatus.SUCCEEDED.value}},
        {"$set": {"status": PaymentStatus.FAILED.value, "updated_at": now()}},
    )
    logger.info("Payment failed for order: %s", payment["order_id"])


EVENT_HANDLERS = {
    "payment_intent.succeeded": _payment_succeeded,
    "payment_intent.payment_failed": _payment_failed,
}


def handle_webhook(db: Database, gateway: StripeGateway, signature: Optional[str], raw_body: bytes) -> Dict[str, bool]:
    if not raw_body:
        logger.error("Request body is required")
        raise BadRequest("Request body is required")
    if not signature:
        raise BadRequest("Missing stripe-signature header")
    event = gateway.construct_event(raw_body, signature)

    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info("Unhandled event type: %s", event.type)
    else:
        handler(db, event.data.object.id)
    return {"received": True}


def get_payment_status(db: Database, order_id: str, user_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id), "user_id": user_id})
    if not order:
        raise NotFound("Order not found")
    payment = db["payment"].find_one({"order_id": str(order["_id"])})
    if not payment:
        raise NotFound("Payment not found for this order")
    return {
        "order_id": str(order["_id"]),
        "payment_status": payment["status"],
        "order_status": order["status"],
        "amount": order["total_amount"],
    }


# Routes
@router.post("/create-payment-intent")
def create_payment_intent_route(
    req: CreatePaymentIntentRequest,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    return create_payment_intent(db, gateway, req.order_id, user["id"])


@router.post("/webhook")
async def webhook_route(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Database = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    # signature covers the exact bytes received
    raw_body = await request.body()
    return await run_in_threadpool(handle_webhook, db, gateway, stripe_signature, raw_body)


@router.get("/status/{order_id}")
def status_route(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return get_payment_status(db, order_id, user["id"])
