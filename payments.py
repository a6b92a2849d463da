"""
Payments (Stripe Checkout)

A pending order is paid through a Checkout Session keyed by the order id.
Stripe reports the payment with a `checkout.session.completed` webhook,
which records one Transaction and settles the order.
"""
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import get_collection, now
from errors import ApiError, NotFoundError, ValidationError
from notifications import send_receipt
from orders import get_order, settle_order
from schemas import Transaction

logger = logging.getLogger(__name__)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
PAYMENT_SUCCESS_URL = os.getenv("PAYMENT_SUCCESS_URL", "http://localhost:3000/payment/success")
PAYMENT_CANCEL_URL = os.getenv("PAYMENT_CANCEL_URL", "http://localhost:3000/payment/cancel")

COMPLETED_EVENT = "checkout.session.completed"


@dataclass
class Settlement:
    order_id: Optional[str]
    paid_amount: Optional[float]
    payment_method: Optional[str]
    transaction_id: Optional[str]


def _stripe():
    stripe.api_key = STRIPE_SECRET_KEY
    return stripe


def create_checkout_session(order_id: str, method: str = "klarna") -> str:
    order = get_order(order_id)
    if not order:
        raise NotFoundError("Order not found", details={"id": order_id})
    if order["state"] != "pending":
        raise ValidationError("Order is not awaiting payment", details={"state": order["state"]})

    success_url = f"{PAYMENT_SUCCESS_URL}?orderId={order['_id']}"
    if not STRIPE_SECRET_KEY:
        # Mock if Stripe not configured
        logger.info("Stripe not configured, returning mock checkout for order %s", order["_id"])
        return success_url

    try:
        session = _stripe().checkout.Session.create(
            payment_method_types=[method],
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": "eur" if method == "klarna" else "usd",
                    "product_data": {"name": str(order["_id"])},
                    "unit_amount": round(order["amount"] * 100),
                },
                "quantity": 1,
            }],
            client_reference_id=str(order["_id"]),
            metadata={"orderId": str(order["_id"])},
            success_url=success_url,
            cancel_url=f"{PAYMENT_CANCEL_URL}?orderId={order['_id']}",
        )
    except stripe.StripeError as e:
        raise ApiError(f"Stripe error: {str(e)[:100]}", status_code=502) from e
    logger.info("Created checkout session %s for order %s", session.id, order["_id"])
    return session.url


def parse_event(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """Webhook body as a dict, signature-checked when a webhook secret is configured."""
    if STRIPE_WEBHOOK_SECRET:
        try:
            stripe.WebhookSignature.verify_header(payload.decode("utf-8"), signature or "", STRIPE_WEBHOOK_SECRET)
        except stripe.SignatureVerificationError as e:
            raise ValidationError("Invalid webhook signature") from e
    try:
        event = json.loads(payload)
    except ValueError as e:
        raise ValidationError("Invalid webhook payload") from e
    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload")
    return event


def resolve_session(session: Dict[str, Any]) -> Settlement:
    order_id = session.get("client_reference_id") or (session.get("metadata") or {}).get("orderId")
    if not order_id and STRIPE_SECRET_KEY and session.get("id"):
        # sessions created elsewhere only name the order in their line item
        items = _stripe().checkout.Session.list_line_items(session["id"], limit=1)
        if items.data:
            order_id = items.data[0].description

    transaction_id = session.get("payment_intent") or session.get("id")

    payment_method = None
    if STRIPE_SECRET_KEY and session.get("payment_intent"):
        intent = _stripe().PaymentIntent.retrieve(session["payment_intent"], expand=["payment_method"])
        method = intent.payment_method
        if method is not None and not isinstance(method, str):
            payment_method = method.type
    if not payment_method:
        types = session.get("payment_method_types") or []
        payment_method = types[0] if types else None

    amount_total = session.get("amount_total")
    paid_amount = amount_total / 100 if amount_total is not None else None
    return Settlement(order_id, paid_amount, payment_method, transaction_id)


def _record_transaction(order: dict, settlement: Settlement):
    """Insert the transaction once per provider id. Returns (transaction, created)."""
    doc = Transaction(
        transaction_id=settlement.transaction_id,
        payment_method=settlement.payment_method,
        amount=order["amount"],
        customer=str(order["customer"]),
        order=str(order["_id"]),
    ).model_dump(exclude={"transaction_id"})
    doc["customer"] = order["customer"]
    doc["order"] = order["_id"]
    doc["created_at"] = now()

    transactions = get_collection("transaction")
    key = {"transaction_id": settlement.transaction_id}
    try:
        previous = transactions.find_one_and_update(
            key,
            {"$setOnInsert": doc},
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )
    except DuplicateKeyError:
        previous = transactions.find_one(key)
    if previous is not None:
        return previous, False
    return transactions.find_one(key), True


def _notify(order_id: ObjectId) -> None:
    try:
        send_receipt(order_id)
    except Exception:
        logger.exception("Receipt for order %s could not be queued", order_id)


def reconcile_payment(event: Dict[str, Any]) -> None:
    """
    Settle the order a completed checkout session pays for.

    Events for unknown orders are dropped: replays and abandoned carts are
    expected. A replayed event finds its transaction already recorded and
    only re-applies the same order state.
    """
    if event.get("type") != COMPLETED_EVENT:
        logger.info("Ignoring payment event %s", event.get("type"))
        return

    session = (event.get("data") or {}).get("object") or {}
    settlement = resolve_session(session)
    if not settlement.order_id or not ObjectId.is_valid(str(settlement.order_id)):
        logger.warning("Payment event %s carries no order reference", event.get("id"))
        return
    if not settlement.transaction_id:
        logger.warning("Payment event %s carries no payment reference", event.get("id"))
        return
    order = get_order(settlement.order_id)
    if not order:
        logger.warning("Payment event %s for unknown order %s", event.get("id"), settlement.order_id)
        return

    if settlement.paid_amount is not None and abs(settlement.paid_amount - order["amount"]) > 0.005:
        logger.warning(
            "Order %s paid %.2f but amount is %.2f", order["_id"], settlement.paid_amount, order["amount"]
        )

    transaction, created = _record_transaction(order, settlement)
    if transaction.get("order") != order["_id"]:
        logger.warning(
            "Transaction %s already belongs to order %s", settlement.transaction_id, transaction.get("order")
        )
        return
    settle_order(order["_id"], transaction["_id"], settlement.payment_method)

    if created:
        logger.info("Order %s settled by %s", order["_id"], settlement.transaction_id)
        _notify(order["_id"])
    else:
        logger.info("Replayed payment %s for order %s", settlement.transaction_id, order["_id"])
