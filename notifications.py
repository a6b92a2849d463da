"""
Receipt notifications

Receipts are queued in the "receipt" collection; delivery happens outside
this service.
"""
import logging

from bson import ObjectId

from database import create_document

logger = logging.getLogger(__name__)


def send_receipt(order_id: ObjectId) -> str:
    receipt_id = create_document("receipt", {"order": order_id, "status": "queued"})
    logger.info("Queued receipt %s for order %s", receipt_id, order_id)
    return receipt_id
