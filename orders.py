"""
Checkout and order lifecycle

pending -> shipped | success | cancel. Customers cancel, admins ship and
only payment reconciliation settles an order to success. Cancel and ship
write the state unconditionally, so repeating them is harmless.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import get_collection, now, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError, StockError, ValidationError
from listing import parse_limit, parse_page
from schemas import Order, OrderLine
from variants import effective_price

logger = logging.getLogger(__name__)

ORDER_STATES = ("pending", "shipped", "success", "cancel")


def _parse_lines(lines: Any) -> List[Tuple[ObjectId, int]]:
    if not lines or not isinstance(lines, list):
        raise ValidationError("Product details are required")
    parsed = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict) or not line.get("product"):
            raise ValidationError("Each cart line needs a product", details={"line": index})
        quantity = line.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Quantity must be a positive integer", details={"line": index, "quantity": quantity})
        parsed.append((to_object_id(line["product"], "product id"), quantity))
    return parsed


def _price_lines(parsed: List[Tuple[ObjectId, int]]) -> Tuple[List[OrderLine], float]:
    """Unit prices are captured now and never re-read from the catalog."""
    found = get_collection("product").find(
        {"_id": {"$in": [pid for pid, _ in parsed]}},
        {"name": 1, "quantity": 1, "price": 1, "offer_price": 1},
    )
    products = {p["_id"]: p for p in found}
    if not products:
        raise ValidationError("No valid products found")

    lines: List[OrderLine] = []
    total = 0.0
    for product_id, quantity in parsed:
        product = products.get(product_id)
        if product is None:
            logger.warning("Skipping unknown product %s in cart", product_id)
            continue
        # advisory only: stock is neither reserved nor decremented
        available = product.get("quantity") or 0
        if available < quantity:
            raise StockError(
                f"Insufficient stock for product {product['name']}",
                details={"product": str(product_id), "requested": quantity, "available": available},
            )
        price = effective_price(product)
        lines.append(OrderLine(product=str(product_id), name=product["name"], price=price, quantity=quantity))
        total += price * quantity
    return lines, round(total, 2)


def checkout(customer_id: str, lines: Any) -> Dict[str, Any]:
    """
    Price a cart and return the customer's pending order.

    A customer has at most one pending order. If one exists it is returned
    as is, whatever the new cart holds. The lookup and the insert are one
    upsert, and the partial unique index on pending orders turns a lost race
    into a read of the winner.
    """
    customer_ref = to_object_id(customer_id, "customer id")
    order_lines, amount = _price_lines(_parse_lines(lines))

    customer = get_collection("customer").find_one({"_id": customer_ref}, {"address": 1})
    order = Order(
        productDetails=order_lines,
        customer=str(customer_ref),
        amount=amount,
        address=customer.get("address") if customer else None,
    ).model_dump(exclude={"customer", "state"})
    for line in order["productDetails"]:
        line["product"] = ObjectId(line["product"])
    order["created_at"] = now()
    order["updated_at"] = now()

    orders = get_collection("order")
    pending = {"customer": customer_ref, "state": "pending"}
    try:
        previous = orders.find_one_and_update(
            pending,
            {"$setOnInsert": order},
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )
    except DuplicateKeyError:
        previous = orders.find_one(pending)

    if previous is not None:
        logger.info("Reusing pending order %s for customer %s", previous["_id"], customer_ref)
        return {"amount": previous["amount"], "orderId": str(previous["_id"])}

    created = orders.find_one(pending)
    if created is None:
        raise ConflictError("Pending order changed during checkout, please retry")
    logger.info("Created pending order %s for customer %s amount=%.2f", created["_id"], customer_ref, amount)
    return {"amount": created["amount"], "orderId": str(created["_id"])}


def _set_state(order_id: str, state: str) -> None:
    result = get_collection("order").update_one(
        {"_id": to_object_id(order_id, "order id")},
        {"$set": {"state": state, "updated_at": now()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Order not found", details={"id": order_id})
    logger.info("Order %s -> %s", order_id, state)


def cancel_order(order_id: str) -> None:
    _set_state(order_id, "cancel")


def ship_order(order_id: str) -> None:
    _set_state(order_id, "shipped")


def get_order(order_id: Any) -> Optional[dict]:
    return get_collection("order").find_one({"_id": to_object_id(order_id, "order id")})


def settle_order(order_id: ObjectId, transaction_ref: ObjectId, payment_method: Optional[str]) -> dict:
    return get_collection("order").find_one_and_update(
        {"_id": order_id},
        {"$set": {
            "state": "success",
            "transaction": transaction_ref,
            "payment_method": payment_method,
            "updated_at": now(),
        }},
        return_document=ReturnDocument.AFTER,
    )


def _lookup(collection: str, ids: List[ObjectId], fields: Dict[str, int]) -> Dict[ObjectId, dict]:
    ids = [i for i in ids if i is not None]
    if not ids:
        return {}
    return {d["_id"]: d for d in get_collection(collection).find({"_id": {"$in": ids}}, fields)}


def list_orders(query: Dict[str, Any]) -> Dict[str, Any]:
    page = parse_page(query.get("page"))
    limit = parse_limit(query.get("limit"), default=10)
    filters: Dict[str, Any] = {}
    state = query.get("state")
    if state:
        if state not in ORDER_STATES:
            raise ValidationError("Unknown order state", details={"state": state, "allowed": list(ORDER_STATES)})
        filters["state"] = state

    collection = get_collection("order")
    orders = list(collection.find(filters).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    total = collection.count_documents(filters)

    customers = _lookup("customer", [o.get("customer") for o in orders], {"name": 1})
    products = _lookup(
        "product",
        [line.get("product") for o in orders for line in o.get("productDetails", [])],
        {"name": 1, "images": 1},
    )
    transactions = _lookup("transaction", [o.get("transaction") for o in orders], {"transaction_id": 1})

    for order in orders:
        order["customer"] = customers.get(order.get("customer"), order.get("customer"))
        for line in order.get("productDetails", []):
            line["product"] = products.get(line.get("product"), line.get("product"))
        if order.get("transaction") is not None:
            order["transaction"] = transactions.get(order["transaction"], order["transaction"])

    return {
        "meta": {"totalPages": math.ceil(total / limit), "page": page, "limit": limit, "total": total},
        "orders": serialize_doc(orders),
    }
