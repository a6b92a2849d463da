import logging
import math
from typing import Any, Dict, Optional

from pymongo import ReturnDocument

from database import create_document, get_collection, now, to_object_id
from errors import NotFoundError
from listing import parse_limit, parse_page
from schemas import Review, ReviewCustomer
from storage import delete_file

logger = logging.getLogger(__name__)


def rating_summary(product_name: str) -> Dict[str, Any]:
    result = list(get_collection("review").aggregate([
        {"$match": {"product": product_name}},
        {"$group": {"_id": "$product", "avgRating": {"$avg": "$rating"}, "totalReviews": {"$sum": 1}}},
    ]))
    if not result:
        return {"ratings": 0, "reviewCount": 0}
    return {"ratings": round(result[0]["avgRating"] or 0, 1), "reviewCount": result[0]["totalReviews"]}


def store_review(customer_id: str, product: str, rating: int, comment: Optional[str] = None) -> dict:
    """
    One review per customer and product; posting again replaces it. The
    customer's name and avatar are copied at write time.
    """
    customer_ref = to_object_id(customer_id, "customer id")
    product_exists = get_collection("product").find_one({"name": product}, {"_id": 1})
    customer = get_collection("customer").find_one({"_id": customer_ref})
    if not product_exists or not customer:
        raise NotFoundError("Product not found or customer not found")

    review = Review(
        product=product,
        customer=ReviewCustomer(name=customer["name"], avatar=customer.get("avatar")),
        rating=rating,
        comment=comment,
    ).model_dump()
    review["customerRef"] = customer_ref
    review["updated_at"] = now()

    return get_collection("review").find_one_and_update(
        {"customerRef": customer_ref, "product": product},
        {"$set": review, "$setOnInsert": {"created_at": now()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def create_review(data: Review) -> str:
    """Reviews entered by staff, with no customer account behind them."""
    if not get_collection("product").find_one({"name": data.product}, {"_id": 1}):
        raise NotFoundError("Product not found", details={"product": data.product})
    doc = data.model_dump()
    doc["customerRef"] = None
    return create_document("review", doc)


def list_reviews(query: Dict[str, Any]) -> Dict[str, Any]:
    page = parse_page(query.get("page"))
    limit = parse_limit(query.get("limit"), default=10)
    filters = {"product": query["productName"]} if query.get("productName") else {}

    reviews = get_collection("review")
    items = list(reviews.find(filters).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    total = reviews.count_documents(filters)
    return {
        "reviews": items,
        "meta": {"total": total, "page": page, "limit": limit, "totalPage": math.ceil(total / limit)},
    }


def delete_review(review_id: str) -> None:
    deleted = get_collection("review").find_one_and_delete({"_id": to_object_id(review_id, "review id")})
    if not deleted:
        raise NotFoundError("Review not found", details={"id": review_id})
    # staff reviews own their uploaded avatar; customer avatars belong to the customer
    if not deleted.get("customerRef"):
        delete_file((deleted.get("customer") or {}).get("avatar"))
    logger.info("Deleted review %s", review_id)
