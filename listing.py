"""
Catalog listing

One card per family, the facet lists the storefront uses to narrow the
catalog progressively, and the price bounds for the price slider.
"""
import logging
import math
import re
import sys
from typing import Any, Dict, List, Optional

from bson import ObjectId

from database import get_collection, serialize_doc
from variants import effective_price

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 5
MAX_LIMIT = 100
MAX_SAFE_INTEGER = 2 ** 53 - 1
UNRANKED = sys.maxsize
FACET_FIELDS = ("product_type", "brand", "condition")


def parse_number(value: Any, default: Optional[float]) -> Optional[float]:
    """Numeric query values; anything that does not parse becomes the default."""
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def parse_page(value: Any) -> int:
    return min(MAX_SAFE_INTEGER, max(1, int(parse_number(value, DEFAULT_PAGE))))


def parse_limit(value: Any, default: int = DEFAULT_LIMIT) -> int:
    return min(MAX_LIMIT, max(1, int(parse_number(value, default))))


def build_filters(query: Dict[str, Any], min_price: Optional[float], max_price: Optional[float]) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}
    for field in FACET_FIELDS:
        if query.get(field):
            filters[field] = query[field]

    if query.get("product_ref"):
        filters["product_ref"] = query["product_ref"]
    else:
        filters["isVariant"] = False

    price: Dict[str, float] = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        filters["effective_price"] = price

    search = query.get("search")
    if search:
        pattern = re.escape(search)
        filters["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    return filters


def _page_of_families(filters: Dict[str, Any], skip: int, limit: int) -> List[dict]:
    products = get_collection("product")
    groups = products.aggregate([
        {"$match": filters},
        {"$addFields": {"rank": {"$ifNull": ["$order", UNRANKED]}}},
        {"$sort": {"rank": 1, "_id": 1}},
        {"$group": {"_id": "$name", "product_id": {"$first": "$_id"}, "rank": {"$first": "$rank"}}},
        {"$sort": {"rank": 1, "_id": 1}},
        {"$skip": skip},
        {"$limit": limit},
    ])
    ids: List[ObjectId] = [g["product_id"] for g in groups]
    if not ids:
        return []
    by_id = {p["_id"]: p for p in products.find({"_id": {"$in": ids}})}
    return [by_id[i] for i in ids if i in by_id]


def _count_families(filters: Dict[str, Any]) -> int:
    result = list(get_collection("product").aggregate([
        {"$match": filters},
        {"$group": {"_id": "$name"}},
        {"$count": "total"},
    ]))
    return result[0]["total"] if result else 0


def _distinct(field: str, filters: Dict[str, Any]) -> List[str]:
    values = get_collection("product").distinct(field, filters)
    return sorted(v for v in values if v)


def _price_range(filters: Dict[str, Any]) -> Dict[str, float]:
    result = list(get_collection("product").aggregate([
        {"$match": filters},
        {"$group": {
            "_id": None,
            "min_price": {"$min": "$effective_price"},
            "max_price": {"$max": "$effective_price"},
        }},
    ]))
    if not result:
        return {"min_price": 0, "max_price": 0}
    return {"min_price": result[0]["min_price"] or 0, "max_price": result[0]["max_price"] or 0}


def sort_page(products: List[dict], sort: str) -> List[dict]:
    # price sorting only reorders the current page
    if sort == "max_price":
        return sorted(products, key=effective_price, reverse=True)
    if sort == "min_price":
        return sorted(products, key=effective_price)
    return sorted(products, key=lambda p: p["order"] if p.get("order") is not None else UNRANKED)


def list_products(query: Dict[str, Any]) -> Dict[str, Any]:
    page = parse_page(query.get("page"))
    limit = parse_limit(query.get("limit"))
    min_price = parse_number(query.get("min_price"), None)
    max_price = parse_number(query.get("max_price"), None)
    sort = query.get("sort") or ""

    filters = build_filters(query, min_price, max_price)
    facet_filters = {f: query[f] for f in FACET_FIELDS if query.get(f)}

    products = sort_page(_page_of_families(filters, (page - 1) * limit, limit), sort)
    total = _count_families(filters)

    product_type = query.get("product_type")
    brand = query.get("brand")
    brand_filters = {"product_type": product_type} if product_type else {}
    condition_filters = dict(brand_filters)
    if brand:
        condition_filters["brand"] = brand

    price_range = _price_range(facet_filters)
    logger.debug("Listed %d of %d families for %s", len(products), total, filters)

    return {
        "products": serialize_doc(products),
        "meta": {
            "pagination": {
                "total_product_count": total,
                "total_pages": math.ceil(total / limit),
                "current_page": page,
                "current_product_limit": limit,
            },
            "product_meta": {
                "product_types": _distinct("product_type", {}),
                "brands": _distinct("brand", brand_filters),
                "conditions": _distinct("condition", condition_filters),
                "min_price": price_range["min_price"],
                "max_price": price_range["max_price"],
            },
            "current": {
                "product_type": product_type or None,
                "brand": brand or None,
                "condition": query.get("condition") or None,
                "search": query.get("search") or None,
                "min_price": min_price if min_price is not None else price_range["min_price"],
                "max_price": max_price if max_price is not None else price_range["max_price"],
            },
        },
    }
