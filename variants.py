"""
Variant grouping and price deltas

A family is every product record sharing one `name`. The product page shows,
for each variable attribute, the values available in the family and how much
choosing one would change the price of the configuration being viewed.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pymongo import ASCENDING

from database import get_collection
from schemas import VARIANT_ATTRIBUTES

logger = logging.getLogger(__name__)

NO_CHANGE = "+0"


def effective_price(product: dict) -> float:
    offer = product.get("offer_price")
    if offer is not None:
        return float(offer)
    return float(product.get("price") or 0)


def format_delta(diff: float) -> str:
    if diff == 0:
        return NO_CHANGE
    if diff > 0:
        return f"+{diff:.2f}"
    return f"{diff:.2f}"


def attribute_key(product: dict) -> Tuple:
    return tuple(product.get(attr) for attr in VARIANT_ATTRIBUTES)


def get_family_members(name: str) -> List[dict]:
    cursor = get_collection("product").find({"name": name}).sort([("order", ASCENDING), ("_id", ASCENDING)])
    return list(cursor)


def build_family_view(members: Iterable[dict]) -> Dict[str, List]:
    """Distinct values per attribute, in the order they first appear."""
    view: Dict[str, List] = {attr: [] for attr in VARIANT_ATTRIBUTES}
    for member in members:
        for attr in VARIANT_ATTRIBUTES:
            value = member.get(attr)
            if value in (None, "") or value in view[attr]:
                continue
            view[attr].append(value)
    return view


def compute_price_deltas(product: dict, members: Optional[List[dict]] = None) -> Dict[str, List[dict]]:
    """
    For every attribute value in the family, the signed price change of
    switching `product` to that value while keeping its other attributes.

    A value with no matching configuration reports "+0" rather than being
    dropped, so the option stays visible.
    """
    if members is None:
        members = get_family_members(product["name"])
    by_key = {attribute_key(m): m for m in members}
    base_price = effective_price(product)
    current = attribute_key(product)

    result: Dict[str, List[dict]] = {}
    for index, (attr, values) in enumerate(build_family_view(members).items()):
        options = []
        for value in values:
            if value == product.get(attr):
                options.append({attr: value, "price": NO_CHANGE})
                continue
            wanted = current[:index] + (value,) + current[index + 1:]
            match = by_key.get(wanted)
            if match is None:
                options.append({attr: value, "price": NO_CHANGE})
                continue
            options.append({attr: value, "price": format_delta(effective_price(match) - base_price)})
        result[attr + "s"] = options
    logger.debug("Price deltas for %s over %d family members", product.get("slug"), len(members))
    return result

