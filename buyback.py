"""
Buy-back pricing

Sellers answer a device's questionnaire; the offer is the device's base
price plus the price of every chosen option.
"""
import logging
from typing import Any, Dict, List

from pymongo.errors import DuplicateKeyError

from database import create_document, get_collection
from errors import ConflictError, NotFoundError, ValidationError
from schemas import ProductBuyQuestion

logger = logging.getLogger(__name__)

COLLECTION = "productbuyquestion"


def create_buyback_item(data: ProductBuyQuestion) -> str:
    if get_collection(COLLECTION).find_one({"name": data.name}, {"_id": 1}):
        raise ConflictError("Buy-back item already exists", details={"name": data.name})
    try:
        item_id = create_document(COLLECTION, data)
    except DuplicateKeyError as e:
        raise ConflictError("Buy-back item already exists", details={"name": data.name}) from e
    logger.info("Created buy-back item %s (%s)", item_id, data.name)
    return item_id


def get_buyback_item(product_type: str, brand: str, name: str) -> dict:
    item = get_collection(COLLECTION).find_one({"product_type": product_type, "brand": brand, "name": name})
    if not item:
        raise NotFoundError(
            "Product not found",
            details={"product_type": product_type, "brand": brand, "name": name},
        )
    return item


def calculate_price(product_type: str, brand: str, name: str, answers: Dict[str, Any]) -> Dict[str, Any]:
    """
    Offer for a used device. `answers` maps question name to the chosen
    option; unanswered questions add nothing.
    """
    item = get_buyback_item(product_type, brand, name)
    questions = {q["name"]: q for q in item.get("questions", [])}

    unknown = sorted(k for k in answers if k not in questions)
    if unknown:
        raise ValidationError("Unknown question", details={"questions": unknown})

    breakdown: List[dict] = []
    total = float(item["base_price"])
    for question_name, chosen in answers.items():
        options = {o["option"]: o for o in questions[question_name]["options"]}
        option = options.get(chosen)
        if option is None:
            raise ValidationError(
                f"Invalid option for {question_name}",
                details={"question": question_name, "option": chosen, "allowed": list(options)},
            )
        breakdown.append({"question": question_name, "option": chosen, "price": option["price"]})
        total += option["price"]

    return {
        "name": item["name"],
        "base_price": item["base_price"],
        "price": round(max(total, 0), 2),
        "breakdown": breakdown,
    }
