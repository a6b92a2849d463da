import logging

from pymongo.errors import DuplicateKeyError

from database import create_document, get_collection
from errors import ConflictError
from schemas import Customer

logger = logging.getLogger(__name__)


def create_customer(data: Customer) -> str:
    doc = data.model_dump()
    doc["email"] = doc["email"].strip().lower()
    if get_collection("customer").find_one({"email": doc["email"]}):
        raise ConflictError("Email already registered", details={"email": doc["email"]})
    try:
        customer_id = create_document("customer", doc)
    except DuplicateKeyError as e:
        raise ConflictError("Email already registered", details={"email": doc["email"]}) from e
    logger.info("Created customer %s", customer_id)
    return customer_id
