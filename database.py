"""
Database access

MongoDB connection shared by the services. Collections are addressed by the
lowercase schema name (Product -> "product").
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection

from errors import ServiceUnavailableError, ValidationError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_collection(name: str) -> Collection:
    if db is None:
        raise ServiceUnavailableError("Database not configured")
    return db[name]


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    data_dict["created_at"] = now()
    data_dict["updated_at"] = now()
    result = get_collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}", details={label: value})


def serialize_doc(doc: Any) -> Any:
    """Make a stored document JSON friendly: ObjectId -> str, datetime -> iso, _id -> id."""
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = serialize_doc(v)
        else:
            out[k] = serialize_doc(v)
    return out


def ensure_indexes() -> None:
    """Create the unique indexes the services rely on."""
    if db is None:
        logger.warning("Skipping index creation: database not configured")
        return
    db["product"].create_index(
        [
            ("product_type", ASCENDING),
            ("name", ASCENDING),
            ("model", ASCENDING),
            ("controller", ASCENDING),
            ("condition", ASCENDING),
            ("memory", ASCENDING),
        ],
        unique=True,
        name="variant_tuple",
    )
    db["product"].create_index("slug", unique=True)
    db["product"].create_index([("name", ASCENDING), ("order", ASCENDING)])
    db["family"].create_index("name", unique=True)
    # at most one pending order per customer
    db["order"].create_index(
        "customer",
        unique=True,
        partialFilterExpression={"state": "pending"},
        name="one_pending_order_per_customer",
    )
    db["transaction"].create_index("transaction_id", unique=True)
    # staff reviews carry no customerRef and may repeat per product
    db["review"].create_index(
        [("customerRef", ASCENDING), ("product", ASCENDING)],
        unique=True,
        partialFilterExpression={"customerRef": {"$type": "objectId"}},
        name="one_review_per_customer",
    )
    db["customer"].create_index("email", unique=True)
    db["admin"].create_index("email", unique=True)
    db["productbuyquestion"].create_index("name", unique=True)
    logger.info("Indexes ensured on database %s", DATABASE_NAME)
