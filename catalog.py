"""
Catalog management and product pages.

Families own what all their configurations share (type, brand, description,
rank, labels, related families); product records own the configuration and
its price. Shared fields are copied onto product records so listing can
filter on them, and every family-level write keeps those copies in sync.
"""
import logging
import re
import unicodedata
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, get_collection, now, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError, ValidationError
from reviews import rating_summary
from schemas import VARIANT_ATTRIBUTES, Family, Product
from storage import delete_files
from variants import compute_price_deltas, effective_price, get_family_members

logger = logging.getLogger(__name__)

LABEL_FIELDS = tuple(attr + "Label" for attr in VARIANT_ATTRIBUTES)
SHARED_FIELDS = ("product_type", "brand", "description")
VARIANT_LIMIT = 10


def slugify(value: str) -> str:
    ascii_value = unicodedata.normalize("NFKD", str(value)).encode("ascii", "ignore").decode("ascii").lower()
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_value).strip("-")
    if not slug:
        raise ValidationError("Slug must contain at least one letter or digit", details={"slug": value})
    return slug


def default_slug(data: Dict[str, Any]) -> str:
    parts = [data.get("name")] + [data.get(attr) for attr in VARIANT_ATTRIBUTES]
    return slugify(" ".join(str(p) for p in parts if p not in (None, "")))


def _variant_filter(data: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("product_type", "name") + VARIANT_ATTRIBUTES
    return {k: data.get(k) for k in keys}


def _get_family(name: str) -> dict:
    family = get_collection("family").find_one({"name": name})
    if not family:
        raise NotFoundError("Product not found", details={"name": name})
    return family


def _insert_product(data: Dict[str, Any], family: dict) -> dict:
    products = get_collection("product")
    for field in SHARED_FIELDS:
        data[field] = family.get(field)
    data["slug"] = slugify(data["slug"]) if data.get("slug") else default_slug(data)
    data["effective_price"] = effective_price(data)
    if data.get("order") is None:
        data["order"] = family.get("order")

    if products.find_one(_variant_filter(data)):
        raise ConflictError("Product variant already exists", details=_variant_filter(data))

    doc = Product(**data).model_dump()
    try:
        product_id = create_document("product", doc)
    except DuplicateKeyError as e:
        raise ConflictError("Product variant or slug already exists", details={"slug": data["slug"]}) from e
    logger.info("Created product %s (%s) in family %s", product_id, data["slug"], data["name"])
    return products.find_one({"_id": to_object_id(product_id)})


def create_product(data: Dict[str, Any]) -> dict:
    """
    Create a product. The first product of a name creates its family and
    becomes the base; later ones join the family as variants and inherit
    its labels and rank.
    """
    families = get_collection("family")
    labels = {field: data.pop(field, None) for field in LABEL_FIELDS}
    data["slug"] = slugify(data["slug"]) if data.get("slug") else default_slug(data)
    family = families.find_one({"name": data["name"]})

    if family is None:
        order = data.get("order")
        if order is None:
            last = families.find_one({"product_type": data["product_type"]}, sort=[("order", DESCENDING)])
            order = last["order"] + 1 if last else 1
        new_family = Family(
            name=data["name"],
            product_type=data["product_type"],
            brand=data.get("brand"),
            description=data.get("description"),
            order=order,
            **labels,
        )
        try:
            create_document("family", new_family)
        except DuplicateKeyError as e:
            raise ConflictError("Product family already exists", details={"name": data["name"]}) from e
        family = families.find_one({"name": data["name"]})
        data["isVariant"] = False
        data["product_ref"] = None
    else:
        if family["product_type"] != data["product_type"]:
            raise ConflictError(
                f"{data['name']} is already listed as {family['product_type']}",
                details={"name": data["name"], "product_type": data["product_type"]},
            )
        missing = {k: v for k, v in labels.items() if v is not None and not family.get(k)}
        if missing:
            families.update_one({"_id": family["_id"]}, {"$set": {**missing, "updated_at": now()}})
        has_base = get_collection("product").find_one({"name": data["name"], "isVariant": False})
        data["isVariant"] = has_base is not None
        data["product_ref"] = data["name"] if has_base else None

    return _insert_product(data, family)


def create_variant(name: str, data: Dict[str, Any]) -> dict:
    base = get_collection("product").find_one({"name": name, "isVariant": False})
    if not base:
        raise NotFoundError("Product not found", details={"name": name})
    family = _get_family(name)
    data.update(name=name, isVariant=True, product_ref=name, product_type=family["product_type"])
    return _insert_product(data, family)


def update_product(slug: str, data: Dict[str, Any]) -> dict:
    """Update one configuration; brand/description changes apply to the whole family."""
    products = get_collection("product")
    existing = products.find_one({"slug": slug})
    if not existing:
        raise NotFoundError("Product not found", details={"slug": slug})

    shared = {k: data[k] for k in ("brand", "description") if k in data}
    if data.get("slug"):
        data["slug"] = slugify(data["slug"])
    merged = {**existing, **data}
    data["effective_price"] = effective_price(merged)

    if any(attr in data for attr in VARIANT_ATTRIBUTES):
        clash = products.find_one({**_variant_filter(merged), "_id": {"$ne": existing["_id"]}})
        if clash:
            raise ConflictError("Product variant already exists", details=_variant_filter(merged))

    data["updated_at"] = now()
    try:
        updated = products.find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": data},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError as e:
        raise ConflictError("Product variant or slug already exists", details={"slug": data.get("slug")}) from e

    # family-wide fields follow only once this configuration is saved
    if shared:
        get_collection("family").update_one({"name": existing["name"]}, {"$set": {**shared, "updated_at": now()}})
        products.update_many({"name": existing["name"]}, {"$set": shared})

    if data.get("images"):
        replaced = [img for img in existing.get("images", []) if img not in data["images"]]
        delete_files(replaced)
    logger.info("Updated product %s", updated["slug"])
    return updated


def _promote_base(name: str) -> None:
    """Keep exactly one base per family after the base is removed."""
    products = get_collection("product")
    if products.find_one({"name": name, "isVariant": False}):
        return
    members = get_family_members(name)
    if not members:
        get_collection("family").delete_one({"name": name})
        logger.info("Removed empty family %s", name)
        return
    products.update_one({"_id": members[0]["_id"]}, {"$set": {"isVariant": False, "product_ref": None}})
    products.update_many({"name": name, "_id": {"$ne": members[0]["_id"]}}, {"$set": {"product_ref": name}})
    logger.info("Promoted %s to base of family %s", members[0]["slug"], name)


def delete_product(product_id: str) -> dict:
    deleted = get_collection("product").find_one_and_delete({"_id": to_object_id(product_id, "product id")})
    if not deleted:
        raise NotFoundError("Product not found", details={"id": product_id})
    delete_files(deleted.get("images"))
    _promote_base(deleted["name"])
    return deleted


def delete_by_name(name: str) -> int:
    """Delete a whole family with every configuration and image."""
    members = get_family_members(name)
    if not members:
        raise NotFoundError("Product not found", details={"name": name})
    get_collection("product").delete_many({"name": name})
    get_collection("family").delete_one({"name": name})
    for member in members:
        delete_files(member.get("images"))
    logger.info("Deleted family %s (%d products)", name, len(members))
    return len(members)


def edit_labels(name: str, labels: Dict[str, Optional[str]]) -> dict:
    labels = {k: v for k, v in labels.items() if k in LABEL_FIELDS}
    if not labels:
        raise ValidationError("No labels given", details={"allowed": list(LABEL_FIELDS)})
    family = get_collection("family").find_one_and_update(
        {"name": name},
        {"$set": {**labels, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not family:
        raise NotFoundError("Product not found", details={"name": name})
    return family


def set_related_products(name: str, related: List[str]) -> dict:
    family = get_collection("family").find_one_and_update(
        {"name": name},
        {"$set": {"relatedProducts": [r for r in related if r != name], "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not family:
        raise NotFoundError("Product not found", details={"name": name})
    return family


def find_slug(filters: Dict[str, Any]) -> Optional[str]:
    product = get_collection("product").find_one(filters, {"slug": 1})
    return product["slug"] if product else None


def list_by_name(name: str) -> List[dict]:
    return [{**p, "byName": True} for p in get_family_members(name)]


def retrieve_by_ids(ids: List[str]) -> Dict[str, List[dict]]:
    """Products for a cart plus a few sibling configurations to suggest."""
    products = get_collection("product")
    object_ids = [to_object_id(i, "product id") for i in ids]
    found = list(products.find({"_id": {"$in": object_ids}}))
    variants = list(
        products.find(
            {"_id": {"$nin": object_ids}, "product_ref": {"$in": [p["name"] for p in found]}},
            {"product_ref": 0},
        ).limit(VARIANT_LIMIT)
    )
    return {"products": found, "variants": variants}


def one_per_model(products: List[dict]) -> List[dict]:
    """First product per model, carrying the cheapest effective price of that model."""
    cards: Dict[Any, dict] = {}
    for product in products:
        key = product.get("model")
        price = effective_price(product)
        if key not in cards:
            cards[key] = {**product, "minPrice": price}
        else:
            cards[key]["minPrice"] = min(cards[key]["minPrice"], price)

    def rank(card):
        order = card.get("order")
        return (order is None, order or 0, card["minPrice"])

    return sorted(cards.values(), key=rank)


def list_for_home(product_type: str) -> List[dict]:
    cursor = get_collection("product").find({"product_type": product_type, "isVariant": False}).sort("order", 1)
    return one_per_model(list(cursor))


def related_products(product: dict, family: Optional[dict] = None) -> List[dict]:
    if family is None:
        family = get_collection("family").find_one({"name": product["name"]}) or {}
    names = family.get("relatedProducts") or []
    if not names:
        return []
    cursor = get_collection("product").find(
        {"_id": {"$ne": product["_id"]}, "name": {"$in": names}, "isVariant": False}
    ).sort("order", 1)
    return one_per_model(list(cursor))


def get_product_by_slug(slug: str) -> Dict[str, Any]:
    """Product page: the configuration, its price deltas and related products."""
    product = get_collection("product").find_one({"slug": slug})
    if not product:
        raise NotFoundError("Product not found", details={"slug": slug})
    family = get_collection("family").find_one({"name": product["name"]}) or {}
    members = get_family_members(product["name"])

    view = dict(product)
    for field in LABEL_FIELDS:
        view[field] = family.get(field)
    view["relatedProducts"] = family.get("relatedProducts", [])
    view.update(rating_summary(product["name"]))

    return {
        "product": serialize_doc(view),
        "meta": compute_price_deltas(product, members),
        "relatedProducts": serialize_doc(related_products(product, family)),
    }
