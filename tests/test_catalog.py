import pytest
from bson import ObjectId

import catalog
import storage
from errors import ConflictError, NotFoundError, ValidationError
from reviews import store_review


@pytest.fixture
def uploads(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(tmp_path))

    def _make(*names):
        paths = []
        for name in names:
            (tmp_path / "images").mkdir(exist_ok=True)
            (tmp_path / "images" / name).write_bytes(b"img")
            paths.append(f"/images/{name}")
        return paths

    _make.root = tmp_path
    return _make


def test_slugify():
    assert catalog.slugify("PlayStation 5 – Édition Spéciale!") == "playstation-5-edition-speciale"
    with pytest.raises(ValidationError):
        catalog.slugify("!!!")


def test_first_product_creates_family_and_base(db, add_product):
    base = add_product(modelLabel="Edition")
    variant = add_product(memory="2TB", price=600)

    family = db["family"].find_one({"name": "PlayStation 5"})
    assert family["product_type"] == "console"
    assert family["order"] == 1
    assert family["modelLabel"] == "Edition"
    assert base["isVariant"] is False and base["product_ref"] is None
    assert variant["isVariant"] is True and variant["product_ref"] == "PlayStation 5"
    assert variant["order"] == 1
    assert base["slug"] == "playstation-5-disc-1-new-825gb"
    assert base["effective_price"] == 500


def test_new_family_ranks_after_last_of_same_type(db, add_product):
    add_product(name="A")
    add_product(name="B")
    add_product(name="Pad", product_type="controller")

    assert db["family"].find_one({"name": "B"})["order"] == 2
    assert db["family"].find_one({"name": "Pad"})["order"] == 1


def test_duplicate_variant_conflicts(db, add_product):
    add_product()
    with pytest.raises(ConflictError):
        add_product(price=999)
    assert db["product"].count_documents({}) == 1


def test_family_type_mismatch_conflicts(add_product):
    add_product()
    with pytest.raises(ConflictError):
        add_product(product_type="handheld", memory="2TB")


def test_create_variant(db, add_product):
    add_product()
    variant = catalog.create_variant("PlayStation 5", {
        "model": "Digital", "condition": "used", "price": 380, "offer_price": 350, "quantity": 2,
    })

    assert variant["isVariant"] is True
    assert variant["product_type"] == "console"
    assert variant["brand"] == "Sony"
    assert variant["effective_price"] == 350

    with pytest.raises(NotFoundError):
        catalog.create_variant("Dreamcast", {"condition": "used", "price": 10})


def test_update_recomputes_price_and_removes_replaced_images(db, add_product, uploads):
    old = uploads("old.png", "keep.png")
    new = uploads("new.png")
    product = add_product(images=old, price=500)

    updated = catalog.update_product(product["slug"], {"offer_price": 420, "images": [old[1]] + new})

    assert updated["effective_price"] == 420
    assert not (uploads.root / "images" / "old.png").exists()
    assert (uploads.root / "images" / "keep.png").exists()
    assert (uploads.root / "images" / "new.png").exists()


def test_update_shared_fields_apply_to_family(db, add_product):
    base = add_product()
    add_product(memory="2TB")

    catalog.update_product(base["slug"], {"brand": "SIE"})

    assert {p["brand"] for p in db["product"].find()} == {"SIE"}
    assert db["family"].find_one({"name": "PlayStation 5"})["brand"] == "SIE"


def test_update_into_existing_variant_conflicts(add_product):
    base = add_product()
    add_product(memory="2TB")
    with pytest.raises(ConflictError):
        catalog.update_product(base["slug"], {"memory": "2TB"})
    with pytest.raises(NotFoundError):
        catalog.update_product("missing", {"price": 1})


def test_delete_product_removes_images_and_promotes_base(db, add_product, uploads):
    base = add_product(images=uploads("base.png"))
    variant = add_product(memory="2TB")

    catalog.delete_product(str(base["_id"]))

    assert not (uploads.root / "images" / "base.png").exists()
    promoted = db["product"].find_one({"_id": variant["_id"]})
    assert promoted["isVariant"] is False
    assert promoted["product_ref"] is None

    catalog.delete_product(str(variant["_id"]))
    assert db["family"].count_documents({}) == 0

    with pytest.raises(NotFoundError):
        catalog.delete_product(str(ObjectId()))


def test_delete_missing_image_is_not_fatal(db, add_product, uploads):
    product = add_product(images=["/images/gone.png"])
    catalog.delete_product(str(product["_id"]))
    assert db["product"].count_documents({}) == 0


def test_delete_by_name(db, add_product):
    add_product()
    add_product(memory="2TB")
    add_product(name="Switch", brand="Nintendo")

    assert catalog.delete_by_name("PlayStation 5") == 2
    assert db["product"].count_documents({}) == 1
    assert db["family"].find_one({"name": "PlayStation 5"}) is None
    with pytest.raises(NotFoundError):
        catalog.delete_by_name("PlayStation 5")


def test_labels_and_related(db, add_product):
    add_product()
    family = catalog.edit_labels("PlayStation 5", {"memoryLabel": "Storage", "price": 1})
    assert family["memoryLabel"] == "Storage"
    assert "price" not in family

    related = catalog.set_related_products("PlayStation 5", ["Switch", "PlayStation 5"])
    assert related["relatedProducts"] == ["Switch"]

    with pytest.raises(NotFoundError):
        catalog.edit_labels("Dreamcast", {"modelLabel": "Edition"})
    with pytest.raises(ValidationError):
        catalog.edit_labels("PlayStation 5", {})


def test_find_slug_and_list_by_name(add_product):
    add_product()
    add_product(memory="2TB")

    assert catalog.find_slug({"name": "PlayStation 5", "memory": "2TB"}) == "playstation-5-disc-1-new-2tb"
    assert catalog.find_slug({"name": "PlayStation 5", "memory": "16TB"}) is None
    members = catalog.list_by_name("PlayStation 5")
    assert len(members) == 2
    assert all(m["byName"] for m in members)


def test_retrieve_by_ids_suggests_siblings(add_product):
    base = add_product()
    add_product(memory="2TB")
    add_product(memory="4TB")

    result = catalog.retrieve_by_ids([str(base["_id"])])

    assert [p["_id"] for p in result["products"]] == [base["_id"]]
    assert len(result["variants"]) == 2
    assert all("product_ref" not in v for v in result["variants"])


def test_list_for_home_one_card_per_model(db, add_product):
    add_product(name="PS5 Slim", model="Slim", price=450)
    add_product(name="PS5 Pro", model="Pro", price=700, offer_price=650)
    add_product(name="PS5 Slim Bundle", model="Slim", price=400)

    cards = catalog.list_for_home("console")

    assert [c["model"] for c in cards] == ["Slim", "Pro"]
    assert cards[0]["minPrice"] == 400
    assert cards[1]["minPrice"] == 650


def test_product_page(db, add_product, add_customer):
    base = add_product(price=500)
    add_product(memory="2TB", price=600)
    add_product(name="Switch", brand="Nintendo", model="OLED", price=300)
    catalog.set_related_products("PlayStation 5", ["Switch"])
    catalog.edit_labels("PlayStation 5", {"memoryLabel": "Storage"})
    store_review(add_customer(), "PlayStation 5", 4)
    store_review(add_customer("b@example.com", "Bob"), "PlayStation 5", 5)

    page = catalog.get_product_by_slug(base["slug"])

    assert page["product"]["id"] == str(base["_id"])
    assert page["product"]["memoryLabel"] == "Storage"
    assert page["product"]["ratings"] == 4.5
    assert page["product"]["reviewCount"] == 2
    assert {"memory": "2TB", "price": "+100.00"} in page["meta"]["memorys"]
    assert [r["name"] for r in page["relatedProducts"]] == ["Switch"]
    assert page["relatedProducts"][0]["minPrice"] == 300

    with pytest.raises(NotFoundError):
        catalog.get_product_by_slug("missing")


def test_rejected_update_leaves_family_untouched(db, add_product):
    base = add_product()
    sibling = add_product(memory="2TB")

    with pytest.raises(ConflictError):
        catalog.update_product(base["slug"], {"brand": "Acme", "memory": "2TB"})
    with pytest.raises(ValidationError):
        catalog.update_product(base["slug"], {"description": "New text", "slug": "???"})

    family = db["family"].find_one({"name": "PlayStation 5"})
    assert family["brand"] == "Sony"
    assert family["description"] == "Next generation console"
    assert db["product"].find_one({"_id": sibling["_id"]})["brand"] == "Sony"


def test_rejected_slug_creates_no_family(db, add_product):
    with pytest.raises(ValidationError):
        add_product(slug="***")
    assert db["family"].count_documents({}) == 0
    assert db["product"].count_documents({}) == 0
