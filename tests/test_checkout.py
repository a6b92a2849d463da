import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import catalog
import database
import orders
from errors import StockError, ValidationError


def _line(product, quantity=1):
    return {"product": str(product["_id"]), "quantity": quantity}


def test_checkout_creates_pending_order_with_effective_prices(db, add_product, add_customer):
    customer_id = add_customer()
    console = add_product(price=500, offer_price=450)
    extra = add_product(name="DualSense", product_type="controller", price=70)

    result = orders.checkout(customer_id, [_line(console, 2), _line(extra, 1)])

    assert result["amount"] == 970
    order = db["order"].find_one({"_id": ObjectId(result["orderId"])})
    assert order["state"] == "pending"
    assert order["customer"] == ObjectId(customer_id)
    assert order["amount"] == 970
    assert [line["price"] for line in order["productDetails"]] == [450, 70]
    assert order["productDetails"][0]["product"] == console["_id"]
    assert order["address"]["city"] == "Berlin"


def test_checkout_is_idempotent_per_customer(db, add_product, add_customer):
    customer_id = add_customer()
    console = add_product(price=500)
    other = add_product(name="Switch", brand="Nintendo", price=300)

    first = orders.checkout(customer_id, [_line(console)])
    second = orders.checkout(customer_id, [_line(other, 3)])
    third = orders.checkout(customer_id, [_line(console, 2)])

    assert first == second == third
    assert first["amount"] == 500
    assert db["order"].count_documents({"customer": ObjectId(customer_id)}) == 1


def test_new_pending_order_after_cancel(db, add_product, add_customer):
    customer_id = add_customer()
    console = add_product(price=500)

    first = orders.checkout(customer_id, [_line(console)])
    orders.cancel_order(first["orderId"])
    second = orders.checkout(customer_id, [_line(console, 2)])

    assert second["orderId"] != first["orderId"]
    assert second["amount"] == 1000


def test_amount_is_not_recomputed_from_live_prices(db, add_product, add_customer):
    customer_id = add_customer()
    console = add_product(price=500)
    first = orders.checkout(customer_id, [_line(console)])

    catalog.update_product(console["slug"], {"price": 650})
    again = orders.checkout(customer_id, [_line(console)])

    assert again["amount"] == 500
    assert db["order"].find_one({"_id": ObjectId(first["orderId"])})["amount"] == 500


def test_insufficient_stock_rejected_without_write(db, add_product, add_customer):
    customer_id = add_customer()
    console = add_product(quantity=1)

    with pytest.raises(StockError) as exc:
        orders.checkout(customer_id, [_line(console, 2)])

    assert exc.value.status_code == 400
    assert exc.value.details["available"] == 1
    assert db["order"].count_documents({}) == 0


def test_stock_is_only_advisory(db, add_product, add_customer):
    # known overselling gap: nothing reserves the last unit
    console = add_product(quantity=1)
    first = orders.checkout(add_customer("a@example.com"), [_line(console)])
    second = orders.checkout(add_customer("b@example.com"), [_line(console)])

    assert first["orderId"] != second["orderId"]
    assert db["product"].find_one({"_id": console["_id"]})["quantity"] == 1


@pytest.mark.parametrize("cart", [None, [], "not-a-list", [{"quantity": 1}], [{"product": "x", "quantity": 0}]])
def test_malformed_cart_rejected(add_customer, cart):
    with pytest.raises(ValidationError):
        orders.checkout(add_customer(), cart)


def test_non_integer_quantity_rejected(add_product, add_customer):
    console = add_product()
    with pytest.raises(ValidationError):
        orders.checkout(add_customer(), [{"product": str(console["_id"]), "quantity": "2"}])


def test_no_resolvable_products_rejected(db, add_customer):
    with pytest.raises(ValidationError) as exc:
        orders.checkout(add_customer(), [{"product": str(ObjectId()), "quantity": 1}])
    assert exc.value.message == "No valid products found"
    assert db["order"].count_documents({}) == 0


def test_unknown_lines_are_skipped(db, add_product, add_customer):
    console = add_product(price=500)
    result = orders.checkout(add_customer(), [_line(console), {"product": str(ObjectId()), "quantity": 4}])
    assert result["amount"] == 500
    assert len(db["order"].find_one()["productDetails"]) == 1


def test_invalid_customer_id_rejected(add_product):
    console = add_product()
    with pytest.raises(ValidationError):
        orders.checkout("nope", [_line(console)])


class RacingOrders:
    """Another request inserts its pending order first, so our upsert loses on the unique index."""

    def __init__(self, real, winner):
        self.real = real
        self.winner = winner

    def find_one_and_update(self, *args, **kwargs):
        self.real.insert_one(self.winner)
        raise DuplicateKeyError("E11000 duplicate key error: one_pending_order_per_customer")

    def __getattr__(self, name):
        return getattr(self.real, name)


def test_concurrent_checkout_returns_the_winning_order(db, monkeypatch, add_product, add_customer):
    customer_id = add_customer()
    console = add_product(price=500)
    winner = {"_id": ObjectId(), "customer": ObjectId(customer_id), "state": "pending", "amount": 123.0,
              "productDetails": []}

    def get_collection(name):
        real = database.get_collection(name)
        return RacingOrders(real, winner) if name == "order" else real

    monkeypatch.setattr(orders, "get_collection", get_collection)

    result = orders.checkout(customer_id, [_line(console)])

    assert result == {"amount": 123.0, "orderId": str(winner["_id"])}
    assert db["order"].count_documents({}) == 1


def test_second_pending_order_is_refused_by_the_store(db, add_product, add_customer):
    customer_ref = ObjectId(add_customer())
    result = orders.checkout(str(customer_ref), [_line(add_product())])

    with pytest.raises(DuplicateKeyError):
        db["order"].insert_one({"customer": customer_ref, "state": "pending", "amount": 1.0, "productDetails": []})

    orders.cancel_order(result["orderId"])
    db["order"].insert_one({"customer": customer_ref, "state": "pending", "amount": 1.0, "productDetails": []})
    assert db["order"].count_documents({"customer": customer_ref}) == 2
