import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

import buyback
import catalog
import listing
import orders
import payments
import reviews
from auth import AuthUser, ensure_admin, login_admin, require_admin
from customers import create_customer
from database import db, ensure_indexes, serialize_doc
from errors import ApiError
from schemas import Customer, ProductBuyQuestion, Review

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes()
        ensure_admin()
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="Console Store API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "details": exc.details})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


# --------------------- Models ---------------------

class CheckoutRequest(BaseModel):
    customer: str
    productDetails: List[Any] = Field(default_factory=list)


class PaymentSessionRequest(BaseModel):
    orderId: str
    method: str = "klarna"


class ReviewRequest(BaseModel):
    customer: str
    product: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    product_type: str = Field(..., min_length=1)
    description: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    controller: Optional[str] = None
    condition: str = Field(..., min_length=1)
    memory: Optional[str] = None
    price: float = Field(..., ge=0)
    offer_price: Optional[float] = Field(None, ge=0)
    quantity: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    slug: Optional[str] = None
    order: Optional[int] = None
    modelLabel: Optional[str] = None
    controllerLabel: Optional[str] = None
    conditionLabel: Optional[str] = None
    memoryLabel: Optional[str] = None


class VariantCreate(BaseModel):
    model: Optional[str] = None
    controller: Optional[str] = None
    condition: str = Field(..., min_length=1)
    memory: Optional[str] = None
    price: float = Field(..., ge=0)
    offer_price: Optional[float] = Field(None, ge=0)
    quantity: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    slug: Optional[str] = None


class ProductUpdate(BaseModel):
    slug: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    controller: Optional[str] = None
    condition: Optional[str] = None
    memory: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    offer_price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    order: Optional[int] = None


class LabelsUpdate(BaseModel):
    modelLabel: Optional[str] = None
    controllerLabel: Optional[str] = None
    conditionLabel: Optional[str] = None
    memoryLabel: Optional[str] = None


class RelatedUpdate(BaseModel):
    products: List[str]


# --------------------- Routes ---------------------

@app.get("/")
def root():
    return {"message": "Console Store API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Products
@app.get("/api/products")
def list_products(
    product_type: Optional[str] = None,
    brand: Optional[str] = None,
    condition: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    sort: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    product_ref: Optional[str] = None,
):
    return listing.list_products({
        "product_type": product_type,
        "brand": brand,
        "condition": condition,
        "search": search,
        "min_price": min_price,
        "max_price": max_price,
        "sort": sort,
        "page": page,
        "limit": limit,
        "product_ref": product_ref,
    })


@app.get("/api/products/home/{product_type}")
def list_for_home(product_type: str):
    return serialize_doc(catalog.list_for_home(product_type))


@app.get("/api/products/by-ids")
def products_by_ids(ids: str):
    found = catalog.retrieve_by_ids([i for i in ids.split(",") if i])
    return serialize_doc(found)


@app.get("/api/products/{name}/find-slug")
def find_slug(name: str, request: Request):
    allowed = ("product_type", "brand", "model", "controller", "condition", "memory")
    filters = {k: v for k, v in request.query_params.items() if k in allowed}
    slug = catalog.find_slug({"name": name, **filters})
    if slug is None:
        return Response(status_code=204)
    return {"slug": slug}


@app.get("/api/products/{product_type}/{brand}/{name}/price")
def buyback_price(product_type: str, brand: str, name: str, request: Request):
    return buyback.calculate_price(product_type, brand, name, dict(request.query_params))


@app.get("/api/buyback/{product_type}/{brand}/{name}")
def buyback_questions(product_type: str, brand: str, name: str):
    return serialize_doc(buyback.get_buyback_item(product_type, brand, name))


@app.get("/api/products/{slug}")
def get_product(slug: str):
    return catalog.get_product_by_slug(slug)


# Customers
@app.post("/api/customers", status_code=201)
def register_customer(body: Customer):
    return {"id": create_customer(body)}


# Orders
@app.post("/api/orders/checkout")
def checkout(body: CheckoutRequest):
    return orders.checkout(body.customer, body.productDetails)


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str):
    orders.cancel_order(order_id)
    return {"id": order_id, "state": "cancel"}


# Payments
@app.post("/api/payments/checkout-session")
def create_checkout_session(body: PaymentSessionRequest):
    return {"url": payments.create_checkout_session(body.orderId, body.method)}


@app.post("/api/payments/webhook")
async def payment_webhook(request: Request, stripe_signature: Optional[str] = Header(None)):
    payload = await request.body()
    event = payments.parse_event(payload, stripe_signature)
    await run_in_threadpool(payments.reconcile_payment, event)
    return {"received": True}


# Reviews
@app.get("/api/reviews")
def list_reviews(page: Optional[str] = None, limit: Optional[str] = None, productName: Optional[str] = None):
    return serialize_doc(reviews.list_reviews({"page": page, "limit": limit, "productName": productName}))


@app.post("/api/reviews")
def store_review(body: ReviewRequest):
    review = reviews.store_review(body.customer, body.product, body.rating, body.comment)
    return serialize_doc(review)


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str):
    reviews.delete_review(review_id)
    return {"ok": True}


# Admin
@app.post("/api/admin/login")
def admin_login(body: AdminLoginRequest):
    return login_admin(body.email, body.password)


@app.post("/api/admin/products", status_code=201)
def create_product(body: ProductCreate, user: AuthUser = Depends(require_admin)):
    return serialize_doc(catalog.create_product(body.model_dump()))


@app.patch("/api/admin/products/{slug}")
def update_product(slug: str, body: ProductUpdate, user: AuthUser = Depends(require_admin)):
    return serialize_doc(catalog.update_product(slug, body.model_dump(exclude_unset=True)))


@app.delete("/api/admin/products/by-name/{name}")
def delete_family(name: str, user: AuthUser = Depends(require_admin)):
    return {"deleted": catalog.delete_by_name(name)}


@app.delete("/api/admin/products/{product_id}")
def delete_product(product_id: str, user: AuthUser = Depends(require_admin)):
    return serialize_doc(catalog.delete_product(product_id))


@app.post("/api/admin/products/{name}/variants", status_code=201)
def create_variant(name: str, body: VariantCreate, user: AuthUser = Depends(require_admin)):
    return serialize_doc(catalog.create_variant(name, body.model_dump()))


@app.get("/api/admin/products/by-name/{name}")
def list_by_name(name: str, user: AuthUser = Depends(require_admin)):
    return serialize_doc(catalog.list_by_name(name))


@app.patch("/api/admin/families/{name}/labels")
def edit_labels(name: str, body: LabelsUpdate, user: AuthUser = Depends(require_admin)):
    return serialize_doc(catalog.edit_labels(name, body.model_dump(exclude_unset=True)))


@app.put("/api/admin/families/{name}/related")
def set_related(name: str, body: RelatedUpdate, user: AuthUser = Depends(require_admin)):
    return serialize_doc(catalog.set_related_products(name, body.products))


@app.post("/api/admin/reviews", status_code=201)
def create_review(body: Review, user: AuthUser = Depends(require_admin)):
    return {"id": reviews.create_review(body)}


@app.post("/api/admin/buyback", status_code=201)
def create_buyback_item(body: ProductBuyQuestion, user: AuthUser = Depends(require_admin)):
    return {"id": buyback.create_buyback_item(body)}


@app.get("/api/admin/orders")
def admin_orders(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    state: Optional[str] = None,
    user: AuthUser = Depends(require_admin),
):
    return orders.list_orders({"page": page, "limit": limit, "state": state})


@app.post("/api/admin/orders/{order_id}/shipped")
def ship_order(order_id: str, user: AuthUser = Depends(require_admin)):
    orders.ship_order(order_id)
    return {"id": order_id, "state": "shipped"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
