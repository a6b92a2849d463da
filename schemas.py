"""
Database Schemas

Define your MongoDB collection schemas here using Pydantic models.
These schemas are used for data validation in your application.

Each Pydantic model represents a collection in your database.
Model name is converted to lowercase for the collection name:
- Family -> "family" collection
- Product -> "product" collection
- Order -> "order" collection
- Transaction -> "transaction" collection
- ProductBuyQuestion -> "productbuyquestion" collection
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

OrderState = Literal["pending", "shipped", "success", "cancel"]

VARIANT_ATTRIBUTES = ("model", "controller", "condition", "memory")


class Address(BaseModel):
    address: str
    zip_code: str
    city: str
    country: str


class Customer(BaseModel):
    """
    Customers collection schema
    Collection name: "customer"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    phone: str
    address: Address
    avatar: str = Field("/images/placeholder.png", description="Avatar path")


class Admin(BaseModel):
    """
    Admins collection schema
    Collection name: "admin"
    """
    name: str
    email: EmailStr
    password_hash: str = Field(..., description="Password hash (server-side)")
    role: str = "admin"


class Family(BaseModel):
    """
    Product families collection schema
    Collection name: "family"

    Holds what every configuration of one product shares.
    """
    name: str = Field(..., description="Family display name, unique")
    product_type: str
    brand: Optional[str] = None
    description: Optional[str] = None
    order: int = Field(1, description="Display rank within the catalog")
    relatedProducts: List[str] = Field(default_factory=list, description="Related family names")
    modelLabel: Optional[str] = None
    controllerLabel: Optional[str] = None
    conditionLabel: Optional[str] = None
    memoryLabel: Optional[str] = None


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"

    One purchasable configuration of a family.
    """
    slug: str = Field(..., description="Normalized unique identifier")
    name: str = Field(..., description="Family name")
    product_type: str
    brand: Optional[str] = None
    description: Optional[str] = None
    model: Optional[str] = None
    controller: Optional[str] = None
    condition: str
    memory: Optional[str] = None
    price: float = Field(..., ge=0)
    offer_price: Optional[float] = Field(None, ge=0)
    effective_price: float = Field(..., ge=0, description="offer_price if set, else price")
    quantity: int = Field(0, ge=0, description="Units in stock")
    images: List[str] = Field(default_factory=list)
    isVariant: bool = False
    product_ref: Optional[str] = Field(None, description="Family name of the base product")
    order: Optional[int] = None


class OrderLine(BaseModel):
    product: str = Field(..., description="Product ObjectId as string")
    name: str
    price: float = Field(..., ge=0, description="Unit effective price at checkout")
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    productDetails: List[OrderLine]
    customer: str
    amount: float = Field(..., ge=0)
    state: OrderState = "pending"
    transaction: Optional[str] = None
    payment_method: Optional[str] = None
    address: Optional[Address] = None


class Transaction(BaseModel):
    """
    Transactions collection schema
    Collection name: "transaction"
    """
    transaction_id: str = Field(..., description="Provider payment intent id")
    type: Literal["sell"] = "sell"
    payment_method: Optional[str] = None
    amount: float = Field(..., ge=0)
    customer: str
    order: str


class ReviewCustomer(BaseModel):
    name: str
    avatar: Optional[str] = None


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review"
    """
    product: str = Field(..., description="Family name")
    customer: ReviewCustomer
    customerRef: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class BuyOption(BaseModel):
    option: str
    price: float = Field(..., description="Added to the base price, may be negative")
    description: str


class BuyQuestion(BaseModel):
    name: str
    description: str
    options: List[BuyOption] = Field(..., min_length=1)


class ProductBuyQuestion(BaseModel):
    """
    Buy-back questionnaires collection schema
    Collection name: "productbuyquestion"

    What the shop pays for a used device: a base price adjusted by the
    seller's answers.
    """
    image: str
    name: str = Field(..., description="Device name, unique")
    base_price: float = Field(..., ge=0)
    questions: List[BuyQuestion]
    product_type: str
    brand: str
