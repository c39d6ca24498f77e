"""
Database Schemas for the Storefront

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase class name. Example: class Product -> "product" collection.

Request bodies accept both snake_case names and their camelCase aliases
(``shippingAddress.fullName``, ``paymentMethod``...). Documents are always
stored with snake_case keys.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    ELECTRONICS = "Electronics"
    CLOTHING = "Clothing"
    BOOKS = "Books"
    HOME_GARDEN = "Home & Garden"
    SPORTS = "Sports"
    BEAUTY = "Beauty"
    TOYS = "Toys"
    AUTOMOTIVE = "Automotive"
    HEALTH = "Health"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    PAYPAL = "PayPal"
    BANK_TRANSFER = "Bank Transfer"
    CASH_ON_DELIVERY = "Cash on Delivery"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    REFUNDED = "Refunded"


class OrderStatus(str, Enum):
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class SortOption(str, Enum):
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    RATING = "rating"
    NEWEST = "newest"
    OLDEST = "oldest"
    NAME = "name"


class RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
    )


# -----------------
# Catalog
# -----------------

class Review(BaseModel):
    user: str = Field(..., description="Reviewer user id")
    name: str = Field(..., description="Reviewer display name")
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., max_length=500)
    created_at: Optional[datetime] = None


class Product(RequestModel):
    name: str = Field(..., min_length=1, max_length=100, description="Product name")
    description: str = Field(..., min_length=10, max_length=1000, description="Marketing description")
    price: float = Field(..., ge=0, description="Unit price")
    category: Category = Field(..., description="Catalog category")
    stock: int = Field(0, ge=0, description="Units available for sale")
    images: List[str] = Field(default_factory=list, description="Image URLs, first is primary")
    brand: Optional[str] = Field(None, max_length=50)
    model: Optional[str] = Field(None, max_length=50)
    specifications: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = Field(True, description="Whether the product can be sold")
    featured: bool = False
    discount: int = Field(0, ge=0, le=100, description="Discount percentage")
    tags: List[str] = Field(default_factory=list)


class ProductUpdate(RequestModel):
    """Partial product edit; only the fields sent are changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    brand: Optional[str] = Field(None, max_length=50)
    model: Optional[str] = Field(None, max_length=50)
    specifications: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None
    featured: Optional[bool] = None
    discount: Optional[int] = Field(None, ge=0, le=100)
    tags: Optional[List[str]] = None


class ReviewRequest(RequestModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=10, max_length=500)


# -----------------
# Cart
# -----------------

class CartItem(BaseModel):
    product: str = Field(..., description="Referenced product _id (string)")
    quantity: int = Field(..., ge=1, description="Quantity in cart")
    price: float = Field(..., ge=0, description="Unit price captured when added")


class Cart(BaseModel):
    user: str = Field(..., description="Owning user id, unique")
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0.0


class CartItemRequest(RequestModel):
    product_id: str
    quantity: int = Field(..., ge=1, le=100)


class CartQuantityRequest(RequestModel):
    quantity: int = Field(..., ge=1, le=100)
    product_id: Optional[str] = None


# ------------
# Order Models
# ------------

class OrderItem(BaseModel):
    product: str = Field(..., description="Referenced product _id (string)")
    name: str = Field(..., description="Product name snapshot")
    image: str = Field("", description="Primary image snapshot")
    price: float = Field(..., ge=0, description="Unit price at time of order")
    quantity: int = Field(..., ge=1, description="Quantity ordered")


class ShippingAddress(RequestModel):
    full_name: str = Field(..., min_length=2, max_length=50)
    address: str = Field(..., min_length=5, max_length=100)
    city: str = Field(..., min_length=2, max_length=50)
    state: str = Field(..., min_length=2, max_length=50)
    zip_code: str = Field(..., min_length=3, max_length=10)
    country: str = Field(..., min_length=2, max_length=50)
    phone: str = Field(..., pattern=r"^[\+]?[1-9][\d]{0,15}$")


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    items_price: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    tax_price: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.PROCESSING
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class CreateOrderRequest(RequestModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod


class OrderStatusRequest(RequestModel):
    order_status: OrderStatus
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


# -------------------------
# Pricing quote
# -------------------------

class QuoteItem(RequestModel):
    product_id: Optional[str] = None
    name: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class QuoteRequest(RequestModel):
    items: List[QuoteItem] = Field(..., min_length=1)
