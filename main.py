import time
import uuid
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ASCENDING, DESCENDING
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart
import catalog
import config
import database
import orders
from auth import Principal, get_current_user, require_admin
from database import get_db, oid
from errors import ShopError
from logging_config import add_context, clear_context, configure_logging, get_logger
from schemas import (
    CartItemRequest,
    CartQuantityRequest,
    Category,
    CreateOrderRequest,
    OrderStatus,
    OrderStatusRequest,
    PaymentStatus,
    Product,
    ProductUpdate,
    QuoteRequest,
    ReviewRequest,
    SortOption,
)

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title="Storefront API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def ok(data=None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body


def fail(status_code: int, message: str, errors=None) -> JSONResponse:
    content = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


# -----------------------
# Middleware / Handlers
# -----------------------

@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    clear_context()
    add_context(request_id=request.headers.get("x-request-id") or uuid.uuid4().hex[:12])
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    """Map ShopError subclasses to their HTTP status codes."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return fail(exc.status_code, exc.message, [exc.details] if exc.details else None)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in e.get("loc", ())), "message": e.get("msg")}
        for e in exc.errors()
    ]
    return fail(400, "Validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = f"Not found - {request.url.path}"
    return fail(exc.status_code, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    message = str(exc) if config.is_development() else "Server Error"
    return fail(500, message)


# ---------
# Root/Health
# ---------

@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}


@app.get("/health")
def health():
    status = "not configured"
    if database.db is not None:
        try:
            database.db.command("ping")
            status = "connected"
        except Exception as e:
            status = f"error: {str(e)[:50]}"
    return ok(
        message="Server is running",
        timestamp=database.now().isoformat(),
        environment=config.ENVIRONMENT,
        version=app.version,
        database=status,
    )


# ---------------
# Catalog Endpoints
# ---------------

@app.get("/api/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(catalog.DEFAULT_PAGE_SIZE, ge=1, le=100),
    category: Optional[Category] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    min_rating: Optional[float] = Query(None, ge=0, le=5, alias="minRating"),
    brand: Optional[str] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    sort: SortOption = SortOption.NEWEST,
):
    result = catalog.list_products(
        page=page,
        limit=limit,
        sort=sort,
        category=category.value if category else None,
        min_price=min_price,
        max_price=max_price,
        min_rating=min_rating,
        brand=brand,
        featured=featured,
        search=search,
    )
    products = result.pop("products")
    return ok({"products": products}, **result)


@app.get("/api/products/featured")
def featured_products(limit: int = Query(catalog.FEATURED_PAGE_SIZE, ge=1, le=100)):
    products = catalog.featured_products(limit)
    return ok({"products": products}, count=len(products))


@app.get("/api/products/categories")
def list_categories():
    categories = catalog.categories()
    return ok({"categories": categories}, count=len(categories))


@app.get("/api/products/category/{category}")
def products_by_category(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(catalog.DEFAULT_PAGE_SIZE, ge=1, le=100),
):
    result = catalog.products_by_category(category, page, limit)
    products = result.pop("products")
    return ok({"products": products}, **result)


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return ok({"product": catalog.get_product(product_id)})


@app.get("/api/products/{product_id}/reviews")
def get_product_reviews(product_id: str):
    reviews = catalog.get_reviews(product_id)
    return ok({"reviews": reviews}, count=len(reviews))


@app.post("/api/products/{product_id}/reviews", status_code=201)
def create_product_review(product_id: str, payload: ReviewRequest, user: Principal = Depends(get_current_user)):
    catalog.add_review(user, product_id, payload.rating, payload.comment)
    return ok(message="Review added successfully")


@app.post("/api/products", status_code=201)
def create_product(payload: Product, admin: Principal = Depends(require_admin)):
    product = catalog.create_product(payload)
    return ok({"product": product}, "Product created successfully")


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin: Principal = Depends(require_admin)):
    product = catalog.update_product(product_id, payload)
    return ok({"product": product}, "Product updated successfully")


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: Principal = Depends(require_admin)):
    catalog.delete_product(product_id)
    return ok(message="Product deleted successfully")


# ---------------
# Cart Endpoints
# ---------------

@app.get("/api/cart")
def get_cart(user: Principal = Depends(get_current_user)):
    return ok({"cart": cart.get_cart(user.user_id)})


@app.get("/api/cart/count")
def get_cart_count(user: Principal = Depends(get_current_user)):
    return ok({"count": cart.cart_count(user.user_id)})


@app.post("/api/cart")
def add_to_cart(payload: CartItemRequest, user: Principal = Depends(get_current_user)):
    oid(payload.product_id)
    updated = cart.add_item(user.user_id, payload.product_id, payload.quantity)
    return ok({"cart": updated}, "Item added to cart successfully")


@app.post("/api/cart/validate")
def validate_cart(user: Principal = Depends(get_current_user)):
    return ok(cart.validate_cart(user.user_id))


@app.put("/api/cart/{product_id}")
def update_cart_item(product_id: str, payload: CartQuantityRequest, user: Principal = Depends(get_current_user)):
    oid(product_id)
    updated = cart.update_item(user.user_id, product_id, payload.quantity)
    return ok({"cart": updated}, "Cart item updated successfully")


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user: Principal = Depends(get_current_user)):
    oid(product_id)
    updated = cart.remove_item(user.user_id, product_id)
    return ok({"cart": updated}, "Item removed from cart successfully")


@app.delete("/api/cart")
def clear_cart(user: Principal = Depends(get_current_user)):
    return ok({"cart": cart.clear_cart(user.user_id)}, "Cart cleared successfully")


# -------------------------
# Pricing endpoints (quote)
# -------------------------

@app.post("/api/pricing/quote")
def pricing_quote(payload: QuoteRequest):
    return ok(orders.price_order([(i.price, i.quantity) for i in payload.items]))


# ---------------
# Orders Endpoints
# ---------------

@app.get("/api/orders/admin/all")
def list_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(orders.DEFAULT_PAGE_SIZE, ge=1, le=100),
    order_status: Optional[OrderStatus] = Query(None, alias="orderStatus"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    admin: Principal = Depends(require_admin),
):
    result = orders.list_all_orders(
        page=page,
        limit=limit,
        order_status=order_status.value if order_status else None,
        payment_status=payment_status.value if payment_status else None,
        start_date=start_date,
        end_date=end_date,
    )
    found = result.pop("orders")
    return ok({"orders": found}, **result)


@app.get("/api/orders/admin/stats")
def order_stats(admin: Principal = Depends(require_admin)):
    return ok(orders.order_stats())


@app.put("/api/orders/admin/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusRequest, admin: Principal = Depends(require_admin)):
    order = orders.update_order_status(order_id, payload.order_status, payload.tracking_number, payload.notes)
    return ok({"order": order}, "Order status updated successfully")


@app.post("/api/orders", status_code=201)
def create_order(payload: CreateOrderRequest, user: Principal = Depends(get_current_user)):
    order = orders.create_order(user.user_id, payload.shipping_address, payload.payment_method)
    return ok({"order": order}, "Order created successfully")


@app.get("/api/orders")
def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(orders.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: Principal = Depends(get_current_user),
):
    result = orders.list_my_orders(user.user_id, page, limit)
    found = result.pop("orders")
    return ok({"orders": found}, **result)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: Principal = Depends(get_current_user)):
    return ok({"order": orders.get_order(user, order_id)})


@app.put("/api/orders/{order_id}/pay")
def pay_order(order_id: str, user: Principal = Depends(get_current_user)):
    order = orders.update_order_to_paid(user, order_id)
    return ok({"order": order}, "Order payment updated successfully")


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, user: Principal = Depends(get_current_user)):
    order = orders.cancel_order(user.user_id, order_id)
    return ok({"order": order}, "Order cancelled successfully")


# ---------------
# Seed / Indexes
# ---------------

def _seed_payload():
    return [
        {
            "name": "Wireless Noise-Cancelling Headphones",
            "description": "Over-ear headphones with 30 hour battery life.",
            "price": 129.99,
            "category": Category.ELECTRONICS.value,
            "stock": 25,
            "images": ["https://images.unsplash.com/photo-1505740420928-5e560c06d30e?q=80&w=1200&auto=format&fit=crop"],
            "brand": "Sonic",
            "featured": True,
            "tags": ["audio", "wireless"],
        },
        {
            "name": "Organic Cotton T-Shirt",
            "description": "Soft crew-neck tee made from organic cotton.",
            "price": 19.5,
            "category": Category.CLOTHING.value,
            "stock": 120,
            "images": ["https://images.unsplash.com/photo-1521572163474-6864f9cf17ab?q=80&w=1200&auto=format&fit=crop"],
            "brand": "Evergreen",
            "tags": ["cotton", "basics"],
        },
        {
            "name": "The Pragmatic Kitchen",
            "description": "Recipes and techniques for everyday home cooking.",
            "price": 24.0,
            "category": Category.BOOKS.value,
            "stock": 40,
            "images": [],
            "featured": True,
            "tags": ["cooking"],
        },
        {
            "name": "Ceramic Planter Set",
            "description": "Three glazed planters with drainage trays.",
            "price": 34.75,
            "category": Category.HOME_GARDEN.value,
            "stock": 15,
            "images": [],
            "brand": "Terra",
            "tags": ["plants", "decor"],
        },
    ]


def ensure_seeded() -> dict:
    created = {"products": 0}
    if database.db is None:
        return created
    collection = get_db()[catalog.PRODUCTS]
    if collection.count_documents({}) == 0:
        for payload in _seed_payload():
            catalog.create_product(Product(**payload))
            created["products"] += 1
        logger.info("catalog_seeded", products=created["products"])
    return created


def ensure_indexes() -> None:
    if database.db is None:
        return
    db = get_db()
    db[cart.CARTS].create_index([("user", ASCENDING)], unique=True)
    db[catalog.PRODUCTS].create_index([("category", ASCENDING)])
    db[catalog.PRODUCTS].create_index([("price", ASCENDING)])
    db[catalog.PRODUCTS].create_index([("rating", DESCENDING)])
    db[catalog.PRODUCTS].create_index([("created_at", DESCENDING)])
    db[orders.ORDERS].create_index([("user", ASCENDING), ("created_at", DESCENDING)])


@app.post("/api/seed")
def seed_demo(admin: Principal = Depends(require_admin)):
    """Seed sample products if the catalog is empty."""
    return ok({"seeded": ensure_seeded()})


@app.on_event("startup")
async def startup_event():
    try:
        ensure_indexes()
        if config.AUTO_SEED:
            ensure_seeded()
    except Exception as e:
        logger.error("startup_tasks_failed", error=str(e))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
