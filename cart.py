"""Cart store: one cart per user, created lazily on first access.

Adding to a cart never reserves stock. Availability is re-checked at
checkout by the order engine.
"""

from typing import Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from catalog import find_product, find_products, product_summary
from database import get_db, now, to_str_id
from errors import EmptyCartError, InsufficientStockError, NotFoundError, ProductUnavailableError
from logging_config import get_logger
from schemas import Cart, CartItem

logger = get_logger(__name__)

CARTS = "cart"


def cart_totals(items: List[dict]) -> Tuple[int, float]:
    total_items = sum(i["quantity"] for i in items)
    total_price = round(sum(i["quantity"] * i["price"] for i in items), 2)
    return total_items, total_price


def _find_cart(user_id: str) -> Optional[dict]:
    return get_db()[CARTS].find_one({"user": user_id})


def _get_or_create(user_id: str) -> dict:
    stamp = now()
    fresh = Cart(user=user_id).model_dump(exclude={"user"})
    fresh.update(created_at=stamp, updated_at=stamp)
    return get_db()[CARTS].find_one_and_update(
        {"user": user_id},
        {"$setOnInsert": fresh},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _save(cart: dict, items: List[dict]) -> dict:
    total_items, total_price = cart_totals(items)
    changes = {"items": items, "total_items": total_items, "total_price": total_price, "updated_at": now()}
    get_db()[CARTS].update_one({"_id": cart["_id"]}, {"$set": changes})
    saved = dict(cart)
    saved.update(changes)
    return saved


def _view(cart: dict, products: Optional[Dict[str, dict]] = None) -> dict:
    if products is None:
        products = find_products(i["product"] for i in cart.get("items", []))
    view = to_str_id(cart)
    view["items"] = []
    for item in cart.get("items", []):
        product = products.get(item["product"])
        view["items"].append({
            "product_id": item["product"],
            "product": product_summary(product) if product else None,
            "quantity": item["quantity"],
            "price": item["price"],
        })
    return view


def _require_sellable(product_id: str) -> dict:
    product = find_product(product_id)
    if not product:
        raise NotFoundError("Product not found")
    if not product.get("is_active"):
        raise ProductUnavailableError(product.get("name"), product_id)
    return product


def get_cart(user_id: str) -> dict:
    cart = _get_or_create(user_id)
    items = cart.get("items", [])
    products = find_products(i["product"] for i in items)

    active_items = [i for i in items if products.get(i["product"], {}).get("is_active")]
    if len(active_items) != len(items):
        logger.info("cart_pruned_inactive", user_id=user_id, removed=len(items) - len(active_items))
        cart = _save(cart, active_items)
    return _view(cart, products)


def add_item(user_id: str, product_id: str, quantity: int) -> dict:
    product = _require_sellable(product_id)
    stock = product.get("stock", 0)
    if stock < quantity:
        raise InsufficientStockError(product["name"], quantity, stock, product_id)

    cart = _get_or_create(user_id)
    items = [dict(i) for i in cart.get("items", [])]
    existing = next((i for i in items if i["product"] == product_id), None)

    if existing:
        new_quantity = existing["quantity"] + quantity
        if new_quantity > stock:
            raise InsufficientStockError(product["name"], new_quantity, stock, product_id)
        existing["quantity"] = new_quantity
    else:
        items.append(CartItem(product=product_id, quantity=quantity, price=product["price"]).model_dump())

    return _view(_save(cart, items))


def update_item(user_id: str, product_id: str, quantity: int) -> dict:
    product = _require_sellable(product_id)
    stock = product.get("stock", 0)
    if quantity > stock:
        raise InsufficientStockError(product["name"], quantity, stock, product_id)

    cart = _find_cart(user_id)
    if not cart:
        raise NotFoundError("Cart not found")

    items = [dict(i) for i in cart.get("items", [])]
    existing = next((i for i in items if i["product"] == product_id), None)
    if existing is None:
        raise NotFoundError("Item not found in cart")
    existing["quantity"] = quantity

    return _view(_save(cart, items))


def remove_item(user_id: str, product_id: str) -> dict:
    cart = _find_cart(user_id)
    if not cart:
        raise NotFoundError("Cart not found")
    items = [i for i in cart.get("items", []) if i["product"] != product_id]
    return _view(_save(cart, items))


def clear_cart(user_id: str) -> dict:
    cart = _find_cart(user_id)
    if not cart:
        raise NotFoundError("Cart not found")
    return _view(_save(cart, []))


def cart_count(user_id: str) -> int:
    cart = _find_cart(user_id)
    if not cart:
        return 0
    return cart.get("total_items", 0)


def validate_cart(user_id: str) -> dict:
    """Reconcile the cart against the live catalog.

    Drops missing or inactive products, clamps quantities to available stock
    and refreshes captured prices. Corrections are persisted only when any
    were made.
    """
    cart = _find_cart(user_id)
    if not cart or not cart.get("items"):
        raise EmptyCartError()

    items = cart["items"]
    products = find_products(i["product"] for i in items)
    validation_errors = []
    updated_items = []
    changed = False

    for item in items:
        product = products.get(item["product"])
        if not product:
            validation_errors.append({"product_id": item["product"], "message": "Product no longer exists"})
            continue

        if not product.get("is_active"):
            validation_errors.append({
                "product_id": item["product"],
                "product_name": product.get("name"),
                "message": "Product is no longer available",
            })
            continue

        quantity = item["quantity"]
        stock = product.get("stock", 0)
        if stock < quantity:
            validation_errors.append({
                "product_id": item["product"],
                "product_name": product.get("name"),
                "message": f"Only {stock} items available in stock",
                "requested_quantity": quantity,
                "available_quantity": stock,
            })
            quantity = stock

        if product["price"] != item["price"]:
            changed = True
        updated_items.append({"product": item["product"], "quantity": quantity, "price": product["price"]})

    if validation_errors or changed:
        # A line clamped to zero stock cannot stay in the cart.
        updated_items = [i for i in updated_items if i["quantity"] > 0]
        cart = _save(cart, updated_items)
        logger.info("cart_reconciled", user_id=user_id, issues=len(validation_errors))

    return {
        "cart": _view(cart, products),
        "validation_errors": validation_errors,
        "is_valid": len(validation_errors) == 0,
    }
