"""Checkout and order engine.

``create_order`` turns a user's cart into an order. Stock is taken with the
catalog's conditional decrement and every step is recorded so that a failure
part way through can be undone: reservations are released, an inserted order
is deleted, and the caller sees the original error with nothing changed.
The cart is emptied last, and only if it still holds the lines that were
checked out, so a cart turns into at most one order.

``cancel_order`` is the only operation that gives stock back.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pymongo import ReturnDocument

import catalog
from auth import Principal
from cart import CARTS, cart_totals
from database import create_document, get_db, get_documents, now, oid, paginate, to_str_id
from errors import (
    AlreadyPaidError,
    CartChangedError,
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ProductUnavailableError,
)
from logging_config import get_logger
from schemas import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, ShippingAddress

logger = get_logger(__name__)

ORDERS = "order"

DEFAULT_PAGE_SIZE = 10

# -----------------------
# Pricing
# -----------------------

FREE_SHIPPING_THRESHOLD = 100.0
FLAT_SHIPPING = 10.0
TAX_RATE = 0.10


def calc_items_price(lines: List[Tuple[float, int]]) -> float:
    return round(sum(price * quantity for price, quantity in lines), 2)


def calc_shipping(items_price: float) -> float:
    # Free shipping strictly above the threshold, flat fee otherwise
    return 0.0 if items_price > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING


def calc_tax(items_price: float) -> float:
    return round(items_price * TAX_RATE, 2)


def price_order(lines: List[Tuple[float, int]]) -> Dict[str, float]:
    items_price = calc_items_price(lines)
    shipping_price = calc_shipping(items_price)
    tax_price = calc_tax(items_price)
    return {
        "items_price": items_price,
        "shipping_price": shipping_price,
        "tax_price": tax_price,
        "total_amount": round(items_price + shipping_price + tax_price, 2),
    }


# -----------------------
# State machine
# -----------------------

TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}

ALLOWED_TRANSITIONS = {
    OrderStatus.PROCESSING.value: {
        OrderStatus.SHIPPED.value,
        OrderStatus.DELIVERED.value,
        OrderStatus.CANCELLED.value,
    },
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}


def can_transition(current: str, target: str) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    # Re-setting a live status is allowed so tracking info can be amended.
    return target == current or target in ALLOWED_TRANSITIONS.get(current, set())


# -----------------------
# Lookups
# -----------------------

def _load_order(order_id: str) -> dict:
    order = get_db()[ORDERS].find_one({"_id": oid(order_id)})
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order(user: Principal, order_id: str) -> dict:
    order = _load_order(order_id)
    if not user.owns(order["user"]) and not user.is_admin:
        raise ForbiddenError("Not authorized to access this order")
    return to_str_id(order)


def list_my_orders(user_id: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    query = {"user": user_id}
    docs = get_documents(ORDERS, query, limit=limit, sort=[("created_at", -1)], skip=(page - 1) * limit)
    total = get_db()[ORDERS].count_documents(query)
    return {"orders": [to_str_id(d) for d in docs], "count": len(docs), **paginate(total, page, limit)}


def list_all_orders(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    order_status: Optional[str] = None,
    payment_status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    query = {}
    if order_status:
        query["order_status"] = order_status
    if payment_status:
        query["payment_status"] = payment_status
    if start_date and end_date:
        query["created_at"] = {"$gte": start_date, "$lte": end_date}

    docs = get_documents(ORDERS, query, limit=limit, sort=[("created_at", -1)], skip=(page - 1) * limit)
    total = get_db()[ORDERS].count_documents(query)
    return {"orders": [to_str_id(d) for d in docs], "count": len(docs), **paginate(total, page, limit)}


# -----------------------
# Checkout
# -----------------------

def _check_lines(items: List[dict], products: Dict[str, dict]) -> List[OrderItem]:
    """Validate every cart line against the live catalog and snapshot it.

    The first failing line aborts the whole checkout.
    """
    snapshot = []
    for item in items:
        product = products.get(item["product"])
        if not product or not product.get("is_active"):
            raise ProductUnavailableError(product.get("name") if product else None, item["product"])

        stock = product.get("stock", 0)
        if stock < item["quantity"]:
            raise InsufficientStockError(product["name"], item["quantity"], stock, item["product"])

        images = product.get("images") or []
        snapshot.append(OrderItem(
            product=item["product"],
            name=product["name"],
            image=images[0] if images else "",
            price=product["price"],
            quantity=item["quantity"],
        ))
    return snapshot


def _rollback(reserved: List[OrderItem], order_id: Optional[str]) -> None:
    if order_id:
        get_db()[ORDERS].delete_one({"_id": oid(order_id)})
    for line in reversed(reserved):
        if not catalog.release_stock(line.product, line.quantity):
            logger.error("reservation_release_failed", product_id=line.product, quantity=line.quantity)
    logger.warning(
        "checkout_rolled_back",
        order_id=order_id,
        released=[(line.product, line.quantity) for line in reserved],
    )


def _claim_cart(cart: dict) -> None:
    """Empty the cart only if it still holds the lines being checked out."""
    total_items, total_price = cart_totals([])
    claimed = get_db()[CARTS].find_one_and_update(
        {"_id": cart["_id"], "items": cart["items"]},
        {"$set": {"items": [], "total_items": total_items, "total_price": total_price, "updated_at": now()}},
    )
    if claimed is None:
        raise CartChangedError()


def create_order(user_id: str, shipping_address: ShippingAddress, payment_method: PaymentMethod) -> dict:
    cart = get_db()[CARTS].find_one({"user": user_id})
    if not cart or not cart.get("items"):
        raise EmptyCartError()

    items = cart["items"]
    products = catalog.find_products(i["product"] for i in items)
    snapshot = _check_lines(items, products)
    pricing = price_order([(line.price, line.quantity) for line in snapshot])

    order = Order(
        user=user_id,
        items=snapshot,
        shipping_address=shipping_address,
        payment_method=payment_method,
        **pricing,
    )

    reserved: List[OrderItem] = []
    order_id = None
    try:
        for line in snapshot:
            if catalog.reserve_stock(line.product, line.quantity) is None:
                current = catalog.find_product(line.product)
                if not current or not current.get("is_active"):
                    raise ProductUnavailableError(line.name, line.product)
                raise InsufficientStockError(line.name, line.quantity, current.get("stock", 0), line.product)
            reserved.append(line)

        order_id = create_document(ORDERS, order)
        _claim_cart(cart)
    except Exception:
        if reserved or order_id:
            _rollback(reserved, order_id)
        raise

    logger.info(
        "order_created",
        order_id=order_id,
        user_id=user_id,
        lines=len(snapshot),
        total_amount=pricing["total_amount"],
    )
    return to_str_id(_load_order(order_id))


# -----------------------
# Transitions
# -----------------------

def cancel_order(user_id: str, order_id: str) -> dict:
    order = _load_order(order_id)
    if str(order["user"]) != user_id:
        raise ForbiddenError("Not authorized to cancel this order")
    if order["order_status"] in TERMINAL_STATUSES:
        raise InvalidTransitionError(order["order_status"], message="Order cannot be cancelled")

    # Compare-and-set so concurrent cancels restore stock only once.
    updated = get_db()[ORDERS].find_one_and_update(
        {"_id": order["_id"], "order_status": {"$nin": list(TERMINAL_STATUSES)}},
        {"$set": {
            "order_status": OrderStatus.CANCELLED.value,
            "payment_status": PaymentStatus.REFUNDED.value,
            "updated_at": now(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        current = get_db()[ORDERS].find_one({"_id": order["_id"]}) or order
        raise InvalidTransitionError(current["order_status"], message="Order cannot be cancelled")

    lines = updated["items"]
    for index, item in enumerate(lines):
        try:
            released = catalog.release_stock(item["product"], item["quantity"])
        except Exception:
            logger.error(
                "restock_incomplete",
                order_id=order_id,
                pending=[(i["product"], i["quantity"]) for i in lines[index:]],
            )
            raise
        if not released:
            logger.warning("restock_skipped_missing_product", order_id=order_id, product_id=item["product"])

    logger.info("order_cancelled", order_id=order_id, user_id=user_id)
    return to_str_id(updated)


def update_order_status(
    order_id: str,
    new_status: str,
    tracking_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    new_status = OrderStatus(new_status).value
    order = _load_order(order_id)
    current = order["order_status"]
    if not can_transition(current, new_status):
        raise InvalidTransitionError(current, new_status)

    changes = {"order_status": new_status, "updated_at": now()}
    if tracking_number:
        changes["tracking_number"] = tracking_number
    if notes:
        changes["notes"] = notes
    if new_status == OrderStatus.DELIVERED.value:
        changes["delivered_at"] = now()

    updated = get_db()[ORDERS].find_one_and_update(
        {"_id": order["_id"], "order_status": current},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # Someone else moved the order first
        latest = _load_order(order_id)
        raise InvalidTransitionError(latest["order_status"], new_status)

    logger.info("order_status_updated", order_id=order_id, from_status=current, to_status=new_status)
    return to_str_id(updated)


def update_order_to_paid(user: Principal, order_id: str) -> dict:
    order = _load_order(order_id)
    if not user.owns(order["user"]) and not user.is_admin:
        raise ForbiddenError("Not authorized to update this order")
    if order["payment_status"] == PaymentStatus.PAID.value:
        raise AlreadyPaidError()

    updated = get_db()[ORDERS].find_one_and_update(
        {"_id": order["_id"], "payment_status": {"$ne": PaymentStatus.PAID.value}},
        {"$set": {"payment_status": PaymentStatus.PAID.value, "paid_at": now(), "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise AlreadyPaidError()

    logger.info("order_paid", order_id=order_id, by_admin=user.is_admin and not user.owns(order["user"]))
    return to_str_id(updated)


# -----------------------
# Reporting
# -----------------------

def order_stats() -> dict:
    """Aggregate order figures on demand straight from the order collection."""
    orders = get_db()[ORDERS]
    paid = {"$match": {"payment_status": PaymentStatus.PAID.value}}

    revenue = list(orders.aggregate([paid, {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}}]))
    by_status = list(orders.aggregate([{"$group": {"_id": "$order_status", "count": {"$sum": 1}}}]))
    by_payment = list(orders.aggregate([{"$group": {"_id": "$payment_status", "count": {"$sum": 1}}}]))
    monthly = list(orders.aggregate([
        paid,
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "revenue": {"$sum": "$total_amount"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": -1, "_id.month": -1}},
        {"$limit": 12},
    ]))

    return {
        "total_orders": orders.count_documents({}),
        "total_revenue": round(revenue[0]["total"], 2) if revenue else 0,
        "orders_by_status": {row["_id"]: row["count"] for row in by_status},
        "orders_by_payment_status": {row["_id"]: row["count"] for row in by_payment},
        "monthly_revenue": [
            {
                "year": row["_id"]["year"],
                "month": row["_id"]["month"],
                "revenue": round(row["revenue"], 2),
                "orders": row["orders"],
            }
            for row in monthly
        ],
    }
