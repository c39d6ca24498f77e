"""Catalog store and query service.

Besides product CRUD, listing and reviews this module owns the only two
writes to ``product.stock`` outside admin edits: ``reserve_stock`` and
``release_stock``.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument

from auth import Principal
from database import create_document, get_db, get_documents, now, oid, paginate, to_str_id
from errors import NotFoundError, ValidationError
from logging_config import get_logger
from schemas import Product, ProductUpdate, Review, SortOption

logger = get_logger(__name__)

PRODUCTS = "product"

DEFAULT_PAGE_SIZE = 12
FEATURED_PAGE_SIZE = 8

SORT_KEYS = {
    SortOption.PRICE_ASC: [("price", 1)],
    SortOption.PRICE_DESC: [("price", -1)],
    SortOption.RATING: [("rating", -1)],
    SortOption.NEWEST: [("created_at", -1)],
    SortOption.OLDEST: [("created_at", 1)],
    SortOption.NAME: [("name", 1)],
}


def _contains(text: str) -> dict:
    return {"$regex": re.escape(text), "$options": "i"}


# ---------------
# Lookups
# ---------------

def find_product(product_id: str) -> Optional[dict]:
    return get_db()[PRODUCTS].find_one({"_id": oid(product_id)})


def find_products(product_ids: Iterable[str]) -> Dict[str, dict]:
    """Fetch several products at once, keyed by their string id."""
    ids = [oid(pid) for pid in set(product_ids)]
    if not ids:
        return {}
    docs = get_db()[PRODUCTS].find({"_id": {"$in": ids}})
    return {str(d["_id"]): d for d in docs}


def get_product(product_id: str) -> dict:
    doc = find_product(product_id)
    if not doc:
        raise NotFoundError("Product not found")
    return to_str_id(doc)


def product_summary(doc: dict) -> dict:
    images = doc.get("images") or []
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "price": doc.get("price"),
        "images": images,
        "stock": doc.get("stock", 0),
        "is_active": doc.get("is_active", False),
    }


# ---------------
# Query service
# ---------------

def build_product_filter(
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_rating: Optional[float] = None,
    brand: Optional[str] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
) -> dict:
    query = {"is_active": True}
    if category:
        query["category"] = category
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if min_rating is not None:
        query["rating"] = {"$gte": min_rating}
    if brand:
        query["brand"] = _contains(brand)
    if featured is not None:
        query["featured"] = featured
    if search:
        query["$or"] = [
            {"name": _contains(search)},
            {"description": _contains(search)},
            {"tags": _contains(search)},
        ]
    return query


def list_products(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort: SortOption = SortOption.NEWEST,
    **filters,
) -> dict:
    query = build_product_filter(**filters)
    skip = (page - 1) * limit
    docs = get_documents(PRODUCTS, query, limit=limit, sort=SORT_KEYS[SortOption(sort)], skip=skip)
    total = get_db()[PRODUCTS].count_documents(query)

    collection = get_db()[PRODUCTS]
    categories = collection.distinct("category", {"is_active": True})
    brands = [b for b in collection.distinct("brand", {"is_active": True}) if b]

    return {
        "products": [to_str_id(d) for d in docs],
        "count": len(docs),
        **paginate(total, page, limit),
        "filters": {
            "categories": sorted(categories),
            "brands": sorted(brands),
            "price_range": {"min": filters.get("min_price") or 0, "max": filters.get("max_price")},
        },
    }


def featured_products(limit: int = FEATURED_PAGE_SIZE) -> List[dict]:
    docs = get_documents(
        PRODUCTS, {"featured": True, "is_active": True}, limit=limit, sort=SORT_KEYS[SortOption.NEWEST]
    )
    return [to_str_id(d) for d in docs]


def products_by_category(category: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    query = {"category": category, "is_active": True}
    docs = get_documents(PRODUCTS, query, limit=limit, sort=SORT_KEYS[SortOption.NEWEST], skip=(page - 1) * limit)
    total = get_db()[PRODUCTS].count_documents(query)
    return {"products": [to_str_id(d) for d in docs], "count": len(docs), **paginate(total, page, limit)}


def categories() -> List[str]:
    return sorted(get_db()[PRODUCTS].distinct("category", {"is_active": True}))


# ---------------
# Admin edits
# ---------------

def create_product(payload: Product) -> dict:
    data = payload.model_dump()
    data.update({"reviews": [], "rating": 0.0, "num_reviews": 0})
    product_id = create_document(PRODUCTS, data)
    logger.info("product_created", product_id=product_id, name=payload.name)
    return get_product(product_id)


def update_product(product_id: str, payload: ProductUpdate) -> dict:
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    changes["updated_at"] = now()
    doc = get_db()[PRODUCTS].find_one_and_update(
        {"_id": oid(product_id)},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Product not found")
    logger.info("product_updated", product_id=product_id)
    return to_str_id(doc)


def delete_product(product_id: str) -> None:
    result = get_db()[PRODUCTS].delete_one({"_id": oid(product_id)})
    if result.deleted_count == 0:
        raise NotFoundError("Product not found")
    logger.info("product_deleted", product_id=product_id)


# ---------------
# Reviews
# ---------------

def compute_rating(reviews: List[dict]) -> Tuple[float, int]:
    if not reviews:
        return 0.0, 0
    total = sum(r["rating"] for r in reviews)
    return total / len(reviews), len(reviews)


def add_review(user: Principal, product_id: str, rating: int, comment: str) -> dict:
    doc = find_product(product_id)
    if not doc:
        raise NotFoundError("Product not found")

    reviews = doc.get("reviews") or []
    if any(r.get("user") == user.user_id for r in reviews):
        raise ValidationError("Product already reviewed")

    review = Review(
        user=user.user_id,
        name=user.username or user.user_id,
        rating=rating,
        comment=comment,
        created_at=now(),
    ).model_dump()
    new_rating, num_reviews = compute_rating(reviews + [review])

    # Guard against a concurrent review by the same user landing first.
    result = get_db()[PRODUCTS].update_one(
        {"_id": doc["_id"], "reviews.user": {"$ne": user.user_id}},
        {
            "$push": {"reviews": review},
            "$set": {"rating": new_rating, "num_reviews": num_reviews, "updated_at": now()},
        },
    )
    if result.modified_count == 0:
        raise ValidationError("Product already reviewed")
    return review


def get_reviews(product_id: str) -> List[dict]:
    doc = find_product(product_id)
    if not doc:
        raise NotFoundError("Product not found")
    return doc.get("reviews") or []


# ---------------
# Stock primitives
# ---------------

def reserve_stock(product_id: str, quantity: int) -> Optional[dict]:
    """Atomically take ``quantity`` units of an active product.

    Returns the updated product, or None when the product is gone, inactive,
    or has fewer than ``quantity`` units left. Stock never goes negative.
    """
    return get_db()[PRODUCTS].find_one_and_update(
        {"_id": oid(product_id), "is_active": True, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )


def release_stock(product_id: str, quantity: int) -> bool:
    """Give ``quantity`` units back. Returns False if the product no longer exists."""
    result = get_db()[PRODUCTS].update_one(
        {"_id": oid(product_id)},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": now()}},
    )
    return result.matched_count == 1
