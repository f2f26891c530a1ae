"""
Catalog store

Product lookups and the stock primitives checkout relies on. Stock is only
ever changed through reserve_stock (conditional decrement) and
release_stock (compensating increment), each a single atomic update.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from database import create_document, get_documents, now, to_object_id
from errors import ProductNotFoundError, ValidationError
from schemas import CreateProductRequest, Product

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def get_product(db, product_id: str) -> Dict[str, Any]:
    doc = db["product"].find_one({"_id": to_object_id(product_id, "product id")})
    if not doc:
        raise ProductNotFoundError(product_id)
    return doc


def list_products(db, category: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, search: Optional[str] = None,
                  page: int = 1, limit: int = 20) -> Tuple[int, List[Dict[str, Any]]]:
    """Return the number of matching products and the requested page of them, newest first."""
    if page < 1:
        raise ValidationError(f"Invalid page: {page}")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}
    total = db["product"].count_documents(query)
    return total, get_documents(db, "product", query, limit, skip=(page - 1) * limit)


def create_product(db, seller_id: str, payload: CreateProductRequest) -> Dict[str, Any]:
    product = Product(seller=seller_id, **payload.model_dump())
    new_id = create_document(db, "product", product)
    logger.info("Seller %s listed product %s", seller_id, new_id)
    return db["product"].find_one({"_id": to_object_id(new_id)})


def seller_products(db, seller_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, "product", {"seller": seller_id})


def seller_product_ids(db, seller_id: str) -> List[str]:
    return [str(p["_id"]) for p in db["product"].find({"seller": seller_id}, {"_id": 1})]


def reserve_stock(db, product_id: str, quantity: int) -> bool:
    """Decrement stock by quantity only if at least quantity is left."""
    result = db["product"].update_one(
        {"_id": to_object_id(product_id, "product id"), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
    )
    return result.modified_count == 1


def release_stock(db, product_id: str, quantity: int) -> None:
    db["product"].update_one(
        {"_id": to_object_id(product_id, "product id")},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": now()}},
    )


def set_rating(db, product_id: str, average_rating: float, review_count: int) -> None:
    db["product"].update_one(
        {"_id": to_object_id(product_id, "product id")},
        {"$set": {"average_rating": average_rating, "review_count": review_count}},
    )
