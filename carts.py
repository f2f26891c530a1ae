"""Per-user cart: pending (product, quantity) selections before checkout."""

import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import catalog
from database import now
from errors import ConflictError

logger = logging.getLogger(__name__)

_ADD_ATTEMPTS = 3


def _merge_lines(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse lines for the same product into one, keeping first-seen order."""
    merged: Dict[str, Dict[str, Any]] = {}
    for item in items:
        line = merged.get(item["product"])
        if line is None:
            merged[item["product"]] = dict(item)
        else:
            line["quantity"] += item["quantity"]
    return list(merged.values())


def get_cart(db, user_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user": user_id})
    if not cart:
        return {"user": user_id, "items": []}
    cart["items"] = _merge_lines(cart.get("items", []))
    return cart


def get_items(db, user_id: str) -> List[Dict[str, Any]]:
    return get_cart(db, user_id).get("items", [])


def _bump_line(db, user_id: str, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
    return db["cart"].find_one_and_update(
        {"user": user_id, "items.product": product_id},
        {"$inc": {"items.$.quantity": quantity}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )


def _append_line(db, user_id: str, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
    # Only matches a cart that still lacks the product; a cart that gained the
    # line meanwhile makes the upsert collide on the unique user index
    stamp = now()
    return db["cart"].find_one_and_update(
        {"user": user_id, "items.product": {"$ne": product_id}},
        {
            "$push": {"items": {"product": product_id, "quantity": quantity}},
            "$set": {"updated_at": stamp},
            "$setOnInsert": {"created_at": stamp},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def add_item(db, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    product = catalog.get_product(db, product_id)
    product_id = str(product["_id"])
    for _ in range(_ADD_ATTEMPTS):
        cart = _bump_line(db, user_id, product_id, quantity)
        if cart is None:
            try:
                cart = _append_line(db, user_id, product_id, quantity)
            except DuplicateKeyError:
                logger.debug("Cart of %s changed while adding %s, retrying", user_id, product_id)
                continue
        cart["items"] = _merge_lines(cart.get("items", []))
        return cart
    raise ConflictError("Cart changed concurrently, retry the request")


def remove_item(db, user_id: str, product_id: str) -> Dict[str, Any]:
    db["cart"].update_one(
        {"user": user_id},
        {"$pull": {"items": {"product": product_id}}, "$set": {"updated_at": now()}},
    )
    return get_cart(db, user_id)


def delete_all(db, user_id: str) -> None:
    db["cart"].delete_one({"user": user_id})
    logger.debug("Cleared cart of user %s", user_id)
