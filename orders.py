"""
Order lifecycle

Checkout validates requested line items against the catalog, prices them
from the catalog, reserves stock with one conditional decrement per line and
persists the order. Any failure after the first reservation restores every
reservation made by that attempt before the error reaches the caller.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pymongo
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

import carts
import catalog
import settings
from database import create_document, get_documents, now, to_object_id
from errors import (
    ConflictError,
    EmptyCartError,
    EmptyOrderError,
    ForbiddenError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidStatusTransitionError,
    OperationTimeoutError,
    OrderNotFoundError,
    StoreError,
    ValidationError,
)
from schemas import (
    FULFILLED_STATUSES,
    TERMINAL_STATUSES,
    GuestInfo,
    Order,
    OrderItem,
    OrderStatus,
    Role,
)
from security import Principal

logger = logging.getLogger(__name__)

_FINAL_STATUSES = {s.value for s in TERMINAL_STATUSES} | set(FULFILLED_STATUSES)


def _line_request(item) -> Tuple[str, int]:
    """Accept (product_id, quantity) pairs, request models or cart items."""
    if isinstance(item, tuple):
        product_id, quantity = item
    elif isinstance(item, dict):
        product_id = item.get("product_id", item.get("product"))
        quantity = item.get("quantity")
    else:
        product_id, quantity = item.product_id, item.quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(quantity)
    if not product_id:
        raise ValidationError("Line item is missing a product id")
    return str(product_id), quantity


def _price_lines(db, requested: List[Tuple[str, int]]) -> Tuple[List[OrderItem], float]:
    # Prices come from the catalog, never from the caller
    lines: List[OrderItem] = []
    subtotal = 0.0
    for product_id, quantity in requested:
        product = catalog.get_product(db, product_id)
        name = product.get("name", "Product")
        if product.get("stock", 0) < quantity:
            raise InsufficientStockError(name)
        price = float(product.get("price", 0))
        subtotal += price * quantity
        lines.append(OrderItem(product=str(product["_id"]), name=name, price=price, quantity=quantity))
    return lines, round(subtotal, 2)


def _compensate(db, reserved: List[OrderItem]) -> None:
    for line in reversed(reserved):
        try:
            catalog.release_stock(db, line.product, line.quantity)
            logger.info("Restored %d unit(s) of product %s", line.quantity, line.product)
        except PyMongoError:
            logger.exception("Could not restore %d unit(s) of product %s", line.quantity, line.product)


def _order_landed(db, order_oid) -> Optional[bool]:
    """Whether an insert whose acknowledgement was lost reached the store."""
    try:
        return db["order"].find_one({"_id": order_oid}, {"_id": 1}) is not None
    except PyMongoError:
        logger.exception("Could not check whether order %s was saved", order_oid)
        return None


def create_order(db, requested_items: Iterable, buyer_id: Optional[str] = None,
                 guest: Optional[GuestInfo] = None, payment_reference: Optional[str] = None,
                 cart_user_id: Optional[str] = None) -> Dict[str, Any]:
    requested = [_line_request(item) for item in (requested_items or [])]
    if not requested:
        raise EmptyOrderError()
    if buyer_id is None and guest is None:
        raise ValidationError("Guest checkout requires contact details")

    # The id is fixed up front so a lost insert acknowledgement can be checked
    order_oid = ObjectId()
    reserved: List[OrderItem] = []
    try:
        with pymongo.timeout(settings.OPERATION_TIMEOUT_SECONDS):
            lines, total = _price_lines(db, requested)
            for line in lines:
                if not catalog.reserve_stock(db, line.product, line.quantity):
                    raise InsufficientStockError(line.name)
                reserved.append(line)
            order = Order(
                user=buyer_id,
                guest=guest,
                items=lines,
                total=total,
                status=OrderStatus.PROCESSING,
                payment_reference=payment_reference,
            )
            doc = order.model_dump(mode="json")
            doc["_id"] = order_oid
            create_document(db, "order", doc)
    except InsufficientStockError:
        _compensate(db, reserved)
        raise
    except PyMongoError as exc:
        landed = _order_landed(db, order_oid) if reserved else False
        if landed:
            logger.warning("Order %s was saved although the store reported: %s", order_oid, exc)
        else:
            if landed is None:
                # Unknown outcome: keep the reservations rather than risk overselling
                logger.error("Order %s outcome unknown, %d reservation(s) left in place",
                             order_oid, len(reserved))
            else:
                _compensate(db, reserved)
            if exc.timeout:
                logger.warning("Order creation for %s timed out after %ss", buyer_id or "guest",
                               settings.OPERATION_TIMEOUT_SECONDS)
                raise OperationTimeoutError("Order creation timed out") from exc
            logger.error("Order creation for %s failed: %s", buyer_id or "guest", exc)
            raise StoreError("Order could not be saved") from exc

    order_id = str(order_oid)
    logger.info("Order %s created for %s: %d line(s), total %.2f",
                order_id, buyer_id or "guest", len(lines), total)

    if cart_user_id:
        try:
            carts.delete_all(db, cart_user_id)
        except PyMongoError:
            logger.exception("Order %s created but cart of %s was not cleared", order_id, cart_user_id)

    return db["order"].find_one({"_id": order_oid})


def checkout_cart(db, buyer_id: str, payment_reference: Optional[str] = None) -> Dict[str, Any]:
    items = carts.get_items(db, buyer_id)
    if not items:
        raise EmptyCartError()
    return create_order(db, items, buyer_id=buyer_id, payment_reference=payment_reference,
                        cart_user_id=buyer_id)


def list_orders(db, principal: Principal) -> List[Dict[str, Any]]:
    if principal.role == Role.ADMIN:
        query: Dict[str, Any] = {}
    elif principal.role == Role.SELLER:
        query = {"items.product": {"$in": catalog.seller_product_ids(db, principal.id)}}
    else:
        query = {"user": principal.id}
    return get_documents(db, "order", query)


def _seller_owns_all(db, seller_id: str, order: Dict[str, Any]) -> bool:
    owned = set(catalog.seller_product_ids(db, seller_id))
    return all(item["product"] in owned for item in order.get("items", []))


def get_order(db, order_id: str, principal: Principal) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise OrderNotFoundError(order_id)
    if principal.role == Role.BUYER and order.get("user") != principal.id:
        raise ForbiddenError("Not authorized to view this order")
    if principal.role == Role.SELLER:
        owned = set(catalog.seller_product_ids(db, principal.id))
        if not any(item["product"] in owned for item in order.get("items", [])):
            raise ForbiddenError("Not authorized to view this order")
    return order


def update_status(db, order_id: str, principal: Principal, requested_status) -> Dict[str, Any]:
    if principal.role not in (Role.ADMIN, Role.SELLER):
        raise ForbiddenError("Only sellers and admins can change order status")
    status = OrderStatus.parse(requested_status)

    oid = to_object_id(order_id, "order id")
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise OrderNotFoundError(order_id)

    if principal.role == Role.SELLER and not _seller_owns_all(db, principal.id, order):
        raise ForbiddenError("Not authorized to update this order")

    current = order.get("status")
    if current == status.value:
        return order
    if current in _FINAL_STATUSES:
        raise InvalidStatusTransitionError(current, status.value)

    # Only the status moves; guarded on the status we validated against
    updated = db["order"].find_one_and_update(
        {"_id": oid, "status": current},
        {"$set": {"status": status.value, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Order status changed concurrently, retry the update")
    logger.info("Order %s status %s -> %s by %s %s",
                order_id, current, status.value, principal.role.value, principal.id)
    return updated


def has_fulfilled_purchase(db, user_id: str, product_id: str) -> bool:
    return db["order"].find_one({
        "user": user_id,
        "items.product": product_id,
        "status": {"$in": list(FULFILLED_STATUSES)},
    }) is not None
