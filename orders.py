"""
Orders

An order is created from the caller's cart in one all-or-nothing step:

1. every cart line is priced and snapshotted (product name, price, color,
   size, quantity) so later catalog edits never alter the order;
2. stock is reserved line by line with a conditional decrement that only
   matches while ``stock >= quantity``;
3. the order document is inserted with status PENDING;
4. the snapshotted cart lines are deleted; lines added meanwhile stay.

If any step fails, reservations already taken are released and an inserted
order is removed before the error propagates.
"""
import logging
from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Depends
from pymongo.database import Database

from auth import get_current_user
from database import create_document, get_db, serialize_doc, to_object_id
from errors import BadRequest, InsufficientStock, InvalidState, NotFound
from schemas import Order as OrderSchema, OrderItem as OrderItemSchema, OrderStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def _snapshot(db: Database, cart_items: List[dict]) -> Tuple[List[OrderItemSchema], List[Tuple[Any, int, str]]]:
    """Price each cart line and check live stock. No writes happen here."""
    order_items = []
    reservations = []
    for item in cart_items:
        variant = db["product_variant"].find_one({"_id": to_object_id(item["variant_id"])})
        if not variant:
            raise NotFound("Product variant not found")
        product = db["product"].find_one({"_id": to_object_id(variant["product_id"])})
        if not product:
            raise NotFound("Product not found")
        if variant["stock"] < item["quantity"]:
            raise InsufficientStock(f"Insufficient stock for {product['name']}")
        order_items.append(OrderItemSchema(
            product_name=product["name"],
            price=product["price"],
            color=variant["color"],
            size=variant["size"],
            quantity=item["quantity"],
        ))
        reservations.append((variant["_id"], item["quantity"], product["name"]))
    return order_items, reservations


def _release(db: Database, reserved: List[Tuple[Any, int, str]]) -> None:
    for variant_oid, quantity, _ in reserved:
        db["product_variant"].update_one({"_id": variant_oid}, {"$inc": {"stock": quantity}})


def create_order(db: Database, user_id: str) -> Dict[str, Any]:
    if not user_id:
        raise BadRequest("User ID is required")
    cart = db["cart"].find_one({"user_id": user_id})
    cart_items = list(db["cart_item"].find({"cart_id": str(cart["_id"])})) if cart else []
    if not cart_items:
        raise InvalidState("Cart is empty")

    order_items, reservations = _snapshot(db, cart_items)
    total_amount = sum(i.price * i.quantity for i in order_items)

    reserved: List[Tuple[Any, int, str]] = []
    order_id = None
    try:
        for variant_oid, quantity, product_name in reservations:
            result = db["product_variant"].update_one(
                {"_id": variant_oid, "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}},
            )
            if result.matched_count == 0:
                raise InsufficientStock(f"Insufficient stock for {product_name}")
            reserved.append((variant_oid, quantity, product_name))

        order = OrderSchema(user_id=user_id, items=order_items, total_amount=total_amount, status=OrderStatus.PENDING)
        order_id = create_document(db, "order", order)
        db["cart_item"].delete_many({"_id": {"$in": [i["_id"] for i in cart_items]}})
    except Exception:
        logger.warning("Rolling back order for user %s (%d reservations)", user_id, len(reserved))
        _release(db, reserved)
        if order_id is not None:
            db["order"].delete_one({"_id": to_object_id(order_id)})
        raise

    logger.info("Created order %s for user %s: %d cents", order_id, user_id, total_amount)
    return get_order(db, order_id, user_id)


def _expand(db: Database, order: dict) -> Dict[str, Any]:
    out = serialize_doc(order)
    payment = db["payment"].find_one({"order_id": out["id"]})
    out["payment"] = serialize_doc(payment) if payment else None
    return out


def list_orders(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return [_expand(db, o) for o in db["order"].find({"user_id": user_id}).sort("created_at", -1)]


def get_order(db: Database, order_id: str, user_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id), "user_id": user_id})
    if not order:
        raise NotFound("Order not found")
    return _expand(db, order)


# Routes
@router.post("", status_code=201)
def create_route(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return create_order(db, user["id"])


@router.get("")
def list_route(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return list_orders(db, user["id"])


@router.get("/{order_id}")
def get_route(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return get_order(db, order_id, user["id"])
