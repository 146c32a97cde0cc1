"""
Shopping cart

One cart per user, created lazily on first access and never deleted. Totals
are computed on every read from the current product prices and are never
stored.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import get_current_user
from database import create_document, get_db, now, serialize_doc, to_object_id
from errors import InsufficientStock, InvalidState, NotFound
from schemas import AddToCartRequest, CartItem as CartItemSchema, UpdateCartItemRequest

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_doc(db: Database, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if cart:
        return cart
    try:
        return db["cart"].find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {"user_id": user_id, "created_at": now(), "updated_at": now()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # lost a creation race; the other request's cart is the cart
        return db["cart"].find_one({"user_id": user_id})


def _line(db: Database, item: dict) -> Dict[str, Any]:
    variant = db["product_variant"].find_one({"_id": to_object_id(item["variant_id"])})
    product = db["product"].find_one({"_id": to_object_id(variant["product_id"])}) if variant else None
    out = serialize_doc(item)
    if variant is None or product is None:
        out["variant"] = None
        return out
    images = db["product_image"].find({"variant_id": str(variant["_id"])}).sort("position", 1)
    v = serialize_doc(variant)
    v["product"] = {"id": str(product["_id"]), "name": product["name"], "slug": product["slug"], "price": product["price"]}
    v["images"] = [serialize_doc(i) for i in images]
    out["variant"] = v
    return out


def get_or_create_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = _cart_doc(db, user_id)
    items = [_line(db, i) for i in db["cart_item"].find({"cart_id": str(cart["_id"])}).sort("created_at", 1)]
    total_amount = 0
    total_items = 0
    for item in items:
        if item["variant"] is None:
            continue
        total_amount += item["variant"]["product"]["price"] * item["quantity"]
        total_items += item["quantity"]
    out = serialize_doc(cart)
    out["items"] = items
    out["total_amount"] = total_amount
    out["total_items"] = total_items
    return out


def add_item(db: Database, user_id: str, variant_id: str, quantity: int) -> Dict[str, Any]:
    variant = db["product_variant"].find_one({"_id": to_object_id(variant_id)})
    if not variant:
        raise NotFound("Product variant not found")
    product = db["product"].find_one({"_id": to_object_id(variant["product_id"])})
    if not product or not product.get("is_active", True):
        raise InvalidState("Product is not available")
    if variant["stock"] < quantity:
        raise InsufficientStock(f"Only {variant['stock']} items available in stock")

    variant_id = str(variant["_id"])
    cart = _cart_doc(db, user_id)
    cart_id = str(cart["_id"])
    existing = db["cart_item"].find_one({"cart_id": cart_id, "variant_id": variant_id})
    if existing:
        new_quantity = existing["quantity"] + quantity
        if variant["stock"] < new_quantity:
            raise InsufficientStock(f"Only {variant['stock']} items available in stock")
        db["cart_item"].update_one({"_id": existing["_id"]}, {"$set": {"quantity": new_quantity, "updated_at": now()}})
    else:
        try:
            create_document(db, "cart_item", CartItemSchema(cart_id=cart_id, variant_id=variant_id, quantity=quantity))
        except DuplicateKeyError:
            # a concurrent add created the line first; merge into it
            merged = db["cart_item"].update_one(
                {"cart_id": cart_id, "variant_id": variant_id, "quantity": {"$lte": variant["stock"] - quantity}},
                {"$inc": {"quantity": quantity}, "$set": {"updated_at": now()}},
            )
            if merged.matched_count == 0:
                raise InsufficientStock(f"Only {variant['stock']} items available in stock")
    return get_or_create_cart(db, user_id)


def _owned_item(db: Database, user_id: str, item_id: str) -> dict:
    cart = _cart_doc(db, user_id)
    item = db["cart_item"].find_one({"_id": to_object_id(item_id), "cart_id": str(cart["_id"])})
    if not item:
        raise NotFound("Cart item not found")
    return item


def update_item(db: Database, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
    item = _owned_item(db, user_id, item_id)
    variant = db["product_variant"].find_one({"_id": to_object_id(item["variant_id"])})
    if not variant:
        raise NotFound("Product variant not found")
    if variant["stock"] < quantity:
        raise InsufficientStock(f"Only {variant['stock']} items available in stock")
    db["cart_item"].update_one({"_id": item["_id"]}, {"$set": {"quantity": quantity, "updated_at": now()}})
    return get_or_create_cart(db, user_id)


def remove_item(db: Database, user_id: str, item_id: str) -> Dict[str, Any]:
    item = _owned_item(db, user_id, item_id)
    db["cart_item"].delete_one({"_id": item["_id"]})
    return get_or_create_cart(db, user_id)


def clear_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = _cart_doc(db, user_id)
    db["cart_item"].delete_many({"cart_id": str(cart["_id"])})
    return get_or_create_cart(db, user_id)


# Routes
@router.get("")
def get_cart_route(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return get_or_create_cart(db, user["id"])


@router.post("/items", status_code=201)
def add_item_route(req: AddToCartRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return add_item(db, user["id"], req.variant_id, req.quantity)


@router.patch("/items/{item_id}")
def update_item_route(item_id: str, req: UpdateCartItemRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return update_item(db, user["id"], item_id, req.quantity)


@router.delete("/items/{item_id}")
def remove_item_route(item_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return remove_item(db, user["id"], item_id)


@router.delete("")
def clear_cart_route(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return clear_cart(db, user["id"])
