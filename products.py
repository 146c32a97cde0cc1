from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import require_admin
from database import create_document, get_db, now, serialize_doc, to_object_id
from errors import Conflict, NotFound
from schemas import (
    ImageCreate,
    Product as ProductSchema,
    ProductCreate,
    ProductImage as ProductImageSchema,
    ProductUpdate,
    ProductVariant as ProductVariantSchema,
    VariantCreate,
    VariantUpdate,
)

router = APIRouter(prefix="/products", tags=["products"])


def _check_categories(db: Database, category_ids: List[str]) -> None:
    for cid in category_ids:
        if not db["category"].find_one({"_id": to_object_id(cid)}):
            raise NotFound(f"Category with ID {cid} not found")


def expand_product(db: Database, product: dict) -> Dict[str, Any]:
    """Attach images (by position), variants with their images, and categories."""
    pid = str(product["_id"])
    images = list(db["product_image"].find({"product_id": pid}).sort("position", 1))
    variants = []
    for v in db["product_variant"].find({"product_id": pid}).sort("sku", 1):
        out = serialize_doc(v)
        out["images"] = [serialize_doc(i) for i in images if i.get("variant_id") == out["id"]]
        variants.append(out)
    category_oids = [to_object_id(c) for c in product.get("category_ids", [])]
    categories = db["category"].find({"_id": {"$in": category_oids}}) if category_oids else []
    doc = serialize_doc(product)
    doc["images"] = [serialize_doc(i) for i in images]
    doc["variants"] = variants
    doc["categories"] = [serialize_doc(c) for c in categories]
    return doc


def _get(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFound(f"Product with ID {product_id} not found")
    return product


def create_product(db: Database, payload: ProductCreate) -> Dict[str, Any]:
    if db["product"].find_one({"slug": payload.slug}):
        raise Conflict("Product slug already exists")
    _check_categories(db, payload.category_ids)
    try:
        pid = create_document(db, "product", ProductSchema(**payload.model_dump()))
    except DuplicateKeyError:
        raise Conflict("Product slug already exists")
    return expand_product(db, _get(db, pid))


def list_products(db: Database) -> List[Dict[str, Any]]:
    return [expand_product(db, p) for p in db["product"].find({"is_active": True}).sort("created_at", -1)]


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    return expand_product(db, _get(db, product_id))


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> Dict[str, Any]:
    product = _get(db, product_id)
    update = payload.changes()
    if "slug" in update:
        existing = db["product"].find_one({"slug": update["slug"]})
        if existing and existing["_id"] != product["_id"]:
            raise Conflict("Product slug already exists")
    if "category_ids" in update:
        _check_categories(db, update["category_ids"])
    update["updated_at"] = now()
    try:
        db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise Conflict("Product slug already exists")
    return expand_product(db, _get(db, product_id))


def delete_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = _get(db, product_id)
    pid = str(product["_id"])
    variant_ids = [str(v["_id"]) for v in db["product_variant"].find({"product_id": pid}, {"_id": 1})]
    if variant_ids:
        db["cart_item"].delete_many({"variant_id": {"$in": variant_ids}})
    db["product_variant"].delete_many({"product_id": pid})
    db["product_image"].delete_many({"product_id": pid})
    db["product"].delete_one({"_id": product["_id"]})
    return serialize_doc(product)


# ------------ Variants ------------

def _get_variant(db: Database, variant_id: str) -> dict:
    variant = db["product_variant"].find_one({"_id": to_object_id(variant_id)})
    if not variant:
        raise NotFound("Product variant not found")
    return variant


def create_variant(db: Database, product_id: str, payload: VariantCreate) -> Dict[str, Any]:
    product = _get(db, product_id)
    if db["product_variant"].find_one({"sku": payload.sku}):
        raise Conflict("SKU already exists")
    variant = ProductVariantSchema(product_id=str(product["_id"]), **payload.model_dump())
    try:
        vid = create_document(db, "product_variant", variant)
    except DuplicateKeyError:
        raise Conflict("SKU already exists")
    return serialize_doc(_get_variant(db, vid))


def update_variant(db: Database, variant_id: str, payload: VariantUpdate) -> Dict[str, Any]:
    variant = _get_variant(db, variant_id)
    update = payload.changes()
    if "sku" in update:
        existing = db["product_variant"].find_one({"sku": update["sku"]})
        if existing and existing["_id"] != variant["_id"]:
            raise Conflict("SKU already exists")
    update["updated_at"] = now()
    try:
        db["product_variant"].update_one({"_id": variant["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise Conflict("SKU already exists")
    return serialize_doc(_get_variant(db, variant_id))


def delete_variant(db: Database, variant_id: str) -> Dict[str, Any]:
    variant = _get_variant(db, variant_id)
    vid = str(variant["_id"])
    db["cart_item"].delete_many({"variant_id": vid})
    db["product_image"].update_many({"variant_id": vid}, {"$set": {"variant_id": None}})
    db["product_variant"].delete_one({"_id": variant["_id"]})
    return serialize_doc(variant)


# ------------ Images ------------

def add_image(db: Database, product_id: str, payload: ImageCreate) -> Dict[str, Any]:
    product = _get(db, product_id)
    pid = str(product["_id"])
    if payload.variant_id:
        variant = _get_variant(db, payload.variant_id)
        if variant["product_id"] != pid:
            raise NotFound("Product variant not found")
    image = ProductImageSchema(product_id=pid, **payload.model_dump())
    iid = create_document(db, "product_image", image)
    return serialize_doc(db["product_image"].find_one({"_id": to_object_id(iid)}))


def delete_image(db: Database, image_id: str) -> Dict[str, Any]:
    image = db["product_image"].find_one({"_id": to_object_id(image_id)})
    if not image:
        raise NotFound("Product image not found")
    db["product_image"].delete_one({"_id": image["_id"]})
    return serialize_doc(image)


# Routes
@router.get("")
def list_route(db: Database = Depends(get_db)):
    return list_products(db)


@router.get("/{product_id}")
def get_route(product_id: str, db: Database = Depends(get_db)):
    return get_product(db, product_id)


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
def create_route(payload: ProductCreate, db: Database = Depends(get_db)):
    return create_product(db, payload)


@router.patch("/variants/{variant_id}", dependencies=[Depends(require_admin)])
def update_variant_route(variant_id: str, payload: VariantUpdate, db: Database = Depends(get_db)):
    return update_variant(db, variant_id, payload)


@router.delete("/variants/{variant_id}", dependencies=[Depends(require_admin)])
def delete_variant_route(variant_id: str, db: Database = Depends(get_db)):
    return delete_variant(db, variant_id)


@router.delete("/images/{image_id}", dependencies=[Depends(require_admin)])
def delete_image_route(image_id: str, db: Database = Depends(get_db)):
    return delete_image(db, image_id)


@router.patch("/{product_id}", dependencies=[Depends(require_admin)])
def update_route(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db)):
    return update_product(db, product_id, payload)


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
def delete_route(product_id: str, db: Database = Depends(get_db)):
    return delete_product(db, product_id)


@router.post("/{product_id}/variants", status_code=201, dependencies=[Depends(require_admin)])
def create_variant_route(product_id: str, payload: VariantCreate, db: Database = Depends(get_db)):
    return create_variant(db, product_id, payload)


@router.post("/{product_id}/images", status_code=201, dependencies=[Depends(require_admin)])
def add_image_route(product_id: str, payload: ImageCreate, db: Database = Depends(get_db)):
    return add_image(db, product_id, payload)
