from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import require_admin
from database import create_document, get_db, now, serialize_doc, to_object_id
from errors import Conflict, NotFound
from schemas import Category as CategorySchema, CategoryCreate, CategoryUpdate

router = APIRouter(prefix="/categories", tags=["categories"])

PRODUCT_SUMMARY = {"name": 1, "slug": 1, "price": 1}


def _with_products(db: Database, category: dict, with_image: bool = False) -> Dict[str, Any]:
    cid = str(category["_id"])
    products = []
    for p in db["product"].find({"category_ids": cid, "is_active": True}, None if with_image else PRODUCT_SUMMARY):
        if with_image:
            first = db["product_image"].find_one({"product_id": str(p["_id"])}, sort=[("position", 1)])
            p["images"] = [serialize_doc(first)] if first else []
        products.append(serialize_doc(p))
    out = serialize_doc(category)
    out["products"] = products
    return out


def create_category(db: Database, payload: CategoryCreate) -> Dict[str, Any]:
    if db["category"].find_one({"slug": payload.slug}):
        raise Conflict("Category slug already exists")
    try:
        cid = create_document(db, "category", CategorySchema(**payload.model_dump()))
    except DuplicateKeyError:
        raise Conflict("Category slug already exists")
    return serialize_doc(db["category"].find_one({"_id": to_object_id(cid)}))


def list_categories(db: Database) -> List[Dict[str, Any]]:
    return [_with_products(db, c) for c in db["category"].find().sort("name", 1)]


def _get(db: Database, category_id: str) -> dict:
    category = db["category"].find_one({"_id": to_object_id(category_id)})
    if not category:
        raise NotFound(f"Category with ID {category_id} not found")
    return category


def get_category(db: Database, category_id: str) -> Dict[str, Any]:
    return _with_products(db, _get(db, category_id), with_image=True)


def get_category_by_slug(db: Database, slug: str) -> Dict[str, Any]:
    category = db["category"].find_one({"slug": slug})
    if not category:
        raise NotFound(f"Category with slug {slug} not found")
    return _with_products(db, category, with_image=True)


def update_category(db: Database, category_id: str, payload: CategoryUpdate) -> Dict[str, Any]:
    category = _get(db, category_id)
    update = payload.changes()
    if "slug" in update:
        existing = db["category"].find_one({"slug": update["slug"]})
        if existing and existing["_id"] != category["_id"]:
            raise Conflict("Category slug already exists")
    update["updated_at"] = now()
    try:
        db["category"].update_one({"_id": category["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise Conflict("Category slug already exists")
    return serialize_doc(db["category"].find_one({"_id": category["_id"]}))


def delete_category(db: Database, category_id: str) -> Dict[str, Any]:
    category = _get(db, category_id)
    cid = str(category["_id"])
    db["product"].update_many({"category_ids": cid}, {"$pull": {"category_ids": cid}})
    db["category"].delete_one({"_id": category["_id"]})
    return serialize_doc(category)


# Routes
@router.get("")
def list_route(db: Database = Depends(get_db)):
    return list_categories(db)


@router.get("/slug/{slug}")
def get_by_slug_route(slug: str, db: Database = Depends(get_db)):
    return get_category_by_slug(db, slug)


@router.get("/{category_id}")
def get_route(category_id: str, db: Database = Depends(get_db)):
    return get_category(db, category_id)


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
def create_route(payload: CategoryCreate, db: Database = Depends(get_db)):
    return create_category(db, payload)


@router.patch("/{category_id}", dependencies=[Depends(require_admin)])
def update_route(category_id: str, payload: CategoryUpdate, db: Database = Depends(get_db)):
    return update_category(db, category_id, payload)


@router.delete("/{category_id}", dependencies=[Depends(require_admin)])
def delete_route(category_id: str, db: Database = Depends(get_db)):
    return delete_category(db, category_id)
