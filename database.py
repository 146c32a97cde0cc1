"""
Database helpers

MongoDB access for the shop API. The client is created once by the
application lifespan (see main.py) and handed to request code through the
``get_db`` dependency.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import BadRequest, ServiceUnavailable

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")


def connect() -> Tuple[Optional[MongoClient], Optional[Database]]:
    if not DATABASE_URL or not DATABASE_NAME:
        return None, None
    client = MongoClient(DATABASE_URL)
    return client, client[DATABASE_NAME]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["category"].create_index("slug", unique=True)
    db["product"].create_index("slug", unique=True)
    db["product_variant"].create_index("sku", unique=True)
    db["product_variant"].create_index("product_id")
    db["product_image"].create_index([("product_id", ASCENDING), ("position", ASCENDING)])
    db["cart"].create_index("user_id", unique=True)
    db["cart_item"].create_index([("cart_id", ASCENDING), ("variant_id", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    db["payment"].create_index("order_id", unique=True)
    db["payment"].create_index("stripe_payment_intent_id", unique=True)


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise ServiceUnavailable("Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise BadRequest("Invalid id format")


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="json")
    else:
        data_dict = data.copy()
    data_dict["created_at"] = now()
    data_dict["updated_at"] = now()
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, dict):
            out[k] = serialize_doc(v)
        elif isinstance(v, list):
            out[k] = [serialize_doc(x) if isinstance(x, dict) else x for x in v]
        else:
            out[k] = v
    return out
