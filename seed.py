"""
Demo catalog

Idempotent: every record is upserted on its unique key (e-mail, slug, sku),
so running it twice leaves one copy of everything.
"""
import logging
import os

from pymongo.database import Database

from auth import pwd_context
from database import connect, ensure_indexes, now
from schemas import Role

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "admin123")

DEMO_CATEGORIES = [
    {"name": "T-Shirts", "slug": "t-shirts"},
    {"name": "Hoodies", "slug": "hoodies"},
]

DEMO_PRODUCTS = [
    {
        "name": "T-Shirt Premium",
        "slug": "t-shirt-premium",
        "description": "Organic cotton t-shirt",
        "price": 2999,
        "category": "t-shirts",
        "variants": [
            {"color": "Black", "size": "M", "sku": "TSHIRT-PREM-BLACK-M", "stock": 50},
            {"color": "Black", "size": "L", "sku": "TSHIRT-PREM-BLACK-L", "stock": 30},
            {"color": "White", "size": "M", "sku": "TSHIRT-PREM-WHITE-M", "stock": 45},
        ],
    },
    {
        "name": "Hoodie Confort",
        "slug": "hoodie-confort",
        "description": "Heavyweight winter hoodie",
        "price": 4999,
        "category": "hoodies",
        "variants": [
            {"color": "Grey", "size": "L", "sku": "HOODIE-CONF-GREY-L", "stock": 25},
            {"color": "Grey", "size": "XL", "sku": "HOODIE-CONF-GREY-XL", "stock": 20},
        ],
    },
    {
        "name": "Polo Classique",
        "slug": "polo-classique",
        "description": "Classic polo shirt",
        "price": 3499,
        "category": "t-shirts",
        "variants": [],
    },
]


def _upsert(db: Database, collection: str, key: dict, fields: dict) -> str:
    db[collection].update_one(
        key,
        {"$setOnInsert": {**fields, "created_at": now(), "updated_at": now()}},
        upsert=True,
    )
    return str(db[collection].find_one(key)["_id"])


def seed_demo_data(db: Database) -> None:
    _upsert(db, "user", {"email": ADMIN_EMAIL}, {"password_hash": pwd_context.hash(ADMIN_PASSWORD), "role": Role.ADMIN.value})

    category_ids = {}
    for c in DEMO_CATEGORIES:
        category_ids[c["slug"]] = _upsert(db, "category", {"slug": c["slug"]}, {"name": c["name"]})

    for p in DEMO_PRODUCTS:
        product_id = _upsert(db, "product", {"slug": p["slug"]}, {
            "name": p["name"],
            "description": p["description"],
            "price": p["price"],
            "is_active": True,
            "category_ids": [category_ids[p["category"]]],
        })
        for v in p["variants"]:
            _upsert(db, "product_variant", {"sku": v["sku"]}, {
                "product_id": product_id,
                "color": v["color"],
                "size": v["size"],
                "stock": v["stock"],
            })
    logger.info("Seeded %d categories and %d products", len(DEMO_CATEGORIES), len(DEMO_PRODUCTS))


def seed_if_empty(db: Database) -> bool:
    if db["product"].count_documents({}) > 0:
        logger.info("Catalog already populated; skipping demo seed")
        return False
    seed_demo_data(db)
    return True


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    client, db = connect()
    if db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")
    try:
        ensure_indexes(db)
        seed_demo_data(db)
    finally:
        client.close()
