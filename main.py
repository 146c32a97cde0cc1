import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

import auth
import cart
import categories
import orders
import payments
import products
from database import DATABASE_NAME, DATABASE_URL, connect, ensure_indexes
from seed import seed_if_empty

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("shop")

FRONTEND_URL = os.getenv("FRONTEND_URL", "*")
SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    client, db = connect()
    app.state.db = db
    if db is None:
        logger.error("DATABASE_URL / DATABASE_NAME not set; database routes will answer 503")
    else:
        ensure_indexes(db)
        if SEED_DEMO_DATA:
            seed_if_empty(db)
    try:
        yield
    finally:
        if client is not None:
            client.close()


# App init
app = FastAPI(title="Shop API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=FRONTEND_URL != "*",
    allow_methods=["*"],
    allow_headers=["*"],
)

api = APIRouter(prefix="/api")
for module in (auth, products, categories, cart, orders, payments):
    api.include_router(module.router)
app.include_router(api)


# Routes
@app.get("/")
def root():
    return {
        "message": "Welcome to Shop API",
        "version": app.version,
        "endpoints": {"products": "/api/products", "health": "/health"},
    }


@app.get("/health")
def health():
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/test")
def test_database(request: Request):
    db = getattr(request.app.state, "db", None)
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is None:
        return response
    response["database"] = "✅ Available"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
