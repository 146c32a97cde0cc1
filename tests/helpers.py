import hashlib
import hmac
import json
import time
from itertools import count

from database import create_document
from payments import StripeGateway
from schemas import Product, ProductVariant

WEBHOOK_SECRET = "whsec_test_secret"


class FakeStripeGateway(StripeGateway):
    """Keeps intents in memory; webhook verification is the real Stripe code."""

    def __init__(self):
        super().__init__("sk_test_fake", WEBHOOK_SECRET, "eur")
        self.intents = {}
        self.create_calls = []
        self._ids = count(1)

    def create_payment_intent(self, amount, metadata, idempotency_key):
        self.create_calls.append({"amount": amount, "metadata": metadata, "idempotency_key": idempotency_key})
        n = next(self._ids)
        intent = {"id": f"pi_test_{n}", "client_secret": f"pi_test_{n}_secret_abc"}
        self.intents[intent["id"]] = intent
        return dict(intent)

    def retrieve_payment_intent(self, intent_id):
        return dict(self.intents[intent_id])


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_payload(event_type: str, intent_id: str) -> bytes:
    return json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent"}},
    }).encode("utf-8")


def register(client, email, password="secret123", role=None):
    body = {"email": email, "password": password}
    if role:
        body["role"] = role
    res = client.post("/api/auth/register", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


_slugs = count(1)


def make_variant(db, price=2999, stock=10, is_active=True, name=None, color="Black", size="M"):
    n = next(_slugs)
    product_id = create_document(db, "product", Product(
        name=name or f"Product {n}", slug=f"product-{n}", price=price, is_active=is_active,
    ))
    variant_id = create_document(db, "product_variant", ProductVariant(
        product_id=product_id, color=color, size=size, sku=f"SKU-{n}", stock=stock,
    ))
    return product_id, variant_id
