import os

# Configuration obligatoire posée avant l'import de storefront.config
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy_key_1234"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_dummy_secret_5678"
os.environ["APP_URL"] = "http://localhost:3000"
os.environ["DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS"] = "1"
os.environ.pop("LOCAL_RATE_LIMIT_FALLBACK", None)

import copy
import json
import pytest
from typing import Any, Dict, Generator, List, Optional
from fastapi.testclient import TestClient

from storefront.app_setup.factory import create_app
from storefront.payments.errors import PaymentProviderError, ProviderNotFoundError, SignatureError
from storefront.payments.stripe_client import get_stripe_client
from storefront.utils.security import optional_user, require_user, require_admin

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/tests/unit/" in nodeid or nodeid.startswith("tests/unit/"):
            item.add_marker(pytest.mark.unit)
        elif "/tests/integration/" in nodeid or nodeid.startswith("tests/integration/"):
            item.add_marker(pytest.mark.integration)


# --- Supabase en mémoire -------------------------------------------------------------

class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Sous-ensemble du query builder postgrest utilisé par les repositories."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.ignore_duplicates = False
        self.filters: List[tuple] = []
        self.order_by: Optional[tuple] = None
        self.limit_n: Optional[int] = None

    def select(self, *cols):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def upsert(self, rows, on_conflict: str = "", ignore_duplicates: bool = False):
        self.op, self.payload = "upsert", rows
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, fields):
        self.op, self.payload = "update", fields
        return self

    def eq(self, col, value):
        self.filters.append(("eq", col, value))
        return self

    def neq(self, col, value):
        self.filters.append(("neq", col, value))
        return self

    def in_(self, col, values):
        self.filters.append(("in", col, list(values)))
        return self

    def order(self, col, desc: bool = False):
        self.order_by = (col, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _match(self, row) -> bool:
        for kind, col, value in self.filters:
            if kind == "eq" and row.get(col) != value:
                return False
            if kind == "neq" and row.get(col) == value:
                return False
            if kind == "in" and row.get(col) not in value:
                return False
        return True

    def execute(self):
        if (self.table_name, self.op) in self.db.fail_on:
            raise RuntimeError(f"supabase down: {self.table_name}.{self.op}")
        rows = self.db.tables.setdefault(self.table_name, [])
        self.db.calls.append((self.table_name, self.op))

        if self.op == "select":
            found = [copy.deepcopy(r) for r in rows if self._match(r)]
            if self.order_by:
                col, desc = self.order_by
                found.sort(key=lambda r: r.get(col) or "", reverse=desc)
            if self.limit_n is not None:
                found = found[: self.limit_n]
            return FakeResponse(found)

        payload = self.payload if isinstance(self.payload, list) else [self.payload]

        if self.op == "insert":
            created = [copy.deepcopy(r) for r in payload]
            rows.extend(created)
            return FakeResponse(copy.deepcopy(created))

        if self.op == "upsert":
            keys = [k.strip() for k in (self.on_conflict or "").split(",") if k.strip()]
            out = []
            for new in payload:
                existing = next((r for r in rows if keys and all(r.get(k) == new.get(k) for k in keys)), None)
                if existing is None:
                    rows.append(copy.deepcopy(new))
                    out.append(copy.deepcopy(new))
                elif not self.ignore_duplicates:
                    existing.update(copy.deepcopy(new))
                    out.append(copy.deepcopy(existing))
            return FakeResponse(out)

        if self.op == "update":
            changed = []
            for r in rows:
                if self._match(r):
                    r.update(copy.deepcopy(self.payload))
                    changed.append(copy.deepcopy(r))
            return FakeResponse(changed)

        raise AssertionError(f"opération inattendue {self.op}")


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict[str, Any]):
        self.db, self.name, self.params = db, name, params

    def execute(self):
        if ("rpc", self.name) in self.db.fail_on:
            raise RuntimeError(f"supabase down: rpc {self.name}")
        self.db.calls.append(("rpc", self.name))
        if self.name == "increment_coupon_usage":
            for c in self.db.tables.setdefault("coupons", []):
                if c.get("code") == self.params.get("p_code"):
                    c["used_count"] = (c.get("used_count") or 0) + 1
        return FakeResponse(None)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail_on: set = set()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.get(name, [])

    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[1] != "select"]


@pytest.fixture
def fake_db(monkeypatch) -> FakeSupabase:
    db = FakeSupabase()
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: db)
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: db)
    return db


# --- Stripe factice ------------------------------------------------------------------

class FakeStripeClient:
    """Remplace StripeClient: sessions et payment intents en mémoire."""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.created: List[Dict[str, Any]] = []
        self.retrieved: List[str] = []
        self.fail_create = False
        self.fail_retrieve = False

    def create_checkout_session(self, **params) -> Dict[str, Any]:
        if self.fail_create:
            raise PaymentProviderError("Création de session: échec de l'appel Stripe", details="network")
        self.created.append(params)
        session_id = f"cs_test_{len(self.created)}"
        total = sum(li["price_data"]["unit_amount"] * li["quantity"] for li in params["line_items"])
        self.sessions[session_id] = {
            "id": session_id,
            "url": f"https://checkout.stripe.test/{session_id}",
            "status": "open",
            "payment_status": "unpaid",
            "client_reference_id": params["client_reference_id"],
            "metadata": dict(params["metadata"]),
            "amount_total": total,
            "currency": "usd",
            "payment_intent": None,
            "customer_details": {"email": params.get("customer_email"), "name": None},
        }
        return dict(self.sessions[session_id])

    def pay(self, session_id: str, payment_intent_id: str = "pi_test_1") -> Dict[str, Any]:
        """Simule le paiement côté Stripe; retourne la session complétée."""
        session = self.sessions[session_id]
        session.update({"status": "complete", "payment_status": "paid", "payment_intent": payment_intent_id})
        self.intents[payment_intent_id] = {
            "id": payment_intent_id,
            "status": "succeeded",
            "amount": session["amount_total"],
            "currency": "usd",
            "created": 1700000000,
            "payment_method_types": ["card"],
            "metadata": dict(session["metadata"]),
        }
        return copy.deepcopy(session)

    def retrieve_session(self, session_id: str, expand=()) -> Dict[str, Any]:
        self.retrieved.append(session_id)
        if self.fail_retrieve:
            raise PaymentProviderError("Lecture de session: échec de l'appel Stripe", details="timeout")
        if session_id not in self.sessions:
            raise ProviderNotFoundError("Lecture de session: ressource introuvable", details=session_id)
        session = copy.deepcopy(self.sessions[session_id])
        if "payment_intent" in expand and session.get("payment_intent") in self.intents:
            session["payment_intent"] = copy.deepcopy(self.intents[session["payment_intent"]])
        return session

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        if payment_intent_id not in self.intents:
            raise ProviderNotFoundError("Lecture du paiement: ressource introuvable", details=payment_intent_id)
        return copy.deepcopy(self.intents[payment_intent_id])

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not signature:
            raise SignatureError("Signature Stripe manquante")
        if signature != "t=1,v1=valid":
            raise SignatureError("Signature Stripe invalide")
        return json.loads(payload)


@pytest.fixture
def fake_stripe() -> FakeStripeClient:
    return FakeStripeClient()


# --- Application ---------------------------------------------------------------------

TEST_USER: Dict[str, Any] = {"id": "user-1", "email": "user1@example.com", "role": "user", "metadata": {}}
ADMIN_USER: Dict[str, Any] = {"id": "admin-1", "email": "admin@example.com", "role": "admin", "metadata": {"role": "admin"}}

@pytest.fixture(scope="session")
def app():
    return create_app()

@pytest.fixture
def auth_state() -> Dict[str, Any]:
    """Utilisateur courant des requêtes de test (None = invité)."""
    return {"user": dict(TEST_USER)}

@pytest.fixture
def client(app, fake_db, fake_stripe, auth_state) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_stripe_client] = lambda: fake_stripe
    app.dependency_overrides[optional_user] = lambda: auth_state["user"]
    app.dependency_overrides[require_user] = lambda: auth_state["user"]
    app.dependency_overrides[require_admin] = lambda: ADMIN_USER
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()

def _event_payload(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode("utf-8")

def _insert_coupon(db: FakeSupabase, **fields) -> Dict[str, Any]:
    coupon = {
        "code": "SAVE20",
        "provider_coupon_id": "stripe_coupon_1",
        "kind": "fixed",
        "value": 2000,
        "description": "",
        "max_discount_cents": None,
        "min_purchase_cents": 0,
        "valid_from": None,
        "valid_until": None,
        "usage_limit": None,
        "used_count": 0,
        "per_user_limit": None,
        "categories": [],
        "excluded_exam_ids": [],
        "active": True,
    }
    coupon.update(fields)
    db.tables.setdefault("coupons", []).append(coupon)
    return coupon

@pytest.fixture
def make_event():
    """Corps brut d'un événement Stripe (JSON encodé)."""
    return _event_payload

@pytest.fixture
def add_coupon(fake_db):
    """Insère un coupon (fixe 20.00 par défaut) dans la base en mémoire."""
    return lambda **fields: _insert_coupon(fake_db, **fields)
