import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
import jwt

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dealroom.main import create_app
from dealroom.notifications import InMemoryNotificationPublisher
from dealroom.store import InMemoryStore

JWT_SECRET = "jwt_test_secret"


def issue_token(*, secret: str, role: str, subject: str, ttl_minutes: int = 30) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "role": role,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


class AuthenticatedClient:
    """Mints a bearer token from the x-user-role / x-user-id test headers."""

    def __init__(self, client: TestClient, *, jwt_secret: str):
        self._client = client
        self._jwt_secret = jwt_secret

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        if url.startswith("/api/v1/") and not url.startswith("/api/v1/internal/"):
            if "Authorization" not in headers:
                role = headers.get("x-user-role") or "admin"
                subject = headers.get("x-user-id") or "admin_1"
                token = issue_token(secret=self._jwt_secret, role=str(role), subject=str(subject))
                headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)


def transaction_payload(**overrides) -> dict:
    payload = {
        "agent_id": "agent_1",
        "broker_id": "broker_1",
        "client_name": "Dana Whitfield",
        "client_email": "dana@example.com",
        "client_phone": "555-0100",
        "transaction_type": "Purchase",
        "property_address": "12 Harbor Lane",
        "city": "Portland",
        "state": "OR",
        "zip_code": "97201",
        "price": 525000,
        "closing_date": "2026-12-01",
    }
    payload.update(overrides)
    return payload


@pytest.fixture(autouse=True)
def security_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DEALROOM_STORE_BACKEND", "memory")
    monkeypatch.setenv("DEALROOM_NOTIFY_BACKEND", "memory")
    monkeypatch.delenv("DEALROOM_REQUIRE_TRUESTACK", raising=False)
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "role,sub,exp")
    yield


@pytest.fixture
def publisher() -> InMemoryNotificationPublisher:
    return InMemoryNotificationPublisher()


@pytest.fixture
def store(publisher: InMemoryNotificationPublisher) -> InMemoryStore:
    return InMemoryStore(publisher=publisher)


@pytest.fixture
def client(store: InMemoryStore) -> AuthenticatedClient:
    app = create_app(store=store)
    base = TestClient(app)
    return AuthenticatedClient(base, jwt_secret=JWT_SECRET)


@pytest.fixture
def seed_transaction(store: InMemoryStore):
    def _seed(**overrides) -> dict:
        return store.create_transaction(payload=transaction_payload(**overrides))

    return _seed
