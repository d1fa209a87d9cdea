from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient

from dealroom.main import create_app
from dealroom.store import InMemoryStore


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _build_hs256_token(*, secret: str, claims: dict[str, object], alg: str = "HS256") -> str:
    header = {"alg": alg, "typ": "JWT"}
    header_raw = _b64url(json.dumps(header, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    payload_raw = _b64url(json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_raw}.{payload_raw}".encode("ascii")
    signature = hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest()
    return f"{header_raw}.{payload_raw}.{_b64url(signature)}"


def _auth_client(monkeypatch) -> tuple[TestClient, str, InMemoryStore]:
    shared_key = "jwt_test_key_material"
    monkeypatch.setenv("JWT_ISSUER", "dealroom.test")
    monkeypatch.setenv("JWT_AUDIENCE", "dealroom.api")
    monkeypatch.setenv("JWT_SHARED_SECRET", shared_key)
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "role,sub,exp")
    store = InMemoryStore()
    return TestClient(create_app(store=store)), shared_key, store


def _token_for(
    *,
    secret: str,
    role: str,
    subject: str,
    ttl_minutes: int = 15,
    extra: dict[str, object] | None = None,
) -> str:
    now = datetime.now(UTC)
    claims: dict[str, object] = {
        "iss": "dealroom.test",
        "aud": "dealroom.api",
        "sub": subject,
        "role": role,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
    }
    if extra:
        claims.update(extra)
    return _build_hs256_token(secret=secret, claims=claims)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_jwt_required_rejects_missing_authorization(monkeypatch):
    client, _secret, _store = _auth_client(monkeypatch)
    resp = client.get("/api/v1/transactions")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert resp.headers["x-trace-id"]


def test_jwt_rejects_expired_token(monkeypatch):
    client, secret, _store = _auth_client(monkeypatch)
    token = _token_for(secret=secret, role="tc", subject="tc_1", ttl_minutes=-1)
    resp = client.get("/api/v1/transactions", headers=_bearer(token))
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "token expired"


def test_jwt_rejects_bad_signature_and_algorithm(monkeypatch):
    client, _secret, _store = _auth_client(monkeypatch)
    forged = _token_for(secret="someone_else", role="admin", subject="admin_1")
    resp = client.get("/api/v1/transactions", headers=_bearer(forged))
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "invalid token signature"

    now = datetime.now(UTC)
    none_alg = _build_hs256_token(
        secret="jwt_test_key_material",
        alg="none",
        claims={"iss": "dealroom.test", "aud": "dealroom.api", "sub": "x", "role": "admin",
                "exp": int((now + timedelta(minutes=5)).timestamp())},
    )
    resp = client.get("/api/v1/transactions", headers=_bearer(none_alg))
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "unsupported jwt algorithm"


def test_jwt_rejects_missing_role_claim(monkeypatch):
    client, secret, _store = _auth_client(monkeypatch)
    now = datetime.now(UTC)
    token = _build_hs256_token(
        secret=secret,
        claims={
            "iss": "dealroom.test",
            "aud": "dealroom.api",
            "sub": "user_a",
            "exp": int((now + timedelta(minutes=10)).timestamp()),
        },
    )
    resp = client.get("/api/v1/transactions", headers=_bearer(token))
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


def test_jwt_rejects_unknown_role(monkeypatch):
    client, secret, _store = _auth_client(monkeypatch)
    token = _token_for(secret=secret, role="buyer", subject="buyer_1")
    resp = client.get("/api/v1/transactions", headers=_bearer(token))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "AUTH_FORBIDDEN"


def test_jwt_blocks_role_header_spoofing(monkeypatch):
    client, secret, _store = _auth_client(monkeypatch)
    token = _token_for(secret=secret, role="agent", subject="agent_1")
    resp = client.get("/api/v1/transactions", headers={**_bearer(token), "x-user-role": "admin"})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "AUTH_FORBIDDEN"


def test_jwt_subject_scopes_agent_listing(monkeypatch):
    client, secret, store = _auth_client(monkeypatch)
    base = {
        "broker_id": "broker_1",
        "client_name": "Client",
        "client_email": "c@example.com",
        "client_phone": "555",
        "transaction_type": "Sale",
        "property_address": "1 Main St",
        "city": "Austin",
        "state": "TX",
        "zip_code": "73301",
        "price": 100000,
        "closing_date": "2026-12-24",
    }
    store.create_transaction(payload={**base, "transaction_id": "TR-A1", "agent_id": "agent_1"})
    store.create_transaction(payload={**base, "transaction_id": "TR-B1", "agent_id": "agent_2"})

    token = _token_for(secret=secret, role="agent", subject="agent_1")
    resp = client.get("/api/v1/transactions", headers=_bearer(token))
    assert resp.status_code == 200
    assert [x["transaction_id"] for x in resp.json()["data"]["items"]] == ["TR-A1"]

    cross = client.get("/api/v1/transactions/TR-B1", headers=_bearer(token))
    assert cross.status_code == 403


def test_internal_routes_skip_bearer_auth(monkeypatch):
    client, _secret, _store = _auth_client(monkeypatch)
    resp = client.post("/api/v1/internal/tasks/overdue-sweep", headers={"x-internal-debug": "true"})
    assert resp.status_code == 200
    assert resp.json()["data"]["marked_count"] == 0


def test_without_jwt_config_headers_supply_identity(monkeypatch):
    for name in ("JWT_ISSUER", "JWT_AUDIENCE", "JWT_SHARED_SECRET"):
        monkeypatch.delenv(name, raising=False)
    client = TestClient(create_app(store=InMemoryStore()))

    default = client.get("/api/v1/transactions")
    assert default.status_code == 200

    agent_create = client.post(
        "/api/v1/tasks",
        headers={"x-user-role": "agent", "x-user-id": "agent_1"},
        json={"transaction_id": "TR-X", "title": "t", "due_date": "2026-01-01"},
    )
    assert agent_create.status_code == 403

    bogus = client.get("/api/v1/transactions", headers={"x-user-role": "landlord"})
    assert bogus.status_code == 403
