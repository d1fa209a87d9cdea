from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from dealroom.schemas import error_envelope
from dealroom.security import DEFAULT_ROLE, DEFAULT_SUBJECT, AuthContext, forbidden, require_role
from dealroom.store import InMemoryStore

MANAGER_ROLES = frozenset({"tc", "broker", "admin"})


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def auth_from_request(request: Request) -> AuthContext:
    auth = getattr(request.state, "auth", None)
    if isinstance(auth, AuthContext):
        return auth
    return AuthContext(subject=DEFAULT_SUBJECT, role=DEFAULT_ROLE, claims={})


def store_from_request(request: Request) -> InMemoryStore:
    return request.app.state.store


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )


def scope_filters(auth: AuthContext) -> dict[str, str | None]:
    """Agents see their own deals, brokers their brokerage, tc and admin everything."""
    if auth.role == "agent":
        return {"agent_id": auth.subject, "broker_id": None}
    if auth.role == "broker":
        return {"agent_id": None, "broker_id": auth.subject}
    return {"agent_id": None, "broker_id": None}


def ensure_transaction_visible(auth: AuthContext, transaction: dict[str, Any]) -> None:
    filters = scope_filters(auth)
    if filters["agent_id"] is not None and transaction.get("agent_id") != filters["agent_id"]:
        raise forbidden("transaction is outside your scope")
    if filters["broker_id"] is not None and transaction.get("broker_id") != filters["broker_id"]:
        raise forbidden("transaction is outside your scope")


def require_manager(auth: AuthContext, *, action: str) -> None:
    require_role(auth.role, MANAGER_ROLES, action=action)


def visible_transaction_ids(auth: AuthContext, store: InMemoryStore) -> set[str] | None:
    """Transaction ids a scoped caller may read; None means unrestricted."""
    filters = scope_filters(auth)
    if filters["agent_id"] is None and filters["broker_id"] is None:
        return None
    return {x["transaction_id"] for x in store.list_transactions(**filters)}


def ensure_parent_visible(auth: AuthContext, store: InMemoryStore, transaction_id: str | None) -> None:
    if not transaction_id:
        return
    transaction = store.get_transaction(transaction_id=transaction_id)
    if transaction is None:
        return
    ensure_transaction_visible(auth, transaction)
