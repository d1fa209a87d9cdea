from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from dealroom.errors import validation_failed
from dealroom.routes._deps import (
    auth_from_request,
    ensure_transaction_visible,
    require_manager,
    scope_filters,
    store_from_request,
    trace_id_from_request,
)
from dealroom.schemas import TransactionCreateRequest, TransactionStatusUpdateRequest, success_envelope
from dealroom.security import require_role

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


@router.post("")
def create_transaction(payload: TransactionCreateRequest, request: Request):
    auth = auth_from_request(request)
    require_role(auth.role, {"agent", "admin"}, action="create transactions")
    data = payload.model_dump(mode="json")
    if auth.role == "agent":
        data["agent_id"] = auth.subject
    elif not data.get("agent_id"):
        raise validation_failed("agent_id is required")
    created = store_from_request(request).create_transaction(payload=data)
    return JSONResponse(
        status_code=201,
        content=success_envelope(created, trace_id_from_request(request), message="transaction created"),
    )


@router.get("")
def list_transactions(request: Request, status: str | None = Query(default=None)):
    auth = auth_from_request(request)
    items = store_from_request(request).list_transactions(status=status, **scope_filters(auth))
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/ready-for-closure")
def closure_board(request: Request):
    auth = auth_from_request(request)
    items = store_from_request(request).list_closure_board(**scope_filters(auth))
    ready_count = sum(1 for x in items if x["ready"])
    return success_envelope(
        {"items": items, "total": len(items), "ready_count": ready_count},
        trace_id_from_request(request),
    )


@router.get("/{transaction_id}")
def get_transaction(transaction_id: str, request: Request):
    auth = auth_from_request(request)
    transaction = store_from_request(request).require_transaction(transaction_id=transaction_id)
    ensure_transaction_visible(auth, transaction)
    return success_envelope(transaction, trace_id_from_request(request))


@router.put("/{transaction_id}/status")
def update_transaction_status(transaction_id: str, payload: TransactionStatusUpdateRequest, request: Request):
    auth = auth_from_request(request)
    require_manager(auth, action="update transaction status")
    store = store_from_request(request)
    ensure_transaction_visible(auth, store.require_transaction(transaction_id=transaction_id))
    updated = store.update_transaction_status(
        transaction_id=transaction_id,
        new_status=payload.status,
        notes=payload.notes,
    )
    return success_envelope(updated, trace_id_from_request(request), message="transaction status updated")


@router.get("/{transaction_id}/closure-status")
def check_closure_status(transaction_id: str, request: Request):
    auth = auth_from_request(request)
    store = store_from_request(request)
    ensure_transaction_visible(auth, store.require_transaction(transaction_id=transaction_id))
    data = store.check_closure_status(transaction_id=transaction_id)
    update = data.get("status_update")
    message = update["message"] if update else "transaction is not ready for closure"
    return success_envelope(data, trace_id_from_request(request), message=message)
