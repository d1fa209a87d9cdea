from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from dealroom.routes._deps import (
    auth_from_request,
    ensure_parent_visible,
    ensure_transaction_visible,
    require_manager,
    scope_filters,
    store_from_request,
    trace_id_from_request,
)
from dealroom.schemas import ClosureRequestCreateRequest, ClosureRequestDecisionRequest, success_envelope
from dealroom.security import require_role

router = APIRouter(prefix="/api/v1/closure-requests", tags=["closure-requests"])


@router.post("")
def forward_for_closure(payload: ClosureRequestCreateRequest, request: Request):
    auth = auth_from_request(request)
    require_role(auth.role, {"tc", "admin"}, action="forward transactions for closure")
    store = store_from_request(request)
    ensure_transaction_visible(auth, store.require_transaction(transaction_id=payload.transaction_id))
    created = store.forward_for_closure(
        transaction_id=payload.transaction_id,
        submitted_by=auth.subject,
        notes=payload.notes,
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(created, trace_id_from_request(request), message="closure request forwarded"),
    )


@router.get("")
def list_closure_requests(request: Request, status: str | None = Query(default=None)):
    auth = auth_from_request(request)
    require_manager(auth, action="view closure requests")
    items = store_from_request(request).list_closure_requests(status=status, **scope_filters(auth))
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/{closure_request_id}")
def get_closure_request(closure_request_id: str, request: Request):
    auth = auth_from_request(request)
    require_manager(auth, action="view closure requests")
    store = store_from_request(request)
    closure_request = store.require_closure_request(closure_request_id=closure_request_id)
    ensure_parent_visible(auth, store, closure_request["transaction_id"])
    return success_envelope(closure_request, trace_id_from_request(request))


@router.post("/{closure_request_id}/decision")
def decide_closure_request(closure_request_id: str, payload: ClosureRequestDecisionRequest, request: Request):
    auth = auth_from_request(request)
    require_role(auth.role, {"broker", "admin"}, action="decide closure requests")
    store = store_from_request(request)
    closure_request = store.require_closure_request(closure_request_id=closure_request_id)
    ensure_parent_visible(auth, store, closure_request["transaction_id"])
    updated = store.decide_closure_request(
        closure_request_id=closure_request_id,
        status=payload.status,
        decided_by=auth.subject,
        notes=payload.notes,
    )
    return success_envelope(updated, trace_id_from_request(request), message=f"closure request {payload.status}")
