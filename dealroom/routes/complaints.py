from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from dealroom.errors import not_found
from dealroom.routes._deps import (
    auth_from_request,
    ensure_parent_visible,
    ensure_transaction_visible,
    require_manager,
    store_from_request,
    trace_id_from_request,
    visible_transaction_ids,
)
from dealroom.schemas import ComplaintCreateRequest, ComplaintRespondRequest, success_envelope

router = APIRouter(prefix="/api/v1/complaints", tags=["complaints"])


@router.post("")
def submit_complaint(payload: ComplaintCreateRequest, request: Request):
    auth = auth_from_request(request)
    store = store_from_request(request)
    if payload.transaction_id:
        ensure_transaction_visible(auth, store.require_transaction(transaction_id=payload.transaction_id))
    created = store.submit_complaint(
        payload={
            **payload.model_dump(mode="json"),
            "submitted_by": auth.subject,
            "submitter_role": auth.role,
        }
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(created, trace_id_from_request(request), message="complaint submitted"),
    )


@router.get("")
def list_complaints(
    request: Request,
    transaction_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
):
    auth = auth_from_request(request)
    store = store_from_request(request)
    submitted_by = auth.subject if auth.role == "agent" else None
    items = store.list_complaints(
        transaction_id=transaction_id,
        submitted_by=submitted_by,
        status=status,
    )
    if auth.role == "broker":
        # unlinked complaints stay visible to the broker who filed them
        allowed = visible_transaction_ids(auth, store) or set()
        items = [
            x
            for x in items
            if x.get("transaction_id") in allowed
            or (not x.get("transaction_id") and x.get("submitted_by") == auth.subject)
        ]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.post("/{complaint_id}/respond")
def respond_to_complaint(complaint_id: str, payload: ComplaintRespondRequest, request: Request):
    auth = auth_from_request(request)
    require_manager(auth, action="respond to complaints")
    store = store_from_request(request)
    complaint = store.get_complaint(complaint_id=complaint_id)
    if complaint is None:
        raise not_found(code="COMPLAINT_NOT_FOUND", message=f"complaint not found: {complaint_id}")
    ensure_parent_visible(auth, store, complaint.get("transaction_id"))
    updated = store.respond_to_complaint(
        complaint_id=complaint_id,
        response=payload.response,
        responder_id=auth.subject,
        status=payload.status,
    )
    return success_envelope(updated, trace_id_from_request(request), message="response recorded")
