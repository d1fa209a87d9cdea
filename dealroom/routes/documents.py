from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from dealroom.errors import not_found, validation_failed
from dealroom.routes._deps import (
    auth_from_request,
    ensure_parent_visible,
    ensure_transaction_visible,
    require_manager,
    store_from_request,
    trace_id_from_request,
    visible_transaction_ids,
)
from dealroom.schemas import AiVerificationRequest, DocumentCreateRequest, DocumentReviewRequest, success_envelope
from dealroom.security import AuthContext, require_role
from dealroom.store import InMemoryStore

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])


def _load_scoped_document(auth: AuthContext, store: InMemoryStore, document_id: str) -> dict:
    document = store.get_document(document_id=document_id)
    if document is None:
        raise not_found(code="DOCUMENT_NOT_FOUND", message=f"document not found: {document_id}")
    ensure_parent_visible(auth, store, document.get("transaction_id"))
    return document


@router.post("")
def register_document(payload: DocumentCreateRequest, request: Request):
    auth = auth_from_request(request)
    require_role(auth.role, {"agent", "tc", "admin"}, action="upload documents")
    store = store_from_request(request)
    transaction = store.require_transaction(transaction_id=payload.transaction_id)
    ensure_transaction_visible(auth, transaction)
    data = payload.model_dump(mode="json")
    if auth.role == "agent":
        data["agent_id"] = auth.subject
    else:
        data["agent_id"] = data.get("agent_id") or transaction.get("agent_id")
    if not data["agent_id"]:
        raise validation_failed("agent_id is required")
    created = store.register_document(payload=data)
    return JSONResponse(
        status_code=201,
        content=success_envelope(created, trace_id_from_request(request), message="document registered"),
    )


@router.get("")
def list_documents(
    request: Request,
    transaction_id: str | None = Query(default=None),
    agent_id: str | None = Query(default=None),
):
    auth = auth_from_request(request)
    store = store_from_request(request)
    if auth.role == "agent":
        agent_id = auth.subject
    items = store.list_documents(transaction_id=transaction_id, agent_id=agent_id)
    if auth.role == "broker":
        allowed = visible_transaction_ids(auth, store) or set()
        items = [x for x in items if x.get("transaction_id") in allowed]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.put("/{document_id}/review")
def review_document(document_id: str, payload: DocumentReviewRequest, request: Request):
    auth = auth_from_request(request)
    require_manager(auth, action="review documents")
    store = store_from_request(request)
    _load_scoped_document(auth, store, document_id)
    updated = store.review_document(
        document_id=document_id,
        status=payload.status,
        comments=payload.comments,
    )
    return success_envelope(updated, trace_id_from_request(request), message="document reviewed")


@router.post("/{document_id}/ai-verification")
def record_ai_verification(document_id: str, payload: AiVerificationRequest, request: Request):
    auth = auth_from_request(request)
    require_role(auth.role, {"tc", "admin"}, action="record AI verification results")
    store = store_from_request(request)
    _load_scoped_document(auth, store, document_id)
    updated = store.record_ai_verification(
        document_id=document_id,
        ai_verified=payload.ai_verified,
        ai_score=payload.ai_score,
        issues=payload.issues,
    )
    return success_envelope(updated, trace_id_from_request(request), message="verification recorded")
