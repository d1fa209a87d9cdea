from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Body, Header, Request

from dealroom.errors import ApiError, validation_failed
from dealroom.routes._deps import store_from_request, trace_id_from_request
from dealroom.schemas import DocumentReminderSweepRequest, OverdueSweepRequest, success_envelope

router = APIRouter(prefix="/api/v1/internal", tags=["internal"])


def _require_internal_debug(x_internal_debug: str | None) -> None:
    if x_internal_debug != "true":
        raise ApiError(
            code="AUTH_FORBIDDEN",
            message="internal endpoint forbidden",
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )


def _parse_now(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise validation_failed("now must be an ISO-8601 datetime") from None


@router.post("/tasks/overdue-sweep")
def overdue_sweep(
    request: Request,
    payload: OverdueSweepRequest | None = Body(default=None),
    x_internal_debug: str | None = Header(default=None, alias="x-internal-debug"),
):
    _require_internal_debug(x_internal_debug)
    now = _parse_now(payload.now if payload is not None else None)
    data = store_from_request(request).mark_overdue_tasks(now=now)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/documents/reminder-sweep")
def document_reminder_sweep(
    request: Request,
    payload: DocumentReminderSweepRequest | None = Body(default=None),
    x_internal_debug: str | None = Header(default=None, alias="x-internal-debug"),
):
    _require_internal_debug(x_internal_debug)
    payload = payload or DocumentReminderSweepRequest()
    data = store_from_request(request).remind_pending_documents(
        now=_parse_now(payload.now),
        stale_days=payload.stale_days,
    )
    return success_envelope(data, trace_id_from_request(request))
