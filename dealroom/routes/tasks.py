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
from dealroom.schemas import TaskCreateRequest, TaskUpdateRequest, success_envelope
from dealroom.security import forbidden

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


@router.post("")
def create_task(payload: TaskCreateRequest, request: Request):
    auth = auth_from_request(request)
    require_manager(auth, action="assign tasks")
    store = store_from_request(request)
    ensure_transaction_visible(auth, store.require_transaction(transaction_id=payload.transaction_id))
    created = store.create_task(payload={**payload.model_dump(mode="json"), "assigned_by": auth.subject})
    return JSONResponse(
        status_code=201,
        content=success_envelope(created, trace_id_from_request(request), message="task created"),
    )


@router.get("")
def list_tasks(
    request: Request,
    transaction_id: str | None = Query(default=None),
    agent_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
):
    auth = auth_from_request(request)
    store = store_from_request(request)
    if auth.role == "agent":
        agent_id = auth.subject
    items = store.list_tasks(transaction_id=transaction_id, agent_id=agent_id, status=status)
    if auth.role == "broker":
        allowed = visible_transaction_ids(auth, store) or set()
        items = [x for x in items if x.get("transaction_id") in allowed]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.put("/{task_id}")
def update_task(task_id: str, payload: TaskUpdateRequest, request: Request):
    auth = auth_from_request(request)
    store = store_from_request(request)
    task = store.get_task(task_id=task_id)
    if task is None:
        raise not_found(code="TASK_NOT_FOUND", message=f"task not found: {task_id}")
    if auth.role == "agent" and task.get("agent_id") != auth.subject:
        raise forbidden("task is assigned to another agent")
    if auth.role != "agent":
        ensure_parent_visible(auth, store, task.get("transaction_id"))
    updated = store.update_task(task_id=task_id, payload=payload.model_dump(mode="json", exclude_none=True))
    return success_envelope(updated, trace_id_from_request(request), message="task updated")
