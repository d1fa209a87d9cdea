from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from dealroom.db.postgres import PostgresTxRunner
from dealroom.db.schema import apply_schema
from dealroom.errors import ApiError, DataAccessError, not_found, validation_failed
from dealroom.notifications import (
    EVENT_CLOSURE_REQUEST_SUBMITTED,
    EVENT_CLOSURE_REQUEST_UPDATED,
    EVENT_COMPLAINT_UPDATED,
    EVENT_DOCUMENT_REMINDER,
    EVENT_DOCUMENT_UPDATED,
    EVENT_TASK_COMPLETED,
    EVENT_TASK_CREATED,
    EVENT_TASK_UPDATED,
    EVENT_TRANSACTION_STATUS_UPDATED,
    InMemoryNotificationPublisher,
    publish_quietly,
)
from dealroom.readiness import ClosureReadinessEvaluator
from dealroom.repositories.closure_requests import (
    InMemoryClosureRequestsRepository,
    PostgresClosureRequestsRepository,
)
from dealroom.repositories.complaints import InMemoryComplaintsRepository, PostgresComplaintsRepository
from dealroom.repositories.documents import InMemoryDocumentsRepository, PostgresDocumentsRepository
from dealroom.repositories.tasks import InMemoryTasksRepository, PostgresTasksRepository
from dealroom.repositories.transactions import InMemoryTransactionsRepository, PostgresTransactionsRepository
from dealroom.runtime_profile import true_stack_required
from dealroom.statuses import (
    CLOSURE_REQUEST_COMPLETED,
    CLOSURE_REQUEST_PENDING,
    CLOSURE_REQUEST_REJECTED,
    CLOSURE_REQUEST_STATUSES,
    CLOSURE_REQUEST_TRANSITIONS,
    COMPLAINT_OPEN,
    COMPLAINT_PRIORITIES,
    COMPLAINT_STATUSES,
    DOCUMENT_STATUSES,
    DOCUMENT_VERIFYING,
    TASK_COMPLETED,
    TASK_OPEN_STATUSES,
    TASK_OVERDUE,
    TASK_PENDING,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TRANSACTION_CLOSED,
    TRANSACTION_NEW,
    TRANSACTION_PENDING_DOCUMENTS,
    TRANSACTION_READY_FOR_CLOSURE,
    TRANSACTION_STATUSES,
    TRANSACTION_TERMINAL_STATUSES,
    TRANSACTION_TYPES,
)

logger = logging.getLogger(__name__)


def _require_member(value: Any, allowed: Iterable[str], *, field_name: str) -> str:
    allowed_values = tuple(allowed)
    text = str(value or "").strip()
    if text not in allowed_values:
        raise validation_failed(f"{field_name} must be one of: {', '.join(allowed_values)}")
    return text


def _require_text(payload: Mapping[str, Any], *names: str) -> dict[str, str]:
    values = {name: str(payload.get(name) or "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise validation_failed(f"missing required fields: {', '.join(missing)}")
    return values


def _parse_datetime(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        dt = raw
    else:
        text = str(raw or "").strip()
        if not text:
            return None
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


class InMemoryStore:
    def __init__(self, *, publisher: Any | None = None) -> None:
        self.publisher = publisher if publisher is not None else InMemoryNotificationPublisher()
        self._lock = threading.RLock()
        self.transactions: dict[str, dict[str, Any]] = {}
        self.tasks: dict[str, dict[str, Any]] = {}
        self.documents: dict[str, dict[str, Any]] = {}
        self.complaints: dict[str, dict[str, Any]] = {}
        self.closure_requests: dict[str, dict[str, Any]] = {}
        self._bind_repositories()

    def _bind_repositories(self) -> None:
        self.transactions_repository = InMemoryTransactionsRepository(self.transactions, lock=self._lock)
        self.tasks_repository = InMemoryTasksRepository(self.tasks)
        self.documents_repository = InMemoryDocumentsRepository(self.documents)
        self.complaints_repository = InMemoryComplaintsRepository(self.complaints)
        self.closure_requests_repository = InMemoryClosureRequestsRepository(self.closure_requests)
        self._bind_evaluator()

    def _bind_evaluator(self) -> None:
        self.readiness = ClosureReadinessEvaluator(
            transactions=self.transactions_repository,
            tasks=self.tasks_repository,
            documents=self.documents_repository,
            complaints=self.complaints_repository,
            publisher=self.publisher,
        )

    def reset(self) -> None:
        self.transactions.clear()
        self.tasks.clear()
        self.documents.clear()
        self.complaints.clear()
        self.closure_requests.clear()
        reset_fn = getattr(self.publisher, "reset", None)
        if callable(reset_fn):
            reset_fn()

    def close(self) -> None:
        close_fn = getattr(self.publisher, "close", None)
        if callable(close_fn):
            close_fn()

    @staticmethod
    def _utcnow_iso() -> str:
        return datetime.now(UTC).isoformat()

    def _publish(self, *, event: str, payload: dict[str, Any]) -> None:
        publish_quietly(self.publisher, event=event, payload=payload)

    def _after_mutation(self, *, transaction_id: str | None, source: str) -> dict[str, Any] | None:
        """Re-run the closure check after any task, document or complaint mutation."""
        if not transaction_id:
            return None
        try:
            result = self.readiness.update_status_if_ready(transaction_id)
        except ApiError as exc:
            logger.warning(
                "closure_check_skipped transaction_id=%s source=%s code=%s",
                transaction_id,
                source,
                exc.code,
            )
            return {"changed": False, "new_status": None, "message": exc.message}
        except DataAccessError:
            logger.exception("closure_check_failed transaction_id=%s source=%s", transaction_id, source)
            return {"changed": False, "new_status": None, "message": "closure check unavailable"}
        return result.as_dict()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def create_transaction(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        values = _require_text(
            payload,
            "agent_id",
            "broker_id",
            "client_name",
            "client_email",
            "client_phone",
            "property_address",
            "city",
            "state",
            "zip_code",
            "closing_date",
        )
        transaction_type = _require_member(
            payload.get("transaction_type"), TRANSACTION_TYPES, field_name="transaction_type"
        )
        try:
            price = float(payload.get("price"))
        except (TypeError, ValueError):
            raise validation_failed("price must be a number") from None
        if price < 0:
            raise validation_failed("price must not be negative")

        transaction_id = str(payload.get("transaction_id") or "").strip() or f"TR-{uuid.uuid4().hex[:8].upper()}"
        if self.transactions_repository.get(transaction_id=transaction_id) is not None:
            raise ApiError(
                code="TRANSACTION_ALREADY_EXISTS",
                message=f"transaction already exists: {transaction_id}",
                error_class="business_rule",
                retryable=False,
                http_status=409,
            )
        now = self._utcnow_iso()
        transaction = {
            "transaction_id": transaction_id,
            **values,
            "transaction_coordinator_id": payload.get("transaction_coordinator_id"),
            "transaction_type": transaction_type,
            "price": price,
            "status": TRANSACTION_NEW,
            "notes": payload.get("notes"),
            "created_at": now,
            "updated_at": now,
        }
        saved = self.transactions_repository.upsert(transaction=transaction)
        logger.info("transaction_created transaction_id=%s agent_id=%s", transaction_id, values["agent_id"])
        return saved

    def get_transaction(self, *, transaction_id: str) -> dict[str, Any] | None:
        return self.transactions_repository.get(transaction_id=transaction_id)

    def require_transaction(self, *, transaction_id: str) -> dict[str, Any]:
        transaction = self.get_transaction(transaction_id=transaction_id)
        if transaction is None:
            raise not_found(code="TRANSACTION_NOT_FOUND", message=f"transaction not found: {transaction_id}")
        return transaction

    def list_transactions(
        self,
        *,
        agent_id: str | None = None,
        broker_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        statuses = None
        if status:
            statuses = [_require_member(status, TRANSACTION_STATUSES, field_name="status")]
        return self.transactions_repository.list(agent_id=agent_id, broker_id=broker_id, statuses=statuses)

    def update_transaction_status(
        self,
        *,
        transaction_id: str,
        new_status: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        status = _require_member(new_status, TRANSACTION_STATUSES, field_name="status")
        transaction = self.require_transaction(transaction_id=transaction_id)
        previous_status = transaction.get("status")
        transaction["status"] = status
        if notes is not None:
            transaction["notes"] = notes
        transaction["updated_at"] = self._utcnow_iso()
        saved = self.transactions_repository.upsert(transaction=transaction)
        logger.info(
            "transaction_status_updated transaction_id=%s from=%s to=%s",
            transaction_id,
            previous_status,
            status,
        )
        self._publish(
            event=EVENT_TRANSACTION_STATUS_UPDATED,
            payload={
                "transaction_id": transaction_id,
                "previous_status": previous_status,
                "status": status,
                "updated_at": saved["updated_at"],
                "agent_id": saved.get("agent_id"),
                "broker_id": saved.get("broker_id"),
            },
        )
        return saved

    def check_closure_status(self, *, transaction_id: str) -> dict[str, Any]:
        self.require_transaction(transaction_id=transaction_id)
        report = self.readiness.evaluate(transaction_id)
        data: dict[str, Any] = {"readiness": report.as_dict(), "status_update": None}
        if report.ready:
            data["status_update"] = self.readiness.update_status_if_ready(transaction_id).as_dict()
        transaction = self.require_transaction(transaction_id=transaction_id)
        data["transaction"] = {"transaction_id": transaction_id, "status": transaction.get("status")}
        return data

    def list_closure_board(
        self,
        *,
        agent_id: str | None = None,
        broker_id: str | None = None,
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        open_transactions = self.transactions_repository.list(
            agent_id=agent_id,
            broker_id=broker_id,
            exclude_statuses=TRANSACTION_TERMINAL_STATUSES,
        )
        for transaction in open_transactions:
            report = self.readiness.evaluate(transaction["transaction_id"])
            items.append(
                {
                    "transaction_id": transaction["transaction_id"],
                    "property_address": transaction.get("property_address"),
                    "client_name": transaction.get("client_name"),
                    "agent_id": transaction.get("agent_id"),
                    "closing_date": transaction.get("closing_date"),
                    "status": transaction.get("status"),
                    "ready": report.ready,
                    "completion_percentage": report.completion_percentage,
                    "tasks": {"total": report.tasks_total, "completed": report.tasks_completed},
                    "documents": {"total": report.documents_total, "verified": report.documents_verified},
                    "complaints": {"total": report.complaints_total, "unresolved": report.complaints_unresolved},
                }
            )
        return items

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        values = _require_text(payload, "transaction_id", "title", "due_date")
        transaction = self.require_transaction(transaction_id=values["transaction_id"])
        if _parse_datetime(values["due_date"]) is None:
            raise validation_failed("due_date must be an ISO-8601 date or datetime")
        status = _require_member(payload.get("status") or TASK_PENDING, TASK_STATUSES, field_name="status")
        priority = _require_member(payload.get("priority") or "medium", TASK_PRIORITIES, field_name="priority")
        now = self._utcnow_iso()
        task = {
            "task_id": f"task_{uuid.uuid4().hex[:12]}",
            **values,
            "description": payload.get("description"),
            "agent_id": payload.get("agent_id") or transaction.get("agent_id"),
            "assigned_by": payload.get("assigned_by") or "TC Manager",
            "status": status,
            "priority": priority,
            "ai_reminder": bool(payload.get("ai_reminder", False)),
            "created_at": now,
            "updated_at": now,
        }
        saved = self.tasks_repository.upsert(task=task)
        self._publish(event=EVENT_TASK_CREATED, payload={"task": saved, "agent_id": saved.get("agent_id")})
        return saved

    def get_task(self, *, task_id: str) -> dict[str, Any] | None:
        return self.tasks_repository.get(task_id=task_id)

    def list_tasks(
        self,
        *,
        transaction_id: str | None = None,
        agent_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        statuses = None
        if status:
            statuses = [_require_member(status, TASK_STATUSES, field_name="status")]
        return self.tasks_repository.list(transaction_id=transaction_id, agent_id=agent_id, statuses=statuses)

    def update_task(self, *, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        task = self.get_task(task_id=task_id)
        if task is None:
            raise not_found(code="TASK_NOT_FOUND", message=f"task not found: {task_id}")
        previous_status = task.get("status")
        if payload.get("status") is not None:
            task["status"] = _require_member(payload["status"], TASK_STATUSES, field_name="status")
        if payload.get("priority") is not None:
            task["priority"] = _require_member(payload["priority"], TASK_PRIORITIES, field_name="priority")
        if payload.get("title"):
            task["title"] = str(payload["title"]).strip() or task["title"]
        if payload.get("description") is not None:
            task["description"] = payload["description"]
        if payload.get("due_date"):
            if _parse_datetime(payload["due_date"]) is None:
                raise validation_failed("due_date must be an ISO-8601 date or datetime")
            task["due_date"] = str(payload["due_date"])
        if payload.get("ai_reminder") is not None:
            task["ai_reminder"] = bool(payload["ai_reminder"])
        task["updated_at"] = self._utcnow_iso()
        saved = self.tasks_repository.upsert(task=task)

        self._publish(event=EVENT_TASK_UPDATED, payload={"task": saved, "agent_id": saved.get("agent_id")})
        if saved["status"] == TASK_COMPLETED and previous_status != TASK_COMPLETED:
            self._publish(event=EVENT_TASK_COMPLETED, payload={"task": saved, "agent_id": saved.get("agent_id")})
        closure_check = self._after_mutation(transaction_id=saved.get("transaction_id"), source="task")
        return {**saved, "closure_check": closure_check}

    def mark_overdue_tasks(self, *, now: datetime | None = None) -> dict[str, Any]:
        cutoff = now or datetime.now(UTC)
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=UTC)
        marked: list[str] = []
        touched_transactions: set[str] = set()
        for task in self.tasks_repository.list(statuses=TASK_OPEN_STATUSES):
            due = _parse_datetime(task.get("due_date"))
            if due is None or due >= cutoff:
                continue
            task["status"] = TASK_OVERDUE
            task["updated_at"] = self._utcnow_iso()
            saved = self.tasks_repository.upsert(task=task)
            marked.append(saved["task_id"])
            touched_transactions.add(str(saved.get("transaction_id") or ""))
            self._publish(event=EVENT_TASK_UPDATED, payload={"task": saved, "agent_id": saved.get("agent_id")})
        for transaction_id in sorted(x for x in touched_transactions if x):
            self._after_mutation(transaction_id=transaction_id, source="overdue_sweep")
        if marked:
            logger.info("tasks_marked_overdue count=%s", len(marked))
        return {"marked_count": len(marked), "task_ids": marked, "cutoff": cutoff.isoformat()}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def register_document(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        values = _require_text(payload, "transaction_id", "agent_id", "document_type", "file_name", "file_url")
        self.require_transaction(transaction_id=values["transaction_id"])
        try:
            file_size = int(payload.get("file_size") or 0)
        except (TypeError, ValueError):
            raise validation_failed("file_size must be an integer") from None
        now = self._utcnow_iso()
        document = {
            "document_id": f"doc_{uuid.uuid4().hex[:12]}",
            **values,
            "file_size": max(0, file_size),
            "status": DOCUMENT_VERIFYING,
            "ai_verified": False,
            "ai_score": None,
            "issues": [],
            "comments": None,
            "created_at": now,
            "updated_at": now,
        }
        return self.documents_repository.upsert(document=document)

    def get_document(self, *, document_id: str) -> dict[str, Any] | None:
        return self.documents_repository.get(document_id=document_id)

    def _require_document(self, document_id: str) -> dict[str, Any]:
        document = self.get_document(document_id=document_id)
        if document is None:
            raise not_found(code="DOCUMENT_NOT_FOUND", message=f"document not found: {document_id}")
        return document

    def list_documents(self, *, transaction_id: str | None = None, agent_id: str | None = None) -> list[dict[str, Any]]:
        return self.documents_repository.list(transaction_id=transaction_id, agent_id=agent_id)

    def _save_document_mutation(self, document: dict[str, Any], *, source: str) -> dict[str, Any]:
        document["updated_at"] = self._utcnow_iso()
        saved = self.documents_repository.upsert(document=document)
        self._publish(
            event=EVENT_DOCUMENT_UPDATED,
            payload={"document": saved, "agent_id": saved.get("agent_id")},
        )
        closure_check = self._after_mutation(transaction_id=saved.get("transaction_id"), source=source)
        return {**saved, "closure_check": closure_check}

    def review_document(
        self,
        *,
        document_id: str,
        status: str,
        comments: str | None = None,
    ) -> dict[str, Any]:
        new_status = _require_member(status, DOCUMENT_STATUSES, field_name="status")
        document = self._require_document(document_id)
        document["status"] = new_status
        if comments:
            document["issues"] = [*document.get("issues", []), comments]
            document["comments"] = comments
        return self._save_document_mutation(document, source="document_review")

    def record_ai_verification(
        self,
        *,
        document_id: str,
        ai_verified: bool,
        ai_score: float | None = None,
        issues: list[str] | None = None,
    ) -> dict[str, Any]:
        if ai_score is not None and not 0 <= float(ai_score) <= 100:
            raise validation_failed("ai_score must be between 0 and 100")
        document = self._require_document(document_id)
        document["ai_verified"] = bool(ai_verified)
        document["ai_score"] = float(ai_score) if ai_score is not None else None
        document["issues"] = [str(x) for x in (issues or [])]
        return self._save_document_mutation(document, source="document_ai_verification")

    # ------------------------------------------------------------------
    # Complaints
    # ------------------------------------------------------------------

    def submit_complaint(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        values = _require_text(payload, "title", "description", "submitted_by", "submitter_role")
        transaction_id = str(payload.get("transaction_id") or "").strip() or None
        if transaction_id is not None:
            self.require_transaction(transaction_id=transaction_id)
        priority = _require_member(payload.get("priority") or "medium", COMPLAINT_PRIORITIES, field_name="priority")
        now = self._utcnow_iso()
        complaint = {
            "complaint_id": f"cmp_{uuid.uuid4().hex[:12]}",
            "transaction_id": transaction_id,
            **values,
            "status": COMPLAINT_OPEN,
            "priority": priority,
            "response": None,
            "response_by": None,
            "response_date": None,
            "created_at": now,
            "updated_at": now,
        }
        saved = self.complaints_repository.upsert(complaint=complaint)
        self._publish(event=EVENT_COMPLAINT_UPDATED, payload={"complaint": saved})
        return saved

    def get_complaint(self, *, complaint_id: str) -> dict[str, Any] | None:
        return self.complaints_repository.get(complaint_id=complaint_id)

    def list_complaints(
        self,
        *,
        transaction_id: str | None = None,
        submitted_by: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        statuses = None
        if status:
            statuses = [_require_member(status, COMPLAINT_STATUSES, field_name="status")]
        return self.complaints_repository.list(
            transaction_id=transaction_id,
            submitted_by=submitted_by,
            statuses=statuses,
        )

    def respond_to_complaint(
        self,
        *,
        complaint_id: str,
        response: str,
        responder_id: str,
        status: str | None = None,
    ) -> dict[str, Any]:
        text = str(response or "").strip()
        if not text:
            raise validation_failed("response text is required")
        new_status = _require_member(status, COMPLAINT_STATUSES, field_name="status") if status else None
        complaint = self.get_complaint(complaint_id=complaint_id)
        if complaint is None:
            raise not_found(code="COMPLAINT_NOT_FOUND", message=f"complaint not found: {complaint_id}")
        now = self._utcnow_iso()
        complaint["response"] = text
        complaint["response_by"] = responder_id
        complaint["response_date"] = now
        if new_status is not None:
            complaint["status"] = new_status
        complaint["updated_at"] = now
        saved = self.complaints_repository.upsert(complaint=complaint)
        self._publish(event=EVENT_COMPLAINT_UPDATED, payload={"complaint": saved})
        closure_check = self._after_mutation(transaction_id=saved.get("transaction_id"), source="complaint")
        return {**saved, "closure_check": closure_check}

    # ------------------------------------------------------------------
    # Closure requests
    # ------------------------------------------------------------------

    @staticmethod
    def _conflict(code: str, message: str) -> ApiError:
        return ApiError(code=code, message=message, error_class="business_rule", retryable=False, http_status=409)

    def forward_for_closure(
        self,
        *,
        transaction_id: str,
        submitted_by: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Hand a ReadyForClosure transaction to its broker. A rejected request may be forwarded again."""
        transaction = self.require_transaction(transaction_id=transaction_id)
        if transaction.get("status") != TRANSACTION_READY_FOR_CLOSURE:
            raise self._conflict(
                "TRANSACTION_NOT_READY_FOR_CLOSURE",
                f"transaction is {transaction.get('status')}; only ReadyForClosure transactions can be forwarded",
            )
        if not self.readiness.is_ready_for_closure(transaction_id):
            raise self._conflict(
                "TRANSACTION_NOT_READY_FOR_CLOSURE",
                "transaction no longer meets the closure conditions",
            )
        existing = self.closure_requests_repository.get_by_transaction(transaction_id=transaction_id)
        if existing is not None and existing.get("status") != CLOSURE_REQUEST_REJECTED:
            raise self._conflict(
                "CLOSURE_REQUEST_ALREADY_OPEN",
                f"closure request {existing['closure_request_id']} is {existing.get('status')}",
            )
        now = self._utcnow_iso()
        closure_request = {
            "closure_request_id": existing["closure_request_id"] if existing else f"clr_{uuid.uuid4().hex[:12]}",
            "transaction_id": transaction_id,
            "status": CLOSURE_REQUEST_PENDING,
            "notes": notes,
            "broker_notes": None,
            "submitted_by": submitted_by,
            "submitted_at": now,
            "decided_by": None,
            "decided_at": None,
            "created_at": existing["created_at"] if existing else now,
            "updated_at": now,
        }
        saved = self.closure_requests_repository.upsert(closure_request=closure_request)
        logger.info(
            "closure_request_submitted closure_request_id=%s transaction_id=%s resubmitted=%s",
            saved["closure_request_id"],
            transaction_id,
            existing is not None,
        )
        self._publish(
            event=EVENT_CLOSURE_REQUEST_SUBMITTED,
            payload={
                "closure_request": saved,
                "agent_id": transaction.get("agent_id"),
                "broker_id": transaction.get("broker_id"),
            },
        )
        return saved

    def get_closure_request(self, *, closure_request_id: str) -> dict[str, Any] | None:
        return self.closure_requests_repository.get(closure_request_id=closure_request_id)

    def require_closure_request(self, *, closure_request_id: str) -> dict[str, Any]:
        closure_request = self.get_closure_request(closure_request_id=closure_request_id)
        if closure_request is None:
            raise not_found(
                code="CLOSURE_REQUEST_NOT_FOUND",
                message=f"closure request not found: {closure_request_id}",
            )
        return closure_request

    def _with_transaction_summary(self, closure_request: dict[str, Any]) -> dict[str, Any]:
        transaction = self.get_transaction(transaction_id=closure_request["transaction_id"])
        summary = None
        if transaction is not None:
            report = self.readiness.evaluate(transaction["transaction_id"])
            summary = {
                "property_address": transaction.get("property_address"),
                "client_name": transaction.get("client_name"),
                "agent_id": transaction.get("agent_id"),
                "broker_id": transaction.get("broker_id"),
                "closing_date": transaction.get("closing_date"),
                "status": transaction.get("status"),
                "documents": {"total": report.documents_total, "verified": report.documents_verified},
            }
        return {**closure_request, "transaction": summary}

    def list_closure_requests(
        self,
        *,
        agent_id: str | None = None,
        broker_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        statuses = None
        if status:
            statuses = [_require_member(status, CLOSURE_REQUEST_STATUSES, field_name="status")]
        transaction_ids = None
        if agent_id is not None or broker_id is not None:
            scoped = self.transactions_repository.list(agent_id=agent_id, broker_id=broker_id)
            transaction_ids = [x["transaction_id"] for x in scoped]
        items = self.closure_requests_repository.list(transaction_ids=transaction_ids, statuses=statuses)
        return [self._with_transaction_summary(x) for x in items]

    def decide_closure_request(
        self,
        *,
        closure_request_id: str,
        status: str,
        decided_by: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Approve or reject a pending request, or complete an approved one. Completion closes the transaction."""
        decision = _require_member(status, tuple(CLOSURE_REQUEST_TRANSITIONS), field_name="status")
        closure_request = self.require_closure_request(closure_request_id=closure_request_id)
        current = closure_request.get("status")
        if current not in CLOSURE_REQUEST_TRANSITIONS[decision]:
            raise self._conflict(
                "CLOSURE_REQUEST_INVALID_TRANSITION",
                f"closure request is {current}; it cannot move to {decision}",
            )
        transaction = self.require_transaction(transaction_id=closure_request["transaction_id"])
        if transaction.get("status") in TRANSACTION_TERMINAL_STATUSES:
            raise self._conflict(
                "TRANSACTION_ALREADY_TERMINAL",
                f"transaction is already {transaction.get('status')}",
            )
        now = self._utcnow_iso()
        closure_request["status"] = decision
        if notes is not None:
            closure_request["broker_notes"] = notes
        closure_request["decided_by"] = decided_by
        closure_request["decided_at"] = now
        closure_request["updated_at"] = now
        saved = self.closure_requests_repository.upsert(closure_request=closure_request)
        logger.info(
            "closure_request_decided closure_request_id=%s transaction_id=%s from=%s to=%s",
            closure_request_id,
            saved["transaction_id"],
            current,
            decision,
        )
        self._publish(
            event=EVENT_CLOSURE_REQUEST_UPDATED,
            payload={
                "closure_request": saved,
                "agent_id": transaction.get("agent_id"),
                "broker_id": transaction.get("broker_id"),
            },
        )
        if decision == CLOSURE_REQUEST_COMPLETED:
            transaction = self.update_transaction_status(
                transaction_id=saved["transaction_id"],
                new_status=TRANSACTION_CLOSED,
                notes=notes,
            )
        return {
            **saved,
            "transaction": {"transaction_id": saved["transaction_id"], "status": transaction.get("status")},
        }

    def remind_pending_documents(self, *, now: datetime | None = None, stale_days: int = 3) -> dict[str, Any]:
        """Notify about transactions stuck in PendingDocuments for more than ``stale_days``."""
        if stale_days < 1:
            raise validation_failed("stale_days must be at least 1")
        reference = now or datetime.now(UTC)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=UTC)
        cutoff = reference - timedelta(days=stale_days)
        reminded: list[str] = []
        for transaction in self.transactions_repository.list(statuses=[TRANSACTION_PENDING_DOCUMENTS]):
            updated_at = _parse_datetime(transaction.get("updated_at"))
            if updated_at is None or updated_at >= cutoff:
                continue
            self._publish(
                event=EVENT_DOCUMENT_REMINDER,
                payload={
                    "transaction_id": transaction["transaction_id"],
                    "client_name": transaction.get("client_name"),
                    "client_email": transaction.get("client_email"),
                    "days_waiting": (reference - updated_at).days,
                    "agent_id": transaction.get("agent_id"),
                    "broker_id": transaction.get("broker_id"),
                },
            )
            reminded.append(transaction["transaction_id"])
        if reminded:
            logger.info("pending_document_reminders_sent count=%s", len(reminded))
        return {"reminded_count": len(reminded), "transaction_ids": reminded, "cutoff": cutoff.isoformat()}


class SqliteBackedStore(InMemoryStore):
    """Single-node persistent store that snapshots all collections to SQLite after each write."""

    def __init__(self, db_path: str, *, publisher: Any | None = None) -> None:
        super().__init__(publisher=publisher)
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._snapshot_lock = threading.RLock()
        self._initialize_database()
        self._load_state()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path))

    def _initialize_database(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS store_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  payload TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def _state_snapshot(self) -> dict[str, Any]:
        return {
            "schema_version": 1,
            "transactions": self.transactions,
            "tasks": self.tasks,
            "documents": self.documents,
            "complaints": self.complaints,
            "closure_requests": self.closure_requests,
        }

    def _restore_state(self, payload: dict[str, Any]) -> None:
        for name in ("transactions", "tasks", "documents", "complaints", "closure_requests"):
            value = payload.get(name)
            target = getattr(self, name)
            target.clear()
            if isinstance(value, dict):
                target.update(value)

    def _save_state(self) -> None:
        blob = json.dumps(self._state_snapshot(), sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        try:
            with self._snapshot_lock:
                with self._connect() as conn:
                    conn.execute(
                        """
                        INSERT INTO store_state(id, payload)
                        VALUES (1, ?)
                        ON CONFLICT(id) DO UPDATE SET payload = excluded.payload
                        """,
                        (blob,),
                    )
                    conn.commit()
        except sqlite3.Error as exc:
            raise DataAccessError(f"sqlite snapshot failed: {exc}", operation="store.save") from exc

    def _load_state(self) -> None:
        with self._snapshot_lock:
            with self._connect() as conn:
                row = conn.execute("SELECT payload FROM store_state WHERE id = 1").fetchone()
        if row is None or not isinstance(row[0], str):
            return
        try:
            payload = json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("sqlite_snapshot_unreadable path=%s", self._db_path)
            return
        if isinstance(payload, dict):
            self._restore_state(payload)

    def reset(self) -> None:
        super().reset()
        self._save_state()

    def create_transaction(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        data = super().create_transaction(payload=payload)
        self._save_state()
        return data

    def update_transaction_status(
        self,
        *,
        transaction_id: str,
        new_status: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        data = super().update_transaction_status(transaction_id=transaction_id, new_status=new_status, notes=notes)
        self._save_state()
        return data

    def check_closure_status(self, *, transaction_id: str) -> dict[str, Any]:
        data = super().check_closure_status(transaction_id=transaction_id)
        self._save_state()
        return data

    def create_task(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        data = super().create_task(payload=payload)
        self._save_state()
        return data

    def update_task(self, *, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        data = super().update_task(task_id=task_id, payload=payload)
        self._save_state()
        return data

    def mark_overdue_tasks(self, *, now: datetime | None = None) -> dict[str, Any]:
        data = super().mark_overdue_tasks(now=now)
        self._save_state()
        return data

    def register_document(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        data = super().register_document(payload=payload)
        self._save_state()
        return data

    def review_document(
        self,
        *,
        document_id: str,
        status: str,
        comments: str | None = None,
    ) -> dict[str, Any]:
        data = super().review_document(document_id=document_id, status=status, comments=comments)
        self._save_state()
        return data

    def record_ai_verification(
        self,
        *,
        document_id: str,
        ai_verified: bool,
        ai_score: float | None = None,
        issues: list[str] | None = None,
    ) -> dict[str, Any]:
        data = super().record_ai_verification(
            document_id=document_id,
            ai_verified=ai_verified,
            ai_score=ai_score,
            issues=issues,
        )
        self._save_state()
        return data

    def submit_complaint(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        data = super().submit_complaint(payload=payload)
        self._save_state()
        return data

    def respond_to_complaint(
        self,
        *,
        complaint_id: str,
        response: str,
        responder_id: str,
        status: str | None = None,
    ) -> dict[str, Any]:
        data = super().respond_to_complaint(
            complaint_id=complaint_id,
            response=response,
            responder_id=responder_id,
            status=status,
        )
        self._save_state()
        return data

    def forward_for_closure(
        self,
        *,
        transaction_id: str,
        submitted_by: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        data = super().forward_for_closure(transaction_id=transaction_id, submitted_by=submitted_by, notes=notes)
        self._save_state()
        return data

    def decide_closure_request(
        self,
        *,
        closure_request_id: str,
        status: str,
        decided_by: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        data = super().decide_closure_request(
            closure_request_id=closure_request_id,
            status=status,
            decided_by=decided_by,
            notes=notes,
        )
        self._save_state()
        return data


class PostgresBackedStore(InMemoryStore):
    """Store whose repositories read and write PostgreSQL tables directly."""

    TABLES: tuple[str, ...] = ("transactions", "tasks", "documents", "complaints", "closure_requests")

    def __init__(self, *, dsn: str, publisher: Any | None = None, apply_ddl: bool = True) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must be provided for postgres store backend")
        self._tx_runner = PostgresTxRunner(dsn)
        self._apply_ddl = apply_ddl
        super().__init__(publisher=publisher)
        if apply_ddl:
            apply_schema(self._tx_runner)

    def _bind_repositories(self) -> None:
        self.transactions_repository = PostgresTransactionsRepository(tx_runner=self._tx_runner)
        self.tasks_repository = PostgresTasksRepository(tx_runner=self._tx_runner)
        self.documents_repository = PostgresDocumentsRepository(tx_runner=self._tx_runner)
        self.complaints_repository = PostgresComplaintsRepository(tx_runner=self._tx_runner)
        self.closure_requests_repository = PostgresClosureRequestsRepository(tx_runner=self._tx_runner)
        self._bind_evaluator()

    def reset(self) -> None:
        super().reset()

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(f"TRUNCATE {', '.join(self.TABLES)}")

        self._tx_runner.run_in_tx(fn=_op, operation="store.reset")


def create_store_from_env(
    environ: Mapping[str, str] | None = None,
    *,
    publisher: Any | None = None,
) -> InMemoryStore:
    env = os.environ if environ is None else environ
    backend = env.get("DEALROOM_STORE_BACKEND", "memory").strip().lower()
    if true_stack_required(env) and backend != "postgres":
        raise RuntimeError("DEALROOM_STORE_BACKEND must be postgres when DEALROOM_REQUIRE_TRUESTACK=true")
    if backend == "memory":
        return InMemoryStore(publisher=publisher)
    if backend == "sqlite":
        db_path = env.get("DEALROOM_STORE_SQLITE_PATH", ".local/dealroom-store.sqlite3")
        return SqliteBackedStore(db_path, publisher=publisher)
    if backend == "postgres":
        dsn = env.get("POSTGRES_DSN", "").strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must be set when DEALROOM_STORE_BACKEND=postgres")
        return PostgresBackedStore(dsn=dsn, publisher=publisher)
    raise RuntimeError(f"unsupported store backend: {backend}")
