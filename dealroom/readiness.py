"""Closure-readiness evaluation for transactions.

A transaction qualifies for closure when all three of its collections agree:

* tasks: at least one task, and every task is ``completed``;
* documents: at least one document, and every document is ``approved`` or
  carries the ``ai_verified`` flag;
* complaints: none at all, or every complaint is ``resolved``/``closed``.

The empty-collection rule is asymmetric: an empty task or document list fails,
an empty complaint list passes.

Every evaluation re-reads the repositories. Nothing is cached between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from dealroom.errors import DataAccessError, not_found
from dealroom.notifications import EVENT_TRANSACTION_READY_FOR_CLOSURE, publish_quietly
from dealroom.statuses import (
    COMPLAINT_SETTLED_STATUSES,
    DOCUMENT_APPROVED,
    TASK_COMPLETED,
    TRANSACTION_READY_FOR_CLOSURE,
    TRANSACTION_TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

MESSAGE_NOT_READY = "transaction is not ready for closure"
MESSAGE_ALREADY_READY = "transaction is already marked as ready for closure"
MESSAGE_TERMINAL = "transaction is already {status}; status left unchanged"
MESSAGE_UPDATED = "transaction status updated to ReadyForClosure"


@dataclass
class ReadinessReport:
    transaction_id: str
    tasks_total: int = 0
    tasks_completed: int = 0
    documents_total: int = 0
    documents_verified: int = 0
    complaints_total: int = 0
    complaints_unresolved: int = 0
    data_access_failed: bool = False

    @property
    def tasks_ready(self) -> bool:
        return self.tasks_total > 0 and self.tasks_completed == self.tasks_total

    @property
    def documents_ready(self) -> bool:
        return self.documents_total > 0 and self.documents_verified == self.documents_total

    @property
    def complaints_ready(self) -> bool:
        return self.complaints_unresolved == 0

    @property
    def ready(self) -> bool:
        if self.data_access_failed:
            return False
        return self.tasks_ready and self.documents_ready and self.complaints_ready

    @property
    def completion_percentage(self) -> int:
        total = self.tasks_total + self.documents_total
        if total == 0:
            return 0
        # half-up, so 1 of 8 reads as 13
        return int((self.tasks_completed + self.documents_verified) * 100 / total + 0.5)

    def as_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "ready": self.ready,
            "tasks": {"total": self.tasks_total, "completed": self.tasks_completed, "ready": self.tasks_ready},
            "documents": {
                "total": self.documents_total,
                "verified": self.documents_verified,
                "ready": self.documents_ready,
            },
            "complaints": {
                "total": self.complaints_total,
                "unresolved": self.complaints_unresolved,
                "ready": self.complaints_ready,
            },
            "completion_percentage": self.completion_percentage,
            "data_access_failed": self.data_access_failed,
        }


@dataclass
class StatusUpdateResult:
    changed: bool
    new_status: str | None
    message: str
    transaction: dict[str, Any] | None = field(default=None)

    def as_dict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "new_status": self.new_status,
            "message": self.message,
        }


def document_is_verified(document: dict[str, Any]) -> bool:
    return document.get("status") == DOCUMENT_APPROVED or bool(document.get("ai_verified"))


class ClosureReadinessEvaluator:
    def __init__(
        self,
        *,
        transactions: Any,
        tasks: Any,
        documents: Any,
        complaints: Any,
        publisher: Any,
    ) -> None:
        self._transactions = transactions
        self._tasks = tasks
        self._documents = documents
        self._complaints = complaints
        self._publisher = publisher

    def evaluate(self, transaction_id: str) -> ReadinessReport:
        report = ReadinessReport(transaction_id=transaction_id)
        try:
            tasks = self._tasks.find_by_transaction(transaction_id=transaction_id)
            documents = self._documents.find_by_transaction(transaction_id=transaction_id)
            complaints = self._complaints.find_by_transaction(transaction_id=transaction_id)
        except DataAccessError as exc:
            # outage reads as not ready; data_access_failed marks it
            logger.error(
                "closure_readiness_data_access_failed transaction_id=%s operation=%s error=%s",
                transaction_id,
                exc.operation,
                exc,
            )
            report.data_access_failed = True
            return report

        report.tasks_total = len(tasks)
        report.tasks_completed = sum(1 for task in tasks if task.get("status") == TASK_COMPLETED)
        report.documents_total = len(documents)
        report.documents_verified = sum(1 for doc in documents if document_is_verified(doc))
        report.complaints_total = len(complaints)
        report.complaints_unresolved = sum(
            1 for complaint in complaints if complaint.get("status") not in COMPLAINT_SETTLED_STATUSES
        )
        logger.debug(
            "closure_readiness_evaluated transaction_id=%s tasks=%s/%s documents=%s/%s "
            "complaints_unresolved=%s ready=%s",
            transaction_id,
            report.tasks_completed,
            report.tasks_total,
            report.documents_verified,
            report.documents_total,
            report.complaints_unresolved,
            report.ready,
        )
        return report

    def is_ready_for_closure(self, transaction_id: str) -> bool:
        return self.evaluate(transaction_id).ready

    def update_status_if_ready(self, transaction_id: str) -> StatusUpdateResult:
        if not self.is_ready_for_closure(transaction_id):
            return StatusUpdateResult(changed=False, new_status=None, message=MESSAGE_NOT_READY)

        transaction = self._transactions.get(transaction_id=transaction_id)
        if transaction is None:
            raise not_found(code="TRANSACTION_NOT_FOUND", message=f"transaction not found: {transaction_id}")

        current_status = transaction.get("status")
        if current_status == TRANSACTION_READY_FOR_CLOSURE:
            return StatusUpdateResult(
                changed=False,
                new_status=current_status,
                message=MESSAGE_ALREADY_READY,
                transaction=transaction,
            )
        if current_status in TRANSACTION_TERMINAL_STATUSES:
            return StatusUpdateResult(
                changed=False,
                new_status=current_status,
                message=MESSAGE_TERMINAL.format(status=current_status),
                transaction=transaction,
            )

        updated_at = datetime.now(UTC).isoformat()
        updated = self._transactions.advance_status(
            transaction_id=transaction_id,
            new_status=TRANSACTION_READY_FOR_CLOSURE,
            blocked_statuses={TRANSACTION_READY_FOR_CLOSURE, *TRANSACTION_TERMINAL_STATUSES},
            updated_at=updated_at,
        )
        if updated is None:
            # A concurrent evaluation (or a manual close) got there first.
            latest = self._transactions.get(transaction_id=transaction_id)
            if latest is None:
                raise not_found(code="TRANSACTION_NOT_FOUND", message=f"transaction not found: {transaction_id}")
            latest_status = latest.get("status")
            logger.info(
                "closure_status_update_lost_race transaction_id=%s status=%s",
                transaction_id,
                latest_status,
            )
            return StatusUpdateResult(
                changed=False,
                new_status=latest_status,
                message=MESSAGE_ALREADY_READY
                if latest_status == TRANSACTION_READY_FOR_CLOSURE
                else MESSAGE_TERMINAL.format(status=latest_status),
                transaction=latest,
            )

        logger.info(
            "transaction_ready_for_closure transaction_id=%s previous_status=%s",
            transaction_id,
            current_status,
        )
        publish_quietly(
            self._publisher,
            event=EVENT_TRANSACTION_READY_FOR_CLOSURE,
            payload={
                "transaction_id": transaction_id,
                "updated_at": updated_at,
                "message": "Transaction is now ready for closure",
                "agent_id": updated.get("agent_id"),
                "broker_id": updated.get("broker_id"),
            },
        )
        return StatusUpdateResult(
            changed=True,
            new_status=TRANSACTION_READY_FOR_CLOSURE,
            message=MESSAGE_UPDATED,
            transaction=updated,
        )
