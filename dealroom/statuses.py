from __future__ import annotations

from typing import Literal

TRANSACTION_NEW = "New"
TRANSACTION_PENDING_DOCUMENTS = "PendingDocuments"
TRANSACTION_READY_FOR_CLOSURE = "ReadyForClosure"
TRANSACTION_CLOSED = "Closed"
TRANSACTION_CANCELLED = "Cancelled"

TRANSACTION_STATUSES: tuple[str, ...] = (
    TRANSACTION_NEW,
    "InProgress",
    TRANSACTION_PENDING_DOCUMENTS,
    "UnderReview",
    "Approved",
    TRANSACTION_READY_FOR_CLOSURE,
    TRANSACTION_CLOSED,
    TRANSACTION_CANCELLED,
)
TRANSACTION_TERMINAL_STATUSES = frozenset({TRANSACTION_CLOSED, TRANSACTION_CANCELLED})

TRANSACTION_TYPES: tuple[str, ...] = ("Purchase", "Sale", "Lease", "Refinance")

TASK_PENDING = "pending"
TASK_IN_PROGRESS = "in_progress"
TASK_COMPLETED = "completed"
TASK_OVERDUE = "overdue"

TASK_STATUSES: tuple[str, ...] = (TASK_PENDING, TASK_IN_PROGRESS, TASK_COMPLETED, TASK_OVERDUE)
TASK_OPEN_STATUSES = frozenset({TASK_PENDING, TASK_IN_PROGRESS})
TASK_PRIORITIES: tuple[str, ...] = ("low", "medium", "high")

DOCUMENT_VERIFYING = "verifying"
DOCUMENT_APPROVED = "approved"
DOCUMENT_REJECTED = "rejected"

DOCUMENT_STATUSES: tuple[str, ...] = (DOCUMENT_VERIFYING, DOCUMENT_APPROVED, DOCUMENT_REJECTED)

COMPLAINT_OPEN = "open"
COMPLAINT_IN_PROGRESS = "in_progress"
COMPLAINT_RESOLVED = "resolved"
COMPLAINT_CLOSED = "closed"

COMPLAINT_STATUSES: tuple[str, ...] = (
    COMPLAINT_OPEN,
    COMPLAINT_IN_PROGRESS,
    COMPLAINT_RESOLVED,
    COMPLAINT_CLOSED,
)
COMPLAINT_SETTLED_STATUSES = frozenset({COMPLAINT_RESOLVED, COMPLAINT_CLOSED})
COMPLAINT_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "critical")

CLOSURE_REQUEST_PENDING = "pending"
CLOSURE_REQUEST_APPROVED = "approved"
CLOSURE_REQUEST_REJECTED = "rejected"
CLOSURE_REQUEST_COMPLETED = "completed"

CLOSURE_REQUEST_STATUSES: tuple[str, ...] = (
    CLOSURE_REQUEST_PENDING,
    CLOSURE_REQUEST_APPROVED,
    CLOSURE_REQUEST_REJECTED,
    CLOSURE_REQUEST_COMPLETED,
)
# decision status -> statuses it may follow
CLOSURE_REQUEST_TRANSITIONS: dict[str, frozenset[str]] = {
    CLOSURE_REQUEST_APPROVED: frozenset({CLOSURE_REQUEST_PENDING}),
    CLOSURE_REQUEST_REJECTED: frozenset({CLOSURE_REQUEST_PENDING}),
    CLOSURE_REQUEST_COMPLETED: frozenset({CLOSURE_REQUEST_APPROVED}),
}

ROLES: tuple[str, ...] = ("agent", "broker", "tc", "admin")

TransactionStatusLiteral = Literal[
    "New",
    "InProgress",
    "PendingDocuments",
    "UnderReview",
    "Approved",
    "ReadyForClosure",
    "Closed",
    "Cancelled",
]
TransactionTypeLiteral = Literal["Purchase", "Sale", "Lease", "Refinance"]
TaskStatusLiteral = Literal["pending", "in_progress", "completed", "overdue"]
TaskPriorityLiteral = Literal["low", "medium", "high"]
DocumentStatusLiteral = Literal["verifying", "approved", "rejected"]
ComplaintStatusLiteral = Literal["open", "in_progress", "resolved", "closed"]
ComplaintPriorityLiteral = Literal["low", "medium", "high", "critical"]
ClosureDecisionLiteral = Literal["approved", "rejected", "completed"]
