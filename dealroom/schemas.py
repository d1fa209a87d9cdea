from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from dealroom.statuses import (
    ClosureDecisionLiteral,
    ComplaintPriorityLiteral,
    ComplaintStatusLiteral,
    DocumentStatusLiteral,
    TaskPriorityLiteral,
    TaskStatusLiteral,
    TransactionStatusLiteral,
    TransactionTypeLiteral,
)


class TransactionCreateRequest(BaseModel):
    transaction_id: str | None = Field(default=None, min_length=1, max_length=64)
    agent_id: str | None = None
    broker_id: str = Field(min_length=1)
    transaction_coordinator_id: str | None = None
    client_name: str = Field(min_length=1)
    client_email: str = Field(min_length=3)
    client_phone: str = Field(min_length=1)
    transaction_type: TransactionTypeLiteral
    property_address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    price: float = Field(ge=0)
    closing_date: str = Field(min_length=1)
    notes: str | None = None


class TransactionStatusUpdateRequest(BaseModel):
    status: TransactionStatusLiteral
    notes: str | None = None


class TaskCreateRequest(BaseModel):
    transaction_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    agent_id: str | None = None
    priority: TaskPriorityLiteral = "medium"
    due_date: str = Field(min_length=1)
    ai_reminder: bool = False


class TaskUpdateRequest(BaseModel):
    status: TaskStatusLiteral | None = None
    priority: TaskPriorityLiteral | None = None
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    due_date: str | None = None
    ai_reminder: bool | None = None


class DocumentCreateRequest(BaseModel):
    transaction_id: str = Field(min_length=1)
    agent_id: str | None = None
    document_type: str = Field(min_length=1)
    file_name: str = Field(min_length=1)
    file_size: int = Field(default=0, ge=0)
    file_url: str = Field(min_length=1)


class DocumentReviewRequest(BaseModel):
    status: DocumentStatusLiteral
    comments: str | None = None


class AiVerificationRequest(BaseModel):
    ai_verified: bool = True
    ai_score: float | None = Field(default=None, ge=0, le=100)
    issues: list[str] = Field(default_factory=list)


class ComplaintCreateRequest(BaseModel):
    transaction_id: str | None = None
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    priority: ComplaintPriorityLiteral = "medium"


class ComplaintRespondRequest(BaseModel):
    response: str = Field(min_length=1)
    status: ComplaintStatusLiteral | None = None


class ClosureRequestCreateRequest(BaseModel):
    transaction_id: str = Field(min_length=1)
    notes: str | None = None


class ClosureRequestDecisionRequest(BaseModel):
    status: ClosureDecisionLiteral
    notes: str | None = None


class OverdueSweepRequest(BaseModel):
    now: str | None = None


class DocumentReminderSweepRequest(BaseModel):
    now: str | None = None
    stale_days: int = Field(default=3, ge=1, le=90)


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
