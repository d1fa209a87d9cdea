from __future__ import annotations

import json

import pytest

from dealroom.errors import DataAccessError
from dealroom.repositories import (
    PostgresClosureRequestsRepository,
    PostgresComplaintsRepository,
    PostgresDocumentsRepository,
    PostgresTasksRepository,
    PostgresTransactionsRepository,
)
from dealroom.repositories.transactions import _COLUMNS as TRANSACTION_COLUMNS


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, query: str, params=None):
        self._conn.statements.append((" ".join(query.split()), params))

    def fetchone(self):
        return self._conn.one.pop(0) if self._conn.one else None

    def fetchall(self):
        return self._conn.many.pop(0) if self._conn.many else []


class FakeConnection:
    def __init__(self) -> None:
        self.statements: list[tuple[str, tuple | None]] = []
        self.one: list[tuple | None] = []
        self.many: list[list[tuple]] = []

    def cursor(self):
        return FakeCursor(self)


class FakeRunner:
    def __init__(self) -> None:
        self.conn = FakeConnection()
        self.operations: list[str] = []

    def run_in_tx(self, *, fn, operation: str = ""):
        self.operations.append(operation)
        return fn(self.conn)


def _transaction_row(status: str = "InProgress") -> tuple:
    values = {
        "transaction_id": "TR-1",
        "agent_id": "agent_1",
        "broker_id": "broker_1",
        "transaction_coordinator_id": None,
        "client_name": "Dana",
        "client_email": "dana@example.com",
        "client_phone": "555",
        "transaction_type": "Purchase",
        "property_address": "12 Harbor Lane",
        "city": "Portland",
        "state": "OR",
        "zip_code": "97201",
        "price": "525000.00",
        "closing_date": "2026-12-01",
        "status": status,
        "notes": None,
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    return tuple(values[col] for col in TRANSACTION_COLUMNS)


@pytest.mark.parametrize(
    "factory",
    [
        PostgresTransactionsRepository,
        PostgresTasksRepository,
        PostgresDocumentsRepository,
        PostgresComplaintsRepository,
        PostgresClosureRequestsRepository,
    ],
)
def test_postgres_repositories_reject_invalid_table_names(factory):
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        factory(tx_runner=FakeRunner(), table_name="tasks;drop table tasks")


def test_transactions_upsert_get_and_list_filters():
    runner = FakeRunner()
    repo = PostgresTransactionsRepository(tx_runner=runner)
    repo.upsert(transaction=dict(zip(TRANSACTION_COLUMNS, _transaction_row())))
    sql, params = runner.conn.statements[0]
    assert sql.startswith("INSERT INTO transactions")
    assert "ON CONFLICT(transaction_id) DO UPDATE SET" in sql
    assert params[0] == "TR-1"

    runner.conn.one.append(_transaction_row())
    loaded = repo.get(transaction_id="TR-1")
    assert loaded["price"] == 525000.0
    assert runner.operations == ["transactions.upsert", "transactions.get"]

    runner.conn.many.append([_transaction_row()])
    items = repo.list(broker_id="broker_1", exclude_statuses={"Closed"})
    assert len(items) == 1
    sql, params = runner.conn.statements[-1]
    assert "broker_id = %s" in sql
    assert "NOT (status = ANY(%s))" in sql
    assert params == ("broker_1", ["Closed"])


def test_transactions_advance_status_is_conditional():
    runner = FakeRunner()
    repo = PostgresTransactionsRepository(tx_runner=runner)
    runner.conn.one.append(_transaction_row(status="ReadyForClosure"))
    updated = repo.advance_status(
        transaction_id="TR-1",
        new_status="ReadyForClosure",
        blocked_statuses=["ReadyForClosure"],
        updated_at="2026-02-01T00:00:00+00:00",
    )
    assert updated["status"] == "ReadyForClosure"
    sql, params = runner.conn.statements[-1]
    assert sql.startswith("UPDATE transactions SET status = %s, updated_at = %s")
    assert "NOT (status = ANY(%s)) RETURNING" in sql
    assert params[:3] == ("ReadyForClosure", "2026-02-01T00:00:00+00:00", "TR-1")

    lost = repo.advance_status(
        transaction_id="TR-1",
        new_status="ReadyForClosure",
        blocked_statuses=["ReadyForClosure"],
        updated_at="2026-02-01T00:00:00+00:00",
    )
    assert lost is None


def test_tasks_find_by_transaction_coerces_flags():
    runner = FakeRunner()
    repo = PostgresTasksRepository(tx_runner=runner)
    runner.conn.many.append(
        [
            (
                "task_1",
                "TR-1",
                "Appraisal",
                None,
                "agent_1",
                "tc_1",
                "completed",
                "high",
                "2026-11-01",
                0,
                "2026-01-01",
                "2026-01-01",
            )
        ]
    )
    items = repo.find_by_transaction(transaction_id="TR-1")
    assert items[0]["task_id"] == "task_1"
    assert items[0]["ai_reminder"] is False
    sql, params = runner.conn.statements[-1]
    assert "WHERE transaction_id = %s" in sql
    assert params == ("TR-1",)


def test_documents_store_issues_as_jsonb():
    runner = FakeRunner()
    repo = PostgresDocumentsRepository(tx_runner=runner)
    repo.upsert(
        document={
            "document_id": "doc_1",
            "transaction_id": "TR-1",
            "agent_id": "agent_1",
            "document_type": "disclosure",
            "file_name": "d.pdf",
            "file_size": 10,
            "file_url": "https://files.example.com/d.pdf",
            "status": "verifying",
            "ai_verified": False,
            "ai_score": None,
            "issues": ["page 2 unsigned"],
            "comments": None,
            "created_at": "2026-01-01",
            "updated_at": "2026-01-01",
        }
    )
    sql, params = runner.conn.statements[0]
    assert "%s::jsonb" in sql
    assert json.loads(params[10]) == ["page 2 unsigned"]

    runner.conn.one.append(
        (
            "doc_1",
            "TR-1",
            "agent_1",
            "disclosure",
            "d.pdf",
            10,
            "https://files.example.com/d.pdf",
            "approved",
            1,
            "91.5",
            '["page 2 unsigned"]',
            None,
            "2026-01-01",
            "2026-01-02",
        )
    )
    loaded = repo.get(document_id="doc_1")
    assert loaded["issues"] == ["page 2 unsigned"]
    assert loaded["ai_verified"] is True
    assert loaded["ai_score"] == 91.5


def test_complaints_list_filters_by_status():
    runner = FakeRunner()
    repo = PostgresComplaintsRepository(tx_runner=runner)
    repo.list(transaction_id="TR-1", statuses=["open", "in_progress"])
    sql, params = runner.conn.statements[-1]
    assert "transaction_id = %s AND status = ANY(%s)" in sql
    assert params == ("TR-1", ["open", "in_progress"])
    assert runner.operations == ["complaints.list"]


def test_runner_failures_surface_as_data_access_errors():
    class FailingRunner:
        def run_in_tx(self, *, fn, operation: str = ""):
            raise DataAccessError("connection refused", operation=operation)

    repo = PostgresTasksRepository(tx_runner=FailingRunner())
    with pytest.raises(DataAccessError) as exc_info:
        repo.find_by_transaction(transaction_id="TR-1")
    assert exc_info.value.operation == "tasks.list"


def test_apply_schema_creates_all_tables():
    from dealroom.db.schema import SCHEMA_STATEMENTS, apply_schema

    runner = FakeRunner()
    assert apply_schema(runner) == len(SCHEMA_STATEMENTS)
    created = [sql for sql, _ in runner.conn.statements if sql.startswith("CREATE TABLE")]
    assert len(created) == 5
    assert runner.operations == ["schema.apply"]


def test_postgres_backed_store_wires_postgres_repositories(monkeypatch):
    from dealroom.store import PostgresBackedStore

    runner = FakeRunner()
    monkeypatch.setattr("dealroom.store.PostgresTxRunner", lambda dsn: runner)
    store = PostgresBackedStore(dsn="postgresql://dealroom@localhost/dealroom")
    assert isinstance(store.transactions_repository, PostgresTransactionsRepository)
    assert isinstance(store.tasks_repository, PostgresTasksRepository)
    assert isinstance(store.closure_requests_repository, PostgresClosureRequestsRepository)
    assert runner.operations == ["schema.apply"]

    store.reset()
    assert runner.conn.statements[-1][0] == "TRUNCATE transactions, tasks, documents, complaints, closure_requests"


def test_closure_requests_lookup_by_transaction_and_scoped_list():
    runner = FakeRunner()
    repo = PostgresClosureRequestsRepository(tx_runner=runner)
    runner.conn.one.append(
        (
            "clr_1",
            "TR-1",
            "pending",
            "all clear",
            None,
            "tc_1",
            "2026-03-01T00:00:00+00:00",
            None,
            None,
            "2026-03-01T00:00:00+00:00",
            "2026-03-01T00:00:00+00:00",
        )
    )
    found = repo.get_by_transaction(transaction_id="TR-1")
    assert found["closure_request_id"] == "clr_1"
    assert found["status"] == "pending"
    sql, params = runner.conn.statements[-1]
    assert "WHERE transaction_id = %s LIMIT 1" in sql
    assert params == ("TR-1",)

    repo.list(transaction_ids=["TR-1", "TR-2"], statuses=["approved"])
    sql, params = runner.conn.statements[-1]
    assert "transaction_id = ANY(%s) AND status = ANY(%s)" in sql
    assert "ORDER BY submitted_at DESC" in sql
    assert params == (["TR-1", "TR-2"], ["approved"])
    assert runner.operations == ["closure_requests.get_by_transaction", "closure_requests.list"]
