from __future__ import annotations

from typing import Any

from dealroom.db.postgres import PostgresTxRunner

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS transactions (
        transaction_id TEXT PRIMARY KEY,
        agent_id TEXT NOT NULL,
        broker_id TEXT NOT NULL,
        transaction_coordinator_id TEXT,
        client_name TEXT NOT NULL,
        client_email TEXT NOT NULL,
        client_phone TEXT NOT NULL,
        transaction_type TEXT NOT NULL,
        property_address TEXT NOT NULL,
        city TEXT NOT NULL,
        state TEXT NOT NULL,
        zip_code TEXT NOT NULL,
        price NUMERIC(14, 2) NOT NULL,
        closing_date TEXT NOT NULL,
        status TEXT NOT NULL,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_broker_id ON transactions (broker_id)",
    """
    CREATE TABLE IF NOT EXISTS tasks (
        task_id TEXT PRIMARY KEY,
        transaction_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        agent_id TEXT,
        assigned_by TEXT,
        status TEXT NOT NULL,
        priority TEXT NOT NULL,
        due_date TEXT NOT NULL,
        ai_reminder BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_transaction_id ON tasks (transaction_id)",
    """
    CREATE TABLE IF NOT EXISTS documents (
        document_id TEXT PRIMARY KEY,
        transaction_id TEXT NOT NULL,
        agent_id TEXT NOT NULL,
        document_type TEXT NOT NULL,
        file_name TEXT NOT NULL,
        file_size BIGINT NOT NULL,
        file_url TEXT NOT NULL,
        status TEXT NOT NULL,
        ai_verified BOOLEAN NOT NULL DEFAULT FALSE,
        ai_score DOUBLE PRECISION,
        issues JSONB NOT NULL DEFAULT '[]'::jsonb,
        comments TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_transaction_id ON documents (transaction_id)",
    """
    CREATE TABLE IF NOT EXISTS complaints (
        complaint_id TEXT PRIMARY KEY,
        transaction_id TEXT,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        submitted_by TEXT NOT NULL,
        submitter_role TEXT NOT NULL,
        status TEXT NOT NULL,
        priority TEXT NOT NULL,
        response TEXT,
        response_by TEXT,
        response_date TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_complaints_transaction_id ON complaints (transaction_id)",
    """
    CREATE TABLE IF NOT EXISTS closure_requests (
        closure_request_id TEXT PRIMARY KEY,
        transaction_id TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        notes TEXT,
        broker_notes TEXT,
        submitted_by TEXT NOT NULL,
        submitted_at TEXT NOT NULL,
        decided_by TEXT,
        decided_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


def apply_schema(tx_runner: PostgresTxRunner) -> int:
    def _op(conn: Any) -> int:
        with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
        return len(SCHEMA_STATEMENTS)

    return tx_runner.run_in_tx(fn=_op, operation="schema.apply")
