from __future__ import annotations

import json
import re
from typing import Any

from dealroom.db.postgres import PostgresTxRunner

_COLUMNS: tuple[str, ...] = (
    "document_id",
    "transaction_id",
    "agent_id",
    "document_type",
    "file_name",
    "file_size",
    "file_url",
    "status",
    "ai_verified",
    "ai_score",
    "issues",
    "comments",
    "created_at",
    "updated_at",
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryDocumentsRepository:
    def __init__(self, documents: dict[str, dict[str, Any]]) -> None:
        self._documents = documents

    def upsert(self, *, document: dict[str, Any]) -> dict[str, Any]:
        item = dict(document)
        item["issues"] = list(item.get("issues") or [])
        self._documents[str(item["document_id"])] = item
        return dict(item)

    def get(self, *, document_id: str) -> dict[str, Any] | None:
        row = self._documents.get(document_id)
        if row is None:
            return None
        return {**row, "issues": list(row.get("issues") or [])}

    def find_by_transaction(self, *, transaction_id: str) -> list[dict[str, Any]]:
        return self.list(transaction_id=transaction_id)

    def list(self, *, transaction_id: str | None = None, agent_id: str | None = None) -> list[dict[str, Any]]:
        items = [
            {**row, "issues": list(row.get("issues") or [])}
            for row in self._documents.values()
            if (transaction_id is None or row.get("transaction_id") == transaction_id)
            and (agent_id is None or row.get("agent_id") == agent_id)
        ]
        return sorted(items, key=lambda x: str(x.get("created_at", "")))


class PostgresDocumentsRepository:
    """Documents repository for postgres backend; ``issues`` is stored as JSONB."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "documents") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    @staticmethod
    def _row_to_dict(row: tuple) -> dict[str, Any]:
        item = dict(zip(_COLUMNS, row))
        issues = item.get("issues")
        if isinstance(issues, str):
            issues = json.loads(issues)
        item["issues"] = issues if isinstance(issues, list) else []
        item["ai_verified"] = bool(item.get("ai_verified"))
        if item.get("ai_score") is not None:
            item["ai_score"] = float(item["ai_score"])
        return item

    def upsert(self, *, document: dict[str, Any]) -> dict[str, Any]:
        item = dict(document)
        item["issues"] = list(item.get("issues") or [])
        placeholders = ", ".join("%s::jsonb" if col == "issues" else "%s" for col in _COLUMNS)
        updates = ",\n                ".join(f"{col} = EXCLUDED.{col}" for col in _COLUMNS[1:])
        sql = f"""
            INSERT INTO {self._table_name} ({", ".join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(document_id) DO UPDATE SET
                {updates}
        """

        def _op(conn: Any) -> dict[str, Any]:
            params = tuple(
                json.dumps(item["issues"], ensure_ascii=True) if col == "issues" else item.get(col)
                for col in _COLUMNS
            )
            with conn.cursor() as cur:
                cur.execute(sql, params)
            return item

        return self._tx_runner.run_in_tx(fn=_op, operation="documents.upsert")

    def get(self, *, document_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            WHERE document_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return self._row_to_dict(row)

        return self._tx_runner.run_in_tx(fn=_op, operation="documents.get")

    def find_by_transaction(self, *, transaction_id: str) -> list[dict[str, Any]]:
        return self.list(transaction_id=transaction_id)

    def list(self, *, transaction_id: str | None = None, agent_id: str | None = None) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if transaction_id is not None:
            clauses.append("transaction_id = %s")
            params.append(transaction_id)
        if agent_id is not None:
            clauses.append("agent_id = %s")
            params.append(agent_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            {where}
            ORDER BY created_at ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [self._row_to_dict(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op, operation="documents.list")
