from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from dealroom.db.postgres import PostgresTxRunner

_COLUMNS: tuple[str, ...] = (
    "closure_request_id",
    "transaction_id",
    "status",
    "notes",
    "broker_notes",
    "submitted_by",
    "submitted_at",
    "decided_by",
    "decided_at",
    "created_at",
    "updated_at",
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryClosureRequestsRepository:
    def __init__(self, closure_requests: dict[str, dict[str, Any]]) -> None:
        self._closure_requests = closure_requests

    def upsert(self, *, closure_request: dict[str, Any]) -> dict[str, Any]:
        item = dict(closure_request)
        self._closure_requests[str(item["closure_request_id"])] = item
        return dict(item)

    def get(self, *, closure_request_id: str) -> dict[str, Any] | None:
        row = self._closure_requests.get(closure_request_id)
        if row is None:
            return None
        return dict(row)

    def get_by_transaction(self, *, transaction_id: str) -> dict[str, Any] | None:
        for row in self._closure_requests.values():
            if row.get("transaction_id") == transaction_id:
                return dict(row)
        return None

    def list(
        self,
        *,
        transaction_ids: Iterable[str] | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        scope = set(transaction_ids) if transaction_ids is not None else None
        include = set(statuses) if statuses is not None else None
        items = [
            dict(row)
            for row in self._closure_requests.values()
            if (scope is None or row.get("transaction_id") in scope)
            and (include is None or row.get("status") in include)
        ]
        return sorted(items, key=lambda x: str(x.get("submitted_at", "")), reverse=True)


class PostgresClosureRequestsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "closure_requests") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def upsert(self, *, closure_request: dict[str, Any]) -> dict[str, Any]:
        item = dict(closure_request)
        updates = ",\n                ".join(f"{col} = EXCLUDED.{col}" for col in _COLUMNS[1:])
        sql = f"""
            INSERT INTO {self._table_name} ({", ".join(_COLUMNS)})
            VALUES ({", ".join(["%s"] * len(_COLUMNS))})
            ON CONFLICT(closure_request_id) DO UPDATE SET
                {updates}
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(item.get(col) for col in _COLUMNS))
            return item

        return self._tx_runner.run_in_tx(fn=_op, operation="closure_requests.upsert")

    def _get_one(self, *, column: str, value: str, operation: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            WHERE {column} = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (value,))
                row = cur.fetchone()
            if row is None:
                return None
            return dict(zip(_COLUMNS, row))

        return self._tx_runner.run_in_tx(fn=_op, operation=operation)

    def get(self, *, closure_request_id: str) -> dict[str, Any] | None:
        return self._get_one(column="closure_request_id", value=closure_request_id, operation="closure_requests.get")

    def get_by_transaction(self, *, transaction_id: str) -> dict[str, Any] | None:
        return self._get_one(
            column="transaction_id",
            value=transaction_id,
            operation="closure_requests.get_by_transaction",
        )

    def list(
        self,
        *,
        transaction_ids: Iterable[str] | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if transaction_ids is not None:
            clauses.append("transaction_id = ANY(%s)")
            params.append(list(transaction_ids))
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append(list(statuses))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            {where}
            ORDER BY submitted_at DESC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [dict(zip(_COLUMNS, row)) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op, operation="closure_requests.list")
