from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from dealroom.db.postgres import PostgresTxRunner

_COLUMNS: tuple[str, ...] = (
    "complaint_id",
    "transaction_id",
    "title",
    "description",
    "submitted_by",
    "submitter_role",
    "status",
    "priority",
    "response",
    "response_by",
    "response_date",
    "created_at",
    "updated_at",
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryComplaintsRepository:
    def __init__(self, complaints: dict[str, dict[str, Any]]) -> None:
        self._complaints = complaints

    def upsert(self, *, complaint: dict[str, Any]) -> dict[str, Any]:
        item = dict(complaint)
        self._complaints[str(item["complaint_id"])] = item
        return dict(item)

    def get(self, *, complaint_id: str) -> dict[str, Any] | None:
        row = self._complaints.get(complaint_id)
        if row is None:
            return None
        return dict(row)

    def find_by_transaction(self, *, transaction_id: str) -> list[dict[str, Any]]:
        return self.list(transaction_id=transaction_id)

    def list(
        self,
        *,
        transaction_id: str | None = None,
        submitted_by: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        include = set(statuses) if statuses is not None else None
        items = [
            dict(row)
            for row in self._complaints.values()
            if (transaction_id is None or row.get("transaction_id") == transaction_id)
            and (submitted_by is None or row.get("submitted_by") == submitted_by)
            and (include is None or row.get("status") in include)
        ]
        return sorted(items, key=lambda x: str(x.get("created_at", "")))


class PostgresComplaintsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "complaints") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def upsert(self, *, complaint: dict[str, Any]) -> dict[str, Any]:
        item = dict(complaint)
        updates = ",\n                ".join(f"{col} = EXCLUDED.{col}" for col in _COLUMNS[1:])
        sql = f"""
            INSERT INTO {self._table_name} ({", ".join(_COLUMNS)})
            VALUES ({", ".join(["%s"] * len(_COLUMNS))})
            ON CONFLICT(complaint_id) DO UPDATE SET
                {updates}
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(item.get(col) for col in _COLUMNS))
            return item

        return self._tx_runner.run_in_tx(fn=_op, operation="complaints.upsert")

    def get(self, *, complaint_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            WHERE complaint_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (complaint_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return dict(zip(_COLUMNS, row))

        return self._tx_runner.run_in_tx(fn=_op, operation="complaints.get")

    def find_by_transaction(self, *, transaction_id: str) -> list[dict[str, Any]]:
        return self.list(transaction_id=transaction_id)

    def list(
        self,
        *,
        transaction_id: str | None = None,
        submitted_by: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if transaction_id is not None:
            clauses.append("transaction_id = %s")
            params.append(transaction_id)
        if submitted_by is not None:
            clauses.append("submitted_by = %s")
            params.append(submitted_by)
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append(list(statuses))
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
            return [dict(zip(_COLUMNS, row)) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op, operation="complaints.list")
