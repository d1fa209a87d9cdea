from __future__ import annotations

import re
import threading
from collections.abc import Iterable
from typing import Any

from dealroom.db.postgres import PostgresTxRunner

_COLUMNS: tuple[str, ...] = (
    "transaction_id",
    "agent_id",
    "broker_id",
    "transaction_coordinator_id",
    "client_name",
    "client_email",
    "client_phone",
    "transaction_type",
    "property_address",
    "city",
    "state",
    "zip_code",
    "price",
    "closing_date",
    "status",
    "notes",
    "created_at",
    "updated_at",
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryTransactionsRepository:
    def __init__(self, transactions: dict[str, dict[str, Any]], *, lock: threading.RLock | None = None) -> None:
        self._transactions = transactions
        self._lock = lock or threading.RLock()

    def upsert(self, *, transaction: dict[str, Any]) -> dict[str, Any]:
        item = dict(transaction)
        with self._lock:
            self._transactions[str(item["transaction_id"])] = item
        return dict(item)

    def get(self, *, transaction_id: str) -> dict[str, Any] | None:
        row = self._transactions.get(transaction_id)
        if row is None:
            return None
        return dict(row)

    def list(
        self,
        *,
        agent_id: str | None = None,
        broker_id: str | None = None,
        statuses: Iterable[str] | None = None,
        exclude_statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        include = set(statuses) if statuses is not None else None
        exclude = set(exclude_statuses or ())
        items = []
        for row in self._transactions.values():
            if agent_id is not None and row.get("agent_id") != agent_id:
                continue
            if broker_id is not None and row.get("broker_id") != broker_id:
                continue
            if include is not None and row.get("status") not in include:
                continue
            if row.get("status") in exclude:
                continue
            items.append(dict(row))
        return sorted(items, key=lambda x: str(x.get("created_at", "")))

    def advance_status(
        self,
        *,
        transaction_id: str,
        new_status: str,
        blocked_statuses: Iterable[str],
        updated_at: str,
    ) -> dict[str, Any] | None:
        """Set status unless the stored status is one of ``blocked_statuses``; None when nothing changed."""
        blocked = set(blocked_statuses)
        with self._lock:
            row = self._transactions.get(transaction_id)
            if row is None or row.get("status") in blocked:
                return None
            row["status"] = new_status
            row["updated_at"] = updated_at
            return dict(row)


class PostgresTransactionsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "transactions") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    @staticmethod
    def _row_to_dict(row: tuple) -> dict[str, Any]:
        item = dict(zip(_COLUMNS, row))
        if item.get("price") is not None:
            item["price"] = float(item["price"])
        return item

    def upsert(self, *, transaction: dict[str, Any]) -> dict[str, Any]:
        item = dict(transaction)
        columns = ", ".join(_COLUMNS)
        placeholders = ", ".join(["%s"] * len(_COLUMNS))
        updates = ",\n                ".join(f"{col} = EXCLUDED.{col}" for col in _COLUMNS[1:])
        sql = f"""
            INSERT INTO {self._table_name} ({columns})
            VALUES ({placeholders})
            ON CONFLICT(transaction_id) DO UPDATE SET
                {updates}
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(item.get(col) for col in _COLUMNS))
            return item

        return self._tx_runner.run_in_tx(fn=_op, operation="transactions.upsert")

    def get(self, *, transaction_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            WHERE transaction_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (transaction_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return self._row_to_dict(row)

        return self._tx_runner.run_in_tx(fn=_op, operation="transactions.get")

    def list(
        self,
        *,
        agent_id: str | None = None,
        broker_id: str | None = None,
        statuses: Iterable[str] | None = None,
        exclude_statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if agent_id is not None:
            clauses.append("agent_id = %s")
            params.append(agent_id)
        if broker_id is not None:
            clauses.append("broker_id = %s")
            params.append(broker_id)
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append(list(statuses))
        excluded = list(exclude_statuses or ())
        if excluded:
            clauses.append("NOT (status = ANY(%s))")
            params.append(excluded)
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

        return self._tx_runner.run_in_tx(fn=_op, operation="transactions.list")

    def advance_status(
        self,
        *,
        transaction_id: str,
        new_status: str,
        blocked_statuses: Iterable[str],
        updated_at: str,
    ) -> dict[str, Any] | None:
        sql = f"""
            UPDATE {self._table_name}
            SET status = %s, updated_at = %s
            WHERE transaction_id = %s AND NOT (status = ANY(%s))
            RETURNING {", ".join(_COLUMNS)}
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (new_status, updated_at, transaction_id, list(blocked_statuses)))
                row = cur.fetchone()
            if row is None:
                return None
            return self._row_to_dict(row)

        return self._tx_runner.run_in_tx(fn=_op, operation="transactions.advance_status")
