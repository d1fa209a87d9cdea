from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from dealroom.db.postgres import PostgresTxRunner

_COLUMNS: tuple[str, ...] = (
    "task_id",
    "transaction_id",
    "title",
    "description",
    "agent_id",
    "assigned_by",
    "status",
    "priority",
    "due_date",
    "ai_reminder",
    "created_at",
    "updated_at",
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryTasksRepository:
    def __init__(self, tasks: dict[str, dict[str, Any]]) -> None:
        self._tasks = tasks

    def upsert(self, *, task: dict[str, Any]) -> dict[str, Any]:
        item = dict(task)
        self._tasks[str(item["task_id"])] = item
        return dict(item)

    def get(self, *, task_id: str) -> dict[str, Any] | None:
        row = self._tasks.get(task_id)
        if row is None:
            return None
        return dict(row)

    def find_by_transaction(self, *, transaction_id: str) -> list[dict[str, Any]]:
        return self.list(transaction_id=transaction_id)

    def list(
        self,
        *,
        transaction_id: str | None = None,
        agent_id: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        include = set(statuses) if statuses is not None else None
        items = [
            dict(row)
            for row in self._tasks.values()
            if (transaction_id is None or row.get("transaction_id") == transaction_id)
            and (agent_id is None or row.get("agent_id") == agent_id)
            and (include is None or row.get("status") in include)
        ]
        return sorted(items, key=lambda x: str(x.get("created_at", "")))


class PostgresTasksRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "tasks") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    @staticmethod
    def _row_to_dict(row: tuple) -> dict[str, Any]:
        item = dict(zip(_COLUMNS, row))
        item["ai_reminder"] = bool(item.get("ai_reminder"))
        return item

    def upsert(self, *, task: dict[str, Any]) -> dict[str, Any]:
        item = dict(task)
        updates = ",\n                ".join(f"{col} = EXCLUDED.{col}" for col in _COLUMNS[1:])
        sql = f"""
            INSERT INTO {self._table_name} ({", ".join(_COLUMNS)})
            VALUES ({", ".join(["%s"] * len(_COLUMNS))})
            ON CONFLICT(task_id) DO UPDATE SET
                {updates}
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(item.get(col) for col in _COLUMNS))
            return item

        return self._tx_runner.run_in_tx(fn=_op, operation="tasks.upsert")

    def get(self, *, task_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            WHERE task_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (task_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return self._row_to_dict(row)

        return self._tx_runner.run_in_tx(fn=_op, operation="tasks.get")

    def find_by_transaction(self, *, transaction_id: str) -> list[dict[str, Any]]:
        return self.list(transaction_id=transaction_id)

    def list(
        self,
        *,
        transaction_id: str | None = None,
        agent_id: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if transaction_id is not None:
            clauses.append("transaction_id = %s")
            params.append(transaction_id)
        if agent_id is not None:
            clauses.append("agent_id = %s")
            params.append(agent_id)
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
            return [self._row_to_dict(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op, operation="tasks.list")
