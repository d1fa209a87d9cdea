from __future__ import annotations

from pathlib import Path

import pytest

from dealroom.store import InMemoryStore, SqliteBackedStore, create_store_from_env


def _transaction_payload(transaction_id: str) -> dict:
    return {
        "transaction_id": transaction_id,
        "agent_id": "agent_store",
        "broker_id": "broker_store",
        "client_name": "Client",
        "client_email": "client@example.com",
        "client_phone": "555",
        "transaction_type": "Lease",
        "property_address": "9 Elm St",
        "city": "Boise",
        "state": "ID",
        "zip_code": "83702",
        "price": 2400,
        "closing_date": "2026-08-01",
    }


def test_sqlite_store_persists_closure_progress_across_instances(tmp_path: Path):
    db_path = tmp_path / "store.sqlite3"
    store1 = SqliteBackedStore(str(db_path))
    store1.create_transaction(payload=_transaction_payload("TR-S1"))
    task = store1.create_task(payload={"transaction_id": "TR-S1", "title": "Keys", "due_date": "2026-07-30"})
    doc = store1.register_document(
        payload={
            "transaction_id": "TR-S1",
            "agent_id": "agent_store",
            "document_type": "lease",
            "file_name": "lease.pdf",
            "file_url": "https://files.example.com/lease.pdf",
        }
    )
    store1.update_task(task_id=task["task_id"], payload={"status": "completed"})
    store1.review_document(document_id=doc["document_id"], status="approved")

    store2 = SqliteBackedStore(str(db_path))
    reloaded = store2.get_transaction(transaction_id="TR-S1")
    assert reloaded is not None
    assert reloaded["status"] == "ReadyForClosure"
    assert store2.get_task(task_id=task["task_id"])["status"] == "completed"
    assert store2.readiness.is_ready_for_closure("TR-S1") is True


def test_sqlite_store_reset_clears_snapshot(tmp_path: Path):
    db_path = tmp_path / "store.sqlite3"
    store1 = SqliteBackedStore(str(db_path))
    store1.create_transaction(payload=_transaction_payload("TR-S2"))
    store1.reset()
    assert SqliteBackedStore(str(db_path)).list_transactions() == []


def test_store_factory_defaults_to_in_memory():
    store = create_store_from_env({})
    assert type(store) is InMemoryStore


def test_store_factory_builds_sqlite_store(tmp_path: Path):
    store = create_store_from_env(
        {"DEALROOM_STORE_BACKEND": "sqlite", "DEALROOM_STORE_SQLITE_PATH": str(tmp_path / "s.sqlite3")}
    )
    assert isinstance(store, SqliteBackedStore)


def test_store_factory_rejects_bad_configuration():
    with pytest.raises(ValueError, match="POSTGRES_DSN"):
        create_store_from_env({"DEALROOM_STORE_BACKEND": "postgres"})
    with pytest.raises(RuntimeError, match="unsupported store backend"):
        create_store_from_env({"DEALROOM_STORE_BACKEND": "mongo"})
    with pytest.raises(RuntimeError, match="must be postgres"):
        create_store_from_env({"DEALROOM_REQUIRE_TRUESTACK": "1", "DEALROOM_STORE_BACKEND": "sqlite"})


def test_sqlite_store_persists_closure_requests(tmp_path: Path):
    db_path = tmp_path / "store.sqlite3"
    store1 = SqliteBackedStore(str(db_path))
    store1.create_transaction(payload=_transaction_payload("TR-S3"))
    task = store1.create_task(payload={"transaction_id": "TR-S3", "title": "Keys", "due_date": "2026-07-30"})
    doc = store1.register_document(
        payload={
            "transaction_id": "TR-S3",
            "agent_id": "agent_store",
            "document_type": "lease",
            "file_name": "lease.pdf",
            "file_url": "https://files.example.com/lease.pdf",
        }
    )
    store1.update_task(task_id=task["task_id"], payload={"status": "completed"})
    store1.review_document(document_id=doc["document_id"], status="approved")
    request = store1.forward_for_closure(transaction_id="TR-S3", submitted_by="tc_store")
    store1.decide_closure_request(closure_request_id=request["closure_request_id"], status="approved", decided_by="b")

    store2 = SqliteBackedStore(str(db_path))
    reloaded = store2.get_closure_request(closure_request_id=request["closure_request_id"])
    assert reloaded["status"] == "approved"
    store2.decide_closure_request(closure_request_id=request["closure_request_id"], status="completed", decided_by="b")
    assert SqliteBackedStore(str(db_path)).get_transaction(transaction_id="TR-S3")["status"] == "Closed"
