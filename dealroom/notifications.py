from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from dealroom.runtime_profile import true_stack_required

logger = logging.getLogger(__name__)

EVENT_TRANSACTION_READY_FOR_CLOSURE = "transaction_ready_for_closure"
EVENT_TRANSACTION_STATUS_UPDATED = "transaction_status_updated"
EVENT_TASK_CREATED = "task_created"
EVENT_TASK_UPDATED = "task_updated"
EVENT_TASK_COMPLETED = "task_completed"
EVENT_DOCUMENT_UPDATED = "document_updated"
EVENT_COMPLAINT_UPDATED = "complaint_updated"
EVENT_CLOSURE_REQUEST_SUBMITTED = "closure_request_submitted"
EVENT_CLOSURE_REQUEST_UPDATED = "closure_request_updated"
EVENT_DOCUMENT_REMINDER = "document_reminder"

TC_ROOM = "tc"


def rooms_for(payload: Mapping[str, Any]) -> list[str]:
    """Every event reaches the coordinators; agent and broker rooms are added when the payload names them."""
    rooms = [TC_ROOM]
    agent_id = str(payload.get("agent_id") or "").strip()
    if agent_id:
        rooms.append(f"agent:{agent_id}")
    broker_id = str(payload.get("broker_id") or "").strip()
    if broker_id:
        rooms.append(f"broker:{broker_id}")
    return rooms


@dataclass
class NotificationMessage:
    message_id: str
    room: str
    event: str
    payload: dict[str, Any]
    published_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def as_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "room": self.room,
            "event": self.event,
            "payload": self.payload,
            "published_at": self.published_at,
        }


class InMemoryNotificationPublisher:
    """Keeps delivered messages per room; used in tests and single-process deployments."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rooms: dict[str, list[NotificationMessage]] = {}

    def publish(self, *, event: str, payload: dict[str, Any]) -> list[NotificationMessage]:
        delivered: list[NotificationMessage] = []
        with self._lock:
            for room in rooms_for(payload):
                msg = NotificationMessage(
                    message_id=f"ntf_{uuid.uuid4().hex[:12]}",
                    room=room,
                    event=event,
                    payload=dict(payload),
                )
                self._rooms.setdefault(room, []).append(msg)
                delivered.append(msg)
        return delivered

    def messages(self, *, room: str = TC_ROOM, event: str | None = None) -> list[NotificationMessage]:
        with self._lock:
            items = list(self._rooms.get(room, []))
        if event is not None:
            items = [x for x in items if x.event == event]
        return items

    def reset(self) -> None:
        with self._lock:
            self._rooms.clear()

    def close(self) -> None:
        return None


class NullNotificationPublisher:
    def publish(self, *, event: str, payload: dict[str, Any]) -> list[NotificationMessage]:
        return []

    def close(self) -> None:
        return None


def _import_redis() -> Any:
    try:
        import redis  # type: ignore
    except ImportError as exc:
        raise RuntimeError("redis is required for DEALROOM_NOTIFY_BACKEND=redis; install redis>=5") from exc
    return redis


class RedisNotificationPublisher:
    """Redis pub/sub fan-out; one channel per room."""

    def __init__(self, *, dsn: str, namespace: str = "dealroom", client: Any | None = None) -> None:
        if client is None and not dsn.strip():
            raise ValueError("REDIS_DSN must be provided for redis notification backend")
        self._namespace = namespace.strip() or "dealroom"
        if client is None:
            redis = _import_redis()
            client = redis.Redis.from_url(dsn.strip(), decode_responses=True)
        self._client = client

    def channel(self, room: str) -> str:
        return f"{self._namespace}:room:{room}"

    def publish(self, *, event: str, payload: dict[str, Any]) -> list[NotificationMessage]:
        delivered: list[NotificationMessage] = []
        for room in rooms_for(payload):
            msg = NotificationMessage(
                message_id=f"ntf_{uuid.uuid4().hex[:12]}",
                room=room,
                event=event,
                payload=dict(payload),
            )
            body = json.dumps(msg.as_dict(), ensure_ascii=True, sort_keys=True, default=str)
            receivers = self._client.publish(self.channel(room), body)
            logger.debug("notification_published event=%s room=%s receivers=%s", event, room, receivers)
            delivered.append(msg)
        return delivered

    def close(self) -> None:
        close_fn = getattr(self._client, "close", None)
        if callable(close_fn):
            close_fn()


def publish_quietly(publisher: Any, *, event: str, payload: dict[str, Any]) -> bool:
    """Fire-and-forget publish; delivery failures are logged, never raised."""
    try:
        publisher.publish(event=event, payload=payload)
    except Exception:
        logger.exception("notification_publish_failed event=%s", event)
        return False
    return True


def create_publisher_from_env(
    environ: Mapping[str, str] | None = None,
) -> InMemoryNotificationPublisher | NullNotificationPublisher | RedisNotificationPublisher:
    env = os.environ if environ is None else environ
    backend = env.get("DEALROOM_NOTIFY_BACKEND", "memory").strip().lower()
    if true_stack_required(env) and backend != "redis":
        raise RuntimeError("DEALROOM_NOTIFY_BACKEND must be redis when DEALROOM_REQUIRE_TRUESTACK=true")
    if backend == "memory":
        return InMemoryNotificationPublisher()
    if backend == "none":
        return NullNotificationPublisher()
    if backend == "redis":
        dsn = env.get("REDIS_DSN", "").strip()
        if not dsn:
            raise ValueError("REDIS_DSN must be set when DEALROOM_NOTIFY_BACKEND=redis")
        namespace = env.get("DEALROOM_NOTIFY_KEY_PREFIX", "dealroom")
        return RedisNotificationPublisher(dsn=dsn, namespace=namespace)
    raise RuntimeError(f"unsupported notification backend: {backend}")
