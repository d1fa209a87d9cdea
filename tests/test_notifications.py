from __future__ import annotations

import json

import pytest

from dealroom.notifications import (
    EVENT_TRANSACTION_READY_FOR_CLOSURE,
    InMemoryNotificationPublisher,
    NullNotificationPublisher,
    RedisNotificationPublisher,
    create_publisher_from_env,
    publish_quietly,
    rooms_for,
)


class FakeRedis:
    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []
        self.closed = False

    def publish(self, channel: str, body: str) -> int:
        self.published.append((channel, body))
        return 1

    def close(self) -> None:
        self.closed = True


def test_rooms_always_include_coordinators():
    assert rooms_for({}) == ["tc"]
    assert rooms_for({"agent_id": "a1", "broker_id": "b1"}) == ["tc", "agent:a1", "broker:b1"]
    assert rooms_for({"agent_id": "  "}) == ["tc"]


def test_in_memory_publisher_fans_out_per_room():
    publisher = InMemoryNotificationPublisher()
    delivered = publisher.publish(
        event=EVENT_TRANSACTION_READY_FOR_CLOSURE,
        payload={"transaction_id": "TR-1", "agent_id": "a1"},
    )
    assert [m.room for m in delivered] == ["tc", "agent:a1"]
    assert publisher.messages(room="tc")[0].payload["transaction_id"] == "TR-1"
    assert publisher.messages(room="agent:a1", event="task_created") == []
    publisher.reset()
    assert publisher.messages(room="tc") == []


def test_redis_publisher_writes_json_to_room_channels():
    fake = FakeRedis()
    publisher = RedisNotificationPublisher(dsn="", namespace="deals", client=fake)
    publisher.publish(event="task_updated", payload={"task": {"task_id": "t1"}, "agent_id": "a1"})
    assert [channel for channel, _ in fake.published] == ["deals:room:tc", "deals:room:agent:a1"]
    body = json.loads(fake.published[0][1])
    assert body["event"] == "task_updated"
    assert body["payload"]["task"]["task_id"] == "t1"
    publisher.close()
    assert fake.closed is True


def test_publish_quietly_swallows_delivery_failures(caplog):
    class Broken:
        def publish(self, *, event, payload):
            raise ConnectionError("down")

    with caplog.at_level("ERROR", logger="dealroom.notifications"):
        assert publish_quietly(Broken(), event="x", payload={}) is False
    assert "notification_publish_failed" in caplog.text
    assert publish_quietly(NullNotificationPublisher(), event="x", payload={}) is True


def test_publisher_factory_selects_backend():
    assert isinstance(create_publisher_from_env({}), InMemoryNotificationPublisher)
    assert isinstance(create_publisher_from_env({"DEALROOM_NOTIFY_BACKEND": "none"}), NullNotificationPublisher)
    with pytest.raises(ValueError, match="REDIS_DSN"):
        create_publisher_from_env({"DEALROOM_NOTIFY_BACKEND": "redis"})
    with pytest.raises(RuntimeError, match="unsupported"):
        create_publisher_from_env({"DEALROOM_NOTIFY_BACKEND": "carrier_pigeon"})
    with pytest.raises(RuntimeError, match="must be redis"):
        create_publisher_from_env({"DEALROOM_REQUIRE_TRUESTACK": "true"})
