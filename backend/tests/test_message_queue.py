"""Tests for MessageQueue ordering, stats and clearing."""

from __future__ import annotations

from agent_runtime.agent.queue import (
    MessageKind,
    MessagePriority,
    MessageQueue,
    QueuedMessage,
)


def _msg(content: str, priority=MessagePriority.NORMAL, kind=MessageKind.USER, ts: float = 0.0):
    return QueuedMessage(content=content, kind=kind, priority=priority, timestamp=ts)


def test_stats_and_high_priority_first():
    queue = MessageQueue()
    queue.enqueue(_msg("first", ts=1.0))
    queue.enqueue(_msg("second", ts=2.0))
    queue.enqueue(_msg("urgent", MessagePriority.HIGH, ts=3.0))

    stats = queue.stats()
    assert stats.queue_length == 3
    assert stats.high_priority_count == 1
    assert stats.oldest_message_age is not None

    assert queue.dequeue_next().content == "urgent"
    assert queue.dequeue_next().content == "first"
    assert queue.dequeue_next().content == "second"
    assert queue.dequeue_next() is None


def test_empty_queue_stats():
    stats = MessageQueue().stats()
    assert stats.queue_length == 0
    assert stats.high_priority_count == 0
    assert stats.oldest_message_age is None


def test_fifo_within_tier_with_identical_timestamps():
    queue = MessageQueue()
    for name in ("a", "b", "c"):
        queue.enqueue(_msg(name, ts=5.0))
    queue.enqueue(_msg("h1", MessagePriority.HIGH, ts=5.0))
    queue.enqueue(_msg("h2", MessagePriority.HIGH, ts=5.0))

    assert [m.content for m in queue.contents()] == ["h1", "h2", "a", "b", "c"]
    assert queue.peek().content == "h1"
    assert len(queue) == 5


def test_clear_drops_only_user_messages_by_default():
    queue = MessageQueue()
    queue.enqueue(_msg("user one"))
    queue.enqueue(_msg("build finished", kind=MessageKind.TASK_NOTIFICATION))
    queue.enqueue(_msg("be brief", kind=MessageKind.SYSTEM))
    queue.enqueue(_msg("user two", MessagePriority.HIGH))

    removed = queue.clear()

    assert removed == 2
    assert [m.content for m in queue.contents()] == ["build finished", "be brief"]
    assert queue.clear(None) == 2
    assert len(queue) == 0


def test_clear_with_custom_predicate():
    queue = MessageQueue()
    queue.enqueue(_msg("keep"))
    queue.enqueue(_msg("drop", MessagePriority.HIGH))

    removed = queue.clear(lambda m: m.priority == MessagePriority.HIGH)

    assert removed == 1
    assert [m.content for m in queue.contents()] == ["keep"]


def test_to_dict():
    message = _msg("hello", MessagePriority.HIGH)
    data = message.to_dict()
    assert data["content"] == "hello"
    assert data["priority"] == "high"
    assert data["kind"] == "user"
    assert data["id"].startswith("msg_")
