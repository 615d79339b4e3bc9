"""Tests for the text/video waiting queues."""
from matchchat.relay.queues import QueueKind, QueueStore, WaitingEntry


def entry(cid: str, at: float = 0.0) -> WaitingEntry:
    return WaitingEntry(connection_id=cid, enqueued_at=at)


class TestQueueStore:
    def test_fifo_order(self):
        queues = QueueStore()
        for cid in ("a", "b", "c"):
            queues.enqueue(QueueKind.TEXT, entry(cid))

        assert [e.connection_id for e in queues.snapshot(QueueKind.TEXT)] == ["a", "b", "c"]

    def test_re_enqueue_keeps_single_entry_at_tail(self):
        queues = QueueStore()
        queues.enqueue(QueueKind.TEXT, entry("a", at=1.0))
        queues.enqueue(QueueKind.TEXT, entry("b", at=2.0))
        queues.enqueue(QueueKind.TEXT, entry("a", at=3.0))

        snapshot = queues.snapshot(QueueKind.TEXT)
        assert [e.connection_id for e in snapshot] == ["b", "a"]
        assert snapshot[1].enqueued_at == 3.0

    def test_enqueue_moves_between_kinds(self):
        queues = QueueStore()
        queues.enqueue(QueueKind.TEXT, entry("a"))
        queues.enqueue(QueueKind.VIDEO, entry("a"))

        assert queues.size(QueueKind.TEXT) == 0
        assert queues.kind_of("a") == QueueKind.VIDEO

    def test_remove(self):
        queues = QueueStore()
        queues.enqueue(QueueKind.VIDEO, entry("a"))

        assert queues.remove(QueueKind.TEXT, "a") is False
        assert queues.remove(QueueKind.VIDEO, "a") is True
        assert queues.kind_of("a") is None

    def test_snapshot_is_a_copy(self):
        queues = QueueStore()
        queues.enqueue(QueueKind.TEXT, entry("a"))

        queues.snapshot(QueueKind.TEXT).clear()

        assert queues.contains(QueueKind.TEXT, "a")

    def test_generation_counts_enqueues_per_kind(self):
        queues = QueueStore()
        queues.enqueue(QueueKind.TEXT, entry("a"))
        queues.enqueue(QueueKind.TEXT, entry("b"))
        queues.remove(QueueKind.TEXT, "a")

        assert queues.generation(QueueKind.TEXT) == 2
        assert queues.generation(QueueKind.VIDEO) == 0
