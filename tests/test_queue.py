"""Assessment queue ordering, delay, and idempotence."""

from tradein.services.worker.queue import AssessmentQueue


def test_enqueue_is_idempotent(clock):
    queue = AssessmentQueue(clock=clock)

    assert queue.enqueue(1) is True
    assert queue.enqueue(1, priority=5) is False
    assert queue.queue_length() == 1
    assert queue.is_queued(1)


def test_higher_priority_first_then_fifo(clock):
    queue = AssessmentQueue(clock=clock)
    queue.enqueue(1)
    queue.enqueue(2, priority=2)
    queue.enqueue(3)
    queue.enqueue(4, priority=2)

    assert [queue.dequeue() for _ in range(4)] == [2, 4, 1, 3]
    assert queue.dequeue() is None


def test_delayed_items_wait_without_blocking_others(clock):
    queue = AssessmentQueue(clock=clock)
    queue.enqueue(1, priority=9, delay_minutes=5)
    queue.enqueue(2)

    assert queue.dequeue() == 2
    assert queue.dequeue() is None
    assert queue.is_queued(1)

    clock.advance(minutes=5)
    assert queue.dequeue() == 1
    assert queue.queue_length() == 0


def test_discard_removes_pending_item(clock):
    queue = AssessmentQueue(clock=clock)
    queue.enqueue(7)

    assert queue.discard(7) is True
    assert queue.discard(7) is False
    assert not queue.is_queued(7)
