"""In-process, priority- and delay-aware queue of trade-in ids.

Nothing here is durable: pending items are lost on restart and recovered by
re-scanning trade-ins still in pre-assessment states.
"""

import itertools
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from tradein.common.clock import utcnow
from tradein.common.config import settings
from tradein.common.logging import logger
from tradein.common.metrics import assessment_queue_depth


@dataclass
class QueueItem:
    trade_in_id: int
    priority: int
    sequence: int
    not_before: datetime


class AssessmentQueue:
    """Higher `priority` first, then FIFO; an item is only handed out once `not_before` has passed."""

    def __init__(self, clock=utcnow) -> None:
        self.clock = clock
        self._items: dict[int, QueueItem] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count()

    def enqueue(self, trade_in_id: int, priority: int = 0, delay_minutes: float = 0) -> bool:
        """Add an id; returns False (no-op) when it is already queued."""

        with self._lock:
            if trade_in_id in self._items:
                logger.info("assessment enqueue skipped duplicate trade_in_id=%s", trade_in_id)
                return False
            not_before = self.clock() + timedelta(minutes=delay_minutes)
            self._items[trade_in_id] = QueueItem(trade_in_id, priority, next(self._sequence), not_before)
            depth = len(self._items)
        assessment_queue_depth.labels(service=settings.service_name).set(depth)
        logger.info(
            "assessment enqueued trade_in_id=%s priority=%s delay_minutes=%s depth=%s",
            trade_in_id,
            priority,
            delay_minutes,
            depth,
        )
        return True

    def dequeue(self) -> int | None:
        """Remove and return the best eligible id, or None if nothing is due yet."""

        now = self.clock()
        with self._lock:
            eligible = [item for item in self._items.values() if item.not_before <= now]
            if not eligible:
                return None
            best = min(eligible, key=lambda item: (-item.priority, item.sequence))
            del self._items[best.trade_in_id]
            depth = len(self._items)
        assessment_queue_depth.labels(service=settings.service_name).set(depth)
        logger.info("assessment dequeued trade_in_id=%s depth=%s", best.trade_in_id, depth)
        return best.trade_in_id

    def discard(self, trade_in_id: int) -> bool:
        with self._lock:
            removed = self._items.pop(trade_in_id, None) is not None
            depth = len(self._items)
        assessment_queue_depth.labels(service=settings.service_name).set(depth)
        return removed

    def queue_length(self) -> int:
        with self._lock:
            return len(self._items)

    def is_queued(self, trade_in_id: int) -> bool:
        with self._lock:
            return trade_in_id in self._items

    def __len__(self) -> int:
        return self.queue_length()
