from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from app.services.snapshots import PendingNotification

logger = logging.getLogger("investplan.notifications")

# Handler receives the whole drained batch; a falsy return means "not delivered".
DeliveryHandler = Callable[[Sequence[PendingNotification]], Any]

DELIVERED = "delivered"
EMPTY = "empty"
BUSY = "busy"
FAILED = "failed"


@dataclass(frozen=True)
class DispatchResult:
    status: str
    notifications: tuple[PendingNotification, ...] = ()
    error: str | None = None

    @property
    def delivered_count(self) -> int:
        return len(self.notifications) if self.status == DELIVERED else 0


class NotificationDispatcher:
    """FIFO notification queue with a single, non-reentrant drain.

    One instance is built per application and kept on ``app.state``; tests
    construct their own. ``process`` takes the entire queue as one batch. A
    second ``process`` while a drain is in flight returns ``busy`` instead of
    delivering the same notifications again.
    """

    def __init__(self) -> None:
        self._queue: deque[PendingNotification] = deque()
        self._queue_lock = threading.Lock()
        self._drain_lock = threading.Lock()

    def enqueue(self, notification: PendingNotification) -> None:
        with self._queue_lock:
            self._queue.append(notification)

    def enqueue_many(self, notifications: Iterable[PendingNotification]) -> int:
        items = list(notifications)
        with self._queue_lock:
            self._queue.extend(items)
        return len(items)

    def pending(self) -> list[PendingNotification]:
        with self._queue_lock:
            return list(self._queue)

    def pending_count(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def is_empty(self) -> bool:
        return self.pending_count() == 0

    def is_processing(self) -> bool:
        return self._drain_lock.locked()

    def clear(self) -> int:
        with self._queue_lock:
            dropped = len(self._queue)
            self._queue.clear()
        if dropped:
            logger.info("notification_queue_cleared", extra={"dropped": dropped})
        return dropped

    def _take_all(self) -> tuple[PendingNotification, ...]:
        with self._queue_lock:
            batch = tuple(self._queue)
            self._queue.clear()
        return batch

    def _requeue_front(self, batch: Sequence[PendingNotification]) -> None:
        with self._queue_lock:
            self._queue.extendleft(reversed(batch))

    def process(self, handler: DeliveryHandler) -> DispatchResult:
        if not self._drain_lock.acquire(blocking=False):
            logger.info("notification_dispatch_busy")
            return DispatchResult(status=BUSY)

        try:
            batch = self._take_all()
            if not batch:
                return DispatchResult(status=EMPTY)

            try:
                delivered = handler(batch)
            except Exception as exc:
                self._requeue_front(batch)
                logger.exception(
                    "notification_dispatch_failed",
                    extra={"batch_size": len(batch), "error": str(exc)},
                )
                return DispatchResult(status=FAILED, notifications=batch, error=str(exc))

            if not delivered:
                self._requeue_front(batch)
                logger.warning(
                    "notification_dispatch_rejected", extra={"batch_size": len(batch)}
                )
                return DispatchResult(
                    status=FAILED, notifications=batch, error="handler reported no delivery"
                )

            logger.info("notification_dispatch_ok", extra={"batch_size": len(batch)})
            return DispatchResult(status=DELIVERED, notifications=batch)
        finally:
            self._drain_lock.release()
