import threading

import pytest

from app.models.domain import NotificationKind, RoleName
from app.services.notification_dispatcher import (
    BUSY,
    DELIVERED,
    EMPTY,
    FAILED,
    NotificationDispatcher,
)
from app.services.snapshots import PendingNotification

from conftest import NOW


def _note(n: int) -> PendingNotification:
    return PendingNotification(
        id=f"n-{n}",
        kind=NotificationKind.cashflow_confirmed,
        title=f"note {n}",
        entity_type="cashflow",
        entity_id=f"cf-{n}",
        created_at=NOW,
        recipient_role=RoleName.buchhaltung,
    )


def test_notification_needs_exactly_one_recipient():
    with pytest.raises(ValueError):
        PendingNotification(
            id="x",
            kind=NotificationKind.investment_approved,
            title="t",
            entity_type="investment",
            entity_id="i",
            created_at=NOW,
        )
    with pytest.raises(ValueError):
        PendingNotification(
            id="x",
            kind=NotificationKind.investment_approved,
            title="t",
            entity_type="investment",
            entity_id="i",
            created_at=NOW,
            recipient_role=RoleName.cfo,
            recipient_user_id="u1",
        )


def test_empty_queue():
    dispatcher = NotificationDispatcher()
    calls = []
    result = dispatcher.process(lambda batch: calls.append(batch) or True)
    assert result.status == EMPTY
    assert result.delivered_count == 0
    assert calls == []


def test_process_drains_whole_queue_once_in_fifo_order():
    dispatcher = NotificationDispatcher()
    dispatcher.enqueue(_note(1))
    assert dispatcher.enqueue_many([_note(2), _note(3)]) == 2
    assert dispatcher.pending_count() == 3

    batches = []
    result = dispatcher.process(lambda batch: batches.append(list(batch)) or True)

    assert result.status == DELIVERED
    assert result.delivered_count == 3
    assert [[n.id for n in b] for b in batches] == [["n-1", "n-2", "n-3"]]
    assert dispatcher.is_empty()
    assert dispatcher.process(lambda batch: True).status == EMPTY


def test_failing_handler_requeues_batch_at_front():
    dispatcher = NotificationDispatcher()
    dispatcher.enqueue_many([_note(1), _note(2)])

    def handler(batch):
        # Arrives while the failing batch is in flight.
        dispatcher.enqueue(_note(3))
        raise RuntimeError("mail relay down")

    result = dispatcher.process(handler)
    assert result.status == FAILED
    assert result.error == "mail relay down"
    assert result.delivered_count == 0
    assert [n.id for n in dispatcher.pending()] == ["n-1", "n-2", "n-3"]


def test_falsy_handler_result_counts_as_failure():
    dispatcher = NotificationDispatcher()
    dispatcher.enqueue(_note(1))
    result = dispatcher.process(lambda batch: 0)
    assert result.status == FAILED
    assert dispatcher.pending_count() == 1


def test_reentrant_process_reports_busy():
    dispatcher = NotificationDispatcher()
    dispatcher.enqueue(_note(1))
    inner = []

    def handler(batch):
        assert dispatcher.is_processing()
        inner.append(dispatcher.process(lambda b: True))
        return True

    result = dispatcher.process(handler)
    assert result.status == DELIVERED
    assert inner[0].status == BUSY
    assert inner[0].notifications == ()
    assert not dispatcher.is_processing()


def test_concurrent_second_call_never_delivers_same_batch():
    dispatcher = NotificationDispatcher()
    dispatcher.enqueue_many([_note(1), _note(2)])
    started = threading.Event()
    release = threading.Event()
    delivered = []

    def slow_handler(batch):
        started.set()
        release.wait(timeout=5)
        delivered.extend(n.id for n in batch)
        return True

    results = {}
    worker = threading.Thread(target=lambda: results.setdefault("first", dispatcher.process(slow_handler)))
    worker.start()
    assert started.wait(timeout=5)

    results["second"] = dispatcher.process(lambda batch: delivered.extend(n.id for n in batch) or True)
    release.set()
    worker.join(timeout=5)

    assert results["second"].status == BUSY
    assert results["first"].status == DELIVERED
    assert delivered == ["n-1", "n-2"]


def test_clear_drops_pending():
    dispatcher = NotificationDispatcher()
    dispatcher.enqueue_many([_note(1), _note(2)])
    assert dispatcher.clear() == 2
    assert dispatcher.is_empty()
