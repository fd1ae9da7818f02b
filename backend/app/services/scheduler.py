from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.permissions import Actor
from app.database import SessionLocal
from app.models import RoleName
from app.services.lifecycle_service import ActionContext, run_due_payment_rules
from app.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger("investplan.scheduler")

DEFAULT_DAILY_UTC_HOUR = 6
REMINDERS_LOCK_KEY = 734101  # stable key for the daily reminder job

SYSTEM_ACTOR = Actor.of("system:scheduler", [RoleName.system_admin])


def _try_pg_advisory_lock(db: Session, key: int) -> bool:
    """Best-effort distributed lock for Postgres. On other DBs, returns True (no-op)."""

    if db.get_bind().dialect.name != "postgresql":
        return True
    return bool(db.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": int(key)}).scalar())


def _unlock_pg_advisory_lock(db: Session, key: int) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": int(key)})


def run_daily_reminders(
    dispatcher: NotificationDispatcher,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    now: datetime | None = None,
) -> int:
    """Run the due/overdue rules once. Returns how many reminders were queued."""

    db = session_factory()
    try:
        if not _try_pg_advisory_lock(db, REMINDERS_LOCK_KEY):
            logger.info("daily_reminders_skipped_locked")
            return 0
        try:
            ctx = ActionContext(actor=SYSTEM_ACTOR, dispatcher=dispatcher, now=now)
            queued = run_due_payment_rules(db, ctx)
            return len(queued)
        finally:
            _unlock_pg_advisory_lock(db, REMINDERS_LOCK_KEY)
    finally:
        db.close()


class DailyJobRunner:
    """
    Minimal dependency-free daily scheduler.
    NOTE: In multi-worker setups, each worker will start this thread.
    We mitigate duplicates via a Postgres advisory lock and per-day dedup.
    """

    def __init__(
        self, dispatcher: NotificationDispatcher, hour_utc: int = DEFAULT_DAILY_UTC_HOUR
    ) -> None:
        self.dispatcher = dispatcher
        self.hour_utc = int(hour_utc)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="daily-reminders", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = datetime.now(timezone.utc)
            next_run = now.replace(hour=self.hour_utc, minute=0, second=0, microsecond=0)
            if next_run <= now:
                next_run = next_run + timedelta(days=1)

            wait_s = max(0.0, (next_run - now).total_seconds())
            logger.info(
                "scheduler_wait",
                extra={"next_run_utc": next_run.isoformat(), "wait_seconds": int(wait_s)},
            )
            if self._stop.wait(wait_s):
                break

            try:
                queued = run_daily_reminders(self.dispatcher)
                logger.info("daily_reminders_ok", extra={"queued": queued})
            except Exception as exc:
                logger.exception("daily_reminders_failed", extra={"error": str(exc)})
