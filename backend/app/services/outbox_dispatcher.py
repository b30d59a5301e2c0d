# Overview: Background relay from outbox_events to the in-process event bus.

from __future__ import annotations

import threading
from dataclasses import dataclass

from flask import current_app, has_app_context

from ..extensions import db
from .domain_events import DomainEvent
from .event_bus import EventBus
from .outbox_service import fetch_unsent, mark_sent, record_delivery_failure


@dataclass
class DispatchReport:
    fetched: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "fetched": self.fetched,
            "delivered": self.delivered,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class OutboxDispatcher:
    """
    Polls outbox_events and delivers unsent rows to the EventBus.

    LIFECYCLE:
    - start(): one daemon worker thread, one tick every interval_ms
    - stop(): signal the worker and join it (the current tick finishes);
      if the join times out the handle is kept and running stays True
    - run_once(): one tick, synchronously (CLI, tests)

    Ticks are single-flight: a tick that finds another tick in progress
    (worker or manual) returns a skipped report instead of overlapping it.

    DELIVERY: at-least-once. A row is marked sent only after every
    subscriber handled it; on failure it stays unsent, attempts is bumped,
    and the next tick retries it. A failing row never blocks the rows
    behind it.
    """

    def __init__(self, app, bus: EventBus, *, interval_ms: int = 500, batch_size: int = 100):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.app = app
        self.bus = bus
        self.interval_ms = interval_ms
        self.batch_size = batch_size

        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="outbox-dispatcher", daemon=True)
        self._thread.start()
        self.app.logger.info("Outbox dispatcher started (interval=%sms, batch=%s)", self.interval_ms, self.batch_size)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                # Keep the handle so start() cannot spawn a second worker
                self.app.logger.warning("Outbox dispatcher still finishing a tick after %ss", timeout)
                return
        self._thread = None
        self.app.logger.info("Outbox dispatcher stopped")

    def run_once(self) -> DispatchReport:
        if not self._tick_lock.acquire(blocking=False):
            return DispatchReport(skipped=True)
        try:
            if has_app_context() and current_app._get_current_object() is self.app:
                return self._tick()
            with self.app.app_context():
                return self._tick()
        finally:
            self._tick_lock.release()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                # Database unavailable etc.; try again next tick
                self.app.logger.exception("Outbox dispatcher tick failed")
            self._stop_event.wait(self.interval_ms / 1000.0)

    def _tick(self) -> DispatchReport:
        report = DispatchReport()

        rows = fetch_unsent(self.batch_size)
        events = [DomainEvent.from_row(row) for row in rows]
        # End the read transaction before handlers open their own
        db.session.commit()
        report.fetched = len(events)

        for event in events:
            try:
                self.bus.publish(event)
            except Exception as exc:
                db.session.rollback()
                record_delivery_failure(event.outbox_id, exc)
                db.session.commit()
                report.failed += 1
                self.app.logger.exception(
                    "Outbox delivery failed: id=%s type=%s", event.outbox_id, event.event_type
                )
                continue

            mark_sent(event.outbox_id)
            db.session.commit()
            report.delivered += 1

        if report.fetched:
            self.app.logger.debug(
                "Outbox tick: fetched=%d delivered=%d failed=%d",
                report.fetched, report.delivered, report.failed,
            )
        return report
