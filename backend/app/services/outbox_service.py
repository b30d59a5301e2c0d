"""
Outbox Service: Transactional outbox store

WHY: Events announcing a state change must be durable exactly when the
change is. Writing them to outbox_events in the same transaction means a
rolled-back sale can never announce itself, and a committed sale can never
lose its announcement. Delivery happens later in OutboxDispatcher.

DESIGN:
- publish_via_outbox() only adds a row (no flush-and-commit)
- Rows are never updated except sent_at / attempts / last_error
- Delivered rows are deleted by cleanup_sent_events() (housekeeping only)
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import scoped_session

from ..extensions import db
from ..models import OutboxEvent
from ..time_utils import utcnow, days_ago, to_utc_z
from .domain_events import DomainEvent


# last_error is for operators, not a stack dump
MAX_ERROR_LENGTH = 2000


class OutboxError(Exception):
    """Raised when an event is published outside a transaction."""
    pass


def publish_via_outbox(event: DomainEvent, session=None) -> OutboxEvent:
    """
    Stage `event` in the outbox as part of the caller's transaction.

    The caller owns the transaction: the row becomes visible to the
    dispatcher only when the caller commits, and vanishes if the caller
    (or an enclosing savepoint) rolls back.

    Raises:
        OutboxError if `session` has no transaction in progress
    """
    session = session if session is not None else db.session
    # db.session is a registry proxy; the transaction lives on its current Session
    if isinstance(session, scoped_session):
        session = session()
    if not session.in_transaction():
        raise OutboxError(f"{event.event_type}: publish_via_outbox requires an active transaction")

    row = OutboxEvent(
        org_id=event.org_id,
        event_type=event.event_type,
        version=event.version,
        payload=dict(event.payload),
        created_at=utcnow(),
        attempts=0,
    )
    session.add(row)
    return row


def fetch_unsent(limit: int = 100) -> list[OutboxEvent]:
    """Undelivered rows, oldest first."""
    return (
        db.session.query(OutboxEvent)
        .filter(OutboxEvent.sent_at.is_(None))
        .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        .limit(limit)
        .all()
    )


def mark_sent(event_id: int) -> bool:
    """
    Set sent_at on a still-unsent row. Does not commit.

    Returns False if the row was already delivered (or deleted).
    """
    updated = (
        db.session.query(OutboxEvent)
        .filter(OutboxEvent.id == event_id, OutboxEvent.sent_at.is_(None))
        .update({OutboxEvent.sent_at: utcnow()}, synchronize_session=False)
    )
    return updated == 1


def record_delivery_failure(event_id: int, error: BaseException | str) -> None:
    """Bump attempts and store the error text. Does not commit."""
    message = str(error) or type(error).__name__
    if isinstance(error, BaseException):
        message = f"{type(error).__name__}: {message}"
    db.session.query(OutboxEvent).filter(OutboxEvent.id == event_id).update(
        {
            OutboxEvent.attempts: OutboxEvent.attempts + 1,
            OutboxEvent.last_error: message[:MAX_ERROR_LENGTH],
        },
        synchronize_session=False,
    )


def outbox_stats() -> dict:
    pending = db.session.query(func.count(OutboxEvent.id)).filter(OutboxEvent.sent_at.is_(None)).scalar() or 0
    sent = db.session.query(func.count(OutboxEvent.id)).filter(OutboxEvent.sent_at.isnot(None)).scalar() or 0
    failing = (
        db.session.query(func.count(OutboxEvent.id))
        .filter(OutboxEvent.sent_at.is_(None), OutboxEvent.attempts > 0)
        .scalar()
        or 0
    )
    oldest = db.session.query(func.min(OutboxEvent.created_at)).filter(OutboxEvent.sent_at.is_(None)).scalar()
    return {
        "pending": pending,
        "sent": sent,
        "failing": failing,
        "oldest_pending_at": to_utc_z(oldest),
    }


def cleanup_sent_events(retention_days: int = 7) -> int:
    """
    Delete rows delivered more than `retention_days` ago.

    Undelivered rows are never deleted, however old.
    """
    if retention_days < 0:
        raise ValueError("retention_days must be >= 0")

    cutoff = days_ago(retention_days)
    deleted = (
        db.session.query(OutboxEvent)
        .filter(OutboxEvent.sent_at.isnot(None), OutboxEvent.sent_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
