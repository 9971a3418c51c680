"""Durable change feed for match-request rows.

Every status transition of a match request appends a ``match_request_events``
row inside the same transaction as the transition itself, so a committed
transition always has a committed event. Clients long-poll the feed with the
last id they have seen; delivery is at-least-once and resumable.
"""

from __future__ import annotations

import time

from sqlalchemy.orm import Session

from . import models
from .config import settings


def record_transition(db: Session, request: models.MatchRequest) -> models.MatchRequestEvent:
    """Stage an event describing ``request``'s current status. The caller commits."""
    event = models.MatchRequestEvent(
        user_id=request.user_id,
        match_request_id=request.id,
        status=request.status,
        matched_with_id=request.matched_with_id,
    )
    db.add(event)
    return event


def fetch_events(db: Session, *, user_id: int, after_id: int = 0, limit: int = 50) -> list[models.MatchRequestEvent]:
    return (
        db.query(models.MatchRequestEvent)
        .filter(models.MatchRequestEvent.user_id == user_id, models.MatchRequestEvent.id > after_id)
        .order_by(models.MatchRequestEvent.id.asc())
        .limit(limit)
        .all()
    )


def latest_event_id(db: Session, *, user_id: int) -> int:
    row = (
        db.query(models.MatchRequestEvent.id)
        .filter(models.MatchRequestEvent.user_id == user_id)
        .order_by(models.MatchRequestEvent.id.desc())
        .first()
    )
    return int(row[0]) if row else 0


def wait_for_events(
    db: Session,
    *,
    user_id: int,
    after_id: int = 0,
    timeout_seconds: float = 0,
    poll_interval_seconds: float | None = None,
) -> list[models.MatchRequestEvent]:
    """Return events newer than ``after_id``, polling until some arrive or the timeout elapses."""
    poll_interval = poll_interval_seconds or settings.match_events_poll_interval_seconds
    timeout_seconds = max(0.0, min(float(timeout_seconds), float(settings.match_events_max_wait_seconds)))
    deadline = time.monotonic() + timeout_seconds
    while True:
        events = fetch_events(db, user_id=user_id, after_id=after_id)
        if events or time.monotonic() >= deadline:
            return events
        # End the read transaction so the next poll sees rows committed meanwhile.
        db.rollback()
        time.sleep(min(poll_interval, max(0.0, deadline - time.monotonic())))
