"""Match-request matchmaking.

A user declares intent to play (sport, level). If another user is already
searching with the same pair, both requests end up ``matched`` and a mutual
follow is created so the two can message each other. Otherwise the caller's
request waits in ``searching`` until a peer claims it, the user cancels, or it
expires.

No state is kept in-process: every decision re-reads the store. Claiming a
peer's request is a conditional update (``status = 'searching'`` at update
time), so two concurrent callers can never both claim the same peer; the loser
searches again and falls back to waiting.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .logging_utils import log_event, log_warning
from .realtime import record_transition


SEARCHING = models.MatchRequestStatus.searching.value
MATCHED = models.MatchRequestStatus.matched.value
CANCELLED = models.MatchRequestStatus.cancelled.value
EXPIRED = models.MatchRequestStatus.expired.value


class MatchRequestError(ValueError):
    """Raised for invalid match intents, before the store is touched."""


@dataclass
class MatchOutcome:
    status: str
    request: models.MatchRequest
    peer: models.User | None = None

    @property
    def matched(self) -> bool:
        return self.status == MATCHED


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _enum_value(value, enum_cls, field: str) -> str:
    if value is None or value == "":
        raise MatchRequestError(f"{field} is required")
    try:
        return enum_cls(value).value
    except ValueError:
        raise MatchRequestError(f"Unknown {field}: {value}") from None


def upsert_follow(db: Session, follower_id: int, following_id: int) -> None:
    """Create the follow edge unless it already exists. The caller commits."""
    dialect = db.get_bind().dialect.name
    values = {"follower_id": follower_id, "following_id": following_id, "created_at": _now_utc()}
    if dialect in {"postgresql", "sqlite"}:
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        stmt = insert(models.Follow).values(**values).on_conflict_do_nothing(
            index_elements=["follower_id", "following_id"]
        )
        db.execute(stmt)
        return

    existing = (
        db.query(models.Follow.id)
        .filter(models.Follow.follower_id == follower_id, models.Follow.following_id == following_id)
        .first()
    )
    if existing is None:
        db.add(models.Follow(**values))
        db.flush()


def _cancel_searching(db: Session, user_id: int) -> list[models.MatchRequest]:
    rows = (
        db.query(models.MatchRequest)
        .filter(models.MatchRequest.user_id == user_id, models.MatchRequest.status == SEARCHING)
        .all()
    )
    for row in rows:
        row.status = CANCELLED
        db.add(row)
    if rows:
        db.flush()
        for row in rows:
            record_transition(db, row)
    return rows


def _find_candidate(
    db: Session,
    *,
    user_id: int,
    sport: str,
    level: str,
    now: datetime,
    skip_ids: set[int],
) -> models.MatchRequest | None:
    query = (
        db.query(models.MatchRequest)
        .filter(
            models.MatchRequest.status == SEARCHING,
            models.MatchRequest.sport == sport,
            models.MatchRequest.level == level,
            models.MatchRequest.user_id != user_id,
            models.MatchRequest.expires_at > now,
        )
        .order_by(models.MatchRequest.created_at.asc(), models.MatchRequest.id.asc())
    )
    if skip_ids:
        query = query.filter(~models.MatchRequest.id.in_(sorted(skip_ids)))
    # Rows another transaction holds are skipped so crossing submits cannot wait on each other.
    if db.get_bind().dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)
    return query.first()


def _claim(db: Session, candidate_id: int, *, claimer_id: int, now: datetime) -> bool:
    """Compare-and-swap the candidate from searching to matched."""
    updated = (
        db.query(models.MatchRequest)
        .filter(models.MatchRequest.id == candidate_id, models.MatchRequest.status == SEARCHING)
        .update(
            {"status": MATCHED, "matched_with_id": claimer_id, "matched_at": now},
            synchronize_session=False,
        )
    )
    return updated == 1


def submit_match_intent(
    db: Session,
    user: models.User,
    sport,
    level,
    *,
    club_name: str | None = None,
    age_group=models.AgeGroup.all,
) -> MatchOutcome:
    sport_value = _enum_value(sport, models.Sport, "sport")
    level_value = _enum_value(level, models.Level, "level")
    age_group_value = _enum_value(age_group or models.AgeGroup.all, models.AgeGroup, "age_group")
    club_name = (club_name or "").strip() or None

    now = _now_utc()
    try:
        cancelled = _cancel_searching(db, user.id)

        skip_ids: set[int] = set()
        for attempt in range(settings.match_claim_max_attempts):
            candidate = _find_candidate(
                db, user_id=user.id, sport=sport_value, level=level_value, now=now, skip_ids=skip_ids
            )
            if candidate is None:
                break
            if not _claim(db, candidate.id, claimer_id=user.id, now=now):
                skip_ids.add(candidate.id)
                log_warning(
                    "match_claim_conflict",
                    user_id=user.id,
                    candidate_request_id=candidate.id,
                    attempt=attempt + 1,
                )
                continue

            db.refresh(candidate)
            own = models.MatchRequest(
                user_id=user.id,
                sport=sport_value,
                level=level_value,
                age_group=age_group_value,
                club_name=club_name,
                status=MATCHED,
                matched_with_id=candidate.user_id,
                matched_at=now,
                created_at=now,
                expires_at=now + timedelta(minutes=settings.match_request_ttl_minutes),
            )
            db.add(own)
            db.flush()
            upsert_follow(db, user.id, candidate.user_id)
            upsert_follow(db, candidate.user_id, user.id)
            record_transition(db, candidate)
            record_transition(db, own)
            peer = db.query(models.User).filter(models.User.id == candidate.user_id).first()
            db.commit()
            db.refresh(own)
            log_event(
                "match_made",
                user_id=user.id,
                peer_user_id=candidate.user_id,
                request_id=own.id,
                peer_request_id=candidate.id,
                sport=sport_value,
                level=level_value,
            )
            return MatchOutcome(status=MATCHED, request=own, peer=peer)

        own = models.MatchRequest(
            user_id=user.id,
            sport=sport_value,
            level=level_value,
            age_group=age_group_value,
            club_name=club_name,
            status=SEARCHING,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.match_request_ttl_minutes),
        )
        db.add(own)
        db.flush()
        record_transition(db, own)
        db.commit()
        db.refresh(own)
    except SQLAlchemyError as exc:
        db.rollback()
        log_warning("match_intent_failed", user_id=user.id, sport=sport_value, level=level_value, error=str(exc))
        raise

    log_event(
        "match_search_started",
        user_id=user.id,
        request_id=own.id,
        sport=sport_value,
        level=level_value,
        superseded=len(cancelled),
    )
    return MatchOutcome(status=SEARCHING, request=own)


def cancel_search(db: Session, user: models.User) -> models.MatchRequest | None:
    """Withdraw the user's active search. Returns None when nothing was searching."""
    try:
        cancelled = _cancel_searching(db, user.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if not cancelled:
        return None
    log_event("match_search_cancelled", user_id=user.id, request_id=cancelled[0].id)
    return cancelled[0]


def get_current_request(db: Session, user: models.User) -> models.MatchRequest | None:
    return (
        db.query(models.MatchRequest)
        .filter(models.MatchRequest.user_id == user.id)
        .order_by(models.MatchRequest.created_at.desc(), models.MatchRequest.id.desc())
        .first()
    )


def expire_stale_requests(db: Session, *, now: datetime | None = None) -> int:
    now = now or _now_utc()
    stale = (
        db.query(models.MatchRequest)
        .filter(models.MatchRequest.status == SEARCHING, models.MatchRequest.expires_at <= now)
        .all()
    )
    expired = 0
    for row in stale:
        updated = (
            db.query(models.MatchRequest)
            .filter(models.MatchRequest.id == row.id, models.MatchRequest.status == SEARCHING)
            .update({"status": EXPIRED}, synchronize_session=False)
        )
        if updated != 1:
            continue
        db.refresh(row)
        record_transition(db, row)
        expired += 1
    if expired:
        db.commit()
        log_event("match_requests_expired", count=expired)
    return expired


def peer_summary(user: models.User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "avatar": user.avatar_url,
        "level": user.level.value if user.level else None,
    }
