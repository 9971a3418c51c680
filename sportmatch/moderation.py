"""Moderation gate for chat messages.

Each outgoing message is checked before it is stored. Banned senders are
rejected without calling the classifier. Otherwise the classifier decides;
rejections accumulate as violations and the third one bans the sender.

The gate fails open: if the classifier cannot give an answer, or anything in
the pipeline breaks, the message is allowed and the reason is written to the
moderation log for operators.

The log write and the violation/ban writes are separate commits. A crash
between them can leave a rejected log entry without its violation row; the
violation count (always recounted from the store) stays authoritative.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .classifier import ClassifierVerdict, ModerationClassifier
from .logging_utils import log_event, log_warning


VIOLATION_THRESHOLD = 3
MAX_STORED_CONTENT = 500

# Indeterminate classifier verdicts are treated as approvals.
FAIL_OPEN = True

BANNED_REASON = "You have been banned from sending messages due to repeated guideline violations."
BANNED_LOG_REASONING = "Sender is banned; message blocked without classification"
UNAVAILABLE_ERROR = "Moderation unavailable"
DEFAULT_REJECTION_REASON = "Guideline violation"


class AlreadyBannedError(Exception):
    pass


@dataclass
class ModerationOutcome:
    approved: bool
    reason: Optional[str] = None
    violation_type: Optional[models.ViolationType] = None
    banned: Optional[bool] = None
    violation_count: Optional[int] = None
    warnings_left: Optional[int] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "violation_type": self.violation_type,
            "banned": self.banned,
            "violation_count": self.violation_count,
            "warnings_left": self.warnings_left,
            "error": self.error,
        }


def _snapshot(text: str) -> str:
    return (text or "")[:MAX_STORED_CONTENT]


def resolve_verdict(verdict: ClassifierVerdict) -> bool:
    """Whether a verdict lets the message through."""
    if verdict.kind == "indeterminate":
        return FAIL_OPEN
    return verdict.kind == "approved"


def find_ban(db: Session, user_id: int) -> models.BannedUser | None:
    return db.query(models.BannedUser).filter(models.BannedUser.user_id == user_id).first()


def count_violations(db: Session, user_id: int) -> int:
    return int(
        db.query(func.count(models.UserViolation.id)).filter(models.UserViolation.user_id == user_id).scalar() or 0
    )


def _log_decision(
    db: Session,
    *,
    sender_id: int,
    message: str,
    message_id: int | None,
    approved: bool,
    reasoning: str | None,
    violation_type: models.ViolationType | None,
) -> None:
    db.add(
        models.ModerationLog(
            message_id=message_id,
            sender_id=sender_id,
            message_content=_snapshot(message),
            is_approved=approved,
            ai_reasoning=reasoning,
            violation_type=violation_type.value if violation_type else None,
        )
    )


def _resolve_message_id(db: Session, message_id: int | None) -> int | None:
    """Keep ``message_id`` only when it names a stored message."""
    if message_id is None:
        return None
    if db.query(models.Message.id).filter(models.Message.id == message_id).first() is None:
        log_warning("moderation_unknown_message_id", message_id=message_id)
        return None
    return message_id


def _run_gate(
    db: Session,
    *,
    message: str,
    sender_id: int,
    message_id: int | None,
    classifier: ModerationClassifier,
) -> ModerationOutcome:
    if find_ban(db, sender_id) is not None:
        _log_decision(
            db,
            sender_id=sender_id,
            message=message,
            message_id=_resolve_message_id(db, message_id),
            approved=False,
            reasoning=BANNED_LOG_REASONING,
            violation_type=models.ViolationType.BANNED_USER,
        )
        try:
            db.commit()
        except SQLAlchemyError as exc:
            # The ban stands even when its log entry cannot be written.
            db.rollback()
            log_warning("moderation_banned_log_failed", sender_id=sender_id, error=str(exc))
        else:
            log_event("moderation_blocked_banned_sender", sender_id=sender_id)
        return ModerationOutcome(approved=False, reason=BANNED_REASON, banned=True)

    message_id = _resolve_message_id(db, message_id)

    verdict = classifier.classify(message)
    approved = resolve_verdict(verdict)
    _log_decision(
        db,
        sender_id=sender_id,
        message=message,
        message_id=message_id,
        approved=approved,
        reasoning=verdict.reason,
        violation_type=None if approved else verdict.violation_type,
    )

    if approved:
        db.commit()
        if verdict.kind == "indeterminate":
            log_warning("moderation_failed_open", sender_id=sender_id, reason=verdict.reason)
        return ModerationOutcome(approved=True)

    reason = verdict.reason or DEFAULT_REJECTION_REASON
    db.add(
        models.UserViolation(
            user_id=sender_id,
            message_content=_snapshot(message),
            violation_reason=reason,
        )
    )
    db.commit()

    violation_count = count_violations(db, sender_id)
    log_event(
        "moderation_rejected",
        sender_id=sender_id,
        violation_type=verdict.violation_type.value if verdict.violation_type else None,
        violation_count=violation_count,
    )

    if violation_count >= VIOLATION_THRESHOLD:
        _auto_ban(db, sender_id=sender_id, violation_count=violation_count, last_type=verdict.violation_type)
        return ModerationOutcome(
            approved=False,
            reason=f"You have been banned after {violation_count} guideline violations.",
            violation_type=verdict.violation_type,
            banned=True,
            violation_count=violation_count,
        )

    return ModerationOutcome(
        approved=False,
        reason=reason,
        violation_type=verdict.violation_type,
        banned=False,
        violation_count=violation_count,
        warnings_left=VIOLATION_THRESHOLD - violation_count,
    )


def _auto_ban(
    db: Session,
    *,
    sender_id: int,
    violation_count: int,
    last_type: models.ViolationType | None,
) -> None:
    last = last_type.value if last_type else "UNSPECIFIED"
    ban_reason = f"Automatically banned after {violation_count} guideline violations (last: {last})"
    db.add(models.BannedUser(user_id=sender_id, reason=ban_reason))
    _log_decision(
        db,
        sender_id=sender_id,
        message=f"[auto-ban] {ban_reason}",
        message_id=None,
        approved=False,
        reasoning=ban_reason,
        violation_type=models.ViolationType.AUTO_BAN,
    )
    try:
        db.commit()
    except IntegrityError:
        # A concurrent rejection for the same sender inserted the ban first.
        db.rollback()
        log_warning("auto_ban_already_present", sender_id=sender_id)
        return
    log_event("user_auto_banned", user_id=sender_id, violation_count=violation_count, last_violation_type=last)


def moderate(
    db: Session,
    *,
    message: str,
    sender_id: int,
    classifier: ModerationClassifier,
    message_id: int | None = None,
) -> ModerationOutcome:
    """Decide whether ``message`` from ``sender_id`` may be sent. Never raises."""
    try:
        return _run_gate(db, message=message, sender_id=sender_id, message_id=message_id, classifier=classifier)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        log_warning("moderation_pipeline_error", sender_id=sender_id, error=str(exc))
        _log_failed_open(db, message=message, sender_id=sender_id, error=exc)
        return ModerationOutcome(approved=True, error=UNAVAILABLE_ERROR)


def _log_failed_open(db: Session, *, message: str, sender_id: int, error: Exception) -> None:
    _log_decision(
        db,
        sender_id=sender_id,
        message=message,
        message_id=None,
        approved=True,
        reasoning=f"Moderation error: {error}"[:MAX_STORED_CONTENT],
        violation_type=None,
    )
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_warning("moderation_log_write_failed", sender_id=sender_id, error=str(exc))


def _audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_user_id: int | None = None,
    meta: dict | None = None,
) -> None:
    db.add(
        models.AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_user_id=actor_user_id,
            meta=meta,
        )
    )


def ban_user(db: Session, *, user_id: int, reason: str, actor_user_id: int | None = None) -> models.BannedUser:
    if find_ban(db, user_id) is not None:
        raise AlreadyBannedError(user_id)
    ban = models.BannedUser(user_id=user_id, reason=reason)
    db.add(ban)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise AlreadyBannedError(user_id) from None
    _audit_log(db, entity_type="user", entity_id=user_id, action="banned", actor_user_id=actor_user_id, meta={"reason": reason})
    db.commit()
    db.refresh(ban)
    log_event("user_banned", user_id=user_id, ban_id=ban.id, actor_user_id=actor_user_id)
    return ban


def unban(db: Session, ban_id: int, *, actor_user_id: int | None = None) -> int | None:
    """Delete a ban row and return the unbanned user's id. Violation history is kept."""
    ban = db.query(models.BannedUser).filter(models.BannedUser.id == ban_id).first()
    if ban is None:
        return None
    user_id = ban.user_id
    db.delete(ban)
    _audit_log(db, entity_type="user", entity_id=user_id, action="unbanned", actor_user_id=actor_user_id, meta={"ban_id": ban_id})
    db.commit()
    log_event("user_unbanned", user_id=user_id, ban_id=ban_id, actor_user_id=actor_user_id)
    return user_id


def delete_violation(db: Session, violation_id: int, *, actor_user_id: int | None = None) -> int | None:
    violation = db.query(models.UserViolation).filter(models.UserViolation.id == violation_id).first()
    if violation is None:
        return None
    user_id = violation.user_id
    db.delete(violation)
    _audit_log(
        db,
        entity_type="user_violation",
        entity_id=violation_id,
        action="deleted",
        actor_user_id=actor_user_id,
        meta={"user_id": user_id},
    )
    db.commit()
    log_event("violation_deleted", violation_id=violation_id, user_id=user_id, actor_user_id=actor_user_id)
    return user_id


def moderation_stats(db: Session) -> dict:
    # Auto-ban entries record a ban, not a moderated message.
    messages = db.query(func.count(models.ModerationLog.id)).filter(
        or_(
            models.ModerationLog.violation_type.is_(None),
            models.ModerationLog.violation_type != models.ViolationType.AUTO_BAN.value,
        )
    )
    total = int(messages.scalar() or 0)
    approved = int(messages.filter(models.ModerationLog.is_approved.is_(True)).scalar() or 0)
    return {
        "total_moderated": total,
        "approved": approved,
        "rejected": total - approved,
        "violations": int(db.query(func.count(models.UserViolation.id)).scalar() or 0),
        "banned": int(db.query(func.count(models.BannedUser.id)).scalar() or 0),
    }
