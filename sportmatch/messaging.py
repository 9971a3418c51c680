from __future__ import annotations

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from . import models
from .classifier import ModerationClassifier
from .logging_utils import log_event
from .moderation import ModerationOutcome, moderate
from .schemas import MAX_MESSAGE_LENGTH


class MessageRejectedError(ValueError):
    """The send request itself is invalid (not a moderation decision)."""


def send_message(
    db: Session,
    *,
    sender: models.User,
    receiver_id: int,
    content: str,
    classifier: ModerationClassifier,
) -> tuple[models.Message | None, ModerationOutcome]:
    content = (content or "").strip()
    if not content:
        raise MessageRejectedError("Message must not be empty")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise MessageRejectedError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    if receiver_id == sender.id:
        raise MessageRejectedError("You cannot message yourself")
    receiver = db.query(models.User.id).filter(models.User.id == receiver_id).first()
    if receiver is None:
        raise MessageRejectedError("Recipient does not exist")

    outcome = moderate(db, message=content, sender_id=sender.id, classifier=classifier)
    if not outcome.approved:
        return None, outcome

    message = models.Message(sender_id=sender.id, receiver_id=receiver_id, content=content)
    db.add(message)
    db.commit()
    db.refresh(message)
    log_event("message_sent", message_id=message.id, sender_id=sender.id, receiver_id=receiver_id)
    return message, outcome


def list_conversation(db: Session, *, user_id: int, other_user_id: int, limit: int = 200) -> list[models.Message]:
    return (
        db.query(models.Message)
        .filter(
            or_(
                and_(models.Message.sender_id == user_id, models.Message.receiver_id == other_user_id),
                and_(models.Message.sender_id == other_user_id, models.Message.receiver_id == user_id),
            )
        )
        .order_by(models.Message.created_at.asc(), models.Message.id.asc())
        .limit(limit)
        .all()
    )
