import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    TIMESTAMP,
    ForeignKey,
    Enum,
    Index,
    UniqueConstraint,
    func,
    Boolean,
    JSON,
    text,
)
from sqlalchemy.orm import relationship
from .database import Base


class UserRole(str, enum.Enum):
    user = "user"
    moderator = "moderator"
    admin = "admin"


class Sport(str, enum.Enum):
    football = "football"
    tennis = "tennis"
    basketball = "basketball"
    running = "running"
    cycling = "cycling"
    swimming = "swimming"
    padel = "padel"
    volleyball = "volleyball"


class Level(str, enum.Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


class AgeGroup(str, enum.Enum):
    all = "all"
    age_18_25 = "18-25"
    age_26_35 = "26-35"
    age_36_45 = "36-45"
    age_46_plus = "46+"


class MatchRequestStatus(str, enum.Enum):
    searching = "searching"
    matched = "matched"
    cancelled = "cancelled"
    expired = "expired"


class ViolationType(str, enum.Enum):
    HATE_SPEECH = "HATE_SPEECH"
    SEXUAL_CONTENT = "SEXUAL_CONTENT"
    THREATS = "THREATS"
    SPAM = "SPAM"
    PERSONAL_INFO = "PERSONAL_INFO"
    BULLYING = "BULLYING"
    OFF_TOPIC = "OFF_TOPIC"
    # Written by the gate itself, never returned by the classifier.
    AUTO_BAN = "AUTO_BAN"
    BANNED_USER = "BANNED_USER"


CLASSIFIER_VIOLATION_TYPES = frozenset(
    {
        ViolationType.HATE_SPEECH,
        ViolationType.SEXUAL_CONTENT,
        ViolationType.THREATS,
        ViolationType.SPAM,
        ViolationType.PERSONAL_INFO,
        ViolationType.BULLYING,
        ViolationType.OFF_TOPIC,
    }
)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.user)
    name = Column(String(255), nullable=False)
    avatar_url = Column(String(500))
    level = Column(Enum(Level), nullable=True)
    is_active = Column(Boolean, server_default=text("true"), nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    match_requests = relationship(
        "MatchRequest",
        back_populates="user",
        foreign_keys="MatchRequest.user_id",
    )


class MatchRequest(Base):
    __tablename__ = "match_requests"
    __table_args__ = (
        Index("ix_match_requests_lookup", "sport", "level", "status", "created_at"),
        # One active search per user.
        Index(
            "uq_match_requests_one_searching",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'searching'"),
            sqlite_where=text("status = 'searching'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    sport = Column(String(32), nullable=False)
    level = Column(String(32), nullable=False)
    age_group = Column(String(16), nullable=False, server_default="all", default=AgeGroup.all.value)
    club_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, server_default="searching", default=MatchRequestStatus.searching.value)
    matched_with_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    matched_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)

    user = relationship("User", back_populates="match_requests", foreign_keys=[user_id])
    matched_with = relationship("User", foreign_keys=[matched_with_id])


class MatchRequestEvent(Base):
    __tablename__ = "match_request_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    match_request_id = Column(Integer, ForeignKey("match_requests.id"), nullable=False)
    status = Column(String(20), nullable=False)
    matched_with_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)


class Follow(Base):
    __tablename__ = "follows"
    __table_args__ = (UniqueConstraint("follower_id", "following_id", name="uq_follow_pair"),)

    id = Column(Integer, primary_key=True, index=True)
    follower_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    following_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    read = Column(Boolean, server_default=text("false"), nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)


class ModerationLog(Base):
    __tablename__ = "moderation_logs"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message_content = Column(Text, nullable=False)
    is_approved = Column(Boolean, nullable=False, index=True)
    ai_reasoning = Column(Text, nullable=True)
    violation_type = Column(String(32), nullable=True, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True)


class UserViolation(Base):
    __tablename__ = "user_violations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message_content = Column(Text, nullable=False)
    violation_reason = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)


class BannedUser(Base):
    __tablename__ = "banned_users"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    reason = Column(Text, nullable=False)
    banned_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    meta = Column(JSON, nullable=True)

    actor = relationship("User", foreign_keys=[actor_user_id])
