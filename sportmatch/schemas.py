from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from .models import AgeGroup, Level, Sport, UserRole, ViolationType


MAX_MESSAGE_LENGTH = 1000


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(min_length=1, max_length=255)
    level: Optional[Level] = None
    avatar_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        if not any(ch.isalpha() for ch in v) or not any(ch.isdigit() for ch in v):
            raise ValueError("Password must include letters and numbers")
        return v


class UserRegister(UserCreate):
    confirm_password: str

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info):
        password = info.data.get("password") if hasattr(info, "data") else None
        if password and v != password:
            raise ValueError("Passwords do not match")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: EmailStr
    role: UserRole
    name: str
    avatar_url: Optional[str] = None
    level: Optional[Level] = None

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str
    role: UserRole
    user_id: int


class TokenData(BaseModel):
    email: Optional[str] = None
    role: Optional[UserRole] = None
    user_id: Optional[int] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class PeerSummary(BaseModel):
    id: int
    name: str
    avatar: Optional[str] = None
    level: Optional[Level] = None


class MatchIntentCreate(BaseModel):
    sport: Sport
    level: Level
    club_name: Optional[str] = Field(default=None, max_length=255)
    age_group: AgeGroup = AgeGroup.all


class MatchRequestResponse(BaseModel):
    id: int
    user_id: int
    sport: Sport
    level: Level
    age_group: str
    club_name: Optional[str] = None
    status: Literal["searching", "matched", "cancelled", "expired"]
    matched_with_id: Optional[int] = None
    matched_at: Optional[datetime] = None
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MatchIntentResponse(BaseModel):
    status: Literal["matched", "searching"]
    peer: Optional[PeerSummary] = None
    request: MatchRequestResponse


class MatchRequestEventResponse(BaseModel):
    id: int
    match_request_id: int
    status: Literal["searching", "matched", "cancelled", "expired"]
    matched_with_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MatchRequestEventList(BaseModel):
    items: List[MatchRequestEventResponse]
    last_id: int


class ModerationCheckRequest(BaseModel):
    message: str = Field(min_length=1)
    sender_id: int = Field(alias="senderId")
    message_id: Optional[int] = Field(default=None, alias="messageId")

    model_config = ConfigDict(populate_by_name=True)


class ModerationCheckResponse(BaseModel):
    approved: bool
    reason: Optional[str] = None
    violation_type: Optional[ViolationType] = None
    banned: Optional[bool] = None
    violation_count: Optional[int] = Field(default=None, serialization_alias="violationCount")
    warnings_left: Optional[int] = Field(default=None, serialization_alias="warningsLeft")
    error: Optional[str] = None


class MessageCreate(BaseModel):
    receiver_id: int
    content: str

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Message must not be empty")
        if len(v) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
        return v


class MessageResponse(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    content: str
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageSendResponse(BaseModel):
    sent: bool
    message: Optional[MessageResponse] = None
    moderation: ModerationCheckResponse


class ModerationLogResponse(BaseModel):
    id: int
    message_id: Optional[int] = None
    sender_id: int
    message_content: str
    is_approved: bool
    ai_reasoning: Optional[str] = None
    violation_type: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaginatedModerationLogs(BaseModel):
    items: List[ModerationLogResponse]
    total: int
    page: int
    page_size: int


class ViolationResponse(BaseModel):
    id: int
    user_id: int
    message_content: str
    violation_reason: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BanCreate(BaseModel):
    user_id: int
    reason: Optional[str] = Field(default=None, max_length=500)


class BanResponse(BaseModel):
    id: int
    user_id: int
    reason: str
    banned_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ModerationStatsResponse(BaseModel):
    total_moderated: int
    approved: int
    rejected: int
    violations: int
    banned: int
