from datetime import datetime, timezone
from typing import List, Optional
from contextlib import asynccontextmanager, suppress
import time
import logging
import asyncio
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, status, Request, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import auth, matchmaking, messaging, models, moderation, realtime, schemas
from .classifier import ModerationClassifier, get_classifier
from .config import settings
from .database import engine, get_db, SessionLocal
from .logging_utils import configure_logging, RequestIdMiddleware, log_event, log_warning

configure_logging()


def _run_migrations():
    """Run Alembic migrations to latest head. Controlled via settings.auto_run_migrations."""
    try:
        from alembic import command
        from alembic.config import Config
        base_dir = Path(__file__).resolve().parent.parent
        alembic_ini = base_dir / 'alembic.ini'
        if not alembic_ini.exists():
            logging.warning('alembic.ini not found; skipping migrations')
            return
        cfg = Config(str(alembic_ini))
        cfg.set_main_option('script_location', str(base_dir / 'alembic'))
        command.upgrade(cfg, 'head')
        logging.info('Migrations applied to head')
    except Exception:
        logging.exception('Failed to run migrations on startup')


def _check_configuration():
    if not settings.database_url:
        raise RuntimeError('DATABASE_URL is required')
    if not settings.secret_key:
        raise RuntimeError('SECRET_KEY is required')
    if not settings.moderation_api_key:
        log_warning('moderation_api_key_missing', detail='all messages will be allowed (fail-open)')


def _run_cleanup_once() -> None:
    """Expire match requests whose time-to-live has elapsed."""
    db = SessionLocal()
    try:
        matchmaking.expire_stale_requests(db)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        log_warning("cleanup_failed", error=str(exc))
    finally:
        db.close()


async def _cleanup_loop() -> None:
    while True:
        await asyncio.to_thread(_run_cleanup_once)
        await asyncio.sleep(settings.cleanup_interval_seconds)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _check_configuration()
    if getattr(settings, "auto_run_migrations", False):
        _run_migrations()
    elif settings.auto_create_tables:
        models.Base.metadata.create_all(bind=engine)

    # an interval of 0 turns the sweeper off
    cleanup_task = asyncio.create_task(_cleanup_loop()) if settings.cleanup_interval_seconds > 0 else None
    try:
        yield
    finally:
        if cleanup_task is not None:
            cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await cleanup_task


app = FastAPI(title="SportMatch API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = f"http_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else "Error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code, "message": message}, "detail": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log_warning("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "internal_error", "message": "An unexpected error occurred."}},
    )


_RATE_LIMIT_STORE: dict[str, list[float]] = {}


def _enforce_rate_limit(
    action: str,
    request: Request | None = None,
    limit: int = 20,
    window_seconds: int = 60,
    identifier: str | None = None,
) -> None:
    now = time.time()
    identity = identifier or (request.client.host if request and request.client else "unknown")
    key = f"{action}:{identity}"
    entries = _RATE_LIMIT_STORE.get(key, [])
    entries = [ts for ts in entries if now - ts < window_seconds]
    if len(entries) >= limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Try again in a moment.",
        )
    entries.append(now)
    _RATE_LIMIT_STORE[key] = entries


def _outcome_response(outcome: moderation.ModerationOutcome) -> schemas.ModerationCheckResponse:
    return schemas.ModerationCheckResponse(**outcome.as_dict())


@app.get("/")
def read_root():
    return {"message": "Hello from SportMatch API!"}


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "ok"}
    except Exception:
        raise HTTPException(status_code=503, detail="Database unavailable")


@app.post("/register", response_model=schemas.Token)
def register(user: schemas.UserRegister, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("register", request=request, identifier=user.email.lower())
    db_user = db.query(models.User).filter(models.User.email == user.email).first()
    if db_user:
        raise HTTPException(status_code=400, detail="This email is already in use.")

    new_user = models.User(
        email=user.email,
        password_hash=auth.get_password_hash(user.password),
        role=models.UserRole.user,
        name=user.name.strip(),
        avatar_url=user.avatar_url,
        level=user.level,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    log_event("user_registered", user_id=new_user.id, email=new_user.email)
    return auth.issue_tokens(new_user)


@app.post("/login", response_model=schemas.Token)
def login(user_credentials: schemas.UserLogin, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("login", request=request, identifier=user_credentials.email.lower())
    user = db.query(models.User).filter(models.User.email == user_credentials.email).first()
    if not user or not auth.verify_password(user_credentials.password, user.password_hash):
        log_warning("login_failed", email=user_credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.is_active is False:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled.")
    log_event("login_success", user_id=user.id, role=user.role.value)
    return auth.issue_tokens(user)


@app.post("/refresh", response_model=schemas.Token)
def refresh_token(payload: schemas.RefreshRequest, db: Session = Depends(get_db)):
    try:
        decoded = auth.jwt.decode(payload.refresh_token, settings.secret_key, algorithms=[settings.algorithm])
    except auth.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Refresh token expired.")
    except auth.JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token.")

    if decoded.get("type") != "refresh" or not decoded.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid refresh token.")

    user = db.query(models.User).filter(models.User.id == int(decoded["sub"])).first()
    if user is None or user.is_active is False:
        raise HTTPException(status_code=401, detail="Invalid refresh token.")
    return auth.issue_tokens(user)


@app.get("/me", response_model=schemas.UserResponse)
def get_me(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@app.get("/api/users/{user_id}/summary", response_model=schemas.PeerSummary)
def get_user_summary(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    return matchmaking.peer_summary(user)


@app.post("/api/match-requests", response_model=schemas.MatchIntentResponse)
def submit_match_intent(
    payload: schemas.MatchIntentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    try:
        outcome = matchmaking.submit_match_intent(
            db,
            current_user,
            payload.sport,
            payload.level,
            club_name=payload.club_name,
            age_group=payload.age_group,
        )
    except matchmaking.MatchRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Another search for your account is in progress. Try again.",
        )
    except SQLAlchemyError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not create match request. Try again.",
        )

    return {
        "status": outcome.status,
        "peer": matchmaking.peer_summary(outcome.peer) if outcome.peer else None,
        "request": outcome.request,
    }


@app.get("/api/match-requests/current", response_model=Optional[schemas.MatchRequestResponse])
def get_current_match_request(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return matchmaking.get_current_request(db, current_user)


@app.delete("/api/match-requests/current", status_code=status.HTTP_204_NO_CONTENT)
def cancel_match_request(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    try:
        matchmaking.cancel_search(db, current_user)
    except SQLAlchemyError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not cancel the search. Try again.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/match-requests/events", response_model=schemas.MatchRequestEventList)
def match_request_events(
    after_id: int = Query(0, ge=0),
    timeout: float = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    events = realtime.wait_for_events(db, user_id=current_user.id, after_id=after_id, timeout_seconds=timeout)
    last_id = events[-1].id if events else after_id
    return {"items": events, "last_id": last_id}


@app.post(
    "/api/moderation/check",
    response_model=schemas.ModerationCheckResponse,
    response_model_exclude_none=True,
)
def moderation_check(
    payload: schemas.ModerationCheckRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
    classifier: ModerationClassifier = Depends(get_classifier),
):
    if payload.sender_id != current_user.id and not auth.is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only check your own messages.")
    if payload.message_id is not None:
        exists = db.query(models.Message.id).filter(models.Message.id == payload.message_id).first()
        if exists is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found.")
    outcome = moderation.moderate(
        db,
        message=payload.message,
        sender_id=payload.sender_id,
        message_id=payload.message_id,
        classifier=classifier,
    )
    return _outcome_response(outcome)


@app.post("/api/messages", response_model=schemas.MessageSendResponse)
def send_message(
    payload: schemas.MessageCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
    classifier: ModerationClassifier = Depends(get_classifier),
):
    try:
        message, outcome = messaging.send_message(
            db,
            sender=current_user,
            receiver_id=payload.receiver_id,
            content=payload.content,
            classifier=classifier,
        )
    except messaging.MessageRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if message is not None:
        response.status_code = status.HTTP_201_CREATED
    return {"sent": message is not None, "message": message, "moderation": _outcome_response(outcome)}


@app.get("/api/messages/{other_user_id}", response_model=List[schemas.MessageResponse])
def get_conversation(
    other_user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return messaging.list_conversation(db, user_id=current_user.id, other_user_id=other_user_id)


@app.get("/api/admin/moderation/logs", response_model=schemas.PaginatedModerationLogs)
def admin_moderation_logs(
    approved: Optional[bool] = None,
    sender_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_moderator),
):
    query = db.query(models.ModerationLog)
    if approved is not None:
        query = query.filter(models.ModerationLog.is_approved.is_(approved))
    if sender_id is not None:
        query = query.filter(models.ModerationLog.sender_id == sender_id)
    total = query.count()
    rows = (
        query.order_by(models.ModerationLog.created_at.desc(), models.ModerationLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {"items": rows, "total": int(total), "page": page, "page_size": page_size}


@app.get("/api/admin/moderation/violations", response_model=List[schemas.ViolationResponse])
def admin_list_violations(
    user_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_moderator),
):
    query = db.query(models.UserViolation)
    if user_id is not None:
        query = query.filter(models.UserViolation.user_id == user_id)
    return query.order_by(models.UserViolation.created_at.desc(), models.UserViolation.id.desc()).limit(100).all()


@app.delete("/api/admin/moderation/violations/{violation_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_violation(
    violation_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_moderator),
):
    if moderation.delete_violation(db, violation_id, actor_user_id=current_user.id) is None:
        raise HTTPException(status_code=404, detail="Violation not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/admin/moderation/bans", response_model=List[schemas.BanResponse])
def admin_list_bans(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_moderator),
):
    return db.query(models.BannedUser).order_by(models.BannedUser.banned_at.desc(), models.BannedUser.id.desc()).all()


@app.post("/api/admin/moderation/bans", response_model=schemas.BanResponse, status_code=status.HTTP_201_CREATED)
def admin_ban_user(
    payload: schemas.BanCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_moderator),
):
    target = db.query(models.User).filter(models.User.id == payload.user_id).first()
    if not target:
        raise HTTPException(status_code=404, detail="User not found.")
    try:
        return moderation.ban_user(
            db,
            user_id=target.id,
            reason=(payload.reason or "").strip() or "Manually banned by an administrator",
            actor_user_id=current_user.id,
        )
    except moderation.AlreadyBannedError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User is already banned.")


@app.delete("/api/admin/moderation/bans/{ban_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_unban_user(
    ban_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_moderator),
):
    if moderation.unban(db, ban_id, actor_user_id=current_user.id) is None:
        raise HTTPException(status_code=404, detail="Ban not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/admin/moderation/stats", response_model=schemas.ModerationStatsResponse)
def admin_moderation_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_moderator),
):
    return moderation.moderation_stats(db)


@app.post("/api/admin/match-requests/expire")
def admin_expire_match_requests(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    expired = matchmaking.expire_stale_requests(db, now=datetime.now(timezone.utc))
    return {"expired": expired}
