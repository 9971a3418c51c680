from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from sportmatch import matchmaking, models
from sportmatch.database import SessionLocal


def test_postgres_end_to_end_flow(helpers):
    client = helpers["client"]

    token_a = helpers["register_user"]("a@test.ro", name="Ana")
    token_b = helpers["register_user"]("b@test.ro", name="Bogdan")

    waiting = client.post(
        "/api/match-requests",
        json={"sport": "tennis", "level": "beginner"},
        headers=helpers["auth_header"](token_a),
    )
    assert waiting.json()["status"] == "searching"

    matched = client.post(
        "/api/match-requests",
        json={"sport": "tennis", "level": "beginner"},
        headers=helpers["auth_header"](token_b),
    )
    assert matched.json()["status"] == "matched"
    a_id = matched.json()["peer"]["id"]

    sent = client.post(
        "/api/messages",
        json={"receiver_id": a_id, "content": "Court 3 at six?"},
        headers=helpers["auth_header"](token_b),
    )
    assert sent.status_code == 201

    helpers["make_moderator"]()
    mod_token = helpers["login"]("mod@test.ro", "moderator123")
    stats = client.get("/api/admin/moderation/stats", headers=helpers["auth_header"](mod_token))
    assert stats.json()["approved"] == 1


def test_partial_index_allows_one_searching_row_per_user(helpers):
    db = helpers["db"]
    user = models.User(email="idx@test.ro", password_hash="x", role=models.UserRole.user, name="Idx")
    db.add(user)
    db.commit()
    now = datetime.now(timezone.utc)

    def _row():
        return models.MatchRequest(
            user_id=user.id,
            sport="padel",
            level="advanced",
            status="searching",
            created_at=now,
            expires_at=now + timedelta(hours=1),
        )

    db.add(_row())
    db.commit()
    db.add(_row())
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_concurrent_intents_pair_each_request_once(helpers):
    db = helpers["db"]
    users = []
    for i in range(6):
        user = models.User(email=f"c{i}@test.ro", password_hash="x", role=models.UserRole.user, name=f"C{i}")
        db.add(user)
        users.append(user)
    db.commit()
    user_ids = [u.id for u in users]

    def submit(user_id):
        with SessionLocal() as session:
            user = session.get(models.User, user_id)
            return matchmaking.submit_match_intent(session, user, "football", "intermediate").status

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(submit, user_ids))

    db.expire_all()
    rows = db.query(models.MatchRequest).all()
    matched_with = [r.matched_with_id for r in rows if r.status == "matched"]
    # nobody is claimed twice
    assert len(matched_with) == len(set(matched_with))
    assert len(matched_with) % 2 == 0


def test_crossing_resubmits_do_not_deadlock(helpers):
    db = helpers["db"]
    now = datetime.now(timezone.utc)
    users = []
    for i in range(2):
        user = models.User(email=f"x{i}@test.ro", password_hash="x", role=models.UserRole.user, name=f"X{i}")
        db.add(user)
        users.append(user)
    db.commit()
    # both already searching the pair they are about to resubmit
    for user in users:
        db.add(
            models.MatchRequest(
                user_id=user.id,
                sport="padel",
                level="advanced",
                status="searching",
                created_at=now,
                expires_at=now + timedelta(hours=1),
            )
        )
    db.commit()
    user_ids = [u.id for u in users]

    def resubmit(user_id):
        with SessionLocal() as session:
            user = session.get(models.User, user_id)
            return matchmaking.submit_match_intent(session, user, "padel", "advanced").status

    with ThreadPoolExecutor(max_workers=2) as pool:
        statuses = list(pool.map(resubmit, user_ids))

    assert set(statuses) <= {"searching", "matched"}
    db.expire_all()
    for user_id in user_ids:
        searching = (
            db.query(models.MatchRequest)
            .filter(models.MatchRequest.user_id == user_id, models.MatchRequest.status == "searching")
            .count()
        )
        assert searching <= 1
    matched_with = [r.matched_with_id for r in db.query(models.MatchRequest).all() if r.status == "matched"]
    assert len(matched_with) == len(set(matched_with))
