#!/usr/bin/env python3
"""
Seed script for the SportMatch database.
Creates sample players, a moderator, an admin and a few open match requests
for local development.

Usage:
    python seed_data.py
"""

import random
from datetime import datetime, timedelta, timezone
from sqlalchemy import text
from sportmatch.auth import get_password_hash
from sportmatch.config import settings
from sportmatch.database import SessionLocal
from sportmatch.models import Level, MatchRequest, Sport, User, UserRole

PLAYERS = [
    {"email": "ana.popescu@test.com", "name": "Ana Popescu", "level": Level.beginner, "password": "player123"},
    {"email": "mihai.ionescu@test.com", "name": "Mihai Ionescu", "level": Level.intermediate, "password": "player123"},
    {"email": "elena.dumitrescu@test.com", "name": "Elena Dumitrescu", "level": Level.advanced, "password": "player123"},
    {"email": "andrei.constantin@test.com", "name": "Andrei Constantin", "level": Level.beginner, "password": "player123"},
    {"email": "maria.stan@test.com", "name": "Maria Stan", "level": Level.intermediate, "password": "player123"},
    {"email": "alexandru.radu@test.com", "name": "Alexandru Radu", "level": Level.advanced, "password": "player123"},
]

CLUBS = [
    "Tenis Club Arcul de Triumf",
    "Baza Sportivă Iolanda Balaș",
    "Parcul Herăstrău",
    None,
]

MODERATORS = [
    {"email": "moderator@test.com", "name": "SportMatch Moderator", "password": "moderator123"},
]

ADMINS = [
    {"email": "admin@test.com", "name": "SportMatch Admin", "password": "admin1234"},
]


def _make_users(session, rows, role):
    users = []
    for row in rows:
        user = User(
            email=row["email"],
            password_hash=get_password_hash(row["password"]),
            role=role,
            name=row["name"],
            level=row.get("level"),
            avatar_url=f"https://api.dicebear.com/7.x/initials/svg?seed={row['name'].replace(' ', '+')}",
        )
        session.add(user)
        users.append(user)
    session.flush()
    return users


def seed_database():
    """Seed the database with sample data."""
    print("🌱 Starting database seeding...")

    session = SessionLocal()
    try:
        user_count = session.execute(text("SELECT COUNT(*) FROM users")).scalar()

        if user_count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            # children first
            tables_to_clear = [
                "match_request_events",
                "match_requests",
                "follows",
                "moderation_logs",
                "messages",
                "user_violations",
                "banned_users",
                "audit_logs",
                "users",
            ]
            for table in tables_to_clear:
                session.execute(text(f"DELETE FROM {table}"))
            session.commit()
            print("✅ Existing data cleared")

        print("🏃 Creating players...")
        players = _make_users(session, PLAYERS, UserRole.user)
        print(f"   Created {len(players)} players")

        print("🛡️  Creating staff accounts...")
        _make_users(session, MODERATORS, UserRole.moderator)
        _make_users(session, ADMINS, UserRole.admin)

        print("🎾 Opening match requests...")
        now = datetime.now(timezone.utc)
        sports = list(Sport)
        # half the players wait in the pool; the rest can log in and get matched
        for index, player in enumerate(players[::2]):
            created_at = now - timedelta(minutes=5 * (index + 1))
            session.add(
                MatchRequest(
                    user_id=player.id,
                    sport=random.choice(sports).value,
                    level=player.level.value,
                    club_name=random.choice(CLUBS),
                    status="searching",
                    created_at=created_at,
                    expires_at=created_at + timedelta(minutes=settings.match_request_ttl_minutes),
                )
            )
        session.flush()
        print(f"   Created {len(players[::2])} searching requests")

        session.commit()

        print("\n✅ Database seeding completed successfully!")
        print("\n📋 Test accounts:")
        print("   Players:")
        for p in PLAYERS:
            print(f"      - {p['email']} / {p['password']}")
        print("   Moderators:")
        for m in MODERATORS:
            print(f"      - {m['email']} / {m['password']}")
        print("   Admins:")
        for a in ADMINS:
            print(f"      - {a['email']} / {a['password']}")

    except Exception as e:
        session.rollback()
        print(f"\n❌ Error during seeding: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    seed_database()
