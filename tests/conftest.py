"""Shared test fixtures.

Provides:
- In-memory database and the services wired on top of it
- Seed helpers for users, weight samples, completed workouts and activities
- Async FastAPI test client (no real DB, no scheduler) and auth headers
"""
import uuid
from datetime import datetime, timezone

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from fitboard import config
from fitboard.database import InMemoryDB
from fitboard.feed import ActivityFeed
from fitboard.leaderboard import LeaderboardBuilder
from fitboard.reconciler import AchievementReconciler
from fitboard.repositories import ActivityStore, EventLogStore, UserDirectory

UTC = timezone.utc

# Saturday; the current week started Sunday 2024-06-09.
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def iso(year, month, day, hour=12, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=UTC).isoformat()


@pytest.fixture
def db():
    return InMemoryDB()


@pytest.fixture
def directory(db):
    return UserDirectory(db)


@pytest.fixture
def events(db):
    return EventLogStore(db, UTC)


@pytest.fixture
def activity_store(db):
    return ActivityStore(db)


@pytest.fixture
def reconciler(activity_store):
    return AchievementReconciler(activity_store)


@pytest.fixture
def builder(directory, events, reconciler):
    return LeaderboardBuilder(
        directory, events, reconciler, cohorts=["BSCS", "BSIT"], default_cohort="BSCS", tz=UTC
    )


@pytest.fixture
def feed(activity_store, reconciler):
    return ActivityFeed(activity_store, reconciler)


@pytest.fixture
def add_user(db):
    async def _add(user_id, *, course="BSCS", weight=70.0, initial_weight=None, first_name=None, email=None):
        doc = {
            "id": user_id,
            "email": email or f"{user_id}@example.com",
            "first_name": first_name or user_id.title(),
            "last_name": "Tester",
            "course": course,
            "weight": weight,
            "initial_weight": initial_weight,
            "is_private": False,
            "profile_picture": "",
            "password": "not-a-real-hash",
        }
        await db.users.insert_one(doc)
        return doc
    return _add


@pytest.fixture
def add_weight(db):
    async def _add(user_id, weight, when):
        await db.weights.insert_one({"id": str(uuid.uuid4()), "user_id": user_id, "weight": weight, "date": when})
    return _add


@pytest.fixture
def add_workout(db):
    async def _add(user_id, when, *, category="Dumbbell", weight=20.0, sets=3, reps=10):
        await db.completed_workouts.insert_one({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "workout_id": str(uuid.uuid4()),
            "name": "Session",
            "category": category,
            "exercise_name": "Curl",
            "target": "Arms",
            "weight_lifted": weight,
            "sets_completed": sets,
            "reps_completed": reps,
            "completed_date": when,
        })
    return _add


def make_reaction(user_id, reaction_type, created_at):
    return {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "user_name": user_id,
        "reaction_type": reaction_type,
        "created_at": created_at,
    }


def make_comment(user_id, content, created_at):
    return {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "user_name": user_id,
        "user_profile_picture": "",
        "content": content,
        "created_at": created_at,
    }


@pytest.fixture
def add_activity(db):
    async def _add(user_id, key, created_at, *, activity_type="ranking", reactions=(), comments=(), title="Title"):
        doc = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "user_name": user_id,
            "user_email": f"{user_id}@example.com",
            "user_profile_picture": "",
            "activity_type": activity_type,
            "achievement_key": key,
            "category": "strength",
            "title": title,
            "description": "Description",
            "image_url": "",
            "hide_image": True,
            "created_at": created_at,
            "reactions": list(reactions),
            "comments": list(comments),
        }
        await db.activities.insert_one(doc)
        return doc
    return _add


@pytest.fixture
def auth_headers():
    def _headers(user_id):
        token = jwt.encode({"user_id": user_id}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
async def client(db):
    """Async HTTP test client for the FastAPI app, backed by the in-memory db.

    Uses httpx AsyncClient with ASGI transport, so startup hooks (MongoDB,
    scheduler) never run.
    """
    from fitboard import server

    server.init_services(db)
    transport = ASGITransport(app=server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
