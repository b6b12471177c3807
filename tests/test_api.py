"""HTTP-level tests for the FastAPI routes."""
import pytest
from httpx import ASGITransport, AsyncClient
from pymongo.errors import ServerSelectionTimeoutError

from fitboard import config, server
from fitboard.database import InMemoryDB

from conftest import iso


class TestBasics:
    async def test_health(self, client):
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_root(self, client):
        response = await client.get("/api/")
        assert response.status_code == 200
        assert "message" in response.json()


class TestAuth:
    async def test_missing_token_is_rejected(self, client):
        response = await client.get("/api/leaderboard/strength")
        assert response.status_code in (401, 403)

    async def test_garbage_token(self, client):
        response = await client.get("/api/activities", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_token_for_unknown_user(self, client, auth_headers):
        response = await client.get("/api/activities", headers=auth_headers("ghost"))
        assert response.status_code == 401


class TestLeaderboardRoutes:
    async def test_strength_leaderboard_publishes_ranks(self, client, add_user, add_workout, auth_headers):
        await add_user("u1")
        await add_user("u2")
        await add_workout("u1", iso(2024, 6, 1), weight=10)
        await add_workout("u2", iso(2024, 6, 1), weight=30)

        response = await client.get("/api/leaderboard/strength?course=BSCS", headers=auth_headers("u1"))

        assert response.status_code == 200
        body = response.json()
        assert [e["user_id"] for e in body] == ["u2", "u1"]
        assert body[0]["rank"] == 1
        assert body[0]["score"] == 900

        feed = await client.get("/api/activities?user_id=u2", headers=auth_headers("u1"))
        assert feed.status_code == 200
        activities = feed.json()["activities"]
        assert [a["achievement_key"] for a in activities] == ["rank-1-strength"]

    async def test_date_window(self, client, add_user, add_workout, auth_headers):
        await add_user("u1")
        await add_user("u2")
        await add_workout("u1", iso(2024, 5, 1))
        await add_workout("u2", iso(2024, 6, 3))

        response = await client.get(
            "/api/leaderboard/consistency?start_date=2024-06-01&end_date=2024-06-30",
            headers=auth_headers("u1"),
        )

        assert response.status_code == 200
        assert [e["user_id"] for e in response.json()] == ["u2"]

    @pytest.mark.parametrize("path", [
        "/api/leaderboard/speed",
        "/api/leaderboard/strength?course=MBA",
        "/api/leaderboard/strength?start_date=2024-06-10&end_date=2024-06-01",
    ])
    async def test_bad_arguments_are_400(self, client, add_user, auth_headers, path):
        await add_user("u1")
        response = await client.get(path, headers=auth_headers("u1"))
        assert response.status_code == 400
        assert response.json()["detail"]

    async def test_user_ranks(self, client, add_user, add_workout, auth_headers):
        await add_user("u1")
        await add_workout("u1", iso(2024, 6, 1))

        response = await client.get("/api/leaderboard/user-ranks/u1", headers=auth_headers("u1"))

        assert response.status_code == 200
        ranks = response.json()["ranks"]
        assert ranks["strength"] == {"rank": 1, "total": 1}
        assert ranks["weightLoss"] == {"rank": 0, "total": 0}

    async def test_user_ranks_for_unranked_course(self, client, add_user, auth_headers):
        await add_user("u1")
        await add_user("biz", course="BSBA")

        response = await client.get("/api/leaderboard/user-ranks/biz", headers=auth_headers("u1"))

        assert response.status_code == 200
        assert response.json()["ranks"]["hybrid"] == {"rank": 0, "total": 0}

    async def test_user_ranks_unknown_user(self, client, add_user, auth_headers):
        await add_user("u1")
        response = await client.get("/api/leaderboard/user-ranks/ghost", headers=auth_headers("u1"))
        assert response.status_code == 404

    async def test_cleanup_ranking_duplicates(self, client, add_user, add_activity, auth_headers):
        await add_user("u1")
        await add_activity("u1", "rank-1-strength", iso(2024, 6, 1))
        await add_activity("u1", "rank-1-strength", iso(2024, 6, 2))

        response = await client.post("/api/leaderboard/cleanup-duplicates", headers=auth_headers("u1"))

        assert response.status_code == 200
        assert response.json()["duplicates_removed"] == 1


class TestActivityRoutes:
    async def test_achievement_is_idempotent(self, client, add_user, auth_headers):
        await add_user("u1")
        body = {
            "achievement_id": "first-weigh-in",
            "achievement_title": "First Weigh-In",
            "achievement_description": "Logged the first weight",
        }

        first = await client.post("/api/activities/achievement", json=body, headers=auth_headers("u1"))
        second = await client.post("/api/activities/achievement", json=body, headers=auth_headers("u1"))

        assert first.status_code == 200
        assert first.json()["id"] == second.json()["id"]

    async def test_rank_outside_top_three(self, client, add_user, auth_headers):
        await add_user("u1")
        response = await client.post(
            "/api/activities/rank", json={"rank_number": 4, "rank_category": "strength"}, headers=auth_headers("u1")
        )
        assert response.status_code == 400

    async def test_reaction_toggle(self, client, add_user, auth_headers):
        await add_user("owner")
        await add_user("fan")
        created = await client.post(
            "/api/activities/rank", json={"rank_number": 1, "rank_category": "hybrid"}, headers=auth_headers("owner")
        )
        activity_id = created.json()["id"]
        body = {"activity_id": activity_id, "reaction_type": "🔥"}

        added = await client.post("/api/activities/reaction", json=body, headers=auth_headers("fan"))
        assert added.status_code == 200
        assert added.json()["message"] == "Reaction added"
        assert added.json()["reaction_counts"]["🔥"] == 1
        assert added.json()["user_reactions"] == ["🔥"]

        removed = await client.post("/api/activities/reaction", json=body, headers=auth_headers("fan"))
        assert removed.json()["message"] == "Reaction removed"
        assert removed.json()["reaction_counts"]["🔥"] == 0

    async def test_invalid_reaction_type(self, client, add_user, add_activity, auth_headers):
        await add_user("fan")
        activity = await add_activity("owner", "rank-1-strength", iso(2024, 6, 1))
        response = await client.post(
            "/api/activities/reaction",
            json={"activity_id": activity["id"], "reaction_type": "👍"},
            headers=auth_headers("fan"),
        )
        assert response.status_code == 400

    async def test_comment_lifecycle(self, client, add_user, add_activity, auth_headers):
        await add_user("owner")
        await add_user("fan")
        activity = await add_activity("owner", "rank-2-strength", iso(2024, 6, 1))

        created = await client.post(
            "/api/activities/comment",
            json={"activity_id": activity["id"], "content": "Great job!"},
            headers=auth_headers("fan"),
        )
        assert created.status_code == 201
        comment_id = created.json()["comment"]["id"]
        assert created.json()["comment_count"] == 1

        path = f"/api/activities/comment/{activity['id']}/{comment_id}"
        forbidden = await client.delete(path, headers=auth_headers("owner"))
        assert forbidden.status_code == 403

        deleted = await client.delete(path, headers=auth_headers("fan"))
        assert deleted.status_code == 200
        assert deleted.json()["comment_count"] == 0

    async def test_comment_too_long(self, client, add_user, add_activity, auth_headers):
        await add_user("fan")
        activity = await add_activity("owner", "rank-1-strength", iso(2024, 6, 1))
        response = await client.post(
            "/api/activities/comment",
            json={"activity_id": activity["id"], "content": "x" * 201},
            headers=auth_headers("fan"),
        )
        assert response.status_code == 400

    async def test_comment_on_missing_activity(self, client, add_user, auth_headers):
        await add_user("fan")
        response = await client.post(
            "/api/activities/comment", json={"activity_id": "nope", "content": "hi"}, headers=auth_headers("fan")
        )
        assert response.status_code == 404

    async def test_cleanup_achievement_duplicates(self, client, add_user, add_activity, auth_headers):
        await add_user("u1")
        oldest = await add_activity("u1", "first-workout", iso(2024, 6, 1), activity_type="achievement")
        await add_activity("u1", "first-workout", iso(2024, 6, 2), activity_type="achievement")

        response = await client.post("/api/activities/cleanup-duplicates", headers=auth_headers("u1"))

        assert response.status_code == 200
        assert response.json()["duplicates_removed"] == 1
        assert response.json()["kept"] == {"first-workout": oldest["id"]}


class TestEventLogRoutes:
    async def test_log_weight_updates_bodyweight(self, client, db, add_user, auth_headers):
        await add_user("u1", weight=80)

        response = await client.post(
            "/api/weights", json={"weight": 78.5, "date": "2024-06-10T08:00:00Z"}, headers=auth_headers("u1")
        )

        assert response.status_code == 201
        assert response.json()["weight"] == 78.5
        user = await db.users.find_one({"id": "u1"})
        assert user["weight"] == 78.5

    async def test_weight_out_of_range(self, client, add_user, auth_headers):
        await add_user("u1")
        response = await client.post("/api/weights", json={"weight": 20}, headers=auth_headers("u1"))
        assert response.status_code == 422

    async def test_complete_workout_feeds_leaderboard(self, client, add_user, auth_headers):
        await add_user("u1")
        body = {
            "workout_id": "w1",
            "name": "Leg Day",
            "category": "Barbell",
            "exercise_name": "Squat",
            "target": "Legs",
            "weight_lifted": 60,
            "sets_completed": 5,
            "reps_completed": 5,
            "completed_date": "2024-06-10T07:30:00Z",
        }

        response = await client.post("/api/workouts/complete", json=body, headers=auth_headers("u1"))

        assert response.status_code == 201
        activity = response.json()["activity"]
        assert activity["activity_type"] == "workout"
        assert activity["title"] == "Completed Barbell Workout"

        board = await client.get("/api/leaderboard/strength", headers=auth_headers("u1"))
        assert board.json()[0]["user_id"] == "u1"
        assert board.json()[0]["score"] == 1500

    async def test_unknown_workout_category(self, client, add_user, auth_headers):
        await add_user("u1")
        body = {
            "workout_id": "w1", "category": "Kettlebell", "exercise_name": "Swing",
            "sets_completed": 3, "reps_completed": 10,
        }
        response = await client.post("/api/workouts/complete", json=body, headers=auth_headers("u1"))
        assert response.status_code == 400


class TestMaintenance:
    async def test_requires_configured_token(self, client, monkeypatch):
        monkeypatch.delenv("MAINTENANCE_INTERNAL_TOKEN", raising=False)
        response = await client.post("/api/maintenance/sweep", headers={"Authorization": "Bearer x"})
        assert response.status_code == 503

    async def test_wrong_token(self, client, monkeypatch):
        monkeypatch.setenv("MAINTENANCE_INTERNAL_TOKEN", "s3cret")
        response = await client.post("/api/maintenance/sweep", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 403

    async def test_sweeps_every_user(self, client, monkeypatch, add_user, add_activity):
        monkeypatch.setenv("MAINTENANCE_INTERNAL_TOKEN", "s3cret")
        await add_user("u1")
        await add_user("u2")
        await add_activity("u1", "first-workout", iso(2024, 6, 1), activity_type="achievement")
        await add_activity("u1", "first-workout", iso(2024, 6, 2), activity_type="achievement")
        await add_activity("u2", "rank-1-strength", iso(2024, 6, 1))
        await add_activity("u2", "rank-1-strength", iso(2024, 6, 2))

        response = await client.post("/api/maintenance/sweep", headers={"Authorization": "Bearer s3cret"})

        assert response.status_code == 200
        assert response.json() == {
            "users": 2,
            "achievement_duplicates_removed": 1,
            "ranking_duplicates_merged": 1,
        }


class _DownCollection:
    def find(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")

    async def find_one(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")


async def test_store_outage_maps_to_503(auth_headers):
    database = InMemoryDB()
    await database.users.insert_one({"id": "u1", "email": "u1@example.com", "course": "BSCS"})
    database.activities = _DownCollection()
    server.init_services(database)

    transport = ASGITransport(app=server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/api/activities", headers=auth_headers("u1"))

    assert response.status_code == 503


async def test_naive_weigh_in_is_stored_in_leaderboard_time(monkeypatch, auth_headers):
    monkeypatch.setattr(config, "LEADERBOARD_TZ", "America/New_York")
    database = InMemoryDB()
    await database.users.insert_one({"id": "u1", "email": "u1@example.com", "course": "BSCS"})
    server.init_services(database)

    transport = ASGITransport(app=server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post(
            "/api/weights", json={"weight": 75, "date": "2024-06-09T01:00:00"}, headers=auth_headers("u1")
        )

    assert response.status_code == 201
    stored = await database.weights.find_one({"user_id": "u1"})
    assert stored["date"] == "2024-06-09T05:00:00+00:00"
