"""Thin data-access shims over the document database.

Each method is one store round trip (or one read plus parsing), which is the
only atomicity the reconciler relies on. Driver and filesystem failures are
logged and re-raised as ``StoreUnavailable``.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from fitboard.errors import StoreUnavailable
from fitboard.models import (
    ActivityRecord,
    Comment,
    DateRange,
    Reaction,
    UserProfile,
    WeightSample,
    WorkoutRecord,
    to_document,
    to_iso,
)
from fitboard.scoring import filter_workouts

logger = logging.getLogger(__name__)

MAX_DOCS = 100000
NO_ID = {"_id": 0}


@asynccontextmanager
async def _store_call(operation: str):
    try:
        yield
    except (PyMongoError, OSError) as e:
        logger.error("Store operation %s failed: %s", operation, str(e))
        raise StoreUnavailable(f"{operation} failed: {e}") from e


class UserDirectory:
    def __init__(self, db: Any):
        self._users = db.users

    async def list_users(self, cohort: str) -> List[UserProfile]:
        async with _store_call("users.list"):
            docs = await self._users.find({"course": cohort}, {"_id": 0, "password": 0}).to_list(MAX_DOCS)
        return [UserProfile.model_validate(d) for d in docs if d.get("id")]

    async def list_all_users(self) -> List[UserProfile]:
        async with _store_call("users.list_all"):
            docs = await self._users.find({}, {"_id": 0, "password": 0}).to_list(MAX_DOCS)
        return [UserProfile.model_validate(d) for d in docs if d.get("id")]

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        async with _store_call("users.get"):
            doc = await self._users.find_one({"id": user_id}, {"_id": 0, "password": 0})
        return UserProfile.model_validate(doc) if doc else None

    async def set_bodyweight(self, user_id: str, weight: float) -> None:
        async with _store_call("users.set_bodyweight"):
            await self._users.update_one({"id": user_id}, {"$set": {"weight": weight}})


class EventLogStore:
    """Append-only weight samples and completed workouts, keyed by user."""

    def __init__(self, db: Any, tz: tzinfo = timezone.utc):
        self._weights = db.weights
        self._workouts = db.completed_workouts
        self._tz = tz

    async def get_weight_samples(self, user_id: str) -> List[WeightSample]:
        async with _store_call("weights.list"):
            docs = await self._weights.find({"user_id": user_id}, NO_ID).sort("date", 1).to_list(MAX_DOCS)
        return [WeightSample.model_validate(d) for d in docs]

    async def get_completed_workouts(
        self, user_id: str, date_range: Optional[DateRange] = None
    ) -> List[WorkoutRecord]:
        async with _store_call("completed_workouts.list"):
            docs = await self._workouts.find({"user_id": user_id}, NO_ID).sort("completed_date", 1).to_list(MAX_DOCS)
        workouts = [WorkoutRecord.model_validate(d) for d in docs]
        return filter_workouts(workouts, date_range, self._tz)

    async def add_weight_sample(self, user_id: str, weight: float, when: datetime) -> Dict[str, Any]:
        doc = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "weight": weight,
            "date": to_iso(when, self._tz),
        }
        async with _store_call("weights.insert"):
            await self._weights.insert_one(doc)
        return {k: v for k, v in doc.items() if k != "_id"}

    async def add_completed_workout(self, user_id: str, workout: WorkoutRecord) -> Dict[str, Any]:
        doc = {"id": str(uuid.uuid4()), "user_id": user_id, **to_document(workout, self._tz)}
        async with _store_call("completed_workouts.insert"):
            await self._workouts.insert_one(doc)
        return {k: v for k, v in doc.items() if k != "_id"}


class ActivityStore:
    def __init__(self, db: Any):
        self._activities = db.activities

    async def get(self, activity_id: str) -> Optional[ActivityRecord]:
        async with _store_call("activities.get"):
            doc = await self._activities.find_one({"id": activity_id}, NO_ID)
        return ActivityRecord.model_validate(doc) if doc else None

    async def find_by_key(self, user_id: str, achievement_key: str) -> List[ActivityRecord]:
        async with _store_call("activities.find_by_key"):
            docs = await self._activities.find(
                {"user_id": user_id, "achievement_key": achievement_key}, NO_ID
            ).to_list(MAX_DOCS)
        return [ActivityRecord.model_validate(d) for d in docs]

    async def find_by_user(self, user_id: str, activity_type: Optional[str] = None) -> List[ActivityRecord]:
        query: Dict[str, Any] = {"user_id": user_id}
        if activity_type:
            query["activity_type"] = activity_type
        async with _store_call("activities.find_by_user"):
            docs = await self._activities.find(query, NO_ID).sort("created_at", -1).to_list(MAX_DOCS)
        return [ActivityRecord.model_validate(d) for d in docs]

    async def create(self, record: ActivityRecord) -> ActivityRecord:
        async with _store_call("activities.insert"):
            await self._activities.insert_one(record.to_document())
        return record

    async def delete(self, activity_id: str) -> bool:
        async with _store_call("activities.delete"):
            result = await self._activities.delete_one({"id": activity_id})
        return result.deleted_count > 0

    async def push_engagement(
        self, activity_id: str, reactions: List[Reaction], comments: List[Comment]
    ) -> bool:
        """Append the given items in one update, leaving whatever is already stored in place.

        Both arrays are re-sorted by created_at as part of the same write.
        """
        push: Dict[str, Any] = {}
        if reactions:
            push["reactions"] = {"$each": to_document(reactions), "$sort": {"created_at": 1}}
        if comments:
            push["comments"] = {"$each": to_document(comments), "$sort": {"created_at": 1}}
        if not push:
            return False
        update = {"$push": push}
        async with _store_call("activities.push_engagement"):
            result = await self._activities.update_one({"id": activity_id}, update)
        return result.matched_count > 0

    async def append_reaction(self, activity_id: str, reaction: Reaction) -> bool:
        async with _store_call("activities.push_reaction"):
            result = await self._activities.update_one(
                {"id": activity_id}, {"$push": {"reactions": to_document(reaction)}}
            )
        return result.matched_count > 0

    async def remove_reactions_by_user(self, activity_id: str, user_id: str) -> bool:
        async with _store_call("activities.pull_reaction"):
            result = await self._activities.update_one(
                {"id": activity_id}, {"$pull": {"reactions": {"user_id": user_id}}}
            )
        return result.matched_count > 0

    async def append_comment(self, activity_id: str, comment: Comment) -> bool:
        async with _store_call("activities.push_comment"):
            result = await self._activities.update_one(
                {"id": activity_id}, {"$push": {"comments": to_document(comment)}}
            )
        return result.matched_count > 0

    async def remove_comment(self, activity_id: str, comment_id: str) -> bool:
        async with _store_call("activities.pull_comment"):
            result = await self._activities.update_one(
                {"id": activity_id}, {"$pull": {"comments": {"id": comment_id}}}
            )
        return result.matched_count > 0
