"""User-facing activity feed actions: reactions, comments and publishing."""
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from fitboard.errors import InvalidArgument, NotFound, PermissionDenied
from fitboard.models import (
    ACHIEVEMENT,
    MAX_COMMENT_LENGTH,
    RANKING,
    REACTION_TYPES,
    WORKOUT,
    ActivityPayload,
    ActivityRecord,
    Category,
    Comment,
    Reaction,
    UserProfile,
    WorkoutRecord,
    rank_key,
    utcnow,
    workout_key,
)
from fitboard.leaderboard import PUBLISHED_RANKS, rank_payload
from fitboard.reconciler import AchievementReconciler
from fitboard.repositories import ActivityStore

logger = logging.getLogger(__name__)


class ActivityFeed:
    def __init__(self, activities: ActivityStore, reconciler: AchievementReconciler):
        self._activities = activities
        self._reconciler = reconciler

    async def list_for_user(self, user_id: str) -> List[ActivityRecord]:
        return await self._activities.find_by_user(user_id)

    async def _engageable(self, activity_id: str) -> ActivityRecord:
        activity = await self._activities.get(activity_id)
        if activity is None:
            raise NotFound("Activity not found")
        if activity.activity_type == RANKING and activity.achievement_key:
            # Fold duplicates first so the new engagement lands on the survivor.
            survivor = await self._reconciler.reconcile(activity.user_id, activity.achievement_key)
            if survivor is None:
                raise NotFound("Activity not found")
            activity = survivor
        return activity

    async def toggle_reaction(self, activity_id: str, user: UserProfile, reaction_type: str):
        """One reaction per user: same type toggles off, a new type replaces the old one.

        Returns ``(activity, added)``.
        """
        if reaction_type not in REACTION_TYPES:
            raise InvalidArgument("Invalid reaction type")

        activity = await self._engageable(activity_id)
        existing = next(
            (r for r in activity.reactions if r.user_id == user.id and r.reaction_type == reaction_type),
            None,
        )

        await self._activities.remove_reactions_by_user(activity.id, user.id)
        if existing is None:
            reaction = Reaction(
                id=str(uuid.uuid4()),
                user_id=user.id,
                user_name=user.full_name,
                reaction_type=reaction_type,
                created_at=utcnow(),
            )
            await self._activities.append_reaction(activity.id, reaction)
            logger.info("User %s added reaction %s to %s", user.id, reaction_type, activity.id)
        else:
            logger.info("User %s removed reaction %s from %s", user.id, reaction_type, activity.id)

        refreshed = await self._activities.get(activity.id)
        return refreshed or activity, existing is None

    async def add_comment(self, activity_id: str, user: UserProfile, content: str):
        """Returns ``(activity, comment)``."""
        text = (content or "").strip()
        if not text:
            raise InvalidArgument("Comment content is required")
        if len(text) > MAX_COMMENT_LENGTH:
            raise InvalidArgument(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")

        activity = await self._engageable(activity_id)
        comment = Comment(
            id=str(uuid.uuid4()),
            user_id=user.id,
            user_name=user.full_name,
            user_profile_picture=user.profile_picture,
            content=text,
            created_at=utcnow(),
        )
        await self._activities.append_comment(activity.id, comment)
        refreshed = await self._activities.get(activity.id)
        return refreshed or activity, comment

    async def delete_comment(self, activity_id: str, comment_id: str, user_id: str) -> ActivityRecord:
        activity = await self._activities.get(activity_id)
        if activity is None:
            raise NotFound("Activity not found")
        comment = next((c for c in activity.comments if c.id == comment_id), None)
        if comment is None:
            raise NotFound("Comment not found")
        if comment.user_id != user_id:
            raise PermissionDenied("You can only delete your own comments")

        await self._activities.remove_comment(activity_id, comment_id)
        refreshed = await self._activities.get(activity_id)
        return refreshed or activity

    async def publish_achievement(
        self,
        user: UserProfile,
        achievement_id: str,
        title: str,
        description: str,
        *,
        category: str = "weightLoss",
        image_url: str = "",
        hide_image: bool = False,
    ) -> ActivityRecord:
        if not achievement_id:
            raise InvalidArgument("achievement_id is required")
        payload = ActivityPayload(
            activity_type=ACHIEVEMENT,
            title=title,
            description=description,
            category=category,
            image_url="" if hide_image else image_url,
            hide_image=hide_image,
            user_name=user.full_name,
            user_email=user.email,
            user_profile_picture=user.profile_picture,
        )
        return await self._reconciler.publish(user.id, achievement_id, payload)

    async def publish_rank(
        self,
        user: UserProfile,
        rank: int,
        category,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ActivityRecord:
        if rank not in range(1, PUBLISHED_RANKS + 1):
            raise InvalidArgument("Invalid rank number. Only top 3 ranks can create activities.")
        category = Category.parse(category)
        payload = rank_payload(user, rank, category)
        if title:
            payload.title = title
        if description:
            payload.description = description
        return await self._reconciler.publish(user.id, rank_key(rank, category), payload)

    async def publish_workout(self, user: UserProfile, workout: WorkoutRecord,
                              completed_at: Optional[datetime] = None) -> ActivityRecord:
        completed_at = completed_at or workout.completed_date
        weight_info = "" if workout.category == "Bodyweight" else f" with {workout.weight_lifted:g}kg"
        payload = ActivityPayload(
            activity_type=WORKOUT,
            title=f"Completed {workout.category} Workout",
            description=(
                f"{workout.exercise_name} ({workout.target}): "
                f"{workout.sets_completed} sets × {workout.reps_completed} reps{weight_info}"
            ),
            category=workout.category,
            hide_image=True,
            user_name=user.full_name,
            user_email=user.email,
            user_profile_picture=user.profile_picture,
        )
        return await self._reconciler.publish(user.id, workout_key(workout.workout_id, completed_at), payload)
