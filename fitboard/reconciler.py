"""Exactly-one activity per achievement fact.

``publish`` is a plain find-or-create and can race with itself: two requests
may both miss the lookup and both insert. That is tolerated. Any path that is
about to show or change engagement on a ranking activity calls ``reconcile``
first, which folds the duplicates back into one record.

There are two merge policies and they are intentionally different:

* ``reconcile`` keeps the record with the most engagement (newest on a tie)
  and copies every missing reaction/comment from the others into it. It runs
  inline while a user is interacting.
* ``sweep_user`` keeps the oldest record per key and drops the rest without
  merging. It is an offline maintenance pass.
"""
import logging
import uuid
from collections import OrderedDict
from typing import Dict, List, Optional

from fitboard.models import (
    ACHIEVEMENT,
    RANKING,
    ActivityPayload,
    ActivityRecord,
    ReconcileReport,
    SweepReport,
    utcnow,
)
from fitboard.repositories import ActivityStore

logger = logging.getLogger(__name__)


def _by_created(records: List[ActivityRecord]) -> List[ActivityRecord]:
    return sorted(records, key=lambda r: r.created_at)


def choose_survivor(records: List[ActivityRecord]) -> ActivityRecord:
    """Most engagement wins; on a tie the most recently created record wins."""
    return max(_by_created(records), key=lambda r: (r.engagement, r.created_at))


def merge_engagement(survivor: ActivityRecord, others: List[ActivityRecord]):
    """Return ``(reactions, comments)`` for the survivor after folding in ``others``.

    Reactions are deduplicated on (user_id, reaction_type) and comments on
    (user_id, content). Both lists come back ordered by original created_at.
    """
    reactions = list(survivor.reactions)
    comments = list(survivor.comments)
    seen_reactions = {(r.user_id, r.reaction_type) for r in reactions}
    seen_comments = {(c.user_id, c.content) for c in comments}

    for other in _by_created(others):
        for reaction in other.reactions:
            key = (reaction.user_id, reaction.reaction_type)
            if key not in seen_reactions:
                seen_reactions.add(key)
                reactions.append(reaction)
        for comment in other.comments:
            key = (comment.user_id, comment.content)
            if key not in seen_comments:
                seen_comments.add(key)
                comments.append(comment)

    reactions.sort(key=lambda r: r.created_at)
    comments.sort(key=lambda c: c.created_at)
    return reactions, comments


class AchievementReconciler:
    def __init__(self, activities: ActivityStore):
        self._activities = activities

    async def publish(self, user_id: str, achievement_key: str, payload: ActivityPayload) -> ActivityRecord:
        existing = await self._activities.find_by_key(user_id, achievement_key)
        if existing:
            # Never overwrite an existing fact; hand back the canonical (oldest) one.
            logger.info("Activity already exists for user=%s key=%s", user_id, achievement_key)
            return _by_created(existing)[0]

        record = ActivityRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            achievement_key=achievement_key,
            created_at=utcnow(),
            **payload.model_dump(),
        )
        await self._activities.create(record)
        logger.info(
            "Published %s activity for user=%s key=%s", payload.activity_type, user_id, achievement_key
        )
        return record

    async def reconcile(self, user_id: str, achievement_key: str) -> Optional[ActivityRecord]:
        records = await self._activities.find_by_key(user_id, achievement_key)
        if len(records) <= 1:
            return records[0] if records else None

        survivor = choose_survivor(records)
        others = [r for r in records if r.id != survivor.id]
        reactions, comments = merge_engagement(survivor, others)

        # Only push what the survivor lacks. Engagement added to it by another
        # request since the read stays untouched.
        known_reactions = {r.id for r in survivor.reactions}
        known_comments = {c.id for c in survivor.comments}
        await self._activities.push_engagement(
            survivor.id,
            [r for r in reactions if r.id not in known_reactions],
            [c for c in comments if c.id not in known_comments],
        )
        # Write the survivor before deleting anything: if we die in between the
        # leftovers are still duplicates and the next pass merges them again.
        for other in others:
            await self._activities.delete(other.id)

        logger.warning(
            "Merged %d duplicate activities into %s for user=%s key=%s",
            len(others), survivor.id, user_id, achievement_key,
        )
        return survivor.model_copy(update={"reactions": reactions, "comments": comments})

    async def sweep_user(self, user_id: str) -> SweepReport:
        activities = await self._activities.find_by_user(user_id, ACHIEVEMENT)
        report = SweepReport(user_id=user_id, total_activities=len(activities))

        groups: Dict[str, List[ActivityRecord]] = OrderedDict()
        for activity in _by_created(activities):
            if activity.achievement_key:
                groups.setdefault(activity.achievement_key, []).append(activity)

        for key, group in groups.items():
            keep, duplicates = group[0], group[1:]
            report.kept[key] = keep.id
            for duplicate in duplicates:
                await self._activities.delete(duplicate.id)
                report.duplicates_removed += 1
            if duplicates:
                logger.info(
                    "User %s: removed %d duplicates for achievement %s", user_id, len(duplicates), key
                )

        report.unique_achievements = len(groups)
        return report

    async def reconcile_user(self, user_id: str) -> ReconcileReport:
        """Run ``reconcile`` on every ranking key of the user that has duplicates."""
        activities = await self._activities.find_by_user(user_id, RANKING)
        counts: Dict[str, int] = {}
        for activity in activities:
            if activity.achievement_key:
                counts[activity.achievement_key] = counts.get(activity.achievement_key, 0) + 1

        report = ReconcileReport(user_id=user_id)
        for key, count in counts.items():
            if count > 1:
                await self.reconcile(user_id, key)
                report.groups_merged += 1
                report.duplicates_removed += count - 1
        return report
