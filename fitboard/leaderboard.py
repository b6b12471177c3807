import logging
from datetime import datetime, timezone, tzinfo
from typing import Dict, List, Optional, Sequence

from fitboard.errors import InvalidArgument, NotFound
from fitboard.models import (
    RANK_EMOJI,
    RANKING,
    ActivityPayload,
    Category,
    CategoryRank,
    DateRange,
    LeaderboardEntry,
    UserProfile,
    UserRanksResponse,
    UserScoreInput,
    rank_key,
)
from fitboard.reconciler import AchievementReconciler
from fitboard.repositories import EventLogStore, UserDirectory
from fitboard.scoring import compute_score

logger = logging.getLogger(__name__)

PUBLISHED_RANKS = 3


def top_n(leaderboard: Sequence[LeaderboardEntry], n: int) -> List[LeaderboardEntry]:
    return list(leaderboard[: max(0, n)])


def rank_payload(user: UserProfile, rank: int, category: Category) -> ActivityPayload:
    course_text = f" on course {user.course}" if user.course else ""
    return ActivityPayload(
        activity_type=RANKING,
        title=f"Achieved Rank {rank} {RANK_EMOJI[rank]}",
        description=(
            f"Congratulations on achieving rank {rank} in the "
            f"{category.display_name} leaderboard{course_text}!"
        ),
        category=category.value,
        hide_image=True,
        user_name=user.full_name,
        user_email=user.email,
        user_profile_picture=user.profile_picture,
    )


class LeaderboardBuilder:
    """Ranks a cohort for one category and publishes the top three as facts."""

    def __init__(
        self,
        directory: UserDirectory,
        events: EventLogStore,
        reconciler: AchievementReconciler,
        *,
        cohorts: Sequence[str],
        default_cohort: str = "",
        tz: tzinfo = timezone.utc,
    ):
        self._directory = directory
        self._events = events
        self._reconciler = reconciler
        self._cohorts = set(cohorts)
        self._default_cohort = default_cohort
        self._tz = tz

    def _check_cohort(self, cohort: str) -> str:
        if cohort not in self._cohorts:
            raise InvalidArgument(f"Unknown cohort: {cohort!r}")
        return cohort

    async def _score_input(self, user: UserProfile, category: Category) -> UserScoreInput:
        data = UserScoreInput(
            user_id=user.id,
            cohort=user.course,
            bodyweight=user.weight,
            initial_weight=user.initial_weight,
        )
        # Only load the log the category actually reads.
        if category is Category.WEIGHT_LOSS:
            data.weight_samples = await self._events.get_weight_samples(user.id)
        else:
            data.workouts = await self._events.get_completed_workouts(user.id)
        return data

    async def rank(
        self,
        category,
        cohort: str,
        date_range: Optional[DateRange] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[LeaderboardEntry]:
        """Score and sort without publishing anything."""
        category = Category.parse(category)
        self._check_cohort(cohort)
        if date_range is not None:
            date_range.check()
        now = now or datetime.now(self._tz)

        users = await self._directory.list_users(cohort)
        scored = []
        for user in users:
            data = await self._score_input(user, category)
            result = compute_score(category, data, date_range, now=now, tz=self._tz)
            if result is not None:
                scored.append((user, result))

        # sorted() is stable: equal scores keep directory order.
        scored = sorted(scored, key=lambda pair: -pair[1].score)
        logger.info(
            "Leaderboard %s/%s: %d of %d users ranked", category.value, cohort, len(scored), len(users)
        )
        return [
            LeaderboardEntry(
                rank=idx,
                name=user.full_name,
                email=user.email,
                profile_picture=user.profile_picture,
                course=user.course,
                is_private=user.is_private,
                **result.model_dump(),
            )
            for idx, (user, result) in enumerate(scored, start=1)
        ]

    async def build(
        self,
        category,
        cohort: str,
        date_range: Optional[DateRange] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[LeaderboardEntry]:
        category = Category.parse(category)
        entries = await self.rank(category, cohort, date_range, now=now)
        await self.publish_top_ranks(category, entries)
        return entries

    async def publish_top_ranks(self, category: Category, entries: Sequence[LeaderboardEntry]) -> None:
        # Rank facts are permanent; falling out of the top 3 retracts nothing.
        for entry in top_n(entries, PUBLISHED_RANKS):
            user = await self._directory.get_user(entry.user_id)
            if user is None:
                continue
            await self._reconciler.publish(
                user.id, rank_key(entry.rank, category), rank_payload(user, entry.rank, category)
            )

    async def user_ranks(self, user_id: str, *, now: Optional[datetime] = None) -> UserRanksResponse:
        user = await self._directory.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        cohort = user.course or self._default_cohort

        if cohort not in self._cohorts:
            # A course with no leaderboard: the user exists but is never ranked.
            logger.info("User %s is in unranked cohort %r", user_id, cohort)
            unranked = {category.value: CategoryRank(rank=0, total=0) for category in Category}
            return UserRanksResponse(user_id=user_id, course=cohort, ranks=unranked)

        ranks: Dict[str, CategoryRank] = {}
        for category in Category:
            entries = await self.rank(category, cohort, now=now)
            position = next((e.rank for e in entries if e.user_id == user_id), 0)
            ranks[category.value] = CategoryRank(rank=position, total=len(entries))
        return UserRanksResponse(user_id=user_id, course=cohort, ranks=ranks)
