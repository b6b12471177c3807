from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from fitboard import config
from fitboard.errors import InvalidArgument


class Category(str, Enum):
    WEIGHT_LOSS = "weightLoss"
    STRENGTH = "strength"
    CONSISTENCY = "consistency"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        if isinstance(value, cls):
            return value
        # Accept the URL slugs ("weight-loss") as well as the stored values.
        normalized = str(value or "").strip().replace("-", "").replace("_", "").lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        raise InvalidArgument(f"Unknown leaderboard category: {value!r}")

    @property
    def display_name(self) -> str:
        return CATEGORY_NAMES[self]


CATEGORY_NAMES = {
    Category.WEIGHT_LOSS: "Weight Loss",
    Category.STRENGTH: "Strength",
    Category.CONSISTENCY: "Consistency",
    Category.HYBRID: "Hybrid",
}

# Activity types
ACHIEVEMENT = "achievement"
RANKING = "ranking"
WORKOUT = "workout"

REACTION_TYPES = ("❤️", "🔥", "💪", "👏")
RANK_EMOJI = {1: "👑", 2: "🥈", 3: "🥉"}
WORKOUT_CATEGORIES = ("Bodyweight", "Dumbbell", "Machine", "Barbell")
MAX_COMMENT_LENGTH = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime, tz: Optional[tzinfo] = None) -> datetime:
    # Naive timestamps are leaderboard-local time, the same reading scoring uses.
    if value.tzinfo is None:
        return value.replace(tzinfo=tz or config.get_leaderboard_tz())
    return value


def to_iso(value: datetime, tz: Optional[tzinfo] = None) -> str:
    # Stored timestamps are always UTC isoformat so they also sort as strings.
    return as_aware(value, tz).astimezone(timezone.utc).isoformat()


def to_document(value: Any, tz: Optional[tzinfo] = None) -> Any:
    if isinstance(value, BaseModel):
        return to_document(value.model_dump(), tz)
    if isinstance(value, datetime):
        return to_iso(value, tz)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_document(v, tz) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_document(v, tz) for v in value]
    return value


def rank_key(rank: int, category: Category) -> str:
    return f"rank-{rank}-{category.value}"


def workout_key(workout_id: str, completed_at: datetime, tz: Optional[tzinfo] = None) -> str:
    epoch_ms = int(as_aware(completed_at, tz).timestamp() * 1000)
    return f"workout-complete-{workout_id}-{epoch_ms}"


# ============== EVENT LOG / DIRECTORY ==============

class DateRange(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None

    def check(self) -> "DateRange":
        if self.start and self.end and self.start > self.end:
            raise InvalidArgument(f"start_date {self.start} is after end_date {self.end}")
        return self

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


class WeightSample(BaseModel):
    weight: float
    date: datetime


class WorkoutRecord(BaseModel):
    workout_id: str = ""
    name: str = ""
    category: str
    exercise_name: str = ""
    target: str = ""
    weight_lifted: float = 0
    sets_completed: int = 0
    reps_completed: int = 0
    completed_date: datetime


class UserProfile(BaseModel):
    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    course: str = ""
    weight: Optional[float] = None
    initial_weight: Optional[float] = None
    is_private: bool = False
    profile_picture: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "User"


class UserScoreInput(BaseModel):
    user_id: str
    cohort: str
    bodyweight: Optional[float] = None
    initial_weight: Optional[float] = None
    weight_samples: List[WeightSample] = Field(default_factory=list)
    workouts: List[WorkoutRecord] = Field(default_factory=list)


# ============== SCORES ==============

class ScoreResult(BaseModel):
    user_id: str
    category: Category
    score: float
    metrics: Dict[str, Any] = Field(default_factory=dict)


class LeaderboardEntry(ScoreResult):
    rank: int
    name: str
    email: str = ""
    profile_picture: str = ""
    course: str = ""
    is_private: bool = False


class CategoryRank(BaseModel):
    rank: int
    total: int


class UserRanksResponse(BaseModel):
    user_id: str
    course: str
    ranks: Dict[str, CategoryRank]


# ============== ACTIVITIES ==============

class Reaction(BaseModel):
    id: str
    user_id: str
    user_name: str = ""
    reaction_type: str
    created_at: datetime


class Comment(BaseModel):
    id: str
    user_id: str
    user_name: str = ""
    user_profile_picture: str = ""
    content: str
    created_at: datetime


class ActivityPayload(BaseModel):
    activity_type: str
    title: str
    description: str
    category: str = ""
    image_url: str = ""
    hide_image: bool = False
    user_name: str = ""
    user_email: str = ""
    user_profile_picture: str = ""


class ActivityRecord(BaseModel):
    id: str
    user_id: str
    user_name: str = ""
    user_email: str = ""
    user_profile_picture: str = ""
    activity_type: str
    achievement_key: Optional[str] = None
    category: str = ""
    title: str
    description: str
    image_url: str = ""
    hide_image: bool = False
    created_at: datetime
    reactions: List[Reaction] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)

    @property
    def engagement(self) -> int:
        return len(self.reactions) + len(self.comments)

    @computed_field
    @property
    def reaction_counts(self) -> Dict[str, int]:
        counts = {kind: 0 for kind in REACTION_TYPES}
        for reaction in self.reactions:
            counts[reaction.reaction_type] = counts.get(reaction.reaction_type, 0) + 1
        return counts

    @computed_field
    @property
    def comment_count(self) -> int:
        return len(self.comments)

    def to_document(self) -> Dict[str, Any]:
        return to_document(self.model_dump(exclude={"reaction_counts", "comment_count"}))


class SweepReport(BaseModel):
    user_id: str
    total_activities: int = 0
    unique_achievements: int = 0
    duplicates_removed: int = 0
    kept: Dict[str, str] = Field(default_factory=dict)


class ReconcileReport(BaseModel):
    user_id: str
    groups_merged: int = 0
    duplicates_removed: int = 0
