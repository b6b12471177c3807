import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import jwt
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from starlette.middleware.cors import CORSMiddleware

from fitboard import config
from fitboard.database import connect
from fitboard.errors import (
    FitboardError,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
)
from fitboard.feed import ActivityFeed
from fitboard.leaderboard import LeaderboardBuilder
from fitboard.maintenance import sweep_all
from fitboard.models import (
    WORKOUT_CATEGORIES,
    ActivityRecord,
    Comment,
    DateRange,
    LeaderboardEntry,
    ReconcileReport,
    SweepReport,
    UserProfile,
    UserRanksResponse,
    WorkoutRecord,
    utcnow,
)
from fitboard.reconciler import AchievementReconciler
from fitboard.repositories import ActivityStore, EventLogStore, UserDirectory

logger = logging.getLogger(__name__)

maintenance_scheduler: Optional[AsyncIOScheduler] = None

# Database handle and services are initialized on startup.
client = None
db: Any = None
directory: Optional[UserDirectory] = None
events: Optional[EventLogStore] = None
reconciler: Optional[AchievementReconciler] = None
leaderboards: Optional[LeaderboardBuilder] = None
feed: Optional[ActivityFeed] = None


def init_services(database: Any) -> None:
    global db, directory, events, reconciler, leaderboards, feed
    tz = config.get_leaderboard_tz()
    db = database
    directory = UserDirectory(database)
    events = EventLogStore(database, tz)
    activities = ActivityStore(database)
    reconciler = AchievementReconciler(activities)
    leaderboards = LeaderboardBuilder(
        directory,
        events,
        reconciler,
        cohorts=config.LEADERBOARD_COHORTS,
        default_cohort=config.DEFAULT_COHORT,
        tz=tz,
    )
    feed = ActivityFeed(activities, reconciler)


# Create the main app without a prefix
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

security = HTTPBearer()

_ERROR_STATUS = {
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(FitboardError)
async def fitboard_error_handler(request: Request, exc: FitboardError):
    status_code = next(
        (code for err_type, code in _ERROR_STATUS.items() if isinstance(exc, err_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, str(exc))
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# ============== MODELS ==============

class AchievementActivityCreate(BaseModel):
    achievement_id: str
    achievement_title: str
    achievement_description: str
    achievement_icon: Optional[str] = None
    achievement_category: str = "weightLoss"
    hide_image: bool = False


class RankActivityCreate(BaseModel):
    rank_number: int
    rank_category: str
    rank_title: Optional[str] = None
    rank_description: Optional[str] = None


class ReactionCreate(BaseModel):
    activity_id: str
    reaction_type: str


class ReactionResponse(BaseModel):
    message: str
    reaction_counts: Dict[str, int]
    user_reactions: List[str]


class CommentCreate(BaseModel):
    activity_id: str
    content: str


class CommentResponse(BaseModel):
    message: str
    comment: Comment
    comment_count: int


class CommentDeleteResponse(BaseModel):
    message: str
    comment_count: int


class ActivityListResponse(BaseModel):
    activities: List[ActivityRecord]


class WeightCreate(BaseModel):
    weight: float = Field(..., ge=40, le=500)
    date: Optional[datetime] = None


class WorkoutComplete(BaseModel):
    workout_id: str
    name: str = ""
    category: str
    exercise_name: str
    target: str = ""
    weight_lifted: float = Field(0, ge=0)
    sets_completed: int = Field(..., ge=1)
    reps_completed: int = Field(..., ge=1)
    completed_date: Optional[datetime] = None


class WorkoutCompleteResponse(BaseModel):
    workout: Dict[str, Any]
    activity: ActivityRecord


# ============== AUTH HELPERS ==============

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> UserProfile:
    # Tokens are minted by the auth service; here we only verify them.
    try:
        payload = jwt.decode(credentials.credentials, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("user_id")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await directory.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def _require_internal_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> None:
    expected = config.get_maintenance_token()
    if not expected:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Internal token not configured")
    if credentials.credentials != expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


# ============== LEADERBOARD ROUTES ==============

@api_router.get("/leaderboard/user-ranks/{user_id}", response_model=UserRanksResponse)
async def get_user_ranks(user_id: str, current_user: UserProfile = Depends(get_current_user)):
    return await leaderboards.user_ranks(user_id)


@api_router.post("/leaderboard/cleanup-duplicates", response_model=ReconcileReport)
async def cleanup_ranking_duplicates(current_user: UserProfile = Depends(get_current_user)):
    logger.info("Cleaning up ranking duplicates for user: %s", current_user.email or current_user.id)
    return await reconciler.reconcile_user(current_user.id)


@api_router.get("/leaderboard/{category}", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    category: str,
    course: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    current_user: UserProfile = Depends(get_current_user),
):
    date_range = None
    if start_date or end_date:
        date_range = DateRange(start=start_date, end=end_date)
    return await leaderboards.build(category, course or config.DEFAULT_COHORT, date_range)


# ============== ACTIVITY ROUTES ==============

@api_router.get("/activities", response_model=ActivityListResponse)
async def get_activities(user_id: Optional[str] = None, current_user: UserProfile = Depends(get_current_user)):
    target_id = user_id or current_user.id
    if target_id != current_user.id and await directory.get_user(target_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return ActivityListResponse(activities=await feed.list_for_user(target_id))


@api_router.post("/activities/achievement", response_model=ActivityRecord)
async def create_achievement_activity(
    payload: AchievementActivityCreate, current_user: UserProfile = Depends(get_current_user)
):
    return await feed.publish_achievement(
        current_user,
        payload.achievement_id,
        payload.achievement_title,
        payload.achievement_description,
        category=payload.achievement_category,
        image_url=payload.achievement_icon or "",
        hide_image=payload.hide_image,
    )


@api_router.post("/activities/rank", response_model=ActivityRecord)
async def create_rank_activity(payload: RankActivityCreate, current_user: UserProfile = Depends(get_current_user)):
    return await feed.publish_rank(
        current_user,
        payload.rank_number,
        payload.rank_category,
        title=payload.rank_title,
        description=payload.rank_description,
    )


@api_router.post("/activities/reaction", response_model=ReactionResponse)
async def add_reaction(payload: ReactionCreate, current_user: UserProfile = Depends(get_current_user)):
    activity, added = await feed.toggle_reaction(payload.activity_id, current_user, payload.reaction_type)
    return ReactionResponse(
        message="Reaction added" if added else "Reaction removed",
        reaction_counts=activity.reaction_counts,
        user_reactions=[r.reaction_type for r in activity.reactions if r.user_id == current_user.id],
    )


@api_router.post("/activities/comment", response_model=CommentResponse, status_code=201)
async def add_comment(payload: CommentCreate, current_user: UserProfile = Depends(get_current_user)):
    activity, comment = await feed.add_comment(payload.activity_id, current_user, payload.content)
    return CommentResponse(message="Comment added", comment=comment, comment_count=activity.comment_count)


@api_router.delete("/activities/comment/{activity_id}/{comment_id}", response_model=CommentDeleteResponse)
async def delete_comment(activity_id: str, comment_id: str, current_user: UserProfile = Depends(get_current_user)):
    activity = await feed.delete_comment(activity_id, comment_id, current_user.id)
    return CommentDeleteResponse(message="Comment deleted", comment_count=activity.comment_count)


@api_router.post("/activities/cleanup-duplicates", response_model=SweepReport)
async def cleanup_achievement_duplicates(current_user: UserProfile = Depends(get_current_user)):
    return await reconciler.sweep_user(current_user.id)


# ============== EVENT LOG ROUTES ==============

@api_router.post("/weights", status_code=201)
async def log_weight(payload: WeightCreate, current_user: UserProfile = Depends(get_current_user)):
    sample = await events.add_weight_sample(current_user.id, payload.weight, payload.date or utcnow())
    await directory.set_bodyweight(current_user.id, payload.weight)
    return sample


@api_router.post("/workouts/complete", response_model=WorkoutCompleteResponse, status_code=201)
async def complete_workout(payload: WorkoutComplete, current_user: UserProfile = Depends(get_current_user)):
    if payload.category not in WORKOUT_CATEGORIES:
        raise HTTPException(status_code=400, detail="Invalid workout category")

    completed_at = payload.completed_date or utcnow()
    workout = WorkoutRecord(**payload.model_dump(exclude={"completed_date"}), completed_date=completed_at)
    stored = await events.add_completed_workout(current_user.id, workout)
    activity = await feed.publish_workout(current_user, workout, completed_at)
    return WorkoutCompleteResponse(workout=stored, activity=activity)


# ============== MAINTENANCE ==============

@api_router.post("/maintenance/sweep")
async def run_maintenance_sweep(_: None = Depends(_require_internal_token)):
    # Internal-only endpoint. Do not expose MAINTENANCE_INTERNAL_TOKEN to clients.
    return await sweep_all(directory, reconciler)


async def _scheduled_sweep() -> None:
    try:
        await sweep_all(directory, reconciler)
    except StoreUnavailable as e:
        logger.error("Scheduled duplicate sweep skipped: %s", str(e))


# ============== BASIC ROUTES ==============

@api_router.get("/")
async def root():
    return {"message": "FitBoard Leaderboard API"}


@api_router.get("/health")
async def health_check():
    return {"status": "healthy"}


# Include the router in the main app
app.include_router(api_router)

cors_origins = [o.strip() for o in config.CORS_ORIGINS.split(',') if o.strip()]
if not cors_origins:
    cors_origins = ['*']
cors_allow_all = len(cors_origins) == 1 and cors_origins[0] == '*'

app.add_middleware(
    CORSMiddleware,
    # Avoid using '*' with credentials. In production, set CORS_ORIGINS to your frontend URL(s).
    allow_credentials=not cors_allow_all,
    allow_origins=cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@app.on_event("startup")
async def startup_db_client():
    global client, maintenance_scheduler

    if config.IS_PROD and config.JWT_SECRET_SOURCE == "default":
        raise RuntimeError("JWT_SECRET must be set in production (refusing to start with default secret).")
    if config.JWT_SECRET_SOURCE == "default":
        logger.warning("JWT_SECRET not set; using insecure default. Set JWT_SECRET to match the auth service.")

    client, database = await connect(config.MONGO_URL, config.DB_NAME, config.DATA_FILE)
    init_services(database)

    if maintenance_scheduler is None:
        tz = config.get_leaderboard_tz()
        maintenance_scheduler = AsyncIOScheduler(timezone=tz)
        maintenance_scheduler.add_job(
            _scheduled_sweep,
            CronTrigger.from_crontab(config.MAINTENANCE_CRON, timezone=tz),
            id="duplicate_activity_sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )
        maintenance_scheduler.start()
        logger.info("Maintenance scheduler started (duplicate sweep: %s %s)", config.MAINTENANCE_CRON, tz.key)


@app.on_event("shutdown")
async def shutdown_db_client():
    global maintenance_scheduler
    if maintenance_scheduler is not None:
        maintenance_scheduler.shutdown(wait=False)
        maintenance_scheduler = None
    if client is not None:
        client.close()
