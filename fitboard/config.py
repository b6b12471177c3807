import os
import logging
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR.parent / '.env')

logger = logging.getLogger(__name__)

APP_ENV = os.environ.get("APP_ENV") or os.environ.get("ENV") or "development"
IS_PROD = APP_ENV.lower() in {"prod", "production"}

# JWT Settings (tokens are issued by the auth service; we only verify them)
_DEFAULT_JWT_SECRET = "fitboard-dev-secret-key-change-me-2024"
_jwt_secret_env = os.environ.get("JWT_SECRET")
JWT_SECRET = _jwt_secret_env or _DEFAULT_JWT_SECRET
JWT_SECRET_SOURCE = "env" if _jwt_secret_env else "default"
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")

# Storage
MONGO_URL = os.environ.get("MONGO_URL")
DB_NAME = os.environ.get("DB_NAME", "fitboard")
DATA_FILE = os.environ.get("DATA_FILE")
DEFAULT_DATA_FILE = ROOT_DIR.parent / "data" / "db.json"

# Leaderboards
LEADERBOARD_TZ = os.environ.get("LEADERBOARD_TZ", "UTC")
DEFAULT_COHORT = os.environ.get("DEFAULT_COHORT", "BSCS")
_cohorts_env = os.environ.get("LEADERBOARD_COHORTS", "BSCS,BSIT")
LEADERBOARD_COHORTS: List[str] = [c.strip() for c in _cohorts_env.split(",") if c.strip()]

# Maintenance: crontab expression in leaderboard timezone
MAINTENANCE_CRON = os.environ.get("MAINTENANCE_CRON", "30 3 * * *")

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")


def get_leaderboard_tz() -> ZoneInfo:
    try:
        return ZoneInfo(LEADERBOARD_TZ or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown LEADERBOARD_TZ %r, using UTC", LEADERBOARD_TZ)
        return ZoneInfo("UTC")


def get_maintenance_token() -> str:
    # Read per request so the token can be rotated without a restart.
    return os.environ.get("MAINTENANCE_INTERNAL_TOKEN", "")
