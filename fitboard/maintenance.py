"""Out-of-band duplicate cleanup.

Run from the scheduler or by hand::

    python -m fitboard.maintenance
"""
import asyncio
import logging
from typing import Any, Dict

from fitboard import config
from fitboard.database import connect
from fitboard.reconciler import AchievementReconciler
from fitboard.repositories import ActivityStore, UserDirectory

logger = logging.getLogger(__name__)


async def sweep_all(directory: UserDirectory, reconciler: AchievementReconciler) -> Dict[str, Any]:
    users = await directory.list_all_users()
    totals = {"users": len(users), "achievement_duplicates_removed": 0, "ranking_duplicates_merged": 0}

    for user in users:
        sweep = await reconciler.sweep_user(user.id)
        merged = await reconciler.reconcile_user(user.id)
        totals["achievement_duplicates_removed"] += sweep.duplicates_removed
        totals["ranking_duplicates_merged"] += merged.duplicates_removed

    logger.info(
        "Cleanup complete. users=%s achievements removed=%s rankings merged=%s",
        totals["users"], totals["achievement_duplicates_removed"], totals["ranking_duplicates_merged"],
    )
    return totals


async def main() -> Dict[str, Any]:
    client, db = await connect(config.MONGO_URL, config.DB_NAME, config.DATA_FILE)
    try:
        reconciler = AchievementReconciler(ActivityStore(db))
        return await sweep_all(UserDirectory(db), reconciler)
    finally:
        if client is not None:
            client.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(main())
