"""Connection history cleanup and database maintenance job"""

from fleetbot.config import settings
from fleetbot.database import database
from fleetbot.services.statistics_service import statistics_service
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


async def cleanup_episodes_job():
    """Drop old connection episodes, then VACUUM/ANALYZE"""
    try:
        logger.debug("🧹 Starting connection history cleanup...")
        removed = await statistics_service.cleanup_old_episodes(settings.episode_retention_days)

        await database.vacuum_and_analyze()

        if removed:
            logger.info(f"🧹 Cleanup finished, {removed} old episode(s) removed")
        else:
            logger.debug("✅ No old connection episodes to clean up")
    except Exception as e:
        logger.error(f"❌ Failed to clean up connection history: {e}", exc_info=True)
