"""Periodic health sweep over running bots"""

from fleetbot.services.fleet_manager import fleet_manager
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


async def health_sweep_job():
    """Check every registered bot and escalate the ones that are down"""
    try:
        summary = await fleet_manager.run_health_sweep()
        if summary["disconnected"]:
            logger.warning(
                f"🩺 Health sweep: {summary['checked']} checked, "
                f"{summary['alive']} alive, {summary['disconnected']} disconnected"
            )
        else:
            logger.debug(f"🩺 Health sweep: {summary['checked']} checked, {summary['alive']} alive")
    except Exception as e:
        logger.error(f"❌ Health sweep failed: {e}", exc_info=True)
