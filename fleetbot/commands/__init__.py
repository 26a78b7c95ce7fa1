"""Telegram command handlers"""

from typing import Optional
from aiogram import Bot, Dispatcher

from fleetbot.commands.admin_commands import setup_admin_commands
from fleetbot.commands.bot_commands import setup_bot_commands
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


async def setup_commands(dp: Optional[Dispatcher], bot: Optional[Bot]):
    """Register every command router on the dispatcher"""
    if not dp:
        return

    try:
        await setup_bot_commands(dp, bot)
        await setup_admin_commands(dp, bot)
    except Exception as e:
        logger.error(f"Failed to register fleet commands: {e}")
        raise
