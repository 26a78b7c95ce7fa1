"""Notification service: lifecycle and alert messages to bot owners"""

import asyncio
from html import escape
from typing import Any, Dict, Optional, Set

from fleetbot.clients.editions import EDITION_LABELS
from fleetbot.models.bot_record import BotRecord
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

BROADCAST_DELAY = 0.1


def describe_error(reason: str) -> str:
    """Owner-facing explanation of a connection error"""
    lowered = reason.lower()
    if "getaddrinfo" in lowered or "name or service not known" in lowered or "nodename nor servname" in lowered:
        return "🔍 Server address could not be found\n💡 Check the server host"
    if "connection refused" in lowered:
        return "🔍 The server refused the connection\n💡 Make sure the server is online and the port is right"
    if "timeout" in lowered or "timed out" in lowered:
        return "🔍 The connection timed out\n💡 Check the server or try again later"
    if "xbox" in lowered or "premium" in lowered or "authentication" in lowered:
        return "🔍 The server requires an authenticated account\n💡 Try an offline-mode server"
    if "whitelist" in lowered:
        return "🔍 The bot is not on the server whitelist"
    if "banned" in lowered:
        return "🔍 The bot is banned from this server"
    return f"🔍 {escape(reason)}"


class NotificationService:
    """Fire-and-forget delivery of bot events to the owner's Telegram chat

    Each notification runs in its own task; a failed delivery is logged and
    dropped. Nothing here ever raises into the caller.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def _dispatch(self, bot: BotRecord, text: str, **kwargs) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(bot.owner_id, text, **kwargs))
        except RuntimeError:
            logger.debug(f"No event loop, dropping notification for bot {bot.id}")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, owner_id: int, text: str, **kwargs) -> None:
        try:
            from fleetbot.bot import bot_service
            from fleetbot.services.user_service import user_service

            if not bot_service.bot:
                logger.debug("Telegram bot not initialized, notification skipped")
                return

            user = await user_service.get_user(owner_id)
            if not user:
                logger.warning(f"Owner {owner_id} not found, notification dropped")
                return

            await bot_service.send_message(user.telegram_id, text, **kwargs)
        except Exception as e:
            logger.error(f"Failed to deliver notification to owner {owner_id}: {e}")

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight deliveries"""
        if not self._tasks:
            return
        await asyncio.wait(list(self._tasks), timeout=timeout)

    async def broadcast(self, text: str, delay: float = BROADCAST_DELAY) -> Dict[str, int]:
        """Send an announcement to every registered user

        Sent one at a time with a short pause to stay under Telegram's rate
        limits. Returns sent/failed/total counts.
        """
        from fleetbot.bot import bot_service
        from fleetbot.services.user_service import user_service

        users = await user_service.get_all_users()
        counts = {"sent": 0, "failed": 0, "total": len(users)}
        if not bot_service.bot:
            logger.warning("Telegram bot not initialized, broadcast skipped")
            counts["failed"] = len(users)
            return counts

        body = f"📢 <b>Announcement</b>\n\n{escape(text)}"
        for index, user in enumerate(users):
            if index:
                await asyncio.sleep(delay)
            if await bot_service.send_message(user.telegram_id, body):
                counts["sent"] += 1
            else:
                counts["failed"] += 1

        logger.info(f"📢 Broadcast delivered to {counts['sent']}/{counts['total']} user(s)")
        return counts

    def connected(self, bot: BotRecord, metadata: Optional[Dict[str, Any]] = None) -> None:
        from fleetbot.handlers.inline_actions import bot_actions_keyboard

        text = (
            "✅ <b>Bot connected to the server!</b>\n\n"
            f"🤖 <b>Bot:</b> {escape(bot.name)}\n"
            f"🌐 <b>Server:</b> {escape(bot.host)}:{bot.port}\n"
            f"🎮 <b>Edition:</b> {EDITION_LABELS.get(bot.edition, bot.edition)}\n"
            f"📦 <b>Version:</b> {escape(bot.version)}"
        )
        motd = (metadata or {}).get("motd")
        if motd:
            text += f"\n📝 <b>MOTD:</b> {escape(str(motd))}"
        self._dispatch(bot, text, reply_markup=bot_actions_keyboard(bot.id, running=True))

    def disconnected(self, bot: BotRecord, reason: str = "") -> None:
        # Owners hear about outages through the warning sequence
        logger.info(f"🔌 Bot {bot.id} ({bot.name}) disconnected: {reason}")

    def error(self, bot: BotRecord, reason: str) -> None:
        text = f"❌ <b>Error in {escape(bot.name)}</b>\n\n{describe_error(reason)}"
        self._dispatch(bot, text)

    def disconnection_warning(self, bot: BotRecord, count: int, limit: int) -> None:
        remaining = limit - count
        text = (
            f"⚠️ <b>Warning: connection problem</b> ({count}/{limit})\n\n"
            f"🤖 Bot: {escape(bot.name)}\n"
            f"🌐 Server: {escape(bot.host)}:{bot.port}\n\n"
            "🔄 The bot is trying to reconnect...\n"
            "💡 If this keeps happening, check the server\n\n"
            f"⏰ The bot will be stopped after {remaining} more warning(s)"
        )
        self._dispatch(bot, text)

    def disconnection_final(self, bot: BotRecord) -> None:
        from fleetbot.handlers.inline_actions import bot_actions_keyboard

        text = (
            "🛑 <b>Bot stopped</b>\n\n"
            f"🤖 <b>Bot:</b> {escape(bot.name)}\n"
            f"🌐 <b>Server:</b> {escape(bot.host)}:{bot.port}\n\n"
            "The server could not be reached after repeated attempts.\n"
            "💡 Start the bot again once the server is back online."
        )
        self._dispatch(bot, text, reply_markup=bot_actions_keyboard(bot.id, running=False))

    def chat(self, bot: BotRecord, speaker: str, message: str) -> None:
        text = f"💬 <b>{escape(bot.name)}</b> | {escape(speaker)}: {escape(message)}"
        self._dispatch(bot, text)


# Global notification service instance
notification_service = NotificationService()
