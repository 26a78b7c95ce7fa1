"""Admin-only commands: fleet-wide listings, announcements and cleanup"""

from html import escape
from typing import Optional
from aiogram import Dispatcher, Bot
from aiogram.types import Message
from aiogram.filters import Command

from fleetbot.commands.bot_commands import command_args
from fleetbot.config import settings
from fleetbot.models.user import User
from fleetbot.services.fleet_manager import fleet_manager
from fleetbot.services.notification_service import notification_service
from fleetbot.utils.formatting import format_admin_bot_line, format_minutes, format_user_line
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

CLEAR_ALL_CONFIRMATION = "confirm"

# Telegram rejects messages above 4096 characters
MAX_MESSAGE_LENGTH = 4000


def is_admin(fleet_user: Optional[User]) -> bool:
    """Admin flag from registration, or a Telegram id listed in ADMIN_USER_IDS"""
    if not fleet_user:
        return False
    return bool(fleet_user.is_admin) or fleet_user.telegram_id in settings.admin_user_ids


def chunk_lines(header: str, lines):
    """Split a listing into messages that fit Telegram's length limit"""
    chunks = []
    current = header
    for line in lines:
        if len(current) + len(line) + 2 > MAX_MESSAGE_LENGTH:
            chunks.append(current)
            current = line
        else:
            current = f"{current}\n\n{line}" if current else line
    chunks.append(current)
    return chunks


async def deny(message: Message):
    await message.answer("❌ This command is only available to admins.")


async def setup_admin_commands(dp: Optional[Dispatcher], bot: Optional[Bot]):
    """Setup admin commands"""
    if not dp:
        return

    # Admin panel command
    @dp.message(Command("admin"))
    async def admin_command(message: Message, fleet_user: User):
        """Fleet overview and the admin command list"""
        if not is_admin(fleet_user):
            await deny(message)
            return

        try:
            stats = (await fleet_manager.get_general_stats())["data"]
            await message.answer(
                "⚙️ <b>Admin panel</b>\n\n"
                f"👤 Users: {stats['total_users']}\n"
                f"🤖 Bots: {stats['total_bots']}\n"
                f"🟢 Running: {stats['active_instances']} ({stats['connected_instances']} connected)\n"
                f"⚠️ Active alerts: {stats['active_alerts']}\n"
                f"⏱️ Total uptime: {format_minutes(stats['total_uptime_minutes'])}\n\n"
                "<b>Commands:</b>\n"
                "/allusers - List every user\n"
                "/allbots - List every bot\n"
                "/broadcast &lt;text&gt; - Message every user\n"
                "/clearallbots - Delete every bot"
            )
        except Exception as e:
            logger.error(f"Failed to build admin panel: {e}")
            await message.answer("❌ Failed to load the admin panel. Please try again.")

    # All users command
    @dp.message(Command("allusers"))
    async def all_users_command(message: Message, fleet_user: User):
        """List every registered user"""
        if not is_admin(fleet_user):
            await deny(message)
            return

        result = await fleet_manager.get_all_users()
        if not result.get("success"):
            await message.answer(f"❌ {escape(result.get('error', 'Unknown error'))}")
            return

        users = result["data"]
        if not users:
            await message.answer("👥 <b>No registered users.</b>")
            return

        header = f"👥 <b>All users ({len(users)}):</b>"
        for chunk in chunk_lines(header, [format_user_line(user) for user in users]):
            await message.answer(chunk)

    # All bots command
    @dp.message(Command("allbots"))
    async def all_bots_command(message: Message, fleet_user: User):
        """List every bot of every owner"""
        if not is_admin(fleet_user):
            await deny(message)
            return

        result = await fleet_manager.get_all_bots()
        if not result.get("success"):
            await message.answer(f"❌ {escape(result.get('error', 'Unknown error'))}")
            return

        bots = result["data"]
        if not bots:
            await message.answer("🤖 <b>No bots in the fleet.</b>")
            return

        header = f"🤖 <b>All bots ({len(bots)}):</b>"
        for chunk in chunk_lines(header, [format_admin_bot_line(item) for item in bots]):
            await message.answer(chunk)

    # Broadcast command
    @dp.message(Command("broadcast"))
    async def broadcast_command(message: Message, fleet_user: User):
        """Send an announcement to every user"""
        if not is_admin(fleet_user):
            await deny(message)
            return

        args = command_args(message, maxsplit=1)
        if not args or not args[0].strip():
            await message.answer("❌ Usage: /broadcast &lt;text&gt;")
            return

        await message.answer("📢 Sending announcement...")
        try:
            counts = await notification_service.broadcast(args[0].strip())
        except Exception as e:
            logger.error(f"Broadcast failed: {e}")
            await message.answer("❌ Broadcast failed. Please try again.")
            return

        await message.answer(
            "✅ <b>Announcement sent</b>\n\n"
            f"📤 Delivered: {counts['sent']}\n"
            f"❌ Failed: {counts['failed']}\n"
            f"📊 Total: {counts['total']}"
        )

    # Clear every bot command
    @dp.message(Command("clearallbots"))
    async def clear_all_bots_command(message: Message, fleet_user: User):
        """Stop and delete every bot in the fleet"""
        if not is_admin(fleet_user):
            await deny(message)
            return

        args = command_args(message)
        if not args or args[0].lower() != CLEAR_ALL_CONFIRMATION:
            await message.answer(
                "⚠️ <b>This deletes every bot of every user.</b>\n\n"
                f"Send /clearallbots {CLEAR_ALL_CONFIRMATION} to go ahead."
            )
            return

        result = await fleet_manager.clear_all_bots()
        if result.get("success"):
            data = result["data"]
            logger.warning(f"Admin {fleet_user.telegram_id} cleared {data['deleted']} bot(s)")
            await message.answer(f"🧹 <b>Removed {data['deleted']} of {data['total']} bot(s).</b>")
        else:
            await message.answer(f"❌ {escape(result.get('error', 'Unknown error'))}")
