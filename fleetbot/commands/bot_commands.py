"""Game bot management commands"""

from html import escape
from typing import List, Optional
from aiogram import Dispatcher, Bot
from aiogram.types import Message, InlineKeyboardMarkup
from aiogram.filters import Command

from fleetbot.clients.editions import DEFAULT_PORTS, EDITION_LABELS
from fleetbot.exceptions import FleetError
from fleetbot.handlers.inline_actions import bot_actions_keyboard
from fleetbot.models.user import User
from fleetbot.services.fleet_manager import fleet_manager
from fleetbot.utils.formatting import format_bot_info, format_bot_line, format_minutes
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


def command_args(message: Message, maxsplit: int = -1) -> List[str]:
    """Arguments after the command word"""
    if not message.text:
        return []
    return message.text.split(maxsplit=maxsplit)[1:]


def parse_bot_id(value: str) -> Optional[int]:
    value = value.lstrip("#")
    return int(value) if value.isdigit() else None


async def resolve_owned_bot(message: Message, fleet_user: User, raw_id: str) -> Optional[int]:
    """Bot id the sender owns, or None after telling them why not"""
    bot_id = parse_bot_id(raw_id)
    if bot_id is None:
        await message.answer("❌ Invalid bot id. Use /mybots to see your bots.")
        return None
    try:
        await fleet_manager.get_owned_bot(bot_id, fleet_user.id)
    except FleetError as e:
        await message.answer(f"❌ {escape(str(e))}")
        return None
    return bot_id


async def answer_result(message: Message, result, success_text: str, reply_markup: Optional[InlineKeyboardMarkup] = None):
    if result.get("success"):
        await message.answer(success_text, reply_markup=reply_markup)
    else:
        await message.answer(f"❌ <b>Failed:</b> {escape(result.get('error', 'Unknown error'))}")


async def setup_bot_commands(dp: Optional[Dispatcher], bot: Optional[Bot]):
    """Setup game bot management commands"""
    if not dp:
        return

    # Create bot command
    @dp.message(Command("newbot"))
    async def new_bot_command(message: Message, fleet_user: User):
        """Create a new game bot"""
        args = command_args(message)

        if len(args) < 5:
            await message.answer(
                "❌ <b>Invalid syntax.</b>\n\n"
                "Usage: /newbot &lt;java|bedrock&gt; &lt;version&gt; &lt;host&gt; &lt;port&gt; &lt;name&gt;\n\n"
                "Examples:\n"
                f"• /newbot java 1.21.1 play.example.com {DEFAULT_PORTS['java']} Scout\n"
                f"• /newbot bedrock 1.21.93 bedrock.example.com {DEFAULT_PORTS['bedrock']} Scout\n\n"
                "Use /versions to see supported versions."
            )
            return

        edition, version, host, port = args[:4]
        name = " ".join(args[4:])

        try:
            result = await fleet_manager.create_bot(fleet_user.id, name, host, port, edition.lower(), version)
            if result.get("success"):
                bot_id = result["data"]["bot_id"]
                await message.answer(
                    "✅ <b>Bot created!</b>\n\n"
                    f"🆔 ID: <b>{bot_id}</b>\n"
                    f"🤖 Name: {escape(name)}\n"
                    f"🌐 Server: {escape(host)}:{escape(str(port))}\n"
                    f"🎮 Edition: {EDITION_LABELS.get(edition.lower(), escape(edition))} {escape(version)}\n\n"
                    f"Use /startbot {bot_id} to connect it.",
                    reply_markup=bot_actions_keyboard(bot_id, running=False),
                )
            else:
                hint = "\n\nDelete one with /deletebot or /clearmybots first." if result.get("code") == "quota_exceeded" else ""
                await message.answer(f"❌ <b>Failed to create bot:</b> {escape(result.get('error', 'Unknown error'))}{hint}")
        except Exception as e:
            logger.error(f"Failed to create bot for user {fleet_user.telegram_id}: {e}")
            await message.answer("❌ Failed to create bot. Please try again.")

    # List bots command
    @dp.message(Command("mybots"))
    async def my_bots_command(message: Message, fleet_user: User):
        """List the sender's bots"""
        try:
            result = await fleet_manager.get_user_bots(fleet_user.id)
            if not result.get("success"):
                await message.answer(f"❌ {escape(result.get('error', 'Unknown error'))}")
                return

            bots = result["data"]
            if not bots:
                await message.answer("📋 <b>You have no bots yet.</b>\n\nUse /newbot to create one.")
                return

            await message.answer(f"📋 <b>Your bots ({len(bots)}):</b>")
            for item in bots:
                await message.answer(
                    format_bot_line(item),
                    reply_markup=bot_actions_keyboard(item["id"], running=fleet_manager.is_running(item["id"])),
                )
        except Exception as e:
            logger.error(f"Failed to list bots for user {fleet_user.telegram_id}: {e}")
            await message.answer("❌ Failed to list bots. Please try again.")

    # Bot info command
    @dp.message(Command("botinfo"))
    async def bot_info_command(message: Message, fleet_user: User):
        """Show details of one bot"""
        args = command_args(message)
        if not args:
            await message.answer("❌ Usage: /botinfo &lt;id&gt;")
            return

        bot_id = await resolve_owned_bot(message, fleet_user, args[0])
        if bot_id is None:
            return

        result = await fleet_manager.get_bot_info(bot_id)
        if not result.get("success"):
            await message.answer(f"❌ {escape(result.get('error', 'Unknown error'))}")
            return
        await message.answer(
            format_bot_info(result["data"]),
            reply_markup=bot_actions_keyboard(bot_id, running=fleet_manager.is_running(bot_id)),
        )

    # Start bot command
    @dp.message(Command("startbot"))
    async def start_bot_command(message: Message, fleet_user: User):
        """Connect a bot to its server"""
        args = command_args(message)
        if not args:
            await message.answer("❌ Usage: /startbot &lt;id&gt;")
            return

        bot_id = await resolve_owned_bot(message, fleet_user, args[0])
        if bot_id is None:
            return

        result = await fleet_manager.start_bot(bot_id)
        await answer_result(
            message,
            result,
            f"🚀 <b>Bot #{bot_id} starting...</b>\n\nYou will be notified when it joins the server.",
            reply_markup=bot_actions_keyboard(bot_id, running=True),
        )

    # Stop bot command
    @dp.message(Command("stopbot"))
    async def stop_bot_command(message: Message, fleet_user: User):
        """Disconnect a bot"""
        args = command_args(message)
        if not args:
            await message.answer("❌ Usage: /stopbot &lt;id&gt;")
            return

        bot_id = await resolve_owned_bot(message, fleet_user, args[0])
        if bot_id is None:
            return

        result = await fleet_manager.stop_bot(bot_id)
        await answer_result(
            message,
            result,
            f"⏹️ <b>Bot #{bot_id} stopped.</b>",
            reply_markup=bot_actions_keyboard(bot_id, running=False),
        )

    # Delete bot command
    @dp.message(Command("deletebot"))
    async def delete_bot_command(message: Message, fleet_user: User):
        """Delete a bot"""
        args = command_args(message)
        if not args:
            await message.answer("❌ Usage: /deletebot &lt;id&gt;")
            return

        bot_id = parse_bot_id(args[0])
        if bot_id is None:
            await message.answer("❌ Invalid bot id. Use /mybots to see your bots.")
            return

        # Ownership is checked by the fleet manager
        result = await fleet_manager.delete_bot(bot_id, fleet_user.id)
        await answer_result(message, result, f"🗑️ <b>Bot #{bot_id} deleted.</b>")

    # Rename bot command
    @dp.message(Command("renamebot"))
    async def rename_bot_command(message: Message, fleet_user: User):
        """Change a bot's in-game name"""
        args = command_args(message, maxsplit=2)
        if len(args) < 2:
            await message.answer("❌ Usage: /renamebot &lt;id&gt; &lt;name&gt;")
            return

        bot_id = await resolve_owned_bot(message, fleet_user, args[0])
        if bot_id is None:
            return

        result = await fleet_manager.rename_bot(bot_id, args[1])
        restarted = result.get("data", {}).get("restarted") if result.get("success") else False
        text = f"✏️ <b>Bot #{bot_id} renamed to {escape(args[1].strip())}</b>"
        if restarted:
            text += "\n\n🔄 The bot was restarted to apply the change."
        await answer_result(message, result, text)

    # Change server command
    @dp.message(Command("setserver"))
    async def set_server_command(message: Message, fleet_user: User):
        """Point a bot at another server"""
        args = command_args(message)
        if len(args) < 3:
            await message.answer("❌ Usage: /setserver &lt;id&gt; &lt;host&gt; &lt;port&gt;")
            return

        bot_id = await resolve_owned_bot(message, fleet_user, args[0])
        if bot_id is None:
            return

        result = await fleet_manager.update_bot_server(bot_id, args[1], args[2])
        restarted = result.get("data", {}).get("restarted") if result.get("success") else False
        text = f"🌐 <b>Bot #{bot_id} now targets {escape(args[1])}:{escape(args[2])}</b>"
        if restarted:
            text += "\n\n🔄 The bot was restarted to apply the change."
        await answer_result(message, result, text)

    # In-game chat command
    @dp.message(Command("say"))
    async def say_command(message: Message, fleet_user: User):
        """Send a chat message through a bot"""
        args = command_args(message, maxsplit=2)
        if len(args) < 2:
            await message.answer("❌ Usage: /say &lt;id&gt; &lt;text&gt;")
            return

        bot_id = await resolve_owned_bot(message, fleet_user, args[0])
        if bot_id is None:
            return

        result = await fleet_manager.send_message(bot_id, args[1])
        await answer_result(message, result, "💬 Message sent.")

    # In-game command
    @dp.message(Command("cmd"))
    async def cmd_command(message: Message, fleet_user: User):
        """Run a server command through a bot"""
        args = command_args(message, maxsplit=2)
        if len(args) < 2:
            await message.answer("❌ Usage: /cmd &lt;id&gt; &lt;command&gt;\n\nExample: /cmd 1 list")
            return

        bot_id = await resolve_owned_bot(message, fleet_user, args[0])
        if bot_id is None:
            return

        result = await fleet_manager.execute_command(bot_id, args[1])
        await answer_result(message, result, f"⌨️ Command sent: <code>/{escape(args[1].lstrip('/'))}</code>")

    # Supported versions command
    @dp.message(Command("versions"))
    async def versions_command(message: Message):
        """List supported game versions"""
        lines = ["📦 <b>Supported versions</b>", ""]
        for edition, versions in fleet_manager.get_supported_versions().items():
            lines.append(f"{EDITION_LABELS.get(edition, edition)}: {', '.join(versions)}")
        await message.answer("\n".join(lines))

    # Clear all bots command
    @dp.message(Command("clearmybots"))
    async def clear_my_bots_command(message: Message, fleet_user: User):
        """Stop and delete all of the sender's bots"""
        try:
            result = await fleet_manager.clear_user_bots(fleet_user.id)
            if result.get("success"):
                deleted = result["data"]["deleted"]
                await message.answer(f"🧹 <b>Removed {deleted} bot(s).</b>")
            else:
                await message.answer(f"❌ {escape(result.get('error', 'Unknown error'))}")
        except Exception as e:
            logger.error(f"Failed to clear bots for user {fleet_user.telegram_id}: {e}")
            await message.answer("❌ Failed to remove bots. Please try again.")

    # Statistics command
    @dp.message(Command("stats"))
    async def stats_command(message: Message, fleet_user: User):
        """Fleet statistics"""
        try:
            stats = (await fleet_manager.get_general_stats())["data"]
            text = (
                "📊 <b>Fleet statistics</b>\n\n"
                f"👤 Users: {stats['total_users']}\n"
                f"🤖 Bots: {stats['total_bots']}\n"
                f"🟢 Running: {stats['active_instances']} ({stats['connected_instances']} connected)\n"
                f"⏱️ Total uptime: {format_minutes(stats['total_uptime_minutes'])}"
            )
            if fleet_user.is_admin:
                text += f"\n⚠️ Active alerts: {stats['active_alerts']}"
            await message.answer(text)
        except Exception as e:
            logger.error(f"Failed to get stats: {e}")
            await message.answer("❌ Failed to get statistics. Please try again.")
