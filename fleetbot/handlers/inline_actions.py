"""Inline keyboard callback handlers for bot actions"""

from aiogram import Bot, Dispatcher
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup

from fleetbot.exceptions import FleetError
from fleetbot.models.user import User
from fleetbot.services.fleet_manager import fleet_manager
from fleetbot.utils.formatting import format_bot_info
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

CALLBACK_PREFIX = "bot:"


def bot_actions_keyboard(bot_id: int, running: bool) -> InlineKeyboardMarkup:
    """Start/stop, info and delete buttons for one bot"""
    toggle = (
        InlineKeyboardButton(text="⏹️ Stop", callback_data=f"bot:stop:{bot_id}")
        if running
        else InlineKeyboardButton(text="▶️ Start", callback_data=f"bot:start:{bot_id}")
    )
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                toggle,
                InlineKeyboardButton(text="ℹ️ Info", callback_data=f"bot:info:{bot_id}"),
                InlineKeyboardButton(text="🗑️ Delete", callback_data=f"bot:delete:{bot_id}"),
            ]
        ]
    )


def delete_confirmation_keyboard(bot_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="✅ Yes, delete", callback_data=f"bot:confirmdelete:{bot_id}"),
                InlineKeyboardButton(text="↩️ Cancel", callback_data=f"bot:info:{bot_id}"),
            ]
        ]
    )


def parse_callback(data: str):
    """'bot:<action>:<id>' -> (action, id); None when malformed"""
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != "bot" or not parts[2].isdigit():
        return None
    return parts[1], int(parts[2])


def setup_inline_actions(dp: Dispatcher, bot: Bot):
    """Setup inline keyboard callback handlers"""

    @dp.callback_query(lambda c: c.data and c.data.startswith(CALLBACK_PREFIX))
    async def handle_bot_action(callback: CallbackQuery, fleet_user: User):
        """Handle start/stop/info/delete buttons"""
        parsed = parse_callback(callback.data or "")
        if not parsed or not callback.message:
            await callback.answer("❌ Invalid action")
            return

        action, bot_id = parsed
        try:
            await fleet_manager.get_owned_bot(bot_id, fleet_user.id)
        except FleetError as e:
            await callback.answer(f"❌ {e}", show_alert=True)
            return

        try:
            if action == "start":
                result = await fleet_manager.start_bot(bot_id)
                await _answer_result(callback, result, bot_id)
            elif action == "stop":
                result = await fleet_manager.stop_bot(bot_id)
                await _answer_result(callback, result, bot_id)
            elif action == "info":
                await callback.answer()
                await _show_info(callback, bot_id)
            elif action == "delete":
                await callback.answer()
                await callback.message.edit_text(
                    f"🗑️ Delete bot #{bot_id}? This cannot be undone.",
                    reply_markup=delete_confirmation_keyboard(bot_id),
                )
            elif action == "confirmdelete":
                result = await fleet_manager.delete_bot(bot_id, fleet_user.id)
                if result["success"]:
                    await callback.answer("🗑️ Deleted")
                    await callback.message.edit_text(f"🗑️ Bot #{bot_id} deleted.")
                else:
                    await callback.answer(f"❌ {result['error']}", show_alert=True)
            else:
                await callback.answer(f"❌ Unknown action: {action}")
        except Exception as e:
            logger.error(f"Failed to handle bot action {callback.data}: {e}", exc_info=True)
            try:
                await callback.answer("❌ Action failed", show_alert=True)
            except Exception as answer_error:
                logger.debug(f"Could not answer callback: {answer_error}")


async def _answer_result(callback: CallbackQuery, result, bot_id: int):
    if result["success"]:
        await callback.answer(f"✅ {result.get('message', 'Done')}")
        await _show_info(callback, bot_id)
    else:
        await callback.answer(f"❌ {result['error']}", show_alert=True)


async def _show_info(callback: CallbackQuery, bot_id: int):
    result = await fleet_manager.get_bot_info(bot_id)
    if not result["success"]:
        await callback.message.edit_text(f"❌ {result['error']}")
        return
    await callback.message.edit_text(
        format_bot_info(result["data"]),
        reply_markup=bot_actions_keyboard(bot_id, running=fleet_manager.is_running(bot_id)),
    )
