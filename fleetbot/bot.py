"""Telegram front end of the fleet, built on aiogram"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple, Union

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandStart
from aiogram.types import BotCommand, CallbackQuery, Message

from fleetbot.commands import setup_commands
from fleetbot.config import settings
from fleetbot.database import database
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

# (section title, [(command, description)]) in the order shown by /help
COMMAND_SECTIONS: List[Tuple[str, List[Tuple[str, str]]]] = [
    ("Basics", [
        ("start", "Register and show this message"),
        ("help", "Show help message"),
        ("ping", "Check if the bot answers"),
    ]),
    ("Your Bots", [
        ("newbot", "Create a Minecraft bot"),
        ("mybots", "List your bots"),
        ("botinfo", "Show bot details"),
        ("startbot", "Connect a bot to its server"),
        ("stopbot", "Disconnect a bot"),
        ("deletebot", "Delete a bot"),
        ("renamebot", "Change a bot's name"),
        ("setserver", "Change a bot's server"),
        ("clearmybots", "Delete all your bots"),
    ]),
    ("In Game", [
        ("say", "Send a chat message in game"),
        ("cmd", "Run a server command in game"),
    ]),
    ("Information", [
        ("versions", "Supported game versions"),
        ("stats", "Fleet statistics"),
    ]),
    ("Admin", [
        ("admin", "Admin panel"),
        ("allusers", "List every user"),
        ("allbots", "List every bot"),
        ("broadcast", "Message every user"),
        ("clearallbots", "Delete every bot"),
    ]),
]


def build_help_text() -> str:
    lines = ["<b>FleetBot</b> - Minecraft bots controlled from Telegram"]
    for title, commands in COMMAND_SECTIONS:
        lines.append("")
        lines.append(f"<b>{title}:</b>")
        lines.extend(f"/{command} - {description}" for command, description in commands)
    return "\n".join(lines)


HELP_TEXT = build_help_text()


def is_allowed(user_id: Optional[int]) -> bool:
    """ALLOWED_USER_ID restricts the whole bot to one Telegram account"""
    if not settings.allowed_user_id:
        return True
    return user_id == settings.allowed_user_id


class BotService:
    """Owns the aiogram Bot and Dispatcher and the polling task"""

    def __init__(self):
        self.bot: Optional[Bot] = None
        self.dp: Optional[Dispatcher] = None
        self.bot_username: Optional[str] = None
        self.bot_id: Optional[int] = None
        self.is_polling = False
        self._polling_task: Optional[asyncio.Task] = None

    async def initialize(self):
        try:
            self.bot = Bot(
                token=settings.bot_token,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML),
            )
            self.dp = Dispatcher()

            me = await self.bot.get_me()
            self.bot_username = me.username
            self.bot_id = me.id

            self._setup_middleware()
            self._setup_handlers()
            await self._setup_commands()
            self._setup_inline_actions()
            await self._set_bot_commands()

            logger.info(f"🤖 Telegram bot ready: @{self.bot_username}")
        except Exception as e:
            logger.error(f"Failed to initialize Telegram bot: {e}")
            raise

    def _setup_middleware(self):
        """Access check, then user registration, then message logging"""
        if not self.dp:
            return

        @self.dp.message.outer_middleware()
        @self.dp.callback_query.outer_middleware()
        async def access_middleware(handler, event: Union[Message, CallbackQuery], data: Dict[str, Any]):
            user_id = event.from_user.id if event.from_user else None
            if is_allowed(user_id):
                return await handler(event, data)

            logger.warning(f"⛔ Rejected update from user {user_id}")
            if user_id is None:
                return None
            if isinstance(event, CallbackQuery):
                await event.answer("❌ You are not authorized to use this bot.", show_alert=True)
            else:
                await event.answer("❌ You are not authorized to use this bot.")
            return None

        from fleetbot.middleware.user_context import UserContextMiddleware

        self.dp.message.middleware(UserContextMiddleware())
        self.dp.callback_query.middleware(UserContextMiddleware())

        @self.dp.message.middleware()
        async def logging_middleware(handler, event: Message, data: Dict[str, Any]):
            command = (event.text or "").split(maxsplit=1)[0] if event.text else "<non-text>"
            logger.debug(
                f"📨 {command} from {event.from_user.id if event.from_user else 'unknown'}",
                extra={"chatId": event.chat.id if event.chat else None},
            )
            return await handler(event, data)

    def _setup_handlers(self):
        if not self.dp:
            return

        @self.dp.message(CommandStart())
        async def start_command(message: Message):
            name = message.from_user.first_name if message.from_user else "there"
            await message.answer(f"👋 Hi {name}!\n\n{HELP_TEXT}")

        @self.dp.message(Command("help"))
        async def help_command(message: Message):
            await message.answer(HELP_TEXT)

        @self.dp.message(Command("ping"))
        async def ping_command(message: Message):
            await message.answer("🏓 Pong!")

    async def _setup_commands(self):
        try:
            await setup_commands(self.dp, self.bot)
        except Exception as e:
            logger.error(f"Failed to set up command handlers: {e}")

    def _setup_inline_actions(self):
        if not self.dp or not self.bot:
            return

        from fleetbot.handlers.inline_actions import setup_inline_actions

        setup_inline_actions(self.dp, self.bot)

    async def _set_bot_commands(self):
        """Publish the command menu shown by Telegram clients"""
        if not self.bot:
            return

        menu = [
            BotCommand(command=command, description=description)
            for _, commands in COMMAND_SECTIONS
            for command, description in commands
        ]
        try:
            await self.bot.set_my_commands(menu)
        except Exception as e:
            logger.error(f"Failed to register bot commands: {e}")

    async def start_polling(self):
        if not self.bot or not self.dp:
            raise RuntimeError("Bot not initialized. Call initialize() first.")
        if self.is_polling:
            logger.warning("Telegram polling already running")
            return

        try:
            await self.bot.delete_webhook(drop_pending_updates=True)
        except Exception as e:
            logger.warning(f"Could not clear webhook: {e}")

        self.is_polling = True
        self._polling_task = asyncio.create_task(self.dp.start_polling(self.bot, handle_signals=False))
        logger.debug("📡 Telegram polling started")

    async def stop_polling(self):
        task, self._polling_task = self._polling_task, None
        self.is_polling = False
        if not task:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Polling ended with an error: {e}")
        logger.debug("📡 Telegram polling stopped")

    async def send_message(self, chat_id: int, text: str, **kwargs) -> Optional[Message]:
        """Send a message; returns None when Telegram rejects it"""
        if not self.bot:
            raise RuntimeError("Bot not initialized")

        try:
            return await self.bot.send_message(chat_id=chat_id, text=text, **kwargs)
        except Exception as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return None

    async def get_metrics(self) -> Dict[str, Any]:
        return {
            "bot_username": self.bot_username,
            "bot_id": self.bot_id,
            "is_polling": self.is_polling,
        }

    async def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"bot": await self.get_metrics()}
        if database.engine:
            stats.update(await database.get_stats())
        return stats

    async def close(self):
        try:
            await self.stop_polling()
            if self.bot:
                await self.bot.session.close()
        except Exception as e:
            logger.error(f"Error closing Telegram bot: {e}")


# Global bot instance
bot_service = BotService()
