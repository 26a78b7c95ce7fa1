"""Registration middleware: resolves the Telegram sender to a fleet user"""

from typing import Any, Awaitable, Callable, Dict, Union

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message

from fleetbot.exceptions import PersistenceFailure
from fleetbot.services.user_service import user_service
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


class UserContextMiddleware(BaseMiddleware):
    """Registers the sender on first contact and passes it on as ``fleet_user``

    Handlers that declare a ``fleet_user`` parameter receive the User row.
    Updates without a sender are dropped.
    """

    async def __call__(
        self,
        handler: Callable[[Union[Message, CallbackQuery], Dict[str, Any]], Awaitable[Any]],
        event: Union[Message, CallbackQuery],
        data: Dict[str, Any],
    ) -> Any:
        sender = event.from_user
        if not sender:
            logger.debug("Dropping update without a sender")
            return None

        try:
            data["fleet_user"] = await user_service.get_or_create_user(
                sender.id, sender.username or sender.first_name
            )
        except PersistenceFailure as e:
            logger.error(f"Failed to register user {sender.id}: {e}")
            if isinstance(event, CallbackQuery):
                await event.answer("❌ Temporary error, please try again", show_alert=True)
            else:
                await event.answer("❌ Temporary error, please try again.")
            return None

        return await handler(event, data)
