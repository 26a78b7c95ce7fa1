"""Models module"""

from fleetbot.models.user import User
from fleetbot.models.bot_record import BotRecord
from fleetbot.models.bot_settings import BotSettings
from fleetbot.models.connection_episode import ConnectionEpisode

__all__ = ["User", "BotRecord", "BotSettings", "ConnectionEpisode"]
