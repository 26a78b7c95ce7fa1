"""Fleet settings editable at runtime, stored in the database

Values are JSON encoded with a declared type. On startup the stored values
override the matching fields of the environment-based Settings.
"""

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4
from sqlmodel import select

from fleetbot.database import database
from fleetbot.models.bot_settings import BotSettings
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

MAX_BOTS_PER_USER_KEY = "max_bots_per_user"

CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "int": int,
    "float": float,
    "bool": bool,
    "str": str,
}

# (key, value type, description); defaults come from the Settings field of the same name
SEEDED_SETTINGS: List[Tuple[str, str, str]] = [
    (MAX_BOTS_PER_USER_KEY, "int", "Maximum bots per user"),
]


def encode_value(value: Any) -> str:
    return json.dumps(value)


def decode_value(raw: str, value_type: str) -> Any:
    parsed = json.loads(raw)
    if parsed is None:
        return None
    return CONVERTERS.get(value_type, str)(parsed)


class BotSettingsService:
    """Key/value settings table access"""

    async def get_setting(self, key: str) -> Optional[BotSettings]:
        try:
            with database.get_session() as session:
                return session.exec(select(BotSettings).where(BotSettings.key == key)).first()
        except Exception as e:
            logger.error(f"Failed to read setting {key}: {e}")
            return None

    async def get_setting_value(self, key: str, default: Any = None) -> Any:
        row = await self.get_setting(key)
        return decode_value(row.value, row.value_type) if row else default

    async def set_setting(self, key: str, value: Any, value_type: str, description: str = "") -> BotSettings:
        """Insert or update one setting"""
        if value_type not in CONVERTERS:
            raise ValueError(f"Unknown setting type: {value_type}")

        try:
            with database.get_session() as session:
                row = session.exec(select(BotSettings).where(BotSettings.key == key)).first()
                if row is None:
                    row = BotSettings(id=str(uuid4()), key=key, value="", value_type=value_type)
                row.value = encode_value(value)
                row.value_type = value_type
                row.description = description or row.description
                row.updated_at = datetime.utcnow()
                session.add(row)
                session.commit()
                session.refresh(row)
                logger.debug(f"Setting {key} = {value!r}")
                return row
        except Exception as e:
            logger.error(f"Failed to store setting {key}: {e}")
            raise

    async def get_all_settings(self) -> Dict[str, Any]:
        try:
            with database.get_session() as session:
                rows = session.exec(select(BotSettings)).all()
                return {row.key: decode_value(row.value, row.value_type) for row in rows}
        except Exception as e:
            logger.error(f"Failed to read settings: {e}")
            return {}

    async def get_max_bots_per_user(self) -> int:
        """Per-owner bot quota"""
        from fleetbot.config import settings as app_settings

        value = await self.get_setting_value(MAX_BOTS_PER_USER_KEY)
        return app_settings.max_bots_per_user if value is None else int(value)

    async def initialize_default_settings(self):
        """Seed missing settings from the environment configuration"""
        from fleetbot.config import settings as app_settings

        for key, value_type, description in SEEDED_SETTINGS:
            if not await self.get_setting(key):
                await self.set_setting(key, getattr(app_settings, key), value_type, description)

    async def apply_overrides(self, target: Any) -> int:
        """Copy stored values onto matching attributes of `target`"""
        applied = 0
        for key, value in (await self.get_all_settings()).items():
            if value is not None and hasattr(target, key):
                setattr(target, key, value)
                applied += 1
        return applied


# Global bot settings service instance
bot_settings_service = BotSettingsService()
