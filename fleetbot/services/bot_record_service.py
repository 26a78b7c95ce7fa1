"""Bot record service: durable CRUD for game bots"""

from datetime import datetime
from typing import List, Optional
from sqlmodel import select, func
from sqlalchemy import delete

from fleetbot.database import database
from fleetbot.exceptions import PersistenceFailure
from fleetbot.models.bot_record import BotRecord, BOT_STATUSES, BOT_STATUS_RUNNING, BOT_STATUS_STOPPED
from fleetbot.models.connection_episode import ConnectionEpisode
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


class BotRecordService:
    """Service for bot records stored in database

    Every method raises PersistenceFailure when the database rejects the
    operation; callers decide whether that aborts what they were doing.
    """

    async def create_bot(
        self,
        owner_id: int,
        name: str,
        host: str,
        port: int,
        edition: str,
        version: str,
    ) -> BotRecord:
        """Persist a new bot with status 'stopped'"""
        try:
            with database.get_session() as session:
                bot = BotRecord(
                    owner_id=owner_id,
                    name=name,
                    host=host,
                    port=port,
                    edition=edition,
                    version=version,
                    status=BOT_STATUS_STOPPED,
                )
                session.add(bot)
                session.commit()
                session.refresh(bot)
                logger.debug(f"Created bot {bot.id} for owner {owner_id}")
                return bot
        except Exception as e:
            logger.error(f"Failed to create bot for owner {owner_id}: {e}")
            raise PersistenceFailure("Failed to save bot") from e

    async def get_bot(self, bot_id: int) -> Optional[BotRecord]:
        """Get a bot by id"""
        try:
            with database.get_session() as session:
                return session.get(BotRecord, bot_id)
        except Exception as e:
            logger.error(f"Failed to get bot {bot_id}: {e}")
            raise PersistenceFailure("Failed to load bot") from e

    async def get_user_bots(self, owner_id: int) -> List[BotRecord]:
        """All bots of an owner, oldest first"""
        try:
            with database.get_session() as session:
                statement = select(BotRecord).where(BotRecord.owner_id == owner_id).order_by(BotRecord.id)
                return list(session.exec(statement).all())
        except Exception as e:
            logger.error(f"Failed to get bots for owner {owner_id}: {e}")
            raise PersistenceFailure("Failed to load bots") from e

    async def count_user_bots(self, owner_id: int) -> int:
        try:
            with database.get_session() as session:
                statement = select(func.count()).select_from(BotRecord).where(BotRecord.owner_id == owner_id)
                return session.exec(statement).one()
        except Exception as e:
            logger.error(f"Failed to count bots for owner {owner_id}: {e}")
            raise PersistenceFailure("Failed to count bots") from e

    async def get_all_bots(self) -> List[BotRecord]:
        """Every bot of every owner, oldest first"""
        try:
            with database.get_session() as session:
                return list(session.exec(select(BotRecord).order_by(BotRecord.id)).all())
        except Exception as e:
            logger.error(f"Failed to get all bots: {e}")
            raise PersistenceFailure("Failed to load bots") from e

    async def _update(self, bot_id: int, **fields) -> Optional[BotRecord]:
        try:
            with database.get_session() as session:
                bot = session.get(BotRecord, bot_id)
                if not bot:
                    return None
                for key, value in fields.items():
                    setattr(bot, key, value)
                bot.updated_at = datetime.utcnow()
                session.add(bot)
                session.commit()
                session.refresh(bot)
                return bot
        except Exception as e:
            logger.error(f"Failed to update bot {bot_id}: {e}")
            raise PersistenceFailure("Failed to update bot") from e

    async def update_status(self, bot_id: int, status: str) -> Optional[BotRecord]:
        if status not in BOT_STATUSES:
            raise ValueError(f"Invalid bot status: {status}")
        return await self._update(bot_id, status=status)

    async def update_name(self, bot_id: int, name: str) -> Optional[BotRecord]:
        return await self._update(bot_id, name=name)

    async def update_server(self, bot_id: int, host: str, port: int) -> Optional[BotRecord]:
        return await self._update(bot_id, host=host, port=port)

    async def delete_bot(self, bot_id: int) -> bool:
        """Delete a bot and its connection history"""
        try:
            with database.get_session() as session:
                bot = session.get(BotRecord, bot_id)
                if not bot:
                    return False
                session.execute(delete(ConnectionEpisode).where(ConnectionEpisode.bot_id == bot_id))
                session.delete(bot)
                session.commit()
                logger.debug(f"Deleted bot {bot_id}")
                return True
        except Exception as e:
            logger.error(f"Failed to delete bot {bot_id}: {e}")
            raise PersistenceFailure("Failed to delete bot") from e

    async def reset_running_statuses(self) -> int:
        """Mark bots left 'running' by a previous process as stopped"""
        try:
            with database.get_session() as session:
                bots = session.exec(select(BotRecord).where(BotRecord.status == BOT_STATUS_RUNNING)).all()
                for bot in bots:
                    bot.status = BOT_STATUS_STOPPED
                    bot.updated_at = datetime.utcnow()
                    session.add(bot)
                session.commit()
                if bots:
                    logger.info(f"Reset {len(bots)} stale running bot(s) to stopped")
                return len(bots)
        except Exception as e:
            logger.error(f"Failed to reset running statuses: {e}")
            raise PersistenceFailure("Failed to reset bot statuses") from e


# Global bot record service instance
bot_record_service = BotRecordService()
