"""Statistics service: connection history and fleet-wide numbers"""

from datetime import datetime, timedelta
from typing import Dict, Any, Optional
from sqlmodel import select, func
from sqlalchemy import delete

from fleetbot.database import database
from fleetbot.models.bot_record import BotRecord, BOT_STATUS_RUNNING
from fleetbot.models.connection_episode import ConnectionEpisode
from fleetbot.models.user import User
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


class StatisticsService:
    """Service for the append-only connection episode log

    Recording is best-effort: a failure is logged and never interrupts the
    bot lifecycle that triggered it.
    """

    async def open_episode(self, bot_id: int) -> Optional[ConnectionEpisode]:
        """Record that a bot connected"""
        try:
            with database.get_session() as session:
                episode = ConnectionEpisode(bot_id=bot_id, connected_at=datetime.utcnow())
                session.add(episode)
                session.commit()
                session.refresh(episode)
                return episode
        except Exception as e:
            logger.error(f"Failed to record connection for bot {bot_id}: {e}")
            return None

    async def close_episode(self, bot_id: int) -> Optional[ConnectionEpisode]:
        """Close the bot's latest open episode, if any"""
        try:
            with database.get_session() as session:
                statement = (
                    select(ConnectionEpisode)
                    .where(
                        ConnectionEpisode.bot_id == bot_id,
                        ConnectionEpisode.connected_at.is_not(None),
                        ConnectionEpisode.disconnected_at.is_(None),
                    )
                    .order_by(ConnectionEpisode.id.desc())
                )
                episode = session.exec(statement).first()
                if not episode:
                    return None

                now = datetime.utcnow()
                episode.disconnected_at = now
                episode.duration_minutes = int((now - episode.connected_at).total_seconds() // 60)
                session.add(episode)
                session.commit()
                session.refresh(episode)
                return episode
        except Exception as e:
            logger.error(f"Failed to record disconnection for bot {bot_id}: {e}")
            return None

    async def log_error(self, bot_id: int, error_message: str) -> None:
        """Append an error entry to the bot's history"""
        try:
            with database.get_session() as session:
                session.add(ConnectionEpisode(bot_id=bot_id, error_message=error_message[:500]))
                session.commit()
        except Exception as e:
            logger.error(f"Failed to record error for bot {bot_id}: {e}")

    async def get_bot_stats(self, bot_id: int) -> Dict[str, Any]:
        """Connection history summary of one bot"""
        try:
            with database.get_session() as session:
                sessions = session.exec(
                    select(func.count())
                    .select_from(ConnectionEpisode)
                    .where(ConnectionEpisode.bot_id == bot_id, ConnectionEpisode.connected_at.is_not(None))
                ).one()
                errors = session.exec(
                    select(func.count())
                    .select_from(ConnectionEpisode)
                    .where(ConnectionEpisode.bot_id == bot_id, ConnectionEpisode.error_message.is_not(None))
                ).one()
                minutes = session.exec(
                    select(func.coalesce(func.sum(ConnectionEpisode.duration_minutes), 0))
                    .where(ConnectionEpisode.bot_id == bot_id)
                ).one()
                return {"sessions": sessions, "errors": errors, "total_minutes": minutes}
        except Exception as e:
            logger.error(f"Failed to get stats for bot {bot_id}: {e}")
            return {"sessions": 0, "errors": 0, "total_minutes": 0}

    async def get_general_stats(self) -> Dict[str, Any]:
        """Fleet-wide numbers for /stats"""
        try:
            with database.get_session() as session:
                total_users = session.exec(select(func.count()).select_from(User)).one()
                total_bots = session.exec(select(func.count()).select_from(BotRecord)).one()
                running_bots = session.exec(
                    select(func.count()).select_from(BotRecord).where(BotRecord.status == BOT_STATUS_RUNNING)
                ).one()
                total_minutes = session.exec(
                    select(func.coalesce(func.sum(ConnectionEpisode.duration_minutes), 0))
                ).one()
                return {
                    "total_users": total_users,
                    "total_bots": total_bots,
                    "running_bots": running_bots,
                    "total_uptime_minutes": total_minutes,
                }
        except Exception as e:
            logger.error(f"Failed to get general stats: {e}")
            return {"total_users": 0, "total_bots": 0, "running_bots": 0, "total_uptime_minutes": 0}

    async def cleanup_old_episodes(self, days: int = 30) -> int:
        """Delete history older than `days`; returns the number of rows removed"""
        try:
            cutoff = datetime.utcnow() - timedelta(days=days)
            with database.get_session() as session:
                result = session.execute(delete(ConnectionEpisode).where(ConnectionEpisode.created_at < cutoff))
                session.commit()
                removed = result.rowcount or 0
                if removed:
                    logger.info(f"🧹 Removed {removed} connection episode(s) older than {days} days")
                return removed
        except Exception as e:
            logger.error(f"Failed to clean up connection episodes: {e}")
            return 0


# Global statistics service instance
statistics_service = StatisticsService()
