"""Unit tests for StatisticsService"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlmodel import select

from fleetbot.database import database
from fleetbot.models.bot_record import BOT_STATUS_RUNNING
from fleetbot.models.connection_episode import ConnectionEpisode
from fleetbot.services.bot_record_service import BotRecordService
from fleetbot.services.statistics_service import StatisticsService


@pytest.fixture
def statistics():
    return StatisticsService()


@pytest_asyncio.fixture
async def bot(owner):
    return await BotRecordService().create_bot(owner.id, "Scout", "mc.example.com", 25565, "java", "1.21.1")


@pytest.mark.asyncio
async def test_open_and_close_episode(statistics, bot):
    opened = await statistics.open_episode(bot.id)
    assert opened.connected_at is not None
    assert opened.disconnected_at is None

    closed = await statistics.close_episode(bot.id)

    assert closed.id == opened.id
    assert closed.disconnected_at is not None
    assert closed.duration_minutes == 0


@pytest.mark.asyncio
async def test_close_without_open_episode(statistics, bot):
    await statistics.log_error(bot.id, "connection refused")

    assert await statistics.close_episode(bot.id) is None


@pytest.mark.asyncio
async def test_close_computes_duration(statistics, bot):
    with database.get_session() as session:
        session.add(ConnectionEpisode(bot_id=bot.id, connected_at=datetime.utcnow() - timedelta(minutes=95)))
        session.commit()

    closed = await statistics.close_episode(bot.id)

    assert closed.duration_minutes == 95


@pytest.mark.asyncio
async def test_bot_stats(statistics, bot):
    await statistics.open_episode(bot.id)
    await statistics.close_episode(bot.id)
    await statistics.open_episode(bot.id)
    await statistics.log_error(bot.id, "Server is full")

    stats = await statistics.get_bot_stats(bot.id)

    assert stats == {"sessions": 2, "errors": 1, "total_minutes": 0}


@pytest.mark.asyncio
async def test_log_error_truncates_long_messages(statistics, bot):
    await statistics.log_error(bot.id, "x" * 2000)

    with database.get_session() as session:
        episode = session.exec(select(ConnectionEpisode).where(ConnectionEpisode.bot_id == bot.id)).one()
    assert len(episode.error_message) == 500


@pytest.mark.asyncio
async def test_general_stats(statistics, owner, other_owner, bot):
    await BotRecordService().update_status(bot.id, BOT_STATUS_RUNNING)
    await BotRecordService().create_bot(other_owner.id, "Alex", "mc.example.com", 19132, "bedrock", "1.21.93")

    stats = await statistics.get_general_stats()

    assert stats["total_users"] == 2
    assert stats["total_bots"] == 2
    assert stats["running_bots"] == 1
    assert stats["total_uptime_minutes"] == 0


@pytest.mark.asyncio
async def test_cleanup_old_episodes(statistics, bot):
    old = datetime.utcnow() - timedelta(days=45)
    with database.get_session() as session:
        session.add(ConnectionEpisode(bot_id=bot.id, error_message="ancient", created_at=old))
        session.commit()
    await statistics.log_error(bot.id, "recent")

    assert await statistics.cleanup_old_episodes(days=30) == 1
    assert (await statistics.get_bot_stats(bot.id))["errors"] == 1


@pytest.mark.asyncio
async def test_recording_failures_are_swallowed(statistics, db_engine):
    with patch("fleetbot.services.statistics_service.database.get_session", side_effect=RuntimeError("locked")):
        assert await statistics.open_episode(1) is None
        assert await statistics.close_episode(1) is None
        await statistics.log_error(1, "boom")
        assert (await statistics.get_bot_stats(1))["sessions"] == 0
