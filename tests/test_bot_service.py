"""Tests for the Telegram polling lifecycle and process startup"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fleetbot.bot import BotService


def polling_service():
    service = BotService()
    service.bot = MagicMock()
    service.bot.delete_webhook = AsyncMock()
    started = asyncio.Event()

    async def start_polling(bot, handle_signals=True):
        started.set()
        await asyncio.Event().wait()

    service.dp = MagicMock()
    service.dp.start_polling = start_polling
    return service, started


class TestPolling:
    """Test that polling runs in a task the service keeps"""

    @pytest.mark.asyncio
    async def test_start_polling_returns_and_keeps_the_task(self):
        service, started = polling_service()

        await asyncio.wait_for(service.start_polling(), timeout=1.0)
        await asyncio.wait_for(started.wait(), timeout=1.0)

        assert service.is_polling is True
        assert not service._polling_task.done()

        await service.stop_polling()

        assert service.is_polling is False
        assert service._polling_task is None

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self):
        service, started = polling_service()
        await service.start_polling()
        task = service._polling_task

        await service.start_polling()

        assert service._polling_task is task
        await service.stop_polling()

    @pytest.mark.asyncio
    async def test_start_requires_initialize(self):
        with pytest.raises(RuntimeError):
            await BotService().start_polling()


class TestStartup:
    """Test the FastAPI startup hook"""

    @pytest.mark.asyncio
    async def test_startup_awaits_polling(self):
        from fleetbot import main

        settings_service = MagicMock()
        settings_service.initialize_default_settings = AsyncMock()
        settings_service.apply_overrides = AsyncMock(return_value=0)
        bot_service = MagicMock()
        bot_service.initialize = AsyncMock()
        bot_service.start_polling = AsyncMock()
        fleet = MagicMock()
        fleet.start = AsyncMock()

        with patch.object(main, "database"), patch.object(main, "scheduler"), patch.object(
            main, "fleet_manager", fleet
        ), patch.object(main, "bot_service", bot_service), patch(
            "fleetbot.services.bot_settings_service.bot_settings_service", settings_service
        ):
            await main.startup_event()

        fleet.start.assert_awaited_once()
        bot_service.initialize.assert_awaited_once()
        bot_service.start_polling.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_startup_fails_when_polling_cannot_start(self):
        from fleetbot import main

        settings_service = MagicMock()
        settings_service.initialize_default_settings = AsyncMock()
        settings_service.apply_overrides = AsyncMock(return_value=0)
        bot_service = MagicMock()
        bot_service.initialize = AsyncMock()
        bot_service.start_polling = AsyncMock(side_effect=RuntimeError("Bot not initialized"))
        fleet = MagicMock()
        fleet.start = AsyncMock()

        with patch.object(main, "database"), patch.object(main, "scheduler"), patch.object(
            main, "fleet_manager", fleet
        ), patch.object(main, "bot_service", bot_service), patch(
            "fleetbot.services.bot_settings_service.bot_settings_service", settings_service
        ):
            with pytest.raises(RuntimeError):
                await main.startup_event()
