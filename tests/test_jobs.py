"""Tests for the scheduler wrapper and recurring jobs"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fleetbot.jobs.episode_cleanup import cleanup_episodes_job
from fleetbot.jobs.health_sweep import health_sweep_job
from fleetbot.middleware.user_context import UserContextMiddleware
from fleetbot.exceptions import PersistenceFailure
from fleetbot.scheduler import SchedulerService, jobs_database_url


async def noop():
    pass


class TestScheduler:
    """Test job registration"""

    def test_jobs_database_sits_next_to_main_database(self, tmp_path):
        url = jobs_database_url(f"sqlite:///{tmp_path}/fleet/fleetbot.db")

        assert url == f"sqlite:///{tmp_path}/fleet/jobs.db"
        assert (tmp_path / "fleet").is_dir()

    def test_memory_database_keeps_memory_job_store(self):
        assert jobs_database_url("sqlite:///:memory:") == "sqlite:///:memory:"

    @pytest.mark.asyncio
    async def test_jobs_are_replaced_by_id(self):
        service = SchedulerService()
        service.initialize()
        service.start()

        try:
            service.add_interval_job(noop, seconds=30, job_id="health_sweep")
            service.add_cron_job(noop, hour=3, job_id="cleanup_episodes")
            service.add_interval_job(noop, seconds=60, job_id="health_sweep")

            assert sorted(job.id for job in service.get_jobs()) == ["cleanup_episodes", "health_sweep"]

            service.remove_job("health_sweep")
            assert [job.id for job in service.get_jobs()] == ["cleanup_episodes"]
        finally:
            service.stop()

    def test_interval_must_be_positive(self):
        service = SchedulerService()
        service.initialize()

        with pytest.raises(ValueError):
            service.add_interval_job(noop, job_id="never")

    def test_requires_initialize(self):
        service = SchedulerService()

        assert service.get_jobs() == []
        with pytest.raises(RuntimeError):
            service.add_interval_job(noop, seconds=1)

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        service = SchedulerService()
        service.initialize()

        service.start()
        assert service.running is True

        service.stop()
        assert service.running is False


class TestJobs:
    """Test job bodies"""

    @pytest.mark.asyncio
    async def test_health_sweep_job_runs_sweep(self):
        sweep = AsyncMock(return_value={"checked": 2, "alive": 1, "disconnected": 1})
        with patch("fleetbot.jobs.health_sweep.fleet_manager.run_health_sweep", sweep):
            await health_sweep_job()

        sweep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_sweep_job_swallows_errors(self):
        sweep = AsyncMock(side_effect=RuntimeError("boom"))
        with patch("fleetbot.jobs.health_sweep.fleet_manager.run_health_sweep", sweep):
            await health_sweep_job()

    @pytest.mark.asyncio
    async def test_cleanup_uses_retention_setting(self):
        cleanup = AsyncMock(return_value=3)
        vacuum = AsyncMock()
        with patch("fleetbot.jobs.episode_cleanup.statistics_service.cleanup_old_episodes", cleanup), \
                patch("fleetbot.jobs.episode_cleanup.database.vacuum_and_analyze", vacuum), \
                patch("fleetbot.jobs.episode_cleanup.settings.episode_retention_days", 14):
            await cleanup_episodes_job()

        cleanup.assert_awaited_once_with(14)
        vacuum.assert_awaited_once()


class TestUserContextMiddleware:
    """Test sender registration"""

    @pytest.mark.asyncio
    async def test_registers_sender(self, db_engine):
        handler = AsyncMock(return_value="handled")
        event = MagicMock()
        event.from_user.id = 1001
        event.from_user.username = "steve"
        data = {}

        result = await UserContextMiddleware()(handler, event, data)

        assert result == "handled"
        assert data["fleet_user"].telegram_id == 1001
        assert data["fleet_user"].username == "steve"

    @pytest.mark.asyncio
    async def test_drops_updates_without_sender(self):
        handler = AsyncMock()
        event = MagicMock()
        event.from_user = None

        assert await UserContextMiddleware()(handler, event, {}) is None
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_storage_failure_answers_user(self):
        handler = AsyncMock()
        event = MagicMock()
        event.from_user.id = 1001
        event.answer = AsyncMock()

        with patch(
            "fleetbot.middleware.user_context.user_service.get_or_create_user",
            AsyncMock(side_effect=PersistenceFailure("Failed to load user 1001")),
        ):
            await UserContextMiddleware()(handler, event, {})

        handler.assert_not_awaited()
        event.answer.assert_awaited_once()
