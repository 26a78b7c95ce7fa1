"""FastAPI process host: lifecycle hooks and monitoring endpoints"""

import time
from typing import Any, Dict, Optional

import psutil
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from fleetbot.bot import bot_service
from fleetbot.config import settings
from fleetbot.database import database
from fleetbot.scheduler import scheduler
from fleetbot.services.fleet_manager import fleet_manager
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

VERSION = "0.1.0"

app = FastAPI(
    title="FleetBot",
    description="Minecraft bots controlled from Telegram",
    version=VERSION,
)

_started_at: Optional[float] = None


def _uptime() -> float:
    return time.time() - _started_at if _started_at else 0.0


def _memory_snapshot() -> Dict[str, Any]:
    process = psutil.Process()
    info = process.memory_info()
    return {
        "rss": info.rss,
        "vms": info.vms,
        "usage_percent": process.memory_percent(),
        "usage_mb": round(info.rss / 1024 / 1024, 2),
    }


def _fleet_snapshot() -> Dict[str, int]:
    instances = list(fleet_manager.instances.values())
    return {
        "running": len(instances),
        "connected": sum(1 for instance in instances if instance.supervisor.is_alive()),
        "alerting": len(fleet_manager.alerts),
    }


def _schedule_jobs():
    from fleetbot.jobs.episode_cleanup import cleanup_episodes_job
    from fleetbot.jobs.health_sweep import health_sweep_job

    scheduler.add_interval_job(
        health_sweep_job,
        seconds=settings.health_check_interval_seconds,
        job_id="health_sweep",
    )
    # Daily at 03:00 UTC
    scheduler.add_cron_job(cleanup_episodes_job, hour=3, minute=0, job_id="cleanup_episodes")


@app.on_event("startup")
async def startup_event():
    global _started_at
    _started_at = time.time()
    logger.info(f"🚀 Starting FleetBot v{VERSION} ({settings.environment})")

    database.initialize()

    from fleetbot.services.bot_settings_service import bot_settings_service

    await bot_settings_service.initialize_default_settings()
    overrides = await bot_settings_service.apply_overrides(settings)
    if overrides:
        logger.debug(f"⚙️ {overrides} setting(s) loaded from the database")

    await fleet_manager.start()

    scheduler.initialize()
    scheduler.start()
    _schedule_jobs()

    await bot_service.initialize()
    await bot_service.start_polling()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("🛑 Shutting down FleetBot")

    # No sweep may escalate while the fleet is being torn down
    scheduler.stop()

    try:
        await fleet_manager.shutdown()
    except Exception as e:
        logger.error(f"Error stopping fleet: {e}")

    from fleetbot.services.notification_service import notification_service

    await notification_service.drain()
    await bot_service.close()
    database.close()


@app.get("/health")
async def health_check() -> Dict[str, Any]:
    """Liveness of the database and Telegram polling; 503 when either is down"""
    try:
        database_ok = await database.health_check()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_ok = False

    checks: Dict[str, Any] = {
        "status": "ok",
        "timestamp": time.time(),
        "uptime": _uptime(),
        "memory": _memory_snapshot(),
        "database": database_ok,
        "bot": bot_service.is_polling,
        "scheduler": scheduler.running,
        "fleet": _fleet_snapshot(),
    }

    if not (checks["database"] and checks["bot"]):
        checks["status"] = "error"
        logger.warning("Health check failed", extra={"checks": checks})
        return JSONResponse(status_code=503, content=checks)
    return checks


@app.get("/metrics")
async def metrics() -> Dict[str, Any]:
    process = psutil.Process()
    memory = process.memory_info()
    fleet = _fleet_snapshot()

    data: Dict[str, Any] = {
        "memory_rss_bytes": memory.rss,
        "memory_vms_bytes": memory.vms,
        "cpu_percent": process.cpu_percent(interval=0.1),
        "uptime_seconds": _uptime(),
        "bots_running": fleet["running"],
        "bots_connected": fleet["connected"],
        "bots_alerting": fleet["alerting"],
    }
    data.update(await bot_service.get_metrics())
    return data


@app.get("/stats")
async def stats() -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "timestamp": time.time(),
        "version": VERSION,
        "environment": settings.environment,
    }

    try:
        data.update(await bot_service.get_stats())
    except Exception as e:
        logger.error(f"Failed to collect bot stats: {e}")

    result = await fleet_manager.get_general_stats()
    if result["success"]:
        data["fleet"] = result["data"]
    return data


@app.get("/")
async def root():
    return {
        "name": "FleetBot",
        "version": VERSION,
        "status": "running",
        "endpoints": {"health": "/health", "metrics": "/metrics", "stats": "/stats"},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
