"""Structured logging setup using structlog"""

import logging
import os
import sys
from typing import Any

import structlog

from fleetbot.config import settings

# Libraries that log every poll, tick or query; only their errors reach our output.
# Game sessions also close sockets abruptly all the time, which asyncio reports.
QUIET_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "apscheduler",
    "aiogram",
    "aiohttp",
    "sqlalchemy",
    "asyncio",
)


def resolve_log_level() -> int:
    """Production logs errors only unless LOG_LEVEL is given explicitly"""
    if settings.environment == "production" and not os.getenv("LOG_LEVEL"):
        return logging.ERROR
    return getattr(logging, settings.log_level.upper(), logging.ERROR)


def configure_logging():
    """Route stdlib logging through structlog's JSON renderer"""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=resolve_log_level())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def mask_host(host: str) -> str:
    """
    Mask a game server host for logs.

    Keeps the last two labels of a domain name and the first octet of an IPv4
    address, e.g. "play.example.net" -> "*.example.net", "10.1.2.3" -> "10.*.*.*".
    """
    if not host:
        return host
    parts = host.split(".")
    if len(parts) == 4 and all(part.isdigit() for part in parts):
        return f"{parts[0]}.*.*.*"
    if len(parts) > 2:
        return "*." + ".".join(parts[-2:])
    return host


configure_logging()
