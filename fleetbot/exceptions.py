"""Domain exceptions for fleet operations

Services raise these for rule violations (quota, ownership, bad input,
unknown bot). Fleet operations translate them into
``{"success": False, "error": message}`` results that command handlers show
to the owner as-is, so messages are written for end users.
"""

from enum import Enum
from typing import Any, Dict, Optional


class FailureKind(str, Enum):
    """Category of a game-session failure"""

    CONNECTIVITY = "connectivity"  # server down or unreachable
    ACCOUNT_POLICY = "account_policy"  # auth, whitelist, ban, full server, duplicate login


class FleetError(Exception):
    """Base exception for fleet errors"""

    ERROR_CODE: str = "fleet_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(FleetError):
    """Bad input: unknown edition, unsupported version, bad port, empty name"""

    ERROR_CODE = "validation_error"


class QuotaExceededError(FleetError):
    """Owner already has the maximum number of bots"""

    ERROR_CODE = "quota_exceeded"

    def __init__(self, limit: int):
        super().__init__(
            f"Bot limit reached ({limit} bots per user)",
            details={"limit": limit},
        )
        self.limit = limit


class NotFoundError(FleetError):
    """Bot (or user) does not exist"""

    ERROR_CODE = "not_found"

    def __init__(self, what: str = "Bot", identifier: Any = None):
        message = f"{what} not found" if identifier is None else f"{what} {identifier} not found"
        super().__init__(message, details={"id": identifier})


class UnauthorizedError(FleetError):
    """Caller does not own the bot"""

    ERROR_CODE = "unauthorized"

    def __init__(self, message: str = "You don't own this bot"):
        super().__init__(message)


class AlreadyRunningError(FleetError):
    """Start requested for a bot that already has a live instance"""

    ERROR_CODE = "already_running"

    def __init__(self, bot_id: int):
        super().__init__("Bot is already running", details={"bot_id": bot_id})


class NotRunningError(FleetError):
    """Operation needs a running bot"""

    ERROR_CODE = "not_running"

    def __init__(self, bot_id: int, message: str = "Bot is not running"):
        super().__init__(message, details={"bot_id": bot_id})


class PersistenceFailure(FleetError):
    """Storage rejected a write the operation depends on"""

    ERROR_CODE = "persistence_failure"
