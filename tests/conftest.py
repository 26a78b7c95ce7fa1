"""Pytest configuration and shared fixtures"""

import asyncio
import os
from typing import Generator, List, Optional
from unittest.mock import MagicMock, patch

os.environ.setdefault("BOT_TOKEN", "test_token")

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from fleetbot.clients.base import ClientConfig, GameClient, SessionClosed, SessionKicked
from fleetbot.database import database


FLEET_ENV_VARS = [
    "ALLOWED_USER_ID",
    "ADMIN_USER_IDS",
    "MAX_BOTS_PER_USER",
    "HEALTH_CHECK_INTERVAL_SECONDS",
    "DISCONNECTION_WARNING_LIMIT",
    "RELAY_GAME_CHAT",
    "RECONNECT_MAX_ATTEMPTS",
    "RECONNECT_DELAY_SECONDS",
    "ENVIRONMENT",
    "NODE_ENV",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def reset_env_vars() -> Generator[None, None, None]:
    """Reset environment variables before each test"""
    original_env = os.environ.copy()

    for var in FLEET_ENV_VARS:
        os.environ.pop(var, None)

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine swapped in for the application database"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with patch.object(database, "engine", engine):
        yield engine
    engine.dispose()


class FakeClient(GameClient):
    """Scriptable game client

    Each connect consumes one outcome from `outcomes` (then `default`):
    "join" stays in game until drop(), "refuse" fails like a closed port,
    "timeout" fails like an unanswered connect, "hang" never answers and
    "kick:<reason>" is refused by the server with that reason.
    """

    edition = "java"

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        outcomes: Optional[List[str]] = None,
        default: str = "join",
        invalid: bool = False,
    ):
        super().__init__(config or ClientConfig(host="mc.example.com", port=25565, username="Scout", version="1.21.1"))
        self.outcomes = list(outcomes or [])
        self.default = default
        self.invalid = invalid
        self.sessions = 0
        self.force_disconnects = 0
        self.sent: List[str] = []
        self.commands: List[str] = []
        self._drop: Optional[asyncio.Event] = None
        self._drop_reason = "server closed connection"

    def _validate(self) -> None:
        if self.invalid:
            from fleetbot.exceptions import ValidationError

            raise ValidationError("Unsupported java version: 0.0")

    async def _run_session(self, generation: int) -> None:
        self.sessions += 1
        outcome = self.outcomes.pop(0) if self.outcomes else self.default

        if outcome == "refuse":
            raise ConnectionRefusedError("connection refused")
        if outcome == "timeout":
            raise asyncio.TimeoutError()
        if outcome == "hang":
            await asyncio.Event().wait()
        if outcome.startswith("kick:"):
            raise SessionKicked(outcome[len("kick:"):])

        self._drop = asyncio.Event()
        self.server_info = {"motd": "A Minecraft Server"}
        self._mark_joined(generation, motd="A Minecraft Server")
        await self._drop.wait()
        raise SessionClosed(self._drop_reason)

    def drop(self, reason: str = "server closed connection") -> None:
        """Simulate the server going away"""
        self._drop_reason = reason
        if self._drop:
            self._drop.set()

    async def _close_transport(self) -> None:
        pass

    async def force_disconnect(self) -> None:
        self.force_disconnects += 1
        await super().force_disconnect()

    async def _send_chat(self, text: str) -> bool:
        self.sent.append(text)
        return True

    async def _send_command(self, command: str) -> bool:
        self.commands.append(command)
        return True


class ClientFactory:
    """Records every client the fleet creates"""

    def __init__(self, outcomes: Optional[List[str]] = None, default: str = "join"):
        self.outcomes = outcomes
        self.default = default
        self.clients: List[FakeClient] = []
        self.fail_with: Optional[Exception] = None

    def __call__(self, edition: str, config: ClientConfig) -> FakeClient:
        if self.fail_with:
            raise self.fail_with
        client = FakeClient(config, outcomes=self.outcomes, default=self.default)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeClient:
        return self.clients[-1]


@pytest.fixture
def fake_client():
    return FakeClient


@pytest.fixture
def client_factory():
    return ClientFactory()


@pytest.fixture
def notifier():
    return MagicMock()


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """Poll a condition while background tasks run"""
    return _wait_until


@pytest_asyncio.fixture
async def owner(db_engine):
    from fleetbot.services.user_service import user_service

    return await user_service.get_or_create_user(1001, "steve")


@pytest_asyncio.fixture
async def other_owner(db_engine):
    from fleetbot.services.user_service import user_service

    return await user_service.get_or_create_user(2002, "alex")


@pytest_asyncio.fixture
async def fleet(db_engine, client_factory, notifier):
    """FleetManager wired to fake clients and a mock notifier"""
    from fleetbot.services.fleet_manager import FleetManager

    manager = FleetManager(
        notifier=notifier,
        client_factory=client_factory,
        max_attempts=5,
        retry_delay=0.01,
    )
    yield manager
    await manager.shutdown()
