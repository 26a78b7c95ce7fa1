"""Game client capability interface

A game client owns one network session at a time and reports what happens to
it by putting ClientEvents on the queue given to attach(). Each session gets a
new generation number; events from an older session are never published, so a
consumer only ever sees the current session's events.

Every session that started ends with exactly one DISCONNECTED event, preceded
by KICKED or ERROR when the server or the socket gave a reason.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

CONNECT_TIMEOUT_REASON = "Connect timed out"


class ClientEventType(str, Enum):
    JOINED = "joined"
    DISCONNECTED = "disconnected"
    KICKED = "kicked"
    ERROR = "error"
    CHAT = "chat"


@dataclass
class ClientEvent:
    """Lifecycle event of one game session"""

    type: ClientEventType
    generation: int
    reason: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ClientConfig:
    """Connection parameters for a game client"""

    host: str
    port: int
    username: str
    version: str
    connect_timeout: float = 10.0
    keep_alive_interval: float = 5.0


class SessionClosed(Exception):
    """The session ended without a kick, for a known reason"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class SessionKicked(Exception):
    """The server ended the session with a reason"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class GameClient(ABC):
    """Base class for edition-specific game clients"""

    edition: str = ""

    def __init__(self, config: ClientConfig):
        self.config = config
        self.connected = False
        self.connected_at: Optional[datetime] = None
        self.server_info: Dict[str, Any] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._generation = 0
        self._session_task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        """Generation of the current (or last) session"""
        return self._generation

    def attach(self, queue: asyncio.Queue) -> None:
        """Set the event channel"""
        self._queue = queue

    def _publish(self, generation: int, event_type: ClientEventType, reason: str = "", **data) -> None:
        if self._queue is None or generation != self._generation:
            return
        self._queue.put_nowait(ClientEvent(type=event_type, generation=generation, reason=reason, data=data))

    def _validate(self) -> None:
        """Raise for configurations that can never connect"""

    @abstractmethod
    async def _run_session(self, generation: int) -> None:
        """Connect and serve one session until it ends

        Returns when the server closes the connection. Raises SessionKicked
        when the server gives a reason, asyncio.TimeoutError when connecting
        takes longer than connect_timeout, or OSError/ProtocolError for
        transport failures. Must call _mark_joined() once in game.
        """

    @abstractmethod
    async def _close_transport(self) -> None:
        """Release the socket of the current session"""

    async def _send_chat(self, text: str) -> bool:
        return False

    async def _send_command(self, command: str) -> bool:
        return False

    async def connect(self) -> None:
        """Start a session; no-op while one is running"""
        if self._session_task and not self._session_task.done():
            return

        self._validate()
        self._generation += 1
        generation = self._generation
        self._session_task = asyncio.create_task(self._session_main(generation))

    async def _session_main(self, generation: int) -> None:
        reason = "server closed connection"
        try:
            await self._run_session(generation)
        except asyncio.CancelledError:
            raise
        except SessionKicked as e:
            reason = e.reason
            self._publish(generation, ClientEventType.KICKED, reason)
        except SessionClosed as e:
            reason = e.reason
        except asyncio.TimeoutError:
            reason = CONNECT_TIMEOUT_REASON if not self.connected else "connection timed out"
            self._publish(generation, ClientEventType.ERROR, reason)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            self._publish(generation, ClientEventType.ERROR, reason)
        finally:
            self.connected = False
            self.connected_at = None
            try:
                await self._close_transport()
            except Exception as e:
                logger.debug(f"Error closing {self.edition} transport: {e}")
        self._publish(generation, ClientEventType.DISCONNECTED, reason)

    def _mark_joined(self, generation: int, **metadata) -> None:
        if generation != self._generation:
            return
        self.connected = True
        self.connected_at = datetime.utcnow()
        self._publish(generation, ClientEventType.JOINED, **metadata)

    async def _end_session(self) -> None:
        # Invalidate the session first so nothing it does afterwards is published
        self._generation += 1
        task = self._session_task
        self._session_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.connected = False
        self.connected_at = None

    async def _say_goodbye(self) -> None:
        """Tell the server we are leaving, when the protocol allows it"""

    async def disconnect(self) -> None:
        """Close the session without publishing further events"""
        if self.connected:
            try:
                await self._say_goodbye()
            except Exception as e:
                logger.debug(f"Goodbye to {self.config.host} failed: {e}")
        await self._end_session()
        await self._close_transport()

    async def force_disconnect(self) -> None:
        """Tear the session down immediately"""
        await self._end_session()
        await self._close_transport()

    def is_alive(self) -> bool:
        return self.connected

    async def send_message(self, text: str) -> bool:
        if not self.connected:
            return False
        return await self._send_chat(text)

    async def execute_command(self, command: str) -> bool:
        if not self.connected:
            return False
        command = command if command.startswith("/") else f"/{command}"
        return await self._send_command(command)

    def get_info(self) -> Dict[str, Any]:
        info = {
            "connected": self.connected,
            "username": self.config.username,
            "server": f"{self.config.host}:{self.config.port}",
            "edition": self.edition,
            "version": self.config.version,
        }
        if self.connected:
            info["connected_at"] = self.connected_at.isoformat() if self.connected_at else None
            info.update(self.server_info)
        return info
