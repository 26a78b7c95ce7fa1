"""Connection supervisor: bounded-retry reconnection for one bot

A supervisor drives one GameClient. A single control-loop task consumes the
client's event queue together with the supervisor's own retry timers, so all
state changes for a bot happen one at a time and in order. What the fleet
needs to know is reported through SupervisorSignals handed to a callback.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from fleetbot.clients.base import ClientEvent, ClientEventType, GameClient
from fleetbot.clients.failure_policy import classify_reason, is_routine_error
from fleetbot.config import settings
from fleetbot.exceptions import FailureKind
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


class SupervisorState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    STOPPED = "stopped"


class SignalType(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    KICKED = "kicked"
    ERROR = "error"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    CHAT = "chat"


@dataclass
class SupervisorSignal:
    """Something the fleet has to react to"""

    type: SignalType
    bot_id: int
    reason: str = ""
    kind: Optional[FailureKind] = None
    routine: bool = False
    was_connected: bool = False
    data: Dict[str, Any] = field(default_factory=dict)
    source: Any = field(default=None, repr=False, compare=False)

    @property
    def is_server_down(self) -> bool:
        return self.kind != FailureKind.ACCOUNT_POLICY


# Queue item asking the control loop to make the next connect attempt
_RETRY_DUE = object()

_FAILURE_EVENTS = (ClientEventType.KICKED, ClientEventType.ERROR, ClientEventType.DISCONNECTED)


class ConnectionSupervisor:
    """Reconnection state machine around one game client"""

    def __init__(
        self,
        bot_id: int,
        client: GameClient,
        on_signal: Callable[[SupervisorSignal], None],
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.bot_id = bot_id
        self.client = client
        self.on_signal = on_signal
        self.max_attempts = max_attempts if max_attempts is not None else settings.reconnect_max_attempts
        self.retry_delay = retry_delay if retry_delay is not None else settings.reconnect_delay_seconds

        self.state = SupervisorState.IDLE
        self.attempts = 0
        self.should_retry = True
        self.connected_at: Optional[datetime] = None

        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._joined_generation: Optional[int] = None
        self._failed_generation: Optional[int] = None
        self._policy_generations: Set[int] = set()

        client.attach(self._queue)

    @property
    def has_pending_retry(self) -> bool:
        return self._retry_handle is not None

    def _emit(self, signal_type: SignalType, **kwargs) -> None:
        signal = SupervisorSignal(type=signal_type, bot_id=self.bot_id, source=self, **kwargs)
        try:
            self.on_signal(signal)
        except Exception as e:
            logger.error(f"Signal handler failed for bot {self.bot_id}: {e}")

    def _ensure_loop(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._control_loop())

    async def connect(self) -> None:
        """Start connecting; no-op while connecting or connected

        Raises whatever the client raises for a configuration it can never
        connect with. Network failures arrive later as events.
        """
        if self.state in (SupervisorState.CONNECTING, SupervisorState.CONNECTED):
            return
        if self.state in (SupervisorState.EXHAUSTED, SupervisorState.STOPPED):
            self.attempts = 0

        self.should_retry = True
        self._ensure_loop()
        await self._attempt()

    async def _attempt(self) -> None:
        self.attempts += 1
        self.state = SupervisorState.CONNECTING
        logger.debug(f"Bot {self.bot_id} connect attempt {self.attempts}/{self.max_attempts}")
        await self.client.connect()

    async def _control_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _RETRY_DUE:
                    await self._on_retry_due()
                else:
                    self._on_client_event(item)
            except Exception as e:
                logger.error(f"Supervisor error for bot {self.bot_id}: {e}", exc_info=True)

    async def _on_retry_due(self) -> None:
        self._retry_handle = None
        if not self.should_retry or self.state != SupervisorState.RETRYING:
            return

        try:
            await self._attempt()
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.error(f"Bot {self.bot_id} reconnect attempt failed: {reason}")
            self._emit(SignalType.ERROR, reason=reason, kind=classify_reason(reason))
            self._session_failed(None)

    def _on_client_event(self, event: ClientEvent) -> None:
        if event.generation != self.client.generation:
            return
        if self.state == SupervisorState.STOPPED:
            return

        if event.type == ClientEventType.JOINED:
            self.state = SupervisorState.CONNECTED
            self.attempts = 0
            self.connected_at = datetime.utcnow()
            self._joined_generation = event.generation
            logger.info(f"✅ Bot {self.bot_id} connected")
            self._emit(SignalType.CONNECTED, data=dict(event.data))
            return

        if event.type == ClientEventType.CHAT:
            self._emit(SignalType.CHAT, data=dict(event.data))
            return

        if event.type not in _FAILURE_EVENTS:
            return

        kind = classify_reason(event.reason)
        if kind == FailureKind.ACCOUNT_POLICY:
            self._policy_generations.add(event.generation)
        was_connected = self._joined_generation == event.generation

        if event.type == ClientEventType.KICKED:
            logger.warning(f"Bot {self.bot_id} kicked: {event.reason}")
            self._emit(SignalType.KICKED, reason=event.reason, kind=kind, was_connected=was_connected)
        elif event.type == ClientEventType.ERROR:
            routine = is_routine_error(event.reason)
            if not routine:
                logger.warning(f"Bot {self.bot_id} error: {event.reason}")
            self._emit(SignalType.ERROR, reason=event.reason, kind=kind, routine=routine, was_connected=was_connected)
        else:
            # A close after an account/policy failure of the same session is not a server outage
            if event.generation in self._policy_generations:
                kind = FailureKind.ACCOUNT_POLICY
            self._policy_generations.discard(event.generation)
            logger.info(f"🔌 Bot {self.bot_id} disconnected: {event.reason}")
            self._emit(SignalType.DISCONNECTED, reason=event.reason, kind=kind, was_connected=was_connected)
            # Every session ends with exactly one close, so retries are decided here
            self._session_failed(event.generation)

    def _session_failed(self, generation: Optional[int]) -> None:
        # One retry per failed session, whatever number of failure events it produced
        if generation is not None:
            if generation == self._failed_generation:
                return
            self._failed_generation = generation

        self.connected_at = None
        if self.state in (SupervisorState.STOPPED, SupervisorState.EXHAUSTED):
            return
        self.state = SupervisorState.DISCONNECTED
        if not self.should_retry:
            return

        if self.attempts >= self.max_attempts:
            self.state = SupervisorState.EXHAUSTED
            self.should_retry = False
            logger.warning(f"Bot {self.bot_id} gave up after {self.attempts} attempts")
            self._emit(SignalType.RECONNECT_EXHAUSTED, reason=f"Reconnect failed after {self.attempts} attempts")
            return

        self.state = SupervisorState.RETRYING
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay, self._queue.put_nowait, _RETRY_DUE)
        logger.debug(f"Bot {self.bot_id} retry scheduled in {self.retry_delay}s")

    def stop_reconnecting(self) -> None:
        """Disable automatic reconnection and cancel a pending retry"""
        self.should_retry = False
        if self._retry_handle:
            self._retry_handle.cancel()
            self._retry_handle = None
        self.state = SupervisorState.STOPPED

    async def _stop_loop(self) -> None:
        task = self._loop_task
        self._loop_task = None
        if task and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def disconnect(self) -> None:
        """Graceful disconnect; no automatic reconnection afterwards"""
        self.stop_reconnecting()
        try:
            await self.client.disconnect()
        finally:
            self.connected_at = None
            await self._stop_loop()

    async def force_disconnect(self) -> None:
        """Immediate teardown; client errors are logged and dropped"""
        self.stop_reconnecting()
        try:
            await self.client.force_disconnect()
        except Exception as e:
            logger.warning(f"Ignoring error while force-disconnecting bot {self.bot_id}: {e}")
        self.connected_at = None
        await self._stop_loop()

    def is_alive(self) -> bool:
        return self.state == SupervisorState.CONNECTED and self.client.is_alive()

    def get_info(self) -> Dict[str, Any]:
        if self.is_alive():
            info = self.client.get_info()
            info["connected_at"] = self.connected_at.isoformat() if self.connected_at else None
        else:
            info = {
                "connected": False,
                "username": self.client.config.username,
                "server": f"{self.client.config.host}:{self.client.config.port}",
                "edition": self.client.edition,
                "version": self.client.config.version,
            }
        info["state"] = self.state.value
        info["reconnect_attempts"] = self.attempts
        return info

    async def send_message(self, text: str) -> bool:
        if not self.is_alive():
            return False
        return await self.client.send_message(text)

    async def execute_command(self, command: str) -> bool:
        if not self.is_alive():
            return False
        return await self.client.execute_command(command)
