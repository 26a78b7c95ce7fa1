"""Fleet manager: registry of running bots, health sweep and disconnection alerts

Owns the mapping from bot id to RuntimeInstance. Every operation touching one
bot id runs under that id's lock, so a start, a stop, a health check and a
supervisor signal for the same bot never interleave, while different bots
proceed in parallel.

Public operations return ``{"success": True, "data": ..., "message": ...}`` or
``{"success": False, "error": ..., "code": ...}`` and never raise FleetError to
the caller. ``code`` is the error class's ERROR_CODE.
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from fleetbot.clients import ClientConfig, GameClient, create_client
from fleetbot.clients.editions import EDITION_JAVA, EDITIONS, SUPPORTED_VERSIONS, is_supported
from fleetbot.config import settings
from fleetbot.exceptions import (
    AlreadyRunningError,
    FleetError,
    NotFoundError,
    NotRunningError,
    QuotaExceededError,
    UnauthorizedError,
    ValidationError,
)
from fleetbot.models.bot_record import BotRecord, BOT_STATUS_ERROR, BOT_STATUS_RUNNING, BOT_STATUS_STOPPED
from fleetbot.services.bot_record_service import bot_record_service
from fleetbot.services.bot_settings_service import bot_settings_service
from fleetbot.services.connection_supervisor import (
    ConnectionSupervisor,
    SignalType,
    SupervisorSignal,
    SupervisorState,
)
from fleetbot.services.notification_service import notification_service
from fleetbot.services.statistics_service import statistics_service
from fleetbot.services.user_service import user_service
from fleetbot.utils.keyed_lock import KeyedLock
from fleetbot.utils.logger import get_logger, mask_host

logger = get_logger(__name__)

JAVA_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,16}$")
MAX_NAME_LENGTH = 32


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    result = {"success": True, "data": data}
    if message:
        result["message"] = message
    return result


def fail(error: Any) -> Dict[str, Any]:
    result = {"success": False, "error": str(error)}
    if isinstance(error, FleetError):
        result["code"] = error.ERROR_CODE
    return result


@dataclass
class RuntimeInstance:
    """A started bot: its record snapshot and the supervisor driving its client"""

    bot: BotRecord
    supervisor: ConnectionSupervisor
    started_at: datetime = field(default_factory=datetime.utcnow)


def validate_name(name: Optional[str], edition: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Bot name is required")
    if edition == EDITION_JAVA and not JAVA_NAME_PATTERN.match(name):
        raise ValidationError("Java bot names are 1-16 letters, digits or underscores")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Bot name is longer than {MAX_NAME_LENGTH} characters")
    return name


def validate_server(host: Optional[str], port: Any) -> tuple:
    host = (host or "").strip()
    if not host:
        raise ValidationError("Server host is required")
    if isinstance(port, bool) or (isinstance(port, float) and not port.is_integer()):
        raise ValidationError("Invalid port number")
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ValidationError("Invalid port number")
    if port < 1 or port > 65535:
        raise ValidationError("Invalid port number")
    return host, port


def validate_bot_config(name: Optional[str], host: Optional[str], port: Any, edition: Optional[str], version: Optional[str]) -> Dict[str, Any]:
    """Normalized bot configuration, or ValidationError"""
    edition = (edition or "").strip().lower()
    if edition not in EDITIONS:
        raise ValidationError(f"Unknown edition: {edition or '-'} (use {' or '.join(EDITIONS)})")
    name = validate_name(name, edition)
    host, port = validate_server(host, port)
    version = (version or "").strip()
    if not is_supported(edition, version):
        raise ValidationError(
            f"Unsupported {edition} version: {version or '-'} "
            f"(supported: {', '.join(SUPPORTED_VERSIONS[edition])})"
        )
    return {"name": name, "host": host, "port": port, "edition": edition, "version": version}


class FleetManager:
    """Registry and health monitor for running game bots"""

    def __init__(
        self,
        records=None,
        bot_settings=None,
        statistics=None,
        notifier=None,
        users=None,
        client_factory: Optional[Callable[[str, ClientConfig], GameClient]] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.records = records or bot_record_service
        self.bot_settings = bot_settings or bot_settings_service
        self.statistics = statistics or statistics_service
        self.notifier = notifier or notification_service
        self.users = users or user_service
        self.client_factory = client_factory or create_client
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        self.instances: Dict[int, RuntimeInstance] = {}
        self.alerts: Dict[int, int] = {}
        self.manual_stops: Set[int] = set()

        self._locks = KeyedLock()
        self._signal_tasks: Set[asyncio.Task] = set()

    @property
    def warning_limit(self) -> int:
        """Warnings before the force-stop; read live so database overrides apply"""
        return settings.disconnection_warning_limit

    @property
    def final_alert(self) -> int:
        return self.warning_limit + 1

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Reconcile statuses left behind by a previous process"""
        try:
            await self.records.reset_running_statuses()
        except FleetError as e:
            logger.error(f"Failed to reset bot statuses on startup: {e}")

    async def shutdown(self):
        """Disconnect every running bot and mark it stopped"""
        bot_ids = list(self.instances)
        if bot_ids:
            logger.info(f"🔄 Stopping {len(bot_ids)} running bot(s)...")

        for bot_id in bot_ids:
            async with self._locks.hold(bot_id):
                instance = self.instances.pop(bot_id, None)
                if not instance:
                    continue
                try:
                    await instance.supervisor.disconnect()
                except Exception as e:
                    logger.error(f"Error disconnecting bot {bot_id}: {e}")
                await self.statistics.close_episode(bot_id)
                try:
                    await self.records.update_status(bot_id, BOT_STATUS_STOPPED)
                except Exception as e:
                    logger.error(f"Failed to mark bot {bot_id} stopped: {e}")

        self.alerts.clear()
        for task in list(self._signal_tasks):
            task.cancel()
        if self._signal_tasks:
            await asyncio.gather(*self._signal_tasks, return_exceptions=True)
        logger.info("✅ Fleet stopped")

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def get_owned_bot(self, bot_id: int, owner_id: int) -> BotRecord:
        """The bot if `owner_id` owns it; NotFoundError or UnauthorizedError otherwise"""
        bot = await self.records.get_bot(bot_id)
        if not bot:
            raise NotFoundError("Bot", bot_id)
        if bot.owner_id != owner_id:
            raise UnauthorizedError()
        return bot

    async def create_bot(
        self,
        owner_id: int,
        name: str,
        host: str,
        port: Any,
        edition: str,
        version: str,
    ) -> Dict[str, Any]:
        """Validate, enforce the owner's quota and persist a stopped bot"""
        try:
            config = validate_bot_config(name, host, port, edition, version)
            async with self._locks.hold(("owner", owner_id)):
                limit = await self.bot_settings.get_max_bots_per_user()
                count = await self.records.count_user_bots(owner_id)
                if count >= limit:
                    raise QuotaExceededError(limit)
                bot = await self.records.create_bot(owner_id=owner_id, **config)

            logger.info(f"✅ Created bot {bot.id} ({bot.edition} {bot.version}) for owner {owner_id}")
            return ok({"bot_id": bot.id}, message="Bot created")
        except FleetError as e:
            logger.debug(f"Bot creation rejected for owner {owner_id}: {e}")
            return fail(e)

    async def delete_bot(self, bot_id: int, requester_id: int) -> Dict[str, Any]:
        """Delete a bot owned by `requester_id`, stopping it first if running"""
        try:
            async with self._locks.hold(bot_id):
                await self.get_owned_bot(bot_id, requester_id)
                await self._delete_locked(bot_id)
            logger.info(f"🗑️ Deleted bot {bot_id}")
            return ok({"bot_id": bot_id}, message="Bot deleted")
        except FleetError as e:
            return fail(e)

    async def clear_user_bots(self, owner_id: int) -> Dict[str, Any]:
        """Stop and delete every bot of an owner"""
        try:
            bots = await self.records.get_user_bots(owner_id)
            deleted = 0
            for bot in bots:
                result = await self.delete_bot(bot.id, owner_id)
                if result["success"]:
                    deleted += 1
                else:
                    logger.warning(f"Failed to delete bot {bot.id}: {result['error']}")
            return ok({"deleted": deleted}, message=f"Deleted {deleted} bot(s)")
        except FleetError as e:
            return fail(e)

    async def _delete_locked(self, bot_id: int) -> None:
        if bot_id in self.instances:
            await self._stop_locked(bot_id)
        await self.records.delete_bot(bot_id)
        self.manual_stops.discard(bot_id)
        self.alerts.pop(bot_id, None)

    async def clear_all_bots(self) -> Dict[str, Any]:
        """Admin: stop and delete every bot of every owner"""
        try:
            bots = await self.records.get_all_bots()
            deleted = 0
            for bot in bots:
                try:
                    async with self._locks.hold(bot.id):
                        await self._delete_locked(bot.id)
                    deleted += 1
                except FleetError as e:
                    logger.warning(f"Failed to delete bot {bot.id}: {e}")
            logger.warning(f"🗑️ Cleared {deleted}/{len(bots)} bot(s) fleet-wide")
            return ok({"deleted": deleted, "total": len(bots)}, message=f"Deleted {deleted} bot(s)")
        except FleetError as e:
            return fail(e)

    async def rename_bot(self, bot_id: int, name: str) -> Dict[str, Any]:
        """Change the in-game name; a running bot is restarted under it"""
        try:
            async with self._locks.hold(bot_id):
                bot = await self.records.get_bot(bot_id)
                if not bot:
                    raise NotFoundError("Bot", bot_id)
                name = validate_name(name, bot.edition)
                return await self._update_with_restart(bot_id, lambda: self.records.update_name(bot_id, name))
        except FleetError as e:
            return fail(e)

    async def update_bot_server(self, bot_id: int, host: str, port: Any) -> Dict[str, Any]:
        """Point a bot at another server; a running bot is restarted"""
        try:
            host, port = validate_server(host, port)
            async with self._locks.hold(bot_id):
                if not await self.records.get_bot(bot_id):
                    raise NotFoundError("Bot", bot_id)
                return await self._update_with_restart(
                    bot_id, lambda: self.records.update_server(bot_id, host, port)
                )
        except FleetError as e:
            return fail(e)

    async def _update_with_restart(self, bot_id: int, update) -> Dict[str, Any]:
        was_running = bot_id in self.instances
        if was_running:
            await self._stop_locked(bot_id)

        updated = await update()
        if not updated:
            raise NotFoundError("Bot", bot_id)

        if was_running:
            result = await self._start_locked(bot_id)
            if not result["success"]:
                return fail(f"Bot updated but failed to restart: {result['error']}")
            return ok({"bot_id": bot_id, "restarted": True}, message="Bot updated and restarted")
        return ok({"bot_id": bot_id, "restarted": False}, message="Bot updated")

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    async def start_bot(self, bot_id: int) -> Dict[str, Any]:
        """Create the bot's runtime instance and start connecting"""
        try:
            async with self._locks.hold(bot_id):
                return await self._start_locked(bot_id)
        except FleetError as e:
            return fail(e)

    async def _start_locked(self, bot_id: int) -> Dict[str, Any]:
        bot = await self.records.get_bot(bot_id)
        if not bot:
            raise NotFoundError("Bot", bot_id)
        if bot_id in self.instances:
            raise AlreadyRunningError(bot_id)

        self.manual_stops.discard(bot_id)
        self.alerts.pop(bot_id, None)

        supervisor: Optional[ConnectionSupervisor] = None
        try:
            client = self.client_factory(
                bot.edition,
                ClientConfig(
                    host=bot.host,
                    port=bot.port,
                    username=bot.name,
                    version=bot.version,
                    connect_timeout=settings.connect_timeout_seconds,
                    keep_alive_interval=settings.keep_alive_interval_seconds,
                ),
            )
            supervisor = ConnectionSupervisor(
                bot_id,
                client,
                self._on_signal,
                max_attempts=self.max_attempts,
                retry_delay=self.retry_delay,
            )
            self.instances[bot_id] = RuntimeInstance(bot=bot.snapshot(), supervisor=supervisor)
            await supervisor.connect()
            await self.records.update_status(bot_id, BOT_STATUS_RUNNING)
        except Exception as e:
            self.instances.pop(bot_id, None)
            if supervisor:
                await supervisor.force_disconnect()
            try:
                await self.records.update_status(bot_id, BOT_STATUS_ERROR)
            except Exception as status_error:
                logger.error(f"Failed to mark bot {bot_id} as error: {status_error}")
            logger.error(f"❌ Failed to start bot {bot_id}: {e}")
            return fail(e if isinstance(e, FleetError) else f"Failed to start bot: {e}")

        logger.info(f"🚀 Started bot {bot_id} → {mask_host(bot.host)}:{bot.port} ({bot.edition} {bot.version})")
        return ok({"bot_id": bot_id}, message="Bot started")

    async def stop_bot(self, bot_id: int) -> Dict[str, Any]:
        """Manual stop: no reconnection and no alerts until started again"""
        try:
            async with self._locks.hold(bot_id):
                await self._stop_locked(bot_id)
            logger.info(f"⏹️ Stopped bot {bot_id}")
            return ok({"bot_id": bot_id}, message="Bot stopped")
        except FleetError as e:
            return fail(e)

    async def _stop_locked(self, bot_id: int) -> None:
        instance = self.instances.get(bot_id)
        if not instance:
            raise NotRunningError(bot_id)

        # Mark first so a concurrent sweep or signal does not treat this as an outage
        self.manual_stops.add(bot_id)
        instance.supervisor.stop_reconnecting()
        try:
            await instance.supervisor.disconnect()
        except Exception as e:
            logger.warning(f"Error while disconnecting bot {bot_id}: {e}")

        self.instances.pop(bot_id, None)
        self.alerts.pop(bot_id, None)
        await self.statistics.close_episode(bot_id)
        try:
            await self.records.update_status(bot_id, BOT_STATUS_STOPPED)
        except FleetError as e:
            logger.error(f"Bot {bot_id} stopped but its status was not saved: {e}")

    async def force_stop_bot(self, bot_id: int) -> bool:
        """Immediate teardown used by the alert protocol"""
        async with self._locks.hold(bot_id):
            return await self._force_stop_locked(bot_id)

    async def _force_stop_locked(self, bot_id: int) -> bool:
        instance = self.instances.pop(bot_id, None)
        try:
            if instance:
                await instance.supervisor.force_disconnect()
            await self.statistics.close_episode(bot_id)
            await self.records.update_status(bot_id, BOT_STATUS_STOPPED)
        except Exception as e:
            logger.error(f"Bot {bot_id} force-stopped but its status was not saved: {e}")
        finally:
            self.alerts.pop(bot_id, None)
        logger.warning(f"🛑 Force-stopped bot {bot_id}")
        return instance is not None

    # ------------------------------------------------------------------
    # Disconnection alerts
    # ------------------------------------------------------------------

    async def handle_disconnection(self, bot_id: int) -> None:
        """A registered bot was found disconnected"""
        async with self._locks.hold(bot_id):
            await self._escalate_locked(bot_id)

    async def _escalate_locked(self, bot_id: int) -> None:
        if bot_id in self.manual_stops:
            return
        count = self.alerts.get(bot_id, 0)
        if count >= self.final_alert:
            return
        instance = self.instances.get(bot_id)
        if not instance:
            return

        if count < self.warning_limit:
            self.alerts[bot_id] = count + 1
            logger.warning(f"⚠️ Bot {bot_id} disconnected, warning {count + 1}/{self.warning_limit}")
            self.notifier.disconnection_warning(instance.bot, count + 1, self.warning_limit)
            return

        # Sentinel before the teardown so re-entrant detections stop here
        self.alerts[bot_id] = self.final_alert
        logger.warning(f"🛑 Bot {bot_id} still disconnected after {self.warning_limit} warnings, stopping it")
        self.notifier.disconnection_final(instance.bot)
        await self._force_stop_locked(bot_id)

    def _on_signal(self, signal: SupervisorSignal) -> None:
        task = asyncio.get_running_loop().create_task(self._handle_signal(signal))
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)

    async def _handle_signal(self, signal: SupervisorSignal) -> None:
        bot_id = signal.bot_id
        try:
            async with self._locks.hold(bot_id):
                instance = self.instances.get(bot_id)
                if instance is None or instance.supervisor is not signal.source:
                    logger.debug(f"Ignoring {signal.type.value} from a stopped instance of bot {bot_id}")
                    return
                await self._apply_signal(instance, signal)
        except Exception as e:
            logger.error(f"Failed to handle {signal.type.value} for bot {bot_id}: {e}", exc_info=True)

    async def _apply_signal(self, instance: RuntimeInstance, signal: SupervisorSignal) -> None:
        bot = instance.bot
        bot_id = bot.id

        if signal.type == SignalType.CONNECTED:
            if self.alerts.pop(bot_id, None):
                logger.info(f"✅ Bot {bot_id} recovered, alerts cleared")
            await self.statistics.open_episode(bot_id)
            try:
                await self.records.update_status(bot_id, BOT_STATUS_RUNNING)
            except FleetError as e:
                logger.error(f"Failed to mark bot {bot_id} running: {e}")
            self.notifier.connected(bot, signal.data)

        elif signal.type == SignalType.DISCONNECTED:
            if signal.was_connected:
                await self.statistics.close_episode(bot_id)
            self.notifier.disconnected(bot, signal.reason)
            if signal.is_server_down:
                await self._escalate_locked(bot_id)

        elif signal.type == SignalType.KICKED:
            # The close that follows a kick drives the alert protocol
            if not signal.is_server_down:
                await self.statistics.log_error(bot_id, signal.reason)
                self.notifier.error(bot, signal.reason)

        elif signal.type == SignalType.ERROR:
            if signal.routine:
                return
            await self.statistics.log_error(bot_id, signal.reason)
            # During an outage the warnings speak for repeated connectivity errors
            if not signal.is_server_down or bot_id not in self.alerts:
                self.notifier.error(bot, signal.reason)

        elif signal.type == SignalType.RECONNECT_EXHAUSTED:
            await self._escalate_locked(bot_id)

        elif signal.type == SignalType.CHAT:
            if settings.relay_game_chat:
                self.notifier.chat(bot, signal.data.get("speaker", "?"), signal.data.get("text", ""))

    # ------------------------------------------------------------------
    # Health sweep
    # ------------------------------------------------------------------

    async def run_health_sweep(self) -> Dict[str, int]:
        """Check every registered bot once; returns counters for logging"""
        bot_ids = list(self.instances)
        results = await asyncio.gather(*(self._check_bot(bot_id) for bot_id in bot_ids), return_exceptions=True)

        summary = {"checked": len(bot_ids), "alive": 0, "disconnected": 0}
        for bot_id, result in zip(bot_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Health check failed for bot {bot_id}: {result}")
            elif result is True:
                summary["alive"] += 1
            elif result is False:
                summary["disconnected"] += 1
        return summary

    async def _check_bot(self, bot_id: int) -> Optional[bool]:
        async with self._locks.hold(bot_id):
            instance = self.instances.get(bot_id)
            if not instance or bot_id in self.manual_stops:
                return None

            supervisor = instance.supervisor
            if supervisor.is_alive():
                if self.alerts.pop(bot_id, None):
                    logger.info(f"✅ Bot {bot_id} back online, alerts cleared")
                record = await self.records.get_bot(bot_id)
                if record and record.status != BOT_STATUS_RUNNING:
                    await self.records.update_status(bot_id, BOT_STATUS_RUNNING)
                return True

            # First connect attempt still in flight
            if supervisor.state == SupervisorState.CONNECTING and supervisor.attempts <= 1:
                return None

            await self._escalate_locked(bot_id)
            return False

    # ------------------------------------------------------------------
    # Queries and in-game actions
    # ------------------------------------------------------------------

    def is_running(self, bot_id: int) -> bool:
        return bot_id in self.instances

    def _bot_summary(self, bot: BotRecord) -> Dict[str, Any]:
        instance = self.instances.get(bot.id)
        alive = bool(instance and instance.supervisor.is_alive())
        return {
            "id": bot.id,
            "name": bot.name,
            "host": bot.host,
            "port": bot.port,
            "edition": bot.edition,
            "version": bot.version,
            "status": BOT_STATUS_RUNNING if alive else bot.status,
            "created_at": bot.created_at.isoformat() if bot.created_at else None,
        }

    async def get_bot_info(self, bot_id: int) -> Dict[str, Any]:
        try:
            bot = await self.records.get_bot(bot_id)
            if not bot:
                raise NotFoundError("Bot", bot_id)

            info = self._bot_summary(bot)
            info["status"] = bot.status
            instance = self.instances.get(bot_id)
            if instance:
                runtime = instance.supervisor.get_info()
                runtime.pop("version", None)
                info.update(runtime)
                info["started_at"] = instance.started_at.isoformat()
            else:
                info["connected"] = False
            info["alerts"] = self.alerts.get(bot_id, 0)
            info["history"] = await self.statistics.get_bot_stats(bot_id)
            return ok(info)
        except FleetError as e:
            return fail(e)

    async def get_user_bots(self, owner_id: int) -> Dict[str, Any]:
        try:
            bots = await self.records.get_user_bots(owner_id)
            return ok([self._bot_summary(bot) for bot in bots])
        except FleetError as e:
            return fail(e)

    async def get_all_bots(self) -> Dict[str, Any]:
        """Admin: every bot with its owner"""
        try:
            bots = await self.records.get_all_bots()
            owners = {user.id: user for user in await self.users.get_all_users()}
            items = []
            for bot in bots:
                owner = owners.get(bot.owner_id)
                item = self._bot_summary(bot)
                item["owner_id"] = bot.owner_id
                item["owner"] = (owner.username or str(owner.telegram_id)) if owner else None
                items.append(item)
            return ok(items)
        except FleetError as e:
            return fail(e)

    async def get_all_users(self) -> Dict[str, Any]:
        """Admin: every registered user with their bot count"""
        try:
            users = await self.users.get_all_users()
            counts: Dict[int, int] = {}
            for bot in await self.records.get_all_bots():
                counts[bot.owner_id] = counts.get(bot.owner_id, 0) + 1
            return ok([
                {
                    "id": user.id,
                    "telegram_id": user.telegram_id,
                    "username": user.username,
                    "is_admin": user.is_admin,
                    "bots": counts.get(user.id, 0),
                    "created_at": user.created_at.isoformat() if user.created_at else None,
                }
                for user in users
            ])
        except FleetError as e:
            return fail(e)

    async def _live_supervisor(self, bot_id: int) -> ConnectionSupervisor:
        instance = self.instances.get(bot_id)
        if not instance:
            raise NotRunningError(bot_id)
        if not instance.supervisor.is_alive():
            raise NotRunningError(bot_id, "Bot is not connected to the server")
        return instance.supervisor

    async def send_message(self, bot_id: int, text: str) -> Dict[str, Any]:
        try:
            if not text or not text.strip():
                raise ValidationError("Message is empty")
            supervisor = await self._live_supervisor(bot_id)
            if not await supervisor.send_message(text.strip()):
                return fail("Failed to send message")
            return ok(message="Message sent")
        except FleetError as e:
            return fail(e)

    async def execute_command(self, bot_id: int, command: str) -> Dict[str, Any]:
        try:
            if not command or not command.strip():
                raise ValidationError("Command is empty")
            supervisor = await self._live_supervisor(bot_id)
            if not await supervisor.execute_command(command.strip()):
                return fail("Failed to execute command")
            return ok(message="Command sent")
        except FleetError as e:
            return fail(e)

    async def get_general_stats(self) -> Dict[str, Any]:
        stats = await self.statistics.get_general_stats()
        stats["active_instances"] = len(self.instances)
        stats["connected_instances"] = sum(1 for i in self.instances.values() if i.supervisor.is_alive())
        stats["active_alerts"] = len(self.alerts)
        return ok(stats)

    def get_supported_versions(self) -> Dict[str, List[str]]:
        return {edition: list(versions) for edition, versions in SUPPORTED_VERSIONS.items()}


# Global fleet manager instance
fleet_manager = FleetManager()
