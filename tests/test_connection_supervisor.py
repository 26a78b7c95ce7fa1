"""Unit tests for the reconnecting connection supervisor"""

import asyncio

import pytest

from fleetbot.exceptions import FailureKind, ValidationError
from fleetbot.services.connection_supervisor import ConnectionSupervisor, SignalType, SupervisorState


def signal_types(signals):
    return [s.type for s in signals]


def make_supervisor(client, signals, max_attempts=5, retry_delay=0.01):
    return ConnectionSupervisor(
        bot_id=7,
        client=client,
        on_signal=signals.append,
        max_attempts=max_attempts,
        retry_delay=retry_delay,
    )


class TestConnect:
    """Test the happy path"""

    @pytest.mark.asyncio
    async def test_join_emits_connected(self, fake_client, wait_until):
        signals = []
        client = fake_client()
        supervisor = make_supervisor(client, signals)

        await supervisor.connect()
        await wait_until(supervisor.is_alive)

        assert signal_types(signals) == [SignalType.CONNECTED]
        assert signals[0].data["motd"] == "A Minecraft Server"
        assert signals[0].source is supervisor
        assert supervisor.state == SupervisorState.CONNECTED
        assert supervisor.attempts == 0
        assert supervisor.connected_at is not None

        await supervisor.disconnect()

    @pytest.mark.asyncio
    async def test_connect_is_noop_while_connected(self, fake_client, wait_until):
        signals = []
        client = fake_client()
        supervisor = make_supervisor(client, signals)

        await supervisor.connect()
        await wait_until(supervisor.is_alive)
        await supervisor.connect()
        await asyncio.sleep(0.05)

        assert client.sessions == 1
        await supervisor.disconnect()

    @pytest.mark.asyncio
    async def test_invalid_configuration_raises_on_first_connect(self, fake_client):
        signals = []
        supervisor = make_supervisor(fake_client(invalid=True), signals)

        with pytest.raises(ValidationError):
            await supervisor.connect()

        await supervisor.force_disconnect()


class TestRetry:
    """Test bounded reconnection"""

    @pytest.mark.asyncio
    async def test_never_joining_client_gives_up_after_max_attempts(self, fake_client, wait_until):
        signals = []
        client = fake_client(default="refuse")
        supervisor = make_supervisor(client, signals, max_attempts=5)

        await supervisor.connect()
        await wait_until(lambda: supervisor.state == SupervisorState.EXHAUSTED)
        await asyncio.sleep(0.05)

        assert client.sessions == 5
        types = signal_types(signals)
        assert types.count(SignalType.ERROR) == 5
        assert types.count(SignalType.DISCONNECTED) == 5
        assert types.count(SignalType.RECONNECT_EXHAUSTED) == 1
        assert types[-1] == SignalType.RECONNECT_EXHAUSTED
        assert not supervisor.has_pending_retry

        await supervisor.force_disconnect()

    @pytest.mark.asyncio
    async def test_drop_after_join_reconnects_and_resets_attempts(self, fake_client, wait_until):
        signals = []
        client = fake_client(outcomes=["join", "refuse", "join"])
        supervisor = make_supervisor(client, signals)

        await supervisor.connect()
        await wait_until(supervisor.is_alive)
        client.drop("Connection reset by peer")

        await wait_until(lambda: signal_types(signals).count(SignalType.CONNECTED) == 2)

        assert client.sessions == 3
        assert supervisor.attempts == 0
        disconnects = [s for s in signals if s.type == SignalType.DISCONNECTED]
        assert disconnects[0].was_connected is True
        assert disconnects[0].is_server_down is True
        assert disconnects[1].was_connected is False

        await supervisor.disconnect()

    @pytest.mark.asyncio
    async def test_stop_reconnecting_cancels_pending_retry(self, fake_client, wait_until):
        signals = []
        client = fake_client(default="refuse")
        supervisor = make_supervisor(client, signals, retry_delay=0.2)

        await supervisor.connect()
        await wait_until(lambda: supervisor.has_pending_retry)

        supervisor.stop_reconnecting()
        await asyncio.sleep(0.3)

        assert client.sessions == 1
        assert supervisor.state == SupervisorState.STOPPED
        assert not supervisor.has_pending_retry

        await supervisor.disconnect()

    @pytest.mark.asyncio
    async def test_connect_after_exhaustion_resets_attempts(self, fake_client, wait_until):
        signals = []
        client = fake_client(outcomes=["refuse", "refuse"], default="join")
        supervisor = make_supervisor(client, signals, max_attempts=2)

        await supervisor.connect()
        await wait_until(lambda: supervisor.state == SupervisorState.EXHAUSTED)

        await supervisor.connect()
        await wait_until(supervisor.is_alive)

        assert client.sessions == 3
        await supervisor.disconnect()


class TestFailureSignals:
    """Test how session failures are reported"""

    @pytest.mark.asyncio
    async def test_policy_kick_is_not_a_server_outage(self, fake_client, wait_until):
        signals = []
        client = fake_client(outcomes=["kick:You are banned from this server."], default="hang")
        supervisor = make_supervisor(client, signals)

        await supervisor.connect()
        await wait_until(lambda: SignalType.DISCONNECTED in signal_types(signals))

        kicked = next(s for s in signals if s.type == SignalType.KICKED)
        closed = next(s for s in signals if s.type == SignalType.DISCONNECTED)
        assert kicked.kind == FailureKind.ACCOUNT_POLICY
        assert kicked.is_server_down is False
        assert closed.kind == FailureKind.ACCOUNT_POLICY
        assert closed.is_server_down is False

        await supervisor.disconnect()

    @pytest.mark.asyncio
    async def test_connect_timeout_is_routine(self, fake_client, wait_until):
        signals = []
        client = fake_client(outcomes=["timeout"], default="hang")
        supervisor = make_supervisor(client, signals)

        await supervisor.connect()
        await wait_until(lambda: SignalType.ERROR in signal_types(signals))

        error = next(s for s in signals if s.type == SignalType.ERROR)
        assert error.reason == "Connect timed out"
        assert error.routine is True
        assert error.is_server_down is True

        await supervisor.disconnect()

    @pytest.mark.asyncio
    async def test_one_retry_per_failed_session(self, fake_client, wait_until):
        """A kick followed by its close schedules a single retry"""
        signals = []
        client = fake_client(outcomes=["kick:Server closed"], default="hang")
        supervisor = make_supervisor(client, signals)

        await supervisor.connect()
        await wait_until(lambda: client.sessions == 2)
        await asyncio.sleep(0.05)

        assert client.sessions == 2
        assert supervisor.attempts == 2
        await supervisor.disconnect()


class TestDisconnect:
    """Test teardown"""

    @pytest.mark.asyncio
    async def test_disconnect_emits_nothing_further(self, fake_client, wait_until):
        signals = []
        client = fake_client()
        supervisor = make_supervisor(client, signals)

        await supervisor.connect()
        await wait_until(supervisor.is_alive)
        await supervisor.disconnect()
        await asyncio.sleep(0.05)

        assert signal_types(signals) == [SignalType.CONNECTED]
        assert supervisor.state == SupervisorState.STOPPED
        assert not supervisor.is_alive()

    @pytest.mark.asyncio
    async def test_force_disconnect_swallows_client_errors(self, fake_client, wait_until):
        signals = []
        client = fake_client()
        supervisor = make_supervisor(client, signals)

        async def broken():
            raise RuntimeError("socket already gone")

        client.force_disconnect = broken
        await supervisor.connect()
        await wait_until(supervisor.is_alive)

        await supervisor.force_disconnect()

        assert supervisor.state == SupervisorState.STOPPED
        await client._end_session()

    @pytest.mark.asyncio
    async def test_get_info_when_not_connected(self, fake_client):
        supervisor = make_supervisor(fake_client(), [])

        info = supervisor.get_info()

        assert info["connected"] is False
        assert info["username"] == "Scout"
        assert info["server"] == "mc.example.com:25565"
        assert info["state"] == "idle"
        assert info["reconnect_attempts"] == 0

    @pytest.mark.asyncio
    async def test_send_message_requires_live_session(self, fake_client, wait_until):
        client = fake_client()
        supervisor = make_supervisor(client, [])

        assert await supervisor.send_message("hello") is False

        await supervisor.connect()
        await wait_until(supervisor.is_alive)
        assert await supervisor.send_message("hello") is True
        assert await supervisor.execute_command("list") is True

        assert client.sent == ["hello"]
        assert client.commands == ["/list"]
        await supervisor.disconnect()
