"""Java Edition game client

Offline-mode login, the configuration phase and keep-alive handling over an
asyncio TCP stream. Enough to hold a player slot on a server and relay chat;
the world itself is never decoded.
"""

import asyncio
import time
from typing import Dict, Optional

from fleetbot.clients.base import ClientConfig, ClientEventType, GameClient, SessionClosed, SessionKicked
from fleetbot.clients.codec import (
    PacketCodec,
    ProtocolError,
    chat_to_text,
    decode_string,
    decode_varint,
    encode_long,
    encode_string,
    encode_ushort,
    encode_varint,
    nbt_to_text,
    offline_uuid,
)
from fleetbot.clients.editions import EDITION_JAVA, JAVA_PROTOCOLS
from fleetbot.exceptions import ValidationError
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

# Per-protocol packet ids for the configuration and play states
CONFIGURATION_PACKETS: Dict[int, Dict[str, int]] = {
    765: {"disconnect": 0x01, "finish": 0x02, "keep_alive": 0x03, "known_packs": -1,
          "sb_finish": 0x02, "sb_keep_alive": 0x03, "sb_known_packs": -1},
    766: {"disconnect": 0x02, "finish": 0x03, "keep_alive": 0x04, "known_packs": 0x0E,
          "sb_finish": 0x03, "sb_keep_alive": 0x04, "sb_known_packs": 0x07},
    767: {"disconnect": 0x02, "finish": 0x03, "keep_alive": 0x04, "known_packs": 0x0E,
          "sb_finish": 0x03, "sb_keep_alive": 0x04, "sb_known_packs": 0x07},
}

PLAY_PACKETS: Dict[int, Dict[str, int]] = {
    763: {"keep_alive": 0x23, "disconnect": 0x1A, "system_chat": 0x64,
          "sb_keep_alive": 0x12, "sb_chat_command": 0x04, "sb_chat": 0x05},
    765: {"keep_alive": 0x24, "disconnect": 0x1B, "system_chat": 0x69,
          "sb_keep_alive": 0x15, "sb_chat_command": 0x04, "sb_chat": 0x05},
    766: {"keep_alive": 0x26, "disconnect": 0x1D, "system_chat": 0x6C,
          "sb_keep_alive": 0x18, "sb_chat_command": 0x04, "sb_chat": 0x06},
    767: {"keep_alive": 0x26, "disconnect": 0x1D, "system_chat": 0x6C,
          "sb_keep_alive": 0x18, "sb_chat_command": 0x04, "sb_chat": 0x06},
}

# Login state, clientbound
LOGIN_DISCONNECT = 0x00
LOGIN_ENCRYPTION_REQUEST = 0x01
LOGIN_SUCCESS = 0x02
LOGIN_SET_COMPRESSION = 0x03
LOGIN_PLUGIN_REQUEST = 0x04

# Login state, serverbound
LOGIN_START = 0x00
LOGIN_PLUGIN_RESPONSE = 0x02
LOGIN_ACKNOWLEDGED = 0x03

# A server sends keep-alives every 15 s and drops clients after 30 s
READ_TIMEOUT = 45.0


class JavaClient(GameClient):
    """Java Edition client speaking offline-mode protocol"""

    edition = EDITION_JAVA

    def __init__(self, config: ClientConfig):
        super().__init__(config)
        self.protocol: Optional[int] = JAVA_PROTOCOLS.get(config.version)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._codec = PacketCodec()
        self._write_lock = asyncio.Lock()

    def _validate(self) -> None:
        if self.protocol is None:
            raise ValidationError(f"Unsupported Java version: {self.config.version}")

    async def _send(self, packet_id: int, payload: bytes = b"") -> None:
        if not self._writer:
            raise ConnectionResetError("connection reset: no transport")
        async with self._write_lock:
            self._writer.write(self._codec.encode(packet_id, payload))
            await self._writer.drain()

    async def _run_session(self, generation: int) -> None:
        self._codec = PacketCodec()
        try:
            await asyncio.wait_for(self._open_and_login(), timeout=self.config.connect_timeout)

            if self.protocol >= 764:
                await asyncio.wait_for(self._configuration(), timeout=self.config.connect_timeout)

            self.server_info = {"protocol": self.protocol}
            self._mark_joined(generation, protocol=self.protocol, version=self.config.version)
            await self._play(generation)
        except asyncio.IncompleteReadError:
            raise SessionClosed("server closed connection")

    async def _open_and_login(self) -> None:
        self._reader, self._writer = await asyncio.open_connection(self.config.host, self.config.port)

        handshake = (
            encode_varint(self.protocol)
            + encode_string(self.config.host)
            + encode_ushort(self.config.port)
            + encode_varint(2)
        )
        await self._send(0x00, handshake)

        player_uuid = offline_uuid(self.config.username).bytes
        if self.protocol == 763:
            login_start = encode_string(self.config.username) + b"\x01" + player_uuid
        else:
            login_start = encode_string(self.config.username) + player_uuid
        await self._send(LOGIN_START, login_start)

        while True:
            packet_id, payload = await self._codec.read_packet(self._reader)
            if packet_id == LOGIN_DISCONNECT:
                reason, _ = decode_string(payload)
                raise SessionKicked(chat_to_text(reason))
            if packet_id == LOGIN_ENCRYPTION_REQUEST:
                raise SessionKicked("Online-mode server requires a premium account")
            if packet_id == LOGIN_SET_COMPRESSION:
                threshold, _ = decode_varint(payload)
                self._codec.compression_threshold = threshold if threshold >= 0 else None
            elif packet_id == LOGIN_PLUGIN_REQUEST:
                message_id, _ = decode_varint(payload)
                await self._send(LOGIN_PLUGIN_RESPONSE, encode_varint(message_id) + b"\x00")
            elif packet_id == LOGIN_SUCCESS:
                if self.protocol >= 764:
                    await self._send(LOGIN_ACKNOWLEDGED)
                return
            else:
                raise ProtocolError(f"Unexpected login packet 0x{packet_id:02x}")

    async def _configuration(self) -> None:
        ids = CONFIGURATION_PACKETS[self.protocol]
        while True:
            packet_id, payload = await self._codec.read_packet(self._reader)
            if packet_id == ids["disconnect"]:
                raise SessionKicked(nbt_to_text(payload))
            if packet_id == ids["finish"]:
                await self._send(ids["sb_finish"])
                return
            if packet_id == ids["keep_alive"]:
                await self._send(ids["sb_keep_alive"], payload[:8])
            elif packet_id == ids["known_packs"]:
                # Claim no vanilla packs; the server then sends full registries
                await self._send(ids["sb_known_packs"], encode_varint(0))
            # Registry data, tags, feature flags, resource packs: not needed to stay online

    async def _play(self, generation: int) -> None:
        ids = PLAY_PACKETS[self.protocol]
        while True:
            packet_id, payload = await asyncio.wait_for(
                self._codec.read_packet(self._reader), timeout=READ_TIMEOUT
            )
            if packet_id == ids["keep_alive"]:
                await self._send(ids["sb_keep_alive"], payload[:8])
            elif packet_id == ids["disconnect"]:
                if self.protocol >= 765:
                    raise SessionKicked(nbt_to_text(payload))
                reason, _ = decode_string(payload)
                raise SessionKicked(chat_to_text(reason))
            elif packet_id == ids["system_chat"]:
                self._relay_chat(generation, payload)

    def _relay_chat(self, generation: int, payload: bytes) -> None:
        try:
            if self.protocol >= 765:
                # Trailing overlay flag is the last byte
                text = nbt_to_text(payload[:-1])
            else:
                raw, _ = decode_string(payload)
                text = chat_to_text(raw)
        except ProtocolError as e:
            logger.debug(f"Unreadable chat packet from {self.config.host}: {e}")
            return
        if text.strip():
            self._publish(generation, ClientEventType.CHAT, speaker="server", text=text)

    async def _send_chat(self, text: str) -> bool:
        if text.startswith("/"):
            return await self._send_command(text)
        ids = PLAY_PACKETS[self.protocol]
        payload = (
            encode_string(text[:256])
            + encode_long(int(time.time() * 1000))
            + encode_long(0)  # salt
            + b"\x00"  # no signature
            + encode_varint(0)  # acknowledged message count
            + b"\x00\x00\x00"  # acknowledged bitset
        )
        try:
            await self._send(ids["sb_chat"], payload)
            return True
        except (OSError, ConnectionError) as e:
            logger.error(f"Failed to send chat to {self.config.host}: {e}")
            return False

    async def _send_command(self, command: str) -> bool:
        ids = PLAY_PACKETS[self.protocol]
        command = command.lstrip("/")
        if self.protocol >= 766:
            # Unsigned command packet
            payload = encode_string(command[:256])
        else:
            payload = (
                encode_string(command[:256])
                + encode_long(int(time.time() * 1000))
                + encode_long(0)
                + encode_varint(0)  # no argument signatures
                + encode_varint(0)
                + b"\x00\x00\x00"
            )
        try:
            await self._send(ids["sb_chat_command"], payload)
            return True
        except (OSError, ConnectionError) as e:
            logger.error(f"Failed to send command to {self.config.host}: {e}")
            return False

    async def _close_transport(self) -> None:
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ConnectionError):
                pass
