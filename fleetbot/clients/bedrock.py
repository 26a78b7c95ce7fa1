"""Bedrock Edition game client

Joins a server as an offline-mode player over RakNet: an unconnected ping for
the status line, the open-connection handshake, network settings, a
self-signed login, the encryption handshake when the server starts one, then
resource packs and spawn. Chat and commands go out as Text and CommandRequest
packets; the world itself is never decoded.
"""

import asyncio
import os
import struct
import time
from typing import Any, Dict, Optional

from fleetbot.clients.base import ClientConfig, ClientEventType, GameClient, SessionClosed, SessionKicked
from fleetbot.clients.bedrock_auth import build_login, generate_key, session_key_from_handshake
from fleetbot.clients.bedrock_packets import (
    CLIENT_TO_SERVER_HANDSHAKE,
    COMMAND_REQUEST,
    DISCONNECT,
    LOGIN,
    NETWORK_SETTINGS,
    PACKS_COMPLETED,
    PACKS_HAVE_ALL,
    PLAY_STATUS,
    PLAY_STATUS_FAILURES,
    PLAY_STATUS_LOGIN_SUCCESS,
    PLAY_STATUS_PLAYER_SPAWN,
    REQUEST_CHUNK_RADIUS,
    REQUEST_NETWORK_SETTINGS,
    RESOURCE_PACK_CLIENT_RESPONSE,
    RESOURCE_PACK_STACK,
    RESOURCE_PACKS_INFO,
    SERVER_TO_CLIENT_HANDSHAKE,
    SET_LOCAL_PLAYER_AS_INITIALIZED,
    START_GAME,
    TEXT,
    TEXT_CHAT,
    BatchCodec,
    decode_packet,
    decode_string,
    decode_varuint,
    decode_zigzag,
    encode_bool,
    encode_packet,
    encode_string,
    encode_uuid,
    encode_varuint,
    encode_zigzag,
)
from fleetbot.clients.codec import ProtocolError, offline_uuid
from fleetbot.clients.editions import BEDROCK_PROTOCOLS, EDITION_BEDROCK
from fleetbot.clients.raknet import (
    FLAG_VALID,
    ID_CONNECTED_PING,
    ID_CONNECTED_PONG,
    ID_DISCONNECTION_NOTIFICATION,
    ID_GAME_PACKET,
    ID_UNCONNECTED_PONG,
    RAKNET_MAGIC,
    UNRELIABLE,
    DatagramInbox,
    RakNetConnection,
    ServerRefused,
    build_unconnected_ping,
    open_connection,
)
from fleetbot.exceptions import ValidationError
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


# CommandRequest carries its version as a string from this protocol on
COMMAND_VERSION_STRING_PROTOCOL = 800

CHUNK_RADIUS = 4
STATUS_RETRY = 0.5
RESEND_INTERVAL = 0.5
MAX_MISSED_PINGS = 3
MAX_CHAT_LENGTH = 512


def parse_pong(data: bytes) -> Optional[Dict[str, Any]]:
    """Parse an unconnected pong, or None if the datagram is something else

    The server id string looks like
    ``MCPE;<motd>;<protocol>;<version>;<online>;<max>;<server id>;<sub motd>;<game mode>;...``
    """
    if len(data) < 35 or data[0] != ID_UNCONNECTED_PONG or data[17:33] != RAKNET_MAGIC:
        return None

    length = struct.unpack_from(">H", data, 33)[0]
    server_id = data[35:35 + length].decode("utf-8", errors="replace")
    fields = server_id.split(";")

    def field(index: int, default: str = "") -> str:
        return fields[index] if len(fields) > index else default

    def int_field(index: int) -> Optional[int]:
        try:
            return int(field(index))
        except ValueError:
            return None

    return {
        "motd": field(1),
        "protocol": int_field(2),
        "server_version": field(3),
        "players_online": int_field(4),
        "players_max": int_field(5),
        "level_name": field(7),
        "game_mode": field(8),
    }


def parse_disconnect(body: bytes) -> str:
    """Kick message of a Disconnect packet"""
    try:
        _, offset = decode_zigzag(body)
        hide_screen = body[offset]
        if hide_screen:
            return "Disconnected by server"
        message, _ = decode_string(body, offset + 1)
    except (IndexError, ProtocolError):
        return "Disconnected by server"
    return message or "Disconnected by server"


class BedrockClient(GameClient):
    """Bedrock Edition client joining as an offline-mode player"""

    edition = EDITION_BEDROCK

    def __init__(self, config: ClientConfig):
        super().__init__(config)
        self.protocol: Optional[int] = BEDROCK_PROTOCOLS.get(config.version)
        self.player_uuid = offline_uuid(config.username)
        self.runtime_id: Optional[int] = None
        self.spawned = False
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._inbox: Optional[DatagramInbox] = None
        self._connection: Optional[RakNetConnection] = None
        self._batches = BatchCodec()
        self._key = None
        self._logged_in = False
        self._guid = struct.unpack(">q", os.urandom(8))[0]

    def _validate(self) -> None:
        if self.protocol is None:
            raise ValidationError(f"Unsupported Bedrock version: {self.config.version}")

    def _send_packets(self, *packets: bytes) -> None:
        if not self._connection:
            raise ConnectionResetError("connection reset: no transport")
        self._connection.send(self._batches.encode(list(packets)))

    async def _run_session(self, generation: int) -> None:
        self._batches = BatchCodec()
        self._key = generate_key()
        self._logged_in = False
        self.spawned = False
        self.runtime_id = None
        self.server_info = {}

        loop = asyncio.get_running_loop()
        self._transport, self._inbox = await loop.create_datagram_endpoint(
            DatagramInbox, remote_addr=(self.config.host, self.config.port)
        )
        try:
            await asyncio.wait_for(self._join(generation), timeout=self.config.connect_timeout)
        except ServerRefused as e:
            raise SessionKicked(e.reason)
        await self._play(generation)

    async def _status(self) -> Dict[str, Any]:
        while True:
            self._transport.sendto(build_unconnected_ping(self._guid))
            try:
                data = await asyncio.wait_for(self._inbox.get(), timeout=STATUS_RETRY)
            except asyncio.TimeoutError:
                continue
            pong = parse_pong(data)
            if pong is not None:
                return pong

    async def _join(self, generation: int) -> None:
        pong = await self._status()
        online, maximum = pong.get("players_online"), pong.get("players_max")
        if online is not None and maximum and online >= maximum:
            raise SessionKicked("Server is full")
        self.server_info = pong

        host, port = self._transport.get_extra_info("peername")[:2]
        self._connection = await open_connection(self._transport, self._inbox, self._guid, host, port)
        self._send_packets(encode_packet(REQUEST_NETWORK_SETTINGS, struct.pack(">i", self.protocol)))

        while not self._logged_in:
            try:
                await self._pump(generation, RESEND_INTERVAL)
            except asyncio.TimeoutError:
                self._connection.resend_stale()

    async def _play(self, generation: int) -> None:
        interval = self.config.keep_alive_interval
        next_ping = 0.0
        while True:
            now = time.monotonic()
            if now >= next_ping:
                ping = bytes([ID_CONNECTED_PING]) + struct.pack(">q", int(now * 1000))
                self._connection.send(ping, UNRELIABLE)
                self._connection.resend_stale(now)
                next_ping = now + interval
            if now - self._connection.last_received > interval * MAX_MISSED_PINGS:
                raise SessionClosed("connection timed out")
            try:
                await self._pump(generation, max(next_ping - now, 0.01))
            except asyncio.TimeoutError:
                continue

    async def _pump(self, generation: int, timeout: float) -> None:
        """Wait for one datagram and handle every message it completes"""
        data = await asyncio.wait_for(self._inbox.get(), timeout=timeout)
        if not data or not data[0] & FLAG_VALID:
            return
        for message in self._connection.receive(data):
            self._on_message(generation, message)

    def _on_message(self, generation: int, message: bytes) -> None:
        if not message:
            return
        kind = message[0]
        if kind == ID_GAME_PACKET:
            # Decoded one batch at a time: handling a packet may switch on compression or encryption
            for raw in self._batches.decode(message):
                packet_id, body = decode_packet(raw)
                self._handle_packet(generation, packet_id, body)
        elif kind == ID_CONNECTED_PING and len(message) >= 9:
            pong = bytes([ID_CONNECTED_PONG]) + message[1:9] + struct.pack(">q", int(time.monotonic() * 1000))
            self._connection.send(pong, UNRELIABLE)
        elif kind == ID_DISCONNECTION_NOTIFICATION:
            raise SessionClosed("server closed connection")

    def _handle_packet(self, generation: int, packet_id: int, body: bytes) -> None:
        if packet_id == NETWORK_SETTINGS:
            threshold, algorithm = struct.unpack_from("<HH", body)
            if algorithm != 0:
                raise ProtocolError(f"Unsupported network compression {algorithm}")
            self._batches.enable_compression(threshold)
            login = build_login(
                self._key, self.config.username, self.protocol, self.config.version, self.config.host, self.config.port
            )
            self._send_packets(encode_packet(LOGIN, login))

        elif packet_id == SERVER_TO_CLIENT_HANDSHAKE:
            token, _ = decode_string(body)
            self._batches.enable_encryption(session_key_from_handshake(self._key, token))
            self._send_packets(encode_packet(CLIENT_TO_SERVER_HANDSHAKE))

        elif packet_id == PLAY_STATUS:
            status = struct.unpack_from(">i", body)[0]
            if status == PLAY_STATUS_LOGIN_SUCCESS:
                self._logged_in = True
                self._mark_joined(generation, **{**self.server_info, "version": self.config.version})
            elif status == PLAY_STATUS_PLAYER_SPAWN:
                self.spawned = True
                if self.runtime_id is not None:
                    self._send_packets(
                        encode_packet(SET_LOCAL_PLAYER_AS_INITIALIZED, encode_varuint(self.runtime_id))
                    )
            else:
                raise SessionKicked(PLAY_STATUS_FAILURES.get(status, f"Login refused (status {status})"))

        elif packet_id == DISCONNECT:
            raise SessionKicked(parse_disconnect(body))

        elif packet_id == RESOURCE_PACKS_INFO:
            self._send_packets(self._packs_response(PACKS_HAVE_ALL))

        elif packet_id == RESOURCE_PACK_STACK:
            self._send_packets(self._packs_response(PACKS_COMPLETED))

        elif packet_id == START_GAME:
            _, offset = decode_zigzag(body)
            self.runtime_id, _ = decode_varuint(body, offset)
            self._send_packets(encode_packet(REQUEST_CHUNK_RADIUS, encode_zigzag(CHUNK_RADIUS) + bytes([CHUNK_RADIUS])))

        elif packet_id == TEXT:
            self._relay_chat(generation, body)

    @staticmethod
    def _packs_response(status: int) -> bytes:
        return encode_packet(RESOURCE_PACK_CLIENT_RESPONSE, bytes([status]) + struct.pack("<H", 0))

    def _relay_chat(self, generation: int, body: bytes) -> None:
        try:
            if body[0] != TEXT_CHAT:
                return
            speaker, offset = decode_string(body, 2)
            text, _ = decode_string(body, offset)
        except (IndexError, ProtocolError) as e:
            logger.debug(f"Unreadable chat packet from {self.config.host}: {e}")
            return
        if speaker != self.config.username and text.strip():
            self._publish(generation, ClientEventType.CHAT, speaker=speaker, text=text)

    def _send(self, packet: bytes, what: str) -> bool:
        try:
            self._send_packets(packet)
            return True
        except (OSError, ConnectionError) as e:
            logger.error(f"Failed to send {what} to {self.config.host}: {e}")
            return False

    async def _send_chat(self, text: str) -> bool:
        if text.startswith("/"):
            return await self._send_command(text)
        body = (
            bytes([TEXT_CHAT])
            + encode_bool(False)
            + encode_string(self.config.username)
            + encode_string(text[:MAX_CHAT_LENGTH])
            + encode_string("")  # xuid
            + encode_string("")  # platform chat id
            + encode_string("")  # filtered message
        )
        return self._send(encode_packet(TEXT, body), "chat")

    async def _send_command(self, command: str) -> bool:
        body = (
            encode_string(command[:MAX_CHAT_LENGTH])
            + encode_varuint(0)  # origin: player
            + encode_uuid(self.player_uuid)
            + encode_string("")  # request id
            + encode_bool(False)  # internal
        )
        if self.protocol >= COMMAND_VERSION_STRING_PROTOCOL:
            body += encode_string("latest")
        else:
            body += encode_varuint(1)
        return self._send(encode_packet(COMMAND_REQUEST, body), "command")

    async def _say_goodbye(self) -> None:
        if self._connection:
            self._connection.send(bytes([ID_DISCONNECTION_NOTIFICATION]))

    async def _close_transport(self) -> None:
        transport = self._transport
        self._transport = None
        self._inbox = None
        self._connection = None
        if transport:
            transport.close()

    def get_info(self) -> Dict[str, Any]:
        info = super().get_info()
        if self.connected:
            info["spawned"] = self.spawned
        return info
