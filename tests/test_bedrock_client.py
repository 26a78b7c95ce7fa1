"""Tests for the Bedrock Edition client against a local RakNet server"""

import asyncio
import base64
import json
import os
import struct

import pytest

from fleetbot.clients.base import ClientConfig, ClientEventType
from fleetbot.clients.bedrock import BedrockClient, parse_disconnect, parse_pong
from fleetbot.clients.bedrock_auth import derive_session_key, generate_key, load_public_key, read_jwt, sign_jwt
from fleetbot.clients.bedrock_packets import (
    CLIENT_TO_SERVER_HANDSHAKE,
    COMMAND_REQUEST,
    DISCONNECT,
    LOGIN,
    NETWORK_SETTINGS,
    PACKS_COMPLETED,
    PACKS_HAVE_ALL,
    PLAY_STATUS,
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
    encode_packet,
    encode_string,
    encode_varuint,
    encode_zigzag,
)
from fleetbot.clients.raknet import (
    FLAG_VALID,
    ID_CONNECTED_PING,
    ID_CONNECTED_PONG,
    ID_CONNECTION_BANNED,
    ID_CONNECTION_REQUEST,
    ID_CONNECTION_REQUEST_ACCEPTED,
    ID_DISCONNECTION_NOTIFICATION,
    ID_GAME_PACKET,
    ID_OPEN_CONNECTION_REPLY_1,
    ID_OPEN_CONNECTION_REPLY_2,
    ID_OPEN_CONNECTION_REQUEST_1,
    ID_OPEN_CONNECTION_REQUEST_2,
    ID_UNCONNECTED_PING,
    RAKNET_MAGIC,
    UNRELIABLE,
    RakNetConnection,
    encode_address,
)
from fleetbot.exceptions import ValidationError

SERVER_GUID = 13253860892328930865 & 0x7FFFFFFFFFFFFFFF
SERVER_ID = "MCPE;Dedicated Server;819;1.21.93;3;10;13253860892328930865;Bedrock level;Survival;1;19132;19133;"


def build_pong(server_id: str) -> bytes:
    raw = server_id.encode("utf-8")
    return (
        bytes([0x1C])
        + struct.pack(">q", 1234)
        + struct.pack(">q", 99)
        + RAKNET_MAGIC
        + struct.pack(">H", len(raw))
        + raw
    )


def read_login(body: bytes):
    """(protocol, client public key, display name, envelope) from a Login body"""
    protocol = struct.unpack_from(">i", body)[0]
    length, offset = decode_varuint(body, 4)
    tokens = body[offset:offset + length]
    chain_length = struct.unpack_from("<i", tokens)[0]
    chain = json.loads(tokens[4:4 + chain_length])
    envelope = None
    if "Certificate" in chain:
        envelope = chain
        chain = json.loads(chain["Certificate"])
    header, payload = read_jwt(chain["chain"][0])
    return protocol, load_public_key(header["x5u"]), payload["extraData"]["displayName"], envelope


class FakeBedrockServer(asyncio.DatagramProtocol):
    """Minimal Bedrock server: RakNet handshake, login, spawn, chat

    Scripts: "join" (encrypted login), "plain" (no encryption handshake),
    "full" (refuses the login as full), "kick" (kicks once spawned).
    """

    def __init__(self, script: str = "join", server_id: str = SERVER_ID, refuse: int = None):
        self.script = script
        self.server_id = server_id
        self.refuse = refuse
        self.transport = None
        self.addr = None
        self.connection = None
        self.batches = BatchCodec()
        self.key = generate_key()
        self.login = None
        self.encrypted = False
        self.initialized_runtime_id = None
        self.texts = []
        self.commands = []
        self.goodbye = False
        self.silent = False

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        if self.silent or not data:
            return
        kind = data[0]
        if kind == ID_UNCONNECTED_PING:
            self.transport.sendto(build_pong(self.server_id), addr)
        elif kind == ID_OPEN_CONNECTION_REQUEST_1:
            if self.refuse is not None:
                self.transport.sendto(bytes([self.refuse]) + RAKNET_MAGIC + struct.pack(">q", SERVER_GUID), addr)
                return
            reply = (
                bytes([ID_OPEN_CONNECTION_REPLY_1])
                + RAKNET_MAGIC
                + struct.pack(">q", SERVER_GUID)
                + b"\x00"
                + struct.pack(">H", len(data) + 28)
            )
            self.transport.sendto(reply, addr)
        elif kind == ID_OPEN_CONNECTION_REQUEST_2:
            mtu = struct.unpack_from(">H", data, 1 + 16 + 7)[0]
            self.addr = addr
            self.connection = RakNetConnection(self.transport, mtu, addr)
            reply = (
                bytes([ID_OPEN_CONNECTION_REPLY_2])
                + RAKNET_MAGIC
                + struct.pack(">q", SERVER_GUID)
                + encode_address(addr[0], addr[1])
                + struct.pack(">H", mtu)
                + b"\x00"
            )
            self.transport.sendto(reply, addr)
        elif kind & FLAG_VALID and self.connection:
            for message in self.connection.receive(data):
                self.on_message(message)

    def on_message(self, message):
        kind = message[0]
        if kind == ID_CONNECTION_REQUEST:
            request_time = struct.unpack_from(">q", message, 9)[0]
            self.connection.send(
                bytes([ID_CONNECTION_REQUEST_ACCEPTED])
                + encode_address(self.addr[0], self.addr[1])
                + struct.pack(">H", 0)
                + encode_address("0.0.0.0", 0) * 10
                + struct.pack(">qq", request_time, 1000)
            )
        elif kind == ID_CONNECTED_PING:
            self.connection.send(bytes([ID_CONNECTED_PONG]) + message[1:9] + struct.pack(">q", 0), UNRELIABLE)
        elif kind == ID_DISCONNECTION_NOTIFICATION:
            self.goodbye = True
        elif kind == ID_GAME_PACKET:
            for raw in self.batches.decode(message):
                self.on_packet(*decode_packet(raw))

    def on_packet(self, packet_id, body):
        if packet_id == REQUEST_NETWORK_SETTINGS:
            self.send(NETWORK_SETTINGS, struct.pack("<HH", 1, 0) + b"\x00\x00" + struct.pack("<f", 0.0))
            self.batches.enable_compression(1)
        elif packet_id == LOGIN:
            self.login = read_login(body)
            if self.script == "plain":
                self.logged_in()
                return
            salt = os.urandom(16)
            token = sign_jwt(self.key, {"salt": base64.b64encode(salt).decode("ascii")})
            self.send(SERVER_TO_CLIENT_HANDSHAKE, encode_string(token))
            self.batches.enable_encryption(derive_session_key(self.key, self.login[1], salt))
            self.encrypted = True
        elif packet_id == CLIENT_TO_SERVER_HANDSHAKE:
            self.logged_in()
        elif packet_id == RESOURCE_PACK_CLIENT_RESPONSE:
            if body[0] == PACKS_HAVE_ALL:
                self.send(RESOURCE_PACK_STACK, b"\x00" * 4)
            elif body[0] == PACKS_COMPLETED:
                self.send(START_GAME, encode_zigzag(7) + encode_varuint(7) + b"\x00" * 8)
                self.send(PLAY_STATUS, struct.pack(">i", 3))
        elif packet_id == SET_LOCAL_PLAYER_AS_INITIALIZED:
            self.initialized_runtime_id = decode_varuint(body)[0]
            if self.script == "kick":
                self.send(DISCONNECT, encode_zigzag(0) + b"\x00" + encode_string("Kicked by an operator") + encode_string(""))
        elif packet_id == TEXT:
            _, offset = decode_string(body, 2)
            message, _ = decode_string(body, offset)
            self.texts.append(message)
        elif packet_id == COMMAND_REQUEST:
            self.commands.append(decode_string(body)[0])

    def logged_in(self):
        if self.script == "full":
            self.send(PLAY_STATUS, struct.pack(">i", 7))
            return
        self.send(PLAY_STATUS, struct.pack(">i", 0))
        self.send(RESOURCE_PACKS_INFO, b"\x00" * 8)

    def send(self, packet_id, body=b""):
        self.connection.send(self.batches.encode([encode_packet(packet_id, body)]))

    def say(self, speaker, text):
        self.send(TEXT, bytes([TEXT_CHAT, 0]) + encode_string(speaker) + encode_string(text) + encode_string("") * 3)


async def start_server(**kwargs):
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: FakeBedrockServer(**kwargs), local_addr=("127.0.0.1", 0)
    )
    return transport, protocol, transport.get_extra_info("sockname")[1]


def make_client(port, version="1.21.93"):
    client = BedrockClient(
        ClientConfig(
            host="127.0.0.1",
            port=port,
            username="Scout",
            version=version,
            connect_timeout=3.0,
            keep_alive_interval=0.1,
        )
    )
    queue = asyncio.Queue()
    client.attach(queue)
    return client, queue


async def wait_for(condition, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_parse_pong():
    pong = parse_pong(build_pong(SERVER_ID))

    assert pong["motd"] == "Dedicated Server"
    assert pong["protocol"] == 819
    assert pong["server_version"] == "1.21.93"
    assert pong["players_online"] == 3
    assert pong["players_max"] == 10
    assert pong["level_name"] == "Bedrock level"
    assert pong["game_mode"] == "Survival"


def test_parse_pong_rejects_other_datagrams():
    assert parse_pong(b"") is None
    assert parse_pong(b"\x1c" + b"\x00" * 40) is None
    assert parse_pong(b"\x01" + build_pong(SERVER_ID)[1:]) is None


def test_parse_pong_tolerates_short_server_id():
    pong = parse_pong(build_pong("MCPE;Lobby"))

    assert pong["motd"] == "Lobby"
    assert pong["protocol"] is None
    assert pong["players_max"] is None


def test_parse_disconnect():
    shown = encode_zigzag(2) + b"\x00" + encode_string("You were kicked") + encode_string("")
    hidden = encode_zigzag(2) + b"\x01"

    assert parse_disconnect(shown) == "You were kicked"
    assert parse_disconnect(hidden) == "Disconnected by server"
    assert parse_disconnect(b"") == "Disconnected by server"


@pytest.mark.asyncio
async def test_join_chat_and_commands():
    transport, server, port = await start_server()
    client, queue = make_client(port)

    try:
        await client.connect()
        joined = await asyncio.wait_for(queue.get(), timeout=5.0)

        assert joined.type == ClientEventType.JOINED
        assert joined.data["motd"] == "Dedicated Server"
        assert client.is_alive() is True

        await wait_for(lambda: server.initialized_runtime_id is not None)
        assert server.initialized_runtime_id == 7
        assert client.get_info()["spawned"] is True
        assert server.encrypted is True

        protocol, _, name, envelope = server.login
        assert protocol == 819
        assert name == "Scout"
        assert envelope["AuthenticationType"] == 2

        assert await client.send_message("hello") is True
        assert await client.execute_command("say hi") is True
        await wait_for(lambda: server.texts and server.commands)
        assert server.texts == ["hello"]
        assert server.commands == ["/say hi"]

        server.say("Alex", "welcome")
        server.say("Scout", "echo of my own message")
        chat = await asyncio.wait_for(queue.get(), timeout=2.0)
        assert chat.type == ClientEventType.CHAT
        assert chat.data == {"speaker": "Alex", "text": "welcome"}

        # Keep-alive pings are answered, so the session stays up
        await asyncio.sleep(0.5)
        assert client.is_alive() is True

        await client.disconnect()
        await wait_for(lambda: server.goodbye)
    finally:
        await client.force_disconnect()
        transport.close()

    assert queue.empty()


@pytest.mark.asyncio
async def test_join_without_encryption_on_older_protocol():
    transport, server, port = await start_server(script="plain")
    client, queue = make_client(port, version="1.21.60")

    try:
        await client.connect()
        joined = await asyncio.wait_for(queue.get(), timeout=5.0)
        await wait_for(lambda: server.initialized_runtime_id is not None)
    finally:
        await client.force_disconnect()
        transport.close()

    assert joined.type == ClientEventType.JOINED
    assert server.encrypted is False
    protocol, _, _, envelope = server.login
    assert protocol == 776
    assert envelope is None


@pytest.mark.asyncio
async def test_kick_after_spawn():
    transport, _, port = await start_server(script="kick")
    client, queue = make_client(port)

    try:
        await client.connect()
        events = [await asyncio.wait_for(queue.get(), timeout=5.0) for _ in range(3)]
    finally:
        await client.force_disconnect()
        transport.close()

    assert [event.type for event in events] == [
        ClientEventType.JOINED,
        ClientEventType.KICKED,
        ClientEventType.DISCONNECTED,
    ]
    assert events[1].reason == "Kicked by an operator"
    assert client.is_alive() is False


@pytest.mark.asyncio
async def test_login_refused_as_full():
    transport, _, port = await start_server(script="full")
    client, queue = make_client(port)

    try:
        await client.connect()
        kicked = await asyncio.wait_for(queue.get(), timeout=5.0)
        closed = await asyncio.wait_for(queue.get(), timeout=2.0)
    finally:
        await client.force_disconnect()
        transport.close()

    assert kicked.type == ClientEventType.KICKED
    assert kicked.reason == "Server is full"
    assert closed.type == ClientEventType.DISCONNECTED


@pytest.mark.asyncio
async def test_full_status_line_is_a_kick():
    full = "MCPE;Dedicated Server;819;1.21.93;10;10;1;Bedrock level;Survival;"
    transport, server, port = await start_server(server_id=full)
    client, queue = make_client(port)

    try:
        await client.connect()
        kicked = await asyncio.wait_for(queue.get(), timeout=2.0)
        closed = await asyncio.wait_for(queue.get(), timeout=2.0)
    finally:
        await client.force_disconnect()
        transport.close()

    assert kicked.type == ClientEventType.KICKED
    assert kicked.reason == "Server is full"
    assert closed.type == ClientEventType.DISCONNECTED
    assert server.connection is None


@pytest.mark.asyncio
async def test_banned_handshake_is_a_kick():
    transport, _, port = await start_server(refuse=ID_CONNECTION_BANNED)
    client, queue = make_client(port)

    try:
        await client.connect()
        kicked = await asyncio.wait_for(queue.get(), timeout=2.0)
    finally:
        await client.force_disconnect()
        transport.close()

    assert kicked.type == ClientEventType.KICKED
    assert kicked.reason == "You are banned from this server"


@pytest.mark.asyncio
async def test_silent_server_after_join_times_out():
    transport, server, port = await start_server()
    client, queue = make_client(port)

    try:
        await client.connect()
        joined = await asyncio.wait_for(queue.get(), timeout=5.0)
        server.silent = True
        closed = await asyncio.wait_for(queue.get(), timeout=2.0)
    finally:
        await client.force_disconnect()
        transport.close()

    assert joined.type == ClientEventType.JOINED
    assert closed.type == ClientEventType.DISCONNECTED
    assert closed.reason == "connection timed out"


@pytest.mark.asyncio
async def test_silent_server_times_out():
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(asyncio.DatagramProtocol, local_addr=("127.0.0.1", 0))
    port = transport.get_extra_info("sockname")[1]
    client, queue = make_client(port)
    client.config.connect_timeout = 0.1

    try:
        await client.connect()
        error = await asyncio.wait_for(queue.get(), timeout=2.0)
    finally:
        await client.force_disconnect()
        transport.close()

    assert error.type == ClientEventType.ERROR
    assert error.reason == "Connect timed out"


@pytest.mark.asyncio
async def test_send_before_join_fails():
    client, _ = make_client(19132)

    assert await client.send_message("hello") is False
    assert await client.execute_command("list") is False


def test_unsupported_version():
    client = BedrockClient(ClientConfig(host="127.0.0.1", port=19132, username="Scout", version="1.2.3"))

    with pytest.raises(ValidationError) as exc_info:
        client._validate()

    assert "Unsupported Bedrock version" in str(exc_info.value)
