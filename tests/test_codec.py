"""Unit tests for Java Edition packet primitives"""

import asyncio
import struct

import pytest

from fleetbot.clients.codec import (
    PacketCodec,
    ProtocolError,
    chat_to_text,
    decode_string,
    decode_varint,
    encode_string,
    encode_varint,
    nbt_to_text,
    offline_uuid,
)


@pytest.mark.parametrize(
    "value,encoded",
    [
        (0, "00"),
        (1, "01"),
        (127, "7f"),
        (128, "8001"),
        (255, "ff01"),
        (25565, "ddc701"),
        (2147483647, "ffffffff07"),
        (-1, "ffffffff0f"),
    ],
)
def test_varint_known_values(value, encoded):
    assert encode_varint(value).hex() == encoded
    assert decode_varint(bytes.fromhex(encoded)) == (value, len(encoded) // 2)


def test_varint_truncated():
    with pytest.raises(ProtocolError):
        decode_varint(b"\x80")


def test_string_with_offset():
    data = b"\x07" + encode_string("Scout") + encode_string("§aHi")

    first, offset = decode_string(data, 1)
    second, end = decode_string(data, offset)

    assert (first, second) == ("Scout", "§aHi")
    assert end == len(data)


def test_offline_uuid_is_name_based():
    player_uuid = offline_uuid("Notch")

    assert player_uuid.version == 3
    assert str(player_uuid) == "b50ad385-829d-3141-a216-7e7d7539ba7f"
    assert offline_uuid("Notch") == player_uuid
    assert offline_uuid("notch") != player_uuid


@pytest.mark.asyncio
async def test_compressed_packets_are_read_back():
    codec = PacketCodec()
    codec.compression_threshold = 16
    small = codec.encode(0x26, b"\x00" * 8)
    large = codec.encode(0x6C, b"x" * 300)

    reader = asyncio.StreamReader()
    reader.feed_data(small + large)
    reader.feed_eof()

    assert await codec.read_packet(reader) == (0x26, b"\x00" * 8)
    assert await codec.read_packet(reader) == (0x6C, b"x" * 300)
    assert len(large) < 300


@pytest.mark.asyncio
async def test_oversized_packet_is_rejected():
    reader = asyncio.StreamReader()
    reader.feed_data(encode_varint(64 * 1024 * 1024))
    reader.feed_eof()

    with pytest.raises(ProtocolError):
        await PacketCodec().read_packet(reader)


def test_chat_to_text_flattens_components():
    raw = '{"text":"","extra":[{"text":"<Steve> ","color":"gray"},"hello ",{"text":"world"}]}'
    assert chat_to_text(raw) == "<Steve> hello world"


def test_chat_to_text_translate_and_plain():
    assert chat_to_text('{"translate":"multiplayer.disconnect.server_full"}') == "multiplayer.disconnect.server_full"
    assert chat_to_text("not json") == "not json"


def nbt_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack(">H", len(raw)) + raw


def test_nbt_text_component():
    data = (
        b"\x0a"
        + b"\x08" + nbt_string("text") + nbt_string("You are banned")
        + b"\x09" + nbt_string("extra") + b"\x08" + struct.pack(">i", 1) + nbt_string(" from this server")
        + b"\x01" + nbt_string("bold") + b"\x01"
        + b"\x00"
    )

    assert nbt_to_text(data) == "You are banned from this server"


def test_nbt_plain_string_root():
    assert nbt_to_text(b"\x08" + nbt_string("Server closed")) == "Server closed"


def test_nbt_garbage_raises_protocol_error():
    with pytest.raises(ProtocolError):
        nbt_to_text(b"\x0a\x08\x00")
