"""Java Edition packet primitives

VarInt/string encoding, length-prefixed framing and zlib compression as used
by the login, configuration and play states. Only what the keep-alive client
needs; no game data types beyond that.
"""

import asyncio
import json
import struct
import uuid
import zlib
from hashlib import md5
from typing import Optional, Tuple


class ProtocolError(Exception):
    """Malformed or oversized packet"""


MAX_PACKET_SIZE = 2 * 1024 * 1024


def encode_varint(value: int) -> bytes:
    """Encode a 32-bit signed int as VarInt"""
    value &= 0xFFFFFFFF
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode a VarInt, returning (value, new_offset)"""
    result = 0
    for shift in range(0, 35, 7):
        if offset >= len(data):
            raise ProtocolError("VarInt truncated")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if result & 0x80000000:
                result -= 1 << 32
            return result, offset
    raise ProtocolError("VarInt too long")


async def read_varint(reader: asyncio.StreamReader) -> int:
    result = 0
    for shift in range(0, 35, 7):
        byte = (await reader.readexactly(1))[0]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result
    raise ProtocolError("VarInt too long")


def encode_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return encode_varint(len(raw)) + raw


def decode_string(data: bytes, offset: int = 0) -> Tuple[str, int]:
    length, offset = decode_varint(data, offset)
    end = offset + length
    if end > len(data):
        raise ProtocolError("String truncated")
    return data[offset:end].decode("utf-8", errors="replace"), end


def encode_ushort(value: int) -> bytes:
    return struct.pack(">H", value)


def encode_long(value: int) -> bytes:
    return struct.pack(">q", value)


def decode_long(data: bytes, offset: int = 0) -> Tuple[int, int]:
    if offset + 8 > len(data):
        raise ProtocolError("Long truncated")
    return struct.unpack_from(">q", data, offset)[0], offset + 8


def offline_uuid(username: str) -> uuid.UUID:
    """UUID an offline-mode server assigns to a username"""
    digest = bytearray(md5(f"OfflinePlayer:{username}".encode("utf-8")).digest())
    digest[6] = (digest[6] & 0x0F) | 0x30
    digest[8] = (digest[8] & 0x3F) | 0x80
    return uuid.UUID(bytes=bytes(digest))


class PacketCodec:
    """Frames packets for one connection, with optional compression"""

    def __init__(self):
        self.compression_threshold: Optional[int] = None

    def encode(self, packet_id: int, payload: bytes = b"") -> bytes:
        body = encode_varint(packet_id) + payload
        if self.compression_threshold is not None:
            if len(body) >= self.compression_threshold:
                body = encode_varint(len(body)) + zlib.compress(body)
            else:
                body = encode_varint(0) + body
        return encode_varint(len(body)) + body

    async def read_packet(self, reader: asyncio.StreamReader) -> Tuple[int, bytes]:
        """Read one packet, returning (packet_id, payload)"""
        length = await read_varint(reader)
        if length <= 0 or length > MAX_PACKET_SIZE:
            raise ProtocolError(f"Bad packet length {length}")
        body = await reader.readexactly(length)

        if self.compression_threshold is not None:
            data_length, offset = decode_varint(body)
            if data_length:
                try:
                    body = zlib.decompress(body[offset:])
                except zlib.error as e:
                    raise ProtocolError(f"Bad compressed packet: {e}") from e
            else:
                body = body[offset:]

        packet_id, offset = decode_varint(body)
        return packet_id, body[offset:]


def chat_to_text(raw: str) -> str:
    """Flatten a JSON chat component to plain text"""
    try:
        component = json.loads(raw)
    except (ValueError, TypeError):
        return raw
    return _flatten(component)


def _flatten(component) -> str:
    if isinstance(component, str):
        return component
    if isinstance(component, list):
        return "".join(_flatten(part) for part in component)
    if not isinstance(component, dict):
        return str(component)

    text = component.get("text", "")
    if not text and "translate" in component:
        text = component["translate"]
        args = component.get("with") or []
        if args:
            text += " " + " ".join(_flatten(arg) for arg in args)
    for extra in component.get("extra", []) or []:
        text += _flatten(extra)
    return text


# Network NBT (1.20.3+ text components): unnamed root tag
_NBT_FIXED = {1: ">b", 2: ">h", 3: ">i", 4: ">q", 5: ">f", 6: ">d"}


def nbt_to_text(data: bytes) -> str:
    """Flatten an NBT text component to plain text"""
    if not data:
        return ""
    try:
        value, _ = _read_nbt_payload(data[0], data, 1)
    except (ProtocolError, struct.error, IndexError) as e:
        raise ProtocolError(f"Bad NBT text component: {e}") from e
    return _flatten(value)


def _read_nbt_payload(tag: int, data: bytes, offset: int):
    if tag in _NBT_FIXED:
        fmt = _NBT_FIXED[tag]
        return struct.unpack_from(fmt, data, offset)[0], offset + struct.calcsize(fmt)
    if tag == 8:
        length = struct.unpack_from(">H", data, offset)[0]
        offset += 2
        return data[offset:offset + length].decode("utf-8", errors="replace"), offset + length
    if tag == 9:
        item_tag = data[offset]
        count = struct.unpack_from(">i", data, offset + 1)[0]
        offset += 5
        items = []
        for _ in range(max(count, 0)):
            item, offset = _read_nbt_payload(item_tag, data, offset)
            items.append(item)
        return items, offset
    if tag == 10:
        compound = {}
        while True:
            child_tag = data[offset]
            offset += 1
            if child_tag == 0:
                return compound, offset
            name, offset = _read_nbt_payload(8, data, offset)
            compound[name], offset = _read_nbt_payload(child_tag, data, offset)
    if tag in (7, 11, 12):
        count = struct.unpack_from(">i", data, offset)[0]
        width = {7: 1, 11: 4, 12: 8}[tag]
        return None, offset + 4 + count * width
    raise ProtocolError(f"Unknown NBT tag {tag}")
