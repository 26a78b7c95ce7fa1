"""Bedrock Edition game packet primitives

Game packets travel in batches inside RakNet 0xFE messages. A batch is a
sequence of length-prefixed packets, compressed with raw deflate once the
server has sent its network settings and encrypted with AES-256-CTR once
the login handshake has agreed on a key.
"""

import hashlib
import struct
import uuid
import zlib
from typing import List, Optional, Tuple

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from fleetbot.clients.codec import ProtocolError
from fleetbot.clients.raknet import ID_GAME_PACKET

# Game packet ids
LOGIN = 0x01
PLAY_STATUS = 0x02
SERVER_TO_CLIENT_HANDSHAKE = 0x03
CLIENT_TO_SERVER_HANDSHAKE = 0x04
DISCONNECT = 0x05
RESOURCE_PACKS_INFO = 0x06
RESOURCE_PACK_STACK = 0x07
RESOURCE_PACK_CLIENT_RESPONSE = 0x08
TEXT = 0x09
START_GAME = 0x0B
REQUEST_CHUNK_RADIUS = 0x45
COMMAND_REQUEST = 0x4D
SET_LOCAL_PLAYER_AS_INITIALIZED = 0x71
NETWORK_SETTINGS = 0x8F
REQUEST_NETWORK_SETTINGS = 0xC1

# Play status codes
PLAY_STATUS_LOGIN_SUCCESS = 0
PLAY_STATUS_PLAYER_SPAWN = 3

PLAY_STATUS_FAILURES = {
    1: "Outdated client",
    2: "Outdated server",
    4: "Invalid tenant",
    5: "Edition mismatch: education world",
    6: "Edition mismatch: vanilla world",
    7: "Server is full",
    8: "Editor mismatch",
    9: "Editor mismatch",
}

# Text packet types
TEXT_RAW = 0
TEXT_CHAT = 1
TEXT_WHISPER = 7
TEXT_ANNOUNCEMENT = 8
TEXT_WITH_SOURCE = (TEXT_CHAT, TEXT_WHISPER, TEXT_ANNOUNCEMENT)

# Resource pack responses
PACKS_HAVE_ALL = 3
PACKS_COMPLETED = 4

COMPRESSION_DEFLATE = 0x00
COMPRESSION_NONE = 0xFF

MAX_BATCH_SIZE = 16 * 1024 * 1024


def encode_varuint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varuint(data: bytes, offset: int = 0, max_bits: int = 64) -> Tuple[int, int]:
    result = 0
    for shift in range(0, max_bits + 7, 7):
        if offset >= len(data):
            raise ProtocolError("VarInt truncated")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
    raise ProtocolError("VarInt too long")


def encode_zigzag(value: int) -> bytes:
    return encode_varuint(value << 1 if value >= 0 else (~value << 1) | 1)


def decode_zigzag(data: bytes, offset: int = 0) -> Tuple[int, int]:
    raw, offset = decode_varuint(data, offset)
    return (raw >> 1) ^ -(raw & 1), offset


def encode_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return encode_varuint(len(raw)) + raw


def decode_string(data: bytes, offset: int = 0) -> Tuple[str, int]:
    length, offset = decode_varuint(data, offset)
    end = offset + length
    if end > len(data):
        raise ProtocolError("String truncated")
    return data[offset:end].decode("utf-8", errors="replace"), end


def encode_bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


def encode_uuid(value: uuid.UUID) -> bytes:
    """Two little-endian 64-bit halves, most significant first"""
    return struct.pack("<QQ", value.int >> 64, value.int & 0xFFFFFFFFFFFFFFFF)


def encode_packet(packet_id: int, body: bytes = b"") -> bytes:
    return encode_varuint(packet_id) + body


def decode_packet(raw: bytes) -> Tuple[int, bytes]:
    """Split a packet into (packet_id, body); sub-client bits are dropped"""
    header, offset = decode_varuint(raw)
    return header & 0x3FF, raw[offset:]


class BatchCipher:
    """AES-256-CTR stream with per-packet SHA-256 checksums

    Each direction keeps its own counter; the checksum covers the counter,
    the plaintext and the key.
    """

    def __init__(self, key: bytes):
        self.key = key
        iv = key[:12] + b"\x00\x00\x00\x02"
        self._encryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
        self._decryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).decryptor()
        self._send_counter = 0
        self._receive_counter = 0

    def _checksum(self, counter: int, payload: bytes) -> bytes:
        return hashlib.sha256(struct.pack("<Q", counter) + payload + self.key).digest()[:8]

    def encrypt(self, payload: bytes) -> bytes:
        checksum = self._checksum(self._send_counter, payload)
        self._send_counter += 1
        return self._encryptor.update(payload + checksum)

    def decrypt(self, data: bytes) -> bytes:
        plain = self._decryptor.update(data)
        if len(plain) < 8:
            raise ProtocolError("Encrypted batch truncated")
        payload, checksum = plain[:-8], plain[-8:]
        if checksum != self._checksum(self._receive_counter, payload):
            raise ProtocolError("Bad batch checksum")
        self._receive_counter += 1
        return payload


class BatchCodec:
    """Encodes and decodes 0xFE batches for one connection"""

    def __init__(self):
        self.compression_threshold: Optional[int] = None
        self.cipher: Optional[BatchCipher] = None

    def enable_compression(self, threshold: int) -> None:
        self.compression_threshold = max(threshold, 0)

    def enable_encryption(self, key: bytes) -> None:
        self.cipher = BatchCipher(key)

    def encode(self, packets: List[bytes]) -> bytes:
        batch = b"".join(encode_varuint(len(packet)) + packet for packet in packets)
        if self.compression_threshold is not None:
            if len(batch) >= self.compression_threshold:
                compressor = zlib.compressobj(wbits=-15)
                batch = bytes([COMPRESSION_DEFLATE]) + compressor.compress(batch) + compressor.flush()
            else:
                batch = bytes([COMPRESSION_NONE]) + batch
        if self.cipher:
            batch = self.cipher.encrypt(batch)
        return bytes([ID_GAME_PACKET]) + batch

    def decode(self, message: bytes) -> List[bytes]:
        if not message or message[0] != ID_GAME_PACKET:
            raise ProtocolError("Not a game packet batch")
        batch = message[1:]
        if self.cipher:
            batch = self.cipher.decrypt(batch)
        if self.compression_threshold is not None:
            if not batch:
                return []
            algorithm, batch = batch[0], batch[1:]
            if algorithm == COMPRESSION_DEFLATE:
                batch = self._inflate(batch)
            elif algorithm != COMPRESSION_NONE:
                raise ProtocolError(f"Unsupported batch compression {algorithm}")

        packets = []
        offset = 0
        while offset < len(batch):
            length, offset = decode_varuint(batch, offset, max_bits=32)
            if offset + length > len(batch):
                raise ProtocolError("Batch truncated")
            packets.append(batch[offset:offset + length])
            offset += length
        return packets

    @staticmethod
    def _inflate(data: bytes) -> bytes:
        decompressor = zlib.decompressobj(wbits=-15)
        try:
            out = decompressor.decompress(data, MAX_BATCH_SIZE)
        except zlib.error as e:
            raise ProtocolError(f"Bad compressed batch: {e}") from e
        if decompressor.unconsumed_tail:
            raise ProtocolError("Batch too large")
        return out
