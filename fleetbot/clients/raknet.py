"""RakNet transport used by Bedrock Edition servers

Covers what one client connection needs: unconnected pings, the offline
open-connection handshake, reliable ordered frames with splitting and
reassembly, acknowledgements and resends. Game data rides on top as opaque
messages.
"""

import asyncio
import ipaddress
import struct
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Set, Tuple

from fleetbot.clients.codec import ProtocolError

RAKNET_PROTOCOL_VERSION = 11
RAKNET_MAGIC = bytes.fromhex("00ffff00fefefefefdfdfdfd12345678")

# Message ids
ID_CONNECTED_PING = 0x00
ID_UNCONNECTED_PING = 0x01
ID_CONNECTED_PONG = 0x03
ID_OPEN_CONNECTION_REQUEST_1 = 0x05
ID_OPEN_CONNECTION_REPLY_1 = 0x06
ID_OPEN_CONNECTION_REQUEST_2 = 0x07
ID_OPEN_CONNECTION_REPLY_2 = 0x08
ID_CONNECTION_REQUEST = 0x09
ID_CONNECTION_REQUEST_ACCEPTED = 0x10
ID_ALREADY_CONNECTED = 0x12
ID_NEW_INCOMING_CONNECTION = 0x13
ID_NO_FREE_INCOMING_CONNECTIONS = 0x14
ID_DISCONNECTION_NOTIFICATION = 0x15
ID_CONNECTION_BANNED = 0x17
ID_INCOMPATIBLE_PROTOCOL_VERSION = 0x19
ID_UNCONNECTED_PONG = 0x1C
ID_GAME_PACKET = 0xFE

# Offline replies that refuse the connection, with the reason shown to the owner
REFUSALS = {
    ID_ALREADY_CONNECTED: "Logged in other location",
    ID_NO_FREE_INCOMING_CONNECTIONS: "Server is full",
    ID_CONNECTION_BANNED: "You are banned from this server",
    ID_INCOMPATIBLE_PROTOCOL_VERSION: "Incompatible RakNet protocol version",
}

# Datagram flags
FLAG_VALID = 0x80
FLAG_ACK = 0x40
FLAG_NACK = 0x20
FLAG_NEEDS_B_AND_AS = 0x04

# Frame reliabilities
UNRELIABLE = 0
UNRELIABLE_SEQUENCED = 1
RELIABLE = 2
RELIABLE_ORDERED = 3
RELIABLE_SEQUENCED = 4

RELIABLE_TYPES = (2, 3, 4, 6, 7)
SEQUENCED_TYPES = (1, 4)
ORDERED_TYPES = (1, 3, 4, 7)

# IP + UDP headers, datagram header, largest frame header
UDP_OVERHEAD = 28
DATAGRAM_HEADER = 4
FRAME_HEADER = 20

MTU_SIZES = (1400, 1200, 576)
MAX_SPLIT_COUNT = 512
RESEND_AFTER = 1.0
RELIABLE_WINDOW = 4096


class ServerRefused(Exception):
    """The server answered the handshake with a refusal"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def encode_u24(value: int) -> bytes:
    return (value & 0xFFFFFF).to_bytes(3, "little")


def decode_u24(data: bytes, offset: int) -> int:
    if offset + 3 > len(data):
        raise ProtocolError("Frame truncated")
    return int.from_bytes(data[offset:offset + 3], "little")


def encode_address(host: str, port: int) -> bytes:
    """RakNet system address; IPv4 octets are stored inverted"""
    address = ipaddress.ip_address(host)
    if address.version == 4:
        return bytes([4]) + bytes((~octet) & 0xFF for octet in address.packed) + struct.pack(">H", port)
    return (
        bytes([6])
        + struct.pack("<H", 23)  # AF_INET6
        + struct.pack(">H", port)
        + b"\x00" * 4
        + address.packed
        + b"\x00" * 4
    )


def skip_address(data: bytes, offset: int) -> int:
    if offset >= len(data):
        raise ProtocolError("Address truncated")
    return offset + (7 if data[offset] == 4 else 29)


def build_unconnected_ping(client_guid: int) -> bytes:
    return (
        bytes([ID_UNCONNECTED_PING])
        + struct.pack(">q", int(time.monotonic() * 1000))
        + RAKNET_MAGIC
        + struct.pack(">q", client_guid)
    )


def encode_ack(sequences: List[int], nack: bool = False) -> bytes:
    """ACK/NACK datagram, grouping consecutive sequence numbers into ranges"""
    records = []
    for seq in sorted(set(sequences)):
        if records and records[-1][1] + 1 == seq:
            records[-1][1] = seq
        else:
            records.append([seq, seq])

    body = bytearray(struct.pack(">H", len(records)))
    for start, end in records:
        if start == end:
            body += b"\x01" + encode_u24(start)
        else:
            body += b"\x00" + encode_u24(start) + encode_u24(end)
    return bytes([FLAG_VALID | (FLAG_NACK if nack else FLAG_ACK)]) + bytes(body)


def decode_ack(data: bytes) -> List[int]:
    if len(data) < 3:
        raise ProtocolError("ACK truncated")
    count = struct.unpack_from(">H", data, 1)[0]
    offset = 3
    sequences: List[int] = []
    for _ in range(count):
        if offset >= len(data):
            raise ProtocolError("ACK truncated")
        single = data[offset] == 1
        start = decode_u24(data, offset + 1)
        offset += 4
        end = start
        if not single:
            end = decode_u24(data, offset)
            offset += 3
        # Cap absurd ranges from a confused peer
        sequences.extend(range(start, min(end, start + RELIABLE_WINDOW) + 1))
    return sequences


@dataclass
class Frame:
    """One encapsulated message inside a datagram"""

    reliability: int
    body: bytes
    reliable_index: Optional[int] = None
    order_index: Optional[int] = None
    channel: int = 0
    split: Optional[Tuple[int, int, int]] = None  # (count, id, index)


def encode_frame(frame: Frame) -> bytes:
    flags = (frame.reliability << 5) | (0x10 if frame.split else 0)
    out = bytearray([flags]) + struct.pack(">H", len(frame.body) * 8)
    if frame.reliability in RELIABLE_TYPES:
        out += encode_u24(frame.reliable_index or 0)
    if frame.reliability in SEQUENCED_TYPES:
        out += encode_u24(0)
    if frame.reliability in ORDERED_TYPES:
        out += encode_u24(frame.order_index or 0) + bytes([frame.channel])
    if frame.split:
        out += struct.pack(">IHI", *frame.split)
    return bytes(out + frame.body)


def decode_frame(data: bytes, offset: int) -> Tuple[Frame, int]:
    if offset + 3 > len(data):
        raise ProtocolError("Frame truncated")
    flags = data[offset]
    reliability = flags >> 5
    length = (struct.unpack_from(">H", data, offset + 1)[0] + 7) // 8
    offset += 3

    frame = Frame(reliability=reliability, body=b"")
    if reliability in RELIABLE_TYPES:
        frame.reliable_index = decode_u24(data, offset)
        offset += 3
    if reliability in SEQUENCED_TYPES:
        offset += 3
    if reliability in ORDERED_TYPES:
        frame.order_index = decode_u24(data, offset)
        if offset + 3 >= len(data):
            raise ProtocolError("Frame truncated")
        frame.channel = data[offset + 3]
        offset += 4
    if flags & 0x10:
        if offset + 10 > len(data):
            raise ProtocolError("Frame truncated")
        frame.split = struct.unpack_from(">IHI", data, offset)
        offset += 10

    if offset + length > len(data):
        raise ProtocolError("Frame body truncated")
    frame.body = data[offset:offset + length]
    return frame, offset + length


class DatagramInbox(asyncio.DatagramProtocol):
    """Feeds received datagrams and socket errors into a queue"""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()

    def datagram_received(self, data: bytes, addr) -> None:
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            self.queue.put_nowait(exc)

    async def get(self) -> bytes:
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return item


class RakNetConnection:
    """Reliability layer of one connected session

    Works for either side of the connection: everything sent is reliable
    ordered on channel 0 unless asked otherwise, everything received is
    acknowledged, deduplicated, reassembled and handed back in order.
    """

    def __init__(self, transport: asyncio.DatagramTransport, mtu: int, addr=None):
        self.transport = transport
        self.mtu = mtu
        self.addr = addr
        self.last_received = time.monotonic()
        self._datagram_seq = 0
        self._reliable_index = 0
        self._order_index = 0
        self._split_id = 0
        self._in_flight: Dict[int, Tuple[float, List[Frame]]] = {}
        self._seen: Set[int] = set()
        self._seen_order: Deque[int] = deque()
        self._splits: Dict[int, Dict[int, bytes]] = {}
        self._order_expected: Dict[int, int] = {}
        self._order_held: Dict[int, Dict[int, bytes]] = {}

    @property
    def max_body(self) -> int:
        return self.mtu - UDP_OVERHEAD - DATAGRAM_HEADER - FRAME_HEADER

    def _sendto(self, data: bytes) -> None:
        if self.addr is None:
            self.transport.sendto(data)
        else:
            self.transport.sendto(data, self.addr)

    def _send_datagram(self, frames: List[Frame], reliable: bool) -> None:
        seq = self._datagram_seq
        self._datagram_seq = (seq + 1) & 0xFFFFFF
        payload = b"".join(encode_frame(frame) for frame in frames)
        self._sendto(bytes([FLAG_VALID | FLAG_NEEDS_B_AND_AS]) + encode_u24(seq) + payload)
        if reliable:
            self._in_flight[seq] = (time.monotonic(), frames)

    def send(self, payload: bytes, reliability: int = RELIABLE_ORDERED) -> None:
        """Queue one message, splitting it when it exceeds the MTU"""
        if reliability == UNRELIABLE and len(payload) <= self.max_body:
            self._send_datagram([Frame(reliability=UNRELIABLE, body=payload)], reliable=False)
            return

        if reliability not in RELIABLE_TYPES:
            reliability = RELIABLE
        order_index = None
        if reliability in ORDERED_TYPES:
            order_index = self._order_index
            self._order_index = (self._order_index + 1) & 0xFFFFFF

        limit = self.max_body
        parts = [payload[i:i + limit] for i in range(0, len(payload), limit)] or [b""]
        split_id = None
        if len(parts) > 1:
            split_id = self._split_id
            self._split_id = (self._split_id + 1) & 0xFFFF

        for index, part in enumerate(parts):
            frame = Frame(
                reliability=reliability,
                body=part,
                reliable_index=self._reliable_index,
                order_index=order_index,
                split=(len(parts), split_id, index) if split_id is not None else None,
            )
            self._reliable_index = (self._reliable_index + 1) & 0xFFFFFF
            self._send_datagram([frame], reliable=True)

    def resend_stale(self, now: Optional[float] = None) -> int:
        """Resend reliable datagrams that were never acknowledged"""
        now = now if now is not None else time.monotonic()
        stale = [seq for seq, (sent, _) in self._in_flight.items() if now - sent >= RESEND_AFTER]
        for seq in stale:
            _, frames = self._in_flight.pop(seq)
            self._send_datagram(frames, reliable=True)
        return len(stale)

    def receive(self, data: bytes) -> List[bytes]:
        """Process one connected datagram; returns completed messages in order"""
        if not data:
            return []
        flags = data[0]
        if flags & FLAG_ACK:
            self.last_received = time.monotonic()
            for seq in decode_ack(data):
                self._in_flight.pop(seq, None)
            return []
        if flags & FLAG_NACK:
            self.last_received = time.monotonic()
            for seq in decode_ack(data):
                entry = self._in_flight.pop(seq, None)
                if entry:
                    self._send_datagram(entry[1], reliable=True)
            return []
        if not flags & FLAG_VALID:
            return []

        self.last_received = time.monotonic()
        seq = decode_u24(data, 1)
        self._sendto(encode_ack([seq]))

        messages: List[bytes] = []
        offset = DATAGRAM_HEADER
        while offset < len(data):
            frame, offset = decode_frame(data, offset)
            messages.extend(self._accept(frame))
        return messages

    def _is_duplicate(self, reliable_index: int) -> bool:
        if reliable_index in self._seen:
            return True
        self._seen.add(reliable_index)
        self._seen_order.append(reliable_index)
        if len(self._seen_order) > RELIABLE_WINDOW:
            self._seen.discard(self._seen_order.popleft())
        return False

    def _accept(self, frame: Frame) -> List[bytes]:
        if frame.reliable_index is not None and self._is_duplicate(frame.reliable_index):
            return []

        body = frame.body
        if frame.split:
            count, split_id, index = frame.split
            if count > MAX_SPLIT_COUNT or index >= count:
                raise ProtocolError(f"Bad split packet ({index}/{count})")
            parts = self._splits.setdefault(split_id, {})
            parts[index] = body
            if len(parts) < count:
                return []
            del self._splits[split_id]
            body = b"".join(parts[i] for i in range(count))

        if frame.order_index is None or frame.reliability in SEQUENCED_TYPES:
            return [body]
        return self._in_order(frame.channel, frame.order_index, body)

    def _in_order(self, channel: int, index: int, body: bytes) -> List[bytes]:
        expected = self._order_expected.get(channel, 0)
        held = self._order_held.setdefault(channel, {})
        distance = (index - expected) & 0xFFFFFF
        if distance >= 0x800000:
            return []  # already delivered
        if distance:
            held[index] = body
            return []

        ready = [body]
        expected = (expected + 1) & 0xFFFFFF
        while expected in held:
            ready.append(held.pop(expected))
            expected = (expected + 1) & 0xFFFFFF
        self._order_expected[channel] = expected
        return ready


async def open_connection(
    transport: asyncio.DatagramTransport,
    inbox: DatagramInbox,
    client_guid: int,
    server_host: str,
    server_port: int,
    mtu_sizes: Tuple[int, ...] = MTU_SIZES,
    reply_timeout: float = 0.5,
) -> RakNetConnection:
    """Offline handshake: negotiate the MTU and open a connected session

    Raises ServerRefused with the server's reason when it turns the
    connection down. Callers bound the whole handshake with their own timeout.
    """
    mtu, security = await _negotiate_mtu(transport, inbox, mtu_sizes, reply_timeout)

    request = bytearray([ID_OPEN_CONNECTION_REQUEST_2]) + RAKNET_MAGIC
    if security is not None:
        request += struct.pack(">I", security) + b"\x00"
    request += encode_address(server_host, server_port) + struct.pack(">H", mtu) + struct.pack(">q", client_guid)

    while True:
        transport.sendto(bytes(request))
        reply = await _offline_reply(inbox, (ID_OPEN_CONNECTION_REPLY_2,), reply_timeout)
        if reply is None:
            continue
        if len(reply) >= 27:
            offset = skip_address(reply, 25)
            if offset + 2 <= len(reply):
                mtu = min(mtu, struct.unpack_from(">H", reply, offset)[0])
        break

    connection = RakNetConnection(transport, mtu)
    request_time = int(time.monotonic() * 1000)
    connection.send(
        bytes([ID_CONNECTION_REQUEST]) + struct.pack(">q", client_guid) + struct.pack(">q", request_time) + b"\x00",
        RELIABLE,
    )

    while True:
        try:
            data = await asyncio.wait_for(inbox.get(), timeout=reply_timeout)
        except asyncio.TimeoutError:
            connection.resend_stale()
            continue
        if data and data[0] in REFUSALS:
            raise ServerRefused(REFUSALS[data[0]])
        if not data or not data[0] & FLAG_VALID:
            continue
        for message in connection.receive(data):
            if message and message[0] == ID_CONNECTION_REQUEST_ACCEPTED:
                accepted_time = struct.unpack_from(">q", message, len(message) - 8)[0] if len(message) >= 16 else 0
                connection.send(
                    bytes([ID_NEW_INCOMING_CONNECTION])
                    + encode_address(server_host, server_port)
                    + encode_address("0.0.0.0", 0) * 20
                    + struct.pack(">q", accepted_time)
                    + struct.pack(">q", int(time.monotonic() * 1000)),
                )
                return connection
            if message and message[0] == ID_DISCONNECTION_NOTIFICATION:
                raise ConnectionResetError("connection reset by server")


async def _negotiate_mtu(
    transport: asyncio.DatagramTransport,
    inbox: DatagramInbox,
    mtu_sizes: Tuple[int, ...],
    reply_timeout: float,
) -> Tuple[int, Optional[int]]:
    """Try MTU sizes from largest down until the server answers"""
    attempt = 0
    while True:
        size = mtu_sizes[min(attempt // 2, len(mtu_sizes) - 1)]
        attempt += 1
        header = bytes([ID_OPEN_CONNECTION_REQUEST_1]) + RAKNET_MAGIC + bytes([RAKNET_PROTOCOL_VERSION])
        transport.sendto(header + b"\x00" * (size - UDP_OVERHEAD - len(header)))

        reply = await _offline_reply(inbox, (ID_OPEN_CONNECTION_REPLY_1,), reply_timeout)
        if reply is None:
            continue
        if len(reply) < 28:
            raise ProtocolError("Open connection reply truncated")
        security = None
        offset = 25
        if reply[offset]:
            security = struct.unpack_from(">I", reply, offset + 1)[0]
            offset += 4
        offset += 1
        return struct.unpack_from(">H", reply, offset)[0], security


async def _offline_reply(inbox: DatagramInbox, wanted: Tuple[int, ...], timeout: float) -> Optional[bytes]:
    """Next offline message of the wanted type, or None after timeout"""
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        try:
            data = await asyncio.wait_for(inbox.get(), timeout=remaining)
        except asyncio.TimeoutError:
            return None
        if not data:
            continue
        if data[0] in REFUSALS:
            raise ServerRefused(REFUSALS[data[0]])
        if data[0] in wanted:
            return data
