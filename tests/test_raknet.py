"""Unit tests for the RakNet reliability layer"""

import pytest

from fleetbot.clients.codec import ProtocolError
from fleetbot.clients.raknet import (
    FLAG_ACK,
    FLAG_NACK,
    RELIABLE_ORDERED,
    UNRELIABLE,
    Frame,
    RakNetConnection,
    decode_ack,
    decode_frame,
    encode_ack,
    encode_address,
    encode_frame,
    skip_address,
)


class RecordingTransport:
    def __init__(self):
        self.sent = []

    def sendto(self, data, addr=None):
        self.sent.append(data)


def make_pair(mtu=576):
    sender_transport, receiver_transport = RecordingTransport(), RecordingTransport()
    return (
        RakNetConnection(sender_transport, mtu),
        sender_transport,
        RakNetConnection(receiver_transport, mtu),
        receiver_transport,
    )


def test_ack_groups_consecutive_sequences():
    ack = encode_ack([5, 1, 2, 3, 9])

    assert ack[0] & FLAG_ACK
    # Records: range 1-3, single 5, single 9
    assert ack[1:3] == b"\x00\x03"
    assert decode_ack(ack) == [1, 2, 3, 5, 9]


def test_nack_flag():
    nack = encode_ack([4], nack=True)

    assert nack[0] & FLAG_NACK
    assert decode_ack(nack) == [4]


def test_ack_truncated():
    with pytest.raises(ProtocolError):
        decode_ack(b"\xc0\x00\x02\x01\x00\x00\x00")


def test_frame_fields_survive_encoding():
    frame = Frame(
        reliability=RELIABLE_ORDERED,
        body=b"hello",
        reliable_index=70000,
        order_index=12,
        channel=0,
        split=(3, 7, 1),
    )

    decoded, end = decode_frame(encode_frame(frame), 0)

    assert decoded == frame
    assert end == len(encode_frame(frame))


def test_address_lengths():
    v4 = encode_address("127.0.0.1", 19132)
    v6 = encode_address("::1", 19132)

    assert len(v4) == 7
    assert v4[1:5] == bytes([0x80, 0xFF, 0xFF, 0xFE])
    assert len(v6) == 29
    assert skip_address(v4 + v6, 0) == 7
    assert skip_address(v4 + v6, 7) == 36


def test_large_message_is_split_and_reassembled_out_of_order():
    sender, sent, receiver, _ = make_pair(mtu=576)
    payload = bytes(range(256)) * 6

    sender.send(payload)
    assert len(sent.sent) > 1

    messages = []
    for datagram in reversed(sent.sent):
        messages.extend(receiver.receive(datagram))

    assert messages == [payload]


def test_duplicate_datagrams_are_delivered_once():
    sender, sent, receiver, acks = make_pair()
    sender.send(b"\xfeone")

    assert receiver.receive(sent.sent[0]) == [b"\xfeone"]
    assert receiver.receive(sent.sent[0]) == []
    # Both copies are acknowledged
    assert len(acks.sent) == 2


def test_ordered_messages_are_held_until_the_gap_fills():
    sender, sent, receiver, _ = make_pair()
    for body in (b"a", b"b", b"c"):
        sender.send(body)
    first, second, third = sent.sent

    assert receiver.receive(third) == []
    assert receiver.receive(second) == []
    assert receiver.receive(first) == [b"a", b"b", b"c"]


def test_unreliable_messages_skip_ordering():
    sender, sent, receiver, _ = make_pair()
    sender.send(b"ping", UNRELIABLE)

    assert receiver.receive(sent.sent[0]) == [b"ping"]
    assert sender.resend_stale(now=float("inf")) == 0


def test_ack_stops_resends_and_nack_triggers_one():
    sender, sent, receiver, acks = make_pair()
    sender.send(b"first")
    sender.send(b"second")

    receiver.receive(sent.sent[0])
    sender.receive(acks.sent[0])

    assert sender.resend_stale(now=float("inf")) == 1
    assert sent.sent[-1][4:] == sent.sent[1][4:]

    sender.receive(encode_ack([2], nack=True))
    assert sent.sent[-1][4:] == sent.sent[1][4:]
    assert len(sent.sent) == 4


def test_bad_split_count_is_rejected():
    _, _, receiver, _ = make_pair()
    frame = Frame(reliability=RELIABLE_ORDERED, body=b"x", reliable_index=0, order_index=0, split=(2, 0, 5))
    datagram = b"\x84\x00\x00\x00" + encode_frame(frame)

    with pytest.raises(ProtocolError):
        receiver.receive(datagram)
