from __future__ import annotations

from collections import Counter

import pytest

from conftest import FakeEndpoint, ack_everything
from udpchunk.errors import AckExhausted, FrameTooLarge
from udpchunk.packet import Ack, FileCodec, FrameCodec
from udpchunk.sender import ChunkSender, chunk_count, split_payload

DEST = ("127.0.0.1", 5000)
codec = FileCodec()


def sent_indices(udp: FakeEndpoint, c=codec) -> list[int]:
    return [c.decode(raw).chunk_index for raw, _ in udp.sent]


def test_chunk_count_boundaries():
    assert chunk_count(20000, 8192) == 3
    assert chunk_count(3 * 8192, 8192) == 3
    assert chunk_count(1, 8192) == 1
    assert chunk_count(0, 8192) == 1


def test_exact_multiple_has_no_trailing_empty_chunk():
    chunks = list(split_payload(1, b"x" * 16384, 8192))
    assert [len(c.payload) for c in chunks] == [8192, 8192]
    assert {c.total_chunks for c in chunks} == {2}


def test_empty_payload_is_one_empty_chunk():
    udp = FakeEndpoint()
    ChunkSender(udp, DEST, reliable=False).send(1, b"")
    assert len(udp.sent) == 1
    c = codec.decode(udp.sent[0][0])
    assert (c.total_chunks, c.chunk_index, c.payload) == (1, 0, b"")


def test_unreliable_sends_every_chunk_in_order(payload_20k):
    udp = FakeEndpoint()
    m = ChunkSender(udp, DEST, reliable=False).send(3, payload_20k, name="a.bin")
    assert sent_indices(udp) == [0, 1, 2]
    assert all(addr == DEST for _, addr in udp.sent)
    assert m.chunks_sent == 3
    assert m.retransmits == 0
    assert b"".join(codec.decode(raw).payload for raw, _ in udp.sent) == payload_20k


def test_reliable_sends_each_chunk_once_when_acked(payload_20k):
    udp = FakeEndpoint(respond=ack_everything())
    m = ChunkSender(udp, DEST, ack_timeout_ms=40).send(3, payload_20k, name="a.bin")
    assert sent_indices(udp) == [0, 1, 2]
    assert udp.timeout_ms == 40
    assert m.timeouts == 0
    assert m.payload_bytes == 20000


def test_retry_bound_when_no_ack_ever_arrives(payload_20k):
    udp = FakeEndpoint()
    with pytest.raises(AckExhausted) as info:
        ChunkSender(udp, DEST, max_retries=5).send(9, payload_20k)
    assert info.value.transfer_id == 9
    assert info.value.chunk_index == 0
    assert info.value.attempts == 5
    assert sent_indices(udp) == [0] * 5


def test_no_chunk_after_the_failing_one_is_sent(payload_20k):
    def respond(raw):
        c = codec.decode(raw)
        return Ack.for_chunk(c).to_bytes() if c.chunk_index == 0 else None

    udp = FakeEndpoint(respond=respond)
    with pytest.raises(AckExhausted) as info:
        ChunkSender(udp, DEST, max_retries=3).send(9, payload_20k)
    assert info.value.chunk_index == 1
    assert sent_indices(udp) == [0, 1, 1, 1]


def test_chunk_one_acked_on_third_attempt(payload_20k):
    seen = Counter()

    def respond(raw):
        c = codec.decode(raw)
        seen[c.chunk_index] += 1
        if c.chunk_index == 1 and seen[1] < 3:
            return None
        return Ack.for_chunk(c).to_bytes()

    udp = FakeEndpoint(respond=respond)
    m = ChunkSender(udp, DEST, max_retries=3).send(11, payload_20k)
    assert sent_indices(udp) == [0, 1, 1, 1, 2]
    assert m.retransmits == 2
    assert m.timeouts == 2


def test_mismatched_ack_counts_as_failed_attempt():
    first = []

    def respond(raw):
        c = codec.decode(raw)
        if not first:
            first.append(c)
            return Ack(c.transfer_id + 1, c.chunk_index).to_bytes()
        return Ack.for_chunk(c).to_bytes()

    udp = FakeEndpoint(respond=respond)
    m = ChunkSender(udp, DEST).send(4, b"abc")
    assert sent_indices(udp) == [0, 0]
    assert m.mismatched_acks == 1
    assert m.retransmits == 1


def test_garbage_ack_counts_as_failed_attempt():
    replies = iter([b"nonsense", None])

    def respond(raw):
        reply = next(replies, None)
        return reply if reply is not None else Ack.for_chunk(codec.decode(raw)).to_bytes()

    udp = FakeEndpoint(respond=respond)
    m = ChunkSender(udp, DEST).send(4, b"abc")
    assert m.mismatched_acks == 1
    assert len(udp.sent) == 2


def test_oversized_chunk_fails_before_any_send():
    udp = FakeEndpoint()
    sender = ChunkSender(udp, DEST, codec=FileCodec(1000), chunk_size=2000)
    with pytest.raises(FrameTooLarge):
        sender.send(1, b"x" * 5000, name="big.bin")
    assert udp.sent == []


def test_frame_with_too_many_parts_fails_before_any_send():
    udp = FakeEndpoint()
    sender = ChunkSender(udp, DEST, codec=FrameCodec(), chunk_size=1, reliable=False)
    with pytest.raises(FrameTooLarge):
        sender.send(1, b"x" * 70000)
    assert udp.sent == []


def test_frame_mode_sends_without_waiting():
    frame_codec = FrameCodec()
    udp = FakeEndpoint()
    sender = ChunkSender(
        udp, DEST, codec=frame_codec, chunk_size=frame_codec.max_payload(), reliable=False
    )
    sender.send(0xFFFFFFFF, b"j" * 3000)
    assert sent_indices(udp, frame_codec) == [0, 1, 2]
    assert all(len(raw) <= 1400 for raw, _ in udp.sent)


def test_close_closes_endpoint():
    udp = FakeEndpoint()
    ChunkSender(udp, DEST).close()
    assert udp.closed


@pytest.mark.parametrize("timeout_ms", [0, -5])
def test_reliable_mode_needs_a_bounded_ack_wait(timeout_ms):
    udp = FakeEndpoint()
    sender = ChunkSender(udp, DEST, ack_timeout_ms=timeout_ms, max_retries=1)
    with pytest.raises(ValueError, match="ack_timeout_ms"):
        sender.send(1, b"abc")
    assert udp.sent == []
    assert udp.timeout_ms is None


def test_unreliable_mode_ignores_ack_timeout():
    udp = FakeEndpoint()
    ChunkSender(udp, DEST, reliable=False, ack_timeout_ms=0).send(1, b"abc")
    assert sent_indices(udp) == [0]


def test_connection_reset_counts_as_failed_attempt():
    acked = ack_everything()
    resets = iter([ConnectionResetError("port unreachable")])

    def respond(raw: bytes):
        return next(resets, None) or acked(raw)

    udp = FakeEndpoint(respond)
    m = ChunkSender(udp, DEST, max_retries=3).send(1, b"abc")
    assert sent_indices(udp) == [0, 0]
    assert m.timeouts == 1
    assert m.retransmits == 1
