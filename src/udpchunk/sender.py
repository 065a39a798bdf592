from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Iterator

from .constants import DEFAULT_ACK_TIMEOUT_MS, DEFAULT_CHUNK_SIZE, DEFAULT_MAX_RETRIES
from .errors import AckExhausted, FrameTooLarge, MalformedFrame
from .net import Address, UdpEndpoint
from .packet import Ack, Chunk, ChunkCodec, FileCodec

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SendMetrics:
    payload_bytes: int = 0
    chunks_sent: int = 0
    bytes_sent: int = 0
    timeouts: int = 0
    retransmits: int = 0
    mismatched_acks: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.payload_bytes * 8 / 1_000_000) / self.duration_s


def new_transfer_id(bits: int = 63) -> int:
    return secrets.randbits(bits)


def chunk_count(length: int, chunk_size: int) -> int:
    """Number of chunks for ``length`` bytes. An empty payload is one empty chunk."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return max(1, -(-length // chunk_size))


def split_payload(
    transfer_id: int,
    payload: bytes,
    chunk_size: int,
    name: str | None = None,
) -> Iterator[Chunk]:
    total = chunk_count(len(payload), chunk_size)
    view = memoryview(payload)
    for index in range(total):
        start = index * chunk_size
        yield Chunk(
            transfer_id=transfer_id,
            total_chunks=total,
            chunk_index=index,
            payload=bytes(view[start : start + chunk_size]),
            name=name,
        )


@dataclass(slots=True)
class ChunkSender:
    """Splits one payload into chunks and puts them on the wire.

    Unreliable mode hands every chunk to the transport and returns. Reliable
    mode is stop-and-wait per chunk: chunk i+1 goes out only once chunk i has a
    matching ack, and a chunk that gets none after ``max_retries`` sends fails
    the whole transfer with ``AckExhausted``.
    """

    udp: UdpEndpoint
    dest: Address
    codec: ChunkCodec = field(default_factory=FileCodec)
    chunk_size: int = DEFAULT_CHUNK_SIZE
    reliable: bool = True
    ack_timeout_ms: int = DEFAULT_ACK_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES

    def send(self, transfer_id: int, payload: bytes, name: str | None = None) -> SendMetrics:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.reliable and self.ack_timeout_ms <= 0:
            raise ValueError("ack_timeout_ms must be positive in reliable mode")
        limit = self.codec.max_payload(name)
        if min(self.chunk_size, len(payload)) > limit:
            raise FrameTooLarge(
                f"chunk_size {self.chunk_size} exceeds the {limit} bytes left after the header"
            )

        metrics = SendMetrics(payload_bytes=len(payload))
        total = chunk_count(len(payload), self.chunk_size)
        logger.info(
            "send start; transfer=%d name=%s size=%d chunks=%d reliable=%s",
            transfer_id,
            name,
            len(payload),
            total,
            self.reliable,
        )
        if self.reliable:
            self.udp.set_timeout_ms(self.ack_timeout_ms)

        for chunk in split_payload(transfer_id, payload, self.chunk_size, name):
            raw = self.codec.encode(chunk)
            if self.reliable:
                self._send_reliable(chunk, raw, metrics)
            else:
                self._transmit(chunk, raw, metrics)

        metrics.end_ts = time.monotonic()
        logger.info(
            "send done; transfer=%d retransmits=%d throughput=%.2f Mbps",
            transfer_id,
            metrics.retransmits,
            metrics.throughput_mbps,
        )
        return metrics

    def close(self) -> None:
        self.udp.close()

    def _transmit(self, chunk: Chunk, raw: bytes, metrics: SendMetrics) -> None:
        self.udp.sendto(raw, self.dest)
        metrics.chunks_sent += 1
        metrics.bytes_sent += len(chunk.payload)

    def _send_reliable(self, chunk: Chunk, raw: bytes, metrics: SendMetrics) -> None:
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                metrics.retransmits += 1
            self._transmit(chunk, raw, metrics)
            if self._await_ack(chunk, metrics):
                return
            logger.debug(
                "no ack; transfer=%d chunk=%d attempt=%d/%d",
                chunk.transfer_id,
                chunk.chunk_index,
                attempt,
                self.max_retries,
            )
        raise AckExhausted(chunk.transfer_id, chunk.chunk_index, self.max_retries)

    def _await_ack(self, chunk: Chunk, metrics: SendMetrics) -> bool:
        try:
            raw, _ = self.udp.recvfrom()
        except (TimeoutError, ConnectionResetError):
            metrics.timeouts += 1
            return False

        try:
            ack = Ack.from_bytes(raw)
        except MalformedFrame:
            metrics.mismatched_acks += 1
            return False

        if ack.ok and ack.matches(chunk.transfer_id, chunk.chunk_index):
            return True
        metrics.mismatched_acks += 1
        return False
