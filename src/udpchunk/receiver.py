from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from .errors import MalformedFrame, TransportError
from .net import Address, UdpEndpoint
from .packet import Ack, ChunkCodec, FileCodec
from .reassembly import CompletedTransfer, InsertResult, ReassemblyTable
from .sinks import BoundedExecutor, Sink

logger = logging.getLogger(__name__)

EXPIRE_EVERY = 256
STATS_EVERY = 10
IDLE_NOTICE_S = 5.0


@dataclass(slots=True)
class ReceiverStats:
    datagrams: int = 0
    malformed: int = 0
    inserted: int = 0
    duplicates: int = 0
    out_of_range: int = 0
    acks_sent: int = 0
    completed: int = 0
    expired: int = 0
    sink_failures: int = 0
    bytes_received: int = 0
    min_transfer_s: float | None = None
    max_transfer_s: float = 0.0
    total_transfer_s: float = 0.0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def avg_transfer_s(self) -> float:
        if not self.completed:
            return 0.0
        return self.total_transfer_s / self.completed

    @property
    def duration_s(self) -> float:
        end = self.end_ts if self.end_ts is not None else time.monotonic()
        return max(0.0, end - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_received * 8 / 1_000_000) / self.duration_s

    def record_completion(self, done: CompletedTransfer) -> None:
        self.completed += 1
        self.bytes_received += len(done.payload)
        self.total_transfer_s += done.elapsed_s
        self.max_transfer_s = max(self.max_transfer_s, done.elapsed_s)
        if self.min_transfer_s is None or done.elapsed_s < self.min_transfer_s:
            self.min_transfer_s = done.elapsed_s


class Receiver:
    """Receive loop: decode, reassemble, ack, hand completed payloads to a sink.

    A bad datagram is counted and dropped; it never ends the loop. In reliable
    mode every decodable chunk is acked, duplicates included, so a sender whose
    ack got lost simply retries and gets a fresh one. When ``executor`` is set,
    sinks run on that bounded pool; otherwise they run inline.
    """

    def __init__(
        self,
        udp: UdpEndpoint,
        sink: Sink,
        *,
        codec: ChunkCodec | None = None,
        table: ReassemblyTable | None = None,
        reliable: bool = True,
        executor: BoundedExecutor | None = None,
        poll_interval_ms: int = 500,
    ):
        self.udp = udp
        self.sink = sink
        self.codec = codec or FileCodec()
        self.table = table or ReassemblyTable()
        self.reliable = reliable
        self.executor = executor
        self.poll_interval_ms = poll_interval_ms
        self.stats = ReceiverStats()

    def handle_datagram(self, raw: bytes, addr: Address) -> InsertResult | None:
        self.stats.datagrams += 1
        try:
            chunk = self.codec.decode(raw)
        except MalformedFrame as exc:
            self.stats.malformed += 1
            logger.debug("dropping malformed datagram from %s: %s", addr, exc)
            return None

        result = self.table.on_chunk(chunk)
        if result is InsertResult.INSERTED:
            self.stats.inserted += 1
        elif result is InsertResult.DUPLICATE_IGNORED:
            self.stats.duplicates += 1
            logger.debug("duplicate chunk %d of transfer %d", chunk.chunk_index, chunk.transfer_id)
        else:
            self.stats.out_of_range += 1
            logger.debug(
                "chunk index %d out of range for transfer %d",
                chunk.chunk_index,
                chunk.transfer_id,
            )

        if self.reliable:
            self._send_ack(Ack.for_chunk(chunk), addr)

        if result is InsertResult.INSERTED:
            done = self.table.pop_completed(chunk.transfer_id)
            if done is not None:
                self._complete(done)
        return result

    def run(self, stop: threading.Event | None = None, max_transfers: int | None = None) -> ReceiverStats:
        """Loop until ``stop`` is set or ``max_transfers`` have completed."""
        stop = stop or threading.Event()
        self.udp.set_timeout_ms(self.poll_interval_ms)
        logger.info(
            "receiver listening on %s:%d (reliable=%s)",
            *self.udp.address,
            self.reliable,
        )
        last_notice = time.monotonic()

        while not stop.is_set():
            try:
                raw, addr = self.udp.recvfrom()
            except TimeoutError:
                self._expire()
                now = time.monotonic()
                if self.stats.datagrams == 0 and now - last_notice >= IDLE_NOTICE_S:
                    logger.info("still waiting for datagrams...")
                    last_notice = now
                continue
            except ConnectionResetError as exc:
                # a peer we acked has gone away; other peers are unaffected
                logger.warning("ignoring connection reset on receive: %s", exc)
                continue

            if self.stats.datagrams == 0:
                logger.info("first datagram received from %s", addr)
            self.handle_datagram(raw, addr)
            if self.stats.datagrams % EXPIRE_EVERY == 0:
                self._expire()
            if max_transfers is not None and self.stats.completed >= max_transfers:
                break

        self.stats.end_ts = time.monotonic()
        return self.stats

    def _send_ack(self, ack: Ack, addr: Address) -> None:
        try:
            self.udp.sendto(ack.to_bytes(), addr)
        except TransportError as exc:
            logger.warning("failed to send ack to %s: %s", addr, exc)
            return
        self.stats.acks_sent += 1

    def _expire(self) -> None:
        self.stats.expired += len(self.table.expire())

    def _complete(self, done: CompletedTransfer) -> None:
        self.stats.record_completion(done)
        if self.executor is not None:
            self.executor.submit(self.sink, done)
        else:
            self._deliver(done)

        if self.stats.completed % STATS_EVERY == 0 or self.stats.completed <= 5:
            logger.info(
                "transfer %d complete in %.3f ms | count=%d avg=%.3f ms min=%.3f ms max=%.3f ms",
                done.transfer_id,
                done.elapsed_s * 1000,
                self.stats.completed,
                self.stats.avg_transfer_s * 1000,
                (self.stats.min_transfer_s or 0.0) * 1000,
                self.stats.max_transfer_s * 1000,
            )

    def _deliver(self, done: CompletedTransfer) -> None:
        try:
            self.sink(done)
        except Exception:
            self.stats.sink_failures += 1
            logger.exception("sink failed for transfer %d", done.transfer_id)
