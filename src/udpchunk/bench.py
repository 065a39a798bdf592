from __future__ import annotations

import threading
from dataclasses import dataclass

from .config import TransferConfig
from .net import Impairment, UdpEndpoint
from .packet import FileCodec
from .reassembly import ReassemblyTable
from .receiver import Receiver
from .sender import ChunkSender, new_transfer_id
from .sinks import MemorySink


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    chunks: int
    duration_s: float
    throughput_mbps: float
    retransmits: int
    timeouts: int
    duplicates_at_receiver: int


def run_benchmark(
    *,
    size_bytes: int,
    config: TransferConfig | None = None,
    loss_rate: float = 0.0,
    delay_ms: int = 0,
) -> BenchmarkResult:
    """Reliable transfer of ``size_bytes`` over loopback with simulated impairment."""
    config = (config or TransferConfig()).validate()
    payload = bytes(i % 251 for i in range(size_bytes))
    impair = Impairment(loss_rate=loss_rate, delay_ms=delay_ms)
    codec = FileCodec(config.max_datagram_size)

    recv_ep = UdpEndpoint.listening("127.0.0.1", 0, impairment=impair)
    sink = MemorySink()
    receiver = Receiver(
        recv_ep,
        sink,
        codec=codec,
        table=ReassemblyTable(stale_after_s=config.stale_after_s),
        poll_interval_ms=50,
    )
    stop = threading.Event()

    def recv_runner():
        try:
            receiver.run(stop=stop)
        finally:
            recv_ep.close()

    t = threading.Thread(target=recv_runner, daemon=True)
    t.start()

    send_ep = UdpEndpoint.sending(impairment=impair)
    sender = ChunkSender(
        send_ep,
        recv_ep.address,
        codec=codec,
        chunk_size=config.chunk_size,
        ack_timeout_ms=config.ack_timeout_ms,
        max_retries=config.max_retries,
    )
    try:
        send_metrics = sender.send(new_transfer_id(), payload, name="bench.bin")
        sink.wait_for(1, timeout=10.0)
    finally:
        sender.close()
        stop.set()
        t.join(timeout=10.0)

    if not sink.completed or sink.completed[0].payload != payload:
        raise RuntimeError("benchmark payload did not arrive intact")

    duration_s = max(0.001, send_metrics.duration_s)
    return BenchmarkResult(
        bytes_transferred=size_bytes,
        chunks=sink.completed[0].total_chunks,
        duration_s=duration_s,
        throughput_mbps=(size_bytes * 8 / 1_000_000) / duration_s,
        retransmits=send_metrics.retransmits,
        timeouts=send_metrics.timeouts,
        duplicates_at_receiver=receiver.stats.duplicates,
    )
