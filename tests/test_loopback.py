from __future__ import annotations

import threading

from udpchunk.bench import run_benchmark
from udpchunk.config import TransferConfig
from udpchunk.net import UdpEndpoint
from udpchunk.receiver import Receiver
from udpchunk.scheduler import TransferItem, TransferScheduler
from udpchunk.sender import ChunkSender
from udpchunk.sinks import MemorySink


def test_benchmark_over_loopback():
    r = run_benchmark(size_bytes=20000, config=TransferConfig(ack_timeout_ms=200))
    assert r.bytes_transferred == 20000
    assert r.chunks == 3


def test_parallel_reliable_transfers_over_loopback():
    recv_ep = UdpEndpoint.listening("127.0.0.1", 0)
    sink = MemorySink()
    receiver = Receiver(recv_ep, sink, poll_interval_ms=50)
    stop = threading.Event()
    t = threading.Thread(target=receiver.run, kwargs={"stop": stop}, daemon=True)
    t.start()

    payloads = {tid: bytes([tid]) * (tid * 5000 + 1) for tid in range(1, 6)}
    items = [TransferItem(tid, name=f"file{tid}.bin", payload=p) for tid, p in payloads.items()]

    def make_sender():
        return ChunkSender(
            UdpEndpoint.sending(),
            recv_ep.address,
            chunk_size=4096,
            ack_timeout_ms=200,
            max_retries=10,
        )

    try:
        report = TransferScheduler(make_sender, max_workers=3).run(items)
        assert sink.wait_for(len(items), timeout=10.0)
    finally:
        stop.set()
        t.join(timeout=5.0)
        recv_ep.close()

    assert report.ok
    assert {d.transfer_id: d.payload for d in sink.completed} == payloads
    assert {d.name for d in sink.completed} == {f"file{tid}.bin" for tid in payloads}
