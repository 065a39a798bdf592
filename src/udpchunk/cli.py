from __future__ import annotations

import argparse
import json
import logging
import secrets
from dataclasses import asdict
from pathlib import Path

from .bench import run_benchmark
from .config import TransferConfig, load_config
from .constants import FRAME_PACKET_SIZE, IMAGE_EXTENSIONS
from .net import Impairment, UdpEndpoint
from .packet import FileCodec, FrameCodec
from .reassembly import ReassemblyTable
from .receiver import Receiver, ReceiverStats
from .scheduler import TransferItem, TransferScheduler
from .sender import ChunkSender, new_transfer_id
from .sinks import BoundedExecutor, DirectorySink, FrameDirectorySink
from .sources import list_sources

logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> TransferConfig:
    path = getattr(args, "config", None)
    base = load_config(path) if path else TransferConfig()
    return base.merged(
        chunk_size=getattr(args, "chunk_size", None),
        max_datagram_size=getattr(args, "max_datagram_size", None),
        ack_timeout_ms=getattr(args, "ack_timeout_ms", None),
        max_retries=getattr(args, "max_retries", None),
        workers=getattr(args, "workers", None),
        reliable=False if getattr(args, "unreliable", False) else None,
    )


def emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def receiver_payload(stats: ReceiverStats) -> dict:
    return {
        "role": "receiver",
        "datagrams": stats.datagrams,
        "completed": stats.completed,
        "bytes": stats.bytes_received,
        "duplicates": stats.duplicates,
        "malformed": stats.malformed,
        "expired": stats.expired,
        "seconds": stats.duration_s,
        "mbps": stats.throughput_mbps,
    }


def run_receiver(receiver: Receiver) -> ReceiverStats:
    try:
        return receiver.run()
    except KeyboardInterrupt:
        logger.info("receiver stopped")
        return receiver.stats
    finally:
        receiver.udp.close()


def cmd_recv(args: argparse.Namespace) -> int:
    config = build_config(args).validate()
    impair = Impairment(args.loss_rate, args.delay_ms)
    udp = UdpEndpoint.listening(args.listen_host, args.listen_port, impairment=impair)
    sink = DirectorySink(args.out)
    logger.info("writing into %s", sink.session_dir)

    table = ReassemblyTable(
        stale_after_s=config.stale_after_s,
        max_transfers=config.max_transfers,
        completed_memory=config.completed_memory,
    )
    with BoundedExecutor(config.sink_workers, config.sink_queue) as pool:
        receiver = Receiver(
            udp,
            sink,
            codec=FileCodec(config.max_datagram_size),
            table=table,
            reliable=config.reliable,
            executor=pool,
        )
        stats = run_receiver(receiver)
    stats.sink_failures += pool.failures

    emit(receiver_payload(stats), args.json)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    config = build_config(args).validate()
    impair = Impairment(args.loss_rate, args.delay_ms)
    source = Path(args.source)
    paths = [source] if source.is_file() else list_sources(source, order=args.order)
    items = [TransferItem(new_transfer_id(), name=p.name, path=p) for p in paths]
    codec = FileCodec(config.max_datagram_size)
    dest = (args.dest_host, args.dest_port)

    def make_sender() -> ChunkSender:
        return ChunkSender(
            UdpEndpoint.sending(impairment=impair),
            dest,
            codec=codec,
            chunk_size=config.chunk_size,
            reliable=config.reliable,
            ack_timeout_ms=config.ack_timeout_ms,
            max_retries=config.max_retries,
        )

    report = TransferScheduler(make_sender, config.workers).run(items, deadline_s=args.deadline_s)
    names = {item.transfer_id: item.name for item in items}

    payload = {
        "role": "sender",
        "files": len(items),
        "succeeded": len(report.succeeded),
        "bytes": sum(m.payload_bytes for m in report.succeeded.values()),
        "retransmits": sum(m.retransmits for m in report.succeeded.values()),
        "failed": {names[tid]: str(exc) for tid, exc in report.failed.items()},
        "unfinished": [names[tid] for tid in report.unfinished],
    }
    emit(payload, args.json)
    return 0 if report.ok else 1


def cmd_recv_frames(args: argparse.Namespace) -> int:
    config = build_config(args)
    udp = UdpEndpoint.listening(args.listen_host, args.listen_port)
    sink = FrameDirectorySink(args.out)
    table = ReassemblyTable(stale_after_s=config.stale_after_s, max_transfers=config.max_transfers)

    with BoundedExecutor(config.sink_workers, config.sink_queue) as pool:
        receiver = Receiver(
            udp,
            sink,
            codec=FrameCodec(args.max_datagram_size or FRAME_PACKET_SIZE),
            table=table,
            reliable=False,
            executor=pool,
        )
        stats = run_receiver(receiver)
    stats.sink_failures += pool.failures

    emit(receiver_payload(stats), args.json)
    return 0


def cmd_send_frames(args: argparse.Namespace) -> int:
    codec = FrameCodec(args.max_datagram_size or FRAME_PACKET_SIZE)
    paths = list_sources(args.source, extensions=IMAGE_EXTENSIONS, order=args.order)
    if not paths:
        logger.warning("no images found in %s", args.source)
        return 0

    sender = ChunkSender(
        UdpEndpoint.sending(),
        (args.dest_host, args.dest_port),
        codec=codec,
        chunk_size=codec.max_payload(),
        reliable=False,
    )
    base = secrets.randbits(32)
    sent_bytes = 0
    try:
        for i, path in enumerate(paths):
            metrics = sender.send((base + i) & 0xFFFFFFFF, path.read_bytes())
            sent_bytes += metrics.payload_bytes
            if (i + 1) % 100 == 0 or i == len(paths) - 1:
                logger.info("sent %04d/%d - %s", i + 1, len(paths), path.name)
    finally:
        sender.close()

    emit({"role": "frame-sender", "frames": len(paths), "bytes": sent_bytes}, args.json)
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        size_bytes=args.size_bytes,
        config=build_config(args),
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
    )
    payload = {"role": "bench", **asdict(r)}
    emit(payload, args.json)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="udpchunk", description="Chunked file/frame transfer over UDP.")
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--config", help="YAML file with TransferConfig fields")
        x.add_argument("--chunk-size", type=int)
        x.add_argument("--max-datagram-size", type=int)
        x.add_argument("--ack-timeout-ms", type=int)
        x.add_argument("--max-retries", type=int)
        x.add_argument("--json", action="store_true")

    def add_frames(x: argparse.ArgumentParser) -> None:
        x.add_argument("--max-datagram-size", type=int, help=f"default {FRAME_PACKET_SIZE}")
        x.add_argument("--json", action="store_true")

    def add_impairment(x: argparse.ArgumentParser) -> None:
        x.add_argument("--loss-rate", type=float, default=0.0, help="simulate packet loss")
        x.add_argument("--delay-ms", type=int, default=0, help="simulate per-datagram delay")

    recv = sub.add_parser("recv", help="receive files into a session folder")
    add_common(recv)
    add_impairment(recv)
    recv.add_argument("--listen-host", default="0.0.0.0")
    recv.add_argument("--listen-port", type=int, required=True)
    recv.add_argument("--out", default="output")
    recv.add_argument("--unreliable", action="store_true", help="do not send acks")
    recv.set_defaults(func=cmd_recv)

    send = sub.add_parser("send", help="send a file or every file in a folder")
    add_common(send)
    add_impairment(send)
    send.add_argument("--dest-host", required=True)
    send.add_argument("--dest-port", type=int, required=True)
    send.add_argument("--source", required=True)
    send.add_argument("--order", choices=["name", "ctime", "mtime"], default="name")
    send.add_argument("--workers", type=int)
    send.add_argument("--deadline-s", type=float, default=None)
    send.add_argument("--unreliable", action="store_true", help="fire and forget")
    send.set_defaults(func=cmd_send)

    recv_frames = sub.add_parser("recv-frames", help="receive image frames")
    add_frames(recv_frames)
    recv_frames.add_argument("--config", help="YAML file with TransferConfig fields")
    recv_frames.add_argument("--listen-host", default="0.0.0.0")
    recv_frames.add_argument("--listen-port", type=int, default=9001)
    recv_frames.add_argument("--out", default="saved_frames")
    recv_frames.set_defaults(func=cmd_recv_frames)

    send_frames = sub.add_parser("send-frames", help="stream images from a folder as frames")
    add_frames(send_frames)
    send_frames.add_argument("--dest-host", required=True)
    send_frames.add_argument("--dest-port", type=int, default=9001)
    send_frames.add_argument("--source", required=True)
    send_frames.add_argument("--order", choices=["name", "ctime", "mtime"], default="name")
    send_frames.set_defaults(func=cmd_send_frames)

    bench = sub.add_parser("bench", help="loopback benchmark of a reliable transfer")
    add_common(bench)
    add_impairment(bench)
    bench.add_argument("--size-bytes", type=int, default=5_000_000)
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
