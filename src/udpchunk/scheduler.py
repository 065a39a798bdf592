from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from .constants import DEFAULT_WORKERS
from .sender import ChunkSender, SendMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransferItem:
    """One logical payload: either bytes in memory or a file read by the worker."""

    transfer_id: int
    name: str | None = None
    payload: bytes | None = None
    path: Path | None = None

    def load(self) -> bytes:
        if self.payload is not None:
            return self.payload
        if self.path is None:
            raise ValueError(f"transfer {self.transfer_id} has neither payload nor path")
        return Path(self.path).read_bytes()


@dataclass(slots=True)
class BatchReport:
    succeeded: dict[int, SendMetrics] = field(default_factory=dict)
    failed: dict[int, BaseException] = field(default_factory=dict)
    unfinished: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.unfinished


class TransferScheduler:
    """Runs one sender per payload on a bounded thread pool.

    Tasks are submitted in input order; they finish in any order. A failing
    transfer is recorded in the report and never affects the others. Each task
    gets its own sender from ``make_sender`` so acks for one transfer are never
    read by another.
    """

    def __init__(self, make_sender: Callable[[], ChunkSender], max_workers: int = DEFAULT_WORKERS):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.make_sender = make_sender
        self.max_workers = max_workers

    def run(self, items: Iterable[TransferItem], deadline_s: float | None = None) -> BatchReport:
        """Send every item and wait for all of them, or until ``deadline_s`` passes."""
        futures: dict[Future, TransferItem] = {}
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="udpchunk-send")
        try:
            for item in items:
                futures[pool.submit(self._transfer, item)] = item
            done, _ = wait(futures, timeout=deadline_s)
        finally:
            pool.shutdown(wait=deadline_s is None, cancel_futures=True)

        report = BatchReport()
        for future, item in futures.items():
            if future not in done:
                report.unfinished.append(item.transfer_id)
                continue
            exc = future.exception()
            if exc is None:
                report.succeeded[item.transfer_id] = future.result()
            else:
                report.failed[item.transfer_id] = exc
                logger.warning("transfer %d (%s) failed: %s", item.transfer_id, item.name, exc)

        logger.info(
            "batch done; ok=%d failed=%d unfinished=%d",
            len(report.succeeded),
            len(report.failed),
            len(report.unfinished),
        )
        return report

    def _transfer(self, item: TransferItem) -> SendMetrics:
        sender = self.make_sender()
        try:
            return sender.send(item.transfer_id, item.load(), item.name)
        finally:
            sender.close()
