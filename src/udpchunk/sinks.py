from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable

from .constants import DEFAULT_SINK_QUEUE, DEFAULT_SINK_WORKERS
from .reassembly import CompletedTransfer

logger = logging.getLogger(__name__)

Sink = Callable[[CompletedTransfer], None]


def sanitize_filename(name: str | None, fallback: str) -> str:
    """Flatten a name received over the wire into one safe path component.

    Separators of either style are normalized, ``.``/``..`` segments and empty
    segments are dropped, and what remains is joined with ``_``.
    """
    if not name:
        return fallback
    parts = name.replace("\\", "/").split("/")
    kept = [p for p in parts if p not in ("", ".", "..")]
    cleaned = "_".join(kept).replace("\x00", "").replace(":", "_").lstrip(".")
    return cleaned or fallback


def session_folder_name(now: datetime | None = None) -> str:
    return (now or datetime.now()).isoformat().replace(":", "-")


class DirectorySink:
    """Writes completed files into a per-session folder under ``base_dir``."""

    def __init__(self, base_dir: Path | str, session: str | None = None):
        self.session_dir = Path(base_dir) / (session or session_folder_name())
        self.session_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, transfer: CompletedTransfer) -> Path:
        name = sanitize_filename(transfer.name, f"transfer-{transfer.transfer_id}")
        path = self.session_dir / name
        if path.resolve().parent != self.session_dir.resolve():
            raise ValueError(f"refusing to write outside {self.session_dir}: {transfer.name!r}")
        return path

    def __call__(self, transfer: CompletedTransfer) -> None:
        path = self.path_for(transfer)
        path.write_bytes(transfer.payload)
        logger.info(
            "completed write: %s (transfer=%d, %d bytes) -> %s",
            transfer.name,
            transfer.transfer_id,
            len(transfer.payload),
            path,
        )


class FrameDirectorySink:
    def __init__(self, directory: Path | str, pattern: str = "frame_{id}.jpg"):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.pattern = pattern

    def __call__(self, transfer: CompletedTransfer) -> None:
        path = self.directory / self.pattern.format(id=transfer.transfer_id)
        path.write_bytes(transfer.payload)
        logger.debug("saved frame %d to %s", transfer.transfer_id, path)


class CallbackSink:
    """Forwards the raw bytes to a consumer such as a live preview."""

    def __init__(self, callback: Callable[[int, bytes], None]):
        self.callback = callback

    def __call__(self, transfer: CompletedTransfer) -> None:
        if transfer.payload:
            self.callback(transfer.transfer_id, transfer.payload)


class MemorySink:
    def __init__(self) -> None:
        self.completed: list[CompletedTransfer] = []
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)

    def __call__(self, transfer: CompletedTransfer) -> None:
        with self._changed:
            self.completed.append(transfer)
            self._changed.notify_all()

    def wait_for(self, count: int, timeout: float | None = None) -> bool:
        with self._changed:
            return self._changed.wait_for(lambda: len(self.completed) >= count, timeout)


class MultiSink:
    def __init__(self, *sinks: Sink):
        self.sinks = sinks

    def __call__(self, transfer: CompletedTransfer) -> None:
        for sink in self.sinks:
            sink(transfer)


class BoundedExecutor:
    """Thread pool whose ``submit`` blocks once ``max_workers + max_pending``
    tasks are outstanding."""

    def __init__(
        self,
        max_workers: int = DEFAULT_SINK_WORKERS,
        max_pending: int = DEFAULT_SINK_QUEUE,
    ):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="udpchunk-sink")
        self._slots = threading.BoundedSemaphore(max_workers + max_pending)
        self._lock = threading.Lock()
        self.failures = 0

    def submit(self, fn: Callable[..., None], *args) -> Future:
        self._slots.acquire()
        try:
            future = self._pool.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(self._on_done)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "BoundedExecutor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)

    def _on_done(self, future: Future) -> None:
        self._slots.release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            with self._lock:
                self.failures += 1
            logger.error("sink failed: %s", exc, exc_info=exc)
