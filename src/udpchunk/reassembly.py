from __future__ import annotations

import enum
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from .constants import DEFAULT_COMPLETED_MEMORY, DEFAULT_MAX_TRANSFERS, DEFAULT_STALE_AFTER_S
from .errors import TransferIncomplete, UnknownTransfer
from .packet import Chunk

logger = logging.getLogger(__name__)


class InsertResult(enum.Enum):
    INSERTED = "inserted"
    DUPLICATE_IGNORED = "duplicate_ignored"
    INDEX_OUT_OF_RANGE = "index_out_of_range"


@dataclass(frozen=True, slots=True)
class CompletedTransfer:
    transfer_id: int
    name: str | None
    payload: bytes
    total_chunks: int
    elapsed_s: float


class ReassemblyBuffer:
    """Slots for one transfer. Every field is guarded by ``lock``."""

    __slots__ = (
        "transfer_id",
        "name",
        "total_chunks",
        "slots",
        "received_count",
        "created_at",
        "updated_at",
        "evicted",
        "lock",
    )

    def __init__(self, transfer_id: int, total_chunks: int, name: str | None, now: float):
        self.transfer_id = transfer_id
        self.name = name
        self.total_chunks = total_chunks
        self.slots: list[bytes | None] = [None] * total_chunks
        self.received_count = 0
        self.created_at = now
        self.updated_at = now
        self.evicted = False
        self.lock = threading.Lock()

    @property
    def complete(self) -> bool:
        return self.received_count == self.total_chunks


class ReassemblyTable:
    """In-flight transfers keyed by transfer id.

    The table lock only guards membership of the two maps; slot writes and
    counters are guarded by the lock of the transfer they belong to, so
    unrelated transfers never wait on each other while inserting.

    A bounded, time-limited memory of completed ids turns late retransmits of a
    finished transfer into duplicates instead of a fresh buffer.
    """

    def __init__(
        self,
        stale_after_s: float = DEFAULT_STALE_AFTER_S,
        max_transfers: int = DEFAULT_MAX_TRANSFERS,
        completed_memory: int = DEFAULT_COMPLETED_MEMORY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_after_s = stale_after_s
        self.max_transfers = max_transfers
        self.completed_memory = completed_memory
        self._clock = clock
        self._lock = threading.Lock()
        self._buffers: dict[int, ReassemblyBuffer] = {}
        self._completed: OrderedDict[int, float] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffers)

    def __contains__(self, transfer_id: int) -> bool:
        with self._lock:
            return transfer_id in self._buffers

    def on_chunk(self, chunk: Chunk) -> InsertResult:
        while True:
            buf = self._buffer_for(chunk)
            if isinstance(buf, InsertResult):
                return buf
            with buf.lock:
                if buf.evicted:
                    continue
                if not 0 <= chunk.chunk_index < buf.total_chunks:
                    return InsertResult.INDEX_OUT_OF_RANGE
                if buf.slots[chunk.chunk_index] is not None:
                    return InsertResult.DUPLICATE_IGNORED
                buf.slots[chunk.chunk_index] = chunk.payload
                buf.received_count += 1
                buf.updated_at = self._clock()
                return InsertResult.INSERTED

    def is_complete(self, transfer_id: int) -> bool:
        with self._lock:
            buf = self._buffers.get(transfer_id)
        if buf is None:
            return False
        with buf.lock:
            return buf.complete and not buf.evicted

    def progress(self, transfer_id: int) -> tuple[int, int] | None:
        """(received, total) for an in-flight transfer, else None."""
        with self._lock:
            buf = self._buffers.get(transfer_id)
        if buf is None:
            return None
        with buf.lock:
            return buf.received_count, buf.total_chunks

    def pop_completed(self, transfer_id: int) -> CompletedTransfer | None:
        """Evict and return the transfer if it is complete.

        Returns None when it is incomplete or another caller already took it,
        so exactly one caller ever sees a given completion.
        """
        with self._lock:
            buf = self._buffers.get(transfer_id)
            if buf is None:
                return None
            with buf.lock:
                if not buf.complete:
                    return None
                buf.evicted = True
                del self._buffers[transfer_id]
            now = self._clock()
            self._remember_completed(transfer_id, now)

        payload = b"".join(buf.slots)  # type: ignore[arg-type]
        return CompletedTransfer(
            transfer_id=transfer_id,
            name=buf.name,
            payload=payload,
            total_chunks=buf.total_chunks,
            elapsed_s=max(0.0, now - buf.created_at),
        )

    def assemble(self, transfer_id: int) -> bytes:
        """Concatenate the slots of a complete transfer and evict it."""
        done = self.pop_completed(transfer_id)
        if done is not None:
            return done.payload
        if transfer_id in self:
            raise TransferIncomplete(f"transfer {transfer_id} is not complete")
        raise UnknownTransfer(transfer_id)

    def expire(self, now: float | None = None) -> list[int]:
        """Drop buffers idle for longer than ``stale_after_s``."""
        now = self._clock() if now is None else now
        expired: list[ReassemblyBuffer] = []
        with self._lock:
            for transfer_id, buf in list(self._buffers.items()):
                with buf.lock:
                    if now - buf.updated_at <= self.stale_after_s:
                        continue
                    buf.evicted = True
                    del self._buffers[transfer_id]
                expired.append(buf)
            while self._completed:
                oldest_id, done_at = next(iter(self._completed.items()))
                if now - done_at <= self.stale_after_s:
                    break
                del self._completed[oldest_id]

        for buf in expired:
            logger.warning(
                "expired transfer %d (%s); %d/%d chunks after %.1fs idle",
                buf.transfer_id,
                buf.name or "unnamed",
                buf.received_count,
                buf.total_chunks,
                now - buf.updated_at,
            )
        return [buf.transfer_id for buf in expired]

    def _buffer_for(self, chunk: Chunk) -> ReassemblyBuffer | InsertResult:
        """The buffer the chunk belongs in, or the result that rules it out."""
        with self._lock:
            buf = self._buffers.get(chunk.transfer_id)
            if buf is not None:
                return buf
            if self._recently_completed(chunk.transfer_id):
                return InsertResult.DUPLICATE_IGNORED
            if not 0 <= chunk.chunk_index < chunk.total_chunks:
                return InsertResult.INDEX_OUT_OF_RANGE
            if len(self._buffers) >= self.max_transfers:
                self._evict_oldest()
            buf = ReassemblyBuffer(chunk.transfer_id, chunk.total_chunks, chunk.name, self._clock())
            self._buffers[chunk.transfer_id] = buf
            logger.debug(
                "new transfer %d (%s): expecting %d chunks",
                chunk.transfer_id,
                chunk.name or "unnamed",
                chunk.total_chunks,
            )
            return buf

    def _recently_completed(self, transfer_id: int) -> bool:
        done_at = self._completed.get(transfer_id)
        if done_at is None:
            return False
        if self._clock() - done_at > self.stale_after_s:
            del self._completed[transfer_id]
            return False
        return True

    def _remember_completed(self, transfer_id: int, now: float) -> None:
        if self.completed_memory <= 0:
            return
        self._completed[transfer_id] = now
        self._completed.move_to_end(transfer_id)
        while len(self._completed) > self.completed_memory:
            self._completed.popitem(last=False)

    def _evict_oldest(self) -> None:
        oldest_id = next(iter(self._buffers))
        buf = self._buffers.pop(oldest_id)
        with buf.lock:
            buf.evicted = True
        logger.warning(
            "in-flight limit %d reached; dropped transfer %d (%d/%d chunks)",
            self.max_transfers,
            oldest_id,
            buf.received_count,
            buf.total_chunks,
        )
