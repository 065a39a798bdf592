from __future__ import annotations

import dataclasses
import struct
from dataclasses import dataclass
from pathlib import Path

import yaml

from .constants import (
    DEFAULT_ACK_TIMEOUT_MS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COMPLETED_MEMORY,
    DEFAULT_MAX_DATAGRAM,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_TRANSFERS,
    DEFAULT_SINK_QUEUE,
    DEFAULT_SINK_WORKERS,
    DEFAULT_STALE_AFTER_S,
    DEFAULT_WORKERS,
    FILE_HEADER_FORMAT,
    MAX_UDP_PAYLOAD,
)

_FILE_HEADER_SIZE = struct.calcsize(FILE_HEADER_FORMAT)


@dataclass(frozen=True, slots=True)
class TransferConfig:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_datagram_size: int = DEFAULT_MAX_DATAGRAM
    ack_timeout_ms: int = DEFAULT_ACK_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    reliable: bool = True
    workers: int = DEFAULT_WORKERS
    stale_after_s: float = DEFAULT_STALE_AFTER_S
    max_transfers: int = DEFAULT_MAX_TRANSFERS
    completed_memory: int = DEFAULT_COMPLETED_MEMORY
    sink_workers: int = DEFAULT_SINK_WORKERS
    sink_queue: int = DEFAULT_SINK_QUEUE

    def merged(self, **overrides) -> "TransferConfig":
        """Copy with every non-None override applied."""
        return dataclasses.replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> "TransferConfig":
        positive = (
            "chunk_size",
            "max_datagram_size",
            "ack_timeout_ms",
            "max_retries",
            "workers",
            "max_transfers",
            "sink_workers",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.stale_after_s <= 0:
            raise ValueError("stale_after_s must be positive")
        if self.completed_memory < 0 or self.sink_queue < 0:
            raise ValueError("completed_memory and sink_queue must not be negative")
        if self.max_datagram_size > MAX_UDP_PAYLOAD:
            raise ValueError(f"max_datagram_size must not exceed {MAX_UDP_PAYLOAD}")
        if self.chunk_size + _FILE_HEADER_SIZE > self.max_datagram_size:
            raise ValueError(
                f"chunk_size {self.chunk_size} plus the {_FILE_HEADER_SIZE}-byte header "
                f"does not fit in max_datagram_size {self.max_datagram_size}"
            )
        return self


def load_config(path: Path | str) -> TransferConfig:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return TransferConfig()
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")

    known = {f.name for f in dataclasses.fields(TransferConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"{path}: unknown keys: {', '.join(unknown)}")
    return TransferConfig(**data).validate()
