"""Chunked transfer of files and frames over UDP datagrams.

Layers, leaves first:
- packet: chunk framing (file and frame layouts) and the ack datagram
- reassembly: per-transfer slot tables, exactly-once completion
- sender / receiver: stop-and-wait reliable mode and fire-and-forget mode
- scheduler: many transfers in parallel on a bounded pool
"""

from .errors import (
    AckExhausted,
    ChunkTransferError,
    FrameTooLarge,
    MalformedFrame,
    TransferIncomplete,
    TransportError,
    UnknownTransfer,
)
from .packet import Ack, Chunk, FileCodec, FrameCodec
from .reassembly import CompletedTransfer, InsertResult, ReassemblyTable
from .receiver import Receiver
from .scheduler import BatchReport, TransferItem, TransferScheduler
from .sender import ChunkSender

__all__ = [
    "Ack",
    "AckExhausted",
    "BatchReport",
    "Chunk",
    "ChunkSender",
    "ChunkTransferError",
    "CompletedTransfer",
    "FileCodec",
    "FrameCodec",
    "FrameTooLarge",
    "InsertResult",
    "MalformedFrame",
    "ReassemblyTable",
    "Receiver",
    "TransferIncomplete",
    "TransferItem",
    "TransferScheduler",
    "TransportError",
    "UnknownTransfer",
]
