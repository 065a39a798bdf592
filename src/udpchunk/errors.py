from __future__ import annotations


class ChunkTransferError(Exception):
    """Base class for every error raised by udpchunk."""


class MalformedFrame(ChunkTransferError, ValueError):
    pass


class FrameTooLarge(ChunkTransferError, ValueError):
    """Encoded datagram would not fit the configured maximum size."""


class TransferIncomplete(ChunkTransferError):
    pass


class UnknownTransfer(ChunkTransferError, KeyError):
    pass


class TransportError(ChunkTransferError):
    """Socket-level failure. Never retried by this layer."""


class AckExhausted(ChunkTransferError):
    def __init__(self, transfer_id: int, chunk_index: int, attempts: int):
        super().__init__(
            f"no ack for transfer {transfer_id} chunk {chunk_index} after {attempts} attempts"
        )
        self.transfer_id = transfer_id
        self.chunk_index = chunk_index
        self.attempts = attempts
