from __future__ import annotations

import struct
from dataclasses import dataclass

from .constants import (
    ACK_FORMAT,
    ACK_OK,
    DEFAULT_MAX_DATAGRAM,
    FILE_HEADER_FORMAT,
    FRAME_HEADER_FORMAT,
    FRAME_PACKET_SIZE,
    MAX_UDP_PAYLOAD,
)
from .errors import FrameTooLarge, MalformedFrame


@dataclass(frozen=True, slots=True)
class Chunk:
    transfer_id: int
    total_chunks: int
    chunk_index: int
    payload: bytes = b""
    name: str | None = None


class ChunkCodec:
    """Fixed-width big-endian header followed by the raw payload bytes.

    Subclasses pick the header layout. Decoding only checks what is needed to
    split header from payload; range checks on ``chunk_index`` belong to the
    reassembly table.
    """

    header: struct.Struct
    carries_name = False

    def __init__(self, max_datagram_size: int):
        if not 0 < max_datagram_size <= MAX_UDP_PAYLOAD:
            raise ValueError(f"max_datagram_size must be in 1..{MAX_UDP_PAYLOAD}")
        if max_datagram_size <= self.header.size:
            raise ValueError("max_datagram_size leaves no room for a payload")
        self.max_datagram_size = max_datagram_size

    def header_size(self, name: str | None = None) -> int:
        return self.header.size

    def max_payload(self, name: str | None = None) -> int:
        return self.max_datagram_size - self.header_size(name)

    def encode(self, chunk: Chunk) -> bytes:
        try:
            raw = self._pack_header(chunk) + chunk.payload
        except struct.error as exc:
            raise FrameTooLarge(f"header field out of range: {exc}") from exc
        if len(raw) > self.max_datagram_size:
            raise FrameTooLarge(
                f"encoded chunk is {len(raw)} bytes; limit is {self.max_datagram_size}"
            )
        return raw

    def decode(self, raw: bytes) -> Chunk:
        if len(raw) < self.header.size:
            raise MalformedFrame(f"datagram too small to be a chunk ({len(raw)} bytes)")
        return self._unpack(raw)

    def _pack_header(self, chunk: Chunk) -> bytes:
        raise NotImplementedError

    def _unpack(self, raw: bytes) -> Chunk:
        raise NotImplementedError


class FileCodec(ChunkCodec):
    """transfer_id(8) | total_chunks(4) | chunk_index(4) | name_len(2) | name | payload"""

    header = struct.Struct(FILE_HEADER_FORMAT)
    carries_name = True

    def __init__(self, max_datagram_size: int = DEFAULT_MAX_DATAGRAM):
        super().__init__(max_datagram_size)

    def header_size(self, name: str | None = None) -> int:
        return self.header.size + len((name or "").encode("utf-8"))

    def _pack_header(self, chunk: Chunk) -> bytes:
        name = (chunk.name or "").encode("utf-8")
        if len(name) > 0xFFFF:
            raise FrameTooLarge(f"name is {len(name)} bytes; limit is 65535")
        return (
            self.header.pack(chunk.transfer_id, chunk.total_chunks, chunk.chunk_index, len(name))
            + name
        )

    def _unpack(self, raw: bytes) -> Chunk:
        transfer_id, total, index, name_len = self.header.unpack_from(raw)
        start = self.header.size
        if name_len > len(raw) - start:
            raise MalformedFrame(f"name length {name_len} exceeds datagram")
        if total == 0:
            raise MalformedFrame("total_chunks is zero")
        try:
            name = raw[start : start + name_len].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedFrame("name is not valid UTF-8") from exc
        return Chunk(
            transfer_id=transfer_id,
            total_chunks=total,
            chunk_index=index,
            payload=raw[start + name_len :],
            name=name or None,
        )


class FrameCodec(ChunkCodec):
    """frame_id(4) | total_parts(2) | part_index(2) | payload. No name, no ack."""

    header = struct.Struct(FRAME_HEADER_FORMAT)

    def __init__(self, max_datagram_size: int = FRAME_PACKET_SIZE):
        super().__init__(max_datagram_size)

    def _pack_header(self, chunk: Chunk) -> bytes:
        if chunk.name is not None:
            raise ValueError("frame layout has no name field")
        return self.header.pack(chunk.transfer_id, chunk.total_chunks, chunk.chunk_index)

    def _unpack(self, raw: bytes) -> Chunk:
        frame_id, total, index = self.header.unpack_from(raw)
        if total == 0:
            raise MalformedFrame("total_parts is zero")
        return Chunk(
            transfer_id=frame_id,
            total_chunks=total,
            chunk_index=index,
            payload=raw[self.header.size :],
        )


_ACK = struct.Struct(ACK_FORMAT)


@dataclass(frozen=True, slots=True)
class Ack:
    transfer_id: int
    chunk_index: int
    status: int = ACK_OK

    @property
    def ok(self) -> bool:
        return self.status == ACK_OK

    def matches(self, transfer_id: int, chunk_index: int) -> bool:
        return self.transfer_id == transfer_id and self.chunk_index == chunk_index

    def to_bytes(self) -> bytes:
        return _ACK.pack(self.transfer_id, self.chunk_index, self.status)

    @staticmethod
    def from_bytes(raw: bytes) -> "Ack":
        if len(raw) != _ACK.size:
            raise MalformedFrame(f"ack must be {_ACK.size} bytes, got {len(raw)}")
        transfer_id, chunk_index, status = _ACK.unpack(raw)
        return Ack(transfer_id=transfer_id, chunk_index=chunk_index, status=status)

    @staticmethod
    def for_chunk(chunk: Chunk) -> "Ack":
        return Ack(transfer_id=chunk.transfer_id, chunk_index=chunk.chunk_index)
