from __future__ import annotations

from collections import deque
from typing import Callable, Optional

import pytest

from udpchunk.packet import Ack, FileCodec

PEER = ("127.0.0.1", 40001)


class FakeEndpoint:
    """In-memory stand-in for UdpEndpoint.

    ``respond`` sees every outbound datagram and may return a reply that the
    next ``recvfrom`` hands back. An empty inbox reads as a timeout; an
    exception queued in the inbox is raised by ``recvfrom``.
    """

    def __init__(self, respond: Optional[Callable[[bytes], Optional[bytes]]] = None):
        self.respond = respond
        self.sent: list[tuple[bytes, tuple]] = []
        self.inbox: deque = deque()
        self.timeout_ms: Optional[int] = None
        self.closed = False
        self.address = ("127.0.0.1", 40000)

    def set_timeout_ms(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms

    def sendto(self, data: bytes, addr) -> None:
        self.sent.append((data, addr))
        if self.respond is not None:
            reply = self.respond(data)
            if reply is not None:
                self.inbox.append(reply)

    def recvfrom(self, bufsize: int = 65535):
        if not self.inbox:
            raise TimeoutError("timed out")
        item = self.inbox.popleft()
        if isinstance(item, BaseException):
            raise item
        return item, PEER

    def close(self) -> None:
        self.closed = True


def ack_everything(codec=None):
    codec = codec or FileCodec()

    def respond(raw: bytes) -> bytes:
        return Ack.for_chunk(codec.decode(raw)).to_bytes()

    return respond


@pytest.fixture
def fake_endpoint():
    return FakeEndpoint


@pytest.fixture
def payload_20k():
    return bytes(i % 256 for i in range(20000))
