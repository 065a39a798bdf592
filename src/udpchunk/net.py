from __future__ import annotations

import random
import socket
import threading
import time
from dataclasses import dataclass
from typing import Tuple

from .constants import RECV_BUFSIZE
from .errors import TransportError

Address = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class Impairment:
    """Simulated loss/delay applied on top of a real socket."""

    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class UdpEndpoint:
    """Thin datagram socket wrapper.

    ``sendto`` is safe to call from several worker threads: each call hands one
    whole datagram to the kernel under a lock. Receive timeouts surface as
    ``TimeoutError`` and an ICMP port-unreachable reported on the socket as
    ``ConnectionResetError``; any other socket failure becomes ``TransportError``.
    """

    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment or Impairment()
        self._send_lock = threading.Lock()

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((host, port))
        except OSError as exc:
            sock.close()
            raise TransportError(f"cannot bind {host}:{port}: {exc}") from exc
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @classmethod
    def sending(
        cls,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @property
    def address(self) -> Address:
        return self.sock.getsockname()

    def set_timeout_ms(self, timeout_ms: int) -> None:
        self.sock.settimeout(timeout_ms / 1000.0 if timeout_ms > 0 else None)

    def sendto(self, data: bytes, addr: Address) -> None:
        if self.impairment.should_drop():
            return
        self.impairment.sleep_if_needed()
        try:
            with self._send_lock:
                self.sock.sendto(data, addr)
        except OSError as exc:
            raise TransportError(f"sendto {addr} failed: {exc}") from exc

    def recvfrom(self, bufsize: int = RECV_BUFSIZE) -> Tuple[bytes, Address]:
        while True:
            try:
                data, addr = self.sock.recvfrom(bufsize)
            except (TimeoutError, ConnectionResetError):
                raise
            except OSError as exc:
                raise TransportError(f"recvfrom failed: {exc}") from exc
            if self.impairment.should_drop():
                continue
            self.impairment.sleep_if_needed()
            return data, addr

    def close(self) -> None:
        self.sock.close()
