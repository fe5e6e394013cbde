from __future__ import annotations

import random
import socket
import time
from dataclasses import dataclass
from typing import Protocol, Tuple

from .constants import MAX_DATAGRAM
from .engine import Address


@dataclass(frozen=True, slots=True)
class Impairment:
    """Simulated outbound loss and delay for exercising retries on a real link."""

    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class DatagramChannel(Protocol):
    """Unconnected datagram transport consumed by the blocking driver.

    Addresses are numeric (host, port) tuples as returned by ``recvfrom``;
    name resolution happens before a transfer is built.

    ``recvfrom`` raises TimeoutError when nothing arrives in ``timeout``
    seconds; any other OSError is fatal to the transfer.
    """

    def sendto(self, data: bytes, addr: Address) -> None:
        ...

    def recvfrom(self, timeout: float) -> Tuple[bytes, Address]:
        ...


def family_for(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


class UdpChannel:
    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment or Impairment()

    @classmethod
    def bind(
        cls,
        host: str = "0.0.0.0",
        port: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpChannel":
        sock = socket.socket(family_for(host), socket.SOCK_DGRAM)
        try:
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        return cls(sock, impairment)

    @property
    def local_addr(self) -> Address:
        return self.sock.getsockname()

    def sendto(self, data: bytes, addr: Address) -> None:
        if self.impairment.should_drop():
            return
        self.impairment.sleep_if_needed()
        self.sock.sendto(data, addr)

    def recvfrom(self, timeout: float) -> Tuple[bytes, Address]:
        # A zero timeout would switch the socket to non-blocking mode.
        self.sock.settimeout(max(timeout, 0.001))
        data, addr = self.sock.recvfrom(MAX_DATAGRAM + 1)
        return data, addr

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "UdpChannel":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
