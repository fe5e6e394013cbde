from __future__ import annotations

import asyncio
import socket
import threading
from collections import deque
from typing import Callable, Optional

import pytest

from tftpc.packet import Ack, Data, ErrorPacket, Packet, ReadRequest, WriteRequest, decode

SERVER = ("10.0.0.1", 69)
PEER = ("10.0.0.1", 40000)


class FakeServer:
    """Minimal in-memory TFTP server answering from its own transfer port."""

    def __init__(self, content: bytes = b"", tid=PEER, error: Optional[ErrorPacket] = None):
        self.content = content
        self.tid = tid
        self.error = error
        self.chunks = [content[i : i + 512] for i in range(0, len(content) + 1, 512)]
        self.uploaded = bytearray()
        self.expected = 1
        self.last_reply: list = []
        self.finished = False

    def handle(self, packet: Packet, addr) -> list:
        if self.error is not None:
            return [(self.error.to_bytes(), self.tid)]
        reply: Optional[Packet] = None
        if isinstance(packet, ReadRequest):
            reply = Data(1, self.chunks[0])
        elif isinstance(packet, Ack) and packet.block < len(self.chunks):
            reply = Data(packet.block + 1, self.chunks[packet.block])
        elif isinstance(packet, Ack):
            self.finished = True
        elif isinstance(packet, WriteRequest):
            reply = Ack(0)
        elif isinstance(packet, Data):
            if packet.block == self.expected:
                self.uploaded += packet.payload
                self.expected += 1
                self.finished = packet.last
            reply = Ack(packet.block)
        if reply is None:
            return []
        self.last_reply = [(reply.to_bytes(), self.tid)]
        return list(self.last_reply)

    def retransmit(self) -> list:
        if self.finished:
            return []
        return list(self.last_reply)


class ScriptedChannel:
    """Unconnected in-memory channel.

    Outbound datagrams are decoded and recorded, optionally dropped by
    ``drop``, then handed to ``server``. When the inbox runs dry the server
    gets a chance to retransmit (it timed out first) before the receive
    itself times out.
    """

    def __init__(
        self,
        server: Optional[FakeServer] = None,
        drop: Optional[Callable[[Packet], bool]] = None,
        server_retransmits: bool = False,
    ):
        self.server = server
        self.drop = drop
        self.server_retransmits = server_retransmits
        self.sent: list = []
        self.inbox: deque = deque()
        self.waits: list = []

    def deliver(self, packet, addr=PEER) -> None:
        raw = packet if isinstance(packet, bytes) else packet.to_bytes()
        self.inbox.append((raw, addr))

    def sendto(self, data: bytes, addr) -> None:
        packet = decode(data)
        self.sent.append((packet, addr))
        if self.drop is not None and self.drop(packet):
            return
        if self.server is not None:
            self.inbox.extend(self.server.handle(packet, addr))

    def recvfrom(self, timeout: float):
        self.waits.append(timeout)
        if not self.inbox and self.server is not None and self.server_retransmits:
            self.inbox.extend(self.server.retransmit())
        if not self.inbox:
            raise TimeoutError("simulated timeout")
        return self.inbox.popleft()

    def packets(self, kind=None) -> list:
        return [p for p, _ in self.sent if kind is None or isinstance(p, kind)]


class AsyncScriptedChannel:
    """asyncio face over a ScriptedChannel."""

    def __init__(self, inner: ScriptedChannel):
        self.inner = inner

    async def sendto(self, data: bytes, addr) -> None:
        self.inner.sendto(data, addr)

    async def recvfrom(self, timeout: float):
        await asyncio.sleep(0)
        return self.inner.recvfrom(timeout)


class DropEveryOtherAck:
    def __init__(self) -> None:
        self.count = 0

    def __call__(self, packet: Packet) -> bool:
        if not isinstance(packet, Ack):
            return False
        self.count += 1
        return self.count % 2 == 1


class LoopbackServer:
    """Threaded UDP server on 127.0.0.1 that hands each request to ``handler``.

    ``handler(request, client_addr)`` runs in the server thread and is
    expected to reply from a fresh socket, like a real TFTP server does.
    """

    def __init__(self, handler: Callable[[Packet, tuple], None]):
        self.handler = handler
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(5.0)
        self.addr = self.sock.getsockname()
        self.error: Optional[BaseException] = None
        self.thread = threading.Thread(target=self._serve, daemon=True)

    def _serve(self) -> None:
        try:
            raw, client = self.sock.recvfrom(2048)
            self.handler(decode(raw), client)
        except BaseException as exc:  # surfaced by __exit__
            self.error = exc

    def __enter__(self) -> "LoopbackServer":
        self.thread.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.thread.join(timeout=10.0)
        self.sock.close()
        if self.error is not None and exc_info[0] is None:
            raise self.error


def serve_read(content: bytes, received_acks: list):
    def handler(request: Packet, client) -> None:
        assert isinstance(request, ReadRequest)
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.bind(("127.0.0.1", 0))
            s.settimeout(5.0)
            chunks = [content[i : i + 512] for i in range(0, len(content) + 1, 512)]
            for n, chunk in enumerate(chunks, start=1):
                s.sendto(Data(n, chunk).to_bytes(), client)
                raw, _ = s.recvfrom(2048)
                received_acks.append(decode(raw))

    return handler


def serve_write(uploaded: bytearray):
    def handler(request: Packet, client) -> None:
        assert isinstance(request, WriteRequest)
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.bind(("127.0.0.1", 0))
            s.settimeout(5.0)
            s.sendto(Ack(0).to_bytes(), client)
            while True:
                raw, _ = s.recvfrom(2048)
                data = decode(raw)
                uploaded.extend(data.payload)
                s.sendto(Ack(data.block).to_bytes(), client)
                if data.last:
                    return

    return handler


def serve_error(code: int, message: str):
    def handler(request: Packet, client) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.bind(("127.0.0.1", 0))
            s.sendto(ErrorPacket(code, message).to_bytes(), client)

    return handler


@pytest.fixture
def payload() -> bytes:
    return bytes(range(256)) * 6  # 1536 bytes: three full blocks and an empty final one
