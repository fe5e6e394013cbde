"""asyncio flavour of the client.

Same state machine as ``tftpc.client``; only the waiting differs. Cancelling
a running transfer interrupts the pending receive and nothing is sent after
that point.
"""
from __future__ import annotations

import asyncio
from typing import Protocol, Tuple, Union

from .engine import Address, ReadTransfer, Step, WriteTransfer
from .errors import ChannelError
from .net import Impairment, family_for
from .packet import RequestMode
from .policy import RetryPolicy


class AsyncDatagramChannel(Protocol):
    async def sendto(self, data: bytes, addr: Address) -> None:
        ...

    async def recvfrom(self, timeout: float) -> Tuple[bytes, Address]:
        ...


class _QueueProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.queue: asyncio.Queue[Union[Tuple[bytes, Address], Exception]] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self.queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self.queue.put_nowait(exc or ConnectionError("datagram endpoint closed"))


class AsyncUdpChannel:
    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        protocol: _QueueProtocol,
        impairment: Impairment | None = None,
    ):
        self.transport = transport
        self.protocol = protocol
        self.impairment = impairment or Impairment()

    @classmethod
    async def bind(
        cls,
        host: str = "0.0.0.0",
        port: int = 0,
        impairment: Impairment | None = None,
    ) -> "AsyncUdpChannel":
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            _QueueProtocol,
            local_addr=(host, port),
            family=family_for(host),
        )
        return cls(transport, protocol, impairment)

    @property
    def local_addr(self) -> Address:
        return self.transport.get_extra_info("sockname")

    async def sendto(self, data: bytes, addr: Address) -> None:
        if self.impairment.should_drop():
            return
        if self.impairment.delay_ms > 0:
            await asyncio.sleep(self.impairment.delay_ms / 1000.0)
        self.transport.sendto(data, addr)

    async def recvfrom(self, timeout: float) -> Tuple[bytes, Address]:
        try:
            item = await asyncio.wait_for(self.protocol.queue.get(), timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"no datagram within {timeout:.3f}s") from None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.transport.close()

    async def __aenter__(self) -> "AsyncUdpChannel":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


async def _send(channel: AsyncDatagramChannel, step: Step) -> None:
    if step.datagram is None:
        return
    try:
        await channel.sendto(step.datagram, step.dest)
    except OSError as exc:
        raise ChannelError(f"send to {step.dest} failed: {exc}") from exc


async def run_transfer(channel: AsyncDatagramChannel, transfer: Union[ReadTransfer, WriteTransfer]):
    loop = asyncio.get_running_loop()
    step = transfer.start()
    deadline = 0.0
    while True:
        await _send(channel, step)
        if step.done:
            return transfer.result
        if step.timeout is not None:
            deadline = loop.time() + step.timeout

        remaining = deadline - loop.time()
        if remaining <= 0:
            step = transfer.on_timeout()
            continue
        try:
            raw, addr = await channel.recvfrom(remaining)
        except TimeoutError:
            step = transfer.on_timeout()
            continue
        except OSError as exc:
            raise ChannelError(f"receive failed: {exc}") from exc
        step = transfer.on_datagram(addr, raw)


async def read_file(
    channel: AsyncDatagramChannel,
    server: Address,
    filename: str,
    mode: RequestMode | str = RequestMode.OCTET,
    policy: RetryPolicy | None = None,
) -> bytes:
    return await run_transfer(channel, ReadTransfer(server, filename, mode, policy))


async def write_file(
    channel: AsyncDatagramChannel,
    server: Address,
    filename: str,
    data: bytes,
    mode: RequestMode | str = RequestMode.OCTET,
    policy: RetryPolicy | None = None,
) -> None:
    await run_transfer(channel, WriteTransfer(server, filename, data, mode, policy))
