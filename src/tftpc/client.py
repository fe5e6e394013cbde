from __future__ import annotations

import time
from typing import Union

from .engine import Address, ReadTransfer, Step, WriteTransfer
from .errors import ChannelError
from .net import DatagramChannel
from .packet import RequestMode
from .policy import RetryPolicy


def _send(channel: DatagramChannel, step: Step) -> None:
    if step.datagram is None:
        return
    try:
        channel.sendto(step.datagram, step.dest)
    except OSError as exc:
        raise ChannelError(f"send to {step.dest} failed: {exc}") from exc


def run_transfer(channel: DatagramChannel, transfer: Union[ReadTransfer, WriteTransfer]):
    """Drive ``transfer`` to completion over a blocking channel.

    Returns the transfer's result; raises TransferError subclasses on failure.
    """
    step = transfer.start()
    deadline = 0.0
    while True:
        _send(channel, step)
        if step.done:
            return transfer.result
        if step.timeout is not None:
            deadline = time.monotonic() + step.timeout

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            step = transfer.on_timeout()
            continue
        try:
            raw, addr = channel.recvfrom(remaining)
        except TimeoutError:
            step = transfer.on_timeout()
            continue
        except OSError as exc:
            raise ChannelError(f"receive failed: {exc}") from exc
        step = transfer.on_datagram(addr, raw)


def read_file(
    channel: DatagramChannel,
    server: Address,
    filename: str,
    mode: RequestMode | str = RequestMode.OCTET,
    policy: RetryPolicy | None = None,
) -> bytes:
    return run_transfer(channel, ReadTransfer(server, filename, mode, policy))


def write_file(
    channel: DatagramChannel,
    server: Address,
    filename: str,
    data: bytes,
    mode: RequestMode | str = RequestMode.OCTET,
    policy: RetryPolicy | None = None,
) -> None:
    run_transfer(channel, WriteTransfer(server, filename, data, mode, policy))
