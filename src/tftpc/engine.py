"""Per-transfer TFTP state machine.

A transfer object never touches a socket. The drivers in ``client`` and
``asynchronous`` feed it three kinds of events (start, receive timeout,
datagram) and carry out the ``Step`` it answers with, so the blocking and
the asyncio variants run exactly the same protocol logic.
"""
from __future__ import annotations

import enum
import ipaddress
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

from .constants import BLOCK_MASK, BLOCK_SIZE
from .errors import MalformedPacket, RetriesExhausted, ServerError
from .packet import (
    Ack,
    Data,
    ErrorPacket,
    Packet,
    ReadRequest,
    RequestMode,
    WriteRequest,
    decode,
)
from .policy import RetryPolicy

log = logging.getLogger(__name__)

Address = Tuple[Any, ...]

# Serial-number window: block numbers less than half the space behind the
# expected one are duplicates, anything else is ahead of us.
HALF_SPACE = 0x8000


@dataclass(slots=True)
class Metrics:
    packets_sent: int = 0
    bytes_transferred: int = 0
    timeouts: int = 0
    retransmits: int = 0
    duplicates: int = 0
    discarded: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_transferred * 8 / 1_000_000) / self.duration_s


@dataclass(frozen=True, slots=True)
class Step:
    """What the driver must do next.

    ``timeout`` is set only when a fresh receive deadline starts; None means
    keep waiting against the deadline already running.
    """

    datagram: bytes | None = None
    dest: Address | None = None
    timeout: float | None = None
    done: bool = False


WAIT = Step()


class Phase(enum.Enum):
    REQUESTING = "requesting"
    TRANSFERRING = "transferring"
    COMPLETE = "complete"


@dataclass(slots=True)
class TransferState:
    server: Address
    peer: Address | None = None
    block: int = 0
    inner: int = 0
    outer: int = 0
    timeout: float = 0.0
    outstanding: Optional[Packet] = None
    phase: Phase = Phase.REQUESTING
    buffer: bytearray = field(default_factory=bytearray)
    offset: int = 0


def _host(addr: Address) -> Any:
    return addr[0]


def _endpoint(addr: Address) -> Address:
    return tuple(addr[:2])


class Transfer:
    """Shared request/retry/peer-pinning logic for one transfer."""

    def __init__(
        self,
        server: Address,
        filename: str,
        mode: RequestMode | str = RequestMode.OCTET,
        policy: RetryPolicy | None = None,
    ):
        server = tuple(server)
        try:
            ipaddress.ip_address(_host(server))
        except ValueError:
            raise ValueError(f"server host must be a numeric address, not {_host(server)!r}") from None
        self.policy = policy or RetryPolicy()
        self.request = self._make_request(filename, mode)
        self.state = TransferState(server=server, timeout=self.policy.timeout)
        self.metrics = Metrics()

    def _make_request(self, filename: str, mode: RequestMode | str) -> Packet:
        raise NotImplementedError

    def _on_packet(self, packet: Packet, addr: Address) -> Step:
        raise NotImplementedError

    def _pending_block(self) -> int:
        raise NotImplementedError

    @property
    def done(self) -> bool:
        return self.state.phase is Phase.COMPLETE

    @property
    def dest(self) -> Address:
        return self.state.peer or self.state.server

    def start(self) -> Step:
        self.metrics.start_ts = time.monotonic()
        log.info("%s -> %s", self.request, self.state.server)
        return self._arm(self.request)

    def on_timeout(self) -> Step:
        st = self.state
        self._check_running()
        if st.outstanding is None:
            raise RuntimeError("transfer has not been started")
        self.metrics.timeouts += 1
        if st.inner < self.policy.retries:
            st.inner += 1
        else:
            st.outer += 1
            if st.outer > self.policy.rounds:
                log.warning(
                    "giving up on block %d after %d rounds", self._pending_block(), st.outer
                )
                raise RetriesExhausted(self._pending_block())
            log.debug("round exhausted at block %d; outer retry %d", self._pending_block(), st.outer)
            st.inner = 0
        st.timeout = self.policy.timeout_for(st.inner)
        self.metrics.retransmits += 1
        log.debug("timeout; resending %s (retry=%d timeout=%.3fs)", st.outstanding, st.inner, st.timeout)
        return self._emit(st.outstanding, st.timeout)

    def on_datagram(self, addr: Address, raw: bytes) -> Step:
        self._check_running()
        if not self._from_peer(addr):
            return self._discard("datagram from unexpected source %s", addr)
        try:
            packet = decode(raw)
        except MalformedPacket as exc:
            return self._discard("malformed datagram from %s: %s", addr, exc)
        log.debug("RX %s from %s", packet, addr)

        if isinstance(packet, ErrorPacket):
            log.warning("server error %d (%s): %s", packet.code, packet.description, packet.message)
            raise ServerError(packet.code, packet.message)
        return self._on_packet(packet, addr)

    def _check_running(self) -> None:
        if self.done:
            raise RuntimeError("transfer already complete")

    def _from_peer(self, addr: Address) -> bool:
        st = self.state
        if st.peer is None:
            # The first reply may come from any port on the server host.
            return _host(addr) == _host(st.server)
        return _endpoint(addr) == _endpoint(st.peer)

    def _pin(self, addr: Address) -> None:
        self.state.peer = _endpoint(addr)
        self.state.phase = Phase.TRANSFERRING
        log.debug("peer pinned at %s", self.state.peer)

    def _arm(self, packet: Packet) -> Step:
        """Make ``packet`` the outstanding one and start a fresh retry budget."""
        st = self.state
        st.outstanding = packet
        st.inner = 0
        st.timeout = self.policy.timeout_for(0)
        return self._emit(packet, st.timeout)

    def _emit(self, packet: Packet, timeout: float | None = None, done: bool = False) -> Step:
        self.metrics.packets_sent += 1
        log.debug("TX %s -> %s", packet, self.dest)
        return Step(packet.to_bytes(), self.dest, timeout, done)

    def _discard(self, msg: str, *args: Any) -> Step:
        self.metrics.discarded += 1
        log.debug("discarding " + msg, *args)
        return WAIT

    def _complete(self) -> None:
        self.state.phase = Phase.COMPLETE
        self.metrics.end_ts = time.monotonic()
        log.info(
            "%s complete; %d bytes in %d blocks", self.request, self.metrics.bytes_transferred, self.state.block
        )


class ReadTransfer(Transfer):
    """RRQ: receive DATA blocks and acknowledge each one."""

    def _make_request(self, filename: str, mode: RequestMode | str) -> Packet:
        return ReadRequest(filename, mode)

    def _pending_block(self) -> int:
        return (self.state.block + 1) & BLOCK_MASK

    @property
    def result(self) -> bytes:
        if not self.done:
            raise RuntimeError("transfer has not completed")
        return bytes(self.state.buffer)

    def _on_packet(self, packet: Packet, addr: Address) -> Step:
        st = self.state
        if not isinstance(packet, Data):
            return self._discard("unexpected %s during read", packet)

        expected = self._pending_block()
        if st.peer is None:
            if packet.block != expected:
                return self._discard("first reply carried block %d", packet.block)
            self._pin(addr)

        if packet.block == expected:
            st.block += 1
            st.buffer += packet.payload
            self.metrics.bytes_transferred += len(packet.payload)
            ack = Ack(packet.block)
            if packet.last:
                self._complete()
                return self._emit(ack, done=True)
            return self._arm(ack)

        behind = (expected - packet.block) & BLOCK_MASK
        if behind <= st.block and behind < HALF_SPACE:
            # Re-acknowledge without touching the retry budget or deadline.
            self.metrics.duplicates += 1
            log.debug("duplicate DATA block:%d; re-acknowledging", packet.block)
            return self._emit(Ack(packet.block))
        return self._discard("DATA block:%d ahead of expected %d", packet.block, expected)


class WriteTransfer(Transfer):
    """WRQ: send DATA blocks, each released by the ACK of the previous one."""

    def __init__(
        self,
        server: Address,
        filename: str,
        data: bytes,
        mode: RequestMode | str = RequestMode.OCTET,
        policy: RetryPolicy | None = None,
    ):
        super().__init__(server, filename, mode, policy)
        self.data = bytes(data)
        # Always finish with a short block, empty when the size is a multiple of 512.
        self.total_blocks = len(self.data) // BLOCK_SIZE + 1

    def _make_request(self, filename: str, mode: RequestMode | str) -> Packet:
        return WriteRequest(filename, mode)

    def _pending_block(self) -> int:
        return self.state.block & BLOCK_MASK

    @property
    def result(self) -> None:
        if not self.done:
            raise RuntimeError("transfer has not completed")
        return None

    def _on_packet(self, packet: Packet, addr: Address) -> Step:
        st = self.state
        if not isinstance(packet, Ack):
            return self._discard("unexpected %s during write", packet)

        current = self._pending_block()
        if st.peer is None:
            if packet.block != current:
                return self._discard("first reply acknowledged block %d", packet.block)
            self._pin(addr)

        if packet.block == current:
            st.offset = min(st.block * BLOCK_SIZE, len(self.data))
            self.metrics.bytes_transferred = st.offset
            if st.block == self.total_blocks:
                self._complete()
                return Step(done=True)
            st.block += 1
            chunk = self.data[st.offset : st.offset + BLOCK_SIZE]
            return self._arm(Data(st.block & BLOCK_MASK, chunk))

        behind = (current - packet.block) & BLOCK_MASK
        if behind < HALF_SPACE:
            # Never answer a duplicate ACK with data; only a timeout resends.
            self.metrics.duplicates += 1
            log.debug("duplicate ACK block:%d ignored", packet.block)
            return WAIT
        return self._discard("ACK block:%d ahead of current %d", packet.block, current)
