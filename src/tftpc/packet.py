from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Union

from .constants import ACK, BLOCK_MASK, BLOCK_SIZE, DATA, ERROR, HEADER_SIZE, RRQ, WRQ
from .errors import MalformedPacket

OPCODE = struct.Struct("!H")
HEADER = struct.Struct("!HH")  # opcode, block number / error code


class Opcode(enum.IntEnum):
    RRQ = RRQ
    WRQ = WRQ
    DATA = DATA
    ACK = ACK
    ERROR = ERROR


class ErrorCode(enum.IntEnum):
    NOT_DEFINED = 0
    FILE_NOT_FOUND = 1
    ACCESS_VIOLATION = 2
    DISK_FULL = 3
    ILLEGAL_OPERATION = 4
    UNKNOWN_TID = 5
    FILE_EXISTS = 6
    NO_SUCH_USER = 7
    BAD_OPTION = 8


class RequestMode(str, enum.Enum):
    NETASCII = "netascii"
    OCTET = "octet"
    MAIL = "mail"

    def __str__(self) -> str:
        return self.value


def _check_text(name: str, value: str) -> None:
    if not value.isascii():
        raise ValueError(f"{name} must be ASCII: {value!r}")
    if "\x00" in value:
        raise ValueError(f"{name} must not contain NUL")


def _check_block(block: int) -> None:
    if not 0 <= block <= BLOCK_MASK:
        raise ValueError(f"block number out of range: {block}")


@dataclass(frozen=True, slots=True)
class _Request:
    filename: str
    mode: RequestMode = RequestMode.OCTET

    def __post_init__(self) -> None:
        if not self.filename:
            raise ValueError("filename must not be empty")
        _check_text("filename", self.filename)
        # Accept plain strings such as "octet" or "NetASCII".
        object.__setattr__(self, "mode", RequestMode(str(self.mode).lower()))

    def _pack(self, opcode: int) -> bytes:
        return b"".join(
            (
                OPCODE.pack(opcode),
                self.filename.encode("ascii") + b"\x00",
                self.mode.value.encode("ascii") + b"\x00",
            )
        )


@dataclass(frozen=True, slots=True)
class ReadRequest(_Request):
    def to_bytes(self) -> bytes:
        return self._pack(RRQ)

    def __str__(self) -> str:
        return f"RRQ {self.filename} {self.mode}"


@dataclass(frozen=True, slots=True)
class WriteRequest(_Request):
    def to_bytes(self) -> bytes:
        return self._pack(WRQ)

    def __str__(self) -> str:
        return f"WRQ {self.filename} {self.mode}"


@dataclass(frozen=True, slots=True)
class Data:
    block: int
    payload: bytes = b""

    def __post_init__(self) -> None:
        _check_block(self.block)
        if len(self.payload) > BLOCK_SIZE:
            raise ValueError(f"payload too large: {len(self.payload)}")

    @property
    def last(self) -> bool:
        return len(self.payload) < BLOCK_SIZE

    def to_bytes(self) -> bytes:
        return HEADER.pack(DATA, self.block) + self.payload

    def __str__(self) -> str:
        return f"DATA block:{self.block} ({len(self.payload)} bytes)"


@dataclass(frozen=True, slots=True)
class Ack:
    block: int

    def __post_init__(self) -> None:
        _check_block(self.block)

    def to_bytes(self) -> bytes:
        return HEADER.pack(ACK, self.block)

    def __str__(self) -> str:
        return f"ACK block:{self.block}"


@dataclass(frozen=True, slots=True)
class ErrorPacket:
    code: int
    message: str = ""

    def __post_init__(self) -> None:
        if not 0 <= self.code <= 0xFFFF:
            raise ValueError(f"error code out of range: {self.code}")
        _check_text("message", self.message)

    @property
    def description(self) -> str:
        try:
            return ErrorCode(self.code).name.replace("_", " ").lower()
        except ValueError:
            return "unknown error"

    def to_bytes(self) -> bytes:
        return HEADER.pack(ERROR, self.code) + self.message.encode("ascii") + b"\x00"

    def __str__(self) -> str:
        return f"ERROR code:{self.code} msg:{self.message}"


Packet = Union[ReadRequest, WriteRequest, Data, Ack, ErrorPacket]


def encode(packet: Packet) -> bytes:
    return packet.to_bytes()


def _split_cstrings(body: bytes, count: int) -> list[bytes]:
    parts = body.split(b"\x00", count)
    # A trailing element must exist for every string to have been terminated.
    if len(parts) <= count:
        raise MalformedPacket("string field is not NUL-terminated")
    return parts[:count]


def _decode_request(body: bytes) -> tuple[str, RequestMode]:
    raw_name, raw_mode = _split_cstrings(body, 2)
    try:
        filename = raw_name.decode("ascii")
        mode = RequestMode(raw_mode.decode("ascii").lower())
    except ValueError as exc:
        raise MalformedPacket(f"bad request field: {exc}") from exc
    if not filename:
        raise MalformedPacket("empty filename")
    return filename, mode


def decode(raw: bytes) -> Packet:
    """Parse one datagram.

    Never reads past the end of ``raw``; every malformed input raises
    MalformedPacket.
    """
    if len(raw) < OPCODE.size:
        raise MalformedPacket(f"datagram too small: {len(raw)} bytes")
    (opcode,) = OPCODE.unpack_from(raw)
    body = raw[OPCODE.size :]

    if opcode == RRQ:
        return ReadRequest(*_decode_request(body))
    if opcode == WRQ:
        return WriteRequest(*_decode_request(body))
    if opcode not in (DATA, ACK, ERROR):
        raise MalformedPacket(f"unknown opcode: {opcode}")

    if len(raw) < HEADER_SIZE:
        raise MalformedPacket(f"truncated {Opcode(opcode).name}: {len(raw)} bytes")
    _, number = HEADER.unpack_from(raw)
    rest = raw[HEADER_SIZE:]

    if opcode == DATA:
        if len(rest) > BLOCK_SIZE:
            raise MalformedPacket(f"payload too large: {len(rest)}")
        return Data(number, bytes(rest))
    if opcode == ACK:
        return Ack(number)

    (raw_msg,) = _split_cstrings(rest, 1)
    message = raw_msg.decode("ascii", errors="replace").replace("\ufffd", "?")
    return ErrorPacket(number, message)
