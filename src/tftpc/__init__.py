"""TFTP (RFC 1350) client.

- ``packet``: stateless wire codec for the five TFTP packet types
- ``engine``: the per-transfer state machine (sequencing, duplicate
  suppression, peer pinning, two-tier retry/backoff); performs no I/O
- ``client`` / ``asynchronous``: blocking and asyncio drivers over an
  unconnected datagram channel
"""

from .client import read_file, run_transfer, write_file
from .engine import Metrics, ReadTransfer, TransferState, WriteTransfer
from .errors import (
    ChannelError,
    MalformedPacket,
    RetriesExhausted,
    ServerError,
    TftpError,
    TransferError,
)
from .net import DatagramChannel, Impairment, UdpChannel
from .packet import Ack, Data, ErrorCode, ErrorPacket, ReadRequest, RequestMode, WriteRequest, decode, encode
from .policy import RetryPolicy

__all__ = [
    "Ack",
    "ChannelError",
    "Data",
    "DatagramChannel",
    "ErrorCode",
    "ErrorPacket",
    "Impairment",
    "MalformedPacket",
    "Metrics",
    "ReadRequest",
    "ReadTransfer",
    "RequestMode",
    "RetriesExhausted",
    "RetryPolicy",
    "ServerError",
    "TftpError",
    "TransferError",
    "TransferState",
    "UdpChannel",
    "WriteRequest",
    "WriteTransfer",
    "decode",
    "encode",
    "read_file",
    "run_transfer",
    "write_file",
]
