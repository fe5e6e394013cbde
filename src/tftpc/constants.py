from __future__ import annotations

TFTP_PORT = 69

RRQ = 1
WRQ = 2
DATA = 3
ACK = 4
ERROR = 5

BLOCK_SIZE = 512
BLOCK_MASK = 0xFFFF
HEADER_SIZE = 4
MAX_DATAGRAM = BLOCK_SIZE + HEADER_SIZE

DEFAULT_TIMEOUT_S = 1.0
DEFAULT_BACKOFF = 1.5
DEFAULT_MAX_TIMEOUT_S = 5.0
DEFAULT_RETRIES = 5
DEFAULT_ROUNDS = 3
