from __future__ import annotations


class TftpError(Exception):
    pass


class MalformedPacket(TftpError, ValueError):
    """Raised by the codec for datagrams that are not valid TFTP packets."""


class TransferError(TftpError):
    """Terminal failure of a read or write transfer."""


class ServerError(TransferError):
    def __init__(self, code: int, message: str):
        super().__init__(f"server error {code}: {message}")
        self.code = code
        self.message = message


class RetriesExhausted(TransferError):
    def __init__(self, block: int):
        super().__init__(f"retries exhausted at block {block}")
        self.block = block


class ChannelError(TransferError):
    """The datagram channel failed; the original OSError is chained."""
