from __future__ import annotations

import argparse
import json
import logging
import os
import socket
import sys
from typing import Union

from .client import run_transfer
from .constants import (
    DEFAULT_BACKOFF,
    DEFAULT_MAX_TIMEOUT_S,
    DEFAULT_RETRIES,
    DEFAULT_ROUNDS,
    DEFAULT_TIMEOUT_S,
    TFTP_PORT,
)
from .engine import Address, ReadTransfer, WriteTransfer
from .errors import TransferError
from .net import Impairment, UdpChannel
from .packet import RequestMode
from .policy import RetryPolicy

log = logging.getLogger(__name__)


def resolve(host: str, port: int) -> Address:
    *_, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
    return sockaddr[:2]


def _policy(args: argparse.Namespace) -> RetryPolicy:
    return RetryPolicy(
        timeout=args.timeout,
        backoff=args.backoff,
        max_timeout=args.max_timeout,
        retries=args.retries,
        rounds=args.rounds,
    )


def _run(args: argparse.Namespace, transfer: Union[ReadTransfer, WriteTransfer]):
    bind_host = "::" if ":" in transfer.state.server[0] else "0.0.0.0"
    impair = Impairment(args.loss_rate, args.delay_ms)
    with UdpChannel.bind(bind_host, 0, impairment=impair) as udp:
        return run_transfer(udp, transfer)


def _report(args: argparse.Namespace, role: str, transfer: Union[ReadTransfer, WriteTransfer]) -> None:
    m = transfer.metrics
    payload = {
        "role": role,
        "file": transfer.request.filename,
        "bytes": m.bytes_transferred,
        "seconds": m.duration_s,
        "mbps": m.throughput_mbps,
        "timeouts": m.timeouts,
        "retransmits": m.retransmits,
        "duplicates": m.duplicates,
    }
    print(json.dumps(payload, indent=2) if args.json else payload)


def cmd_get(args: argparse.Namespace) -> int:
    server = resolve(args.host, args.port)
    transfer = ReadTransfer(server, args.remote, args.mode, _policy(args))
    data = _run(args, transfer)

    out = args.out or os.path.basename(args.remote)
    with open(out, "wb") as f:
        f.write(data)
    _report(args, "get", transfer)
    return 0


def cmd_put(args: argparse.Namespace) -> int:
    server = resolve(args.host, args.port)
    with open(args.file, "rb") as f:
        data = f.read()
    remote = args.remote or os.path.basename(args.file)
    transfer = WriteTransfer(server, remote, data, args.mode, _policy(args))
    _run(args, transfer)
    _report(args, "put", transfer)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tftpc", description="TFTP (RFC 1350) client.")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("host")
        x.add_argument("--port", type=int, default=TFTP_PORT)
        x.add_argument("--mode", choices=[m.value for m in RequestMode], default=RequestMode.OCTET.value)
        x.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_S, help="base receive timeout (s)")
        x.add_argument("--backoff", type=float, default=DEFAULT_BACKOFF, help="timeout multiplier per retry")
        x.add_argument("--max-timeout", type=float, default=DEFAULT_MAX_TIMEOUT_S, help="backoff cap (s)")
        x.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="resends per block")
        x.add_argument("--rounds", type=int, default=DEFAULT_ROUNDS, help="restarts per transfer")
        x.add_argument("--loss-rate", type=float, default=0.0, help="simulate outbound packet loss")
        x.add_argument("--delay-ms", type=int, default=0, help="simulate outbound send delay")
        x.add_argument("--json", action="store_true")

    get = sub.add_parser("get", help="download a file")
    add_common(get)
    get.add_argument("remote")
    get.add_argument("--out", default=None, help="local path (default: remote basename)")
    get.set_defaults(func=cmd_get)

    put = sub.add_parser("put", help="upload a file")
    add_common(put)
    put.add_argument("file")
    put.add_argument("--remote", default=None, help="remote name (default: local basename)")
    put.set_defaults(func=cmd_put)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except (TransferError, OSError, ValueError) as exc:
        log.error("%s failed: %s", args.cmd, exc)
        print(f"tftpc: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
