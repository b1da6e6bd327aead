"""Example client: binds, sends one request and prints what comes back."""

from __future__ import annotations

import argparse
import sys
import time

from .client import TurboNetClient

__all__ = ["format_packet", "main"]


def format_packet(packet_id: int, status: int, sequence: int, payload: bytes) -> str:
    """Describe a received packet on one line; numbers are shown in hex."""
    message = payload.decode("utf-8", errors="replace")
    return (
        f"Received packetId={packet_id:x} status={status:x} "
        f"seq={sequence:x} payload='{message}'"
    )


def main(argv: list[str] | None = None) -> int:
    """Connect, send ``hello_server`` and print replies until Enter is pressed."""
    parser = argparse.ArgumentParser(description="Send one request to an echo server.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=9000)
    parser.add_argument("--client-id", default="test_client")
    parser.add_argument("--delay", type=float, default=5.0, help="seconds to wait before the request")
    args = parser.parse_args(argv)

    client = TurboNetClient(
        args.client_id,
        args.host,
        args.port,
        100,
        bind_handler=lambda server_id: print(f"bind successfully to server='{server_id}'", flush=True),
        error_handler=lambda server_id: print(f"error to server='{server_id}'", flush=True),
        read_timeout_ms=5000,
        write_timeout_ms=5000,
        response_timeout_ms=10000,
    )
    client.set_packet_handler(lambda *packet: print(format_packet(*packet), flush=True))
    client.set_timeout_handler(
        lambda sequence: print(f"Request timed out, seq={sequence}", file=sys.stderr, flush=True)
    )

    with client:
        client.start()
        time.sleep(args.delay)
        try:
            sequence = client.send_request(b"hello_server")
        except ConnectionError as exc:
            print(f"Cannot send request: {exc}", file=sys.stderr)
            return 1
        print(f"Sent request seq={sequence}", flush=True)
        print("Press Enter to exit...", flush=True)
        try:
            input()
        except EOFError:
            pass
    return 0