"""Echo server: authenticates known client ids and echoes requests back."""

from __future__ import annotations

import argparse
from collections.abc import Iterable

from .protocol import PacketId
from .server import AuthHandler, Respond, TurboNetServer

__all__ = ["VALID_CLIENTS", "make_auth_handler", "echo_handler", "main"]

VALID_CLIENTS = frozenset({"client_123", "test_client"})


def make_auth_handler(valid_clients: Iterable[str]) -> AuthHandler:
    """Return an auth handler accepting only the given client ids."""
    allowed = frozenset(valid_clients)

    def authenticate(client_id: str) -> bool:
        accepted = client_id in allowed
        print(f"Auth attempt: {client_id} -> {'accepted' if accepted else 'rejected'}")
        return accepted

    return authenticate


def echo_handler(
    packet_id: int, status: int, sequence: int, payload: bytes, respond: Respond
) -> None:
    """Answer every packet with a response carrying ``Echo: `` plus the payload."""
    message = payload.decode("utf-8", errors="replace")
    print(f"Received packetId=0x{packet_id:x} seq={sequence} payload='{message}'")
    respond(PacketId.RESPONSE, 0x00, sequence, b"Echo: " + payload)


def main(argv: list[str] | None = None) -> int:
    """Run the echo server until Enter is pressed."""
    parser = argparse.ArgumentParser(description="Echo server for known clients.")
    parser.add_argument("--port", type=int, default=9000)
    parser.add_argument("--max-connections", type=int, default=10)
    args = parser.parse_args(argv)

    with TurboNetServer(args.port, args.max_connections) as server:
        server.set_auth_handler(make_auth_handler(VALID_CLIENTS))
        server.start(echo_handler)
        print(f"Server running on port {server.port}. Press Enter to stop.", flush=True)
        try:
            input()
        except EOFError:
            pass
    return 0