"""Gateway that relays producer requests to a downstream processor.

Producers connect to the gateway's server side. Request packets are
forwarded over one downstream client connection, and each downstream
reply is routed back to the producer session that sent the request,
under that producer's original sequence number. Every other packet is
echoed straight back to its sender.
"""

from __future__ import annotations

import argparse
import logging
import threading

from .client import TurboNetClient
from .protocol import PacketId
from .server import Respond, TurboNetServer

__all__ = ["Gateway", "main"]

log = logging.getLogger(__name__)

READ_TIMEOUT_MS = 5000
WRITE_TIMEOUT_MS = 5000
RESPONSE_TIMEOUT_MS = 10000


class Gateway:
    """Relays request packets between producers and a downstream server."""

    def __init__(
        self,
        listen_port: int = 8000,
        upstream_host: str = "127.0.0.1",
        upstream_port: int = 9000,
        max_connections: int = 50,
    ) -> None:
        self._server = TurboNetServer(listen_port, max_connections)
        self._server.set_auth_handler(lambda client_id: True)
        self._client = TurboNetClient(
            "",
            upstream_host,
            upstream_port,
            error_handler=self._on_connect_error,
            read_timeout_ms=READ_TIMEOUT_MS,
            write_timeout_ms=WRITE_TIMEOUT_MS,
            response_timeout_ms=RESPONSE_TIMEOUT_MS,
        )
        self._client.set_packet_handler(self._on_downstream_packet)
        self._client.set_timeout_handler(self._on_downstream_timeout)
        self._lock = threading.Lock()
        self._pending: dict[int, tuple[int, Respond]] = {}
        self._connect_failed = False

    @property
    def port(self) -> int:
        """The port producers connect to."""
        return self._server.port

    def start(self) -> bool:
        """Connect downstream and start accepting producers.

        Returns whether the downstream connection was established.
        """
        self._client.start()
        connected = not self._connect_failed
        if connected:
            log.info("connected downstream to %s", self._client.server_address)
        self._server.start(self._on_producer_packet)
        return connected

    def stop(self) -> None:
        """Stop accepting producers and close the downstream connection."""
        self._server.stop()
        self._client.close()

    def _on_connect_error(self, address: str) -> None:
        self._connect_failed = True
        log.error("downstream connect to %s failed", address)

    def _on_producer_packet(
        self, packet_id: int, status: int, sequence: int, payload: bytes, respond: Respond
    ) -> None:
        if packet_id != PacketId.REQUEST:
            respond(packet_id, status, sequence, payload)
            return
        # The lock is held across the send so a fast reply cannot be
        # processed before its routing entry exists.
        with self._lock:
            try:
                downstream_seq = self._client.send_request(payload)
            except ConnectionError as exc:
                log.warning("cannot forward sequence %d: %s", sequence, exc)
                return
            self._pending[downstream_seq] = (sequence, respond)

    def _on_downstream_packet(
        self, packet_id: int, status: int, downstream_seq: int, payload: bytes
    ) -> None:
        with self._lock:
            entry = self._pending.pop(downstream_seq, None)
        if entry is None:
            log.warning("unexpected downstream seq=%d", downstream_seq)
            return
        original_seq, respond = entry
        respond(packet_id, status, original_seq, payload)

    def _on_downstream_timeout(self, downstream_seq: int) -> None:
        with self._lock:
            self._pending.pop(downstream_seq, None)
        log.warning("downstream request seq=%d timed out", downstream_seq)


def main(argv: list[str] | None = None) -> int:
    """Run a gateway until Enter is pressed."""
    parser = argparse.ArgumentParser(description="Relay requests to a downstream server.")
    parser.add_argument("--listen-port", type=int, default=8000)
    parser.add_argument("--upstream-host", default="127.0.0.1")
    parser.add_argument("--upstream-port", type=int, default=9000)
    parser.add_argument("--max-connections", type=int, default=50)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    gateway = Gateway(args.listen_port, args.upstream_host, args.upstream_port, args.max_connections)
    try:
        gateway.start()
        print("Gateway running. Press Enter to stop...", flush=True)
        try:
            input()
        except EOFError:
            pass
    finally:
        gateway.stop()
    return 0