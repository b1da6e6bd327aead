"""Threaded TCP client speaking the packet protocol."""

from __future__ import annotations

import heapq
import logging
import socket
import threading
import time
from collections.abc import Callable

from .protocol import (
    HEADER_SIZE,
    PacketHeader,
    PacketId,
    decode_header,
    encode_packet,
    read_exact,
)

__all__ = [
    "TurboNetClient",
    "PacketHandler",
    "TimeoutHandler",
    "BindHandler",
    "ErrorHandler",
    "CloseHandler",
]

log = logging.getLogger(__name__)

PacketHandler = Callable[[int, int, int, bytes], None]
TimeoutHandler = Callable[[int], None]
BindHandler = Callable[[str], None]
ErrorHandler = Callable[[str], None]
CloseHandler = Callable[[], None]

_SEQUENCE_MASK = 0xFFFFFFFF
_JOIN_SECONDS = 1.0


def _cancel(timer: threading.Timer | None) -> None:
    if timer is not None:
        timer.cancel()


class TurboNetClient:
    """Connects to a server, binds with a client id and exchanges packets.

    Incoming packets are delivered to the packet handler on a reader thread.
    Requests that get no reply within ``response_timeout_ms`` are reported to
    the timeout handler. A read or write that outlasts its timeout shuts the
    connection down.
    """

    def __init__(
        self,
        client_id: str,
        host: str,
        port: int,
        inactivity_timeout: int = 0,
        bind_handler: BindHandler | None = None,
        error_handler: ErrorHandler | None = None,
        read_timeout_ms: int = 0,
        write_timeout_ms: int = 0,
        response_timeout_ms: int = 0,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.inactivity_timeout = inactivity_timeout
        self._bind_handler = bind_handler
        self._error_handler = error_handler
        self._packet_handler: PacketHandler | None = None
        self._timeout_handler: TimeoutHandler | None = None
        self._close_handler: CloseHandler | None = None
        self._read_timeout_ms = read_timeout_ms
        self._write_timeout_ms = write_timeout_ms
        self._response_timeout_ms = response_timeout_ms

        self._sock: socket.socket | None = None
        self._running = False
        self._started = False
        self._closed = False
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()

        self._sequence_lock = threading.Lock()
        self._next_seq = 1

        self._read_timer: threading.Timer | None = None
        self._write_timer: threading.Timer | None = None

        self._cond = threading.Condition()
        self._pending: dict[int, float] = {}
        self._deadlines: list[tuple[float, int]] = []

        self._reader: threading.Thread | None = None
        self._sweeper: threading.Thread | None = None

    @property
    def server_address(self) -> str:
        """The ``host:port`` this client connects to."""
        return f"{self.host}:{self.port}"

    # Handlers

    def set_packet_handler(self, handler: PacketHandler) -> None:
        """Set the callback receiving every incoming packet."""
        self._packet_handler = handler

    def set_timeout_handler(self, handler: TimeoutHandler) -> None:
        """Set the callback receiving sequences of unanswered requests."""
        self._timeout_handler = handler

    def set_close_handler(self, handler: CloseHandler) -> None:
        """Set the callback run when the client is closed."""
        self._close_handler = handler

    # Lifecycle

    def start(self) -> None:
        """Connect, send the bind packet and start receiving.

        If the connection fails, the error handler is called with the server
        address; without an error handler the error is raised.
        """
        with self._state_lock:
            if self._closed:
                raise RuntimeError("client has been closed")
            if self._started:
                raise RuntimeError("client already started")
            self._started = True

        try:
            sock = socket.create_connection((self.host, self.port))
        except OSError:
            if self._error_handler is None:
                raise
            self._error_handler(self.server_address)
            return
        sock.settimeout(None)

        with self._state_lock:
            if self._closed:
                sock.close()
                return
            self._sock = sock
            self._running = True

        if self.client_id:
            self.send_packet(
                PacketId.BIND, 0x00, self._next_sequence(), self.client_id.encode("utf-8")
            )

        if self._response_timeout_ms > 0:
            self._sweeper = threading.Thread(target=self._sweep_loop, daemon=True)
            self._sweeper.start()
        self._reader = threading.Thread(target=self._read_loop, args=(sock,), daemon=True)
        self._reader.start()

    def close(self) -> None:
        """Close the connection, stop all timers and run the close handler."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            self._running = False
            sock = self._sock

        _cancel(self._read_timer)
        _cancel(self._write_timer)
        with self._cond:
            self._cond.notify_all()

        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

        current = threading.current_thread()
        for thread in (self._reader, self._sweeper):
            if thread is not None and thread is not current and thread.is_alive():
                thread.join(_JOIN_SECONDS)

        if self._close_handler is not None:
            self._close_handler()

    def __enter__(self) -> TurboNetClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Sending

    def send_packet(self, packet_id: int, status: int, sequence: int, payload: bytes = b"") -> None:
        """Send one packet. Raises :class:`ConnectionError` when not connected."""
        message = encode_packet(packet_id, status, sequence, payload)
        sock = self._sock
        if sock is None or not self._running:
            raise ConnectionError("client is not connected")
        with self._write_lock:
            self._write_timer = self._arm(self._write_timeout_ms)
            try:
                sock.sendall(message)
            except OSError as exc:
                log.debug("write of sequence %d failed: %s", sequence, exc)
            finally:
                _cancel(self._write_timer)
                self._write_timer = None

    def send_request(self, payload: bytes = b"") -> int:
        """Send a request packet and return the sequence number assigned to it."""
        sequence = self._next_sequence()
        self.send_packet(PacketId.REQUEST, 0x00, sequence, payload)
        self._start_response_timer(sequence)
        return sequence

    # Internals

    def _next_sequence(self) -> int:
        with self._sequence_lock:
            sequence = self._next_seq
            self._next_seq = (self._next_seq + 1) & _SEQUENCE_MASK
            return sequence

    def _arm(self, timeout_ms: int) -> threading.Timer | None:
        if timeout_ms <= 0:
            return None
        timer = threading.Timer(timeout_ms / 1000.0, self._abort_connection)
        timer.daemon = True
        timer.start()
        return timer

    def _abort_connection(self) -> None:
        sock = self._sock
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def _read_loop(self, sock: socket.socket) -> None:
        while self._running:
            _cancel(self._read_timer)
            self._read_timer = self._arm(self._read_timeout_ms)
            try:
                header = decode_header(read_exact(sock, HEADER_SIZE))
            except OSError:
                _cancel(self._read_timer)
                return
            if header.length < HEADER_SIZE:
                continue
            try:
                body: bytes | None = read_exact(sock, header.body_length)
            except OSError:
                body = None
            _cancel(self._read_timer)
            self._cancel_response_timer(header.sequence)
            if body is None:
                return
            self._deliver(header, body)

    def _deliver(self, header: PacketHeader, body: bytes) -> None:
        try:
            if header.packet_id == PacketId.BIND_RESPONSE and self._bind_handler is not None:
                self._bind_handler(body.decode("utf-8", errors="replace"))
            if self._packet_handler is not None:
                self._packet_handler(header.packet_id, header.status, header.sequence, body)
        except Exception:
            log.exception("packet handler failed for sequence %d", header.sequence)

    def _start_response_timer(self, sequence: int) -> None:
        if self._response_timeout_ms <= 0:
            return
        expiry = time.monotonic() + self._response_timeout_ms / 1000.0
        with self._cond:
            self._pending[sequence] = expiry
            heapq.heappush(self._deadlines, (expiry, sequence))
            self._cond.notify_all()

    def _cancel_response_timer(self, sequence: int) -> None:
        with self._cond:
            self._pending.pop(sequence, None)

    def _sweep_loop(self) -> None:
        while True:
            with self._cond:
                while True:
                    if not self._running:
                        return
                    now = time.monotonic()
                    expired = []
                    while self._deadlines and self._deadlines[0][0] <= now:
                        _, sequence = heapq.heappop(self._deadlines)
                        if self._pending.pop(sequence, None) is not None:
                            expired.append(sequence)
                    if expired:
                        break
                    wait = self._deadlines[0][0] - now if self._deadlines else None
                    self._cond.wait(wait)
            handler = self._timeout_handler
            if handler is None:
                continue
            for sequence in expired:
                try:
                    handler(sequence)
                except Exception:
                    log.exception("timeout handler failed for sequence %d", sequence)