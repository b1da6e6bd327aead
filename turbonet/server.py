"""Threaded TCP server speaking the packet protocol."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable

from .protocol import PacketHeader, PacketId, encode_packet, read_packet

__all__ = ["SERVER_ID", "TurboNetServer", "Respond", "RequestHandler", "AuthHandler"]

log = logging.getLogger(__name__)

SERVER_ID = "test_server"

Respond = Callable[[int, int, int, bytes], None]
RequestHandler = Callable[[int, int, int, bytes, Respond], None]
AuthHandler = Callable[[str], bool]

_ACCEPT_POLL_SECONDS = 0.1


class _Session:
    """One accepted connection, served on its own thread."""

    def __init__(self, sock: socket.socket, server: TurboNetServer) -> None:
        self._sock = sock
        self._server = server
        self._send_lock = threading.Lock()
        self.authenticated = False
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()

    def send(self, message: bytes) -> None:
        with self._send_lock:
            try:
                self._sock.sendall(message)
            except OSError:
                pass

    def respond(self, packet_id: int, status: int, sequence: int, payload: bytes) -> None:
        self.send(encode_packet(packet_id, status, sequence, payload))

    def _run(self) -> None:
        try:
            while True:
                header, body = read_packet(self._sock)
                if not self._dispatch(header, body):
                    break
        except (OSError, ValueError):
            pass
        finally:
            self._server._remove_session(self)
            self.close()

    def _dispatch(self, header: PacketHeader, body: bytes) -> bool:
        """Handle one packet; return False when the session must end."""
        if not self.authenticated and header.packet_id == PacketId.BIND:
            client_id = body.decode("utf-8", errors="replace")
            auth = self._server._auth_handler
            if auth is None or not auth(client_id):
                return False
            self.authenticated = True
            self.respond(PacketId.BIND_RESPONSE, 0x00, header.sequence, SERVER_ID.encode())
        elif self.authenticated:
            handler = self._server._request_handler
            if handler is not None:
                try:
                    handler(header.packet_id, header.status, header.sequence, body, self.respond)
                except Exception:
                    log.exception("request handler failed for sequence %d", header.sequence)
        return True


class TurboNetServer:
    """Accepts connections, authenticates them with a bind packet and
    forwards every later packet to a request handler."""

    def __init__(self, port: int, max_connections: int = 100, host: str = "0.0.0.0") -> None:
        self._listener = socket.create_server((host, port))
        self._listener.settimeout(_ACCEPT_POLL_SECONDS)
        self.address = self._listener.getsockname()
        self.port: int = self.address[1]
        self._max_connections = max_connections
        self._auth_handler: AuthHandler | None = None
        self._request_handler: RequestHandler | None = None
        self._lock = threading.Lock()
        self._sessions: set[_Session] = set()
        self._stopped = threading.Event()
        self._accept_thread: threading.Thread | None = None

    def set_auth_handler(self, auth: AuthHandler) -> None:
        """Set the callback deciding whether a client id may bind."""
        self._auth_handler = auth

    def set_max_connections(self, max_connections: int) -> None:
        """Set the maximum number of concurrent sessions."""
        self._max_connections = max_connections

    def start(self, handler: RequestHandler) -> None:
        """Start accepting sessions, passing their packets to ``handler``."""
        if self._stopped.is_set():
            raise RuntimeError("server has been stopped")
        if self._accept_thread is not None:
            raise RuntimeError("server already started")
        self._request_handler = handler
        self._accept_thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._accept_thread.start()

    def stop(self) -> None:
        """Stop accepting and close every open session."""
        self._stopped.set()
        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join()
        self._listener.close()
        with self._lock:
            sessions = list(self._sessions)
            self._sessions.clear()
        for session in sessions:
            session.close()
        for session in sessions:
            session.join(1.0)

    def __enter__(self) -> TurboNetServer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _accept_loop(self) -> None:
        while not self._stopped.is_set():
            try:
                conn, _ = self._listener.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            conn.settimeout(None)
            with self._lock:
                if self._stopped.is_set() or len(self._sessions) >= self._max_connections:
                    conn.close()
                    continue
                session = _Session(conn, self)
                self._sessions.add(session)
            session.start()

    def _remove_session(self, session: _Session) -> None:
        with self._lock:
            self._sessions.discard(session)