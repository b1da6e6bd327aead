"""Wire format shared by the server and the client.

Every packet starts with a 10-byte big-endian header:

* 4 bytes: total packet length, header included
* 1 byte:  packet id
* 1 byte:  status
* 4 bytes: sequence number

followed by ``length - 10`` bytes of payload.
"""

from __future__ import annotations

import socket
import struct
from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "HEADER_SIZE",
    "PacketId",
    "PacketHeader",
    "ConnectionClosed",
    "encode_packet",
    "decode_header",
    "read_exact",
    "read_packet",
]

_HEADER = struct.Struct(">IBBI")
HEADER_SIZE = _HEADER.size


class PacketId(IntEnum):
    """Packet identifiers used by the protocol."""

    BIND = 0x01
    REQUEST = 0x02
    BIND_RESPONSE = 0x81
    RESPONSE = 0x82


class ConnectionClosed(ConnectionError):
    """The peer closed the connection before a full read completed."""


@dataclass(frozen=True)
class PacketHeader:
    """A decoded packet header."""

    length: int
    packet_id: int
    status: int
    sequence: int

    @property
    def body_length(self) -> int:
        """Number of payload bytes that follow the header."""
        return self.length - HEADER_SIZE


def encode_packet(packet_id: int, status: int, sequence: int, payload: bytes = b"") -> bytes:
    """Build a complete packet from its fields and payload."""
    body = bytes(payload)
    try:
        header = _HEADER.pack(HEADER_SIZE + len(body), packet_id, status, sequence)
    except struct.error as exc:
        raise ValueError(f"cannot encode packet: {exc}") from exc
    return header + body


def decode_header(data: bytes) -> PacketHeader:
    """Decode exactly ``HEADER_SIZE`` bytes into a :class:`PacketHeader`."""
    if len(data) != HEADER_SIZE:
        raise ValueError(f"header must be {HEADER_SIZE} bytes, got {len(data)}")
    length, packet_id, status, sequence = _HEADER.unpack(data)
    return PacketHeader(length, packet_id, status, sequence)


def read_exact(sock: socket.socket, size: int) -> bytes:
    """Read exactly ``size`` bytes from ``sock``.

    Raises :class:`ConnectionClosed` if the peer closes the connection first.
    """
    buffer = bytearray()
    while len(buffer) < size:
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            raise ConnectionClosed(
                f"connection closed after {len(buffer)} of {size} bytes"
            )
        buffer += chunk
    return bytes(buffer)


def read_packet(sock: socket.socket) -> tuple[PacketHeader, bytes]:
    """Read one full packet from ``sock`` and return its header and payload.

    Raises :class:`ValueError` when the declared length is shorter than a header.
    """
    header = decode_header(read_exact(sock, HEADER_SIZE))
    if header.length < HEADER_SIZE:
        raise ValueError(f"declared packet length {header.length} is shorter than a header")
    return header, read_exact(sock, header.body_length)