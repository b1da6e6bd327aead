import logging
import queue
import socket
import threading
import time

import pytest

from turbonet.client import TurboNetClient
from turbonet.gateway import Gateway, main
from turbonet.protocol import PacketId, encode_packet, read_packet


class FakeUpstream:
    def __init__(self, greeting=None):
        self.listener = socket.create_server(("127.0.0.1", 0))
        self.listener.settimeout(0.1)
        self.port = self.listener.getsockname()[1]
        self.received = queue.Queue()
        self._greeting = greeting
        self._conn = None
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        conn = None
        while not self._stopped.is_set():
            try:
                conn, _ = self.listener.accept()
                break
            except TimeoutError:
                continue
            except OSError:
                return
        if conn is None:
            return
        conn.settimeout(None)
        self._conn = conn
        with conn:
            if self._greeting:
                conn.sendall(self._greeting)
            while True:
                try:
                    header, body = read_packet(conn)
                except (OSError, ValueError):
                    return
                self.received.put((header, body))
                if header.packet_id == PacketId.REQUEST:
                    conn.sendall(
                        encode_packet(PacketId.RESPONSE, 0, header.sequence, b"processed:" + body)
                    )

    def close(self):
        self._stopped.set()
        if self._conn is not None:
            try:
                self._conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        self._thread.join(2)
        self.listener.close()


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def upstream():
    server = FakeUpstream()
    yield server
    server.close()


@pytest.fixture
def gateway(upstream):
    gw = Gateway(0, "127.0.0.1", upstream.port, 5)
    gw.start()
    yield gw
    gw.stop()


def _producer(port, packets, client_id="producer"):
    bound = threading.Event()
    client = TurboNetClient(client_id, "127.0.0.1", port, bind_handler=lambda sid: bound.set())
    client.set_packet_handler(lambda *packet: packets.put(packet))
    client.start()
    assert bound.wait(5)
    first = packets.get(timeout=5)
    assert first[0] == PacketId.BIND_RESPONSE
    return client


def test_start_reports_connected_downstream(upstream):
    gw = Gateway(0, "127.0.0.1", upstream.port, 5)
    try:
        assert gw.start() is True
    finally:
        gw.stop()


def test_start_reports_failed_downstream():
    gw = Gateway(0, "127.0.0.1", _free_port(), 5)
    try:
        assert gw.start() is False
    finally:
        gw.stop()


def test_request_is_relayed_and_reply_routed_back(gateway):
    packets = queue.Queue()
    with _producer(gateway.port, packets) as producer:
        sequence = producer.send_request(b"data")
        reply = packets.get(timeout=5)
    assert reply == (PacketId.RESPONSE, 0, sequence, b"processed:data")


def test_upstream_receives_only_the_request(gateway, upstream):
    packets = queue.Queue()
    with _producer(gateway.port, packets) as producer:
        producer.send_request(b"data")
        packets.get(timeout=5)
    header, body = upstream.received.get(timeout=5)
    assert header.packet_id == PacketId.REQUEST
    assert body == b"data"
    assert upstream.received.empty()


def test_other_packets_are_echoed_without_forwarding(gateway, upstream):
    packets = queue.Queue()
    with _producer(gateway.port, packets) as producer:
        producer.send_packet(0x05, 3, 42, b"ping")
        reply = packets.get(timeout=5)
    assert reply == (0x05, 3, 42, b"ping")
    assert upstream.received.empty()


def test_each_producer_gets_its_own_reply(gateway):
    first_packets, second_packets = queue.Queue(), queue.Queue()
    with _producer(gateway.port, first_packets, "first") as first, _producer(
        gateway.port, second_packets, "second"
    ) as second:
        first_seq = first.send_request(b"one")
        second_seq = second.send_request(b"two")
        first_reply = first_packets.get(timeout=5)
        second_reply = second_packets.get(timeout=5)
    assert first_reply[2:] == (first_seq, b"processed:one")
    assert second_reply[2:] == (second_seq, b"processed:two")
    assert first_packets.empty() and second_packets.empty()


def test_unexpected_downstream_sequence_is_logged(caplog):
    caplog.set_level(logging.WARNING, logger="turbonet.gateway")
    stray = FakeUpstream(greeting=encode_packet(PacketId.RESPONSE, 0, 999, b"stray"))
    gw = Gateway(0, "127.0.0.1", stray.port, 5)
    try:
        gw.start()
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if any("999" in record.getMessage() for record in caplog.records):
                break
            time.sleep(0.02)
    finally:
        gw.stop()
        stray.close()
    assert any("unexpected downstream seq=999" in r.getMessage() for r in caplog.records)


def test_main_runs_until_enter(monkeypatch, capsys):
    monkeypatch.setattr("builtins.input", lambda *args: "")
    rc = main(["--listen-port", "0", "--upstream-port", str(_free_port())])
    out = capsys.readouterr().out
    assert rc == 0
    assert "Gateway running. Press Enter to stop..." in out