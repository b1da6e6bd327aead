# turbonet

turbonet sends binary packets over TCP. It has a threaded server, a threaded
client and a gateway that passes requests on to another server. It uses only
the standard library.

## Wire format

Each packet has a 10-byte header followed by its payload:

| bytes | field                                      |
|-------|--------------------------------------------|
| 0–3   | total length, header included (big-endian) |
| 4     | packet id                                  |
| 5     | status                                     |
| 6–9   | sequence number (big-endian)               |

`turbonet.protocol` has the building blocks:

- `encode_packet(packet_id, status, sequence, payload)` builds a packet. It
  raises `ValueError` if a field is out of range.
- `decode_header(data)` turns exactly `HEADER_SIZE` bytes into a
  `PacketHeader`. The header has the fields `length`, `packet_id`, `status`,
  `sequence` and `body_length`.
- `read_exact(sock, size)` reads from a socket. It raises `ConnectionClosed`
  if the peer closes the connection first.
- `read_packet(sock)` reads one packet from a socket.

The packet ids are in `PacketId`:

| name            | value  |
|-----------------|--------|
| `BIND`          | `0x01` |
| `REQUEST`       | `0x02` |
| `BIND_RESPONSE` | `0x81` |
| `RESPONSE`      | `0x82` |

## Binding

A client must bind before it may send requests. It binds by sending a `BIND`
packet that carries its client id.

The server passes the id to its auth handler:

- If the handler accepts the id, the server replies with `BIND_RESPONSE`. The
  reply carries the server id (`SERVER_ID`, `"test_server"`) and the bind's
  sequence number.
- If the handler rejects the id, or no auth handler is set, the server closes
  the session.

The server ignores packets that arrive before a successful bind.

## Server

```python
from turbonet.server import TurboNetServer

def handle(packet_id, status, sequence, payload, respond):
    respond(0x82, 0x00, sequence, b"Echo: " + payload)

with TurboNetServer(9000, 10) as server:
    server.set_auth_handler(lambda client_id: client_id == "test_client")
    server.start(handle)
    input("Press Enter to stop...")
```

- **Arguments.** `TurboNetServer(port, max_connections=100, host="0.0.0.0")`
  listens as soon as it is created. If `port` is 0, the system picks a free
  port, and the `port` attribute holds the port in use.
- **Threads.** Each session runs on its own thread.
- **Handler.** The handler gets every packet that arrives after the bind,
  together with a `respond(packet_id, status, sequence, payload)` callable.
  If the handler raises, the exception is logged and the session goes on.
- **Connection limit.** `set_max_connections` changes the limit on open
  sessions. A connection over the limit is closed as soon as it is accepted.
- **Stopping.** `stop()` closes the listener and every session, and so does
  leaving the `with` block. After that the server cannot be started again.

## Client

```python
from turbonet.client import TurboNetClient

client = TurboNetClient(
    "test_client", "127.0.0.1", 9000, 100,
    lambda server_id: print("bound to", server_id),
    lambda address: print("cannot connect to", address),
    5000, 5000, 10000,
)
client.set_packet_handler(lambda pid, status, seq, payload: print(pid, seq, payload))
client.set_timeout_handler(lambda seq: print("timed out", seq))
with client:
    client.start()
    seq = client.send_request(b"hello_server")
```

The constructor arguments are, in order:

1. client id
2. host
3. port
4. inactivity timeout (stored, but not acted on)
5. bind handler
6. error handler
7. read timeout in milliseconds
8. write timeout in milliseconds
9. response timeout in milliseconds

A timeout of zero turns that timeout off.

**Starting.** `start()` connects to the server. If the client id is not
empty, it then sends the `BIND` packet. If the connection fails, the error
handler is called with `"host:port"`. If there is no error handler, the
`OSError` is raised.

**Receiving.** Incoming packets arrive on a reader thread. A `BIND_RESPONSE`
goes to the bind handler first, with the server id. Every packet, that one
included, then goes to the packet handler.

**Sending.**

- `send_request(payload)` sends a `REQUEST` packet and returns its sequence
  number. Sequence numbers start at 1.
- `send_packet(packet_id, status, sequence, payload)` sends any packet.
- Both raise `ConnectionError` when the client is not connected.

**Timeouts.**

- If a request gets no reply within the response timeout, the timeout handler
  is called with its sequence number.
- If a read or a write takes longer than its timeout, the client shuts the
  connection down.

**Closing.** `close()` shuts the connection, stops the timers and calls the
handler set with `set_close_handler`. Leaving the `with` block calls
`close()`.

## Command-line tools

```
turbonet-echo-server [--port 9000] [--max-connections 10]
turbonet-echo-client [--host 127.0.0.1] [--port 9000] [--client-id test_client] [--delay 5]
turbonet-gateway [--listen-port 8000] [--upstream-host 127.0.0.1] [--upstream-port 9000] [--max-connections 50]
```

Each tool runs until you press Enter.

**Echo server.** It accepts the client ids `client_123` and `test_client`.
It answers every packet with a `RESPONSE` packet whose payload is `Echo: `
followed by the payload it received. The pieces are in `turbonet.echo_server`:
`make_auth_handler` and `echo_handler`.

**Echo client.** It binds and waits `--delay` seconds. Then it sends the
request `hello_server` and prints each reply. `turbonet.echo_client.format_packet`
formats the reply lines.

**Gateway.** `turbonet.gateway.Gateway` accepts every client id. It passes
each `REQUEST` packet on to the downstream server. When the downstream reply
arrives, the gateway sends it back to the producer that made the request,
under that producer's original sequence number. Every other packet is echoed
straight back to its sender.

## What it does not do

- **No reconnecting.** The client connects once. If the connection fails or
  drops, it does not reconnect.
- **Lost requests when downstream is down.** If the gateway cannot connect
  downstream, it still accepts producers. It logs each request it cannot pass
  on and drops it, and the producer gets no reply.
- **No encryption.** Traffic is not encrypted.
- **Inactivity timeout not enforced.** The client stores the inactivity
  timeout but does nothing with it.