"""Length-prefixed binary packets over TCP: protocol, server, client, gateway and echo tools."""

__version__ = "0.1.0"
__all__ = ["protocol", "server", "client", "gateway", "echo_server", "echo_client"]