"""Unix socket transport shared by the broker and gpg-agent connections."""

import logging
import socket
from typing import Optional

from envoy import config
from envoy.errors import TransportError

log = logging.getLogger("envoy.transport")


def resolve_address(endpoint: Optional[str] = None) -> str:
    """Turn a configured endpoint into an AF_UNIX address.

    A leading "@" names a socket in the Linux abstract namespace, which
    Python addresses with a leading NUL byte.
    """
    endpoint = endpoint or config.ENVOY_SOCKET
    if endpoint.startswith("@"):
        return "\0" + endpoint[1:]
    return endpoint


def describe_address(address: str) -> str:
    return "@" + address[1:] if address.startswith("\0") else address


def connect(address: str, timeout: Optional[float] = None, error=TransportError) -> socket.socket:
    """Open a stream connection to a unix socket address."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect(address)
    except OSError as e:
        sock.close()
        raise error(f"failed to connect to {describe_address(address)}: {e.strerror or e}") from e
    log.debug("connected to %s", describe_address(address))
    return sock


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    """Read exactly size bytes, or fewer only if the peer hung up."""
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def exchange(address: str, request: bytes, reply_size: int, timeout: Optional[float] = None) -> bytes:
    """Send one request record and read one reply record.

    Raises:
        TransportError: if the socket cannot be reached, the peer sends
            nothing, or the reply is cut short.
    """
    with connect(address, timeout) as sock:
        try:
            sock.sendall(request)
            reply = recv_exactly(sock, reply_size)
        except socket.timeout as e:
            raise TransportError(f"timed out waiting for {describe_address(address)}") from e
        except OSError as e:
            raise TransportError(f"connection to {describe_address(address)} failed: {e.strerror or e}") from e

    if not reply:
        raise TransportError("received no data, did the agent fail to start?")
    if len(reply) != reply_size:
        raise TransportError(f"partial reply: got {len(reply)} of {reply_size} bytes")
    return reply
