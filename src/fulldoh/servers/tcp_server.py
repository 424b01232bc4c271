import logging
import socket
import socketserver
from typing import Optional

from ..servfail import build_servfail
from .pool import PooledTCPServer
from .server import ClientEndpoint, WriteOutcome

logger = logging.getLogger("fulldoh.tcp")

MAX_TCP_MESSAGE = 0xFFFF


def _recv_exact(sock: socket.socket, n: int) -> bytes:
    """
    Receive exactly n bytes from a blocking socket.

    Inputs:
      - sock: Socket
      - n: Number of bytes
    Outputs:
      - bytes: Exactly n bytes unless EOF occurs.

    Example:
      >>> _recv_exact(sock, 2)  # doctest: +SKIP
    """
    remaining = n
    chunks = []
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_framed_query(sock: socket.socket) -> Optional[bytes]:
    """
    Read one length-prefixed DNS message (RFC 1035 section 4.2.2).

    Inputs:
      - sock: connected client socket
    Outputs:
      - the message body, or None when the prefix is short, the length is 0,
        or EOF arrives before the whole body. Socket errors propagate.
    """
    hdr = _recv_exact(sock, 2)
    if len(hdr) != 2:
        logger.debug("Short length prefix (%d bytes); abandoning connection", len(hdr))
        return None
    ln = int.from_bytes(hdr, "big")
    if ln == 0:
        logger.debug("Zero length prefix; abandoning connection")
        return None
    body = _recv_exact(sock, ln)
    if len(body) != ln:
        logger.debug("Unexpected EOF after %d of %d body bytes", len(body), ln)
        return None
    return body


def send_framed(sock: socket.socket, wire: bytes) -> WriteOutcome:
    """
    Write one length-prefixed reply.

    Inputs:
      - sock: connected client socket
      - wire: reply body, at most 65535 bytes
    Outputs:
      - WriteOutcome; a client that reset or aborted is PEER_CLOSED.
    """
    try:
        sock.sendall(len(wire).to_bytes(2, "big") + wire)
    except (BrokenPipeError, ConnectionResetError, ConnectionAbortedError) as e:
        logger.info("Client aborted TCP connection (normal): %s", e)
        return WriteOutcome.PEER_CLOSED
    except OSError as e:
        logger.warning("TCP write error: %s", e)
        return WriteOutcome.FAILED
    return WriteOutcome.SENT


class DNSTCPHandler(socketserver.BaseRequestHandler):
    """
    Serves exactly one query on an accepted connection, then returns so the
    server closes the socket. Malformed framing gets no reply at all.
    """

    def handle(self) -> None:
        sock = self.request
        client = ClientEndpoint("tcp", self.client_address[0], self.client_address[1])

        try:
            query = read_framed_query(sock)
        except OSError as e:
            logger.debug("TCP read from %s failed: %s", client, e)
            return
        if query is None:
            return

        result = self.server.proxy.resolve(query, client)
        wire = result.wire
        if len(wire) > MAX_TCP_MESSAGE:
            logger.warning(
                "DoH response of %d bytes cannot be framed over TCP; sending SERVFAIL to %s",
                len(wire),
                client,
            )
            wire = build_servfail(query)

        if send_framed(sock, wire) is WriteOutcome.SENT:
            logger.debug(
                "Sent TCP %s to %s (%d bytes)",
                "SERVFAIL" if result.servfail else "response",
                client,
                len(wire),
            )


def make_tcp_server(host: str, port: int, proxy) -> PooledTCPServer:
    """
    Brief: Bind the TCP listener and attach it to a proxy's worker pool.

    Inputs:
      - host, port: listen address (port 0 picks a free port)
      - proxy: DNSProxyServer whose pool and resolve() serve each connection

    Outputs:
      - PooledTCPServer, bound and listening but not yet accepting

    Raises:
      - OSError when the address cannot be bound.
    """
    server = PooledTCPServer((host, port), DNSTCPHandler)
    server.pool = proxy.pool
    server.proxy = proxy
    return server
