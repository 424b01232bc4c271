import logging
import socketserver

from .pool import PooledUDPServer
from .server import ClientEndpoint, WriteOutcome

logger = logging.getLogger("fulldoh.udp")

UDP_MAX_RESPONSE = 512
TC_FLAG = 0x02


def shape_udp_response(wire: bytes) -> bytes:
    """
    Brief: Cap an upstream response at 512 bytes for UDP delivery.

    Inputs:
      - wire: response bytes from the DoH exchange.

    Outputs:
      - bytes: ``wire`` unchanged when it fits; otherwise its first 512 bytes
        with the TC bit (0x02 of byte 2) set so the client retries over TCP.

    Example:
      >>> shape_udp_response(b"\\x00" * 600)[2]
      2
    """
    if len(wire) <= UDP_MAX_RESPONSE:
        return wire
    truncated = bytearray(wire[:UDP_MAX_RESPONSE])
    truncated[2] |= TC_FLAG
    return bytes(truncated)


def send_datagram(sock, wire: bytes, address) -> WriteOutcome:
    """Send one reply datagram; send errors are logged and reported, never raised."""
    try:
        sock.sendto(wire, address)
    except OSError as e:
        logger.warning("UDP send to %s:%s failed: %s", address[0], address[1], e)
        return WriteOutcome.FAILED
    return WriteOutcome.SENT


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles one UDP datagram on a pool worker.

    The server instance carries the owning DNSProxyServer as ``proxy``.
    SERVFAIL replies are sent as built; upstream answers go through
    shape_udp_response().
    """

    def handle(self) -> None:
        data, sock = self.request
        client = ClientEndpoint("udp", self.client_address[0], self.client_address[1])

        result = self.server.proxy.resolve(data, client)
        wire = result.wire
        if not result.servfail:
            wire = shape_udp_response(wire)

        if send_datagram(sock, wire, self.client_address) is not WriteOutcome.SENT:
            return
        if result.servfail:
            logger.info("Sent SERVFAIL UDP response (%d bytes) to %s", len(wire), client)
        elif len(wire) < len(result.wire):
            logger.info(
                "Sent UDP TRUNCATED response to %s (%d of %d bytes)",
                client,
                len(wire),
                len(result.wire),
            )
        else:
            logger.debug("Sent UDP response to %s (%d bytes)", client, len(wire))


def make_udp_server(host: str, port: int, proxy, *, buffer_size: int = 4096) -> PooledUDPServer:
    """
    Brief: Bind the UDP listener and attach it to a proxy's worker pool.

    Inputs:
      - host, port: listen address (port 0 picks a free port)
      - proxy: DNSProxyServer whose pool and resolve() serve each datagram
      - buffer_size: receive buffer; longer datagrams are cut to this size

    Outputs:
      - PooledUDPServer, bound but not yet serving

    Raises:
      - OSError when the address cannot be bound.
    """
    server = PooledUDPServer((host, port), DNSUDPHandler)
    server.max_packet_size = int(buffer_size)
    server.pool = proxy.pool
    server.proxy = proxy
    return server
