import enum
import logging
import threading
from typing import List, NamedTuple, Optional, Tuple

from ..config.config_parser import ProxyConfig
from ..servfail import build_servfail
from ..wire import inspect_question, qtype_name
from .pool import WorkerPool
from .transports.doh import DoHClient

logger = logging.getLogger("fulldoh.server")


class ClientEndpoint(NamedTuple):
    """Where a query came from; lives for a single exchange."""

    transport: str  # 'udp' | 'tcp'
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class Resolution(NamedTuple):
    """Bytes to send back, and whether they are a synthesized SERVFAIL."""

    wire: bytes
    servfail: bool


class WriteOutcome(enum.Enum):
    """Result of writing a reply to a client.

    PEER_CLOSED covers a client that reset or went away before the reply was
    written; it is an expected outcome, not an error.
    """

    SENT = "sent"
    PEER_CLOSED = "peer_closed"
    FAILED = "failed"


def _display_qname(qname: Optional[str]) -> str:
    if qname is None:
        return "<unknown>"
    return qname or "."


class DNSProxyServer:
    """
    Brief: Forwards DNS queries from the UDP/TCP listeners to one DoH endpoint.

    Inputs:
      - config: ProxyConfig built at startup.
      - client: optional object exposing exchange(bytes) -> Optional[bytes];
        defaults to a DoHClient for config.doh_url.
      - pool: optional WorkerPool; defaults to one sized by config.workers.

    Outputs:
      - resolve(query, client) -> Resolution, shared by both listeners.
      - start()/stop() manage the listener threads.

    Example:
      >>> proxy = DNSProxyServer(ProxyConfig(port=5353))
      >>> proxy.start()  # doctest: +SKIP
    """

    def __init__(
        self,
        config: ProxyConfig,
        *,
        client: Optional[DoHClient] = None,
        pool: Optional[WorkerPool] = None,
    ) -> None:
        self.config = config
        self.client = client or DoHClient(
            config.doh_url,
            timeout_ms=config.timeout_ms,
            verify=config.tls_verify,
            ca_file=config.ca_file,
        )
        self.pool = pool or WorkerPool(config.workers)
        self.udp_server = None
        self.tcp_server = None
        self._threads: List[threading.Thread] = []

    def resolve(self, query: bytes, client: ClientEndpoint) -> Resolution:
        """
        Brief: Log the query, run the DoH exchange, SERVFAIL on failure.

        Inputs:
          - query: raw query bytes from the client.
          - client: endpoint the reply goes back to (logging only).

        Outputs:
          - Resolution(wire, servfail). Transport-specific shaping (UDP
            truncation, TCP framing) is left to the listener.
        """
        info = inspect_question(query)
        logger.info(
            "%s query from %s -> %s type=%s",
            client.transport.upper(),
            client,
            _display_qname(info.qname),
            qtype_name(info.qtype),
        )

        response = self.client.exchange(query)
        if response is None:
            logger.info(
                "DoH failed - returning SERVFAIL to %s over %s", client, client.transport
            )
            return Resolution(build_servfail(query), True)
        return Resolution(response, False)

    @property
    def udp_address(self) -> Optional[Tuple[str, int]]:
        return self.udp_server.server_address[:2] if self.udp_server else None

    @property
    def tcp_address(self) -> Optional[Tuple[str, int]]:
        return self.tcp_server.server_address[:2] if self.tcp_server else None

    def _spawn(self, server, name: str) -> None:
        t = threading.Thread(target=server.serve_forever, name=name, daemon=True)
        t.start()
        self._threads.append(t)

    def start_udp(self) -> bool:
        """Bind and serve UDP; returns False (after logging) when bind fails."""
        from .udp_server import make_udp_server

        host, port = self.config.host, self.config.port
        try:
            self.udp_server = make_udp_server(
                host, port, self, buffer_size=self.config.udp_buffer_size
            )
        except OSError as e:
            logger.error(
                "UDP bind failed on %s:%d. Are you running as admin/root? %s",
                host,
                port,
                e,
            )
            return False
        logger.info("UDP socket bound on %s:%d", *self.udp_address)
        self._spawn(self.udp_server, "fulldoh-udp")
        return True

    def start_tcp(self) -> bool:
        """Bind and serve TCP; returns False (after logging) when bind fails."""
        from .tcp_server import make_tcp_server

        host, port = self.config.host, self.config.port
        try:
            self.tcp_server = make_tcp_server(host, port, self)
        except OSError as e:
            logger.error(
                "TCP bind failed on %s:%d. Are you running as admin/root? %s",
                host,
                port,
                e,
            )
            return False
        logger.info("TCP socket bound on %s:%d", *self.tcp_address)
        self._spawn(self.tcp_server, "fulldoh-tcp")
        return True

    def start(self) -> int:
        """Start every enabled listener; returns how many are running."""
        started = 0
        if self.config.udp_enabled and self.start_udp():
            started += 1
        if self.config.tcp_enabled and self.start_tcp():
            started += 1
        return started

    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def stop(self) -> None:
        """Stop both listeners, close their sockets and drain the pool."""
        for label, server in (("UDP", self.udp_server), ("TCP", self.tcp_server)):
            if server is None:
                continue
            try:
                server.shutdown()
                server.server_close()
            except OSError:
                logger.exception("Error while shutting down %s listener", label)
        for t in self._threads:
            t.join(timeout=5.0)
        self._threads = []
        self.udp_server = None
        self.tcp_server = None
        self.pool.shutdown(wait=False)
