import http.client
import logging
import ssl
import urllib.parse
from importlib import metadata
from typing import Dict, Optional, Tuple

try:
    FULLDOH_VERSION = metadata.version("fulldoh")
except metadata.PackageNotFoundError:  # pragma: no cover - running from a source checkout
    FULLDOH_VERSION = "unknown"

logger = logging.getLogger("fulldoh.doh")

DNS_MESSAGE = "application/dns-message"
# Bytes of a non-200 body kept for the debug log.
_ERROR_BODY_EXCERPT = 200


class DoHError(Exception):
    """
    Brief: DNS-over-HTTPS transport error.

    Inputs:
    - message: Description of the error

    Outputs:
    - Exception instance
    """

    pass


def _build_ssl_ctx(verify: bool = True, ca_file: Optional[str] = None) -> ssl.SSLContext:
    """
    Brief: Build SSLContext for the upstream HTTPS connection.

    Inputs:
    - verify: whether to verify TLS certs
    - ca_file: optional CA bundle path

    Outputs:
    - ssl.SSLContext

    Example:
        >>> _build_ssl_ctx(True, None)  # doctest: +ELLIPSIS
        <ssl.SSLContext...>
    """
    if not verify:
        return ssl._create_unverified_context()
    return (
        ssl.create_default_context(cafile=ca_file)
        if ca_file
        else ssl.create_default_context()
    )


def doh_query(
    url: str,
    query: bytes,
    *,
    timeout_ms: int = 4000,
    verify: bool = True,
    ca_file: Optional[str] = None,
) -> Tuple[bytes, Dict[str, str]]:
    """
    Brief: POST a wire-format DNS query to a DoH endpoint (RFC 8484).

    Inputs:
    - url: Target DoH endpoint, e.g. https://dns.google/dns-query
    - query: Wire-format DNS query bytes, sent verbatim as the body
    - timeout_ms: Bound applied to the connect and to every read
    - verify: Verify TLS certificates (HTTPS only)
    - ca_file: Optional CA bundle path for verification

    Outputs:
    - (body, resp_headers): response body bytes and lower-cased headers

    Notes:
    - Redirects are not followed: any status other than 200 raises DoHError.
    - Raises DoHError for network, timeout and TLS errors as well.

    Example:
        >>> try:
        ...     doh_query('https://example.invalid/dns-query', b'\x00\x01')
        ... except DoHError:
        ...     pass
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("https", "http"):
        raise DoHError(f"Unsupported URL scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise DoHError(f"Missing host in URL: {url}")
    try:
        port = parsed.port
    except ValueError as e:
        raise DoHError(f"Invalid port in URL: {e}")

    timeout = timeout_ms / 1000.0
    path = parsed.path or "/dns-query"
    target = path + ("?" + parsed.query if parsed.query else "")
    hdrs = {
        "Content-Type": DNS_MESSAGE,
        "Accept": DNS_MESSAGE,
        "User-Agent": f"FullDoH v{FULLDOH_VERSION}",
    }

    try:
        if parsed.scheme == "https":
            conn = http.client.HTTPSConnection(
                parsed.hostname,
                port or 443,
                timeout=timeout,
                context=_build_ssl_ctx(verify=verify, ca_file=ca_file),
            )
        else:
            conn = http.client.HTTPConnection(
                parsed.hostname,
                port or 80,
                timeout=timeout,
            )
        try:
            conn.request("POST", target, body=query, headers=hdrs)
            resp = conn.getresponse()
            data = resp.read()
            if resp.status != 200:
                if data:
                    logger.debug(
                        "DoH error body from %s: %r",
                        url,
                        data[:_ERROR_BODY_EXCERPT],
                    )
                raise DoHError(f"HTTP {resp.status}: {resp.reason}")
            headers_out = {k.lower(): v for k, v in resp.getheaders()}
            return data, headers_out
        finally:
            conn.close()
    except ssl.SSLError as e:
        raise DoHError(f"TLS error: {e}")
    except TimeoutError as e:
        raise DoHError(f"Timeout: {e}")
    except (OSError, http.client.HTTPException) as e:
        raise DoHError(f"Network error: {e}")
    except UnicodeError as e:
        # Host names that cannot be IDNA-encoded.
        raise DoHError(f"Invalid host: {e}")


class DoHClient:
    """
    Brief: Fixed-endpoint DoH client used by both listeners.

    Inputs:
    - url: DoH endpoint URL
    - timeout_ms: connect/read bound per exchange
    - verify / ca_file: TLS verification settings

    Outputs:
    - exchange(query) -> response bytes, or None on any failure

    Example:
        >>> client = DoHClient('https://dns.google/dns-query')
        >>> client.exchange(b'')  # doctest: +SKIP
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_ms: int = 4000,
        verify: bool = True,
        ca_file: Optional[str] = None,
    ) -> None:
        self.url = url
        self.timeout_ms = int(timeout_ms)
        self.verify = bool(verify)
        self.ca_file = ca_file

    def exchange(self, query: bytes) -> Optional[bytes]:
        """Forward one query; every failure mode collapses to None."""
        try:
            body, _ = doh_query(
                self.url,
                query,
                timeout_ms=self.timeout_ms,
                verify=self.verify,
                ca_file=self.ca_file,
            )
        except DoHError as e:
            logger.warning("DoH exchange with %s failed: %s", self.url, e)
            return None
        if not body:
            logger.warning("DoH exchange with %s returned an empty body", self.url)
            return None
        return body
