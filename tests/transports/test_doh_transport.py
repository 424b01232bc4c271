"""
Brief: Tests for the DoH upstream transport using a local HTTP server stub.

Inputs:
  - None

Outputs:
  - None
"""

import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from fulldoh.servers.transports.doh import DoHClient, DoHError, doh_query


class _StubHandler(BaseHTTPRequestHandler):
    seen = []

    def do_POST(self):  # noqa: N802
        ln = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(ln)
        type(self).seen.append((self.path, dict(self.headers), body))

        if self.path.startswith("/error"):
            payload = b"upstream exploded"
            self.send_response(500)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)
            return
        if self.path.startswith("/redirect"):
            self.send_response(302)
            self.send_header("Location", "/dns-query")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        if self.path.startswith("/slow"):
            time.sleep(1.0)
        if self.path.startswith("/empty"):
            body = b""

        self.send_response(200)
        self.send_header("Content-Type", "application/dns-message")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt, *args):  # quiet
        return


@pytest.fixture(scope="module")
def stub_server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _StubHandler)
    srv.daemon_threads = True
    host, port = srv.server_address

    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    try:
        yield f"http://{host}:{port}"
    finally:
        srv.shutdown()
        srv.server_close()


def _free_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_doh_post_roundtrip_sends_query_verbatim(stub_server):
    query = b"\x12\x34" + b"x" * 27
    body, headers = doh_query(stub_server + "/dns-query", query, timeout_ms=500)
    assert body == query
    assert headers.get("content-type", "").startswith("application/dns-message")

    path, req_headers, sent = _StubHandler.seen[-1]
    assert path == "/dns-query"
    assert sent == query
    assert req_headers["Content-Type"] == "application/dns-message"
    assert req_headers["Accept"] == "application/dns-message"
    assert req_headers["User-Agent"].startswith("FullDoH v")


def test_doh_keeps_url_query_string(stub_server):
    doh_query(stub_server + "/dns-query?ct=1", b"\x00\x01", timeout_ms=500)
    assert _StubHandler.seen[-1][0] == "/dns-query?ct=1"


def test_doh_http_500_raises(stub_server):
    with pytest.raises(DoHError, match="HTTP 500"):
        doh_query(stub_server + "/error", b"\x00\x01x", timeout_ms=500)


def test_doh_redirect_is_not_followed(stub_server):
    before = len(_StubHandler.seen)
    with pytest.raises(DoHError, match="HTTP 302"):
        doh_query(stub_server + "/redirect", b"\x00\x01", timeout_ms=500)
    assert len(_StubHandler.seen) == before + 1


def test_doh_timeout_raises(stub_server):
    with pytest.raises(DoHError):
        doh_query(stub_server + "/slow", b"\x00\x01", timeout_ms=200)


def test_doh_connection_refused_raises():
    with pytest.raises(DoHError, match="Network error"):
        doh_query(f"http://127.0.0.1:{_free_port()}/dns-query", b"\x00\x01", timeout_ms=500)


@pytest.mark.parametrize(
    "url",
    ["ftp://example.com/dns-query", "https:///dns-query", "https://example.com:99999/q"],
)
def test_doh_bad_url_raises(url):
    with pytest.raises(DoHError):
        doh_query(url, b"\x00\x01")


def test_client_exchange_success(stub_server):
    client = DoHClient(stub_server + "/dns-query", timeout_ms=500)
    assert client.exchange(b"\xab\xcd" + b"q" * 10) == b"\xab\xcd" + b"q" * 10


@pytest.mark.parametrize("path", ["/error", "/redirect", "/empty", "/slow"])
def test_client_exchange_failure_is_none(stub_server, path):
    client = DoHClient(stub_server + path, timeout_ms=200)
    assert client.exchange(b"\x00\x01query") is None


def test_client_exchange_unreachable_is_none():
    client = DoHClient(f"http://127.0.0.1:{_free_port()}/dns-query", timeout_ms=300)
    assert client.exchange(b"\x00\x01") is None


def test_client_exchange_bad_scheme_is_none():
    assert DoHClient("gopher://example.com/").exchange(b"\x00\x01") is None
