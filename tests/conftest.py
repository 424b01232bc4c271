"""
Brief: Global pytest configuration: src/ on sys.path, 10s per-test timeout and
shared helpers for exercising the listeners without a real DoH upstream.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys
import threading
import time

import pytest

# Ensure 'src' is on sys.path so 'fulldoh' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from dnslib import DNSRecord  # noqa: E402

from fulldoh.config.config_parser import ProxyConfig  # noqa: E402
from fulldoh.servers.pool import WorkerPool  # noqa: E402
from fulldoh.servers.server import DNSProxyServer  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


def make_query(name="example.com", qtype="A", qid=0x1234) -> bytes:
    """Brief: Pack a recursion-desired query with a fixed transaction ID."""
    q = DNSRecord.question(name, qtype)
    q.header.id = qid
    q.header.rd = 1
    return q.pack()


def make_answer(query: bytes, padding: int = 0) -> bytes:
    """Brief: Build a NOERROR reply to ``query``; ``padding`` TXT bytes enlarge it."""
    from dnslib import QTYPE, RR, TXT, A

    req = DNSRecord.parse(query)
    reply = req.reply()
    reply.add_answer(RR(str(req.q.qname), QTYPE.A, rdata=A("192.0.2.1"), ttl=60))
    remaining = padding
    while remaining > 0:
        chunk = min(remaining, 200)
        reply.add_answer(
            RR(str(req.q.qname), QTYPE.TXT, rdata=TXT("x" * chunk), ttl=60)
        )
        remaining -= chunk
    return reply.pack()


class FakeDoHClient:
    """
    Brief: Stand-in for DoHClient recording every query it is handed.

    Inputs:
      - response: bytes, None (failure), or callable(query) -> bytes | None
      - delay: seconds to sleep before answering
    """

    def __init__(self, response=None, delay: float = 0.0):
        self.response = response
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def exchange(self, query: bytes):
        with self._lock:
            self.calls.append(query)
        if self.delay:
            time.sleep(self.delay)
        if callable(self.response):
            return self.response(query)
        return self.response


@pytest.fixture
def fake_client():
    return FakeDoHClient()


@pytest.fixture
def running_proxy(fake_client):
    """
    Brief: DNSProxyServer on 127.0.0.1 with UDP and TCP on ephemeral ports.

    Inputs:
      - fake_client: FakeDoHClient the proxy forwards to

    Outputs:
      - started DNSProxyServer; stopped on teardown
    """
    cfg = ProxyConfig(host="127.0.0.1", port=0, workers=4)
    proxy = DNSProxyServer(cfg, client=fake_client, pool=WorkerPool(cfg.workers))
    assert proxy.start() == 2
    try:
        yield proxy
    finally:
        proxy.stop()
