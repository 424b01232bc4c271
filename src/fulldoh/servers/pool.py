"""Bounded worker pool shared by the UDP and TCP listeners."""

from __future__ import annotations

import logging
import socketserver
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger("fulldoh.pool")


class WorkerPool:
    """
    Fixed-size pool that runs every per-query task.

    Inputs:
      - workers: maximum number of tasks running at once (>= 1).
    Outputs:
      - submit(fn, *args) -> Future; work beyond ``workers`` waits in the
        executor queue instead of being rejected.

    Example:
      >>> pool = WorkerPool(2)
      >>> pool.submit(sum, [1, 2]).result()
      3
      >>> pool.shutdown()
    """

    def __init__(self, workers: int = 8):
        self.workers = max(1, int(workers))
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="fulldoh-worker"
        )

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        return self._executor.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)


class PooledServerMixIn:
    """
    socketserver mix-in that hands each request to a WorkerPool.

    Replaces ThreadingMixIn's thread-per-request with pool submission so that
    serve_forever() returns to recv/accept immediately. Exceptions raised
    while handling one request go through handle_error() and never reach the
    serving loop.
    """

    pool: WorkerPool

    def process_request_thread(self, request, client_address) -> None:
        try:
            self.finish_request(request, client_address)
        except Exception:
            self.handle_error(request, client_address)
        finally:
            self.shutdown_request(request)

    def process_request(self, request, client_address) -> None:
        self.pool.submit(self.process_request_thread, request, client_address)

    def handle_error(self, request, client_address) -> None:
        logger.exception("Unhandled error while serving %s", client_address)


class PooledUDPServer(PooledServerMixIn, socketserver.UDPServer):
    pass


class PooledTCPServer(PooledServerMixIn, socketserver.TCPServer):
    allow_reuse_address = True
