from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List, Optional

from .config.config_parser import load_config
from .config.logging_config import init_logging
from .servers.server import DNSProxyServer


def _install_signal_handlers(shutdown_event: threading.Event) -> None:
    """
    Brief: Route SIGTERM/SIGINT to a shutdown event.

    Inputs:
      - shutdown_event: set when a termination signal arrives.

    Outputs:
      - None. Handlers can only be installed from the main thread; elsewhere
        (for example when main() runs inside a test thread) this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        return

    def _handler(signum, _frame):
        logging.getLogger("fulldoh.main").info(
            "Received %s, shutting down", signal.Signals(signum).name
        )
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def main(
    argv: List[str] | None = None,
    *,
    shutdown_event: Optional[threading.Event] = None,
) -> int:
    """
    Main entry point for the DoH proxy.
    Parses arguments, loads configuration, starts the UDP and TCP listeners
    and keeps them running until a termination signal.

    Args:
        argv: Command-line arguments.
        shutdown_event: Optional event that stops the server when set; one is
            created (and wired to SIGTERM/SIGINT) when omitted.

    Returns:
        An exit code: 0 on clean shutdown, 1 on bad configuration or when no
        listener could be started.

    Example use:
        CLI:
            fulldoh --config config.yaml
            PYTHONPATH=src python -m fulldoh.main
    """
    parser = argparse.ArgumentParser(
        description="Local DNS proxy forwarding UDP/TCP queries to a DoH endpoint"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config (built-in defaults are used when omitted)",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as exc:
        print(str(exc))
        return 1

    init_logging(config.logging)
    logger = logging.getLogger("fulldoh.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)
    logger.info(
        "Starting FullDoH on port %d; upstream %s, timeout %dms, %d workers",
        config.port,
        config.doh_url,
        config.timeout_ms,
        config.workers,
    )

    if shutdown_event is None:
        shutdown_event = threading.Event()
        _install_signal_handlers(shutdown_event)

    server = DNSProxyServer(config)
    if server.start() == 0:
        logger.error("No listener could be started; exiting")
        server.stop()
        return 1

    logger.info("Startup Completed")
    try:
        while not shutdown_event.is_set():
            if not server.is_running():
                logger.error("All listener threads exited unexpectedly")
                return 1
            shutdown_event.wait(1.0)
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
    finally:
        server.stop()
        logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
