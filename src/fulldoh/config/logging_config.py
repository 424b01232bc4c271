from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class BracketLevelFormatter(logging.Formatter):
    """Formatter with bracketed lowercase level tags and UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        """Format the record's creation time as UTC ISO-8601 with Z suffix."""
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output; syslog stamps the time itself."""

    def format(self, record):
        return f"{_level_tag(record.levelno)} {record.name}: {record.getMessage()}"


def _syslog_address(raw: Any) -> Union[str, Tuple[str, int]]:
    """
    Brief: Turn a configured syslog address into a SysLogHandler address.

    Inputs:
      - raw: '/dev/log'-style socket path or 'host:port' string.

    Outputs:
      - str path or (host, port) tuple.
    """
    text = str(raw or "/dev/log")
    if not text.startswith("/") and ":" in text:
        host, _, port = text.rpartition(":")
        return host, int(port)
    return text


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    opts = syslog_cfg if isinstance(syslog_cfg, dict) else {}
    facility = getattr(
        logging.handlers.SysLogHandler,
        f"LOG_{str(opts.get('facility', 'USER')).upper()}",
        logging.handlers.SysLogHandler.LOG_USER,
    )
    handler = logging.handlers.SysLogHandler(
        address=_syslog_address(opts.get("address")), facility=facility
    )
    handler.setFormatter(SyslogFormatter())
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Initialize root logging from the ``logging:`` config block.

    Args:
        cfg: mapping with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: log to stderr (default: True)
            - file: path of a log file to append to
            - syslog: True, or {"address": "/dev/log" | "host:port",
              "facility": "daemon"}

    Example config:
        {"level": "debug", "stderr": True, "file": "./fulldoh.log"}
    """
    cfg = cfg or {}

    level = _LEVELS.get(str(cfg.get("level", "info")).lower(), logging.INFO)
    formatter = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            root.addHandler(_syslog_handler(syslog_cfg))
        except (OSError, ValueError) as e:
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
