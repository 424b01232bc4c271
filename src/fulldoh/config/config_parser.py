"""Configuration loading for FullDoH.

Brief:
  Reads the optional YAML config file, validates it against the JSON Schema
  and folds it into a frozen ProxyConfig. The ProxyConfig is built once at
  startup and handed to every component; nothing mutates it afterwards.

Inputs:
  - Path to a YAML file, or an already-parsed mapping.

Outputs:
  - ProxyConfig
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from .config_schema import validate_config

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 53
DEFAULT_DOH_URL = "https://dns.google/dns-query"
DEFAULT_TIMEOUT_MS = 4000
DEFAULT_WORKERS = 8
DEFAULT_UDP_BUFFER_SIZE = 4096


@dataclass(frozen=True)
class ProxyConfig:
    """Immutable runtime settings consumed by the listeners and DoH client."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    udp_enabled: bool = True
    tcp_enabled: bool = True
    udp_buffer_size: int = DEFAULT_UDP_BUFFER_SIZE
    doh_url: str = DEFAULT_DOH_URL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    tls_verify: bool = True
    ca_file: Optional[str] = None
    workers: int = DEFAULT_WORKERS
    logging: Dict[str, Any] = field(default_factory=dict, compare=False)


def _section(cfg: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = cfg.get(key)
    return value if isinstance(value, dict) else {}


def build_config(cfg: Optional[Dict[str, Any]]) -> ProxyConfig:
    """
    Brief: Build a ProxyConfig from a validated config mapping.

    Inputs:
      - cfg: mapping shaped like config.yaml (None or {} means defaults).

    Outputs:
      - ProxyConfig with every omitted key at its default.

    Example:
      >>> build_config({'listen': {'port': 5353}}).port
      5353
    """
    cfg = cfg or {}
    listen = _section(cfg, "listen")
    udp = _section(listen, "udp")
    tcp = _section(listen, "tcp")
    upstream = _section(cfg, "upstream")
    tls = _section(upstream, "tls")

    ca_file = tls.get("ca_file")
    return ProxyConfig(
        host=str(listen.get("host", DEFAULT_HOST)),
        port=int(listen.get("port", DEFAULT_PORT)),
        udp_enabled=bool(udp.get("enabled", True)),
        tcp_enabled=bool(tcp.get("enabled", True)),
        udp_buffer_size=int(udp.get("buffer_size", DEFAULT_UDP_BUFFER_SIZE)),
        doh_url=str(upstream.get("url", DEFAULT_DOH_URL)),
        timeout_ms=int(upstream.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
        tls_verify=bool(tls.get("verify", True)),
        ca_file=str(ca_file) if ca_file else None,
        workers=int(cfg.get("workers", DEFAULT_WORKERS)),
        logging=dict(_section(cfg, "logging")),
    )


def load_config(path: Optional[str] = None) -> ProxyConfig:
    """
    Brief: Read, validate and normalize a YAML config file.

    Inputs:
      - path: YAML file path; None returns the built-in defaults.

    Outputs:
      - ProxyConfig

    Raises:
      - ValueError: unreadable file, invalid YAML, or schema violations.
    """
    if path is None:
        return build_config(None)

    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(cfg, dict):
        raise ValueError(f"Config file {path} must contain a mapping at top level")

    validate_config(cfg, config_path=path)
    return build_config(cfg)
