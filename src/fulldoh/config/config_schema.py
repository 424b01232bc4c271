"""JSON Schema-based validation for FullDoH YAML configuration.

This module loads and applies the JSON Schema stored under
``assets/config-schema.json``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)


def get_default_schema_path() -> Path:
    """Brief: Resolve the default JSON Schema path for configuration.

    Inputs:
      - None.

    Outputs:
      - Path to ``assets/config-schema.json``; the first ancestor directory of
        this module that holds one wins.
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate

    # Keeps the path in warnings meaningful when nothing was found.
    return here.parents[3] / "assets" / "config-schema.json"


def _load_schema(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        schema = json.load(f)
    Draft202012Validator.check_schema(schema)
    return schema


def _format_path(parts) -> str:
    return "/".join(str(p) for p in parts) or "<root>"


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = None,
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against JSON Schema.

    Inputs:
      - cfg: Dict loaded from YAML (top-level configuration mapping).
      - schema_path: Optional explicit schema path; defaults to
        ``assets/config-schema.json``.
      - config_path: Optional YAML path, used only in error messages.

    Outputs:
      - None on success.

    Raises:
      - ValueError: listing every violation with its instance path.

    Example:
      >>> validate_config({"listen": {"port": 5353}})
    """
    effective_schema_path = schema_path or get_default_schema_path()

    if not effective_schema_path.is_file():
        logger.warning(
            "Configuration schema file %s not found; skipping JSON Schema validation",
            effective_schema_path,
        )
        return None

    try:
        schema = _load_schema(effective_schema_path)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Failed to load or parse configuration schema at %s: %s; "
            "skipping JSON Schema validation",
            effective_schema_path,
            exc,
        )
        return None

    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(cfg), key=lambda e: _format_path(e.absolute_path))
    if not errors:
        return None

    source = config_path or "configuration"
    lines = [f"Invalid configuration in {source}:"]
    for err in errors:
        lines.append(f"  - {_format_path(err.absolute_path)}: {err.message}")
    raise ValueError("\n".join(lines))
