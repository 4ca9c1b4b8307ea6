"""
Session configuration loaded from a YAML file.

Every key is optional; a missing file section falls back to the
defaults in :mod:`constants`::

    from openfire_config.config import load_config

    config = load_config("config/openfire.yaml")
    with DeviceSession(config) as session:   # connects on entry
        print(session.board.label)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from .codec import WireFormat
from .constants import (
    DEFAULT_BAUD,
    DEFAULT_CLEAR_TIMEOUT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_SAVE_ATTEMPTS,
    DEFAULT_VENDOR_ID,
    DEFAULT_WRITE_TIMEOUT,
)
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

_TIMEOUT_KEYS = ("probe_timeout", "read_timeout", "write_timeout", "clear_timeout")


@dataclass(frozen=True)
class SessionConfig:
    """Tunables for one :class:`~openfire_config.session.DeviceSession`."""

    port: str | None = None
    baudrate: int = DEFAULT_BAUD
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    write_timeout: float = DEFAULT_WRITE_TIMEOUT
    clear_timeout: float = DEFAULT_CLEAR_TIMEOUT
    save_confirm_attempts: int = DEFAULT_SAVE_ATTEMPTS
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    wire_format: WireFormat = WireFormat.AUTO
    vendor_id: int | None = DEFAULT_VENDOR_ID
    terminator: bytes = b""


def load_config(path: str | Path) -> SessionConfig:
    """Load and validate a session configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        A validated :class:`SessionConfig`.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValidationError: If the config is malformed or contains invalid values.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    unknown = set(raw) - set(SessionConfig.__dataclass_fields__)
    if unknown:
        raise ValidationError(f"Unknown config key(s): {sorted(unknown)}")

    values: dict = {}

    port = raw.get("port")
    if port is not None and (not isinstance(port, str) or not port):
        raise ValidationError("'port' must be a non-empty string")
    values["port"] = port

    if "baudrate" in raw:
        values["baudrate"] = _require_positive_int(raw, "baudrate")
    if "save_confirm_attempts" in raw:
        values["save_confirm_attempts"] = _require_positive_int(raw, "save_confirm_attempts")

    for key in _TIMEOUT_KEYS:
        if key in raw:
            values[key] = _require_number(raw, key, allow_zero=False)
    if "heartbeat_interval" in raw:
        values["heartbeat_interval"] = _require_number(raw, "heartbeat_interval", allow_zero=True)

    if "wire_format" in raw:
        try:
            values["wire_format"] = WireFormat(raw["wire_format"])
        except ValueError as exc:
            raise ValidationError(
                f"'wire_format' must be one of {[w.value for w in WireFormat]}, "
                f"got {raw['wire_format']!r}"
            ) from exc

    if "vendor_id" in raw:
        vid = raw["vendor_id"]
        valid = isinstance(vid, int) and not isinstance(vid, bool) and 0 <= vid <= 0xFFFF
        if vid is not None and not valid:
            raise ValidationError(f"'vendor_id' must be 0-0xFFFF or null, got {vid!r}")
        values["vendor_id"] = vid

    if "terminator" in raw:
        term = raw["terminator"]
        if not isinstance(term, str):
            raise ValidationError(f"'terminator' must be a string, got {type(term).__name__}")
        values["terminator"] = term.encode("ascii")

    config = SessionConfig(**values)
    logger.debug("Loaded config from %s: %s", path, config)
    return config


def _require_positive_int(data: dict, key: str) -> int:
    val = data.get(key)
    if not isinstance(val, int) or isinstance(val, bool) or val <= 0:
        raise ValidationError(f"'{key}' must be a positive integer, got {val!r}")
    return val


def _require_number(data: dict, key: str, allow_zero: bool) -> float:
    val = data.get(key)
    if not isinstance(val, (int, float)) or isinstance(val, bool):
        raise ValidationError(f"'{key}' must be a number, got {val!r}")
    if val < 0 or (val == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise ValidationError(f"'{key}' must be {bound}, got {val!r}")
    return float(val)
