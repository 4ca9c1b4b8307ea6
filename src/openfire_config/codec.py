"""
Line codec for the OpenFIRE serial protocol.

Turns the raw byte stream into trimmed text lines, renders commands to
bytes, and splits replies into fields.  Two wire formats exist:

* :attr:`WireFormat.CSV` — every multi-field reply is one comma-separated
  line (current firmware).
* :attr:`WireFormat.LINES` — every field arrives on its own line (older
  firmware).

The codec owns no I/O; :mod:`transport` feeds it bytes and :mod:`protocol`
asks it how to frame fields.
"""

from __future__ import annotations

from enum import Enum

from .exceptions import ProtocolMismatchError

_LINE_END = b"\n"
_ENCODING = "ascii"


class WireFormat(str, Enum):
    """Field framing used by the connected firmware."""

    AUTO = "auto"
    CSV = "csv"
    LINES = "lines"


class LineBuffer:
    """Accumulates raw bytes and hands back complete lines.

    Partial lines stay buffered until their terminator arrives, so a read
    that ends mid-line never loses or splits data.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    def feed(self, data: bytes) -> None:
        self._buf += data

    def pop_line(self) -> str | None:
        """Return the next complete line (decoded, trimmed) or ``None``."""
        idx = self._buf.find(_LINE_END)
        if idx == -1:
            return None
        raw = bytes(self._buf[:idx])
        del self._buf[: idx + 1]
        return decode_line(raw)

    def clear(self) -> None:
        self._buf.clear()

    def __len__(self) -> int:
        return len(self._buf)


def decode_line(raw: bytes) -> str:
    """Decode one raw line, dropping CR/LF and surrounding whitespace."""
    return raw.decode(_ENCODING, errors="replace").strip()


def encode_command(cmd: str, terminator: bytes = b"") -> bytes:
    """Render *cmd* as bytes for the wire."""
    return cmd.encode(_ENCODING, errors="replace") + terminator


def split_fields(line: str, count: int, what: str, *, absorb_tail: bool = False) -> list[str]:
    """Split a comma-separated *line* into exactly *count* trimmed fields.

    With *absorb_tail* the last field keeps any further commas, which is
    how free-text fields (profile names) are carried.

    Raises:
        ProtocolMismatchError: If the field count does not match.
    """
    maxsplit = count - 1 if absorb_tail else -1
    fields = [f.strip() for f in line.split(",", maxsplit)]
    if len(fields) != count:
        raise ProtocolMismatchError(
            f"Expected {count} fields for {what}, got {len(fields)}: {line!r}"
        )
    return fields
