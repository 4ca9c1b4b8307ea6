"""
Classifier for lines the device sends without being asked.

While the session is idle the device reports button presses, profile
switches, finished calibrations, temperature and analog-stick direction.
In test mode it streams camera-tracking geometry instead.  Anything that
does not parse is dropped; a garbled line never ends the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .boards import InputFunction
from .constants import PROFILE_COUNT, TRACKING_POINTS, UPDATED_PROFILE_LINES
from .exceptions import MalformedReplyError

logger = logging.getLogger(__name__)


class NotificationKind(Enum):
    PRESSED = "pressed"
    RELEASED = "released"
    PROFILE_CHANGED = "profile_changed"
    PROFILE_UPDATED = "profile_updated"
    TEMPERATURE = "temperature"
    ANALOG = "analog"


# Tested in order; the first matching prefix wins.
_PREFIXES = (
    ("Pressed:", NotificationKind.PRESSED),
    ("Released:", NotificationKind.RELEASED),
    ("Profile: ", NotificationKind.PROFILE_CHANGED),
    ("UpdatedProf: ", NotificationKind.PROFILE_UPDATED),
    ("Temperature:", NotificationKind.TEMPERATURE),
    ("Analog:", NotificationKind.ANALOG),
)


@dataclass(frozen=True)
class Notification:
    """One decoded unsolicited message.

    ``function`` is set for button events; ``offsets`` and
    ``ir_sensitivity`` only for a completed ``UpdatedProf`` sequence.
    """

    kind: NotificationKind
    value: int
    function: InputFunction | None = None
    offsets: tuple[int, ...] = ()
    ir_sensitivity: int | None = None


@dataclass(frozen=True)
class Point:
    x: int
    y: int


@dataclass(frozen=True)
class TrackingFrame:
    """Camera-tracking geometry streamed while in test mode."""

    top_left: Point
    top_right: Point
    bottom_left: Point
    bottom_right: Point
    median: Point
    dot: Point

    @property
    def outline(self) -> list[Point]:
        """The four IR emitters as a closed polygon (TL, TR, BR, BL, TL)."""
        return [self.top_left, self.top_right, self.bottom_right, self.bottom_left, self.top_left]


def classify(line: str) -> Notification | None:
    """Decode an idle-state *line*, or return ``None`` if it is not a notification."""
    text = line.strip()
    for prefix, kind in _PREFIXES:
        if not text.startswith(prefix):
            continue
        try:
            value = int(text[len(prefix) :].strip())
        except ValueError:
            logger.warning("Dropping %s notification with bad payload: %r", kind.value, line)
            return None
        return _build(kind, value, line)
    logger.debug("Ignoring unrecognised idle line: %r", line)
    return None


def _build(kind: NotificationKind, value: int, line: str) -> Notification | None:
    if kind in (NotificationKind.PRESSED, NotificationKind.RELEASED):
        try:
            function = InputFunction(value)
        except ValueError:
            function = None
        if function is None or function is InputFunction.UNMAPPED:
            logger.warning("Dropping button event for unknown input: %r", line)
            return None
        return Notification(kind, value, function=function)
    if kind in (NotificationKind.PROFILE_CHANGED, NotificationKind.PROFILE_UPDATED):
        if not (0 <= value < PROFILE_COUNT):
            logger.warning("Dropping notification for nonexistent profile: %r", line)
            return None
    return Notification(kind, value)


def complete_profile_update(header: Notification, lines: list[str]) -> Notification:
    """Attach the follow-up lines of an ``UpdatedProf`` notification.

    *lines* are the four edge offsets (top, bottom, left, right) followed
    by the IR sensitivity the calibration ran with.

    Raises:
        MalformedReplyError: If the follow-up lines are missing or not integers.
    """
    if len(lines) != UPDATED_PROFILE_LINES:
        raise MalformedReplyError(
            f"Profile update needs {UPDATED_PROFILE_LINES} lines, got {len(lines)}"
        )
    try:
        values = [int(v) for v in lines]
    except ValueError as exc:
        raise MalformedReplyError(f"Cannot parse profile update from {lines!r}") from exc
    return Notification(
        header.kind,
        header.value,
        offsets=tuple(values[:4]),
        ir_sensitivity=values[4],
    )


def parse_tracking(line: str) -> TrackingFrame | None:
    """Decode a test-mode telemetry record, or ``None`` if it is malformed."""
    if "," not in line:
        return None
    parts = [p for p in line.strip().split(",") if p.strip()]
    if len(parts) != TRACKING_POINTS * 2:
        logger.debug("Dropping tracking record with %d fields: %r", len(parts), line)
        return None
    try:
        coords = [int(p) for p in parts]
    except ValueError:
        logger.debug("Dropping non-numeric tracking record: %r", line)
        return None
    points = [Point(coords[i], coords[i + 1]) for i in range(0, len(coords), 2)]
    return TrackingFrame(*points)
