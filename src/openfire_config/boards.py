"""
Board variants, logical input functions, and built-in pin layouts.

Every supported microcontroller board is described purely as data: a
wire token, a human label, a 30-entry table of ``(function, PinKind)``
pairs describing the fixed firmware layout, and a list of pin presets.
Nothing outside this module branches on the board type.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .constants import PIN_COUNT
from .exceptions import ValidationError


class BoardType(IntEnum):
    """Closed set of board variants reported by the probe."""

    NOTHING = 0
    RPIPICO = 1
    ADAFRUIT_ITSY_RP2040 = 2
    ADAFRUIT_KB2040 = 3
    ARDUINO_NANO_RP2040 = 4
    WAVESHARE_ZERO = 5
    GENERIC = 255


class InputFunction(IntEnum):
    """Logical input/output functions a pin can carry.

    Values match the firmware's numbering; ``Pressed:<n>`` notifications
    and pin write commands use them directly.
    """

    UNMAPPED = 0
    TRIGGER = 1
    GUN_A = 2
    GUN_B = 3
    GUN_C = 4
    START = 5
    SELECT = 6
    GUN_UP = 7
    GUN_DOWN = 8
    GUN_LEFT = 9
    GUN_RIGHT = 10
    PEDAL = 11
    PEDAL_2 = 12
    HOME = 13
    PUMP = 14
    RUMBLE_PIN = 15
    SOLENOID_PIN = 16
    RUMBLE_SWITCH = 17
    SOLENOID_SWITCH = 18
    AUTOFIRE_SWITCH = 19
    LED_R = 20
    LED_G = 21
    LED_B = 22
    NEOPIXEL = 23
    CAM_SDA = 24
    CAM_SCL = 25
    PERIPH_SDA = 26
    PERIPH_SCL = 27
    ANALOG_X = 28
    ANALOG_Y = 29
    TEMP_PIN = 30


ASSIGNABLE_FUNCTIONS = tuple(f for f in InputFunction if f is not InputFunction.UNMAPPED)

# Marker for pins the board does not expose.
RESERVED = -1


class PinKind(IntEnum):
    """Electrical capability of a physical pin."""

    NONE = 0
    DIGITAL = 1
    ANALOG = 2


@dataclass(frozen=True)
class BoardPreset:
    """A named, built-in pin mapping shortcut."""

    name: str
    assignments: dict[InputFunction, int]


@dataclass(frozen=True)
class BoardLayout:
    """Fixed description of one board variant."""

    board: BoardType
    token: str
    label: str
    pins: tuple[tuple[int, PinKind], ...]
    extra_presets: tuple[BoardPreset, ...] = ()

    @property
    def reserved_pins(self) -> frozenset[int]:
        """Pins that cannot carry any function on this board."""
        return frozenset(pin for pin, (func, _) in enumerate(self.pins) if func == RESERVED)

    def pin_kind(self, pin: int) -> PinKind:
        return self.pins[pin][1]

    def default_assignments(self) -> dict[InputFunction, int]:
        """Return the firmware's fixed layout as a function → pin mapping."""
        return {
            InputFunction(func): pin
            for pin, (func, _) in enumerate(self.pins)
            if func > InputFunction.UNMAPPED
        }

    @property
    def presets(self) -> tuple[BoardPreset, ...]:
        """The board's default layout followed by any extra presets."""
        return (BoardPreset("Default", self.default_assignments()), *self.extra_presets)


F = InputFunction
D = PinKind.DIGITAL
A = PinKind.ANALOG
N = PinKind.NONE
_U = F.UNMAPPED

_RPIPICO_PINS = (
    (F.GUN_A, D), (F.GUN_B, D), (F.GUN_C, D), (F.START, D),
    (F.SELECT, D), (F.HOME, D), (F.GUN_UP, D), (F.GUN_DOWN, D),
    (F.GUN_LEFT, D), (F.GUN_RIGHT, D), (F.LED_R, D), (F.LED_G, D),
    (F.LED_B, D), (F.PUMP, D), (F.PEDAL, D), (F.TRIGGER, D),
    (F.SOLENOID_PIN, D), (F.RUMBLE_PIN, D), (_U, D), (_U, D),
    (F.CAM_SCL, D), (F.CAM_SDA, D), (_U, D), (RESERVED, N),
    (RESERVED, N), (RESERVED, N), (_U, A), (_U, A),
    (_U, A), (RESERVED, N),
)  # fmt: skip

_ITSY_RP2040_PINS = (
    (F.GUN_UP, D), (F.GUN_DOWN, D), (F.CAM_SDA, D), (F.CAM_SCL, D),
    (F.GUN_LEFT, D), (F.GUN_RIGHT, D), (F.TRIGGER, D), (F.GUN_A, D),
    (F.GUN_B, D), (F.GUN_C, D), (F.START, D), (F.SELECT, D),
    (F.PEDAL, D), (RESERVED, N), (RESERVED, N), (RESERVED, N),
    (RESERVED, N), (RESERVED, N), (_U, D), (_U, D),
    (_U, D), (RESERVED, N), (RESERVED, N), (RESERVED, N),
    (F.RUMBLE_PIN, D), (F.SOLENOID_PIN, D), (_U, A), (_U, A),
    (_U, A), (_U, A),
)  # fmt: skip

_KB2040_PINS = (
    (_U, D), (_U, D), (F.CAM_SDA, D), (F.CAM_SCL, D),
    (F.GUN_B, D), (F.RUMBLE_PIN, D), (F.GUN_C, D), (F.SOLENOID_PIN, D),
    (F.SELECT, D), (F.START, D), (F.GUN_RIGHT, D), (RESERVED, N),
    (RESERVED, N), (RESERVED, N), (RESERVED, N), (RESERVED, N),
    (RESERVED, N), (RESERVED, N), (F.GUN_UP, D), (F.GUN_LEFT, D),
    (F.GUN_DOWN, D), (RESERVED, N), (RESERVED, N), (RESERVED, N),
    (RESERVED, N), (RESERVED, N), (F.TEMP_PIN, A), (F.HOME, A),
    (F.TRIGGER, A), (F.GUN_A, A),
)  # fmt: skip

_NANO_RP2040_PINS = (
    (F.TRIGGER, D), (F.PEDAL, D), (RESERVED, N), (RESERVED, N),
    (F.GUN_A, D), (F.GUN_C, D), (_U, D), (F.GUN_B, D),
    (RESERVED, N), (RESERVED, N), (RESERVED, N), (RESERVED, N),
    (F.CAM_SDA, D), (F.CAM_SCL, D), (RESERVED, N), (_U, D),
    (_U, D), (_U, D), (_U, D), (_U, D),
    (_U, D), (_U, D), (RESERVED, N), (RESERVED, N),
    (RESERVED, N), (_U, D), (_U, A), (_U, A),
    (_U, A), (_U, A),
)  # fmt: skip

_WAVESHARE_ZERO_PINS = (
    (F.TRIGGER, D), (F.GUN_A, D), (F.GUN_B, D), (F.GUN_C, D),
    (F.START, D), (F.SELECT, D), (_U, D), (_U, D),
    (_U, D), (_U, D), (_U, D), (_U, D),
    (_U, D), (_U, D), (F.CAM_SDA, D), (F.CAM_SCL, D),
    (F.SOLENOID_PIN, D), (F.RUMBLE_PIN, D), (_U, D), (_U, D),
    (_U, D), (_U, D), (RESERVED, N), (RESERVED, N),
    (RESERVED, N), (_U, D), (_U, A), (_U, A),
    (_U, A), (F.TEMP_PIN, A),
)  # fmt: skip

# 23, 24 and 25 are usually unexposed on generic RP2040 boards.
_GENERIC_PINS = tuple((_U, D) for _ in range(23)) + (
    (RESERVED, N), (RESERVED, N), (RESERVED, N),
    (_U, A), (_U, A), (_U, A), (_U, A),
)  # fmt: skip

_RPIPICO_COMPACT = BoardPreset(
    "Compact",
    {
        F.TRIGGER: 15,
        F.GUN_A: 0,
        F.GUN_B: 1,
        F.START: 2,
        F.SELECT: 3,
        F.PEDAL: 14,
        F.SOLENOID_PIN: 16,
        F.RUMBLE_PIN: 17,
        F.CAM_SCL: 20,
        F.CAM_SDA: 21,
    },
)

_RPIPICO_ANALOG = BoardPreset(
    "Analog Stick",
    {
        F.TRIGGER: 15,
        F.GUN_A: 0,
        F.GUN_B: 1,
        F.GUN_C: 2,
        F.START: 3,
        F.SELECT: 4,
        F.HOME: 5,
        F.SOLENOID_PIN: 16,
        F.RUMBLE_PIN: 17,
        F.CAM_SCL: 20,
        F.CAM_SDA: 21,
        F.ANALOG_X: 26,
        F.ANALOG_Y: 27,
        F.TEMP_PIN: 28,
    },
)

BOARD_LAYOUTS: dict[BoardType, BoardLayout] = {
    layout.board: layout
    for layout in (
        BoardLayout(
            BoardType.RPIPICO,
            "rpipico",
            "Raspberry Pi Pico",
            _RPIPICO_PINS,
            (_RPIPICO_COMPACT, _RPIPICO_ANALOG),
        ),
        BoardLayout(
            BoardType.ADAFRUIT_ITSY_RP2040,
            "adafruitItsyRP2040",
            "Adafruit ItsyBitsy RP2040",
            _ITSY_RP2040_PINS,
        ),
        BoardLayout(
            BoardType.ADAFRUIT_KB2040,
            "adafruitKB2040",
            "Adafruit Keeboar KB2040",
            _KB2040_PINS,
        ),
        BoardLayout(
            BoardType.ARDUINO_NANO_RP2040,
            "arduinoNanoRP2040",
            "Arduino Nano RP2040 Connect",
            _NANO_RP2040_PINS,
        ),
        BoardLayout(
            BoardType.WAVESHARE_ZERO,
            "waveshareZero",
            "Waveshare RP2040 Zero",
            _WAVESHARE_ZERO_PINS,
        ),
        BoardLayout(BoardType.GENERIC, "generic", "Generic RP2040", _GENERIC_PINS),
    )
}

# A board that never probed still needs something to hang an empty PinMap on.
BOARD_LAYOUTS[BoardType.NOTHING] = BoardLayout(
    BoardType.NOTHING, "", "No board", tuple((RESERVED, N) for _ in range(PIN_COUNT))
)

_BY_TOKEN = {layout.token: layout.board for layout in BOARD_LAYOUTS.values() if layout.token}


def board_from_token(token: str) -> BoardType | None:
    """Map a probe board token to a :class:`BoardType`, or ``None`` if unknown."""
    return _BY_TOKEN.get(token.strip())


def layout_for(board: BoardType) -> BoardLayout:
    return BOARD_LAYOUTS[board]


def presets_for(board: BoardType) -> tuple[BoardPreset, ...]:
    """Return the presets available for *board*."""
    return layout_for(board).presets


def preset(board: BoardType, index: int) -> BoardPreset:
    """Return preset *index* for *board*.

    Raises:
        ValidationError: If the board has no such preset.
    """
    presets = presets_for(board)
    if not (0 <= index < len(presets)):
        raise ValidationError(
            f"Preset must be 0-{len(presets) - 1} for {layout_for(board).label}, got {index}"
        )
    return presets[index]
