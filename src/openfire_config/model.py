"""
Settings model: the editable *current* configuration and the *shadow*
copy of what the device last reported or accepted.

All edits go through :class:`SettingsModel`, which validates them before
touching state.  The model never talks to the device; the session loads
it and commits it, and :mod:`diff` compares its two copies.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import IntEnum

from .boards import BoardType, InputFunction, layout_for
from .constants import (
    BOOL_COUNT,
    MAX_COLOR,
    PROFILE_COUNT,
    PROFILE_FIELD_COUNT,
    PROFILE_NAME_MAX,
    SETTINGS_COUNT,
)
from .exceptions import MalformedReplyError, StateError, ValidationError
from .pins import PinMap

logger = logging.getLogger(__name__)

USB_NAME_MAX = 15
USB_ID_MAX = 0xFFFF

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class BoolFlag(IntEnum):
    """Boolean feature toggles, in wire order."""

    CUSTOM_PINS = 0
    RUMBLE = 1
    SOLENOID = 2
    AUTOFIRE = 3
    SIMPLE_PAUSE = 4
    HOLD_TO_PAUSE = 5
    COMMON_ANODE = 6
    LOW_BUTTONS_MODE = 7
    RUMBLE_FF = 8


class Setting(IntEnum):
    """Unsigned numeric tunables, in wire order."""

    RUMBLE_STRENGTH = 0
    RUMBLE_INTERVAL = 1
    SOLENOID_NORMAL_INTERVAL = 2
    SOLENOID_FAST_INTERVAL = 3
    SOLENOID_HOLD_LENGTH = 4
    AUTOFIRE_WAIT_FACTOR = 5
    HOLD_TO_PAUSE_LENGTH = 6
    LED_COUNT = 7
    STATIC_LED_MODE = 8
    STATIC_COLOR_1 = 9
    STATIC_COLOR_2 = 10
    STATIC_COLOR_3 = 11


SETTING_LIMITS: dict[Setting, int] = {
    Setting.RUMBLE_STRENGTH: 255,
    Setting.RUMBLE_INTERVAL: 0xFFFF,
    Setting.SOLENOID_NORMAL_INTERVAL: 0xFFFF,
    Setting.SOLENOID_FAST_INTERVAL: 0xFFFF,
    Setting.SOLENOID_HOLD_LENGTH: 0xFFFF,
    Setting.AUTOFIRE_WAIT_FACTOR: 255,
    Setting.HOLD_TO_PAUSE_LENGTH: 0xFFFF,
    Setting.LED_COUNT: 255,
    Setting.STATIC_LED_MODE: 255,
    Setting.STATIC_COLOR_1: MAX_COLOR,
    Setting.STATIC_COLOR_2: MAX_COLOR,
    Setting.STATIC_COLOR_3: MAX_COLOR,
}


class IRSensitivity(IntEnum):
    DEFAULT = 0
    HIGHER = 1
    HIGHEST = 2


class RunMode(IntEnum):
    NORMAL = 0
    AVERAGE_1_FRAME = 1
    AVERAGE_2_FRAME = 2


class Layout(IntEnum):
    SQUARE = 0
    DIAMOND = 1


class ProfileField(IntEnum):
    """Fields of a calibration profile, in wire order."""

    TOP_OFFSET = 0
    BOTTOM_OFFSET = 1
    LEFT_OFFSET = 2
    RIGHT_OFFSET = 3
    TL_LED = 4
    TR_LED = 5
    IR_SENSITIVITY = 6
    RUN_MODE = 7
    LAYOUT = 8
    COLOR = 9
    NAME = 10


# Results of on-device calibration; readable, never edited from the host.
CALIBRATION_FIELDS = frozenset(
    {
        ProfileField.TOP_OFFSET,
        ProfileField.BOTTOM_OFFSET,
        ProfileField.LEFT_OFFSET,
        ProfileField.RIGHT_OFFSET,
        ProfileField.TL_LED,
        ProfileField.TR_LED,
    }
)
EDITABLE_PROFILE_FIELDS = tuple(f for f in ProfileField if f not in CALIBRATION_FIELDS)
_OFFSET_FIELDS = (
    ProfileField.TOP_OFFSET,
    ProfileField.BOTTOM_OFFSET,
    ProfileField.LEFT_OFFSET,
    ProfileField.RIGHT_OFFSET,
)

_PROFILE_ATTRS = {
    ProfileField.TOP_OFFSET: "top_offset",
    ProfileField.BOTTOM_OFFSET: "bottom_offset",
    ProfileField.LEFT_OFFSET: "left_offset",
    ProfileField.RIGHT_OFFSET: "right_offset",
    ProfileField.TL_LED: "tl_led",
    ProfileField.TR_LED: "tr_led",
    ProfileField.IR_SENSITIVITY: "ir_sensitivity",
    ProfileField.RUN_MODE: "run_mode",
    ProfileField.LAYOUT: "layout",
    ProfileField.COLOR: "color",
    ProfileField.NAME: "name",
}

# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass
class BoardIdentity:
    """What the probe reported about the connected board."""

    board: BoardType = BoardType.NOTHING
    version: float = 0.0
    codename: str = ""
    selected_profile: int = 0
    previous_profile: int = 0

    @property
    def label(self) -> str:
        return layout_for(self.board).label


@dataclass
class UsbIdentity:
    """TinyUSB product id and product name."""

    product_id: str = ""
    product_name: str = ""

    @property
    def product_id_hex(self) -> str:
        """Product id rendered the way USB tools show it (e.g. ``0x0f01``).

        A non-decimal id reported by the device is shown as-is.
        """
        if not self.product_id.isdigit():
            return self.product_id
        return f"0x{int(self.product_id) & USB_ID_MAX:04x}"


@dataclass
class CalibrationProfile:
    """One of the four on-device calibration profiles."""

    top_offset: int = 0
    bottom_offset: int = 0
    left_offset: int = 0
    right_offset: int = 0
    tl_led: int = 0
    tr_led: int = 0
    ir_sensitivity: IRSensitivity = IRSensitivity.DEFAULT
    run_mode: RunMode = RunMode.NORMAL
    layout: Layout = Layout.SQUARE
    color: int = 0
    name: str = ""

    @classmethod
    def from_fields(cls, fields: list[str], slot: int) -> CalibrationProfile:
        """Parse the 11 fields of an ``XlP<slot>`` reply.

        Raises:
            MalformedReplyError: If a numeric field does not parse or an
                enum field is out of range.
        """
        if len(fields) != PROFILE_FIELD_COUNT:
            raise MalformedReplyError(
                f"Profile {slot}: expected {PROFILE_FIELD_COUNT} fields, got {len(fields)}"
            )
        try:
            numbers = [int(f) for f in fields[: ProfileField.NAME]]
            return cls(
                *numbers[: ProfileField.IR_SENSITIVITY],
                ir_sensitivity=IRSensitivity(numbers[ProfileField.IR_SENSITIVITY]),
                run_mode=RunMode(numbers[ProfileField.RUN_MODE]),
                layout=Layout(numbers[ProfileField.LAYOUT]),
                color=numbers[ProfileField.COLOR] & MAX_COLOR,
                name=fields[ProfileField.NAME],
            )
        except ValueError as exc:
            raise MalformedReplyError(f"Cannot parse profile {slot} from {fields!r}") from exc

    def get(self, field: ProfileField):
        return getattr(self, _PROFILE_ATTRS[field])

    def set(self, field: ProfileField, value) -> None:
        setattr(self, _PROFILE_ATTRS[field], value)


@dataclass
class SettingsSnapshot:
    """One full copy of device configuration (either current or shadow)."""

    bools: list[bool] = field(default_factory=lambda: [False] * BOOL_COUNT)
    settings: list[int] = field(default_factory=lambda: [0] * SETTINGS_COUNT)
    pins: PinMap = field(default_factory=lambda: PinMap.from_layout(BoardType.NOTHING))
    profiles: list[CalibrationProfile] = field(
        default_factory=lambda: [CalibrationProfile() for _ in range(PROFILE_COUNT)]
    )
    usb: UsbIdentity = field(default_factory=UsbIdentity)

    @property
    def custom_pins(self) -> bool:
        return self.bools[BoolFlag.CUSTOM_PINS]

    def copy(self) -> SettingsSnapshot:
        return copy.deepcopy(self)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate_slot(slot: int) -> None:
    if not (0 <= slot < PROFILE_COUNT):
        raise ValidationError(f"Profile slot must be 0-{PROFILE_COUNT - 1}, got {slot}")


def _validate_text(text: str, limit: int, label: str) -> None:
    if len(text) > limit:
        raise ValidationError(f"{label} must be at most {limit} characters, got {len(text)}")
    if not (text.isascii() and text.isprintable()):
        raise ValidationError(f"{label} must be printable ASCII, got {text!r}")


def _coerce_profile_value(field: ProfileField, value):
    """Validate *value* for *field* and return it in its stored type."""
    try:
        if field is ProfileField.IR_SENSITIVITY:
            return IRSensitivity(value)
        if field is ProfileField.RUN_MODE:
            return RunMode(value)
        if field is ProfileField.LAYOUT:
            return Layout(value)
    except ValueError as err:
        raise ValidationError(f"Invalid {field.name.lower()} {value!r}") from err
    if field is ProfileField.COLOR:
        if not (isinstance(value, int) and 0 <= value <= MAX_COLOR):
            raise ValidationError(f"Color must be 0-{MAX_COLOR:#08x}, got {value!r}")
        return value
    if field is ProfileField.NAME:
        _validate_text(value, PROFILE_NAME_MAX, "Profile name")
        return value
    raise ValidationError(f"{field.name} is set by on-device calibration and cannot be edited")


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class SettingsModel:
    """Current and shadow configuration for one connected device."""

    def __init__(self) -> None:
        self.board = BoardIdentity()
        self.current = SettingsSnapshot()
        self.shadow = SettingsSnapshot()

    # -- Lifecycle ----------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self.board.board is not BoardType.NOTHING

    def populate(self, board: BoardIdentity, snapshot: SettingsSnapshot) -> None:
        """Install a freshly loaded device state as both current and shadow."""
        self.board = copy.copy(board)
        self.current = snapshot.copy()
        self.shadow = snapshot.copy()

    def reset(self) -> None:
        """Drop everything and return to the empty start-up state."""
        self.board = BoardIdentity()
        self.current = SettingsSnapshot()
        self.shadow = SettingsSnapshot()

    def sync(self) -> None:
        """Promote current to shadow after the device accepted it."""
        self.shadow = self.current.copy()
        self.board.previous_profile = self.board.selected_profile

    # -- Booleans & settings ------------------------------------------------

    def set_bool(self, flag: BoolFlag, value: bool) -> None:
        flag = BoolFlag(flag)
        if flag is BoolFlag.CUSTOM_PINS:
            self.set_custom_pins(value)
            return
        self.current.bools[flag] = bool(value)

    def set_setting(self, setting: Setting, value: int) -> None:
        setting = Setting(setting)
        limit = SETTING_LIMITS[setting]
        if not (isinstance(value, int) and 0 <= value <= limit):
            raise ValidationError(f"{setting.name.lower()} must be 0-{limit}, got {value!r}")
        self.current.settings[setting] = value

    # -- Pins ---------------------------------------------------------------

    def set_custom_pins(self, enabled: bool) -> None:
        """Switch between the board's fixed layout and a custom pin map.

        Leaving custom mode rebuilds the map from the fixed layout table;
        entering it keeps the fixed assignment as the starting point.
        """
        enabled = bool(enabled)
        if enabled == self.current.custom_pins:
            return
        self.current.bools[BoolFlag.CUSTOM_PINS] = enabled
        if enabled:
            self.current.pins = self.current.pins.copy()
        else:
            self.current.pins = PinMap.from_layout(self.board.board)
        logger.debug("Custom pins %s", "enabled" if enabled else "disabled")

    def assign_pin(self, pin: int, function: InputFunction) -> None:
        self._require_custom_pins()
        self.current.pins.assign(pin, function)

    def apply_preset(self, index: int) -> None:
        self._require_custom_pins()
        self.current.pins.apply_preset(self.board.board, index)

    def _require_custom_pins(self) -> None:
        if not self.current.custom_pins:
            raise ValidationError("Pins follow the board's fixed layout; enable custom pins first")

    # -- Profiles -----------------------------------------------------------

    def set_profile_field(self, slot: int, field: ProfileField, value) -> None:
        _validate_slot(slot)
        field = ProfileField(field)
        self.current.profiles[slot].set(field, _coerce_profile_value(field, value))

    def select_profile(self, slot: int) -> None:
        _validate_slot(slot)
        self.board.selected_profile = slot

    def apply_profile_update(self, slot: int, offsets: list[int], ir: IRSensitivity) -> None:
        """Record fresh calibration results reported by the device.

        The device already holds these values, so they land in both
        current and shadow.
        """
        _validate_slot(slot)
        self.board.selected_profile = slot
        for snapshot in (self.current, self.shadow):
            profile = snapshot.profiles[slot]
            for field, value in zip(_OFFSET_FIELDS, offsets):
                profile.set(field, value)
            profile.ir_sensitivity = ir

    # -- USB identity -------------------------------------------------------

    def set_usb_id(self, product_id: str) -> None:
        product_id = product_id.strip()
        if product_id and not (product_id.isdigit() and int(product_id) <= USB_ID_MAX):
            raise ValidationError(f"USB product id must be 0-{USB_ID_MAX}, got {product_id!r}")
        self.current.usb.product_id = product_id

    def set_usb_name(self, name: str) -> None:
        _validate_text(name, USB_NAME_MAX, "USB product name")
        self.current.usb.product_name = name

    # -- Export -------------------------------------------------------------

    def snapshot(self) -> dict:
        """Return the current state as plain data (for YAML/JSON export)."""
        if not self.is_loaded:
            raise StateError("No device state loaded")
        cur = self.current
        return {
            "board": {
                "type": layout_for(self.board.board).token,
                "version": self.board.version,
                "codename": self.board.codename,
                "selected_profile": self.board.selected_profile,
            },
            "bools": {flag.name.lower(): cur.bools[flag] for flag in BoolFlag},
            "settings": {s.name.lower(): cur.settings[s] for s in Setting},
            "pins": {f.name.lower(): p for f, p in sorted(cur.pins.assignments().items())},
            "profiles": [
                {f.name.lower(): _plain(p.get(f)) for f in ProfileField} for p in cur.profiles
            ],
            "usb": {"product_id": cur.usb.product_id, "product_name": cur.usb.product_name},
        }


def _plain(value):
    return int(value) if isinstance(value, IntEnum) else value
