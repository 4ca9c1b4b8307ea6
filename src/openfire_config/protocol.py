"""
OpenFIRE serial protocol: command building, ack checking, and reply parsing.

This module sits between the transport (raw serial I/O) and the session
(state machine and user-facing API).  It knows how to:

* frame and parse multi-field replies for the negotiated wire format,
* run each read/write exchange of the probe, load and commit sequences,
* check write acknowledgements (``OK:``, ``NOENT:``),
* parse typed data out of reply lines.

It does **not** own the serial port — that belongs to
:class:`~openfire_config.transport.SerialTransport` — and it does not
track session state.
"""

from __future__ import annotations

import logging

from .boards import ASSIGNABLE_FUNCTIONS, BoardType, board_from_token
from .codec import WireFormat, split_fields
from .constants import (
    ACK_NOENT,
    ACK_OK,
    BOOL_COUNT,
    CMD_CLEAR,
    CMD_PAUSE,
    CMD_PING,
    CMD_PROBE,
    CMD_READ_BOOLS,
    CMD_READ_IDENTITY,
    CMD_READ_PINS,
    CMD_READ_PROFILE,
    CMD_READ_SETTINGS,
    CMD_SAVE,
    CMD_SELECT_PROFILE,
    CMD_TEST_MODE,
    CMD_UNDOCK,
    DEFAULT_CLEAR_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_SAVE_ATTEMPTS,
    DEVICE_IDENT,
    PROFILE_COUNT,
    PROFILE_FIELD_COUNT,
    REPLY_CLEARED,
    REPLY_SAVED,
    REPLY_SAVING,
    REPLY_TEST_MODE,
    SETTINGS_COUNT,
    USB_NAME_UNSET,
)
from .exceptions import (
    CommandError,
    MalformedReplyError,
    ProtocolMismatchError,
    TimeoutError,
    ValidationError,
)
from .model import BoardIdentity, BoolFlag, CalibrationProfile, SettingsSnapshot, UsbIdentity
from .pins import PinMap
from .transport import SerialTransport

logger = logging.getLogger(__name__)

_PROBE_FIELDS = 5
_IDENTITY_FIELDS = 2
# Upper bound on stray acks tolerated ahead of the save banner.
_MAX_SAVE_PREAMBLE = 64

# ---------------------------------------------------------------------------
# Ack checking
# ---------------------------------------------------------------------------


def _is_ack(line: str) -> bool:
    return line.startswith(ACK_OK) or line.startswith(ACK_NOENT)


def _expect_ack(response: str, cmd: str) -> str:
    """Assert that *response* acknowledges *cmd*; return it unmodified."""
    if response.startswith(ACK_NOENT):
        logger.warning("Device has no entry for %r: %s", cmd, response)
    elif not response.startswith(ACK_OK):
        raise CommandError(f"Expected OK/NOENT acknowledgement for '{cmd}', got: {response!r}")
    return response


# ---------------------------------------------------------------------------
# Parse helpers
# ---------------------------------------------------------------------------


def _parse_int(text: str, what: str) -> int:
    try:
        return int(text)
    except ValueError as exc:
        raise MalformedReplyError(f"Cannot parse {what} from {text!r}") from exc


def _parse_bool(text: str, what: str) -> bool:
    if text not in ("0", "1"):
        raise MalformedReplyError(f"Expected 0/1 for {what}, got {text!r}")
    return text == "1"


def parse_probe(fields: list[str]) -> BoardIdentity:
    """Build a :class:`BoardIdentity` from the five probe fields."""
    ident, version, codename, token, profile = fields
    if ident != DEVICE_IDENT:
        raise MalformedReplyError(f"Not an {DEVICE_IDENT} device (identity {ident!r})")
    try:
        version_number = float(version)
    except ValueError as exc:
        raise MalformedReplyError(f"Cannot parse firmware version from {version!r}") from exc
    board = board_from_token(token)
    if board is None:
        logger.warning("Unknown board token %r; treating as generic", token)
        board = BoardType.GENERIC
    selected = _parse_int(profile, "selected profile")
    if not (0 <= selected < PROFILE_COUNT):
        raise MalformedReplyError(f"Selected profile {selected} out of range")
    return BoardIdentity(
        board=board,
        version=version_number,
        codename=codename,
        selected_profile=selected,
        previous_profile=selected,
    )


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class OpenFireProtocol:
    """Builds commands, sends them via a transport, and parses replies.

    Args:
        transport: An open :class:`~openfire_config.transport.SerialTransport`.
        wire_format: Field framing; ``AUTO`` settles it during :meth:`probe`.
        read_timeout: Bound in seconds on each solicited line.
        probe_timeout: Bound in seconds on the probe reply.
        clear_timeout: Bound in seconds on the clear-storage reply.
        save_attempts: Extra reads allowed for the save confirmation.
    """

    def __init__(
        self,
        transport: SerialTransport,
        wire_format: WireFormat = WireFormat.AUTO,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        clear_timeout: float = DEFAULT_CLEAR_TIMEOUT,
        save_attempts: int = DEFAULT_SAVE_ATTEMPTS,
    ) -> None:
        self._tx = transport
        self.wire_format = WireFormat(wire_format)
        self.read_timeout = read_timeout
        self.probe_timeout = probe_timeout
        self.clear_timeout = clear_timeout
        self.save_attempts = save_attempts

    # -- Transport helpers --------------------------------------------------

    def _send(self, cmd: str) -> None:
        self._tx.write_command(cmd)

    def _read(self, what: str, timeout: float | None = None, skip_blank: bool = True) -> str:
        """Wait for one line or raise :class:`TimeoutError` naming *what*."""
        timeout = self.read_timeout if timeout is None else timeout
        line = self._tx.read_line(timeout, skip_blank)
        if line is None:
            raise TimeoutError(f"No reply to {what} within {timeout:g}s")
        return line

    def _read_fields(self, count: int, what: str, *, absorb_tail: bool = False) -> list[str]:
        """Read a *count*-field reply in the negotiated wire format."""
        if self.wire_format is WireFormat.LINES:
            return [
                self._read(f"{what} (field {i + 1}/{count})", skip_blank=False)
                for i in range(count)
            ]
        return split_fields(self._read(what), count, what, absorb_tail=absorb_tail)

    def _cmd_fields(self, cmd: str, count: int, what: str, **kwargs) -> list[str]:
        self._send(cmd)
        return self._read_fields(count, what, **kwargs)

    def _cmd_ack(self, cmd: str) -> str:
        """Send *cmd* and assert the device returns ``OK:``/``NOENT:``."""
        self._send(cmd)
        return _expect_ack(self._read(f"'{cmd}'"), cmd)

    # -- Identity -----------------------------------------------------------

    def probe(self) -> BoardIdentity:
        """Ask the device who it is, settling the wire format on the way.

        A comma in the first line means CSV framing; a bare identity string
        means the older one-field-per-line framing.
        """
        self._tx.drain()
        self._send(CMD_PROBE)
        first = self._read("probe", self.probe_timeout)

        detected = WireFormat.CSV if "," in first else WireFormat.LINES
        if self.wire_format is WireFormat.AUTO:
            self.wire_format = detected
            logger.debug("Wire format detected: %s", detected.value)
        elif self.wire_format is not detected:
            raise ProtocolMismatchError(
                f"Expected {self.wire_format.value} probe reply, got {first!r}"
            )

        if detected is WireFormat.CSV:
            fields = split_fields(first, _PROBE_FIELDS, "probe")
        else:
            if first != DEVICE_IDENT:
                raise MalformedReplyError(f"Not an {DEVICE_IDENT} device (reply {first!r})")
            rest = [
                self._read(f"probe (field {i + 2}/{_PROBE_FIELDS})", self.probe_timeout)
                for i in range(_PROBE_FIELDS - 1)
            ]
            fields = [first, *rest]
        identity = parse_probe(fields)
        logger.info(
            "Found %s v%s %r on %s (profile %d)",
            identity.label,
            identity.version,
            identity.codename,
            self._tx.port,
            identity.selected_profile + 1,
        )
        return identity

    def read_identity(self) -> UsbIdentity:
        product_id, name = self._cmd_fields(
            CMD_READ_IDENTITY, _IDENTITY_FIELDS, "USB identity", absorb_tail=True
        )
        if name == USB_NAME_UNSET:
            name = ""
        return UsbIdentity(product_id=product_id, product_name=name)

    # -- Load ---------------------------------------------------------------

    def read_bools(self) -> list[bool]:
        fields = self._cmd_fields(CMD_READ_BOOLS, BOOL_COUNT, "toggles")
        return [_parse_bool(f, BoolFlag(i).name.lower()) for i, f in enumerate(fields)]

    def read_pins(self, board: BoardType) -> PinMap:
        # One entry per assignable function, not per physical pin.
        fields = self._cmd_fields(CMD_READ_PINS, len(ASSIGNABLE_FUNCTIONS), "pin map")
        return PinMap.from_wire([_parse_int(f, "pin") for f in fields], board)

    def read_settings(self) -> list[int]:
        fields = self._cmd_fields(CMD_READ_SETTINGS, SETTINGS_COUNT, "settings")
        values = [_parse_int(f, "setting") for f in fields]
        if any(v < 0 for v in values):
            raise MalformedReplyError(f"Negative value in settings reply: {values!r}")
        return values

    def read_profile(self, slot: int) -> CalibrationProfile:
        fields = self._cmd_fields(
            f"{CMD_READ_PROFILE}{slot}",
            PROFILE_FIELD_COUNT,
            f"profile {slot + 1}",
            absorb_tail=True,
        )
        return CalibrationProfile.from_fields(fields, slot)

    def load(self, board: BoardType, usb: UsbIdentity) -> SettingsSnapshot:
        """Run the ordered load sequence and return a complete snapshot.

        Nothing is returned until every step succeeded, so a failure
        never yields a half-populated snapshot.
        """
        snapshot = SettingsSnapshot(usb=usb)
        snapshot.bools = self.read_bools()
        if snapshot.custom_pins:
            snapshot.pins = self.read_pins(board)
        else:
            snapshot.pins = PinMap.from_layout(board)
        snapshot.settings = self.read_settings()
        snapshot.profiles = [self.read_profile(slot) for slot in range(PROFILE_COUNT)]
        return snapshot

    # -- Commit -------------------------------------------------------------

    def pause_outputs(self) -> None:
        """Tell the gun to stop feedback output for the duration of a save."""
        self._send(CMD_PAUSE)
        self._tx.drain()

    def write_field(self, cmd: str) -> str:
        """Send one ``Xm.`` write command and check its acknowledgement."""
        return self._cmd_ack(cmd)

    def save(self) -> None:
        """Persist written values to flash and wait for confirmation.

        The device may finish acknowledging earlier writes, then prints
        ``Saving preferences...`` and, once flash is written, a
        ``Settings saved to ...`` line.

        Raises:
            CommandError: If an unexpected line arrives instead.
            TimeoutError: If the device goes quiet.
        """
        self._send(CMD_SAVE)
        for _ in range(_MAX_SAVE_PREAMBLE):
            line = self._read("save")
            if _is_ack(line):
                continue
            if REPLY_SAVING in line:
                break
            raise CommandError(f"Unexpected reply to save: {line!r}")
        else:
            raise CommandError("Save was never started by the device")

        heard: list[str] = []
        for _ in range(self.save_attempts):
            line = self._tx.read_line(self.read_timeout)
            if line is None:
                continue
            if REPLY_SAVED in line:
                logger.info("Device: %s", line)
                self._tx.drain()
                return
            heard.append(line)
        if heard:
            raise CommandError(f"Save not confirmed; device said {heard!r}")
        raise TimeoutError(f"Save not confirmed after {self.save_attempts} reads")

    # -- Control ------------------------------------------------------------

    def select_profile(self, slot: int) -> None:
        self._validate_slot(slot)
        self._send(f"{CMD_SELECT_PROFILE}{slot + 1}")

    def start_calibration(self, slot: int) -> None:
        self._validate_slot(slot)
        self._send(f"{CMD_SELECT_PROFILE}{slot + 1}C")

    def enter_test_mode(self) -> bool:
        """Toggle test mode and return ``True`` if the device entered it."""
        self._tx.drain()
        self._send(CMD_TEST_MODE)
        line = self._tx.read_line(self.read_timeout)
        return line == REPLY_TEST_MODE

    def exit_test_mode(self) -> None:
        self._send(CMD_TEST_MODE)
        self._tx.drain()

    def clear_storage(self) -> None:
        """Erase all saved settings on the device.

        Raises:
            MalformedReplyError: If the device does not confirm the erase.
        """
        self._tx.drain()
        self._send(CMD_CLEAR)
        line = self._read("clear storage", self.clear_timeout)
        if line != REPLY_CLEARED:
            raise MalformedReplyError(f"Unexpected reply to clear storage: {line!r}")

    def undock(self) -> None:
        """Release the device from configuration mode."""
        self._send(CMD_UNDOCK)
        self._tx.read_line(self.read_timeout)
        self._tx.drain()

    def send(self, cmd: str) -> None:
        """Send a command that expects no reply (pings, test pulses)."""
        self._send(cmd)

    def ping(self) -> None:
        self._send(CMD_PING)

    @staticmethod
    def _validate_slot(slot: int) -> None:
        if not (0 <= slot < PROFILE_COUNT):
            raise ValidationError(f"Profile slot must be 0-{PROFILE_COUNT - 1}, got {slot}")
