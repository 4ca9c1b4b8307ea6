"""
High-level session for one OpenFIRE light gun.

:class:`DeviceSession` owns the transport, the protocol and the settings
model, and runs the connection state machine::

    DISCONNECTED -> PROBING -> LOADING -> IDLE <-> ACTIVE
                                          IDLE <-> TEST_MODE

Only one solicited exchange may be in flight.  Everything that expects a
reply runs inside :meth:`DeviceSession._exclusive`, which moves the
session to ACTIVE, suspends the heartbeat, and puts both back afterwards.
Between operations the caller drives :meth:`DeviceSession.poll` to pick
up unsolicited notifications and send the heartbeat; no background
thread is involved.

Usage::

    from openfire_config import DeviceSession, BoolFlag

    with DeviceSession() as gun:          # connects to the first OpenFIRE port
        gun.set_bool(BoolFlag.SOLENOID, True)
        if gun.can_commit:
            gun.commit()
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum

from . import diff
from .boards import BoardPreset, InputFunction, presets_for
from .commit import ProgressCallback, run_commit
from .config import SessionConfig
from .constants import CMD_TEST_LED, CMD_TEST_RUMBLE, CMD_TEST_SOLENOID, UPDATED_PROFILE_LINES
from .exceptions import (
    BusyError,
    CommitError,
    ConnectionError,
    MalformedReplyError,
    OpenFireError,
    StateError,
    ValidationError,
)
from .model import BoardIdentity, BoolFlag, IRSensitivity, ProfileField, Setting, SettingsModel
from .notifications import (
    Notification,
    NotificationKind,
    TrackingFrame,
    classify,
    complete_profile_update,
    parse_tracking,
)
from .protocol import OpenFireProtocol
from .transport import SerialTransport, find_ports

logger = logging.getLogger(__name__)

Listener = Callable[[Notification], None]


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    PROBING = "probing"
    LOADING = "loading"
    IDLE = "idle"
    ACTIVE = "active"
    TEST_MODE = "test_mode"


# States in which the link is up and no request is in flight.
_READY_STATES = (SessionState.IDLE, SessionState.TEST_MODE)


def _is_link_failure(exc: BaseException) -> bool:
    if isinstance(exc, ConnectionError):
        return True
    return isinstance(exc, CommitError) and isinstance(exc.__cause__, ConnectionError)


class DeviceSession:
    """Connection, state machine and settings model for one device.

    Args:
        config: Timeouts, port and framing options.  Defaults apply when
            omitted.
        clock: Monotonic time source; tests pass a fake.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or SessionConfig()
        self.model = SettingsModel()
        self._clock = clock
        self._state = SessionState.DISCONNECTED
        self._transport: SerialTransport | None = None
        self._protocol: OpenFireProtocol | None = None
        self._heartbeat_due: float | None = None
        self._listeners: list[Listener] = []
        self._dispatching = False

        self.pressed: set[InputFunction] = set()
        self.temperature: int | None = None
        self.analog_direction: int | None = None
        self.tracking: TrackingFrame | None = None

    # -- Context manager ----------------------------------------------------

    def __enter__(self) -> DeviceSession:
        if self._state is SessionState.DISCONNECTED:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    # -- Properties ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def board(self) -> BoardIdentity:
        return self.model.board

    @property
    def is_connected(self) -> bool:
        return self._state is not SessionState.DISCONNECTED

    @property
    def port(self) -> str | None:
        return self._transport.port if self._transport else None

    @property
    def wire_format(self):
        """Framing negotiated with the device (``None`` when disconnected)."""
        return self._protocol.wire_format if self._protocol else None

    def ports(self) -> list[str]:
        """Serial ports that look like OpenFIRE devices."""
        return find_ports(self.config.vendor_id)

    # -- Connection ---------------------------------------------------------

    def connect(self, port: str | None = None) -> BoardIdentity:
        """Open *port*, identify the device and load its settings.

        Falls back to the configured port, then to the first port whose
        vendor id matches.

        Raises:
            StateError: If already connected.
            ConnectionError: If no port is available or it cannot be opened.
            TimeoutError: If the device does not answer a step in time.
            MalformedReplyError: If a reply is not what the step expects.

        On any failure the port is closed, the session is DISCONNECTED,
        and the model keeps whatever it held before the attempt.
        """
        if self._state is not SessionState.DISCONNECTED:
            raise StateError(f"Already connected to {self.port}")

        port = port or self.config.port
        if not port:
            candidates = self.ports()
            if not candidates:
                raise ConnectionError("No OpenFIRE device found; pass a port explicitly")
            port = candidates[0]

        transport = SerialTransport(
            port,
            baudrate=self.config.baudrate,
            write_timeout=self.config.write_timeout,
            terminator=self.config.terminator,
            clock=self._clock,
        )
        transport.open()
        self._transport = transport
        self._protocol = OpenFireProtocol(
            transport,
            wire_format=self.config.wire_format,
            read_timeout=self.config.read_timeout,
            probe_timeout=self.config.probe_timeout,
            clear_timeout=self.config.clear_timeout,
            save_attempts=self.config.save_confirm_attempts,
        )

        try:
            self._set_state(SessionState.PROBING)
            identity = self._protocol.probe()
            self._set_state(SessionState.LOADING)
            usb = self._protocol.read_identity()
            snapshot = self._protocol.load(identity.board, usb)
        except OpenFireError as exc:
            logger.error("Connection to %s failed: %s", port, exc)
            self._teardown(reset_model=False)
            raise

        self.model.populate(identity, snapshot)
        self._clear_readings()
        self._set_state(SessionState.IDLE)
        self._schedule_heartbeat()
        return self.model.board

    def reload(self) -> None:
        """Re-read every setting from the device, discarding unsaved edits.

        The model is replaced only once the whole load succeeded.
        """
        self._require_loaded()
        with self._exclusive("reload") as protocol:
            usb = protocol.read_identity()
            snapshot = protocol.load(self.model.board.board, usb)
        board = self.model.board
        self.model.populate(
            dataclasses.replace(board, previous_profile=board.selected_profile), snapshot
        )
        logger.info("Reloaded settings from %s", self.port)

    def disconnect(self) -> None:
        """Release the device and close the port (safe to call repeatedly)."""
        if self._state is SessionState.DISCONNECTED:
            return
        if self._state in _READY_STATES and self._protocol is not None:
            try:
                self._protocol.undock()
            except ConnectionError as exc:
                logger.warning("Undock failed, closing anyway: %s", exc)
        self._teardown()

    # -- Polling ------------------------------------------------------------

    def poll(self, timeout: float = 0.0) -> list[Notification]:
        """Process incoming lines and send the heartbeat when it is due.

        Waits up to *timeout* for the first line, then handles every line
        already buffered.  In test mode lines update :attr:`tracking`
        instead of producing notifications.

        Raises:
            ConnectionError: If the link dropped; the session is then
                DISCONNECTED.
        """
        if self._state not in _READY_STATES:
            return []
        assert self._transport is not None

        try:
            self._heartbeat()
            return self._process_lines(timeout)
        except ConnectionError as exc:
            logger.error("Lost connection to %s: %s", self.port, exc)
            self._teardown()
            raise

    def _process_lines(self, timeout: float) -> list[Notification]:
        """Route every line received while ready to tracking or notifications."""
        assert self._transport is not None
        notifications: list[Notification] = []
        line = self._transport.read_line(timeout)
        while line is not None:
            if self._state is SessionState.TEST_MODE:
                frame = parse_tracking(line)
                if frame is not None:
                    self.tracking = frame
            else:
                notification = self._handle_line(line)
                if notification is not None:
                    notifications.append(notification)
            if self._state not in _READY_STATES:
                break  # a listener disconnected
            line = self._transport.read_line(0)
        return notifications

    def add_listener(self, listener: Listener) -> None:
        """Call *listener* with every notification :meth:`poll` decodes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def _handle_line(self, line: str) -> Notification | None:
        notification = classify(line)
        if notification is None:
            return None

        kind = notification.kind
        if kind is NotificationKind.PROFILE_UPDATED:
            notification = self._finish_profile_update(notification)
            if notification is None:
                return None
        elif kind is NotificationKind.PROFILE_CHANGED:
            self.model.board.selected_profile = notification.value
            logger.info("Device switched to profile %d", notification.value + 1)
        elif kind is NotificationKind.PRESSED:
            self.pressed.add(notification.function)
        elif kind is NotificationKind.RELEASED:
            self.pressed.discard(notification.function)
        elif kind is NotificationKind.TEMPERATURE:
            self.temperature = notification.value
        elif kind is NotificationKind.ANALOG:
            self.analog_direction = notification.value

        # Requests are refused while listeners run.
        self._dispatching = True
        try:
            for listener in list(self._listeners):
                listener(notification)
        finally:
            self._dispatching = False
        return notification

    def _finish_profile_update(self, header: Notification) -> Notification | None:
        assert self._transport is not None
        lines: list[str] = []
        for _ in range(UPDATED_PROFILE_LINES):
            line = self._transport.read_line(self.config.read_timeout)
            if line is None:
                logger.warning(
                    "Profile %d update cut short after %d line(s); ignoring it",
                    header.value + 1,
                    len(lines),
                )
                return None
            lines.append(line)
        try:
            notification = complete_profile_update(header, lines)
            ir = IRSensitivity(notification.ir_sensitivity)
        except (MalformedReplyError, ValueError) as exc:
            logger.warning("Dropping profile %d update: %s", header.value + 1, exc)
            return None
        self.model.apply_profile_update(notification.value, list(notification.offsets), ir)
        logger.info("Profile %d recalibrated: offsets %s", header.value + 1, notification.offsets)
        return notification

    # -- Commit -------------------------------------------------------------

    def diff_count(self) -> int:
        """Number of fields that differ from what the device holds."""
        return diff.compute_diff(self.model)

    def changed_fields(self) -> list[str]:
        return diff.diff_fields(self.model)

    @property
    def can_commit(self) -> bool:
        return self._state in _READY_STATES and self.diff_count() > 0

    def commit(self, progress: ProgressCallback | None = None) -> int:
        """Write every setting to the device and save it to flash.

        Returns the number of acknowledged steps.

        Raises:
            StateError: If there is nothing to commit.
            CommitError: If a write or the save fails; see
                :class:`~openfire_config.exceptions.CommitError`.
        """
        self._require_loaded()
        if self.diff_count() == 0:
            raise StateError("Nothing to commit")
        with self._exclusive("commit") as protocol:
            return run_commit(protocol, self.model, progress)

    # -- Edits --------------------------------------------------------------

    def set_bool(self, flag: BoolFlag, value: bool) -> None:
        self._require_loaded()
        self.model.set_bool(flag, value)

    def set_setting(self, setting: Setting, value: int) -> None:
        self._require_loaded()
        self.model.set_setting(setting, value)

    def set_custom_pins(self, enabled: bool) -> None:
        self._require_loaded()
        self.model.set_custom_pins(enabled)

    def assign_pin(self, pin: int, function: InputFunction) -> None:
        self._require_loaded()
        self.model.assign_pin(pin, function)

    def presets(self) -> tuple[BoardPreset, ...]:
        return presets_for(self.model.board.board)

    def apply_preset(self, index: int) -> None:
        self._require_loaded()
        self.model.apply_preset(index)

    def set_profile_field(self, slot: int, field: ProfileField, value) -> None:
        self._require_loaded()
        self.model.set_profile_field(slot, field, value)

    def set_usb_id(self, product_id: str) -> None:
        self._require_loaded()
        self.model.set_usb_id(product_id)

    def set_usb_name(self, name: str) -> None:
        self._require_loaded()
        self.model.set_usb_name(name)

    def snapshot(self) -> dict:
        """Plain-data dump of the current settings."""
        return self.model.snapshot()

    # -- Device control -----------------------------------------------------

    def select_profile(self, slot: int) -> None:
        """Make profile *slot* (0-based) the active one on the device."""
        with self._exclusive("select profile") as protocol:
            protocol.select_profile(slot)
        self.model.select_profile(slot)

    def calibrate_profile(self, slot: int) -> None:
        """Start on-gun calibration of profile *slot*.

        The results arrive later as an ``UpdatedProf`` notification
        through :meth:`poll`.
        """
        with self._exclusive("start calibration") as protocol:
            protocol.start_calibration(slot)

    def toggle_test_mode(self) -> bool:
        """Enter or leave test mode; return ``True`` if now in test mode."""
        leaving = self._state is SessionState.TEST_MODE
        with self._exclusive("toggle test mode") as protocol:
            if leaving:
                protocol.exit_test_mode()
                entered = False
            else:
                entered = protocol.enter_test_mode()
        if entered:
            self.pressed.clear()
        else:
            self.tracking = None
        self._set_state(SessionState.TEST_MODE if entered else SessionState.IDLE)
        return entered

    def test_rumble(self) -> None:
        self._pulse(CMD_TEST_RUMBLE, "test rumble")

    def test_solenoid(self) -> None:
        self._pulse(CMD_TEST_SOLENOID, "test solenoid")

    def test_led(self, color: str) -> None:
        """Flash the RGB LED *color* (``red``, ``green`` or ``blue``)."""
        try:
            cmd = CMD_TEST_LED[color]
        except KeyError as err:
            raise ValidationError(
                f"LED color must be one of {sorted(CMD_TEST_LED)}, got {color!r}"
            ) from err
        self._pulse(cmd, f"test {color} LED")

    def clear_storage(self) -> None:
        """Erase every saved setting on the device, then disconnect.

        The board must be power-cycled afterwards.
        """
        with self._exclusive("clear storage") as protocol:
            protocol.clear_storage()
            protocol.undock()
        logger.info("Device storage cleared")
        self._teardown()

    def reset_to_bootloader(self) -> None:
        """Release the device and reboot it into its USB bootloader."""
        with self._exclusive("reset to bootloader") as protocol:
            protocol.undock()
            assert self._transport is not None
            self._transport.touch_bootloader()
        self._teardown()

    # -- Internal -----------------------------------------------------------

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[OpenFireProtocol]:
        """Hold ACTIVE for one solicited exchange.

        Lines that arrived since the last :meth:`poll` are handled first
        (listeners see them as usual) so none is mistaken for a reply.

        Raises:
            BusyError: If another exchange is already in flight, or a
                listener called from :meth:`poll` issues a request.
            StateError: If the session is not connected and ready.
        """
        if self._state is SessionState.ACTIVE or self._dispatching:
            raise BusyError(f"Cannot {operation}: another request is in flight")
        self._require_ready(operation)
        try:
            self._process_lines(0)
        except ConnectionError as exc:
            logger.error("Lost connection to %s before %s: %s", self.port, operation, exc)
            self._teardown()
            raise
        self._require_ready(operation)
        assert self._protocol is not None

        resume = self._state
        self._set_state(SessionState.ACTIVE)
        self._heartbeat_due = None
        try:
            yield self._protocol
        except OpenFireError as exc:
            if _is_link_failure(exc):
                logger.error("Lost connection to %s during %s: %s", self.port, operation, exc)
                self._teardown()
            raise
        finally:
            if self._state is SessionState.ACTIVE:
                self._set_state(resume)
                self._schedule_heartbeat()

    def _pulse(self, cmd: str, operation: str) -> None:
        with self._exclusive(operation) as protocol:
            protocol.send(cmd)

    def _heartbeat(self) -> None:
        if self._state is not SessionState.IDLE or self._heartbeat_due is None:
            return
        if self._clock() < self._heartbeat_due:
            return
        assert self._protocol is not None
        self._protocol.ping()
        self._schedule_heartbeat()

    def _schedule_heartbeat(self) -> None:
        interval = self.config.heartbeat_interval
        self._heartbeat_due = self._clock() + interval if interval > 0 else None

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug("Session %s -> %s", self._state.value, state.value)
            self._state = state

    def _require_ready(self, operation: str) -> None:
        if self._state not in _READY_STATES:
            raise StateError(f"Cannot {operation} while {self._state.value}")

    def _require_loaded(self) -> None:
        if not self.model.is_loaded:
            raise StateError("No device loaded; connect first")

    def _clear_readings(self) -> None:
        self.pressed.clear()
        self.temperature = None
        self.analog_direction = None
        self.tracking = None

    def _teardown(self, reset_model: bool = True) -> None:
        """Close the link.  Only a failed connect keeps the model it started with."""
        if self._transport is not None:
            self._transport.close()
        self._transport = None
        self._protocol = None
        self._heartbeat_due = None
        self._set_state(SessionState.DISCONNECTED)
        logger.info("Session disconnected")
        if reset_model:
            self.model.reset()
            self._clear_readings()


# ---------------------------------------------------------------------------
# Convenience factory
# ---------------------------------------------------------------------------


def get_session(port: str | None = None, config: SessionConfig | None = None) -> DeviceSession:
    """Return a session for *port* (use as a context manager).

    Example::

        with get_session("/dev/ttyACM0") as gun:
            print(gun.board.label)
    """
    config = config or SessionConfig()
    if port is not None:
        config = dataclasses.replace(config, port=port)
    return DeviceSession(config)
