"""
Test suite for the OpenFIRE configuration client against an emulated gun.

Organised by layer:

* **Transport** — serial I/O, line buffering, bounded reads
* **Protocol** — probe, framing detection, load reads, acks, save
* **Session** — state machine, load atomicity, commit, notifications,
  heartbeat, test mode, device control
* **Hardware** — integration tests against a real gun (skipped by default)

Run unit tests::

    pytest

Run hardware integration tests::

    pytest -m hardware
"""

from __future__ import annotations

import copy
from unittest.mock import MagicMock, patch

import pytest
import serial

from openfire_config import (
    BoardType,
    BoolFlag,
    BusyError,
    CommandError,
    CommitError,
    ConnectionError,
    DeviceSession,
    InputFunction,
    IRSensitivity,
    MalformedReplyError,
    NotificationKind,
    ProfileField,
    ProtocolMismatchError,
    SessionConfig,
    SessionState,
    Setting,
    StateError,
    TimeoutError,
    ValidationError,
    WireFormat,
)
from openfire_config.boards import ASSIGNABLE_FUNCTIONS
from openfire_config.transport import SerialTransport, find_ports

# ── Constants ─────────────────────────────────────────────────────────────

FAKE_PORT = "/dev/fake"
HARDWARE_PORT = "/dev/ttyACM0"
TRACKING_RECORD = "100,200,900,210,110,700,890,690,500,450,520,460"


def model_state(gun: DeviceSession):
    """Everything a failed operation must leave untouched."""
    return copy.deepcopy((gun.model.board, gun.model.current, gun.model.shadow))


# ══════════════════════════════════════════════════════════════════════════
#  Layer 1: Transport
# ══════════════════════════════════════════════════════════════════════════


class TestTransportConnection:
    """Opening, closing, and connection state."""

    def test_open_sets_is_open(self, transport):
        assert transport.is_open

    def test_open_asserts_dtr(self, transport, fake_serial):
        assert fake_serial.dtr is True

    def test_close_clears_flag(self, transport):
        transport.close()
        assert not transport.is_open

    def test_write_when_closed_raises(self, transport):
        transport.close()
        with pytest.raises(ConnectionError, match="not open"):
            transport.write_command("XP")

    def test_open_failure_raises_connection_error(self):
        with (
            patch(
                "openfire_config.transport.serial.Serial",
                side_effect=serial.SerialException("port busy"),
            ),
            pytest.raises(ConnectionError, match="Cannot open"),
        ):
            SerialTransport("/dev/nonexistent").open()

    def test_write_failure_raises_connection_error(self, transport, fake_serial):
        fake_serial.fail_writes = True
        with pytest.raises(ConnectionError, match="failed"):
            transport.write_command(".")


class TestTransportIO:
    """Command framing and bounded line reads."""

    def test_no_terminator_by_default(self, transport, fake_serial):
        transport.write_command("XP")
        assert fake_serial.written[-1] == b"XP"

    def test_configured_terminator(self, patched_serial, fake_serial, clock):
        tx = SerialTransport(FAKE_PORT, terminator=b"\n", clock=clock)
        tx.open()
        tx.write_command("Xlb")
        assert fake_serial.written[-1] == b"Xlb\n"

    def test_read_line_strips_crlf(self, transport, fake_serial):
        fake_serial.push("Pressed:1")
        assert transport.read_line(1.0) == "Pressed:1"

    def test_read_line_times_out(self, transport, clock):
        start = clock.now
        assert transport.read_line(0.5) is None
        assert clock.now - start == pytest.approx(0.5, abs=0.06)

    def test_delayed_line_within_bound(self, transport, fake_serial):
        fake_serial.push("Temperature:40", delay=0.3)
        assert transport.read_line(1.0) == "Temperature:40"

    def test_partial_line_held_until_complete(self, transport, fake_serial):
        fake_serial._rx += b"Analog:"
        assert transport.read_line(0.2) is None
        fake_serial._rx += b"3\r\n"
        assert transport.read_line(0.2) == "Analog:3"

    def test_lines_returned_in_order(self, transport, fake_serial):
        fake_serial.push("Pressed:1", "Released:1")
        assert transport.read_line(0) == "Pressed:1"
        assert transport.read_line(0) == "Released:1"
        assert transport.read_line(0) is None

    def test_blank_lines_skipped(self, transport, fake_serial):
        fake_serial.push("", "Analog:1")
        assert transport.read_line(1.0) == "Analog:1"

    def test_drain_discards_waiting_lines(self, transport, fake_serial):
        fake_serial.push("junk 1", "junk 2")
        assert transport.drain() == ["junk 1", "junk 2"]
        assert transport.read_line(0) is None

    def test_bootloader_touch(self, transport, fake_serial):
        transport.touch_bootloader()
        assert fake_serial.baudrate == 1200
        assert fake_serial.dtr is False
        assert not transport.is_open


class TestFindPorts:
    def _port(self, device, vid):
        p = MagicMock()
        p.device = device
        p.vid = vid
        return p

    def test_filters_on_vendor_id(self):
        ports = [self._port("/dev/ttyACM0", 0xF143), self._port("/dev/ttyUSB0", 0x0403)]
        with patch("openfire_config.transport.list_ports.comports", return_value=ports):
            assert find_ports(0xF143) == ["/dev/ttyACM0"]

    def test_none_lists_everything(self):
        ports = [self._port("/dev/ttyACM0", 0xF143), self._port("/dev/ttyS0", None)]
        with patch("openfire_config.transport.list_ports.comports", return_value=ports):
            assert find_ports(None) == ["/dev/ttyACM0", "/dev/ttyS0"]


# ══════════════════════════════════════════════════════════════════════════
#  Layer 2: Protocol
# ══════════════════════════════════════════════════════════════════════════


class TestProbe:
    def test_csv_probe(self, protocol):
        identity = protocol.probe()
        assert identity.board is BoardType.RPIPICO
        assert identity.version == 5.2
        assert identity.codename == "Dawn"
        assert identity.selected_profile == 0
        assert protocol.wire_format is WireFormat.CSV

    def test_lines_probe_detected(self, protocol, fake_serial):
        fake_serial.wire_format = "lines"
        identity = protocol.probe()
        assert protocol.wire_format is WireFormat.LINES
        assert identity.board is BoardType.RPIPICO

    def test_forced_format_mismatch(self, transport, fake_serial):
        from openfire_config.protocol import OpenFireProtocol

        fake_serial.wire_format = "lines"
        proto = OpenFireProtocol(transport, wire_format=WireFormat.CSV)
        with pytest.raises(ProtocolMismatchError):
            proto.probe()

    def test_unknown_board_is_generic(self, protocol, fake_serial):
        fake_serial.identity[3] = "esp32s3"
        assert protocol.probe().board is BoardType.GENERIC

    def test_not_openfire(self, protocol, fake_serial):
        fake_serial.script("XP", "Arduino,1.0,x,y,0")
        with pytest.raises(MalformedReplyError, match="Not an OpenFIRE"):
            protocol.probe()

    def test_bad_version(self, protocol, fake_serial):
        fake_serial.identity[1] = "v5"
        with pytest.raises(MalformedReplyError, match="version"):
            protocol.probe()

    def test_profile_out_of_range(self, protocol, fake_serial):
        fake_serial.identity[4] = "4"
        with pytest.raises(MalformedReplyError, match="out of range"):
            protocol.probe()

    def test_wrong_field_count(self, protocol, fake_serial):
        fake_serial.script("XP", "OpenFIRE,5.2,Dawn,rpipico")
        with pytest.raises(ProtocolMismatchError, match="Expected 5 fields"):
            protocol.probe()

    def test_stale_input_discarded_before_probe(self, protocol, fake_serial):
        fake_serial.push("Pressed:1")
        assert protocol.probe().codename == "Dawn"

    def test_timeout_names_step(self, protocol, fake_serial):
        fake_serial.silence("XP")
        with pytest.raises(TimeoutError, match="probe"):
            protocol.probe()


class TestLoadReads:
    def test_identity_unset_name(self, protocol):
        usb = protocol.read_identity()
        assert usb.product_id == "0"
        assert usb.product_name == ""

    def test_identity_name_with_comma(self, protocol, fake_serial):
        fake_serial.usb = ["3841", "Gun, Left"]
        assert protocol.read_identity().product_name == "Gun, Left"

    def test_bools(self, protocol):
        bools = protocol.read_bools()
        assert bools == [False, True, False, False, False, True, True, False, False]

    def test_bad_bool(self, protocol, fake_serial):
        fake_serial.bools[2] = 7
        with pytest.raises(MalformedReplyError, match="solenoid"):
            protocol.read_bools()

    def test_settings(self, protocol):
        assert protocol.read_settings()[Setting.HOLD_TO_PAUSE_LENGTH] == 2500

    def test_settings_short(self, protocol, fake_serial):
        fake_serial.script("Xls", "1,2,3")
        with pytest.raises(ProtocolMismatchError):
            protocol.read_settings()

    def test_profile_name_absorbs_commas(self, protocol, fake_serial):
        fake_serial.profiles[1][-1] = "Left, Red"
        assert protocol.read_profile(1).name == "Left, Red"

    def test_profile_enum_out_of_range(self, protocol, fake_serial):
        fake_serial.profiles[0][7] = "9"
        with pytest.raises(MalformedReplyError, match="profile 0"):
            protocol.read_profile(0)

    def test_pins(self, protocol, fake_serial):
        pins = protocol.read_pins(BoardType.RPIPICO)
        assert pins.pin_for(InputFunction.TRIGGER) == 15

    def test_pin_reply_has_one_entry_per_function(self, protocol, fake_serial):
        assert len(fake_serial.pins) == len(ASSIGNABLE_FUNCTIONS)
        assert protocol.read_pins(BoardType.RPIPICO).to_wire() == fake_serial.pins
        fake_serial.script("Xlp", ",".join(str(p) for p in fake_serial.pins[:-1]))
        expected = f"Expected {len(ASSIGNABLE_FUNCTIONS)} fields"
        with pytest.raises(ProtocolMismatchError, match=expected):
            protocol.read_pins(BoardType.RPIPICO)

    def test_load_skips_pins_in_default_layout(self, protocol, fake_serial):
        protocol.load(BoardType.RPIPICO, None)
        assert "Xlp" not in fake_serial.commands
        assert fake_serial.commands == ["Xlb", "Xls", "XlP0", "XlP1", "XlP2", "XlP3"]

    def test_load_reads_pins_in_custom_mode(self, protocol, fake_serial):
        fake_serial.bools[0] = 1
        fake_serial.pins[InputFunction.TRIGGER - 1] = 18
        fake_serial.pins[InputFunction.PUMP - 1] = -1
        snapshot = protocol.load(BoardType.RPIPICO, None)
        assert fake_serial.commands[:2] == ["Xlb", "Xlp"]
        assert snapshot.pins.pin_for(InputFunction.TRIGGER) == 18

    def test_lines_format_load(self, protocol, fake_serial):
        fake_serial.wire_format = "lines"
        fake_serial.profiles[3][-1] = ""
        protocol.probe()
        snapshot = protocol.load(BoardType.RPIPICO, protocol.read_identity())
        assert snapshot.settings[Setting.RUMBLE_STRENGTH] == 255
        assert snapshot.profiles[2].name == "Projector"
        assert snapshot.profiles[3].name == ""


class TestAcksAndSave:
    def test_ok_ack(self, protocol):
        assert protocol.write_field("Xm.0.1.1").startswith("OK:")

    def test_noent_ack_accepted(self, protocol):
        assert protocol.write_field("Xm.9.0.1").startswith("NOENT:")

    def test_unexpected_ack(self, protocol, fake_serial):
        fake_serial.script("Xm.0.1.1", "ERR: nope")
        with pytest.raises(CommandError, match="Expected OK/NOENT"):
            protocol.write_field("Xm.0.1.1")

    def test_save(self, protocol, fake_serial):
        protocol.save()
        assert fake_serial.saved

    def test_save_tolerates_trailing_acks(self, protocol, fake_serial):
        fake_serial.script(
            "XS", "OK: Xm.P.n.3.Spare", "Saving preferences...", "Settings saved to flash"
        )
        protocol.save()

    def test_save_confirmation_late(self, protocol, fake_serial):
        fake_serial.script("XS", "Saving preferences...")
        fake_serial.push("Settings saved to flash", delay=3.0)
        protocol.save()

    def test_save_never_confirmed(self, protocol, fake_serial):
        fake_serial.script("XS", "Saving preferences...")
        with pytest.raises(TimeoutError, match="Save not confirmed"):
            protocol.save()

    def test_save_wrong_banner(self, protocol, fake_serial):
        fake_serial.script("XS", "Error: flash busy")
        with pytest.raises(CommandError, match="Unexpected reply to save"):
            protocol.save()

    def test_select_profile_is_one_based(self, protocol, fake_serial):
        protocol.select_profile(2)
        assert fake_serial.commands[-1] == "XC3"

    def test_select_profile_validated(self, protocol, fake_serial):
        with pytest.raises(ValidationError):
            protocol.select_profile(4)
        assert fake_serial.commands == []


# ══════════════════════════════════════════════════════════════════════════
#  Layer 3: Session — connection
# ══════════════════════════════════════════════════════════════════════════


class TestSessionConnect:
    def test_connect_loads_everything(self, session):
        assert session.state is SessionState.IDLE
        assert session.board.board is BoardType.RPIPICO
        assert session.model.current.settings[Setting.RUMBLE_STRENGTH] == 255
        assert session.model.current.profiles[1].name == "Monitor"
        assert session.diff_count() == 0
        assert not session.can_commit

    def test_connect_command_order(self, patched_serial, fake_serial, clock):
        gun = DeviceSession(SessionConfig(port=FAKE_PORT), clock=clock)
        gun.connect()
        assert fake_serial.commands == ["XP", "Xli", "Xlb", "Xls", "XlP0", "XlP1", "XlP2", "XlP3"]

    def test_connect_twice_rejected(self, session):
        with pytest.raises(StateError, match="Already connected"):
            session.connect(FAKE_PORT)

    def test_probe_too_slow(self, patched_serial, fake_serial, clock):
        gun = DeviceSession(SessionConfig(port=FAKE_PORT), clock=clock)
        before = model_state(gun)
        fake_serial.script("XP", "OpenFIRE,5.2,Dawn,rpipico,0", delay=2.5)
        with pytest.raises(TimeoutError, match="probe"):
            gun.connect()
        assert gun.state is SessionState.DISCONNECTED
        assert model_state(gun) == before
        assert not fake_serial.is_open

    def test_load_failure_leaves_model_untouched(self, patched_serial, fake_serial, clock):
        gun = DeviceSession(SessionConfig(port=FAKE_PORT), clock=clock)
        before = model_state(gun)
        fake_serial.silence("XlP2")
        with pytest.raises(TimeoutError, match="profile 3"):
            gun.connect()
        assert gun.state is SessionState.DISCONNECTED
        assert model_state(gun) == before
        assert gun.board.board is BoardType.NOTHING

    def test_retry_after_failure(self, patched_serial, fake_serial, clock):
        gun = DeviceSession(SessionConfig(port=FAKE_PORT), clock=clock)
        fake_serial.silence("XP")
        with pytest.raises(TimeoutError):
            gun.connect()
        gun.connect()
        assert gun.state is SessionState.IDLE

    def test_no_port_found(self, clock):
        gun = DeviceSession(clock=clock)
        with (
            patch("openfire_config.session.find_ports", return_value=[]),
            pytest.raises(ConnectionError, match="No OpenFIRE device"),
        ):
            gun.connect()

    def test_autodetected_port(self, patched_serial, fake_serial, clock):
        gun = DeviceSession(clock=clock)
        with patch("openfire_config.session.find_ports", return_value=["/dev/ttyACM3"]):
            gun.connect()
        assert gun.port == "/dev/ttyACM3"

    def test_disconnect_undocks_and_resets(self, session, fake_serial):
        session.disconnect()
        assert fake_serial.commands == ["XE"]
        assert session.state is SessionState.DISCONNECTED
        assert not session.model.is_loaded
        session.disconnect()  # idempotent

    def test_context_manager(self, patched_serial, fake_serial, clock):
        with DeviceSession(SessionConfig(port=FAKE_PORT), clock=clock) as gun:
            assert gun.state is SessionState.IDLE
        assert gun.state is SessionState.DISCONNECTED
        assert fake_serial.commands[-1] == "XE"

    def test_edits_need_connection(self, clock):
        gun = DeviceSession(clock=clock)
        with pytest.raises(StateError, match="connect first"):
            gun.set_bool(BoolFlag.RUMBLE, True)


class TestSessionReload:
    def test_reload_discards_edits(self, session):
        session.set_setting(Setting.LED_COUNT, 40)
        session.reload()
        assert session.model.current.settings[Setting.LED_COUNT] == 1
        assert session.diff_count() == 0
        assert session.state is SessionState.IDLE

    def test_reload_handles_pending_notifications(self, session, fake_serial):
        seen = []
        session.add_listener(seen.append)
        fake_serial.push("Pressed:1", "Temperature:39")
        session.reload()
        assert fake_serial.commands[0] == "Xli"
        assert InputFunction.TRIGGER in session.pressed
        assert session.temperature == 39
        assert [n.kind for n in seen] == [NotificationKind.PRESSED, NotificationKind.TEMPERATURE]
        assert session.state is SessionState.IDLE

    def test_pending_tracking_consumed_before_pulse(self, session, fake_serial):
        session.toggle_test_mode()
        fake_serial.push(TRACKING_RECORD)
        session.test_solenoid()
        assert session.tracking.median.y == 450
        assert session.poll() == []

    def test_reload_failure_is_atomic(self, session, fake_serial):
        session.set_setting(Setting.LED_COUNT, 40)
        fake_serial.settings[Setting.RUMBLE_STRENGTH] = 10
        before = model_state(session)
        fake_serial.silence("XlP3")
        with pytest.raises(TimeoutError):
            session.reload()
        assert model_state(session) == before
        assert session.state is SessionState.IDLE


# ══════════════════════════════════════════════════════════════════════════
#  Layer 3: Session — commit
# ══════════════════════════════════════════════════════════════════════════


class TestSessionCommit:
    def test_solenoid_commit(self, session, fake_serial):
        assert session.model.shadow.bools[BoolFlag.SOLENOID] is False
        session.set_bool(BoolFlag.SOLENOID, True)
        assert session.diff_count() == 1

        session.commit()

        assert fake_serial.commands[0] == "Xm"
        assert "Xm.0.2.1" in fake_serial.commands
        assert fake_serial.commands[-1] == "XS"
        assert session.model.shadow.bools[BoolFlag.SOLENOID] is True
        assert session.diff_count() == 0
        assert session.state is SessionState.IDLE

    def test_progress_reported(self, session):
        session.set_bool(BoolFlag.AUTOFIRE, True)
        calls = []
        steps = session.commit(lambda done, total: calls.append((done, total)))
        assert calls[-1] == (steps, steps)
        assert [done for done, _ in calls] == list(range(1, steps + 1))

    def test_nothing_to_commit(self, session, fake_serial):
        with pytest.raises(StateError, match="Nothing to commit"):
            session.commit()
        assert fake_serial.commands == []

    def test_bad_ack_aborts_without_rollback(self, session, fake_serial):
        session.set_bool(BoolFlag.SOLENOID, True)
        session.set_setting(Setting.RUMBLE_STRENGTH, 100)
        fake_serial.script("Xm.2.0.100", "ERR: out of range")

        with pytest.raises(CommitError) as excinfo:
            session.commit()

        # 9 bools acknowledged before the first setting write failed
        assert excinfo.value.acknowledged == 9
        assert excinfo.value.total > 9
        assert "XS" not in fake_serial.commands
        assert fake_serial.bools[BoolFlag.SOLENOID] == 1
        assert session.model.shadow.bools[BoolFlag.SOLENOID] is False
        assert session.diff_count() == 2
        assert session.state is SessionState.IDLE

    def test_write_timeout_aborts(self, session, fake_serial):
        session.set_bool(BoolFlag.RUMBLE_FF, True)
        fake_serial.silence("Xm.0.0.0")
        with pytest.raises(CommitError, match="0/"):
            session.commit()
        assert session.diff_count() == 1

    def test_custom_pin_commit(self, session, fake_serial):
        session.set_custom_pins(True)
        session.assign_pin(5, InputFunction.TRIGGER)
        session.assign_pin(9, InputFunction.TRIGGER)
        session.commit()
        assert "Xm.1.1.9" in fake_serial.commands
        assert fake_serial.pins[InputFunction.TRIGGER - 1] == 9
        assert session.diff_count() == 0

    def test_commit_link_loss_disconnects(self, session, fake_serial):
        session.set_bool(BoolFlag.RUMBLE, False)
        fake_serial.fail_writes = True
        with pytest.raises(CommitError):
            session.commit()
        assert session.state is SessionState.DISCONNECTED
        assert not session.model.is_loaded
        with pytest.raises(StateError, match="connect first"):
            session.set_bool(BoolFlag.RUMBLE, True)

    def test_commit_then_reload_matches(self, session):
        session.set_profile_field(0, ProfileField.NAME, "Living Room")
        session.set_setting(Setting.STATIC_COLOR_2, 0x112233)
        session.commit()
        session.reload()
        assert session.model.current.settings[Setting.STATIC_COLOR_2] == 0x112233


# ══════════════════════════════════════════════════════════════════════════
#  Layer 3: Session — idle notifications and heartbeat
# ══════════════════════════════════════════════════════════════════════════


class TestSessionNotifications:
    def test_press_and_release(self, session, fake_serial):
        fake_serial.push("Pressed:03")
        session.poll()
        assert InputFunction.GUN_B in session.pressed
        fake_serial.push("Released:03")
        session.poll()
        assert InputFunction.GUN_B not in session.pressed

    def test_listener_sees_notifications(self, session, fake_serial):
        seen = []
        session.add_listener(seen.append)
        fake_serial.push("Temperature:38", "Analog:4", "garbage", "Pressed:abc")
        result = session.poll()
        assert [n.kind for n in result] == [NotificationKind.TEMPERATURE, NotificationKind.ANALOG]
        assert seen == result
        assert session.temperature == 38
        assert session.analog_direction == 4

    def test_profile_change(self, session, fake_serial):
        fake_serial.push("Profile: 2")
        session.poll()
        assert session.board.selected_profile == 2

    def test_profile_update_applied_to_both_copies(self, session, fake_serial):
        fake_serial.push("UpdatedProf: 1", "-5", "6", "7", "8", "2")
        (n,) = session.poll()
        assert n.offsets == (-5, 6, 7, 8)
        for snapshot in (session.model.current, session.model.shadow):
            p = snapshot.profiles[1]
            assert (p.top_offset, p.right_offset) == (-5, 8)
            assert p.ir_sensitivity is IRSensitivity.HIGHEST

    def test_profile_update_cut_short(self, session, fake_serial):
        fake_serial.push("UpdatedProf: 1", "-5", "6")
        assert session.poll() == []
        assert session.state is SessionState.IDLE
        assert session.model.current.profiles[1].top_offset == 11

    def test_poll_waits_for_first_line(self, session, fake_serial):
        fake_serial.push("Pressed:1", delay=0.2)
        assert session.poll(timeout=0.5)[0].function is InputFunction.TRIGGER

    def test_poll_when_disconnected(self, clock):
        assert DeviceSession(clock=clock).poll() == []

    def test_heartbeat_sent_when_due(self, session, fake_serial, clock):
        session.poll()
        assert "." not in fake_serial.commands
        clock.advance(5.0)
        session.poll()
        assert fake_serial.commands.count(".") == 1
        session.poll()
        assert fake_serial.commands.count(".") == 1

    def test_heartbeat_disabled(self, patched_serial, fake_serial, clock):
        gun = DeviceSession(SessionConfig(port=FAKE_PORT, heartbeat_interval=0), clock=clock)
        gun.connect()
        clock.advance(60)
        gun.poll()
        assert "." not in fake_serial.commands

    def test_heartbeat_failure_disconnects(self, session, fake_serial, clock):
        clock.advance(5.0)
        fake_serial.fail_writes = True
        with pytest.raises(ConnectionError):
            session.poll()
        assert session.state is SessionState.DISCONNECTED
        assert not session.model.is_loaded
        assert session.diff_count() == 0

    def test_operation_restarts_heartbeat_interval(self, session, fake_serial, clock):
        clock.advance(4.0)
        session.test_rumble()
        clock.advance(4.0)
        session.poll()
        assert "." not in fake_serial.commands


# ══════════════════════════════════════════════════════════════════════════
#  Layer 3: Session — exclusivity, test mode and device control
# ══════════════════════════════════════════════════════════════════════════


class TestSessionExclusive:
    def test_nested_request_is_busy(self, session):
        with session._exclusive("outer"):  # noqa: SLF001
            assert session.state is SessionState.ACTIVE
            with pytest.raises(BusyError):
                session.test_solenoid()
        assert session.state is SessionState.IDLE

    def test_listener_cannot_start_request(self, session, fake_serial):
        errors = []

        def switch_profile(_):
            try:
                session.select_profile(1)
            except BusyError as exc:
                errors.append(exc)

        session.add_listener(switch_profile)
        fake_serial.push("Analog:1")
        session.poll()
        assert len(errors) == 1
        assert "XC2" not in fake_serial.commands

        session.remove_listener(switch_profile)
        session.select_profile(1)
        assert fake_serial.commands == ["XC2"]

    def test_listener_error_releases_guard(self, session, fake_serial):
        def explode(_):
            raise RuntimeError("listener bug")

        session.add_listener(explode)
        fake_serial.push("Analog:1")
        with pytest.raises(RuntimeError):
            session.poll()
        session.remove_listener(explode)
        session.test_rumble()
        assert fake_serial.commands == ["Xtr"]

    def test_request_when_disconnected(self, clock):
        with pytest.raises(StateError):
            DeviceSession(clock=clock).test_rumble()

    def test_listener_may_disconnect(self, session, fake_serial):
        session.add_listener(lambda _: session.disconnect())
        fake_serial.push("Analog:1", "Analog:2")
        assert len(session.poll()) == 1
        assert session.state is SessionState.DISCONNECTED
        assert fake_serial.commands == ["XE"]

    def test_active_suppresses_polling(self, session, fake_serial):
        with session._exclusive("hold"):  # noqa: SLF001
            fake_serial.push("Pressed:1")
            assert session.poll() == []
        assert session.poll()[0].kind is NotificationKind.PRESSED


class TestSessionTestMode:
    def test_enter_and_exit(self, session, fake_serial):
        assert session.toggle_test_mode() is True
        assert session.state is SessionState.TEST_MODE
        assert session.toggle_test_mode() is False
        assert session.state is SessionState.IDLE
        assert fake_serial.commands == ["XT", "XT"]

    def test_silent_reply_means_idle(self, session, fake_serial):
        fake_serial.silence("XT")
        assert session.toggle_test_mode() is False
        assert session.state is SessionState.IDLE

    def test_tracking_frames(self, session, fake_serial):
        session.toggle_test_mode()
        fake_serial.push("Pressed:1", TRACKING_RECORD, "1,2,3")
        assert session.poll() == []
        assert session.tracking.dot.x == 520
        assert not session.pressed

    def test_no_heartbeat_in_test_mode(self, session, fake_serial, clock):
        session.toggle_test_mode()
        clock.advance(30)
        session.poll()
        assert "." not in fake_serial.commands

    def test_feature_pulses(self, session, fake_serial):
        session.toggle_test_mode()
        session.test_rumble()
        session.test_solenoid()
        session.test_led("green")
        assert fake_serial.commands[1:] == ["Xtr", "Xts", "XtG"]
        assert session.state is SessionState.TEST_MODE

    def test_bad_led_color(self, session):
        with pytest.raises(ValidationError, match="LED color"):
            session.test_led("purple")


class TestSessionControl:
    def test_select_profile(self, session, fake_serial):
        session.select_profile(3)
        assert fake_serial.commands == ["XC4"]
        assert session.board.selected_profile == 3
        assert session.diff_count() == 1

    def test_calibrate_profile(self, session, fake_serial):
        session.calibrate_profile(0)
        assert fake_serial.commands == ["XC1C"]

    def test_clear_storage(self, session, fake_serial):
        session.clear_storage()
        assert fake_serial.commands == ["Xc", "XE"]
        assert session.state is SessionState.DISCONNECTED
        assert not session.model.is_loaded

    def test_clear_storage_wrong_reply(self, session, fake_serial):
        fake_serial.script("Xc", "Huh?")
        with pytest.raises(MalformedReplyError):
            session.clear_storage()
        assert session.state is SessionState.IDLE

    def test_clear_storage_slow_reply(self, session, fake_serial):
        fake_serial.script("Xc", "Cleared! Please reset the board.", delay=4.0)
        session.clear_storage()
        assert session.state is SessionState.DISCONNECTED

    def test_reset_to_bootloader(self, session, fake_serial):
        session.reset_to_bootloader()
        assert fake_serial.commands == ["XE", "."]
        assert fake_serial.baudrate == 1200
        assert session.state is SessionState.DISCONNECTED

    def test_snapshot(self, session):
        snap = session.snapshot()
        assert snap["board"]["codename"] == "Dawn"
        assert snap["profiles"][2]["name"] == "Projector"

    def test_presets(self, session):
        assert [p.name for p in session.presets()][0] == "Default"


# ══════════════════════════════════════════════════════════════════════════
#  Layer 4: Hardware integration
# ══════════════════════════════════════════════════════════════════════════


@pytest.mark.hardware
class TestHardwareIntegration:
    """Run only with ``pytest -m hardware``.

    These tests talk to a real OpenFIRE gun on ``/dev/ttyACM0`` and
    never commit, so the gun's saved settings are left alone.
    """

    @pytest.fixture(autouse=True)
    def _open_device(self):
        self.gun = DeviceSession(SessionConfig(port=HARDWARE_PORT))
        self.gun.connect()
        yield
        self.gun.disconnect()

    def test_identity(self):
        assert self.gun.board.board is not BoardType.NOTHING
        assert self.gun.board.version > 0

    def test_loaded_in_sync(self):
        assert self.gun.diff_count() == 0

    def test_reload(self):
        before = self.gun.snapshot()
        self.gun.reload()
        assert self.gun.snapshot() == before

    def test_test_mode_roundtrip(self):
        assert self.gun.toggle_test_mode() is True
        self.gun.poll(timeout=0.5)
        assert self.gun.toggle_test_mode() is False
