"""Shared pytest fixtures for OpenFIRE configuration tests."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import serial

from openfire_config import BoardType, DeviceSession, SessionConfig
from openfire_config.pins import PinMap
from openfire_config.protocol import OpenFireProtocol
from openfire_config.transport import SerialTransport

FAKE_PORT = "/dev/fake"


class FakeClock:
    """Manually advanced stand-in for ``time.monotonic``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _default_profiles() -> list[list[str]]:
    names = ("TV", "Monitor", "Projector", "Spare")
    colors = (0xFF0000, 0x00FF00, 0x0000FF, 0xFFFFFF)
    return [
        [str(v) for v in (10 + i, 20, 30, 40, 500, 600, 0, 0, 0, colors[i])] + [names[i]]
        for i in range(4)
    ]


class FakeSerial:
    """Stand-in for ``serial.Serial`` that emulates an OpenFIRE gun.

    Implements the subset of the pyserial API used by
    :class:`~openfire_config.transport.SerialTransport`:
    ``write``, ``read``, ``in_waiting``, ``flush``, ``close``, ``is_open``,
    ``dtr`` and ``baudrate``.

    Every write is treated as one command and answered from the scripted
    device state below.  Replies are scheduled on the shared
    :class:`FakeClock`; a ``read`` that finds nothing available advances
    the clock by one poll interval, the way a blocking read would.

    Test helpers:

    * :meth:`script` — replace the reply to the next occurrence of a command.
    * :meth:`silence` — make the next occurrence of a command go unanswered.
    * :meth:`push` — queue unsolicited lines (notifications, telemetry).
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timeout = 0.05
        self.is_open = True
        self.dtr = False
        self.baudrate = 9600
        self.written: list[bytes] = []
        self.fail_writes = False

        # Device state
        self.wire_format = "csv"
        self.identity = ["OpenFIRE", "5.2", "Dawn", "rpipico", "0"]
        self.usb = ["0", "SERIALREADERR01"]
        self.bools = [0, 1, 0, 0, 0, 1, 1, 0, 0]
        self.pins = PinMap.from_layout(BoardType.RPIPICO).to_wire()
        self.settings = [255, 150, 45, 30, 500, 3, 2500, 1, 0, 0xFF0000, 0x00FF00, 0x0000FF]
        self.profiles = _default_profiles()
        self.in_test_mode = False
        self.saved = False

        self._rx = bytearray()
        self._scheduled: list[tuple[float, bytes]] = []
        self._overrides: dict[str, tuple[list[str], float]] = {}

    # -- Helpers for tests --------------------------------------------------

    @property
    def commands(self) -> list[str]:
        """Every command written so far, decoded."""
        return [w.decode("ascii") for w in self.written]

    def script(self, cmd: str, *lines: str, delay: float = 0.0) -> None:
        """Answer the **next** *cmd* with *lines* after *delay* seconds."""
        self._overrides[cmd] = (list(lines), delay)

    def silence(self, cmd: str) -> None:
        self.script(cmd)

    def push(self, *lines: str, delay: float = 0.0) -> None:
        """Queue unsolicited *lines*, each CRLF-terminated."""
        self._schedule(list(lines), delay)

    def reopen(self, *args, **kwargs) -> FakeSerial:
        """``side_effect`` for the patched ``serial.Serial`` constructor."""
        self.is_open = True
        self.baudrate = kwargs.get("baudrate", self.baudrate)
        self._rx.clear()
        self._scheduled.clear()
        return self

    # -- pyserial interface -------------------------------------------------

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise serial.SerialException("device disconnected")
        self.written.append(data)
        cmd = data.decode("ascii").strip()
        if cmd in self._overrides:
            lines, delay = self._overrides.pop(cmd)
            self._schedule(lines, delay)
        else:
            self._schedule(self._respond(cmd), 0.0)
        return len(data)

    @property
    def in_waiting(self) -> int:
        self._release()
        return len(self._rx)

    def read(self, size: int = 1) -> bytes:
        self._release()
        if not self._rx:
            self.clock.advance(self.timeout)
            self._release()
        data = bytes(self._rx[:size])
        del self._rx[:size]
        return data

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False

    # -- Device emulation ---------------------------------------------------

    def _fields(self, values) -> list[str]:
        values = [str(v) for v in values]
        if self.wire_format == "lines":
            return values
        return [",".join(values)]

    def _respond(self, cmd: str) -> list[str]:
        if cmd == "XP":
            return self._fields(self.identity)
        if cmd == "Xli":
            return self._fields(self.usb)
        if cmd == "Xlb":
            return self._fields(self.bools)
        if cmd == "Xlp":
            return self._fields(self.pins)
        if cmd == "Xls":
            return self._fields(self.settings)
        if cmd.startswith("XlP"):
            return self._fields(self.profiles[int(cmd[3:])])
        if cmd.startswith("Xm."):
            return [self._apply_write(cmd)]
        if cmd == "XS":
            self.saved = True
            return ["Saving preferences...", "Settings saved to flash"]
        if cmd == "XT":
            self.in_test_mode = not self.in_test_mode
            return ["Entering Test Mode..."] if self.in_test_mode else []
        if cmd == "Xc":
            return ["Cleared! Please reset the board."]
        if cmd == "XE":
            return ["Undocking, see ya!"]
        # Xm pause, XC<n>, heartbeat and test pulses are silent
        return []

    def _apply_write(self, cmd: str) -> str:
        _, category, rest = cmd.split(".", 2)
        if category == "P":
            return f"OK: Set profile {rest}"
        index, value = rest.split(".", 1)
        if category == "0":
            self.bools[int(index)] = int(value)
        elif category == "1":
            self.pins[int(index) - 1] = int(value)
        elif category == "2":
            self.settings[int(index)] = int(value)
        elif category == "3":
            self.usb[int(index)] = value
        else:
            return f"NOENT: {cmd}"
        return f"OK: {cmd}"

    def _schedule(self, lines: list[str], delay: float) -> None:
        if lines:
            payload = "".join(f"{line}\r\n" for line in lines).encode("ascii")
            self._scheduled.append((self.clock.now + delay, payload))

    def _release(self) -> None:
        due = [item for item in self._scheduled if item[0] <= self.clock.now]
        for item in due:
            self._scheduled.remove(item)
            self._rx += item[1]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_serial(clock: FakeClock) -> FakeSerial:
    """Return a fresh emulated gun sharing the test clock."""
    return FakeSerial(clock)


@pytest.fixture()
def patched_serial(fake_serial: FakeSerial):
    """Route ``serial.Serial`` in the transport to the fake for the whole test."""
    with patch("openfire_config.transport.serial.Serial", side_effect=fake_serial.reopen) as mock:
        yield mock


@pytest.fixture()
def transport(patched_serial, fake_serial: FakeSerial, clock: FakeClock) -> SerialTransport:
    """Return an open ``SerialTransport`` wired to the fake gun."""
    tx = SerialTransport(FAKE_PORT, clock=clock)
    tx.open()
    return tx


@pytest.fixture()
def protocol(transport: SerialTransport) -> OpenFireProtocol:
    """Return an ``OpenFireProtocol`` wired to the fake transport."""
    return OpenFireProtocol(transport)


@pytest.fixture()
def session(patched_serial, fake_serial: FakeSerial, clock: FakeClock) -> DeviceSession:
    """Return a connected, fully loaded ``DeviceSession``."""
    gun = DeviceSession(SessionConfig(port=FAKE_PORT), clock=clock)
    gun.connect()
    # Reset so tests don't see the load sequence
    fake_serial.written.clear()
    return gun
