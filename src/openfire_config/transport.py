"""
Serial transport layer for the OpenFIRE configuration client.

Handles the physical serial connection, bounded-time writes, and a
line-buffered reader that waits up to a deadline for one complete line.
Knows nothing about what commands mean — that's :mod:`protocol`'s job.

Typical usage (via :class:`~openfire_config.session.DeviceSession`)::

    transport = SerialTransport("/dev/ttyACM0")
    transport.open()
    transport.write_command("XP")
    line = transport.read_line(timeout=2.0)
    transport.close()
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import serial
from serial.tools import list_ports

from .codec import LineBuffer, encode_command
from .constants import BOOTLOADER_BAUD, DEFAULT_BAUD, DEFAULT_WRITE_TIMEOUT, POLL_INTERVAL
from .exceptions import ConnectionError

logger = logging.getLogger(__name__)


def find_ports(vendor_id: int | None = None) -> list[str]:
    """Return device paths of serial ports, optionally filtered by USB vendor id."""
    ports = []
    for p in list_ports.comports():
        if vendor_id is not None and p.vid != vendor_id:
            logger.debug("Skipping %s (vid=%s)", p.device, p.vid)
            continue
        ports.append(p.device)
    return ports


class SerialTransport:
    """Manages a serial connection to an OpenFIRE device.

    Args:
        port: Serial port path (e.g. ``/dev/ttyACM0`` or ``COM3``).
        baudrate: Baud rate (default 9600; ignored by USB CDC devices).
        write_timeout: Upper bound in seconds on a single write.
        terminator: Bytes appended to every outgoing command.
        clock: Monotonic time source used for read deadlines.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUD,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        terminator: bytes = b"",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.write_timeout = write_timeout
        self.terminator = terminator
        self._clock = clock
        self._ser: serial.Serial | None = None
        self._lines = LineBuffer()

    # -- Lifecycle ----------------------------------------------------------

    def open(self) -> None:
        """Open the serial port.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        logger.info("Opening serial port %s at %d baud", self.port, self.baudrate)
        try:
            self._ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=POLL_INTERVAL,
                write_timeout=self.write_timeout,
            )
        except serial.SerialException as exc:
            raise ConnectionError(f"Cannot open {self.port}: {exc}") from exc
        # Windows CDC stacks only deliver replies with DTR asserted.
        self._ser.dtr = True
        self._lines.clear()

    def close(self) -> None:
        """Close the serial port (safe to call multiple times)."""
        if self._ser and self._ser.is_open:
            self._ser.close()
            logger.info("Serial port %s closed", self.port)
        self._lines.clear()

    @property
    def is_open(self) -> bool:
        """Return ``True`` if the serial port is currently open."""
        return self._ser is not None and self._ser.is_open

    # -- I/O ----------------------------------------------------------------

    def write_command(self, cmd: str) -> None:
        """Write *cmd* and wait (bounded) until it has left the process.

        Raises:
            ConnectionError: If the port is closed or the write does not
                complete within :attr:`write_timeout`.
        """
        ser = self._require_open()
        logger.debug("TX: %s", cmd)
        try:
            ser.write(encode_command(cmd, self.terminator))
            ser.flush()
        except serial.SerialTimeoutException as exc:
            raise ConnectionError(f"Write of {cmd!r} to {self.port} timed out") from exc
        except serial.SerialException as exc:
            raise ConnectionError(f"Write of {cmd!r} to {self.port} failed: {exc}") from exc

    def read_line(self, timeout: float, skip_blank: bool = True) -> str | None:
        """Wait up to *timeout* seconds for one complete line.

        Returns the decoded, trimmed line, or ``None`` if the deadline
        passes first.  Blank lines are skipped unless *skip_blank* is
        false.  A *timeout* of ``0`` only drains bytes already waiting,
        so it never blocks.

        Raises:
            ConnectionError: If the port is closed or the read fails.
        """
        ser = self._require_open()
        deadline = self._clock() + timeout
        while True:
            line = self._lines.pop_line()
            if line is not None:
                if not line and skip_blank:
                    continue
                logger.debug("RX: %s", line)
                return line
            try:
                waiting = ser.in_waiting
                if waiting:
                    self._lines.feed(ser.read(waiting))
                    continue
                if self._clock() >= deadline:
                    return None
                # Blocks for at most POLL_INTERVAL.
                self._lines.feed(ser.read(1))
            except serial.SerialException as exc:
                raise ConnectionError(f"Read from {self.port} failed: {exc}") from exc

    def drain(self) -> list[str]:
        """Discard and return every complete line already received."""
        discarded: list[str] = []
        line = self.read_line(0)
        while line is not None:
            discarded.append(line)
            line = self.read_line(0)
        if discarded:
            logger.debug("Drained %d stale line(s)", len(discarded))
        return discarded

    def touch_bootloader(self) -> None:
        """Reset an RP2040 into its bootloader with a 1200-baud touch.

        Drops DTR, reopens the port at 1200 baud and closes it; the device
        reboots into mass-storage mode and the port disappears.
        """
        ser = self._require_open()
        logger.info("Sending 1200-baud bootloader touch on %s", self.port)
        try:
            ser.dtr = False
            ser.baudrate = BOOTLOADER_BAUD
            ser.write(encode_command(".", self.terminator))
            ser.flush()
        except serial.SerialException as exc:
            raise ConnectionError(f"Bootloader touch on {self.port} failed: {exc}") from exc
        finally:
            self.close()

    # -- Internal -----------------------------------------------------------

    def _require_open(self) -> serial.Serial:
        """Return the open serial port or raise."""
        if not self.is_open:
            raise ConnectionError("Serial port not open — call open() first.")
        assert self._ser is not None  # for type-checker
        return self._ser
