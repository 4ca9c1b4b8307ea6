"""Shared runtime constants for the OpenFIRE configuration protocol.

This is the canonical source of truth for protocol field counts, command
strings and session defaults.  Other modules should import from here
rather than defining their own copies.
"""

# ---------------------------------------------------------------------------
# Protocol / table sizes
# ---------------------------------------------------------------------------

DEVICE_IDENT = "OpenFIRE"
BOOL_COUNT = 9
SETTINGS_COUNT = 12
INPUTS_COUNT = 31  # logical inputs including "unmapped"
PIN_COUNT = 30
PROFILE_COUNT = 4
PROFILE_FIELD_COUNT = 11
PROFILE_NAME_MAX = 15
MAX_COLOR = 0xFFFFFF
UNMAPPED_PIN = -1
UPDATED_PROFILE_LINES = 5
TRACKING_POINTS = 6

# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

CMD_PROBE = "XP"
CMD_READ_IDENTITY = "Xli"
CMD_READ_BOOLS = "Xlb"
CMD_READ_PINS = "Xlp"
CMD_READ_SETTINGS = "Xls"
CMD_READ_PROFILE = "XlP"
CMD_PAUSE = "Xm"
CMD_SAVE = "XS"
CMD_SELECT_PROFILE = "XC"
CMD_TEST_MODE = "XT"
CMD_CLEAR = "Xc"
CMD_UNDOCK = "XE"
CMD_PING = "."
CMD_TEST_RUMBLE = "Xtr"
CMD_TEST_SOLENOID = "Xts"
CMD_TEST_LED = {"red": "XtR", "green": "XtG", "blue": "XtB"}

# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------

ACK_OK = "OK:"
ACK_NOENT = "NOENT:"
REPLY_SAVING = "Saving preferences..."
REPLY_SAVED = "Settings saved to"
REPLY_TEST_MODE = "Entering Test Mode..."
REPLY_CLEARED = "Cleared! Please reset the board."
USB_NAME_UNSET = "SERIALREADERR01"

# ---------------------------------------------------------------------------
# Session defaults
# ---------------------------------------------------------------------------

DEFAULT_BAUD = 9600
BOOTLOADER_BAUD = 1200
DEFAULT_PROBE_TIMEOUT = 2.0
DEFAULT_READ_TIMEOUT = 2.0
DEFAULT_WRITE_TIMEOUT = 2.0
DEFAULT_CLEAR_TIMEOUT = 5.0
DEFAULT_SAVE_ATTEMPTS = 3
DEFAULT_HEARTBEAT_INTERVAL = 5.0
DEFAULT_VENDOR_ID = 0xF143
POLL_INTERVAL = 0.05
