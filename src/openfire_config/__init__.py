"""OpenFIRE Light Gun Serial Configuration Client"""

from .boards import BoardPreset, BoardType, InputFunction, presets_for
from .codec import WireFormat
from .config import SessionConfig, load_config
from .constants import DEFAULT_VENDOR_ID, PROFILE_COUNT
from .exceptions import (
    BusyError,
    CommandError,
    CommitError,
    ConnectionError,
    MalformedReplyError,
    OpenFireError,
    ProtocolMismatchError,
    StateError,
    TimeoutError,
    ValidationError,
)
from .model import (
    BoardIdentity,
    BoolFlag,
    IRSensitivity,
    Layout,
    ProfileField,
    RunMode,
    Setting,
    UsbIdentity,
)
from .notifications import Notification, NotificationKind, TrackingFrame
from .pins import PinMap
from .session import DeviceSession, SessionState, get_session
from .transport import find_ports

__all__ = [
    "BoardIdentity",
    "BoardPreset",
    "BoardType",
    "BoolFlag",
    "BusyError",
    "CommandError",
    "CommitError",
    "ConnectionError",
    "DeviceSession",
    "IRSensitivity",
    "InputFunction",
    "Layout",
    "MalformedReplyError",
    "Notification",
    "NotificationKind",
    "OpenFireError",
    "PinMap",
    "ProfileField",
    "ProtocolMismatchError",
    "RunMode",
    "SessionConfig",
    "SessionState",
    "Setting",
    "StateError",
    "TimeoutError",
    "TrackingFrame",
    "UsbIdentity",
    "ValidationError",
    "WireFormat",
    "find_ports",
    "get_session",
    "load_config",
    "presets_for",
    "DEFAULT_VENDOR_ID",
    "PROFILE_COUNT",
]
__version__ = "0.1.0"
