"""
Exception hierarchy for the OpenFIRE configuration client.

All exceptions inherit from :class:`OpenFireError` so callers can catch
broadly (``except OpenFireError``) or narrowly (``except TimeoutError``).
None of them are fatal: a caller can always reconnect and retry.
"""


class OpenFireError(Exception):
    """Base exception for all OpenFIRE configuration errors."""


class ConnectionError(OpenFireError):  # noqa: A001 – intentional shadow of builtin
    """Raised when the serial port is unavailable, fails to open, or drops a write."""


class TimeoutError(OpenFireError):  # noqa: A001 – intentional shadow of builtin
    """Raised when the device does not reply within the expected window."""


class MalformedReplyError(OpenFireError):
    """Raised when a reply arrives but its content is not what the step expects."""


class ProtocolMismatchError(MalformedReplyError):
    """Raised when a reply carries the wrong number of fields for the wire format."""


class CommandError(OpenFireError):
    """Raised when a write is answered with something other than ``OK:``/``NOENT:``."""


class CommitError(OpenFireError):
    """Raised when a commit sequence fails part-way.

    Writes that were already acknowledged are *not* rolled back; the
    device may hold some of the new values while the shadow copy still
    holds the old ones.
    """

    def __init__(self, message: str, acknowledged: int = 0, total: int = 0) -> None:
        super().__init__(message)
        self.acknowledged = acknowledged
        self.total = total


class ValidationError(OpenFireError):
    """Raised when an argument fails pre-send or pre-edit validation."""


class StateError(OpenFireError):
    """Raised when an operation is not valid in the session's current state."""


class BusyError(StateError):
    """Raised when a request is issued while another one is still in flight."""
