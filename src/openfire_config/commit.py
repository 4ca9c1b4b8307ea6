"""
Commit engine: drain the current settings into ``Xm.`` write commands
and push them to the device, one acknowledged write at a time.

Usage::

    queue = build_write_queue(session.model)
    run_commit(protocol, model, progress=lambda done, total: print(done, total))

A failure partway through leaves every already-acknowledged write on
the device and the shadow copy untouched, so the diff count stays
non-zero and the user can simply commit again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .boards import ASSIGNABLE_FUNCTIONS
from .constants import PROFILE_COUNT
from .exceptions import CommitError, OpenFireError
from .model import BoolFlag, ProfileField, Setting, SettingsModel
from .protocol import OpenFireProtocol

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

# Field categories of the ``Xm.<category>.<index>.<value>`` write command.
CATEGORY_BOOL = "0"
CATEGORY_PIN = "1"
CATEGORY_SETTING = "2"
CATEGORY_USB = "3"
CATEGORY_PROFILE = "P"

USB_ID_INDEX = 0
USB_NAME_INDEX = 1

# Profile fields the host writes, keyed by their wire letter.
PROFILE_WRITE_KEYS: dict[ProfileField, str] = {
    ProfileField.IR_SENSITIVITY: "i",
    ProfileField.RUN_MODE: "r",
    ProfileField.LAYOUT: "l",
    ProfileField.COLOR: "c",
    ProfileField.NAME: "n",
}


def _write(category: str, index, value) -> str:
    return f"Xm.{category}.{index}.{value}"


def build_write_queue(model: SettingsModel) -> list[str]:
    """Return every write command for the model's current state, in send order.

    The save command is not included; :func:`run_commit` sends it last.
    """
    cur = model.current
    queue = [_write(CATEGORY_BOOL, int(flag), int(cur.bools[flag])) for flag in BoolFlag]

    if cur.custom_pins:
        queue.extend(
            _write(CATEGORY_PIN, int(function), cur.pins.pin_for(function))
            for function in ASSIGNABLE_FUNCTIONS
        )

    queue.extend(_write(CATEGORY_SETTING, int(s), cur.settings[s]) for s in Setting)

    if cur.usb.product_id:
        queue.append(_write(CATEGORY_USB, USB_ID_INDEX, cur.usb.product_id))
    if cur.usb.product_name:
        queue.append(_write(CATEGORY_USB, USB_NAME_INDEX, cur.usb.product_name))

    for slot in range(PROFILE_COUNT):
        profile = cur.profiles[slot]
        for field, key in PROFILE_WRITE_KEYS.items():
            queue.append(f"Xm.{CATEGORY_PROFILE}.{key}.{slot}.{_render(profile.get(field))}")

    return queue


def _render(value) -> str:
    """Render an enum or int as a decimal, anything else as-is."""
    return str(int(value)) if isinstance(value, int) else str(value)


def run_commit(
    protocol: OpenFireProtocol,
    model: SettingsModel,
    progress: ProgressCallback | None = None,
) -> int:
    """Write the whole current state to the device and save it.

    Args:
        protocol: Protocol bound to an open transport.
        model: The settings to push.  On success its shadow is synced.
        progress: Optional ``(done, total)`` callback, called after each
            acknowledged step (the save counts as the last step).

    Returns:
        The number of steps performed, including the save.

    Raises:
        CommitError: If any write or the save fails.  ``acknowledged``
            holds how many steps the device accepted before the failure.
    """
    queue = build_write_queue(model)
    total = len(queue) + 1
    done = 0

    try:
        protocol.pause_outputs()
        for cmd in queue:
            protocol.write_field(cmd)
            done += 1
            if progress:
                progress(done, total)
        protocol.save()
        done += 1
        if progress:
            progress(done, total)
    except OpenFireError as exc:
        logger.error("Commit failed after %d/%d steps: %s", done, total, exc)
        raise CommitError(
            f"Commit failed after {done}/{total} steps: {exc}", acknowledged=done, total=total
        ) from exc

    model.sync()
    logger.info("Committed %d writes and saved", len(queue))
    return done
