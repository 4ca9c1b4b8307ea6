"""
Current-vs-shadow comparison.

The diff count is what gates a commit: zero means the device already
holds everything the user sees.  Calibration results (edge offsets and
LED positions) come from the device and are never counted.
"""

from __future__ import annotations

from .boards import ASSIGNABLE_FUNCTIONS
from .model import EDITABLE_PROFILE_FIELDS, BoolFlag, Setting, SettingsModel


def diff_fields(model: SettingsModel) -> list[str]:
    """Return a dotted name for every field where current differs from shadow."""
    cur, old = model.current, model.shadow
    changed: list[str] = []

    for flag in BoolFlag:
        if cur.bools[flag] != old.bools[flag]:
            changed.append(f"bools.{flag.name.lower()}")

    if cur.custom_pins:
        for function in ASSIGNABLE_FUNCTIONS:
            if cur.pins.pin_for(function) != old.pins.pin_for(function):
                changed.append(f"pins.{function.name.lower()}")

    for setting in Setting:
        if cur.settings[setting] != old.settings[setting]:
            changed.append(f"settings.{setting.name.lower()}")

    if cur.usb.product_id != old.usb.product_id:
        changed.append("usb.product_id")
    if cur.usb.product_name != old.usb.product_name:
        changed.append("usb.product_name")

    if model.board.selected_profile != model.board.previous_profile:
        changed.append("board.selected_profile")

    for slot, (new, prev) in enumerate(zip(cur.profiles, old.profiles)):
        for field in EDITABLE_PROFILE_FIELDS:
            if new.get(field) != prev.get(field):
                changed.append(f"profiles.{slot}.{field.name.lower()}")

    return changed


def compute_diff(model: SettingsModel) -> int:
    """Return how many fields differ between current and shadow."""
    return len(diff_fields(model))
