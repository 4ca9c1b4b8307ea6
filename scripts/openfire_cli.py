#!/usr/bin/env python3
"""
OpenFIRE CLI — Interactive configuration harness for OpenFIRE light guns.

Connects to the gun over USB serial, shows everything it reports, lets
you edit toggles, tunables, pins, profiles and the USB identity, and
commits the changes back to flash.

Usage:
    python scripts/openfire_cli.py                     # first OpenFIRE port found
    python scripts/openfire_cli.py --port /dev/ttyACM0
    python scripts/openfire_cli.py --config openfire.yaml --verbose
    python scripts/openfire_cli.py --list              # list ports and exit
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time
from contextlib import suppress
from pathlib import Path

import yaml

# Add src to path so we can import without installing
sys.path.insert(0, "src")

from openfire_config import (
    BoolFlag,
    DeviceSession,
    InputFunction,
    IRSensitivity,
    Layout,
    OpenFireError,
    ProfileField,
    RunMode,
    SessionConfig,
    SessionState,
    Setting,
    find_ports,
    load_config,
)
from openfire_config.constants import PROFILE_COUNT

WATCH_SECONDS = 10
POLL_TIMEOUT = 0.1


# ═══════════════════════════════════════
#  Terminal helpers
# ═══════════════════════════════════════


class C:
    """ANSI color codes (no-op on non-TTY)."""

    if sys.stdout.isatty():
        BOLD = "\033[1m"
        DIM = "\033[2m"
        GREEN = "\033[32m"
        YELLOW = "\033[33m"
        RED = "\033[31m"
        CYAN = "\033[36m"
        RESET = "\033[0m"
    else:
        BOLD = DIM = GREEN = YELLOW = RED = CYAN = RESET = ""


def banner(text: str) -> None:
    print(f"\n{C.BOLD}{'═' * 60}")
    print(f"  {text}")
    print(f"{'═' * 60}{C.RESET}")


def info(text: str) -> None:
    print(f"  {C.GREEN}✓{C.RESET} {text}")


def warn(text: str) -> None:
    print(f"  {C.YELLOW}⚠{C.RESET} {text}")


def error(text: str) -> None:
    print(f"  {C.RED}✗{C.RESET} {text}")


def prompt(text: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    try:
        val = input(f"  {text}{suffix}: ").strip()
    except EOFError:
        return default
    return val if val else default


def prompt_int(text: str, default: int | None = None) -> int | None:
    """Prompt for an integer (decimal or 0x-hex).  Returns None on bad input."""
    raw = prompt(text, str(default) if default is not None else "")
    if not raw:
        return default
    try:
        return int(raw, 0)
    except ValueError:
        error(f"Invalid number: {raw}")
        return None


def confirm(text: str) -> bool:
    return prompt(f"{text} (y/n)", "n").lower().startswith("y")


def pick(options: list, label: str, render=str):
    """Let the user choose one of *options* by number."""
    print()
    for i, opt in enumerate(options):
        print(f"    {i}) {render(opt)}")
    idx = prompt_int(label)
    if idx is None or not (0 <= idx < len(options)):
        error(f"Invalid choice: {idx}")
        return None
    return options[idx]


def pick_slot() -> int | None:
    slot = prompt_int(f"Profile (1-{PROFILE_COUNT})", default=1)
    if slot is None or not (1 <= slot <= PROFILE_COUNT):
        error(f"Invalid profile: {slot}")
        return None
    return slot - 1


def on_off(value: bool) -> str:
    return f"{C.GREEN}ON{C.RESET}" if value else f"{C.DIM}off{C.RESET}"


# ═══════════════════════════════════════
#  Menu actions
# ═══════════════════════════════════════


def do_board_info(gun: DeviceSession) -> None:
    """Print identity and pending-change summary."""
    banner("Board Info")
    board = gun.board
    usb = gun.model.current.usb
    print(f"  Port:     {gun.port} ({gun.wire_format.value} framing)")
    print(f"  Board:    {board.label}")
    print(f"  Firmware: v{board.version} {board.codename!r}")
    print(f"  Profile:  {board.selected_profile + 1}")
    print(f"  USB:      {usb.product_name or '(default)'}  {usb.product_id_hex or ''}")
    pending = gun.changed_fields()
    if pending:
        warn(f"{len(pending)} unsaved change(s): {', '.join(pending)}")
    else:
        info("Device is in sync")


def do_dump(gun: DeviceSession) -> None:
    """Print every toggle, tunable, pin and profile."""
    cur = gun.model.current
    banner("Settings")

    print(f"  {C.BOLD}Toggles{C.RESET}")
    for flag in BoolFlag:
        print(f"    {flag.name.lower():20s} {on_off(cur.bools[flag])}")

    print(f"\n  {C.BOLD}Tunables{C.RESET}")
    for s in Setting:
        print(f"    {s.name.lower():26s} {cur.settings[s]}")

    mode = "custom" if cur.custom_pins else "board default"
    print(f"\n  {C.BOLD}Pins ({mode}){C.RESET}")
    for pin in cur.pins.pins():
        function = cur.pins.function_at(pin)
        if function is not InputFunction.UNMAPPED:
            print(f"    GP{pin:<3d} {function.name}")

    print(f"\n  {C.BOLD}Profiles{C.RESET}")
    for slot, p in enumerate(cur.profiles):
        marker = "*" if slot == gun.board.selected_profile else " "
        print(
            f"   {marker}{slot + 1}) {p.name or '(unnamed)':15s} "
            f"IR={p.ir_sensitivity.name.lower():8s} run={p.run_mode.name.lower():16s} "
            f"layout={p.layout.name.lower():7s} color=#{p.color:06x}  "
            f"{C.DIM}offsets T{p.top_offset} B{p.bottom_offset} "
            f"L{p.left_offset} R{p.right_offset}{C.RESET}"
        )


def do_toggle(gun: DeviceSession) -> None:
    """Flip one boolean toggle."""
    banner("Toggle Feature")
    cur = gun.model.current
    flag = pick(list(BoolFlag), "Toggle", lambda f: f"{f.name.lower():20s} {on_off(cur.bools[f])}")
    if flag is None:
        return
    gun.set_bool(flag, not cur.bools[flag])
    info(f"{flag.name.lower()} → {on_off(cur.bools[flag])}")


def do_setting(gun: DeviceSession) -> None:
    """Change one numeric tunable."""
    banner("Change Tunable")
    cur = gun.model.current
    setting = pick(list(Setting), "Tunable", lambda s: f"{s.name.lower():26s} {cur.settings[s]}")
    if setting is None:
        return
    value = prompt_int("New value", default=cur.settings[setting])
    if value is None:
        return
    try:
        gun.set_setting(setting, value)
        info(f"{setting.name.lower()} = {value}")
    except OpenFireError as exc:
        error(str(exc))


def do_pins(gun: DeviceSession) -> None:
    """Custom pin mode, single assignments and presets."""
    banner("Pin Mapping")
    cur = gun.model.current
    if not cur.custom_pins:
        print(f"  {C.DIM}Pins follow the {gun.board.label} default layout.{C.RESET}")
        if not confirm("Switch to custom pins?"):
            return
        gun.set_custom_pins(True)
        info("Custom pins enabled (starting from the default layout)")

    choice = prompt("a) assign  p) preset  d) back to default layout", "a").lower()
    try:
        if choice == "d":
            gun.set_custom_pins(False)
            info("Pins reset to the board default layout")
        elif choice == "p":
            preset = pick(list(gun.presets()), "Preset", lambda p: p.name)
            if preset is not None:
                gun.apply_preset(gun.presets().index(preset))
                info(f"Applied preset {preset.name!r}")
        else:
            pin = prompt_int("Pin (GP number)")
            if pin is None:
                return
            print(f"  {C.DIM}Currently: {gun.model.current.pins.function_at(pin).name}{C.RESET}")
            function = pick(list(InputFunction), "Function", lambda f: f.name)
            if function is None:
                return
            gun.assign_pin(pin, function)
            info(f"GP{pin} → {function.name}")
    except OpenFireError as exc:
        error(str(exc))


def do_profiles(gun: DeviceSession) -> None:
    """Select, edit or calibrate a profile."""
    banner("Profiles")
    slot = pick_slot()
    if slot is None:
        return
    profile = gun.model.current.profiles[slot]
    choice = prompt(
        "s) select  n) name  i) IR  r) run mode  l) layout  c) color  k) calibrate", "s"
    )

    try:
        if choice == "s":
            gun.select_profile(slot)
            info(f"Profile {slot + 1} selected")
        elif choice == "n":
            gun.set_profile_field(slot, ProfileField.NAME, prompt("Name", profile.name))
        elif choice == "i":
            level = pick(list(IRSensitivity), "IR sensitivity", lambda v: v.name.lower())
            if level is not None:
                gun.set_profile_field(slot, ProfileField.IR_SENSITIVITY, level)
        elif choice == "r":
            mode = pick(list(RunMode), "Run mode", lambda v: v.name.lower())
            if mode is not None:
                gun.set_profile_field(slot, ProfileField.RUN_MODE, mode)
        elif choice == "l":
            layout = pick(list(Layout), "Layout", lambda v: v.name.lower())
            if layout is not None:
                gun.set_profile_field(slot, ProfileField.LAYOUT, layout)
        elif choice == "c":
            color = prompt_int("Color (0xRRGGBB)", default=profile.color)
            if color is not None:
                gun.set_profile_field(slot, ProfileField.COLOR, color)
        elif choice == "k":
            print(f"  {C.DIM}Aim at the screen and follow the prompts on the gun.{C.RESET}")
            gun.calibrate_profile(slot)
            do_watch(gun)
        else:
            error(f"Unknown option: {choice}")
    except OpenFireError as exc:
        error(str(exc))


def do_usb(gun: DeviceSession) -> None:
    """Change the TinyUSB product id and name."""
    banner("USB Identity")
    usb = gun.model.current.usb
    try:
        gun.set_usb_name(prompt("Product name (max 15 chars)", usb.product_name))
        gun.set_usb_id(prompt("Product id (decimal)", usb.product_id))
        info(f"USB identity: {usb.product_name!r} {usb.product_id_hex}")
    except OpenFireError as exc:
        error(str(exc))


def do_commit(gun: DeviceSession) -> None:
    """Push every change to the gun and save it."""
    banner("Commit")
    pending = gun.changed_fields()
    if not pending:
        info("Nothing to commit")
        return
    for name in pending:
        print(f"    {C.CYAN}•{C.RESET} {name}")
    if not confirm(f"Write {len(pending)} change(s) to the gun?"):
        return

    def progress(done: int, total: int) -> None:
        print(f"\r    {done}/{total} ", end="", flush=True)

    try:
        gun.commit(progress)
        print()
        info("Settings saved")
    except OpenFireError as exc:
        print()
        error(f"Commit failed: {exc}")


def do_watch(gun: DeviceSession) -> None:
    """Print unsolicited notifications for a few seconds."""
    print(f"  {C.DIM}Watching for {WATCH_SECONDS}s (Ctrl-C to stop)...{C.RESET}")
    deadline = time.monotonic() + WATCH_SECONDS
    with suppress(KeyboardInterrupt):
        while time.monotonic() < deadline:
            for n in gun.poll(POLL_TIMEOUT):
                label = n.function.name if n.function else n.value
                print(f"    {n.kind.value:16s} {label}")


def do_test_mode(gun: DeviceSession) -> None:
    """Enter test mode, stream tracking data, fire feature pulses."""
    banner("Test Mode")
    if not gun.toggle_test_mode():
        warn("Device did not enter test mode")
        return
    info("Test mode on")
    try:
        while True:
            choice = prompt("t) tracking  r) rumble  s) solenoid  R/G/B) LED  x) exit", "t")
            if choice == "x":
                break
            if choice == "r":
                gun.test_rumble()
            elif choice == "s":
                gun.test_solenoid()
            elif choice in ("R", "G", "B"):
                gun.test_led({"R": "red", "G": "green", "B": "blue"}[choice])
            else:
                deadline = time.monotonic() + WATCH_SECONDS
                with suppress(KeyboardInterrupt):
                    while time.monotonic() < deadline:
                        gun.poll(POLL_TIMEOUT)
                        if gun.tracking:
                            t = gun.tracking
                            print(f"\r    dot=({t.dot.x:4d},{t.dot.y:4d}) "
                                  f"median=({t.median.x:4d},{t.median.y:4d})", end="", flush=True)
                print()
    except OpenFireError as exc:
        error(str(exc))
    finally:
        if gun.state is SessionState.TEST_MODE:
            gun.toggle_test_mode()
            info("Test mode off")


def do_backup(gun: DeviceSession) -> None:
    """Save the current settings to a YAML file."""
    banner("Backup")
    path = Path(prompt("File", f"openfire-{gun.board.codename or 'backup'}.yaml"))
    with open(path, "w") as f:
        yaml.safe_dump(gun.snapshot(), f, sort_keys=False)
    info(f"Wrote {path}")


def do_reload(gun: DeviceSession) -> None:
    """Re-read everything from the gun, dropping unsaved edits."""
    if gun.diff_count() and not confirm("Discard unsaved changes?"):
        return
    gun.reload()
    info("Reloaded from device")


def do_clear(gun: DeviceSession) -> None:
    """Wipe the gun's saved settings."""
    banner("Clear Storage")
    warn("This erases every saved setting and calibration on the gun.")
    if not confirm("Really clear?"):
        return
    gun.clear_storage()
    info("Cleared — unplug and replug the gun")


def do_bootloader(gun: DeviceSession) -> None:
    """Reboot the gun into its USB bootloader for a firmware update."""
    if not confirm("Reboot into bootloader?"):
        return
    gun.reset_to_bootloader()
    info("Gun rebooted into bootloader")


# ═══════════════════════════════════════
#  Main loop
# ═══════════════════════════════════════

MENU = [
    ("1", "Board Info", "Identity and pending changes"),
    ("2", "Dump", "Show every setting"),
    ("3", "Toggle", "Flip a feature toggle"),
    ("4", "Tunable", "Change a numeric setting"),
    ("5", "Pins", "Custom pin mapping and presets"),
    ("6", "Profiles", "Select, edit or calibrate a profile"),
    ("7", "USB", "Product id and name"),
    ("8", "Commit", "Write changes and save to flash"),
    ("9", "Watch", "Show button/profile notifications"),
    ("t", "Test Mode", "Tracking view and feature pulses"),
    ("b", "Backup", "Save settings to YAML"),
    ("r", "Reload", "Re-read settings from the gun"),
    ("c", "Clear", "Erase saved settings (disconnects)"),
    ("u", "Bootloader", "Reboot for firmware update (disconnects)"),
    ("q", "Quit", "Undock and exit"),
]

ACTIONS = {
    "1": do_board_info,
    "2": do_dump,
    "3": do_toggle,
    "4": do_setting,
    "5": do_pins,
    "6": do_profiles,
    "7": do_usb,
    "8": do_commit,
    "9": do_watch,
    "t": do_test_mode,
    "b": do_backup,
    "r": do_reload,
    "c": do_clear,
    "u": do_bootloader,
}


def main_menu(gun: DeviceSession) -> None:
    line = "─" * 50
    pending = gun.diff_count()
    status = f"{C.YELLOW}{pending} unsaved{C.RESET}" if pending else f"{C.GREEN}in sync{C.RESET}"
    print(f"\n{C.BOLD}  OpenFIRE Menu{C.RESET}  ({status})")
    print(f"  {C.DIM}{line}{C.RESET}")
    for key, label, desc in MENU:
        print(f"    {C.CYAN}{key}{C.RESET})  {label:12s} {C.DIM}— {desc}{C.RESET}")
    print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Interactive configuration CLI for OpenFIRE guns")
    parser.add_argument("--port", help="Serial port (default: first OpenFIRE device found)")
    parser.add_argument("--config", type=Path, help="YAML session config file")
    parser.add_argument("--list", action="store_true", help="List serial ports and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log serial traffic")
    return parser


def main() -> int:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    try:
        config = load_config(args.config) if args.config else SessionConfig()
    except (FileNotFoundError, OpenFireError) as exc:
        print(f"{C.RED}✗{C.RESET} Config error: {exc}", file=sys.stderr)
        return 1
    if args.port:
        config = dataclasses.replace(config, port=args.port)

    if args.list:
        ports = find_ports(config.vendor_id)
        for port in ports:
            print(port)
        if not ports:
            warn("No OpenFIRE devices found")
        return 0

    banner("OpenFIRE Configurator")
    gun = DeviceSession(config)
    try:
        board = gun.connect()
        info(f"Connected to {board.label} v{board.version} on {gun.port}")
    except OpenFireError as exc:
        error(f"Cannot connect: {exc}")
        return 1

    try:
        while gun.is_connected:
            try:
                gun.poll()
            except OpenFireError as exc:
                error(f"Connection lost: {exc}")
                break
            main_menu(gun)
            choice = prompt("Choice", "q")

            if choice.lower() == "q":
                if gun.diff_count() and not confirm("Quit with unsaved changes?"):
                    continue
                break

            action = ACTIONS.get(choice) or ACTIONS.get(choice.lower())
            if not action:
                error(f"Unknown option: {choice}")
                continue
            try:
                action(gun)
            except OpenFireError as exc:
                error(f"{type(exc).__name__}: {exc}")

    except KeyboardInterrupt:
        print(f"\n\n  {C.YELLOW}Interrupted!{C.RESET}")

    finally:
        print()
        gun.disconnect()
        info("Disconnected. Goodbye!")

    return 0


if __name__ == "__main__":
    sys.exit(main())
