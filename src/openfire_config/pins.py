"""
Pin assignment engine.

:class:`PinMap` keeps a strict bijection between the assigned subset of
physical pins and logical :class:`~openfire_config.boards.InputFunction`
values.  Every mutation goes through :meth:`PinMap.assign` or
:meth:`PinMap.apply_preset`, both of which clear conflicting entries
before writing the new pair, so the map can never hold two functions on
one pin or one function on two pins.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from .boards import ASSIGNABLE_FUNCTIONS, BoardLayout, BoardType, InputFunction, layout_for, preset
from .constants import PIN_COUNT, UNMAPPED_PIN
from .exceptions import MalformedReplyError, ValidationError

logger = logging.getLogger(__name__)


class PinMap:
    """Injective partial mapping of input functions onto physical pins.

    Args:
        reserved: Pins the board does not expose.  They never appear in
            :meth:`pins` and cannot be assigned.
    """

    def __init__(self, reserved: Iterable[int] = ()) -> None:
        self._reserved = frozenset(reserved)
        self._by_pin: dict[int, InputFunction] = {}
        self._by_function: dict[InputFunction, int] = {}

    # -- Construction -------------------------------------------------------

    @classmethod
    def for_layout(
        cls, layout: BoardLayout, assignments: Mapping[InputFunction, int] | None = None
    ) -> PinMap:
        """Build a map with *layout*'s reserved pins and the given assignments."""
        pin_map = cls(layout.reserved_pins)
        for function, pin in (assignments or {}).items():
            pin_map.assign(pin, function)
        return pin_map

    @classmethod
    def from_layout(cls, board: BoardType) -> PinMap:
        """Return the board's fixed firmware layout as a map."""
        layout = layout_for(board)
        return cls.for_layout(layout, layout.default_assignments())

    @classmethod
    def from_wire(cls, values: list[int], board: BoardType) -> PinMap:
        """Build a map from a device pin table.

        *values* holds one entry per assignable function (in function
        order), each a pin number or ``-1`` for unmapped.

        Raises:
            MalformedReplyError: If a pin is out of range, reserved, or
                claimed by more than one function.
        """
        if len(values) != len(ASSIGNABLE_FUNCTIONS):
            raise MalformedReplyError(
                f"Expected {len(ASSIGNABLE_FUNCTIONS)} pin entries, got {len(values)}"
            )
        pin_map = cls(layout_for(board).reserved_pins)
        for function, pin in zip(ASSIGNABLE_FUNCTIONS, values):
            if pin == UNMAPPED_PIN:
                continue
            if not (0 <= pin < PIN_COUNT) or pin in pin_map._reserved:
                raise MalformedReplyError(f"Device mapped {function.name} to unusable pin {pin}")
            if pin in pin_map._by_pin:
                raise MalformedReplyError(
                    f"Device mapped both {pin_map._by_pin[pin].name} and {function.name} "
                    f"to pin {pin}"
                )
            pin_map._set(pin, function)
        return pin_map

    def copy(self) -> PinMap:
        clone = PinMap(self._reserved)
        clone._by_pin = dict(self._by_pin)
        clone._by_function = dict(self._by_function)
        return clone

    # -- Queries ------------------------------------------------------------

    @property
    def reserved(self) -> frozenset[int]:
        return self._reserved

    def pins(self) -> list[int]:
        """Editable pin numbers (reserved pins excluded)."""
        return [pin for pin in range(PIN_COUNT) if pin not in self._reserved]

    def function_at(self, pin: int) -> InputFunction:
        """Return the function on *pin* (``UNMAPPED`` if none)."""
        return self._by_pin.get(pin, InputFunction.UNMAPPED)

    def pin_for(self, function: InputFunction) -> int:
        """Return the pin carrying *function*, or ``-1`` if unmapped."""
        return self._by_function.get(InputFunction(function), UNMAPPED_PIN)

    def to_wire(self) -> list[int]:
        """Return the device pin table: one pin (or ``-1``) per function."""
        return [self.pin_for(function) for function in ASSIGNABLE_FUNCTIONS]

    def assignments(self) -> dict[InputFunction, int]:
        return dict(self._by_function)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PinMap):
            return NotImplemented
        return self._by_function == other._by_function

    def __repr__(self) -> str:
        pairs = ", ".join(f"{f.name}={p}" for f, p in sorted(self._by_function.items()))
        return f"PinMap({pairs})"

    # -- Mutation -----------------------------------------------------------

    def assign(self, pin: int, function: InputFunction) -> None:
        """Put *function* on *pin*, clearing every conflicting entry first.

        Assigning ``UNMAPPED`` frees the pin.  Assigning a function that
        already lives elsewhere moves it.

        Raises:
            ValidationError: If *pin* is out of range or reserved, or
                *function* is not a known input.
        """
        self._validate_pin(pin)
        try:
            function = InputFunction(function)
        except ValueError as err:
            raise ValidationError(f"Unknown input function {function!r}") from err

        if function is InputFunction.UNMAPPED:
            self._clear_pin(pin)
            return

        old_pin = self._by_function.get(function)
        if old_pin is not None and old_pin != pin:
            self._clear_pin(old_pin)
        self._clear_pin(pin)
        self._set(pin, function)

    def clear(self) -> None:
        self._by_pin.clear()
        self._by_function.clear()

    def apply_preset(self, board: BoardType, index: int) -> None:
        """Replace the whole map with preset *index* of *board*."""
        chosen = preset(board, index)
        self.clear()
        for function, pin in chosen.assignments.items():
            self.assign(pin, function)
        logger.info("Applied pin preset %r for %s", chosen.name, layout_for(board).label)

    # -- Internal -----------------------------------------------------------

    def _validate_pin(self, pin: int) -> None:
        if not (0 <= pin < PIN_COUNT):
            raise ValidationError(f"Pin must be 0-{PIN_COUNT - 1}, got {pin}")
        if pin in self._reserved:
            raise ValidationError(f"Pin {pin} is reserved on this board")

    def _clear_pin(self, pin: int) -> None:
        function = self._by_pin.pop(pin, None)
        if function is not None:
            del self._by_function[function]

    def _set(self, pin: int, function: InputFunction) -> None:
        self._by_pin[pin] = function
        self._by_function[function] = pin
