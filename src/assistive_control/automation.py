# automation.py
# Boundary to the UI automation primitives.
#
# The dispatcher only ever calls these methods with already-validated, typed
# arguments. Implementations report failure by raising AutomationError with a
# human-readable reason; the dispatcher turns that into a Failure result.

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class AutomationError(Exception):
    """Raised by a surface when an action cannot be performed."""


class ScrollDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class Modifier(str, Enum):
    COMMAND = "cmd"
    SHIFT = "shift"
    OPTION = "option"
    CONTROL = "control"
    FUNCTION = "fn"


_MODIFIER_ALIASES = {
    "cmd": Modifier.COMMAND,
    "command": Modifier.COMMAND,
    "shift": Modifier.SHIFT,
    "option": Modifier.OPTION,
    "opt": Modifier.OPTION,
    "alt": Modifier.OPTION,
    "control": Modifier.CONTROL,
    "ctrl": Modifier.CONTROL,
    "fn": Modifier.FUNCTION,
}


def parse_modifiers(raw: str | None) -> tuple[Modifier, ...]:
    """Parse 'cmd,shift' style modifier lists. Raises ValueError on unknown names."""
    if raw is None or not raw.strip():
        return ()
    modifiers: list[Modifier] = []
    for token in raw.replace("+", ",").split(","):
        name = token.strip().lower()
        if not name:
            continue
        if name not in _MODIFIER_ALIASES:
            raise ValueError(f"Unknown modifier '{token.strip()}'.")
        modifier = _MODIFIER_ALIASES[name]
        if modifier not in modifiers:
            modifiers.append(modifier)
    return tuple(modifiers)


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@runtime_checkable
class AutomationSurface(Protocol):
    """One coroutine per leaf action kind."""

    async def open_application(self, bundle_identifier: str) -> None: ...

    async def click_element(self, application_name: str, label: str, role: str | None) -> None: ...

    async def right_click_element(
        self, application_name: str, label: str, role: str | None
    ) -> None: ...

    async def double_click_element(
        self, application_name: str, label: str, role: str | None
    ) -> None: ...

    async def type_text(self, text: str) -> None: ...

    async def press_key(self, key: str, modifiers: tuple[Modifier, ...]) -> None: ...

    async def scroll(
        self, application_name: str, direction: ScrollDirection, amount: int
    ) -> None: ...

    async def move_mouse_to_point(self, point: Point) -> None: ...

    async def move_mouse_to_element(self, application_name: str, label: str) -> None: ...

    async def click_at(self, point: Point, count: int) -> None: ...

    async def drag_between_points(self, start: Point, end: Point) -> None: ...

    async def drag_between_elements(
        self, application_name: str, from_label: str, to_label: str
    ) -> None: ...

    async def frontmost_application(self) -> str: ...

    async def screen_elements(self, application_name: str | None) -> list[str]: ...


# ---------------------------------------------------------------------------
# Dry-run surface
# ---------------------------------------------------------------------------


@dataclass
class DryRunSurface:
    """
    Reference surface that performs nothing and records every call.

    Used by the terminal front-end when no platform backend is wired in, so the
    full plan → validate → dispatch loop can be exercised safely.
    """

    frontmost: str = "Finder"
    elements: dict[str, list[str]] = field(default_factory=dict)
    calls: list[tuple[str, tuple]] = field(default_factory=list)

    def _record(self, name: str, *args: object) -> None:
        logger.info("dry-run %s%s", name, args)
        self.calls.append((name, args))

    async def open_application(self, bundle_identifier: str) -> None:
        self._record("open_application", bundle_identifier)
        self.frontmost = bundle_identifier.rsplit(".", 1)[-1]

    async def click_element(self, application_name: str, label: str, role: str | None) -> None:
        self._record("click_element", application_name, label, role)

    async def right_click_element(
        self, application_name: str, label: str, role: str | None
    ) -> None:
        self._record("right_click_element", application_name, label, role)

    async def double_click_element(
        self, application_name: str, label: str, role: str | None
    ) -> None:
        self._record("double_click_element", application_name, label, role)

    async def type_text(self, text: str) -> None:
        self._record("type_text", text)

    async def press_key(self, key: str, modifiers: tuple[Modifier, ...]) -> None:
        self._record("press_key", key, modifiers)

    async def scroll(self, application_name: str, direction: ScrollDirection, amount: int) -> None:
        self._record("scroll", application_name, direction, amount)

    async def move_mouse_to_point(self, point: Point) -> None:
        self._record("move_mouse_to_point", point)

    async def move_mouse_to_element(self, application_name: str, label: str) -> None:
        self._record("move_mouse_to_element", application_name, label)

    async def click_at(self, point: Point, count: int) -> None:
        self._record("click_at", point, count)

    async def drag_between_points(self, start: Point, end: Point) -> None:
        self._record("drag_between_points", start, end)

    async def drag_between_elements(
        self, application_name: str, from_label: str, to_label: str
    ) -> None:
        self._record("drag_between_elements", application_name, from_label, to_label)

    async def frontmost_application(self) -> str:
        self._record("frontmost_application")
        return self.frontmost

    async def screen_elements(self, application_name: str | None) -> list[str]:
        self._record("screen_elements", application_name)
        return list(self.elements.get(application_name or self.frontmost, []))
