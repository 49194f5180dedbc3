# schema.py
# Action schema: the single source of truth for what can ever be executed.
#
# A descriptor and its risk level are declared together through register();
# there is no other way to put an operation in front of the validator or the
# dispatcher, and no runtime registration API.

from collections.abc import Iterable
from typing import NamedTuple

from assistive_control.models import ActionDescriptor, Operation, RiskLevel


class RegisteredAction(NamedTuple):
    descriptor: ActionDescriptor
    risk: RiskLevel


def register(
    operation: Operation | str,
    risk: RiskLevel,
    description: str,
    *,
    required: Iterable[str] = (),
    optional: Iterable[str] = (),
    groups: Iterable[Iterable[str]] = (),
) -> RegisteredAction:
    """Build one catalog entry. Risk is mandatory at the same call site."""
    name = operation.value if isinstance(operation, Operation) else operation
    descriptor = ActionDescriptor(
        name=name,
        description=description,
        required_parameters=tuple(required),
        optional_parameters=tuple(optional),
        parameter_groups=tuple(tuple(group) for group in groups),
    )
    return RegisteredAction(descriptor=descriptor, risk=RiskLevel(risk))


class ActionSchema:
    """
    Immutable catalog of registered operations.

    Descriptor order is preserved exactly as registered so that the prompt
    assembled from list_descriptors() is reproducible.
    """

    def __init__(self, registrations: Iterable[RegisteredAction]) -> None:
        entries: dict[str, RegisteredAction] = {}
        for entry in registrations:
            name = entry.descriptor.name
            if name in entries:
                raise ValueError(f"Operation '{name}' is registered more than once.")
            entries[name] = entry
        self._entries = entries

    def list_descriptors(self) -> list[ActionDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def descriptor(self, name: str) -> ActionDescriptor | None:
        entry = self._entries.get(name)
        return entry.descriptor if entry else None

    def risk_level(self, name: str) -> RiskLevel | None:
        """None means the operation is not registered."""
        entry = self._entries.get(name)
        return entry.risk if entry else None

    def names(self) -> frozenset[str]:
        return frozenset(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Shipped catalog
# ---------------------------------------------------------------------------

_ELEMENT_TARGET = ("application_name", "element_label")


def default_schema() -> ActionSchema:
    """The catalog surfaced to the model. Order is prompt order."""
    return ActionSchema(
        [
            register(
                Operation.OPEN_APPLICATION,
                RiskLevel.HARMLESS,
                "Opens a macOS application by its bundle identifier.",
                required=["bundle_identifier"],
            ),
            register(
                Operation.CLICK_ELEMENT,
                RiskLevel.HARMLESS,
                "Clicks a UI element in a running application, identified by its "
                "accessibility label and optional role.",
                required=_ELEMENT_TARGET,
                optional=["role"],
            ),
            register(
                Operation.RIGHT_CLICK_ELEMENT,
                RiskLevel.HARMLESS,
                "Right-clicks a UI element to open its context menu.",
                required=_ELEMENT_TARGET,
                optional=["role"],
            ),
            register(
                Operation.DOUBLE_CLICK_ELEMENT,
                RiskLevel.HARMLESS,
                "Double-clicks a UI element, e.g. to open a file in Finder.",
                required=_ELEMENT_TARGET,
                optional=["role"],
            ),
            register(
                Operation.TYPE_TEXT,
                RiskLevel.HARMLESS,
                "Types the specified text into the currently focused text field. "
                "Maximum 500 characters. Secure/password fields are blocked.",
                required=["text"],
            ),
            register(
                Operation.PRESS_KEY,
                RiskLevel.HARMLESS,
                "Presses a key, optionally with comma-separated modifiers "
                "(cmd, shift, option, control, fn).",
                required=["key"],
                optional=["modifiers"],
            ),
            register(
                Operation.SCROLL,
                RiskLevel.HARMLESS,
                "Scrolls inside an application. direction is up, down, left or right; "
                "amount is a number of lines (default 3).",
                required=["application_name", "direction"],
                optional=["amount"],
            ),
            register(
                Operation.MOVE_MOUSE,
                RiskLevel.HARMLESS,
                "Moves the pointer either to screen coordinates (x, y) or over a "
                "named element (application_name, element_label).",
                optional=["x", "y", *_ELEMENT_TARGET],
                groups=[("x", "y"), _ELEMENT_TARGET],
            ),
            register(
                Operation.LEFT_CLICK_COORDINATES,
                RiskLevel.HARMLESS,
                "Clicks at explicit screen coordinates. Use only when no named "
                "element exists. count is the number of clicks (default 1).",
                required=["x", "y"],
                optional=["count"],
            ),
            register(
                Operation.DRAG,
                RiskLevel.HARMLESS,
                "Drags either between two screen points or from one named element "
                "to another inside an application.",
                optional=[
                    "start_x",
                    "start_y",
                    "end_x",
                    "end_y",
                    "application_name",
                    "from_label",
                    "to_label",
                ],
                groups=[
                    ("start_x", "start_y", "end_x", "end_y"),
                    ("application_name", "from_label", "to_label"),
                ],
            ),
            register(
                Operation.SEQUENCE,
                RiskLevel.HARMLESS,
                "Runs the intents listed in `steps` in order.",
            ),
            register(
                Operation.CLARIFY_REQUEST,
                RiskLevel.HARMLESS,
                "Asks the user a clarifying question instead of acting.",
                required=["question"],
            ),
            register(
                Operation.GET_FRONTMOST_APP,
                RiskLevel.HARMLESS,
                "Returns the name of the frontmost application. Read-only.",
            ),
            register(
                Operation.GET_SCREEN_ELEMENTS,
                RiskLevel.HARMLESS,
                "Lists the labelled UI elements of an application (frontmost if "
                "omitted). Read-only.",
                optional=["application_name"],
            ),
        ]
    )
