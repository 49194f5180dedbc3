# dispatcher.py
# Routes validated intents to the automation surface.
#
# Invariants:
#   - Only validated intents reach this layer; schema checks are not re-run.
#   - Risk policy is enforced before anything touches the surface.
#   - Routing is an exhaustive match over the closed Operation enum. No
#     getattr, no lookup tables of callables, no default branch that acts.
#   - Every error raised below this boundary becomes a Failure result.

import asyncio
import logging
import math
from collections.abc import Mapping
from typing import assert_never

from assistive_control.automation import (
    AutomationError,
    AutomationSurface,
    Point,
    ScrollDirection,
    parse_modifiers,
)
from assistive_control.models import (
    ClarificationNeeded,
    ExecutionResult,
    Failure,
    Intent,
    Observation,
    Operation,
    RiskLevel,
    Success,
)
from assistive_control.schema import ActionSchema
from assistive_control.validator import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

PERMITTED_RISK = RiskLevel.HARMLESS

NO_HANDLER_REGISTERED = "No handler registered for the requested action."
NOT_PERMITTED = "This action is not permitted in the current policy."
NO_HANDLER_FOUND = "No handler found for the requested action."

DEFAULT_STEP_DELAY = 0.3
DEFAULT_LAUNCH_DELAY = 1.5
DEFAULT_ACTION_TIMEOUT = 15.0


class ParameterError(ValueError):
    """A validated parameter could not be converted to the type a leaf needs."""


# ---------------------------------------------------------------------------
# Parameter extraction
# ---------------------------------------------------------------------------


def _optional(params: Mapping[str, str], key: str) -> str | None:
    value = params.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _required(params: Mapping[str, str], key: str) -> str:
    value = _optional(params, key)
    if value is None:
        raise ParameterError(f"Required parameter '{key}' is missing.")
    return value


def _number(params: Mapping[str, str], key: str) -> float:
    raw = _required(params, key)
    try:
        value = float(raw)
    except ValueError:
        raise ParameterError(f"Parameter '{key}' must be a number, got '{raw}'.") from None
    if not math.isfinite(value):
        raise ParameterError(f"Parameter '{key}' must be a finite number, got '{raw}'.")
    return value


def _count(params: Mapping[str, str], key: str, default: int) -> int:
    raw = _optional(params, key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ParameterError(f"Parameter '{key}' must be a whole number, got '{raw}'.") from None
    if value < 1:
        raise ParameterError(f"Parameter '{key}' must be at least 1, got {value}.")
    return value


def _point(params: Mapping[str, str], x_key: str, y_key: str) -> Point:
    return Point(x=_number(params, x_key), y=_number(params, y_key))


def _direction(params: Mapping[str, str]) -> ScrollDirection:
    raw = _required(params, "direction")
    try:
        return ScrollDirection(raw.lower())
    except ValueError:
        raise ParameterError(
            f"Scroll direction must be up, down, left or right, got '{raw}'."
        ) from None


def _has_all(params: Mapping[str, str], *keys: str) -> bool:
    return all(_optional(params, key) is not None for key in keys)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher:
    """
    Enforces risk policy, then produces exactly one ExecutionResult per intent.

    Sequences are dispatched step by step with a settle pause in between;
    launching an application gets the longer pause since its effects are
    asynchronous.
    """

    def __init__(
        self,
        schema: ActionSchema,
        surface: AutomationSurface,
        *,
        step_delay: float = DEFAULT_STEP_DELAY,
        launch_delay: float = DEFAULT_LAUNCH_DELAY,
        action_timeout: float | None = DEFAULT_ACTION_TIMEOUT,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._schema = schema
        self._surface = surface
        self._step_delay = step_delay
        self._launch_delay = launch_delay
        self._action_timeout = action_timeout
        self._max_depth = max_depth

    async def dispatch(self, intent: Intent) -> ExecutionResult:
        return await self._dispatch(intent, depth=0)

    async def _dispatch(self, intent: Intent, depth: int) -> ExecutionResult:
        logger.info("Dispatching intent: %s", intent.operation)

        risk = self._schema.risk_level(intent.operation)
        if risk is None:
            logger.error("No schema entry for intent: %s", intent.operation)
            return Failure(reason=NO_HANDLER_REGISTERED)

        if risk is not PERMITTED_RISK:
            logger.error("Risk policy blocked '%s': %s", intent.operation, risk.value)
            return Failure(reason=NOT_PERMITTED)

        if intent.operation == Operation.SEQUENCE.value:
            return await self._run_sequence(intent, depth)

        return await self._run_leaf(intent)

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    async def _run_sequence(self, intent: Intent, depth: int) -> ExecutionResult:
        steps = intent.steps or ()
        if not steps:
            return Failure(reason="Sequence has no steps.")
        if depth >= self._max_depth:
            return Failure(reason=f"Plan nesting exceeds the maximum depth of {self._max_depth}.")

        for number, step in enumerate(steps, start=1):
            result = await self._dispatch(step, depth + 1)
            match result:
                case Failure(reason=reason):
                    logger.warning("Sequence halted at step %d: %s", number, reason)
                    return Failure(reason=f"Step '{number}' failed: {reason}")
                case ClarificationNeeded():
                    return result
                case Observation():
                    # Pre-planned sequences do not re-plan mid-flight.
                    logger.debug("Discarding observation from step %d", number)
                case Success():
                    pass
                case _:
                    assert_never(result)

            if number < len(steps):
                await asyncio.sleep(self._settle_delay(step))

        return Success()

    def _settle_delay(self, step: Intent) -> float:
        if step.operation == Operation.OPEN_APPLICATION.value:
            return self._launch_delay
        return self._step_delay

    # ------------------------------------------------------------------
    # Leaves
    # ------------------------------------------------------------------

    async def _run_leaf(self, intent: Intent) -> ExecutionResult:
        try:
            operation = Operation(intent.operation)
        except ValueError:
            logger.error("Registered intent '%s' has no handler", intent.operation)
            return Failure(reason=NO_HANDLER_FOUND)

        try:
            result = await asyncio.wait_for(
                self._route(operation, intent.parameters), timeout=self._action_timeout
            )
        except ParameterError as exc:
            logger.error("Bad parameter for '%s': %s", operation.value, exc)
            return Failure(reason=str(exc))
        except AutomationError as exc:
            logger.error("Automation failed for '%s': %s", operation.value, exc)
            return Failure(reason=str(exc))
        except TimeoutError:
            logger.error("'%s' timed out after %ss", operation.value, self._action_timeout)
            return Failure(
                reason=f"Action '{operation.value}' timed out after {self._action_timeout} seconds."
            )
        except Exception as exc:
            logger.exception("Unexpected error for '%s'", operation.value)
            return Failure(reason=str(exc) or type(exc).__name__)

        if isinstance(result, Success):
            logger.info("Intent '%s' executed successfully.", operation.value)
        return result

    async def _route(self, operation: Operation, params: Mapping[str, str]) -> ExecutionResult:
        surface = self._surface

        match operation:
            case Operation.OPEN_APPLICATION:
                await surface.open_application(_required(params, "bundle_identifier"))

            case Operation.CLICK_ELEMENT:
                await surface.click_element(
                    _required(params, "application_name"),
                    _required(params, "element_label"),
                    _optional(params, "role"),
                )

            case Operation.RIGHT_CLICK_ELEMENT:
                await surface.right_click_element(
                    _required(params, "application_name"),
                    _required(params, "element_label"),
                    _optional(params, "role"),
                )

            case Operation.DOUBLE_CLICK_ELEMENT:
                await surface.double_click_element(
                    _required(params, "application_name"),
                    _required(params, "element_label"),
                    _optional(params, "role"),
                )

            case Operation.TYPE_TEXT:
                # Text is passed through untouched; whitespace may be intentional.
                text = params.get("text")
                if text is None:
                    raise ParameterError("Required parameter 'text' is missing.")
                await surface.type_text(text)

            case Operation.PRESS_KEY:
                try:
                    modifiers = parse_modifiers(params.get("modifiers"))
                except ValueError as exc:
                    raise ParameterError(str(exc)) from None
                await surface.press_key(_required(params, "key"), modifiers)

            case Operation.SCROLL:
                await surface.scroll(
                    _required(params, "application_name"),
                    _direction(params),
                    _count(params, "amount", default=3),
                )

            case Operation.MOVE_MOUSE:
                if _has_all(params, "x", "y"):
                    await surface.move_mouse_to_point(_point(params, "x", "y"))
                else:
                    await surface.move_mouse_to_element(
                        _required(params, "application_name"),
                        _required(params, "element_label"),
                    )

            case Operation.LEFT_CLICK_COORDINATES:
                await surface.click_at(_point(params, "x", "y"), _count(params, "count", default=1))

            case Operation.DRAG:
                if _has_all(params, "start_x", "start_y", "end_x", "end_y"):
                    await surface.drag_between_points(
                        _point(params, "start_x", "start_y"),
                        _point(params, "end_x", "end_y"),
                    )
                else:
                    await surface.drag_between_elements(
                        _required(params, "application_name"),
                        _required(params, "from_label"),
                        _required(params, "to_label"),
                    )

            case Operation.CLARIFY_REQUEST:
                return ClarificationNeeded(question=_required(params, "question"))

            case Operation.GET_FRONTMOST_APP:
                name = await surface.frontmost_application()
                return Observation(data=f"Frontmost application: {name}")

            case Operation.GET_SCREEN_ELEMENTS:
                application = _optional(params, "application_name")
                elements = await surface.screen_elements(application)
                target = application or "the frontmost application"
                if not elements:
                    return Observation(data=f"No labelled elements found in {target}.")
                return Observation(data=f"Elements in {target}: " + ", ".join(elements))

            case Operation.SEQUENCE:
                # Sequences are expanded before routing; reaching here is a contract bug.
                return Failure(reason=NO_HANDLER_FOUND)

            case _:
                assert_never(operation)

        return Success()
