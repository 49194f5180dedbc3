# harness.py
# Agent loop.
#
# The loop is the kernel. The model is a passive planner. This class owns all
# control flow, state and bounds. Model output only ever reaches the dispatcher
# after the validator has accepted it.
#
# Control flow per human turn:
#   retry loop (max_retries)
#     └─ pass: model → validate → dispatch
#          ├─ observation  → feed back, ask again (max_observations)
#          ├─ clarification / unsupported / success → stop
#          └─ failure → feed back, retry
#
# All presentation is delegated to observers. Nothing here formats output.

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from assistive_control.dispatcher import Dispatcher
from assistive_control.llm import ModelClient, ModelClientError
from assistive_control.models import (
    AgentStatus,
    ClarificationNeeded,
    ConversationEntry,
    EntryKind,
    ExecutionResult,
    Failure,
    Intent,
    Invalid,
    LLMMessage,
    LowConfidenceWarning,
    Observation,
    Operation,
    Success,
    TurnOutcome,
    TurnResult,
    Unsupported,
    Valid,
)
from assistive_control.schema import ActionSchema
from assistive_control.validator import IntentValidator

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_MAX_OBSERVATIONS = 5
DEFAULT_MODEL_TIMEOUT = 60.0
OBSERVATION_PREVIEW = 120


# ---------------------------------------------------------------------------
# Exceptions & observer protocol
# ---------------------------------------------------------------------------


class TurnInProgressError(RuntimeError):
    """Raised when a new turn is submitted while another is still running."""


class AgentObserver(Protocol):
    def status_changed(self, status: AgentStatus, detail: str | None) -> None: ...

    def entry_added(self, entry: ConversationEntry) -> None: ...


# ---------------------------------------------------------------------------
# Turn state
# ---------------------------------------------------------------------------


@dataclass
class _TurnState:
    attempts: int = 0
    retries: int = 0
    observations: int = 0


@dataclass(frozen=True)
class _Halted:
    """The pass ended without a retry-worthy failure."""

    outcome: TurnOutcome


@dataclass(frozen=True)
class _Failed:
    reason: str


_PassResult = _Halted | _Failed


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def summarize_intent(intent: Intent) -> str:
    """One-line, user-facing description of what an intent is about to do."""
    p = intent.parameters
    match intent.operation:
        case Operation.OPEN_APPLICATION:
            return f"Intent: open application ({p.get('bundle_identifier', 'unknown')})"
        case Operation.CLICK_ELEMENT:
            return f"Intent: click '{p.get('element_label', 'unknown')}' in {p.get('application_name', 'unknown')}"
        case Operation.RIGHT_CLICK_ELEMENT:
            return f"Intent: right-click '{p.get('element_label', 'unknown')}' in {p.get('application_name', 'unknown')}"
        case Operation.DOUBLE_CLICK_ELEMENT:
            return f"Intent: double-click '{p.get('element_label', 'unknown')}' in {p.get('application_name', 'unknown')}"
        case Operation.TYPE_TEXT:
            return f'Intent: type text "{_preview(p.get("text", ""), 40)}"'
        case Operation.PRESS_KEY:
            modifiers = f" ({p['modifiers']})" if p.get("modifiers") else ""
            return f"Intent: press key {p.get('key', '?')}{modifiers}"
        case Operation.SCROLL:
            return f"Intent: scroll {p.get('direction', 'down')} in {p.get('application_name', 'unknown')}"
        case Operation.MOVE_MOUSE:
            if "x" in p and "y" in p:
                return f"Intent: move mouse to ({p['x']}, {p['y']})"
            return f"Intent: move mouse to '{p.get('element_label', 'unknown')}'"
        case Operation.LEFT_CLICK_COORDINATES:
            return f"Intent: click at ({p.get('x', '?')}, {p.get('y', '?')})"
        case Operation.DRAG:
            if "application_name" in p:
                return (
                    f"Intent: drag '{p.get('from_label', '?')}' to "
                    f"'{p.get('to_label', '?')}' in {p['application_name']}"
                )
            return (
                f"Intent: drag from ({p.get('start_x', '?')},{p.get('start_y', '?')}) "
                f"to ({p.get('end_x', '?')},{p.get('end_y', '?')})"
            )
        case Operation.SEQUENCE:
            count = len(intent.steps or ())
            return f"Intent: sequence ({count} step{'' if count == 1 else 's'})"
        case Operation.CLARIFY_REQUEST:
            return f"Clarifying: {_preview(p.get('question', '?'), 60)}"
        case Operation.GET_FRONTMOST_APP:
            return "Observing: querying frontmost app"
        case Operation.GET_SCREEN_ELEMENTS:
            return f"Observing: listing elements in {p.get('application_name', 'frontmost app')}"
        case _:
            return f"Intent: {intent.operation}"


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


class AgentLoop:
    """
    Drives human turn → model → validator → dispatcher, with bounded retries
    and bounded observation round-trips.

    Example:
        loop = AgentLoop(client, schema, IntentValidator(schema), Dispatcher(schema, surface))
        result = await loop.handle_turn("open Safari and press Cmd+T")

    Public state is limited to `status`, `status_detail` and `conversation`.
    Model-facing history persists across turns until new_session().
    """

    def __init__(
        self,
        client: ModelClient,
        schema: ActionSchema,
        validator: IntentValidator,
        dispatcher: Dispatcher,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_observations: int = DEFAULT_MAX_OBSERVATIONS,
        model_timeout: float | None = DEFAULT_MODEL_TIMEOUT,
        observers: Iterable[AgentObserver] = (),
    ) -> None:
        self._client = client
        self._schema = schema
        self._validator = validator
        self._dispatcher = dispatcher
        self._max_retries = max_retries
        self._max_observations = max_observations
        self._model_timeout = model_timeout
        self._observers = list(observers)

        self._history: list[LLMMessage] = []
        self._conversation: list[ConversationEntry] = []
        self._status = AgentStatus.IDLE
        self._status_detail: str | None = None
        self._busy = False

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def status_detail(self) -> str | None:
        return self._status_detail

    @property
    def conversation(self) -> tuple[ConversationEntry, ...]:
        return tuple(self._conversation)

    @property
    def busy(self) -> bool:
        return self._busy

    def _set_status(self, status: AgentStatus, detail: str | None = None) -> None:
        self._status = status
        self._status_detail = detail
        for observer in self._observers:
            observer.status_changed(status, detail)

    def _append(self, kind: EntryKind, text: str) -> None:
        entry = ConversationEntry(kind=kind, text=text)
        self._conversation.append(entry)
        for observer in self._observers:
            observer.entry_added(entry)

    def _remember(self, role: str, content: str) -> None:
        self._history.append(LLMMessage(role=role, content=content))

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def new_session(self) -> None:
        """Forget all model context and the visible log."""
        if self._busy:
            raise TurnInProgressError("Cannot start a new session while a turn is running.")
        self._history.clear()
        self._conversation.clear()
        self._set_status(AgentStatus.IDLE)
        logger.info("New session started")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle_turn(self, text: str) -> TurnResult:
        """
        Process one human message to completion.

        Returns how the turn ended. Never raises for model, validation or
        execution failures; those end the turn with outcome FAILED.
        """
        message = text.strip()
        if not message:
            raise ValueError("Cannot process an empty message.")
        if self._busy:
            raise TurnInProgressError("A turn is already in progress.")

        self._busy = True
        try:
            self._append(EntryKind.USER_INPUT, message)
            self._remember("user", message)
            return await self._run_turn()
        finally:
            self._busy = False

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _run_turn(self) -> TurnResult:
        state = _TurnState()

        while True:
            state.attempts += 1
            match await self._run_pass(state):
                case _Halted(outcome=outcome):
                    return TurnResult(outcome=outcome, attempts=state.attempts)

                case _Failed(reason=reason):
                    state.retries += 1
                    if state.retries > self._max_retries:
                        logger.warning("Turn failed after %d attempts: %s", state.attempts, reason)
                        self._set_status(
                            AgentStatus.ERROR,
                            f"Failed after {self._max_retries} retries: {reason}",
                        )
                        self._append(
                            EntryKind.ERROR,
                            f"Could not complete the request after {state.attempts} attempts.",
                        )
                        return TurnResult(
                            outcome=TurnOutcome.FAILED, reason=reason, attempts=state.attempts
                        )

                    self._append(
                        EntryKind.PLAN_SUMMARY,
                        f"Attempt {state.retries} failed: {reason}. Retrying...",
                    )
                    self._remember(
                        "assistant", f"Execution failed: {reason}. Trying a different approach."
                    )
                    self._remember(
                        "user",
                        f"The previous attempt failed: {reason}. Please plan a different approach.",
                    )

    # ------------------------------------------------------------------
    # Inner pass (observation loop)
    # ------------------------------------------------------------------

    async def _run_pass(self, state: _TurnState) -> _PassResult:
        state.observations = 0

        while True:
            self._set_status(AgentStatus.THINKING)

            intent = await self._request_intent()
            if isinstance(intent, _Failed):
                return intent

            logger.info("Raw intent: %s", intent.operation)

            match self._validator.validate(intent):
                case Unsupported(message=message, suggestion=suggestion):
                    self._set_status(AgentStatus.IDLE)
                    self._append(EntryKind.PLAN_SUMMARY, f"Could not complete: {message}")
                    if suggestion and suggestion.strip():
                        self._append(EntryKind.SUGGESTION, suggestion)
                    self._remember("assistant", f"Intent unsupported: {message}")
                    return _Halted(TurnOutcome.UNSUPPORTED)

                case Invalid(error=error):
                    reason = error.description
                    self._set_status(AgentStatus.ERROR, reason)
                    self._append(EntryKind.PLAN_SUMMARY, f"Invalid intent: {reason}")
                    self._append(EntryKind.ERROR, reason)
                    self._remember("assistant", f"Validation error: {reason}")
                    return _Failed(reason)

                case LowConfidenceWarning(intent=accepted, warning=warning):
                    # Dispatched once; never joins the observation loop.
                    self._append(EntryKind.LOW_CONFIDENCE_WARNING, warning)
                    self._remember("assistant", f"Low-confidence intent: {accepted.operation}")
                    result = await self._execute(accepted)
                    return self._settle(result, accepted)

                case Valid(intent=accepted):
                    result = await self._execute(accepted)
                    if not isinstance(result, Observation):
                        return self._settle(result, accepted)

                    state.observations += 1
                    if state.observations > self._max_observations:
                        reason = "Exceeded maximum observation steps."
                        self._set_status(AgentStatus.ERROR, reason)
                        self._append(EntryKind.ERROR, reason)
                        return _Failed(reason)

                    self._set_status(AgentStatus.OBSERVING)
                    self._append(
                        EntryKind.PLAN_SUMMARY,
                        f"Observed: {_preview(result.data, OBSERVATION_PREVIEW)}",
                    )
                    self._remember("assistant", f"System observation: {result.data}")
                    self._remember(
                        "user",
                        f"Observation result: {result.data}\n\n"
                        "Now continue planning and produce the next action JSON.",
                    )

    async def _request_intent(self) -> Intent | _Failed:
        try:
            return await asyncio.wait_for(
                self._client.generate_intent(
                    tuple(self._history), self._schema.list_descriptors()
                ),
                timeout=self._model_timeout,
            )
        except TimeoutError:
            reason = f"Model request timed out after {self._model_timeout} seconds."
        except ModelClientError as exc:
            reason = str(exc)
        except Exception as exc:
            logger.exception("Unexpected error from model client")
            reason = str(exc) or type(exc).__name__

        logger.error("Model call failed: %s", reason)
        self._set_status(AgentStatus.ERROR, reason)
        self._append(EntryKind.ERROR, reason)
        return _Failed(reason)

    async def _execute(self, intent: Intent) -> ExecutionResult:
        self._append(EntryKind.PLAN_SUMMARY, summarize_intent(intent))
        self._set_status(AgentStatus.ACTING)
        return await self._dispatcher.dispatch(intent)

    def _settle(self, result: ExecutionResult, intent: Intent) -> _PassResult:
        match result:
            case Success():
                self._set_status(AgentStatus.IDLE)
                self._append(EntryKind.EXECUTION_RESULT, "Done.")
                self._remember("assistant", f"Executed: {intent.operation}")
                return _Halted(TurnOutcome.COMPLETED)

            case Failure(reason=reason):
                self._set_status(AgentStatus.ERROR, reason)
                self._append(EntryKind.EXECUTION_RESULT, f"Failed: {reason}")
                self._remember("assistant", f"Execution failed: {reason}")
                return _Failed(reason)

            case ClarificationNeeded(question=question):
                self._set_status(AgentStatus.IDLE)
                self._append(EntryKind.CLARIFICATION, question)
                self._remember("assistant", f"Asked user: {question}")
                return _Halted(TurnOutcome.CLARIFICATION)

            case Observation():
                reason = "Unexpected observation result in low-confidence branch."
                self._set_status(AgentStatus.ERROR, reason)
                self._append(EntryKind.ERROR, reason)
                return _Failed(reason)

        raise AssertionError(f"Unhandled execution result: {result!r}")
