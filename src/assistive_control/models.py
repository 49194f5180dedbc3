# models.py
# Data contracts for the assistive-control core.
# No business logic lives here. Pure schema and validation of shape.
#
# Every tagged union below is a plain union of small frozen models, each with a
# `kind` literal, so callers match on them with `match`/`case`.

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

_FROZEN = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Action catalog
# ---------------------------------------------------------------------------


class RiskLevel(str, Enum):
    """Blast radius of an operation. Only HARMLESS is currently executable."""

    HARMLESS = "harmless"
    MODERATE = "moderate"
    DESTRUCTIVE = "destructive"


class Operation(str, Enum):
    """Closed set of operations the dispatcher knows how to route."""

    OPEN_APPLICATION = "open_application"
    CLICK_ELEMENT = "click_element"
    RIGHT_CLICK_ELEMENT = "right_click_element"
    DOUBLE_CLICK_ELEMENT = "double_click_element"
    TYPE_TEXT = "type_text"
    PRESS_KEY = "press_key"
    SCROLL = "scroll"
    MOVE_MOUSE = "move_mouse"
    LEFT_CLICK_COORDINATES = "left_click_coordinates"
    DRAG = "drag"
    SEQUENCE = "sequence"
    CLARIFY_REQUEST = "clarify_request"
    GET_FRONTMOST_APP = "get_frontmost_app"
    GET_SCREEN_ELEMENTS = "get_screen_elements"


# Sentinel the model returns when a request maps to nothing in the catalog.
UNSUPPORTED = "unsupported"


class ActionDescriptor(BaseModel):
    """Prompt-facing description of one registered operation."""

    model_config = _FROZEN

    name: str = Field(..., description="Operation name, unique across the catalog.")
    description: str = Field(..., description="Human-readable text shown to the model.")
    required_parameters: tuple[str, ...] = Field(default=())
    optional_parameters: tuple[str, ...] = Field(default=())
    parameter_groups: tuple[tuple[str, ...], ...] = Field(
        default=(),
        description="Alternative complete groupings; at least one must be satisfied.",
    )


# ---------------------------------------------------------------------------
# Intent (untrusted model output)
# ---------------------------------------------------------------------------


class Intent(BaseModel):
    """
    Structured proposal emitted by the model.

    Untrusted until it has passed IntentValidator. Wire keys follow the
    prompt contract: `intent`, `parameters`, `confidence`, `suggestion`, `steps`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    operation: str = Field(..., alias="intent")
    parameters: dict[str, str] = Field(...)
    confidence: float | None = Field(default=None, allow_inf_nan=False)
    suggestion: str | None = None
    steps: tuple["Intent", ...] | None = None

    @field_validator("parameters", mode="before")
    @classmethod
    def _stringify_scalars(cls, value: Any) -> Any:
        # Models routinely emit {"x": 200}; scalars become strings, anything
        # nested is left for the str check to reject.
        if not isinstance(value, dict):
            return value
        coerced = {}
        for key, item in value.items():
            if isinstance(item, bool):
                coerced[key] = "true" if item else "false"
            elif isinstance(item, (int, float)):
                coerced[key] = str(item)
            else:
                coerced[key] = item
        return coerced


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class UnknownOperation(BaseModel):
    model_config = _FROZEN
    kind: Literal["unknown_operation"] = "unknown_operation"
    name: str

    @property
    def description(self) -> str:
        return f"Unknown intent '{self.name}'. Only supported intents are permitted."


class MissingParameter(BaseModel):
    model_config = _FROZEN
    kind: Literal["missing_parameter"] = "missing_parameter"
    key: str

    @property
    def description(self) -> str:
        return f"Required parameter '{self.key}' is missing."


class EmptyParameter(BaseModel):
    model_config = _FROZEN
    kind: Literal["empty_parameter"] = "empty_parameter"
    key: str

    @property
    def description(self) -> str:
        return f"Required parameter '{self.key}' must not be empty."


class TextTooLong(BaseModel):
    model_config = _FROZEN
    kind: Literal["text_too_long"] = "text_too_long"
    actual_length: int

    @property
    def description(self) -> str:
        return (
            "Text parameter exceeds the 500-character limit "
            f"({self.actual_length} characters)."
        )


class LowConfidence(BaseModel):
    model_config = _FROZEN
    kind: Literal["low_confidence"] = "low_confidence"

    @property
    def description(self) -> str:
        return "Low confidence — please rephrase your request."


class UnsupportedOperation(BaseModel):
    model_config = _FROZEN
    kind: Literal["unsupported_operation"] = "unsupported_operation"

    @property
    def description(self) -> str:
        return "This request cannot be mapped to a supported action."


ValidationError = Annotated[
    Union[
        UnknownOperation,
        MissingParameter,
        EmptyParameter,
        TextTooLong,
        LowConfidence,
        UnsupportedOperation,
    ],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------


class Valid(BaseModel):
    model_config = _FROZEN
    kind: Literal["valid"] = "valid"
    intent: Intent


class Invalid(BaseModel):
    model_config = _FROZEN
    kind: Literal["invalid"] = "invalid"
    error: ValidationError


class Unsupported(BaseModel):
    """The model itself declared the request unsupported. Not an error."""

    model_config = _FROZEN
    kind: Literal["unsupported"] = "unsupported"
    message: str
    suggestion: str | None = None


class LowConfidenceWarning(BaseModel):
    """Structurally valid intent accepted with a caveat for the user."""

    model_config = _FROZEN
    kind: Literal["low_confidence_warning"] = "low_confidence_warning"
    intent: Intent
    warning: str


ValidationResult = Annotated[
    Union[Valid, Invalid, Unsupported, LowConfidenceWarning],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


class Success(BaseModel):
    model_config = _FROZEN
    kind: Literal["success"] = "success"


class Failure(BaseModel):
    model_config = _FROZEN
    kind: Literal["failure"] = "failure"
    reason: str


class ClarificationNeeded(BaseModel):
    model_config = _FROZEN
    kind: Literal["clarification_needed"] = "clarification_needed"
    question: str


class Observation(BaseModel):
    model_config = _FROZEN
    kind: Literal["observation"] = "observation"
    data: str


ExecutionResult = Annotated[
    Union[Success, Failure, ClarificationNeeded, Observation],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Conversation & observable loop state
# ---------------------------------------------------------------------------


class LLMMessage(BaseModel):
    """One message of the model-facing conversation history."""

    model_config = _FROZEN

    role: Literal["system", "user", "assistant"]
    content: str


class AgentStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    ACTING = "acting"
    OBSERVING = "observing"
    ERROR = "error"


class EntryKind(str, Enum):
    USER_INPUT = "user_input"
    PLAN_SUMMARY = "plan_summary"
    EXECUTION_RESULT = "execution_result"
    ERROR = "error"
    SUGGESTION = "suggestion"
    CLARIFICATION = "clarification"
    LOW_CONFIDENCE_WARNING = "low_confidence_warning"


class ConversationEntry(BaseModel):
    """Append-only log line exposed to the presentation layer."""

    model_config = _FROZEN

    kind: EntryKind
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TurnOutcome(str, Enum):
    COMPLETED = "completed"
    CLARIFICATION = "clarification"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


class TurnResult(BaseModel):
    """How a single human turn ended."""

    model_config = _FROZEN

    outcome: TurnOutcome
    reason: str | None = None
    attempts: int = Field(default=1, description="Inner passes run, retries included.")
