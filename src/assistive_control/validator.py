# validator.py
# Gate between untrusted model output and the dispatcher.
#
# Nothing executes without passing validate(). Unknown operations are rejected;
# there is no pass-through for unrecognised names. The validator is stateless:
# the same intent against the same schema always yields the same result.

import logging

import regex

from assistive_control.models import (
    UNSUPPORTED,
    ActionDescriptor,
    EmptyParameter,
    Intent,
    Invalid,
    LowConfidence,
    LowConfidenceWarning,
    MissingParameter,
    Operation,
    TextTooLong,
    Unsupported,
    UnsupportedOperation,
    UnknownOperation,
    Valid,
    ValidationResult,
)
from assistive_control.schema import ActionSchema

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.3
CONFIDENCE_WARNING = 0.6
MAX_TEXT_LENGTH = 500
DEFAULT_MAX_DEPTH = 4

UNSUPPORTED_MESSAGE = (
    "The requested action is not supported. "
    "Please try rephrasing or describing a different task."
)

_GRAPHEME = regex.compile(r"\X")


def text_length(text: str) -> int:
    """Length in user-perceived characters (extended grapheme clusters)."""
    return len(_GRAPHEME.findall(text))


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _describe_groups(operation: str, groups: tuple[tuple[str, ...], ...]) -> str:
    options = " or ".join(f"({', '.join(group)})" for group in groups)
    return f"{operation} requires either {options}"


class IntentValidator:
    """Classifies a freshly decoded Intent as Valid, Invalid, Unsupported or a warning."""

    def __init__(self, schema: ActionSchema, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._schema = schema
        self._max_depth = max_depth

    def validate(self, intent: Intent) -> ValidationResult:
        return self._validate(intent, depth=0)

    # ------------------------------------------------------------------
    # Confidence tiering
    # ------------------------------------------------------------------

    def _validate(self, intent: Intent, depth: int) -> ValidationResult:
        confidence = intent.confidence
        if confidence is not None:
            if confidence < CONFIDENCE_FLOOR:
                logger.info("Rejected '%s': confidence %.2f", intent.operation, confidence)
                return Invalid(error=LowConfidence())
            if confidence < CONFIDENCE_WARNING:
                body = self._validate_body(intent, depth)
                if isinstance(body, Valid):
                    warning = (
                        f"Low confidence ({int(confidence * 100)}%) — "
                        "proceeding but result may be incorrect."
                    )
                    return LowConfidenceWarning(intent=body.intent, warning=warning)
                return body

        return self._validate_body(intent, depth)

    # ------------------------------------------------------------------
    # Body validation (confidence-agnostic)
    # ------------------------------------------------------------------

    def _validate_body(self, intent: Intent, depth: int) -> ValidationResult:
        if intent.operation == UNSUPPORTED:
            return Unsupported(message=UNSUPPORTED_MESSAGE, suggestion=intent.suggestion)

        descriptor = self._schema.descriptor(intent.operation)
        if descriptor is None:
            return Invalid(error=UnknownOperation(name=intent.operation))

        for key in descriptor.required_parameters:
            value = intent.parameters.get(key)
            if value is None:
                return Invalid(error=MissingParameter(key=key))
            if _is_blank(value):
                return Invalid(error=EmptyParameter(key=key))

        structural = self._check_structure(intent, descriptor)
        if structural is not None:
            return structural

        if intent.operation == Operation.SEQUENCE.value:
            return self._validate_sequence(intent, depth)

        return Valid(intent=intent)

    def _check_structure(
        self, intent: Intent, descriptor: ActionDescriptor
    ) -> Invalid | None:
        groups = descriptor.parameter_groups
        if groups and not any(
            all(not _is_blank(intent.parameters.get(key)) for key in group) for group in groups
        ):
            return Invalid(
                error=MissingParameter(key=_describe_groups(intent.operation, groups))
            )

        if intent.operation == Operation.TYPE_TEXT.value:
            length = text_length(intent.parameters.get("text", ""))
            if length > MAX_TEXT_LENGTH:
                return Invalid(error=TextTooLong(actual_length=length))

        return None

    def _validate_sequence(self, intent: Intent, depth: int) -> ValidationResult:
        if not intent.steps:
            return Invalid(error=MissingParameter(key="steps"))
        if depth >= self._max_depth:
            logger.warning("Sequence nesting exceeds %d levels", self._max_depth)
            return Invalid(error=UnsupportedOperation())

        for step in intent.steps:
            match self._validate(step, depth + 1):
                case Invalid() as rejected:
                    return rejected
                case Unsupported():
                    return Invalid(error=UnsupportedOperation())
                case Valid() | LowConfidenceWarning():
                    continue

        return Valid(intent=intent)
