import asyncio
import pytest

from assistive_control.automation import DryRunSurface
from assistive_control.dispatcher import Dispatcher
from assistive_control.harness import AgentLoop, TurnInProgressError, summarize_intent
from assistive_control.llm import ModelClientError
from assistive_control.models import (
    AgentStatus,
    EntryKind,
    Intent,
    TurnOutcome,
)
from assistive_control.schema import default_schema
from assistive_control.validator import IntentValidator


def make_intent(operation, confidence=0.95, steps=None, suggestion=None, **parameters):
    return Intent(
        operation=operation,
        parameters=parameters,
        confidence=confidence,
        suggestion=suggestion,
        steps=steps,
    )


OPEN_SAFARI = make_intent("open_application", bundle_identifier="com.apple.Safari")
BAD_CLICK = make_intent("click_element", application_name="Safari")


class ScriptedClient:
    """Returns (or raises) the queued replies in order and records what it was sent."""

    def __init__(self, *replies):
        self._replies = list(replies)
        self.conversations = []

    async def generate_intent(self, conversation, actions):
        self.conversations.append(list(conversation))
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class RecordingObserver:
    def __init__(self):
        self.statuses = []
        self.entries = []

    def status_changed(self, status, detail):
        self.statuses.append((status, detail))

    def entry_added(self, entry):
        self.entries.append(entry)


def build_loop(client, surface=None, observers=(), **bounds):
    schema = default_schema()
    surface = surface or DryRunSurface()
    dispatcher = Dispatcher(schema, surface, step_delay=0, launch_delay=0)
    return AgentLoop(client, schema, IntentValidator(schema), dispatcher, observers=observers, **bounds)


def texts(loop, kind):
    return [entry.text for entry in loop.conversation if entry.kind is kind]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_single_action_completes():
    surface = DryRunSurface()
    observer = RecordingObserver()
    loop = build_loop(ScriptedClient(OPEN_SAFARI), surface=surface, observers=[observer])

    result = await loop.handle_turn("open Safari")

    assert result.outcome is TurnOutcome.COMPLETED
    assert result.attempts == 1
    assert surface.calls == [("open_application", ("com.apple.Safari",))]
    assert loop.status is AgentStatus.IDLE
    assert texts(loop, EntryKind.USER_INPUT) == ["open Safari"]
    assert texts(loop, EntryKind.EXECUTION_RESULT) == ["Done."]
    assert [status for status, _ in observer.statuses] == [
        AgentStatus.THINKING,
        AgentStatus.ACTING,
        AgentStatus.IDLE,
    ]
    assert [entry.kind for entry in observer.entries] == [entry.kind for entry in loop.conversation]

@pytest.mark.asyncio
async def test_catalog_is_sent_with_every_request():
    seen = []

    class CatalogClient:
        async def generate_intent(self, conversation, actions):
            seen.append([action.name for action in actions])
            return OPEN_SAFARI

    await build_loop(CatalogClient()).handle_turn("open Safari")
    assert seen == [[d.name for d in default_schema().list_descriptors()]]

@pytest.mark.asyncio
async def test_history_persists_across_turns():
    client = ScriptedClient(OPEN_SAFARI, OPEN_SAFARI)
    loop = build_loop(client)

    await loop.handle_turn("open Safari")
    await loop.handle_turn("again")

    second = client.conversations[1]
    assert second[0].content == "open Safari"
    assert second[1].role == "assistant"
    assert second[1].content == "Executed: open_application"
    assert second[-1].content == "again"

# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fails_twice_then_succeeds():
    client = ScriptedClient(BAD_CLICK, BAD_CLICK, OPEN_SAFARI)
    loop = build_loop(client)

    result = await loop.handle_turn("click back in Safari")

    assert result.outcome is TurnOutcome.COMPLETED
    assert result.attempts == 3
    reason = "Required parameter 'element_label' is missing."
    assert f"Attempt 1 failed: {reason}. Retrying..." in texts(loop, EntryKind.PLAN_SUMMARY)
    assert f"Attempt 2 failed: {reason}. Retrying..." in texts(loop, EntryKind.PLAN_SUMMARY)

    retry_context = [
        m for m in client.conversations[-1]
        if m.role == "user" and m.content.startswith("The previous attempt failed")
    ]
    assert len(retry_context) == 2
    assert loop.status is AgentStatus.IDLE

@pytest.mark.asyncio
async def test_retries_are_bounded():
    client = ScriptedClient(BAD_CLICK, BAD_CLICK, BAD_CLICK, OPEN_SAFARI)
    loop = build_loop(client, max_retries=2)

    result = await loop.handle_turn("click back in Safari")

    assert result.outcome is TurnOutcome.FAILED
    assert result.reason == "Required parameter 'element_label' is missing."
    assert result.attempts == 3
    assert len(client.conversations) == 3
    assert loop.conversation[-1].kind is EntryKind.ERROR
    assert loop.conversation[-1].text == "Could not complete the request after 3 attempts."
    assert loop.status is AgentStatus.ERROR
    assert loop.status_detail.startswith("Failed after 2 retries")

@pytest.mark.asyncio
async def test_execution_failure_is_retried_with_context():
    surface = DryRunSurface()
    loop = build_loop(
        ScriptedClient(
            make_intent("left_click_coordinates", x="left", y="1"),
            OPEN_SAFARI,
        ),
        surface=surface,
    )

    result = await loop.handle_turn("click somewhere")

    assert result.outcome is TurnOutcome.COMPLETED
    assert texts(loop, EntryKind.EXECUTION_RESULT) == [
        "Failed: Parameter 'x' must be a number, got 'left'.",
        "Done.",
    ]

@pytest.mark.asyncio
async def test_model_errors_are_retried():
    client = ScriptedClient(ModelClientError("LLM request failed with HTTP 503."), OPEN_SAFARI)
    loop = build_loop(client)

    result = await loop.handle_turn("open Safari")

    assert result.outcome is TurnOutcome.COMPLETED
    assert result.attempts == 2
    assert "LLM request failed with HTTP 503." in texts(loop, EntryKind.ERROR)

@pytest.mark.asyncio
async def test_model_call_has_a_deadline():
    class HangingClient:
        async def generate_intent(self, conversation, actions):
            await asyncio.Event().wait()

    loop = build_loop(HangingClient(), max_retries=0, model_timeout=0.01)
    result = await loop.handle_turn("open Safari")

    assert result.outcome is TurnOutcome.FAILED
    assert result.reason == "Model request timed out after 0.01 seconds."

# ---------------------------------------------------------------------------
# Observation loop
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_observation_is_fed_back_to_the_model():
    client = ScriptedClient(make_intent("get_frontmost_app"), OPEN_SAFARI)
    loop = build_loop(client)

    result = await loop.handle_turn("open Safari if it is not in front")

    assert result.outcome is TurnOutcome.COMPLETED
    assert result.attempts == 1
    assert "Observed: Frontmost application: Finder" in texts(loop, EntryKind.PLAN_SUMMARY)
    follow_up = client.conversations[1][-1]
    assert follow_up.role == "user"
    assert follow_up.content.startswith("Observation result: Frontmost application: Finder")
    assert follow_up.content.endswith("Now continue planning and produce the next action JSON.")

@pytest.mark.asyncio
async def test_long_observations_are_truncated_in_the_log():
    surface = DryRunSurface(elements={"Finder": [f"item-{i}" for i in range(100)]})
    loop = build_loop(
        ScriptedClient(make_intent("get_screen_elements"), OPEN_SAFARI), surface=surface
    )

    await loop.handle_turn("what is on screen")

    observed = [t for t in texts(loop, EntryKind.PLAN_SUMMARY) if t.startswith("Observed: ")]
    assert len(observed) == 1
    assert observed[0].endswith("...")
    assert len(observed[0]) == len("Observed: ") + 120 + 3

@pytest.mark.asyncio
async def test_observation_steps_are_bounded():
    observe = make_intent("get_frontmost_app")
    client = ScriptedClient(observe, observe, observe)
    loop = build_loop(client, max_retries=0, max_observations=2)

    result = await loop.handle_turn("keep looking")

    assert result.outcome is TurnOutcome.FAILED
    assert result.reason == "Exceeded maximum observation steps."
    assert len(client.conversations) == 3
    assert loop.status is AgentStatus.ERROR

# ---------------------------------------------------------------------------
# Non-failure halts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_clarification_ends_the_turn():
    client = ScriptedClient(make_intent("clarify_request", question="Which window?"))
    loop = build_loop(client)

    result = await loop.handle_turn("close it")

    assert result.outcome is TurnOutcome.CLARIFICATION
    assert texts(loop, EntryKind.CLARIFICATION) == ["Which window?"]
    assert loop.status is AgentStatus.IDLE

@pytest.mark.asyncio
async def test_unsupported_is_not_retried():
    client = ScriptedClient(
        make_intent("unsupported", confidence=None, suggestion="Try 'open Mail'.")
    )
    loop = build_loop(client)

    result = await loop.handle_turn("send an email")

    assert result.outcome is TurnOutcome.UNSUPPORTED
    assert len(client.conversations) == 1
    assert texts(loop, EntryKind.SUGGESTION) == ["Try 'open Mail'."]
    assert loop.status is AgentStatus.IDLE

# ---------------------------------------------------------------------------
# Low confidence
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_low_confidence_is_dispatched_with_a_warning():
    surface = DryRunSurface()
    intent = make_intent("open_application", confidence=0.45, bundle_identifier="com.apple.Safari")
    loop = build_loop(ScriptedClient(intent), surface=surface)

    result = await loop.handle_turn("maybe open safari")

    assert result.outcome is TurnOutcome.COMPLETED
    assert texts(loop, EntryKind.LOW_CONFIDENCE_WARNING) == [
        "Low confidence (45%) — proceeding but result may be incorrect."
    ]
    assert len(surface.calls) == 1

@pytest.mark.asyncio
async def test_low_confidence_observation_is_treated_as_failure():
    client = ScriptedClient(make_intent("get_frontmost_app", confidence=0.4))
    loop = build_loop(client, max_retries=0)

    result = await loop.handle_turn("what app is this")

    assert result.outcome is TurnOutcome.FAILED
    assert result.reason == "Unexpected observation result in low-confidence branch."

# ---------------------------------------------------------------------------
# Session control
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_blank_input_is_rejected():
    client = ScriptedClient()
    loop = build_loop(client)
    with pytest.raises(ValueError):
        await loop.handle_turn("   ")
    assert loop.conversation == ()
    assert client.conversations == []

@pytest.mark.asyncio
async def test_overlapping_turns_are_rejected():
    release = asyncio.Event()

    class SlowClient:
        async def generate_intent(self, conversation, actions):
            await release.wait()
            return OPEN_SAFARI

    loop = build_loop(SlowClient())
    first = asyncio.create_task(loop.handle_turn("open Safari"))
    await asyncio.sleep(0)

    assert loop.busy
    with pytest.raises(TurnInProgressError):
        await loop.handle_turn("open Mail")

    release.set()
    result = await first
    assert result.outcome is TurnOutcome.COMPLETED
    assert not loop.busy

@pytest.mark.asyncio
async def test_new_session_clears_state():
    client = ScriptedClient(BAD_CLICK, OPEN_SAFARI)
    loop = build_loop(client, max_retries=0)

    await loop.handle_turn("click back")
    assert loop.status is AgentStatus.ERROR

    loop.new_session()
    assert loop.conversation == ()
    assert loop.status is AgentStatus.IDLE

    await loop.handle_turn("open Safari")
    assert [m.content for m in client.conversations[-1]] == ["open Safari"]

# ---------------------------------------------------------------------------
# Intent summaries
# ---------------------------------------------------------------------------

def test_summarize_intent():
    assert summarize_intent(OPEN_SAFARI) == "Intent: open application (com.apple.Safari)"
    assert summarize_intent(make_intent("press_key", key="t", modifiers="cmd")) == "Intent: press key t (cmd)"
    assert summarize_intent(make_intent("move_mouse", x="1", y="2")) == "Intent: move mouse to (1, 2)"
    sequence = make_intent("sequence", steps=(OPEN_SAFARI,))
    assert summarize_intent(sequence) == "Intent: sequence (1 step)"
    assert summarize_intent(make_intent("whatever")) == "Intent: whatever"
