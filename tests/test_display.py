from rich.console import Console

from assistive_control import display
from assistive_control.automation import Modifier, Point, ScrollDirection
from assistive_control.display import ConsoleObserver
from assistive_control.models import AgentStatus, ConversationEntry, EntryKind


def make_observer():
    out = Console(record=True, width=120, color_system=None)
    return ConsoleObserver(out), out


def test_entries_are_rendered_with_their_tag():
    observer, out = make_observer()
    observer.entry_added(ConversationEntry(kind=EntryKind.EXECUTION_RESULT, text="Done."))
    observer.entry_added(ConversationEntry(kind=EntryKind.CLARIFICATION, text="Which window?"))

    text = out.export_text()
    assert "RESULT" in text and "Done." in text
    assert "QUESTION" in text and "Which window?" in text

def test_model_text_is_not_treated_as_markup():
    observer, out = make_observer()
    observer.entry_added(ConversationEntry(kind=EntryKind.ERROR, text="bad [/bold] tag [x]"))
    assert "bad [/bold] tag [x]" in out.export_text()

def test_only_progress_statuses_are_shown():
    observer, out = make_observer()
    observer.status_changed(AgentStatus.THINKING, None)
    observer.status_changed(AgentStatus.IDLE, None)
    observer.status_changed(AgentStatus.ERROR, "boom")

    text = out.export_text()
    assert "thinking" in text
    assert "idle" not in text
    assert "boom" not in text

def test_dry_run_calls_render_typed_arguments(monkeypatch):
    out = Console(record=True, width=120, color_system=None)
    monkeypatch.setattr(display, "console", out)

    display.dry_run_calls([
        ("click_at", (Point(1.0, 2.5), 2)),
        ("press_key", ("t", (Modifier.COMMAND, Modifier.SHIFT))),
        ("scroll", ("Safari", ScrollDirection.DOWN, 3)),
    ])

    text = out.export_text()
    assert "click_at((1, 2.5), 2)" in text
    assert "press_key('t', cmd+shift)" in text
    assert "scroll('Safari', down, 3)" in text
