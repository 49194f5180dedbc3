# display.py
# All terminal output for the assistive-control REPL.
#
# This module owns presentation entirely. harness.py never formats output for
# the terminal; it notifies observers and ConsoleObserver renders here.
#
# Colour language:
#   cyan    : user input / session events
#   blue    : model thinking
#   yellow  : warnings, low confidence, observations
#   green   : success / confirmed
#   red     : failures and errors
#   magenta : clarifying questions and suggestions

from enum import Enum

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from assistive_control.automation import Point
from assistive_control.models import AgentStatus, ConversationEntry, EntryKind

console = Console()

_ENTRY_STYLE: dict[EntryKind, tuple[str, str]] = {
    EntryKind.USER_INPUT: ("YOU", "cyan"),
    EntryKind.PLAN_SUMMARY: ("PLAN", "blue"),
    EntryKind.EXECUTION_RESULT: ("RESULT", "green"),
    EntryKind.ERROR: ("ERROR", "red"),
    EntryKind.SUGGESTION: ("TRY", "magenta"),
    EntryKind.CLARIFICATION: ("QUESTION", "magenta"),
    EntryKind.LOW_CONFIDENCE_WARNING: ("WARNING", "yellow"),
}

_STATUS_STYLE: dict[AgentStatus, str] = {
    AgentStatus.IDLE: "green",
    AgentStatus.THINKING: "blue",
    AgentStatus.ACTING: "cyan",
    AgentStatus.OBSERVING: "yellow",
    AgentStatus.ERROR: "red",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _arg(value: object) -> str:
    match value:
        case Point(x=x, y=y):
            return f"({x:g}, {y:g})"
        case Enum():
            return str(value.value)
        case tuple():
            return "+".join(_arg(item) for item in value) or "-"
        case _:
            return repr(value)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def banner(provider: str, model: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Assistive Control[/bold cyan]\n"
            "[dim]Natural-language desktop control behind a validated action schema[/dim]\n\n"
            f"[dim]Provider :[/dim] [white]{provider}[/white]\n"
            f"[dim]Model    :[/dim] [white]{model}[/white]\n\n"
            "[dim]/new starts a new session, /quit exits.[/dim]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def session_reset() -> None:
    console.print()
    console.print(Rule("[cyan]NEW SESSION[/cyan]", style="cyan"))


def dry_run_calls(calls: list[tuple[str, tuple]]) -> None:
    """Show what a dry-run surface would have done."""
    for name, args in calls:
        rendered = ", ".join(_arg(arg) for arg in args)
        console.print(f"  [dim cyan]↳ {name}({escape(_mono(rendered, 100))})[/dim cyan]")


def fatal(message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{message}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Agent observer
# ---------------------------------------------------------------------------


class ConsoleObserver:
    """Renders agent status transitions and conversation entries with rich."""

    def __init__(self, out: Console | None = None) -> None:
        self._console = out or console

    def status_changed(self, status: AgentStatus, detail: str | None) -> None:
        # Errors are already rendered as entries; only show progress states.
        if status in (AgentStatus.THINKING, AgentStatus.ACTING, AgentStatus.OBSERVING):
            color = _STATUS_STYLE[status]
            self._console.print(f"  [{color}]… {status.value}[/{color}]")

    def entry_added(self, entry: ConversationEntry) -> None:
        tag, color = _ENTRY_STYLE[entry.kind]
        if entry.kind is EntryKind.USER_INPUT:
            self._console.print()
            self._console.print(Rule(style="cyan"))
            return
        if entry.kind in (EntryKind.ERROR, EntryKind.CLARIFICATION):
            self._console.print(
                Panel(
                    f"[white]{escape(entry.text)}[/white]",
                    title=_label(tag, color),
                    border_style=color,
                    padding=(0, 2),
                )
            )
            return
        self._console.print(_label(tag, color), f"[white]{escape(_mono(entry.text, 200))}[/white]")
