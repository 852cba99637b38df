"""Terminal output for phoenix commands.

Everything the operator reads (phase banners, per-step status, the
resources behind a confirmation, and the prompt itself) is printed through
the shared rich :data:`console`.  Diagnostic detail goes to ``logger.*``
instead.  Rich drops colour on its own when output is not a terminal.
"""

from __future__ import annotations

import sys
from typing import Iterable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

console = Console(stderr=False, force_terminal=None)

_CHECK = "[bold green]✓[/]"
_CROSS = "[bold red]✗[/]"
_CAUTION = "[bold yellow]⚠[/]"
_POINTER = "[bold cyan]›[/]"
_BULLET = "[dim]·[/]"


def _line(symbol: str, msg: str, style: str = "", **kwargs) -> None:
    text = escape(msg)
    if style:
        text = f"[{style}]{text}[/]"
    console.print(f"  {symbol} {text}", **kwargs)


def _panel(title: str, body: str, colour: str) -> None:
    console.print()
    console.print(
        Panel(
            escape(body),
            title=f"[bold {colour}]{escape(title)}[/]",
            border_style=colour,
            padding=(1, 2),
        )
    )


# ── Banners and step status ──────────────────────────────────────────────


def phase(title: str) -> None:
    """Section banner, e.g. ``READINESS`` or ``NEXT STEPS``."""
    console.print()
    console.print(f"[bold blue]── {escape(title)} ──[/]")


def step(msg: str) -> None:
    _line(_POINTER, msg)


def ok(msg: str) -> None:
    _line(_CHECK, msg)


def fail(msg: str) -> None:
    _line(_CROSS, msg, "red")


def warn(msg: str) -> None:
    _line(_CAUTION, msg, "yellow")


def info(msg: str) -> None:
    _line(_BULLET, msg, "dim")


def detail(key: str, value: str) -> None:
    """``key: value`` under the current banner."""
    console.print(f"    [bold]{escape(key)}[/]: {escape(value)}")


# ── Lists and prompts ────────────────────────────────────────────────────


def resource_list(resources: Iterable[str]) -> None:
    """Resources affected by the action being confirmed, one per line."""
    for resource in resources:
        console.print(f"    {_BULLET} {escape(resource)}", highlight=False)


def numbered(lines: Iterable[str]) -> None:
    for number, line in enumerate(lines, start=1):
        console.print(f"  {number}. {escape(line)}", highlight=False)


def ask(prompt: str) -> str:
    """Read one answer line; :class:`EOFError` when stdin is closed."""
    return console.input(f"  [bold yellow]?[/] {escape(prompt)} ")


def warning_panel(title: str, body: str) -> None:
    """Shown ahead of each confirmation stage."""
    _panel(title, body, "yellow")


def error_panel(title: str, body: str) -> None:
    """Final report of a failed phase: step, target and the tool's own error."""
    _panel(title, body, "red")


# ── Polling progress ─────────────────────────────────────────────────────


def elapsed_str(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s" if minutes else f"{secs}s"


def progress_line(msg: str) -> None:
    """Status line redrawn in place on a terminal, appended elsewhere."""
    end = "\r" if sys.stdout.isatty() else "\n"
    _line(_POINTER, msg, end=end, highlight=False)


def clear_progress() -> None:
    if sys.stdout.isatty():
        console.print(" " * console.width, end="\r")
