"""CI-style terminal display and logging for test runs.

Single-line status format with colored icons and an indented tree for
nested execution (suite -> test -> step). The ``ConsoleLogger`` defined here
is the logger handed to every execution context.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generator, Optional

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from .results import TestResult


# Shared console instance
console = Console()


@dataclass
class StatusIcons:
    """Status icons with colors for CI-style display."""

    RUNNING = "[cyan][bold]•[/bold][/cyan]"
    SUCCESS = "[green][bold]✓[/bold][/green]"
    FAILED = "[red][bold]✗[/bold][/red]"
    SKIPPED = "[yellow]⏭[/yellow]"
    GROUP = "[white]▶[/white]"
    WARNING = "[yellow]⚠[/yellow]"


@dataclass
class DisplayState:
    """Tracks current indentation level."""

    indent_level: int = 0


_state = DisplayState()


def _get_indent() -> str:
    return "    " * _state.indent_level


def format_duration(milliseconds: int) -> str:
    """Format a millisecond duration in human-readable form."""
    seconds = milliseconds / 1000
    if seconds < 1:
        return f"{milliseconds}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}m {secs:02d}s"


@contextmanager
def indent() -> Generator[None, None, None]:
    """Context manager for increasing indentation level."""
    _state.indent_level += 1
    try:
        yield
    finally:
        _state.indent_level -= 1


def _format_data(data: Any) -> str:
    if data is None:
        return ""
    return f" [dim]{escape(str(data))}[/dim]"


class ConsoleLogger:
    """Logger that writes through the shared rich console.

    Debug messages are only printed when ``debug`` is set or the ``DEBUG``
    environment variable is present.
    """

    def __init__(
        self,
        prefix: str = "",
        debug_enabled: Optional[bool] = None,
        out: Optional[Console] = None,
    ) -> None:
        self.prefix = f"{prefix} " if prefix else ""
        self.debug_enabled = (
            bool(os.environ.get("DEBUG")) if debug_enabled is None else debug_enabled
        )
        self._console = out or console

    def _emit(self, icon: str, message: str, data: Any, style: str = "") -> None:
        text = escape(self.prefix + message)
        if style:
            text = f"[{style}]{text}[/{style}]"
        self._console.print(f"{_get_indent()}    {icon}{text}{_format_data(data)}")

    def info(self, message: str, data: Any = None) -> None:
        self._emit("", message, data)

    def warn(self, message: str, data: Any = None) -> None:
        self._emit(f"{StatusIcons.WARNING} ", message, data, style="yellow")

    def error(self, message: str, data: Any = None) -> None:
        self._emit(f"{StatusIcons.FAILED} ", message, data, style="red")

    def debug(self, message: str, data: Any = None) -> None:
        if self.debug_enabled:
            self._emit("\\[debug] ", message, data, style="dim")


# =============================================================================
# Suite / Test Display
# =============================================================================


def print_file_start(name: str, test_count: int) -> None:
    """Print a test file header.

    Format: [▶] Login suite (3 tests)
    """
    console.print(f"{_get_indent()}[{StatusIcons.GROUP}] {escape(name)} [dim]({test_count} tests)[/dim]")


def print_test_start(test_name: str) -> None:
    """Format: [•] Test name  running..."""
    console.print(f"{_get_indent()}[{StatusIcons.RUNNING}] {escape(test_name)}  [dim]running...[/dim]")


def print_test_result(result: "TestResult") -> None:
    """Print a test's final status line (and error message when it did not pass)."""
    from .results import StepStatus

    icons = {
        StepStatus.PASSED: StatusIcons.SUCCESS,
        StepStatus.FAILED: StatusIcons.FAILED,
        StepStatus.ERROR: StatusIcons.FAILED,
        StepStatus.SKIPPED: StatusIcons.SKIPPED,
    }
    line_indent = _get_indent()
    console.print(
        f"{line_indent}[{icons[result.status]}] {escape(result.test_name)}  "
        f"[dim]{format_duration(result.duration)}[/dim]"
    )
    if result.error and result.status != StepStatus.PASSED:
        color = "yellow" if result.status == StepStatus.SKIPPED else "red"
        console.print(f"{line_indent}    [{color}]{escape(result.error.message)}[/{color}]")


def print_test_skipped(test_name: str, reason: str) -> None:
    """Print a skipped test with its reason."""
    console.print(f"{_get_indent()}[{StatusIcons.SKIPPED}] {escape(test_name)} [dim]— {escape(reason)}[/dim]")


def print_lifecycle(phase: str) -> None:
    """Print a lifecycle phase marker (beforeAll, afterAll)."""
    console.print(f"{_get_indent()}[dim]Running {phase} hooks...[/dim]")


def print_summary(passed: int, failed: int, skipped: int, duration_ms: int) -> None:
    """Print compact run summary.

    Format: ────────────────────────────────────
            ✓ 3 passed | 1 failed | 0 skipped | 2.1s
    """
    console.print()
    console.print("─" * 40)
    icon = "[green]✓[/green]" if failed == 0 else "[red]✗[/red]"
    console.print(
        f"{icon} {passed} passed | {failed} failed | {skipped} skipped | "
        f"{format_duration(duration_ms)}"
    )
    console.print()
