"""Unit tests for display module.

Output goes through the shared console, which conftest replaces with a
MagicMock; tests inspect the printed markup.
"""

from unittest.mock import MagicMock

from blockrunner.display import (
    ConsoleLogger,
    format_duration,
    indent,
    print_summary,
    print_test_result,
    print_test_skipped,
)
from blockrunner.results import ErrorInfo, StepStatus, TestResult


def _printed(mock_console: MagicMock) -> str:
    return "\n".join(str(call.args[0]) for call in mock_console.print.call_args_list if call.args)


class TestFormatDuration:
    """Tests for format_duration function."""

    def test_milliseconds(self) -> None:
        assert format_duration(250) == "250ms"

    def test_seconds(self) -> None:
        assert format_duration(2100) == "2.1s"

    def test_minutes(self) -> None:
        assert format_duration(125000) == "2m 05s"


class TestConsoleLogger:
    """Tests for the logger handed to execution contexts."""

    def test_info_includes_prefix(self, mock_console: MagicMock) -> None:
        ConsoleLogger(prefix="[login]", debug_enabled=False).info("Navigate to /")
        assert "[login] Navigate to /" in _printed(mock_console)

    def test_debug_hidden_unless_enabled(self, mock_console: MagicMock) -> None:
        ConsoleLogger(debug_enabled=False).debug("quiet")
        mock_console.print.assert_not_called()

        ConsoleLogger(debug_enabled=True).debug("loud")
        assert "loud" in _printed(mock_console)

    def test_debug_env_var(self, mock_console: MagicMock, monkeypatch) -> None:
        monkeypatch.setenv("DEBUG", "1")
        assert ConsoleLogger().debug_enabled

    def test_markup_in_message_is_escaped(self, mock_console: MagicMock) -> None:
        """Selectors like [data-testid] must not be read as rich markup."""
        ConsoleLogger(debug_enabled=False).error("No element [data-testid=x]")
        assert "\\[data-testid=x]" in _printed(mock_console)

    def test_explicit_console(self) -> None:
        out = MagicMock()
        ConsoleLogger(out=out, debug_enabled=False).warn("careful")
        out.print.assert_called_once()


class TestTestLines:
    """Tests for per-test status lines."""

    def test_failed_result_prints_error(self, mock_console: MagicMock) -> None:
        result = TestResult(
            test_id="t1",
            test_name="Login",
            status=StepStatus.FAILED,
            duration=1500,
            error=ErrorInfo(message="Expected title Home"),
        )

        print_test_result(result)

        printed = _printed(mock_console)
        assert "Login" in printed
        assert "1.5s" in printed
        assert "Expected title Home" in printed

    def test_passed_result_has_no_error_line(self, mock_console: MagicMock) -> None:
        print_test_result(TestResult(test_id="t1", test_name="Login", status=StepStatus.PASSED))
        assert mock_console.print.call_count == 1

    def test_skipped_line_includes_reason(self, mock_console: MagicMock) -> None:
        print_test_skipped("Checkout", "Test is disabled")
        assert "Test is disabled" in _printed(mock_console)

    def test_indent_nests_output(self, mock_console: MagicMock) -> None:
        with indent():
            print_test_skipped("Nested", "n/a")
        assert str(mock_console.print.call_args.args[0]).startswith("    ")


def test_print_summary(mock_console: MagicMock) -> None:
    print_summary(passed=3, failed=1, skipped=0, duration_ms=2100)
    assert "3 passed | 1 failed | 0 skipped | 2.1s" in _printed(mock_console)
