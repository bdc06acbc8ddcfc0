"""Execution context for variable storage, placeholder resolution and soft assertions."""

import json
import re
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .display import ConsoleLogger
from .errors import AssertionFailure, CancelledError, DriverUnavailableError
from .results import SoftAssertionError

if TYPE_CHECKING:
    from .config import DataSet, Procedure, Step
    from .drivers.base import BrowserDriver, HttpDriver, HttpResponse
    from .plugins import PluginTable


# Pattern matches ${var_name} or ${var.path.to.field} or ${var.0.field}
_PLACEHOLDER_PATTERN = re.compile(r"\$\{([\w.]+)\}")

# Variable holding the most recent HTTP response
LAST_RESPONSE_VARIABLE = "__lastResponse"

# Prefix of procedure parameter bindings
PARAM_PREFIX = "__param_"

_MISSING = object()


def format_value(value: Any) -> str:
    """Render a resolved value as placeholder text.

    Dicts and lists are JSON-serialized, booleans render as ``true``/``false``
    and integral floats lose their trailing ``.0``.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _parse_json_if_string(value: Any) -> Any:
    """Parse a JSON string to an object if applicable."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return value
    return value


def resolve_path(obj: Any, path: List[str]) -> Optional[Any]:
    """Resolve a list of path segments through nested objects.

    Args:
        obj: The root object (dict, list, or primitive)
        path: List of path segments to traverse

    Returns:
        The value at the path, or None if not found
    """
    current = obj
    for segment in path:
        if current is None:
            return None

        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list):
            try:
                idx = int(segment)
            except ValueError:
                return None
            if 0 <= idx < len(current):
                current = current[idx]
            else:
                return None
        else:
            current = getattr(current, segment, None)

    return current


class CancellationSignal:
    """Thread-safe cancellation flag checked before every step."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = "Run cancelled"

    def cancel(self, reason: Optional[str] = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError(self.reason)

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, returning early (True) when cancelled."""
        return self._event.wait(timeout)


@dataclass
class ExecutionContext:
    """Holds variables and state during the execution of one test.

    A fresh context is built for every test (and every data row). The
    ``variables`` dict is shared by reference between hooks, steps and nested
    procedure calls of that test.
    """

    variables: Dict[str, Any] = field(default_factory=dict)
    current_data: Optional["DataSet"] = None
    data_index: Optional[int] = None
    procedures: Dict[str, "Procedure"] = field(default_factory=dict)
    plugins: Optional["PluginTable"] = None
    logger: ConsoleLogger = field(default_factory=ConsoleLogger)
    browser: Optional["BrowserDriver"] = None
    http: Optional["HttpDriver"] = None
    cancellation: CancellationSignal = field(default_factory=CancellationSignal)
    timeout_ms: int = 30000
    test_id_attribute: str = "data-testid"
    base_url: Optional[str] = None
    test_name: Optional[str] = None
    soft_assertions: bool = False
    soft_assertion_errors: List[SoftAssertionError] = field(default_factory=list)
    current_step: Optional["Step"] = None
    failure_handlers: List[List["Step"]] = field(default_factory=list)

    def set(self, name: str, value: Any) -> None:
        """Set a variable value."""
        self.variables[name] = value

    def get(self, name: str, default: Optional[Any] = None) -> Any:
        """Get a variable value with optional default."""
        return self.variables.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.variables

    def delete(self, name: str) -> None:
        self.variables.pop(name, None)

    def update(self, variables: Dict[str, Any]) -> None:
        """Update multiple variables at once."""
        self.variables.update(variables)

    # -------------------------------------------------------------------------
    # Placeholder resolution
    # -------------------------------------------------------------------------

    def lookup(self, name: str) -> Any:
        """Look up a bare name: procedure parameter, then data row, then variable.

        Returns:
            The bound value, or None when nothing binds the name
        """
        value = self.variables.get(f"{PARAM_PREFIX}{name}")
        if value is None and self.current_data is not None:
            value = self.current_data.values.get(name)
        if value is None:
            value = self.variables.get(name)
        return value

    def lookup_path(self, full_path: str) -> Any:
        """Resolve ``name`` or ``name.path.to.field``; returns None on a miss.

        When the parameter or data-row binding of ``name`` lacks the path, the
        plain variable of the same name is tried before giving up.
        """
        parts = full_path.split(".")
        value = self.lookup(parts[0])
        if value is None or len(parts) == 1:
            return value
        found = resolve_path(_parse_json_if_string(value), parts[1:])
        if found is None:
            fallback = self.variables.get(parts[0])
            if fallback is not None and fallback is not value:
                found = resolve_path(_parse_json_if_string(fallback), parts[1:])
        return found

    def resolve(self, text: Any) -> Any:
        """Replace ``${var}`` and ``${var.field.subfield}`` placeholders.

        Non-string input is returned unchanged. A placeholder whose value is
        missing (or None) is left as-is, so resolution never raises.
        """
        if not isinstance(text, str):
            return text

        def replace_match(match: "re.Match[str]") -> str:
            value = self.lookup_path(match.group(1))
            if value is None:
                return match.group(0)
            return format_value(value)

        return _PLACEHOLDER_PATTERN.sub(replace_match, text)

    def resolve_object(self, obj: Any) -> Any:
        """Resolve placeholders in every string of a nested dict/list structure."""
        if isinstance(obj, str):
            return self.resolve(obj)
        if isinstance(obj, list):
            return [self.resolve_object(item) for item in obj]
        if isinstance(obj, dict):
            return {key: self.resolve_object(value) for key, value in obj.items()}
        return obj

    @staticmethod
    def has_placeholders(text: Any) -> bool:
        return isinstance(text, str) and _PLACEHOLDER_PATTERN.search(text) is not None

    # -------------------------------------------------------------------------
    # Assertions
    # -------------------------------------------------------------------------

    def record_soft_failure(self, failure: AssertionFailure) -> None:
        """Append an assertion failure to the soft-assertion accumulator."""
        step = self.current_step
        self.soft_assertion_errors.append(
            SoftAssertionError(
                message=str(failure),
                step_id=step.id if step else None,
                step_type=failure.step_type or (step.type if step else None),
                expected=failure.expected,
                actual=failure.actual,
            )
        )
        self.logger.warn(f"Soft assertion failed: {failure}")

    def check(
        self,
        condition: bool,
        message: str,
        expected: Any = None,
        actual: Any = None,
    ) -> bool:
        """Evaluate an assertion.

        In soft mode a failure is recorded and execution continues; otherwise
        an ``AssertionFailure`` is raised.

        Returns:
            Whether the condition held
        """
        if condition:
            return True

        step_type = self.current_step.type if self.current_step else None
        failure = AssertionFailure(message, expected=expected, actual=actual, step_type=step_type)
        if self.soft_assertions:
            self.record_soft_failure(failure)
            return False
        raise failure

    # -------------------------------------------------------------------------
    # Drivers
    # -------------------------------------------------------------------------

    def require_browser(self) -> "BrowserDriver":
        if self.browser is None:
            raise DriverUnavailableError("browser")
        return self.browser

    def require_http(self) -> "HttpDriver":
        if self.http is None:
            raise DriverUnavailableError("http")
        return self.http

    @property
    def last_response(self) -> Optional["HttpResponse"]:
        return self.variables.get(LAST_RESPONSE_VARIABLE)

    def check_cancelled(self) -> None:
        self.cancellation.raise_if_cancelled()
