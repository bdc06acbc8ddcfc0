"""Shared test fixtures and configuration."""

from typing import Any, Dict, List, Optional, Set
from unittest.mock import MagicMock, patch

import pytest

from blockrunner.context import ExecutionContext
from blockrunner.drivers.base import BrowserDriver, HttpDriver, HttpResponse
from blockrunner.interpreter import StepInterpreter
from blockrunner.runtime import EngineRuntime


@pytest.fixture(autouse=True)
def mock_console():
    """Auto-mock the shared console for all tests.

    This prevents actual terminal output during tests and lets tests
    inspect what was printed.
    """
    mock = MagicMock()
    with patch("blockrunner.display.console", mock):
        yield mock


class FakeBrowser(BrowserDriver):
    """In-memory browser recording every call."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.texts: Dict[str, str] = {}
        self.values: Dict[str, str] = {}
        self.title = "Home"
        self.url = "about:blank"
        self.closed = 0
        self.fail_on: Dict[str, Exception] = {}
        self.counts: Dict[str, int] = {}
        self.visible: Set[str] = set()
        self.enabled: Set[str] = set()
        self.checked: Set[str] = set()
        self.editable: Set[str] = set()

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise self.fail_on[name]

    def navigate(self, url: str, wait_until: str = "load", timeout: Optional[int] = None) -> None:
        self._record("navigate", url)
        self.url = url

    def click(self, selector: str, timeout: Optional[int] = None) -> None:
        self._record("click", selector)

    def fill(self, selector: str, value: str, timeout: Optional[int] = None) -> None:
        self._record("fill", selector, value)
        self.values[selector] = value

    def type(self, selector: str, text: str, delay: int = 0, timeout: Optional[int] = None) -> None:
        self._record("type", selector, text)

    def select(self, selector: str, value: str, timeout: Optional[int] = None) -> None:
        self._record("select", selector, value)

    def hover(self, selector: str, timeout: Optional[int] = None) -> None:
        self._record("hover", selector)

    def press(self, selector: str, key: str, timeout: Optional[int] = None) -> None:
        self._record("press", selector, key)

    def set_checked(self, selector: str, checked: bool, timeout: Optional[int] = None) -> None:
        self._record("set_checked", selector, checked)
        if checked:
            self.checked.add(selector)
        else:
            self.checked.discard(selector)

    def focus(self, selector: str, timeout: Optional[int] = None) -> None:
        self._record("focus", selector)

    def scroll_into_view(self, selector: str, timeout: Optional[int] = None) -> None:
        self._record("scroll_into_view", selector)

    def drag_and_drop(self, source: str, target: str, timeout: Optional[int] = None) -> None:
        self._record("drag_and_drop", source, target)

    def set_input_files(self, selector: str, path: str, timeout: Optional[int] = None) -> None:
        self._record("set_input_files", selector, path)

    def wait_for_selector(
        self, selector: str, state: str = "visible", timeout: Optional[int] = None
    ) -> None:
        self._record("wait_for_selector", selector, state)

    def wait_for_url(self, pattern: str, timeout: Optional[int] = None) -> None:
        self._record("wait_for_url", pattern)

    def wait(self, milliseconds: int) -> None:
        self._record("wait", milliseconds)

    def get_text(self, selector: str, timeout: Optional[int] = None) -> str:
        self._record("get_text", selector)
        return self.texts.get(selector, "")

    def get_attribute(
        self, selector: str, attribute: str, timeout: Optional[int] = None
    ) -> Optional[str]:
        self._record("get_attribute", selector, attribute)
        return f"{attribute}-value"

    def get_input_value(self, selector: str, timeout: Optional[int] = None) -> str:
        self._record("get_input_value", selector)
        return self.values.get(selector, "")

    def get_title(self) -> str:
        self._record("get_title")
        return self.title

    def get_url(self) -> str:
        self._record("get_url")
        return self.url

    def count(self, selector: str) -> int:
        self._record("count", selector)
        return self.counts.get(selector, 0)

    def is_visible(self, selector: str) -> bool:
        self._record("is_visible", selector)
        return selector in self.visible

    def is_enabled(self, selector: str) -> bool:
        self._record("is_enabled", selector)
        return selector in self.enabled

    def is_checked(self, selector: str) -> bool:
        self._record("is_checked", selector)
        return selector in self.checked

    def is_editable(self, selector: str) -> bool:
        self._record("is_editable", selector)
        return selector in self.editable

    def screenshot(self, full_page: bool = True) -> bytes:
        self._record("screenshot", full_page)
        return b"\x89PNG"

    def close(self) -> None:
        self.closed += 1


class FakeHttp(HttpDriver):
    """HTTP driver returning queued responses (or a default 200 JSON response)."""

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.responses: List[HttpResponse] = []
        self.closed = 0

    def request(self, method, url, headers=None, body=None, cancellation=None) -> HttpResponse:
        self.requests.append({"method": method, "url": url, "headers": headers, "body": body})
        if self.responses:
            return self.responses.pop(0)
        return HttpResponse(status=200, headers={"content-type": "application/json"}, body={"ok": True})

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def runtime() -> EngineRuntime:
    """Runtime with the built-in blocks and no plugins."""
    return EngineRuntime()


@pytest.fixture
def context(runtime: EngineRuntime) -> ExecutionContext:
    """A fresh execution context wired to the runtime's plugin table."""
    return ExecutionContext(plugins=runtime.plugins)


@pytest.fixture
def interpreter(runtime: EngineRuntime) -> StepInterpreter:
    return StepInterpreter(runtime)
