"""Browser driver backed by Playwright's synchronous API."""

from contextlib import contextmanager
from typing import Generator, Optional, Tuple

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError

from ..errors import DriverError
from .base import BrowserDriver


@contextmanager
def _driver_errors(action: str) -> Generator[None, None, None]:
    """Re-raise Playwright failures (timeouts included) as ``DriverError``."""
    try:
        yield
    except PlaywrightError as e:
        raise DriverError(f"{action} failed: {e.message}") from e


class PlaywrightBrowserDriver(BrowserDriver):
    """One Chromium browser, context and page for the duration of a test file."""

    def __init__(self, page: Page, timeout_ms: int = 30000):
        self.page = page
        self.timeout_ms = timeout_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        page.set_default_timeout(timeout_ms)

    @classmethod
    def launch(
        cls,
        headless: bool = True,
        timeout_ms: int = 30000,
        viewport: Tuple[int, int] = (1920, 1080),
        locale: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> "PlaywrightBrowserDriver":
        """Start Playwright, launch Chromium and open a page."""
        playwright = sync_playwright().start()
        try:
            browser = playwright.chromium.launch(headless=headless)
            context_kwargs = {"viewport": {"width": viewport[0], "height": viewport[1]}}
            if locale:
                context_kwargs["locale"] = locale
            if base_url:
                context_kwargs["base_url"] = base_url
            context = browser.new_context(**context_kwargs)
            page = context.new_page()
        except PlaywrightError as e:
            playwright.stop()
            raise DriverError(f"Browser launch failed: {e.message}") from e

        driver = cls(page, timeout_ms=timeout_ms)
        driver._playwright = playwright
        driver._browser = browser
        driver._context = context
        return driver

    def _timeout(self, timeout: Optional[int]) -> int:
        return self.timeout_ms if timeout is None else timeout

    # =========================================================================
    # Navigation
    # =========================================================================

    def navigate(self, url: str, wait_until: str = "load", timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Navigate to {url}"):
            self.page.goto(url, wait_until=wait_until, timeout=self._timeout(timeout))

    def wait_for_url(self, pattern: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Wait for URL {pattern}"):
            self.page.wait_for_url(pattern, timeout=self._timeout(timeout))

    def wait(self, milliseconds: int) -> None:
        self.page.wait_for_timeout(milliseconds)

    # =========================================================================
    # Element Interaction
    # =========================================================================

    def click(self, selector: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Click {selector}"):
            self.page.click(selector, timeout=self._timeout(timeout))

    def fill(self, selector: str, value: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Fill {selector}"):
            self.page.fill(selector, value, timeout=self._timeout(timeout))

    def type(self, selector: str, text: str, delay: int = 0, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Type into {selector}"):
            self.page.locator(selector).press_sequentially(
                text, delay=delay, timeout=self._timeout(timeout)
            )

    def select(self, selector: str, value: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Select option in {selector}"):
            self.page.select_option(selector, value, timeout=self._timeout(timeout))

    def hover(self, selector: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Hover {selector}"):
            self.page.hover(selector, timeout=self._timeout(timeout))

    def press(self, selector: str, key: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Press {key} on {selector}"):
            self.page.press(selector, key, timeout=self._timeout(timeout))

    def set_checked(self, selector: str, checked: bool, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"{'Check' if checked else 'Uncheck'} {selector}"):
            self.page.set_checked(selector, checked, timeout=self._timeout(timeout))

    def focus(self, selector: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Focus {selector}"):
            self.page.focus(selector, timeout=self._timeout(timeout))

    def scroll_into_view(self, selector: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Scroll {selector} into view"):
            self.page.locator(selector).scroll_into_view_if_needed(timeout=self._timeout(timeout))

    def drag_and_drop(self, source: str, target: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Drag {source} to {target}"):
            self.page.drag_and_drop(source, target, timeout=self._timeout(timeout))

    def set_input_files(self, selector: str, path: str, timeout: Optional[int] = None) -> None:
        with _driver_errors(f"Upload {path} to {selector}"):
            self.page.set_input_files(selector, path, timeout=self._timeout(timeout))

    def wait_for_selector(
        self, selector: str, state: str = "visible", timeout: Optional[int] = None
    ) -> None:
        with _driver_errors(f"Wait for {selector}"):
            self.page.wait_for_selector(selector, state=state, timeout=self._timeout(timeout))

    # =========================================================================
    # Retrieval
    # =========================================================================

    def get_text(self, selector: str, timeout: Optional[int] = None) -> str:
        with _driver_errors(f"Get text of {selector}"):
            return self.page.text_content(selector, timeout=self._timeout(timeout)) or ""

    def get_attribute(
        self, selector: str, name: str, timeout: Optional[int] = None
    ) -> Optional[str]:
        with _driver_errors(f"Get attribute {name} of {selector}"):
            return self.page.get_attribute(selector, name, timeout=self._timeout(timeout))

    def get_input_value(self, selector: str, timeout: Optional[int] = None) -> str:
        with _driver_errors(f"Get value of {selector}"):
            return self.page.input_value(selector, timeout=self._timeout(timeout))

    def get_title(self) -> str:
        return self.page.title()

    def get_url(self) -> str:
        return self.page.url

    def screenshot(self, full_page: bool = True) -> bytes:
        with _driver_errors("Screenshot"):
            return self.page.screenshot(full_page=full_page, type="png")

    # =========================================================================
    # State
    # =========================================================================

    def _first_state(self, selector: str, state: str) -> bool:
        """Read a boolean state of the first match; False when nothing matches."""
        locator = self.page.locator(selector)
        with _driver_errors(f"Read {state} of {selector}"):
            if locator.count() == 0:
                return False
            return getattr(locator.first, state)(timeout=self.timeout_ms)

    def count(self, selector: str) -> int:
        with _driver_errors(f"Count {selector}"):
            return self.page.locator(selector).count()

    def is_visible(self, selector: str) -> bool:
        return self._first_state(selector, "is_visible")

    def is_enabled(self, selector: str) -> bool:
        return self._first_state(selector, "is_enabled")

    def is_checked(self, selector: str) -> bool:
        return self._first_state(selector, "is_checked")

    def is_editable(self, selector: str) -> bool:
        return self._first_state(selector, "is_editable")

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
        if self._browser is not None:
            self._browser.close()
        if self._playwright is not None:
            self._playwright.stop()
        self._context = self._browser = self._playwright = None
