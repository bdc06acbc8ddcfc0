"""Browser and HTTP driver interfaces and their default implementations.

The Playwright adapter is imported lazily so that HTTP-only runs (and unit
tests using fake drivers) do not load Playwright.
"""

from .base import BrowserDriver, HttpDriver, HttpResponse
from .http import HttpxDriver


def launch_browser(**kwargs) -> BrowserDriver:
    """Launch the default Playwright-backed browser driver."""
    from .playwright_driver import PlaywrightBrowserDriver

    return PlaywrightBrowserDriver.launch(**kwargs)


__all__ = [
    "BrowserDriver",
    "HttpDriver",
    "HttpResponse",
    "HttpxDriver",
    "launch_browser",
]
