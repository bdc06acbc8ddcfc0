"""Capability interfaces for the browser and HTTP backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..context import CancellationSignal


@dataclass
class HttpResponse:
    """Response returned by an ``HttpDriver``.

    ``body`` is the decoded JSON document when the payload is JSON, else the
    response text.
    """

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "headers": dict(self.headers), "body": self.body}


class HttpDriver(ABC):
    """Blocking HTTP client used by ``api_*`` blocks."""

    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        cancellation: Optional["CancellationSignal"] = None,
    ) -> HttpResponse:
        """Send a request and wait for the full response.

        Raises:
            DriverError: If the request cannot be completed
            CancelledError: If the run was cancelled before the request was sent
        """
        pass

    def close(self) -> None:
        """Release any pooled connections."""
        pass


class BrowserDriver(ABC):
    """Blocking browser automation session used by ``web_*`` blocks.

    All timeouts are in milliseconds; None means the driver default.
    """

    @abstractmethod
    def navigate(self, url: str, wait_until: str = "load", timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def click(self, selector: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def fill(self, selector: str, value: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def type(self, selector: str, text: str, delay: int = 0, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def select(self, selector: str, value: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def hover(self, selector: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def press(self, selector: str, key: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def set_checked(self, selector: str, checked: bool, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def focus(self, selector: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def scroll_into_view(self, selector: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def drag_and_drop(self, source: str, target: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def set_input_files(self, selector: str, path: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def wait_for_selector(
        self, selector: str, state: str = "visible", timeout: Optional[int] = None
    ) -> None:
        pass

    @abstractmethod
    def wait_for_url(self, pattern: str, timeout: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def wait(self, milliseconds: int) -> None:
        pass

    @abstractmethod
    def get_text(self, selector: str, timeout: Optional[int] = None) -> str:
        pass

    @abstractmethod
    def get_attribute(
        self, selector: str, name: str, timeout: Optional[int] = None
    ) -> Optional[str]:
        pass

    @abstractmethod
    def get_input_value(self, selector: str, timeout: Optional[int] = None) -> str:
        pass

    @abstractmethod
    def get_title(self) -> str:
        pass

    # State queries answer immediately; assertion blocks poll them until
    # their own timeout.

    @abstractmethod
    def count(self, selector: str) -> int:
        pass

    @abstractmethod
    def is_visible(self, selector: str) -> bool:
        pass

    @abstractmethod
    def is_enabled(self, selector: str) -> bool:
        pass

    @abstractmethod
    def is_checked(self, selector: str) -> bool:
        pass

    @abstractmethod
    def is_editable(self, selector: str) -> bool:
        pass

    @abstractmethod
    def get_url(self) -> str:
        pass

    @abstractmethod
    def screenshot(self, full_page: bool = True) -> bytes:
        """Capture the page as PNG bytes."""
        pass

    def close(self) -> None:
        pass
