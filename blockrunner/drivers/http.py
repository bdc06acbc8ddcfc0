"""HTTP driver backed by httpx."""

import json
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from ..errors import DriverError
from .base import HttpDriver, HttpResponse

if TYPE_CHECKING:
    from ..context import CancellationSignal


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError):
            return response.text
    return response.text


class HttpxDriver(HttpDriver):
    """Synchronous ``httpx.Client`` wrapper.

    Args:
        base_url: Prefix for relative request URLs
        timeout_ms: Timeout applied to connect, read and write
        headers: Headers sent with every request
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_ms: int = 30000,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
    ):
        self._client = client or httpx.Client(
            base_url=base_url or "",
            headers=headers or {},
            timeout=httpx.Timeout(timeout_ms / 1000),
            follow_redirects=True,
        )

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        cancellation: Optional["CancellationSignal"] = None,
    ) -> HttpResponse:
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        kwargs: Dict[str, Any] = {"headers": headers or {}}
        if body is not None:
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        try:
            response = self._client.request(method.upper(), url, **kwargs)
        except httpx.RequestError as e:
            raise DriverError(f"{method.upper()} {url} failed: {e}") from e

        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=_decode_body(response),
            url=str(response.url),
        )

    def close(self) -> None:
        self._client.close()
