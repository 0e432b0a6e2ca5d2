"""HTTP request executor built on httpx."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from .constants import DEFAULT_HTTP_TIMEOUT
from .contracts import HttpResponse
from .errors import TransportError

logger = logging.getLogger(__name__)


class HttpExecutor(Protocol):
    """Performs one HTTP call and returns a normalized response.

    Non-2xx statuses are ordinary results; only transport-level failures
    (network errors, timeouts) raise :class:`TransportError`.
    """

    async def execute(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> HttpResponse:
        """Send the request."""


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError as exc:
            return {"parseError": str(exc)}
    return response.text


class HttpxExecutor:
    """Execute requests with a shared ``httpx.AsyncClient``.

    Relative URLs are resolved against ``base_url``. Mapping and list bodies
    are sent as JSON; other bodies as text.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        default_headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=dict(default_headers or {}),
        )

    async def execute(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> HttpResponse:
        request_headers: Dict[str, str] = dict(headers or {})
        kwargs: Dict[str, Any] = {}
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v is not None}

        if body is not None and method.upper() != "GET":
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                has_type = any(k.lower() == "content-type" for k in request_headers)
                if not has_type:
                    request_headers["Content-Type"] = "text/plain"
                kwargs["content"] = body if isinstance(body, (str, bytes)) else str(body)

        logger.debug(f"HTTP {method.upper()} {url}")
        started = time.perf_counter()
        try:
            response = await self._client.request(
                method.upper(), url, headers=request_headers, **kwargs
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(f"{method.upper()} {url} failed: {exc}") from exc
        elapsed_ms = (time.perf_counter() - started) * 1000

        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=_decode_body(response),
            elapsed_ms=round(elapsed_ms, 2),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxExecutor":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
