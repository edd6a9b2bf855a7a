"""
ember/services/http.py — Shared async HTTP plumbing for third-party services.

Each client owns one lazily created :class:`httpx.AsyncClient`. Transport and
status failures are translated into the client's :class:`ServiceError`
subclass so callers only ever catch Ember exceptions.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from ember.core.errors import ServiceError
from ember.core.logger import get_logger

_log = get_logger()


class ServiceClient:
    """
    Base for Ember's REST clients.

    Args:
        base_url: Service root URL.
        timeout_s: Per-request timeout.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    #: Short name used in logs.
    service_name: str = "service"

    #: Exception type raised for failures.
    error_cls: type[ServiceError] = ServiceError

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _default_headers(self) -> dict[str, str]:
        return {}

    def _auth(self) -> Optional[httpx.Auth | tuple[str, str]]:
        return None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._default_headers(),
                auth=self._auth(),
                timeout=self._timeout_s,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request and return the successful response.

        Raises:
            ServiceError: (``error_cls``) on transport failure or non-2xx status.
        """
        client = await self._get_client()
        t0 = time.perf_counter()
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            _log.error(self.service_name, "http_error", {
                "path": path, "status": status, "body": exc.response.text[:300],
            })
            raise self._error(_error_detail(exc.response), status) from exc
        except httpx.RequestError as exc:
            _log.error(self.service_name, "request_error", {"path": path, "error": str(exc)})
            raise self._error(f"request failed: {exc}") from exc
        _log.perf(self.service_name, "request_done",
                  (time.perf_counter() - t0) * 1_000.0,
                  {"method": method, "path": path, "status": response.status_code})
        return response

    def _error(self, message: str, status_code: Optional[int] = None) -> ServiceError:
        if self.error_cls is ServiceError:
            return ServiceError(self.service_name, message, status_code)
        return self.error_cls(message, status_code)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message") or body.get("error")
        if isinstance(detail, dict):
            detail = detail.get("message") or str(detail)
        if detail:
            return str(detail)
    return response.text[:300]
