"""JSON-over-HTTP transport used to reach the licensing server."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from .errors import TransportError

__all__ = ["DEFAULT_TIMEOUT", "HTTPTransport"]

logger = logging.getLogger("licenseedict.transport")

DEFAULT_TIMEOUT = 10.0


class HTTPTransport:
    """Thin wrapper over :class:`httpx.Client` returning ``(status, json)``.

    The timeout is enforced by httpx.  A caller-supplied client is used
    as-is and is not closed by :meth:`close`.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = "",
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout or DEFAULT_TIMEOUT)
        self._user_agent = user_agent or _default_user_agent()
        self._closed = False

    @property
    def user_agent(self) -> str:
        return self._user_agent

    def post(self, url: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        return self._request("POST", url, body)

    def delete(self, url: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        return self._request("DELETE", url, body)

    def _request(
        self, method: str, url: str, body: Dict[str, Any]
    ) -> Tuple[int, Dict[str, Any]]:
        if self._closed:
            raise TransportError(f"{method} {url} failed: transport is closed")

        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        try:
            # httpx.Client.delete() takes no body, so go through request().
            response = self._client.request(method, url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        logger.debug("%s %s -> %d", method, url, response.status_code)

        if not response.content:
            return response.status_code, {}
        try:
            decoded = response.json()
        except ValueError as exc:
            raise TransportError(
                f"decode response from {url} (status {response.status_code}): {exc}"
            ) from exc
        if not isinstance(decoded, dict):
            decoded = {"data": decoded}
        return response.status_code, decoded

    def close(self) -> None:
        self._closed = True
        if self._owns_client:
            self._client.close()


def _default_user_agent() -> str:
    from . import __version__

    return f"LicenseEdictSDK-Python/{__version__}"
