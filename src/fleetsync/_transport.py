"""JSON-over-HTTP transport to the authoritative store."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from fleetsync._constants import USER_AGENT
from fleetsync._redact import redact_for_log
from fleetsync._serialize import dumps_safe
from fleetsync.config import SyncConfig
from fleetsync.exceptions import FleetTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Keeps test doubles easy to pass while the production implementation
    (`HttpTransport`) stays concrete.
    """

    async def request_json(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        ...


class HttpTransport:
    """aiohttp-backed transport with a per-request total timeout.

    Responses below 500 that carry a JSON object are returned as-is so the
    endpoint layer can map application errors (``success: false``).
    Network failures, timeouts, 5xx answers and non-JSON bodies raise
    :class:`FleetTransportError`.
    """

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    async def request_json(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        body: str | None = None
        if payload is not None:
            body = dumps_safe(payload)
            headers["content-type"] = "application/json; charset=UTF-8"
            _logger.debug("%s %s payload=%s", method, url, redact_for_log(payload))
        else:
            _logger.debug("%s %s", method, url)

        try:
            async with self._http.request(method, url, data=body, headers=headers, timeout=self._timeout) as resp:
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FleetTransportError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc

        if status >= 500:
            raise FleetTransportError(
                f"HTTP {status} from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            )

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise FleetTransportError(
                f"Invalid JSON from {endpoint} (HTTP {status}): {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

        if not isinstance(result, dict):
            raise FleetTransportError(
                f"Expected a JSON object from {endpoint}, got {type(result).__name__}",
                status_code=status,
                endpoint=endpoint,
            )
        if status >= 400:
            result.setdefault("success", False)
            result.setdefault("httpStatus", status)
        _logger.debug("%s %s -> %s", method, endpoint, status)
        return result
