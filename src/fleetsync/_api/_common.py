"""Shared helpers for fleetsync endpoint modules.

Centralizes the request-then-check pattern: every application endpoint
answers ``{"success": bool, ...}`` and failures carry a machine-readable
``code`` that maps onto the exception hierarchy.

Internal to fleetsync and may change at any time.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fleetsync._transport import Transport
from fleetsync.exceptions import EntityNotFoundError, FleetApiError, VersionConflictError

NOT_FOUND_CODE = "not_found"
VERSION_CONFLICT_CODE = "version_conflict"
INVALID_TRANSITION_CODE = "invalid_transition"
BAD_REQUEST_CODE = "bad_request"


def _raise_for_code(*, endpoint: str, code: str, message: str, http_status: Any = None) -> None:
    if code == NOT_FOUND_CODE or (not code and http_status == 404):
        raise EntityNotFoundError(f"{endpoint}: {message}", code=NOT_FOUND_CODE, endpoint=endpoint)
    if code == VERSION_CONFLICT_CODE:
        raise VersionConflictError(f"{endpoint}: {message}", code=code, endpoint=endpoint)
    raise FleetApiError(
        f"{endpoint} failed: code={code or http_status} message={message}",
        code=code,
        endpoint=endpoint,
    )


async def request_success(
    transport: Transport,
    method: str,
    endpoint: str,
    payload: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Issue a request and return the body once ``success`` is confirmed.

    Bodies without a ``success`` key (``/health``, ``/info``) are accepted
    unless the HTTP status marked them as failures.
    """
    response = await transport.request_json(method, endpoint, payload)
    if response.get("success", True) is False:
        _raise_for_code(
            endpoint=endpoint,
            code=str(response.get("code") or ""),
            message=str(response.get("error") or response.get("message") or ""),
            http_status=response.get("httpStatus"),
        )
    return response
