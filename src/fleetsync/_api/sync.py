"""Snapshot pull/push and liveness endpoints.

Endpoints:
  - GET  /sync    (full snapshot)
  - POST /sync    (full or partial push)
  - GET  /health
  - GET  /info
"""

from __future__ import annotations

import logging
from typing import Any

from fleetsync._api._common import request_success
from fleetsync._constants import HEALTH_PATH, INFO_PATH, SYNC_PATH
from fleetsync._transport import Transport
from fleetsync.exceptions import FleetApiError
from fleetsync.models.wire import HealthReport, PushAck, PushRequest, ServerInfo, Snapshot, UpdateType

_logger = logging.getLogger(__name__)


async def fetch_snapshot(transport: Transport) -> Snapshot:
    response = await request_success(transport, "GET", SYNC_PATH)
    data = response.get("data")
    if not isinstance(data, dict):
        raise FleetApiError(
            f"{SYNC_PATH} returned no snapshot data",
            code="invalid_payload",
            endpoint=SYNC_PATH,
        )
    return Snapshot.model_validate(response)


async def push_snapshot(
    transport: Transport,
    data: dict[str, Any],
    *,
    update_type: UpdateType = "partial",
) -> PushAck:
    """Upload collections; ``full`` replaces the listed keys wholesale."""
    request = PushRequest(data=data, update_type=update_type)
    response = await request_success(transport, "POST", SYNC_PATH, request.model_dump(by_alias=True))
    _logger.debug("Pushed %s update with %d collection(s)", update_type, len(data))
    return PushAck.model_validate(response)


async def fetch_health(transport: Transport) -> HealthReport:
    response = await request_success(transport, "GET", HEALTH_PATH)
    return HealthReport.model_validate(response)


async def fetch_info(transport: Transport) -> ServerInfo:
    response = await request_success(transport, "GET", INFO_PATH)
    return ServerInfo.model_validate(response)
