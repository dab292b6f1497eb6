"""Route and collection-event endpoints.

Endpoints:
  - POST /routes       (upsert by ID)
  - POST /collections  (append-only)
"""

from __future__ import annotations

from typing import Any

from fleetsync._api._common import request_success
from fleetsync._constants import COLLECTIONS_PATH, ROUTES_PATH
from fleetsync._transport import Transport
from fleetsync.models.records import Collection
from fleetsync.models.route import Route


async def post_route(transport: Transport, route: Route, *, expected_version: int | None = None) -> dict[str, Any]:
    payload = route.to_wire()
    payload.pop("version", None)
    if expected_version is not None:
        payload["expectedVersion"] = expected_version
    response = await request_success(transport, "POST", ROUTES_PATH, payload)
    return dict(response.get("route") or {})


async def post_collection(transport: Transport, collection: Collection) -> dict[str, Any]:
    response = await request_success(transport, "POST", COLLECTIONS_PATH, collection.to_wire())
    return dict(response.get("collection") or {})
