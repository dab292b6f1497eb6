"""aiohttp application serving the authoritative store.

Every response is JSON. Application failures answer
``{"success": false, "error": ..., "code": ...}`` with 400 (malformed
request), 404 (unknown entity), 409 (illegal transition or stale
``expectedVersion``) or 500.
"""

from __future__ import annotations

import argparse
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from fleetsync import __version__
from fleetsync._api._common import (
    BAD_REQUEST_CODE,
    INVALID_TRANSITION_CODE,
    NOT_FOUND_CODE,
    VERSION_CONFLICT_CODE,
)
from fleetsync._mqtt import ChangePublisher, MqttBroker
from fleetsync._redact import redact_for_log
from fleetsync.config import ServerConfig
from fleetsync.exceptions import EntityNotFoundError, InvalidTransitionError, VersionConflictError
from fleetsync.models._base import utcnow_iso
from fleetsync.server.store import SERVER_NAME, AuthoritativeStore

_logger = logging.getLogger(__name__)

STORE_KEY = web.AppKey("store", AuthoritativeStore)
PUBLISHER_KEY = web.AppKey("publisher", ChangePublisher)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"success": False, "error": message, "code": code}, status=status)


@web.middleware
async def log_requests(request: web.Request, handler: Handler) -> web.StreamResponse:
    started = time.monotonic()
    response = await handler(request)
    _logger.info(
        "%s %s -> %s (%.1f ms)",
        request.method,
        request.path,
        response.status,
        (time.monotonic() - started) * 1000,
    )
    return response


@web.middleware
async def map_errors(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except EntityNotFoundError as exc:
        return _error(404, NOT_FOUND_CODE, str(exc))
    except VersionConflictError as exc:
        return _error(409, VERSION_CONFLICT_CODE, str(exc))
    except InvalidTransitionError as exc:
        return _error(409, INVALID_TRANSITION_CODE, str(exc))
    except (ValidationError, ValueError, KeyError, TypeError) as exc:
        return _error(400, BAD_REQUEST_CODE, str(exc))
    except Exception:
        _logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error(500, "internal_error", "Internal server error")


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValueError("request body must be JSON") from exc
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    _logger.debug("%s %s body=%s", request.method, request.path, redact_for_log(body))
    return body


def _expected_version(body: dict[str, Any]) -> int | None:
    value = body.get("expectedVersion")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("expectedVersion must be an integer")
    return value


def _store(request: web.Request) -> AuthoritativeStore:
    return request.app[STORE_KEY]


def _publish(request: web.Request, event: str, **fields: Any) -> None:
    publisher = request.app.get(PUBLISHER_KEY)
    if publisher is not None:
        publisher.publish(event, timestamp=utcnow_iso(), **fields)


# ----------------------------------------------------------------------
# Snapshot
# ----------------------------------------------------------------------


async def get_snapshot(request: web.Request) -> web.Response:
    return web.json_response({"success": True, "data": _store(request).snapshot(), "timestamp": utcnow_iso()})


async def post_snapshot(request: web.Request) -> web.Response:
    body = await _json_body(request)
    data = body.get("data")
    if not isinstance(data, dict):
        raise ValueError("data must be an object")
    update_type = body.get("updateType") or "full"
    if update_type not in ("full", "partial"):
        raise ValueError(f"unknown updateType {update_type!r}")
    last_update = _store(request).apply_update(data, update_type)
    _publish(request, "data_update", collections=sorted(data), updateType=update_type)
    return web.json_response({"success": True, "message": "Data updated successfully", "timestamp": last_update})


# ----------------------------------------------------------------------
# Drivers
# ----------------------------------------------------------------------


async def get_driver(request: web.Request) -> web.Response:
    driver = _store(request).get_driver(request.match_info["driver_id"])
    return web.json_response({"success": True, "driver": driver, "timestamp": utcnow_iso()})


async def post_location(request: web.Request) -> web.Response:
    driver_id = request.match_info["driver_id"]
    location = _store(request).update_location(driver_id, await _json_body(request))
    return web.json_response({"success": True, "message": "Location updated", "location": location})


async def get_driver_locations(request: web.Request) -> web.Response:
    drivers = _store(request).driver_locations()
    return web.json_response({"success": True, "drivers": drivers, "count": len(drivers), "timestamp": utcnow_iso()})


async def post_status(request: web.Request) -> web.Response:
    driver_id = request.match_info["driver_id"]
    body = await _json_body(request)
    driver = _store(request).update_status(
        driver_id,
        movement_status=body.get("movementStatus"),
        status=body.get("status"),
        expected_version=_expected_version(body),
    )
    _publish(request, "driver_status", driverId=driver_id, movementStatus=driver.get("movementStatus"))
    return web.json_response(
        {
            "success": True,
            "message": "Driver status updated",
            "movementStatus": driver.get("movementStatus"),
            "status": driver.get("status"),
            "version": driver["version"],
            "timestamp": driver.get("lastStatusUpdate"),
        }
    )


async def post_fuel(request: web.Request) -> web.Response:
    driver_id = request.match_info["driver_id"]
    body = await _json_body(request)
    driver = _store(request).update_fuel(driver_id, body.get("fuelLevel"), expected_version=_expected_version(body))
    return web.json_response(
        {
            "success": True,
            "message": "Fuel level updated",
            "fuelLevel": driver["fuelLevel"],
            "version": driver["version"],
            "timestamp": driver.get("lastFuelUpdate"),
        }
    )


async def post_route_completion(request: web.Request) -> web.Response:
    driver_id = request.match_info["driver_id"]
    body = await _json_body(request)
    result = _store(request).complete_route(
        driver_id,
        completion_time=body.get("completionTime"),
        movement_status=body.get("movementStatus"),
        expected_version=_expected_version(body),
    )
    _publish(
        request,
        "route_completion",
        driverId=driver_id,
        status=result.driver.get("movementStatus"),
        completedRoutes=list(result.completed_route_ids),
    )
    return web.json_response(
        {
            "success": True,
            "message": "Route completion processed successfully",
            "driver": result.driver,
            "completedRoutes": list(result.completed_route_ids),
        }
    )


async def post_driver_update(request: web.Request) -> web.Response:
    driver_id = request.match_info["driver_id"]
    body = await _json_body(request)
    driver = _store(request).update_driver(driver_id, body, expected_version=_expected_version(body))
    return web.json_response({"success": True, "message": "Driver updated successfully", "driver": driver})


async def get_driver_routes(request: web.Request) -> web.Response:
    routes = _store(request).driver_routes(request.match_info["driver_id"])
    return web.json_response({"success": True, "routes": routes, "timestamp": utcnow_iso()})


# ----------------------------------------------------------------------
# Routes / collections / liveness
# ----------------------------------------------------------------------


async def post_route(request: web.Request) -> web.Response:
    body = await _json_body(request)
    route = _store(request).upsert_route(body, expected_version=_expected_version(body))
    return web.json_response({"success": True, "message": "Route saved", "route": route})


async def post_collection(request: web.Request) -> web.Response:
    collection = _store(request).add_collection(await _json_body(request))
    return web.json_response({"success": True, "message": "Collection registered", "collection": collection})


async def get_health(request: web.Request) -> web.Response:
    return web.json_response(_store(request).health())


async def get_info(request: web.Request) -> web.Response:
    return web.json_response({"name": SERVER_NAME, "version": __version__})


def create_app(
    config: ServerConfig | None = None,
    *,
    store: AuthoritativeStore | None = None,
    publisher: ChangePublisher | None = None,
) -> web.Application:
    """Build the application; *store* and *publisher* are injectable for tests."""
    config = config or ServerConfig()
    app = web.Application(middlewares=[log_requests, map_errors])
    app[STORE_KEY] = store or AuthoritativeStore()

    if publisher is None and config.mqtt_enabled:
        publisher = ChangePublisher(
            MqttBroker(
                host=config.mqtt_host,
                port=config.mqtt_port,
                topic=config.mqtt_topic,
                keepalive=config.mqtt_keepalive,
            ),
            logger=_logger,
        )
    if publisher is not None:
        app[PUBLISHER_KEY] = publisher

        async def _start_publisher(_app: web.Application) -> None:
            publisher.start()

        async def _stop_publisher(_app: web.Application) -> None:
            publisher.stop()

        app.on_startup.append(_start_publisher)
        app.on_cleanup.append(_stop_publisher)

    prefix = config.api_prefix.rstrip("/")
    router = app.router
    router.add_get(f"{prefix}/sync", get_snapshot)
    router.add_post(f"{prefix}/sync", post_snapshot)
    # Static segment first so it is not captured as a driver ID.
    router.add_get(f"{prefix}/driver/locations", get_driver_locations)
    router.add_get(f"{prefix}/driver/{{driver_id}}", get_driver)
    router.add_post(f"{prefix}/driver/{{driver_id}}/location", post_location)
    router.add_post(f"{prefix}/driver/{{driver_id}}/status", post_status)
    router.add_post(f"{prefix}/driver/{{driver_id}}/fuel", post_fuel)
    router.add_post(f"{prefix}/driver/{{driver_id}}/route-completion", post_route_completion)
    router.add_post(f"{prefix}/driver/{{driver_id}}/update", post_driver_update)
    router.add_get(f"{prefix}/driver/{{driver_id}}/routes", get_driver_routes)
    router.add_post(f"{prefix}/routes", post_route)
    router.add_post(f"{prefix}/collections", post_collection)
    router.add_get(f"{prefix}/health", get_health)
    router.add_get(f"{prefix}/info", get_info)
    return app


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the fleetsync authoritative store server")
    parser.add_argument("--host", default=None, help="Bind address (default from FLEETSYNC_SERVER_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port (default from PORT or 8080)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    overrides: dict[str, Any] = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    config = ServerConfig.from_env(**overrides)
    web.run_app(create_app(config), host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
