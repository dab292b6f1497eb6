#!/usr/bin/env python3
"""Dump the authoritative store's current snapshot.

Pulls ``GET /sync`` and ``GET /health`` and prints, per collection, the
entity count and fingerprint the sync agent would compute. Handy to check
whether two clients (or a client and the server) have converged.

Usage
-----
::

    export FLEETSYNC_BASE_URL="http://127.0.0.1:8080/api"
    python scripts/dump_snapshot.py

Options::

    --json               Output the full snapshot as JSON
    --output FILE        Write JSON to FILE instead of stdout
    --collection NAME    Only show this collection (repeatable)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from fleetsync import FleetClient, SyncConfig  # noqa: E402
from fleetsync.exceptions import FleetSyncError  # noqa: E402
from fleetsync.state.fingerprint import fingerprint, store_fingerprint  # noqa: E402


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _size(value: Any) -> str:
    if isinstance(value, (list, dict)):
        return str(len(value))
    return "-"


async def main() -> int:
    parser = argparse.ArgumentParser(description="Dump the fleetsync server snapshot for debugging.")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write JSON output to FILE instead of stdout")
    parser.add_argument("--collection", action="append", default=[], help="Only show this collection")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = SyncConfig.from_env()
    try:
        async with FleetClient(config) as client:
            health = await client.health()
            snapshot = await client.pull_snapshot()
    except FleetSyncError as exc:
        print(f"Failed to reach {config.base_url}: {exc}", file=sys.stderr)
        return 1

    data = snapshot.data
    if args.collection:
        data = {key: value for key, value in data.items() if key in args.collection}

    if args.json_mode or args.output:
        payload = json.dumps(
            {"health": health.model_dump(by_alias=True), "timestamp": snapshot.timestamp, "data": data},
            indent=2,
            default=str,
            ensure_ascii=False,
        )
        if args.output:
            Path(args.output).write_text(payload, encoding="utf-8")
            print(f"JSON written to {args.output}", file=sys.stderr)
        else:
            print(payload)
        return 0

    out: list[str] = [_section("fleetsync snapshot")]
    out.append(f"  server    : {config.base_url}")
    out.append(f"  time      : {datetime.now(UTC).isoformat()}")
    out.append(f"  status    : {health.status} (uptime {health.uptime:.0f}s)")
    out.append(f"  snapshot  : {snapshot.timestamp}")
    out.append(f"  store fp  : {store_fingerprint({k: v for k, v in data.items() if k != 'lastUpdate'})}")
    out.append(_section("COLLECTIONS"))
    for key in sorted(data):
        if key == "lastUpdate":
            continue
        value = data[key]
        out.append(f"  {key:<22} {_size(value):>6}  {fingerprint(value)}")
    print("\n".join(out))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
