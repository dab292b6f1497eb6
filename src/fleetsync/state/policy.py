"""Deterministic snapshot merge policy.

Pure functions: given the local value of a collection and the value pulled
from the server, return the merged value plus whether the local side holds
something the server lacks. No I/O and no store access happen here, so
merging the same server value twice yields the same result as merging it
once.
"""

from __future__ import annotations

import copy
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import Any

from fleetsync.models._base import parse_timestamp
from fleetsync.models.kinds import CollectionKind, CollectionShape, MergeStrategy

# Fields that carry the last time an entity changed, in any of the forms
# writers use. The newest one wins.
_FRESHNESS_FIELDS = ("lastUpdate", "lastStatusUpdate", "lastFuelUpdate", "timestamp")


@dataclass(frozen=True)
class MergeOutcome:
    """Result of merging one collection.

    ``push_local`` is set when the local side holds entities the server has
    not seen and the caller should upload the merged value.
    """

    value: Any
    push_local: bool = False


def entity_freshness(entity: dict[str, Any]) -> float | None:
    """Newest change timestamp of an entity as epoch seconds."""
    newest: float | None = None
    for field in _FRESHNESS_FIELDS:
        parsed = parse_timestamp(entity.get(field))
        if parsed is None:
            continue
        ts = parsed.timestamp()
        if newest is None or ts > newest:
            newest = ts
    return newest


def should_keep_local(local: dict[str, Any], server: dict[str, Any]) -> bool:
    """Whether a local entity is strictly fresher than its server copy.

    Without timestamps on both sides the server wins.
    """
    local_ts = entity_freshness(local)
    server_ts = entity_freshness(server)
    if local_ts is None or server_ts is None:
        return False
    return local_ts > server_ts


def _identities(entity: dict[str, Any], natural_keys: Iterable[str]) -> list[tuple[str, Any]]:
    keys: list[tuple[str, Any]] = []
    if entity.get("id") is not None:
        keys.append(("id", entity["id"]))
    for key in natural_keys:
        if entity.get(key) is not None:
            keys.append((key, entity[key]))
    return keys


def merge_union(
    local: list[Any],
    server: list[Any],
    natural_keys: tuple[str, ...] = (),
) -> MergeOutcome:
    """Union-by-identity merge of two entity lists.

    Start from the local list and overlay every server entity matching by
    ``id`` or by one of *natural_keys*. The server wins on conflicting
    fields unless the local copy is strictly fresher, in which case the
    local fields are laid over the server copy. Server-only entities are
    appended in server order; local-only entities are preserved.

    An empty server list next to a non-empty local one means the server has
    not been populated yet: the local list is kept and flagged for upload.
    """
    local_entities = [e for e in local if isinstance(e, dict)]
    server_entities = [e for e in server if isinstance(e, dict)]

    if not server_entities:
        return MergeOutcome(value=copy.deepcopy(local_entities), push_local=bool(local_entities))

    merged: list[dict[str, Any]] = [copy.deepcopy(e) for e in local_entities]
    index: dict[tuple[str, Any], int] = {}
    for position, entity in enumerate(merged):
        for identity in _identities(entity, natural_keys):
            index.setdefault(identity, position)

    matched: set[int] = set()
    for server_entity in server_entities:
        position = next(
            (index[i] for i in _identities(server_entity, natural_keys) if i in index),
            None,
        )
        if position is None:
            merged.append(copy.deepcopy(server_entity))
            position = len(merged) - 1
        else:
            current = merged[position]
            if should_keep_local(current, server_entity):
                merged[position] = {**copy.deepcopy(server_entity), **current}
            else:
                merged[position] = {**current, **copy.deepcopy(server_entity)}
        matched.add(position)
        for identity in _identities(merged[position], natural_keys):
            index.setdefault(identity, position)

    local_only = any(position not in matched for position in range(len(local_entities)))
    return MergeOutcome(value=merged, push_local=local_only)


def _is_present(value: Any, shape: CollectionShape) -> bool:
    if shape is CollectionShape.LIST:
        return isinstance(value, list) and len(value) > 0
    return isinstance(value, dict) and len(value) > 0


def merge_replace_if_present(
    local: Any,
    server: Any,
    shape: CollectionShape,
    unconfirmed_ids: Collection[str] = (),
) -> MergeOutcome:
    """Adopt the server value when it is non-empty; otherwise keep local.

    Local list entities whose IDs are in *unconfirmed_ids* (written here but
    not yet acknowledged by the server) and missing from the server value
    are re-appended, so a pull cannot erase them before their upload lands.
    """
    if not _is_present(server, shape):
        return MergeOutcome(value=copy.deepcopy(local))

    adopted = copy.deepcopy(server)
    if shape is not CollectionShape.LIST or not unconfirmed_ids:
        return MergeOutcome(value=adopted)

    server_ids = {e.get("id") for e in adopted if isinstance(e, dict)}
    pending = [
        copy.deepcopy(e)
        for e in local
        if isinstance(e, dict) and e.get("id") in unconfirmed_ids and e.get("id") not in server_ids
    ]
    return MergeOutcome(value=adopted + pending, push_local=bool(pending))


def merge_collection(
    kind: CollectionKind,
    local: Any,
    server: Any,
    unconfirmed_ids: Collection[str] = (),
) -> MergeOutcome | None:
    """Merge one collection according to its kind.

    Returns ``None`` when the server value has the wrong shape; the caller
    skips that collection for this round.
    """
    layout = kind.layout
    expected = list if layout.shape is CollectionShape.LIST else dict
    if not isinstance(server, expected):
        return None
    if not isinstance(local, expected):
        local = layout.empty()

    if layout.strategy is MergeStrategy.UNION_BY_IDENTITY:
        return merge_union(local, server, layout.natural_keys)
    return merge_replace_if_present(local, server, layout.shape, unconfirmed_ids)
