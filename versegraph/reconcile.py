"""Last-writer-wins reconciliation of entity collections and edge sets.

Two pure functions back every merge in the package:

- `merge_collections(local, remote)` folds two copies of the same entity
  collection into one, keyed by id. Local is assumed to hold unsynced newer
  edits, so it seeds the result; a remote record replaces a local one only
  when it is strictly newer. On equal timestamps remote wins, since the remote
  store is authoritative at rest.

- `dedupe_edges(edges)` collapses edges that state the same logical fact,
  keyed by the canonical (source, target, type) triple rather than by storage
  id. On collision the later `updated_at` survives; ties keep the first-seen
  edge so repeated passes are stable.

Both functions tolerate malformed or missing timestamps by treating them as
the Unix epoch. They never raise for data problems.
"""

from typing import Any, Callable, Hashable, Iterable, Sequence, TypeVar

from versegraph.entity import coerce_timestamp

E = TypeVar("E")


def recency(entity: Any):
    """Return the comparable `updated_at` of an entity or record dict."""
    if isinstance(entity, dict):
        raw = entity.get("updated_at", entity.get("updatedAt"))
    else:
        raw = getattr(entity, "updated_at", None)
    return coerce_timestamp(raw)


def _identity(entity: Any) -> Hashable:
    if isinstance(entity, dict):
        return entity.get("id")
    return entity.id


def merge_collections(
    local: Iterable[E],
    remote: Iterable[E],
    key: Callable[[E], Hashable] = _identity,
) -> list[E]:
    """Merge a local and a remote collection of the same entity type.

    Args:
        local: Entities from the local cache (may hold unsynced edits).
        remote: Entities from the remote store.
        key: Identity function; defaults to the entity's `id`.

    Returns:
        One entity per identity: local insertion order first, then
        remote-only entities in remote order.
    """
    merged: dict[Hashable, E] = {}
    for entity in local:
        merged[key(entity)] = entity
    for entity in remote:
        identity = key(entity)
        current = merged.get(identity)
        if current is None or recency(entity) >= recency(current):
            merged[identity] = entity
    return list(merged.values())


def canonical_key(edge: Any) -> Hashable:
    """Return the (source, target, type) triple identifying an edge."""
    return edge.canonical_key


def dedupe_edges(edges: Iterable[E], key: Callable[[E], Hashable] = canonical_key) -> list[E]:
    """Keep one edge per canonical key, preferring the most recently updated.

    Works with anything exposing `canonical_key` and `updated_at`, so stored
    `Edge` entities and `GraphEdge` view objects share this code path.
    """
    kept: dict[Hashable, E] = {}
    for edge in edges:
        edge_key = key(edge)
        current = kept.get(edge_key)
        if current is None or recency(edge) > recency(current):
            kept[edge_key] = edge
    return list(kept.values())


def ids_of(entities: Sequence[Any]) -> set[Hashable]:
    return {_identity(entity) for entity in entities}
