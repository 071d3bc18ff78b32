"""In-memory collaborator implementations for testing and development.

This module provides dictionary-based implementations of the remote graph
store and of the local cache. They are suitable for:

- **Unit testing**: Fast, isolated tests without a graph database
- **Development**: Exercising the expansion engine and sync service offline
- **Fault injection**: `InMemoryRemoteGraphStore.available = False` makes
  every call raise `RemoteUnavailableError`

**Not a production store**: nothing is persisted, and edge and hyperedge
lookups are O(n) scans.
"""

import copy
import uuid
from datetime import datetime
from typing import Any, Callable, Sequence

from versegraph.cancellation import CancellationToken
from versegraph.edge import Edge, EdgeType, GroupConnection, HyperedgeOptions
from versegraph.entity import NodeKind, Note, Tag, Topic, VerseNode, VersionedEntity, utc_now
from versegraph.exceptions import NodeNotFoundError, RemoteUnavailableError
from versegraph.logging import setup_logging
from versegraph.storage.interfaces import LocalCacheInterface, RemoteGraphStoreInterface

logger = setup_logging()

NODE_MODELS: dict[NodeKind, type[VersionedEntity]] = {
    NodeKind.VERSE: VerseNode,
    NodeKind.NOTE: Note,
    NodeKind.TAG: Tag,
    NodeKind.TOPIC: Topic,
    NodeKind.GROUP: GroupConnection,
}

_EDGE_MUTABLE_FIELDS = frozenset({"description"})
_NOTE_MUTABLE_FIELDS = frozenset({"content", "tags"})


class InMemoryRemoteGraphStore(RemoteGraphStoreInterface):
    """Remote graph store kept in dictionaries.

    Nodes are keyed by (kind, id); hyperedges live under `NodeKind.GROUP`.
    Elementary edges are unique by their canonical (source, target, type)
    triple: creating an edge whose triple already exists returns the existing
    edge. Deleting an edge also removes its id from every hyperedge's
    `connection_ids`.

    Example:
        ```python
        store = InMemoryRemoteGraphStore()
        await store.add_node(NodeKind.VERSE, verse)
        edges = await store.get_edges_for_node(verse.id)
        ```
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._nodes: dict[NodeKind, dict[str, VersionedEntity]] = {kind: {} for kind in NodeKind}
        self._edges: dict[str, Edge] = {}
        self._clock = clock
        self.available = True

    def _check(self, cancel_token: CancellationToken | None = None) -> None:
        if not self.available:
            raise RemoteUnavailableError("remote graph store is unreachable")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    # Seeding helpers

    async def add_node(self, kind: NodeKind, entity: VersionedEntity) -> str:
        """Store an entity as-is, overwriting any node with the same id."""
        self._nodes[kind][entity.id] = entity
        return entity.id

    async def add_edge(self, edge: Edge) -> str:
        """Store an edge as-is, overwriting any edge with the same id."""
        self._edges[edge.id] = edge
        return edge.id

    async def add_hyperedge(self, hyperedge: GroupConnection) -> str:
        self._nodes[NodeKind.GROUP][hyperedge.id] = hyperedge
        return hyperedge.id

    # Nodes

    async def get_node_by_id(
        self,
        kind: NodeKind,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> VersionedEntity | None:
        self._check(cancel_token)
        return self._nodes[NodeKind(kind)].get(node_id)

    async def get_node_by_natural_key(
        self,
        book: str,
        chapter: int,
        verse_number: int,
        translation: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> VerseNode | None:
        self._check(cancel_token)
        book_lower = book.strip().lower()
        for verse in self._nodes[NodeKind.VERSE].values():
            if not isinstance(verse, VerseNode):
                continue
            if verse.book.lower() != book_lower or verse.chapter != chapter or verse.verse_number != verse_number:
                continue
            if translation is None or verse.translation == translation:
                return verse
        return None

    async def create_node(self, kind: NodeKind, fields: dict[str, Any]) -> VersionedEntity:
        """Create a node of `kind` from `fields`.

        Verses are unique per (book, chapter, verse_number, translation);
        creating a duplicate returns the verse already stored.
        """
        self._check()
        kind = NodeKind(kind)
        now = self._clock()
        data = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **fields}
        entity = NODE_MODELS[kind].model_validate(data)
        if isinstance(entity, VerseNode):
            existing = await self.get_node_by_natural_key(
                entity.book, entity.chapter, entity.verse_number, entity.translation
            )
            if existing is not None:
                logger.debug(
                    {
                        "message": f"Verse {entity.reference} ({entity.translation}) already exists",
                        "verse_id": existing.id,
                    },
                    pprint=True,
                )
                return existing
        self._nodes[kind][entity.id] = entity
        return entity

    # Elementary edges

    def _find_by_triple(self, source_id: str, target_id: str, type: EdgeType) -> Edge | None:
        for edge in self._edges.values():
            if edge.canonical_key == (source_id, target_id, type.value):
                return edge
        return None

    async def get_edges_for_node(
        self,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[Edge]:
        self._check(cancel_token)
        return [edge for edge in self._edges.values() if node_id in (edge.source_id, edge.target_id)]

    async def create_edge(
        self,
        source_id: str,
        target_id: str,
        type: EdgeType,
        description: str | None = None,
        group_connection_id: str | None = None,
    ) -> Edge:
        self._check()
        type = EdgeType(type)
        existing = self._find_by_triple(source_id, target_id, type)
        if existing is not None:
            return existing
        now = self._clock()
        edge = Edge(
            id=str(uuid.uuid4()),
            source_id=source_id,
            target_id=target_id,
            type=type,
            description=description,
            group_connection_id=group_connection_id,
            created_at=now,
            updated_at=now,
        )
        self._edges[edge.id] = edge
        return edge

    async def update_edge(self, edge_id: str, partial: dict[str, Any]) -> Edge:
        self._check()
        edge = self._edges.get(edge_id)
        if edge is None:
            raise NodeNotFoundError(edge_id, kind="edge")
        changes = {k: v for k, v in partial.items() if k in _EDGE_MUTABLE_FIELDS}
        data = {**edge.model_dump(), **changes, "updated_at": partial.get("updated_at") or self._clock()}
        updated = Edge.model_validate(data)
        self._edges[edge_id] = updated
        return updated

    async def delete_edge(self, edge_id: str) -> None:
        self._check()
        if self._edges.pop(edge_id, None) is None:
            return
        groups = self._nodes[NodeKind.GROUP]
        for group_id, hyperedge in list(groups.items()):
            if isinstance(hyperedge, GroupConnection) and edge_id in hyperedge.connection_ids:
                groups[group_id] = hyperedge.model_copy(
                    update={"connection_ids": tuple(cid for cid in hyperedge.connection_ids if cid != edge_id)}
                )

    async def list_edges(self, cancel_token: CancellationToken | None = None) -> list[Edge]:
        self._check(cancel_token)
        return list(self._edges.values())

    # Hyperedges

    async def get_hyperedges_for_node(
        self,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[GroupConnection]:
        self._check(cancel_token)
        return [
            hyperedge
            for hyperedge in self._nodes[NodeKind.GROUP].values()
            if isinstance(hyperedge, GroupConnection) and hyperedge.touches(node_id)
        ]

    async def create_hyperedge(
        self,
        source_ids: Sequence[str],
        target_ids: Sequence[str],
        type: EdgeType,
        options: HyperedgeOptions | None = None,
    ) -> GroupConnection:
        """Create a hyperedge plus one elementary edge per (source, target) pair.

        Self-pairs are skipped when both sides share a kind.
        """
        self._check()
        options = options or HyperedgeOptions()
        type = EdgeType(type)
        now = self._clock()
        hyperedge_id = str(uuid.uuid4())
        connection_ids: list[str] = []
        for source_id in source_ids:
            for target_id in target_ids:
                if options.source_kind == options.target_kind and source_id == target_id:
                    continue
                edge = await self.create_edge(
                    source_id,
                    target_id,
                    type,
                    options.description,
                    group_connection_id=hyperedge_id,
                )
                connection_ids.append(edge.id)
        name = options.name or f"{options.source_kind.value} to {options.target_kind.value} group ({now.date().isoformat()})"
        hyperedge = GroupConnection(
            id=hyperedge_id,
            name=name,
            type=type,
            description=options.description,
            source_ids=tuple(source_ids),
            target_ids=tuple(target_ids),
            source_kind=options.source_kind,
            target_kind=options.target_kind,
            connection_ids=tuple(connection_ids),
            metadata=dict(options.metadata),
            created_at=now,
            updated_at=now,
        )
        self._nodes[NodeKind.GROUP][hyperedge.id] = hyperedge
        return hyperedge

    # Notes

    async def list_notes(self, cancel_token: CancellationToken | None = None) -> list[Note]:
        self._check(cancel_token)
        return [note for note in self._nodes[NodeKind.NOTE].values() if isinstance(note, Note)]

    async def get_notes_for_verse(
        self,
        verse_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[Note]:
        self._check(cancel_token)
        return [
            note
            for note in self._nodes[NodeKind.NOTE].values()
            if isinstance(note, Note) and note.verse_id == verse_id
        ]

    async def create_note(self, note: Note) -> Note:
        self._check()
        self._nodes[NodeKind.NOTE][note.id] = note
        return note

    async def update_note(self, note_id: str, partial: dict[str, Any]) -> Note:
        self._check()
        note = self._nodes[NodeKind.NOTE].get(note_id)
        if not isinstance(note, Note):
            raise NodeNotFoundError(note_id, kind="note")
        changes = {k: v for k, v in partial.items() if k in _NOTE_MUTABLE_FIELDS}
        data = {**note.model_dump(), **changes, "updated_at": partial.get("updated_at") or self._clock()}
        updated = Note.model_validate(data)
        self._nodes[NodeKind.NOTE][note_id] = updated
        return updated

    async def count(self) -> int:
        """Total number of nodes (all kinds) plus elementary edges."""
        return sum(len(nodes) for nodes in self._nodes.values()) + len(self._edges)


class InMemoryLocalCache(LocalCacheInterface):
    """Local cache kept in a dictionary of collections.

    Records are deep-copied on the way in and out so callers can't mutate
    cached state behind the cache's back.
    """

    def __init__(self) -> None:
        self._collections: dict[str, list[dict[str, Any]]] = {}
        self._last_sync: datetime | None = None

    async def get_collection(self, name: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._collections.get(name, []))

    async def set_collection(self, name: str, records: Sequence[dict[str, Any]]) -> None:
        self._collections[name] = copy.deepcopy(list(records))

    async def remove_collection(self, name: str) -> None:
        self._collections.pop(name, None)

    async def get_last_sync_timestamp(self) -> datetime | None:
        return self._last_sync

    async def set_last_sync_timestamp(self, timestamp: datetime) -> None:
        self._last_sync = timestamp
