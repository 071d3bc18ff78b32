"""Collaborator interfaces for the verse graph engine.

The engine depends on two external collaborators:

- `RemoteGraphStoreInterface`: the authoritative graph store, exposing
  create/read/update/delete over nodes, typed edges and hyperedges.
- `LocalCacheInterface`: a key-value cache holding whole entity collections
  (as plain JSON-compatible dicts) plus the last successful sync time.

Read operations on the remote store accept an optional `CancellationToken`
and raise `OperationAbortedError` when it fires mid-flight. A store that
cannot be reached raises `RemoteUnavailableError`.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Sequence

from versegraph.cancellation import CancellationToken
from versegraph.edge import Edge, EdgeType, GroupConnection, HyperedgeOptions
from versegraph.entity import NodeKind, Note, VerseNode, VersionedEntity

NOTES_COLLECTION = "notes"
EDGES_COLLECTION = "edges"


class RemoteGraphStoreInterface(ABC):
    """Abstract interface for the authoritative remote graph store."""

    @abstractmethod
    async def get_node_by_id(
        self,
        kind: NodeKind,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> VersionedEntity | None:
        """Fetch a node of the given kind, or None if it doesn't exist.

        For `NodeKind.GROUP` the node is the `GroupConnection` itself.
        """

    @abstractmethod
    async def get_node_by_natural_key(
        self,
        book: str,
        chapter: int,
        verse_number: int,
        translation: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> VerseNode | None:
        """Find a verse by reference. Without a translation any match is returned."""

    @abstractmethod
    async def create_node(self, kind: NodeKind, fields: dict[str, Any]) -> VersionedEntity:
        """Create a node and return it with its assigned id and timestamps."""

    @abstractmethod
    async def get_edges_for_node(
        self,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[Edge]:
        """Return elementary edges touching the node, in both directions."""

    @abstractmethod
    async def create_edge(
        self,
        source_id: str,
        target_id: str,
        type: EdgeType,
        description: str | None = None,
    ) -> Edge:
        """Create an elementary edge."""

    @abstractmethod
    async def update_edge(self, edge_id: str, partial: dict[str, Any]) -> Edge:
        """Apply `partial` to an edge and return the updated edge.

        Raises:
            NodeNotFoundError: if no edge has that id.
        """

    @abstractmethod
    async def delete_edge(self, edge_id: str) -> None:
        """Delete an edge. Deleting an unknown id is a no-op."""

    @abstractmethod
    async def get_hyperedges_for_node(
        self,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[GroupConnection]:
        """Return hyperedges having the node in their source or target set."""

    @abstractmethod
    async def create_hyperedge(
        self,
        source_ids: Sequence[str],
        target_ids: Sequence[str],
        type: EdgeType,
        options: HyperedgeOptions | None = None,
    ) -> GroupConnection:
        """Create a hyperedge and the elementary edges materializing it."""

    @abstractmethod
    async def list_edges(self, cancel_token: CancellationToken | None = None) -> list[Edge]:
        """Return every elementary edge."""

    @abstractmethod
    async def list_notes(self, cancel_token: CancellationToken | None = None) -> list[Note]:
        """Return every note."""

    @abstractmethod
    async def get_notes_for_verse(
        self,
        verse_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[Note]:
        """Return notes attached to a verse."""

    @abstractmethod
    async def create_note(self, note: Note) -> Note:
        """Store a note, keeping its id. Returns the stored note."""

    @abstractmethod
    async def update_note(self, note_id: str, partial: dict[str, Any]) -> Note:
        """Apply `partial` to a note and return the updated note.

        Raises:
            NodeNotFoundError: if no note has that id.
        """


class LocalCacheInterface(ABC):
    """Abstract interface for the client-side key-value cache.

    Collections are stored and replaced whole; there is no per-record patching.
    """

    @abstractmethod
    async def get_collection(self, name: str) -> list[dict[str, Any]]:
        """Return the records of a collection, or an empty list."""

    @abstractmethod
    async def set_collection(self, name: str, records: Sequence[dict[str, Any]]) -> None:
        """Replace a collection."""

    @abstractmethod
    async def remove_collection(self, name: str) -> None:
        """Drop a collection. Removing an unknown collection is a no-op."""

    @abstractmethod
    async def get_last_sync_timestamp(self) -> datetime | None:
        """Return the time of the last successful sync pass, if any."""

    @abstractmethod
    async def set_last_sync_timestamp(self, timestamp: datetime) -> None:
        """Record the time of a successful sync pass."""
