"""Edge system for the verse graph.

Two kinds of connection exist in the store:

- **Elementary edges** (`Edge`): a single typed, directed relationship
  between exactly two nodes, e.g. ("John-3-16", cross_reference, "Romans-8-28").
- **Hyperedges** (`GroupConnection`): one logical fact connecting a set of
  source nodes to a set of target nodes. Each side is typed independently, so
  a hyperedge can connect three verses to one topic. The store materializes a
  hyperedge as elementary edges whose ids are kept in `connection_ids`.

The storage `id` of an edge is not its logical identity. Two edges with the
same (source_id, target_id, type) triple state the same fact even when one was
created offline and the other online; `Edge.canonical_key` exposes that triple
for deduplication.

Notes also contribute *note-derived* edges (note -> verse). They are never
stored; `note_edge()` derives them on demand so they can flow through the same
deduplication path as stored edges.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from versegraph.entity import NodeKind, Note, VersionedEntity

NOTE_PREVIEW_LENGTH = 30

EdgeKey = tuple[str, str, str]


class EdgeType(str, Enum):
    """Vocabulary of elementary edge types."""

    DEFAULT = "default"
    CROSS_REFERENCE = "cross_reference"
    PARALLEL = "parallel"
    THEMATIC = "thematic"
    PROPHECY = "prophecy"
    NOTE_DERIVED = "note_derived"

    @classmethod
    def _missing_(cls, value: object) -> "EdgeType | None":
        # Older clients stored upper-case names and a couple of aliases.
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower().replace("-", "_")
        aliases = {"theme": "thematic", "note": "note_derived"}
        normalized = aliases.get(normalized, normalized)
        for member in cls:
            if member.value == normalized:
                return member
        return None


class Edge(VersionedEntity):
    """A typed, directed connection between two nodes.

    Example:
        ```python
        edge = Edge(
            id="e1",
            source_id="John-3-16",
            target_id="Romans-8-28",
            type=EdgeType.CROSS_REFERENCE,
        )
        assert edge.canonical_key == ("John-3-16", "Romans-8-28", "cross_reference")
        ```
    """

    source_id: str = Field(min_length=1, description="Id of the node the edge starts from.")
    target_id: str = Field(min_length=1, description="Id of the node the edge points to.")
    type: EdgeType = Field(default=EdgeType.DEFAULT, description="Relationship type.")
    description: str | None = None
    group_connection_id: str | None = Field(
        default=None,
        description="Id of the hyperedge this edge materializes, if any.",
    )

    @property
    def canonical_key(self) -> EdgeKey:
        return (self.source_id, self.target_id, self.type.value)

    def other_endpoint(self, node_id: str) -> str:
        """Return the endpoint opposite `node_id` (itself for a self-loop)."""
        return self.target_id if self.source_id == node_id else self.source_id


class HyperedgeOptions(BaseModel, frozen=True):
    """Optional settings for `create_hyperedge`."""

    source_kind: NodeKind = NodeKind.VERSE
    target_kind: NodeKind = NodeKind.VERSE
    name: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class GroupConnection(VersionedEntity):
    """A hyperedge connecting a set of sources to a set of targets."""

    name: str | None = None
    type: EdgeType = EdgeType.DEFAULT
    description: str | None = None
    source_ids: tuple[str, ...] = ()
    target_ids: tuple[str, ...] = ()
    source_kind: NodeKind = NodeKind.VERSE
    target_kind: NodeKind = NodeKind.VERSE
    connection_ids: tuple[str, ...] = Field(
        default=(),
        description="Ids of the elementary edges materializing this hyperedge.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    def members(self) -> list[tuple[str, NodeKind, bool]]:
        """Return (member_id, kind, is_source) for every member, sources first."""
        out = [(member_id, self.source_kind, True) for member_id in self.source_ids]
        out.extend((member_id, self.target_kind, False) for member_id in self.target_ids)
        return out

    def touches(self, node_id: str) -> bool:
        return node_id in self.source_ids or node_id in self.target_ids


def note_preview(content: str, length: int = NOTE_PREVIEW_LENGTH) -> str:
    if len(content) > length:
        return content[:length] + "..."
    return content


def note_edge(note: Note) -> Edge:
    """Derive the virtual note -> verse edge for a note."""
    return Edge(
        id=f"note-{note.id}",
        source_id=note.id,
        target_id=note.verse_id,
        type=EdgeType.NOTE_DERIVED,
        description=note_preview(note.content),
        created_at=note.created_at,
        updated_at=note.updated_at,
    )
