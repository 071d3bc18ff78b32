"""View models for graph traversal and rendering.

`GraphNode` and `GraphEdge` are ephemeral projections of stored entities.
They are built by the expansion engine, never persisted, and discarded when
the view is reset. Hyperedges show up as a synthetic group node plus
`group_member` edges: source members point at the group node, the group node
points at target members.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from versegraph.edge import Edge, EdgeKey, GroupConnection, note_preview
from versegraph.entity import NodeKind, Note, Tag, Topic, VerseNode, VersionedEntity

GROUP_MEMBER = "group_member"
GROUP_NODE_PREFIX = "group:"


class GraphNode(BaseModel):
    """Renderable node."""

    model_config = {"frozen": True}

    id: str = Field(description="Node id (used by the renderer for linking).")
    kind: NodeKind = Field(description="Node kind for styling and expansion dispatch.")
    label: str = Field(description="Display label.")
    payload: Any = Field(default=None, description="The entity this node projects.")


class GraphEdge(BaseModel):
    """Renderable edge."""

    model_config = {"frozen": True}

    id: str
    source: str = Field(description="Source node id.")
    target: str = Field(description="Target node id.")
    kind: str = Field(description="EdgeType value, or 'group_member' for membership edges.")
    payload: Any = None
    updated_at: datetime | None = Field(default=None, description="Recency used when deduplicating.")

    @property
    def canonical_key(self) -> EdgeKey:
        return (self.source, self.target, self.kind)


class GraphSnapshot(BaseModel):
    """The committed view handed to callers."""

    model_config = {"frozen": True}

    nodes: tuple[GraphNode, ...] = ()
    edges: tuple[GraphEdge, ...] = ()
    focus: str | None = Field(default=None, description="Most recently loaded or expanded node id.")

    @property
    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    @property
    def is_empty(self) -> bool:
        return not self.nodes


def group_node_id(hyperedge_id: str) -> str:
    return f"{GROUP_NODE_PREFIX}{hyperedge_id}"


def hyperedge_id_of(node_id: str) -> str | None:
    """Return the hyperedge id behind a synthetic group node id, else None."""
    if node_id.startswith(GROUP_NODE_PREFIX):
        return node_id[len(GROUP_NODE_PREFIX):]
    return None


def node_id_for(kind: NodeKind, entity_id: str) -> str:
    """View id of a member entity; only hyperedges are namespaced."""
    return group_node_id(entity_id) if kind is NodeKind.GROUP else entity_id


def _label(kind: NodeKind, entity: VersionedEntity) -> str:
    if isinstance(entity, VerseNode):
        return entity.reference
    if isinstance(entity, Note):
        return entity.content.strip() if entity.is_link else note_preview(entity.content)
    if isinstance(entity, Tag):
        return f"#{entity.name}"
    if isinstance(entity, Topic):
        return entity.name
    if isinstance(entity, GroupConnection):
        return entity.name or f"{entity.type.value.replace('_', ' ')} group"
    return f"{kind.value}:{entity.id}"


def to_graph_node(kind: NodeKind, entity: VersionedEntity) -> GraphNode:
    """Project a stored entity onto a GraphNode."""
    return GraphNode(
        id=node_id_for(kind, entity.id),
        kind=kind,
        label=_label(kind, entity),
        payload=entity,
    )


def to_graph_edge(edge: Edge) -> GraphEdge:
    return GraphEdge(
        id=edge.id,
        source=edge.source_id,
        target=edge.target_id,
        kind=edge.type.value,
        payload=edge,
        updated_at=edge.updated_at,
    )


def membership_edges(hyperedge: GroupConnection) -> list[GraphEdge]:
    """Synthetic edges linking every member of `hyperedge` to its group node.

    Direction encodes role, not chronology: source members point at the
    group node and the group node points at target members.
    """
    group_id = group_node_id(hyperedge.id)
    edges: list[GraphEdge] = []
    for member_id, kind, is_source in hyperedge.members():
        member_node = node_id_for(kind, member_id)
        source, target = (member_node, group_id) if is_source else (group_id, member_node)
        edges.append(
            GraphEdge(
                id=f"{GROUP_MEMBER}:{source}->{target}",
                source=source,
                target=target,
                kind=GROUP_MEMBER,
                payload=hyperedge,
                updated_at=hyperedge.updated_at,
            )
        )
    return edges
