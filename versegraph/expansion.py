"""Incremental breadth-first expansion of the verse graph view.

The `GraphExpansionEngine` grows a `{nodes, edges}` view one hop at a time,
starting from seed ids supplied by the caller. It owns three pieces of state:

- the **visited set**: ids of every node added to the view. It only grows
  (until `reset()`), and a visited id is never fetched again;
- the committed **accumulation**: id-keyed node map and canonical-key-keyed
  edge map, converted to sequences only when a snapshot is taken;
- `current_focus`: the most recently loaded or expanded node.

Every operation is *staged*: it collects what it discovers into an
`ExpansionDelta` without touching the committed state, and `commit()` merges
the delta afterwards. The fetch orchestrator relies on this split so that an
operation cancelled half-way leaves the visible graph untouched.

Node kinds are handled as follows when expanded:

- **verse**: elementary edges touching the verse (the other endpoint is
  fetched when unvisited), hyperedges touching the verse (materialized as a
  synthetic `group:<id>` node plus `group_member` edges) and, optionally,
  the verse's notes with their note-derived edges;
- **group**: every member of the hyperedge's source and target sets is
  resolved, and membership edges link them to the group node;
- anything else: no-op.

Edges are only added once both endpoints are in the view; membership edges
to members that aren't resolved yet are completed by expanding the group.

Example:
    ```python
    engine = GraphExpansionEngine(store)
    await engine.load_seeds(["John-3-16"])
    await engine.expand_node("John-3-16")
    snapshot = engine.snapshot()
    ```
"""

import asyncio
from typing import Any, Awaitable, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from versegraph.cancellation import CancellationToken
from versegraph.edge import Edge, EdgeKey, EdgeType, GroupConnection, note_edge
from versegraph.entity import NodeKind, Note
from versegraph.exceptions import OperationAbortedError, RemoteUnavailableError
from versegraph.logging import setup_logging
from versegraph.reconcile import dedupe_edges
from versegraph.storage.interfaces import RemoteGraphStoreInterface
from versegraph.view import (
    GraphEdge,
    GraphNode,
    GraphSnapshot,
    hyperedge_id_of,
    membership_edges,
    node_id_for,
    to_graph_edge,
    to_graph_node,
)

logger = setup_logging()


class ExpansionDelta(BaseModel):
    """Everything one load or expand operation discovered, before commit.

    Attributes:
        operation: "load_seeds" or "expand_node".
        nodes: Newly resolved nodes keyed by view id.
        edges: Deduplicated edges whose endpoints are both in the view.
        visited: Ids to add to the visited set on commit.
        focus: Node to focus after commit.
        resolved: Requested ids (seeds, or the expanded node) that exist,
            whether fetched now or already visited.
        not_found: Ids the store reported as missing.
        errors: Per-item failure messages.
        remote_failures: How many of those failures were the store being
            unreachable.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    operation: str
    nodes: dict[str, GraphNode] = Field(default_factory=dict)
    edges: list[GraphEdge] = Field(default_factory=list)
    visited: set[str] = Field(default_factory=set)
    focus: str | None = None
    resolved: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    remote_failures: int = 0

    @property
    def fetch_failed(self) -> bool:
        """True when the operation produced nothing because the store itself failed.

        Every recorded failure must be an unreachable store; a mix with other
        errors or not-found ids is an ordinary (possibly empty) result.
        """
        if self.remote_failures == 0 or self.remote_failures != len(self.errors):
            return False
        if not self.resolved:
            return True
        return self.operation == "expand_node" and self.is_empty

    @property
    def is_empty(self) -> bool:
        return not self.nodes and not self.edges

    def add_node(self, node: GraphNode) -> None:
        self.nodes[node.id] = node
        self.visited.add(node.id)

    def record_failure(self, item_id: str, error: BaseException) -> None:
        if isinstance(error, RemoteUnavailableError):
            self.remote_failures += 1
        self.errors.append(f"{item_id}: {error}")


class GraphExpansionEngine:
    """Stateful one-hop-at-a-time graph expansion over a remote store.

    One engine backs one graph view. Its state is mutated only through
    `commit()` and `reset()`; the stage_* coroutines never touch it.

    Args:
        store: The remote graph store to read from.
        include_notes: Whether expanding a verse also adds its notes.
    """

    def __init__(self, store: RemoteGraphStoreInterface, include_notes: bool = False) -> None:
        self.store = store
        self.include_notes = include_notes
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[EdgeKey, GraphEdge] = {}
        self._visited: set[str] = set()
        self.current_focus: str | None = None

    # Committed state

    @property
    def visited(self) -> frozenset[str]:
        return frozenset(self._visited)

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            nodes=tuple(self._nodes.values()),
            edges=tuple(self._edges.values()),
            focus=self.current_focus,
        )

    def reset(self) -> None:
        """Discard the view and start a new session."""
        self._nodes.clear()
        self._edges.clear()
        self._visited.clear()
        self.current_focus = None

    def commit(self, delta: ExpansionDelta) -> tuple[int, int]:
        """Merge a staged delta into the view.

        Edges go through the same deduplicator as each expansion step, so a
        committed edge is only replaced by a strictly newer one.

        Returns:
            (nodes_added, edges_added)
        """
        nodes_before = len(self._nodes)
        edges_before = len(self._edges)
        for node_id, node in delta.nodes.items():
            self._nodes.setdefault(node_id, node)
        self._visited.update(delta.visited)
        if delta.edges:
            merged = dedupe_edges([*self._edges.values(), *delta.edges])
            self._edges = {edge.canonical_key: edge for edge in merged}
        if delta.focus is not None and delta.focus in self._nodes:
            self.current_focus = delta.focus
        return len(self._nodes) - nodes_before, len(self._edges) - edges_before

    # Stage + commit

    async def load_seeds(
        self,
        seed_ids: Sequence[str],
        cancel_token: CancellationToken | None = None,
    ) -> ExpansionDelta:
        delta = await self.stage_seeds(seed_ids, cancel_token)
        self.commit(delta)
        return delta

    async def expand_node(
        self,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> ExpansionDelta:
        delta = await self.stage_expansion(node_id, cancel_token)
        self.commit(delta)
        return delta

    # Staging

    async def stage_seeds(
        self,
        seed_ids: Sequence[str],
        cancel_token: CancellationToken | None = None,
    ) -> ExpansionDelta:
        """Resolve seed nodes, their elementary edges and the edges' endpoints.

        One bad seed never aborts the batch: missing or failing seeds are
        logged and skipped.

        Raises:
            OperationAbortedError: if the token is cancelled.
        """
        token = cancel_token or CancellationToken()
        delta = ExpansionDelta(operation="load_seeds")
        seeds = list(dict.fromkeys(seed_ids))

        await self._resolve_many(delta, [self._seed_target(seed) for seed in seeds], token)
        known_seeds = [seed for seed in seeds if self._known(delta, seed)]
        delta.resolved = known_seeds

        edge_lists = await self._gather(
            token, [self._fetch_edges(delta, seed, token) for seed in known_seeds]
        )
        edges = [edge for edge_list in edge_lists for edge in edge_list]
        await self._resolve_many(delta, self._endpoints(edges), token)
        self._stage_edges(delta, (to_graph_edge(edge) for edge in edges))

        if known_seeds:
            delta.focus = known_seeds[0]
        logger.debug(
            {
                "message": f"Staged {len(delta.nodes)} nodes and {len(delta.edges)} edges from {len(seeds)} seeds",
                "seeds": seeds,
                "not_found": delta.not_found,
                "errors": delta.errors,
            },
            pprint=True,
        )
        token.raise_if_cancelled()
        return delta

    async def stage_expansion(
        self,
        node_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> ExpansionDelta:
        """Stage one hop of expansion around `node_id`.

        An id that isn't in the view yet is probed as a verse (or as a
        hyperedge when it carries the group prefix) and added first.

        Raises:
            OperationAbortedError: if the token is cancelled.
        """
        token = cancel_token or CancellationToken()
        delta = ExpansionDelta(operation="expand_node", focus=node_id)

        node = self._nodes.get(node_id)
        if node is None:
            await self._resolve_many(delta, [self._seed_target(node_id)], token)
            node = delta.nodes.get(node_id)
        if node is None:
            logger.debug({"message": f"Nothing to expand: {node_id} not found", "errors": delta.errors}, pprint=True)
            return delta
        delta.resolved = [node_id]

        if node.kind is NodeKind.VERSE:
            await self._expand_verse(delta, node, token)
        elif node.kind is NodeKind.GROUP and isinstance(node.payload, GroupConnection):
            await self._expand_group(delta, node.payload, token)
        else:
            logger.debug({"message": f"Expansion of {node.kind.value} node {node_id} is a no-op"}, pprint=True)

        token.raise_if_cancelled()
        return delta

    async def _expand_verse(self, delta: ExpansionDelta, node: GraphNode, token: CancellationToken) -> None:
        edges, hyperedges, notes = await self._gather(
            token,
            [
                self._fetch_edges(delta, node.id, token),
                self._fetch_hyperedges(delta, node.id, token),
                self._fetch_notes(delta, node.id, token) if self.include_notes else _empty(),
            ],
        )
        # Members of every touching hyperedge join the view with the edge endpoints.
        members = [(kind, member_id) for hyperedge in hyperedges for member_id, kind, _ in hyperedge.members()]
        await self._resolve_many(delta, [*self._endpoints(edges), *members], token)

        for hyperedge in hyperedges:
            if not self._known(delta, node_id_for(NodeKind.GROUP, hyperedge.id)):
                delta.add_node(to_graph_node(NodeKind.GROUP, hyperedge))
        for note in notes:
            if not self._known(delta, note.id):
                delta.add_node(to_graph_node(NodeKind.NOTE, note))

        discovered = [to_graph_edge(edge) for edge in [*edges, *(note_edge(note) for note in notes)]]
        for hyperedge in hyperedges:
            discovered.extend(membership_edges(hyperedge))
        self._stage_edges(delta, discovered)

    async def _expand_group(self, delta: ExpansionDelta, hyperedge: GroupConnection, token: CancellationToken) -> None:
        members = [(kind, member_id) for member_id, kind, _ in hyperedge.members()]
        await self._resolve_many(delta, members, token)
        self._stage_edges(delta, membership_edges(hyperedge))

    # Helpers

    def _known(self, delta: ExpansionDelta, view_id: str) -> bool:
        return view_id in self._visited or view_id in delta.nodes

    @staticmethod
    def _seed_target(seed: str) -> tuple[NodeKind, str]:
        hyperedge_id = hyperedge_id_of(seed)
        if hyperedge_id is not None:
            return NodeKind.GROUP, hyperedge_id
        return NodeKind.VERSE, seed

    @staticmethod
    def _endpoints(edges: Iterable[Edge]) -> list[tuple[NodeKind, str]]:
        # Stored edges connect verses; note-derived edges start at a note.
        out: list[tuple[NodeKind, str]] = []
        for edge in edges:
            source_kind = NodeKind.NOTE if edge.type is EdgeType.NOTE_DERIVED else NodeKind.VERSE
            out.append((source_kind, edge.source_id))
            out.append((NodeKind.VERSE, edge.target_id))
        return out

    def _stage_edges(self, delta: ExpansionDelta, edges: Iterable[GraphEdge]) -> None:
        staged = dedupe_edges([*delta.edges, *edges])
        kept: list[GraphEdge] = []
        for edge in staged:
            if self._known(delta, edge.source) and self._known(delta, edge.target):
                kept.append(edge)
            else:
                logger.debug({"message": f"Dropping edge {edge.id}: endpoint not in view"}, pprint=True)
        delta.edges = kept

    async def _gather(self, token: CancellationToken, aws: Sequence[Awaitable[Any]]) -> list[Any]:
        results = await asyncio.gather(*aws, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        token.raise_if_cancelled()
        return list(results)

    async def _resolve_many(
        self,
        delta: ExpansionDelta,
        targets: Iterable[tuple[NodeKind, str]],
        token: CancellationToken,
    ) -> None:
        """Fetch every target not yet in the view, each at most once."""
        pending: dict[str, tuple[NodeKind, str]] = {}
        for kind, entity_id in targets:
            view_id = node_id_for(kind, entity_id)
            if view_id in pending or self._known(delta, view_id):
                continue
            pending[view_id] = (kind, entity_id)
        if pending:
            await self._gather(
                token, [self._fetch_node(delta, kind, entity_id, token) for kind, entity_id in pending.values()]
            )

    async def _fetch_node(self, delta: ExpansionDelta, kind: NodeKind, entity_id: str, token: CancellationToken) -> None:
        try:
            entity = await token.run(self.store.get_node_by_id(kind, entity_id, token))
        except OperationAbortedError:
            raise
        except Exception as e:
            logger.warning(
                {"message": f"Failed to fetch {kind.value} node {entity_id}", "error": str(e), "error_type": type(e).__name__},
                pprint=True,
            )
            delta.record_failure(entity_id, e)
            return
        if entity is None:
            logger.debug({"message": f"{kind.value} node {entity_id} not found"}, pprint=True)
            delta.not_found.append(entity_id)
            return
        delta.add_node(to_graph_node(kind, entity))

    async def _fetch_edges(self, delta: ExpansionDelta, node_id: str, token: CancellationToken) -> list[Edge]:
        try:
            return await token.run(self.store.get_edges_for_node(node_id, token))
        except OperationAbortedError:
            raise
        except Exception as e:
            logger.warning({"message": f"Failed to fetch edges for {node_id}", "error": str(e)}, pprint=True)
            delta.record_failure(node_id, e)
            return []

    async def _fetch_hyperedges(
        self, delta: ExpansionDelta, node_id: str, token: CancellationToken
    ) -> list[GroupConnection]:
        try:
            return await token.run(self.store.get_hyperedges_for_node(node_id, token))
        except OperationAbortedError:
            raise
        except Exception as e:
            logger.warning({"message": f"Failed to fetch hyperedges for {node_id}", "error": str(e)}, pprint=True)
            delta.record_failure(node_id, e)
            return []

    async def _fetch_notes(self, delta: ExpansionDelta, verse_id: str, token: CancellationToken) -> list[Note]:
        try:
            return await token.run(self.store.get_notes_for_verse(verse_id, token))
        except OperationAbortedError:
            raise
        except Exception as e:
            logger.warning({"message": f"Failed to fetch notes for {verse_id}", "error": str(e)}, pprint=True)
            delta.record_failure(verse_id, e)
            return []


async def _empty() -> list[Any]:
    return []
