"""
Verse Graph - client-side reconciliation and expansion of a verse knowledge graph.

Keeps a locally cached graph of verses, notes and typed (hyper)edges
consistent with an authoritative remote graph store, and grows an in-memory
graph view one hop at a time as the user explores it:

    from versegraph import FetchOrchestrator, GraphExpansionEngine

    engine = GraphExpansionEngine(store)
    orchestrator = FetchOrchestrator(engine)
    result = await orchestrator.load_seeds(["John-3-16"])
"""

from versegraph.cancellation import CancellationToken
from versegraph.config import FetchConfig, SyncConfig, VerseGraphConfig, load_config
from versegraph.edge import Edge, EdgeType, GroupConnection, HyperedgeOptions, note_edge
from versegraph.entity import NodeKind, Note, Tag, Topic, VerseNode, VersionedEntity
from versegraph.exceptions import (
    ConfigError,
    FetchTimeoutError,
    LocalCacheError,
    NodeNotFoundError,
    OperationAbortedError,
    RemoteUnavailableError,
    VerseGraphError,
)
from versegraph.expansion import ExpansionDelta, GraphExpansionEngine
from versegraph.orchestrator import FetchOrchestrator, FetchResult, FetchState, FetchStatus
from versegraph.reconcile import dedupe_edges, merge_collections
from versegraph.references import VerseReference, ensure_verse, parse_reference
from versegraph.sync import BackgroundSyncService, ClassSyncReport, SyncOutcome, SyncResult, SyncStatus
from versegraph.view import GraphEdge, GraphNode, GraphSnapshot

__all__ = [
    "CancellationToken",
    "FetchConfig",
    "SyncConfig",
    "VerseGraphConfig",
    "load_config",
    "Edge",
    "EdgeType",
    "GroupConnection",
    "HyperedgeOptions",
    "note_edge",
    "NodeKind",
    "Note",
    "Tag",
    "Topic",
    "VerseNode",
    "VersionedEntity",
    "ConfigError",
    "FetchTimeoutError",
    "LocalCacheError",
    "NodeNotFoundError",
    "OperationAbortedError",
    "RemoteUnavailableError",
    "VerseGraphError",
    "ExpansionDelta",
    "GraphExpansionEngine",
    "FetchOrchestrator",
    "FetchResult",
    "FetchState",
    "FetchStatus",
    "dedupe_edges",
    "merge_collections",
    "VerseReference",
    "ensure_verse",
    "parse_reference",
    "BackgroundSyncService",
    "ClassSyncReport",
    "SyncOutcome",
    "SyncResult",
    "SyncStatus",
    "GraphEdge",
    "GraphNode",
    "GraphSnapshot",
]

__version__ = "0.1.0"
