"""Test fixtures and mock collaborators.

This module provides:
- Controllable clocks (`FakeClock`, `FakeMonotonic`) so recency and backoff
  tests don't depend on wall time
- Remote store subclasses for concurrency tests: `GatedRemoteGraphStore`
  blocks node reads until released and records peak concurrency;
  `HangingRemoteGraphStore` never answers a node read
- Pytest fixtures for an empty store, a small seeded verse graph and an
  in-memory local cache

The seeded graph uses readable verse ids ("John-3-16") instead of uuids.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from versegraph.cancellation import CancellationToken
from versegraph.edge import Edge, EdgeType, GroupConnection
from versegraph.entity import NodeKind, Note, VerseNode, VersionedEntity
from versegraph.storage.memory import InMemoryLocalCache, InMemoryRemoteGraphStore

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GatedRemoteGraphStore(InMemoryRemoteGraphStore):
    """Store whose node reads wait on a gate.

    Counts node reads and the peak number running at the same time, which is
    what single-flight tests assert on.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = asyncio.Event()
        self.node_reads: list[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def get_node_by_id(self, kind, node_id, cancel_token: CancellationToken | None = None):
        self.node_reads.append(node_id)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await self.gate.wait()
            return await super().get_node_by_id(kind, node_id, cancel_token)
        finally:
            self.in_flight -= 1


class HangingRemoteGraphStore(InMemoryRemoteGraphStore):
    """Store whose node reads never complete and ignore the cancel token."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.node_reads = 0

    async def get_node_by_id(self, kind, node_id, cancel_token: CancellationToken | None = None):
        self.node_reads += 1
        await asyncio.Event().wait()


class CountingRemoteGraphStore(InMemoryRemoteGraphStore):
    """Store recording every node read, for no-re-fetch assertions."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.node_reads: list[str] = []

    async def get_node_by_id(self, kind, node_id, cancel_token: CancellationToken | None = None):
        self.node_reads.append(node_id)
        return await super().get_node_by_id(kind, node_id, cancel_token)


def make_verse(verse_id: str, updated_at: datetime = T0) -> VerseNode:
    """Build a verse from an id like "John-3-16" or "1-John-4-8"."""
    *book_parts, chapter, verse_number = verse_id.split("-")
    return VerseNode(
        id=verse_id,
        book=" ".join(book_parts),
        chapter=int(chapter),
        verse_number=int(verse_number),
        created_at=updated_at,
        updated_at=updated_at,
    )


def make_edge(
    source_id: str,
    target_id: str,
    type: EdgeType = EdgeType.CROSS_REFERENCE,
    edge_id: str | None = None,
    updated_at: datetime = T0,
    description: str | None = None,
) -> Edge:
    return Edge(
        id=edge_id or f"{source_id}->{target_id}",
        source_id=source_id,
        target_id=target_id,
        type=type,
        description=description,
        created_at=updated_at,
        updated_at=updated_at,
    )


def make_note(note_id: str, verse_id: str, content: str = "note", updated_at: datetime = T0) -> Note:
    return Note(
        id=note_id,
        verse_id=verse_id,
        content=content,
        created_at=updated_at,
        updated_at=updated_at,
    )


async def seed(store: InMemoryRemoteGraphStore, *entities: VersionedEntity) -> None:
    """Add verses, notes, edges and hyperedges to a store."""
    for entity in entities:
        if isinstance(entity, Edge):
            await store.add_edge(entity)
        elif isinstance(entity, GroupConnection):
            await store.add_hyperedge(entity)
        elif isinstance(entity, Note):
            await store.add_node(NodeKind.NOTE, entity)
        else:
            await store.add_node(NodeKind.VERSE, entity)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryRemoteGraphStore:
    """Provide an empty in-memory remote store on the fake clock."""
    return InMemoryRemoteGraphStore(clock=clock)


@pytest.fixture
def cache() -> InMemoryLocalCache:
    return InMemoryLocalCache()


@pytest.fixture
async def seeded_store(store: InMemoryRemoteGraphStore) -> InMemoryRemoteGraphStore:
    """Provide a store holding John 3:16 with a cross reference to Romans 8:28.

    Romans 8:28 also points at Ephesians 2:8, so expanding Romans adds one
    more verse.
    """
    await seed(
        store,
        make_verse("John-3-16"),
        make_verse("Romans-8-28"),
        make_verse("Ephesians-2-8"),
        make_edge("John-3-16", "Romans-8-28"),
        make_edge("Romans-8-28", "Ephesians-2-8", EdgeType.THEMATIC),
    )
    return store
