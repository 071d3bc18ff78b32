"""Tests for the graph expansion engine."""

from datetime import timedelta

import pytest

from versegraph.cancellation import CancellationToken
from versegraph.edge import EdgeType, GroupConnection
from versegraph.entity import NodeKind, Tag
from versegraph.exceptions import OperationAbortedError
from versegraph.expansion import GraphExpansionEngine
from versegraph.view import GROUP_MEMBER

from tests.conftest import T0, CountingRemoteGraphStore, make_edge, make_note, make_verse, seed


def edge_triples(snapshot):
    return {(edge.source, edge.target, edge.kind) for edge in snapshot.edges}


class TestLoadSeeds:
    """Test GraphExpansionEngine.load_seeds()."""

    async def test_single_seed_with_cross_reference(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)

        delta = await engine.load_seeds(["John-3-16"])

        snapshot = engine.snapshot()
        assert snapshot.node_ids == {"John-3-16", "Romans-8-28"}
        assert edge_triples(snapshot) == {("John-3-16", "Romans-8-28", "cross_reference")}
        assert snapshot.focus == "John-3-16"
        assert delta.resolved == ["John-3-16"]
        assert not delta.fetch_failed

    async def test_duplicate_seeds_collapse(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)

        await engine.load_seeds(["John-3-16", "John-3-16"])

        assert len(engine.snapshot().nodes) == 2

    async def test_missing_seed_is_skipped(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)

        delta = await engine.load_seeds(["Nowhere-1-1", "Ephesians-2-8"])

        assert delta.not_found == ["Nowhere-1-1"]
        assert engine.snapshot().node_ids == {"Ephesians-2-8", "Romans-8-28"}

    async def test_edge_with_unresolvable_endpoint_is_dropped(self, store):
        await seed(store, make_verse("John-3-16"), make_edge("John-3-16", "Ghost-1-1"))
        engine = GraphExpansionEngine(store)

        await engine.load_seeds(["John-3-16"])

        snapshot = engine.snapshot()
        assert snapshot.node_ids == {"John-3-16"}
        assert snapshot.edges == ()

    async def test_all_missing_is_empty_not_failed(self, store):
        engine = GraphExpansionEngine(store)

        delta = await engine.load_seeds(["Nowhere-1-1"])

        assert delta.resolved == []
        assert not delta.fetch_failed
        assert engine.snapshot().is_empty

    async def test_unreachable_store_marks_fetch_failed(self, seeded_store):
        seeded_store.available = False
        engine = GraphExpansionEngine(seeded_store)

        delta = await engine.load_seeds(["John-3-16", "Romans-8-28"])

        assert delta.fetch_failed
        assert delta.remote_failures == 2
        assert engine.snapshot().is_empty

    async def test_duplicate_edges_collapse_to_newest(self, store):
        await seed(
            store,
            make_verse("John-3-16"),
            make_verse("Romans-8-28"),
            make_edge("John-3-16", "Romans-8-28", edge_id="offline", updated_at=T0),
            make_edge("John-3-16", "Romans-8-28", edge_id="online", updated_at=T0 + timedelta(hours=1)),
        )
        engine = GraphExpansionEngine(store)

        await engine.load_seeds(["John-3-16", "Romans-8-28"])

        assert [edge.id for edge in engine.snapshot().edges] == ["online"]

    async def test_group_seed(self, store):
        hyperedge = GroupConnection(id="h1", name="Love", source_ids=("A-1-1",), target_ids=("B-1-1",))
        await seed(store, hyperedge)
        engine = GraphExpansionEngine(store)

        await engine.load_seeds(["group:h1"])

        node = engine.get_node("group:h1")
        assert node is not None and node.kind is NodeKind.GROUP
        assert node.label == "Love"


class TestVisitedSet:
    """Test visited-set monotonicity and no re-fetch."""

    async def test_visited_never_refetched(self, clock):
        store = CountingRemoteGraphStore(clock=clock)
        await seed(
            store,
            make_verse("John-3-16"),
            make_verse("Romans-8-28"),
            make_edge("John-3-16", "Romans-8-28"),
        )
        engine = GraphExpansionEngine(store)

        await engine.load_seeds(["John-3-16"])
        reads_after_load = list(store.node_reads)
        await engine.load_seeds(["John-3-16"])
        await engine.expand_node("Romans-8-28")
        await engine.expand_node("John-3-16")

        assert sorted(reads_after_load) == ["John-3-16", "Romans-8-28"]
        assert store.node_reads == reads_after_load

    async def test_each_endpoint_fetched_once_per_operation(self, clock):
        store = CountingRemoteGraphStore(clock=clock)
        await seed(
            store,
            make_verse("A-1-1"),
            make_verse("B-1-1"),
            make_verse("C-1-1"),
            make_edge("A-1-1", "C-1-1"),
            make_edge("B-1-1", "C-1-1"),
        )
        engine = GraphExpansionEngine(store)

        await engine.load_seeds(["A-1-1", "B-1-1"])

        assert store.node_reads.count("C-1-1") == 1

    async def test_visited_grows_monotonically(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)

        await engine.load_seeds(["John-3-16"])
        first = engine.visited
        await engine.expand_node("Romans-8-28")
        second = engine.visited
        await engine.load_seeds(["Nowhere-1-1"])

        assert first <= second <= engine.visited
        assert "Ephesians-2-8" in second

    async def test_reset_clears_view(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)
        await engine.load_seeds(["John-3-16"])

        engine.reset()

        assert engine.visited == frozenset()
        assert engine.snapshot().is_empty
        assert engine.current_focus is None


class TestExpandVerse:
    """Test expanding verse nodes."""

    async def test_expand_adds_neighbors(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)
        await engine.load_seeds(["John-3-16"])

        await engine.expand_node("Romans-8-28")

        snapshot = engine.snapshot()
        assert snapshot.node_ids == {"John-3-16", "Romans-8-28", "Ephesians-2-8"}
        assert ("Romans-8-28", "Ephesians-2-8", "thematic") in edge_triples(snapshot)
        assert len(snapshot.edges) == 2
        assert snapshot.focus == "Romans-8-28"

    async def test_unknown_id_probed_as_verse(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)

        await engine.expand_node("Romans-8-28")

        assert engine.snapshot().node_ids == {"John-3-16", "Romans-8-28", "Ephesians-2-8"}

    async def test_expand_missing_id_is_noop(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)

        delta = await engine.expand_node("Nowhere-1-1")

        assert delta.resolved == []
        assert engine.snapshot().is_empty

    async def test_hyperedge_becomes_group_node(self, store):
        await seed(
            store,
            make_verse("A-1-1"),
            make_verse("B-1-1"),
            make_verse("C-1-1"),
            GroupConnection(id="h1", source_ids=("A-1-1", "B-1-1"), target_ids=("C-1-1",)),
        )
        engine = GraphExpansionEngine(store)
        await engine.load_seeds(["A-1-1"])

        await engine.expand_node("A-1-1")

        snapshot = engine.snapshot()
        assert snapshot.node_ids == {"A-1-1", "B-1-1", "C-1-1", "group:h1"}
        assert edge_triples(snapshot) == {
            ("A-1-1", "group:h1", GROUP_MEMBER),
            ("B-1-1", "group:h1", GROUP_MEMBER),
            ("group:h1", "C-1-1", GROUP_MEMBER),
        }

    async def test_notes_included_when_configured(self, seeded_store):
        await seed(seeded_store, make_note("n1", "John-3-16", "For God so loved the world that he gave"))
        engine = GraphExpansionEngine(seeded_store, include_notes=True)
        await engine.load_seeds(["John-3-16"])

        await engine.expand_node("John-3-16")

        note_node = engine.get_node("n1")
        assert note_node is not None and note_node.kind is NodeKind.NOTE
        assert ("n1", "John-3-16", "note_derived") in edge_triples(engine.snapshot())

    async def test_notes_excluded_by_default(self, seeded_store):
        await seed(seeded_store, make_note("n1", "John-3-16"))
        engine = GraphExpansionEngine(seeded_store)
        await engine.load_seeds(["John-3-16"])

        await engine.expand_node("John-3-16")

        assert engine.get_node("n1") is None

    async def test_expanding_note_is_noop(self, seeded_store):
        await seed(seeded_store, make_note("n1", "John-3-16"))
        engine = GraphExpansionEngine(seeded_store, include_notes=True)
        await engine.expand_node("John-3-16")
        before = engine.snapshot()

        await engine.expand_node("n1")

        assert engine.snapshot().node_ids == before.node_ids
        assert engine.snapshot().edges == before.edges

    async def test_committed_edge_replaced_only_by_newer(self, store):
        await seed(
            store,
            make_verse("A-1-1"),
            make_verse("B-1-1"),
            make_edge("A-1-1", "B-1-1", edge_id="old", updated_at=T0),
        )
        engine = GraphExpansionEngine(store)
        await engine.load_seeds(["A-1-1"])
        await store.add_edge(make_edge("A-1-1", "B-1-1", edge_id="same-age", updated_at=T0))

        await engine.expand_node("B-1-1")
        assert [edge.id for edge in engine.snapshot().edges] == ["old"]

        await store.add_edge(make_edge("A-1-1", "B-1-1", edge_id="newer", updated_at=T0 + timedelta(days=1)))
        await engine.expand_node("A-1-1")
        assert [edge.id for edge in engine.snapshot().edges] == ["newer"]


class TestExpandGroup:
    """Test expanding synthetic group nodes."""

    async def test_group_expansion_adds_members_and_membership_edges(self, store):
        await seed(
            store,
            make_verse("A-1-1"),
            make_verse("B-1-1"),
            make_verse("C-1-1"),
            GroupConnection(id="h1", source_ids=("A-1-1", "B-1-1"), target_ids=("C-1-1",)),
        )
        engine = GraphExpansionEngine(store)
        await engine.load_seeds(["group:h1"])

        await engine.expand_node("group:h1")

        snapshot = engine.snapshot()
        assert {"A-1-1", "B-1-1", "C-1-1", "group:h1"} == snapshot.node_ids
        assert edge_triples(snapshot) == {
            ("A-1-1", "group:h1", GROUP_MEMBER),
            ("B-1-1", "group:h1", GROUP_MEMBER),
            ("group:h1", "C-1-1", GROUP_MEMBER),
        }

    async def test_member_kinds_are_respected(self, store):
        await store.add_node(NodeKind.TAG, Tag(id="t1", name="grace"))
        await seed(
            store,
            make_verse("A-1-1"),
            GroupConnection(
                id="h1",
                source_ids=("A-1-1",),
                target_ids=("t1",),
                target_kind=NodeKind.TAG,
                type=EdgeType.THEMATIC,
            ),
        )
        engine = GraphExpansionEngine(store)

        await engine.expand_node("group:h1")

        tag = engine.get_node("t1")
        assert tag is not None and tag.kind is NodeKind.TAG
        assert ("group:h1", "t1", GROUP_MEMBER) in edge_triples(engine.snapshot())

    async def test_nested_group_member(self, store):
        await seed(
            store,
            GroupConnection(id="inner", source_ids=("A-1-1",), target_ids=("B-1-1",)),
            GroupConnection(
                id="outer",
                source_ids=("inner",),
                target_ids=(),
                source_kind=NodeKind.GROUP,
            ),
        )
        engine = GraphExpansionEngine(store)

        await engine.expand_node("group:outer")

        assert engine.snapshot().node_ids == {"group:outer", "group:inner"}
        assert ("group:inner", "group:outer", GROUP_MEMBER) in edge_triples(engine.snapshot())


class TestStaging:
    """Test that staged work only lands on commit."""

    async def test_stage_does_not_touch_view(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)

        delta = await engine.stage_seeds(["John-3-16"])

        assert engine.snapshot().is_empty
        assert engine.visited == frozenset()
        assert engine.commit(delta) == (2, 1)
        assert engine.visited == {"John-3-16", "Romans-8-28"}

    async def test_cancelled_token_aborts_staging(self, seeded_store):
        engine = GraphExpansionEngine(seeded_store)
        token = CancellationToken()
        token.cancel("view closed")

        with pytest.raises(OperationAbortedError):
            await engine.stage_seeds(["John-3-16"], token)

        assert engine.snapshot().is_empty
