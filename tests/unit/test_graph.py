"""
Unit tests for VersionSet and ConversionGraph.

Tests cover:
- VersionSet validation
- Edge registration rules
- Coverage validation
- Freeze and fingerprint
- Neighbor tie-break order
"""

import pytest

from schemabridge.conversion.graph import ConversionGraph
from schemabridge.errors import (
    DuplicateEdgeError,
    GraphFrozenError,
    IncompleteCoverageError,
    InvalidEdgeError,
    InvalidVersionSetError,
)
from schemabridge.versions.types import ConversionEdge, VersionConverter, VersionSet, VersionSpec, edge


def make_set(*names, storage=None):
    storage = storage or names[0]
    return VersionSet(VersionSpec(n, storage=(n == storage)) for n in names)


class TestVersionSet:
    """Tests for VersionSet."""

    def test_names_in_priority_order(self):
        vs = make_set("v1alpha1", "v1", "v1beta1", storage="v1")
        assert vs.names == ["v1", "v1beta1", "v1alpha1"]
        assert vs.storage_version == "v1"

    def test_empty_rejected(self):
        with pytest.raises(InvalidVersionSetError):
            VersionSet([])

    def test_duplicate_rejected(self):
        with pytest.raises(InvalidVersionSetError):
            VersionSet([VersionSpec("v1", storage=True), VersionSpec("v1")])

    def test_exactly_one_storage_version(self):
        with pytest.raises(InvalidVersionSetError):
            VersionSet([VersionSpec("v1"), VersionSpec("v2")])
        with pytest.raises(InvalidVersionSetError):
            VersionSet([VersionSpec("v1", storage=True), VersionSpec("v2", storage=True)])

    def test_served_excludes_unserved(self):
        vs = VersionSet([VersionSpec("v1", storage=True), VersionSpec("v1beta1", served=False)])
        assert vs.served == ["v1"]

    def test_dict_round_trip(self):
        vs = make_set("v1", "v1beta1")
        restored = VersionSet.from_dict(vs.to_dict())
        assert restored.names == vs.names
        assert restored.storage_version == "v1"

    def test_version_spec_dict(self):
        spec = VersionSpec("v1beta1", served=False)
        assert spec.to_dict() == {"name": "v1beta1", "served": False, "storage": False}
        assert VersionSpec.from_dict({"name": "v1"}) == VersionSpec("v1")


class TestEdges:
    """Tests for edge helpers."""

    def test_edge_helper_defaults_to_identity(self):
        e = edge("v1beta1", "v1")
        obj = {"a": 1}
        assert e.upgrade(obj) is obj
        assert e.downgrade(obj) is obj

    def test_version_converter_satisfies_protocol(self):
        class WidgetConverter(VersionConverter):
            older = "v1beta1"
            newer = "v1"

            def upgrade(self, obj):
                return obj

            def downgrade(self, obj):
                return obj

        assert isinstance(WidgetConverter(), ConversionEdge)


class TestConversionGraph:
    """Tests for ConversionGraph."""

    def test_register_and_lookup(self):
        graph = ConversionGraph()
        e = edge("v1beta1", "v1")
        graph.register(e)

        assert graph.versions() == ["v1", "v1beta1"]
        assert graph.edge_between("v1", "v1beta1") is e
        assert graph.edge_between("v1beta1", "v1") is e
        assert "v1" in graph

    def test_duplicate_edge_rejected(self):
        graph = ConversionGraph()
        graph.register(edge("v1beta1", "v1"))

        with pytest.raises(DuplicateEdgeError) as exc_info:
            graph.register(edge("v1beta1", "v1"))
        assert exc_info.value.code == "DuplicateEdge"

    def test_self_loop_rejected(self):
        graph = ConversionGraph()
        with pytest.raises(InvalidEdgeError):
            graph.register(edge("v1", "v1"))

    def test_inverted_edge_rejected(self):
        graph = ConversionGraph()
        with pytest.raises(InvalidEdgeError):
            graph.register(edge("v1", "v1beta1"))

    def test_connected_graph_validates(self):
        graph = ConversionGraph()
        graph.register(edge("v1alpha1", "v1beta1"))
        graph.register(edge("v1beta1", "v1"))

        graph.validate(make_set("v1", "v1beta1", "v1alpha1"))

    def test_disconnected_pairs_report_all_versions(self):
        graph = ConversionGraph(kind="Widget")
        graph.register(edge("v1alpha1", "v1beta1"))
        graph.register(edge("v2beta1", "v2"))

        with pytest.raises(IncompleteCoverageError) as exc_info:
            graph.validate(make_set("v2", "v2beta1", "v1beta1", "v1alpha1"))

        err = exc_info.value
        assert sorted(err.unreachable_versions) == ["v1alpha1", "v1beta1", "v2", "v2beta1"]
        assert len(err.components) == 2
        assert ("v2", "v1alpha1") in err.unreachable_pairs
        assert ("v2", "v2beta1") not in err.unreachable_pairs
        assert err.kind == "Widget"

    def test_isolated_version_is_unreachable(self):
        graph = ConversionGraph()
        graph.register(edge("v1beta1", "v1"))

        with pytest.raises(IncompleteCoverageError) as exc_info:
            graph.validate(make_set("v1", "v1beta1", "v2"))
        assert "v2" in exc_info.value.unreachable_versions

    def test_edges_outside_version_set_do_not_cover(self):
        graph = ConversionGraph()
        graph.register(edge("v1beta1", "v1"))
        graph.register(edge("v1", "v2"))

        with pytest.raises(IncompleteCoverageError):
            # v1beta1 is only linked to v1, which is not in the set
            graph.validate(make_set("v2", "v1beta1"))

    def test_single_version_needs_no_edges(self):
        graph = ConversionGraph()
        fingerprint = graph.freeze(make_set("v1"))

        assert fingerprint.startswith("sha256:")
        assert "v1" in graph

    def test_freeze_blocks_registration(self):
        graph = ConversionGraph()
        graph.register(edge("v1beta1", "v1"))
        graph.freeze(make_set("v1", "v1beta1"))

        assert graph.frozen
        with pytest.raises(GraphFrozenError):
            graph.register(edge("v1alpha1", "v1beta1"))
        with pytest.raises(GraphFrozenError):
            graph.freeze(make_set("v1", "v1beta1"))

    def test_freeze_drops_edges_outside_version_set(self):
        graph = ConversionGraph()
        graph.register(edge("v1beta1", "v1"))
        graph.register(edge("v1alpha1", "v1beta1"))
        graph.freeze(make_set("v1", "v1beta1"))

        assert "v1alpha1" not in graph
        assert graph.versions() == ["v1", "v1beta1"]

    def test_fingerprint_deterministic(self):
        def build(order):
            graph = ConversionGraph()
            for older, newer in order:
                graph.register(edge(older, newer))
            return graph.freeze(make_set("v1", "v1beta1", "v1alpha1"))

        pairs = [("v1alpha1", "v1beta1"), ("v1beta1", "v1")]
        assert build(pairs) == build(list(reversed(pairs)))

    def test_neighbor_order_closest_rank_first(self):
        graph = ConversionGraph()
        graph.register(edge("v1alpha1", "v1"))
        graph.register(edge("v1beta1", "v1"))
        graph.register(edge("v1", "v2"))

        # Ranks: v2, v1, v1beta1, v1alpha1. v2 and v1beta1 are both one away
        # from v1; the higher-priority v2 wins the tie.
        assert graph.neighbors("v1") == ("v2", "v1beta1", "v1alpha1")
