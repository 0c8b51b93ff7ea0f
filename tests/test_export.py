"""Tests for threshold search, pruning, rescaling and GraphML export."""

import os

import numpy as np
import pandas as pd
import pytest

from coexnet.core.exceptions import (
    InsufficientDataError,
    InvalidParameterError,
    SchemaMismatchError,
    ZeroEdgesError,
)
from coexnet.network.adjacency import to_adjacency
from coexnet.network.export import (
    align_annotations,
    export_graph,
    prune_adjacency,
    read_graphml,
    search_threshold,
)
from coexnet.network.modules import detect_modules
from coexnet.network.similarity import compute_similarity

from conftest import random_symmetric_adjacency


def _edge_set(edges: pd.DataFrame) -> set:
    return {frozenset((s, t)) for s, t in zip(edges['source'], edges['target'])}


def _plateau_adjacency(n: int, plateau: float, strong: float = None) -> np.ndarray:
    """Every pair at the same magnitude, optionally with two stronger pairs."""
    adj = np.full((n, n), plateau)
    if strong is not None:
        adj[0, 1] = adj[1, 0] = strong
        adj[2, 3] = adj[3, 2] = strong
    np.fill_diagonal(adj, 1.0)
    return adj


class TestSearchThreshold:

    def test_edge_budget_sets_cutoff(self):
        adj = random_symmetric_adjacency(50, seed=1)
        search = search_threshold(adj, requested=0.0, max_edge_ratio=1)

        upper = adj[np.triu_indices(50, k=1)]
        assert search.max_edges == 50
        assert search.threshold == search.edge_limit_cutoff
        assert (upper >= search.threshold).sum() == 50

    def test_requested_threshold_wins_when_stricter(self):
        adj = random_symmetric_adjacency(50, seed=1)
        search = search_threshold(adj, requested=0.98, max_edge_ratio=3)

        assert search.edge_limit_cutoff < 0.98
        assert search.threshold == 0.98

    def test_safety_floor_caps_threshold(self):
        adj = random_symmetric_adjacency(20, seed=2, scale=0.5)
        search = search_threshold(adj, requested=0.9, max_edge_ratio=3)

        upper = adj[np.triu_indices(20, k=1)]
        assert search.min_threshold <= upper.max()
        assert search.threshold == search.min_threshold

    def test_zero_ratio_leaves_only_the_floor(self):
        adj = random_symmetric_adjacency(30, seed=3)
        search = search_threshold(adj, requested=0.0, max_edge_ratio=0)

        strongest = adj[np.triu_indices(30, k=1)].max()
        assert search.edge_limit_cutoff > strongest
        assert search.threshold == search.min_threshold == strongest

    def test_tied_plateau_moves_cutoff_up(self):
        adj = _plateau_adjacency(50, plateau=0.3, strong=0.9)
        search = search_threshold(adj, requested=0.1, max_edge_ratio=1)

        assert search.edge_limit_cutoff == 0.9
        assert search.threshold == 0.9

    def test_tied_maximum_hands_over_to_floor(self):
        adj = _plateau_adjacency(50, plateau=0.3)
        search = search_threshold(adj, requested=0.1, max_edge_ratio=1)

        assert search.edge_limit_cutoff > 0.3
        assert search.threshold == search.min_threshold == 0.3

    def test_budget_larger_than_pairs(self):
        adj = random_symmetric_adjacency(5, seed=4)
        search = search_threshold(adj, requested=0.0, max_edge_ratio=100)
        assert search.edge_limit_cutoff == adj[np.triu_indices(5, k=1)].min()

    def test_diagonal_ignored(self):
        adj = random_symmetric_adjacency(10, seed=5, scale=0.3)
        search = search_threshold(adj, requested=0.0, max_edge_ratio=0)
        assert search.min_threshold <= 0.3

    def test_idempotent_on_pruned_matrix(self):
        adj = random_symmetric_adjacency(60, seed=6)
        first = search_threshold(adj, requested=0.2, max_edge_ratio=2)
        pruned, _ = prune_adjacency(adj, first.threshold)

        second = search_threshold(pruned, requested=0.2, max_edge_ratio=2)
        assert second.threshold == first.threshold

    def test_idempotent_when_requested_dominates(self):
        adj = random_symmetric_adjacency(60, seed=7)
        first = search_threshold(adj, requested=0.99, max_edge_ratio=5)
        pruned, _ = prune_adjacency(adj, first.threshold)

        assert search_threshold(pruned, requested=0.99, max_edge_ratio=5).threshold == first.threshold

    @pytest.mark.parametrize("requested,ratio", [(-0.1, 3), (1.1, 3), (0.5, -1), (np.nan, 3)])
    def test_invalid_parameters(self, requested, ratio):
        with pytest.raises(InvalidParameterError):
            search_threshold(np.eye(3), requested=requested, max_edge_ratio=ratio)

    def test_single_vertex(self):
        with pytest.raises(InsufficientDataError):
            search_threshold(np.ones((1, 1)))


class TestPruneAdjacency:

    def test_prune_marks_orphans(self):
        adj = np.array([
            [1.0, 0.9, 0.1],
            [0.9, 1.0, 0.2],
            [0.1, 0.2, 1.0],
        ])
        pruned, keep = prune_adjacency(adj, 0.5)

        assert list(keep) == [True, True, False]
        assert pruned[0, 1] == 0.9
        assert np.all(np.diag(pruned) == 0)
        assert adj[0, 2] == 0.1


class TestExportGraph:

    def test_edge_budget_respected(self):
        adj = random_symmetric_adjacency(40, seed=8)
        artifact = export_graph(adj, threshold=0.0, max_edge_ratio=2)
        unweighted = export_graph(adj, threshold=0.0, max_edge_ratio=2, weighted=False)

        assert unweighted.n_edges == 2 * 40
        # The pair on the threshold rescales to 0 and is dropped
        assert artifact.n_edges == 2 * 40 - 1

    def test_tied_plateau_stays_within_budget(self):
        adj = _plateau_adjacency(50, plateau=0.3, strong=0.9)
        artifact = export_graph(adj, threshold=0.1, max_edge_ratio=1)

        assert artifact.n_edges <= 50
        assert _edge_set(artifact.edges) == {
            frozenset(("gene_0", "gene_1")),
            frozenset(("gene_2", "gene_3")),
        }
        assert set(artifact.vertices) == {"gene_0", "gene_1", "gene_2", "gene_3"}

    def test_floor_forces_tied_plateau(self):
        artifact = export_graph(_plateau_adjacency(6, plateau=0.3), threshold=0.1, max_edge_ratio=1)

        assert artifact.threshold == artifact.search.min_threshold
        assert artifact.n_edges == 15
        assert (artifact.edges['weight'] == 1.0).all()

    def test_no_orphan_vertices(self):
        adj = random_symmetric_adjacency(40, seed=9)
        artifact = export_graph(adj, threshold=0.0, max_edge_ratio=0.5)

        endpoints = set(artifact.edges['source']) | set(artifact.edges['target'])
        assert set(artifact.vertices) == endpoints
        assert artifact.n_vertices < 40

    def test_weights_rescaled_to_unit_interval(self):
        adj = random_symmetric_adjacency(30, seed=10)
        artifact = export_graph(adj, threshold=0.5, max_edge_ratio=10)

        weights = artifact.edges['weight']
        assert weights.max() == pytest.approx(1.0)
        assert weights.min() > 0.0
        assert artifact.threshold >= 0.5

    def test_rescaling_is_linear(self):
        adj = np.array([
            [1.0, 0.9, 0.7],
            [0.9, 1.0, 0.5],
            [0.7, 0.5, 1.0],
        ])
        artifact = export_graph(adj, threshold=0.5, max_edge_ratio=10, gene_ids=["a", "b", "c"])
        weights = {frozenset((s, t)): w for s, t, w in
                   artifact.edges[['source', 'target', 'weight']].itertuples(index=False)}

        assert weights[frozenset(("a", "b"))] == pytest.approx(1.0)
        assert weights[frozenset(("a", "c"))] == pytest.approx(0.5)
        assert frozenset(("b", "c")) not in weights
        assert artifact.vertices == ("a", "b", "c")

    def test_threshold_level_pair_dropped_with_its_orphan(self):
        adj = np.array([
            [1.0, 0.9, 0.1, 0.1],
            [0.9, 1.0, 0.7, 0.1],
            [0.1, 0.7, 1.0, 0.5],
            [0.1, 0.1, 0.5, 1.0],
        ])
        artifact = export_graph(adj, threshold=0.5, max_edge_ratio=10, gene_ids=["a", "b", "c", "d"])

        assert artifact.threshold == 0.5
        assert _edge_set(artifact.edges) == {frozenset(("a", "b")), frozenset(("b", "c"))}
        assert artifact.vertices == ("a", "b", "c")
        assert list(artifact.vertex_attrs.index) == ["a", "b", "c"]

    def test_unweighted_keeps_threshold_level_pair(self):
        adj = np.array([
            [1.0, 0.9, 0.5],
            [0.9, 1.0, 0.1],
            [0.5, 0.1, 1.0],
        ])
        artifact = export_graph(adj, threshold=0.5, weighted=False, gene_ids=["a", "b", "c"])
        assert _edge_set(artifact.edges) == {frozenset(("a", "b")), frozenset(("a", "c"))}

    def test_unweighted(self):
        adj = random_symmetric_adjacency(20, seed=11)
        artifact = export_graph(adj, threshold=0.3, weighted=False)

        assert (artifact.edges['weight'] == 1.0).all()
        assert artifact.weighted is False

    def test_single_surviving_edge_weight_one(self):
        adj = np.array([
            [1.0, 0.8, 0.1],
            [0.8, 1.0, 0.1],
            [0.1, 0.1, 1.0],
        ])
        artifact = export_graph(adj, threshold=0.8)
        assert artifact.n_edges == 1
        assert artifact.edges['weight'].iloc[0] == 1.0

    def test_high_threshold_on_weak_matrix_falls_back_to_floor(self):
        adj = random_symmetric_adjacency(20, seed=12, scale=0.5)
        artifact = export_graph(adj, threshold=0.9)

        assert artifact.n_edges >= 1
        assert artifact.threshold == artifact.search.min_threshold
        assert artifact.threshold <= 0.5

    def test_all_zero_adjacency_raises(self):
        with pytest.raises(ZeroEdgesError) as exc_info:
            export_graph(np.zeros((5, 5)), threshold=0.9)
        assert exc_info.value.threshold == 0.0

    def test_zero_edges_error_is_not_value_error(self):
        with pytest.raises(ZeroEdgesError) as exc_info:
            export_graph(np.zeros((3, 3)))
        assert not isinstance(exc_info.value, ValueError)

    def test_adjacency_not_modified(self):
        adj = random_symmetric_adjacency(15, seed=13)
        original = adj.copy()
        export_graph(adj, threshold=0.4)
        np.testing.assert_array_equal(adj, original)

    def test_signs_from_sign_matrix(self):
        adj = np.array([
            [1.0, 0.9, 0.8],
            [0.9, 1.0, 0.1],
            [0.8, 0.1, 1.0],
        ])
        signs = np.array([
            [1, -1, 1],
            [-1, 1, 1],
            [1, 1, 1],
        ], dtype=np.int8)
        artifact = export_graph(adj, threshold=0.5, gene_ids=["a", "b", "c"], signs=signs)
        sign_of = {frozenset((s, t)): sign for s, t, sign in
                   artifact.edges[['source', 'target', 'sign']].itertuples(index=False)}

        assert sign_of[frozenset(("a", "b"))] == -1
        assert sign_of[frozenset(("a", "c"))] == 1

    def test_vertex_attributes_follow_pruning(self, module_expression, annotations):
        sim = compute_similarity(module_expression)
        adj = to_adjacency(sim, power=12)
        modules = detect_modules(adj, gene_ids=module_expression.index)
        aligned = align_annotations(annotations, module_expression.index)

        artifact = export_graph(
            adj,
            threshold=0.2,
            gene_ids=module_expression.index,
            vertex_attrs=aligned,
            modules=modules,
            signs=np.sign(sim),
        )

        attrs = artifact.vertex_attrs
        assert list(attrs.index) == list(artifact.vertices)
        for gene in artifact.vertices:
            assert attrs.loc[gene, 'symbol'] == f"SYM{gene}"
            assert attrs.loc[gene, 'module'] == modules[gene]
        assert set(attrs['color']) <= {"turquoise", "blue", "brown", "grey"}


class TestSchemaMismatch:

    def test_vertex_attrs_wrong_length(self):
        adj = random_symmetric_adjacency(5)
        with pytest.raises(SchemaMismatchError):
            export_graph(adj, vertex_attrs=pd.DataFrame({'x': [1, 2]}))

    def test_gene_ids_wrong_length(self):
        with pytest.raises(SchemaMismatchError):
            export_graph(random_symmetric_adjacency(5), gene_ids=["a"])

    def test_module_labels_wrong_length(self):
        with pytest.raises(SchemaMismatchError):
            export_graph(random_symmetric_adjacency(5), modules=[1, 1])

    def test_signs_wrong_shape(self):
        with pytest.raises(SchemaMismatchError):
            export_graph(random_symmetric_adjacency(5), signs=np.ones((4, 4)))

    def test_duplicate_annotation_ids(self):
        annotations = pd.DataFrame({'symbol': ['A', 'B']}, index=['g1', 'g1'])
        with pytest.raises(SchemaMismatchError):
            align_annotations(annotations, ['g1', 'g2'])

    def test_align_annotations_reorders_and_fills(self):
        annotations = pd.DataFrame({'symbol': ['B', 'A', 'Z']}, index=['g2', 'g1', 'unused'])
        aligned = align_annotations(annotations, ['g1', 'g2', 'g3'])

        assert list(aligned.index) == ['g1', 'g2', 'g3']
        assert list(aligned['symbol'].iloc[:2]) == ['A', 'B']
        assert pd.isna(aligned.loc['g3', 'symbol'])


class TestGraphML:

    def test_round_trip(self, tmp_path, module_expression, annotations):
        sim = compute_similarity(module_expression)
        adj = to_adjacency(sim, power=12)
        modules = detect_modules(adj, gene_ids=module_expression.index)
        path = tmp_path / "out" / "network.graphml"

        artifact = export_graph(
            adj,
            threshold=0.2,
            gene_ids=module_expression.index,
            vertex_attrs=align_annotations(annotations, module_expression.index),
            modules=modules,
            signs=np.sign(sim),
            path=path,
        )
        reloaded = read_graphml(path)

        assert set(reloaded.vertices) == set(artifact.vertices)
        assert _edge_set(reloaded.edges) == _edge_set(artifact.edges)
        assert reloaded.threshold == pytest.approx(artifact.threshold)
        assert reloaded.weighted is True

        original = {frozenset((s, t)): (w, sign) for s, t, w, sign in artifact.edges.itertuples(index=False)}
        for s, t, w, sign in reloaded.edges.itertuples(index=False):
            expected_weight, expected_sign = original[frozenset((s, t))]
            assert w == pytest.approx(expected_weight)
            assert sign == expected_sign

        for gene in artifact.vertices:
            for column in ('module', 'color', 'symbol', 'length_kb'):
                assert reloaded.vertex_attrs.loc[gene, column] == artifact.vertex_attrs.loc[gene, column]

    def test_negative_signs_survive_round_trip(self, tmp_path):
        adj = np.array([[1.0, 0.9], [0.9, 1.0]])
        signs = np.array([[1, -1], [-1, 1]])
        path = tmp_path / "neg.graphml"
        export_graph(adj, threshold=0.5, gene_ids=["x", "y"], signs=signs, path=path)

        reloaded = read_graphml(path)
        assert list(reloaded.edges['sign']) == [-1]

    def test_numeric_gene_ids_stay_strings(self, tmp_path):
        adj = np.array([[1.0, 0.9], [0.9, 1.0]])
        path = tmp_path / "ids.graphml"
        export_graph(adj, threshold=0.5, gene_ids=["007", "42"], path=path)

        assert set(read_graphml(path).vertices) == {"007", "42"}

    def test_no_file_written_when_export_fails(self, tmp_path):
        path = tmp_path / "never.graphml"
        with pytest.raises(ZeroEdgesError):
            export_graph(np.zeros((4, 4)), path=path)

        assert not path.exists()
        assert os.listdir(tmp_path) == []
