"""Tests for soft-threshold adjacency and the scale-free power scan."""

import numpy as np
import pytest

from coexnet.core.exceptions import InsufficientDataError, InvalidParameterError
from coexnet.network.adjacency import (
    DEFAULT_POWERS,
    SoftThresholdResult,
    pick_soft_threshold,
    scale_free_fit,
    to_adjacency,
)
from coexnet.network.similarity import compute_similarity


class TestToAdjacency:

    def test_zero_similarity_unsigned_power_one(self):
        adj = to_adjacency(np.zeros((3, 3)), power=1, signed=False)
        np.testing.assert_array_equal(adj, np.full((3, 3), 0.5))

    def test_signed_endpoints(self):
        sim = np.array([[1.0, -1.0], [-1.0, 1.0]])
        adj = to_adjacency(sim, power=6, signed=True)

        assert adj[0, 0] == 1.0
        assert adj[0, 1] == 0.0

    def test_unsigned_treats_directions_alike(self):
        sim = np.array([[1.0, -0.6, 0.6], [-0.6, 1.0, 0.0], [0.6, 0.0, 1.0]])
        adj = to_adjacency(sim, power=4, signed=False)
        assert adj[0, 1] == pytest.approx(adj[0, 2])

    def test_signed_downweights_negative(self):
        sim = np.array([[1.0, -0.6, 0.6], [-0.6, 1.0, 0.0], [0.6, 0.0, 1.0]])
        adj = to_adjacency(sim, power=4, signed=True)
        assert adj[0, 1] < adj[0, 2]

    @staticmethod
    def _first_row(values, signed):
        sim = np.diag(np.ones(len(values) + 1))
        sim[0, 1:] = values
        sim[1:, 0] = values
        return to_adjacency(sim, power=12, signed=signed)[0, 1:]

    @pytest.mark.parametrize("signed", [True, False])
    def test_positive_similarity_non_decreasing_in_magnitude(self, signed):
        row = self._first_row(np.linspace(0.0, 1.0, 21), signed)
        assert np.all(np.diff(row) >= 0)

    def test_unsigned_negative_similarity_non_decreasing_in_magnitude(self):
        row = self._first_row(np.linspace(0.0, -1.0, 21), signed=False)
        assert np.all(np.diff(row) >= 0)
        np.testing.assert_allclose(row, self._first_row(np.linspace(0.0, 1.0, 21), signed=False))

    def test_signed_negative_similarity_decreasing_in_magnitude(self):
        row = self._first_row(np.linspace(0.0, -1.0, 21), signed=True)
        assert np.all(np.diff(row) <= 0)
        assert row[-1] == 0.0

    def test_range(self, module_matrix):
        adj = to_adjacency(compute_similarity(module_matrix), power=8)
        assert adj.min() >= 0.0
        assert adj.max() <= 1.0
        np.testing.assert_array_equal(adj, adj.T)

    def test_input_not_modified(self):
        sim = np.array([[1.0, 0.2], [0.2, 1.0]])
        original = sim.copy()
        to_adjacency(sim, power=3)
        np.testing.assert_array_equal(sim, original)

    @pytest.mark.parametrize("power", [0, -2, np.inf, np.nan])
    def test_invalid_power(self, power):
        with pytest.raises(InvalidParameterError):
            to_adjacency(np.zeros((2, 2)), power=power)

    def test_non_square(self):
        with pytest.raises(InvalidParameterError, match="square"):
            to_adjacency(np.zeros((2, 3)))


class TestScaleFreeFit:

    def test_power_law_connectivity_fits_well(self):
        rng = np.random.RandomState(0)
        k = rng.pareto(2.0, size=2000) + 1.0
        r_squared, slope = scale_free_fit(k, n_breaks=10)

        assert slope < 0
        assert 0.0 <= r_squared <= 1.0

    def test_constant_connectivity_is_nan(self):
        r_squared, slope = scale_free_fit(np.full(50, 3.0))
        assert np.isnan(r_squared)
        assert np.isnan(slope)


class TestPickSoftThreshold:

    def test_table_layout(self, module_matrix):
        sim = compute_similarity(module_matrix)
        result = pick_soft_threshold(sim, powers=[12, 2, 6])

        assert isinstance(result, SoftThresholdResult)
        assert list(result.table.columns) == [
            'power', 'sft_r_squared', 'slope', 'mean_k', 'median_k', 'max_k'
        ]
        assert list(result.table['power']) == [2, 6, 12]

    def test_mean_connectivity_decreases_with_power(self, module_matrix):
        sim = compute_similarity(module_matrix)
        table = pick_soft_threshold(sim).table

        assert len(table) == len(DEFAULT_POWERS)
        assert np.all(np.diff(table['mean_k']) < 0)

    def test_unreachable_cut_gives_no_estimate(self, module_matrix):
        sim = compute_similarity(module_matrix)
        result = pick_soft_threshold(sim, powers=[1, 4, 8], r_squared_cut=1.01)

        assert result.power_estimate is None
        assert result.best_power() in (1, 4, 8)

    def test_estimate_is_lowest_passing_power(self, module_matrix):
        sim = compute_similarity(module_matrix)
        result = pick_soft_threshold(sim, r_squared_cut=-1.0)
        assert result.power_estimate == min(DEFAULT_POWERS)
        assert result.best_power() == result.power_estimate

    def test_too_few_genes(self):
        with pytest.raises(InsufficientDataError):
            pick_soft_threshold(np.eye(2))

    def test_bad_n_breaks(self, module_matrix):
        with pytest.raises(InvalidParameterError):
            pick_soft_threshold(compute_similarity(module_matrix), n_breaks=1)

    def test_bad_power_in_scan(self, module_matrix):
        with pytest.raises(InvalidParameterError):
            pick_soft_threshold(compute_similarity(module_matrix), powers=[2, 0])
