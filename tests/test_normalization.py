"""
Tests for library-size normalization (median-of-ratios, CPM).
"""

from __future__ import annotations

import numpy as np
import pytest

from robustde.core.errors import InsufficientDataError
from robustde.stats.normalization import (
    NormalizationMethod,
    Normalizer,
    cpm_normalization,
    median_of_ratios_normalization,
    median_of_ratios_size_factors,
    normalize,
)


class TestMedianOfRatios:
    """DESeq size factors."""

    def test_recovers_depth_scaling(self):
        """A sample sequenced twice as deep gets twice the size factor."""
        base = np.array([10.0, 50.0, 200.0, 1000.0])
        counts = np.column_stack([base, 2 * base, 4 * base])

        factors = median_of_ratios_size_factors(counts)

        assert factors[1] / factors[0] == pytest.approx(2.0)
        assert factors[2] / factors[0] == pytest.approx(4.0)
        # Geometric mean 1
        assert np.exp(np.log(factors).mean()) == pytest.approx(1.0)

    def test_robust_to_one_dominant_gene(self):
        rng = np.random.RandomState(0)
        base = rng.uniform(50, 500, size=100)
        counts = np.column_stack([base, base.copy()])
        counts[0, 1] *= 1000

        factors = median_of_ratios_size_factors(counts)
        assert factors[0] == pytest.approx(factors[1], rel=1e-6)

    def test_genes_with_zero_excluded_from_reference(self):
        counts = np.array([[10.0, 20.0], [0.0, 5.0], [30.0, 60.0]])
        factors = median_of_ratios_size_factors(counts)
        assert factors[1] / factors[0] == pytest.approx(2.0)

    def test_no_reference_gene(self):
        counts = np.array([[0.0, 5.0], [5.0, 0.0]])
        with pytest.raises(InsufficientDataError):
            median_of_ratios_size_factors(counts)

    def test_log_output(self):
        base = np.array([10.0, 50.0, 200.0])
        counts = np.column_stack([base, 2 * base])
        result = median_of_ratios_normalization(counts, pseudocount=1.0)

        # Depth removed: both samples identical after scaling
        np.testing.assert_allclose(result.data[:, 0], result.data[:, 1])
        assert result.method == "median_of_ratios"

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            median_of_ratios_size_factors(np.array([[1.0, -1.0], [2.0, 3.0]]))


class TestCpm:
    """Counts per million."""

    def test_columns_sum_to_million(self):
        counts = np.array([[1.0, 10.0], [3.0, 30.0]])
        result = cpm_normalization(counts, log=False)
        np.testing.assert_allclose(result.data.sum(axis=0), 1e6)

    def test_zero_library(self):
        with pytest.raises(InsufficientDataError):
            cpm_normalization(np.array([[0.0, 1.0], [0.0, 2.0]]))


class TestNormalizer:
    """Transform interface."""

    def test_dispatch_by_name(self):
        counts = np.array([[10.0, 20.0], [30.0, 60.0]])
        assert normalize(counts, "cpm").method == "cpm"
        assert normalize(counts, NormalizationMethod.NONE).method == "none"

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            Normalizer("tmm")

    def test_apply_keeps_labels(self, count_matrix):
        normalizer = Normalizer("median_of_ratios")
        normalized = normalizer.apply(count_matrix)

        assert normalized.feature_ids.equals(count_matrix.feature_ids)
        assert normalized.sample_ids.equals(count_matrix.sample_ids)
        assert normalizer.result_.size_factors.shape == (count_matrix.n_samples,)
        np.testing.assert_allclose(
            normalized.data,
            np.log2(count_matrix.data / normalizer.result_.size_factors + 1.0),
        )

    def test_rejects_nan(self, count_matrix):
        data = count_matrix.data.copy()
        data[0, 0] = np.nan
        with pytest.raises(ValueError, match="NaN"):
            Normalizer().apply(count_matrix.with_data(data))

    def test_invalid_pseudocount(self):
        with pytest.raises(ValueError, match="pseudocount"):
            Normalizer(pseudocount=0)
