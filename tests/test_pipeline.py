"""
End-to-end tests for robustde.pipeline.

Covers:
- All stages run and every intermediate is kept
- Labels flow from the filtered matrix to the scores
- A fixed seed reproduces the run
- Per-lineage runs skip groups that fail with a pipeline error
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest

from robustde.core.biomatrix import BioMatrix
from robustde.core.errors import InsufficientDataError
from robustde.io.loaders import parse_lineage
from robustde.pipeline import PipelineConfig, PipelineResult, run_by_group, run_pipeline
from conftest import generate_count_matrix


class TestRunPipeline:
    """Single run over the whole panel."""

    def test_all_stages(self, count_matrix):
        result = run_pipeline(count_matrix, PipelineConfig(seed=0))

        assert isinstance(result, PipelineResult)
        assert result.raw is count_matrix
        assert result.mapped is count_matrix
        assert result.sample_partition is not None
        # aggregation ×2, coverage, outliers ×2, normalization, scoring
        assert len(result.stages) == 7
        assert result.stages[2].startswith("CoverageFilter(")
        assert result.stages[-1].startswith("compute_scores(")

    def test_partitions_consistent_with_matrices(self, count_matrix):
        result = run_pipeline(count_matrix, PipelineConfig(seed=0))

        genes = result.gene_partition
        assert genes.n_inliers + genes.n_outliers == result.covered.n_features
        assert list(result.filtered.feature_ids) == list(genes.inlier_ids)

        samples = result.sample_partition
        assert samples.n_inliers + samples.n_outliers == result.covered.n_samples
        assert list(result.filtered.sample_ids) == list(samples.inlier_ids)

    def test_scores_match_filtered_labels(self, count_matrix):
        result = run_pipeline(count_matrix, PipelineConfig(seed=0))

        assert result.scores.shape == result.filtered.shape
        assert list(result.scores.z.index) == list(result.filtered.feature_ids)
        assert list(result.scores.z.columns) == list(result.filtered.sample_ids)
        p = result.scores.p.to_numpy()
        assert np.all((p >= 0) & (p <= 1))

    def test_input_not_modified(self, count_matrix):
        before = count_matrix.data.copy()
        run_pipeline(count_matrix, PipelineConfig(seed=0))
        np.testing.assert_array_equal(count_matrix.data, before)

    def test_seed_reproducible(self, count_matrix):
        first = run_pipeline(count_matrix, PipelineConfig(seed=5))
        second = run_pipeline(count_matrix, PipelineConfig(seed=5))

        assert list(first.gene_partition.outlier_ids) == list(second.gene_partition.outlier_ids)
        assert list(first.sample_partition.outlier_ids) == list(second.sample_partition.outlier_ids)
        pd.testing.assert_frame_equal(first.scores.z, second.scores.z)

    def test_sample_filter_disabled(self, count_matrix):
        result = run_pipeline(count_matrix, PipelineConfig(filter_samples=False))
        assert result.sample_partition is None
        assert result.filtered.n_samples == count_matrix.n_samples
        assert set(result.partitions) == {"genes"}

    def test_mapping_and_aggregation(self, count_matrix):
        # Map every gene pair onto one symbol so aggregation halves the genes
        mapping = {
            fid.split(".")[0]: f"SYM{i // 2}"
            for i, fid in enumerate(count_matrix.feature_ids)
        }
        result = run_pipeline(count_matrix, PipelineConfig(seed=0), mapping=mapping)

        assert result.mapped.n_features == count_matrix.n_features
        assert result.aggregated.n_features == count_matrix.n_features // 2
        assert not result.aggregated.feature_ids.duplicated().any()
        assert result.stages[0].startswith("IdentifierMapper(")

    def test_nothing_passes_coverage(self, count_matrix):
        config = PipelineConfig(min_cpm=1e7)
        with pytest.raises(InsufficientDataError) as exc_info:
            run_pipeline(count_matrix, config)
        assert exc_info.value.stage == "coverage"


class TestRunByGroup:
    """Per-lineage runs."""

    @pytest.fixture
    def panel_with_tiny_group(self):
        """Two 12-sample lineages plus one single-sample lineage."""
        base = generate_count_matrix(n_samples=25, lineages=("LUNG", "BREAST"), seed=3)
        sample_ids = pd.Index(list(base.sample_ids[:24]) + ["CL999_SKIN"])
        return BioMatrix(
            data=base.data,
            feature_ids=base.feature_ids,
            sample_ids=sample_ids,
            sample_metadata=parse_lineage(sample_ids),
        )

    def test_runs_each_group(self, count_matrix):
        results = run_by_group(count_matrix, "lineage", PipelineConfig(seed=0))

        assert set(results) == {"LUNG", "BREAST"}
        for lineage, result in results.items():
            assert all(sid.endswith(f"_{lineage}") for sid in result.raw.sample_ids)

    def test_failing_group_skipped(self, panel_with_tiny_group, caplog):
        with caplog.at_level(logging.ERROR, logger="robustde.pipeline"):
            results = run_by_group(panel_with_tiny_group, "lineage", PipelineConfig(seed=0))

        assert set(results) == {"LUNG", "BREAST"}
        assert "lineage=SKIN" in caplog.text
        assert "stage=filter" in caplog.text

    def test_unknown_column(self, count_matrix):
        with pytest.raises(KeyError, match="tissue"):
            run_by_group(count_matrix, "tissue")
