"""
Coverage filtering for count matrices.

The robust PCA and Z-score stages require a complete matrix: no missing
values, and no genes that are essentially unexpressed (those have zero or
near-zero variance and only add noise to the covariance estimate). This
stage establishes that precondition.

A gene is kept when it has no missing values and its CPM (counts per
million) exceeds ``min_cpm`` in at least ``min_prevalence`` of samples.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Set
import numpy as np

from robustde.core.biomatrix import BioMatrix
from robustde.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ['CoverageFilter', 'CoverageFilterResult']


@dataclass
class CoverageFilterResult:
    """Genes passing/failing the coverage filter."""
    passed_genes: Set[str]
    failed_genes: Set[str]
    n_missing: int = 0
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_passed(self) -> int:
        return len(self.passed_genes)

    @property
    def n_failed(self) -> int:
        return len(self.failed_genes)

    @property
    def pass_rate(self) -> float:
        total = self.n_passed + self.n_failed
        return self.n_passed / total if total > 0 else 0.0


class CoverageFilter(Transform):
    """
    Drop genes with missing values or insufficient expression.

    Params:
        min_cpm: Minimum CPM to count a gene as expressed in a sample.
        min_prevalence: Fraction of samples that must express the gene.
        drop_missing: Drop genes with any NaN value. When False, a NaN
            fails validation instead.

    Examples:
        >>> coverage = CoverageFilter(min_cpm=1.0, min_prevalence=0.1)
        >>> covered = coverage.apply(matrix)
    """

    def __init__(
        self,
        min_cpm: float = 1.0,
        min_prevalence: float = 0.1,
        drop_missing: bool = True,
    ):
        if min_cpm < 0:
            raise ValueError(f"min_cpm must be non-negative, got {min_cpm}")
        if not 0.0 <= min_prevalence <= 1.0:
            raise ValueError(f"min_prevalence must be in [0, 1], got {min_prevalence}")

        super().__init__(
            name="CoverageFilter",
            params={
                "min_cpm": min_cpm,
                "min_prevalence": min_prevalence,
                "drop_missing": drop_missing,
            }
        )
        self.min_cpm = min_cpm
        self.min_prevalence = min_prevalence
        self.drop_missing = drop_missing

    def _compute_keep_mask(self, matrix: BioMatrix) -> tuple[np.ndarray, int]:
        """
        Returns:
            keep_mask: Boolean array of genes passing the filter
            n_missing: Number of genes dropped for missing values
        """
        raw_data = matrix.data
        complete = ~np.isnan(raw_data).any(axis=1)
        n_missing = int((~complete).sum())

        # Library sizes from complete genes only
        library_sizes = np.nansum(raw_data[complete], axis=0)
        library_sizes = np.where(library_sizes == 0, 1.0, library_sizes)

        with np.errstate(invalid='ignore'):
            cpm = (raw_data / library_sizes[None, :]) * 1e6
            expressed_in_samples = (cpm > self.min_cpm).sum(axis=1)

        thresh_samples = max(1, int(np.ceil(matrix.n_samples * self.min_prevalence)))
        keep_mask = complete & (expressed_in_samples >= thresh_samples)

        return keep_mask, n_missing

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        """Apply the coverage filter."""
        self._raise_if_invalid(matrix)

        keep_mask, n_missing = self._compute_keep_mask(matrix)

        n_kept = int(keep_mask.sum())
        logger.info(
            f"Coverage filter: kept {n_kept}/{matrix.n_features} genes "
            f"({100 * n_kept / matrix.n_features:.1f}%), "
            f"{n_missing} dropped for missing values"
        )

        return matrix.select_features(keep_mask)

    def get_passing_features(self, matrix: BioMatrix) -> CoverageFilterResult:
        """
        Get genes passing the filter without subsetting the matrix.

        Returns:
            CoverageFilterResult with passed/failed gene sets
        """
        keep_mask, n_missing = self._compute_keep_mask(matrix)

        return CoverageFilterResult(
            passed_genes=set(matrix.feature_ids[keep_mask]),
            failed_genes=set(matrix.feature_ids[~keep_mask]),
            n_missing=n_missing,
            parameters=dict(self.params),
        )

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        if np.any(matrix.data < 0):
            errors.append("Matrix contains negative values (expected counts for CPM calculation)")
        if not self.drop_missing and np.isnan(matrix.data).any():
            errors.append("Matrix contains NaN values and drop_missing=False")
        return errors
