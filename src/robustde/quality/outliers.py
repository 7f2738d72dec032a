"""
Outlier filtering for expression matrices with robust PCA.

Two independent failure modes contaminate a cell-line panel:
    - Noisy genes (mapping artefacts, a handful of extreme counts)
    - Noisy samples (failed libraries, mislabelled or contaminated lines)

They are detected against different covariance structures, so the filter
is applied twice: once with genes as rows (samples as variables) and once on
the transposed matrix with samples as rows (genes as variables).

Key Design Decision:
    Rows are *removed*, not flagged in place. The partition is returned as an
    immutable OutlierPartitionResult so the caller builds the next-stage
    matrix from the inliers while keeping the outliers for reporting.

Examples:
    >>> from robustde.quality.outliers import filter_outliers
    >>>
    >>> partition = filter_outliers(counts, gene_ids, seed=0, axis="genes")
    >>> print(f"Removed {partition.n_outliers} genes: {list(partition.outlier_ids)}")
    >>>
    >>> # Transform form, for BioMatrix pipelines
    >>> from robustde.quality.outliers import RobustPCAOutlierFilter
    >>> gene_filter = RobustPCAOutlierFilter(axis="genes", seed=0)
    >>> clean = gene_filter.apply(matrix)
    >>> sample_filter = RobustPCAOutlierFilter(axis="samples", seed=0)
    >>> clean = sample_filter.apply(clean)
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Literal, Optional, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from robustde.core.biomatrix import BioMatrix
from robustde.core.errors import ShapeMismatchError
from robustde.core.transform import Transform
from robustde.quality.robust_pca import robpca

logger = logging.getLogger(__name__)

__all__ = [
    'OutlierPartitionResult',
    'filter_outliers',
    'RobustPCAOutlierFilter',
]


@dataclass(frozen=True)
class OutlierPartitionResult:
    """Inlier/outlier split of a matrix's rows.

    Attributes:
        inliers: Inlier submatrix, original row order preserved
        inlier_ids: Identifiers of the inlier rows
        outliers: Outlier submatrix, original row order preserved
        outlier_ids: Identifiers of the outlier rows
        inlier_mask: True for inliers, one entry per original row
        score_distances: Robust score distance of every original row
        orthogonal_distances: Orthogonal distance of every original row
        score_cutoff: Cutoff applied to score distances
        orthogonal_cutoff: Cutoff applied to orthogonal distances
        n_components: Number of robust components used
        axis: Which axis the rows represent ("genes" or "samples")
    """

    inliers: NDArray[np.float64]
    inlier_ids: pd.Index
    outliers: NDArray[np.float64]
    outlier_ids: pd.Index
    inlier_mask: NDArray[np.bool_]
    score_distances: NDArray[np.float64]
    orthogonal_distances: NDArray[np.float64]
    score_cutoff: float
    orthogonal_cutoff: float
    n_components: int
    axis: Optional[str] = None

    def __post_init__(self):
        # The freeze covers attributes only; lock the arrays too
        for name in ('inliers', 'outliers', 'inlier_mask', 'score_distances', 'orthogonal_distances'):
            array = np.asarray(getattr(self, name))
            array.setflags(write=False)
            object.__setattr__(self, name, array)

    @property
    def outlier_mask(self) -> NDArray[np.bool_]:
        return ~self.inlier_mask

    @property
    def n_inliers(self) -> int:
        return int(self.inlier_mask.sum())

    @property
    def n_outliers(self) -> int:
        return int((~self.inlier_mask).sum())

    def to_dataframe(self, outliers_only: bool = False) -> pd.DataFrame:
        """Per-row diagnostics, indexed by the original identifiers."""
        ids = np.empty(len(self.inlier_mask), dtype=object)
        ids[self.inlier_mask] = list(self.inlier_ids)
        ids[~self.inlier_mask] = list(self.outlier_ids)
        df = pd.DataFrame(
            {
                'inlier': self.inlier_mask,
                'score_distance': self.score_distances,
                'orthogonal_distance': self.orthogonal_distances,
            },
            index=pd.Index(ids, name=self.axis or 'id'),
        )
        if outliers_only:
            return df[~self.inlier_mask]
        return df


def filter_outliers(
    matrix: NDArray[np.float64],
    ids: Sequence[Any],
    *,
    seed: int = 0,
    axis: Optional[str] = "genes",
    **robpca_kwargs: Any,
) -> OutlierPartitionResult:
    """
    Partition the rows of a matrix into robust-PCA inliers and outliers.

    A row is an inlier when both its score distance and its orthogonal
    distance fall under their cutoffs (see robustde.quality.robust_pca).

    Args:
        matrix: 2D array (m rows × n variables) without missing values.
        ids: One identifier per row.
        seed: Seed for the projection-pursuit and MCD searches. The same
            seed always gives the same partition.
        axis: "genes" or "samples", reported in errors and diagnostics.
        **robpca_kwargs: Forwarded to robpca() (n_components, alpha,
            quantile, kmax, n_directions, var_explained).

    Returns:
        OutlierPartitionResult; inlier_ids and outlier_ids partition ids.

    Raises:
        ShapeMismatchError: If len(ids) != number of rows
        InsufficientDataError: If the matrix is too small for robust covariance
        NumericOverflowError: If the matrix contains NaN/Inf
    """
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2:
        raise ShapeMismatchError(
            f"Expected 2D matrix, got shape {matrix.shape}", stage="filter", axis=axis
        )

    ids = pd.Index(ids)
    if len(ids) != matrix.shape[0]:
        raise ShapeMismatchError(
            f"Identifier count ({len(ids)}) must match matrix rows ({matrix.shape[0]})",
            stage="filter", axis=axis,
        )

    fit = robpca(matrix, seed=seed, axis=axis, **robpca_kwargs)
    mask = fit.inlier_mask

    return OutlierPartitionResult(
        inliers=matrix[mask],
        inlier_ids=ids[mask],
        outliers=matrix[~mask],
        outlier_ids=ids[~mask],
        inlier_mask=mask,
        score_distances=fit.score_distances,
        orthogonal_distances=fit.orthogonal_distances,
        score_cutoff=fit.score_cutoff,
        orthogonal_cutoff=fit.orthogonal_cutoff,
        n_components=fit.n_components,
        axis=axis,
    )


class RobustPCAOutlierFilter(Transform):
    """
    Remove outlying genes or samples from a BioMatrix with robust PCA.

    axis="genes" screens rows directly. axis="samples" transposes, screens
    the samples as rows, and transposes back; sample metadata is re-attached
    for the surviving samples.

    Args:
        axis: "genes" or "samples"
        seed: Seed forwarded to the robust PCA search
        log_transform: Detect on log2(x + 1) while keeping original values.
            Raw counts span orders of magnitude, so a few highly expressed
            genes would otherwise dominate every direction.
        n_components: Fixed number of robust components (None = automatic)
        alpha: Clean-subset coverage in [0.5, 1]
        quantile: Quantile for both distance cutoffs

    Attributes:
        partition_: OutlierPartitionResult from the last apply()

    Examples:
        >>> gene_filter = RobustPCAOutlierFilter(axis="genes", seed=0)
        >>> clean = gene_filter.apply(matrix)
        >>> gene_filter.partition_.outlier_ids
    """

    def __init__(
        self,
        axis: Literal["genes", "samples"] = "genes",
        seed: int = 0,
        log_transform: bool = False,
        n_components: Optional[int] = None,
        alpha: float = 0.75,
        quantile: float = 0.975,
    ):
        if axis not in ("genes", "samples"):
            raise ValueError(f"axis must be 'genes' or 'samples', got '{axis}'")
        if not 0.5 <= alpha <= 1.0:
            raise ValueError(f"alpha must be in [0.5, 1], got {alpha}")
        if not 0.0 < quantile < 1.0:
            raise ValueError(f"quantile must be in (0, 1), got {quantile}")

        super().__init__(
            name="RobustPCAOutlierFilter",
            params={
                "axis": axis,
                "seed": seed,
                "log_transform": log_transform,
                "n_components": n_components,
                "alpha": alpha,
                "quantile": quantile,
            },
        )
        self.axis = axis
        self.seed = seed
        self.log_transform = log_transform
        self.n_components = n_components
        self.alpha = alpha
        self.quantile = quantile
        self.partition_: Optional[OutlierPartitionResult] = None

    def partition(self, matrix: BioMatrix) -> OutlierPartitionResult:
        """Compute the partition without building a new matrix."""
        self._raise_if_invalid(matrix)

        # Rows of the screened view are the entities being filtered
        view = matrix if self.axis == "genes" else matrix.transpose()
        values, ids = view.data, view.feature_ids

        detect_on = np.log2(values + 1.0) if self.log_transform else values

        partition = filter_outliers(
            detect_on,
            ids,
            seed=self.seed,
            axis=self.axis,
            n_components=self.n_components,
            alpha=self.alpha,
            quantile=self.quantile,
        )

        # Hand back original-scale values, not the detection scale
        if self.log_transform:
            mask = partition.inlier_mask
            partition = OutlierPartitionResult(
                inliers=values[mask],
                inlier_ids=partition.inlier_ids,
                outliers=values[~mask],
                outlier_ids=partition.outlier_ids,
                inlier_mask=mask,
                score_distances=partition.score_distances,
                orthogonal_distances=partition.orthogonal_distances,
                score_cutoff=partition.score_cutoff,
                orthogonal_cutoff=partition.orthogonal_cutoff,
                n_components=partition.n_components,
                axis=partition.axis,
            )

        return partition

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        """
        Remove outlying rows (genes) or columns (samples).

        Returns:
            New BioMatrix with only the inliers along self.axis
        """
        partition = self.partition(matrix)
        self.partition_ = partition

        n_total = len(partition.inlier_mask)
        logger.info(
            f"{self.name} ({self.axis}): kept {partition.n_inliers}/{n_total}, "
            f"removed {partition.n_outliers} (k={partition.n_components})"
        )

        outlier_pct = 100 * partition.n_outliers / n_total
        if outlier_pct > 10:
            warnings.warn(
                f"Flagged {outlier_pct:.1f}% of {self.axis} as outliers (>10% is high)",
                UserWarning,
            )

        if self.axis == "genes":
            return matrix.select_features(partition.inlier_mask)

        # Samples were screened as rows of the transpose; dropping the
        # columns directly keeps their metadata attached
        return matrix.select_samples(partition.inlier_mask)

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)

        if self.log_transform and np.any(matrix.data < 0):
            errors.append("log_transform requires non-negative values (raw counts)")

        return errors
