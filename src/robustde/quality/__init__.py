"""
Quality control for cell-line expression matrices.

Components:
    CoverageFilter: Drops genes with missing values or too little expression
    robpca: Hubert-style robust PCA with score/orthogonal distances
    filter_outliers: Partition rows into robust-PCA inliers and outliers
    RobustPCAOutlierFilter: Transform form, for the gene or sample axis

Workflow:
    1. CoverageFilter establishes a complete, expressed matrix
    2. RobustPCAOutlierFilter(axis="genes") removes noisy genes
    3. RobustPCAOutlierFilter(axis="samples") removes noisy cell lines

Examples:
    >>> from robustde.quality import CoverageFilter, RobustPCAOutlierFilter
    >>>
    >>> covered = CoverageFilter(min_cpm=1.0).apply(matrix)
    >>> genes_clean = RobustPCAOutlierFilter(axis="genes", seed=0).apply(covered)
    >>> clean = RobustPCAOutlierFilter(axis="samples", seed=0).apply(genes_clean)

References:
    - Hubert, Rousseeuw & Vanden Branden (2005) "ROBPCA: A New Approach to
      Robust Principal Component Analysis", Technometrics 47(1):64-79
"""

from robustde.quality.filtering import CoverageFilter, CoverageFilterResult
from robustde.quality.robust_pca import RobustPCAResult, robpca
from robustde.quality.outliers import (
    OutlierPartitionResult,
    filter_outliers,
    RobustPCAOutlierFilter,
)

__all__ = [
    'CoverageFilter',
    'CoverageFilterResult',
    'RobustPCAResult',
    'robpca',
    'OutlierPartitionResult',
    'filter_outliers',
    'RobustPCAOutlierFilter',
]
