"""
Statistical stages: normalization and differential scoring.

Normalization:
    normalize, Normalizer, NormalizationMethod, NormalizationResult
    median_of_ratios_normalization, cpm_normalization

Scoring:
    compute_scores: Row Z-scores, two-tailed p-values, matrix-wide BH FDR
    ScoreMatrix: Immutable result with z, p (adjusted) and p_raw frames
    fdr_correction: BH / BY / Bonferroni with NaN pass-through

Examples:
    >>> from robustde.stats import Normalizer, compute_scores
    >>>
    >>> normalized = Normalizer("median_of_ratios").apply(clean_counts)
    >>> scores = compute_scores(normalized)
    >>> scores.significant(alpha=0.05).sum().sum()
"""

from robustde.stats.normalization import (
    NormalizationMethod,
    NormalizationResult,
    median_of_ratios_size_factors,
    median_of_ratios_normalization,
    cpm_normalization,
    normalize,
    Normalizer,
)
from robustde.stats.scoring import (
    ScoreMatrix,
    compute_scores,
    fdr_correction,
)

__all__ = [
    'NormalizationMethod',
    'NormalizationResult',
    'median_of_ratios_size_factors',
    'median_of_ratios_normalization',
    'cpm_normalization',
    'normalize',
    'Normalizer',
    'ScoreMatrix',
    'compute_scores',
    'fdr_correction',
]
