"""
Library-size normalization for RNA-seq counts.

Implements two library-size corrections followed by a log2 transform:
- Median-of-ratios (DESeq): size factor of a sample is the median ratio of
  its counts to each gene's geometric mean across samples
- CPM: counts per million of the sample's total

Median-of-ratios assumes most genes are not differentially expressed, so a
sample-wide shift in ratios reflects sequencing depth and composition rather
than biology. It is robust to a few very highly expressed genes dominating
the library total, which CPM is not.

References:
    - Anders & Huber (2010) Genome Biology 11:R106 (DESeq size factors)
    - Love, Huber & Anders (2014) Genome Biology 15:550 (DESeq2)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from robustde.core.biomatrix import BioMatrix
from robustde.core.errors import InsufficientDataError
from robustde.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = [
    'NormalizationMethod',
    'NormalizationResult',
    'median_of_ratios_size_factors',
    'median_of_ratios_normalization',
    'cpm_normalization',
    'normalize',
    'Normalizer',
]


class NormalizationMethod(Enum):
    """Available normalization methods."""

    NONE = "none"
    MEDIAN_OF_RATIOS = "median_of_ratios"
    CPM = "cpm"


@dataclass(frozen=True)
class NormalizationResult:
    """Result of normalization procedure.

    Attributes:
        data: Normalized data matrix (genes × samples)
        method: Normalization method used
        size_factors: Per-sample divisor applied to the counts
        diagnostics: Additional diagnostic information
    """

    data: NDArray[np.float64]
    method: str
    size_factors: NDArray[np.float64]
    diagnostics: dict | None = None


def _check_counts(data: NDArray[np.float64]) -> None:
    if data.ndim != 2:
        raise ValueError(f"Expected 2D array, got {data.ndim}D")
    if np.any(data < 0):
        raise ValueError("Counts must be non-negative")


def _log_transform(data: NDArray[np.float64], log: bool, pseudocount: float) -> NDArray[np.float64]:
    return np.log2(data + pseudocount) if log else data


def median_of_ratios_size_factors(counts: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    DESeq size factors.

    Only genes with a positive count in every sample enter the reference
    (their geometric mean is defined and non-zero).

    Args:
        counts: 2D array (n_genes, n_samples) of raw counts.

    Returns:
        Size factors (n_samples,), geometric mean 1 by construction of the
        reference.

    Raises:
        InsufficientDataError: If no gene is positive in every sample.
    """
    _check_counts(counts)

    positive = np.all(counts > 0, axis=1)
    if not positive.any():
        raise InsufficientDataError(
            "No gene has positive counts in every sample; median-of-ratios is undefined",
            stage="normalize",
        )

    log_counts = np.log(counts[positive])
    log_geo_means = log_counts.mean(axis=1, keepdims=True)
    size_factors = np.exp(np.median(log_counts - log_geo_means, axis=0))

    return size_factors


def median_of_ratios_normalization(
    counts: NDArray[np.float64],
    log: bool = True,
    pseudocount: float = 1.0,
) -> NormalizationResult:
    """
    Median-of-ratios normalization.

    normalized[i, j] = log2(counts[i, j] / s_j + pseudocount)

    Args:
        counts: 2D array (n_genes, n_samples) of raw counts.
        log: Apply log2 after scaling.
        pseudocount: Added before the log.
    """
    size_factors = median_of_ratios_size_factors(counts)
    scaled = counts / size_factors[np.newaxis, :]

    return NormalizationResult(
        data=_log_transform(scaled, log, pseudocount),
        method="median_of_ratios",
        size_factors=size_factors,
        diagnostics={
            "n_reference_genes": int(np.all(counts > 0, axis=1).sum()),
            "log": log,
            "pseudocount": pseudocount,
        },
    )


def cpm_normalization(
    counts: NDArray[np.float64],
    log: bool = True,
    pseudocount: float = 1.0,
) -> NormalizationResult:
    """
    Counts-per-million normalization.

    normalized[i, j] = log2(counts[i, j] / (L_j / 1e6) + pseudocount)
    where L_j is the library size of sample j.
    """
    _check_counts(counts)

    library_sizes = counts.sum(axis=0)
    if np.any(library_sizes == 0):
        raise InsufficientDataError("Sample with zero library size", stage="normalize")

    size_factors = library_sizes / 1e6
    scaled = counts / size_factors[np.newaxis, :]

    return NormalizationResult(
        data=_log_transform(scaled, log, pseudocount),
        method="cpm",
        size_factors=size_factors,
        diagnostics={
            "library_sizes": library_sizes.tolist(),
            "log": log,
            "pseudocount": pseudocount,
        },
    )


def normalize(
    data: NDArray[np.float64],
    method: NormalizationMethod | str = NormalizationMethod.MEDIAN_OF_RATIOS,
    **kwargs,
) -> NormalizationResult:
    """
    Apply normalization to a count matrix.

    Args:
        data: 2D array (n_genes, n_samples) of counts.
        method: Normalization method to use.
        **kwargs: Passed to the specific method (log, pseudocount).

    Returns:
        NormalizationResult with normalized data.
    """
    if isinstance(method, str):
        method = NormalizationMethod(method)

    if method == NormalizationMethod.NONE:
        return NormalizationResult(
            data=data.copy(),
            method="none",
            size_factors=np.ones(data.shape[1]),
        )

    elif method == NormalizationMethod.MEDIAN_OF_RATIOS:
        return median_of_ratios_normalization(data, **kwargs)

    elif method == NormalizationMethod.CPM:
        return cpm_normalization(data, **kwargs)

    else:
        raise ValueError(f"Unknown normalization method: {method}")


class Normalizer(Transform):
    """
    Pipeline stage wrapping normalize().

    Attributes:
        result_: NormalizationResult from the last apply()

    Examples:
        >>> normalized = Normalizer("median_of_ratios").apply(clean_counts)
    """

    def __init__(
        self,
        method: NormalizationMethod | str = NormalizationMethod.MEDIAN_OF_RATIOS,
        pseudocount: float = 1.0,
    ):
        if isinstance(method, str):
            method = NormalizationMethod(method)
        if pseudocount <= 0:
            raise ValueError(f"pseudocount must be positive, got {pseudocount}")

        super().__init__(
            name="Normalizer",
            params={"method": method.value, "pseudocount": pseudocount},
        )
        self.method = method
        self.pseudocount = pseudocount
        self.result_: NormalizationResult | None = None

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        self._raise_if_invalid(matrix)

        if self.method == NormalizationMethod.NONE:
            result = normalize(matrix.data, self.method)
        else:
            result = normalize(matrix.data, self.method, pseudocount=self.pseudocount)
        self.result_ = result

        logger.info(
            f"Normalized {matrix.n_features} genes × {matrix.n_samples} samples ({result.method}); "
            f"size factors {result.size_factors.min():.3g}-{result.size_factors.max():.3g}"
        )

        return matrix.with_data(result.data)

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        if np.isnan(matrix.data).any():
            errors.append("Matrix contains NaN values")
        if self.method != NormalizationMethod.NONE and np.any(matrix.data < 0):
            errors.append("Matrix contains negative values (expected raw counts)")
        return errors
