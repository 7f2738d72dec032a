"""
Robust principal component analysis (ROBPCA) for outlier screening.

Classical PCA is driven by the covariance matrix, and a single extreme gene
(or a contaminated cell line) inflates that covariance enough to rotate the
leading components towards itself. The outlier then looks ordinary in its
own coordinate system. ROBPCA avoids this by building the principal subspace
from the least outlying part of the data only.

Algorithm (Hubert, Rousseeuw & Vanden Branden, 2005):
    1. Reduce the data to its affine span with an SVD (handles p > n).
    2. Projection pursuit: project every row on directions through pairs of
       rows and standardize each projection with median/MAD. A row's
       outlyingness is its worst standardized deviation. The h least
       outlying rows form the clean subset H0.
    3. Fit a k-dimensional subspace to H0, then refine it with the rows
       whose orthogonal distance to that subspace is acceptable.
    4. Estimate location and scatter inside the subspace with the minimum
       covariance determinant (MCD) estimator: FastMCD for k >= 2, the exact
       shortest-window MCD for k = 1, then one consistency-corrected
       reweighting step. If the MCD subset is an exact fit (it spans fewer
       than k dimensions), k is reduced to its span and the step repeated.
    5. Compute, for every row, the score distance (robust Mahalanobis
       distance inside the subspace) and the orthogonal distance (residual
       distance to the subspace), and flag rows exceeding either cutoff.

Cutoffs:
    - Score distance: sqrt(chi2_{k, q})
    - Orthogonal distance: Wilson-Hilferty, OD^(2/3) approximately normal,
      cutoff = (mu + sigma * z_q)^(3/2) with mu, sigma the univariate MCD
      estimates of OD^(2/3)

Determinism:
    Random direction sampling (large n) and the MCD search are both driven
    by ``seed``; the same seed always yields the same partition.

References:
    - Hubert, Rousseeuw & Vanden Branden (2005) "ROBPCA: A New Approach to
      Robust Principal Component Analysis", Technometrics 47(1):64-79
    - Rousseeuw & Van Driessen (1999) "A Fast Algorithm for the Minimum
      Covariance Determinant Estimator", Technometrics 41(3):212-223
    - Todorov & Filzmoser (2009) rrcov, J Stat Softw 32(3)

Examples:
    >>> import numpy as np
    >>> from robustde.quality.robust_pca import robpca
    >>>
    >>> rng = np.random.default_rng(0)
    >>> X = rng.normal(size=(50, 6))
    >>> X[0] += 25
    >>> result = robpca(X, seed=0)
    >>> bool(result.inlier_mask[0])
    False
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy import stats
from sklearn.covariance import fast_mcd

from robustde.core.errors import (
    InsufficientDataError,
    NumericOverflowError,
    ShapeMismatchError,
)

logger = logging.getLogger(__name__)

__all__ = [
    'RobustPCAResult',
    'robpca',
    'h_alpha_n',
    'MIN_OBSERVATIONS',
    'MIN_VARIABLES',
]

MIN_OBSERVATIONS = 3
MIN_VARIABLES = 2

# Consistency constant for MAD under normality
_MAD_SCALE = 1.4826
# Singular values below this fraction of the largest are treated as zero
_RANK_RTOL = 1e-9


@dataclass(frozen=True)
class RobustPCAResult:
    """Fitted ROBPCA model and per-row diagnostics.

    Attributes:
        center: Robust center in the original variable space (p,)
        loadings: Robust principal directions (p × k), orthonormal columns
        eigenvalues: Robust variances along each direction (k,)
        scores: Row coordinates in the robust subspace (n × k)
        score_distances: Robust Mahalanobis distance within the subspace (n,)
        orthogonal_distances: Residual distance to the subspace (n,)
        score_cutoff: Cutoff for score distances
        orthogonal_cutoff: Cutoff for orthogonal distances
        outlyingness: Projection-pursuit outlyingness of each row (n,)
        h: Size of the clean subset
        n_components: Number of robust components k
        rank: Rank r of the centred data
    """

    center: NDArray[np.float64]
    loadings: NDArray[np.float64]
    eigenvalues: NDArray[np.float64]
    scores: NDArray[np.float64]
    score_distances: NDArray[np.float64]
    orthogonal_distances: NDArray[np.float64]
    score_cutoff: float
    orthogonal_cutoff: float
    outlyingness: NDArray[np.float64]
    h: int
    n_components: int
    rank: int

    @property
    def inlier_mask(self) -> NDArray[np.bool_]:
        """Rows under both cutoffs."""
        return (
            (self.score_distances <= self.score_cutoff)
            & (self.orthogonal_distances <= self.orthogonal_cutoff)
        )


def h_alpha_n(alpha: float, n: int, k: int) -> int:
    """
    Size of the clean subset for n rows and k components.

    Matches the rrcov convention: h = n2 for alpha = 0.5 with
    n2 = floor((n + k + 1) / 2), growing linearly to n as alpha -> 1.
    """
    n2 = (n + k + 1) // 2
    return int(np.floor(2 * n2 - n + 2 * (n - n2) * alpha))


def _sorted_eigh(cov: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Eigen-decomposition with eigenvalues in decreasing order."""
    cov = np.atleast_2d(cov)
    evals, evecs = np.linalg.eigh(cov)
    order = np.argsort(evals)[::-1]
    return np.clip(evals[order], 0.0, None), evecs[:, order]


def _outlyingness(
    Z: NDArray[np.float64],
    n_directions: int,
    rng: np.random.Generator,
    tol: float,
) -> NDArray[np.float64]:
    """
    Stahel-Donoho outlyingness over directions through pairs of rows.

    Each projection is standardized with median/MAD, which outliers cannot
    inflate the way they inflate the variance. Directions whose MAD is zero
    carry no scale information and are skipped.
    """
    n = Z.shape[0]
    n_pairs = n * (n - 1) // 2

    if n_pairs <= n_directions:
        i, j = np.triu_indices(n, k=1)
    else:
        i = rng.integers(0, n, size=n_directions)
        j = rng.integers(0, n - 1, size=n_directions)
        j = j + (j >= i)

    directions = Z[i] - Z[j]
    norms = np.linalg.norm(directions, axis=1)
    directions = directions[norms > tol] / norms[norms > tol, None]

    if directions.shape[0] > 0:
        projections = Z @ directions.T
        medians = np.median(projections, axis=0)
        deviations = np.abs(projections - medians)
        mads = _MAD_SCALE * np.median(deviations, axis=0)
        usable = mads > tol
        if usable.any():
            return np.max(deviations[:, usable] / mads[usable], axis=1)

    # No usable direction: fall back to distance from the coordinate-wise median
    return np.linalg.norm(Z - np.median(Z, axis=0), axis=1)


def _orthogonal_distances(
    Z: NDArray[np.float64],
    center: NDArray[np.float64],
    P: NDArray[np.float64],
) -> NDArray[np.float64]:
    centered = Z - center
    residuals = centered - (centered @ P) @ P.T
    return np.linalg.norm(residuals, axis=1)


def _consistency_factor(k: int, fraction: float) -> float:
    """
    Scale making a covariance estimated on the central ``fraction`` of a
    k-variate normal sample consistent (Croux & Haesbroeck, 1999).
    """
    if fraction >= 1.0:
        return 1.0
    return float(fraction / stats.chi2.cdf(stats.chi2.ppf(fraction, k), k + 2))


def _shortest_window(x: NDArray[np.float64], h: int) -> NDArray[np.intp]:
    """Indices of the h consecutive order statistics with the smallest variance."""
    order = np.argsort(x, kind="stable")
    xs = x[order] - np.median(x)

    sums = np.concatenate([[0.0], np.cumsum(xs)])
    squares = np.concatenate([[0.0], np.cumsum(xs ** 2)])
    window_sums = sums[h:] - sums[:-h]
    window_squares = squares[h:] - squares[:-h]
    variances = window_squares / h - (window_sums / h) ** 2

    start = int(np.argmin(variances))
    return order[start:start + h]


def _univariate_mcd(x: NDArray[np.float64], h: int) -> tuple[float, float]:
    """
    Reweighted univariate MCD location and scale.

    The raw estimate is the mean/SD of the shortest h-window; values within
    the 97.5% normal band of it are then averaged again.
    """
    n = len(x)
    support = _shortest_window(x, h)
    loc = float(x[support].mean())
    var = float(x[support].var()) * _consistency_factor(1, h / n)
    if var <= 0:
        return loc, 0.0

    keep = (x - loc) ** 2 / var <= stats.chi2.ppf(0.975, 1)
    reweighted = float(x[keep].var()) * _consistency_factor(1, 0.975)
    if reweighted <= 0:
        return loc, float(np.sqrt(var))
    return float(x[keep].mean()), float(np.sqrt(reweighted))


def _orthogonal_cutoff(od: NDArray[np.float64], h: int, quantile: float, floor: float) -> float:
    """
    Wilson-Hilferty cutoff for orthogonal distances.

    OD^(2/3) is approximately normal; its location and scale come from the
    univariate MCD over h values, so a few large distances cannot inflate
    the cutoff and a handful of small ones cannot collapse it.
    """
    loc, scale = _univariate_mcd(od ** (2.0 / 3.0), h)
    cutoff = max(loc + scale * stats.norm.ppf(quantile), 0.0) ** 1.5
    return float(max(cutoff, floor))


def _mcd_support(T: NDArray[np.float64], h: int, seed: int) -> NDArray[np.intp]:
    """Rows of the raw MCD subset of size h."""
    if T.shape[1] == 1:
        return _shortest_window(T[:, 0], h)

    n = T.shape[0]
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        _, _, support, _ = fast_mcd(T, support_fraction=(h + 0.5) / n, random_state=seed)
    return np.flatnonzero(support)


def _reweighted_scatter(
    T: NDArray[np.float64],
    support: NDArray[np.intp],
    quantile: float = 0.975,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Location and scatter of the scores, reweighted from a raw MCD subset.

    The raw subset covariance is made consistent, rows within the chi-square
    band are kept, and the kept rows give the final estimate. If too few rows
    survive for a full-rank scatter, the raw estimate is returned.
    """
    n, k = T.shape
    raw_location = T[support].mean(axis=0)
    raw_scatter = np.atleast_2d(np.cov(T[support], rowvar=False, bias=True))
    raw_scatter = raw_scatter * _consistency_factor(k, len(support) / n)

    centered = T - raw_location
    d2 = np.sum(centered @ np.linalg.pinv(raw_scatter) * centered, axis=1)
    keep = d2 <= stats.chi2.ppf(quantile, k)
    if keep.sum() <= k:
        return raw_location, raw_scatter

    location = T[keep].mean(axis=0)
    scatter = np.atleast_2d(np.cov(T[keep], rowvar=False, bias=True))
    scatter = scatter * _consistency_factor(k, quantile)

    evals = np.linalg.eigvalsh(scatter)
    if evals[0] <= evals[-1] * _RANK_RTOL:
        return raw_location, raw_scatter
    return location, scatter


def _choose_components(
    evals: NDArray[np.float64],
    n_components: Optional[int],
    kmax: int,
    var_explained: float,
) -> int:
    positive = int(np.sum(evals > evals[0] * _RANK_RTOL))
    limit = max(1, min(kmax, positive))

    if n_components is not None:
        if n_components > limit:
            logger.info(f"Requested {n_components} components, using {limit} (rank/kmax limit)")
        return max(1, min(n_components, limit))

    cumulative = np.cumsum(evals) / evals.sum()
    k = int(np.searchsorted(cumulative, var_explained - 1e-12) + 1)
    return max(1, min(k, limit))


def robpca(
    X: NDArray[np.float64],
    n_components: Optional[int] = None,
    kmax: int = 10,
    alpha: float = 0.75,
    var_explained: float = 0.8,
    n_directions: int = 250,
    quantile: float = 0.975,
    seed: int = 0,
    axis: Optional[str] = None,
) -> RobustPCAResult:
    """
    Fit ROBPCA and compute score/orthogonal distances for every row.

    Rows are observations, columns are variables. To screen genes pass a
    genes × samples matrix; to screen samples pass its transpose.

    Args:
        X: 2D array (n_rows, n_variables), finite values only.
        n_components: Number of robust components. If None, the smallest k
            explaining ``var_explained`` of the clean-subset variance.
        kmax: Upper bound on k (also bounded by rank and n/2).
        alpha: Coverage of the clean subset, in [0.5, 1]. Lower values
            tolerate more contamination at the cost of efficiency.
        var_explained: Variance fraction used to pick k automatically.
        n_directions: Maximum number of projection-pursuit directions. All
            pairs are used when there are fewer.
        quantile: Quantile for both distance cutoffs.
        seed: Seed for direction sampling and the MCD search.
        axis: Label reported in errors ("genes" or "samples").

    Returns:
        RobustPCAResult with distances, cutoffs and the fitted subspace.

    Raises:
        ShapeMismatchError: If X is not 2D
        NumericOverflowError: If X contains NaN/Inf or distances overflow
        InsufficientDataError: If X is too small or has zero rank
    """
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ShapeMismatchError(f"Expected 2D array, got {X.ndim}D", stage="filter", axis=axis)

    n, p = X.shape

    if n < MIN_OBSERVATIONS or p < MIN_VARIABLES:
        raise InsufficientDataError(
            f"Robust covariance needs at least {MIN_OBSERVATIONS} rows and "
            f"{MIN_VARIABLES} columns, got {n} × {p}",
            stage="filter", axis=axis,
        )

    finite_rows = np.all(np.isfinite(X), axis=1)
    if not finite_rows.all():
        raise NumericOverflowError(
            "Matrix contains non-finite values",
            stage="filter", axis=axis, row=int(np.flatnonzero(~finite_rows)[0]),
        )

    if not 0.5 <= alpha <= 1.0:
        raise ValueError(f"alpha must be in [0.5, 1], got {alpha}")
    if not 0.0 < quantile < 1.0:
        raise ValueError(f"quantile must be in (0, 1), got {quantile}")

    rng = np.random.default_rng(seed)
    scale = max(1.0, float(np.abs(X).max()))
    tol = np.sqrt(np.finfo(float).eps) * scale

    # 1. Affine span of the data
    mean = X.mean(axis=0)
    Xc = X - mean
    _, s, Vt = np.linalg.svd(Xc, full_matrices=False)
    if s[0] <= tol:
        raise InsufficientDataError(
            "All rows are identical; no variability to model", stage="filter", axis=axis
        )
    rank = int(np.sum(s > s[0] * _RANK_RTOL))
    V = Vt[:rank].T
    Z = Xc @ V

    kmax = max(1, min(kmax, rank, n // 2))
    h = min(n, max(h_alpha_n(alpha, n, kmax), kmax + 1))

    # 2. Projection pursuit -> clean subset H0
    outl = _outlyingness(Z, n_directions, rng, tol)
    h0 = np.argsort(outl, kind="stable")[:h]

    center0 = Z[h0].mean(axis=0)
    evals0, evecs0 = _sorted_eigh(np.cov(Z[h0], rowvar=False))
    if evals0[0] <= 0:
        raise InsufficientDataError(
            f"The {h} least outlying rows are identical; scatter is degenerate",
            stage="filter", axis=axis,
        )

    k = _choose_components(evals0, n_components, kmax, var_explained)
    P0 = evecs0[:, :k]

    # 3. Refine the subspace on the h rows closest to it
    center1, P1 = center0, P0
    if k < rank:
        od0 = _orthogonal_distances(Z, center0, P0)
        closest = np.zeros(n, dtype=bool)
        closest[np.argsort(od0, kind="stable")[:h]] = True
        keep = closest & (od0 <= _orthogonal_cutoff(od0, h, quantile, tol))
        if keep.sum() > k:
            center1 = Z[keep].mean(axis=0)
            evals1, evecs1 = _sorted_eigh(np.cov(Z[keep], rowvar=False))
            if evals1[k - 1] > evals1[0] * _RANK_RTOL:
                P1 = evecs1[:, :k]
            else:
                center1 = center0

    # 4. MCD location/scatter inside the subspace. An exact fit (the MCD
    # subset spans fewer than k dimensions) reduces k to that span.
    while True:
        T = (Z - center1) @ P1
        support = _mcd_support(T, h, seed)
        fit_evals, fit_evecs = _sorted_eigh(np.cov(T[support], rowvar=False, bias=True))
        if fit_evals[0] <= tol ** 2:
            raise InsufficientDataError(
                f"The {h} rows of the MCD subset coincide in the robust subspace",
                stage="filter", axis=axis,
            )
        fit_rank = int(np.sum(fit_evals > fit_evals[0] * _RANK_RTOL))
        if fit_rank == k:
            break
        logger.info(f"Exact fit: MCD subset spans {fit_rank} of {k} components, reducing k")
        P1 = P1 @ fit_evecs[:, :fit_rank]
        k = fit_rank

    location, scatter = _reweighted_scatter(T, support)

    evals, evecs = _sorted_eigh(scatter)
    center_z = center1 + P1 @ location
    P_z = P1 @ evecs

    scores = (Z - center_z) @ P_z

    # 5. Distances and cutoffs
    with np.errstate(divide="ignore", invalid="ignore"):
        score_distances = np.sqrt(np.sum(scores ** 2 / evals, axis=1))
    if not np.all(np.isfinite(score_distances)):
        bad = int(np.flatnonzero(~np.isfinite(score_distances))[0])
        raise NumericOverflowError(
            "Non-finite score distance (robust scatter is singular)",
            stage="filter", axis=axis, row=bad,
        )
    score_cutoff = float(np.sqrt(stats.chi2.ppf(quantile, k)))

    if k < rank:
        orthogonal_distances = _orthogonal_distances(Z, center_z, P_z)
        orthogonal_cutoff = _orthogonal_cutoff(orthogonal_distances, h, quantile, tol)
    else:
        # Subspace spans the data: every residual is zero
        orthogonal_distances = np.zeros(n)
        orthogonal_cutoff = 0.0

    if not np.all(np.isfinite(orthogonal_distances)):
        bad = int(np.flatnonzero(~np.isfinite(orthogonal_distances))[0])
        raise NumericOverflowError(
            "Non-finite orthogonal distance", stage="filter", axis=axis, row=bad
        )

    logger.debug(
        f"ROBPCA: n={n}, p={p}, rank={rank}, k={k}, h={h}, "
        f"sd_cutoff={score_cutoff:.3f}, od_cutoff={orthogonal_cutoff:.3g}"
    )

    return RobustPCAResult(
        center=mean + V @ center_z,
        loadings=V @ P_z,
        eigenvalues=evals,
        scores=scores,
        score_distances=score_distances,
        orthogonal_distances=orthogonal_distances,
        score_cutoff=score_cutoff,
        orthogonal_cutoff=orthogonal_cutoff,
        outlyingness=outl,
        h=h,
        n_components=k,
        rank=rank,
    )
