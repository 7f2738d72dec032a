"""
Per-gene Z-scores and FDR-adjusted p-values across a cell-line panel.

Each gene is scored against its own distribution across samples: a cell
line whose expression of a gene sits far from the panel mean, relative to
the panel spread, is flagged as differentially expressing that gene.

    z[i, j] = (x[i, j] - mean_i) / sd_i
    p[i, j] = 2 * (1 - Phi(|z[i, j]|))             two-tailed, clipped to [0, 1]

Every cell is one hypothesis. The p-values are flattened in row-major (C)
order, corrected together with Benjamini-Hochberg, and reshaped back, so the
FDR is controlled over the whole matrix rather than per gene.

Conventions:
    - Standard deviation is the population form (ddof=0) by default, the
      same as scipy.stats.zscore. With few samples this gives larger |z|
      than ddof=1; pass ddof=1 for the sample form.
    - A constant gene has no Z-score. By default this raises
      DegenerateRowError naming the gene. on_degenerate="nan" instead
      writes NaN for that gene's z and p, lists it in
      ScoreMatrix.degenerate_rows and leaves it out of the FDR correction.

References:
    - Benjamini & Hochberg (1995) J R Stat Soc B 57(1):289-300
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats as scipy_stats

from robustde.core.biomatrix import BioMatrix
from robustde.core.errors import DegenerateRowError, NumericOverflowError, ShapeMismatchError

logger = logging.getLogger(__name__)

__all__ = ['ScoreMatrix', 'compute_scores', 'fdr_correction']

# sd below this fraction of max(1, |mean|) counts as zero
_DEGENERATE_RTOL = 1e-12


@dataclass(frozen=True)
class ScoreMatrix:
    """Z-scores and p-values with the input's labels.

    Attributes:
        z: Z-score per cell (genes × samples)
        p: FDR-adjusted two-tailed p-value per cell
        p_raw: Unadjusted two-tailed p-value per cell
        ddof: Delta degrees of freedom used for the standard deviation
        fdr_method: Multiple testing correction applied
        degenerate_rows: Genes given the NaN sentinel (empty unless
            on_degenerate="nan")
    """

    z: pd.DataFrame
    p: pd.DataFrame
    p_raw: pd.DataFrame
    ddof: int = 0
    fdr_method: str = "BH"
    degenerate_rows: pd.Index = field(default_factory=lambda: pd.Index([]))

    @property
    def shape(self) -> tuple[int, int]:
        return self.z.shape

    def significant(self, alpha: float = 0.05) -> pd.DataFrame:
        """Boolean mask of cells with adjusted p < alpha."""
        return self.p < alpha

    def summary(self, alpha: float = 0.05) -> dict:
        """Counts of tested and significant cells."""
        sig = self.significant(alpha)
        n_tested = int(self.p.notna().to_numpy().sum())
        n_sig = int(sig.to_numpy().sum())
        return {
            "n_genes": self.z.shape[0],
            "n_samples": self.z.shape[1],
            "n_tested": n_tested,
            "n_significant": n_sig,
            "fraction_significant": n_sig / n_tested if n_tested else 0.0,
            "n_up": int(((self.z > 0) & sig).to_numpy().sum()),
            "n_down": int(((self.z < 0) & sig).to_numpy().sum()),
            "n_degenerate_rows": len(self.degenerate_rows),
            "alpha": alpha,
            "fdr_method": self.fdr_method,
            "ddof": self.ddof,
        }


def fdr_correction(
    pvalues: NDArray[np.float64],
    method: Literal["BH", "BY", "bonferroni"] = "BH",
    alpha: float = 0.05,
) -> NDArray[np.float64]:
    """
    Apply multiple testing correction.

    Args:
        pvalues: Array of raw p-values. NaN entries are left untouched and
            do not count towards the number of tests.
        method: Correction method:
            - "BH": Benjamini-Hochberg (controls FDR)
            - "BY": Benjamini-Yekutieli (controls FDR under dependence)
            - "bonferroni": Bonferroni (controls FWER)
        alpha: Significance threshold.

    Returns:
        Array of adjusted p-values, same shape as the input.
    """
    from statsmodels.stats.multitest import multipletests

    pvalues = np.asarray(pvalues, dtype=float)
    valid_mask = ~np.isnan(pvalues)
    adj_pvals = np.full_like(pvalues, np.nan)

    if not np.any(valid_mask):
        return adj_pvals

    method_map = {"BH": "fdr_bh", "BY": "fdr_by", "bonferroni": "bonferroni"}
    _, adj_pvals[valid_mask], _, _ = multipletests(
        pvalues[valid_mask],
        alpha=alpha,
        method=method_map.get(method, method),
    )

    return adj_pvals


def _as_frame(matrix: BioMatrix | pd.DataFrame | NDArray[np.float64]) -> pd.DataFrame:
    if isinstance(matrix, BioMatrix):
        return matrix.to_frame()
    if isinstance(matrix, pd.DataFrame):
        return matrix.astype(float)
    values = np.asarray(matrix, dtype=float)
    if values.ndim != 2:
        raise ShapeMismatchError(f"Expected 2D matrix, got shape {values.shape}", stage="score")
    return pd.DataFrame(values)


def compute_scores(
    matrix: BioMatrix | pd.DataFrame | NDArray[np.float64],
    *,
    ddof: int = 0,
    fdr_method: Literal["BH", "BY", "bonferroni"] = "BH",
    on_degenerate: Literal["raise", "nan"] = "raise",
) -> ScoreMatrix:
    """
    Row-wise Z-scores, two-tailed p-values and matrix-wide FDR correction.

    Args:
        matrix: Normalized (log-scale) expression, genes × samples, no
            missing values. BioMatrix, DataFrame or 2D array.
        ddof: 0 for population standard deviation (default), 1 for sample.
        fdr_method: "BH" (default), "BY" or "bonferroni".
        on_degenerate: "raise" (default) or "nan" for constant genes.

    Returns:
        ScoreMatrix with labels identical to the input.

    Raises:
        DegenerateRowError: Constant gene with on_degenerate="raise"
        NumericOverflowError: NaN/Inf in the input or in the computed scores
        ShapeMismatchError: Input is not 2D
    """
    if on_degenerate not in ("raise", "nan"):
        raise ValueError(f"on_degenerate must be 'raise' or 'nan', got '{on_degenerate}'")

    df = _as_frame(matrix)
    values = df.to_numpy(dtype=float)
    n_genes, n_samples = values.shape

    if n_samples <= ddof:
        raise ShapeMismatchError(
            f"Need more than {ddof} samples for ddof={ddof}, got {n_samples}", stage="score"
        )

    finite_rows = np.all(np.isfinite(values), axis=1)
    if not finite_rows.all():
        raise NumericOverflowError(
            "Matrix contains non-finite values",
            stage="score", row=df.index[np.flatnonzero(~finite_rows)[0]],
        )

    mu = values.mean(axis=1, keepdims=True)
    sigma = values.std(axis=1, ddof=ddof, keepdims=True)

    degenerate = (sigma <= _DEGENERATE_RTOL * np.maximum(1.0, np.abs(mu))).ravel()
    if degenerate.any():
        first = df.index[np.flatnonzero(degenerate)[0]]
        if on_degenerate == "raise":
            raise DegenerateRowError(
                f"Zero variance across {n_samples} samples; Z-score undefined "
                f"({int(degenerate.sum())} constant rows)",
                stage="score", row=first,
            )
        logger.warning(
            f"{int(degenerate.sum())} constant rows scored as NaN (first: {first})"
        )

    safe_sigma = np.where(degenerate[:, None], 1.0, sigma)
    z = (values - mu) / safe_sigma
    z[degenerate] = np.nan

    p_raw = np.clip(2.0 * scipy_stats.norm.sf(np.abs(z)), 0.0, 1.0)

    scored = ~degenerate
    if not (np.all(np.isfinite(z[scored])) and np.all(np.isfinite(p_raw[scored]))):
        bad_rows = ~np.all(np.isfinite(z) & np.isfinite(p_raw), axis=1) & scored
        raise NumericOverflowError(
            "Non-finite Z-score or p-value",
            stage="score", row=df.index[np.flatnonzero(bad_rows)[0]],
        )

    # One family of tests: every cell, flattened row-major
    p_adj = fdr_correction(p_raw.ravel(order="C"), method=fdr_method).reshape(
        (n_genes, n_samples), order="C"
    )
    p_adj = np.clip(p_adj, 0.0, 1.0)

    logger.info(
        f"Scored {n_genes} genes × {n_samples} samples (ddof={ddof}, {fdr_method}); "
        f"{int(np.sum(p_adj < 0.05))} cells with adjusted p < 0.05"
    )

    return ScoreMatrix(
        z=pd.DataFrame(z, index=df.index, columns=df.columns),
        p=pd.DataFrame(p_adj, index=df.index, columns=df.columns),
        p_raw=pd.DataFrame(p_raw, index=df.index, columns=df.columns),
        ddof=ddof,
        fdr_method=fdr_method,
        degenerate_rows=df.index[degenerate],
    )
