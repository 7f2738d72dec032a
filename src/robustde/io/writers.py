"""
Writers for differential scores and expression matrices.

Scores go to a single Excel workbook so reviewers can open Z-scores and FDR
side by side, with one sheet per quantity:

    zscore          genes × samples Z-scores
    fdr             genes × samples BH-adjusted p-values
    pvalue_raw      genes × samples unadjusted p-values (optional)
    outliers_genes  flagged genes with their robust distances (optional)
    outliers_samples
                    flagged samples with their robust distances (optional)

Gene and sample labels are written verbatim as row/column headers.
CSV output is available for very large panels where Excel's row limit
(1,048,576) or write time is a concern.

Examples:
    >>> from robustde.io.writers import write_score_workbook
    >>> write_score_workbook(scores, Path("results/scores.xlsx"),
    ...                      partitions={"genes": gene_partition})
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional

import pandas as pd

from robustde.core.biomatrix import BioMatrix
from robustde.quality.outliers import OutlierPartitionResult
from robustde.stats.scoring import ScoreMatrix

logger = logging.getLogger(__name__)

__all__ = ['write_score_workbook', 'write_score_csv', 'write_csv_matrix']

_EXCEL_MAX_ROWS = 1_048_576
_EXCEL_MAX_COLS = 16_384


def _prepare_path(path: Path) -> Path:
    path = Path(path)
    if path.parent != Path('.') and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def write_score_workbook(
    scores: ScoreMatrix,
    path: Path,
    partitions: Optional[Mapping[str, OutlierPartitionResult]] = None,
    include_raw: bool = True,
) -> Path:
    """
    Write Z-scores and adjusted p-values to an .xlsx workbook.

    Args:
        scores: Result of compute_scores()
        path: Output file; ".xlsx" is appended when missing
        partitions: Optional {"genes": ..., "samples": ...} outlier results,
            each written to an outliers_<axis> sheet
        include_raw: Also write the unadjusted p-values

    Returns:
        Path of the written workbook

    Raises:
        TypeError: If scores is not a ScoreMatrix
        ValueError: If the matrix exceeds Excel's sheet size
    """
    if not isinstance(scores, ScoreMatrix):
        raise TypeError(f"scores must be ScoreMatrix, got {type(scores)}")

    n_genes, n_samples = scores.shape
    if n_genes + 1 > _EXCEL_MAX_ROWS or n_samples + 1 > _EXCEL_MAX_COLS:
        raise ValueError(
            f"{n_genes} × {n_samples} exceeds the Excel sheet limit; use write_score_csv()"
        )

    path = _prepare_path(path)
    if path.suffix.lower() != '.xlsx':
        path = Path(str(path) + '.xlsx')

    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        scores.z.to_excel(writer, sheet_name='zscore')
        scores.p.to_excel(writer, sheet_name='fdr')
        if include_raw:
            scores.p_raw.to_excel(writer, sheet_name='pvalue_raw')

        for axis, partition in (partitions or {}).items():
            partition.to_dataframe(outliers_only=True).to_excel(
                writer, sheet_name=f'outliers_{axis}'
            )

    logger.info(f"Wrote {n_genes} × {n_samples} scores to {path}")
    return path


def write_score_csv(scores: ScoreMatrix, path: Path) -> tuple[Path, Path]:
    """
    Write Z-scores and adjusted p-values as two CSV files.

    Output Files:
        {path}.zscore.csv
        {path}.fdr.csv
    """
    if not isinstance(scores, ScoreMatrix):
        raise TypeError(f"scores must be ScoreMatrix, got {type(scores)}")

    path = _prepare_path(path)
    z_path = Path(str(path) + '.zscore.csv')
    fdr_path = Path(str(path) + '.fdr.csv')

    scores.z.to_csv(z_path)
    scores.p.to_csv(fdr_path)

    logger.info(f"Wrote Z-scores to {z_path} and FDR to {fdr_path}")
    return z_path, fdr_path


def write_csv_matrix(matrix: BioMatrix, path: Path) -> Path:
    """
    Write a BioMatrix as {path}.data.csv (features as rows).

    Raises:
        TypeError: If matrix is not a BioMatrix
        ValueError: If matrix is empty
    """
    if not isinstance(matrix, BioMatrix):
        raise TypeError(f"matrix must be BioMatrix, got {type(matrix)}")
    if matrix.data.size == 0:
        raise ValueError("Cannot write empty matrix")

    path = _prepare_path(path)
    data_path = Path(str(path) + '.data.csv')
    matrix.to_frame().to_csv(data_path)

    logger.info(f"Wrote data matrix to {data_path}")
    return data_path
