"""
Loaders for RNA-seq count matrices.

Two layouts are supported:

GCT (Broad/CCLE release format)::

    #1.2
    56202	1019
    Name	Description	22RV1_PROSTATE	2313287_STOMACH	...
    ENSG00000223972.4	DDX11L1	0	1	...

Delimited text (CSV/TSV): first column holds gene IDs, remaining columns
are samples. Non-numeric annotation columns (e.g. "Description",
"gene_name") are dropped with a log message.

Cell-line names in CCLE follow ``{CELL_LINE}_{LINEAGE}``
(e.g. HCT116_LARGE_INTESTINE). With ``infer_lineage=True`` the lineage part
is parsed into ``sample_metadata['lineage']`` so the pipeline can score each
tissue group separately.

Examples:
    >>> from robustde.io.loaders import load_count_matrix
    >>> matrix = load_count_matrix("CCLE_RNAseq_genes_counts.gct")
    >>> matrix.sample_metadata['lineage'].value_counts().head()
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Literal, Optional
import warnings
import numpy as np
import pandas as pd

from robustde.core.biomatrix import BioMatrix

logger = logging.getLogger(__name__)

__all__ = [
    'load_count_matrix',
    'load_sample_metadata',
    'sniff_delimiter',
    'parse_lineage',
]

_GCT_ANNOTATION_COLUMNS = ('Name', 'Description')


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Auto-detect delimiter from file content.

    Uses csv.Sniffer with a first-line count fallback.

    Raises:
        ValueError: If delimiter cannot be determined
    """
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        sample = f.read(sample_size)

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters='\t,;|')
        return dialect.delimiter
    except csv.Error:
        pass

    first_line = sample.split('\n')[0]
    counts = {
        '\t': first_line.count('\t'),
        ',': first_line.count(','),
        ';': first_line.count(';'),
    }

    if max(counts.values()) == 0:
        raise ValueError(f"Could not detect delimiter in {path}")

    return max(counts, key=counts.get)


def _is_gct(path: Path) -> bool:
    if path.suffix.lower() == '.gct':
        return True
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        return f.readline().startswith('#1.')


def parse_lineage(sample_ids: pd.Index) -> pd.DataFrame:
    """
    Parse cell line and lineage from CCLE-style sample names.

    Examples:
        >>> parse_lineage(pd.Index(["HCT116_LARGE_INTESTINE", "A549_LUNG", "WEIRD"]))
                               cell_line          lineage
        HCT116_LARGE_INTESTINE    HCT116  LARGE_INTESTINE
        A549_LUNG                   A549             LUNG
        WEIRD                      WEIRD          UNKNOWN
    """
    cell_lines = []
    lineages = []
    for sample_id in sample_ids:
        name, sep, lineage = str(sample_id).partition('_')
        cell_lines.append(name)
        lineages.append(lineage if sep and lineage else 'UNKNOWN')

    return pd.DataFrame(
        {'cell_line': cell_lines, 'lineage': lineages},
        index=sample_ids,
    )


def _read_gct(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path, sep='\t', skiprows=2, index_col=0)
    return df.drop(columns=[c for c in _GCT_ANNOTATION_COLUMNS if c in df.columns])


def _read_delimited(path: Path) -> pd.DataFrame:
    sep = sniff_delimiter(path)
    df = pd.read_csv(path, sep=sep, index_col=0)

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    # Annotation columns are entirely non-numeric; a sample with one stray
    # token would be mostly numeric and is left for the numeric check below
    annotation = [c for c in non_numeric if pd.to_numeric(df[c], errors='coerce').isna().all()]
    if annotation:
        logger.info(f"Dropping non-numeric annotation columns: {annotation}")
        df = df.drop(columns=annotation)

    return df


def load_count_matrix(
    path: Path,
    format: Optional[Literal["gct", "delimited"]] = None,
    infer_lineage: bool = True,
) -> BioMatrix:
    """
    Load a genes × samples count matrix into a BioMatrix.

    Args:
        path: GCT, CSV or TSV file
        format: "gct" or "delimited"; auto-detected when None
        infer_lineage: Parse cell_line/lineage metadata from sample names

    Returns:
        BioMatrix with float counts. Missing values are kept as NaN
        (CoverageFilter removes the affected genes).

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file is empty, not a file, or contains
            non-numeric or infinite values
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Count matrix not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    if format is None:
        format = "gct" if _is_gct(path) else "delimited"

    try:
        df = _read_gct(path) if format == "gct" else _read_delimited(path)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Count matrix file is empty: {path}") from e

    if df.empty or df.shape[0] == 0 or df.shape[1] == 0:
        raise ValueError(f"Count matrix contains no data: {path}")

    try:
        data = df.to_numpy(dtype=float)
    except ValueError as e:
        raise ValueError(f"Count matrix contains non-numeric values: {path}: {e}") from e

    if np.isinf(data).any():
        raise ValueError(
            f"Count matrix contains {int(np.isinf(data).sum())} infinite values: {path}"
        )

    if np.isnan(data).any():
        n_nan = int(np.isnan(data).sum())
        warnings.warn(
            f"Found {n_nan:,} missing values ({100 * n_nan / data.size:.2f}% of data). "
            "Affected genes are dropped by the coverage filter.",
            UserWarning
        )

    feature_ids = pd.Index(df.index.astype(str), name='gene')
    sample_ids = pd.Index(df.columns.astype(str), name='sample')

    if infer_lineage:
        sample_metadata = parse_lineage(sample_ids)
    else:
        sample_metadata = pd.DataFrame(index=sample_ids)

    logger.info(f"Loaded {data.shape[0]:,} genes × {data.shape[1]:,} samples from {path} ({format})")

    return BioMatrix(
        data=data,
        feature_ids=feature_ids,
        sample_ids=sample_ids,
        sample_metadata=sample_metadata,
    )


def load_sample_metadata(path: Path, index_col: int | str = 0) -> pd.DataFrame:
    """
    Load per-sample annotations (e.g. a lineage table) keyed by sample ID.

    Raises:
        FileNotFoundError: If path does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sample metadata not found: {path}")

    df = pd.read_csv(path, sep=sniff_delimiter(path), index_col=index_col)
    df.index = df.index.astype(str)
    return df
