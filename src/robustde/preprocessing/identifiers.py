"""
Gene identifier mapping from a pre-built table.

Count matrices are usually keyed by versioned Ensembl gene IDs
(ENSG00000141510.16) while results are read by HGNC symbol (TP53). The
mapping table is built once outside the pipeline (BioMart export, mygene.info
dump, ...) and passed in; this module performs no network lookups.

Several Ensembl IDs can map to the same symbol, so the mapped matrix may
contain duplicate feature IDs. Run DuplicateAggregator afterwards.

Examples:
    >>> from robustde.preprocessing.identifiers import IdentifierMapper, load_mapping_table
    >>>
    >>> mapping = load_mapping_table("ensembl_to_symbol.csv")
    >>> mapped = IdentifierMapper(mapping).apply(matrix)
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd

from robustde.core.biomatrix import BioMatrix
from robustde.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ['load_mapping_table', 'strip_version', 'IdentifierMapper']

_VERSION_SUFFIX = re.compile(r'^(ENS[A-Z]*\d+)\.\d+$')


def strip_version(identifier: str) -> str:
    """Drop an Ensembl version suffix: ENSG00000141510.16 -> ENSG00000141510."""
    match = _VERSION_SUFFIX.match(str(identifier))
    return match.group(1) if match else str(identifier)


def load_mapping_table(
    path: Path,
    source_col: Optional[str] = None,
    target_col: Optional[str] = None,
) -> Dict[str, str]:
    """
    Load an identifier mapping table.

    Args:
        path: CSV or TSV file (delimiter chosen by extension)
        source_col: Column with source IDs (default: first column)
        target_col: Column with target IDs (default: second column)

    Returns:
        Dict source_id -> target_id. Rows with a blank target are dropped;
        for repeated sources the first row wins.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the table has fewer than two columns or a named
            column is missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Mapping table not found: {path}")

    sep = '\t' if path.suffix.lower() in ('.tsv', '.txt') else ','
    df = pd.read_csv(path, sep=sep, dtype=str)

    if df.shape[1] < 2:
        raise ValueError(f"Mapping table needs at least two columns: {path}")

    source_col = source_col or df.columns[0]
    target_col = target_col or df.columns[1]
    missing = [c for c in (source_col, target_col) if c not in df.columns]
    if missing:
        raise ValueError(f"Mapping columns not found in {path}: {missing}")

    table = df[[source_col, target_col]].dropna()
    table = table[table[target_col].str.strip() != '']
    table = table.drop_duplicates(subset=source_col, keep='first')

    mapping = dict(zip(table[source_col].str.strip(), table[target_col].str.strip()))
    logger.info(f"Loaded {len(mapping):,} identifier mappings from {path}")
    return mapping


class IdentifierMapper(Transform):
    """
    Rename feature IDs through a mapping table.

    Params:
        mapping: source_id -> target_id
        keep_unmapped: Keep unmapped genes under their original ID instead
            of dropping them
        strip_version: Also try the ID without its Ensembl version suffix
    """

    def __init__(
        self,
        mapping: Mapping[str, str],
        keep_unmapped: bool = False,
        strip_version: bool = True,
    ):
        super().__init__(
            name="IdentifierMapper",
            params={
                "n_mappings": len(mapping),
                "keep_unmapped": keep_unmapped,
                "strip_version": strip_version,
            }
        )
        self.mapping = dict(mapping)
        self.keep_unmapped = keep_unmapped
        self.strip_version = strip_version

    def _lookup(self, identifier) -> Optional[str]:
        key = str(identifier)
        if key in self.mapping:
            return self.mapping[key]
        if self.strip_version:
            return self.mapping.get(strip_version(key))
        return None

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        self._raise_if_invalid(matrix)

        targets = [self._lookup(fid) for fid in matrix.feature_ids]
        mapped = np.array([t is not None for t in targets], dtype=bool)
        n_unmapped = int((~mapped).sum())

        if self.keep_unmapped:
            new_ids = [t if t is not None else str(f) for t, f in zip(targets, matrix.feature_ids)]
            keep = np.ones(matrix.n_features, dtype=bool)
        else:
            new_ids = [t for t in targets if t is not None]
            keep = mapped

        logger.info(
            f"Identifier mapping: {int(mapped.sum())}/{matrix.n_features} mapped, "
            f"{n_unmapped} unmapped ({'kept' if self.keep_unmapped else 'dropped'})"
        )

        return BioMatrix(
            data=matrix.data[keep, :],
            feature_ids=pd.Index(new_ids, name=matrix.feature_ids.name),
            sample_ids=matrix.sample_ids,
            sample_metadata=matrix.sample_metadata,
        )

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        if not self.mapping:
            errors.append("Mapping table is empty")
        return errors
