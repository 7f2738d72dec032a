"""
Input/output for count matrices and differential scores.

Loaders:
    load_count_matrix: GCT or delimited genes × samples counts -> BioMatrix
    load_sample_metadata: Per-sample annotation table
    parse_lineage: CCLE-style {CELL_LINE}_{LINEAGE} name parsing

Writers:
    write_score_workbook: Z-score / FDR / outlier sheets in one .xlsx
    write_score_csv: {path}.zscore.csv and {path}.fdr.csv
    write_csv_matrix: {path}.data.csv
"""

from robustde.io.loaders import (
    load_count_matrix,
    load_sample_metadata,
    parse_lineage,
    sniff_delimiter,
)
from robustde.io.writers import (
    write_score_workbook,
    write_score_csv,
    write_csv_matrix,
)

__all__ = [
    'load_count_matrix',
    'load_sample_metadata',
    'parse_lineage',
    'sniff_delimiter',
    'write_score_workbook',
    'write_score_csv',
    'write_csv_matrix',
]
