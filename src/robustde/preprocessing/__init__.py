"""
Preprocessing stages run before quality control.

    IdentifierMapper: Rename genes through a pre-built mapping table
    DuplicateAggregator: Collapse duplicate genes (sum) or samples (mean)
"""

from robustde.preprocessing.identifiers import (
    IdentifierMapper,
    load_mapping_table,
    strip_version,
)
from robustde.preprocessing.aggregation import DuplicateAggregator

__all__ = [
    'IdentifierMapper',
    'load_mapping_table',
    'strip_version',
    'DuplicateAggregator',
]
