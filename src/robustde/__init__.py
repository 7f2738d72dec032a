"""
robustde - Robust differential expression for cell-line RNA-seq panels

Removes outlying genes and cell lines with robust PCA (Hubert ROBPCA) on
both axes, normalizes library sizes, and scores each gene in each sample
with a Z-score and a matrix-wide Benjamini-Hochberg FDR.
"""

__version__ = "0.1.0"

from robustde.core.biomatrix import BioMatrix
from robustde.core.transform import Transform
from robustde.core.errors import (
    RobustDEError,
    InsufficientDataError,
    DegenerateRowError,
    ShapeMismatchError,
    NumericOverflowError,
)

__all__ = [
    "BioMatrix",
    "Transform",
    "RobustDEError",
    "InsufficientDataError",
    "DegenerateRowError",
    "ShapeMismatchError",
    "NumericOverflowError",
]
