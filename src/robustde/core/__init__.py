"""
Core data structures and abstractions.

1. BioMatrix: Expression matrix with gene/sample labels
2. Transform: Abstract base class for immutable pipeline stages
3. Error taxonomy shared by every stage

Examples:
    >>> from robustde.core import BioMatrix, Transform, RobustDEError
"""

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
    'BioMatrix',
    'Transform',
    'RobustDEError',
    'InsufficientDataError',
    'DegenerateRowError',
    'ShapeMismatchError',
    'NumericOverflowError',
]
