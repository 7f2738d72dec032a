"""
Error taxonomy for the scoring pipeline.

Every failure raised by a stage carries enough context to say *where* the
all-or-nothing computation stopped: the stage (filter, score, normalize...),
the axis being processed (genes or samples) and, when known, the offending
row identifier.

Propagation:
    Errors are raised at the point of detection and abort the stage. There
    is nothing to retry in a deterministic numeric computation; the caller
    decides whether to skip the failing partition (e.g. one lineage group,
    see ``robustde.pipeline.run_by_group``) or abort the run.

Examples:
    >>> from robustde.core.errors import DegenerateRowError
    >>> err = DegenerateRowError("zero variance", stage="score", row="GAPDH")
    >>> str(err)
    'zero variance [stage=score, row=GAPDH]'
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    'RobustDEError',
    'InsufficientDataError',
    'DegenerateRowError',
    'ShapeMismatchError',
    'NumericOverflowError',
]


class RobustDEError(Exception):
    """
    Base class for all pipeline errors.

    Attributes:
        stage: Pipeline stage that failed ("filter", "score", ...)
        axis: Axis being processed ("genes", "samples") or None
        row: Offending row identifier or index, if known
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        axis: Optional[str] = None,
        row: Any = None,
    ):
        self.message = message
        self.stage = stage
        self.axis = axis
        self.row = row
        super().__init__(self._format())

    def _format(self) -> str:
        context = []
        if self.stage is not None:
            context.append(f"stage={self.stage}")
        if self.axis is not None:
            context.append(f"axis={self.axis}")
        if self.row is not None:
            context.append(f"row={self.row}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"


class InsufficientDataError(RobustDEError):
    """Too few rows/columns (or zero rank) for robust covariance estimation."""


class DegenerateRowError(RobustDEError):
    """A zero-variance row makes its Z-scores undefined."""


class ShapeMismatchError(RobustDEError, ValueError):
    """Identifier vector length does not match the matrix dimension."""


class NumericOverflowError(RobustDEError):
    """Non-finite values in the input or produced during computation."""
