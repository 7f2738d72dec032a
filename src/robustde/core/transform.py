"""
Base class for pipeline stages.

Every stage of the scoring pipeline (identifier mapping, aggregation,
coverage filtering, outlier filtering, normalization) is a Transform: a
pure function from one BioMatrix to a new BioMatrix. The input is never
modified, so each intermediate matrix stays available for inspection and
the pipeline can record exactly which stages ran with which parameters.

Examples:
    >>> from robustde.core.transform import Transform
    >>>
    >>> class Log2Transform(Transform):
    ...     def __init__(self, pseudocount: float = 1.0):
    ...         super().__init__(name="Log2Transform", params={"pseudocount": pseudocount})
    ...         self.pseudocount = pseudocount
    ...
    ...     def apply(self, matrix):
    ...         import numpy as np
    ...         return matrix.with_data(np.log2(matrix.data + self.pseudocount))
    >>>
    >>> Log2Transform()
    Log2Transform(pseudocount=1.0)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from robustde.core.biomatrix import BioMatrix

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for matrix transformations.

    Attributes:
        name: Human-readable stage name (e.g. "CoverageFilter")
        params: Parameters used for this stage, for provenance logging
        timestamp: When the stage was constructed
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, matrix: BioMatrix) -> BioMatrix:
        """
        Execute the stage and return a new matrix.

        Must never modify the input matrix.

        Raises:
            ValueError: If the stage cannot be applied (see validate())
        """

    def validate(self, matrix: BioMatrix) -> list[str]:
        """
        Check preconditions before applying the stage.

        Subclasses override and call super().validate() first.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []

        if matrix.data.size == 0:
            errors.append("Cannot process empty matrix")

        return errors

    def _raise_if_invalid(self, matrix: BioMatrix) -> None:
        errors = self.validate(matrix)
        if errors:
            raise ValueError(
                f"{self.name} validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

    def __repr__(self) -> str:
        """
        Render as ``Name(k=v, ...)`` for stage logs.

        Examples:
            >>> CoverageFilter(min_cpm=1.0, min_prevalence=0.1)
            CoverageFilter(min_cpm=1.0, min_prevalence=0.1, drop_missing=True)
        """
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
