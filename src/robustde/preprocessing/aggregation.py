"""
Collapse duplicate genes or samples.

Duplicates arise in two places:
    - Genes: several Ensembl IDs map to one symbol after IdentifierMapper.
      Their counts are summed (reads of one gene split across annotations).
    - Samples: one cell line sequenced in more than one run shares a name.
      Replicate runs are averaged.
"""

from __future__ import annotations

import logging
from typing import Literal

import pandas as pd

from robustde.core.biomatrix import BioMatrix
from robustde.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ['DuplicateAggregator']

_HOW = ("sum", "mean", "median")


class DuplicateAggregator(Transform):
    """
    Collapse rows (axis="features") or columns (axis="samples") sharing an ID.

    First-seen order of identifiers is preserved. For samples, the metadata
    row of the first occurrence is kept.

    Params:
        axis: "features" or "samples"
        how: "sum", "mean" or "median"

    Examples:
        >>> genes = DuplicateAggregator(axis="features", how="sum").apply(mapped)
        >>> lines = DuplicateAggregator(axis="samples", how="mean").apply(genes)
    """

    def __init__(
        self,
        axis: Literal["features", "samples"] = "features",
        how: Literal["sum", "mean", "median"] = "sum",
    ):
        if axis not in ("features", "samples"):
            raise ValueError(f"axis must be 'features' or 'samples', got '{axis}'")
        if how not in _HOW:
            raise ValueError(f"how must be one of {_HOW}, got '{how}'")

        super().__init__(name="DuplicateAggregator", params={"axis": axis, "how": how})
        self.axis = axis
        self.how = how

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        self._raise_if_invalid(matrix)

        ids = matrix.feature_ids if self.axis == "features" else matrix.sample_ids
        n_duplicates = int(ids.duplicated().sum())
        if n_duplicates == 0:
            return matrix

        df = matrix.to_frame()
        if self.axis == "samples":
            df = df.T

        grouped = df.groupby(level=0, sort=False)
        if self.how == "sum":
            # All-NaN groups stay NaN so the coverage filter still sees them
            collapsed = grouped.sum(min_count=1)
        else:
            collapsed = getattr(grouped, self.how)()

        logger.info(
            f"Aggregated {n_duplicates} duplicate {self.axis} ({self.how}): "
            f"{len(df)} -> {len(collapsed)}"
        )

        if self.axis == "features":
            return BioMatrix(
                data=collapsed.to_numpy(dtype=float),
                feature_ids=pd.Index(collapsed.index, name=matrix.feature_ids.name),
                sample_ids=matrix.sample_ids,
                sample_metadata=matrix.sample_metadata,
            )

        metadata = matrix.sample_metadata[~matrix.sample_ids.duplicated()]
        collapsed = collapsed.T
        return BioMatrix(
            data=collapsed.to_numpy(dtype=float),
            feature_ids=matrix.feature_ids,
            sample_ids=pd.Index(collapsed.columns, name=matrix.sample_ids.name),
            sample_metadata=metadata.set_axis(pd.Index(collapsed.columns, name=matrix.sample_ids.name)),
        )
