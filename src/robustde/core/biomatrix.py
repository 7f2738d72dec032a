"""
Core data structure for RNA-seq expression matrices.

BioMatrix couples a numeric matrix with its row identifiers (genes) and
column identifiers (samples / cell lines), plus optional per-sample
annotations such as tissue lineage.

Biological Context:
    Count matrices from cell-line panels follow the usual layout:
    - Rows = genes (Ensembl IDs or HGNC symbols)
    - Columns = samples (cell lines, sequencing runs)
    - Values = read counts, later log-normalized expression

    The scoring pipeline needs the same matrix viewed along both axes:
    genes are screened for outliers with samples as variables, then the
    matrix is transposed so samples are screened with genes as variables.

Engineering Design:
    - Immutable: every operation returns a new instance
    - NumPy for values, pandas Index/DataFrame for labels
    - Validated: constructor rejects inconsistent shapes

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from robustde.core.biomatrix import BioMatrix
    >>>
    >>> matrix = BioMatrix(
    ...     data=np.array([[10.0, 20.0], [30.0, 40.0]]),
    ...     feature_ids=pd.Index(["TP53", "KRAS"]),
    ...     sample_ids=pd.Index(["A549", "HCT116"]),
    ... )
    >>> matrix.transpose().shape
    (2, 2)
"""

from __future__ import annotations

from typing import Optional
import numpy as np
import pandas as pd

from robustde.core.errors import ShapeMismatchError

__all__ = ['BioMatrix']


class BioMatrix:
    """
    Immutable container for an expression matrix and its labels.

    Attributes:
        data: Numerical matrix (features × samples)
        feature_ids: Row identifiers (genes)
        sample_ids: Column identifiers (samples)
        sample_metadata: Per-sample annotations indexed by sample_ids

    Shape Invariants:
        - data.shape[0] == len(feature_ids)
        - data.shape[1] == len(sample_ids)
        - sample_metadata.index equals sample_ids
    """

    def __init__(
        self,
        data: np.ndarray,
        feature_ids: pd.Index,
        sample_ids: pd.Index,
        sample_metadata: Optional[pd.DataFrame] = None,
    ):
        """
        Initialize BioMatrix with validation.

        Args:
            data: Expression matrix (features × samples)
            feature_ids: Row identifiers
            sample_ids: Column identifiers
            sample_metadata: Optional annotations; index must equal sample_ids.
                An empty frame is created when omitted.

        Raises:
            TypeError: If argument types are wrong
            ShapeMismatchError: If shapes or indices are inconsistent
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")

        if sample_metadata is None:
            sample_metadata = pd.DataFrame(index=sample_ids)
        elif not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")

        if data.ndim != 2:
            raise ShapeMismatchError(f"data must be 2D, got shape {data.shape}")

        n_features, n_samples = data.shape

        if len(feature_ids) != n_features:
            raise ShapeMismatchError(
                f"feature_ids length ({len(feature_ids)}) must match data rows ({n_features})"
            )
        if len(sample_ids) != n_samples:
            raise ShapeMismatchError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )
        if not sample_metadata.index.equals(sample_ids):
            raise ShapeMismatchError(
                "sample_metadata.index must match sample_ids exactly. "
                f"Got {len(sample_metadata.index)} metadata rows for {len(sample_ids)} samples."
            )

        self._data = data
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids
        self._sample_metadata = sample_metadata

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        sample_metadata: Optional[pd.DataFrame] = None,
    ) -> BioMatrix:
        """Build a BioMatrix from a genes × samples DataFrame."""
        return cls(
            data=df.to_numpy(dtype=float, copy=True),
            feature_ids=pd.Index(df.index),
            sample_ids=pd.Index(df.columns),
            sample_metadata=sample_metadata,
        )

    @property
    def data(self) -> np.ndarray:
        """Expression matrix (features × samples)."""
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        """Row identifiers (genes)."""
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Column identifiers (samples)."""
        return self._sample_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        """Per-sample annotations."""
        return self._sample_metadata

    @property
    def shape(self) -> tuple[int, int]:
        return self._data.shape

    @property
    def n_features(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def select_samples(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Subset matrix by samples (columns).

        Args:
            mask: Boolean array/Series of length n_samples

        Returns:
            New BioMatrix with the selected samples and their metadata

        Raises:
            ShapeMismatchError: If mask length doesn't match n_samples
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_samples:
            raise ShapeMismatchError(
                f"mask length ({len(mask)}) must match n_samples ({self.n_samples})"
            )

        kept = self._sample_ids[mask]
        return BioMatrix(
            data=self._data[:, mask],
            feature_ids=self._feature_ids,
            sample_ids=kept,
            sample_metadata=self._sample_metadata.iloc[np.flatnonzero(mask)],
        )

    def select_features(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Subset matrix by features (rows).

        Args:
            mask: Boolean array/Series of length n_features

        Returns:
            New BioMatrix with the selected features

        Raises:
            ShapeMismatchError: If mask length doesn't match n_features
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_features:
            raise ShapeMismatchError(
                f"mask length ({len(mask)}) must match n_features ({self.n_features})"
            )

        return BioMatrix(
            data=self._data[mask, :],
            feature_ids=self._feature_ids[mask],
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
        )

    def transpose(self) -> BioMatrix:
        """
        Swap axes so samples become rows.

        Sample metadata cannot follow the samples onto the row axis, so the
        transposed matrix carries an empty metadata frame. Callers that need
        the annotations back (see RobustPCAOutlierFilter) re-attach them by
        sample id after transposing again.
        """
        return BioMatrix(
            data=self._data.T.copy(),
            feature_ids=self._sample_ids,
            sample_ids=self._feature_ids,
        )

    def with_data(self, data: np.ndarray) -> BioMatrix:
        """Return a new matrix with the same labels and new values."""
        return BioMatrix(
            data=data,
            feature_ids=self._feature_ids,
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
        )

    def to_frame(self) -> pd.DataFrame:
        """Labelled genes × samples DataFrame (copy)."""
        return pd.DataFrame(
            self._data.copy(),
            index=self._feature_ids,
            columns=self._sample_ids,
        )

    def copy(self, deep: bool = True) -> BioMatrix:
        """
        Create a copy of this matrix.

        Args:
            deep: If True, copy all arrays. If False, share them.
        """
        if deep:
            return BioMatrix(
                data=self._data.copy(),
                feature_ids=self._feature_ids.copy(),
                sample_ids=self._sample_ids.copy(),
                sample_metadata=self._sample_metadata.copy(),
            )
        return BioMatrix(
            data=self._data,
            feature_ids=self._feature_ids,
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
        )

    def __repr__(self) -> str:
        if self.n_features == 0 or self.n_samples == 0:
            return f"BioMatrix({self.n_features} features × {self.n_samples} samples)"
        return (
            f"BioMatrix({self.n_features} features × {self.n_samples} samples)\n"
            f"  Features: {self.feature_ids[0]}...{self.feature_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Metadata columns: {list(self.sample_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()
