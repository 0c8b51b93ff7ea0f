"""
Core data structure for filtered, log-scaled expression matrices.

ExpressionMatrix is the single input of the network pipeline. It couples the
numeric measurements with their gene and sample identifiers so that every
derived structure (similarity, adjacency, modules, graph vertices) can be
keyed by the same stable gene order.

Biological Context:
    The matrix arrives from upstream stages that are outside this package:
    - Rows = genes (already filtered by count and differential expression)
    - Columns = samples
    - Values = log-scaled expression

    Upstream guarantees no missing values and non-zero variance per gene.
    The constructor checks the structural part of that contract; variance
    can be inspected with zero_variance_genes().

Engineering Design:
    - Immutable: the pipeline never writes into data
    - Validated: constructor checks shape, identifier lengths, uniqueness
    - pandas interop: from_dataframe / to_dataframe

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from coexnet.core.expression import ExpressionMatrix
    >>>
    >>> data = np.array([[1.0, 2.0, 3.0], [3.0, 2.0, 1.0]])
    >>> matrix = ExpressionMatrix(
    ...     data=data,
    ...     gene_ids=pd.Index(["GENE_A", "GENE_B"]),
    ...     sample_ids=pd.Index(["S1", "S2", "S3"]),
    ... )
    >>> matrix.n_genes
    2
"""

from __future__ import annotations

from typing import Optional
import numpy as np
import pandas as pd

__all__ = ['ExpressionMatrix', 'as_expression_matrix']


class ExpressionMatrix:
    """
    Immutable container for a genes × samples expression matrix.

    Attributes:
        data: Numerical expression matrix (genes × samples, float64)
        gene_ids: Row identifiers (unique)
        sample_ids: Column identifiers (unique)

    Shape Invariants:
        - data.shape[0] == len(gene_ids)
        - data.shape[1] == len(sample_ids)
        - all values finite
    """

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index,
        sample_ids: pd.Index,
    ):
        """
        Initialize ExpressionMatrix with validation.

        Args:
            data: Expression matrix (genes × samples)
            gene_ids: Row identifiers, must be unique
            sample_ids: Column identifiers, must be unique

        Raises:
            TypeError: If data or identifiers have the wrong type
            ValueError: If shapes are inconsistent, identifiers repeat,
                or data contains NaN/inf
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(gene_ids, pd.Index):
            raise TypeError(f"gene_ids must be pd.Index, got {type(gene_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")

        n_genes, n_samples = data.shape

        if len(gene_ids) != n_genes:
            raise ValueError(
                f"gene_ids length ({len(gene_ids)}) must match data rows ({n_genes})"
            )
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )
        if not gene_ids.is_unique:
            dupes = gene_ids[gene_ids.duplicated()].unique().tolist()
            raise ValueError(f"gene_ids must be unique, duplicated: {dupes[:5]}")
        if not sample_ids.is_unique:
            raise ValueError("sample_ids must be unique")

        data = np.asarray(data, dtype=np.float64)
        if not np.all(np.isfinite(data)):
            raise ValueError("data contains NaN or infinite values - impute or filter upstream")

        # Read-only view so accidental writes fail loudly
        data = data.view()
        data.flags.writeable = False

        self._data = data
        self._gene_ids = gene_ids
        self._sample_ids = sample_ids

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> ExpressionMatrix:
        """
        Build from a DataFrame with genes as index and samples as columns.

        Identifiers are converted to strings so that numeric-looking gene IDs
        keep their exact spelling in the exported graph.
        """
        try:
            values = df.to_numpy(dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Expression table contains non-numeric values: {e}") from e

        return cls(
            data=values,
            gene_ids=pd.Index(df.index.astype(str), name=df.index.name),
            sample_ids=pd.Index(df.columns.astype(str)),
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Return a DataFrame copy (genes × samples)."""
        return pd.DataFrame(
            np.array(self._data),
            index=self._gene_ids,
            columns=self._sample_ids,
        )

    @property
    def data(self) -> np.ndarray:
        """Expression matrix (genes × samples), read-only."""
        return self._data

    @property
    def gene_ids(self) -> pd.Index:
        """Row identifiers."""
        return self._gene_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._sample_ids

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_genes, n_samples)."""
        return self._data.shape

    @property
    def n_genes(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def zero_variance_genes(self, tol: float = 0.0) -> pd.Index:
        """Genes whose variance across samples is <= tol."""
        if self.n_samples == 0:
            return self._gene_ids
        variances = np.var(self._data, axis=1)
        return self._gene_ids[variances <= tol]

    def __repr__(self) -> str:
        if self.n_genes == 0:
            return f"ExpressionMatrix(0 genes × {self.n_samples} samples)"
        return (
            f"ExpressionMatrix({self.n_genes} genes × {self.n_samples} samples)\n"
            f"  Genes: {self.gene_ids[0]}...{self.gene_ids[-1]}"
        )


def as_expression_matrix(expr: ExpressionMatrix | pd.DataFrame | np.ndarray,
                         gene_ids: Optional[pd.Index] = None) -> ExpressionMatrix:
    """Coerce a DataFrame or bare array into an ExpressionMatrix."""
    if isinstance(expr, ExpressionMatrix):
        return expr
    if isinstance(expr, pd.DataFrame):
        return ExpressionMatrix.from_dataframe(expr)

    data = np.asarray(expr, dtype=np.float64)
    if data.ndim != 2:
        raise ValueError(f"data must be 2D, got shape {data.shape}")
    if gene_ids is None:
        gene_ids = pd.Index([f"gene_{i}" for i in range(data.shape[0])])
    sample_ids = pd.Index([f"sample_{j}" for j in range(data.shape[1])])
    return ExpressionMatrix(data, pd.Index(gene_ids), sample_ids)
