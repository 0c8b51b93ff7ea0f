"""
Loaders for expression and annotation tables.

Expression tables arrive from upstream filtering/log-transform stages as
delimited text:

    ```
    gene_id,S1,S2,S3
    ENSG00000000003,5.81,6.02,5.77
    ENSG00000000005,1.10,0.95,1.32
    ```

- First column: unique gene identifiers
- Header: sample identifiers
- Values: log-scaled expression, no missing values

Annotation tables are keyed by the same gene identifiers in their first
column; any further columns (symbol, description, biotype, ...) are carried
through to the exported graph as vertex attributes. Row order does not need
to match the expression table.

Delimiters (comma, tab, semicolon, pipe) are detected from file content.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from coexnet.core.expression import ExpressionMatrix

logger = logging.getLogger(__name__)

__all__ = ['sniff_delimiter', 'load_expression_matrix', 'load_annotation_table']


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Auto-detect delimiter from file content.

    Uses Python's csv.Sniffer with a first-line count fallback.

    Raises:
        ValueError: If delimiter cannot be determined
    """
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        sample = f.read(sample_size)

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters='\t,;|')
        return dialect.delimiter
    except csv.Error:
        pass

    first_line = sample.split('\n')[0]
    counts = {delim: first_line.count(delim) for delim in ('\t', ',', ';', '|')}
    if max(counts.values()) == 0:
        raise ValueError(f"Could not detect delimiter in {path}")
    return max(counts, key=counts.get)


def _read_table(path: Path, delimiter: Optional[str], what: str) -> pd.DataFrame:
    if not isinstance(path, Path):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    if delimiter is None:
        delimiter = sniff_delimiter(path)

    try:
        df = pd.read_csv(path, sep=delimiter, index_col=0)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"{what} file is empty: {path}") from e
    except pd.errors.ParserError as e:
        raise ValueError(f"Failed to parse {what} file {path}: {e}") from e

    df.index = df.index.astype(str)
    return df


def load_expression_matrix(path: Path, delimiter: Optional[str] = None) -> ExpressionMatrix:
    """
    Load a genes × samples expression table.

    Args:
        path: Path to CSV/TSV file
        delimiter: Field separator (auto-detected when None)

    Returns:
        ExpressionMatrix

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: Empty table, duplicate ids, non-numeric or missing values
    """
    df = _read_table(path, delimiter, "Expression")

    if df.shape[0] == 0:
        raise ValueError(f"Expression table contains no genes (rows): {path}")
    if df.shape[1] == 0:
        raise ValueError(f"Expression table contains no samples (columns): {path}")

    if df.index.duplicated().any():
        dupes = df.index[df.index.duplicated()].unique().tolist()
        raise ValueError(f"Duplicate gene ids in {path}: {dupes[:5]}")
    if df.columns.duplicated().any():
        raise ValueError(f"Duplicate sample ids in {path}")

    non_numeric = [col for col in df.columns if not pd.api.types.is_numeric_dtype(df[col])]
    if non_numeric:
        raise ValueError(f"Non-numeric sample columns in {path}: {non_numeric[:5]}")

    n_nan = int(np.isnan(df.to_numpy(dtype=np.float64)).sum())
    if n_nan:
        raise ValueError(
            f"Expression table has {n_nan:,} missing values; impute or filter upstream"
        )

    matrix = ExpressionMatrix.from_dataframe(df)
    logger.info(f"Loaded {matrix.n_genes:,} genes × {matrix.n_samples:,} samples from {path}")

    constant = matrix.zero_variance_genes()
    if len(constant):
        logger.warning(
            f"{len(constant)} genes have zero variance (e.g. {list(constant[:3])}); "
            "they will not correlate with anything"
        )
    return matrix


def load_annotation_table(path: Path, delimiter: Optional[str] = None) -> pd.DataFrame:
    """
    Load a per-gene annotation table indexed by gene id.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: Empty table or duplicate gene ids
    """
    df = _read_table(path, delimiter, "Annotation")
    if df.shape[0] == 0:
        raise ValueError(f"Annotation table contains no rows: {path}")
    if df.index.duplicated().any():
        dupes = df.index[df.index.duplicated()].unique().tolist()
        raise ValueError(f"Duplicate gene ids in annotation table {path}: {dupes[:5]}")

    logger.info(f"Loaded annotations for {len(df):,} genes ({list(df.columns)})")
    return df
