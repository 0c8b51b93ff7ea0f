"""
Hybrid correlation/distance similarity between genes.

Pure Pearson correlation ignores expression magnitude: two genes that rise and
fall together score 1.0 even when one is expressed a thousand-fold higher than
the other. The hybrid metric blends correlation with a log-scaled Euclidean
closeness so that genes which are both co-varying AND close in expression
space score highest:

    C   = Pearson correlation over gene rows (across samples)
    D   = Euclidean distance over gene rows
    D'  = log(D + 1)
    D'' = 1 - D' / max(D')                  (1 = identical, 0 = farthest pair)
    S   = sign(C) * (alpha*|C| + beta*D'')  (alpha + beta = 1)

S is symmetric and lies in [-1, 1]. The sign comes only from the correlation,
so anti-correlated genes keep a negative score regardless of distance.

Memory:
    Both C and the distance term are dense n × n float64 arrays. They are
    filled block-by-block (chunk_size rows at a time) into preallocated
    outputs; the block loop is sequential and every block writes a disjoint
    row range, so the assembled matrix does not depend on chunk_size beyond
    BLAS rounding.

    For 20K genes: 20K² × 8 bytes = 3.2 GB per matrix. |C| is taken in place
    and the sign of C is kept as int8, so at peak two float64 matrices and
    one int8 sign matrix (0.4 GB) are alive.

Examples:
    >>> from coexnet.network.similarity import compute_similarity
    >>> sim = compute_similarity(matrix)                      # alpha = beta = 0.5
    >>> sim = compute_similarity(matrix, alpha=0.7, beta=0.3)
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from tqdm import tqdm

from coexnet.core.exceptions import (
    DegenerateInputError,
    InsufficientDataError,
    InvalidParameterError,
)
from coexnet.core.expression import ExpressionMatrix, as_expression_matrix

logger = logging.getLogger(__name__)

__all__ = [
    'compute_similarity',
    'pearson_correlation',
    'log_distance_closeness',
    'validate_similarity_weights',
]

WEIGHT_TOLERANCE = 1e-9


def validate_similarity_weights(alpha: float, beta: float) -> None:
    """
    Check the correlation/distance mixing weights.

    Raises:
        InvalidParameterError: If either weight is outside [0, 1] or they
            do not sum to 1
    """
    for name, value in (("alpha", alpha), ("beta", beta)):
        if not np.isfinite(value) or value < 0 or value > 1:
            raise InvalidParameterError(f"{name} must be in [0, 1], got {value}")
    if abs(alpha + beta - 1.0) > WEIGHT_TOLERANCE:
        raise InvalidParameterError(
            f"alpha + beta must equal 1, got {alpha} + {beta} = {alpha + beta}"
        )


def _row_blocks(n_rows: int, chunk_size: int, desc: str, verbose: bool):
    n_chunks = (n_rows + chunk_size - 1) // chunk_size
    chunk_iter = range(n_chunks)
    if verbose:
        chunk_iter = tqdm(chunk_iter, desc=desc, unit="chunk")
    for chunk_idx in chunk_iter:
        start_idx = chunk_idx * chunk_size
        yield start_idx, min(start_idx + chunk_size, n_rows)


def pearson_correlation(
    data: np.ndarray,
    chunk_size: int = 500,
    verbose: bool = False,
) -> np.ndarray:
    """
    Pearson correlation between rows of data, computed in row blocks.

    Rows are standardized once (Z = (X - mean) / std) so each block is a
    single matrix product: corr(i, j) = Z_i · Z_j / n_samples.

    Args:
        data: Matrix (genes × samples)
        chunk_size: Rows per block
        verbose: Show a progress bar

    Returns:
        Correlation matrix (genes × genes, float64), diagonal exactly 1.0

    Notes:
        Constant rows get std = 1 and therefore correlation 0 with every
        other row. Upstream filtering is expected to remove them.
    """
    n_genes, n_samples = data.shape

    data_mean = data.mean(axis=1, keepdims=True)
    data_std = data.std(axis=1, keepdims=True)
    constant = (data_std == 0).ravel()
    if constant.any():
        logger.warning(
            f"{int(constant.sum())} genes have zero variance; their correlations are set to 0"
        )
    data_std[data_std == 0] = 1.0
    data_standardized = (data - data_mean) / data_std

    correlation = np.empty((n_genes, n_genes), dtype=np.float64)
    for start_idx, end_idx in _row_blocks(n_genes, chunk_size, "Correlation", verbose):
        chunk_standardized = data_standardized[start_idx:end_idx, :]
        correlation[start_idx:end_idx, :] = (chunk_standardized @ data_standardized.T) / n_samples

    np.clip(correlation, -1.0, 1.0, out=correlation)
    np.fill_diagonal(correlation, 1.0)
    return correlation


def log_distance_closeness(
    data: np.ndarray,
    chunk_size: int = 500,
    verbose: bool = False,
) -> np.ndarray:
    """
    Closeness term D'' = 1 - log(D + 1) / max(log(D + 1)).

    Args:
        data: Matrix (genes × samples)
        chunk_size: Rows per block
        verbose: Show a progress bar

    Returns:
        Closeness matrix (genes × genes) in [0, 1], 1 on the diagonal

    Raises:
        DegenerateInputError: If every pairwise distance is zero
    """
    n_genes = data.shape[0]
    closeness = np.empty((n_genes, n_genes), dtype=np.float64)
    for start_idx, end_idx in _row_blocks(n_genes, chunk_size, "Distance", verbose):
        closeness[start_idx:end_idx, :] = cdist(data[start_idx:end_idx, :], data, metric="euclidean")

    # log(D + 1), in place
    np.log1p(closeness, out=closeness)
    max_log_distance = float(closeness.max())
    if max_log_distance <= 0:
        raise DegenerateInputError(
            "All genes have identical expression profiles; "
            "distance normalization is undefined (max log-distance is 0)"
        )

    closeness /= max_log_distance
    np.subtract(1.0, closeness, out=closeness)
    return closeness


def compute_similarity(
    expr: ExpressionMatrix | pd.DataFrame | np.ndarray,
    alpha: float = 0.5,
    beta: float = 0.5,
    chunk_size: int = 500,
    verbose: bool = False,
) -> np.ndarray:
    """
    Compute the hybrid gene-gene similarity matrix.

    Args:
        expr: Expression matrix (genes × samples). DataFrames and arrays are
            coerced to ExpressionMatrix.
        alpha: Weight of |correlation|
        beta: Weight of distance closeness (alpha + beta must be 1)
        chunk_size: Rows per block for the O(n²) passes
        verbose: Show progress bars

    Returns:
        Symmetric similarity matrix (genes × genes) in [-1, 1], indexed by
        the gene order of expr. Diagonal is 1.0 and is never an edge.

    Raises:
        InvalidParameterError: Bad weights or chunk_size (checked first)
        InsufficientDataError: Fewer than 2 genes or 2 samples
        DegenerateInputError: All genes identical

    Examples:
        >>> sim = compute_similarity(matrix)
        >>> assert np.allclose(sim, sim.T)
    """
    validate_similarity_weights(alpha, beta)
    if chunk_size < 1:
        raise InvalidParameterError(f"chunk_size must be >= 1, got {chunk_size}")

    matrix = as_expression_matrix(expr)
    n_genes, n_samples = matrix.shape
    if n_genes < 2:
        raise InsufficientDataError(f"Need at least 2 genes for similarity, got {n_genes}")
    if n_samples < 2:
        raise InsufficientDataError(f"Need at least 2 samples for correlation, got {n_samples}")

    logger.info(
        f"Computing hybrid similarity: {n_genes:,} genes × {n_samples:,} samples "
        f"(alpha={alpha}, beta={beta}, {n_genes**2 * 8 / 1e9:.2f} GB per matrix)"
    )

    correlation = pearson_correlation(matrix.data, chunk_size=chunk_size, verbose=verbose)
    signs = np.sign(correlation).astype(np.int8)

    # S = sign(C) * (alpha*|C| + beta*D''), built in the correlation buffer
    similarity = np.abs(correlation, out=correlation)
    similarity *= alpha
    del correlation

    closeness = log_distance_closeness(matrix.data, chunk_size=chunk_size, verbose=verbose)
    closeness *= beta
    similarity += closeness
    del closeness
    similarity *= signs
    del signs

    # Symmetrize to remove BLAS rounding asymmetry, then bound
    similarity += similarity.T
    similarity *= 0.5
    np.clip(similarity, -1.0, 1.0, out=similarity)
    np.fill_diagonal(similarity, 1.0)

    logger.debug(
        f"Similarity range: [{similarity.min():.3f}, {similarity.max():.3f}]"
    )
    return similarity
