"""
Pytest configuration and shared fixtures.

This module provides synthetic expression generators with planted module
structure and shared fixtures for all test suites.
"""

import numpy as np
import pandas as pd
import pytest
from pathlib import Path

from coexnet.core.expression import ExpressionMatrix


def generate_module_expression(
    n_modules: int = 3,
    genes_per_module: int = 20,
    n_samples: int = 30,
    n_background: int = 0,
    noise: float = 0.3,
    seed: int = 42,
) -> pd.DataFrame:
    """
    Generate a log-scaled expression table with planted co-expression modules.

    Args:
        n_modules: Number of planted modules
        genes_per_module: Genes sharing each module pattern
        n_samples: Number of samples
        n_background: Extra genes with independent random profiles
        noise: Per-gene noise standard deviation
        seed: Random seed for reproducibility

    Returns:
        DataFrame (genes × samples). Module genes are named M<k>_G<i>
        (k starting at 1), background genes BG_<i>.

    Design:
        - Every gene = 8.0 + 3 * module_pattern + noise, so genes within a
          module are both highly correlated and close in Euclidean distance
        - Module patterns are independent standard normal vectors
    """
    rng = np.random.RandomState(seed)

    rows = []
    gene_ids = []
    for module_idx in range(n_modules):
        pattern = rng.randn(n_samples)
        for gene_idx in range(genes_per_module):
            rows.append(8.0 + 3.0 * pattern + noise * rng.randn(n_samples))
            gene_ids.append(f"M{module_idx + 1}_G{gene_idx:02d}")

    for gene_idx in range(n_background):
        rows.append(8.0 + 3.0 * rng.randn(n_samples))
        gene_ids.append(f"BG_{gene_idx:03d}")

    sample_ids = [f"SAMPLE_{j:03d}" for j in range(n_samples)]
    return pd.DataFrame(np.vstack(rows), index=pd.Index(gene_ids, name="gene_id"), columns=sample_ids)


def planted_module(gene_ids, module_number: int) -> set:
    """Gene ids planted in module M<module_number>."""
    prefix = f"M{module_number}_"
    return {g for g in gene_ids if g.startswith(prefix)}


def make_annotations(gene_ids) -> pd.DataFrame:
    """Annotation table for gene_ids, rows deliberately in reverse order."""
    gene_ids = list(gene_ids)[::-1]
    return pd.DataFrame({
        'symbol': [f"SYM{g}" for g in gene_ids],
        'length_kb': [float(len(g)) / 2 for g in gene_ids],
    }, index=pd.Index(gene_ids, name="gene_id"))


@pytest.fixture
def module_expression():
    """60 genes (3 planted modules of 20) x 30 samples."""
    return generate_module_expression()


@pytest.fixture
def module_matrix(module_expression):
    return ExpressionMatrix.from_dataframe(module_expression)


@pytest.fixture
def annotations(module_expression):
    return make_annotations(module_expression.index)


@pytest.fixture
def expression_csv(tmp_path, module_expression):
    """Module expression table written as CSV."""
    path = tmp_path / "expression.csv"
    module_expression.to_csv(path)
    return path


@pytest.fixture
def annotation_csv(tmp_path, annotations):
    path = tmp_path / "annotations.csv"
    annotations.to_csv(path)
    return path


@pytest.fixture
def anticorrelated_csv(tmp_path):
    """Two perfectly anti-correlated genes; no edge survives a signed export."""
    x = np.linspace(1.0, 10.0, 12)
    df = pd.DataFrame(
        [x, 11.0 - x],
        index=pd.Index(["UP", "DOWN"], name="gene_id"),
        columns=[f"S{j}" for j in range(len(x))],
    )
    path = tmp_path / "anticorrelated.csv"
    df.to_csv(path)
    return path


def random_symmetric_adjacency(n: int, seed: int = 0, scale: float = 1.0) -> np.ndarray:
    """Symmetric matrix with distinct off-diagonal values in [0, scale] and unit diagonal."""
    rng = np.random.RandomState(seed)
    upper = np.triu(rng.uniform(0.0, scale, size=(n, n)), k=1)
    adj = upper + upper.T
    np.fill_diagonal(adj, 1.0)
    return adj
