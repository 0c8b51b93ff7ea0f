"""
End-to-end co-expression network construction.

    expression → similarity → adjacency → {modules, graph}

build_network() runs the four stages with one NetworkConfig. Parameters are
validated before any O(n²) work starts. The similarity matrix is released as
soon as the adjacency is derived from it; only its sign (int8) is kept so
exported edges can still report the direction of association.

Failure handling:
    - InvalidParameterError / DegenerateInputError: raised, nothing computed
    - InsufficientDataError from clustering: raised, unless skip_modules is
      set, in which case the graph is exported without module attributes
    - ZeroEdgesError from export: logged and stored on the result; call
      NetworkResult.export() with a lower threshold or a higher
      max_edge_ratio (similarity and adjacency are reused)

Examples:
    >>> from coexnet import ExpressionMatrix, NetworkConfig, build_network
    >>> result = build_network(matrix, NetworkConfig(power=8, min_module_size=20),
    ...                        output_path="network.graphml")
    >>> result.modules.module_sizes()
    >>> if result.graph is None:
    ...     graph = result.export(threshold=0.2)
"""

from __future__ import annotations

import gc
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from coexnet.core.exceptions import InvalidParameterError, ZeroEdgesError
from coexnet.core.expression import ExpressionMatrix, as_expression_matrix
from coexnet.network.adjacency import to_adjacency
from coexnet.network.export import (
    GraphArtifact,
    align_annotations,
    export_graph,
)
from coexnet.network.modules import ModuleAssignment, detect_modules
from coexnet.network.similarity import compute_similarity, validate_similarity_weights

logger = logging.getLogger(__name__)

__all__ = ['NetworkConfig', 'NetworkResult', 'build_network']


@dataclass
class NetworkConfig:
    """
    Parameters for every pipeline stage.

    Attributes:
        power: Soft-threshold exponent (> 0)
        signed: Signed (True) or unsigned (False) adjacency
        alpha: Weight of |correlation| in the similarity
        beta: Weight of distance closeness (alpha + beta = 1)
        min_module_size: Minimum genes per module
        deep_split: Finer (True) or coarser (False) branch cutting
        threshold: Requested export edge cutoff in [0, 1]
        max_edge_ratio: Export edge budget per vertex
        weighted: Keep rescaled edge weights in the export
        chunk_size: Rows per block in the similarity computation
        skip_modules: Export without module detection
    """
    power: float = 12
    signed: bool = True
    alpha: float = 0.5
    beta: float = 0.5
    min_module_size: int = 15
    deep_split: bool = True
    threshold: float = 0.5
    max_edge_ratio: float = 3
    weighted: bool = True
    chunk_size: int = 500
    skip_modules: bool = False

    def validate(self) -> None:
        """Raise InvalidParameterError on the first out-of-range value."""
        if not np.isfinite(self.power) or self.power <= 0:
            raise InvalidParameterError(f"power must be > 0, got {self.power}")
        validate_similarity_weights(self.alpha, self.beta)
        if int(self.min_module_size) != self.min_module_size or self.min_module_size < 1:
            raise InvalidParameterError(
                f"min_module_size must be a positive integer, got {self.min_module_size}"
            )
        if not np.isfinite(self.threshold) or not 0 <= self.threshold <= 1:
            raise InvalidParameterError(f"threshold must be in [0, 1], got {self.threshold}")
        if not np.isfinite(self.max_edge_ratio) or self.max_edge_ratio < 0:
            raise InvalidParameterError(
                f"max_edge_ratio must be >= 0, got {self.max_edge_ratio}"
            )
        if int(self.chunk_size) != self.chunk_size or self.chunk_size < 1:
            raise InvalidParameterError(f"chunk_size must be a positive integer, got {self.chunk_size}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> NetworkConfig:
        """Build from a flat mapping; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise InvalidParameterError(f"Unknown network parameters: {sorted(unknown)}")
        return cls(**values)


@dataclass
class NetworkResult:
    """
    Output of build_network().

    Attributes:
        config: Parameters used
        gene_ids: Gene order shared by every matrix
        adjacency: Adjacency matrix (genes × genes)
        signs: Sign of the similarity matrix (int8, -1/0/+1)
        modules: Module assignment, None when skipped
        graph: Exported graph, None when export found no edges
        export_error: The ZeroEdgesError that left graph empty, if any
        vertex_attrs: Annotation table aligned to gene_ids, if provided
    """
    config: NetworkConfig
    gene_ids: pd.Index
    adjacency: np.ndarray
    signs: np.ndarray
    modules: Optional[ModuleAssignment] = None
    graph: Optional[GraphArtifact] = None
    export_error: Optional[ZeroEdgesError] = None
    vertex_attrs: Optional[pd.DataFrame] = field(default=None, repr=False)

    def export(
        self,
        threshold: Optional[float] = None,
        max_edge_ratio: Optional[float] = None,
        path: Optional[str | os.PathLike] = None,
    ) -> GraphArtifact:
        """
        Run the export step, optionally with new limits.

        Callable again after a ZeroEdgesError; similarity and adjacency are
        not recomputed. On success the result's graph is replaced and
        export_error cleared.

        Raises:
            ZeroEdgesError: If the new limits still leave no edges
        """
        threshold = self.config.threshold if threshold is None else threshold
        max_edge_ratio = self.config.max_edge_ratio if max_edge_ratio is None else max_edge_ratio

        graph = export_graph(
            self.adjacency,
            threshold=threshold,
            max_edge_ratio=max_edge_ratio,
            weighted=self.config.weighted,
            vertex_attrs=self.vertex_attrs,
            gene_ids=self.gene_ids,
            modules=self.modules,
            signs=self.signs,
            path=path,
        )
        self.graph = graph
        self.export_error = None
        return graph

    def summary(self) -> Dict[str, Any]:
        """JSON-serializable run summary."""
        summary: Dict[str, Any] = {
            'parameters': self.config.to_dict(),
            'n_genes': len(self.gene_ids),
        }
        if self.modules is not None:
            summary['n_modules'] = self.modules.n_modules
            summary['n_unassigned'] = self.modules.n_unassigned
            summary['module_sizes'] = {
                str(label): int(size) for label, size in self.modules.module_sizes().items()
            }
        if self.graph is not None:
            summary['n_vertices'] = self.graph.n_vertices
            summary['n_edges'] = self.graph.n_edges
            summary['n_negative_edges'] = int((self.graph.edges['sign'] < 0).sum())
            if self.graph.search is not None:
                summary['threshold_search'] = self.graph.search.to_dict()
        if self.export_error is not None:
            summary['export_error'] = str(self.export_error)
        return summary


def build_network(
    expr: ExpressionMatrix | pd.DataFrame | np.ndarray,
    config: Optional[NetworkConfig] = None,
    annotations: Optional[pd.DataFrame] = None,
    output_path: Optional[str | os.PathLike] = None,
    verbose: bool = False,
) -> NetworkResult:
    """
    Build the co-expression network, modules and graph artifact.

    Args:
        expr: Expression matrix (genes × samples)
        config: Stage parameters (defaults when None)
        annotations: Per-gene table indexed by gene id, any row order
        output_path: Write GraphML here when export succeeds
        verbose: Progress bars for the similarity computation

    Returns:
        NetworkResult

    Raises:
        InvalidParameterError, DegenerateInputError, InsufficientDataError,
        SchemaMismatchError. ZeroEdgesError is caught and reported on the
        result instead.
    """
    config = config or NetworkConfig()
    config.validate()

    matrix = as_expression_matrix(expr)
    gene_ids = matrix.gene_ids
    logger.info(f"Building network for {matrix.n_genes:,} genes × {matrix.n_samples:,} samples")

    vertex_attrs = None
    if annotations is not None:
        vertex_attrs = align_annotations(annotations, gene_ids)

    similarity = compute_similarity(
        matrix,
        alpha=config.alpha,
        beta=config.beta,
        chunk_size=int(config.chunk_size),
        verbose=verbose,
    )
    signs = np.sign(similarity).astype(np.int8)
    adjacency = to_adjacency(similarity, power=config.power, signed=config.signed)

    # Similarity and adjacency are never needed together past this point
    del similarity
    gc.collect()

    result = NetworkResult(
        config=config,
        gene_ids=gene_ids,
        adjacency=adjacency,
        signs=signs,
        vertex_attrs=vertex_attrs,
    )

    if config.skip_modules:
        logger.info("Module detection skipped")
    else:
        result.modules = detect_modules(
            adjacency,
            gene_ids=gene_ids,
            min_module_size=int(config.min_module_size),
            deep_split=config.deep_split,
        )

    try:
        result.export(path=output_path)
    except ZeroEdgesError as e:
        logger.warning(f"Graph export produced no edges: {e}")
        result.export_error = e

    return result
