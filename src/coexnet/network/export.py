"""
Export of a pruned, weight-rescaled co-expression graph.

A dense adjacency matrix over n genes has n(n-1)/2 weighted pairs, almost all
of them negligible. Export turns it into a sparse undirected graph that
network viewers can actually render:

    1. Threshold search   pick a magnitude cutoff honoring an edge budget
    2. Pruning            zero sub-threshold entries, drop orphan vertices
    3. Rescaling          map [threshold, max] linearly onto [0, 1]
    4. Construction       one undirected edge per surviving pair
    5. Attributes         module, color, annotation columns per vertex
    6. Serialization      GraphML, written atomically

Threshold Search:
    Only off-diagonal upper-triangle cells are considered; each is one
    unordered gene pair.

        max_edges         = max_edge_ratio * n_vertices
        edge_limit_cutoff = magnitude of the floor(max_edges)-th strongest pair
        min_threshold     = 99.99th percentile of |adj|   (safety floor)
        threshold         = min(min_threshold, max(requested, edge_limit_cutoff))

    When pairs tie at the cutoff and keeping all of them would overrun the
    budget, the cutoff moves up to the next stronger observed magnitude (or
    just past the maximum, leaving the safety floor in charge). The edge
    budget therefore holds unless the safety floor forces more edges to
    survive. Cutoffs are observed order statistics, so re-running the search
    on an already pruned matrix returns the same threshold.

Rescaling:
    Pairs sitting exactly on the threshold rescale to weight 0 and are not
    edges in a weighted export; vertices left without edges are dropped.

Edge Sign:
    Weights are magnitudes in [0, 1]. The direction of association is kept
    as a separate ``sign`` attribute (+1 / -1) on every edge, taken from the
    similarity sign matrix when supplied.

Examples:
    >>> from coexnet.network.export import export_graph, read_graphml
    >>> artifact = export_graph(adj, gene_ids=genes, modules=assignment,
    ...                         path="network.graphml")
    >>> reloaded = read_graphml("network.graphml")
    >>> assert set(reloaded.vertices) == set(artifact.vertices)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Sequence

import networkx as nx
import numpy as np
import pandas as pd

from coexnet.core.exceptions import (
    InsufficientDataError,
    InvalidParameterError,
    SchemaMismatchError,
    ZeroEdgesError,
)
from coexnet.network.modules import ModuleAssignment, label_to_color
from coexnet.utils.fileio import atomic_writer

logger = logging.getLogger(__name__)

__all__ = [
    'SAFETY_FLOOR_QUANTILE',
    'ThresholdSearch',
    'GraphArtifact',
    'search_threshold',
    'prune_adjacency',
    'align_annotations',
    'export_graph',
    'write_graphml',
    'read_graphml',
]

SAFETY_FLOOR_QUANTILE = 0.9999


@dataclass(frozen=True)
class ThresholdSearch:
    """
    Outcome of the export threshold search.

    Attributes:
        requested: Caller's threshold
        max_edge_ratio: Edges allowed per vertex
        max_edges: Edge budget (max_edge_ratio * n_vertices)
        edge_limit_cutoff: Magnitude that keeps at most max_edges pairs
        min_threshold: Safety floor (99.99th percentile)
        threshold: Final threshold applied
    """
    requested: float
    max_edge_ratio: float
    max_edges: float
    edge_limit_cutoff: float
    min_threshold: float
    threshold: float

    def to_dict(self) -> dict:
        return {
            'requested': self.requested,
            'max_edge_ratio': self.max_edge_ratio,
            'max_edges': self.max_edges,
            'edge_limit_cutoff': self.edge_limit_cutoff,
            'min_threshold': self.min_threshold,
            'threshold': self.threshold,
        }


@dataclass(frozen=True, eq=False)
class GraphArtifact:
    """
    Immutable exported graph.

    Attributes:
        vertices: Surviving gene identifiers, in original matrix order
        edges: DataFrame with columns source, target, weight, sign
        vertex_attrs: Per-vertex attributes indexed by vertex (may have no columns)
        threshold: Final threshold used for pruning
        weighted: False if weights were collapsed to 1.0
        search: Threshold search record (None when read back from disk)
    """
    vertices: tuple
    edges: pd.DataFrame
    vertex_attrs: pd.DataFrame
    threshold: float
    weighted: bool = True
    search: Optional[ThresholdSearch] = None

    @property
    def n_vertices(self) -> int:
        return len(self.vertices)

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    def to_networkx(self) -> nx.Graph:
        """Build an undirected networkx graph with vertex and edge attributes."""
        G = nx.Graph(threshold=float(self.threshold), weighted=bool(self.weighted))

        columns = {col: _native_column(self.vertex_attrs[col]) for col in self.vertex_attrs.columns}
        for position, vertex in enumerate(self.vertices):
            attrs = {
                str(col): values[position]
                for col, values in columns.items()
                if values[position] is not None
            }
            G.add_node(str(vertex), **attrs)

        for source, target, weight, sign in self.edges[['source', 'target', 'weight', 'sign']].itertuples(index=False):
            G.add_edge(str(source), str(target), weight=float(weight), sign=int(sign))
        return G

    def __repr__(self) -> str:
        return (
            f"GraphArtifact({self.n_vertices} vertices, {self.n_edges} edges, "
            f"threshold={self.threshold:.4g})"
        )


def _native_column(column: pd.Series) -> list:
    """Column values as GraphML-compatible Python scalars (None = missing)."""
    if pd.api.types.is_bool_dtype(column):
        cast = bool
    elif pd.api.types.is_integer_dtype(column):
        cast = int
    elif pd.api.types.is_float_dtype(column):
        cast = float
    else:
        cast = str
    return [None if pd.isna(value) else cast(value) for value in column.tolist()]


def _check_square(adj: np.ndarray) -> np.ndarray:
    adj = np.asarray(adj, dtype=np.float64)
    if adj.ndim != 2 or adj.shape[0] != adj.shape[1]:
        raise InvalidParameterError(f"adjacency must be a square matrix, got shape {adj.shape}")
    return adj


def _check_export_params(threshold: float, max_edge_ratio: float) -> None:
    if not np.isfinite(threshold) or threshold < 0 or threshold > 1:
        raise InvalidParameterError(f"threshold must be in [0, 1], got {threshold}")
    if not np.isfinite(max_edge_ratio) or max_edge_ratio < 0:
        raise InvalidParameterError(f"max_edge_ratio must be >= 0, got {max_edge_ratio}")


def search_threshold(
    adj: np.ndarray,
    requested: float = 0.5,
    max_edge_ratio: float = 3,
) -> ThresholdSearch:
    """
    Find the export threshold for an adjacency matrix.

    Args:
        adj: Square adjacency matrix
        requested: Requested magnitude cutoff
        max_edge_ratio: Edge budget per vertex

    Returns:
        ThresholdSearch with the final threshold

    Raises:
        InvalidParameterError: Bad parameters or non-square matrix
        InsufficientDataError: Fewer than 2 vertices
    """
    _check_export_params(requested, max_edge_ratio)
    adj = _check_square(adj)
    n_vertices = adj.shape[0]
    if n_vertices < 2:
        raise InsufficientDataError(f"Need at least 2 vertices to export edges, got {n_vertices}")

    upper = np.triu_indices(n_vertices, k=1)
    magnitudes = np.abs(adj[upper])
    total_cells = magnitudes.size

    max_edges = max_edge_ratio * n_vertices
    n_keep = int(min(np.floor(max_edges), total_cells))
    if n_keep >= total_cells:
        edge_limit_cutoff = float(magnitudes.min())
    elif n_keep == 0:
        edge_limit_cutoff = float(np.nextafter(magnitudes.max(), np.inf))
    else:
        # n_keep-th strongest pair = quantile at rank 1 - n_keep / total_cells
        cutoff = np.partition(magnitudes, total_cells - n_keep)[total_cells - n_keep]
        if np.count_nonzero(magnitudes >= cutoff) > n_keep:
            # Pairs tied at the cutoff would overrun the budget
            above = magnitudes[magnitudes > cutoff]
            cutoff = above.min() if above.size else np.nextafter(cutoff, np.inf)
        edge_limit_cutoff = float(cutoff)

    min_threshold = float(np.quantile(magnitudes, SAFETY_FLOOR_QUANTILE, method="higher"))
    threshold = min(min_threshold, max(requested, edge_limit_cutoff))

    search = ThresholdSearch(
        requested=float(requested),
        max_edge_ratio=float(max_edge_ratio),
        max_edges=float(max_edges),
        edge_limit_cutoff=edge_limit_cutoff,
        min_threshold=min_threshold,
        threshold=float(threshold),
    )
    logger.debug(f"Threshold search: {search}")
    return search


def prune_adjacency(adj: np.ndarray, threshold: float) -> tuple[np.ndarray, np.ndarray]:
    """
    Zero sub-threshold entries on a copy of |adj|.

    Args:
        adj: Square adjacency matrix (not modified)
        threshold: Magnitude cutoff; entries with |a| < threshold become 0

    Returns:
        (pruned, keep): the pruned full-size magnitude matrix with a zero
        diagonal, and a boolean mask of vertices with at least one edge
    """
    pruned = np.abs(_check_square(adj))
    np.fill_diagonal(pruned, 0.0)
    pruned[pruned < threshold] = 0.0
    degree = np.count_nonzero(pruned, axis=1)
    return pruned, degree > 0


def align_annotations(annotations: pd.DataFrame, gene_ids: Sequence) -> pd.DataFrame:
    """
    Re-index an annotation table keyed by gene id into vertex order.

    Rows may come in any order; genes without an annotation get missing
    values, annotations for genes outside gene_ids are dropped.

    Raises:
        SchemaMismatchError: If the annotation index has duplicate gene ids
    """
    if not annotations.index.is_unique:
        dupes = annotations.index[annotations.index.duplicated()].unique().tolist()
        raise SchemaMismatchError(f"Annotation table has duplicate gene ids: {dupes[:5]}")

    gene_index = pd.Index(gene_ids)
    aligned = annotations.reindex(gene_index)
    n_missing = int(aligned.isna().all(axis=1).sum()) if len(aligned.columns) else 0
    if n_missing:
        logger.info(f"{n_missing} of {len(gene_index)} genes have no annotation")
    return aligned


def _vertex_table(
    gene_ids: pd.Index,
    vertex_attrs: Optional[pd.DataFrame],
    modules: Optional[ModuleAssignment | Sequence[int] | pd.Series],
) -> pd.DataFrame:
    n_vertices = len(gene_ids)

    if vertex_attrs is None:
        table = pd.DataFrame(index=gene_ids)
    else:
        if len(vertex_attrs) != n_vertices:
            raise SchemaMismatchError(
                f"vertex_attrs has {len(vertex_attrs)} rows for {n_vertices} vertices"
            )
        table = vertex_attrs.reset_index(drop=True)
        table.index = gene_ids

    if modules is not None:
        if isinstance(modules, ModuleAssignment):
            if not modules.labels.index.equals(gene_ids):
                raise SchemaMismatchError("ModuleAssignment genes do not match vertex order")
            labels = modules.labels.to_numpy()
        else:
            labels = np.asarray(modules.values if isinstance(modules, pd.Series) else modules)
            if len(labels) != n_vertices:
                raise SchemaMismatchError(
                    f"modules has {len(labels)} labels for {n_vertices} vertices"
                )
        for reserved in ('module', 'color'):
            if reserved in table.columns:
                logger.warning(f"vertex_attrs column '{reserved}' replaced by module labels")
        table['module'] = labels.astype(np.int64)
        table['color'] = [label_to_color(label) for label in labels]

    return table


def export_graph(
    adj: np.ndarray,
    threshold: float = 0.5,
    max_edge_ratio: float = 3,
    weighted: bool = True,
    vertex_attrs: Optional[pd.DataFrame] = None,
    gene_ids: Optional[Sequence] = None,
    modules: Optional[ModuleAssignment | Sequence[int] | pd.Series] = None,
    signs: Optional[np.ndarray] = None,
    path: Optional[str | os.PathLike] = None,
) -> GraphArtifact:
    """
    Threshold, prune, rescale and (optionally) write the co-expression graph.

    Args:
        adj: Adjacency matrix (genes × genes); never modified
        threshold: Requested magnitude cutoff in [0, 1]
        max_edge_ratio: Edge budget per vertex
        weighted: Keep rescaled weights (True) or collapse to 1.0 (False)
        vertex_attrs: Per-vertex table row-aligned to the original gene order
        gene_ids: Vertex identifiers (default: "gene_<i>")
        modules: ModuleAssignment or labels in gene order; adds module and
            color attributes
        signs: Matrix whose sign gives each edge's direction (typically the
            similarity matrix or its sign); default: sign of adj
        path: If given, write GraphML here after every step succeeded

    Returns:
        GraphArtifact

    Raises:
        InvalidParameterError: Bad threshold/ratio or non-square adj
        SchemaMismatchError: Attribute, module, sign or id length mismatch
        ZeroEdgesError: No edge survives pruning (retry with a lower
            threshold or a higher max_edge_ratio)
    """
    _check_export_params(threshold, max_edge_ratio)
    adj = _check_square(adj)
    n_vertices = adj.shape[0]

    if gene_ids is None:
        gene_ids = pd.Index([f"gene_{i}" for i in range(n_vertices)])
    gene_ids = pd.Index(gene_ids)
    if len(gene_ids) != n_vertices:
        raise SchemaMismatchError(
            f"gene_ids has {len(gene_ids)} entries for {n_vertices} vertices"
        )
    if signs is not None:
        signs = np.asarray(signs)
        if signs.shape != adj.shape:
            raise SchemaMismatchError(f"signs shape {signs.shape} does not match adjacency {adj.shape}")
    table = _vertex_table(gene_ids, vertex_attrs, modules)

    search = search_threshold(adj, requested=threshold, max_edge_ratio=max_edge_ratio)
    final_threshold = search.threshold

    pruned, keep = prune_adjacency(adj, final_threshold)
    if not keep.any():
        raise ZeroEdgesError(
            f"No edges survive threshold {final_threshold:.4g}; lower threshold "
            f"or raise max_edge_ratio",
            threshold=final_threshold,
        )

    rows, cols = np.nonzero(pruned)
    upper = rows < cols
    rows, cols = rows[upper], cols[upper]
    magnitudes = pruned[rows, cols]
    del pruned

    max_magnitude = float(magnitudes.max())
    if weighted and max_magnitude > final_threshold:
        weights = (magnitudes - final_threshold) / (max_magnitude - final_threshold)
        # Threshold-level pairs rescale to 0 and are not edges
        present = weights > 0
        rows, cols, weights = rows[present], cols[present], weights[present]
    else:
        weights = np.ones_like(magnitudes)

    # Degree recomputed from the final edge list
    keep_idx = np.unique(np.concatenate([rows, cols]))
    vertices = gene_ids[keep_idx]
    table = table.iloc[keep_idx]
    sign_source = adj if signs is None else signs

    edges = pd.DataFrame({
        'source': gene_ids[rows],
        'target': gene_ids[cols],
        'weight': weights,
        'sign': np.where(sign_source[rows, cols] < 0, -1, 1).astype(np.int64),
    })

    artifact = GraphArtifact(
        vertices=tuple(vertices),
        edges=edges,
        vertex_attrs=table,
        threshold=final_threshold,
        weighted=bool(weighted),
        search=search,
    )
    logger.info(
        f"Exported graph: {artifact.n_vertices}/{n_vertices} vertices, "
        f"{artifact.n_edges} edges (threshold {final_threshold:.4g}, "
        f"{n_vertices - artifact.n_vertices} orphans dropped)"
    )

    if path is not None:
        write_graphml(artifact, path)
    return artifact


def write_graphml(artifact: GraphArtifact, path: str | os.PathLike) -> None:
    """Write the artifact as GraphML atomically."""
    G = artifact.to_networkx()
    with atomic_writer(path, mode="wb") as fh:
        nx.write_graphml(G, fh, infer_numeric_types=True)
    logger.info(f"Wrote GraphML to {path}")


def read_graphml(path: str | os.PathLike) -> GraphArtifact:
    """
    Read a GraphML file written by write_graphml().

    Vertex identifiers come back as strings.
    """
    G = nx.read_graphml(path, node_type=str)

    vertices = tuple(G.nodes)
    vertex_attrs = pd.DataFrame.from_dict(
        {vertex: dict(data) for vertex, data in G.nodes(data=True)},
        orient='index',
    ).reindex(list(vertices))

    edge_rows = [
        (source, target, float(data.get('weight', 1.0)), int(data.get('sign', 1)))
        for source, target, data in G.edges(data=True)
    ]
    edges = pd.DataFrame(edge_rows, columns=['source', 'target', 'weight', 'sign'])

    return GraphArtifact(
        vertices=vertices,
        edges=edges,
        vertex_attrs=vertex_attrs,
        threshold=float(G.graph.get('threshold', float('nan'))),
        weighted=bool(G.graph.get('weighted', True)),
    )
