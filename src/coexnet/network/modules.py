"""
Module detection by hierarchical clustering with dynamic branch cutting.

Genes are clustered with average linkage on the dissimilarity 1 - adjacency.
A single static cut height does poorly on co-expression dendrograms: tight
modules merge low, diffuse ones merge high, and one height either fuses the
tight modules or shatters the diffuse ones. The dynamic cut instead inspects
each branch's own merge-height profile.

Branch Cutting:
    Heights are expressed relative to two reference levels of the tree:
        ref_height = merge height at the 5% quantile of all merges
        cut_height = ref_height + 0.99 * (max_height - ref_height)

    The "core" of a branch is its lowest core_size merges, with
        base      = min_module_size / 2 + 1
        core_size = base + sqrt(size - base)   (size > base), else size
    and core scatter = mean height of those core merges.

    A child branch is DISTINCT under its parent merge when
        size >= min_module_size
        core_scatter <= max_abs_core_scatter
        parent_height - core_scatter >= min_abs_gap

    Traversal is top-down from the root:
        - merges above cut_height are always split
        - a merge whose two children are both distinct is split
        - otherwise a branch whose core scatter qualifies becomes a module
        - otherwise the traversal descends into its children
    Genes never placed in a module are unassigned (label -1).

Tunables:
    deep_split selects the relative core scatter / gap limits. Finer
    splitting (True) tolerates looser cores and accepts smaller gaps, so
    nested sub-clusters split off more readily:

        deep_split   max_core_scatter   min_gap
        False        0.64               0.27
        True         0.91               0.0675

    BranchCutParams exposes these so the cut can be reproduced and tested
    independently of the clustering step.

Module Colors:
    label_to_color() is a total, deterministic map from label to color:
        -1                      -> "grey"
        1..len(MODULE_COLORS)   -> standard module color names
        beyond the palette      -> hex colors stepped around the hue circle
                                   by the golden ratio (no wrap-around reuse
                                   of palette names)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from matplotlib.colors import hsv_to_rgb, to_hex
from scipy.cluster.hierarchy import leaves_list, linkage
from scipy.spatial.distance import squareform

from coexnet.core.exceptions import (
    InsufficientDataError,
    InvalidParameterError,
    SchemaMismatchError,
)

logger = logging.getLogger(__name__)

__all__ = [
    'UNASSIGNED_LABEL',
    'UNASSIGNED_COLOR',
    'MODULE_COLORS',
    'BranchCutParams',
    'Dendrogram',
    'ModuleAssignment',
    'build_dendrogram',
    'cut_dendrogram',
    'detect_modules',
    'label_to_color',
]

UNASSIGNED_LABEL = -1
UNASSIGNED_COLOR = "grey"

MODULE_COLORS = (
    "turquoise", "blue", "brown", "yellow", "green", "red", "black", "pink",
    "magenta", "purple", "greenyellow", "tan", "salmon", "cyan", "midnightblue",
    "lightcyan", "grey60", "lightgreen", "lightyellow", "royalblue", "darkred",
    "darkgreen", "darkturquoise", "darkgrey", "orange", "darkorange", "white",
    "skyblue", "saddlebrown", "steelblue", "paleturquoise", "violet",
    "darkolivegreen", "darkmagenta",
)

GOLDEN_RATIO_CONJUGATE = 0.618033988749895

# Relative core scatter limits indexed by deep_split
CORE_SCATTER_BY_DEEP_SPLIT = {False: 0.64, True: 0.91}
REFERENCE_QUANTILE = 0.05
CUT_HEIGHT_FRACTION = 0.99


def label_to_color(label: int) -> str:
    """
    Map a module label to a color.

    Args:
        label: Module label (positive integer) or UNASSIGNED_LABEL

    Returns:
        Color name from MODULE_COLORS, "grey" for unassigned, or a hex
        string for labels beyond the palette

    Raises:
        InvalidParameterError: For 0 or labels below -1
    """
    label = int(label)
    if label == UNASSIGNED_LABEL:
        return UNASSIGNED_COLOR
    if label < 1:
        raise InvalidParameterError(
            f"Module labels are positive integers or {UNASSIGNED_LABEL}, got {label}"
        )
    if label <= len(MODULE_COLORS):
        return MODULE_COLORS[label - 1]

    step = label - len(MODULE_COLORS)
    hue = (step * GOLDEN_RATIO_CONJUGATE) % 1.0
    return to_hex(hsv_to_rgb((hue, 0.65, 0.85)))


@dataclass(frozen=True)
class BranchCutParams:
    """
    Tunables of the dynamic branch cut.

    Attributes:
        min_module_size: Smallest branch that may become a module
        max_core_scatter: Core scatter limit, relative to [ref, cut] heights
        min_gap: Required gap between a branch core and its parent merge,
            relative to the [ref, cut] height range
    """
    min_module_size: int = 15
    max_core_scatter: float = CORE_SCATTER_BY_DEEP_SPLIT[True]
    min_gap: float = (1.0 - CORE_SCATTER_BY_DEEP_SPLIT[True]) * 0.75

    @classmethod
    def from_deep_split(cls, min_module_size: int, deep_split: bool) -> BranchCutParams:
        max_core_scatter = CORE_SCATTER_BY_DEEP_SPLIT[bool(deep_split)]
        return cls(
            min_module_size=min_module_size,
            max_core_scatter=max_core_scatter,
            min_gap=(1.0 - max_core_scatter) * 0.75,
        )

    def core_size(self, branch_size: int) -> int:
        base = self.min_module_size / 2 + 1
        if base < branch_size:
            return int(base + np.sqrt(branch_size - base))
        return int(branch_size)


class Dendrogram:
    """
    Immutable binary merge tree over genes.

    Wraps a scipy linkage matrix. Nodes 0..n-1 are leaves (genes in input
    order); node n + i is the merge in row i of the linkage matrix. Because
    every subtree occupies a contiguous run in the dendrogram leaf order,
    subtree membership is answered with range checks instead of tree walks.
    """

    def __init__(self, linkage_matrix: np.ndarray, gene_ids: pd.Index):
        linkage_matrix = np.asarray(linkage_matrix, dtype=np.float64)
        if linkage_matrix.ndim != 2 or linkage_matrix.shape[1] != 4:
            raise ValueError(f"linkage matrix must be (n-1) × 4, got {linkage_matrix.shape}")
        if linkage_matrix.shape[0] != len(gene_ids) - 1:
            raise ValueError(
                f"linkage has {linkage_matrix.shape[0]} merges for {len(gene_ids)} genes"
            )

        linkage_matrix = linkage_matrix.copy()
        linkage_matrix.flags.writeable = False
        self._linkage = linkage_matrix
        self._gene_ids = gene_ids
        self._n = len(gene_ids)

        order = leaves_list(linkage_matrix)
        position = np.empty(self._n, dtype=np.int64)
        position[order] = np.arange(self._n)

        n_merges = self._n - 1
        lo = np.empty(n_merges, dtype=np.int64)
        hi = np.empty(n_merges, dtype=np.int64)
        for i in range(n_merges):
            a, b = int(linkage_matrix[i, 0]), int(linkage_matrix[i, 1])
            lo_a, hi_a = self._span(a, position, lo, hi)
            lo_b, hi_b = self._span(b, position, lo, hi)
            lo[i] = min(lo_a, lo_b)
            hi[i] = max(hi_a, hi_b)

        self._order = order
        self._merge_lo = lo
        self._merge_hi = hi

    def _span(self, node, position, lo, hi):
        if node < self._n:
            return position[node], position[node]
        return lo[node - self._n], hi[node - self._n]

    @property
    def linkage(self) -> np.ndarray:
        return self._linkage

    @property
    def gene_ids(self) -> pd.Index:
        return self._gene_ids

    @property
    def n_leaves(self) -> int:
        return self._n

    @property
    def root(self) -> int:
        return 2 * self._n - 2

    @property
    def heights(self) -> np.ndarray:
        """Merge heights in linkage row order."""
        return self._linkage[:, 2]

    def is_leaf(self, node: int) -> bool:
        return node < self._n

    def children(self, node: int) -> tuple[int, int]:
        row = self._linkage[node - self._n]
        return int(row[0]), int(row[1])

    def height(self, node: int) -> float:
        if self.is_leaf(node):
            return 0.0
        return float(self._linkage[node - self._n, 2])

    def size(self, node: int) -> int:
        if self.is_leaf(node):
            return 1
        return int(self._linkage[node - self._n, 3])

    def leaves(self, node: int) -> np.ndarray:
        """Leaf indices (input gene positions) under node, sorted."""
        if self.is_leaf(node):
            return np.array([node], dtype=np.int64)
        i = node - self._n
        return np.sort(self._order[self._merge_lo[i]:self._merge_hi[i] + 1])

    def merge_heights(self, node: int) -> np.ndarray:
        """Sorted heights of every merge inside the subtree rooted at node."""
        if self.is_leaf(node):
            return np.empty(0, dtype=np.float64)
        i = node - self._n
        inside = (self._merge_lo >= self._merge_lo[i]) & (self._merge_hi <= self._merge_hi[i])
        return np.sort(self.heights[inside])

    def reference_heights(self) -> tuple[float, float]:
        """(ref_height, cut_height) used to scale branch-cut tunables."""
        sorted_heights = np.sort(self.heights)
        ref_merge = max(int(round(len(sorted_heights) * REFERENCE_QUANTILE)) - 1, 0)
        ref_height = float(sorted_heights[ref_merge])
        max_height = float(sorted_heights[-1])
        cut_height = ref_height + CUT_HEIGHT_FRACTION * (max_height - ref_height)
        return ref_height, cut_height

    def __repr__(self) -> str:
        return f"Dendrogram({self._n} leaves, max height {self.heights.max():.3f})"


def build_dendrogram(adj: np.ndarray, gene_ids: Optional[Sequence] = None) -> Dendrogram:
    """
    Average-linkage clustering on 1 - adjacency.

    Raises:
        InsufficientDataError: Fewer than 2 genes
        InvalidParameterError: Non-square input
    """
    adj = np.asarray(adj, dtype=np.float64)
    if adj.ndim != 2 or adj.shape[0] != adj.shape[1]:
        raise InvalidParameterError(f"adjacency must be a square matrix, got shape {adj.shape}")
    n_genes = adj.shape[0]
    if n_genes < 2:
        raise InsufficientDataError(f"Need at least 2 genes to cluster, got {n_genes}")

    gene_ids = _gene_index(gene_ids, n_genes)

    distance = 1.0 - adj
    distance += distance.T
    distance *= 0.5
    np.clip(distance, 0.0, None, out=distance)
    np.fill_diagonal(distance, 0.0)

    linkage_matrix = linkage(squareform(distance, checks=False), method="average")
    return Dendrogram(linkage_matrix, gene_ids)


def cut_dendrogram(dendrogram: Dendrogram, params: BranchCutParams) -> list[np.ndarray]:
    """
    Dynamic branch cut over a dendrogram.

    Args:
        dendrogram: Merge tree
        params: Branch-cut tunables

    Returns:
        List of disjoint leaf-index arrays, one per module, each with at
        least params.min_module_size genes. Unlisted genes are unassigned.
    """
    min_size = params.min_module_size
    ref_height, cut_height = dendrogram.reference_heights()
    height_range = cut_height - ref_height
    max_abs_core_scatter = ref_height + params.max_core_scatter * height_range
    min_abs_gap = params.min_gap * height_range

    logger.debug(
        f"Branch cut: ref={ref_height:.4f} cut={cut_height:.4f} "
        f"max_core_scatter={max_abs_core_scatter:.4f} min_gap={min_abs_gap:.4f}"
    )

    scatter_cache: dict[int, float] = {}

    def core_scatter(node: int) -> float:
        if node not in scatter_cache:
            heights = dendrogram.merge_heights(node)
            if len(heights) == 0:
                scatter_cache[node] = 0.0
            else:
                n_core = max(params.core_size(dendrogram.size(node)) - 1, 1)
                scatter_cache[node] = float(heights[:n_core].mean())
        return scatter_cache[node]

    def is_distinct(node: int, parent_height: float) -> bool:
        if dendrogram.size(node) < min_size:
            return False
        scatter = core_scatter(node)
        return scatter <= max_abs_core_scatter and parent_height - scatter >= min_abs_gap

    modules = []
    stack = [dendrogram.root]
    while stack:
        node = stack.pop()
        if dendrogram.size(node) < min_size:
            continue
        if dendrogram.is_leaf(node):
            modules.append(dendrogram.leaves(node))
            continue

        height = dendrogram.height(node)
        left, right = dendrogram.children(node)

        if height > cut_height or (is_distinct(left, height) and is_distinct(right, height)):
            stack.extend((right, left))
        elif core_scatter(node) <= max_abs_core_scatter:
            modules.append(dendrogram.leaves(node))
        else:
            stack.extend((right, left))

    return modules


@dataclass(frozen=True, eq=False)
class ModuleAssignment:
    """
    Gene → module label mapping.

    Labels 1..k are modules ordered by decreasing size; UNASSIGNED_LABEL
    marks genes outside every module. Label values carry no meaning beyond
    group identity.

    Attributes:
        labels: Integer labels indexed by gene id, in input gene order
        params: Branch-cut tunables that produced the labels
        dendrogram: Merge tree the labels were cut from
    """
    labels: pd.Series
    params: Optional[BranchCutParams] = None
    dendrogram: Optional[Dendrogram] = None

    @property
    def n_modules(self) -> int:
        return int(self.labels[self.labels != UNASSIGNED_LABEL].nunique())

    @property
    def n_unassigned(self) -> int:
        return int((self.labels == UNASSIGNED_LABEL).sum())

    def module_sizes(self) -> pd.Series:
        """Genes per module label, unassigned excluded."""
        assigned = self.labels[self.labels != UNASSIGNED_LABEL]
        return assigned.value_counts().sort_index()

    def genes_in(self, label: int) -> list:
        return self.labels.index[self.labels == label].tolist()

    def colors(self) -> pd.Series:
        return self.labels.map(label_to_color)

    def to_frame(self) -> pd.DataFrame:
        """DataFrame with module and color columns, indexed by gene."""
        return pd.DataFrame({'module': self.labels, 'color': self.colors()})

    def __getitem__(self, gene) -> int:
        return int(self.labels[gene])

    def __len__(self) -> int:
        return len(self.labels)


def detect_modules(
    adj: np.ndarray,
    gene_ids: Optional[Sequence] = None,
    min_module_size: int = 15,
    deep_split: bool = True,
) -> ModuleAssignment:
    """
    Cluster genes into co-expression modules.

    Args:
        adj: Adjacency matrix (genes × genes) in [0, 1]
        gene_ids: Gene identifiers in matrix order (default: "gene_<i>")
        min_module_size: Minimum genes per module
        deep_split: Finer (True) or coarser (False) branch splitting

    Returns:
        ModuleAssignment

    Raises:
        InvalidParameterError: min_module_size < 1 or non-square adj
        InsufficientDataError: Fewer than 2 genes, or fewer genes than
            min_module_size
    """
    if min_module_size < 1:
        raise InvalidParameterError(f"min_module_size must be >= 1, got {min_module_size}")

    adj = np.asarray(adj, dtype=np.float64)
    if adj.ndim != 2 or adj.shape[0] != adj.shape[1]:
        raise InvalidParameterError(f"adjacency must be a square matrix, got shape {adj.shape}")
    n_genes = adj.shape[0]
    if n_genes < 2:
        raise InsufficientDataError(f"Need at least 2 genes to cluster, got {n_genes}")
    if n_genes < min_module_size:
        raise InsufficientDataError(
            f"{n_genes} genes cannot form a module of min_module_size={min_module_size}"
        )

    gene_ids = _gene_index(gene_ids, n_genes)
    dendrogram = build_dendrogram(adj, gene_ids)
    params = BranchCutParams.from_deep_split(min_module_size, deep_split)
    modules = cut_dendrogram(dendrogram, params)

    # Largest module first; ties by first gene position
    modules.sort(key=lambda members: (-len(members), int(members.min())))
    labels = np.full(n_genes, UNASSIGNED_LABEL, dtype=np.int64)
    for label, members in enumerate(modules, start=1):
        labels[members] = label

    assignment = ModuleAssignment(
        labels=pd.Series(labels, index=gene_ids, name="module"),
        params=params,
        dendrogram=dendrogram,
    )
    logger.info(
        f"Detected {assignment.n_modules} modules "
        f"({assignment.n_unassigned} of {n_genes} genes unassigned, "
        f"min_module_size={min_module_size}, deep_split={deep_split})"
    )
    return assignment


def _gene_index(gene_ids: Optional[Sequence], n_genes: int) -> pd.Index:
    if gene_ids is None:
        return pd.Index([f"gene_{i}" for i in range(n_genes)])
    gene_ids = pd.Index(gene_ids)
    if len(gene_ids) != n_genes:
        raise SchemaMismatchError(
            f"gene_ids length ({len(gene_ids)}) must match matrix size ({n_genes})"
        )
    return gene_ids
