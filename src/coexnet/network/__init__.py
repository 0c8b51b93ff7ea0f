"""
Network construction stages.

    similarity  hybrid correlation/distance similarity
    adjacency   soft power-law threshold, scale-free power scan
    modules     average-linkage clustering + dynamic branch cut
    export      threshold search, pruning, rescaling, GraphML
"""

from coexnet.network.similarity import compute_similarity, pearson_correlation
from coexnet.network.adjacency import (
    to_adjacency,
    pick_soft_threshold,
    scale_free_fit,
    SoftThresholdResult,
)
from coexnet.network.modules import (
    UNASSIGNED_LABEL,
    MODULE_COLORS,
    BranchCutParams,
    Dendrogram,
    ModuleAssignment,
    build_dendrogram,
    cut_dendrogram,
    detect_modules,
    label_to_color,
)
from coexnet.network.export import (
    GraphArtifact,
    ThresholdSearch,
    align_annotations,
    export_graph,
    prune_adjacency,
    read_graphml,
    search_threshold,
    write_graphml,
)

__all__ = [
    # Similarity
    'compute_similarity',
    'pearson_correlation',
    # Adjacency
    'to_adjacency',
    'pick_soft_threshold',
    'scale_free_fit',
    'SoftThresholdResult',
    # Modules
    'UNASSIGNED_LABEL',
    'MODULE_COLORS',
    'BranchCutParams',
    'Dendrogram',
    'ModuleAssignment',
    'build_dendrogram',
    'cut_dendrogram',
    'detect_modules',
    'label_to_color',
    # Export
    'GraphArtifact',
    'ThresholdSearch',
    'align_annotations',
    'export_graph',
    'prune_adjacency',
    'read_graphml',
    'search_threshold',
    'write_graphml',
]
