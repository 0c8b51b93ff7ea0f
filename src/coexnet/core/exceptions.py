"""
Error taxonomy for co-expression network construction.

Every error raised by the pipeline derives from CoexnetError so callers can
catch the whole family at once. Fatal input/parameter problems also derive
from ValueError; ZeroEdgesError does not, because it signals a recoverable
export outcome rather than a bad argument.

    CoexnetError
    ├── DegenerateInputError    all gene rows identical, distance cannot normalize
    ├── InvalidParameterError   power <= 0, alpha + beta != 1, negative ratios
    ├── InsufficientDataError   too few genes to cluster
    ├── ZeroEdgesError          nothing survives pruning (retry export only)
    └── SchemaMismatchError     attribute table not aligned to vertices
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    'CoexnetError',
    'DegenerateInputError',
    'InvalidParameterError',
    'InsufficientDataError',
    'ZeroEdgesError',
    'SchemaMismatchError',
]


class CoexnetError(Exception):
    """Base exception for co-expression network operations."""
    pass


class DegenerateInputError(CoexnetError, ValueError):
    """Raised when the expression matrix cannot be normalized (e.g. identical rows)."""
    pass


class InvalidParameterError(CoexnetError, ValueError):
    """Raised when a stage parameter is out of range."""
    pass


class InsufficientDataError(CoexnetError, ValueError):
    """Raised when too few genes are available for clustering."""
    pass


class ZeroEdgesError(CoexnetError):
    """
    Raised when no edge survives export-time pruning.

    Recoverable: lower the threshold or raise max_edge_ratio and re-run the
    export step. Similarity and adjacency do not need to be recomputed.

    Attributes:
        threshold: Final threshold that removed every edge
    """

    def __init__(self, message: str, threshold: Optional[float] = None):
        super().__init__(message)
        self.threshold = threshold


class SchemaMismatchError(CoexnetError, ValueError):
    """Raised when a per-vertex table does not line up with the vertex set."""
    pass
