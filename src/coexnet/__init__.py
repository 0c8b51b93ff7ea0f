"""
coexnet - Gene co-expression network construction

Builds a weighted co-expression network from a filtered, log-scaled
expression matrix, partitions it into modules with dynamic branch cutting,
and exports a pruned, rescaled graph with module and annotation metadata
as GraphML.
"""

__version__ = "0.1.0"

from coexnet.core.expression import ExpressionMatrix
from coexnet.core.exceptions import (
    CoexnetError,
    DegenerateInputError,
    InvalidParameterError,
    InsufficientDataError,
    ZeroEdgesError,
    SchemaMismatchError,
)
from coexnet.pipeline import NetworkConfig, NetworkResult, build_network

__all__ = [
    "ExpressionMatrix",
    "CoexnetError",
    "DegenerateInputError",
    "InvalidParameterError",
    "InsufficientDataError",
    "ZeroEdgesError",
    "SchemaMismatchError",
    "NetworkConfig",
    "NetworkResult",
    "build_network",
]
