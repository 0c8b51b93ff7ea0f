"""
Core data structures and error types for co-expression network construction.

1. ExpressionMatrix: filtered, log-scaled genes × samples matrix
2. Error taxonomy shared by every pipeline stage

Examples:
    >>> from coexnet.core import ExpressionMatrix, ZeroEdgesError
"""

from coexnet.core.expression import ExpressionMatrix, as_expression_matrix
from coexnet.core.exceptions import (
    CoexnetError,
    DegenerateInputError,
    InvalidParameterError,
    InsufficientDataError,
    ZeroEdgesError,
    SchemaMismatchError,
)

__all__ = [
    'ExpressionMatrix',
    'as_expression_matrix',
    'CoexnetError',
    'DegenerateInputError',
    'InvalidParameterError',
    'InsufficientDataError',
    'ZeroEdgesError',
    'SchemaMismatchError',
]
