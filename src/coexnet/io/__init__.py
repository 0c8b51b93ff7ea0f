"""
I/O for expression inputs and network run outputs.

Key Functions:
    - load_expression_matrix: genes × samples table → ExpressionMatrix
    - load_annotation_table: per-gene annotation table
    - write_module_table: module assignments as CSV
    - write_run_summary: run summary as JSON

The GraphML reader/writer lives in coexnet.network.export.
"""

from coexnet.io.loaders import load_expression_matrix, load_annotation_table, sniff_delimiter
from coexnet.io.writers import write_module_table, write_run_summary

__all__ = [
    'load_expression_matrix',
    'load_annotation_table',
    'sniff_delimiter',
    'write_module_table',
    'write_run_summary',
]
