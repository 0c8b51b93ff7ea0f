"""
Writers for network run outputs.

The GraphML artifact itself is written by coexnet.network.export. This module
covers the tabular side products of a run:

    modules.csv   gene, module, color (one row per input gene)
    summary.json  parameters, threshold search, module and edge counts

Both go through the atomic temp-file + rename helpers so an interrupted run
never leaves a half-written table next to a complete graph.

Examples:
    >>> from coexnet.io.writers import write_module_table, write_run_summary
    >>> write_module_table(result.modules, Path("results/modules.csv"))
    >>> write_run_summary(result, Path("results/summary.json"))
"""

from __future__ import annotations

import logging
from pathlib import Path

from coexnet.network.modules import ModuleAssignment
from coexnet.pipeline import NetworkResult
from coexnet.utils.fileio import atomic_write_csv, atomic_write_json

logger = logging.getLogger(__name__)

__all__ = ['write_module_table', 'write_run_summary']


def write_module_table(modules: ModuleAssignment, path: Path) -> None:
    """
    Write gene → module/color assignments as CSV.

    Raises:
        TypeError: If modules is not a ModuleAssignment
    """
    if not isinstance(modules, ModuleAssignment):
        raise TypeError(f"modules must be ModuleAssignment, got {type(modules)}")

    table = modules.to_frame()
    table.index.name = 'gene'
    atomic_write_csv(path, table)
    logger.info(f"Wrote module assignments to {path}")


def write_run_summary(result: NetworkResult, path: Path) -> None:
    """Write NetworkResult.summary() as JSON."""
    atomic_write_json(path, result.summary())
    logger.info(f"Wrote run summary to {path}")
