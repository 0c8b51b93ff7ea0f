"""Shared argparse type validators for CLI parameter bounds checking.

Intended as the ``type=`` argument in ``add_argument()``; they reject values
such as ``--power 0`` or ``--threshold 1.5`` before any data is loaded.
"""

from __future__ import annotations

import argparse


def _positive_int(value: str) -> int:
    """argparse type for positive integers (> 0)."""
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return ivalue


def _positive_float(value: str) -> float:
    """argparse type for positive floats (> 0)."""
    fvalue = float(value)
    if not fvalue > 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive float")
    return fvalue


def _non_negative_float(value: str) -> float:
    """argparse type for floats >= 0."""
    fvalue = float(value)
    if not fvalue >= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a non-negative float")
    return fvalue


def _unit_interval(value: str) -> float:
    """argparse type for values in the closed interval [0, 1]."""
    fvalue = float(value)
    if not (0 <= fvalue <= 1):
        raise argparse.ArgumentTypeError(
            f"{value} is not in [0, 1]"
        )
    return fvalue
