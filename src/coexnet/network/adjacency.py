"""
Soft-threshold transform from similarity to adjacency.

Hard thresholds (|s| > 0.8 → edge) throw away information and are brittle
around the cutoff. A soft power-law threshold keeps every pair but pushes weak
associations towards zero much faster than strong ones:

    signed:    a = ((1 + s) / 2) ** power
    unsigned:  a = ((1 + |s|) / 2) ** power

In the signed network, s = -1 maps to 0 and s = +1 to 1, so negative
associations are down-weighted relative to positive ones of the same
magnitude. In the unsigned network both directions are treated alike.

Typical powers are 6-20; pick_soft_threshold() scans candidate powers and
reports how close each resulting connectivity distribution is to scale-free.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from coexnet.core.exceptions import InsufficientDataError, InvalidParameterError

logger = logging.getLogger(__name__)

__all__ = [
    'to_adjacency',
    'scale_free_fit',
    'pick_soft_threshold',
    'SoftThresholdResult',
    'DEFAULT_POWERS',
]

DEFAULT_POWERS = tuple(range(1, 11)) + (12, 14, 16, 18, 20)


def _check_square(matrix: np.ndarray, name: str) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise InvalidParameterError(f"{name} must be a square matrix, got shape {matrix.shape}")
    return matrix


def _as_power(value) -> float:
    """Integral powers come back as int (6, not 6.0)."""
    value = float(value)
    return int(value) if value.is_integer() else value


def _check_power(power: float) -> None:
    if not np.isfinite(power) or power <= 0:
        raise InvalidParameterError(f"power must be > 0, got {power}")


def to_adjacency(sim: np.ndarray, power: float = 12, signed: bool = True) -> np.ndarray:
    """
    Convert a similarity matrix into an adjacency matrix.

    Args:
        sim: Symmetric similarity matrix with values in [-1, 1]
        power: Soft-threshold exponent (> 0)
        signed: Keep the direction distinction (True) or use |s| (False)

    Returns:
        Adjacency matrix in [0, 1] with the same gene index as sim.
        The input is not modified.

    Raises:
        InvalidParameterError: If power <= 0 or sim is not square

    Examples:
        >>> adj = to_adjacency(sim, power=1, signed=False)
        >>> to_adjacency(np.zeros((3, 3)), power=1, signed=False)[0, 1]
        0.5
    """
    _check_power(power)
    sim = _check_square(sim, "similarity")

    if signed:
        adjacency = sim + 1.0
    else:
        adjacency = np.abs(sim)
        adjacency += 1.0
    adjacency *= 0.5
    # Guard against similarity drifting a hair outside [-1, 1]
    np.clip(adjacency, 0.0, 1.0, out=adjacency)
    np.power(adjacency, power, out=adjacency)

    logger.debug(
        f"Adjacency (power={power}, signed={signed}): "
        f"range [{adjacency.min():.3g}, {adjacency.max():.3g}]"
    )
    return adjacency


def scale_free_fit(connectivity: np.ndarray, n_breaks: int = 10) -> tuple[float, float]:
    """
    Fit log10 p(k) ~ log10 k over a binned connectivity distribution.

    Args:
        connectivity: Per-gene connectivity k
        n_breaks: Number of histogram bins

    Returns:
        (r_squared, slope). Both NaN when the distribution is degenerate
        (all genes equally connected).
    """
    k = np.asarray(connectivity, dtype=np.float64)
    if k.size == 0 or np.ptp(k) == 0:
        return float("nan"), float("nan")
    counts, edges = np.histogram(k, bins=n_breaks)
    midpoints = 0.5 * (edges[1:] + edges[:-1])

    bin_index = np.clip(np.digitize(k, edges[1:-1]), 0, n_breaks - 1)
    mean_k = np.array([
        k[bin_index == b].mean() if counts[b] > 0 else midpoints[b]
        for b in range(n_breaks)
    ])
    mean_k[mean_k <= 0] = midpoints[mean_k <= 0]
    if np.any(mean_k <= 0):
        return float("nan"), float("nan")

    log_k = np.log10(mean_k)
    log_p = np.log10(counts / len(k) + 1e-9)
    if np.ptp(log_k) == 0:
        return float("nan"), float("nan")

    fit = stats.linregress(log_k, log_p)
    return float(fit.rvalue ** 2), float(fit.slope)


@dataclass
class SoftThresholdResult:
    """
    Scale-free topology scan across candidate powers.

    Attributes:
        table: One row per power with columns power, sft_r_squared (signed:
            -sign(slope) * R²), slope, mean_k, median_k, max_k
        power_estimate: Lowest power whose signed R² reaches r_squared_cut,
            or None if no power does
        r_squared_cut: Cutoff used for power_estimate
    """
    table: pd.DataFrame
    power_estimate: Optional[float]
    r_squared_cut: float = 0.85
    signed: bool = field(default=True)

    def best_power(self) -> float:
        """power_estimate if found, otherwise the power with the highest fit."""
        if self.power_estimate is not None:
            return self.power_estimate
        fits = self.table['sft_r_squared'].fillna(-np.inf)
        return _as_power(self.table.loc[fits.idxmax(), 'power'])


def pick_soft_threshold(
    sim: np.ndarray,
    powers: Optional[Sequence[float]] = None,
    signed: bool = True,
    r_squared_cut: float = 0.85,
    n_breaks: int = 10,
) -> SoftThresholdResult:
    """
    Scan soft-threshold powers for scale-free topology.

    For each power, connectivity k_i = sum_j a_ij - a_ii is computed from the
    adjacency and summarized with scale_free_fit().

    Args:
        sim: Similarity matrix
        powers: Candidate powers (default: 1..10, 12, 14, 16, 18, 20)
        signed: Passed to to_adjacency()
        r_squared_cut: Signed R² required for power_estimate
        n_breaks: Histogram bins for the fit

    Returns:
        SoftThresholdResult

    Raises:
        InvalidParameterError: Non-positive power or bad n_breaks
        InsufficientDataError: Fewer than 3 genes
    """
    sim = _check_square(sim, "similarity")
    if sim.shape[0] < 3:
        raise InsufficientDataError(
            f"Need at least 3 genes for a scale-free fit, got {sim.shape[0]}"
        )
    if n_breaks < 2:
        raise InvalidParameterError(f"n_breaks must be >= 2, got {n_breaks}")

    powers = sorted(DEFAULT_POWERS if powers is None else powers)
    for power in powers:
        _check_power(power)

    rows = []
    for power in powers:
        adjacency = to_adjacency(sim, power=power, signed=signed)
        k = adjacency.sum(axis=1) - np.diag(adjacency)
        del adjacency
        r_squared, slope = scale_free_fit(k, n_breaks=n_breaks)
        rows.append({
            'power': power,
            'sft_r_squared': -np.sign(slope) * r_squared,
            'slope': slope,
            'mean_k': float(k.mean()),
            'median_k': float(np.median(k)),
            'max_k': float(k.max()),
        })

    table = pd.DataFrame(rows)
    passing = table[table['sft_r_squared'] >= r_squared_cut]
    power_estimate = _as_power(passing['power'].min()) if not passing.empty else None

    if power_estimate is None:
        logger.warning(
            f"No power reached scale-free R² >= {r_squared_cut}; "
            f"best fit {table['sft_r_squared'].max():.3f}"
        )
    else:
        logger.info(f"Soft-threshold power estimate: {power_estimate}")

    return SoftThresholdResult(
        table=table,
        power_estimate=power_estimate,
        r_squared_cut=r_squared_cut,
        signed=signed,
    )
