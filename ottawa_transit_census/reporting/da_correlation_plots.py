"""Bivariate correlations between DA transit and census metrics.

For each pair in :data:`CORRELATION_PAIRS` the Pearson coefficient is computed
over DAs where both values are present, and a scatter plot with an OLS trend
line and 95 % confidence band is saved.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy import stats

from ottawa_transit_census.service_coverage_geotools.da_transit_metrics import (
    AVERAGE_INCOME_FIELD,
    STOP_DENSITY_FIELD,
    VEHICLE_RATIO_FIELD,
)
from ottawa_transit_census.service_coverage_geotools.stop_da_spatial_join import (
    STOP_COUNT_FIELD,
)

# =============================================================================
# CONFIGURATION
# =============================================================================

CORRELATION_PAIRS: tuple[tuple[str, str], ...] = (
    (STOP_DENSITY_FIELD, VEHICLE_RATIO_FIELD),
    (STOP_COUNT_FIELD, AVERAGE_INCOME_FIELD),
    (STOP_DENSITY_FIELD, AVERAGE_INCOME_FIELD),
)

AXIS_LABELS = {
    STOP_COUNT_FIELD: "Bus stops in DA",
    STOP_DENSITY_FIELD: "Bus stops per km²",
    VEHICLE_RATIO_FIELD: "Car/truck/van commuters per resident",
    AVERAGE_INCOME_FIELD: "Average income ($)",
}

CONFIDENCE_LEVEL = 95
PLOT_DPI = 150

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelationResult:
    """Pearson correlation between two DA columns."""

    x: str
    y: str
    r: float
    p_value: float
    n: int

    def describe(self) -> str:
        """One-line summary for logs and plot titles."""
        return f"{self.x} vs {self.y}: r = {self.r:.3f} (p = {self.p_value:.3g}, n = {self.n})"


# =============================================================================
# STATISTICS
# =============================================================================


def complete_pairs(df: pd.DataFrame, x: str, y: str) -> pd.DataFrame:
    """Rows where both ``x`` and ``y`` are finite numbers."""
    pairs = df[[x, y]].apply(pd.to_numeric, errors="coerce").astype(float)
    finite = np.isfinite(pairs[x]) & np.isfinite(pairs[y])
    return pairs.loc[finite]


def pearson_correlation(df: pd.DataFrame, x: str, y: str) -> CorrelationResult:
    """Pearson r between ``x`` and ``y`` over complete observation pairs.

    ``r`` is NaN when fewer than two complete pairs exist or when either
    column is constant over them.
    """
    pairs = complete_pairs(df, x, y)
    n = len(pairs)

    if n < 2 or pairs[x].nunique() < 2 or pairs[y].nunique() < 2:
        LOGGER.warning("%s vs %s: correlation undefined (n = %d or constant input)", x, y, n)
        return CorrelationResult(x=x, y=y, r=math.nan, p_value=math.nan, n=n)

    r, p_value = stats.pearsonr(pairs[x].to_numpy(), pairs[y].to_numpy())
    return CorrelationResult(x=x, y=y, r=float(r), p_value=float(p_value), n=n)


# =============================================================================
# PLOTS
# =============================================================================


def plot_correlation(
    df: pd.DataFrame,
    x: str,
    y: str,
    path: str | Path,
    *,
    result: CorrelationResult | None = None,
) -> Path:
    """Scatter of ``y`` against ``x`` with an OLS trend line and confidence band."""
    if result is None:
        result = pearson_correlation(df, x, y)

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)

    pairs = complete_pairs(df, x, y)
    fig, ax = plt.subplots(figsize=(8, 6))
    sns.regplot(
        data=pairs,
        x=x,
        y=y,
        ci=CONFIDENCE_LEVEL,
        fit_reg=result.n >= 3 and math.isfinite(result.r),
        ax=ax,
        scatter_kws={"s": 12, "alpha": 0.5},
        line_kws={"color": "#d62728"},
    )
    ax.set_xlabel(AXIS_LABELS.get(x, x))
    ax.set_ylabel(AXIS_LABELS.get(y, y))
    ax.set_title(f"Pearson r = {result.r:.3f} (n = {result.n})")
    fig.tight_layout()
    fig.savefig(out, dpi=PLOT_DPI)
    plt.close(fig)

    LOGGER.info("Wrote %s", out)
    return out


def correlation_plot_path(output_dir: str | Path, x: str, y: str) -> Path:
    return Path(output_dir) / f"corr_{x}_vs_{y}.png"


def run_correlations(
    df: pd.DataFrame,
    output_dir: str | Path,
    pairs: tuple[tuple[str, str], ...] = CORRELATION_PAIRS,
) -> list[tuple[CorrelationResult, Path]]:
    """Compute, log and plot every configured pair."""
    results: list[tuple[CorrelationResult, Path]] = []
    for x, y in pairs:
        result = pearson_correlation(df, x, y)
        LOGGER.info("%s", result.describe())
        path = plot_correlation(df, x, y, correlation_plot_path(output_dir, x, y), result=result)
        results.append((result, path))
    return results
