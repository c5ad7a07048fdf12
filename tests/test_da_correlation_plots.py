from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from ottawa_transit_census.reporting.da_correlation_plots import (
    CORRELATION_PAIRS,
    complete_pairs,
    correlation_plot_path,
    pearson_correlation,
    plot_correlation,
    run_correlations,
)


@pytest.fixture
def metrics() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "stop_count": [0, 1, 2, 4, 3, 6],
            "stop_density": [0.0, 0.5, 0.9, 2.1, np.nan, 3.0],
            "vehicle_ratio": [0.8, 0.6, np.nan, 0.3, 0.4, 0.2],
            "average_income": [90000.0, 72000.0, 61000.0, 55000.0, 58000.0, np.inf],
        }
    )


def test_complete_pairs_drops_null_and_infinite(metrics) -> None:
    pairs = complete_pairs(metrics, "stop_density", "average_income")
    assert pairs.index.tolist() == [0, 1, 2, 3]


def test_pearson_matches_numpy_on_complete_pairs(metrics) -> None:
    result = pearson_correlation(metrics, "stop_density", "vehicle_ratio")

    mask = metrics["stop_density"].notna() & metrics["vehicle_ratio"].notna()
    expected = np.corrcoef(
        metrics.loc[mask, "stop_density"], metrics.loc[mask, "vehicle_ratio"]
    )[0, 1]

    assert result.n == 4
    assert result.r == pytest.approx(expected)
    assert -1.0 <= result.r <= 1.0
    assert result.r < 0


def test_pearson_is_symmetric(metrics) -> None:
    xy = pearson_correlation(metrics, "stop_count", "average_income")
    yx = pearson_correlation(metrics, "average_income", "stop_count")
    assert xy.r == pytest.approx(yx.r)


def test_constant_input_gives_nan(metrics) -> None:
    df = metrics.assign(stop_count=5)
    result = pearson_correlation(df, "stop_count", "vehicle_ratio")
    assert math.isnan(result.r)


def test_fewer_than_two_pairs_gives_nan() -> None:
    df = pd.DataFrame({"a": [1.0, np.nan], "b": [np.nan, 2.0]})
    result = pearson_correlation(df, "a", "b")

    assert result.n == 0
    assert math.isnan(result.r)


def test_plot_correlation_writes_png(metrics, tmp_path) -> None:
    out = plot_correlation(
        metrics, "stop_density", "vehicle_ratio", tmp_path / "plots" / "density.png"
    )
    assert out.exists()
    assert out.stat().st_size > 0


def test_plot_with_undefined_correlation_still_writes(tmp_path) -> None:
    df = pd.DataFrame({"stop_count": [1, 1, 1], "average_income": [1.0, 2.0, 3.0]})
    out = plot_correlation(df, "stop_count", "average_income", tmp_path / "flat.png")
    assert out.exists()


def test_run_correlations_covers_every_pair(metrics, tmp_path) -> None:
    results = run_correlations(metrics, tmp_path)

    assert len(results) == len(CORRELATION_PAIRS) == 3
    for (result, path), (x, y) in zip(results, CORRELATION_PAIRS):
        assert (result.x, result.y) == (x, y)
        assert path == correlation_plot_path(tmp_path, x, y)
        assert path.name == f"corr_{x}_vs_{y}.png"
        assert path.exists()
