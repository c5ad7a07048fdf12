from __future__ import annotations

import logging

import geopandas as gpd
import pytest
from geopandas.testing import assert_geodataframe_equal
from shapely.geometry import Point, box

from ottawa_transit_census.census_tools.censusmapper_fetch import load_census_das_file
from ottawa_transit_census.gtfs_tools.stops_loader import load_stops
from ottawa_transit_census.service_coverage_geotools.stop_da_spatial_join import (
    count_stops_per_da,
    summarize_join,
    to_common_crs,
)

VECTORS = ("v_CA21_915", "v_CA21_7635")


@pytest.fixture
def das(das_path) -> gpd.GeoDataFrame:
    return load_census_das_file(das_path, VECTORS)


@pytest.fixture
def boundary_stop() -> gpd.GeoDataFrame:
    """A stop exactly on the shared edge of DA 35061001 and DA 35061002."""
    return gpd.GeoDataFrame(
        {"stop_id": ["EDGE"], "stop_name": ["Edge"]},
        geometry=[Point(-75.69, 45.40)],
        crs="EPSG:4326",
    )


def _counts(gdf: gpd.GeoDataFrame) -> dict[str, int]:
    return dict(zip(gdf["GeoUID"], gdf["stop_count"]))


def test_counts_per_da(stops_path, das) -> None:
    stops = load_stops(stops_path)
    out = count_stops_per_da(stops, das)

    assert _counts(out) == {"35061001": 1, "35061002": 1, "35061003": 2}
    assert out["stop_count"].dtype == "int64"
    # stop 0004 lies outside every DA
    assert out["stop_count"].sum() == 4 < len(stops)


def test_boarding_only_leaves_station_da_empty(stops_path, das) -> None:
    out = count_stops_per_da(load_stops(stops_path, boarding_only=True), das)
    assert _counts(out)["35061002"] == 0


def test_no_stops_inside_gives_zero_not_null(das) -> None:
    far_away = gpd.GeoDataFrame(
        {"stop_id": ["X"], "stop_name": ["Far"]},
        geometry=[Point(-80.0, 43.0)],
        crs="EPSG:4326",
    )
    out = count_stops_per_da(far_away, das)

    assert out["stop_count"].tolist() == [0, 0, 0]
    assert not out["stop_count"].isna().any()


def test_boundary_stop_within_is_excluded(das, boundary_stop) -> None:
    out = count_stops_per_da(boundary_stop, das, predicate="within")
    assert _counts(out) == {"35061001": 0, "35061002": 0, "35061003": 0}


def test_boundary_stop_intersects_counts_both_sides(das, boundary_stop) -> None:
    out = count_stops_per_da(boundary_stop, das, predicate="intersects")
    counts = _counts(out)

    assert counts["35061001"] == 1
    assert counts["35061002"] == 1
    assert counts["35061003"] == 0


def test_layers_in_different_crs_are_reprojected(single_stop, single_da) -> None:
    projected = single_da.to_crs(epsg=3347)
    out = count_stops_per_da(single_stop, projected)

    assert out.crs.to_epsg() == 4326
    assert out["stop_count"].tolist() == [1]


def test_input_frame_is_not_modified(single_stop, single_da) -> None:
    before = single_da.copy()
    count_stops_per_da(single_stop, single_da)

    assert "stop_count" not in single_da.columns
    assert_geodataframe_equal(single_da, before)


def test_unknown_predicate_raises(single_stop, single_da) -> None:
    with pytest.raises(ValueError, match="predicate"):
        count_stops_per_da(single_stop, single_da, predicate="touches")


def test_missing_crs_raises(single_stop, single_da) -> None:
    no_crs = gpd.GeoDataFrame({"GeoUID": ["35060001"]}, geometry=list(single_da.geometry))
    with pytest.raises(ValueError, match="CRS"):
        to_common_crs(single_stop, no_crs)


def test_summarize_join(stops_path, das) -> None:
    summary = summarize_join(load_stops(stops_path), das)

    assert summary.total_stops == 5
    assert summary.attributed_stops == 4
    assert summary.unattributed_stops == 1
    assert summary.total_stop_count == 4


def test_summarize_join_logs_totals(stops_path, das, caplog) -> None:
    with caplog.at_level(logging.INFO):
        summarize_join(load_stops(stops_path), das)

    assert "4 of 5 stops" in caplog.text
    assert "1 outside every DA" in caplog.text


def test_stop_in_overlapping_das_counts_toward_each() -> None:
    overlapping = gpd.GeoDataFrame(
        {"GeoUID": ["A", "B", "C"]},
        geometry=[
            box(-75.71, 45.39, -75.69, 45.41),
            box(-75.705, 45.395, -75.685, 45.415),
            box(-75.60, 45.30, -75.58, 45.32),
        ],
        crs="EPSG:4326",
    )
    stop = gpd.GeoDataFrame(
        {"stop_id": ["S1"], "stop_name": ["Shared"]},
        geometry=[Point(-75.70, 45.40)],
        crs="EPSG:4326",
    )

    out = count_stops_per_da(stop, overlapping)
    summary = summarize_join(stop, overlapping)

    assert _counts(out) == {"A": 1, "B": 1, "C": 0}
    assert summary.attributed_stops == 1
    assert summary.total_stop_count == 2
