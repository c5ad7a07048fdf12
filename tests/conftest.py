from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd  # noqa: E402
import pytest  # noqa: E402
from shapely.geometry import Point, box  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"

INCOME_VECTOR = "v_CA21_915"
COMMUTER_VECTOR = "v_CA21_7635"


@pytest.fixture
def stops_path() -> Path:
    return FIXTURES_DIR / "stops.txt"


@pytest.fixture
def das_path() -> Path:
    return FIXTURES_DIR / "ottawa_das.geojson"


@pytest.fixture
def single_stop() -> gpd.GeoDataFrame:
    """One stop at (45.40, -75.70)."""
    return gpd.GeoDataFrame(
        {
            "stop_id": ["S1"],
            "stop_name": ["Bank / Somerset"],
            "stop_lat": [45.40],
            "stop_lon": [-75.70],
        },
        geometry=[Point(-75.70, 45.40)],
        crs="EPSG:4326",
    )


@pytest.fixture
def single_da() -> gpd.GeoDataFrame:
    """One DA square around the single stop, population 100, 20 car commuters."""
    return gpd.GeoDataFrame(
        {
            "GeoUID": ["35060001"],
            "Population": [100],
            "Area (sq km)": [2.0],
            INCOME_VECTOR: ["$48,000"],
            COMMUTER_VECTOR: [20],
        },
        geometry=[box(-75.709, 45.3936, -75.691, 45.4064)],
        crs="EPSG:4326",
    )
