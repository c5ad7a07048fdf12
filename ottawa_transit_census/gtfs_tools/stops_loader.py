"""Load transit stop locations from a GTFS ``stops.txt`` table.

The input may be the ``stops.txt`` file itself, a GTFS folder that contains it,
or a zipped GTFS feed. Stop IDs are read as strings so that leading zeros
survive. Coordinates that cannot be parsed drop only the affected rows; any
problem with the file itself raises :class:`DataUnavailable`.

Output is a GeoDataFrame of points in WGS84 (EPSG:4326).
"""

from __future__ import annotations

import io
import logging
import zipfile
from pathlib import Path

import geopandas as gpd
import pandas as pd

from ottawa_transit_census.utils.errors import DataUnavailable

# =============================================================================
# CONFIGURATION
# =============================================================================

STOPS_FILE_NAME = "stops.txt"
REQUIRED_STOP_COLUMNS: tuple[str, ...] = ("stop_id", "stop_name", "stop_lat", "stop_lon")
STOPS_CRS = "EPSG:4326"

LOGGER = logging.getLogger(__name__)

# =============================================================================
# FUNCTIONS
# =============================================================================


def _read_stops_table(path: Path, sep: str) -> pd.DataFrame:
    """Read ``stops.txt`` from a plain file, a GTFS folder, or a GTFS ZIP."""
    read_kwargs = {"sep": sep, "dtype": str, "low_memory": False}

    if path.is_dir():
        path = path / STOPS_FILE_NAME
        if not path.exists():
            raise DataUnavailable(f"Missing GTFS file: {path}")

    if path.suffix.lower() == ".zip":
        with zipfile.ZipFile(path) as zf:
            members = [m for m in zf.namelist() if Path(m).name == STOPS_FILE_NAME]
            if not members:
                raise DataUnavailable(f"No '{STOPS_FILE_NAME}' inside {path}")
            with zf.open(members[0]) as fh, io.TextIOWrapper(fh, encoding="utf-8-sig") as txt:
                return pd.read_csv(txt, **read_kwargs)

    return pd.read_csv(path, encoding="utf-8-sig", **read_kwargs)


def read_stops_table(path: str | Path, *, sep: str = ",") -> pd.DataFrame:
    """Read the raw stop table and check that the required columns exist.

    Args:
        path: ``stops.txt``, a GTFS folder, or a GTFS ``.zip``.
        sep: Field delimiter of the text table.

    Returns:
        DataFrame with every column read as string.

    Raises:
        DataUnavailable: If the file is missing, empty, not UTF-8,
            unparseable, or lacks one of :data:`REQUIRED_STOP_COLUMNS`.
    """
    p = Path(path)
    if not p.exists():
        raise DataUnavailable(f"Stop file not found: {p}")

    try:
        df = _read_stops_table(p, sep)
    except pd.errors.EmptyDataError as exc:
        raise DataUnavailable(f"Stop file is empty: {p}") from exc
    except pd.errors.ParserError as exc:
        raise DataUnavailable(f"Parser error in stop file {p}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise DataUnavailable(f"Stop file {p} is not valid UTF-8: {exc}") from exc
    except zipfile.BadZipFile as exc:
        raise DataUnavailable(f"Not a valid GTFS zip: {p}") from exc

    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in REQUIRED_STOP_COLUMNS if c not in df.columns]
    if missing:
        raise DataUnavailable(f"Missing required columns in stop file {p}: {missing}")
    if df.empty:
        raise DataUnavailable(f"Stop file is empty: {p}")

    LOGGER.info("Read %d stop rows from %s", len(df), p)
    return df


def filter_boarding_stops(stops: pd.DataFrame) -> pd.DataFrame:
    """Keep only boarding locations (``location_type`` 0 or blank)."""
    if "location_type" not in stops.columns:
        return stops

    keep = stops["location_type"].fillna("0").astype(str).str.strip().isin(["", "0"])
    LOGGER.info("Kept %d of %d stops as boarding locations", int(keep.sum()), len(stops))
    return stops.loc[keep].copy()


def stops_to_geodataframe(stops: pd.DataFrame) -> gpd.GeoDataFrame:
    """Parse coordinates and build WGS84 point geometries.

    Rows whose ``stop_lat``/``stop_lon`` are not numeric are dropped with a
    warning rather than failing the whole load.
    """
    df = stops.copy()
    df["stop_lat"] = pd.to_numeric(df["stop_lat"], errors="coerce")
    df["stop_lon"] = pd.to_numeric(df["stop_lon"], errors="coerce")

    bad = df["stop_lat"].isna() | df["stop_lon"].isna()
    if bad.any():
        LOGGER.warning(
            "Dropping %d stop(s) with missing or non-numeric coordinates: %s",
            int(bad.sum()),
            df.loc[bad, "stop_id"].tolist()[:10],
        )
        df = df.loc[~bad]

    if df.empty:
        raise DataUnavailable("No stops with valid coordinates remain")

    return gpd.GeoDataFrame(
        df.reset_index(drop=True),
        geometry=gpd.points_from_xy(df["stop_lon"], df["stop_lat"]),
        crs=STOPS_CRS,
    )


def load_stops(
    path: str | Path,
    *,
    sep: str = ",",
    boarding_only: bool = False,
) -> gpd.GeoDataFrame:
    """Load transit stops as WGS84 points.

    Args:
        path: ``stops.txt``, a GTFS folder, or a GTFS ``.zip``.
        sep: Field delimiter of the text table.
        boarding_only: Drop stations, entrances and other non-boarding rows.

    Returns:
        GeoDataFrame with ``stop_id``, ``stop_name``, ``stop_lat``,
        ``stop_lon`` and point geometry in EPSG:4326.
    """
    stops = read_stops_table(path, sep=sep)
    if boarding_only:
        stops = filter_boarding_stops(stops)

    gdf = stops_to_geodataframe(stops)
    LOGGER.info("Loaded %d stops", len(gdf))
    return gdf
