"""Fetch Canadian census dissemination-area (DA) data from the CensusMapper API.

Two requests are made for one :class:`CensusRequest`:

1. ``data.csv`` returns the attribute table (GeoUID, Population, Area (sq km),
   and one column per requested census vector).
2. ``geo.geojson`` returns the DA polygons in WGS84.

Both are merged on ``GeoUID`` into a single GeoDataFrame. Suppressed census
values (``x``, ``F``, ``..`` and similar) are read as missing. Any failure to
obtain the data raises :class:`DataUnavailable`; there is no retry.

A DA layer saved to disk earlier (GeoJSON, GeoPackage, Shapefile) can be used
instead through :func:`load_census_das_file`.

Helpful links:
    https://censusmapper.ca/api
"""

from __future__ import annotations

import io
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

import geopandas as gpd
import pandas as pd
import requests

from ottawa_transit_census.utils.errors import DataUnavailable

# =============================================================================
# CONFIGURATION
# =============================================================================

CENSUSMAPPER_API_BASE = "https://censusmapper.ca/api/v1/"
API_KEY_ENV_VAR = "CM_API_KEY"
DEFAULT_TIMEOUT_S = 120

GEO_ID_FIELD = "GeoUID"
POPULATION_FIELD = "Population"
AREA_FIELD = "Area (sq km)"

#: Placeholders Statistics Canada uses for suppressed or unavailable values.
CENSUS_NA_VALUES: tuple[str, ...] = ("x", "X", "F", "...", "..", "-", "NA")

CENSUS_CRS = "EPSG:4326"

LOGGER = logging.getLogger(__name__)

# =============================================================================
# REQUEST
# =============================================================================


@dataclass(frozen=True)
class CensusRequest:
    """Parameters of one census fetch.

    Attributes:
        dataset: CensusMapper dataset id, e.g. ``"CA21"``.
        regions: Region level to region ids, e.g. ``{"CSD": ("3506008",)}``.
        vectors: Census vector ids to retrieve.
        level: Output granularity; ``"DA"`` for dissemination areas.
        geo_format: Only ``"geopandas"`` is supported.
        resolution: ``"simplified"`` or ``"high"`` polygon detail.
    """

    dataset: str
    regions: Mapping[str, Sequence[str]]
    vectors: tuple[str, ...]
    level: str = "DA"
    geo_format: str = "geopandas"
    resolution: str = "simplified"
    extra_params: Mapping[str, str] = field(default_factory=dict)

    def regions_json(self) -> str:
        """Return ``regions`` serialised the way the API expects."""
        return json.dumps({lvl: [str(r) for r in ids] for lvl, ids in self.regions.items()})

    def vectors_json(self) -> str:
        """Return ``vectors`` serialised the way the API expects."""
        return json.dumps(list(self.vectors))


# =============================================================================
# HELPERS
# =============================================================================


def resolve_api_key(api_key: str | None = None) -> str:
    """Return the explicit key or the one in ``CM_API_KEY``."""
    key = api_key or os.environ.get(API_KEY_ENV_VAR, "")
    if not key.strip():
        raise DataUnavailable(
            f"No CensusMapper API key. Pass one explicitly or set {API_KEY_ENV_VAR}."
        )
    return key.strip()


def _post(
    session: requests.Session,
    endpoint: str,
    params: Mapping[str, str],
    timeout: float,
) -> requests.Response:
    """POST to a CensusMapper endpoint, converting every failure to DataUnavailable."""
    url = f"{CENSUSMAPPER_API_BASE}{endpoint}"
    LOGGER.info("Requesting %s", url)
    try:
        resp = session.post(url, data=dict(params), timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise DataUnavailable(f"CensusMapper request to {endpoint} failed: {exc}") from exc
    return resp


def resolve_vector_columns(df: pd.DataFrame, vectors: Sequence[str]) -> dict[str, str]:
    """Map each vector id to the column that holds it.

    The API may label a column either ``v_CA21_906`` or
    ``v_CA21_906: Average total income ...``.

    Raises:
        DataUnavailable: If any vector has no matching column.
    """
    mapping: dict[str, str] = {}
    missing: list[str] = []
    for vec in vectors:
        col = next(
            (c for c in df.columns if str(c) == vec or str(c).startswith(f"{vec}:")),
            None,
        )
        if col is None:
            missing.append(vec)
        else:
            mapping[vec] = col
    if missing:
        raise DataUnavailable(f"Census data has no column for vector(s): {missing}")
    return mapping


def _normalise_da_frame(gdf: gpd.GeoDataFrame, vectors: Sequence[str]) -> gpd.GeoDataFrame:
    """Rename vector columns to bare ids and make GeoUID a string.

    Raises:
        DataUnavailable: If the population column or any vector column is
            missing.
    """
    if POPULATION_FIELD not in gdf.columns:
        raise DataUnavailable(f"Census data has no '{POPULATION_FIELD}' column")
    mapping = resolve_vector_columns(gdf, vectors)
    gdf = gdf.rename(columns={col: vec for vec, col in mapping.items()})
    gdf[GEO_ID_FIELD] = gdf[GEO_ID_FIELD].astype(str).str.strip()
    return gdf


# =============================================================================
# FETCH
# =============================================================================


def fetch_census_table(
    request: CensusRequest,
    *,
    api_key: str,
    session: requests.Session,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> pd.DataFrame:
    """Download the attribute table for ``request``."""
    params = {
        "dataset": request.dataset,
        "level": request.level,
        "regions": request.regions_json(),
        "vectors": request.vectors_json(),
        "geo_hierarchy": "true",
        "api_key": api_key,
        **request.extra_params,
    }
    resp = _post(session, "data.csv", params, timeout)

    try:
        df = pd.read_csv(
            io.StringIO(resp.text),
            dtype={GEO_ID_FIELD: str},
            na_values=list(CENSUS_NA_VALUES),
        )
    except pd.errors.EmptyDataError as exc:
        raise DataUnavailable("CensusMapper returned an empty data table") from exc
    except pd.errors.ParserError as exc:
        raise DataUnavailable(f"Could not parse CensusMapper data table: {exc}") from exc

    df.columns = [str(c).strip() for c in df.columns]
    if df.empty or GEO_ID_FIELD not in df.columns:
        raise DataUnavailable(
            f"CensusMapper has no {request.level} data for regions {request.regions_json()}"
        )
    LOGGER.info("Fetched %d %s attribute rows", len(df), request.level)
    return df


def fetch_census_geometry(
    request: CensusRequest,
    *,
    api_key: str,
    session: requests.Session,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> gpd.GeoDataFrame:
    """Download the polygons for ``request`` as a WGS84 GeoDataFrame."""
    params = {
        "dataset": request.dataset,
        "level": request.level,
        "regions": request.regions_json(),
        "resolution": request.resolution,
        "api_key": api_key,
    }
    resp = _post(session, "geo.geojson", params, timeout)

    try:
        payload = resp.json()
    except ValueError as exc:
        raise DataUnavailable("CensusMapper returned invalid GeoJSON") from exc

    features = payload.get("features") or []
    if not features:
        raise DataUnavailable(
            f"CensusMapper has no {request.level} geometry for regions {request.regions_json()}"
        )

    geo = gpd.GeoDataFrame.from_features(features, crs=CENSUS_CRS)
    if GEO_ID_FIELD not in geo.columns:
        if "id" not in geo.columns:
            raise DataUnavailable("CensusMapper geometry has no GeoUID/id property")
        geo = geo.rename(columns={"id": GEO_ID_FIELD})

    geo[GEO_ID_FIELD] = geo[GEO_ID_FIELD].astype(str).str.strip()
    LOGGER.info("Fetched %d %s polygons", len(geo), request.level)
    return geo[[GEO_ID_FIELD, "geometry"]]


def fetch_census_das(
    request: CensusRequest,
    *,
    api_key: str | None = None,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> gpd.GeoDataFrame:
    """Fetch DA attributes and polygons and join them on GeoUID.

    Args:
        request: What to fetch.
        api_key: CensusMapper key; falls back to ``CM_API_KEY``.
        session: Optional ``requests.Session``; one is created (and closed)
            when omitted.
        timeout: Per-request timeout in seconds.

    Returns:
        GeoDataFrame in EPSG:4326 with GeoUID, the table attributes and one
        column per vector, named by its bare vector id.

    Raises:
        DataUnavailable: On any network, HTTP, or content failure.
    """
    if request.geo_format != "geopandas":
        raise ValueError(f"Unsupported geo_format: {request.geo_format!r}")

    key = resolve_api_key(api_key)

    if session is None:
        with requests.Session() as own_session:
            return fetch_census_das(request, api_key=key, session=own_session, timeout=timeout)

    table = fetch_census_table(request, api_key=key, session=session, timeout=timeout)
    geo = fetch_census_geometry(request, api_key=key, session=session, timeout=timeout)

    table[GEO_ID_FIELD] = table[GEO_ID_FIELD].astype(str).str.strip()
    try:
        merged = geo.merge(table, on=GEO_ID_FIELD, how="inner", validate="one_to_one")
    except pd.errors.MergeError as exc:
        raise DataUnavailable(f"Census data repeats {GEO_ID_FIELD} values: {exc}") from exc
    if merged.empty:
        raise DataUnavailable("Census attributes and geometry share no GeoUID values")

    dropped = len(geo) - len(merged)
    if dropped:
        LOGGER.warning("%d polygon(s) had no matching attribute row and were dropped", dropped)

    merged = gpd.GeoDataFrame(merged, geometry="geometry", crs=geo.crs)
    das = _normalise_da_frame(merged, request.vectors)
    LOGGER.info("Census DA layer ready: %d areas", len(das))
    return das


def load_census_das_file(path: str | Path, vectors: Sequence[str]) -> gpd.GeoDataFrame:
    """Read a previously saved DA layer instead of calling the API.

    Raises:
        DataUnavailable: If the file is missing or unreadable, or lacks
            GeoUID or any requested vector column.
    """
    p = Path(path)
    if not p.exists():
        raise DataUnavailable(f"Census DA file not found: {p}")

    LOGGER.info("Reading census DAs from %s", p)
    try:
        gdf = gpd.read_file(p)
    except (OSError, RuntimeError, ValueError) as exc:
        raise DataUnavailable(f"Could not read census DA file {p}: {exc}") from exc

    if gdf.empty:
        raise DataUnavailable(f"Census DA file has no features: {p}")
    if GEO_ID_FIELD not in gdf.columns:
        raise DataUnavailable(f"Census DA file {p} has no '{GEO_ID_FIELD}' column")

    das = _normalise_da_frame(gdf, vectors)
    LOGGER.info("Census DA layer ready: %d areas", len(das))
    return das
