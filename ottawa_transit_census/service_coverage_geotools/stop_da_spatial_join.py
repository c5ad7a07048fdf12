"""Count transit stops inside each census dissemination area (DA).

Both layers are reprojected to one geographic CRS (WGS84 by default) and a
point-in-polygon spatial join attributes every stop to the DA polygons that
contain it. A stop outside every polygon is attributed to none; a stop inside
overlapping polygons counts toward each of them.

Boundary handling follows the GEOS predicate in use: ``"within"`` treats the
polygon boundary as outside, ``"intersects"`` treats it as inside.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import geopandas as gpd
import pandas as pd

# =============================================================================
# CONFIGURATION
# =============================================================================

COMMON_CRS = "EPSG:4326"
STOP_COUNT_FIELD = "stop_count"
SUPPORTED_PREDICATES: tuple[str, ...] = ("within", "intersects")

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinSummary:
    """Stop attribution totals for one join."""

    total_stops: int
    attributed_stops: int
    total_stop_count: int

    @property
    def unattributed_stops(self) -> int:
        """Stops that fell outside every DA polygon."""
        return self.total_stops - self.attributed_stops


# =============================================================================
# FUNCTIONS
# =============================================================================


def to_common_crs(
    stops: gpd.GeoDataFrame,
    das: gpd.GeoDataFrame,
    crs: str = COMMON_CRS,
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """Reproject stops and DA polygons to ``crs``.

    Raises:
        ValueError: If either layer has no CRS defined.
    """
    if stops.crs is None:
        raise ValueError("Stop layer has no CRS; define it before running.")
    if das.crs is None:
        raise ValueError("DA polygon layer has no CRS; define it before running.")

    if stops.crs != crs:
        stops = stops.to_crs(crs)
    if das.crs != crs:
        das = das.to_crs(crs)
    return stops, das


def _join_stops(
    stops: gpd.GeoDataFrame, das: gpd.GeoDataFrame, predicate: str
) -> pd.DataFrame:
    """Return one row per (stop position, DA position) containment match."""
    if predicate not in SUPPORTED_PREDICATES:
        raise ValueError(
            f"Unsupported predicate {predicate!r}; expected one of {SUPPORTED_PREDICATES}"
        )

    points = gpd.GeoDataFrame(geometry=stops.geometry.to_numpy(), crs=stops.crs)
    polygons = gpd.GeoDataFrame(geometry=das.geometry.to_numpy(), crs=das.crs)

    joined = gpd.sjoin(points, polygons, how="inner", predicate=predicate)
    return pd.DataFrame(
        {"stop_pos": joined.index.to_numpy(), "da_pos": joined["index_right"].to_numpy()}
    )


def _summary(matches: pd.DataFrame, n_stops: int) -> JoinSummary:
    return JoinSummary(
        total_stops=n_stops,
        attributed_stops=int(matches["stop_pos"].nunique()),
        total_stop_count=len(matches),
    )


def _log_summary(summary: JoinSummary, predicate: str, occupied_das: int) -> None:
    LOGGER.info(
        "Spatial join (%s): %d of %d stops fall inside %d DAs; %d outside every DA",
        predicate,
        summary.attributed_stops,
        summary.total_stops,
        occupied_das,
        summary.unattributed_stops,
    )


def count_stops_per_da(
    stops: gpd.GeoDataFrame,
    das: gpd.GeoDataFrame,
    *,
    crs: str = COMMON_CRS,
    predicate: str = "within",
) -> gpd.GeoDataFrame:
    """Attach an integer ``stop_count`` to every DA.

    Args:
        stops: Stop points, any CRS.
        das: DA polygons, any CRS.
        crs: CRS both layers are reprojected into before the join.
        predicate: ``"within"`` (open boundary) or ``"intersects"``
            (closed boundary).

    Returns:
        Copy of ``das`` in ``crs`` with ``stop_count`` (0 when no stop falls
        inside). The input frame is not modified.
    """
    stops, das = to_common_crs(stops, das, crs)
    matches = _join_stops(stops, das, predicate)

    counts = matches.groupby("da_pos").size()
    out = das.copy()
    out[STOP_COUNT_FIELD] = (
        counts.reindex(range(len(out)), fill_value=0).to_numpy().astype("int64")
    )

    _log_summary(_summary(matches, len(stops)), predicate, int((out[STOP_COUNT_FIELD] > 0).sum()))
    return out


def summarize_join(
    stops: gpd.GeoDataFrame,
    das: gpd.GeoDataFrame,
    *,
    crs: str = COMMON_CRS,
    predicate: str = "within",
) -> JoinSummary:
    """Log and return attribution totals without modifying either layer."""
    stops, das = to_common_crs(stops, das, crs)
    matches = _join_stops(stops, das, predicate)
    summary = _summary(matches, len(stops))
    _log_summary(summary, predicate, int(matches["da_pos"].nunique()))
    return summary
