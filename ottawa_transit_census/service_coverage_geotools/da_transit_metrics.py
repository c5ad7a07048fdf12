"""Derive per-DA transit and demographic metrics.

Adds four columns to a DA layer that already carries ``stop_count``:

* ``stop_count``     – stops inside the DA (from the spatial join)
* ``stop_density``   – ``stop_count / area`` (stops per km²)
* ``vehicle_ratio``  – car/truck/van commuters / population
* ``average_income`` – census average income as a number

Zero or missing denominators give nulls, and so do census values that are
suppressed or not numeric. Ratios are never clamped; anomalous source data
shows through as values above 1.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Iterable

import geopandas as gpd
import pandas as pd

from ottawa_transit_census.service_coverage_geotools.stop_da_spatial_join import (
    STOP_COUNT_FIELD,
)
from ottawa_transit_census.utils.errors import DivisionUndefined, MalformedRecord

# =============================================================================
# CONFIGURATION
# =============================================================================

STOP_DENSITY_FIELD = "stop_density"
VEHICLE_RATIO_FIELD = "vehicle_ratio"
AVERAGE_INCOME_FIELD = "average_income"

DERIVED_FIELDS: tuple[str, ...] = (
    STOP_COUNT_FIELD,
    STOP_DENSITY_FIELD,
    VEHICLE_RATIO_FIELD,
    AVERAGE_INCOME_FIELD,
)

#: Statistics Canada Lambert, an equal-area projection covering all of Canada.
EQUAL_AREA_EPSG = 3347
SQ_M_PER_SQ_KM = 1_000_000.0

_STRIP_RE = re.compile(r"[\$,\s]|CA(?=\$)")

LOGGER = logging.getLogger(__name__)

# =============================================================================
# PARSING
# =============================================================================


def parse_census_number(value: Any) -> float:
    """Parse one census value, tolerating currency formatting.

    ``"$52,300"`` → ``52300.0``; ``1200`` → ``1200.0``; missing → ``nan``.

    Raises:
        MalformedRecord: For suppression placeholders (``x``, ``F``, ``..``)
            and any other text that is not a number.
    """
    if value is None or value is pd.NA:
        return math.nan
    if isinstance(value, bool):
        raise MalformedRecord(f"Boolean is not a census number: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = _STRIP_RE.sub("", str(value))
    if not text:
        return math.nan
    try:
        return float(text)
    except ValueError as exc:
        raise MalformedRecord(f"Not a number: {value!r}") from exc


def to_numeric_column(series: pd.Series) -> pd.Series:
    """Parse a whole column; malformed entries become NaN and are logged once."""
    if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series):
        return series.astype(float)

    malformed: list[Any] = []

    def _parse(value: Any) -> float:
        try:
            return parse_census_number(value)
        except MalformedRecord:
            malformed.append(value)
            return math.nan

    parsed = series.map(_parse).astype(float)
    if malformed:
        LOGGER.warning(
            "Column %r: %d non-numeric value(s) treated as null (e.g. %r)",
            series.name,
            len(malformed),
            sorted({str(v) for v in malformed})[:5],
        )
    return parsed


def _require_columns(df: pd.DataFrame, required: Iterable[str], context: str) -> None:
    """Raise a clear error if required columns are missing."""
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns in {context}: {missing}")


# =============================================================================
# RATIOS
# =============================================================================


def safe_ratio(
    numerator: pd.Series,
    denominator: pd.Series,
    *,
    strict: bool = False,
    name: str = "ratio",
) -> pd.Series:
    """Divide element-wise; zero or missing denominators give NaN.

    Raises:
        DivisionUndefined: In ``strict`` mode, if any denominator is zero or
            missing.
    """
    num = numerator.astype(float)
    den = denominator.astype(float)
    undefined = den.isna() | (den == 0)

    if undefined.any():
        if strict:
            raise DivisionUndefined(
                f"{name}: {int(undefined.sum())} row(s) have a zero or missing denominator"
            )
        LOGGER.info(
            "%s: %d row(s) with zero/missing denominator set to null", name, int(undefined.sum())
        )

    return num / den.where(~undefined)


def ensure_area_column(das: gpd.GeoDataFrame, area_field: str) -> gpd.GeoDataFrame:
    """Make ``area_field`` numeric (km²), filling gaps from the geometry.

    Areas reported by the census are kept as-is. Missing ones are measured in
    EPSG:3347 so that they are true areas rather than square degrees.
    """
    out = das.copy()
    if area_field in out.columns:
        area = to_numeric_column(out[area_field])
    else:
        area = pd.Series(float("nan"), index=out.index, name=area_field)

    gaps = area.isna()
    if gaps.any():
        if out.crs is None:
            raise ValueError("DA layer has no CRS; cannot measure polygon area.")
        measured = out.loc[gaps].geometry.to_crs(epsg=EQUAL_AREA_EPSG).area / SQ_M_PER_SQ_KM
        area.loc[gaps] = measured
        LOGGER.info(
            "Measured area for %d DA(s) from geometry (EPSG:%d)", int(gaps.sum()), EQUAL_AREA_EPSG
        )

    out[area_field] = area.astype(float)
    return out


# =============================================================================
# MAIN TRANSFORM
# =============================================================================


def derive_da_metrics(
    das: gpd.GeoDataFrame,
    *,
    income_field: str,
    commuter_field: str,
    population_field: str = "Population",
    area_field: str = "Area (sq km)",
    strict: bool = False,
) -> gpd.GeoDataFrame:
    """Return a copy of ``das`` with the derived metric columns added.

    Args:
        das: DA layer with ``stop_count`` already attached.
        income_field: Column holding average income (census vector id).
        commuter_field: Column holding car/truck/van commuters.
        population_field: Column holding DA population.
        area_field: Column holding DA area in km².
        strict: Raise :class:`DivisionUndefined` instead of writing nulls.

    Returns:
        New GeoDataFrame; ``das`` is left untouched.
    """
    _require_columns(
        das,
        [STOP_COUNT_FIELD, income_field, commuter_field, population_field],
        context="DA layer",
    )

    out = ensure_area_column(das, area_field)
    out[STOP_COUNT_FIELD] = out[STOP_COUNT_FIELD].astype("int64")
    out[AVERAGE_INCOME_FIELD] = to_numeric_column(out[income_field])

    population = to_numeric_column(out[population_field])
    commuters = to_numeric_column(out[commuter_field])

    out[STOP_DENSITY_FIELD] = safe_ratio(
        out[STOP_COUNT_FIELD], out[area_field], strict=strict, name=STOP_DENSITY_FIELD
    )
    out[VEHICLE_RATIO_FIELD] = safe_ratio(
        commuters, population, strict=strict, name=VEHICLE_RATIO_FIELD
    )

    above_one = int((out[VEHICLE_RATIO_FIELD] > 1).sum())
    if above_one:
        LOGGER.warning("%d DA(s) report more vehicle commuters than residents", above_one)

    LOGGER.info(
        "Derived metrics for %d DAs (null income: %d, null vehicle ratio: %d)",
        len(out),
        int(out[AVERAGE_INCOME_FIELD].isna().sum()),
        int(out[VEHICLE_RATIO_FIELD].isna().sum()),
    )
    return out
