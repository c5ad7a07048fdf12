"""Interactive (folium) and static (matplotlib) maps of stops and DA metrics.

Two HTML maps are produced:

* a stop overview: DA outlines plus every transit stop as a small marker;
* a metric map: one choropleth layer per derived metric, shown one at a time
  through a layer control. Each layer has its own linear colour scale, and every
  polygon popup lists all four metrics plus the raw area whichever layer is on.

A PNG of DA outlines and stops is also written for quick inspection.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence

import branca.colormap as cm
import folium
import geopandas as gpd
import matplotlib.pyplot as plt

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

MAP_CRS = "EPSG:4326"
BASE_TILES = "OpenStreetMap"
ZOOM_START = 11

#: (column, layer label) in layer-control order; the first layer starts visible.
METRIC_LAYERS: tuple[tuple[str, str], ...] = (
    (STOP_COUNT_FIELD, "Bus stop count"),
    (VEHICLE_RATIO_FIELD, "Vehicle commute ratio"),
    (AVERAGE_INCOME_FIELD, "Average income"),
    (STOP_DENSITY_FIELD, "Bus stop density (per km²)"),
)

COLORMAP_COLORS: tuple[str, ...] = ("#ffffcc", "#fd8d3c", "#800026")
NULL_FILL = "#bdbdbd"

STOP_MARKER_STYLE = {
    "radius": 2,
    "color": "#08519c",
    "weight": 1,
    "fill": True,
    "fill_color": "#3182bd",
    "fill_opacity": 0.8,
}

LOGGER = logging.getLogger(__name__)

# =============================================================================
# HELPERS
# =============================================================================


def _map_center(das: gpd.GeoDataFrame) -> list[float]:
    """Centre of the DA extent as ``[lat, lon]``."""
    minx, miny, maxx, maxy = das.to_crs(MAP_CRS).total_bounds
    return [(miny + maxy) / 2.0, (minx + maxx) / 2.0]


def _base_map(das: gpd.GeoDataFrame) -> folium.Map:
    m = folium.Map(location=_map_center(das), zoom_start=ZOOM_START, tiles=None, control_scale=True)
    folium.TileLayer(BASE_TILES, control=False).add_to(m)
    return m


def _popup_fields(
    das: gpd.GeoDataFrame, id_field: str, area_field: str
) -> tuple[list[str], list[str]]:
    for column in (id_field, area_field):
        if column not in das.columns:
            raise KeyError(f"DA layer is missing popup column {column!r}")

    fields = [id_field] + [col for col, _ in METRIC_LAYERS] + [area_field]
    aliases = ["DA"] + [label for _, label in METRIC_LAYERS] + ["Area (km²)"]
    missing = [f for f in fields if f not in das.columns]
    if missing:
        raise KeyError(f"DA layer is missing metric column(s) {missing}")
    return fields, aliases


def metric_colormap(das: gpd.GeoDataFrame, column: str, caption: str) -> cm.LinearColormap | None:
    """Linear colour scale over the non-null min/max of ``column``.

    Returns ``None`` when the column has no values to scale.
    """
    values = das[column].dropna()
    if values.empty:
        return None
    vmin, vmax = float(values.min()), float(values.max())
    colormap = cm.LinearColormap(list(COLORMAP_COLORS), vmin=vmin, vmax=vmax)
    colormap.caption = caption
    return colormap


def _style_function(column: str, colormap: cm.LinearColormap | None) -> Callable[[dict], dict]:
    def style(feature: dict) -> dict:
        value = feature["properties"].get(column)
        fill = NULL_FILL if value is None or colormap is None else colormap(value)
        return {"fillColor": fill, "color": "#444444", "weight": 0.5, "fillOpacity": 0.7}

    return style


# =============================================================================
# INTERACTIVE MAPS
# =============================================================================


def build_stop_overview_map(
    das: gpd.GeoDataFrame,
    stops: gpd.GeoDataFrame,
    *,
    id_field: str = "GeoUID",
) -> folium.Map:
    """DA outlines with every stop drawn as a fixed-style circle marker."""
    das = das.to_crs(MAP_CRS)
    stops = stops.to_crs(MAP_CRS)
    m = _base_map(das)

    folium.GeoJson(
        das[[id_field, "geometry"]].to_json(),
        name="Dissemination areas",
        style_function=lambda _: {"color": "#555555", "weight": 0.6, "fillOpacity": 0.05},
        tooltip=folium.GeoJsonTooltip(fields=[id_field], aliases=["DA"]),
    ).add_to(m)

    stop_layer = folium.FeatureGroup(name="Transit stops", show=True)
    for row in stops.itertuples(index=False):
        folium.CircleMarker(
            location=[row.geometry.y, row.geometry.x],
            popup=folium.Popup(f"{row.stop_name} ({row.stop_id})", max_width=250),
            **STOP_MARKER_STYLE,
        ).add_to(stop_layer)
    stop_layer.add_to(m)

    folium.LayerControl(collapsed=False).add_to(m)
    LOGGER.info("Stop overview map: %d DAs, %d stops", len(das), len(stops))
    return m


def build_metric_layers_map(
    das: gpd.GeoDataFrame,
    *,
    id_field: str = "GeoUID",
    area_field: str = "Area (sq km)",
    metrics: Sequence[tuple[str, str]] = METRIC_LAYERS,
) -> folium.Map:
    """One toggleable choropleth layer per metric.

    Layers are added as base layers (``overlay=False``), so the layer control
    shows radio buttons and exactly one metric is visible at a time.
    """
    das = das.to_crs(MAP_CRS)
    m = _base_map(das)
    fields, aliases = _popup_fields(das, id_field, area_field)
    geojson = das[fields + ["geometry"]].to_json(na="null")

    for i, (column, label) in enumerate(metrics):
        if column not in das.columns:
            raise KeyError(f"DA layer is missing metric column {column!r}")

        colormap = metric_colormap(das, column, label)
        if colormap is None:
            LOGGER.warning("Metric %s has no non-null values; layer drawn in grey", column)

        layer = folium.FeatureGroup(name=label, overlay=False, show=(i == 0))
        folium.GeoJson(
            geojson,
            name=label,
            style_function=_style_function(column, colormap),
            highlight_function=lambda _: {"weight": 2, "color": "blue"},
            popup=folium.GeoJsonPopup(fields=fields, aliases=aliases, localize=True),
        ).add_to(layer)
        layer.add_to(m)
        if colormap is not None:
            colormap.add_to(m)

    folium.LayerControl(collapsed=False).add_to(m)
    LOGGER.info("Metric map: %d layers over %d DAs", len(metrics), len(das))
    return m


def save_map(m: folium.Map, path: str | Path) -> Path:
    """Write a folium map to HTML, creating parent folders."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    m.save(str(out))
    LOGGER.info("Wrote %s", out)
    return out


# =============================================================================
# STATIC MAP
# =============================================================================


def plot_static_overview(
    das: gpd.GeoDataFrame,
    stops: gpd.GeoDataFrame,
    path: str | Path,
    *,
    dpi: int = 150,
) -> Path:
    """PNG of DA outlines with stops on top."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(10, 10))
    das.to_crs(MAP_CRS).boundary.plot(ax=ax, linewidth=0.3, color="#555555")
    stops.to_crs(MAP_CRS).plot(ax=ax, markersize=1, color="#3182bd", label="Transit stops")
    ax.set_title("Transit stops and census dissemination areas")
    ax.set_axis_off()
    ax.legend(loc="lower right")
    fig.tight_layout()
    fig.savefig(out, dpi=dpi)
    plt.close(fig)

    LOGGER.info("Wrote %s", out)
    return out
