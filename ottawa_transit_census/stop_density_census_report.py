"""Relate Ottawa transit stop density to census commuting and income by DA.

The report runs four stages in order:

1. Load GTFS stops and fetch census dissemination areas (DAs) for the
   configured region, dataset and vectors (CensusMapper API, or a saved file).
2. Reproject both to WGS84 and count the stops inside each DA.
3. Derive stop_count, stop_density, vehicle_ratio and average_income.
4. Write a stop overview map, a multi-layer metric map, a static PNG, and
   three scatter plots with OLS trend lines; log each Pearson coefficient.

Typical use::

    export CM_API_KEY=...
    ottawa-transit-census-report --stops path/to/gtfs.zip --outdir output

Any missing input or failed census fetch aborts the run. Per-DA problems
(suppressed values, zero population or area) become nulls in the output.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import geopandas as gpd

from ottawa_transit_census.census_tools.censusmapper_fetch import (
    AREA_FIELD,
    GEO_ID_FIELD,
    POPULATION_FIELD,
    CensusRequest,
    fetch_census_das,
    load_census_das_file,
)
from ottawa_transit_census.gtfs_tools.stops_loader import load_stops
from ottawa_transit_census.reporting.da_correlation_plots import (
    CorrelationResult,
    run_correlations,
)
from ottawa_transit_census.reporting.da_interactive_maps import (
    build_metric_layers_map,
    build_stop_overview_map,
    plot_static_overview,
    save_map,
)
from ottawa_transit_census.service_coverage_geotools.da_transit_metrics import (
    derive_da_metrics,
)
from ottawa_transit_census.service_coverage_geotools.stop_da_spatial_join import (
    SUPPORTED_PREDICATES,
    count_stops_per_da,
)
from ottawa_transit_census.utils.errors import DataUnavailable, DivisionUndefined
from ottawa_transit_census.utils.logging_helper import setup_logging

# =============================================================================
# CONFIGURATION
# =============================================================================

STOPS_PATH = r"Path\To\Your\GTFS\stops.txt"
OUTPUT_DIR = r"Path\To\Your\Output_Folder"

# Optional: saved DA layer (GeoJSON/GPKG/SHP). None = fetch from CensusMapper.
CENSUS_FILE: str | None = None

CENSUS_DATASET = "CA21"
CENSUS_LEVEL = "DA"
REGION_LEVEL = "CSD"
REGION_IDS: list[str] = ["3506008"]  # City of Ottawa

INCOME_VECTOR = "v_CA21_915"  # Average total income of household in 2020 ($)
COMMUTER_VECTOR = "v_CA21_7635"  # Main mode of commuting: car, truck or van

GEOMETRY_RESOLUTION = "simplified"

# "within" leaves stops exactly on a DA edge uncounted; "intersects" counts them.
JOIN_PREDICATE = "within"

BOARDING_STOPS_ONLY = False
STRICT_RATIOS = False

STOP_MAP_NAME = "stop_overview_map.html"
METRIC_MAP_NAME = "da_metric_layers_map.html"
STATIC_MAP_NAME = "da_stop_overview.png"

LOGGER = logging.getLogger(__name__)

# =============================================================================
# CONFIG OBJECTS
# =============================================================================


@dataclass(frozen=True)
class ReportConfig:
    """Everything one report run needs.

    Attributes:
        stops_path: GTFS ``stops.txt``, folder, or ``.zip``.
        output_dir: Folder for maps and plots.
        census_request: What to fetch from CensusMapper.
        census_file: Saved DA layer to use instead of the API.
        api_key: CensusMapper key; ``CM_API_KEY`` is used when None.
        predicate: Spatial-join predicate, ``"within"`` or ``"intersects"``.
        boarding_only: Drop non-boarding GTFS locations.
        strict: Fail on zero denominators instead of writing nulls.
    """

    stops_path: Path
    output_dir: Path
    census_request: CensusRequest
    census_file: Path | None = None
    api_key: str | None = None
    predicate: str = JOIN_PREDICATE
    boarding_only: bool = BOARDING_STOPS_ONLY
    strict: bool = STRICT_RATIOS

    @property
    def income_field(self) -> str:
        return self.census_request.vectors[0]

    @property
    def commuter_field(self) -> str:
        return self.census_request.vectors[1]


@dataclass
class ReportResult:
    """In-memory outputs of one run."""

    das: gpd.GeoDataFrame
    stops: gpd.GeoDataFrame
    correlations: list[CorrelationResult] = field(default_factory=list)
    artifacts: list[Path] = field(default_factory=list)


def default_census_request() -> CensusRequest:
    return CensusRequest(
        dataset=CENSUS_DATASET,
        regions={REGION_LEVEL: tuple(REGION_IDS)},
        vectors=(INCOME_VECTOR, COMMUTER_VECTOR),
        level=CENSUS_LEVEL,
        resolution=GEOMETRY_RESOLUTION,
    )


# =============================================================================
# PIPELINE
# =============================================================================


def load_inputs(config: ReportConfig) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """Stage 1: stops and census DAs."""
    stops = load_stops(config.stops_path, boarding_only=config.boarding_only)

    if config.census_file is not None:
        das = load_census_das_file(config.census_file, config.census_request.vectors)
    else:
        das = fetch_census_das(config.census_request, api_key=config.api_key)
    return stops, das


def enrich_das(
    stops: gpd.GeoDataFrame, das: gpd.GeoDataFrame, config: ReportConfig
) -> gpd.GeoDataFrame:
    """Stages 2 and 3: spatial join, then metric derivation."""
    joined = count_stops_per_da(stops, das, predicate=config.predicate)
    return derive_da_metrics(
        joined,
        income_field=config.income_field,
        commuter_field=config.commuter_field,
        population_field=POPULATION_FIELD,
        area_field=AREA_FIELD,
        strict=config.strict,
    )


def write_reports(
    das: gpd.GeoDataFrame, stops: gpd.GeoDataFrame, output_dir: Path
) -> tuple[list[CorrelationResult], list[Path]]:
    """Stage 4: maps and correlation plots."""
    output_dir.mkdir(parents=True, exist_ok=True)
    artifacts: list[Path] = []

    stop_map = build_stop_overview_map(das, stops, id_field=GEO_ID_FIELD)
    artifacts.append(save_map(stop_map, output_dir / STOP_MAP_NAME))
    artifacts.append(plot_static_overview(das, stops, output_dir / STATIC_MAP_NAME))

    metric_map = build_metric_layers_map(das, id_field=GEO_ID_FIELD, area_field=AREA_FIELD)
    artifacts.append(save_map(metric_map, output_dir / METRIC_MAP_NAME))

    correlations = []
    for result, path in run_correlations(das, output_dir):
        correlations.append(result)
        artifacts.append(path)
    return correlations, artifacts


def run_report(config: ReportConfig) -> ReportResult:
    """Run every stage and return the enriched data plus written artifacts."""
    LOGGER.info("Stops: %s", config.stops_path)
    LOGGER.info("Output folder: %s", config.output_dir)

    stops, das = load_inputs(config)
    enriched = enrich_das(stops, das, config)
    correlations, artifacts = write_reports(enriched, stops, config.output_dir)

    LOGGER.info("Done. %d artifacts written.", len(artifacts))
    return ReportResult(das=enriched, stops=stops, correlations=correlations, artifacts=artifacts)


# =============================================================================
# ARGUMENTS
# =============================================================================


def build_argparser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    p = argparse.ArgumentParser(
        description="Join GTFS stops to census DAs, map stop density and correlate it "
        "with commuting and income."
    )
    p.add_argument("-s", "--stops", default=STOPS_PATH, help="GTFS stops.txt, folder, or zip.")
    p.add_argument("-d", "--outdir", default=OUTPUT_DIR, help="Folder for all output files.")
    p.add_argument(
        "--census-file",
        default=CENSUS_FILE,
        help="Saved DA layer to use instead of the CensusMapper API.",
    )
    p.add_argument("--api-key", default=None, help="CensusMapper API key (else CM_API_KEY).")
    p.add_argument("--dataset", default=CENSUS_DATASET, help="Census dataset, e.g. CA21.")
    p.add_argument("--region-level", default=REGION_LEVEL, help="Region level, e.g. CSD or CMA.")
    p.add_argument(
        "--regions",
        nargs="+",
        default=REGION_IDS,
        metavar="REGION_ID",
        help="Region ids at --region-level.",
    )
    p.add_argument("--income-vector", default=INCOME_VECTOR, help="Average income vector id.")
    p.add_argument(
        "--commuter-vector", default=COMMUTER_VECTOR, help="Car/truck/van commuters vector id."
    )
    p.add_argument(
        "--resolution",
        default=GEOMETRY_RESOLUTION,
        choices=("simplified", "high"),
        help="DA polygon detail.",
    )
    p.add_argument(
        "--predicate",
        default=JOIN_PREDICATE,
        choices=SUPPORTED_PREDICATES,
        help="Point-in-polygon rule for stops on DA boundaries.",
    )
    p.add_argument(
        "--boarding-only",
        action="store_true",
        default=BOARDING_STOPS_ONLY,
        help="Keep only GTFS boarding locations (location_type 0).",
    )
    p.add_argument(
        "--strict",
        action="store_true",
        default=STRICT_RATIOS,
        help="Fail on zero population/area instead of writing nulls.",
    )
    p.add_argument("--log-file", default=None, help="Also write the log to this file.")
    return p


def config_from_args(args: argparse.Namespace) -> ReportConfig:
    request = CensusRequest(
        dataset=args.dataset,
        regions={args.region_level: tuple(args.regions)},
        vectors=(args.income_vector, args.commuter_vector),
        level=CENSUS_LEVEL,
        resolution=args.resolution,
    )
    return ReportConfig(
        stops_path=Path(args.stops),
        output_dir=Path(args.outdir),
        census_request=request,
        census_file=Path(args.census_file) if args.census_file else None,
        api_key=args.api_key,
        predicate=args.predicate,
        boarding_only=args.boarding_only,
        strict=args.strict,
    )


# =============================================================================
# MAIN
# =============================================================================


def main(argv: Sequence[str] | None = None) -> None:
    """Entry-point guarded by ``if __name__ == "__main__"``."""
    args = build_argparser().parse_args(argv)
    setup_logging(log_file=args.log_file)

    try:
        run_report(config_from_args(args))
    except (DataUnavailable, DivisionUndefined):
        LOGGER.exception("Report aborted")
        sys.exit(1)


if __name__ == "__main__":
    main()
