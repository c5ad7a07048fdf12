from __future__ import annotations

import json
from pathlib import Path

import pytest

from ottawa_transit_census import stop_density_census_report as report


def _config(stops_path: Path, das_path: Path, outdir: Path, **overrides) -> report.ReportConfig:
    return report.ReportConfig(
        stops_path=stops_path,
        output_dir=outdir,
        census_request=report.default_census_request(),
        census_file=das_path,
        **overrides,
    )


def test_run_report_writes_every_artifact(stops_path, das_path, tmp_path) -> None:
    result = report.run_report(_config(stops_path, das_path, tmp_path / "out"))

    names = sorted(p.name for p in result.artifacts)
    assert names == sorted(
        [
            "stop_overview_map.html",
            "da_metric_layers_map.html",
            "da_stop_overview.png",
            "corr_stop_density_vs_vehicle_ratio.png",
            "corr_stop_count_vs_average_income.png",
            "corr_stop_density_vs_average_income.png",
        ]
    )
    assert all(p.exists() for p in result.artifacts)
    assert len(result.correlations) == 3


def test_run_report_enriches_das(stops_path, das_path, tmp_path) -> None:
    result = report.run_report(_config(stops_path, das_path, tmp_path))
    das = result.das.set_index("GeoUID")

    assert das["stop_count"].to_dict() == {"35061001": 1, "35061002": 1, "35061003": 2}
    assert das.loc["35061001", "stop_density"] == pytest.approx(0.5)
    assert das.loc["35061001", "vehicle_ratio"] == pytest.approx(0.2)
    assert das.loc["35061003", "average_income"] == pytest.approx(61000.0)
    assert das["vehicle_ratio"].isna().sum() == 1


def test_run_report_boarding_only(stops_path, das_path, tmp_path) -> None:
    config = _config(stops_path, das_path, tmp_path, boarding_only=True)
    das = report.run_report(config).das.set_index("GeoUID")
    assert das.loc["35061002", "stop_count"] == 0


def test_strict_mode_aborts_on_zero_population(stops_path, das_path, tmp_path) -> None:
    config = _config(stops_path, das_path, tmp_path, strict=True)
    with pytest.raises(report.DivisionUndefined):
        report.run_report(config)


def test_main_end_to_end(stops_path, das_path, tmp_path) -> None:
    outdir = tmp_path / "cli"
    log_file = tmp_path / "run.log"

    report.main(
        [
            "--stops",
            str(stops_path),
            "--outdir",
            str(outdir),
            "--census-file",
            str(das_path),
            "--log-file",
            str(log_file),
        ]
    )

    assert (outdir / "da_metric_layers_map.html").exists()
    assert (outdir / "corr_stop_count_vs_average_income.png").exists()
    assert "stop_count vs average_income" in log_file.read_text(encoding="utf-8")


def test_main_missing_stops_exits_with_error(das_path, tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        report.main(
            [
                "-s",
                str(tmp_path / "missing_stops.txt"),
                "-d",
                str(tmp_path),
                "--census-file",
                str(das_path),
            ]
        )

    assert excinfo.value.code == 1
    assert not (tmp_path / "stop_overview_map.html").exists()


def test_argparser_defaults() -> None:
    args = report.build_argparser().parse_args([])

    assert args.dataset == "CA21"
    assert args.region_level == "CSD"
    assert args.regions == ["3506008"]
    assert args.income_vector == "v_CA21_915"
    assert args.commuter_vector == "v_CA21_7635"
    assert args.predicate == "within"
    assert args.boarding_only is False
    assert args.census_file is None


def test_config_from_args() -> None:
    args = report.build_argparser().parse_args(
        [
            "-s",
            "gtfs.zip",
            "-d",
            "out",
            "--regions",
            "505",
            "--region-level",
            "CMA",
            "--predicate",
            "intersects",
            "--strict",
        ]
    )
    config = report.config_from_args(args)

    assert config.census_request.regions == {"CMA": ("505",)}
    assert config.census_request.vectors == ("v_CA21_915", "v_CA21_7635")
    assert config.income_field == "v_CA21_915"
    assert config.commuter_field == "v_CA21_7635"
    assert config.predicate == "intersects"
    assert config.strict is True
    assert config.census_file is None


def test_main_census_file_without_population_exits_with_error(
    stops_path, das_path, tmp_path
) -> None:
    fc = json.loads(das_path.read_text(encoding="utf-8"))
    for feature in fc["features"]:
        del feature["properties"]["Population"]
    no_population = tmp_path / "no_population.geojson"
    no_population.write_text(json.dumps(fc), encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        report.main(
            [
                "-s",
                str(stops_path),
                "-d",
                str(tmp_path / "out"),
                "--census-file",
                str(no_population),
            ]
        )

    assert excinfo.value.code == 1
