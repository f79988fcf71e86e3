"""
Command-line interface (CLI) for the SLO engine.

Example: baseline run against a local service
----------------------------------------------
    sloctl run baseline --base-url http://localhost:4000 \
           --output results/summary.json --series results/series.jsonl

Exit status: 0 pass, 1 thresholds failed, 2 setup aborted or bad
configuration, 3 run incomplete (no workers for a whole stage).
"""

from __future__ import annotations

from enum import IntEnum
from pathlib import Path

import typer

from slo_engine.errors import ConfigError, SetupError
from slo_engine.loader import builtin_profiles, load_config
from slo_engine.log import configure_logging
from slo_engine.model import RunConfig
from slo_engine.report import RunReport, render_text, write_series, write_summary
from slo_engine.runner import execute
from slo_engine.settings import Settings

# Typer application instance
app = typer.Typer(
    add_completion=False,
    help="Load generator and SLO verifier for a URL-shortening service.",
)


class ExitCode(IntEnum):
    OK = 0
    THRESHOLDS_FAILED = 1
    ABORTED = 2
    INCOMPLETE = 3


def exit_code(report: RunReport) -> ExitCode:
    if not report.passed:
        return ExitCode.THRESHOLDS_FAILED
    if report.incomplete:
        return ExitCode.INCOMPLETE
    return ExitCode.OK


def apply_overrides(
    config: RunConfig,
    settings: Settings,
    *,
    base_url: str | None = None,
    seed: int | None = None,
    pool_size: int | None = None,
) -> RunConfig:
    """CLI flags win over ``SLO_*`` environment variables, which win over the file."""
    updates: dict = {}
    url = base_url or settings.base_url
    if url:
        updates["base_url"] = url
    if seed is not None:
        updates["seed"] = seed
    if pool_size is not None:
        updates["setup"] = config.setup.model_copy(update={"pool_size": pool_size})
    return config.model_copy(update=updates) if updates else config


def _load_or_exit(profile: str) -> RunConfig:
    try:
        return load_config(profile)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=ExitCode.ABORTED)


@app.command()
def run(
    profile: str = typer.Argument(
        "baseline", help="Built-in profile name or path to a JSON run configuration"
    ),
    base_url: str | None = typer.Option(
        None, "--base-url", "-u", help="Address of the service under test"
    ),
    seed: int | None = typer.Option(
        None, "--seed", help="Seed for reproducible per-worker random streams"
    ),
    pool_size: int | None = typer.Option(
        None, "--pool-size", min=0, help="Number of links created during Setup"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write the JSON summary to this file"
    ),
    series: Path | None = typer.Option(
        None, "--series", help="Append the sampled series (JSON lines) to this file"
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING..."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """Execute one run and exit with the verdict's status code."""
    settings = Settings()
    configure_logging(log_level or settings.log_level, json=json_logs or settings.log_json)

    config = apply_overrides(
        _load_or_exit(profile), settings, base_url=base_url, seed=seed, pool_size=pool_size
    )
    try:
        report = execute(config)
    except SetupError as exc:
        typer.echo(f"Setup aborted: {exc}", err=True)
        raise typer.Exit(code=ExitCode.ABORTED)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=ExitCode.ABORTED)

    typer.echo(render_text(report))
    if output is not None:
        write_summary(output, report)
    if series is not None:
        write_series(series, report.series)

    code = exit_code(report)
    if code is not ExitCode.OK:
        raise typer.Exit(code=int(code))


@app.command()
def validate(
    profile: str = typer.Argument(..., help="Built-in profile name or JSON file"),
) -> None:
    """Parse a run configuration and print its stages, weights and thresholds."""
    config = _load_or_exit(profile)
    ramp = config.profile

    typer.echo(f"{config.name}: {config.description}".rstrip(": "))
    typer.echo(f"target: {config.base_url}")
    typer.echo(f"stages ({ramp.interpolation.value}, {ramp.total_duration:g}s total):")
    for stage in ramp.stages:
        hold = " hold" if stage.hold else ""
        typer.echo(f"  {stage.duration:>8g}s -> {stage.target}{hold}")
    typer.echo("scenarios:")
    for name, weight in config.scenarios.items():
        typer.echo(f"  {name:<16} {weight:.2f}")
    typer.echo("thresholds:")
    for rule in config.rules():
        typer.echo(f"  {rule}")


@app.command()
def profiles() -> None:
    """List the built-in profiles."""
    for name in builtin_profiles():
        typer.echo(f"{name:<10} {load_config(name).description}")


# ``python -m slo_engine.cli`` entry-point

def main() -> None:  # pragma: no cover
    """Entry-point for the ``sloctl`` console script."""
    app()


if __name__ == "__main__":
    app()
