"""
Command-line interface for prs1core.

Provides commands for scanning a card export, decoding its files, listing
waveform tracks, printing daily/weekly/monthly reports and managing
configuration.
"""

import json
import logging
import sys

from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Any

import click

from prs1core.analysis.aggregation import DailyAggregator, TrendAggregator
from prs1core.config import (
    ConfigError,
    Settings,
    get_config_path,
    load_config,
    load_settings,
    set_config_value,
    unset_config_value,
)
from prs1core.logging_config import setup_logging
from prs1core.models.buckets import DailyBucket, TrendBucket
from prs1core.parsers.discovery import classify_file, find_candidate_files
from prs1core.parsers.loader import BatchResult, FileFailure, Prs1Loader
from prs1core.waveform.index import TRACK_KINDS, WaveformIndex

logger = logging.getLogger(__name__)

try:
    __version__ = get_version("prs1-core")
except PackageNotFoundError:
    __version__ = "dev"

# Per-minute series and raw data are left out of report JSON unless asked for
DAILY_SERIES_FIELDS = {
    "fl_breath_series",
    "fl_minute_median",
    "fl_ema_5m",
    "fl_ema_15m",
    "fl_bands_5m",
    "fl_bands_15m",
    "snore_heatmap",
    "rolling_ahi",
}
DAILY_RAW_FIELDS = {"slices", "events", "samples"}


def _settings() -> Settings:
    try:
        return load_settings()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _candidate_paths(path: Path) -> list[Path]:
    if path.is_file():
        return [path]
    return find_candidate_files(path)


def _decode_path(path: Path, settings: Settings) -> BatchResult:
    """Read and decode every candidate file under ``path``."""
    items = []
    unreadable = []
    for p in _candidate_paths(path):
        try:
            items.append((str(p), p.read_bytes()))
        except OSError as e:
            logger.warning(f"Cannot read {p}: {e}")
            unreadable.append(FileFailure(source_path=str(p), error=str(e)))

    batch = Prs1Loader(settings).parse_many(items)
    batch.failures.extend(unreadable)
    return batch


def _fmt(value: float | None, digits: int = 1) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


def _fmt_epoch(t_epoch_sec: int) -> str:
    return datetime.fromtimestamp(t_epoch_sec, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


@click.group()
@click.version_option(__version__, prog_name="prs1core")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """prs1core: PRS1 CPAP card decoding and therapy statistics"""
    setup_logging(verbose=verbose, console_format="%(levelname)s: %(message)s")


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
def scan(path: Path) -> None:
    """List candidate files under PATH with their kind."""
    paths = _candidate_paths(path)
    if not paths:
        click.echo(f"No candidate files found under {path}")
        return

    click.echo(f"{'Kind':<10} {'Size':>10}  Path")
    click.echo(f"{'=' * 60}")
    for p in paths:
        try:
            with open(p, "rb") as f:
                head = f.read(8)
            size = p.stat().st_size
        except OSError as e:
            click.echo(f"{'error':<10} {'-':>10}  {p} ({e})", err=True)
            continue
        kind = classify_file(p.name, head)
        click.echo(f"{kind.value:<10} {size:>10}  {p}")
    click.echo(f"\n{len(paths)} candidate files")


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
def decode(path: Path, as_json: bool) -> None:
    """Decode every candidate file under PATH and summarize the results."""
    batch = _decode_path(path, _settings())

    rows = []
    for result in batch.results:
        for session in result.sessions:
            rows.append(
                {
                    "path": result.source_path,
                    "kind": result.kind.value,
                    "start": session.start_epoch_sec,
                    "end": session.end_epoch_sec,
                    "events": len(session.events),
                    "samples": sum(len(v) for v in session.samples.values()),
                    "waveforms": sorted(k.value for k in session.waveforms),
                }
            )

    if as_json:
        _echo_json(
            {
                "sessions": rows,
                "failures": [f.model_dump(mode="json") for f in batch.failures],
            }
        )
    else:
        click.echo(
            f"{'Start (UTC)':<20} {'Kind':<6} {'Events':>7} {'Samples':>8}  {'Waveforms':<28} Path"
        )
        click.echo(f"{'=' * 90}")
        for row in rows:
            click.echo(
                f"{_fmt_epoch(row['start']):<20} {row['kind']:<6} {row['events']:>7} "
                f"{row['samples']:>8}  {','.join(row['waveforms']) or '-':<28} {row['path']}"
            )
        click.echo(f"\n{len(rows)} sessions from {len(batch.results)} files")
        for failure in batch.failures:
            click.echo(f"✗ {failure.source_path}: {failure.error}", err=True)

    if batch.failures and not batch.results:
        sys.exit(1)


def _print_daily(days: list[DailyBucket]) -> None:
    click.echo(
        f"{'Date':<12} {'Usage':>6} {'AHI':>6} {'Peak':>6} {'P med':>6} {'P 95':>6} "
        f"{'Leak95':>7} {'Snore':>6} {'FL 95':>6}"
    )
    click.echo(f"{'=' * 70}")
    for d in days:
        click.echo(
            f"{d.day!s:<12} {_fmt(d.usage_hours, 2):>6} {_fmt(d.ahi):>6} "
            f"{_fmt(d.peak_ahi_30m):>6} {_fmt(d.pressure.median):>6} "
            f"{_fmt(d.pressure.p95):>6} {_fmt(d.leak.p95):>7} {d.snore_count:>6} "
            f"{_fmt(d.flow_limitation.p95, 2):>6}"
        )


def _print_trend(buckets: list[TrendBucket]) -> None:
    click.echo(
        f"{'Start':<12} {'Days':>4} {'Usage':>7} {'AHI':>6} {'P med':>6} {'P 95':>6} "
        f"{'Leak95':>7} {'Snore':>6}"
    )
    click.echo(f"{'=' * 62}")
    for b in buckets:
        click.echo(
            f"{b.period_start!s:<12} {b.days_used:>4} {_fmt(b.usage_hours, 1):>7} "
            f"{_fmt(b.ahi):>6} {_fmt(b.pressure_median):>6} {_fmt(b.pressure_p95):>6} "
            f"{_fmt(b.leak_p95):>7} {b.snore_count:>6}"
        )


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--period",
    type=click.Choice(["daily", "weekly", "monthly"]),
    default="daily",
    show_default=True,
    help="Aggregation period",
)
@click.option("--json", "as_json", is_flag=True, help="Print buckets as JSON")
@click.option("--series", is_flag=True, help="Include per-minute series in JSON output")
def report(path: Path, period: str, as_json: bool, series: bool) -> None:
    """Aggregate the sessions under PATH into a therapy report."""
    settings = _settings()
    batch = _decode_path(path, settings)
    sessions = batch.sessions
    if not sessions:
        raise click.ClickException(f"No sessions decoded from {path}")

    days = DailyAggregator(settings).build(sessions)
    if period == "weekly":
        buckets: list[Any] = TrendAggregator().build_weekly(days)
    elif period == "monthly":
        buckets = TrendAggregator().build_monthly(days)
    else:
        buckets = days

    if as_json:
        if period == "daily":
            exclude = DAILY_RAW_FIELDS if series else DAILY_RAW_FIELDS | DAILY_SERIES_FIELDS
            _echo_json([b.model_dump(mode="json", exclude=exclude) for b in buckets])
        else:
            _echo_json([b.model_dump(mode="json") for b in buckets])
        return

    if period == "daily":
        _print_daily(buckets)
    else:
        _print_trend(buckets)


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print tracks as JSON")
def waveforms(path: Path, as_json: bool) -> None:
    """Show the waveform tracks indexed from the files under PATH."""
    settings = _settings()
    sessions = _decode_path(path, settings).sessions
    index = WaveformIndex.from_settings(sessions, settings.waveform)

    rows = []
    for kind in TRACK_KINDS:
        segments = index.track(kind)
        rows.append(
            {
                "kind": kind.value,
                "segments": [
                    {
                        "start_ms": seg.start_epoch_ms,
                        "end_ms": seg.end_epoch_ms_exclusive,
                        "samples": len(seg),
                        "rate_hz": seg.sample_rate_hz,
                    }
                    for seg in segments
                ],
            }
        )

    if as_json:
        _echo_json(rows)
        return

    if index.is_empty:
        click.echo(f"No waveforms found under {path}")
        return

    click.echo(f"{'Track':<14} {'Start (UTC)':<20} {'End (UTC)':<20} {'Rate':>6} {'Samples':>9}")
    click.echo(f"{'=' * 73}")
    for row in rows:
        for seg in row["segments"]:
            click.echo(
                f"{row['kind']:<14} {_fmt_epoch(seg['start_ms'] // 1000):<20} "
                f"{_fmt_epoch(seg['end_ms'] // 1000):<20} {seg['rate_hz']:>6g} "
                f"{seg['samples']:>9}"
            )


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
def show_config_cmd() -> None:
    """Show all configuration settings."""
    config_path = get_config_path()
    if not config_path.exists():
        click.echo(f"No config file: {config_path}")
        return

    click.echo(f"Config file: {config_path}\n")
    config_data = load_config()
    if not config_data:
        click.echo("Configuration is empty.")
        return

    for section, values in config_data.items():
        click.echo(f"[{section}]")
        if isinstance(values, dict):
            for key, value in values.items():
                click.echo(f"  {key} = {value!r}")
        else:
            click.echo(f"  {values!r}")


@config.command("set")
@click.argument("key")
@click.argument("value")
def set_config_cmd(key: str, value: str) -> None:
    """Set KEY (section.name) to VALUE."""
    try:
        set_config_value(key, value)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ {key} = {value}")
    click.echo(f"  Config: {get_config_path()}")


@config.command("unset")
@click.argument("key")
def unset_config_cmd(key: str) -> None:
    """Remove KEY (section.name) from the config file."""
    if unset_config_value(key):
        click.echo(f"✓ Removed {key}")
    else:
        click.echo(f"{key} was not set.")


if __name__ == "__main__":
    cli()
