"""Command line interface for torrentd configuration.

Adds commands:
- check
- show
- get
- set
- diff
- limits
- convert-yaml
"""

from __future__ import annotations

import json
import math
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from torrentd import __version__
from torrentd.config.config import ConfigStore, build_config, find_config_file
from torrentd.config.config_diff import (
    changed_fields,
    classify,
    describe_actions,
    generate_diff_report,
)
from torrentd.config.directories import (
    DEFAULT_MIN_FREE_BYTES,
    check_disk_space,
)
from torrentd.config.kv_store import FileKVStore
from torrentd.models import Config, LogLevel, ObservabilityConfig
from torrentd.throttle.rate_limiter import RateLimiterSpec
from torrentd.utils.exceptions import (
    ConfigurationError,
    DiskError,
    PersistenceWriteError,
)
from torrentd.utils.logging_config import setup_logging


def _load(ctx: click.Context) -> ConfigStore:
    try:
        return ConfigStore.load_or_default(FileKVStore(ctx.obj["config_file"]))
    except (ConfigurationError, DiskError) as e:
        raise click.ClickException(str(e)) from None


def _load_file(path: str) -> Config:
    try:
        return build_config(FileKVStore(path).load())
    except (OSError, ValueError, ConfigurationError) as e:
        msg = f"Cannot read {path}: {e}"
        raise click.ClickException(msg) from None


def _format_rate(spec: RateLimiterSpec) -> tuple[str, str]:
    if math.isinf(spec.rate):
        return "unlimited", "0"
    return f"{int(spec.rate)} B/s", str(spec.burst)


@click.group()
@click.version_option(__version__, prog_name="torrentd")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Configuration file (default: first of ./torrentd.toml, "
    "~/.config/torrentd/torrentd.toml, /etc/torrentd/torrentd.toml)",
)
@click.option(
    "--log-level",
    type=click.Choice([level.value for level in LogLevel], case_sensitive=False),
    default=LogLevel.WARNING.value,
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, config_file: str | None, log_level: str):
    """Manage the live configuration of the torrent daemon."""
    setup_logging(ObservabilityConfig(log_level=LogLevel(log_level.upper())))
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = find_config_file(config_file)


@cli.command("check")
@click.option(
    "--min-free",
    type=int,
    default=DEFAULT_MIN_FREE_BYTES,
    show_default=True,
    help="Free bytes required on the download volume",
)
@click.pass_context
def check(ctx: click.Context, min_free: int):
    """Run the startup preflight: path normalization and disk space."""
    store = _load(ctx)
    config = store.active
    try:
        free = check_disk_space(config.download_directory, min_free)
    except DiskError as e:
        raise click.ClickException(str(e)) from None

    console = Console()
    table = Table(title="Startup preflight")
    table.add_column("Check")
    table.add_column("Result")
    table.add_row("Config file", str(ctx.obj["config_file"]))
    table.add_row("Download directory", config.download_directory)
    table.add_row("Watch directory", config.watch_directory)
    table.add_row("File rewrite pending", "yes" if store.rewrite_pending else "no")
    table.add_row("Free space", f"{free} bytes")
    console.print(table)


@cli.command("show")
@click.option(
    "--format",
    "format_",
    type=click.Choice(["toml", "json", "yaml"]),
    default="toml",
)
@click.pass_context
def show(ctx: click.Context, format_: str):
    """Show the effective configuration."""
    click.echo(_load(ctx).export(format_))


@cli.command("get")
@click.argument("key")
@click.pass_context
def get_value(ctx: click.Context, key: str):
    """Get a single configuration value."""
    data = _load(ctx).active.model_dump(mode="json")
    if key not in data:
        msg = f"Key not found: {key}"
        raise click.ClickException(msg)
    click.echo(json.dumps(data[key]))


@cli.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_value(ctx: click.Context, key: str, value: str):
    """Change one value, persist it and print the required actions."""
    store = _load(ctx)
    try:
        result = store.update(**{key: value})
    except (ConfigurationError, DiskError) as e:
        raise click.ClickException(str(e)) from None
    except PersistenceWriteError as e:
        msg = f"{e.message}; required actions would have been: {e.actions}"
        raise click.ClickException(msg) from None

    if not result.applied:
        msg = f"{key} cannot be changed while the daemon is running"
        raise click.ClickException(msg)

    names = describe_actions(result.actions)
    click.echo(f"Updated {len(result.changes)} field(s)")
    click.echo(f"Actions: {', '.join(names) if names else 'none'}")


@cli.command("diff")
@click.argument("old", type=click.Path(exists=True, dir_okay=False))
@click.argument("new", type=click.Path(exists=True, dir_okay=False))
def diff(old: str, new: str):
    """Classify the change between two configuration files."""
    old_config = _load_file(old)
    new_config = _load_file(new)
    actions = classify(old_config, new_config)
    click.echo(generate_diff_report(changed_fields(old_config, new_config), actions))


@cli.command("limits")
@click.pass_context
def limits(ctx: click.Context):
    """Show the effective upload and download limiters."""
    store = _load(ctx)
    config = store.active

    table = Table(title="Rate limits")
    table.add_column("Direction")
    table.add_column("Setting")
    table.add_column("Rate")
    table.add_column("Burst")
    for direction, setting, spec in (
        ("upload", config.upload_rate, store.upload_limiter()),
        ("download", config.download_rate, store.download_limiter()),
    ):
        table.add_row(direction, setting or "(empty)", *_format_rate(spec))
    Console().print(table)


@cli.command("convert-yaml")
@click.pass_context
def convert_yaml(ctx: click.Context):
    """Write the configuration as YAML next to the config file."""
    store = _load(ctx)
    source: Path = ctx.obj["config_file"]
    target = source.with_name(source.stem + ".yaml")
    if target == source:
        msg = f"{source} is already YAML"
        raise click.ClickException(msg)

    yaml_store = FileKVStore(target)
    for name, value in store.active.model_dump().items():
        yaml_store.set(name, value)
    try:
        yaml_store.write_as(target)
    except OSError as e:
        raise click.ClickException(f"Cannot write {target}: {e}") from None
    click.echo(f"Config file written to {target}")


def main() -> None:
    """Console script entry point."""
    cli(obj={})
