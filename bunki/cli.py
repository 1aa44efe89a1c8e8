"""Command-line interface for Bunki.

This module defines the CLI commands using Click framework.
It provides commands for building the site, rebuilding it on changes and
inspecting the build cache.

Commands:
- build: Build the site into the output directory.
- watch: Build, then rebuild incrementally whenever sources change.
- cache show: List the fingerprints stored by the last build.
- cache clear: Delete the build cache so the next build is a full one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import click

from . import __version__
from .errors import BuildError, BunkiError, CacheCorrupt
from .metrics import format_bytes

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file to use instead of bunki.yaml",
)


@click.group()
@click.version_option(version=__version__, prog_name="bunki")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Bunki static blog generator."""
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("bunki").setLevel(logging.DEBUG if verbose else logging.INFO)


@cli.command()
@click.option("--full", is_flag=True, help="Ignore the build cache and rebuild everything")
@click.option("--verify", is_flag=True, help="Hash every file instead of trusting size and mtime")
@_config_option
def build(full: bool, verify: bool, config_path: Path | None):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import build_site

    try:
        result = build_site(
            project_root,
            config_path=_resolve(config_path),
            full=full,
            verify=verify or None,
        )
    except BuildError as exc:
        _report_build_error(project_root, exc)
        raise SystemExit(1) from None
    except BunkiError as exc:
        raise click.ClickException(str(exc)) from exc

    plan = result.plan
    if plan.full:
        click.echo(f"Full rebuild: {len(result.posts)} posts")
    elif plan.is_noop:
        click.echo("No changes detected")
    else:
        click.echo(
            f"Rebuilt {len(plan.posts)} of {len(result.posts)} posts, "
            f"{len(plan.tags)} tag(s), indexes {'regenerated' if plan.indexes else 'unchanged'}"
        )

    metrics = result.metrics
    if metrics is not None:
        for stage, seconds in metrics.stages.items():
            click.echo(f"  {stage}: {seconds * 1000:.1f} ms")
        click.echo(
            f"Wrote {metrics.pages} files into {result.output_dir} "
            f"({format_bytes(metrics.total_size)}) in {metrics.total_time:.2f}s"
        )
        if metrics.time_saved:
            saved = metrics.time_saved.total_seconds() * 1000
            click.echo(click.style(f"Estimated time saved: {saved:.0f} ms", fg="green"))


@cli.command()
@_config_option
def watch(config_path: Path | None):
    """Build the site, then rebuild it whenever sources change."""
    project_root = Path.cwd()
    from .watch import Watcher

    try:
        Watcher(project_root, config_path=_resolve(config_path)).start()
    except BuildError as exc:
        _report_build_error(project_root, exc)
        raise SystemExit(1) from None
    except BunkiError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.group()
def cache():
    """Inspect or reset the build cache."""


@cache.command("show")
@_config_option
def cache_show(config_path: Path | None):
    """List the fingerprints stored by the last build."""
    project_root = Path.cwd()
    from .config import SiteConfig
    from .fingerprints import FingerprintStore

    try:
        config = SiteConfig.load(project_root, _resolve(config_path))
        store = FingerprintStore.load(project_root, config.cache_file)
    except CacheCorrupt as exc:
        raise click.ClickException(f"Build cache is corrupt: {exc}") from exc
    except BunkiError as exc:
        raise click.ClickException(str(exc)) from exc

    if not store:
        click.echo(f"No entries in {config.cache_file}")
        return
    for key in sorted(store):
        fingerprint = store[key]
        modified = datetime.fromtimestamp(fingerprint.modified_at).strftime("%Y-%m-%d %H:%M:%S")
        line = f"{fingerprint.content_hash[:12]}  {format_bytes(fingerprint.size):>10}  {modified}  {key}"
        if fingerprint.tags:
            line += f"  [{', '.join(fingerprint.tags)}]"
        click.echo(line)
    click.echo(f"{len(store)} entries in {config.cache_file}")


@cache.command("clear")
@_config_option
def cache_clear(config_path: Path | None):
    """Delete the build cache so the next build is a full one."""
    project_root = Path.cwd()
    from .config import SiteConfig

    try:
        config = SiteConfig.load(project_root, _resolve(config_path))
    except BunkiError as exc:
        raise click.ClickException(str(exc)) from exc

    if not config.cache_file.exists():
        click.echo(f"No build cache at {config.cache_file}")
        return
    config.cache_file.unlink()
    click.echo(f"Removed {config.cache_file}")


def main():
    """Entry point for the CLI application."""
    cli()


def _resolve(config_path: Path | None) -> Path | None:
    return config_path.resolve() if config_path is not None else None


def _report_build_error(project_root: Path, exc: BuildError) -> None:
    """Display a user-friendly build error."""
    try:
        rel_path = exc.source_path.relative_to(project_root)
    except ValueError:
        rel_path = exc.source_path
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
