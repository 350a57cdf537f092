"""CLI entrypoints for review queue monitoring."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console

from .config import QueueConfig
from .datasets.cache import DatasetCache
from .datasets.store import DuckDBKeyValueStore
from .errors import ReviewQueueError
from .ingestion.service import TriggerResult, create_ingestion_service, prune_datasets
from .ingestion.summary_store import SummaryStore
from .stats.render import render_summary

LOGGER = logging.getLogger(__name__)

TYPER_APP = typer.Typer(help="GitHub pull request review queue monitor.")

DATABASE_PATH_OPTION = typer.Option(
    None,
    "--database-path",
    "-d",
    help="DuckDB file path for cached datasets and the published summary.",
)
REPOSITORY_OPTION = typer.Option(None, "--repository", "-r", help="Monitored repository as owner/repo.")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable info-level logging.")


@TYPER_APP.callback()
def main() -> None:
    """Root CLI callback."""


@TYPER_APP.command("ingest")
def ingest_command(
    force: bool = typer.Option(False, "--force", help="Ignore ETag and watermark shortcuts and refetch everything."),
    database_path: Path | None = DATABASE_PATH_OPTION,
    repository: str | None = REPOSITORY_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run one ingestion pass and publish a fresh summary."""
    _configure_logging(verbose)
    config = _load_config(database_path=database_path, repository=repository)
    store = _open_store(config)
    try:
        service = create_ingestion_service(config, store)
        result = service.trigger(force=force)
        service.wait_for_background()
    finally:
        store.close()

    _emit_result(result)
    if not result.ok:
        raise typer.Exit(code=1)


@TYPER_APP.command("watch")
def watch_command(
    interval: float = typer.Option(900.0, "--interval", "-i", min=1.0, help="Seconds between ingestion runs."),
    max_runs: int | None = typer.Option(None, "--max-runs", min=1, help="Stop after this many runs."),
    database_path: Path | None = DATABASE_PATH_OPTION,
    repository: str | None = REPOSITORY_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run ingestion on a fixed interval until interrupted."""
    _configure_logging(verbose)
    config = _load_config(database_path=database_path, repository=repository)
    store = _open_store(config)
    try:
        service = create_ingestion_service(config, store)
        runs = service.run_scheduled(interval, max_runs=max_runs)
        service.wait_for_background()
    finally:
        store.close()
    typer.echo(f"runs_completed={runs}")


@TYPER_APP.command("summary")
def summary_command(
    database_path: Path | None = DATABASE_PATH_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the raw summary document."),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Print the most recently published summary."""
    _configure_logging(verbose)
    config = _load_config(database_path=database_path, repository=None)
    resolved_path = _require_existing_database(config)
    store = DuckDBKeyValueStore(resolved_path)
    try:
        summary_store = SummaryStore(store)
        summary = summary_store.read()
        raw = summary_store.read_raw() if as_json and summary is not None else None
    finally:
        store.close()

    if summary is None:
        typer.echo("Summary not ready: no ingestion run has completed yet.")
        raise typer.Exit(code=1)
    if raw is not None:
        typer.echo(raw)
        return
    render_summary(summary, Console())


@TYPER_APP.command("dataset")
def dataset_command(
    name: str = typer.Argument(..., help="Dataset name, e.g. open-queue or merged-history."),
    version: str | None = typer.Option(None, "--version", help="Immutable version hash; defaults to the current one."),
    database_path: Path | None = DATABASE_PATH_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Print one dataset blob as JSON."""
    _configure_logging(verbose)
    config = _load_config(database_path=database_path, repository=None)
    resolved_path = _require_existing_database(config)
    store = DuckDBKeyValueStore(resolved_path)
    try:
        cache = DatasetCache(store, base_url=config.public_base_url)
        content = cache.read_version(name, version) if version is not None else cache.read(name)
    except ReviewQueueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        store.close()

    if content is None:
        typer.echo(f"Dataset {name} not found.", err=True)
        raise typer.Exit(code=1)
    typer.echo(content)


@TYPER_APP.command("prune")
def prune_command(
    retain: int | None = typer.Option(None, "--retain", min=1, help="Versions to keep per dataset."),
    database_path: Path | None = DATABASE_PATH_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Delete old dataset versions, never touching the current ones."""
    _configure_logging(verbose)
    config = _load_config(database_path=database_path, repository=None)
    resolved_path = _require_existing_database(config)
    store = DuckDBKeyValueStore(resolved_path)
    try:
        cache = DatasetCache(store, base_url=config.public_base_url)
        deleted = prune_datasets(cache, config.retain_versions if retain is None else retain)
    finally:
        store.close()
    for dataset, count in deleted.items():
        typer.echo(f"{dataset}_versions_deleted={count}")


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="[%(asctime)s][%(levelname)s][%(name)s] %(message)s",
    )


def _load_config(database_path: Path | None, repository: str | None) -> QueueConfig:
    try:
        return QueueConfig.from_env().with_overrides(database_path=database_path, repository=repository)
    except ReviewQueueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _open_store(config: QueueConfig) -> DuckDBKeyValueStore:
    resolved_path = config.resolved_database_path()
    resolved_path.parent.mkdir(parents=True, exist_ok=True)
    return DuckDBKeyValueStore(resolved_path)


def _require_existing_database(config: QueueConfig) -> Path:
    resolved_path = config.resolved_database_path()
    if not resolved_path.exists():
        raise typer.BadParameter(f"Database file not found: {resolved_path}")
    return resolved_path


def _emit_result(result: TriggerResult) -> None:
    typer.echo("\nResult:")
    typer.echo(f"ok={int(result.ok)}")
    typer.echo(f"summary_updated={int(result.summary_updated)}")
    typer.echo(f"open_set_updated={int(result.open_set_updated)}")
    typer.echo(f"merged_set_updated={int(result.merged_set_updated)}")
    for dataset, version in result.versions.items():
        typer.echo(f"{dataset}_version={version or '-'}")
    if result.error is not None:
        typer.echo(f"error={result.error}")
    typer.echo("\nRun log:")
    for entry in result.logs:
        if entry.level != "debug":
            typer.echo(f"[{entry.level}] {entry.message}")


def module_cli_entry_point() -> None:
    TYPER_APP()
