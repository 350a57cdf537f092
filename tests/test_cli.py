"""Tests for Typer CLI entrypoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import orjson
from typer.testing import CliRunner

from review_queue.cli import TYPER_APP
from review_queue.datasets.cache import DatasetCache
from review_queue.datasets.store import DuckDBKeyValueStore, KeyValueStore
from review_queue.github.errors import ServerError
from review_queue.github.merged_set import MergedSetResult
from review_queue.github.open_set import OpenSetResult
from review_queue.ingestion.service import IngestionService
from review_queue.ingestion.summary_store import SummaryStore
from review_queue.schemas import MergedRecord, PullRequestRecord, RecordType


class CannedOpenFetcher:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    def fetch(self, etag: str | None = None) -> OpenSetResult:
        if self.error is not None:
            raise self.error
        created_at = datetime.now(UTC) - timedelta(days=2)
        records = [
            PullRequestRecord(
                id=number,
                title=f"Add entry {number}",
                url=f"https://github.com/acme/releases/pull/{number}",
                record_type=record_type,
                created_at=created_at.replace(microsecond=0),
            )
            for number, record_type in [(11, RecordType.PLUGIN), (12, RecordType.THEME)]
        ]
        return OpenSetResult(not_modified=False, records=records, etag='W/"cli"', pages_fetched=1)


class CannedMergedFetcher:
    def fetch(self, latest_merged_at: datetime | None, has_cached_blob: bool, force: bool = False) -> MergedSetResult:
        merged_at = (datetime.now(UTC) - timedelta(days=4)).replace(microsecond=0)
        record = MergedRecord(
            id=5,
            title="Add entry 5",
            url="https://github.com/acme/releases/pull/5",
            record_type=RecordType.PLUGIN,
            created_at=merged_at - timedelta(days=6),
            merged_at=merged_at,
            days_to_merge=6,
        )
        return MergedSetResult(skipped=False, records=[record], latest_merged_at=merged_at)


def _install_fake_service(monkeypatch, open_error: Exception | None = None) -> None:
    def factory(config, store: KeyValueStore) -> IngestionService:
        return IngestionService(
            cache=DatasetCache(store),
            summary_store=SummaryStore(store),
            open_fetcher=CannedOpenFetcher(open_error),  # type: ignore[arg-type]
            merged_fetcher=CannedMergedFetcher(),  # type: ignore[arg-type]
            retain_versions=config.retain_versions,
        )

    monkeypatch.setattr("review_queue.cli.create_ingestion_service", factory)


def test_ingest_then_summary_and_dataset_commands(tmp_path: Path, monkeypatch) -> None:
    """`ingest` should publish a summary that `summary` renders and `dataset` serves."""
    _install_fake_service(monkeypatch)
    database_path = tmp_path / "nested" / "queue.duckdb"
    runner = CliRunner()

    ingest = runner.invoke(TYPER_APP, ["ingest", "--database-path", str(database_path)])
    assert ingest.exit_code == 0
    assert "ok=1" in ingest.stdout
    assert "open_set_updated=1" in ingest.stdout
    assert "Run log:" in ingest.stdout

    summary = runner.invoke(TYPER_APP, ["summary", "--database-path", str(database_path)], terminal_width=220)
    assert summary.exit_code == 0
    assert "Ready for Review" in summary.stdout
    assert "Estimated Wait (days)" in summary.stdout

    raw = runner.invoke(TYPER_APP, ["summary", "--json", "--database-path", str(database_path)])
    assert raw.exit_code == 0
    assert orjson.loads(raw.stdout)["totals"] == {"readyTotal": 2, "readyPlugins": 1, "readyThemes": 1}

    dataset = runner.invoke(TYPER_APP, ["dataset", "open-queue", "--database-path", str(database_path)])
    assert dataset.exit_code == 0
    assert [item["id"] for item in orjson.loads(dataset.stdout)] == [11, 12]

    prune = runner.invoke(TYPER_APP, ["prune", "--retain", "1", "--database-path", str(database_path)])
    assert prune.exit_code == 0
    assert "open-queue_versions_deleted=0" in prune.stdout


def test_ingest_exits_nonzero_when_run_fails(tmp_path: Path, monkeypatch) -> None:
    """A failed run should print the error and exit with status 1."""
    _install_fake_service(monkeypatch, open_error=ServerError("unavailable", status_code=503))
    database_path = tmp_path / "queue.duckdb"

    result = CliRunner().invoke(TYPER_APP, ["ingest", "--database-path", str(database_path)])

    assert result.exit_code == 1
    assert "ok=0" in result.stdout
    assert "PartialRunError" in result.stdout


def test_summary_reports_not_ready_on_empty_database(tmp_path: Path) -> None:
    """Reading before any successful run should report that the summary is not ready."""
    database_path = tmp_path / "queue.duckdb"
    DuckDBKeyValueStore(database_path).close()

    result = CliRunner().invoke(TYPER_APP, ["summary", "--database-path", str(database_path)])

    assert result.exit_code == 1
    assert "Summary not ready" in result.stdout


def test_read_commands_reject_missing_database(tmp_path: Path) -> None:
    """Read-only commands should not create a database that does not exist."""
    database_path = tmp_path / "missing.duckdb"

    result = CliRunner().invoke(TYPER_APP, ["summary", "--database-path", str(database_path)])

    assert result.exit_code != 0
    assert not database_path.exists()


def test_watch_runs_requested_number_of_ticks(tmp_path: Path, monkeypatch) -> None:
    """`watch --max-runs` should stop after the requested runs."""
    _install_fake_service(monkeypatch)
    database_path = tmp_path / "queue.duckdb"

    result = CliRunner().invoke(
        TYPER_APP,
        ["watch", "--interval", "1", "--max-runs", "2", "--database-path", str(database_path)],
    )

    assert result.exit_code == 0
    assert "runs_completed=2" in result.stdout
