"""Service orchestration for review queue ingestion."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Callable, Generic, TypeVar

from ..config import QueueConfig
from ..datasets.cache import DatasetCache
from ..datasets.store import KeyValueStore
from ..errors import PartialRunError, SchemaValidationError
from ..github.auth import TokenProvider
from ..github.client import GitHubClient
from ..github.http import HttpSession
from ..github.merged_set import MergedSetFetcher
from ..github.open_set import OpenSetFetcher
from ..github.retry import RetryExecutor
from ..schemas import (
    MERGED_HISTORY_DATASET,
    OPEN_QUEUE_DATASET,
    DatasetPointer,
    DatasetPointers,
    MergedRecord,
    PullRequestRecord,
    Summary,
    dump_records,
    format_timestamp,
    load_merged_records,
    load_open_records,
)
from ..stats.service import SummaryBuilder
from .run_log import RunLog, RunLogEntry, describe_error
from .summary_store import SummaryStore

LOGGER = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=PullRequestRecord)


class RunState(StrEnum):
    IDLE = "idle"
    FETCHING_OPEN_SET = "fetching-open-set"
    FETCHING_MERGED_SET = "fetching-merged-set"
    SUMMARIZING = "summarizing"
    PERSISTING = "persisting"
    ERRORED = "errored"


@dataclass(frozen=True)
class TriggerResult:
    """Outcome of one ingestion run as reported to the caller."""

    ok: bool
    summary_updated: bool
    open_set_updated: bool
    merged_set_updated: bool
    versions: dict[str, str | None]
    checked_at: datetime | None
    error: str | None = None
    logs: list[RunLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "summaryUpdated": self.summary_updated,
            "openSetUpdated": self.open_set_updated,
            "mergedSetUpdated": self.merged_set_updated,
            "versions": dict(self.versions),
            "checkedAt": format_timestamp(self.checked_at) if self.checked_at is not None else None,
            "error": self.error,
            "logs": [entry.to_dict() for entry in self.logs],
        }


@dataclass(frozen=True)
class _CachedDataset(Generic[RecordT]):
    pointer: DatasetPointer
    records: list[RecordT]


@dataclass(frozen=True)
class _DatasetOutcome(Generic[RecordT]):
    """Records to summarise plus the blob to write, if the set changed."""

    records: list[RecordT]
    prior_pointer: DatasetPointer | None
    content: str | None
    reused: bool


@dataclass(frozen=True)
class _OpenSetOutcome(_DatasetOutcome[PullRequestRecord]):
    etag: str | None = None


@dataclass(frozen=True)
class _MergedSetOutcome(_DatasetOutcome[MergedRecord]):
    latest_merged_at: datetime | None = None


class IngestionService:
    """Coordinates fetch, summarise, and persist for one run at a time.

    The summary is written last, after any changed dataset blobs, so its
    pointers never run ahead of the cache. A failed run writes nothing and
    leaves the previous summary in place.
    """

    def __init__(
        self,
        cache: DatasetCache,
        summary_store: SummaryStore,
        open_fetcher: OpenSetFetcher,
        merged_fetcher: MergedSetFetcher,
        builder: SummaryBuilder | None = None,
        clock: Callable[[], datetime] | None = None,
        retain_versions: int = 5,
    ) -> None:
        self._cache = cache
        self._summary_store = summary_store
        self._open_fetcher = open_fetcher
        self._merged_fetcher = merged_fetcher
        self._builder = builder or SummaryBuilder()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._retain_versions = retain_versions
        self._state = RunState.IDLE
        self._background: list[threading.Thread] = []
        self._background_lock = threading.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    def trigger(self, force: bool = False) -> TriggerResult:
        """Run one ingestion pass; never raises for run failures."""
        run_log = RunLog()
        checked_at = self._clock()
        run_log.info(f"Ingestion run started (force={force}).")
        try:
            result = self._run(force, checked_at, run_log)
        except Exception as exc:
            self._transition(RunState.ERRORED, run_log)
            run_log.error("Ingestion run failed; previous summary left in place", exc)
            result = TriggerResult(
                ok=False,
                summary_updated=False,
                open_set_updated=False,
                merged_set_updated=False,
                versions={"openQueue": None, "mergedHistory": None},
                checked_at=checked_at,
                error=describe_error(exc),
                logs=run_log.entries,
            )
        finally:
            self._transition(RunState.IDLE, run_log)

        if result.ok:
            self._start_background_prune()
        return replace(result, logs=list(run_log.entries))

    def get_summary(self) -> Summary | None:
        """Return the published summary, or None while no run has succeeded."""
        return self._summary_store.read()

    def read_dataset_version(self, dataset: str, version: str) -> str | None:
        """Return one immutable blob by `(dataset, version)`."""
        return self._cache.read_version(dataset, version)

    def prune_datasets(self, retain: int | None = None) -> dict[str, int]:
        """Prune both datasets and return deleted-version counts by name."""
        return prune_datasets(self._cache, self._retain_versions if retain is None else retain)

    def wait_for_background(self, timeout: float | None = None) -> None:
        """Join outstanding background prune threads."""
        with self._background_lock:
            threads = list(self._background)
        for thread in threads:
            thread.join(timeout)
        with self._background_lock:
            self._background = [thread for thread in self._background if thread.is_alive()]

    def run_scheduled(
        self,
        interval_seconds: float,
        max_runs: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Trigger a run every `interval_seconds`; failed runs are logged, never re-raised."""
        runs = 0
        try:
            while max_runs is None or runs < max_runs:
                result = self.trigger(force=False)
                runs += 1
                if not result.ok:
                    LOGGER.error("Scheduled ingestion run failed: %s", result.error)
                if max_runs is not None and runs >= max_runs:
                    break
                sleep(interval_seconds)
        except KeyboardInterrupt:
            LOGGER.info("Scheduled ingestion stopped after %d runs.", runs)
        return runs

    def _run(self, force: bool, checked_at: datetime, run_log: RunLog) -> TriggerResult:
        previous = self._summary_store.read()
        if previous is None:
            run_log.info("No usable previous summary; both datasets will be fetched in full.")

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="fetch") as pool:
            self._transition(RunState.FETCHING_OPEN_SET, run_log)
            open_future = pool.submit(self._refresh_open_set, previous, force, run_log)
            self._transition(RunState.FETCHING_MERGED_SET, run_log)
            merged_future = pool.submit(self._refresh_merged_set, previous, force, run_log)
            open_outcome, open_error = _collect(open_future)
            merged_outcome, merged_error = _collect(merged_future)

        if open_error is not None and merged_error is not None:
            run_log.error("Merged set fetch failed", merged_error)
            raise open_error
        if open_error is not None:
            raise PartialRunError(f"Open set fetch failed: {describe_error(open_error)}") from open_error
        if merged_error is not None:
            raise PartialRunError(f"Merged set fetch failed: {describe_error(merged_error)}") from merged_error
        assert open_outcome is not None and merged_outcome is not None

        self._transition(RunState.SUMMARIZING, run_log)
        statistics = self._builder.build(
            open_outcome.records,
            merged_outcome.records,
            checked_at=checked_at,
            page1_etag=open_outcome.etag,
            latest_merged_at=merged_outcome.latest_merged_at,
            datasets=DatasetPointers(open_queue=None, merged_history=None),
        )

        self._transition(RunState.PERSISTING, run_log)
        open_pointer = self._persist_dataset(OPEN_QUEUE_DATASET, open_outcome, run_log)
        merged_pointer = self._persist_dataset(MERGED_HISTORY_DATASET, merged_outcome, run_log)
        summary = replace(statistics, datasets=DatasetPointers(open_queue=open_pointer, merged_history=merged_pointer))
        self._summary_store.write(summary)
        run_log.info(
            f"Summary written: {summary.totals.ready_total} ready "
            f"({summary.totals.ready_plugins} plugins, {summary.totals.ready_themes} themes)."
        )

        return TriggerResult(
            ok=True,
            summary_updated=True,
            open_set_updated=_version_changed(open_outcome.prior_pointer, open_pointer),
            merged_set_updated=_version_changed(merged_outcome.prior_pointer, merged_pointer),
            versions={
                "openQueue": open_pointer.version if open_pointer is not None else None,
                "mergedHistory": merged_pointer.version if merged_pointer is not None else None,
            },
            checked_at=checked_at,
        )

    def _refresh_open_set(self, previous: Summary | None, force: bool, run_log: RunLog) -> _OpenSetOutcome:
        cached = self._load_cached(OPEN_QUEUE_DATASET, load_open_records, run_log)
        etag = None
        if not force and cached is not None and previous is not None:
            etag = previous.page1_etag

        result = self._open_fetcher.fetch(etag)
        if result.not_modified:
            if cached is not None:
                run_log.info("Open set unchanged upstream (HTTP 304); reusing cached blob.")
                return _OpenSetOutcome(
                    records=cached.records,
                    prior_pointer=cached.pointer,
                    content=None,
                    reused=True,
                    etag=etag,
                )
            run_log.warning("Open set returned 304 without a usable cache; refetching unconditionally.")
            result = self._open_fetcher.fetch(None)

        run_log.info(f"Open set fetched: {len(result.records)} records over {result.pages_fetched} pages.")
        return _OpenSetOutcome(
            records=result.records,
            prior_pointer=cached.pointer if cached is not None else None,
            content=dump_records(result.records),
            reused=False,
            etag=result.etag,
        )

    def _refresh_merged_set(self, previous: Summary | None, force: bool, run_log: RunLog) -> _MergedSetOutcome:
        cached = self._load_cached(MERGED_HISTORY_DATASET, load_merged_records, run_log)
        latest_merged_at = previous.latest_merged_at if previous is not None else None

        result = self._merged_fetcher.fetch(latest_merged_at, has_cached_blob=cached is not None, force=force)
        if result.skipped and cached is not None:
            run_log.info("No new merges since watermark; reusing cached merged set.")
            return _MergedSetOutcome(
                records=cached.records,
                prior_pointer=cached.pointer,
                content=None,
                reused=True,
                latest_merged_at=latest_merged_at,
            )

        run_log.info(
            f"Merged set fetched: {len(result.records)} records ({result.ghosts_excluded} ghost merges excluded)."
        )
        return _MergedSetOutcome(
            records=result.records,
            prior_pointer=cached.pointer if cached is not None else None,
            content=dump_records(result.records),
            reused=False,
            latest_merged_at=result.latest_merged_at,
        )

    def _load_cached(
        self,
        dataset: str,
        loader: Callable[[str], list[RecordT]],
        run_log: RunLog,
    ) -> _CachedDataset[RecordT] | None:
        resolved = self._cache.read_current(dataset)
        if resolved is None:
            run_log.info(f"No cached {dataset} blob; a full fetch is required.")
            return None
        pointer, content = resolved
        try:
            records = loader(content)
        except SchemaValidationError as exc:
            run_log.warning(f"Cached {dataset} version {pointer.version} failed validation; refetching: {exc}")
            return None
        return _CachedDataset(pointer=pointer, records=records)

    def _persist_dataset(
        self,
        dataset: str,
        outcome: _DatasetOutcome[Any],
        run_log: RunLog,
    ) -> DatasetPointer | None:
        if outcome.content is None:
            return outcome.prior_pointer
        pointer = self._cache.write(dataset, outcome.content, metadata={"records": len(outcome.records)})
        if _version_changed(outcome.prior_pointer, pointer):
            run_log.info(f"Dataset {dataset} updated to version {pointer.version}.")
        else:
            run_log.debug(f"Dataset {dataset} content unchanged at version {pointer.version}.")
        return pointer

    def _transition(self, state: RunState, run_log: RunLog) -> None:
        self._state = state
        run_log.debug(f"State -> {state.value}")

    def _start_background_prune(self) -> None:
        thread = threading.Thread(target=self._prune_in_background, name="dataset-prune", daemon=True)
        with self._background_lock:
            self._background = [existing for existing in self._background if existing.is_alive()]
            self._background.append(thread)
        thread.start()

    def _prune_in_background(self) -> None:
        try:
            deleted = self.prune_datasets()
        except Exception:
            LOGGER.exception("Background dataset pruning failed.")
            return
        LOGGER.info("Background pruning removed versions: %s", deleted)


def create_ingestion_service(
    config: QueueConfig,
    store: KeyValueStore,
    session: HttpSession | None = None,
    executor: RetryExecutor | None = None,
) -> IngestionService:
    """Composition root: one token provider shared by one client and both fetchers."""
    token_provider = TokenProvider(config, session=session)
    client = GitHubClient(token_provider, session=session, executor=executor)
    return IngestionService(
        cache=DatasetCache(store, base_url=config.public_base_url),
        summary_store=SummaryStore(store),
        open_fetcher=OpenSetFetcher(client, config),
        merged_fetcher=MergedSetFetcher(client, config),
        retain_versions=config.retain_versions,
    )


def prune_datasets(cache: DatasetCache, retain: int) -> dict[str, int]:
    """Prune both published datasets and return deleted-version counts by name."""
    return {dataset: cache.prune(dataset, retain) for dataset in (OPEN_QUEUE_DATASET, MERGED_HISTORY_DATASET)}


def _collect(future: Future[Any]) -> tuple[Any, Exception | None]:
    try:
        return future.result(), None
    except Exception as exc:
        return None, exc


def _version_changed(prior: DatasetPointer | None, current: DatasetPointer | None) -> bool:
    if current is None:
        return False
    return prior is None or prior.version != current.version
