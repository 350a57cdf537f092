"""Merged-set fetcher: tripwire-gated, search-based merge history fetch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Iterator

from ..config import QueueConfig
from ..errors import SchemaValidationError
from ..schemas import MergedRecord, compute_days_to_merge, parse_timestamp
from .client import GitHubClient
from .errors import UpstreamError
from .labels import label_names, resolve_record_type

LOGGER = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 365
DEFAULT_SLICE_DAYS = 30
DEFAULT_PAGE_SIZE = 100
SEARCH_RESULT_CAP = 1000

MERGED_SEARCH_QUERY = """
query FetchMergedPullRequests($searchQuery: String!, $first: Int!, $after: String) {
  search(query: $searchQuery, type: ISSUE, first: $first, after: $after) {
    issueCount
    pageInfo {
      hasNextPage
      endCursor
    }
    nodes {
      ... on PullRequest {
        number
        title
        url
        createdAt
        mergedAt
        changedFiles
        commits {
          totalCount
        }
        labels(first: 20) {
          nodes {
            name
          }
        }
      }
    }
  }
}
"""


@dataclass(frozen=True)
class MergedSetResult:
    """Outcome of one merged-set fetch.

    `skipped` means the tripwire found no merges past the watermark and the
    caller should reuse its cached blob verbatim.
    """

    skipped: bool
    records: list[MergedRecord]
    latest_merged_at: datetime | None
    new_merge_count: int | None = None
    ghosts_excluded: int = 0


@dataclass(frozen=True)
class MergedHistory:
    """Records from one full history fetch.

    `newest_merged_at` includes excluded ghost merges, matching what the
    tripwire search counts.
    """

    records: list[MergedRecord]
    ghosts_excluded: int
    newest_merged_at: datetime | None


def is_ghost_merge(commit_count: int, changed_files: int) -> bool:
    """Return True for merges with no commits or no changed files.

    These are bot or administrative artifacts rather than reviewed
    submissions. Legitimate empty-diff merges are misclassified by this
    heuristic as well.
    """
    return commit_count == 0 or changed_files == 0


class MergedSetFetcher:
    """Pulls merge history through the search APIs."""

    def __init__(
        self,
        client: GitHubClient,
        config: QueueConfig,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        slice_days: int = DEFAULT_SLICE_DAYS,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._lookback_days = lookback_days
        self._slice_days = slice_days
        self._page_size = page_size
        self._clock = clock or (lambda: datetime.now(UTC))

    def fetch(
        self,
        latest_merged_at: datetime | None,
        has_cached_blob: bool,
        force: bool = False,
    ) -> MergedSetResult:
        """Run the tripwire when it can be trusted, then the full fetch if needed."""
        if not force and latest_merged_at is not None and has_cached_blob:
            new_merge_count = self.count_merged_since(latest_merged_at)
            if new_merge_count == 0:
                LOGGER.info("No merges since %s; reusing cached merged set.", _search_timestamp(latest_merged_at))
                return MergedSetResult(
                    skipped=True,
                    records=[],
                    latest_merged_at=latest_merged_at,
                    new_merge_count=0,
                )
            LOGGER.info("Tripwire found %d merges since watermark; refetching history.", new_merge_count)

        history = self.fetch_history()
        newest = history.newest_merged_at
        return MergedSetResult(
            skipped=False,
            records=history.records,
            latest_merged_at=newest if newest is not None else latest_merged_at,
            ghosts_excluded=history.ghosts_excluded,
        )

    def count_merged_since(self, since: datetime) -> int:
        """Ask the search endpoint how many typed merges happened after `since`."""
        query = f"{self._base_query()} merged:>{_search_timestamp(since)}"
        response = self._client.get("/search/issues", params={"q": query, "per_page": 1})
        payload = response.payload
        total_count = payload.get("total_count") if isinstance(payload, dict) else None
        if isinstance(total_count, bool) or not isinstance(total_count, int):
            raise UpstreamError("Search response is missing an integer total_count.")
        return total_count

    def fetch_history(self) -> MergedHistory:
        """Fetch all merges inside the lookback window, one time slice at a time."""
        records_by_id: dict[int, MergedRecord] = {}
        ghosts_excluded = 0
        newest_ghost: datetime | None = None
        for slice_start, slice_end in self._window_slices():
            search_query = (
                f"{self._base_query()} merged:{_search_timestamp(slice_start)}..{_search_timestamp(slice_end)}"
            )
            for node in self._iterate_search_nodes(search_query):
                record, is_ghost = self._build_record(node)
                if is_ghost:
                    ghosts_excluded += 1
                    ghost_merged_at = _optional_timestamp(node.get("mergedAt"))
                    if ghost_merged_at is not None and (newest_ghost is None or ghost_merged_at > newest_ghost):
                        newest_ghost = ghost_merged_at
                    continue
                if record is not None:
                    records_by_id.setdefault(record.id, record)

        records = sorted(records_by_id.values(), key=lambda record: (record.merged_at, record.id))
        LOGGER.info("Fetched %d merged records (%d ghost merges excluded).", len(records), ghosts_excluded)
        newest = max((record.merged_at for record in records), default=None)
        if newest_ghost is not None and (newest is None or newest_ghost > newest):
            newest = newest_ghost
        return MergedHistory(records=records, ghosts_excluded=ghosts_excluded, newest_merged_at=newest)

    def _base_query(self) -> str:
        return (
            f"repo:{self._config.owner}/{self._config.repo} is:pr is:merged "
            f"label:{self._config.plugin_label},{self._config.theme_label}"
        )

    def _window_slices(self) -> list[tuple[datetime, datetime]]:
        window_end = self._clock()
        cursor = window_end - timedelta(days=self._lookback_days)
        slices: list[tuple[datetime, datetime]] = []
        while cursor < window_end:
            slice_end = min(cursor + timedelta(days=self._slice_days), window_end)
            slices.append((cursor, slice_end))
            cursor = slice_end
        return slices

    def _iterate_search_nodes(self, search_query: str) -> Iterator[Any]:
        after: str | None = None
        page = 0
        while True:
            data = self._client.graphql(
                MERGED_SEARCH_QUERY,
                {"searchQuery": search_query, "first": self._page_size, "after": after},
            )
            search = data.get("search")
            if not isinstance(search, dict):
                raise UpstreamError("GraphQL search response is missing the search object.")
            if page == 0 and int(search.get("issueCount") or 0) > SEARCH_RESULT_CAP:
                LOGGER.warning(
                    "Search slice %r matched %s results; results beyond %d are not reachable.",
                    search_query,
                    search.get("issueCount"),
                    SEARCH_RESULT_CAP,
                )
            yield from search.get("nodes") or []

            page_info = search.get("pageInfo") or {}
            after = page_info.get("endCursor")
            page += 1
            if not page_info.get("hasNextPage") or not after:
                break

    def _build_record(self, node: Any) -> tuple[MergedRecord | None, bool]:
        """Map a search node to a record; the flag reports ghost merges."""
        if not isinstance(node, dict) or node.get("mergedAt") is None or "number" not in node:
            return None, False

        commit_count = int((node.get("commits") or {}).get("totalCount") or 0)
        changed_files = int(node.get("changedFiles") or 0)
        if is_ghost_merge(commit_count, changed_files):
            LOGGER.debug("Excluding ghost merge #%s.", node.get("number"))
            return None, True

        try:
            created_at = parse_timestamp(node.get("createdAt"))
            merged_at = parse_timestamp(node.get("mergedAt"))
            number = node["number"]
            if isinstance(number, bool) or not isinstance(number, int):
                raise SchemaValidationError("Field 'number' must be an integer.")
            url = node.get("url")
            if not isinstance(url, str):
                raise SchemaValidationError("Field 'url' must be a string.")
        except SchemaValidationError as exc:
            LOGGER.warning("Skipping malformed merged pull request %s: %s", node.get("number"), exc)
            return None, False

        return (
            MergedRecord(
                id=number,
                title=str(node.get("title") or ""),
                url=url,
                record_type=resolve_record_type(label_names(node.get("labels")), self._config),
                created_at=created_at,
                merged_at=merged_at,
                days_to_merge=compute_days_to_merge(created_at, merged_at),
            ),
            False,
        )


def _search_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _optional_timestamp(value: Any) -> datetime | None:
    try:
        return parse_timestamp(value)
    except SchemaValidationError:
        return None
