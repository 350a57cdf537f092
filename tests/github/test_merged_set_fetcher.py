"""Unit tests for the tripwire-gated merged-set fetch strategy."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from review_queue.config import QueueConfig
from review_queue.github.client import ApiResponse
from review_queue.github.merged_set import MergedSetFetcher, is_ghost_merge
from review_queue.schemas import RecordType

CONFIG = QueueConfig(repository="acme/releases")
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class StubClient:
    def __init__(self, total_count: int = 0, pages: list[dict[str, Any]] | None = None) -> None:
        self.total_count = total_count
        self.pages = list(pages or [])
        self.get_calls: list[dict[str, Any]] = []
        self.graphql_calls: list[dict[str, Any]] = []

    def get(self, path: str, params: dict[str, Any] | None = None, **_: Any) -> ApiResponse:
        self.get_calls.append({"path": path, **(params or {})})
        return ApiResponse(status_code=200, headers={}, payload={"total_count": self.total_count})

    def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        self.graphql_calls.append(dict(variables))
        if not self.pages:
            return _search_page([])
        return self.pages.pop(0)


def _node(
    number: int,
    created_at: str,
    merged_at: str,
    labels: list[str],
    commits: int = 2,
    changed_files: int = 1,
) -> dict[str, Any]:
    return {
        "number": number,
        "title": f"Add entry {number}",
        "url": f"https://github.com/acme/releases/pull/{number}",
        "createdAt": created_at,
        "mergedAt": merged_at,
        "changedFiles": changed_files,
        "commits": {"totalCount": commits},
        "labels": {"nodes": [{"name": label} for label in labels]},
    }


def _search_page(nodes: list[dict[str, Any]], end_cursor: str | None = None) -> dict[str, Any]:
    return {
        "search": {
            "issueCount": len(nodes),
            "pageInfo": {"hasNextPage": end_cursor is not None, "endCursor": end_cursor},
            "nodes": nodes,
        }
    }


def _fetcher(client: StubClient, lookback_days: int = 30) -> MergedSetFetcher:
    return MergedSetFetcher(client, CONFIG, lookback_days=lookback_days, slice_days=30, clock=lambda: NOW)


def test_tripwire_skips_full_fetch_when_nothing_merged() -> None:
    """A zero count past the watermark should reuse the cache without any GraphQL traffic."""
    client = StubClient(total_count=0)
    watermark = datetime(2026, 2, 20, 8, 30, tzinfo=UTC)

    result = _fetcher(client).fetch(watermark, has_cached_blob=True)

    assert result.skipped
    assert result.latest_merged_at == watermark
    assert client.graphql_calls == []
    query = client.get_calls[0]["q"]
    assert "repo:acme/releases" in query
    assert "merged:>2026-02-20T08:30:00Z" in query
    assert client.get_calls[0]["per_page"] == 1


def test_tripwire_is_bypassed_without_cache_or_when_forced() -> None:
    """The count check should only run when there is both a watermark and a readable cache."""
    watermark = datetime(2026, 2, 20, tzinfo=UTC)

    no_cache = StubClient()
    _fetcher(no_cache).fetch(watermark, has_cached_blob=False)
    forced = StubClient()
    _fetcher(forced).fetch(watermark, has_cached_blob=True, force=True)

    assert no_cache.get_calls == []
    assert forced.get_calls == []
    assert len(no_cache.graphql_calls) == 1
    assert len(forced.graphql_calls) == 1


def test_full_fetch_follows_cursor_and_excludes_ghost_merges() -> None:
    """Cursor pages should be followed, and zero-commit or zero-file merges dropped."""
    client = StubClient(
        total_count=3,
        pages=[
            _search_page(
                [
                    _node(1, "2026-02-10T00:00:00Z", "2026-02-12T12:00:00Z", ["plugin"]),
                    _node(2, "2026-02-11T00:00:00Z", "2026-02-11T01:00:00Z", ["plugin"], commits=0),
                ],
                end_cursor="cursor-1",
            ),
            _search_page(
                [
                    _node(3, "2026-02-01T00:00:00Z", "2026-02-20T00:00:00Z", ["theme"]),
                    _node(4, "2026-02-15T00:00:00Z", "2026-02-16T00:00:00Z", ["theme"], changed_files=0),
                ]
            ),
        ],
    )

    result = _fetcher(client).fetch(datetime(2026, 2, 5, tzinfo=UTC), has_cached_blob=True)

    assert not result.skipped
    assert result.ghosts_excluded == 2
    assert [record.id for record in result.records] == [1, 3]
    assert [record.record_type for record in result.records] == [RecordType.PLUGIN, RecordType.THEME]
    assert result.records[0].days_to_merge == 3
    assert result.records[1].days_to_merge == 19
    assert result.latest_merged_at == datetime(2026, 2, 20, tzinfo=UTC)
    assert client.graphql_calls[1]["after"] == "cursor-1"


def test_watermark_advances_past_newest_ghost_merge() -> None:
    """A trailing ghost merge should still move the watermark so the next tripwire count is zero."""
    client = StubClient(
        total_count=1,
        pages=[
            _search_page(
                [
                    _node(1, "2026-02-10T00:00:00Z", "2026-02-12T12:00:00Z", ["plugin"]),
                    _node(2, "2026-02-25T00:00:00Z", "2026-02-26T08:00:00Z", ["theme"], commits=0),
                ]
            )
        ],
    )

    result = _fetcher(client).fetch(datetime(2026, 2, 5, tzinfo=UTC), has_cached_blob=True)

    assert [record.id for record in result.records] == [1]
    assert result.ghosts_excluded == 1
    assert result.latest_merged_at == datetime(2026, 2, 26, 8, 0, tzinfo=UTC)


def test_full_fetch_dedupes_across_slices_and_clamps_negative_durations() -> None:
    """Records repeated at slice boundaries appear once, and daysToMerge is never negative."""
    boundary_node = _node(7, "2026-01-30T12:00:00Z", "2026-01-30T11:00:00Z", ["plugin", "theme"])
    client = StubClient(pages=[_search_page([boundary_node]), _search_page([boundary_node])])

    result = _fetcher(client, lookback_days=60).fetch(None, has_cached_blob=False)

    assert len(client.graphql_calls) == 2
    assert [record.id for record in result.records] == [7]
    assert result.records[0].days_to_merge == 0
    assert result.records[0].record_type is RecordType.PLUGIN


def test_empty_history_keeps_previous_watermark() -> None:
    """With nothing returned, the previous watermark should carry forward."""
    watermark = datetime(2025, 1, 1, tzinfo=UTC)

    result = _fetcher(StubClient()).fetch(watermark, has_cached_blob=False)

    assert result.records == []
    assert result.latest_merged_at == watermark


def test_is_ghost_merge() -> None:
    """Merges without commits or without changed files are ghosts."""
    assert is_ghost_merge(0, 3)
    assert is_ghost_merge(2, 0)
    assert not is_ghost_merge(1, 1)
