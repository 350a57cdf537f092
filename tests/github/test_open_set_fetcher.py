"""Unit tests for the open-set fetch strategy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from review_queue.config import QueueConfig
from review_queue.github.client import GitHubClient
from review_queue.github.open_set import OpenSetFetcher
from review_queue.github.retry import RetryExecutor
from review_queue.schemas import RecordType

CONFIG = QueueConfig(repository="acme/releases")


@dataclass
class FakeResponse:
    status_code: int
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    text: str = ""

    def json(self) -> Any:
        return self.payload


class ScriptedSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.responses.pop(0)


class StaticTokenProvider:
    def get_token(self) -> str:
        return "token"

    def invalidate(self) -> None:
        return None


def _fetcher(session: ScriptedSession, page_size: int = 100, max_pages: int = 50) -> OpenSetFetcher:
    client = GitHubClient(StaticTokenProvider(), session=session, executor=RetryExecutor(sleep=lambda _: None))
    return OpenSetFetcher(client, CONFIG, page_size=page_size, max_pages=max_pages)


def _item(number: int, created_at: str, labels: list[str], pull_request: bool = True) -> dict[str, Any]:
    item: dict[str, Any] = {
        "number": number,
        "title": f"Add entry {number}",
        "html_url": f"https://github.com/acme/releases/pull/{number}",
        "created_at": created_at,
        "labels": [{"name": label} for label in labels],
    }
    if pull_request:
        item["pull_request"] = {"url": f"https://api.github.com/repos/acme/releases/pulls/{number}"}
    return item


def test_fetch_paginates_until_short_page_and_sorts_ascending() -> None:
    """Pages should be walked until one is short; records come back oldest first."""
    session = ScriptedSession(
        [
            FakeResponse(
                200,
                payload=[
                    _item(30, "2026-03-03T00:00:00Z", ["Ready for review", "plugin"]),
                    _item(20, "2026-03-02T00:00:00Z", ["Ready for review", "theme"]),
                ],
                headers={"ETag": 'W/"page-1"'},
            ),
            FakeResponse(200, payload=[_item(10, "2026-03-01T00:00:00Z", ["plugin", "Ready for review"])]),
        ]
    )

    result = _fetcher(session, page_size=2).fetch()

    assert not result.not_modified
    assert result.etag == 'W/"page-1"'
    assert result.pages_fetched == 2
    assert [record.id for record in result.records] == [10, 20, 30]
    assert [record.record_type for record in result.records] == [RecordType.PLUGIN, RecordType.THEME, RecordType.PLUGIN]
    assert result.records[0].created_at == datetime(2026, 3, 1, tzinfo=UTC)
    assert [call["params"]["page"] for call in session.calls] == [1, 2]
    assert session.calls[0]["params"]["labels"] == "Ready for review"
    assert session.calls[0]["url"] == "https://api.github.com/repos/acme/releases/issues"


def test_fetch_drops_plain_issues_and_untyped_pull_requests() -> None:
    """Only pull requests carrying a recognised type label should be kept."""
    session = ScriptedSession(
        [
            FakeResponse(
                200,
                payload=[
                    _item(1, "2026-03-01T00:00:00Z", ["Ready for review", "plugin"]),
                    _item(2, "2026-03-01T01:00:00Z", ["Ready for review", "plugin"], pull_request=False),
                    _item(3, "2026-03-01T02:00:00Z", ["Ready for review"]),
                ],
            )
        ]
    )

    result = _fetcher(session).fetch()

    assert [record.id for record in result.records] == [1]
    assert result.items_skipped == 2
    assert all(record.record_type is not RecordType.UNKNOWN for record in result.records)


def test_fetch_dedupes_items_that_shift_across_pages() -> None:
    """An item seen on two pages should appear once."""
    session = ScriptedSession(
        [
            FakeResponse(
                200,
                payload=[
                    _item(5, "2026-03-05T00:00:00Z", ["theme"]),
                    _item(4, "2026-03-04T00:00:00Z", ["theme"]),
                ],
            ),
            FakeResponse(200, payload=[_item(4, "2026-03-04T00:00:00Z", ["theme"])]),
        ]
    )

    result = _fetcher(session, page_size=2).fetch()

    assert [record.id for record in result.records] == [4, 5]


def test_fetch_short_circuits_on_not_modified() -> None:
    """A 304 on page 1 should end the fetch with the validator echoed back."""
    session = ScriptedSession([FakeResponse(304)])

    result = _fetcher(session).fetch(etag='W/"page-1"')

    assert result.not_modified
    assert result.records == []
    assert result.etag == 'W/"page-1"'
    assert session.calls[0]["headers"]["If-None-Match"] == 'W/"page-1"'
    assert len(session.calls) == 1


def test_fetch_stops_at_page_safety_cap() -> None:
    """Pagination should end at the configured page cap even if pages stay full."""
    session = ScriptedSession(
        [
            FakeResponse(200, payload=[_item(2, "2026-03-02T00:00:00Z", ["plugin"])]),
            FakeResponse(200, payload=[_item(1, "2026-03-01T00:00:00Z", ["plugin"])]),
        ]
    )

    result = _fetcher(session, page_size=1, max_pages=2).fetch()

    assert len(session.calls) == 2
    assert [record.id for record in result.records] == [1, 2]
