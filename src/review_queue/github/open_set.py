"""Open-set fetcher: paginated, conditionally cached listing of queued pull requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..config import QueueConfig
from ..errors import SchemaValidationError
from ..schemas import PullRequestRecord, RecordType, parse_timestamp
from .client import GitHubClient
from .errors import UpstreamError
from .labels import label_names, resolve_record_type

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 50


@dataclass(frozen=True)
class OpenSetResult:
    """Outcome of one open-set fetch.

    When `not_modified` is True the upstream confirmed the previous listing is
    still current; `records` is empty and the caller reuses its cached blob.
    """

    not_modified: bool
    records: list[PullRequestRecord]
    etag: str | None
    pages_fetched: int = 0
    items_skipped: int = 0


class OpenSetFetcher:
    """Walks the ready-for-review issue listing until a short page ends it."""

    def __init__(
        self,
        client: GitHubClient,
        config: QueueConfig,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        self._client = client
        self._config = config
        self._page_size = page_size
        self._max_pages = max_pages

    def fetch(self, etag: str | None = None) -> OpenSetResult:
        """Fetch the open set, sending `etag` as a validator on page 1."""
        path = f"/repos/{self._config.owner}/{self._config.repo}/issues"
        records_by_id: dict[int, PullRequestRecord] = {}
        items_skipped = 0
        new_etag: str | None = None
        page = 1

        while True:
            params = {
                "state": "open",
                "labels": self._config.ready_label,
                "sort": "created",
                "direction": "desc",
                "per_page": self._page_size,
                "page": page,
            }
            headers = {"If-None-Match": etag} if page == 1 and etag else None
            response = self._client.get(path, params=params, headers=headers, allow_not_modified=page == 1)

            if response.not_modified:
                LOGGER.info("Open set not modified since ETag %s.", etag)
                return OpenSetResult(not_modified=True, records=[], etag=etag, pages_fetched=1)

            if page == 1:
                new_etag = response.etag

            items = response.payload
            if not isinstance(items, list):
                raise UpstreamError(f"Expected a JSON array from {path}, got {type(items).__name__}.")

            for item in items:
                record = self._build_record(item)
                if record is None:
                    items_skipped += 1
                    continue
                records_by_id.setdefault(record.id, record)

            if len(items) < self._page_size:
                break
            if page >= self._max_pages:
                LOGGER.warning("Open set pagination stopped at the %d-page safety cap.", self._max_pages)
                break
            page += 1

        records = sorted(records_by_id.values(), key=lambda record: (record.created_at, record.id))
        LOGGER.info(
            "Fetched %d open records across %d pages (%d items skipped).",
            len(records),
            page,
            items_skipped,
        )
        return OpenSetResult(
            not_modified=False,
            records=records,
            etag=new_etag,
            pages_fetched=page,
            items_skipped=items_skipped,
        )

    def _build_record(self, item: Any) -> PullRequestRecord | None:
        """Map one listing item, or return None for plain issues and untyped items."""
        if not isinstance(item, dict) or "pull_request" not in item:
            return None
        record_type = resolve_record_type(label_names(item.get("labels")), self._config)
        if record_type is RecordType.UNKNOWN:
            return None
        try:
            return PullRequestRecord(
                id=_require_int(item, "number"),
                title=str(item.get("title") or ""),
                url=_require_str(item, "html_url"),
                record_type=record_type,
                created_at=parse_timestamp(item.get("created_at")),
            )
        except SchemaValidationError as exc:
            LOGGER.warning("Skipping malformed open pull request %s: %s", item.get("number"), exc)
            return None


def _require_int(item: dict[str, Any], key: str) -> int:
    value = item.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SchemaValidationError(f"Field '{key}' must be an integer.")
    return value


def _require_str(item: dict[str, Any], key: str) -> str:
    value = item.get(key)
    if not isinstance(value, str):
        raise SchemaValidationError(f"Field '{key}' must be a string.")
    return value
