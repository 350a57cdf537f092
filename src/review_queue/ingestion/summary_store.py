"""Read and write the published summary document."""

from __future__ import annotations

import logging

from ..datasets.store import KeyValueStore
from ..errors import SchemaValidationError
from ..schemas import Summary, dump_summary, load_summary

LOGGER = logging.getLogger(__name__)

QUEUE_SUMMARY_KEY = "queue-summary"


class SummaryStore:
    """Whole-object overwrite of the single mutable top-level record."""

    def __init__(self, store: KeyValueStore, key: str = QUEUE_SUMMARY_KEY) -> None:
        self._store = store
        self._key = key

    def read(self) -> Summary | None:
        """Return the stored summary, or None when missing or failing validation."""
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            return load_summary(raw)
        except SchemaValidationError as exc:
            LOGGER.error("Stored summary failed validation; discarding snapshot: %s", exc)
            return None

    def read_raw(self) -> str | None:
        return self._store.get(self._key)

    def write(self, summary: Summary) -> None:
        self._store.put(self._key, dump_summary(summary))
