"""Content-addressable dataset cache with pointer/version separation."""

from __future__ import annotations

import hashlib
import logging
from datetime import UTC, datetime
from typing import Any, Callable
from urllib.parse import urljoin, urlparse

import orjson

from ..errors import DatasetNameError, SchemaValidationError
from ..schemas import DATASET_NAME_PATTERN, VERSION_PATTERN, DatasetPointer, format_timestamp, parse_timestamp
from .store import KeyValueStore

LOGGER = logging.getLogger(__name__)


def assert_valid_dataset_name(dataset: str) -> str:
    if not DATASET_NAME_PATTERN.fullmatch(dataset):
        raise DatasetNameError(
            f'Invalid dataset name "{dataset}". Use alphanumeric with optional hyphen/underscore.'
        )
    return dataset


def assert_valid_version(version: str) -> str:
    if not VERSION_PATTERN.fullmatch(version):
        raise DatasetNameError(f'Invalid dataset version "{version}". Use alphanumeric plus - _ . characters.')
    return version


def pointer_key(dataset: str) -> str:
    return f"data/{dataset}:current"


def content_prefix(dataset: str) -> str:
    return f"data/{dataset}:content:"


def content_key(dataset: str, version: str) -> str:
    return f"{content_prefix(dataset)}{version}"


def dataset_version_path(dataset: str, version: str) -> str:
    return f"/data/{dataset}.{version}.json"


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class DatasetCache:
    """Stores immutable blobs per `(dataset, hash)` and one mutable pointer per dataset.

    Reads fail soft: a malformed pointer, a missing blob, or a blob whose
    hash does not match its pointer all read as "not found" so ingestion
    regenerates the dataset instead of crashing.
    """

    def __init__(
        self,
        store: KeyValueStore,
        base_url: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._base_url = base_url
        self._clock = clock or (lambda: datetime.now(UTC))

    def write(self, dataset: str, content: str, metadata: dict[str, Any] | None = None) -> DatasetPointer:
        """Store `content` under its hash and point `dataset` at it.

        Writing content identical to the current version is a no-op that
        returns the existing pointer.
        """
        safe_name = assert_valid_dataset_name(dataset)
        version = content_hash(content)
        blob_key = content_key(safe_name, version)
        blob_intact = self._store.get(blob_key) == content

        current = self.read_pointer(safe_name)
        if current is not None and current.version == version and blob_intact:
            LOGGER.debug("Dataset %s already at version %s; write skipped.", safe_name, version)
            return current

        updated_at = self._clock()
        if not blob_intact:
            self._store.put(
                blob_key,
                content,
                metadata={
                    "dataset": safe_name,
                    "version": version,
                    "updatedAt": format_timestamp(updated_at),
                    "hash": version,
                    **(metadata or {}),
                },
            )

        pointer = DatasetPointer(
            dataset=safe_name,
            version=version,
            url=self._resolve_url(safe_name, version),
            updated_at=updated_at,
            size=len(content.encode("utf-8")),
            hash=version,
        )
        self._store.put(pointer_key(safe_name), orjson.dumps(pointer.to_dict()).decode("utf-8"))
        LOGGER.info("Dataset %s now points at version %s (%d bytes).", safe_name, version, pointer.size)
        return pointer

    def read_pointer(self, dataset: str) -> DatasetPointer | None:
        safe_name = assert_valid_dataset_name(dataset)
        raw = self._store.get(pointer_key(safe_name))
        if raw is None:
            return None
        try:
            pointer = DatasetPointer.from_dict(orjson.loads(raw))
        except (orjson.JSONDecodeError, SchemaValidationError) as exc:
            LOGGER.warning('Pointer for "%s" is malformed; ignoring entry: %s', safe_name, exc)
            return None
        if pointer.dataset != safe_name or pointer.version != pointer.hash:
            LOGGER.warning('Pointer for "%s" is inconsistent; ignoring entry.', safe_name)
            return None
        return pointer

    def read_current(self, dataset: str) -> tuple[DatasetPointer, str] | None:
        """Resolve the pointer and load the blob it references."""
        pointer = self.read_pointer(dataset)
        if pointer is None:
            return None
        content = self._store.get(content_key(pointer.dataset, pointer.version))
        if content is None:
            LOGGER.warning('Content for "%s" (version %s) missing.', pointer.dataset, pointer.version)
            return None
        if content_hash(content) != pointer.hash:
            LOGGER.warning('Content for "%s" (version %s) does not match its hash.', pointer.dataset, pointer.version)
            return None
        return pointer, content

    def read(self, dataset: str) -> str | None:
        resolved = self.read_current(dataset)
        return resolved[1] if resolved is not None else None

    def read_version(self, dataset: str, version: str) -> str | None:
        """Load one immutable version directly, bypassing the pointer."""
        safe_name = assert_valid_dataset_name(dataset)
        safe_version = assert_valid_version(version)
        return self._store.get(content_key(safe_name, safe_version))

    def list_versions(self, dataset: str) -> list[tuple[str, datetime | None]]:
        """Return `(version, updated_at)` for every stored blob, newest first."""
        safe_name = assert_valid_dataset_name(dataset)
        prefix = content_prefix(safe_name)
        entries: list[tuple[str, datetime | None]] = []
        cursor: str | None = None
        while True:
            page = self._store.list(prefix, cursor=cursor)
            for listed in page.keys:
                entries.append((listed.name[len(prefix) :], _metadata_updated_at(listed.metadata)))
            if page.list_complete or page.cursor is None:
                break
            cursor = page.cursor

        dated = sorted((entry for entry in entries if entry[1] is not None), key=lambda entry: entry[1], reverse=True)
        undated = sorted((entry for entry in entries if entry[1] is None), key=lambda entry: entry[0], reverse=True)
        return dated + undated

    def prune(self, dataset: str, retain: int) -> int:
        """Delete old versions, keeping the current one plus the newest `retain - 1` others.

        Blobs written after the current pointer are also kept, since a
        concurrent `write` stores its blob before moving the pointer.
        Returns the number of deleted versions.
        """
        if retain < 1:
            raise ValueError("retain must be >= 1")
        safe_name = assert_valid_dataset_name(dataset)
        listed = self.list_versions(safe_name)
        versions = [version for version, _ in listed]
        if len(versions) <= retain:
            return 0

        pointer = self.read_pointer(safe_name)
        if pointer is not None and pointer.version in versions:
            others = [version for version in versions if version != pointer.version]
            in_flight = {
                version for version, updated_at in listed if updated_at is not None and updated_at > pointer.updated_at
            }
            keep = {pointer.version, *others[: retain - 1], *in_flight}
        else:
            keep = set(versions[:retain])

        to_delete = [version for version in versions if version not in keep]
        for version in to_delete:
            self._store.delete(content_key(safe_name, version))
        LOGGER.info("Pruned %d versions of dataset %s (kept %d).", len(to_delete), safe_name, len(keep))
        return len(to_delete)

    def _resolve_url(self, dataset: str, version: str) -> str:
        href = dataset_version_path(dataset, version)
        if not self._base_url:
            return href
        parsed = urlparse(self._base_url)
        if not parsed.scheme or not parsed.netloc:
            LOGGER.warning('Failed to resolve base URL "%s" for dataset "%s".', self._base_url, dataset)
            return href
        return urljoin(self._base_url, href)


def _metadata_updated_at(metadata: dict[str, Any] | None) -> datetime | None:
    if not metadata or not isinstance(metadata.get("updatedAt"), str):
        return None
    try:
        return parse_timestamp(metadata["updatedAt"])
    except SchemaValidationError:
        return None
