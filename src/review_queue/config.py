"""Runtime configuration resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

from .errors import ConfigurationError
from .paths import get_default_database_path

DEFAULT_REPOSITORY = "obsidianmd/obsidian-releases"
DEFAULT_READY_LABEL = "Ready for review"
DEFAULT_PLUGIN_LABEL = "plugin"
DEFAULT_THEME_LABEL = "theme"
DEFAULT_RETAIN_VERSIONS = 5


@dataclass(frozen=True)
class QueueConfig:
    """Configuration for one monitored repository and its GitHub App identity.

    Attributes:
        repository: `owner/repo` slug of the monitored repository.
        ready_label: Label that marks a pull request as waiting for review.
        plugin_label: Label resolving to `RecordType.PLUGIN`.
        theme_label: Label resolving to `RecordType.THEME`.
        app_id: GitHub App identifier used as the JWT issuer.
        installation_id: Installation whose token scopes upstream calls.
        private_key_pem: PEM-encoded App private key.
        database_path: DuckDB file backing the key-value store.
        public_base_url: Optional base URL that dataset pointer links resolve against.
        retain_versions: Blob versions kept per dataset by background pruning.
    """

    repository: str = DEFAULT_REPOSITORY
    ready_label: str = DEFAULT_READY_LABEL
    plugin_label: str = DEFAULT_PLUGIN_LABEL
    theme_label: str = DEFAULT_THEME_LABEL
    app_id: str | None = None
    installation_id: str | None = None
    private_key_pem: str | None = None
    database_path: Path | None = None
    public_base_url: str | None = None
    retain_versions: int = DEFAULT_RETAIN_VERSIONS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> QueueConfig:
        """Build configuration from `REVIEW_QUEUE_*` and `GITHUB_APP_*` variables.

        Credentials are not validated here; the token provider raises
        `ConfigurationError` on first use so a run fails fast.
        """
        env = os.environ if environ is None else environ
        private_key_pem = env.get("GITHUB_APP_PRIVATE_KEY") or None
        private_key_path = env.get("GITHUB_APP_PRIVATE_KEY_PATH")
        if private_key_pem is None and private_key_path:
            key_path = Path(private_key_path).expanduser()
            try:
                private_key_pem = key_path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigurationError(f"Unable to read GitHub App private key at {key_path}.") from exc

        database_path = env.get("REVIEW_QUEUE_DATABASE_PATH")
        retain_versions = env.get("REVIEW_QUEUE_RETAIN_VERSIONS")
        try:
            resolved_retain = int(retain_versions) if retain_versions else DEFAULT_RETAIN_VERSIONS
        except ValueError as exc:
            raise ConfigurationError(f"Invalid REVIEW_QUEUE_RETAIN_VERSIONS value: {retain_versions!r}.") from exc

        return cls(
            repository=env.get("REVIEW_QUEUE_REPOSITORY") or DEFAULT_REPOSITORY,
            ready_label=env.get("REVIEW_QUEUE_READY_LABEL") or DEFAULT_READY_LABEL,
            plugin_label=env.get("REVIEW_QUEUE_PLUGIN_LABEL") or DEFAULT_PLUGIN_LABEL,
            theme_label=env.get("REVIEW_QUEUE_THEME_LABEL") or DEFAULT_THEME_LABEL,
            app_id=env.get("GITHUB_APP_ID") or None,
            installation_id=env.get("GITHUB_INSTALLATION_ID") or None,
            private_key_pem=private_key_pem,
            database_path=Path(database_path).expanduser() if database_path else None,
            public_base_url=env.get("REVIEW_QUEUE_PUBLIC_BASE_URL") or None,
            retain_versions=resolved_retain,
        )

    @property
    def owner(self) -> str:
        return self._split_repository()[0]

    @property
    def repo(self) -> str:
        return self._split_repository()[1]

    def resolved_database_path(self) -> Path:
        """Return the configured database path or the XDG default."""
        return self.database_path if self.database_path is not None else get_default_database_path()

    def with_overrides(self, **changes: object) -> QueueConfig:
        """Return a copy with non-None overrides applied (used by CLI options)."""
        return replace(self, **{key: value for key, value in changes.items() if value is not None})

    def _split_repository(self) -> tuple[str, str]:
        owner, _, repo = self.repository.partition("/")
        if not owner or not repo or "/" in repo:
            raise ConfigurationError(f"Repository must be formatted as owner/repo, got {self.repository!r}.")
        return owner, repo
