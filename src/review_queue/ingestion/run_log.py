"""Per-run structured log trail returned to on-demand trigger callers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

LOGGER = logging.getLogger(__name__)

RunLogLevel = Literal["debug", "info", "warning", "error"]

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class RunLogEntry:
    level: RunLogLevel
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"level": self.level, "message": self.message}


def describe_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


@dataclass
class RunLog:
    """Collects entries for one run and forwards each to `logging`."""

    entries: list[RunLogEntry] = field(default_factory=list)
    logger: logging.Logger = LOGGER

    def debug(self, message: str) -> None:
        self._record("debug", message)

    def info(self, message: str) -> None:
        self._record("info", message)

    def warning(self, message: str) -> None:
        self._record("warning", message)

    def error(self, message: str, error: BaseException | None = None) -> None:
        detail = f"{message} - {describe_error(error)}" if error is not None else message
        self._record("error", detail, exc_info=error)

    def _record(self, level: RunLogLevel, message: str, exc_info: BaseException | None = None) -> None:
        self.entries.append(RunLogEntry(level=level, message=message))
        self.logger.log(_LEVELS[level], message, exc_info=exc_info)
