"""Ingestion pipeline for the pull request review queue."""

from .run_log import RunLog, RunLogEntry
from .service import IngestionService, RunState, TriggerResult, create_ingestion_service, prune_datasets
from .summary_store import SummaryStore

__all__ = [
    "IngestionService",
    "RunLog",
    "RunLogEntry",
    "RunState",
    "SummaryStore",
    "TriggerResult",
    "create_ingestion_service",
    "prune_datasets",
]
