"""Custom exceptions shared across the review queue pipeline."""


class ReviewQueueError(Exception):
    """Base exception for review queue errors."""


class ConfigurationError(ReviewQueueError):
    """Raised when credentials or identifiers required for a run are missing."""


class SchemaValidationError(ReviewQueueError, ValueError):
    """Raised when a stored pointer, blob, or summary fails structural validation."""


class DatasetNameError(ReviewQueueError, ValueError):
    """Raised when a dataset name or version contains characters outside the safe set."""


class IngestionError(ReviewQueueError):
    """Base exception for ingestion run failures."""


class PartialRunError(IngestionError):
    """Raised when one fetch strategy failed while the other succeeded."""
