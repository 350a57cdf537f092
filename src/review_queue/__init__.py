"""Review queue ingestion, dataset caching, and statistics."""

__version__ = "0.1.0"
