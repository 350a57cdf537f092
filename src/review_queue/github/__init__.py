"""GitHub API boundary: authentication, retries, and record fetch strategies."""

from .auth import TokenProvider
from .client import GitHubClient
from .merged_set import MergedSetFetcher, MergedSetResult
from .open_set import OpenSetFetcher, OpenSetResult
from .retry import RetryExecutor, RetryPolicy

__all__ = [
    "GitHubClient",
    "MergedSetFetcher",
    "MergedSetResult",
    "OpenSetFetcher",
    "OpenSetResult",
    "RetryExecutor",
    "RetryPolicy",
    "TokenProvider",
]
