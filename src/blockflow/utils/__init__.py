"""Shared utilities: caching, retry/timeout, logging, path access."""

from .cache import Cache, CacheEntry, CacheStats, Caches, generate_cache_key, memoize
from .paths import get_path, has_path
from .retry import RetryPolicy, retry_async, with_timeout
from .rich_logging import (
    BlockflowLogFormatter,
    ExecutionLogger,
    get_execution_logger,
    setup_logging,
)

__all__ = [
    # Cache
    "Cache",
    "CacheEntry",
    "CacheStats",
    "Caches",
    "generate_cache_key",
    "memoize",
    # Paths
    "get_path",
    "has_path",
    # Retry
    "RetryPolicy",
    "retry_async",
    "with_timeout",
    # Logging
    "BlockflowLogFormatter",
    "ExecutionLogger",
    "get_execution_logger",
    "setup_logging",
]
