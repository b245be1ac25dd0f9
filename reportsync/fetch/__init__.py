"""
fetch/ - Read-miss fetch layer.
"""

from .retry import RetryPolicy, is_transient, status_of
from .query_client import FetchContext, Fetcher, Parser, QueryClient

__all__ = [
    "RetryPolicy",
    "is_transient",
    "status_of",
    "FetchContext",
    "Fetcher",
    "Parser",
    "QueryClient",
]
