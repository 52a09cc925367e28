"""ISBN Lookup - batch book-metadata resolution from ISBN lists.

This package provides tools for:
- Normalizing and validating ISBN-10 / ISBN-13 identifiers
- Resolving title, author, publisher and year through the National Library
  seoji API with timeout, retry and a persistent 30-day cache
- Batch lookups with bounded concurrency and in-batch reuse of repeated ISBNs
- Cleaning free-text author credits into person names

Example usage:
    from isbn_lookup import Settings, resolve_batch_sync

    settings = Settings.from_env()
    result = resolve_batch_sync(["979-11-6224-000-1", "8937460440"], settings=settings)
    for row in result.rows:
        print(row.isbn, row.title_author, row.status.value)
    print(result.summary.to_dict())
"""

from isbn_lookup._version import __version__

# Request handling
from isbn_lookup.api import ApiResponse, RequestError, cors_headers, handle_request, parse_batch_request

# Author handling
from isbn_lookup.authors import AuthorNames, AuthorPolicy, looks_like_person_name, normalize_authors, split_author_credit

# Batch pipeline
from isbn_lookup.batch import (
    BatchMemoizer,
    BatchResult,
    BatchSummary,
    resolve_batch,
    resolve_batch_sync,
    resolve_batch_with_settings,
    run_pool,
)

# Configuration
from isbn_lookup.config import ConfigurationError, Settings, load_config_file

# Resolution
from isbn_lookup.resolver import AsyncResolver, LookupOutcome, ResultRow, Status, make_row, parse_search_response

# Shared utilities
from isbn_lookup.utils import (
    AsyncHttpClient,
    LookupCache,
    UpstreamError,
    UpstreamStatusError,
    cache_key,
    clamp_int,
    extract_year,
    is_valid_isbn,
    normalize_isbn,
)

__all__ = [
    # Version
    "__version__",
    # Core classes
    "AsyncResolver",
    "BatchMemoizer",
    "BatchResult",
    "BatchSummary",
    "LookupOutcome",
    "ResultRow",
    "Status",
    # Batch functions
    "resolve_batch",
    "resolve_batch_sync",
    "resolve_batch_with_settings",
    "run_pool",
    "make_row",
    "parse_search_response",
    # Request handling
    "ApiResponse",
    "RequestError",
    "cors_headers",
    "handle_request",
    "parse_batch_request",
    # Configuration
    "ConfigurationError",
    "Settings",
    "load_config_file",
    # Author handling
    "AuthorNames",
    "AuthorPolicy",
    "looks_like_person_name",
    "normalize_authors",
    "split_author_credit",
    # Utility classes
    "AsyncHttpClient",
    "LookupCache",
    "UpstreamError",
    "UpstreamStatusError",
    # Identifier utilities
    "cache_key",
    "clamp_int",
    "extract_year",
    "is_valid_isbn",
    "normalize_isbn",
]
