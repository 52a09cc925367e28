"""Batch resolution: one output row per input identifier, in input order.

Processing pipeline:
1. Clamp the batch to the server maximum and the concurrency hint to its range
2. Normalize every identifier; malformed ones become format-error rows
3. Resolve valid identifiers through a per-batch memo table so each distinct
   ISBN reaches the resolver once, however often it repeats
4. Run the per-row work on a fixed set of workers pulling from a shared cursor
5. Tally a summary over the rows
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from isbn_lookup.authors import AuthorPolicy
from isbn_lookup.config import ConfigurationError, Settings
from isbn_lookup.resolver import (
    NOTE_BAD_LENGTH,
    NOTE_DUPLICATE,
    NOTE_EMPTY,
    AsyncResolver,
    LookupOutcome,
    ResultRow,
    Status,
    make_row,
)
from isbn_lookup.utils import MAX_CONCURRENCY, MIN_CONCURRENCY, clamp_int, is_valid_isbn, normalize_isbn

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ------------- Scheduler -------------


async def run_pool(tasks: Sequence[Callable[[], Awaitable[T]]], limit: int) -> list[T]:
    """Run task factories with at most ``limit`` in flight, preserving order.

    ``min(limit, len(tasks))`` workers repeatedly claim the next unclaimed
    index and write the result into that slot, so completion order never
    affects output order.
    """
    results: list[Any] = [None] * len(tasks)
    if not tasks:
        return results
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while True:
            idx = cursor
            cursor += 1
            if idx >= len(tasks):
                return
            results[idx] = await tasks[idx]()

    workers = min(max(limit, 1), len(tasks))
    await asyncio.gather(*(worker() for _ in range(workers)))
    return results


# ------------- Memoization -------------


class BatchMemoizer:
    """Per-batch memo table: normalized ISBN -> shared resolution task.

    The lookup and the insert happen without a suspension point in between,
    so concurrently scheduled duplicates always await the task installed by
    the first one instead of starting a second resolution.
    """

    def __init__(self, resolve: Callable[[str], Awaitable[LookupOutcome]]) -> None:
        self._resolve = resolve
        self._tasks: dict[str, asyncio.Future[LookupOutcome]] = {}

    def task_for(self, isbn: str) -> asyncio.Future[LookupOutcome]:
        task = self._tasks.get(isbn)
        if task is None:
            task = asyncio.ensure_future(self._resolve(isbn))
            self._tasks[isbn] = task
        return task

    async def resolve(self, isbn: str) -> LookupOutcome:
        return await self.task_for(isbn)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, isbn: object) -> bool:
        return isbn in self._tasks


# ------------- Results -------------


@dataclass(frozen=True)
class BatchSummary:
    total: int = 0
    success: int = 0
    not_found: int = 0
    failed: int = 0
    invalid: int = 0

    @classmethod
    def from_rows(cls, rows: Sequence[ResultRow]) -> BatchSummary:
        counts = {status: 0 for status in Status}
        for row in rows:
            counts[row.status] += 1
        return cls(
            total=len(rows),
            success=counts[Status.SUCCESS],
            not_found=counts[Status.NOT_FOUND],
            failed=counts[Status.FAILED],
            invalid=counts[Status.FORMAT_ERROR],
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "success": self.success,
            "notFound": self.not_found,
            "failed": self.failed,
            "invalid": self.invalid,
        }


@dataclass
class BatchResult:
    rows: list[ResultRow]
    summary: BatchSummary
    upstream_lookups: int = 0

    @property
    def has_failures(self) -> bool:
        return self.summary.failed > 0

    def to_envelope(self, display_keys: bool = True) -> dict[str, Any]:
        """JSON envelope ``{ok, results, summary}`` for the UI."""
        results = [row.to_display_dict() if display_keys else row.to_dict() for row in self.rows]
        return {"ok": True, "results": results, "summary": self.summary.to_dict()}


# ------------- Batch Entry Point -------------


def _first_positions(identifiers: Sequence[Any]) -> dict[str, int]:
    """Map each valid normalized ISBN to the first input position holding it."""
    first: dict[str, int] = {}
    for idx, raw in enumerate(identifiers):
        norm = normalize_isbn(raw)
        if is_valid_isbn(norm):
            first.setdefault(norm, idx)
    return first


async def resolve_batch(
    identifiers: Sequence[Any],
    concurrency: Any = None,
    *,
    resolver: AsyncResolver,
    settings: Settings | None = None,
    policy: AuthorPolicy | None = None,
) -> BatchResult:
    """Resolve a batch of raw identifiers into ordered rows plus a summary.

    Args:
        identifiers: Raw identifier values (untrusted, any type)
        concurrency: Worker budget hint; clamped to [1, 15]
        resolver: Resolver used for each distinct valid ISBN
        settings: Settings providing the batch cap and default concurrency
        policy: Author normalization policy for row building

    Returns:
        BatchResult with exactly one row per (clamped) input position.

    Raises:
        ConfigurationError: No API credential is configured.
        TypeError: ``identifiers`` is a string rather than a sequence.
    """
    settings = settings or Settings(cert_key=resolver.cert_key)
    if not resolver.cert_key:
        raise ConfigurationError("Server missing NLD_CERT_KEY secret")
    if isinstance(identifiers, (str, bytes)):
        raise TypeError("identifiers must be a sequence of values, not a string")

    trimmed = list(identifiers)[: settings.max_batch_size]
    if len(identifiers) > len(trimmed):
        logger.info("Batch truncated from %d to %d identifiers", len(identifiers), len(trimmed))
    limit = clamp_int(concurrency, MIN_CONCURRENCY, MAX_CONCURRENCY, settings.default_concurrency)

    first_positions = _first_positions(trimmed)
    memo = BatchMemoizer(resolver.resolve)

    def row_task(idx: int, raw: Any) -> Callable[[], Awaitable[ResultRow]]:
        async def run() -> ResultRow:
            norm = normalize_isbn(raw)
            if not norm:
                text = "" if raw is None else str(raw)
                return make_row(LookupOutcome.format_error(text, NOTE_EMPTY), policy)
            if not is_valid_isbn(norm):
                return make_row(LookupOutcome.format_error(norm, NOTE_BAD_LENGTH), policy)

            row = make_row(await memo.resolve(norm), policy)
            if first_positions[norm] != idx:
                row = row.with_note(NOTE_DUPLICATE)
            return row

        return run

    rows = await run_pool([row_task(i, raw) for i, raw in enumerate(trimmed)], limit)
    summary = BatchSummary.from_rows(rows)
    logger.info(
        "Batch: total=%d, success=%d, not_found=%d, failed=%d, invalid=%d, distinct_lookups=%d, workers=%d",
        summary.total,
        summary.success,
        summary.not_found,
        summary.failed,
        summary.invalid,
        len(memo),
        limit,
    )
    return BatchResult(rows=rows, summary=summary, upstream_lookups=len(memo))


async def resolve_batch_with_settings(
    identifiers: Sequence[Any],
    concurrency: Any = None,
    *,
    settings: Settings,
    transport: Any = None,
) -> BatchResult:
    """Build resolver, cache and HTTP client from ``settings`` and run one batch.

    The credential is checked before anything else is built. New cache
    entries are written to disk once, after the batch.
    """
    cert_key = settings.require_cert_key()
    policy = settings.build_author_policy()
    cache = settings.build_cache()
    try:
        async with settings.build_http_client(transport=transport) as http:
            resolver = AsyncResolver(
                http=http,
                cert_key=cert_key,
                cache=cache,
                api_url=settings.api_url,
                cache_max_age=settings.cache_max_age,
            )
            return await resolve_batch(identifiers, concurrency, resolver=resolver, settings=settings, policy=policy)
    finally:
        cache.flush()


def resolve_batch_sync(
    identifiers: Sequence[Any],
    concurrency: Any = None,
    *,
    settings: Settings,
    transport: Any = None,
) -> BatchResult:
    """Synchronous wrapper around ``resolve_batch_with_settings``."""
    return asyncio.run(
        resolve_batch_with_settings(identifiers, concurrency, settings=settings, transport=transport)
    )
