"""Shared utilities for ISBN batch lookups.

This module provides common functionality used by the resolver, the batch
pipeline and the command line tool:

Includes identifier normalization, publication-year extraction, the
persistent lookup cache with per-entry max-age, and the async HTTP client
with timeout, retry and backoff handling.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import os
import re
import tempfile
import threading
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# ------------- Constants & Regex -------------

# Korean National Library ISBN/seoji search API
NLD_SEOJI_API = "https://www.nl.go.kr/seoji/SearchApi.do"

MAX_BATCH_SIZE = 500
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 15
DEFAULT_CONCURRENCY = 8

CACHE_KEY_PREFIX = "isbn:"
CACHE_MAX_AGE_SECONDS = 60 * 60 * 24 * 30

VALID_ISBN_LENGTHS = (10, 13)

_NON_DIGIT_RE = re.compile(r"[^0-9]")
_DATE8_RE = re.compile(r"^\d{8}$")
_YEAR_RE = re.compile(r"^\d{4}$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ------------- Identifier Handling -------------


def normalize_isbn(value: Any) -> str:
    """Strip every non-digit character from a raw identifier.

    Hyphens, spaces and any other decoration are removed; length is not
    checked here (see ``is_valid_isbn``). Only strings and integers carry an
    identifier; ``None``, containers and other objects normalize to ``""``.
    Integral floats (``9788937460449.0``) are read as integers.
    """
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return ""
    s = str(value).strip()
    if not s:
        return ""
    return _NON_DIGIT_RE.sub("", s)


def is_valid_isbn(norm: str) -> bool:
    """Return True for a digits-only string of ISBN-10 or ISBN-13 length."""
    return bool(norm) and norm.isdigit() and len(norm) in VALID_ISBN_LENGTHS


def cache_key(norm: str) -> str:
    """Persistent cache key for a normalized identifier."""
    return f"{CACHE_KEY_PREFIX}{norm}"


def clamp_int(value: Any, lo: int, hi: int, default: int) -> int:
    """Coerce ``value`` to an int inside ``[lo, hi]``.

    Non-numeric, infinite and missing values fall back to ``default``.
    Fractions are floored.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(n):
        return default
    return max(lo, min(hi, math.floor(n)))


def truncate(text: str | None, limit: int) -> str:
    """Null-safe prefix of at most ``limit`` characters."""
    return (text or "")[:limit]


# ------------- Date Handling -------------


def extract_year(value: Any) -> str:
    """Extract a publication year from a date-like field.

    Accepts ``YYYYMMDD``, a bare ``YYYY`` or ``YYYY-MM-DD``; anything else
    yields ``""``.
    """
    s = str(value if value is not None else "").strip()
    if _DATE8_RE.match(s):
        return s[:4]
    if _YEAR_RE.match(s):
        return s
    if _ISO_DATE_RE.match(s):
        return s[:4]
    return ""


def first_year(doc: dict[str, Any], fields: tuple[str, ...]) -> str:
    """Return the first year extractable from ``fields`` in priority order."""
    for name in fields:
        year = extract_year(doc.get(name))
        if year:
            return year
    return ""


# ------------- Persistent Cache -------------


class LookupCache:
    """Thread-safe key/value cache for lookup outcomes with per-entry max-age.

    Entries are stored as ``{"value": ..., "timestamp": ..., "max_age": ...}``
    and treated as absent once older than their max-age, or when malformed.
    With a ``path`` the data is persisted to a JSON file by ``flush`` (atomic
    temp file + ``os.replace``), once per batch rather than once per entry;
    without one the cache lives in process memory only.
    """

    def __init__(self, path: str | None = None, default_max_age: int = CACHE_MAX_AGE_SECONDS) -> None:
        """Initialize the lookup cache.

        Args:
            path: Path to the cache file. If None, entries are kept in memory.
            default_max_age: Max-age in seconds used when ``set`` gets none.
        """
        self.path = path
        self.default_max_age = default_max_age
        self.lock = threading.Lock()
        self.data: dict[str, Any] = {}
        self.dirty = False
        self._load()

    def _load(self) -> None:
        """Load cache from disk."""
        if self.path and os.path.exists(self.path):
            try:
                with open(self.path, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring unreadable cache file %s: %s", self.path, e)
                return
            if not isinstance(data, dict):
                logger.warning("Ignoring cache file %s: expected a JSON object", self.path)
                return
            self.data = data

    def _save(self) -> None:
        """Save cache to disk atomically."""
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp = tempfile.NamedTemporaryFile(
            "w", delete=False, encoding="utf-8", suffix=".json", prefix=".tmp_isbn_cache_", dir=directory
        )
        try:
            json.dump(self.data, tmp, ensure_ascii=False, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
        finally:
            tmp.close()
        os.replace(tmp.name, self.path)

    def _live_value(self, entry: Any, now: float) -> dict[str, Any] | None:
        """Value of a well-formed, unexpired entry; None otherwise."""
        if not isinstance(entry, dict) or not isinstance(entry.get("value"), dict):
            return None
        timestamp = entry.get("timestamp")
        max_age = entry.get("max_age", self.default_max_age)
        if not isinstance(timestamp, (int, float)) or not isinstance(max_age, (int, float)):
            return None
        if now - timestamp > max_age:
            return None
        return entry["value"]

    def get(self, key: str) -> dict[str, Any] | None:
        """Return the stored value for ``key``, or None if absent, expired or malformed."""
        with self.lock:
            value = self._live_value(self.data.get(key), time.time())
            return dict(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any], max_age: int | None = None) -> None:
        """Store ``value`` under ``key`` with an explicit max-age in seconds.

        The entry is visible immediately; it reaches disk on the next ``flush``.
        """
        with self.lock:
            self.data[key] = {
                "value": dict(value),
                "timestamp": time.time(),
                "max_age": self.default_max_age if max_age is None else max_age,
            }
            self.dirty = True

    def _purge_locked(self, now: float) -> int:
        dead = [k for k, entry in self.data.items() if self._live_value(entry, now) is None]
        for k in dead:
            del self.data[k]
        if dead:
            self.dirty = True
        return len(dead)

    def purge_expired(self) -> int:
        """Drop expired and malformed entries and return how many were removed."""
        with self.lock:
            return self._purge_locked(time.time())

    def flush(self) -> bool:
        """Purge dead entries and write pending changes to disk.

        Returns:
            True if the file was rewritten.
        """
        with self.lock:
            self._purge_locked(time.time())
            if not self.dirty or not self.path:
                return False
            try:
                self._save()
            except OSError as e:
                logger.warning("Failed to write cache file %s: %s", self.path, e)
                return False
            self.dirty = False
            return True

    def __len__(self) -> int:
        with self.lock:
            return len(self.data)


# ------------- Errors -------------


class UpstreamError(RuntimeError):
    """Upstream API could not be reached after all retry attempts."""


class UpstreamStatusError(UpstreamError):
    """Upstream API answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


# ------------- Async HTTP Client -------------


class AsyncHttpClient:
    """Async HTTP client with per-attempt timeout and retry logic.

    This client provides async GET requests with:
    - A hard per-attempt timeout (the in-flight request is cancelled)
    - Bounded retries with exponential backoff for transient failures
    - Retry on connection errors, timeouts and retryable statuses
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        timeout: float = 3.5,
        retries: int = 2,
        backoff: float = 0.2,
        user_agent: str = "isbn-lookup/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the async HTTP client.

        Args:
            timeout: Per-attempt timeout in seconds
            retries: Additional attempts after the first one
            backoff: Delay before the first retry; doubles on each retry
            user_agent: User-Agent header value
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        """
        self.timeout = timeout
        self.retries = max(retries, 0)
        self.backoff = backoff
        self.user_agent = user_agent
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the underlying ``httpx.AsyncClient``."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        """GET ``url`` with timeout and retry.

        Returns:
            The first 2xx response.

        Raises:
            UpstreamStatusError: Non-success status that is not retryable, or
                a retryable one still failing after the last attempt.
            UpstreamError: Timeouts or transport errors on every attempt.
        """
        attempts = self.retries + 1
        delay = self.backoff
        last_error: Exception = UpstreamError(f"no attempt made for {url}")

        for attempt in range(attempts):
            try:
                resp = await asyncio.wait_for(
                    self.client.get(url, params=params, headers={"Accept": accept}),
                    timeout=self.timeout,
                )
                if resp.is_success:
                    return resp
                error = UpstreamStatusError(resp.status_code, resp.text)
                if resp.status_code not in self.RETRYABLE_STATUS:
                    raise error
                last_error = error
            except asyncio.TimeoutError:
                last_error = UpstreamError(f"timed out after {self.timeout:g}s")
            except httpx.HTTPError as e:
                last_error = UpstreamError(str(e) or type(e).__name__)

            if attempt < attempts - 1:
                logger.debug("Attempt %d/%d for %s failed: %s", attempt + 1, attempts, url, last_error)
                await asyncio.sleep(delay)
                delay *= 2

        raise last_error

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncHttpClient:
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()
