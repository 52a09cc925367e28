"""Single-ISBN resolution against the National Library seoji API.

``AsyncResolver.resolve`` checks the persistent cache, falls back to one
upstream search (page size 1, JSON), classifies the answer into a
``LookupOutcome`` and caches stable answers (success / not-found) for 30
days. It never raises: transport failures, bad statuses and unparseable
bodies all come back as ``failed`` outcomes that are not cached, so the next
request retries them.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any

from isbn_lookup.authors import AuthorPolicy, normalize_authors
from isbn_lookup.utils import (
    CACHE_MAX_AGE_SECONDS,
    NLD_SEOJI_API,
    AsyncHttpClient,
    LookupCache,
    UpstreamStatusError,
    cache_key,
    first_year,
    truncate,
)

NOTE_EMPTY = "empty value or not an ISBN"
NOTE_BAD_LENGTH = "ISBN must be 10 or 13 digits"
NOTE_DUPLICATE = "duplicate: reused earlier lookup result"
NOTE_SEPARATOR = " | "

YEAR_FIELDS = ("PUBLISH_PREDATE", "REAL_PUBLISH_DATE", "publish_predate", "real_publish_date")


class Status(str, Enum):
    """Terminal classification of one lookup."""

    SUCCESS = "success"
    NOT_FOUND = "not-found"
    FAILED = "failed"
    FORMAT_ERROR = "format-error"

    @property
    def label(self) -> str:
        """Korean label used in the spreadsheet UI."""
        return STATUS_LABELS[self]

    @property
    def cacheable(self) -> bool:
        return self in (Status.SUCCESS, Status.NOT_FOUND)


STATUS_LABELS = {
    Status.SUCCESS: "성공",
    Status.NOT_FOUND: "미검색",
    Status.FAILED: "실패",
    Status.FORMAT_ERROR: "형식오류",
}

# Column labels of the spreadsheet UI, in output order
DISPLAY_KEYS = {
    "isbn": "isbn",
    "title": "도서명",
    "author": "저자명",
    "title_author": "도서명(저자명)",
    "publisher": "출판사",
    "year": "발행년도",
    "status": "조회결과",
    "note": "비고",
}


def append_note(note: str, extra: str) -> str:
    """Append ``extra`` to an existing note without replacing it."""
    return f"{note}{NOTE_SEPARATOR}{extra}" if note else extra


@dataclass(frozen=True)
class LookupOutcome:
    """Terminal result of resolving one normalized ISBN."""

    isbn: str
    title: str = ""
    author: str = ""
    publisher: str = ""
    year: str = ""
    status: Status = Status.NOT_FOUND
    note: str = ""

    @classmethod
    def format_error(cls, isbn: str, note: str) -> LookupOutcome:
        return cls(isbn=isbn, status=Status.FORMAT_ERROR, note=note)

    @classmethod
    def failed(cls, isbn: str, note: str) -> LookupOutcome:
        return cls(isbn=isbn, status=Status.FAILED, note=note)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LookupOutcome:
        """Rebuild an outcome from its cached form.

        Raises:
            ValueError: Unknown status value.
        """
        return cls(
            isbn=str(data.get("isbn") or ""),
            title=str(data.get("title") or ""),
            author=str(data.get("author") or ""),
            publisher=str(data.get("publisher") or ""),
            year=str(data.get("year") or ""),
            status=Status(data.get("status") or Status.NOT_FOUND.value),
            note=str(data.get("note") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class ResultRow:
    """One output row; exactly one per input position."""

    isbn: str
    title: str
    author: str
    title_author: str
    publisher: str
    year: str
    status: Status
    note: str

    def with_note(self, extra: str) -> ResultRow:
        return replace(self, note=append_note(self.note, extra))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    def to_display_dict(self) -> dict[str, Any]:
        """Row keyed by the UI's Korean column labels with a Korean status."""
        data = self.to_dict()
        data["status"] = self.status.label
        return {label: data[key] for key, label in DISPLAY_KEYS.items()}


def make_row(outcome: LookupOutcome, policy: AuthorPolicy | None = None) -> ResultRow:
    """Assemble the public row from an outcome.

    The composite label is ``"{title}({short author})"``, just the title when
    no author name can be extracted, and empty without a title.
    """
    authors = normalize_authors(outcome.author, policy)
    if outcome.title and authors.short:
        title_author = f"{outcome.title}({authors.short})"
    else:
        title_author = outcome.title
    return ResultRow(
        isbn=outcome.isbn,
        title=outcome.title,
        author=authors.name,
        title_author=title_author,
        publisher=outcome.publisher,
        year=outcome.year,
        status=outcome.status or Status.NOT_FOUND,
        note=outcome.note,
    )


def parse_search_response(isbn: str, data: Any) -> LookupOutcome:
    """Classify a decoded search response.

    Zero documents (or an explicit zero total) means not-found; otherwise the
    first document is taken as the answer.
    """
    if not isinstance(data, dict):
        return LookupOutcome.failed(isbn, f"exception: unexpected response structure ({type(data).__name__})")

    docs = data.get("docs")
    docs = docs if isinstance(docs, list) else []
    total = str(data.get("TOTAL_COUNT", data.get("totalCount", "")) or "").strip()
    if not docs or total == "0":
        return LookupOutcome(isbn=isbn, status=Status.NOT_FOUND)

    doc = docs[0] if isinstance(docs[0], dict) else {}
    title = str(doc.get("TITLE") or doc.get("title") or "").strip()
    author = str(doc.get("AUTHOR") or doc.get("author") or "").strip()
    publisher = str(doc.get("PUBLISHER") or doc.get("publisher") or "").strip()
    year = first_year(doc, YEAR_FIELDS)
    found = bool(title or author or publisher)
    return LookupOutcome(
        isbn=isbn,
        title=title,
        author=author,
        publisher=publisher,
        year=year,
        status=Status.SUCCESS if found else Status.NOT_FOUND,
    )


class AsyncResolver:
    """Resolves one normalized ISBN: persistent cache first, then upstream."""

    def __init__(
        self,
        http: AsyncHttpClient,
        cert_key: str,
        cache: LookupCache | None = None,
        logger: logging.Logger | None = None,
        api_url: str = NLD_SEOJI_API,
        cache_max_age: int = CACHE_MAX_AGE_SECONDS,
    ) -> None:
        """Initialize the resolver.

        Args:
            http: AsyncHttpClient that owns timeout and retry policy
            cert_key: API credential sent as ``cert_key``
            cache: Optional persistent cache; None disables caching
            logger: Logger for debug messages
            api_url: Search endpoint
            cache_max_age: Max-age in seconds for cached outcomes
        """
        self.http = http
        self.cert_key = cert_key
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)
        self.api_url = api_url
        self.cache_max_age = cache_max_age

    def _cached(self, isbn: str) -> LookupOutcome | None:
        if self.cache is None:
            return None
        try:
            data = self.cache.get(cache_key(isbn))
            if data is None:
                return None
            return replace(LookupOutcome.from_dict(data), isbn=isbn)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.warning("Discarding malformed cache entry for %s: %s", isbn, e)
            return None

    def _store(self, outcome: LookupOutcome) -> None:
        if self.cache is None or not outcome.status.cacheable:
            return
        self.cache.set(cache_key(outcome.isbn), outcome.to_dict(), max_age=self.cache_max_age)

    async def resolve(self, isbn: str) -> LookupOutcome:
        """Resolve a normalized, already validated ISBN. Never raises."""
        cached = self._cached(isbn)
        if cached is not None:
            self.logger.debug("Cache hit for %s (%s)", isbn, cached.status.value)
            return cached

        try:
            outcome = await self.search(isbn)
        except Exception as e:
            self.logger.debug("Lookup failed for %s: %s", isbn, e)
            return LookupOutcome.failed(isbn, f"exception: {truncate(str(e) or type(e).__name__, 200)}")

        self._store(outcome)
        return outcome

    async def search(self, isbn: str) -> LookupOutcome:
        """Query upstream for ``isbn`` and classify the response.

        Transport errors that survive all retries are raised as
        ``UpstreamError``; status errors are classified here.
        """
        params = {
            "cert_key": self.cert_key,
            "result_style": "json",
            "page_no": "1",
            "page_size": "1",
            "isbn": isbn,
        }
        try:
            resp = await self.http.get(self.api_url, params=params)
        except UpstreamStatusError as e:
            body = truncate(e.body, 120)
            note = f"API error: HTTP {e.status_code}" + (f" ({body})" if body else "")
            self.logger.debug("Upstream status %d for %s", e.status_code, isbn)
            return LookupOutcome.failed(isbn, note)

        try:
            data = resp.json()
        except ValueError as e:
            return LookupOutcome.failed(isbn, f"exception: invalid JSON response: {truncate(str(e), 180)}")
        return parse_search_response(isbn, data)
