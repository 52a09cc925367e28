"""Shared fixtures for isbn_lookup tests."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import pytest

from isbn_lookup import AsyncHttpClient, AsyncResolver, LookupCache, Settings

ISBN13 = "9788937460449"
ISBN10 = "8937460440"


@pytest.fixture
def make_doc():
    """Factory fixture for seoji API result documents."""

    def _make_doc(**kwargs) -> dict[str, Any]:
        doc = {
            "TITLE": "데미안",
            "AUTHOR": "헤르만 헤세 지음 ; 전영애 옮김",
            "PUBLISHER": "민음사",
            "PUBLISH_PREDATE": "20000101",
            "EA_ISBN": ISBN13,
        }
        doc.update(kwargs)
        return doc

    return _make_doc


def search_payload(docs: list[dict[str, Any]], total: int | None = None) -> dict[str, Any]:
    """Seoji API JSON body wrapping ``docs``."""
    return {
        "PAGE_NO": "1",
        "TOTAL_COUNT": str(len(docs) if total is None else total),
        "docs": docs,
    }


class FakeUpstream:
    """Scripted seoji API behind an ``httpx.MockTransport``.

    ``responses`` maps an ISBN to either a JSON payload (dict), an
    ``httpx.Response``, an exception to raise, or a list of those consumed one
    per call. Unknown ISBNs answer with zero documents.
    """

    def __init__(self, responses: dict[str, Any] | None = None, delay: float = 0.0) -> None:
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls: list[str] = []
        self.requests: list[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        isbn = request.url.params.get("isbn", "")
        self.calls.append(isbn)
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            answer = self.responses.get(isbn, search_payload([]))
            if isinstance(answer, list):
                answer = answer.pop(0) if len(answer) > 1 else answer[0]
            if isinstance(answer, Exception):
                raise answer
            if isinstance(answer, httpx.Response):
                return httpx.Response(answer.status_code, content=answer.content, headers=answer.headers)
            return httpx.Response(200, json=answer)
        finally:
            self.in_flight -= 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, isbn: str) -> int:
        return self.calls.count(isbn)


@pytest.fixture
def fake_upstream():
    """Factory fixture for scripted upstreams."""

    def _create(responses: dict[str, Any] | None = None, delay: float = 0.0) -> FakeUpstream:
        return FakeUpstream(responses, delay=delay)

    return _create


@pytest.fixture
def memory_cache():
    """In-process lookup cache."""
    return LookupCache(None)


@pytest.fixture
def logger():
    """Create a test logger."""
    return logging.getLogger("test")


@pytest.fixture
def make_resolver(memory_cache, logger):
    """Factory fixture for resolvers wired to a fake upstream."""

    def _create(
        upstream: FakeUpstream,
        cache: LookupCache | None | str = "default",
        timeout: float = 1.0,
        retries: int = 2,
    ) -> AsyncResolver:
        http = AsyncHttpClient(timeout=timeout, retries=retries, backoff=0.0, transport=upstream.transport)
        return AsyncResolver(
            http=http,
            cert_key="test-key",
            cache=memory_cache if cache == "default" else cache,
            logger=logger,
        )

    return _create


@pytest.fixture
def settings():
    """Settings with a credential, an in-memory cache and no backoff delay."""
    return Settings(cert_key="test-key", cache_path=None, backoff=0.0)
