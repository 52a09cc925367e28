"""Request handling for hosting the batch lookup behind an HTTP endpoint.

``handle_request`` is framework-agnostic: the host passes the method, path
and raw body, and gets back the status, headers and JSON payload to send.
Every response (including preflight and errors) carries the same CORS
headers.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from isbn_lookup.batch import resolve_batch, resolve_batch_with_settings
from isbn_lookup.config import ConfigurationError, Settings
from isbn_lookup.resolver import AsyncResolver

logger = logging.getLogger(__name__)

API_PATH = "/api/isbn"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class RequestError(ValueError):
    """Malformed request body; rejected before any row is processed."""


def cors_headers() -> dict[str, str]:
    return {
        "access-control-allow-origin": "*",
        "access-control-allow-methods": "POST, OPTIONS",
        "access-control-allow-headers": "content-type",
    }


@dataclass
class ApiResponse:
    status: int
    payload: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=cors_headers)

    @classmethod
    def error(cls, status: int, message: str) -> ApiResponse:
        return cls(status=status, payload={"ok": False, "error": message}, headers=_json_headers())

    @property
    def body(self) -> bytes:
        if self.payload is None:
            return b""
        return json.dumps(self.payload, ensure_ascii=False).encode("utf-8")


def _json_headers() -> dict[str, str]:
    return {"content-type": JSON_CONTENT_TYPE, **cors_headers()}


def parse_batch_request(body: bytes | str | None) -> tuple[list[Any], Any]:
    """Decode a ``{"isbns": [...], "concurrency": n}`` request body.

    Returns:
        Tuple of (identifiers, concurrency hint or None)

    Raises:
        RequestError: Body is not JSON or has no ``isbns`` list.
    """
    try:
        data = json.loads(body or b"")
    except (ValueError, TypeError) as e:
        raise RequestError("Invalid JSON body") from e
    isbns = data.get("isbns") if isinstance(data, dict) else None
    if not isinstance(isbns, list):
        raise RequestError("Body must be { isbns: string[] }")
    return isbns, data.get("concurrency")


async def handle_request(
    method: str,
    path: str,
    body: bytes | str | None,
    *,
    settings: Settings,
    resolver: AsyncResolver | None = None,
) -> ApiResponse:
    """Route one HTTP request to the batch pipeline.

    Args:
        method: HTTP method
        path: Request path (query string excluded)
        body: Raw request body
        settings: Server settings; the credential must be present
        resolver: Optional pre-built resolver (shared client/cache); built
            from ``settings`` when omitted. The owner of a pre-built
            resolver flushes its cache.

    Returns:
        ApiResponse with status, headers and JSON payload
    """
    method = method.upper()
    if method == "OPTIONS":
        return ApiResponse(status=204)
    if path != API_PATH:
        return ApiResponse.error(404, "Not Found")
    if method != "POST":
        return ApiResponse.error(405, "Method Not Allowed")
    if not settings.cert_key:
        return ApiResponse.error(500, "Server missing NLD_CERT_KEY secret")

    try:
        isbns, concurrency = parse_batch_request(body)
    except RequestError as e:
        return ApiResponse.error(400, str(e))

    try:
        if resolver is not None:
            result = await resolve_batch(
                isbns,
                concurrency,
                resolver=resolver,
                settings=settings,
                policy=settings.build_author_policy(),
            )
        else:
            result = await resolve_batch_with_settings(isbns, concurrency, settings=settings)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return ApiResponse.error(500, str(e))

    return ApiResponse(status=200, payload=result.to_envelope(), headers=_json_headers())
