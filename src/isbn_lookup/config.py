"""Configuration for ISBN batch lookups.

Settings come from (lowest to highest precedence) built-in defaults,
environment variables, an optional YAML config file and explicit overrides
such as CLI flags.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, ClassVar

import yaml

from isbn_lookup.authors import DEFAULT_POLICY, AuthorPolicy
from isbn_lookup.utils import (
    DEFAULT_CONCURRENCY,
    MAX_BATCH_SIZE,
    MAX_CONCURRENCY,
    MIN_CONCURRENCY,
    NLD_SEOJI_API,
    AsyncHttpClient,
    LookupCache,
    clamp_int,
)

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Server-side configuration is missing or invalid; fatal for a batch."""


@dataclass
class Settings:
    """Runtime settings for the lookup pipeline.

    Attributes:
        cert_key: National Library API credential (``NLD_CERT_KEY``); required
            before any batch runs
        api_url: Search endpoint
        default_concurrency: Worker budget when a request gives no hint
        max_batch_size: Server-side cap on identifiers per batch (at most 500)
        timeout: Per-attempt upstream timeout in seconds
        retries: Additional upstream attempts after the first
        backoff: Delay before the first retry, doubled each retry
        cache_path: JSON cache file; None keeps the cache in memory
        cache_ttl_days: Max-age of cached success/not-found outcomes
        author_policy_file: Optional YAML file extending the author word lists
        user_agent: User-Agent header for upstream requests
    """

    cert_key: str | None = None
    api_url: str = NLD_SEOJI_API
    default_concurrency: int = DEFAULT_CONCURRENCY
    max_batch_size: int = MAX_BATCH_SIZE
    timeout: float = 3.5
    retries: int = 2
    backoff: float = 0.2
    cache_path: str | None = ".cache.isbn_lookup.json"
    cache_ttl_days: int = 30
    author_policy_file: str | None = None
    user_agent: str = "isbn-lookup/1.0"

    ENV_VARS: ClassVar[dict[str, str]] = {
        "cert_key": "NLD_CERT_KEY",
        "api_url": "ISBN_LOOKUP_API_URL",
        "default_concurrency": "ISBN_LOOKUP_CONCURRENCY",
        "max_batch_size": "ISBN_LOOKUP_MAX_BATCH",
        "timeout": "ISBN_LOOKUP_TIMEOUT",
        "retries": "ISBN_LOOKUP_RETRIES",
        "cache_path": "ISBN_LOOKUP_CACHE",
        "cache_ttl_days": "ISBN_LOOKUP_CACHE_TTL_DAYS",
        "author_policy_file": "ISBN_LOOKUP_AUTHOR_POLICY",
    }

    def __post_init__(self) -> None:
        self.default_concurrency = clamp_int(
            self.default_concurrency, MIN_CONCURRENCY, MAX_CONCURRENCY, DEFAULT_CONCURRENCY
        )
        self.max_batch_size = clamp_int(self.max_batch_size, 1, MAX_BATCH_SIZE, MAX_BATCH_SIZE)
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if self.retries < 0:
            raise ConfigurationError(f"retries must be >= 0, got {self.retries}")
        if self.cache_ttl_days < 0:
            raise ConfigurationError(f"cache_ttl_days must be >= 0, got {self.cache_ttl_days}")

    @classmethod
    def _coerce(cls, data: Mapping[str, Any], source: str) -> dict[str, Any]:
        """Convert raw values (env strings, YAML scalars) to field types."""
        types = {f.name: f.type for f in fields(cls)}
        out: dict[str, Any] = {}
        for name, raw in data.items():
            if name not in types:
                logger.debug("Ignoring unknown setting %r from %s", name, source)
                continue
            if raw is None or raw == "":
                continue
            kind = str(types[name])
            try:
                if kind.startswith("int"):
                    out[name] = int(raw)
                elif kind.startswith("float"):
                    out[name] = float(raw)
                else:
                    out[name] = str(raw)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid value for {name} from {source}: {raw!r}") from e
        return out

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Create settings from environment variables (see ``ENV_VARS``)."""
        env = os.environ if environ is None else environ
        raw = {name: env.get(var) for name, var in cls.ENV_VARS.items()}
        return cls(**cls._coerce(raw, "environment"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Settings:
        """Create settings from a dictionary (e.g., loaded from YAML)."""
        return cls(**cls._coerce(data, "config"))

    def merged(self, data: Mapping[str, Any] | None = None, **overrides: Any) -> Settings:
        """Return a copy with non-None values from ``data`` and ``overrides`` applied."""
        values = self._coerce(dict(data or {}), "config")
        values.update({k: v for k, v in overrides.items() if v is not None})
        return replace(self, **values)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary, with the credential masked."""
        data = asdict(self)
        if data.get("cert_key"):
            data["cert_key"] = "***"
        return data

    @property
    def cache_max_age(self) -> int:
        return self.cache_ttl_days * 24 * 60 * 60

    def require_cert_key(self) -> str:
        """Return the API credential or raise ``ConfigurationError``."""
        if not self.cert_key:
            raise ConfigurationError("Server missing NLD_CERT_KEY secret")
        return self.cert_key

    def build_http_client(self, transport: Any = None) -> AsyncHttpClient:
        return AsyncHttpClient(
            timeout=self.timeout,
            retries=self.retries,
            backoff=self.backoff,
            user_agent=self.user_agent,
            transport=transport,
        )

    def build_cache(self) -> LookupCache:
        return LookupCache(self.cache_path, default_max_age=self.cache_max_age)

    def build_author_policy(self) -> AuthorPolicy:
        if not self.author_policy_file:
            return DEFAULT_POLICY
        try:
            return AuthorPolicy.from_yaml(self.author_policy_file)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load author policy {self.author_policy_file}: {e}") from e


def load_config_file(path: str) -> dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Config dictionary (empty for an empty file)

    Raises:
        ConfigurationError: The file is unreadable or not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data
