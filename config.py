"""Configuration management for the docs scraper - environment plus JSON config files."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# Identifies the crawler in site analytics
USER_AGENT = "DocsScraper/1.0 (+https://github.com/docs-scraper/docs-scraper)"

LEVELS = ("lvl0", "lvl1", "lvl2", "lvl3", "lvl4", "lvl5", "lvl6")
DEFAULT_SELECTORS_KEY = "default"
TEMP_SUFFIX = "_temp"


class ConfigError(Exception):
    """Raised when the environment or a config file is missing required data."""


class ScraperEnv:
    """Scraper settings read from the environment."""

    @classmethod
    def load(cls):
        """Load scraper configuration from environment variables."""
        env = cls()

        # Meilisearch connection
        env.MEILISEARCH_HOST_URL = os.getenv("MEILISEARCH_HOST_URL", "")
        env.MEILISEARCH_API_KEY = os.getenv("MEILISEARCH_API_KEY", "")
        if not env.MEILISEARCH_HOST_URL:
            raise ConfigError("Missing required env var: MEILISEARCH_HOST_URL")
        if not env.MEILISEARCH_API_KEY:
            raise ConfigError("Missing required env var: MEILISEARCH_API_KEY")

        # Only honored when a single config file is processed
        env.INDEX_NAME = os.getenv("INDEX_NAME") or None

        # Basic auth for protected documentation sites
        env.BASIC_AUTH_USERNAME = os.getenv("BASIC_AUTH_USERNAME") or None
        env.BASIC_AUTH_PASSWORD = os.getenv("BASIC_AUTH_PASSWORD") or None

        # Crawl and upload tuning
        env.SCRAPER_CONCURRENCY = _int_env("SCRAPER_CONCURRENCY", 10)
        env.MEILISEARCH_BATCH_SIZE = _int_env("MEILISEARCH_BATCH_SIZE", 100)
        env.REQUEST_TIMEOUT = _int_env("REQUEST_TIMEOUT", None)
        env.MEILISEARCH_TASK_TIMEOUT_MS = _int_env("MEILISEARCH_TASK_TIMEOUT_MS", None)

        return env

    @property
    def auth(self) -> tuple[str, str] | None:
        """Basic-auth credentials for requests, if both parts are configured."""
        username = getattr(self, "BASIC_AUTH_USERNAME", None)
        password = getattr(self, "BASIC_AUTH_PASSWORD", None)
        if username and password:
            return (username, password)
        return None


def _int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"Env var {name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"Env var {name} must be positive, got {value}")
    return value


def fetch_kwargs(env: ScraperEnv | None) -> dict[str, Any]:
    """Keyword arguments for every outbound requests.get call (sitemaps and pages)."""
    kwargs: dict[str, Any] = {"headers": {"User-Agent": USER_AGENT}}
    if env is not None:
        if env.auth:
            kwargs["auth"] = env.auth
        timeout = getattr(env, "REQUEST_TIMEOUT", None)
        if timeout:
            kwargs["timeout"] = timeout
    return kwargs


# =============================================================================
# Config file model
# =============================================================================


@dataclass(frozen=True)
class SelectorSpec:
    """One selector, normalized from either a bare string or an options object."""

    selector: str = ""
    is_global: bool = False
    default_value: str = ""


@dataclass(frozen=True)
class SelectorSet:
    """Heading levels lvl0..lvl6, the text selector, and optional tag/breadcrumb selectors."""

    levels: tuple[SelectorSpec, ...]
    text: SelectorSpec
    tags: SelectorSpec | None = None
    breadcrumb: SelectorSpec | None = None

    def level(self, n: int) -> SelectorSpec:
        return self.levels[n]


@dataclass(frozen=True)
class StartUrlRule:
    """Maps URLs matching ``pattern`` to a page rank and a selector set."""

    pattern: str
    page_rank: int = 1
    selectors_key: str | None = None
    # Bare-string entries match by substring, object entries as regular expressions
    is_regex: bool = False


@dataclass
class ScraperConfig:
    index_uid: str
    selectors: dict[str, SelectorSet]
    start_urls: list[StartUrlRule] = field(default_factory=list)
    sitemap_urls: list[str] = field(default_factory=list)
    stop_urls: list[str] = field(default_factory=list)
    selectors_exclude: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    custom_settings: dict[str, Any] = field(default_factory=dict)

    def selector_set(self, key: str | None) -> SelectorSet:
        """Return the named selector set, falling back to 'default' and then the first declared set."""
        if key and key in self.selectors:
            return self.selectors[key]
        if key:
            logger.warning(f"[CONFIG] Unknown selectors_key '{key}', using default selectors")
        if DEFAULT_SELECTORS_KEY in self.selectors:
            return self.selectors[DEFAULT_SELECTORS_KEY]
        return next(iter(self.selectors.values()))

    @property
    def crawl_urls(self) -> list[str]:
        """Start URLs that are fetchable pages (used when no sitemap is configured)."""
        return [rule.pattern for rule in self.start_urls if rule.pattern.startswith(("http://", "https://"))]


def normalize_selector(raw: Any, name: str = "selector") -> SelectorSpec:
    """Turn a string-or-object selector into a SelectorSpec."""
    if raw is None:
        return SelectorSpec()
    if isinstance(raw, str):
        return SelectorSpec(selector=raw)
    if isinstance(raw, dict):
        if "selector" not in raw:
            raise ConfigError(f"Selector '{name}' object is missing 'selector'")
        return SelectorSpec(
            selector=str(raw["selector"] or ""),
            is_global=bool(raw.get("global", False)),
            default_value=str(raw.get("default_value") or ""),
        )
    raise ConfigError(f"Selector '{name}' must be a string or an object, got {type(raw).__name__}")


def normalize_selector_set(raw: Any, key: str) -> SelectorSet:
    if not isinstance(raw, dict):
        raise ConfigError(f"Selector set '{key}' must be an object")
    if not raw.get("text"):
        raise ConfigError(f"Selector set '{key}' missing required field: text")

    levels = tuple(normalize_selector(raw.get(level), f"{key}.{level}") for level in LEVELS)
    tags = normalize_selector(raw["tags"], f"{key}.tags") if raw.get("tags") else None
    breadcrumb = normalize_selector(raw["breadcrumb"], f"{key}.breadcrumb") if raw.get("breadcrumb") else None

    return SelectorSet(
        levels=levels,
        text=normalize_selector(raw["text"], f"{key}.text"),
        tags=tags,
        breadcrumb=breadcrumb,
    )


def _is_single_selector_set(raw: dict[str, Any]) -> bool:
    return any(k in raw for k in LEVELS + ("text",))


def normalize_selectors(raw: Any) -> dict[str, SelectorSet]:
    """Accept either one selector set or a mapping of names to selector sets."""
    if not isinstance(raw, dict) or not raw:
        raise ConfigError("Config field 'selectors' must be a non-empty object")
    if _is_single_selector_set(raw):
        return {DEFAULT_SELECTORS_KEY: normalize_selector_set(raw, DEFAULT_SELECTORS_KEY)}
    return {key: normalize_selector_set(value, key) for key, value in raw.items()}


def normalize_start_url(raw: Any) -> StartUrlRule:
    """Turn a string-or-object start_urls entry into a StartUrlRule."""
    if isinstance(raw, str):
        return StartUrlRule(pattern=raw)
    if isinstance(raw, dict):
        if not raw.get("url"):
            raise ConfigError("start_urls entry is missing 'url'")
        try:
            page_rank = int(raw.get("page_rank", 1))
        except (TypeError, ValueError):
            raise ConfigError(f"start_urls entry {raw['url']!r} has a non-integer page_rank") from None
        if page_rank < 1:
            raise ConfigError(f"start_urls entry {raw['url']!r} must have a positive page_rank")
        return StartUrlRule(
            pattern=raw["url"],
            page_rank=page_rank,
            selectors_key=raw.get("selectors_key") or None,
            is_regex=True,
        )
    raise ConfigError(f"start_urls entry must be a string or an object, got {type(raw).__name__}")


def parse_config(data: Any) -> ScraperConfig:
    """Validate a decoded config document and normalize it."""
    if not isinstance(data, dict):
        raise ConfigError("Config must be a JSON object")
    if not data.get("index_uid"):
        raise ConfigError("Config missing required field: index_uid")
    if not data.get("sitemap_urls") and not data.get("start_urls"):
        raise ConfigError("Config must have either sitemap_urls or start_urls")
    if not data.get("selectors"):
        raise ConfigError("Config missing required field: selectors")

    selectors = normalize_selectors(data["selectors"])
    start_urls = [normalize_start_url(entry) for entry in data.get("start_urls") or []]

    for rule in start_urls:
        if rule.selectors_key and rule.selectors_key not in selectors:
            raise ConfigError(f"start_urls entry {rule.pattern!r} references unknown selectors_key '{rule.selectors_key}'")

    index_uid = str(data["index_uid"])
    if index_uid.endswith(TEMP_SUFFIX):
        index_uid = index_uid[: -len(TEMP_SUFFIX)]

    return ScraperConfig(
        index_uid=index_uid,
        selectors=selectors,
        start_urls=start_urls,
        sitemap_urls=list(data.get("sitemap_urls") or []),
        stop_urls=list(data.get("stop_urls") or []),
        selectors_exclude=list(data.get("selectors_exclude") or []),
        tags=list(data.get("tags") or []),
        custom_settings=dict(data.get("custom_settings") or {}),
    )


def load_config(config_path: str | Path) -> ScraperConfig:
    """Load and validate a JSON config file."""
    path = Path(config_path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e

    config = parse_config(data)
    logger.info(
        f"[CONFIG] Loaded {path}: index={config.index_uid}, "
        f"{len(config.selectors)} selector set(s), {len(config.start_urls)} start URL rule(s)"
    )
    return config


def should_skip_url(url: str, stop_urls: list[str]) -> bool:
    """Check if URL should be skipped based on stop_urls."""
    return any(url.startswith(stop_url) for stop_url in stop_urls)
