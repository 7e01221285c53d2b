"""Tests for environment and config file loading."""
import json
import sys
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import (
    USER_AGENT,
    ConfigError,
    ScraperEnv,
    fetch_kwargs,
    load_config,
    parse_config,
    should_skip_url,
)

MINIMAL = {
    "index_uid": "docs",
    "sitemap_urls": ["https://site.io/sitemap.xml"],
    "selectors": {"lvl1": "h1", "text": "p"},
}


def write_config(tmp_path, data, name="config.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return path


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "MEILISEARCH_HOST_URL",
        "MEILISEARCH_API_KEY",
        "INDEX_NAME",
        "BASIC_AUTH_USERNAME",
        "BASIC_AUTH_PASSWORD",
        "SCRAPER_CONCURRENCY",
        "MEILISEARCH_BATCH_SIZE",
        "REQUEST_TIMEOUT",
        "MEILISEARCH_TASK_TIMEOUT_MS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_load_minimal_config(tmp_path):
    config = load_config(write_config(tmp_path, MINIMAL))

    assert config.index_uid == "docs"
    assert list(config.selectors) == ["default"]
    selectors = config.selector_set(None)
    assert selectors.level(1).selector == "h1"
    assert selectors.level(3).selector == ""
    assert selectors.text.selector == "p"
    assert config.custom_settings == {}
    assert config.stop_urls == []


@pytest.mark.parametrize(
    "missing, message",
    [
        ("index_uid", "index_uid"),
        ("selectors", "selectors"),
        ("sitemap_urls", "sitemap_urls or start_urls"),
    ],
)
def test_missing_required_fields(missing, message):
    data = dict(MINIMAL)
    del data[missing]

    with pytest.raises(ConfigError, match=message):
        parse_config(data)


def test_unreadable_and_invalid_files(tmp_path):
    with pytest.raises(ConfigError, match="Cannot read"):
        load_config(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigError, match="Invalid JSON"):
        load_config(bad)


def test_selector_objects_and_named_sets():
    config = parse_config(
        {
            "index_uid": "docs_temp",
            "start_urls": [
                "https://site.io/",
                {"url": "https://site.io/blog/", "page_rank": 5, "selectors_key": "blog"},
            ],
            "selectors": {
                "docs": {
                    "lvl0": {"selector": ".product", "global": True, "default_value": "Docs"},
                    "lvl1": "h1",
                    "text": "main p",
                },
                "blog": {"lvl1": "h1.title", "text": "article p", "breadcrumb": ".crumbs"},
            },
        }
    )

    assert config.index_uid == "docs"
    lvl0 = config.selectors["docs"].level(0)
    assert (lvl0.selector, lvl0.is_global, lvl0.default_value) == (".product", True, "Docs")
    assert config.selectors["blog"].breadcrumb.selector == ".crumbs"

    assert [rule.page_rank for rule in config.start_urls] == [1, 5]
    assert [rule.is_regex for rule in config.start_urls] == [False, True]
    assert config.crawl_urls == ["https://site.io/", "https://site.io/blog/"]


def test_selector_set_fallbacks():
    config = parse_config(
        {
            "index_uid": "docs",
            "start_urls": ["https://site.io/"],
            "selectors": {"blog": {"text": "article p"}, "default": {"text": "main p"}},
        }
    )
    assert config.selector_set("blog").text.selector == "article p"
    assert config.selector_set(None).text.selector == "main p"
    assert config.selector_set("missing").text.selector == "main p"

    first_only = parse_config(
        {"index_uid": "docs", "start_urls": ["https://site.io/"], "selectors": {"a": {"text": "p.a"}, "b": {"text": "p.b"}}}
    )
    assert first_only.selector_set(None).text.selector == "p.a"


def test_invalid_selector_definitions():
    with pytest.raises(ConfigError, match="text"):
        parse_config(dict(MINIMAL, selectors={"lvl1": "h1"}))

    with pytest.raises(ConfigError, match="unknown selectors_key"):
        parse_config(
            dict(MINIMAL, start_urls=[{"url": "https://site.io/", "page_rank": 2, "selectors_key": "nope"}])
        )

    with pytest.raises(ConfigError, match="page_rank"):
        parse_config(dict(MINIMAL, start_urls=[{"url": "https://site.io/", "page_rank": 0}]))


def test_stop_urls_prefix_match():
    assert should_skip_url("https://x/old/page", ["https://x/old"])
    assert not should_skip_url("https://x/new/page", ["https://x/old"])
    assert not should_skip_url("https://x/old/page", [])


def test_env_requires_host_and_key(clean_env):
    with pytest.raises(ConfigError, match="MEILISEARCH_HOST_URL"):
        ScraperEnv.load()

    clean_env.setenv("MEILISEARCH_HOST_URL", "http://localhost:7700")
    with pytest.raises(ConfigError, match="MEILISEARCH_API_KEY"):
        ScraperEnv.load()


def test_env_defaults_and_overrides(clean_env):
    clean_env.setenv("MEILISEARCH_HOST_URL", "http://localhost:7700")
    clean_env.setenv("MEILISEARCH_API_KEY", "masterKey")

    env = ScraperEnv.load()
    assert env.SCRAPER_CONCURRENCY == 10
    assert env.MEILISEARCH_BATCH_SIZE == 100
    assert env.INDEX_NAME is None
    assert env.auth is None
    assert fetch_kwargs(env) == {"headers": {"User-Agent": USER_AGENT}}

    clean_env.setenv("BASIC_AUTH_USERNAME", "reader")
    clean_env.setenv("BASIC_AUTH_PASSWORD", "secret")
    clean_env.setenv("REQUEST_TIMEOUT", "15")
    clean_env.setenv("SCRAPER_CONCURRENCY", "4")
    env = ScraperEnv.load()
    assert env.SCRAPER_CONCURRENCY == 4
    assert fetch_kwargs(env) == {"headers": {"User-Agent": USER_AGENT}, "auth": ("reader", "secret"), "timeout": 15}

    clean_env.setenv("MEILISEARCH_BATCH_SIZE", "lots")
    with pytest.raises(ConfigError, match="MEILISEARCH_BATCH_SIZE"):
        ScraperEnv.load()
