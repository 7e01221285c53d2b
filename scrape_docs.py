#!/usr/bin/env python3
"""Docs scraper - crawl documentation sites and publish them to Meilisearch.

Usage:
    python scrape_docs.py <config.json> [config2.json] ...

Environment variables:
    MEILISEARCH_HOST_URL - Meilisearch server URL
    MEILISEARCH_API_KEY  - Meilisearch API key
    INDEX_NAME           - Override index name from config (only for a single config)
    BASIC_AUTH_USERNAME  - Optional basic auth for page fetches
    BASIC_AUTH_PASSWORD
"""
import logging
import sys
import time
from dataclasses import dataclass

import click

from config import ConfigError, ScraperEnv, load_config, should_skip_url
from docs_scraper import DocsScraper
from meilisearch_index import MeilisearchEngine, ReindexCoordinator
from sitemap import parse_sitemaps

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    config_path: str
    index_name: str
    pages: int = 0
    documents: int = 0
    duration: float = 0.0
    error: str | None = None


def discover_urls(config, env: ScraperEnv) -> list[str]:
    """Sitemap URLs when sitemaps are configured, otherwise the fetchable start URLs, minus stop_urls."""
    if config.sitemap_urls:
        urls = parse_sitemaps(config.sitemap_urls, env)
    else:
        urls = list(dict.fromkeys(config.crawl_urls))

    if config.stop_urls:
        original_count = len(urls)
        urls = [url for url in urls if not should_skip_url(url, config.stop_urls)]
        filtered = original_count - len(urls)
        if filtered:
            logger.info(f"[SCRAPER] Filtered {filtered} URLs matching stop_urls")

    return urls


def process_config(
    config_path: str,
    engine: MeilisearchEngine,
    env: ScraperEnv,
    index_name_override: str | None = None,
) -> ProcessResult:
    """Run discovery, scraping and reindexing for one config file."""
    start_time = time.time()
    result = ProcessResult(config_path=config_path, index_name="unknown")

    print("\n" + "=" * 60)
    print(f"Processing: {config_path}")
    print("=" * 60)

    try:
        config = load_config(config_path)
        result.index_name = index_name_override or config.index_uid
        logger.info(f"Index: {result.index_name}")

        logger.info("--- Fetching Sitemaps ---")
        urls = discover_urls(config, env)
        result.pages = len(urls)
        logger.info(f"Total URLs to scrape: {len(urls)}")

        if not urls:
            result.error = "No URLs to scrape"
            return result

        logger.info("--- Scraping Pages ---")
        scraper = DocsScraper(config, env=env, concurrency=env.SCRAPER_CONCURRENCY)
        documents = scraper.run(urls)
        result.documents = len(documents)

        if not documents:
            result.error = "No documents extracted"
            return result

        logger.info("--- Indexing in Meilisearch ---")
        coordinator = ReindexCoordinator(
            engine,
            result.index_name,
            settings=config.custom_settings,
            batch_size=env.MEILISEARCH_BATCH_SIZE,
        )
        coordinator.run(documents)

    except Exception as e:
        logger.exception(f"Failed to process {config_path}")
        result.error = str(e)

    finally:
        result.duration = time.time() - start_time

    return result


def print_summary(results: list[ProcessResult], total_duration: float) -> bool:
    """Print per-config and aggregate results; returns True if any config failed."""
    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)

    total_pages = 0
    total_docs = 0
    has_errors = False

    for r in results:
        status = f"✗ {r.error}" if r.error else "✓"
        print(f"\n{r.config_path}:")
        print(f"  Index: {r.index_name}")
        print(f"  Pages: {r.pages}, Documents: {r.documents}")
        print(f"  Time: {r.duration:.1f}s")
        print(f"  Status: {status}")

        total_pages += r.pages
        total_docs += r.documents
        if r.error:
            has_errors = True

    print("\n" + "-" * 60)
    print(f"Total: {total_pages} pages, {total_docs} documents")
    print(f"Total time: {total_duration:.1f}s")
    print("=" * 60)

    return has_errors


@click.command()
@click.argument("config_paths", nargs=-1, required=True, type=click.Path())
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(config_paths: tuple[str, ...], debug: bool):
    """Scrape documentation sites described by CONFIG_PATHS and publish them to Meilisearch."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    total_start_time = time.time()

    print("=" * 60)
    print("Meilisearch Docs Scraper")
    print("=" * 60)
    print(f"\nConfigs to process: {len(config_paths)}")
    for idx, path in enumerate(config_paths, 1):
        print(f"  {idx}. {path}")

    try:
        env = ScraperEnv.load()
    except ConfigError as e:
        print(f"\n✗ ERROR: {e}")
        sys.exit(1)

    print(f"\nMeilisearch URL: {env.MEILISEARCH_HOST_URL}")

    # Shared across configs; configs run strictly one after another
    engine = MeilisearchEngine.from_env(env)

    index_override = env.INDEX_NAME if len(config_paths) == 1 else None
    if env.INDEX_NAME and index_override is None:
        logger.warning("INDEX_NAME is ignored when more than one config is processed")

    results = [process_config(path, engine, env, index_override) for path in config_paths]

    if print_summary(results, time.time() - total_start_time):
        sys.exit(1)


if __name__ == "__main__":
    main()
