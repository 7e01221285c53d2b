"""Concurrent page scraping - fetches pages in fixed-size waves and extracts documents."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

import requests

from config import ScraperConfig, ScraperEnv, fetch_kwargs
from hierarchy_extractor import SearchDocument, extract, parse_html
from url_router import resolve

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10


class PageError(Exception):
    """A single page could not be fetched or parsed."""


def fetch_page(url: str, env: ScraperEnv | None = None) -> str:
    """Fetch one page's HTML.

    Raises:
        PageError: on transport errors or a non-success status
    """
    try:
        response = requests.get(url, **fetch_kwargs(env))
        response.raise_for_status()
    except requests.RequestException as e:
        raise PageError(f"Failed to fetch {url}: {e}") from e
    return response.text


def ensure_unique_ids(documents: list[SearchDocument]) -> int:
    """Re-suffix objectIDs repeated across pages with a corpus-wide counter.

    Returns:
        Number of documents whose id was changed
    """
    seen: set[str] = set()
    counter = 0
    renamed = 0
    for doc in documents:
        if doc.objectID in seen:
            new_id = doc.objectID
            while new_id in seen:
                counter += 1
                new_id = f"{doc.objectID}-{counter}"
            logger.debug(f"[SCRAPER] objectID collision {doc.objectID} ({doc.url}), using {new_id}")
            doc.objectID = new_id
            renamed += 1
        seen.add(doc.objectID)
    return renamed


class DocsScraper:
    """Drives the extractor over many URLs with bounded parallelism."""

    def __init__(self, config: ScraperConfig, env: ScraperEnv | None = None, concurrency: int = DEFAULT_CONCURRENCY):
        """Initialize the scraper.

        Args:
            config: Validated scraper config (selectors, start_urls rules, exclusions)
            env: Scraper environment (user agent, basic auth, timeout)
            concurrency: Pages in flight per wave
        """
        self.config = config
        self.env = env
        self.concurrency = max(1, concurrency)
        self.failed_urls: list[str] = []
        self.empty_urls: list[str] = []

    def scrape_page(self, url: str) -> list[SearchDocument]:
        """Fetch, route and extract a single page.

        Raises:
            PageError: if the page cannot be fetched or parsed
        """
        html = fetch_page(url, self.env)

        try:
            soup = parse_html(html)
            rank, selectors_key = resolve(url, self.config.start_urls)
            selectors = self.config.selector_set(selectors_key)
            return extract(
                url,
                soup,
                selectors,
                rank=rank,
                selectors_exclude=self.config.selectors_exclude,
                default_tags=self.config.tags,
            )
        except Exception as e:
            raise PageError(f"Failed to parse {url}: {e}") from e

    def run(self, urls: list[str]) -> list[SearchDocument]:
        """Scrape all URLs wave by wave and flatten the results.

        Order is wave order then completion order within a wave; consumers
        should rank by item_priority, never by position in this list.
        """
        documents: list[SearchDocument] = []
        total = len(urls)
        completed = 0
        start_time = time.time()
        self.failed_urls = []
        self.empty_urls = []

        logger.info(f"[SCRAPER] Scraping {total:,} pages, {self.concurrency} in flight per wave")

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            for wave_start in range(0, total, self.concurrency):
                wave = urls[wave_start : wave_start + self.concurrency]
                future_to_url = {executor.submit(self.scrape_page, url): url for url in wave}

                for future in as_completed(future_to_url):
                    url = future_to_url[future]
                    completed += 1
                    try:
                        page_docs = future.result()
                    except PageError as e:
                        self.failed_urls.append(url)
                        logger.warning(f"[SCRAPER] [{completed}/{total}] {e}")
                        continue

                    if not page_docs:
                        self.empty_urls.append(url)
                    logger.debug(f"[SCRAPER] [{completed}/{total}] {url} -> {len(page_docs)} docs")
                    documents.extend(page_docs)

                elapsed = time.time() - start_time
                rate = completed / elapsed if elapsed > 0 else 0
                logger.info(
                    f"[SCRAPER] [{100 * completed / total:5.1f}%] {completed}/{total} pages | "
                    f"Docs: {len(documents)} | Rate: {rate:.1f} pages/sec"
                )

        renamed = ensure_unique_ids(documents)
        if renamed:
            logger.info(f"[SCRAPER] Re-suffixed {renamed} colliding objectIDs")

        elapsed = time.time() - start_time
        logger.info(
            f"[SCRAPER] ✓ {len(documents)} documents from {total} pages "
            f"({len(self.failed_urls)} failed, {len(self.empty_urls)} empty) in {elapsed:.1f}s"
        )
        return documents
