"""Sitemap discovery - turns one or more sitemap.xml locations into a deduplicated URL list."""

import logging
import xml.etree.ElementTree as ET

import requests

from config import ScraperEnv, fetch_kwargs

logger = logging.getLogger(__name__)


class DiscoveryError(Exception):
    """A single sitemap could not be fetched or parsed."""


def _local_name(tag: str) -> str:
    # Strip the XML namespace, e.g. '{http://www.sitemaps.org/schemas/sitemap/0.9}loc' -> 'loc'
    return tag.rsplit("}", 1)[-1]


def _extract_locs(root: ET.Element) -> list[str]:
    urls = []
    for elem in root.iter():
        if _local_name(elem.tag) == "loc" and elem.text and elem.text.strip():
            urls.append(elem.text.strip())
    return urls


def _fetch_sitemap_root(sitemap_url: str, env: ScraperEnv | None) -> ET.Element:
    logger.info(f"[SITEMAP] Fetching sitemap: {sitemap_url}")
    try:
        response = requests.get(sitemap_url, **fetch_kwargs(env))
        response.raise_for_status()
    except requests.RequestException as e:
        raise DiscoveryError(f"Failed to fetch sitemap {sitemap_url}: {e}") from e

    try:
        return ET.fromstring(response.content)
    except ET.ParseError as e:
        raise DiscoveryError(f"Failed to parse sitemap {sitemap_url}: {e}") from e


def parse_sitemap(sitemap_url: str, env: ScraperEnv | None = None, _seen: set[str] | None = None) -> list[str]:
    """Fetch and parse one sitemap, following nested sitemap indexes.

    Args:
        sitemap_url: Location of sitemap.xml (or a sitemap index)
        env: Scraper environment (user agent, basic auth, timeout)

    Returns:
        Page URLs in sitemap order

    Raises:
        DiscoveryError: if this sitemap cannot be fetched or parsed
    """
    seen = _seen if _seen is not None else set()
    seen.add(sitemap_url)

    root = _fetch_sitemap_root(sitemap_url, env)
    locs = _extract_locs(root)

    if _local_name(root.tag) != "sitemapindex":
        logger.info(f"[SITEMAP] Found {len(locs)} URLs in {sitemap_url}")
        return locs

    logger.info(f"[SITEMAP] {sitemap_url} is a sitemap index with {len(locs)} sitemaps")
    urls = []
    for child_url in locs:
        if child_url in seen:
            continue
        try:
            urls.extend(parse_sitemap(child_url, env, seen))
        except DiscoveryError as e:
            logger.error(f"[SITEMAP] {e}")
    return urls


def parse_sitemaps(sitemap_urls: list[str], env: ScraperEnv | None = None) -> list[str]:
    """Fetch multiple sitemaps and combine their URLs.

    A failing sitemap is logged and skipped; its URLs are simply absent.
    """
    all_urls: dict[str, None] = {}
    seen: set[str] = set()

    for sitemap_url in sitemap_urls:
        try:
            for url in parse_sitemap(sitemap_url, env, seen):
                all_urls.setdefault(url, None)
        except DiscoveryError as e:
            logger.error(f"[SITEMAP] {e}")

    logger.info(f"[SITEMAP] {len(all_urls)} unique URLs from {len(sitemap_urls)} sitemap(s)")
    return list(all_urls)
