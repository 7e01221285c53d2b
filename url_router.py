"""Route crawled URLs to a page rank and a selector set using ordered start_urls rules."""

import logging
import re
from functools import lru_cache

from config import StartUrlRule

logger = logging.getLogger(__name__)

DEFAULT_RANK = 1


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern | None:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning(f"[ROUTER] Pattern {pattern!r} is not a valid regex ({e}), matching as substring")
        return None


def rule_matches(url: str, rule: StartUrlRule) -> bool:
    """Check a single rule against a URL."""
    if not rule.is_regex:
        return rule.pattern in url

    compiled = _compile(rule.pattern)
    if compiled is None:
        return rule.pattern in url
    return compiled.search(url) is not None


def resolve(url: str, rules: list[StartUrlRule]) -> tuple[int, str | None]:
    """Return (page_rank, selectors_key) for the first rule matching ``url``.

    No match yields rank 1 and no selectors key; the caller falls back to the
    default selector set.
    """
    for rule in rules:
        if rule_matches(url, rule):
            return rule.page_rank, rule.selectors_key
    return DEFAULT_RANK, None
