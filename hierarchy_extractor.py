"""Hierarchy extraction - walks one parsed page and emits ranked search documents.

Headings (lvl1..lvl6) and text blocks are collected with a single combined CSS
query so that document order is preserved across both. Headings only update the
running hierarchy; every text block long enough to be useful becomes one
document carrying a snapshot of that hierarchy.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from typing import Any
from urllib.parse import urldefrag

import soupsieve
from bs4 import BeautifulSoup, Tag

from config import LEVELS, SelectorSet, SelectorSpec

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 10

# item_priority = rank * RANK_WEIGHT + level_weight * LEVEL_WEIGHT + position
RANK_WEIGHT = 1_000_000_000
LEVEL_WEIGHT = 1000
MAX_POSITION = LEVEL_WEIGHT - 1

PRODUCT_META_SELECTOR = 'meta[name="product"]'
TAGS_META_SELECTOR = 'meta[name="docsearch:tags"]'
DEFAULT_TAGS_SELECTOR = "#doc-tags span"

_WHITESPACE = re.compile(r"\s+")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass
class SearchDocument:
    """One record in the search index."""

    objectID: str
    url: str
    url_without_anchor: str
    content: str
    type: str
    hierarchy_lvl0: str = ""
    hierarchy_lvl1: str = ""
    hierarchy_lvl2: str = ""
    hierarchy_lvl3: str = ""
    hierarchy_lvl4: str = ""
    hierarchy_lvl5: str = ""
    hierarchy_lvl6: str = ""
    product: str = ""
    breadcrumb: str = ""
    tags: list[str] = field(default_factory=list)
    item_priority: int = 0
    anchor: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for upload; the anchor key is omitted when there is none."""
        data = asdict(self)
        if data["anchor"] is None:
            del data["anchor"]
        return data


class HierarchyState:
    """Most recent heading text per level for the page currently being walked."""

    def __init__(self, lvl0: str = "", lvl1: str = ""):
        self.levels = [""] * len(LEVELS)
        self.levels[0] = lvl0
        self.levels[1] = lvl1

    def set_level(self, level: int, text: str):
        """Set one level and clear every deeper level."""
        self.levels[level] = text
        for deeper in range(level + 1, len(self.levels)):
            self.levels[deeper] = ""

    def snapshot(self) -> dict[str, str]:
        return {f"hierarchy_{name}": value for name, value in zip(LEVELS, self.levels)}

    def depth(self) -> int:
        """Deepest non-empty heading level, treating lvl0-only as level 1."""
        for level in range(len(self.levels) - 1, 1, -1):
            if self.levels[level]:
                return level
        return 1


# =============================================================================
# Helpers
# =============================================================================


def normalize_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def element_text(element: Tag | None) -> str:
    """Whitespace-collapsed text of an element; table rows join their non-empty cells."""
    if element is None:
        return ""
    if element.name == "tr":
        cells = [normalize_text(cell.get_text()) for cell in element.find_all(["td", "th"], recursive=False)]
        return " ".join(cell for cell in cells if cell)
    return normalize_text(element.get_text())


@lru_cache(maxsize=256)
def is_valid_selector(selector: str) -> bool:
    if not selector:
        return False
    try:
        soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError as e:
        logger.warning(f"[EXTRACT] Ignoring malformed selector {selector!r}: {e}")
        return False
    return True


def query_all(root: BeautifulSoup | Tag, selector: str) -> list[Tag]:
    """Select all matches; an empty or malformed selector matches nothing."""
    if not selector:
        return []
    try:
        return root.select(selector)
    except soupsieve.SelectorSyntaxError:
        return []


def query_one(root: BeautifulSoup | Tag, selector: str) -> Tag | None:
    matches = query_all(root, selector)
    return matches[0] if matches else None


def matches(element: Tag, selector: str) -> bool:
    if not selector:
        return False
    try:
        return element.css.match(selector)
    except soupsieve.SelectorSyntaxError:
        return False


def _string_hash(value: str) -> int:
    # 32-bit signed "h * 31 + c" string hash
    h = 0
    for char in value:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def object_id(url: str, anchor: str | None, sequence: int) -> str:
    """Deterministic id for the ``sequence``-th document emitted for a page."""
    base = f"{url}#{anchor}" if anchor else url
    return f"{_base36(_string_hash(base))}-{sequence}"


def item_priority(rank: int, depth: int, position: int) -> int:
    """Ranking key: start-URL rank, then shallower headings, then earlier position.

    Position is clamped to MAX_POSITION so it never outweighs a level step. On a
    page with more than MAX_POSITION candidate elements the earliest content
    blocks therefore share one priority at the same depth.
    """
    level_weight = len(LEVELS) - max(depth, 1)
    position = min(max(position, 0), MAX_POSITION)
    return rank * RANK_WEIGHT + level_weight * LEVEL_WEIGHT + position


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


# =============================================================================
# Page-level metadata
# =============================================================================


def remove_excluded(soup: BeautifulSoup, selectors_exclude: list[str]) -> int:
    """Decompose every element matched by an exclusion selector."""
    removed = 0
    for selector in selectors_exclude:
        for element in query_all(soup, selector):
            if element.decomposed:
                continue
            element.decompose()
            removed += 1
    return removed


def extract_product(soup: BeautifulSoup) -> str:
    meta = query_one(soup, PRODUCT_META_SELECTOR)
    if meta is None:
        return ""
    return normalize_text(meta.get("content", ""))


def extract_breadcrumb(soup: BeautifulSoup, selectors: SelectorSet) -> str:
    if selectors.breadcrumb is None:
        return ""
    return element_text(query_one(soup, selectors.breadcrumb.selector))


def extract_tags(soup: BeautifulSoup, selectors: SelectorSet, default_tags: list[str]) -> list[str]:
    """Meta tags then selector-matched tag text, de-duplicated; global tags when both are empty."""
    tags: dict[str, None] = {}

    for meta in query_all(soup, TAGS_META_SELECTOR):
        for value in meta.get("content", "").split(","):
            value = value.strip()
            if value:
                tags.setdefault(value, None)

    tag_selector = selectors.tags.selector if selectors.tags else DEFAULT_TAGS_SELECTOR
    for element in query_all(soup, tag_selector):
        text = element_text(element)
        if text:
            tags.setdefault(text, None)

    if not tags:
        return list(default_tags)
    return list(tags)


def resolve_global(soup: BeautifulSoup, spec: SelectorSpec) -> str:
    """Value of a global level, searched once against the whole document."""
    if not spec.is_global:
        return ""
    return element_text(query_one(soup, spec.selector))


# =============================================================================
# Extraction
# =============================================================================


def extract(
    url: str,
    soup: BeautifulSoup,
    selectors: SelectorSet,
    rank: int = 1,
    selectors_exclude: list[str] | None = None,
    default_tags: list[str] | None = None,
) -> list[SearchDocument]:
    """Extract search documents from one parsed page.

    Args:
        url: Page URL (any fragment is dropped)
        soup: Parsed page; exclusion selectors are applied to it in place
        selectors: Selector set routed for this URL
        rank: Page rank from the start_urls rule that matched
        selectors_exclude: Selectors whose elements are removed before extraction
        default_tags: Config-level tags used when the page declares none

    Returns:
        Documents in emission order
    """
    base_url, _ = urldefrag(url)

    remove_excluded(soup, selectors_exclude or [])

    page_meta = {
        "product": extract_product(soup),
        "breadcrumb": extract_breadcrumb(soup, selectors),
        "tags": extract_tags(soup, selectors, default_tags or []),
    }

    lvl0_spec = selectors.level(0)
    lvl1_spec = selectors.level(1)
    lvl0 = resolve_global(soup, lvl0_spec) or lvl0_spec.default_value
    global_lvl1 = resolve_global(soup, lvl1_spec)

    heading_selectors = [
        (level, selectors.level(level).selector)
        for level in range(1, len(LEVELS))
        if is_valid_selector(selectors.level(level).selector)
    ]
    text_selector = selectors.text.selector if is_valid_selector(selectors.text.selector) else ""

    combined = ", ".join([selector for _, selector in heading_selectors] + ([text_selector] if text_selector else []))
    elements = query_all(soup, combined)
    total = len(elements)

    documents: list[SearchDocument] = []

    if not query_all(soup, text_selector):
        lvl1 = global_lvl1 or element_text(query_one(soup, lvl1_spec.selector))
        if lvl1:
            state = HierarchyState(lvl0=lvl0, lvl1=lvl1)
            documents.append(
                SearchDocument(
                    objectID=object_id(base_url, None, 0),
                    url=base_url,
                    url_without_anchor=base_url,
                    content="",
                    type="lvl1",
                    item_priority=item_priority(rank, state.depth(), total),
                    **state.snapshot(),
                    **page_meta,
                )
            )
        logger.debug(f"[EXTRACT] {base_url}: no text elements, {len(documents)} page document(s)")
        return documents

    state = HierarchyState(lvl0=lvl0, lvl1=global_lvl1)
    anchor: str | None = None
    content_index = 0

    for element in elements:
        level = next((lvl for lvl, selector in heading_selectors if matches(element, selector)), None)
        if level is not None:
            state.set_level(level, element_text(element))
            anchor = element.get("id") or None
            continue

        if not matches(element, text_selector):
            continue

        position = total - content_index
        content_index += 1

        content = element_text(element)
        if len(content) <= MIN_CONTENT_LENGTH:
            continue

        documents.append(
            SearchDocument(
                objectID=object_id(base_url, anchor, len(documents)),
                url=f"{base_url}#{anchor}" if anchor else base_url,
                url_without_anchor=base_url,
                anchor=anchor,
                content=content,
                type="content",
                item_priority=item_priority(rank, state.depth(), position),
                **state.snapshot(),
                **page_meta,
            )
        )

    logger.debug(f"[EXTRACT] {base_url}: {total} candidates, {len(documents)} documents")
    return documents
