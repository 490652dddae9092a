"""Heuristic extraction of product data from rendered HTML.

Each field category (search headings, search result titles, product
overview, product features) has an ordered chain of strategies. A strategy is
a plain function ``(soup, limit) -> list | dict``; :func:`run_strategies`
calls them in order and stops at the first one that returns anything.

Strategies share a small set of post-filters: exclusive length bounds,
price/parenthetical exclusions, de-duplication (first occurrence wins) and an
optional leading skip.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

Extracted = Union[List[str], Dict[str, str]]
Strategy = Callable[[BeautifulSoup, Optional[int]], Extracted]

CURRENCY_SYMBOLS = ('$', '€', '£', '¥', '₹')
DETAIL_ENTRY_LIMIT = 20
TEXT_BLOCK_LIMIT = 5

_WHITESPACE = re.compile(r'\s+')


@dataclass(frozen=True)
class TextFilter:
    """Accept/reject rule for candidate strings. Length bounds are exclusive."""

    min_length: int = 0
    max_length: Optional[int] = None
    exclude_currency: bool = False
    exclude_leading_paren: bool = False

    def accepts(self, text: str) -> bool:
        if not text or not text.strip():
            return False
        if len(text) <= self.min_length:
            return False
        if self.max_length is not None and len(text) >= self.max_length:
            return False
        if self.exclude_currency and any(symbol in text for symbol in CURRENCY_SYMBOLS):
            return False
        if self.exclude_leading_paren and text.startswith('('):
            return False
        return True


NON_BLANK = TextFilter()


@dataclass(frozen=True)
class StrategyResult:
    """Winning value of a chain and the name of the strategy that produced it."""

    value: Extracted
    strategy: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.value)


def clean_text(value: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE.sub(' ', value or '').strip()


def node_text(node: Tag) -> str:
    return clean_text(node.get_text(separator=' ', strip=True))


def dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        unique.append(item)
    return unique


def collect_texts(
    nodes: Iterable[Tag],
    text_filter: TextFilter = NON_BLANK,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[str]:
    """Texts of ``nodes`` in document order: filtered, de-duplicated, skipped, capped."""
    texts = dedupe(t for t in (node_text(n) for n in nodes) if text_filter.accepts(t))
    texts = texts[skip:]
    if limit is not None:
        texts = texts[:limit]
    return texts


def strategy_name(strategy: Callable) -> str:
    return getattr(strategy, '__name__', repr(strategy))


def run_strategies(
    strategies: Sequence[Strategy],
    soup: BeautifulSoup,
    limit: Optional[int] = None,
) -> StrategyResult:
    """Return the first non-empty strategy result; later strategies are not called."""
    for strategy in strategies:
        value = strategy(soup, limit)
        if value:
            name = strategy_name(strategy)
            logger.debug('[EXTRACT] %s produced %d item(s)', name, len(value))
            return StrategyResult(value=value, strategy=name)
    logger.debug('[EXTRACT] No strategy produced results (%d tried)', len(strategies))
    return StrategyResult(value=[])


# ---------------------------------------------------------------------------
# Search headings
# ---------------------------------------------------------------------------

def shopping_product_headings(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    """Headings of shopping result cards."""
    nodes = soup.select('div[data-docid] h3, div[data-content-id] h3, h3.tAxDx')
    return collect_texts(nodes, limit=limit)


def generic_h3_headings(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    return collect_texts(soup.find_all('h3'), TextFilter(min_length=10, max_length=200), limit=limit)


def pla_unit_titles(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    """Titles inside product listing ad units."""
    nodes = soup.select('div[class*="pla-unit"] span[class*="title"]')
    return collect_texts(nodes, limit=limit)


HEADING_STRATEGIES: Tuple[Strategy, ...] = (
    shopping_product_headings,
    generic_h3_headings,
    pla_unit_titles,
)


# ---------------------------------------------------------------------------
# Search result titles
# ---------------------------------------------------------------------------

def h2_titles(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    # The first two h2 elements on a results page are page chrome.
    return collect_texts(soup.find_all('h2'), TextFilter(min_length=15, max_length=300), skip=2, limit=limit)


def span_titles(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    text_filter = TextFilter(min_length=20, max_length=200, exclude_currency=True, exclude_leading_paren=True)
    return collect_texts(soup.find_all('span'), text_filter, limit=limit)


SEARCH_TITLE_STRATEGIES: Tuple[Strategy, ...] = (
    h2_titles,
    span_titles,
)


# ---------------------------------------------------------------------------
# Product overview (label -> value)
# ---------------------------------------------------------------------------

def table_overview(soup: BeautifulSoup, limit: Optional[int] = None) -> Dict[str, str]:
    """Rows of any table that pair a header cell with a data cell."""
    overview: Dict[str, str] = {}
    for row in soup.select('table tr'):
        th = row.find('th')
        td = row.find('td')
        if th is None or td is None:
            continue
        label = node_text(th)
        value = node_text(td)
        if not label or not value or len(label) >= 100 or len(value) >= 500:
            continue
        overview.setdefault(label, value)
        if limit is not None and len(overview) >= limit:
            break
    return overview


def detail_entry_overview(soup: BeautifulSoup, limit: Optional[int] = None) -> Dict[str, str]:
    """``label: value`` text inside detail-section entries."""
    overview: Dict[str, str] = {}
    for div in soup.select('div[class*="prodDetSectionEntry"]')[:DETAIL_ENTRY_LIMIT]:
        text = node_text(div)
        if ':' not in text:
            continue
        label, value = (part.strip() for part in text.split(':', 1))
        if label and value:
            overview.setdefault(label, value)
        if limit is not None and len(overview) >= limit:
            break
    return overview


OVERVIEW_STRATEGIES: Tuple[Strategy, ...] = (
    table_overview,
    detail_entry_overview,
)


# ---------------------------------------------------------------------------
# Product features ("about this item")
# ---------------------------------------------------------------------------

def _bullet_texts(soup: BeautifulSoup, container_selector: str, limit: Optional[int]) -> List[str]:
    spans = []
    for li in soup.select(f'{container_selector} li'):
        span = li.select_one('span[class*="a-list-item"]')
        if span is not None:
            spans.append(span)
    return collect_texts(spans, TextFilter(min_length=10), limit=limit)


def feature_bullets(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    return _bullet_texts(soup, 'div#feature-bullets', limit)


def detail_bullets(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    return _bullet_texts(soup, 'div#detailBullets_feature_div', limit)


def generic_list_items(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    """Longest qualifying list items first; ties keep document order."""
    text_filter = TextFilter(min_length=20, max_length=500, exclude_currency=True, exclude_leading_paren=True)
    items = sorted(collect_texts(soup.find_all('li'), text_filter), key=len, reverse=True)
    return items[:limit] if limit is not None else items


def text_blocks(soup: BeautifulSoup, limit: Optional[int] = None) -> List[str]:
    cap = TEXT_BLOCK_LIMIT if limit is None else min(limit, TEXT_BLOCK_LIMIT)
    return collect_texts(soup.find_all('div'), TextFilter(min_length=50, max_length=1000), limit=cap)


FEATURE_STRATEGIES: Tuple[Strategy, ...] = (
    feature_bullets,
    detail_bullets,
    generic_list_items,
    text_blocks,
)


# ---------------------------------------------------------------------------
# Chain lookup
# ---------------------------------------------------------------------------

DEFAULT_CHAINS: Dict[str, Tuple[Strategy, ...]] = {
    'headings': HEADING_STRATEGIES,
    'search': SEARCH_TITLE_STRATEGIES,
    'overview': OVERVIEW_STRATEGIES,
    'features': FEATURE_STRATEGIES,
}

STRATEGY_REGISTRY: Dict[str, Strategy] = {
    strategy_name(s): s for chain in DEFAULT_CHAINS.values() for s in chain
}


def build_chain(category: str, order: Optional[Sequence[str]] = None) -> Tuple[Strategy, ...]:
    """Strategy chain for ``category``, optionally reordered/subset by name."""
    if category not in DEFAULT_CHAINS:
        raise ValueError(f"Unknown extraction category '{category}'")
    if not order:
        return DEFAULT_CHAINS[category]
    unknown = [name for name in order if name not in STRATEGY_REGISTRY]
    if unknown:
        raise ValueError(f"Unknown extraction strategies for '{category}': {', '.join(unknown)}")
    return tuple(STRATEGY_REGISTRY[name] for name in order)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or '', 'lxml')
