"""Product card extraction from rendered storefront HTML.

Extraction runs over a snapshot of the rendered document with selectolax,
using a ranked chain of selector strategies. Each strategy returns an empty
list when it finds nothing so the next one can be tried.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from selectolax.parser import HTMLParser, Node

from catalog_crawler.ingest.base import Record, Task

logger = logging.getLogger(__name__)

MODE_STRICT = "strict"
MODE_LENIENT = "lenient"

# Canonical edge length for upgraded product images
CANONICAL_IMAGE_SIZE = 1000

_SIZE_SEGMENT = re.compile(r"(?<!\d)(\d{2,4})x(\d{2,4})(?!\d)")
_VTEX_IDS_SEGMENT = re.compile(r"(/ids/\d+)-(\d+)-(\d+)")
_SIZE_QUERY_PARAMS = {"width", "height", "w", "h"}

_SKIP_TAGS = {"script", "style", "noscript", "template", "svg"}
_NAME_TAGS = {"h1", "h2", "h3", "h4", "h5", "span", "div", "p", "a"}


def parse_price(price_text: Optional[str]) -> Optional[float]:
    """
    Parse a locale-formatted price.

    Accepts "S/ 12.50", "1,234.56", "1.234,56" and "12,50" styles. When both
    separators appear, the last one is the decimal separator. A lone separator
    (comma or period) is a thousands separator only when exactly three digits
    follow it, so "1,234" and "1.234" both read as 1234.

    Returns:
        Positive price, or None when the text holds no usable number
    """
    if not price_text:
        return None

    cleaned = re.sub(r"[^\d,.]", "", str(price_text).replace("\xa0", " "))
    cleaned = cleaned.strip(",.")
    if not re.search(r"\d", cleaned):
        return None

    has_comma = "," in cleaned
    has_dot = "." in cleaned
    if has_comma and has_dot:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif has_comma:
        head, _, tail = cleaned.rpartition(",")
        if cleaned.count(",") > 1 or len(tail) == 3:
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = f"{head}.{tail}"
    elif has_dot and (cleaned.count(".") > 1 or len(cleaned.rpartition(".")[2]) == 3):
        cleaned = cleaned.replace(".", "")

    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        logger.debug("Failed to parse price: %s", price_text, exc_info=exc)
        return None

    if value.is_nan() or value <= 0:
        return None
    return float(value)


def normalize_image_url(url: Optional[str], size: int = CANONICAL_IMAGE_SIZE) -> str:
    """
    Prefer a high-resolution variant of a product image URL.

    Rewrites embedded "WxH" and VTEX "/ids/<id>-W-H" size segments to the
    canonical size when they are smaller, and drops width/height query
    parameters.
    """
    if not url:
        return ""

    parts = urlsplit(url.strip())

    def _upgrade_wxh(match: re.Match) -> str:
        width, height = int(match.group(1)), int(match.group(2))
        if width >= size and height >= size:
            return match.group(0)
        return f"{size}x{size}"

    def _upgrade_vtex(match: re.Match) -> str:
        width, height = int(match.group(2)), int(match.group(3))
        if width >= size and height >= size:
            return match.group(0)
        return f"{match.group(1)}-{size}-{size}"

    path = _VTEX_IDS_SEGMENT.sub(_upgrade_vtex, parts.path)
    path = _SIZE_SEGMENT.sub(_upgrade_wxh, path)

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in _SIZE_QUERY_PARAMS
    ]
    return urlunsplit((parts.scheme, parts.netloc, path, urlencode(query), parts.fragment))


@dataclass
class ExtractionRules:
    """Site-specific projection from a product card to a record."""

    card_selector: str = ".vtex-product-summary-2-x-element, .vtex-search-result-3-x-galleryItem"
    name_selector: str = ".vtex-product-summary-2-x-productBrand"
    price_selector: str = ".vtex-product-price-1-x-sellingPriceValue"
    image_selector: str = "img.vtex-product-summary-2-x-imageNormal"
    link_selector: str = "a.vtex-product-summary-2-x-clearLink"
    price_marker: str = "S/"
    mode: str = MODE_LENIENT
    max_ancestor_depth: int = 8


@dataclass
class CardFields:
    """Raw fields pulled from one product card."""

    name: str = ""
    price_text: str = ""
    image: str = ""
    link: str = ""


def _text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return " ".join(node.text(deep=True, separator=" ").split())


def _image_src(node: Optional[Node]) -> str:
    if node is None:
        return ""
    attrs = node.attributes
    src = attrs.get("src") or attrs.get("data-src") or ""
    if not src and attrs.get("data-srcset"):
        src = attrs["data-srcset"].split(",")[0].strip().split(" ")[0]
    if src.startswith("data:"):
        return ""
    return src


def _href(node: Optional[Node]) -> str:
    if node is None:
        return ""
    href = (node.attributes.get("href") or "").strip()
    if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
        return ""
    return href


def _has_element_children(node: Node) -> bool:
    return any(True for _ in node.iter(include_text=False))


def _descendants(node: Node) -> Iterator[Node]:
    """Element descendants of ``node`` in document order, never leaving its subtree."""
    for child in node.iter(include_text=False):
        yield child
        yield from _descendants(child)


class SelectorStrategy:
    """Base class for card selector strategies."""

    name: str = "base"

    def find_cards(self, tree: HTMLParser, rules: ExtractionRules) -> List[CardFields]:
        """
        Locate product cards and pull their raw fields.

        Returns:
            Cards found, or an empty list when the strategy does not apply
        """
        raise NotImplementedError


class StructuralCardStrategy(SelectorStrategy):
    """Match cards by the storefront's own component classes."""

    name = "structural"

    def find_cards(self, tree: HTMLParser, rules: ExtractionRules) -> List[CardFields]:
        cards = []
        for card in tree.css(rules.card_selector):
            name_el = card.css_first(rules.name_selector) if rules.name_selector else None
            price_el = card.css_first(rules.price_selector) if rules.price_selector else None
            img_el = card.css_first(rules.image_selector) or card.css_first("img")
            link_el = card.css_first(rules.link_selector) or card.css_first("a[href]")
            cards.append(CardFields(
                name=_text(name_el),
                price_text=_text(price_el),
                image=_image_src(img_el),
                link=_href(link_el),
            ))
        return cards


class GenericCardStrategy(SelectorStrategy):
    """
    Heuristic fallback: find visible price text and walk up to the card.

    For every leaf element containing the currency marker, the nearest
    ancestor holding both an image and a link is taken as the card (or the
    nearest one with an image, when no ancestor has a link).
    """

    name = "generic"

    def _find_container(self, leaf: Node, rules: ExtractionRules) -> Optional[Node]:
        with_image = None
        parent = leaf.parent
        depth = 0
        while parent is not None and depth < rules.max_ancestor_depth:
            if parent.tag in ("body", "html"):
                break
            if parent.css_first("img") is not None:
                if parent.css_first("a[href]") is not None:
                    return parent
                if with_image is None:
                    with_image = parent
            parent = parent.parent
            depth += 1
        return with_image

    def _card_name(self, card: Node, marker: str) -> str:
        best = ""
        for node in _descendants(card):
            if node.tag not in _NAME_TAGS or _has_element_children(node):
                continue
            text = _text(node)
            if len(text) < 3 or marker in text or not re.search(r"[^\W\d_]", text):
                continue
            if len(text) > len(best):
                best = text
        return best

    def find_cards(self, tree: HTMLParser, rules: ExtractionRules) -> List[CardFields]:
        if tree.body is None or not rules.price_marker:
            return []

        price_pattern = re.compile(re.escape(rules.price_marker) + r"\.?\s*[\d.,]+")
        seen: set[int] = set()
        cards = []
        for node in _descendants(tree.body):
            if node.tag in _SKIP_TAGS or _has_element_children(node):
                continue
            text = _text(node)
            if rules.price_marker not in text:
                continue

            card = self._find_container(node, rules)
            if card is None or card.mem_id in seen:
                continue
            seen.add(card.mem_id)

            match = price_pattern.search(_text(card))
            cards.append(CardFields(
                name=self._card_name(card, rules.price_marker),
                price_text=match.group(0) if match else text,
                image=_image_src(card.css_first("img")),
                link=_href(card.css_first("a[href]")),
            ))
        return cards


DEFAULT_STRATEGIES: Sequence[SelectorStrategy] = (StructuralCardStrategy(), GenericCardStrategy())


def _to_record(card: CardFields, task: Task, rules: ExtractionRules) -> Optional[Record]:
    name = card.name.strip()
    if not name:
        return None

    price = parse_price(card.price_text)
    link = urljoin(task.url, card.link) if card.link else ""

    if rules.mode == MODE_STRICT:
        if price is None:
            return None
    elif price is None and not link:
        return None

    image = normalize_image_url(urljoin(task.url, card.image)) if card.image else ""
    return Record(
        category=task.category,
        subcategory=task.subcategory,
        name=name,
        price=price or 0.0,
        image=image,
        link=link,
    )


def extract_candidates(
    html: str,
    task: Task,
    rules: Optional[ExtractionRules] = None,
    strategies: Sequence[SelectorStrategy] = DEFAULT_STRATEGIES,
) -> List[Record]:
    """
    Extract candidate records from a rendered page.

    Strategies are tried in rank order; the first one yielding at least one
    usable record wins. Candidates are unique by identity key within a pass.
    """
    rules = rules or ExtractionRules()
    if not html:
        return []

    tree = HTMLParser(html)
    for strategy in strategies:
        cards = strategy.find_cards(tree, rules)
        if not cards:
            continue

        records: List[Record] = []
        seen_keys: set[str] = set()
        for card in cards:
            record = _to_record(card, task, rules)
            if record is None or record.identity_key in seen_keys:
                continue
            seen_keys.add(record.identity_key)
            records.append(record)

        if records:
            logger.debug(
                f"Strategy '{strategy.name}' extracted {len(records)} of {len(cards)} cards from {task.url}"
            )
            return records
        logger.debug(f"Strategy '{strategy.name}' found {len(cards)} cards but none usable on {task.url}")

    return []
