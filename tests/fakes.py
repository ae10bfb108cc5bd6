"""Fake rendering collaborators driven by the same scripts the crawler sends to a browser."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from catalog_crawler.ingest.errors import NavigationError, SurfaceError
from catalog_crawler.ingest.page_extractor import COUNT_ITEMS_JS
from catalog_crawler.ingest.pagination import (
    FIND_LOAD_MORE_JS,
    FORCE_CLICK_JS,
    LOAD_MORE_SELECTOR,
    SCROLL_HEIGHT_JS,
    SCROLL_TO_BOTTOM_JS,
)
from catalog_crawler.ingest.surface import RenderEngine, RenderSurface


def card_html(
    name: str,
    price_text: str = "S/ 10.00",
    link: str = "/producto/p",
    image: str = "https://metro.vteximg.com.br/arquivos/ids/100-500-500/img.jpg?width=500&height=500",
) -> str:
    """One VTEX product card, nested the way the storefront renders it."""
    return f"""
    <div class="vtex-search-result-3-x-galleryItem">
      <section class="vtex-product-summary-2-x-element">
        <a class="vtex-product-summary-2-x-clearLink" href="{link}">
          <img class="vtex-product-summary-2-x-imageNormal" src="{image}">
          <span class="vtex-product-summary-2-x-productBrand">{name}</span>
          <div class="vtex-product-price-1-x-sellingPrice">
            <span class="vtex-product-price-1-x-sellingPriceValue">{price_text}</span>
          </div>
        </a>
      </section>
    </div>
    """


def listing_html(cards: List[str]) -> str:
    return "<html><body><div id='gallery'>" + "".join(cards) + "</div></body></html>"


@dataclass
class PageSpec:
    """Behaviour of one simulated category page."""

    prefix: str
    initial_items: int = 5
    scroll_batches: List[int] = field(default_factory=list)
    click_batches: List[int] = field(default_factory=list)
    button: bool = False
    native_click_works: bool = True
    fail_navigation: bool = False
    fail_scroll: bool = False
    fail_content: bool = False
    price: float = 10.0


class FakeSurface(RenderSurface):
    """In-memory page driven by the same scripts the engine sends to a browser."""

    def __init__(self, site: Dict[str, PageSpec]):
        self.site = site
        self.spec: Optional[PageSpec] = None
        self.url: Optional[str] = None
        self.items = 0
        self.closed = False
        self.native_clicks = 0
        self.forced_clicks = 0
        self._scrolls = 0
        self._clicks = 0

    @property
    def height(self) -> int:
        return 500 + self.items * 100

    async def navigate(self, url: str, wait_until: str = "networkidle", timeout_ms: int = 0) -> None:
        spec = self.site.get(url)
        if spec is None or spec.fail_navigation:
            raise NavigationError(url, "net::ERR_NAME_NOT_RESOLVED")
        self.url = url
        self.spec = spec
        self.items = spec.initial_items

    def _load_more(self) -> None:
        if self._clicks < len(self.spec.click_batches):
            self.items += self.spec.click_batches[self._clicks]
        self._clicks += 1

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        if expression == SCROLL_HEIGHT_JS:
            return self.height
        if expression == SCROLL_TO_BOTTOM_JS:
            if self.spec.fail_scroll:
                raise RuntimeError("Execution context was destroyed")
            if self._scrolls < len(self.spec.scroll_batches):
                self.items += self.spec.scroll_batches[self._scrolls]
            self._scrolls += 1
            return None
        if expression == COUNT_ITEMS_JS:
            return self.items
        if expression == FIND_LOAD_MORE_JS:
            return self.spec.button
        if expression == FORCE_CLICK_JS:
            self.forced_clicks += 1
            self._load_more()
            return True
        raise AssertionError(f"Unexpected script: {expression[:60]}")

    async def content(self) -> str:
        if self.spec.fail_content:
            raise RuntimeError("Target page, context or browser has been closed")
        cards = [
            card_html(
                name=f"{self.spec.prefix} product {i}",
                price_text=f"S/ {self.spec.price:.2f}",
                link=f"/{self.spec.prefix}-product-{i}/p",
            )
            for i in range(self.items)
        ]
        return listing_html(cards)

    async def click(self, selector: str, timeout_ms: int = 5000) -> None:
        assert selector == LOAD_MORE_SELECTOR
        self.native_clicks += 1
        if self.spec.native_click_works:
            self._load_more()

    async def close(self) -> None:
        self.closed = True


class FakeEngine(RenderEngine):
    """Fake browser; with ``crash_after`` set it stops opening surfaces once that many were served."""

    def __init__(self, site: Dict[str, PageSpec], crash_after: Optional[int] = None):
        self.site = site
        self.crash_after = crash_after
        self.surfaces: List[FakeSurface] = []
        self.closed = False

    async def new_surface(self) -> FakeSurface:
        if self.crash_after is not None and len(self.surfaces) >= self.crash_after:
            raise SurfaceError("Could not open a new page: Target closed")
        surface = FakeSurface(self.site)
        self.surfaces.append(surface)
        return surface

    async def close(self) -> None:
        self.closed = True


class FakeLauncher:
    """Engine launcher that records every launch. ``crash_first_after`` breaks only the first engine."""

    def __init__(self, site: Dict[str, PageSpec], crash_first_after: Optional[int] = None):
        self.site = site
        self.crash_first_after = crash_first_after
        self.engines: List[FakeEngine] = []

    async def __call__(self) -> FakeEngine:
        crash_after = self.crash_first_after if not self.engines else None
        engine = FakeEngine(self.site, crash_after=crash_after)
        self.engines.append(engine)
        return engine


async def no_sleep(seconds: float) -> None:
    return None
