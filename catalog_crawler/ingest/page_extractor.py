"""Render-and-extract adapter: drives one task through a rendering surface."""

import logging
from typing import List, Optional, Sequence

from catalog_crawler.config import settings
from catalog_crawler.ingest.base import Record, Task
from catalog_crawler.ingest.errors import ExtractionError
from catalog_crawler.ingest.extraction import (
    DEFAULT_STRATEGIES,
    ExtractionRules,
    SelectorStrategy,
    extract_candidates,
)
from catalog_crawler.ingest.surface import RenderEngine, RenderSurface
from catalog_crawler import metrics

logger = logging.getLogger(__name__)

COUNT_ITEMS_JS = "(selector) => document.querySelectorAll(selector).length"


class PageExtractor:
    """Opens a fresh surface per task and projects its DOM into candidate records."""

    def __init__(
        self,
        rules: Optional[ExtractionRules] = None,
        strategies: Sequence[SelectorStrategy] = DEFAULT_STRATEGIES,
        wait_until: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.rules = rules or ExtractionRules(mode=settings.extraction_mode)
        self.strategies = strategies
        self.wait_until = wait_until or settings.navigation_wait_until
        self.timeout_ms = settings.navigation_timeout_ms if timeout_ms is None else timeout_ms

    async def render(self, engine: RenderEngine, task: Task) -> RenderSurface:
        """
        Open a new surface and load the task URL.

        Raises:
            SurfaceError: If the engine cannot open a surface
            NavigationError: If the page fails to load
        """
        surface = await engine.new_surface()
        try:
            await surface.navigate(task.url, wait_until=self.wait_until, timeout_ms=self.timeout_ms)
        except BaseException:
            await self.release(surface)
            raise
        return surface

    async def release(self, surface: RenderSurface) -> None:
        try:
            await surface.close()
        except Exception as e:
            logger.debug(f"Error closing surface: {e}")

    async def extract(self, surface: RenderSurface, task: Task) -> List[Record]:
        """
        Extract candidate records from the current state of the page.

        Raises:
            ExtractionError: If the page query fails
        """
        try:
            html = await surface.content()
            return extract_candidates(html, task, self.rules, self.strategies)
        except Exception as e:
            metrics.extraction_errors_total.inc()
            raise ExtractionError(task.url, str(e)) from e

    async def count_items(self, surface: RenderSurface) -> int:
        """Number of product cards currently attached to the page."""
        count = await surface.evaluate(COUNT_ITEMS_JS, self.rules.card_selector)
        return int(count or 0)
