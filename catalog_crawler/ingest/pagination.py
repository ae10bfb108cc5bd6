"""Pagination/load-more state machine for lazily loaded category pages.

Per task the engine moves LOADING -> SCROLLING <-> CLICKING -> STALLED -> DONE.
All counters live in a ``PaginationContext`` created for the task, so no
state is shared between tasks.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from catalog_crawler.config import settings
from catalog_crawler.ingest.base import MergeResult
from catalog_crawler.ingest.page_extractor import PageExtractor
from catalog_crawler.ingest.surface import RenderSurface
from catalog_crawler import metrics

logger = logging.getLogger(__name__)

LOAD_MORE_ATTR = "data-crawler-load-more"
LOAD_MORE_SELECTOR = f"[{LOAD_MORE_ATTR}]"

SCROLL_HEIGHT_JS = "() => document.body.scrollHeight"
SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"

# Tags the first visible "load more" control so it can be clicked natively
FIND_LOAD_MORE_JS = """
({pattern, classMarker, attr}) => {
    document.querySelectorAll('[' + attr + ']').forEach(el => el.removeAttribute(attr));
    const re = new RegExp(pattern, 'i');
    const candidates = Array.from(document.querySelectorAll('button, a, [role="button"]'));
    const found = candidates.find(el => {
        const text = (el.innerText || '').trim();
        const cls = typeof el.className === 'string' ? el.className : '';
        return re.test(text) || (classMarker && cls.includes(classMarker));
    });
    if (!found || found.disabled) {
        return false;
    }
    found.setAttribute(attr, '1');
    return true;
}
"""

FORCE_CLICK_JS = """
(attr) => {
    const el = document.querySelector('[' + attr + ']');
    if (!el) {
        return false;
    }
    el.click();
    return true;
}
"""

SaveCallback = Callable[[str], Awaitable[MergeResult]]
Sleep = Callable[[float], Awaitable[None]]


class PaginationState(str, Enum):
    LOADING = "loading"
    SCROLLING = "scrolling"
    CLICKING = "clicking"
    STALLED = "stalled"
    DONE = "done"


@dataclass
class PaginationConfig:
    """Fixed waits and budgets of the pagination engine."""

    settle_delay: float = 5.0
    scroll_delay: float = 3.0
    click_delay: float = 5.0
    click_timeout_ms: int = 5000
    stuck_threshold: int = 3
    no_change_threshold: int = 3
    min_products: int = 40
    save_interval: int = 20
    max_cycles: int = 1000
    load_more_pattern: str = (
        r"mostrar\s*m[áa]s|ver\s*m[áa]s|cargar\s*m[áa]s|show\s*more|load\s*more"
    )
    load_more_class_marker: str = "buttonShowMore"

    @classmethod
    def from_settings(cls) -> "PaginationConfig":
        return cls(
            settle_delay=settings.settle_delay_seconds,
            scroll_delay=settings.scroll_delay_seconds,
            click_delay=settings.click_delay_seconds,
            stuck_threshold=settings.stuck_threshold,
            no_change_threshold=settings.no_change_threshold,
            min_products=settings.min_products,
            save_interval=settings.save_interval,
            max_cycles=settings.max_pagination_cycles,
        )


@dataclass
class PaginationContext:
    """Per-task state of the pagination engine."""

    state: PaginationState = PaginationState.LOADING
    item_count: int = 0
    last_saved_count: int = 0
    previous_height: Optional[int] = None
    stuck_count: int = 0
    no_change_count: int = 0
    cycles: int = 0
    clicks: int = 0
    saves: int = 0
    stop_reason: str = ""

    def stop(self, reason: str, stalled: bool = False) -> None:
        self.stop_reason = reason
        self.state = PaginationState.STALLED if stalled else PaginationState.DONE


class PaginationEngine:
    """
    Drives infinite scroll and "load more" pagination until content stops growing.

    Every time the on-page item count grows by ``save_interval`` since the
    last save, the save callback runs, bounding data loss from a crash
    mid-task. One final save always runs when the engine reaches DONE.
    """

    def __init__(
        self,
        extractor: PageExtractor,
        config: Optional[PaginationConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.extractor = extractor
        self.config = config or PaginationConfig.from_settings()
        self._sleep = sleep

    async def run(self, surface: RenderSurface, save: SaveCallback) -> PaginationContext:
        """
        Run the state machine on a loaded surface.

        Args:
            surface: Surface already navigated to the task URL
            save: Extract-and-merge callback, called with a pass label

        Returns:
            Final context (state DONE)
        """
        ctx = PaginationContext()
        await self._sleep(self.config.settle_delay)
        ctx.state = PaginationState.SCROLLING

        while ctx.state in (PaginationState.SCROLLING, PaginationState.CLICKING):
            if ctx.cycles >= self.config.max_cycles:
                logger.warning(f"Pagination cycle cap ({self.config.max_cycles}) reached, finishing")
                ctx.stop("cycle_cap", stalled=True)
                break

            ctx.cycles += 1
            metrics.pagination_cycles_total.inc()

            if ctx.state == PaginationState.SCROLLING:
                await self._scroll_cycle(surface, ctx, save)
            else:
                await self._click_cycle(surface, ctx, save)

        if ctx.state == PaginationState.STALLED:
            ctx.state = PaginationState.DONE
        metrics.pagination_stops_total.labels(reason=ctx.stop_reason or "unknown").inc()

        await save("Final")
        ctx.saves += 1
        return ctx

    async def _scroll_cycle(self, surface: RenderSurface, ctx: PaginationContext, save: SaveCallback) -> None:
        ctx.previous_height = await self._measure_height(surface)
        try:
            await surface.evaluate(SCROLL_TO_BOTTOM_JS)
        except Exception as e:
            logger.warning(f"Scroll error: {e}")
        await self._sleep(self.config.scroll_delay)

        ctx.item_count = await self._measure_count(surface, ctx)
        logger.info(f"Current products loaded: {ctx.item_count}")
        await self._maybe_save(ctx, save)

        if await self._find_load_more(surface):
            logger.info('Found "Show More" button')
            ctx.state = PaginationState.CLICKING
            return

        new_height = await self._measure_height(surface)
        if new_height is not None and ctx.previous_height is not None and new_height != ctx.previous_height:
            ctx.no_change_count = 0
            return

        ctx.no_change_count += 1
        if ctx.item_count >= self.config.min_products:
            logger.info("Target reached and no more scrollable content or button. Finishing category")
            ctx.stop("target_reached")
        elif ctx.no_change_count >= self.config.no_change_threshold:
            logger.info("No more products loading after retries. Finishing category")
            ctx.stop("no_more_content", stalled=True)
        else:
            logger.info(
                f"Reached bottom but only found {ctx.item_count} products "
                f"(target: {self.config.min_products}). Waiting... "
                f"({ctx.no_change_count}/{self.config.no_change_threshold})"
            )

    async def _click_cycle(self, surface: RenderSurface, ctx: PaginationContext, save: SaveCallback) -> None:
        before = ctx.item_count
        ctx.clicks += 1

        try:
            await surface.click(LOAD_MORE_SELECTOR, timeout_ms=self.config.click_timeout_ms)
        except Exception as e:
            logger.debug(f"Native click on load-more failed: {e}")
        await self._sleep(self.config.click_delay)
        after = await self._measure_count(surface, ctx)

        if after <= before:
            # Overlays or detached handlers can swallow the native click
            try:
                await surface.evaluate(FORCE_CLICK_JS, LOAD_MORE_ATTR)
            except Exception as e:
                logger.warning(f"Error clicking Show More: {e}")
            await self._sleep(self.config.click_delay)
            after = await self._measure_count(surface, ctx)

        ctx.item_count = after
        await self._maybe_save(ctx, save)

        if after > before:
            ctx.stuck_count = 0
        else:
            ctx.stuck_count += 1
            logger.warning(
                f"Button clicked but count didn't increase "
                f"(Stuck: {ctx.stuck_count}/{self.config.stuck_threshold})"
            )
            if ctx.stuck_count >= self.config.stuck_threshold:
                logger.warning("Button seems stuck. Stopping click attempts")
                ctx.stop("load_more_stuck", stalled=True)
                return

        ctx.state = PaginationState.SCROLLING

    async def _maybe_save(self, ctx: PaginationContext, save: SaveCallback) -> None:
        if ctx.item_count - ctx.last_saved_count < self.config.save_interval:
            return
        try:
            await save("Intermediate")
        except Exception as e:
            logger.warning(f"Intermediate save failed: {e}")
            return
        ctx.last_saved_count = ctx.item_count
        ctx.saves += 1

    async def _measure_count(self, surface: RenderSurface, ctx: PaginationContext) -> int:
        try:
            return await self.extractor.count_items(surface)
        except Exception as e:
            logger.warning(f"Could not count products: {e}")
            return ctx.item_count

    async def _measure_height(self, surface: RenderSurface) -> Optional[int]:
        try:
            height = await surface.evaluate(SCROLL_HEIGHT_JS)
            return int(height) if height is not None else None
        except Exception as e:
            logger.warning(f"Could not measure page height: {e}")
            return None

    async def _find_load_more(self, surface: RenderSurface) -> bool:
        try:
            return bool(await surface.evaluate(
                FIND_LOAD_MORE_JS,
                {
                    "pattern": self.config.load_more_pattern,
                    "classMarker": self.config.load_more_class_marker,
                    "attr": LOAD_MORE_ATTR,
                },
            ))
        except Exception as e:
            logger.warning(f"Could not look for load-more button: {e}")
            return False
