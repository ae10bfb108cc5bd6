"""Playwright implementation of the rendering collaborator."""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from catalog_crawler.config import settings
from catalog_crawler.ingest.errors import LaunchError, NavigationError, SurfaceError
from catalog_crawler.ingest.surface import RenderEngine, RenderSurface

logger = logging.getLogger(__name__)


@dataclass
class EngineOptions:
    """Browser launch and surface options."""

    headless: bool = True
    args: List[str] = field(default_factory=list)
    user_agent: str = ""
    viewport_width: int = 1366
    viewport_height: int = 768
    default_timeout_ms: int = 0

    @classmethod
    def from_settings(cls) -> "EngineOptions":
        return cls(
            headless=settings.headless,
            args=list(settings.browser_args),
            user_agent=settings.user_agent,
            viewport_width=settings.viewport_width,
            viewport_height=settings.viewport_height,
            default_timeout_ms=settings.navigation_timeout_ms,
        )


class PlaywrightSurface(RenderSurface):
    """A page in its own browser context, so no state leaks between tasks."""

    def __init__(self, context: BrowserContext, page: Page):
        self._context = context
        self._page = page

    @property
    def page(self) -> Page:
        return self._page

    async def navigate(self, url: str, wait_until: str = "networkidle", timeout_ms: int = 0) -> None:
        try:
            response = await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(url, f"timeout after {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(url, str(e)) from e

        if response is not None and response.status >= 400:
            logger.warning(f"HTTP {response.status} for {url}, extracting whatever rendered")

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(expression)
        return await self._page.evaluate(expression, arg)

    async def content(self) -> str:
        return await self._page.content()

    async def click(self, selector: str, timeout_ms: int = 5000) -> None:
        await self._page.click(selector, timeout=timeout_ms)

    async def close(self) -> None:
        try:
            await self._page.close()
        finally:
            await self._context.close()


class PlaywrightEngine(RenderEngine):
    """One Chromium process driven through Playwright."""

    def __init__(self, playwright: Playwright, browser: Browser, options: EngineOptions):
        self._playwright = playwright
        self._browser = browser
        self.options = options

    @classmethod
    async def launch(cls, options: Optional[EngineOptions] = None) -> "PlaywrightEngine":
        """
        Start Playwright and launch Chromium.

        Raises:
            LaunchError: If the browser cannot be started
        """
        options = options or EngineOptions.from_settings()
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=options.headless,
                args=options.args,
            )
        except PlaywrightError as e:
            await playwright.stop()
            raise LaunchError(f"Could not launch Chromium: {e}") from e

        logger.debug(f"Browser launched (headless={options.headless})")
        return cls(playwright, browser, options)

    async def new_surface(self) -> PlaywrightSurface:
        context_options = {
            "viewport": {
                "width": self.options.viewport_width,
                "height": self.options.viewport_height,
            },
        }
        if self.options.user_agent:
            context_options["user_agent"] = self.options.user_agent

        try:
            context = await self._browser.new_context(**context_options)
            page = await context.new_page()
        except PlaywrightError as e:
            raise SurfaceError(f"Could not open a new page: {e}") from e

        page.set_default_navigation_timeout(self.options.default_timeout_ms)
        page.set_default_timeout(self.options.default_timeout_ms)
        return PlaywrightSurface(context, page)

    async def close(self) -> None:
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()


async def launch_engine() -> PlaywrightEngine:
    """Engine launcher used by the crawl lease."""
    return await PlaywrightEngine.launch(EngineOptions.from_settings())
