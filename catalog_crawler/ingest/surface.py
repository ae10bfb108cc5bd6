"""Rendering collaborator interfaces and the engine lease."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from catalog_crawler.ingest.errors import LaunchError
from catalog_crawler import metrics

logger = logging.getLogger(__name__)


class RenderSurface(ABC):
    """One page with its own script-execution context."""

    @abstractmethod
    async def navigate(self, url: str, wait_until: str = "networkidle", timeout_ms: int = 0) -> None:
        """
        Load a URL.

        Raises:
            NavigationError: On timeout or network failure
        """
        pass

    @abstractmethod
    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        """Run a script against the loaded document and return a serializable result."""
        pass

    @abstractmethod
    async def content(self) -> str:
        """Return the rendered HTML of the document."""
        pass

    @abstractmethod
    async def click(self, selector: str, timeout_ms: int = 5000) -> None:
        """Simulate a native click on the first element matching ``selector``."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class RenderEngine(ABC):
    """A rendering engine instance (one browser process)."""

    @abstractmethod
    async def new_surface(self) -> RenderSurface:
        """
        Open a fresh surface.

        Raises:
            SurfaceError: If the engine cannot open a new surface
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


EngineLauncher = Callable[[], Awaitable[RenderEngine]]


class EngineLease:
    """
    Lease over a rendering engine with a maximum-uses-before-recycle policy.

    Each ``acquire`` counts as one use. Once ``max_uses`` uses have been
    served, the next ``acquire`` tears the engine down and launches a new
    one, bounding memory growth of a long-lived browser process.
    """

    def __init__(self, launcher: EngineLauncher, max_uses: int = 5):
        self._launcher = launcher
        self.max_uses = max_uses
        self._engine: Optional[RenderEngine] = None
        self.uses = 0
        self.launches = 0

    @property
    def engine(self) -> Optional[RenderEngine]:
        return self._engine

    async def _launch(self) -> RenderEngine:
        try:
            engine = await self._launcher()
        except LaunchError:
            raise
        except Exception as e:
            raise LaunchError(f"Rendering engine failed to start: {e}") from e
        self.launches += 1
        self.uses = 0
        return engine

    async def acquire(self) -> RenderEngine:
        """Return the current engine, recycling it first when its budget is spent."""
        if self._engine is not None and self.max_uses > 0 and self.uses >= self.max_uses:
            logger.info(f"Memory cleanup: restarting browser after {self.uses} tasks")
            await self._shutdown()
            metrics.engine_recycles_total.inc()

        if self._engine is None:
            self._engine = await self._launch()

        self.uses += 1
        return self._engine

    async def invalidate(self) -> None:
        """Drop the current engine so the next ``acquire`` launches a fresh one."""
        if self._engine is None:
            return
        logger.warning("Browser looks unusable, relaunching on the next task")
        await self._shutdown()
        metrics.engine_recycles_total.inc()

    async def _shutdown(self) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return
        try:
            await engine.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")

    async def close(self) -> None:
        await self._shutdown()
