"""Error taxonomy for the crawl pipeline.

Input and launch errors are fatal for a run. Every other error is handled
at the task boundary so one bad URL never aborts the crawl.
"""

from typing import Optional


class CrawlError(RuntimeError):
    """Base class for crawl pipeline errors."""
    pass


class InputError(CrawlError):
    """Task-graph file is missing or malformed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load task graph {path}: {reason}")


class LaunchError(CrawlError):
    """Rendering engine failed to start or to open a surface."""
    pass


class NavigationError(CrawlError):
    """A page failed to load (timeout or network failure)."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to load {url}: {reason}")


class ExtractionError(CrawlError):
    """A query against the loaded page raised."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Extraction failed on {url}: {reason}")


class PersistenceWriteError(CrawlError):
    """Store or ledger could not be written to durable storage."""

    def __init__(self, target: str, reason: str, path: Optional[str] = None):
        self.target = target
        self.path = path
        self.reason = reason
        where = f" ({path})" if path else ""
        super().__init__(f"Could not write {target}{where}: {reason}")


class SurfaceError(CrawlError):
    """A running engine could not open a new surface (crashed or closed browser)."""
    pass
