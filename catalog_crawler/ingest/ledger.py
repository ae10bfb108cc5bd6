"""Durable set of completed task URLs for resumable crawls."""

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from catalog_crawler.config import settings
from catalog_crawler.ingest.base import GENERIC_SUBCATEGORY, Task, is_generic_subcategory
from catalog_crawler.ingest.errors import PersistenceWriteError
from catalog_crawler.utils.files import read_json, write_json_atomic
from catalog_crawler import metrics

logger = logging.getLogger(__name__)


class ProgressLedger:
    """
    Completed-URL ledger backed by a JSON array file.

    The file is read once at construction and rewritten after every
    ``mark_done``. Completion is monotonic; generic (category page) tasks
    are always revisited because their completeness cannot be verified.
    """

    def __init__(self, path: str | Path, generic_label: str = GENERIC_SUBCATEGORY):
        self.path = Path(path)
        self.generic_label = generic_label
        self._done: List[str] = []
        self._done_set: set[str] = set()
        self._dirty = False

        loaded = read_json(self.path, default=[])
        if not isinstance(loaded, list):
            logger.warning(f"Ledger {self.path} is not a JSON array, starting empty")
            loaded = []
        self._extend(url for url in loaded if isinstance(url, str))

        logger.info(f"Progress ledger loaded: {len(self._done)} completed URLs from {self.path}")

    def _extend(self, urls: Iterable[str]) -> None:
        for url in urls:
            if url not in self._done_set:
                self._done_set.add(url)
                self._done.append(url)

    def __len__(self) -> int:
        return len(self._done)

    def __contains__(self, url: str) -> bool:
        return url in self._done_set

    @property
    def urls(self) -> List[str]:
        return list(self._done)

    @property
    def dirty(self) -> bool:
        """True when the in-memory state has not reached durable storage."""
        return self._dirty

    def is_done(self, url: str) -> bool:
        return url in self._done_set

    def should_visit(self, task: Task) -> bool:
        """Whether a task must be attempted in this run."""
        if not self.is_done(task.url):
            return True
        return is_generic_subcategory(task.subcategory, self.generic_label)

    def mark_done(self, url: str) -> None:
        """
        Record a completed URL and flush the ledger to disk immediately.

        A write failure is logged and remembered; the in-memory set stays
        authoritative and ``flush`` retries the write.
        """
        self._extend([url])
        try:
            self._write()
        except PersistenceWriteError as e:
            logger.warning(f"{e}; keeping completion of {url} in memory")

    def flush(self) -> None:
        """
        Write pending state to disk if an earlier write failed.

        Raises:
            PersistenceWriteError: If the ledger still cannot be written
        """
        if self._dirty:
            self._write()

    def _write(self) -> None:
        # Union with whatever another process has written since startup
        on_disk = read_json(self.path, default=[])
        if isinstance(on_disk, list):
            self._extend(url for url in on_disk if isinstance(url, str))
        try:
            write_json_atomic(self.path, self._done)
        except OSError as e:
            self._dirty = True
            metrics.persistence_write_errors_total.labels(target="ledger").inc()
            raise PersistenceWriteError("ledger", str(e), path=str(self.path)) from e
        self._dirty = False


def load_ledger(path: Optional[str | Path] = None, generic_label: Optional[str] = None) -> ProgressLedger:
    """Build a ledger from settings defaults."""
    return ProgressLedger(
        path or settings.done_file,
        generic_label=generic_label or settings.generic_subcategory,
    )
