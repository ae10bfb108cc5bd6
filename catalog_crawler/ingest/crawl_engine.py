"""Crawl orchestrator: resumable, failure-isolated iteration over crawl tasks."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from catalog_crawler.ingest.base import MergeResult, Record, Task
from catalog_crawler.ingest.errors import ExtractionError, LaunchError, PersistenceWriteError, SurfaceError
from catalog_crawler.ingest.ledger import ProgressLedger
from catalog_crawler.ingest.page_extractor import PageExtractor
from catalog_crawler.ingest.pagination import PaginationEngine
from catalog_crawler.ingest.record_store import RecordMerger
from catalog_crawler.ingest.surface import EngineLease, RenderSurface
from catalog_crawler.logging_config import get_logger
from catalog_crawler import metrics

logger = logging.getLogger(__name__)


@dataclass
class TaskFailure:
    """A task that did not complete."""

    url: str
    category: str
    subcategory: str
    error: str


@dataclass
class CrawlReport:
    """Summary of one crawl run."""

    total_tasks: int
    processed: int = 0
    skipped: int = 0
    succeeded: int = 0
    failures: List[TaskFailure] = field(default_factory=list)
    merged: MergeResult = field(default_factory=MergeResult)
    total_records: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def failed_urls(self) -> List[str]:
        return [failure.url for failure in self.failures]


class CrawlEngine:
    """
    Drives tasks in order, one at a time.

    Completed tasks are skipped via the ledger (generic category pages are
    always revisited), every task gets a fresh surface, and the rendering
    engine is recycled by the lease. Any task-level error is logged and the
    run moves on; a surface that cannot be opened also forces a relaunch
    before the next task. Only a launch failure aborts the run.
    """

    def __init__(
        self,
        lease: EngineLease,
        extractor: PageExtractor,
        pagination: PaginationEngine,
        merger: RecordMerger,
        ledger: ProgressLedger,
    ):
        self.lease = lease
        self.extractor = extractor
        self.pagination = pagination
        self.merger = merger
        self.ledger = ledger

    async def run(self, tasks: List[Task]) -> CrawlReport:
        """
        Crawl every task.

        Raises:
            LaunchError: If the rendering engine cannot be started
        """
        report = CrawlReport(total_tasks=len(tasks))
        start = time.monotonic()
        logger.info(f"Total tasks (URLs) to scrape: {len(tasks)}")

        try:
            for index, task in enumerate(tasks, start=1):
                if not self.ledger.should_visit(task):
                    logger.info(f"Skipping already scraped: {task.url}")
                    report.skipped += 1
                    metrics.crawl_tasks_total.labels(status="skipped").inc()
                    continue
                if self.ledger.is_done(task.url):
                    logger.info(f"Re-checking {task.subcategory} category: {task.category} ({task.url})")

                report.processed += 1
                await self._run_task(task, index, len(tasks), report)
        finally:
            await self.lease.close()
            self._flush()

        report.total_records = self.merger.total
        report.duration_seconds = time.monotonic() - start
        self._log_summary(report)
        return report

    async def _run_task(self, task: Task, index: int, total: int, report: CrawlReport) -> None:
        task_log = get_logger(__name__, task_url=task.url, category=task.category)
        task_log.info(f"[{index}/{total}] Scraping: {task}")
        started = time.monotonic()

        engine = await self.lease.acquire()
        surface: Optional[RenderSurface] = None
        try:
            surface = await self.extractor.render(engine, task)

            async def save(label: str) -> MergeResult:
                result = await self._extract_and_merge(surface, task, label)
                report.merged += result
                return result

            ctx = await self.pagination.run(surface, save)
            self.ledger.mark_done(task.url)

            report.succeeded += 1
            metrics.crawl_tasks_total.labels(status="succeeded").inc()
            task_log.info(
                f"Finished {task.category} > {task.subcategory}: {ctx.item_count} products on page, "
                f"{ctx.cycles} cycles, stop reason '{ctx.stop_reason}'"
            )
        except LaunchError:
            raise
        except Exception as e:
            if isinstance(e, SurfaceError):
                await self.lease.invalidate()
            task_log.error(f"Error scraping {task.url}: {e}", exc_info=True)
            task_log.info("Skipping this category/subcategory and continuing to next")
            report.failures.append(TaskFailure(
                url=task.url,
                category=task.category,
                subcategory=task.subcategory,
                error=str(e),
            ))
            metrics.crawl_tasks_total.labels(status="failed").inc()
        finally:
            if surface is not None:
                await self.extractor.release(surface)
            metrics.crawl_task_duration_seconds.observe(time.monotonic() - started)

    async def _extract_and_merge(self, surface: RenderSurface, task: Task, label: str) -> MergeResult:
        try:
            candidates: List[Record] = await self.extractor.extract(surface, task)
        except ExtractionError as e:
            logger.warning(f"{label} extraction failed, treating as empty: {e}")
            candidates = []
        return self.merger.merge(candidates, task, label)

    def _flush(self) -> None:
        for name, flush in (("store", self.merger.flush), ("ledger", self.ledger.flush)):
            try:
                flush()
            except PersistenceWriteError as e:
                logger.error(f"Final {name} write failed, unsaved data will be lost: {e}")

    def _log_summary(self, report: CrawlReport) -> None:
        logger.info(
            f"Scraping finished. Tasks: {report.total_tasks} "
            f"(processed {report.processed}, skipped {report.skipped}, "
            f"succeeded {report.succeeded}, failed {report.failed}). "
            f"Total products: {report.total_records}. "
            f"Duration: {report.duration_seconds:.1f}s"
        )
        for failure in report.failures:
            logger.warning(f"Failed task: {failure.category} > {failure.subcategory} ({failure.url}): {failure.error}")
