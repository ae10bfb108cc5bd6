"""Command-line entry point: run one resumable category crawl."""

import asyncio
import logging
import sys
from typing import List

from catalog_crawler.config import settings
from catalog_crawler.ingest.base import Task
from catalog_crawler.ingest.crawl_engine import CrawlEngine, CrawlReport
from catalog_crawler.ingest.errors import InputError, LaunchError
from catalog_crawler.ingest.fetchers.headless import launch_engine
from catalog_crawler.ingest.ledger import load_ledger
from catalog_crawler.ingest.page_extractor import PageExtractor
from catalog_crawler.ingest.pagination import PaginationEngine
from catalog_crawler.ingest.record_store import RecordMerger, create_store
from catalog_crawler.ingest.surface import EngineLease
from catalog_crawler.ingest.task_graph import build_tasks, load_structure
from catalog_crawler.logging_config import setup_logging

logger = logging.getLogger(__name__)


def load_tasks() -> List[Task]:
    """Load the task graph from the configured structure file."""
    categories = load_structure(settings.structure_file)
    return build_tasks(
        categories,
        include_category_page=settings.include_category_page,
        generic_label=settings.generic_subcategory,
    )


def build_engine() -> CrawlEngine:
    """Wire the crawl components from settings."""
    extractor = PageExtractor()
    store = create_store()
    logger.info(f"Record store: {store.describe()}")
    return CrawlEngine(
        lease=EngineLease(launch_engine, max_uses=settings.browser_restart_every),
        extractor=extractor,
        pagination=PaginationEngine(extractor),
        merger=RecordMerger(store, generic_label=settings.generic_subcategory),
        ledger=load_ledger(),
    )


async def crawl(tasks: List[Task]) -> CrawlReport:
    return await build_engine().run(tasks)


def main() -> int:
    """Run the crawl. Returns the process exit code."""
    setup_logging()

    try:
        tasks = load_tasks()
    except InputError as e:
        logger.error(f"Error loading structure file: {e}")
        return 1

    try:
        asyncio.run(crawl(tasks))
    except LaunchError as e:
        logger.error(f"Browser could not be started, aborting run: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; completed tasks are in the ledger and the next run resumes from there")
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
