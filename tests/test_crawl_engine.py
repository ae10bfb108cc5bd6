"""End-to-end tests for the crawl orchestrator with a fake rendering engine."""

import pytest

from catalog_crawler.ingest.base import Task
from catalog_crawler.ingest.crawl_engine import CrawlEngine
from catalog_crawler.ingest.errors import LaunchError
from catalog_crawler.ingest.ledger import ProgressLedger
from catalog_crawler.ingest.page_extractor import PageExtractor
from catalog_crawler.ingest.pagination import PaginationEngine
from catalog_crawler.ingest.record_store import JsonFileStore, RecordMerger
from catalog_crawler.ingest.surface import EngineLease
from catalog_crawler.ingest.task_graph import build_tasks
from tests.fakes import FakeLauncher, PageSpec, no_sleep

CATEGORY_URL = "https://www.metro.pe/lacteos"
SUBCATEGORY_URL = "https://www.metro.pe/lacteos/leche"


def make_engine(tmp_path, launcher, config, max_uses=5):
    extractor = PageExtractor(wait_until="load", timeout_ms=1000)
    store = JsonFileStore(tmp_path / "products.json")
    return CrawlEngine(
        lease=EngineLease(launcher, max_uses=max_uses),
        extractor=extractor,
        pagination=PaginationEngine(extractor, config=config, sleep=no_sleep),
        merger=RecordMerger(store),
        ledger=ProgressLedger(tmp_path / "scraped_urls.json"),
    )


@pytest.mark.asyncio
async def test_crawl_collects_records_and_marks_progress(tmp_path, fast_config, category_structure):
    site = {
        CATEGORY_URL: PageSpec(prefix="lacteos"),
        SUBCATEGORY_URL: PageSpec(prefix="leche"),
    }
    launcher = FakeLauncher(site)
    engine = make_engine(tmp_path, launcher, fast_config)

    report = await engine.run(build_tasks(category_structure))

    assert report.succeeded == 2
    assert report.failed == 0
    assert report.total_records == 10
    assert report.merged.added == 10

    records = JsonFileStore(tmp_path / "products.json").load()
    assert len(records) == 10
    assert {r.subcategory for r in records} == {"General", "Leche"}
    assert ProgressLedger(tmp_path / "scraped_urls.json").urls == [CATEGORY_URL, SUBCATEGORY_URL]

    surfaces = launcher.engines[0].surfaces
    assert len(surfaces) == 2
    assert all(surface.closed for surface in surfaces)
    assert launcher.engines[0].closed


@pytest.mark.asyncio
async def test_navigation_failure_is_isolated(tmp_path, fast_config):
    site = {
        "https://www.metro.pe/a": PageSpec(prefix="a"),
        "https://www.metro.pe/b": PageSpec(prefix="b", fail_navigation=True),
        "https://www.metro.pe/c": PageSpec(prefix="c"),
    }
    tasks = [Task("Tienda", name.upper(), f"https://www.metro.pe/{name}") for name in "abc"]
    engine = make_engine(tmp_path, FakeLauncher(site), fast_config)

    report = await engine.run(tasks)

    assert report.succeeded == 2
    assert report.failed_urls == ["https://www.metro.pe/b"]
    assert ProgressLedger(tmp_path / "scraped_urls.json").urls == [
        "https://www.metro.pe/a",
        "https://www.metro.pe/c",
    ]
    assert report.total_records == 10


@pytest.mark.asyncio
async def test_restart_skips_completed_subcategories_and_revisits_category_page(
    tmp_path, fast_config, category_structure
):
    # The category page lists the same products as its subcategory
    site = {
        CATEGORY_URL: PageSpec(prefix="leche"),
        SUBCATEGORY_URL: PageSpec(prefix="leche"),
    }
    tasks = build_tasks(category_structure)

    first = await make_engine(tmp_path, FakeLauncher(site), fast_config).run(tasks)
    assert first.merged.added == 5
    assert first.merged.updated == 5

    launcher = FakeLauncher(site)
    second = await make_engine(tmp_path, launcher, fast_config).run(tasks)

    assert second.skipped == 1
    assert second.processed == 1
    assert [s.url for s in launcher.engines[0].surfaces] == [CATEGORY_URL]
    records = JsonFileStore(tmp_path / "products.json").load()
    assert len(records) == 5
    assert {r.subcategory for r in records} == {"Leche"}


@pytest.mark.asyncio
async def test_engine_is_recycled_after_max_uses(tmp_path, fast_config):
    site = {f"https://www.metro.pe/sub-{i}": PageSpec(prefix=f"sub{i}") for i in range(5)}
    tasks = [Task("Tienda", f"Sub {i}", url) for i, url in enumerate(site)]
    launcher = FakeLauncher(site)
    engine = make_engine(tmp_path, launcher, fast_config, max_uses=2)

    report = await engine.run(tasks)

    assert report.succeeded == 5
    assert len(launcher.engines) == 3
    assert [len(e.surfaces) for e in launcher.engines] == [2, 2, 1]
    assert all(e.closed for e in launcher.engines)


@pytest.mark.asyncio
async def test_extraction_failure_counts_as_empty_page(tmp_path, fast_config):
    site = {SUBCATEGORY_URL: PageSpec(prefix="leche", fail_content=True)}
    engine = make_engine(tmp_path, FakeLauncher(site), fast_config)

    report = await engine.run([Task("Lacteos", "Leche", SUBCATEGORY_URL)])

    assert report.succeeded == 1
    assert report.total_records == 0
    assert ProgressLedger(tmp_path / "scraped_urls.json").is_done(SUBCATEGORY_URL)


@pytest.mark.asyncio
async def test_launch_failure_aborts_run(tmp_path, fast_config):
    async def broken_launcher():
        raise RuntimeError("Executable doesn't exist")

    engine = make_engine(tmp_path, broken_launcher, fast_config)

    with pytest.raises(LaunchError):
        await engine.run([Task("Lacteos", "Leche", SUBCATEGORY_URL)])

    assert len(ProgressLedger(tmp_path / "scraped_urls.json")) == 0


@pytest.mark.asyncio
async def test_surface_failure_fails_task_and_relaunches_browser(tmp_path, fast_config):
    site = {f"https://www.metro.pe/sub-{i}": PageSpec(prefix=f"sub{i}") for i in range(3)}
    tasks = [Task("Tienda", f"Sub {i}", url) for i, url in enumerate(site)]
    launcher = FakeLauncher(site, crash_first_after=1)
    engine = make_engine(tmp_path, launcher, fast_config)

    report = await engine.run(tasks)

    assert report.succeeded == 2
    assert report.failed_urls == ["https://www.metro.pe/sub-1"]
    assert len(launcher.engines) == 2
    assert launcher.engines[0].closed
    assert ProgressLedger(tmp_path / "scraped_urls.json").urls == [
        "https://www.metro.pe/sub-0",
        "https://www.metro.pe/sub-2",
    ]
