"""Tests for the pagination/load-more engine."""

import pytest

from catalog_crawler.ingest.base import MergeResult
from catalog_crawler.ingest.page_extractor import PageExtractor
from catalog_crawler.ingest.pagination import PaginationEngine, PaginationState
from tests.fakes import FakeSurface, PageSpec, no_sleep

URL = "https://www.metro.pe/lacteos/leche"


class SaveRecorder:
    def __init__(self, fail_intermediate: bool = False):
        self.labels = []
        self.fail_intermediate = fail_intermediate

    async def __call__(self, label: str) -> MergeResult:
        self.labels.append(label)
        if self.fail_intermediate and label == "Intermediate":
            raise OSError("disk full")
        return MergeResult()


async def run_engine(spec: PageSpec, config, save=None):
    surface = FakeSurface({URL: spec})
    await surface.navigate(URL)
    save = save or SaveRecorder()
    engine = PaginationEngine(PageExtractor(), config=config, sleep=no_sleep)
    ctx = await engine.run(surface, save)
    return ctx, surface, save


@pytest.mark.asyncio
async def test_stuck_load_more_button_stops_after_threshold(fast_config):
    spec = PageSpec(prefix="leche", initial_items=10, click_batches=[10, 10], button=True)

    ctx, surface, save = await run_engine(spec, fast_config)

    assert ctx.state == PaginationState.DONE
    assert ctx.stop_reason == "load_more_stuck"
    assert ctx.stuck_count == 3
    assert ctx.clicks == 5
    assert ctx.item_count == 30
    assert save.labels == ["Intermediate", "Final"]
    assert surface.native_clicks == 5
    assert surface.forced_clicks == 3


@pytest.mark.asyncio
async def test_infinite_scroll_finishes_when_target_reached(fast_config):
    spec = PageSpec(prefix="leche", initial_items=10, scroll_batches=[10, 10, 10, 10])

    ctx, _, save = await run_engine(spec, fast_config)

    assert ctx.stop_reason == "target_reached"
    assert ctx.cycles == 5
    assert ctx.item_count == 50
    assert save.labels == ["Intermediate", "Intermediate", "Final"]


@pytest.mark.asyncio
async def test_short_page_gives_up_after_no_change_threshold(fast_config):
    ctx, _, save = await run_engine(PageSpec(prefix="leche", initial_items=5), fast_config)

    assert ctx.state == PaginationState.DONE
    assert ctx.stop_reason == "no_more_content"
    assert ctx.cycles == 3
    assert ctx.no_change_count == 3
    assert ctx.previous_height == 1000
    assert save.labels == ["Final"]


@pytest.mark.asyncio
async def test_forced_click_used_when_native_click_has_no_effect(fast_config):
    spec = PageSpec(
        prefix="leche", initial_items=10, click_batches=[10], button=True, native_click_works=False
    )

    ctx, surface, _ = await run_engine(spec, fast_config)

    assert ctx.item_count == 20
    assert surface.forced_clicks >= 1
    assert ctx.stop_reason == "load_more_stuck"


@pytest.mark.asyncio
async def test_scroll_errors_still_terminate(fast_config):
    spec = PageSpec(prefix="leche", initial_items=5, fail_scroll=True)

    ctx, _, save = await run_engine(spec, fast_config)

    assert ctx.stop_reason == "no_more_content"
    assert save.labels == ["Final"]


@pytest.mark.asyncio
async def test_intermediate_save_failure_does_not_abort_pagination(fast_config):
    spec = PageSpec(prefix="leche", initial_items=10, scroll_batches=[10, 10, 10, 10])
    save = SaveRecorder(fail_intermediate=True)

    ctx, _, _ = await run_engine(spec, fast_config, save=save)

    assert ctx.stop_reason == "target_reached"
    assert save.labels[-1] == "Final"
    assert save.labels.count("Final") == 1


@pytest.mark.asyncio
async def test_cycle_cap_bounds_the_loop(fast_config):
    fast_config.max_cycles = 4
    spec = PageSpec(prefix="leche", initial_items=10, scroll_batches=[1] * 100)

    ctx, _, save = await run_engine(spec, fast_config)

    assert ctx.stop_reason == "cycle_cap"
    assert ctx.cycles == 4
    assert save.labels[-1] == "Final"
