"""Shared fixtures for the crawler tests."""

from typing import List

import pytest

from catalog_crawler.ingest.pagination import PaginationConfig


@pytest.fixture
def fast_config() -> PaginationConfig:
    """Pagination config with the default budgets and no waiting."""
    return PaginationConfig(settle_delay=0, scroll_delay=0, click_delay=0)


@pytest.fixture
def category_structure() -> List[dict]:
    return [
        {
            "name": "Lacteos",
            "url": "https://www.metro.pe/lacteos",
            "subcategories": [
                {"name": "Leche", "url": "https://www.metro.pe/lacteos/leche"},
            ],
        }
    ]
