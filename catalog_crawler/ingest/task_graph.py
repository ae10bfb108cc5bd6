"""Flatten the category/subcategory structure into an ordered list of crawl tasks."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from catalog_crawler.ingest.base import GENERIC_SUBCATEGORY, Task
from catalog_crawler.ingest.errors import InputError

logger = logging.getLogger(__name__)


def load_structure(path: str | Path) -> List[Dict[str, Any]]:
    """
    Load the task-graph input file.

    The file is a JSON array of category objects, each with ``name``, ``url``
    and an optional ``subcategories`` array of ``{name, url}`` leaves.

    Raises:
        InputError: If the file is missing, unparsable or not an array
    """
    path = Path(path)
    if not path.exists():
        raise InputError(str(path), "file not found")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InputError(str(path), f"invalid JSON: {e}") from e
    except OSError as e:
        raise InputError(str(path), str(e)) from e

    if not isinstance(data, list):
        raise InputError(str(path), f"expected a JSON array, got {type(data).__name__}")

    return data


def build_tasks(
    categories: List[Dict[str, Any]],
    include_category_page: bool = True,
    generic_label: str = GENERIC_SUBCATEGORY,
) -> List[Task]:
    """
    Build the flat, ordered task list.

    Args:
        categories: Parsed structure (see ``load_structure``)
        include_category_page: When True, every category's own page is emitted
            as a generic task before its subcategories. When False, the
            category page is only emitted for categories without subcategories.
        generic_label: Subcategory label for category-page tasks

    Returns:
        Tasks in structure order, unique by URL
    """
    tasks: List[Task] = []
    seen_urls: set[str] = set()

    def _add(category: str, subcategory: str, url: str) -> None:
        if url in seen_urls:
            logger.debug(f"Duplicate task URL skipped: {url}")
            return
        seen_urls.add(url)
        tasks.append(Task(category=category, subcategory=subcategory, url=url))

    for entry in categories:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping malformed category entry: {entry!r}")
            continue

        name = (entry.get("name") or "").strip()
        url = (entry.get("url") or "").strip()
        subcategories = [
            sub for sub in (entry.get("subcategories") or [])
            if isinstance(sub, dict)
        ]

        if (include_category_page or not subcategories) and url:
            _add(name, generic_label, url)
        elif not url and not subcategories:
            logger.warning(f"Category '{name}' has no URL and no subcategories, skipping")

        for sub in subcategories:
            sub_url = (sub.get("url") or "").strip()
            if not sub_url:
                logger.warning(f"Subcategory '{sub.get('name')}' of '{name}' has no URL, skipping")
                continue
            _add(name, (sub.get("name") or "").strip() or generic_label, sub_url)

    logger.info(f"Built {len(tasks)} tasks from {len(categories)} categories")
    return tasks
