"""FastAPI dependencies."""

from functools import lru_cache

from catalog_crawler.api.record_service import RecordService
from catalog_crawler.config import settings
from catalog_crawler.ingest.record_store import create_store


@lru_cache(maxsize=1)
def get_record_service() -> RecordService:
    """Dependency for the process-wide record service."""
    return RecordService(create_store(), generic_label=settings.generic_subcategory)
