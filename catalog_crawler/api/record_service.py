"""Record service behind the CRUD HTTP layer."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from catalog_crawler.ingest.base import GENERIC_SUBCATEGORY, MergeResult, Record
from catalog_crawler.ingest.errors import PersistenceWriteError
from catalog_crawler.ingest.record_store import RecordStore, merge_records, replace_all

logger = logging.getLogger(__name__)

READ_ONLY_WARNING = "read-only-fs"


@dataclass
class WriteOutcome:
    """Result of a replace or append request."""

    total: int
    result: Optional[MergeResult] = None
    warning: Optional[str] = None


class RecordService:
    """
    Serves the store to HTTP clients with the crawler's dedup semantics.

    The store is read fresh on every request. When the backend cannot be
    written (e.g. a read-only filesystem) the data is kept in process memory
    and served from there until a later write succeeds.
    """

    def __init__(self, store: RecordStore, generic_label: str = GENERIC_SUBCATEGORY):
        self.store = store
        self.generic_label = generic_label
        self._memory: Optional[List[Record]] = None

    def list_records(self) -> List[Record]:
        if self._memory is not None:
            return list(self._memory)
        return self.store.load()

    def replace(self, records: List[Record]) -> WriteOutcome:
        """Overwrite the whole store."""
        return WriteOutcome(total=len(records), warning=self._write(records, replace=True))

    def append(self, records: List[Record]) -> WriteOutcome:
        """Merge-append records, deduplicating by identity key."""
        merged, result = merge_records(self.list_records(), records, self.generic_label)
        warning = None
        if result.changed or self._memory is not None:
            warning = self._write(merged)
        return WriteOutcome(total=len(merged), result=result, warning=warning)

    def _write(self, records: List[Record], replace: bool = False) -> Optional[str]:
        try:
            if replace:
                replace_all(self.store, records)
            else:
                self.store.save(records)
        except PersistenceWriteError as e:
            logger.warning(f"{e}; keeping {len(records)} records in memory")
            self._memory = list(records)
            return READ_ONLY_WARNING
        self._memory = None
        return None
