"""Persistent record store and the merge/dedup reconciliation shared by crawler and API."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import JSON, DateTime, Float, String, Text, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from catalog_crawler.config import settings
from catalog_crawler.ingest.base import (
    GENERIC_SUBCATEGORY,
    MergeResult,
    Record,
    Task,
    is_generic_subcategory,
)
from catalog_crawler.ingest.errors import PersistenceWriteError
from catalog_crawler.utils.files import read_json, write_json_atomic
from catalog_crawler import metrics

logger = logging.getLogger(__name__)


def identity_key(record: Record) -> str:
    """Dedup key: ``link`` when non-empty, else ``name``."""
    return record.identity_key


def _apply_candidate(existing: Record, candidate: Record, generic_label: str) -> bool:
    """Update mutable fields of ``existing`` in place. Returns True if anything changed."""
    changed = False

    if existing.category != candidate.category or existing.subcategory != candidate.subcategory:
        # Never downgrade a specific subcategory to the generic marker
        keep_specific = (
            is_generic_subcategory(candidate.subcategory, generic_label)
            and not is_generic_subcategory(existing.subcategory, generic_label)
        )
        if not keep_specific:
            existing.category = candidate.category
            existing.subcategory = candidate.subcategory
            changed = True

    if existing.price != candidate.price:
        existing.price = candidate.price
        changed = True
    if existing.image != candidate.image:
        existing.image = candidate.image
        changed = True

    return changed


def merge_records(
    existing: Iterable[Record],
    candidates: Iterable[Record],
    generic_label: str = GENERIC_SUBCATEGORY,
) -> Tuple[List[Record], MergeResult]:
    """
    Reconcile candidates against an existing collection.

    New identity keys are appended in order; existing ones get their mutable
    fields updated under the monotonic-specificity rule. Nothing is ever
    removed, so the result is a superset (by key) of ``existing``.

    Args:
        existing: Current store contents (not mutated)
        candidates: Freshly extracted records
        generic_label: Generic subcategory marker

    Returns:
        (reconciled records, counters)
    """
    merged: List[Record] = [record.model_copy(deep=True) for record in existing]
    by_key: Dict[str, Record] = {}
    for record in merged:
        key = identity_key(record)
        if key and key not in by_key:
            by_key[key] = record

    result = MergeResult()
    for candidate in candidates:
        key = identity_key(candidate)
        if not key:
            continue

        current = by_key.get(key)
        if current is None:
            added = candidate.model_copy(deep=True)
            merged.append(added)
            by_key[key] = added
            result.added += 1
        elif _apply_candidate(current, candidate, generic_label):
            result.updated += 1
        else:
            result.duplicates += 1

    return merged, result


class RecordStore(ABC):
    """Durable collection of records, read and written whole."""

    @abstractmethod
    def load(self) -> List[Record]:
        """Return the current persisted records."""
        pass

    @abstractmethod
    def save(self, records: List[Record]) -> None:
        """
        Persist the full collection.

        Raises:
            PersistenceWriteError: If the backend cannot be written
        """
        pass

    def replace(self, records: List[Record]) -> None:
        """Overwrite the collection with exactly ``records``."""
        self.save(records)

    @abstractmethod
    def describe(self) -> str:
        pass


def _raw_identity(row) -> str:
    """Identity key of a stored row that did not validate as a ``Record``."""
    if not isinstance(row, dict):
        return ""
    return str(row.get("link") or row.get("name") or row.get("descripcion") or "")


class JsonFileStore(RecordStore):
    """
    Record store backed by a single JSON array file.

    Rows that do not validate as a ``Record`` (e.g. a price posted as text by
    an older client) are not served, but ``save`` carries them through to the
    rewritten file unless a record with the same identity key replaces them.
    Only ``replace`` drops them.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read_rows(self) -> list:
        raw = read_json(self.path, default=[])
        if not isinstance(raw, list):
            logger.warning(f"Store {self.path} is not a JSON array, treating as empty")
            return []
        return raw

    @staticmethod
    def _parse(row) -> Optional[Record]:
        if not isinstance(row, dict):
            return None
        try:
            return Record.model_validate(row)
        except ValueError:
            return None

    def load(self) -> List[Record]:
        records = []
        for row in self._read_rows():
            record = self._parse(row)
            if record is None:
                logger.warning(f"Stored row {_raw_identity(row)!r} is not a valid record, leaving it untouched")
                continue
            records.append(record)
        return records

    def save(self, records: List[Record]) -> None:
        keys = {identity_key(record) for record in records}
        carried = [
            row for row in self._read_rows()
            if self._parse(row) is None and (not _raw_identity(row) or _raw_identity(row) not in keys)
        ]
        self._write([record.to_json() for record in records] + carried)

    def replace(self, records: List[Record]) -> None:
        self._write([record.to_json() for record in records])

    def _write(self, rows: list) -> None:
        try:
            write_json_atomic(self.path, rows)
        except OSError as e:
            raise PersistenceWriteError("store", str(e), path=str(self.path)) from e

    def describe(self) -> str:
        return str(self.path)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class RecordRow(Base):
    """One stored record, keyed by its identity key."""

    __tablename__ = "records"

    identity_key: Mapped[str] = mapped_column(String(2048), primary_key=True)
    position: Mapped[int] = mapped_column(nullable=False)
    category: Mapped[str] = mapped_column(Text, default="", nullable=False)
    subcategory: Mapped[str] = mapped_column(Text, default=GENERIC_SUBCATEGORY, nullable=False)
    name: Mapped[str] = mapped_column(Text, default="", nullable=False)
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    image: Mapped[str] = mapped_column(Text, default="", nullable=False)
    link: Mapped[str] = mapped_column(Text, default="", nullable=False)
    extra: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    def to_record(self) -> Record:
        data = dict(self.extra or {})
        data.update(
            category=self.category,
            subcategory=self.subcategory,
            name=self.name,
            price=self.price,
            image=self.image,
            link=self.link,
        )
        return Record.model_validate(data)


class SqlRecordStore(RecordStore):
    """
    Record store backed by a relational table.

    ``save`` upserts every record by identity key and never deletes rows,
    keeping the superset guarantee of the JSON backend.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)

    def load(self) -> List[Record]:
        with Session(self.engine) as session:
            rows = session.scalars(select(RecordRow).order_by(RecordRow.position)).all()
            return [row.to_record() for row in rows]

    def _upsert(self, session: Session, records: List[Record]) -> None:
        existing = {row.identity_key: row for row in session.scalars(select(RecordRow))}
        for position, record in enumerate(records):
            key = identity_key(record)
            if not key:
                continue
            row = existing.get(key)
            if row is None:
                row = RecordRow(identity_key=key)
                session.add(row)
                existing[key] = row
            row.position = position
            row.category = record.category
            row.subcategory = record.subcategory
            row.name = record.name
            row.price = record.price
            row.image = record.image
            row.link = record.link
            row.extra = record.model_extra or None

    def save(self, records: List[Record]) -> None:
        try:
            with Session(self.engine) as session, session.begin():
                self._upsert(session, records)
        except SQLAlchemyError as e:
            raise PersistenceWriteError("store", str(e), path=self.describe()) from e

    def replace(self, records: List[Record]) -> None:
        """Delete every row and insert ``records`` in one transaction."""
        try:
            with Session(self.engine) as session, session.begin():
                session.execute(delete(RecordRow))
                self._upsert(session, records)
        except SQLAlchemyError as e:
            raise PersistenceWriteError("store", str(e), path=self.describe()) from e

    def describe(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    def close(self) -> None:
        self.engine.dispose()


def create_store(backend: Optional[str] = None) -> RecordStore:
    """Build the configured record store."""
    backend = (backend or settings.store_backend).lower()
    if backend == "sql":
        return SqlRecordStore(settings.database_url)
    if backend == "json":
        return JsonFileStore(settings.output_file)
    raise ValueError(f"Unknown store backend '{backend}' (expected 'json' or 'sql')")


def replace_all(store: RecordStore, records: List[Record]) -> None:
    """Overwrite the store with exactly ``records``."""
    store.replace(records)


class RecordMerger:
    """
    Merges extraction passes into a store.

    The store is read fresh on every merge so an external writer's changes
    are never overwritten by a stale snapshot. If a write fails, the
    reconciled collection is kept in memory, replayed on the next merge and
    written by ``flush``.
    """

    def __init__(self, store: RecordStore, generic_label: str = GENERIC_SUBCATEGORY):
        self.store = store
        self.generic_label = generic_label
        self._unsaved: Optional[List[Record]] = None
        self._total = len(store.load())

    @property
    def total(self) -> int:
        """Record count after the last merge."""
        return self._total

    @property
    def has_unsaved(self) -> bool:
        return self._unsaved is not None

    def merge(self, candidates: List[Record], task: Optional[Task] = None, label: str = "Intermediate") -> MergeResult:
        """
        Reconcile candidates against the store and write back on change.

        Args:
            candidates: Extracted records
            task: Task the candidates came from (for logging)
            label: Pass label for logging ("Intermediate"/"Final")

        Returns:
            MergeResult counters
        """
        if not candidates and self._unsaved is None:
            return MergeResult()

        current = self.store.load()
        if self._unsaved is not None:
            current, _ = merge_records(current, self._unsaved, self.generic_label)

        merged, result = merge_records(current, candidates, self.generic_label)
        self._total = len(merged)

        metrics.records_merged_total.labels(outcome="added").inc(result.added)
        metrics.records_merged_total.labels(outcome="updated").inc(result.updated)
        metrics.records_merged_total.labels(outcome="duplicate").inc(result.duplicates)

        where = f" [{task.category} > {task.subcategory}]" if task else ""
        if result.changed or self._unsaved is not None:
            self._persist(merged)
            parts = []
            if result.added:
                parts.append(f"Added {result.added} new")
            if result.updated:
                parts.append(f"Updated {result.updated} existing")
            logger.info(
                f"{label} save{where}: {', '.join(parts) or 'replayed unsaved records'}. "
                f"Total in store: {len(merged)}"
            )
        elif result.duplicates:
            logger.info(
                f"{label} save{where}: found {result.duplicates} records but all were identical duplicates"
            )

        metrics.store_records.set(len(merged))
        return result

    def flush(self) -> None:
        """
        Write records kept in memory after a failed write.

        Raises:
            PersistenceWriteError: If the store still cannot be written
        """
        if self._unsaved is None:
            return
        current = self.store.load()
        merged, _ = merge_records(current, self._unsaved, self.generic_label)
        self.store.save(merged)
        self._unsaved = None
        self._total = len(merged)
        logger.info(f"Flushed {len(merged)} records to {self.store.describe()}")

    def _persist(self, records: List[Record]) -> None:
        try:
            self.store.save(records)
            self._unsaved = None
        except PersistenceWriteError as e:
            metrics.persistence_write_errors_total.labels(target="store").inc()
            self._unsaved = records
            logger.warning(f"{e}; keeping {len(records)} records in memory until the next write")
