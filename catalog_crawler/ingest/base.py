"""Core data types shared by the crawl pipeline and the HTTP layer."""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

GENERIC_SUBCATEGORY = "General"

# Labels that carry no classification information
_GENERIC_LABELS = {"general", "uncategorized"}


def is_generic_subcategory(value: Optional[str], generic_label: str = GENERIC_SUBCATEGORY) -> bool:
    """True when a subcategory label is the generic "no subcategory" marker."""
    if not value or not value.strip():
        return True
    normalized = value.strip().lower()
    return normalized == generic_label.lower() or normalized in _GENERIC_LABELS


@dataclass(frozen=True)
class Task:
    """One category/subcategory URL to crawl. Identity is the URL."""

    category: str
    subcategory: str
    url: str

    @property
    def is_generic(self) -> bool:
        return is_generic_subcategory(self.subcategory)

    def __str__(self) -> str:
        return f"{self.category} > {self.subcategory} ({self.url})"


class Record(BaseModel):
    """An extracted product as persisted in the store."""

    model_config = ConfigDict(extra="allow")

    category: str = ""
    subcategory: str = GENERIC_SUBCATEGORY
    name: str = ""
    price: float = Field(default=0.0, ge=0)
    image: str = ""
    link: str = ""

    @model_validator(mode="before")
    @classmethod
    def _legacy_fields(cls, data):
        # Older clients posted Spanish field names
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("name") and data.get("descripcion"):
                data["name"] = data.pop("descripcion")
            if not data.get("category") and data.get("categoria"):
                data["category"] = data.pop("categoria")
            if data.get("image") is None:
                data["image"] = data.pop("imagen", None) or ""
            if data.get("price") is None:
                data["price"] = data.pop("precio", None) or 0.0
            if data.get("link") is None:
                data["link"] = ""
        return data

    @property
    def identity_key(self) -> str:
        """Dedup key: the detail link when present, otherwise the name."""
        return self.link or self.name

    def to_json(self) -> dict:
        return self.model_dump(mode="json")


@dataclass
class MergeResult:
    """Outcome counters of one merge pass."""

    added: int = 0
    updated: int = 0
    duplicates: int = 0

    @property
    def changed(self) -> bool:
        return self.added > 0 or self.updated > 0

    @property
    def total(self) -> int:
        return self.added + self.updated + self.duplicates

    def __iadd__(self, other: "MergeResult") -> "MergeResult":
        self.added += other.added
        self.updated += other.updated
        self.duplicates += other.duplicates
        return self
