"""Stored product record routes."""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from catalog_crawler.api.deps import get_record_service
from catalog_crawler.api.record_service import RecordService
from catalog_crawler.ingest.base import Record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["records"])


class ReplaceResponse(BaseModel):
    message: str
    count: int
    warning: Optional[str] = None


class AppendResponse(BaseModel):
    message: str
    total: int
    agregados: int
    actualizados: int
    warning: Optional[str] = None


def _parse_records(payload: Any) -> List[Record]:
    if not isinstance(payload, list):
        raise HTTPException(status_code=400, detail="Expected a JSON array of products")
    try:
        return [Record.model_validate(item) for item in payload]
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid product: {e.errors()[0]['msg']}")


@router.post("/guardar", response_model=ReplaceResponse)
async def replace_records(
    payload: Any = Body(...),
    service: RecordService = Depends(get_record_service),
):
    """Replace the entire store with the posted array."""
    records = _parse_records(payload)
    outcome = service.replace(records)
    message = "Products saved" if outcome.warning is None else "Products kept in memory only (store not writable)"
    logger.info(f"Replaced store with {outcome.total} records")
    return ReplaceResponse(message=message, count=outcome.total, warning=outcome.warning)


@router.post("/agregar", response_model=AppendResponse)
async def append_records(
    payload: Any = Body(...),
    service: RecordService = Depends(get_record_service),
):
    """Merge-append the posted array, deduplicating by link (or name when there is no link)."""
    records = _parse_records(payload)
    outcome = service.append(records)
    message = "Products added" if outcome.warning is None else "Products added to memory only (store not writable)"
    logger.info(
        f"Appended {outcome.result.added} new, updated {outcome.result.updated}; total {outcome.total}"
    )
    return AppendResponse(
        message=message,
        total=outcome.total,
        agregados=outcome.result.added,
        actualizados=outcome.result.updated,
        warning=outcome.warning,
    )


@router.get("/productos-guardados")
async def list_records(service: RecordService = Depends(get_record_service)) -> List[dict]:
    """Return the current store."""
    return [record.to_json() for record in service.list_records()]
