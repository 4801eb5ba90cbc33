"""GET /v1/ledger - audit trail, newest first"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from airtime_advance.api.dependencies import get_orchestrator
from airtime_advance.api.v1.schemas import LedgerEventSchema, LedgerResponse
from airtime_advance.domain.models import EntityType
from airtime_advance.services.orchestrator import Orchestrator

router = APIRouter()


@router.get("/ledger", response_model=LedgerResponse)
async def get_ledger(
    entity_id: Optional[str] = Query(None),
    entity_type: Optional[EntityType] = Query(None),
    msisdn: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Ledger entries matching every given filter.

    Returns:
        Entries ordered newest first
    """
    events = orchestrator.get_ledger(entity_id=entity_id, entity_type=entity_type, msisdn=msisdn, limit=limit)
    return LedgerResponse(count=len(events), events=[LedgerEventSchema.model_validate(e) for e in events])
