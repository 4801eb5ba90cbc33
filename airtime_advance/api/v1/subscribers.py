"""Subscriber registration, snapshots, timelines and portfolio views"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from airtime_advance.api.dependencies import get_orchestrator
from airtime_advance.api.v1.schemas import (
    CommandResponse,
    CustomerDetailResponse,
    CustomerSummarySchema,
    JourneyEventSchema,
    KpiResponse,
    SubscriberRequest,
    SubscriberSnapshotResponse,
    TimelineResponse,
)
from airtime_advance.domain.models import UserProfile
from airtime_advance.services.orchestrator import Orchestrator

router = APIRouter()


@router.post("/subscribers", response_model=CommandResponse, status_code=201)
async def register_subscriber(
    request_body: SubscriberRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    result = orchestrator.register_subscriber(UserProfile(**request_body.model_dump()))
    return CommandResponse.model_validate(result)


@router.get("/subscribers/{msisdn}", response_model=SubscriberSnapshotResponse)
async def get_subscriber(msisdn: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Profile, balance and history, active call/offer/loan, offers, loans, top-ups and timeline"""
    snapshot = orchestrator.get_subscriber_snapshot(msisdn)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Subscriber not found")
    return SubscriberSnapshotResponse.model_validate(snapshot)


@router.get("/subscribers/{msisdn}/timeline", response_model=TimelineResponse)
async def get_timeline(
    msisdn: str,
    limit: int = Query(50, ge=1, le=500),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    events = orchestrator.get_timeline(msisdn, limit)
    return TimelineResponse(msisdn=msisdn, events=[JourneyEventSchema.model_validate(e) for e in events])


@router.get("/customers", response_model=List[CustomerSummarySchema])
async def get_customers(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return [CustomerSummarySchema.model_validate(s) for s in orchestrator.get_customer_summaries()]


@router.get("/customers/{msisdn}", response_model=CustomerDetailResponse)
async def get_customer(msisdn: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Dashboard summary of one subscriber alongside the full snapshot"""
    summary = orchestrator.get_customer_summary(msisdn)
    snapshot = orchestrator.get_subscriber_snapshot(msisdn)
    if summary is None or snapshot is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return CustomerDetailResponse(
        summary=CustomerSummarySchema.model_validate(summary),
        detail=SubscriberSnapshotResponse.model_validate(snapshot),
    )


@router.get("/kpis", response_model=KpiResponse)
async def get_kpis(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return KpiResponse.model_validate(orchestrator.get_kpis())
