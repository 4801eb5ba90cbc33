"""Network simulation commands - calls and top-ups"""

from fastapi import APIRouter, Depends, HTTPException

from airtime_advance.api.dependencies import get_orchestrator
from airtime_advance.api.v1.schemas import CommandResponse, StartCallRequest, TopUpRequest
from airtime_advance.services.orchestrator import Orchestrator

router = APIRouter()


@router.post("/calls", response_model=CommandResponse, status_code=201)
async def start_call(request_body: StartCallRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = orchestrator.start_call(request_body.msisdn)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.message)
    return CommandResponse.model_validate(result)


@router.post("/calls/{session_id}/end", response_model=CommandResponse)
async def end_call(session_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = orchestrator.end_call(session_id)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.message)
    return CommandResponse.model_validate(result)


@router.post("/topups", response_model=CommandResponse)
async def simulate_topup(request_body: TopUpRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = orchestrator.simulate_topup(request_body.msisdn, request_body.amount_cents, request_body.channel)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.message)
    return CommandResponse.model_validate(result)
