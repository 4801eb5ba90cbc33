"""Offers, consent, loans, model decisions and the SMS inbox"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from airtime_advance.api.dependencies import get_orchestrator, get_request_id
from airtime_advance.api.v1.schemas import (
    BenefitSchema,
    CommandResponse,
    ConsentOfferResponse,
    ConsentRequest,
    ContributionSchema,
    ExplanationResponse,
    LoanSchema,
    ModelDecisionResponse,
    ModelOutputsSchema,
    OfferSchema,
    SmsSchema,
)
from airtime_advance.services.orchestrator import OFFER_NOT_AVAILABLE, Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/consent/{token}", response_model=ConsentOfferResponse)
async def get_consent_offer(token: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Offer behind a consent link; unknown and expired tokens look the same"""
    offer = orchestrator.get_offer_by_token(token)
    if offer is None:
        raise HTTPException(status_code=404, detail=OFFER_NOT_AVAILABLE)

    return ConsentOfferResponse(
        offer_id=offer.offer_id,
        amount_cents=offer.amount_cents,
        status=offer.status.value,
        expires_at=offer.expires_at,
        reasons=offer.reasons,
        benefit_estimate=BenefitSchema.model_validate(offer.benefit_estimate) if offer.benefit_estimate else None,
    )


@router.post("/consent/{token}/open", response_model=CommandResponse)
async def mark_link_opened(token: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = orchestrator.mark_link_opened(token)
    if not result.success:
        raise HTTPException(status_code=404, detail=OFFER_NOT_AVAILABLE)
    return CommandResponse.model_validate(result)


@router.post("/consent", response_model=CommandResponse)
async def handle_consent(
    request_body: ConsentRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    result = orchestrator.handle_consent(request_body.token, request_body.action)
    logger.info(
        "Consent handled",
        extra={"request_id": get_request_id(request), "action": request_body.action.value, "success": result.success},
    )
    if not result.success:
        raise HTTPException(status_code=409, detail=OFFER_NOT_AVAILABLE)
    return CommandResponse.model_validate(result)


@router.get("/offers", response_model=List[OfferSchema])
async def list_offers(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return [OfferSchema.model_validate(o) for o in orchestrator.get_all_offers()]


@router.get("/offers/{offer_id}/explain", response_model=ExplanationResponse)
async def explain_offer(offer_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Model outputs, ranked contributions and reasons behind an offer"""
    explanation = orchestrator.get_offer_explainability(offer_id)
    if explanation is None:
        raise HTTPException(status_code=404, detail="Offer not found")
    decision = explanation.decision
    return ExplanationResponse(
        offer_id=offer_id,
        model_decision_id=decision.decision_id,
        model_name=decision.model_name,
        model_version=decision.model_version,
        outputs=ModelOutputsSchema.model_validate(decision.outputs),
        contributions=[ContributionSchema.model_validate(c) for c in explanation.contributions],
        user_reasons=explanation.user_reasons,
        context_reasons=explanation.context_reasons,
    )


@router.get("/decisions/{decision_id}", response_model=ModelDecisionResponse)
async def get_model_decision(decision_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    decision = orchestrator.get_model_decision(decision_id)
    if decision is None:
        raise HTTPException(status_code=404, detail="Decision not found")
    return ModelDecisionResponse.model_validate(decision)


@router.get("/loans", response_model=List[LoanSchema])
async def list_loans(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return [LoanSchema.model_validate(loan) for loan in orchestrator.get_all_loans()]


@router.get("/sms", response_model=List[SmsSchema])
async def list_sms(
    msisdn: Optional[str] = Query(None, description="Only this subscriber's messages"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return [SmsSchema.model_validate(m) for m in orchestrator.get_sms_messages(msisdn)]
