"""Composition root - builds one repository and wires every component around it"""

from typing import Optional

from sqlalchemy.orm import sessionmaker

from airtime_advance.config import Settings
from airtime_advance.domain.scoring import ScoringModel
from airtime_advance.infrastructure.database.session import create_session_factory
from airtime_advance.infrastructure.scheduler import Scheduler
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.services.eligibility import EligibilityGate
from airtime_advance.services.features import FeatureAggregator
from airtime_advance.services.insights import InsightService
from airtime_advance.services.journey import JourneyProjection
from airtime_advance.services.ledger import Ledger
from airtime_advance.services.offers import OfferLifecycle
from airtime_advance.services.orchestrator import Orchestrator
from airtime_advance.services.settlement import SettlementEngine
from airtime_advance.services.signals import UsageSignalSource
from airtime_advance.services.sms import SmsGateway
from airtime_advance.services.trigger import TriggerGate


def build_orchestrator(
    settings: Settings,
    scheduler: Scheduler,
    session_factory: Optional[sessionmaker] = None,
    repository: Optional[SubscriberRepository] = None,
) -> Orchestrator:
    repository = repository or SubscriberRepository()
    ledger = Ledger(session_factory or create_session_factory(settings.database_url), scheduler)

    eligibility = EligibilityGate(
        repository,
        FeatureAggregator(repository),
        ScoringModel(settings.amount_buckets_cents),
        settings,
    )
    offers = OfferLifecycle(repository, eligibility, ledger, scheduler, settings)

    return Orchestrator(
        repository=repository,
        scheduler=scheduler,
        ledger=ledger,
        source=UsageSignalSource(repository, scheduler, settings),
        trigger=TriggerGate(repository, settings),
        offers=offers,
        settlement=SettlementEngine(repository, offers, ledger, scheduler),
        sms=SmsGateway(repository, scheduler, settings),
        journey=JourneyProjection(repository, scheduler),
        insights=InsightService(repository),
        settings=settings,
    )
