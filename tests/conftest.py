"""Pytest fixtures for testing"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest
from fastapi.testclient import TestClient

from airtime_advance.api.main import create_app
from airtime_advance.bootstrap import build_orchestrator
from airtime_advance.config import Settings
from airtime_advance.domain.models import BroadcastEvent, DeviceType, UserProfile
from airtime_advance.infrastructure.database.session import create_session_factory
from airtime_advance.infrastructure.scheduler import ManualScheduler
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.services.ledger import Ledger
from airtime_advance.services.orchestrator import Orchestrator

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

TRUSTED_MSISDN = "254700000001"
STEADY_MSISDN = "254700000002"
OPTED_OUT_MSISDN = "254700000003"
NEW_MSISDN = "254700000004"


@pytest.fixture
def settings() -> Settings:
    """Defaults only; ignores any .env or AIRTIME_* environment"""
    return Settings(_env_file=None)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler(start=START)


@pytest.fixture
def repository() -> SubscriberRepository:
    return SubscriberRepository()


@pytest.fixture
def ledger(scheduler: ManualScheduler) -> Ledger:
    """Fresh in-memory ledger per test"""
    return Ledger(create_session_factory("sqlite://"), scheduler)


@pytest.fixture
def make_profile(scheduler: ManualScheduler) -> Callable[..., UserProfile]:
    """Factory for a high-trust profile; keyword overrides tune it"""

    def factory(msisdn: str = TRUSTED_MSISDN, **overrides) -> UserProfile:
        fields = dict(
            msisdn=msisdn,
            tenure_days=240,
            avg_topup_amount_cents=2000,  # $20
            topup_frequency_30d=4,
            opt_out=False,
            last_topup_date=scheduler.now() - timedelta(days=2),
            total_topups_90d=12,
            on_time_repay_rate=1.0,
            recent_call_drops=0,
            device_type=DeviceType.SMARTPHONE,
            region="Nairobi",
            network_quality_score=0.9,
        )
        fields.update(overrides)
        return UserProfile(**fields)

    return factory


@pytest.fixture
def orchestrator(settings, scheduler, repository) -> Orchestrator:
    return build_orchestrator(
        settings,
        scheduler,
        session_factory=create_session_factory("sqlite://"),
        repository=repository,
    )


@pytest.fixture
def seeded(orchestrator: Orchestrator, make_profile) -> Orchestrator:
    """Orchestrator with a trusted, a $5 steady, an opted-out and a brand-new subscriber"""
    orchestrator.register_subscriber(make_profile(TRUSTED_MSISDN))
    orchestrator.register_subscriber(make_profile(STEADY_MSISDN, avg_topup_amount_cents=1000))
    orchestrator.register_subscriber(make_profile(OPTED_OUT_MSISDN, opt_out=True))
    orchestrator.register_subscriber(make_profile(NEW_MSISDN, tenure_days=10))
    return orchestrator


@pytest.fixture
def broadcasts(orchestrator: Orchestrator) -> List[BroadcastEvent]:
    """Every broadcast published after this fixture runs, in order"""
    captured: List[BroadcastEvent] = []
    orchestrator.subscribe(captured.append)
    return captured


@pytest.fixture
def client(orchestrator: Orchestrator):
    """FastAPI test client around the deterministic orchestrator"""
    with TestClient(create_app(orchestrator)) as test_client:
        yield test_client
