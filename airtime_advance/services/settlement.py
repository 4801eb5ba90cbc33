"""Disbursal and repayment engine - credits accepted advances and nets them out of top-ups"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from airtime_advance.domain.exceptions import InvariantViolationError
from airtime_advance.domain.models import (
    BalanceSample,
    EntityType,
    LedgerEventType,
    Loan,
    LoanStatus,
    Offer,
    OfferStatus,
    TopUpEvent,
)
from airtime_advance.infrastructure.observability.logging import log_settlement
from airtime_advance.infrastructure.observability.metrics import disbursal_counter, repayment_counter
from airtime_advance.infrastructure.scheduler import Clock
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.services.ledger import Ledger
from airtime_advance.services.offers import OfferLifecycle

logger = logging.getLogger(__name__)


class DisbursalFailure(str, Enum):
    OFFER_NOT_ACCEPTED = "offer_not_accepted"
    ACTIVE_LOAN_EXISTS = "active_loan_exists"


@dataclass
class DisbursalResult:
    success: bool
    loan: Optional[Loan] = None
    failure: Optional[DisbursalFailure] = None


@dataclass
class RepaymentOutcome:
    loan: Loan
    topup: TopUpEvent
    applied_cents: int
    balance_cents: int

    @property
    def completed(self) -> bool:
        return self.loan.status == LoanStatus.REPAID


class SettlementEngine:
    """
    Moves money for accepted offers.

    Disbursal creates the loan and credits the balance; repayment applies the
    next top-up against the outstanding amount. A subscriber never holds more
    than one pending or disbursed loan.
    """

    def __init__(
        self,
        repository: SubscriberRepository,
        offers: OfferLifecycle,
        ledger: Ledger,
        clock: Clock,
    ):
        self.repository = repository
        self.offers = offers
        self.ledger = ledger
        self.clock = clock

    def disburse(self, offer: Offer) -> DisbursalResult:
        """Create a loan for an accepted offer and credit the advance"""
        if offer.status != OfferStatus.ACCEPTED:
            disbursal_counter.labels(outcome=DisbursalFailure.OFFER_NOT_ACCEPTED.value).inc()
            return DisbursalResult(success=False, failure=DisbursalFailure.OFFER_NOT_ACCEPTED)

        existing = self.repository.active_loan_for(offer.msisdn)
        if existing is not None:
            logger.warning(
                "Disbursal refused, subscriber already holds a loan",
                extra={"msisdn": offer.msisdn, "offer_id": offer.offer_id, "loan_id": existing.loan_id},
            )
            disbursal_counter.labels(outcome=DisbursalFailure.ACTIVE_LOAN_EXISTS.value).inc()
            return DisbursalResult(success=False, failure=DisbursalFailure.ACTIVE_LOAN_EXISTS)

        loan = Loan(
            loan_id=str(uuid.uuid4()),
            offer_id=offer.offer_id,
            msisdn=offer.msisdn,
            amount_cents=offer.amount_cents,
            outstanding_cents=offer.amount_cents,
        )
        self.repository.save_loan(loan)
        self.ledger.append(
            LedgerEventType.DISBURSAL_INITIATED,
            entity_id=loan.loan_id,
            entity_type=EntityType.LOAN,
            msisdn=loan.msisdn,
            payload={"amount_cents": loan.amount_cents, "offer_id": offer.offer_id},
        )
        log_settlement("disbursal_initiated", loan.msisdn, loan.loan_id, loan.amount_cents)

        balance = self._set_balance(loan.msisdn, self.repository.current_balance_cents(loan.msisdn) + loan.amount_cents)

        loan.status = LoanStatus.DISBURSED
        loan.disbursed_at = self.clock.now()
        self.repository.save_loan(loan)

        transition = self.offers.mark_disbursed(offer.offer_id, loan.loan_id)
        if not transition.success:
            raise InvariantViolationError(
                f"Offer {offer.offer_id} could not be marked disbursed: {transition.failure}"
            )

        self.ledger.append(
            LedgerEventType.DISBURSAL_COMPLETED,
            entity_id=loan.loan_id,
            entity_type=EntityType.LOAN,
            msisdn=loan.msisdn,
            payload={"amount_cents": loan.amount_cents, "offer_id": offer.offer_id, "balance_cents": balance.balance_cents},
        )
        log_settlement("disbursal_completed", loan.msisdn, loan.loan_id, loan.amount_cents, balance_cents=balance.balance_cents)
        disbursal_counter.labels(outcome="completed").inc()
        return DisbursalResult(success=True, loan=loan)

    def process_topup(self, topup: TopUpEvent) -> Optional[RepaymentOutcome]:
        """
        Net a top-up against the subscriber's disbursed loan.

        The top-up credit is already in the balance, so the applied amount is
        deducted from the current balance. A top-up smaller than the
        outstanding amount settles part of the loan, which stays disbursed.
        Returns None when there is nothing to repay.
        """
        loan = self.repository.active_loan_for(topup.msisdn)
        if loan is None or loan.status != LoanStatus.DISBURSED:
            return None

        self.ledger.append(
            LedgerEventType.TOPUP_DETECTED,
            entity_id=loan.loan_id,
            entity_type=EntityType.LOAN,
            msisdn=loan.msisdn,
            payload={
                "topup_amount_cents": topup.amount_cents,
                "transaction_id": topup.transaction_id,
                "outstanding_cents": loan.outstanding_cents,
            },
        )

        applied = min(topup.amount_cents, loan.outstanding_cents)
        self.ledger.append(
            LedgerEventType.REPAYMENT_INITIATED,
            entity_id=loan.loan_id,
            entity_type=EntityType.LOAN,
            msisdn=loan.msisdn,
            payload={"loan_amount_cents": loan.amount_cents, "applied_cents": applied},
        )
        log_settlement("repayment_initiated", loan.msisdn, loan.loan_id, applied)

        balance = self._set_balance(loan.msisdn, max(0, self.repository.current_balance_cents(loan.msisdn) - applied))
        loan.outstanding_cents -= applied

        if loan.outstanding_cents == 0:
            loan.status = LoanStatus.REPAID
            loan.repaid_at = self.clock.now()
            self.repository.save_loan(loan)
            self.ledger.append(
                LedgerEventType.REPAYMENT_COMPLETED,
                entity_id=loan.loan_id,
                entity_type=EntityType.LOAN,
                msisdn=loan.msisdn,
                payload={"loan_amount_cents": loan.amount_cents, "repaid_at": loan.repaid_at},
            )
            log_settlement("repayment_completed", loan.msisdn, loan.loan_id, applied)
            repayment_counter.labels(kind="full").inc()
        else:
            self.repository.save_loan(loan)
            self.ledger.append(
                LedgerEventType.REPAYMENT_PARTIAL,
                entity_id=loan.loan_id,
                entity_type=EntityType.LOAN,
                msisdn=loan.msisdn,
                payload={"applied_cents": applied, "outstanding_cents": loan.outstanding_cents},
            )
            log_settlement("repayment_partial", loan.msisdn, loan.loan_id, applied, outstanding_cents=loan.outstanding_cents)
            repayment_counter.labels(kind="partial").inc()

        return RepaymentOutcome(loan=loan, topup=topup, applied_cents=applied, balance_cents=balance.balance_cents)

    def _set_balance(self, msisdn: str, balance_cents: int) -> BalanceSample:
        # Off-call sample; the trigger gate ignores it
        sample = BalanceSample(msisdn=msisdn, balance_cents=balance_cents, timestamp=self.clock.now())
        self.repository.add_balance_sample(sample)
        return sample
