"""
Loan Module

Handles loan creation, approval, rejection, disbursement with schedule
generation, and closure. Every transition is a versioned compare-and-swap
against the loan record; a lost race raises ConcurrencyConflictError and is
never retried here.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Any
from enum import Enum
import uuid

from .amortization import AmortizationCalculator
from .config import LoanEngineConfig
from .eligibility import EligibilityChecker
from .events import EventDispatcher, DomainEvent
from .exceptions import (
    InvalidInputError, LoanNotFoundError, ConsumerNotFoundError,
    InvalidLoanOperationError, ConcurrencyConflictError
)
from .money import Numeric, money_from_str, ZERO
from .schedule import RepaymentScheduleGenerator, ScheduleStore
from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger


logger = get_logger("loan_engine.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"        # Application received, awaiting decision
    APPROVED = "approved"      # Credit decision approved
    ACTIVE = "active"          # Disbursed, schedule live
    CLOSED = "closed"          # Fully repaid and closed
    REJECTED = "rejected"      # Credit decision rejected
    DEFAULTED = "defaulted"    # Critical delinquency (no transition leads here yet)

    @classmethod
    def from_name(cls, name: str) -> 'LoanStatus':
        """Parse a status name supplied by a caller"""
        try:
            return cls[name.strip().upper()]
        except (KeyError, AttributeError):
            raise InvalidInputError(f"Unknown loan status: {name!r}")

    @property
    def is_terminal(self) -> bool:
        return self in (LoanStatus.CLOSED, LoanStatus.REJECTED, LoanStatus.DEFAULTED)


@dataclass
class Loan(StorageRecord):
    """Loan contract with fixed terms and running balance"""
    consumer_id: str
    principal_amount: Decimal
    annual_interest_rate: Decimal       # Percent, e.g. 10.5
    tenure_months: int
    periodic_payment: Decimal
    total_interest: Decimal
    outstanding_balance: Decimal
    remaining_installments: int
    status: LoanStatus = LoanStatus.PENDING
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    disbursed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    approval_remarks: Optional[str] = None
    rejection_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Check if loan is in active repayment"""
        return self.status == LoanStatus.ACTIVE

    @property
    def is_paid_off(self) -> bool:
        """Check if the outstanding balance has reached zero"""
        return self.outstanding_balance == ZERO

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        def get_datetime(field_name: str) -> Optional[datetime]:
            if data.get(field_name):
                return datetime.fromisoformat(data[field_name])
            return None

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            version=data['version'],
            consumer_id=data['consumer_id'],
            principal_amount=Decimal(data['principal_amount']),
            annual_interest_rate=Decimal(data['annual_interest_rate']),
            tenure_months=data['tenure_months'],
            periodic_payment=money_from_str(data['periodic_payment']),
            total_interest=money_from_str(data['total_interest']),
            outstanding_balance=Decimal(data['outstanding_balance']),
            remaining_installments=data['remaining_installments'],
            status=LoanStatus(data['status']),
            approved_at=get_datetime('approved_at'),
            rejected_at=get_datetime('rejected_at'),
            disbursed_at=get_datetime('disbursed_at'),
            closed_at=get_datetime('closed_at'),
            approval_remarks=data.get('approval_remarks'),
            rejection_reason=data.get('rejection_reason')
        )


class LoanStore:
    """Versioned persistence for loan records"""

    def __init__(self, storage: StorageInterface, table: str = "loans"):
        self.storage = storage
        self.table = table

    def add(self, loan: Loan) -> Loan:
        if not self.storage.insert(self.table, loan.id, loan.to_dict()):
            raise ConcurrencyConflictError("loan", loan.id, 0)
        return loan

    def get(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def require(self, loan_id: str) -> Loan:
        """Load a loan or raise LoanNotFoundError"""
        loan = self.get(loan_id)
        if loan is None:
            logger.warning(f"Loan not found: {loan_id}")
            raise LoanNotFoundError(f"Loan not found: {loan_id}")
        return loan

    def update(self, loan: Loan) -> Loan:
        """
        Write back a modified loan if its version is unchanged

        Returns:
            The loan carrying its new version

        Raises:
            ConcurrencyConflictError: On version mismatch
        """
        expected = loan.version
        if not self.storage.compare_and_swap(self.table, loan.id, expected, loan.to_dict()):
            logger.warning(f"Concurrent modification of loan {loan.id} (expected version {expected})")
            raise ConcurrencyConflictError("loan", loan.id, expected)
        loan.version = expected + 1
        return loan

    def find(self, consumer_id: Optional[str] = None, status: Optional[LoanStatus] = None) -> List[Loan]:
        filters: Dict[str, Any] = {}
        if consumer_id is not None:
            filters['consumer_id'] = consumer_id
        if status is not None:
            filters['status'] = status.value
        loans = [Loan.from_dict(data) for data in self.storage.find(self.table, filters)]
        loans.sort(key=lambda x: x.created_at)
        return loans


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LoanLifecycle:
    """
    Guards the legal transitions of a loan

    PENDING -> APPROVED -> ACTIVE -> CLOSED, and PENDING -> REJECTED.
    """

    def __init__(
        self,
        loan_store: LoanStore,
        schedule_store: ScheduleStore,
        calculator: AmortizationCalculator,
        generator: RepaymentScheduleGenerator,
        eligibility_checker: Optional[EligibilityChecker],
        config: LoanEngineConfig,
        dispatcher: EventDispatcher,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.loan_store = loan_store
        self.schedule_store = schedule_store
        self.calculator = calculator
        self.generator = generator
        self.eligibility_checker = eligibility_checker
        self.config = config
        self.dispatcher = dispatcher
        self.clock = clock

    def create_loan(
        self,
        consumer_id: str,
        principal: Numeric,
        annual_rate_percent: Numeric,
        tenure_months: int
    ) -> Loan:
        """
        Create a new loan in PENDING state

        Args:
            consumer_id: Borrower reference
            principal: Amount borrowed
            annual_rate_percent: Annual interest rate in percent
            tenure_months: Number of monthly installments

        Returns:
            Created Loan

        Raises:
            ConsumerNotFoundError: If eligibility is enforced and the consumer is unknown
            InvalidLoanOperationError: If an eligibility or tenure rule fails
            InvalidInputError: If the terms are malformed
        """
        logger.info(f"Creating loan for consumer {consumer_id}, amount {principal}")

        self._check_tenure(tenure_months)
        if self.config.enforce_eligibility:
            self._check_eligibility(consumer_id)

        result = self.calculator.compute(principal, annual_rate_percent, tenure_months)

        now = self.clock()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            version=1,
            consumer_id=consumer_id,
            principal_amount=result.principal,
            annual_interest_rate=result.annual_interest_rate,
            tenure_months=result.tenure_months,
            periodic_payment=result.periodic_payment,
            total_interest=result.total_interest,
            outstanding_balance=result.principal,
            remaining_installments=result.tenure_months,
            status=LoanStatus.PENDING
        )
        self.loan_store.add(loan)

        logger.info(f"Loan created with ID {loan.id}, periodic payment {loan.periodic_payment}")
        self.dispatcher.emit(
            DomainEvent.LOAN_CREATED, "loan", loan.id,
            {
                "consumer_id": consumer_id,
                "principal_amount": str(loan.principal_amount),
                "annual_interest_rate": str(loan.annual_interest_rate),
                "tenure_months": loan.tenure_months,
                "periodic_payment": str(loan.periodic_payment)
            }
        )
        return loan

    def approve_loan(self, loan_id: str, remarks: Optional[str] = None) -> Loan:
        """Approve a PENDING loan"""
        logger.info(f"Approving loan {loan_id}")
        loan = self.loan_store.require(loan_id)
        self._require_status(loan, LoanStatus.PENDING, "Only pending loans can be approved")

        now = self.clock()
        updated = replace(loan, status=LoanStatus.APPROVED, approved_at=now,
                          approval_remarks=remarks, updated_at=now)
        self.loan_store.update(updated)

        self.dispatcher.emit(DomainEvent.LOAN_APPROVED, "loan", loan_id, {"remarks": remarks})
        return updated

    def reject_loan(self, loan_id: str, reason: Optional[str] = None) -> Loan:
        """Reject a PENDING loan"""
        logger.info(f"Rejecting loan {loan_id}")
        loan = self.loan_store.require(loan_id)
        self._require_status(loan, LoanStatus.PENDING, "Only pending loans can be rejected")

        now = self.clock()
        updated = replace(loan, status=LoanStatus.REJECTED, rejected_at=now,
                          rejection_reason=reason, updated_at=now)
        self.loan_store.update(updated)

        self.dispatcher.emit(DomainEvent.LOAN_REJECTED, "loan", loan_id, {"reason": reason})
        return updated

    def disburse_loan(self, loan_id: str) -> Loan:
        """
        Disburse an APPROVED loan and materialize its repayment schedule

        The loan's move to ACTIVE and the schedule insert happen in one
        atomic block; if either fails neither is applied.
        """
        logger.info(f"Disbursing loan {loan_id}")
        loan = self.loan_store.require(loan_id)
        self._require_status(loan, LoanStatus.APPROVED, "Only approved loans can be disbursed")

        now = self.clock()
        installments = list(self.generator.generate(loan, now.date(), created_at=now))
        updated = replace(loan, status=LoanStatus.ACTIVE, disbursed_at=now,
                          remaining_installments=len(installments), updated_at=now)

        with self.loan_store.storage.atomic():
            self.loan_store.update(updated)
            self.schedule_store.save_all(installments)

        logger.info(f"Loan {loan_id} disbursed with {len(installments)} installments")
        self.dispatcher.emit(
            DomainEvent.LOAN_DISBURSED, "loan", loan_id,
            {
                "installments": len(installments),
                "first_due_date": installments[0].due_date.isoformat(),
                "disbursed_at": now.isoformat()
            }
        )
        return updated

    def close_loan(self, loan_id: str) -> Loan:
        """Close an ACTIVE loan whose outstanding balance is zero"""
        logger.info(f"Closing loan {loan_id}")
        loan = self.loan_store.require(loan_id)
        self._require_status(loan, LoanStatus.ACTIVE, "Can only close an ACTIVE loan")

        if loan.outstanding_balance != ZERO:
            logger.warning(f"Close attempted on loan {loan_id} with balance {loan.outstanding_balance}")
            raise InvalidLoanOperationError("Cannot close loan with outstanding balance")

        now = self.clock()
        updated = replace(loan, status=LoanStatus.CLOSED, closed_at=now, updated_at=now)
        self.loan_store.update(updated)

        self.dispatcher.emit(DomainEvent.LOAN_CLOSED, "loan", loan_id, {"closed_at": now.isoformat()})
        return updated

    def get_loan(self, loan_id: str) -> Loan:
        return self.loan_store.require(loan_id)

    def get_consumer_loans(self, consumer_id: str) -> List[Loan]:
        """Get all loans for a consumer"""
        return self.loan_store.find(consumer_id=consumer_id)

    def get_active_loans(self, consumer_id: str) -> List[Loan]:
        """Get ACTIVE loans for a consumer"""
        return self.loan_store.find(consumer_id=consumer_id, status=LoanStatus.ACTIVE)

    def get_pending_loans(self) -> List[Loan]:
        """Get PENDING loans across all consumers"""
        return self.loan_store.find(status=LoanStatus.PENDING)

    def _require_status(self, loan: Loan, expected: LoanStatus, message: str) -> None:
        if loan.status != expected:
            logger.warning(f"Transition attempted on loan {loan.id} with status {loan.status.value}")
            raise InvalidLoanOperationError(message)

    def _check_tenure(self, tenure_months: int) -> None:
        if isinstance(tenure_months, bool) or not isinstance(tenure_months, int):
            raise InvalidInputError("Tenure must be a whole number of months")
        if tenure_months < self.config.min_tenure_months:
            raise InvalidLoanOperationError(
                f"Loan tenure must be at least {self.config.min_tenure_months} months"
            )
        if tenure_months > self.config.max_tenure_months:
            raise InvalidLoanOperationError(
                f"Loan tenure cannot exceed {self.config.max_tenure_months} months"
            )

    def _check_eligibility(self, consumer_id: str) -> None:
        """Validate the consumer's KYC, account and active-loan facts"""
        logger.debug(f"Validating loan eligibility for consumer {consumer_id}")

        if self.eligibility_checker is None:
            raise InvalidLoanOperationError("No eligibility checker configured")

        facts = self.eligibility_checker.is_eligible(consumer_id)
        if facts is None:
            logger.warning(f"Consumer not found: {consumer_id}")
            raise ConsumerNotFoundError(f"Consumer not found: {consumer_id}")

        if not facts.kyc_verified:
            raise InvalidLoanOperationError("Consumer KYC verification is required")
        if not facts.active:
            raise InvalidLoanOperationError("Consumer account is not active")
        if not facts.has_verified_account:
            raise InvalidLoanOperationError("Consumer must have a verified principal account")
        if facts.has_active_loan or self.loan_store.find(consumer_id=consumer_id, status=LoanStatus.ACTIVE):
            raise InvalidLoanOperationError("Consumer cannot have more than one active loan")

        logger.debug(f"Loan eligibility validation passed for consumer {consumer_id}")
