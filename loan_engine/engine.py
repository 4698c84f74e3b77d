"""
Loan Engine Facade

Single entry point exposing the calculator, lifecycle, and repayment
operations to the host application. Wires the stores, collaborators,
dispatcher and configuration together.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

from .amortization import AmortizationCalculator, AmortizationResult
from .config import LoanEngineConfig, get_config
from .eligibility import EligibilityChecker
from .events import EventDispatcher, AuditLogHandler
from .loans import Loan, LoanLifecycle, LoanStatus, LoanStore
from .money import Numeric
from .repayments import RepaymentProcessor
from .schedule import Installment, InstallmentStatus, RepaymentScheduleGenerator, ScheduleStore
from .storage import StorageInterface, create_storage
from .logging_config import get_logger, setup_logging


logger = get_logger("loan_engine.engine")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LoanEngine:
    """
    Loan financial engine

    Example:
        engine = LoanEngine(InMemoryStorage(), checker)
        loan = engine.create_loan("CUST1", "500000", "10.5", 60)
        engine.approve_loan(loan.id, "ok")
        engine.disburse_loan(loan.id)
        engine.pay_installment(loan.id, 1, loan.periodic_payment)
    """

    def __init__(
        self,
        storage: StorageInterface,
        eligibility_checker: Optional[EligibilityChecker] = None,
        config: Optional[LoanEngineConfig] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.config = config or get_config()
        self.dispatcher = dispatcher or EventDispatcher()
        self.clock = clock or _utc_now

        if self.config.enable_audit_logging:
            self.dispatcher.subscribe_all_once(AuditLogHandler())

        self.calculator = AmortizationCalculator(self.config.guard_precision)
        self.generator = RepaymentScheduleGenerator(self.calculator, self.config.due_day_of_month)
        self.loan_store = LoanStore(storage)
        self.schedule_store = ScheduleStore(storage)

        self.lifecycle = LoanLifecycle(
            self.loan_store, self.schedule_store, self.calculator, self.generator,
            eligibility_checker, self.config, self.dispatcher, self.clock
        )
        self.repayments = RepaymentProcessor(
            self.loan_store, self.schedule_store, self.config, self.dispatcher, self.clock
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[LoanEngineConfig] = None,
        eligibility_checker: Optional[EligibilityChecker] = None
    ) -> 'LoanEngine':
        """Build an engine with storage and logging taken from configuration"""
        config = config or get_config()
        setup_logging(config.log_level, "loan_engine", config.log_format)
        storage = create_storage(config.database_url)
        logger.info(f"Loan engine started with storage {type(storage).__name__}")
        return cls(storage, eligibility_checker, config=config)

    # Calculator

    def calculate_amortization(
        self,
        principal: Numeric,
        annual_rate_percent: Numeric,
        tenure_months: int
    ) -> AmortizationResult:
        return self.calculator.compute(principal, annual_rate_percent, tenure_months)

    # Lifecycle

    def create_loan(
        self,
        consumer_id: str,
        principal: Numeric,
        annual_rate_percent: Numeric,
        tenure_months: int
    ) -> Loan:
        return self.lifecycle.create_loan(consumer_id, principal, annual_rate_percent, tenure_months)

    def approve_loan(self, loan_id: str, remarks: Optional[str] = None) -> Loan:
        return self.lifecycle.approve_loan(loan_id, remarks)

    def reject_loan(self, loan_id: str, reason: Optional[str] = None) -> Loan:
        return self.lifecycle.reject_loan(loan_id, reason)

    def disburse_loan(self, loan_id: str) -> Loan:
        return self.lifecycle.disburse_loan(loan_id)

    def close_loan(self, loan_id: str) -> Loan:
        return self.lifecycle.close_loan(loan_id)

    def get_loan(self, loan_id: str) -> Loan:
        return self.lifecycle.get_loan(loan_id)

    def get_consumer_loans(self, consumer_id: str) -> List[Loan]:
        return self.lifecycle.get_consumer_loans(consumer_id)

    def get_active_loans(self, consumer_id: str) -> List[Loan]:
        return self.lifecycle.get_active_loans(consumer_id)

    def get_pending_loans(self) -> List[Loan]:
        return self.lifecycle.get_pending_loans()

    # Repayments

    def pay_installment(
        self,
        loan_id: str,
        installment_number: int,
        amount_paid: Numeric,
        payment_mode: Optional[str] = None,
        transaction_reference: Optional[str] = None
    ) -> Installment:
        return self.repayments.pay(
            loan_id, installment_number, amount_paid,
            payment_mode=payment_mode, transaction_reference=transaction_reference
        )

    def get_installment(self, loan_id: str, installment_number: int) -> Installment:
        return self.repayments.get_installment(loan_id, installment_number)

    def list_installments(self, loan_id: str) -> List[Installment]:
        return self.repayments.list_installments(loan_id)

    def list_pending_installments(self, loan_id: str) -> List[Installment]:
        return self.repayments.list_pending_installments(loan_id)

    def list_overdue_installments(self) -> List[Installment]:
        return self.repayments.list_overdue_installments()

    # Boundary parsing

    @staticmethod
    def loan_status(name: str) -> LoanStatus:
        """Parse a loan status name supplied by an external caller"""
        return LoanStatus.from_name(name)

    @staticmethod
    def installment_status(name: str) -> InstallmentStatus:
        """Parse an installment status name supplied by an external caller"""
        return InstallmentStatus.from_name(name)
