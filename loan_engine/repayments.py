"""
Repayment Module

Applies payments to scheduled installments and carries their effect onto
the loan's outstanding balance and remaining-installment count. The
installment and the loan are both written with compare-and-swap inside one
atomic block.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import replace
from typing import Callable, List, Optional
import warnings

from .config import LoanEngineConfig
from .events import EventDispatcher, DomainEvent
from .exceptions import (
    InvalidRepaymentError, InstallmentNotFoundError, OverpaymentWarning
)
from .loans import Loan, LoanStatus, LoanStore
from .money import Numeric, to_decimal, money_context, ZERO
from .schedule import Installment, InstallmentStatus, ScheduleStore
from .logging_config import get_logger


logger = get_logger("loan_engine.repayments")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RepaymentProcessor:
    """
    Processes installment payments and answers installment queries
    """

    def __init__(
        self,
        loan_store: LoanStore,
        schedule_store: ScheduleStore,
        config: LoanEngineConfig,
        dispatcher: EventDispatcher,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.loan_store = loan_store
        self.schedule_store = schedule_store
        self.config = config
        self.dispatcher = dispatcher
        self.clock = clock

    def pay(
        self,
        loan_id: str,
        installment_number: int,
        amount_paid: Numeric,
        payment_mode: Optional[str] = None,
        transaction_reference: Optional[str] = None
    ) -> Installment:
        """
        Apply a payment to one installment of an active loan

        Args:
            loan_id: Loan ID
            installment_number: 1-based installment number
            amount_paid: Amount received, must be > 0
            payment_mode: Optional payment channel (e.g. "UPI", "NEFT")
            transaction_reference: Optional external reference

        Returns:
            The updated Installment

        Raises:
            LoanNotFoundError: If the loan does not exist
            InvalidRepaymentError: If the payment cannot be applied
            ConcurrencyConflictError: If the loan or installment changed concurrently
        """
        logger.info(f"Processing repayment for loan {loan_id}, installment {installment_number}, amount {amount_paid}")

        amount = to_decimal(amount_paid, "amount paid")
        if amount <= ZERO:
            raise InvalidRepaymentError("Payment amount must be greater than zero")

        loan = self.loan_store.require(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            logger.warning(f"Repayment attempted on loan {loan_id} with status {loan.status.value}")
            raise InvalidRepaymentError(f"Loan {loan_id} is not active for payments")

        installment = self.schedule_store.get(loan_id, installment_number)
        if installment is None:
            raise InvalidRepaymentError(
                f"Repayment not found for loan {loan_id}, installment {installment_number}"
            )
        if installment.status.is_settled:
            raise InvalidRepaymentError(
                f"Installment {installment_number} of loan {loan_id} is already {installment.status.value}"
            )

        with money_context(installment.paid_amount, amount, loan.outstanding_balance):
            cumulative_paid = (installment.paid_amount or ZERO) + amount
            new_balance = loan.outstanding_balance - amount
        if self.config.clamp_outstanding_balance and new_balance < ZERO:
            new_balance = ZERO

        if cumulative_paid >= installment.total_amount:
            new_status = InstallmentStatus.PAID
        else:
            new_status = InstallmentStatus.PARTIALLY_PAID

        now = self.clock()
        updated_installment = replace(
            installment,
            status=new_status,
            paid_amount=cumulative_paid,
            paid_at=now,
            payment_mode=payment_mode or installment.payment_mode,
            transaction_reference=transaction_reference or installment.transaction_reference,
            updated_at=now
        )

        with self.loan_store.storage.atomic():
            self.schedule_store.update(updated_installment)
            remaining = sum(
                1 for item in self.schedule_store.list_for_loan(loan_id)
                if not item.status.is_settled
            )
            updated_loan = replace(
                loan,
                outstanding_balance=new_balance,
                remaining_installments=remaining,
                updated_at=now
            )
            self.loan_store.update(updated_loan)

        logger.info(f"Repayment processed. Outstanding balance: {new_balance}")
        self._publish(updated_loan, updated_installment, amount)
        return updated_installment

    def _publish(self, loan: Loan, installment: Installment, amount: Decimal) -> None:
        event_type = (
            DomainEvent.INSTALLMENT_PAID if installment.status == InstallmentStatus.PAID
            else DomainEvent.INSTALLMENT_PARTIALLY_PAID
        )
        self.dispatcher.emit(
            event_type, "installment", installment.id,
            {
                "loan_id": loan.id,
                "installment_number": installment.installment_number,
                "amount_paid": str(amount),
                "paid_amount": str(installment.paid_amount),
                "outstanding_balance": str(loan.outstanding_balance),
                "remaining_installments": loan.remaining_installments
            }
        )

        with money_context(installment.paid_amount, installment.total_amount):
            excess = installment.paid_amount - installment.total_amount
        if excess > ZERO:
            message = (
                f"Payment on installment {installment.installment_number} of loan {loan.id} "
                f"exceeds the amount due by {excess}"
            )
            logger.warning(message)
            warnings.warn(message, OverpaymentWarning, stacklevel=3)
            self.dispatcher.emit(
                DomainEvent.PAYMENT_OVERPAID, "installment", installment.id,
                {"loan_id": loan.id, "excess": str(excess)}
            )

    def get_installment(self, loan_id: str, installment_number: int) -> Installment:
        """Get one installment of a loan"""
        self.loan_store.require(loan_id)
        installment = self.schedule_store.get(loan_id, installment_number)
        if installment is None:
            raise InstallmentNotFoundError(
                f"Installment {installment_number} not found for loan {loan_id}"
            )
        return installment

    def list_installments(self, loan_id: str) -> List[Installment]:
        """Get all installments of a loan ordered by number"""
        self.loan_store.require(loan_id)
        return self.schedule_store.list_for_loan(loan_id)

    def list_pending_installments(self, loan_id: str) -> List[Installment]:
        """Get the PENDING installments of a loan"""
        self.loan_store.require(loan_id)
        return self.schedule_store.list_by_status(InstallmentStatus.PENDING, loan_id=loan_id)

    def list_overdue_installments(self) -> List[Installment]:
        """Get OVERDUE installments across all loans"""
        return self.schedule_store.list_by_status(InstallmentStatus.OVERDUE)
