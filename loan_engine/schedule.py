"""
Repayment Schedule Module

Installment records, the schedule store, and the generator that expands a
disbursed loan into its full installment schedule.
"""

from decimal import Decimal, localcontext
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Any, TYPE_CHECKING
from enum import Enum
import calendar

from .amortization import AmortizationCalculator
from .exceptions import (
    InvalidInputError, InvalidLoanOperationError, ConcurrencyConflictError
)
from .money import round_money, money_context, money_from_str, ZERO
from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger

if TYPE_CHECKING:
    from .loans import Loan


logger = get_logger("loan_engine.schedule")


class InstallmentStatus(Enum):
    """Payment state of one scheduled installment"""
    PENDING = "pending"                # Due, nothing paid yet
    PAID = "paid"                      # Fully paid
    PARTIALLY_PAID = "partially_paid"  # Some payment received
    OVERDUE = "overdue"                # Set by the external overdue sweep
    WAIVED = "waived"                  # Forgiven

    @classmethod
    def from_name(cls, name: str) -> 'InstallmentStatus':
        """Parse a status name supplied by a caller"""
        try:
            return cls[name.strip().upper()]
        except (KeyError, AttributeError):
            raise InvalidInputError(f"Unknown installment status: {name!r}")

    @property
    def is_settled(self) -> bool:
        """Settled installments no longer count towards the remaining tenure"""
        return self in (InstallmentStatus.PAID, InstallmentStatus.WAIVED)


@dataclass
class Installment(StorageRecord):
    """One scheduled payment within a loan's repayment schedule"""
    loan_id: str
    installment_number: int
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    due_date: date
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    payment_mode: Optional[str] = None
    transaction_reference: Optional[str] = None

    def __post_init__(self):
        # Validate that total equals principal + interest
        with money_context(self.principal_amount, self.interest_amount):
            expected_total = self.principal_amount + self.interest_amount
        if expected_total != self.total_amount:
            raise InvalidInputError(
                f"Installment {self.installment_number} total {self.total_amount} does not equal "
                f"principal {self.principal_amount} + interest {self.interest_amount}"
            )

    @property
    def amount_due(self) -> Decimal:
        """Amount still owed on this installment"""
        paid = self.paid_amount or ZERO
        with money_context(self.total_amount, paid):
            return max(self.total_amount - paid, ZERO)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            version=data['version'],
            loan_id=data['loan_id'],
            installment_number=data['installment_number'],
            principal_amount=Decimal(data['principal_amount']),
            interest_amount=Decimal(data['interest_amount']),
            total_amount=Decimal(data['total_amount']),
            due_date=date.fromisoformat(data['due_date']),
            status=InstallmentStatus(data['status']),
            paid_amount=money_from_str(data.get('paid_amount')),
            paid_at=datetime.fromisoformat(data['paid_at']) if data.get('paid_at') else None,
            payment_mode=data.get('payment_mode'),
            transaction_reference=data.get('transaction_reference')
        )


def installment_id(loan_id: str, installment_number: int) -> str:
    """Storage id of an installment, unique per (loan, number)"""
    return f"{loan_id}_{installment_number}"


class ScheduleStore:
    """Versioned persistence for installment records"""

    def __init__(self, storage: StorageInterface, table: str = "installments"):
        self.storage = storage
        self.table = table

    def save_all(self, installments: List[Installment]) -> None:
        """
        Persist a freshly generated schedule

        Raises:
            InvalidLoanOperationError: If any installment already exists
        """
        for installment in installments:
            if not self.storage.insert(self.table, installment.id, installment.to_dict()):
                raise InvalidLoanOperationError(
                    f"Repayment schedule already exists for loan {installment.loan_id}"
                )

    def update(self, installment: Installment) -> Installment:
        """
        Write back a modified installment if nobody changed it meanwhile

        Returns:
            The installment carrying its new version

        Raises:
            ConcurrencyConflictError: On version mismatch
        """
        expected = installment.version
        if not self.storage.compare_and_swap(self.table, installment.id, expected, installment.to_dict()):
            raise ConcurrencyConflictError("installment", installment.id, expected)
        installment.version = expected + 1
        return installment

    def get(self, loan_id: str, installment_number: int) -> Optional[Installment]:
        data = self.storage.load(self.table, installment_id(loan_id, installment_number))
        if data:
            return Installment.from_dict(data)
        return None

    def list_for_loan(self, loan_id: str) -> List[Installment]:
        """All installments of a loan ordered by installment number"""
        installments = [Installment.from_dict(data) for data in self.storage.find(self.table, {'loan_id': loan_id})]
        installments.sort(key=lambda x: x.installment_number)
        return installments

    def list_by_status(self, status: InstallmentStatus, loan_id: Optional[str] = None) -> List[Installment]:
        filters: Dict[str, Any] = {'status': status.value}
        if loan_id is not None:
            filters['loan_id'] = loan_id
        installments = [Installment.from_dict(data) for data in self.storage.find(self.table, filters)]
        installments.sort(key=lambda x: (x.loan_id, x.installment_number))
        return installments

    def has_schedule(self, loan_id: str) -> bool:
        return self.storage.exists(self.table, installment_id(loan_id, 1))


def add_months(start_date: date, months: int, day: Optional[int] = None) -> date:
    """
    Add months to a date, handling month-end edge cases

    Args:
        start_date: Base date
        months: Months to add
        day: Day of month for the result (defaults to start_date's day);
            clamped to the length of the target month
    """
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    target_day = start_date.day if day is None else day
    return date(year, month, min(target_day, calendar.monthrange(year, month)[1]))


class RepaymentScheduleGenerator:
    """
    Expands a loan into its ordered installment schedule

    Each installment's interest is the remaining balance times the monthly
    rate; its principal is the fixed payment minus that interest. The final
    installment takes whatever balance is left so the principal portions sum
    to the loan principal exactly.
    """

    def __init__(self, calculator: AmortizationCalculator, due_day_of_month: int = 1):
        self.calculator = calculator
        self.due_day_of_month = due_day_of_month

    def due_date(self, disbursed_on: date, installment_number: int) -> date:
        """Due date of an installment: N months after disbursement on the fixed due day"""
        return add_months(disbursed_on, installment_number, day=self.due_day_of_month)

    def generate(
        self,
        loan: 'Loan',
        disbursed_on: date,
        created_at: Optional[datetime] = None
    ) -> Iterator[Installment]:
        """
        Yield the installments of a loan in order

        Args:
            loan: Loan whose terms and periodic payment drive the schedule
            disbursed_on: Disbursement date; the first installment is due a month later
            created_at: Timestamp stamped on every record

        Yields:
            Installment records numbered 1..tenure, all PENDING
        """
        if loan.periodic_payment is None or loan.tenure_months <= 0:
            raise InvalidLoanOperationError(f"Loan {loan.id} has no computed periodic payment")

        now = created_at or datetime.now(timezone.utc)
        rate = self.calculator.monthly_rate(loan.annual_interest_rate)
        payment = loan.periodic_payment
        remaining_balance = loan.principal_amount
        tenure = loan.tenure_months
        precision = self.calculator.working_precision(remaining_balance)

        for number in range(1, tenure + 1):
            with localcontext() as ctx:
                ctx.prec = precision
                interest_amount = round_money(remaining_balance * rate)

                if number == tenure:
                    # Final installment absorbs all rounding drift
                    principal_amount = remaining_balance
                else:
                    principal_amount = round_money(payment - interest_amount)
                total_amount = principal_amount + interest_amount
                next_balance = remaining_balance - principal_amount

            yield Installment(
                id=installment_id(loan.id, number),
                created_at=now,
                updated_at=now,
                version=1,
                loan_id=loan.id,
                installment_number=number,
                principal_amount=principal_amount,
                interest_amount=interest_amount,
                total_amount=total_amount,
                due_date=self.due_date(disbursed_on, number),
                status=InstallmentStatus.PENDING
            )

            remaining_balance = next_balance

        logger.info(f"Repayment schedule generated with {tenure} installments for loan {loan.id}")
