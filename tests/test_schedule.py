"""
Test suite for repayment schedule generation

Tests installment amounts, conservation of principal, due dates and the
installment store.
"""

import pytest
from decimal import Decimal, localcontext
from datetime import datetime, timezone, date

from loan_engine.amortization import AmortizationCalculator
from loan_engine.exceptions import (
    InvalidInputError, InvalidLoanOperationError, ConcurrencyConflictError
)
from loan_engine.loans import Loan, LoanStatus
from loan_engine.schedule import (
    Installment, InstallmentStatus, RepaymentScheduleGenerator, ScheduleStore,
    add_months, installment_id
)
from loan_engine.storage import InMemoryStorage


NOW = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def make_loan(principal="500000", rate="10.5", tenure=60, loan_id="LOAN1"):
    result = AmortizationCalculator().compute(principal, rate, tenure)
    return Loan(
        id=loan_id,
        created_at=NOW,
        updated_at=NOW,
        version=1,
        consumer_id="CUST1",
        principal_amount=result.principal,
        annual_interest_rate=result.annual_interest_rate,
        tenure_months=result.tenure_months,
        periodic_payment=result.periodic_payment,
        total_interest=result.total_interest,
        outstanding_balance=result.principal,
        remaining_installments=result.tenure_months,
        status=LoanStatus.APPROVED
    )


class TestAddMonths:
    """Test calendar month arithmetic"""

    def test_simple_addition(self):
        assert add_months(date(2024, 1, 15), 1) == date(2024, 2, 15)
        assert add_months(date(2024, 1, 15), 12) == date(2025, 1, 15)

    def test_year_rollover(self):
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)

    def test_month_end_clamped(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 1, 31), 3) == date(2024, 4, 30)

    def test_explicit_day(self):
        assert add_months(date(2024, 1, 15), 1, day=1) == date(2024, 2, 1)
        assert add_months(date(2024, 1, 10), 1, day=31) == date(2024, 2, 29)


class TestRepaymentScheduleGenerator:
    """Test schedule expansion"""

    def setup_method(self):
        self.calculator = AmortizationCalculator()
        self.generator = RepaymentScheduleGenerator(self.calculator)
        self.loan = make_loan()

    def generate(self, loan=None, disbursed_on=date(2024, 1, 15)):
        return list(self.generator.generate(loan or self.loan, disbursed_on, created_at=NOW))

    def test_installment_count_and_numbering(self):
        installments = self.generate()

        assert len(installments) == 60
        assert [i.installment_number for i in installments] == list(range(1, 61))
        assert all(i.status == InstallmentStatus.PENDING for i in installments)
        assert all(i.version == 1 for i in installments)
        assert installments[0].id == "LOAN1_1"

    def test_first_installment_interest(self):
        """Interest on the first installment is principal times monthly rate"""
        first = self.generate()[0]

        assert first.interest_amount == Decimal('4375.00')
        assert first.principal_amount == self.loan.periodic_payment - Decimal('4375.00')
        assert first.total_amount == self.loan.periodic_payment

    def test_principal_conserved_exactly(self):
        installments = self.generate()

        assert sum(i.principal_amount for i in installments) == self.loan.principal_amount

    def test_each_installment_is_additive(self):
        for installment in self.generate():
            assert installment.total_amount == installment.principal_amount + installment.interest_amount

    def test_interest_declines_over_time(self):
        installments = self.generate()

        assert installments[0].interest_amount > installments[30].interest_amount
        assert installments[30].interest_amount > installments[-1].interest_amount

    def test_non_final_installments_equal_payment(self):
        for installment in self.generate()[:-1]:
            assert installment.total_amount == self.loan.periodic_payment

    def test_final_installment_absorbs_drift(self):
        installments = self.generate()
        last = installments[-1]

        assert abs(last.total_amount - self.loan.periodic_payment) < Decimal('1.00')

    def test_zero_rate_schedule(self):
        loan = make_loan(rate="0")
        installments = self.generate(loan)

        assert all(i.interest_amount == Decimal('0.00') for i in installments)
        assert installments[0].principal_amount == Decimal('8333.33')
        assert installments[-1].principal_amount == Decimal('8333.53')
        assert sum(i.principal_amount for i in installments) == Decimal('500000')

    def test_rounded_up_payment_leaves_negative_final_installment(self):
        """100 over 360 months at 0% rounds the payment up to 0.28; the last installment gives the excess back"""
        loan = make_loan(principal="100", rate="0", tenure=360)
        installments = self.generate(loan)

        assert loan.periodic_payment == Decimal('0.28')
        assert all(i.total_amount == Decimal('0.28') for i in installments[:-1])
        assert installments[-1].principal_amount == Decimal('-0.52')
        assert installments[-1].total_amount == Decimal('-0.52')
        assert sum(i.principal_amount for i in installments) == Decimal('100')

    def test_very_large_principal_conserved_exactly(self):
        loan = make_loan(principal=Decimal(10) ** 26)
        installments = self.generate(loan)

        assert len(installments) == 60
        assert all(i.interest_amount.as_tuple().exponent == -2 for i in installments)
        with localcontext() as ctx:
            ctx.prec = 60
            assert sum(i.principal_amount for i in installments) == Decimal(10) ** 26

    def test_due_dates_on_first_of_month(self):
        installments = self.generate()

        assert installments[0].due_date == date(2024, 2, 1)
        assert installments[1].due_date == date(2024, 3, 1)
        assert installments[-1].due_date == date(2029, 1, 1)

    def test_due_day_clamped_to_month_length(self):
        generator = RepaymentScheduleGenerator(self.calculator, due_day_of_month=31)
        installments = list(generator.generate(self.loan, date(2024, 1, 10), created_at=NOW))

        assert installments[0].due_date == date(2024, 2, 29)
        assert installments[1].due_date == date(2024, 3, 31)
        assert installments[2].due_date == date(2024, 4, 30)

    def test_generator_is_lazy(self):
        schedule = self.generator.generate(self.loan, date(2024, 1, 15), created_at=NOW)

        first = next(schedule)
        assert first.installment_number == 1

    def test_rejects_loan_without_payment(self):
        loan = make_loan()
        loan.periodic_payment = None

        with pytest.raises(InvalidLoanOperationError):
            self.generate(loan)

    def test_deterministic(self):
        assert self.generate() == self.generate()


class TestInstallment:
    """Test installment record behaviour"""

    def make_installment(self, **overrides):
        fields = dict(
            id=installment_id("LOAN1", 1),
            created_at=NOW,
            updated_at=NOW,
            version=1,
            loan_id="LOAN1",
            installment_number=1,
            principal_amount=Decimal('6371.95'),
            interest_amount=Decimal('4375.00'),
            total_amount=Decimal('10746.95'),
            due_date=date(2024, 2, 1)
        )
        fields.update(overrides)
        return Installment(**fields)

    def test_total_must_equal_parts(self):
        with pytest.raises(InvalidInputError):
            self.make_installment(total_amount=Decimal('10000.00'))

    def test_amount_due(self):
        installment = self.make_installment()
        assert installment.amount_due == Decimal('10746.95')

        partial = self.make_installment(paid_amount=Decimal('5000.00'),
                                        status=InstallmentStatus.PARTIALLY_PAID)
        assert partial.amount_due == Decimal('5746.95')

        over = self.make_installment(paid_amount=Decimal('20000.00'), status=InstallmentStatus.PAID)
        assert over.amount_due == Decimal('0')

    def test_dict_round_trip_preserves_types(self):
        installment = self.make_installment(paid_amount=Decimal('100.00'), paid_at=NOW,
                                            payment_mode="UPI")
        restored = Installment.from_dict(installment.to_dict())

        assert restored == installment
        assert isinstance(restored.due_date, date)
        assert restored.status == InstallmentStatus.PENDING

    def test_status_parsing(self):
        assert InstallmentStatus.from_name("partially_paid") == InstallmentStatus.PARTIALLY_PAID
        assert InstallmentStatus.from_name(" Waived ") == InstallmentStatus.WAIVED

        with pytest.raises(InvalidInputError):
            InstallmentStatus.from_name("LATE")

    def test_settled_statuses(self):
        assert InstallmentStatus.PAID.is_settled
        assert InstallmentStatus.WAIVED.is_settled
        assert not InstallmentStatus.PARTIALLY_PAID.is_settled
        assert not InstallmentStatus.OVERDUE.is_settled


class TestScheduleStore:
    """Test installment persistence"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = ScheduleStore(self.storage)
        generator = RepaymentScheduleGenerator(AmortizationCalculator())
        self.installments = list(generator.generate(make_loan(tenure=12), date(2024, 1, 15), created_at=NOW))

    def test_save_and_list(self):
        self.store.save_all(self.installments)

        loaded = self.store.list_for_loan("LOAN1")
        assert loaded == self.installments
        assert self.store.has_schedule("LOAN1")
        assert not self.store.has_schedule("OTHER")

    def test_save_twice_rejected(self):
        self.store.save_all(self.installments)

        with pytest.raises(InvalidLoanOperationError, match="already exists"):
            self.store.save_all(self.installments)

    def test_get(self):
        self.store.save_all(self.installments)

        assert self.store.get("LOAN1", 3) == self.installments[2]
        assert self.store.get("LOAN1", 13) is None

    def test_update_bumps_version(self):
        self.store.save_all(self.installments)
        installment = self.store.get("LOAN1", 1)
        installment.status = InstallmentStatus.WAIVED

        updated = self.store.update(installment)

        assert updated.version == 2
        assert self.store.get("LOAN1", 1).version == 2
        assert self.store.get("LOAN1", 1).status == InstallmentStatus.WAIVED

    def test_stale_update_conflicts(self):
        self.store.save_all(self.installments)
        first = self.store.get("LOAN1", 1)
        second = self.store.get("LOAN1", 1)
        self.store.update(first)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            self.store.update(second)
        assert exc_info.value.entity_type == "installment"
        assert exc_info.value.expected_version == 1

    def test_list_by_status(self):
        self.store.save_all(self.installments)
        installment = self.store.get("LOAN1", 2)
        installment.status = InstallmentStatus.OVERDUE
        self.store.update(installment)

        overdue = self.store.list_by_status(InstallmentStatus.OVERDUE)
        assert [i.installment_number for i in overdue] == [2]
        assert len(self.store.list_by_status(InstallmentStatus.PENDING, loan_id="LOAN1")) == 11
        assert self.store.list_by_status(InstallmentStatus.PENDING, loan_id="OTHER") == []
