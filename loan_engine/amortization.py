"""
Amortization Module

EMI (equated monthly installment) calculation using the standard
amortization formula. All intermediate math runs in a Decimal context with
guard digits; only the final amounts are rounded to cents (ROUND_HALF_UP).
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext
from dataclasses import dataclass
from typing import Dict

from .exceptions import InvalidInputError
from .money import Numeric, to_decimal, round_money, ZERO, MONEY_PLACES
from .logging_config import get_logger


logger = get_logger("loan_engine.amortization")

MIN_GUARD_PRECISION = 20
DEFAULT_GUARD_PRECISION = 28

MONTHS_PER_YEAR = Decimal('12')
PERCENT = Decimal('100')


@dataclass(frozen=True)
class AmortizationResult:
    """Fixed periodic payment and totals for a set of loan terms"""
    principal: Decimal
    annual_interest_rate: Decimal
    tenure_months: int
    periodic_payment: Decimal
    total_payment: Decimal
    total_interest: Decimal

    def to_dict(self) -> Dict[str, object]:
        return {
            'principal': str(self.principal),
            'annual_interest_rate': str(self.annual_interest_rate),
            'tenure_months': self.tenure_months,
            'periodic_payment': str(self.periodic_payment),
            'total_payment': str(self.total_payment),
            'total_interest': str(self.total_interest),
        }


class AmortizationCalculator:
    """
    Stateless EMI calculator

    EMI = P * r * (1 + r)^n / ((1 + r)^n - 1)

    where P is the principal, r the monthly rate (annual percent / 1200)
    and n the tenure in months.
    """

    def __init__(self, guard_precision: int = DEFAULT_GUARD_PRECISION):
        if guard_precision < MIN_GUARD_PRECISION:
            raise InvalidInputError(
                f"Guard precision must be at least {MIN_GUARD_PRECISION} significant digits"
            )
        self.guard_precision = guard_precision

    def monthly_rate(self, annual_rate_percent: Numeric) -> Decimal:
        """
        Convert an annual percentage rate to a monthly rate

        Args:
            annual_rate_percent: Annual rate as a percentage (e.g. 10.5)

        Returns:
            Monthly rate as a fraction (e.g. 0.00875)
        """
        annual = to_decimal(annual_rate_percent, "annual interest rate")
        with localcontext() as ctx:
            ctx.prec = self.guard_precision
            ctx.rounding = ROUND_HALF_UP
            return annual / (MONTHS_PER_YEAR * PERCENT)

    def working_precision(self, amount: Decimal) -> int:
        """
        Significant digits for intermediate math on a given amount

        Keeps MIN_GUARD_PRECISION digits past the cents of the amount, so
        very large principals do not lose their fractional part.
        """
        return max(self.guard_precision, amount.adjusted() + 1 + MONEY_PLACES + MIN_GUARD_PRECISION)

    def compute(
        self,
        principal: Numeric,
        annual_rate_percent: Numeric,
        tenure_months: int
    ) -> AmortizationResult:
        """
        Calculate the periodic payment and totals

        Args:
            principal: Amount borrowed, must be > 0
            annual_rate_percent: Annual interest rate in percent, must be >= 0
            tenure_months: Number of monthly payments, must be > 0

        Returns:
            AmortizationResult

        Raises:
            InvalidInputError: If any argument is out of range
        """
        principal = to_decimal(principal, "principal")
        annual_rate = to_decimal(annual_rate_percent, "annual interest rate")
        tenure = self._validate(principal, annual_rate, tenure_months)

        rate = self.monthly_rate(annual_rate)
        payment = self._periodic_payment(principal, rate, tenure)

        with localcontext() as ctx:
            ctx.prec = self.working_precision(principal)
            total_payment = round_money(payment * tenure)
            total_interest = round_money(total_payment - principal)

        logger.debug(
            f"EMI for principal {principal} at {annual_rate}% over {tenure} months: "
            f"{payment} (total interest {total_interest})"
        )

        return AmortizationResult(
            principal=principal,
            annual_interest_rate=annual_rate,
            tenure_months=tenure,
            periodic_payment=payment,
            total_payment=total_payment,
            total_interest=total_interest
        )

    def _validate(self, principal: Decimal, annual_rate: Decimal, tenure_months) -> int:
        if isinstance(tenure_months, bool) or not isinstance(tenure_months, int):
            raise InvalidInputError("Tenure must be a whole number of months")
        if principal <= ZERO:
            raise InvalidInputError("Principal amount must be greater than zero")
        if tenure_months <= 0:
            raise InvalidInputError("Tenure must be greater than zero")
        if annual_rate < ZERO:
            raise InvalidInputError("Interest rate cannot be negative")
        return tenure_months

    def _periodic_payment(self, principal: Decimal, rate: Decimal, tenure: int) -> Decimal:
        if rate == ZERO:
            # No interest - simple division
            with localcontext() as ctx:
                ctx.prec = self.working_precision(principal)
                return round_money(principal / Decimal(tenure))

        with localcontext() as ctx:
            ctx.prec = self.working_precision(principal)
            ctx.rounding = ROUND_HALF_UP
            factor = self._power(Decimal('1') + rate, tenure)
            payment = principal * rate * factor / (factor - Decimal('1'))
        return round_money(payment)

    @staticmethod
    def _power(base: Decimal, exponent: int) -> Decimal:
        """Exponentiation by squaring in the active Decimal context"""
        result = Decimal('1')
        while exponent > 0:
            if exponent % 2 == 1:
                result = result * base
            base = base * base
            exponent //= 2
        return result
