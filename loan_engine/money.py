"""
Money Helpers Module

Decimal coercion and rounding for monetary values. NEVER uses float for
monetary values: floats are converted through their string form.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext, localcontext
from typing import Union
import re

from .exceptions import InvalidInputError


MONEY_PLACES = 2
ZERO = Decimal('0')

Numeric = Union[Decimal, int, float, str]


# Characters ignored in numeric strings: whitespace, currency symbols and
# underscore digit grouping
IGNORED_CHARACTERS = re.compile(r'[\s$€£¥₹_]')
NUMBER_PATTERN = re.compile(r'[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?')


def _parse_amount(value: str, field_name: str) -> Decimal:
    clean_value = IGNORED_CHARACTERS.sub('', value)

    if ',' in clean_value and '.' in clean_value:
        if clean_value.rfind(',') > clean_value.rfind('.'):
            # European format: 1.234,56
            clean_value = clean_value.replace('.', '').replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    elif clean_value.count(',') == 1 and len(clean_value.split(',')[1]) != 3:
        # Decimal comma: 123,45
        clean_value = clean_value.replace(',', '.')
    else:
        # Thousands separators: 1,000 or 1,00,000
        clean_value = clean_value.replace(',', '')

    if not NUMBER_PATTERN.fullmatch(clean_value):
        raise InvalidInputError(f"Cannot convert {field_name} '{value}' to Decimal")
    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise InvalidInputError(f"Cannot convert {field_name} '{value}' to Decimal")


def to_decimal(value: Numeric, field_name: str = "value") -> Decimal:
    """
    Convert an incoming number to Decimal

    Args:
        value: Decimal, int, float or numeric string
        field_name: Name used in the error message

    Returns:
        Decimal value

    Raises:
        InvalidInputError: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(f"{field_name} must be a number")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = _parse_amount(value, field_name)
    else:
        raise InvalidInputError(f"{field_name} must be a number, got {type(value).__name__}")

    if not result.is_finite():
        raise InvalidInputError(f"{field_name} must be finite")

    return result


def round_money(value: Decimal, places: int = MONEY_PLACES) -> Decimal:
    """
    Round to the given number of places using ROUND_HALF_UP

    The quantize runs with enough digits for the whole result, so large
    amounts round instead of failing the active context.
    """
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + places + 2)
        return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)


def money_from_str(value) -> Decimal:
    """Deserialize a stored amount, keeping None as None"""
    if value is None:
        return None
    return Decimal(value)


def money_context(*amounts: Decimal):
    """
    Decimal context wide enough for exact sums and differences of the amounts

    Arithmetic on amounts beyond the default 28 digits would otherwise be
    silently rounded.
    """
    ctx = getcontext().copy()
    present = [amount for amount in amounts if amount]
    if present:
        digits = max(a.adjusted() for a in present) - min(a.as_tuple().exponent for a in present) + 2
        ctx.prec = max(ctx.prec, digits)
    return localcontext(ctx)
