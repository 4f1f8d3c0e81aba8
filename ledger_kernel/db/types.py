"""
Module: ledger_kernel.db.types
Responsibility: Monetary precision, rounding and conversion helpers shared by
    models, services and selectors.
Architecture position: Kernel > DB.  May be imported by every other kernel
    layer; MUST NOT import from any of them.

Invariants enforced:
    - No floats in the ledger.  Inbound numbers are converted with
      ``to_decimal`` (via ``str`` so 0.1 stays 0.1).
    - ``round_money`` is the ONLY sanctioned rounding function for amounts
      (two places, ROUND_HALF_UP).
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric

# Monetary amount column type
Money = Annotated[Decimal, Numeric(38, 9)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")

# Debits may differ from credits by at most this much (floating accumulation
# in upstream callers).
DEFAULT_BALANCE_TOLERANCE = Decimal("0.01")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """
    Convert a caller-supplied number to Decimal.

    Raises:
        ValueError: If the value is not numeric or not finite.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of places (half-up).

    Example:
        round_money(Decimal("104.516")) -> Decimal("104.52")
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def is_whole_cents(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> bool:
    """
    Whether ``value`` already fits the money precision.

    Example:
        is_whole_cents(Decimal("100.50")) -> True
        is_whole_cents(Decimal("100.005")) -> False
    """
    return value == round_money(value, decimal_places)
