"""
Module: procurement_kernel.db.types
Responsibility: Annotated type aliases and the money rounding helper shared by
    the ORM models and the totals engine.
Architecture position: Kernel > DB.  May be imported by domain/ and services/.
    MUST NOT import from either.

Invariants enforced:
    - Money is Decimal with explicit precision.  round_money() is the ONLY
      sanctioned rounding function for monetary values: round-half-up to
      MONEY_DECIMAL_PLACES.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# Stored with headroom; documents display and compare at 2 dp.
Money = Annotated[Decimal, Numeric(38, 9)]

Sequence = Annotated[int, BigInteger]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO_MONEY = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized with ``rounding`` (ROUND_HALF_UP
        unless overridden).
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
