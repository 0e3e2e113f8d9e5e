"""
Decimal arithmetic for revenue, commission and volume values.

Responsibility:
    The ONLY sanctioned way to turn inbound amounts into ``Decimal`` and to
    apply commission ratios.  Ratios are integers over a fixed divisor
    (parts-per-ten-thousand by default) so no rounding drift is introduced
    until the final quantize.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Floats are rejected.  ``to_decimal(0.1)`` raises InvalidAmountError.
    - ``ratio_of(amount, ratio, divisor) <= amount`` whenever
      ``0 <= ratio <= divisor``; fees are rounded DOWN so a split never
      pays out more than the revenue it was taken from.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from settlement_kernel.exceptions import InvalidAmountError

MONEY_DECIMAL_PLACES = 9
_MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)

DEFAULT_RATIO_DIVISOR = 10000

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str | None) -> Decimal:
    """
    Convert an inbound amount to Decimal.

    Accepts Decimal, int and numeric strings ("1.5", "1e18").  None maps to
    zero, matching missing counters on freshly created rows.

    Raises:
        InvalidAmountError: For floats, bools, non-numeric strings, NaN or
            infinity.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(value, "floats and bools are not accepted")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmountError(value, "not a decimal number") from None
    else:
        raise InvalidAmountError(value, f"unsupported type {type(value).__name__}")
    if not result.is_finite():
        raise InvalidAmountError(value, "must be finite")
    return result


def quantize_money(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round to the storage precision of Money columns."""
    return value.quantize(_MONEY_QUANTUM, rounding=rounding)


def ratio_of(
    amount: Decimal,
    ratio: int,
    divisor: int = DEFAULT_RATIO_DIVISOR,
) -> Decimal:
    """
    Apply an integer ratio expressed in parts of ``divisor``.

    >>> ratio_of(Decimal("100"), 800)
    Decimal('8.000000000')
    """
    if divisor <= 0:
        raise InvalidAmountError(divisor, "divisor must be positive")
    if ratio < 0:
        raise InvalidAmountError(ratio, "ratio must not be negative")
    return quantize_money(to_decimal(amount) * Decimal(ratio) / Decimal(divisor), ROUND_DOWN)


def ratio_as_percentage(ratio: int, divisor: int = DEFAULT_RATIO_DIVISOR) -> Decimal:
    """Ratio as a fraction of one (800 / 10000 -> 0.08)."""
    return Decimal(ratio) / Decimal(divisor)


def multiply(unit_price: Decimal | int | str, quantity: int) -> Decimal:
    """Revenue for ``quantity`` units at ``unit_price``."""
    return to_decimal(unit_price) * Decimal(quantity)


def reaches(value: Decimal | None, threshold: Decimal) -> bool:
    """True when ``value`` is at or above ``threshold``; None never reaches."""
    if value is None:
        return False
    return to_decimal(value) >= threshold
