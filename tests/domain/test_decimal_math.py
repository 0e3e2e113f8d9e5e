"""
Unit tests for settlement_kernel.domain.decimal_math.

Verifies:
- Inbound amounts become Decimal without passing through float
- Ratios are applied in parts of the divisor and rounded down
- Threshold comparison treats None as never reaching
"""

from decimal import Decimal

import pytest

from settlement_kernel.domain.decimal_math import (
    ZERO,
    multiply,
    quantize_money,
    ratio_as_percentage,
    ratio_of,
    reaches,
    to_decimal,
)
from settlement_kernel.exceptions import InvalidAmountError


class TestToDecimal:

    def test_decimal_passthrough(self):
        assert to_decimal(Decimal("12.5")) == Decimal("12.5")

    def test_int(self):
        assert to_decimal(7) == Decimal(7)

    def test_numeric_string(self):
        assert to_decimal(" 100.25 ") == Decimal("100.25")

    def test_exponent_string(self):
        """Wei-style amounts arrive as exponent strings."""
        assert to_decimal("1e18") == Decimal("1000000000000000000")

    def test_none_is_zero(self):
        assert to_decimal(None) == ZERO

    def test_float_rejected(self):
        with pytest.raises(InvalidAmountError):
            to_decimal(0.1)

    def test_bool_rejected(self):
        with pytest.raises(InvalidAmountError):
            to_decimal(True)

    def test_garbage_string_rejected(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            to_decimal("ten")
        assert exc_info.value.code == "INVALID_AMOUNT"

    @pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_rejected(self, raw):
        with pytest.raises(InvalidAmountError):
            to_decimal(raw)


class TestRatioOf:

    def test_basis_points(self):
        assert ratio_of(Decimal("100"), 800) == Decimal("8")

    def test_custom_divisor(self):
        assert ratio_of(Decimal("200"), 1, divisor=4) == Decimal("50")

    def test_rounds_down(self):
        # 0.000000001 * 800 / 10000 = 0.00000000008 -> 0
        assert ratio_of(Decimal("0.000000001"), 800) == Decimal("0E-9")

    def test_never_exceeds_amount(self):
        amount = Decimal("33.333333333")
        assert ratio_of(amount, 10000) <= amount

    def test_negative_ratio_rejected(self):
        with pytest.raises(InvalidAmountError):
            ratio_of(Decimal("1"), -1)

    def test_zero_divisor_rejected(self):
        with pytest.raises(InvalidAmountError):
            ratio_of(Decimal("1"), 1, divisor=0)


class TestHelpers:

    def test_percentage(self):
        assert ratio_as_percentage(800) == Decimal("0.08")

    def test_multiply(self):
        assert multiply("0.5", 3) == Decimal("1.5")

    def test_quantize(self):
        assert quantize_money(Decimal("1.0000000005")) == Decimal("1.000000001")

    def test_reaches(self):
        assert reaches(Decimal("10000"), Decimal("10000"))
        assert not reaches(Decimal("9999.999999999"), Decimal("10000"))
        assert not reaches(None, Decimal("0"))
