"""Tests for the bounded-amount calculator."""

from decimal import Decimal

import pytest

from liquidity_agent.bounds import (
    deadline,
    from_base_units,
    min_output,
    optimal_liquidity,
    pool_price,
    split_amount,
    to_base_units,
    validate_slippage,
)
from liquidity_agent.exceptions import InvalidInputError, ValidationError


class TestMinOutput:
    """minOutput = desired * (100 - p) / 100 on integer base units"""

    def test_default_slippage(self):
        assert min_output(1000, "0.5") == 995
        assert min_output(100_000_000, Decimal("0.5")) == 99_500_000

    def test_whole_percent(self):
        assert min_output(10**18, 1) == 99 * 10**16

    def test_exact_for_fractional_percent(self):
        # 0.1 must be treated as exactly 1/10, not the float 0.1000000000000000055...
        assert min_output(10**30, "0.1") == 999 * 10**27
        assert min_output(10**30, 0.1) == 999 * 10**27

    def test_floor_rounding(self):
        assert min_output(1, "0.5") == 0
        assert min_output(199, "0.5") == 198

    def test_hundred_percent(self):
        assert min_output(12345, 100) == 0

    @pytest.mark.parametrize("desired", [1, 7, 999, 10**6, 123456789012345678901])
    @pytest.mark.parametrize("pct", ["0.1", "0.5", "1", "3.3", "50", "100"])
    def test_strictly_below_desired(self, desired, pct):
        result = min_output(desired, pct)
        assert result < desired
        assert result == desired * (100 - Decimal(pct)) // 100

    @pytest.mark.parametrize("pct", [0, "-1", "100.01", 101])
    def test_invalid_slippage(self, pct):
        with pytest.raises(InvalidInputError) as exc_info:
            min_output(1000, pct)
        assert exc_info.value.field == "slippage_pct"

    @pytest.mark.parametrize("desired", [0, -5])
    def test_non_positive_desired(self, desired):
        with pytest.raises(InvalidInputError):
            min_output(desired, "0.5")

    def test_desired_must_be_integer_units(self):
        with pytest.raises(InvalidInputError):
            min_output(1000.0, "0.5")
        with pytest.raises(InvalidInputError):
            min_output(True, "0.5")

    def test_error_is_validation_error(self):
        with pytest.raises(ValidationError):
            min_output(0, "0.5")


class TestDeadline:
    def test_default_window(self):
        assert deadline(1_700_000_000) == 1_700_000_000 + 30 * 60

    def test_custom_window(self):
        assert deadline(1000, 5) == 1300
        assert deadline(0, 1) == 60

    def test_fractional_now_truncated(self):
        assert deadline(1000.9, 1) == 1060

    @pytest.mark.parametrize("window", [0, -1])
    def test_invalid_window(self, window):
        with pytest.raises(InvalidInputError):
            deadline(1000, window)

    def test_negative_now(self):
        with pytest.raises(InvalidInputError):
            deadline(-1, 30)


class TestSplitAmount:
    def test_even(self):
        assert split_amount(100_000_000) == (50_000_000, 50_000_000)

    def test_odd_gives_extra_unit_to_b(self):
        assert split_amount(101) == (50, 51)
        assert split_amount(1) == (0, 1)

    @pytest.mark.parametrize("units", [2, 3, 999, 10**18 + 1])
    def test_sum_preserved(self, units):
        a, b = split_amount(units)
        assert a + b == units
        assert abs(a - b) <= 1

    def test_explicit_ratio(self):
        assert split_amount(100, 25) == (25, 75)
        assert split_amount(1000, "33.3") == (333, 667)

    @pytest.mark.parametrize("ratio", [0, 100, 150])
    def test_invalid_ratio(self, ratio):
        with pytest.raises(InvalidInputError):
            split_amount(100, ratio)

    def test_invalid_units(self):
        with pytest.raises(InvalidInputError):
            split_amount(0)


class TestUnitConversion:
    def test_to_base_units_rounds_down(self):
        assert to_base_units("1.2345678", 6) == 1_234_567
        assert to_base_units("100", 6) == 100_000_000
        assert to_base_units(Decimal("0.001"), 18) == 10**15

    def test_from_base_units(self):
        assert from_base_units(1_500_000, 6) == Decimal("1.5")

    def test_not_a_number(self):
        with pytest.raises(InvalidInputError):
            to_base_units("abc", 6)


class TestValidateSlippage:
    def test_accepts_operating_range(self):
        assert validate_slippage("0.5") == Decimal("0.5")
        assert validate_slippage("0.1") == Decimal("0.1")
        assert validate_slippage(5) == Decimal("5")

    @pytest.mark.parametrize("pct", ["0.05", "5.1", "50"])
    def test_rejects_outside_range(self, pct):
        with pytest.raises(InvalidInputError):
            validate_slippage(pct)


class TestOptimalLiquidity:
    def test_first_deposit_mints_geometric_mean(self):
        assert optimal_liquidity(4 * 10**18, 10**18, 0, 0, 0) == (4 * 10**18, 10**18, 2 * 10**18)

    def test_excess_b_is_left_over(self):
        # pool ratio 1 A : 2 B
        used_a, used_b, lp = optimal_liquidity(10, 50, 1000, 2000, 1000)
        assert (used_a, used_b) == (10, 20)
        assert lp == 10

    def test_excess_a_is_left_over(self):
        used_a, used_b, lp = optimal_liquidity(50, 20, 1000, 2000, 1000)
        assert (used_a, used_b) == (10, 20)
        assert lp == 10

    def test_negative_amount(self):
        with pytest.raises(InvalidInputError):
            optimal_liquidity(-1, 10, 1000, 2000, 1000)


class TestPoolPrice:
    def test_price_across_decimals(self):
        # 2 WETH (18 decimals) against 5000 USDC (6 decimals)
        assert pool_price(2 * 10**18, 5000 * 10**6, 18, 6) == Decimal("2500")

    def test_empty_pool(self):
        assert pool_price(0, 10**18, 18, 18) is None
