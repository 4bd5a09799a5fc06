"""Tests for voucher grid generation."""

import pytest

from pymaxdiff import ValueRangeError, VoucherBounds, derive_voucher_bounds, generate_vouchers
from pymaxdiff.algorithms.vouchers import build_voucher_grid


class TestDeriveBounds:
    def test_max_is_120_percent_of_highest_cost(self):
        bounds = derive_voucher_bounds([100.0, 300.0])
        assert bounds.max_amount == 360.0
        assert bounds.min_amount == 0.0
        assert bounds.levels == 7
        assert bounds.include_zero

    def test_floor_of_fifty(self):
        assert derive_voucher_bounds([10.0]).max_amount == 50.0
        assert derive_voucher_bounds([]).max_amount == 50.0

    def test_ignores_non_positive_costs(self):
        assert derive_voucher_bounds([0.0, -100.0, 200.0]).max_amount == 240.0


class TestVoucherBounds:
    def test_negative_rejected(self):
        with pytest.raises(ValueRangeError):
            VoucherBounds(min_amount=-1, max_amount=10)

    def test_max_below_min_rejected(self):
        with pytest.raises(ValueRangeError):
            VoucherBounds(min_amount=20, max_amount=10)

    def test_levels_must_be_positive(self):
        with pytest.raises(ValueRangeError):
            VoucherBounds(levels=0)

    def test_spacing_coerced_from_string(self):
        assert VoucherBounds(spacing="linear").to_dict()["spacing"] == "linear"


class TestVoucherGrid:
    def test_log_grid(self):
        assert build_voucher_grid(VoucherBounds(0, 1000, 7)) == [0.0, 1.0, 4.0, 16.0, 63.0, 251.0, 1000.0]

    def test_linear_grid(self):
        bounds = VoucherBounds(0, 200, 5, spacing="linear")
        assert build_voucher_grid(bounds) == [0.0, 50.0, 100.0, 150.0, 200.0]

    def test_collapsed_log_grid_falls_back_to_linear(self):
        """Rounding merges small log levels, so linear spacing is used."""
        grid = build_voucher_grid(VoucherBounds(0, 5, 7))
        assert grid == [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]

    def test_without_zero(self):
        assert build_voucher_grid(VoucherBounds(10, 1000, 3, include_zero=False)) == [10.0, 100.0, 1000.0]

    @pytest.mark.parametrize("high", [50, 360, 999, 12000])
    def test_grid_strictly_increasing(self, high):
        grid = build_voucher_grid(VoucherBounds(0, high, 7))
        assert all(a < b for a, b in zip(grid, grid[1:]))
        assert grid[0] == 0.0
        assert grid[-1] == float(high)


class TestGenerateVouchers:
    def test_ids_levels_and_descriptions(self):
        vouchers = generate_vouchers([100.0], VoucherBounds(0, 200, 5, spacing="linear"))
        assert [v.id for v in vouchers] == [f"voucher-{i}" for i in range(1, 6)]
        assert [v.level for v in vouchers] == [1, 2, 3, 4, 5]
        assert vouchers[2].description == "Voucher: $100 off (level 3)"

    def test_default_bounds_from_costs(self):
        vouchers = generate_vouchers([100.0, 300.0])
        assert len(vouchers) == 7
        assert vouchers[0].amount == 0.0
        assert vouchers[-1].amount == 360.0
