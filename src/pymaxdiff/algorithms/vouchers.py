"""Voucher (monetary anchor) grid generation.

Vouchers are cash-discount items mixed into choice sets so that feature
utilities can be mapped onto a currency scale. The grid spans from zero
(or a minimum discount) up to a little above the most expensive feature,
log-spaced by default so small amounts are resolved finely.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from pymaxdiff.core.exceptions import ValueRangeError
from pymaxdiff.core.items import Voucher, format_amount
from pymaxdiff.core.types import VoucherSpacing

DEFAULT_MIN_AMOUNT = 0.0
DEFAULT_MAX_FLOOR = 50.0
DEFAULT_COST_MULTIPLIER = 1.2
DEFAULT_LEVELS = 7


@dataclass(frozen=True)
class VoucherBounds:
    """
    Bounds and shape of the voucher amount grid.

    Attributes:
        min_amount: Smallest positive level (log spacing starts at max(1, min))
        max_amount: Largest level
        levels: Number of levels requested, including zero if present
        spacing: Log or linear spacing
        include_zero: Whether a $0 voucher is part of the grid
    """

    min_amount: float = DEFAULT_MIN_AMOUNT
    max_amount: float = DEFAULT_MAX_FLOOR
    levels: int = DEFAULT_LEVELS
    spacing: VoucherSpacing = VoucherSpacing.LOG
    include_zero: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "spacing", VoucherSpacing(self.spacing))
        for name in ("min_amount", "max_amount"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0:
                raise ValueRangeError(f"VoucherBounds.{name} must be finite and >= 0, got {value!r}.")
            object.__setattr__(self, name, value)
        if self.max_amount < self.min_amount:
            raise ValueRangeError(
                f"VoucherBounds.max_amount ({self.max_amount}) is below min_amount ({self.min_amount})."
            )
        if int(self.levels) < 1:
            raise ValueRangeError(f"VoucherBounds.levels must be >= 1, got {self.levels!r}.")
        object.__setattr__(self, "levels", int(self.levels))

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "levels": self.levels,
            "spacing": self.spacing.value,
            "include_zero": self.include_zero,
        }


def derive_voucher_bounds(feature_costs: Sequence[float]) -> VoucherBounds:
    """
    Default voucher policy for a feature list.

    min = 0, max = max(50, 1.2 * highest finite positive cost), 7 log-spaced
    levels including zero.

    Example:
        >>> derive_voucher_bounds([100.0, 300.0]).max_amount
        360.0
    """
    costs = [float(c) for c in feature_costs if math.isfinite(float(c)) and float(c) > 0]
    highest = max(costs) if costs else 0.0
    return VoucherBounds(
        min_amount=DEFAULT_MIN_AMOUNT,
        max_amount=max(DEFAULT_MAX_FLOOR, round(highest * DEFAULT_COST_MULTIPLIER, 2)),
        levels=DEFAULT_LEVELS,
        spacing=VoucherSpacing.LOG,
        include_zero=True,
    )


def build_voucher_grid(bounds: VoucherBounds) -> list[float]:
    """
    Strictly increasing, integer-rounded voucher amounts.

    Log spacing uses ``geomspace(max(1, min), max)`` for the positive
    levels (one fewer when zero is included) and prepends 0. If rounding
    collapses levels so fewer than ``bounds.levels`` remain, the grid is
    rebuilt with linear spacing over the same bounds.

    Example:
        >>> build_voucher_grid(VoucherBounds(0, 1000, 7))
        [0.0, 1.0, 4.0, 16.0, 63.0, 251.0, 1000.0]
    """
    if bounds.spacing is VoucherSpacing.LOG:
        grid = _log_grid(bounds)
        if len(grid) >= bounds.levels:
            return grid
    return _linear_grid(bounds)


def generate_vouchers(
    feature_costs: Sequence[float],
    bounds: VoucherBounds | None = None,
) -> list[Voucher]:
    """
    Build Voucher items for a feature cost list.

    Args:
        feature_costs: Material costs of the features in the study
        bounds: Grid override (defaults to derive_voucher_bounds(costs))

    Returns:
        Vouchers ``voucher-1 .. voucher-n`` in increasing amount order
    """
    if bounds is None:
        bounds = derive_voucher_bounds(feature_costs)
    vouchers = []
    for level, amount in enumerate(build_voucher_grid(bounds), start=1):
        vouchers.append(
            Voucher(
                id=f"voucher-{level}",
                amount=amount,
                description=f"Voucher: {format_amount(amount)} off (level {level})",
                level=level,
            )
        )
    return vouchers


def _round_unique(values: np.ndarray) -> list[float]:
    rounded = np.floor(np.asarray(values, dtype=np.float64) + 0.5)
    return [float(v) for v in np.unique(rounded)]


def _log_grid(bounds: VoucherBounds) -> list[float]:
    positive_levels = bounds.levels - 1 if bounds.include_zero else bounds.levels
    low = max(1.0, bounds.min_amount)
    high = max(low, bounds.max_amount)
    values = np.geomspace(low, high, positive_levels) if positive_levels > 0 else np.empty(0)
    if bounds.include_zero:
        values = np.concatenate([[0.0], values])
    return _round_unique(values)


def _linear_grid(bounds: VoucherBounds) -> list[float]:
    low = 0.0 if bounds.include_zero else bounds.min_amount
    return _round_unique(np.linspace(low, bounds.max_amount, bounds.levels))
