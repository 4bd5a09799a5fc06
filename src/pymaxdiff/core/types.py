"""Type aliases and enumerations for PyMaxDiff."""

from __future__ import annotations

import math
from enum import Enum
from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray

# Identifiers
ItemId: TypeAlias = str
PairKey: TypeAlias = str

# Array types
FloatArray: TypeAlias = NDArray[np.float64]
IntArray: TypeAlias = NDArray[np.int64]


class MoneyTransform(str, Enum):
    """Transform applied to voucher amounts before scaling by beta."""

    LOG1P = "log1p"
    LINEAR = "linear"


class VoucherSpacing(str, Enum):
    """Spacing of the voucher amount grid."""

    LOG = "log"
    LINEAR = "linear"


class DesignMode(str, Enum):
    """Feature block construction strategy."""

    LEGACY = "legacy"
    NEAR_BIBD = "near_bibd"


class Estimator(str, Enum):
    """Which estimator turns responses into WTP for a run."""

    LEGACY_SCORE = "legacy_score"
    BWS_MNL_MONEY = "bws_mnl_money"


class CalibrationChoice(str, Enum):
    """Answer to a feature-vs-cash query: A keeps the feature, B takes cash."""

    A = "A"
    B = "B"


class CalibrationPhase(str, Enum):
    BRACKET = "bracket"
    SEARCH = "search"


class CalibrationStrategy(str, Enum):
    """How calibration midpoints adjust model WTP."""

    SCALE = "scale"
    PARTIAL_OVERRIDE = "partial_override"


def pair_key(a: ItemId, b: ItemId) -> PairKey:
    """Order-independent key for an item pair."""
    if a < b:
        return f"{a}::{b}"
    return f"{b}::{a}"


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))
