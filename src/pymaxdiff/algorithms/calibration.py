"""Feature-versus-cash calibration by bracket and bisection.

A binary oracle is asked "this feature (A) or this much cash (B)?" at a
sequence of amounts. The first phase widens a bracket until the oracle
prefers the feature at the low end and cash at the high end; the second
phase bisects it geometrically. The queries are strictly sequential: each
amount depends on the previous answer.

The calibrated midpoints are then used to adjust model WTP, either by
rescaling every feature with the median calibrated/model ratio or by also
overriding the calibrated features with their midpoint.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import replace
from typing import Callable, Mapping, Sequence

import numpy as np

from pymaxdiff.core.result import CalibrationResult, CalibrationStep, FeatureValuation
from pymaxdiff.core.types import CalibrationChoice, CalibrationPhase, CalibrationStrategy, ItemId
from pymaxdiff.algorithms.wtp import display_wtp_from_raw

# choose(amount, step, phase) -> "A" (feature preferred) or "B" (cash preferred)
ChooseFn = Callable[[float, int, CalibrationPhase], "CalibrationChoice | str"]

DEFAULT_STEPS = 7
BRACKET_RETRIES = 8
_MIN_AMOUNT = 0.01
_RATIO_EPS = 1e-9


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class _SearchCancelled(Exception):
    """Raised inside a search when its cancel event is set."""


def _geometric_mid(low: float, high: float) -> float:
    if low > 0 and high > 0:
        return math.sqrt(low * high)
    return (low + high) / 2


def run_feature_cash_calibration(
    choose: ChooseFn,
    initial_guess: float,
    min_x: float,
    max_x: float,
    steps: int = DEFAULT_STEPS,
    min_cap: float = _MIN_AMOUNT,
    max_cap: float = math.inf,
    feature_id: ItemId | None = None,
    cancel_event: threading.Event | None = None,
) -> CalibrationResult:
    """
    Locate the cash amount at which the oracle is indifferent to a feature.

    Bracketing: start from [guess/2, 2*guess] clipped to [min_x, max_x].
    While the high end still loses to the feature, double it (at most 8
    times, never past max_cap). While the low end still loses to cash,
    halve it (at most 8 times, never below min_cap).

    Search: query the geometric midpoint (arithmetic when a bound is not
    positive), move ``low`` up on "A" and ``high`` down on "B", and stop
    after ``steps`` queries or once ``high - low <= max(0.5, 1% of low)``.

    Args:
        choose: Oracle callback ``choose(amount, step, phase)``
        initial_guess: Starting estimate (e.g. the model WTP)
        min_x: Lower end of the initial bracket range
        max_x: Upper end of the initial bracket range
        steps: Maximum number of search-phase queries
        min_cap: Hard floor for any queried amount
        max_cap: Hard ceiling for any queried amount
        feature_id: Feature being calibrated (recorded on the result)
        cancel_event: Checked before every query; once set, no further
            query is issued and the partial bracket is returned with
            ``cancelled=True`` and ``bracket_straddled=False``

    Returns:
        CalibrationResult with the final bracket, its geometric midpoint
        and the full query transcript

    Example:
        >>> res = run_feature_cash_calibration(
        ...     lambda amount, step, phase: "A" if amount < 140 else "B",
        ...     initial_guess=60, min_x=10, max_x=400, steps=8)
        >>> res.contains(140)
        True
    """
    start_time = time.perf_counter()

    max_steps = max(1, int(steps))
    min_cap = max(_MIN_AMOUNT, min_cap)
    max_cap = max(min_cap + _MIN_AMOUNT, max_cap)
    min_x = _clamp(max(_MIN_AMOUNT, min_x), min_cap, max_cap)
    max_x = _clamp(max(min_x + _MIN_AMOUNT, max_x), min_cap, max_cap)
    guess = max(_MIN_AMOUNT, initial_guess) if math.isfinite(initial_guess) else min_x

    low = _clamp(guess / 2, min_x, max_x)
    high = _clamp(guess * 2, min_x, max_x)
    if low >= high:
        low, high = min_x, max_x

    transcript: list[CalibrationStep] = []

    def ask(amount: float, phase: CalibrationPhase) -> CalibrationChoice:
        if cancel_event is not None and cancel_event.is_set():
            raise _SearchCancelled
        step = len(transcript) + 1
        choice = CalibrationChoice(choose(amount, step, phase))
        transcript.append(CalibrationStep(step=step, amount=amount, choice=choice, phase=phase))
        return choice

    straddled = False
    cancelled = False
    try:
        high_choice = ask(high, CalibrationPhase.BRACKET)
        retries = 0
        while high_choice is CalibrationChoice.A and high < max_cap and retries < BRACKET_RETRIES:
            high = _clamp(high * 2, min_cap, max_cap)
            high_choice = ask(high, CalibrationPhase.BRACKET)
            retries += 1

        low_choice = ask(low, CalibrationPhase.BRACKET)
        retries = 0
        while low_choice is CalibrationChoice.B and low > min_cap and retries < BRACKET_RETRIES:
            low = _clamp(low / 2, min_cap, max_cap)
            low_choice = ask(low, CalibrationPhase.BRACKET)
            retries += 1

        straddled = low_choice is CalibrationChoice.A and high_choice is CalibrationChoice.B and low < high
        if not straddled and low >= high:
            high = _clamp(max(low + _MIN_AMOUNT, max_x), min_cap, max_cap)

        for _ in range(max_steps):
            mid = _clamp(_geometric_mid(low, high), min_cap, max_cap)
            if ask(mid, CalibrationPhase.SEARCH) is CalibrationChoice.A:
                low = mid
            else:
                high = mid
            if abs(high - low) <= max(0.5, low * 0.01):
                break
    except _SearchCancelled:
        cancelled = True

    lower, upper = min(low, high), max(low, high)

    return CalibrationResult(
        calibration_lower=lower,
        calibration_upper=upper,
        calibration_mid=_geometric_mid(lower, upper),
        steps_used=len(transcript),
        bracket_straddled=not cancelled and (straddled or low < high),
        transcript=tuple(transcript),
        feature_id=feature_id,
        cancelled=cancelled,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def calibration_search_bounds(min_voucher: float, max_voucher: float) -> tuple[float, float, float, float]:
    """(min_x, max_x, min_cap, max_cap) for a study with the given voucher range."""
    return (
        max(1.0, min_voucher),
        max(50.0, max_voucher * 2),
        max(0.5, min_voucher / 2),
        max(200.0, max_voucher * 6),
    )


def select_calibration_features(valuations: Sequence[FeatureValuation], count: int) -> list[ItemId]:
    """
    Pick the features worth calibrating.

    The ``count`` highest-utility features plus the ``ceil(count / 2)``
    features with the widest relative CI, without duplicates.
    """
    if count <= 0:
        return []
    by_utility = sorted(valuations, key=lambda v: -v.utility)[:count]
    by_width = sorted(valuations, key=lambda v: -(v.relative_ci_half_width or 0.0))[: math.ceil(count / 2)]
    return list(dict.fromkeys(v.feature_id for v in [*by_utility, *by_width]))


def calibration_scale_factor(
    valuations: Sequence[FeatureValuation],
    calibrations: Mapping[ItemId, CalibrationResult],
) -> float:
    """Median of calibrated-mid / model-WTP over calibrated features (1.0 if none usable)."""
    raw_by_feature = {v.feature_id: v.raw_wtp for v in valuations}
    ratios = []
    for fid, calibration in calibrations.items():
        model = raw_by_feature.get(fid)
        if model is None or not math.isfinite(model) or abs(model) < _RATIO_EPS:
            continue
        ratio = calibration.calibration_mid / model
        if math.isfinite(ratio):
            ratios.append(ratio)
    return float(np.median(ratios)) if ratios else 1.0


def apply_calibration(
    valuations: Sequence[FeatureValuation],
    calibrations: Mapping[ItemId, CalibrationResult],
    strategy: CalibrationStrategy | str = CalibrationStrategy.SCALE,
) -> tuple[list[FeatureValuation], float]:
    """
    Adjust model WTP with calibration results.

    Every feature's raw WTP is multiplied by the calibration scale factor
    (source ``scaled``, or ``model`` when the factor is exactly 1). Under
    the partial-override strategy a calibrated feature takes its calibrated
    midpoint instead (source ``calibrated_override``).

    Returns:
        (valuations sorted by adjusted WTP descending, scale factor)
    """
    strategy = CalibrationStrategy(strategy)
    scale = calibration_scale_factor(valuations, calibrations)

    adjusted_rows = []
    for row in valuations:
        calibration = calibrations.get(row.feature_id)
        adjusted = row.raw_wtp * scale
        source = "model" if scale == 1.0 else "scaled"
        if strategy is CalibrationStrategy.PARTIAL_OVERRIDE and calibration is not None:
            adjusted = calibration.calibration_mid
            source = "calibrated_override"
        adjusted_rows.append(
            replace(
                row,
                adjusted_wtp=round(adjusted, 2),
                display_wtp=round(display_wtp_from_raw(adjusted), 2),
                adjustment_source=source,
                calibration=calibration,
            )
        )

    adjusted_rows.sort(key=lambda v: -v.adjusted_wtp)
    return adjusted_rows, scale


# calibrate_feature: Tech-friendly name for run_feature_cash_calibration
calibrate_feature = run_feature_cash_calibration
