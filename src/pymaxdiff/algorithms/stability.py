"""Exposure planning and information-sufficiency gates.

Before a run starts, the exposure planner turns per-item exposure targets
into a minimum task count and the per-feature repetition target the design
builder needs to reach it. While responses arrive, the gates decide whether
enough clean, repeatable data has been collected to trust the estimates.

Tech-Friendly Names (Primary):
    - compute_exposure_task_plan(): How many tasks a study needs
    - evaluate_stability_gates(): Pass/fail report with unmet reasons
    - compute_exposure_diagnostics(): Realised exposure and money signal
"""

from __future__ import annotations

import math
from typing import Mapping, Sequence

from pymaxdiff.core.items import ChoiceSet, Response, Voucher, format_amount
from pymaxdiff.core.result import (
    ExposureDiagnostics,
    ExposureTaskPlan,
    MoneySignal,
    StabilityGateResult,
    StabilityThresholds,
)
from pymaxdiff.core.types import ItemId, round_half_up

DEFAULT_MIN_TASKS_FLOOR = 60
MAX_FEATURES_PER_TASK = 8
MAX_REPEAT_FRACTION = 0.5


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# =============================================================================
# EXPOSURE PLAN
# =============================================================================


def compute_exposure_task_plan(
    feature_count: int,
    voucher_level_count: int,
    target_feature_exposures: int,
    target_voucher_exposures_per_level: int,
    repeat_fraction: float = 0.1,
    features_per_task: int = 3,
    min_tasks_floor: int = DEFAULT_MIN_TASKS_FLOOR,
    max_tasks_cap: int | None = None,
) -> ExposureTaskPlan:
    """
    Compute the minimum number of tasks that meets every exposure target.

    Each task shows ``features_per_task`` features and one voucher, so:

        tasks_for_features = ceil(features * target_feature / features_per_task)
        tasks_for_vouchers = voucher_levels * target_voucher_per_level
        min_tasks          = max(floor, tasks_for_features, tasks_for_vouchers)

    The recommended repetition target r is the smallest r >= the feature
    target whose design (``ceil(features * r / features_per_task)`` core
    tasks plus repeats) reaches the capped task target.

    Args:
        feature_count: Number of features (at least 1)
        voucher_level_count: Number of voucher levels (0 disables vouchers)
        target_feature_exposures: Appearances wanted per feature
        target_voucher_exposures_per_level: Appearances wanted per voucher
        repeat_fraction: Repeat tasks as a fraction of core tasks, in [0, 0.5]
        features_per_task: Feature slots per task, clamped to [1, 8]
        min_tasks_floor: Lower bound on min_tasks
        max_tasks_cap: Optional upper bound on the task target

    Returns:
        ExposureTaskPlan

    Example:
        >>> plan = compute_exposure_task_plan(12, 7, 12, 10, features_per_task=3)
        >>> plan.tasks_for_features, plan.tasks_for_vouchers, plan.min_tasks
        (48, 70, 70)
    """
    features = max(1, int(feature_count))
    voucher_levels = max(0, int(voucher_level_count))
    per_task = int(_clamp(int(features_per_task), 1, MAX_FEATURES_PER_TASK))
    feature_target = max(1, int(target_feature_exposures))
    voucher_target = max(1, int(target_voucher_exposures_per_level))
    rf = _clamp(float(repeat_fraction), 0.0, MAX_REPEAT_FRACTION)
    floor = max(1, int(min_tasks_floor))

    tasks_for_features = math.ceil(features * feature_target / per_task)
    tasks_for_vouchers = voucher_levels * voucher_target
    min_tasks = max(floor, tasks_for_features, tasks_for_vouchers)

    cap = max(1, int(max_tasks_cap)) if max_tasks_cap is not None else None
    capped_target = max(1, min(min_tasks, cap)) if cap is not None else min_tasks

    base_target = max(1, math.ceil(capped_target / (1 + rf)))
    r_by_tasks = math.ceil(base_target * per_task / features)
    recommended_r = max(feature_target, r_by_tasks)
    base_tasks = math.ceil(features * recommended_r / per_task)
    repeat_tasks = round_half_up(base_tasks * rf)

    return ExposureTaskPlan(
        feature_count=features,
        voucher_level_count=voucher_levels,
        features_per_task=per_task,
        target_feature_exposures=feature_target,
        target_voucher_exposures_per_level=voucher_target,
        tasks_for_features=tasks_for_features,
        tasks_for_vouchers=tasks_for_vouchers,
        min_tasks=min_tasks,
        capped_task_target=capped_target,
        max_tasks_cap=cap,
        cap_below_required=cap is not None and cap < min_tasks,
        recommended_r_target=recommended_r,
        estimated_base_tasks=base_tasks,
        estimated_repeat_tasks=repeat_tasks,
        estimated_total_tasks=base_tasks + repeat_tasks,
    )


# =============================================================================
# STABILITY GATES
# =============================================================================


def evaluate_stability_gates(
    answered_tasks: int,
    repeat_tasks_answered: int,
    joint_repeatability: float,
    failure_rate: float,
    feature_appearances: Mapping[ItemId, int],
    voucher_appearances: Mapping[ItemId, int],
    thresholds: StabilityThresholds,
) -> StabilityGateResult:
    """
    Evaluate every data-sufficiency gate and collect unmet reasons.

    The voucher-exposure gate passes vacuously when no vouchers are in use.
    The repeatability gate is only satisfiable once the repeat-count gate
    holds, and its reason is only reported then.

    Returns:
        StabilityGateResult; ``reasons`` is empty exactly when ``gates_met``
    """
    min_feature = min(feature_appearances.values(), default=0)
    min_voucher = min(voucher_appearances.values(), default=0)
    has_vouchers = len(voucher_appearances) > 0

    min_tasks_met = answered_tasks >= thresholds.min_tasks_before_stability
    feature_met = min_feature >= thresholds.min_feature_appearances
    voucher_met = not has_vouchers or min_voucher >= thresholds.min_voucher_appearances
    repeats_met = repeat_tasks_answered >= thresholds.min_repeat_tasks
    repeatability_met = repeats_met and joint_repeatability >= thresholds.min_repeatability
    failure_met = failure_rate <= thresholds.max_failure_rate

    reasons = []
    if not min_tasks_met:
        reasons.append(f"Need at least {thresholds.min_tasks_before_stability} answered tasks.")
    if not feature_met:
        reasons.append(
            f"Need feature exposure >= {thresholds.min_feature_appearances}; currently {min_feature}."
        )
    if not voucher_met:
        reasons.append(
            f"Need voucher exposure per level >= {thresholds.min_voucher_appearances}; "
            f"currently {min_voucher}."
        )
    if not repeats_met:
        reasons.append(f"Need at least {thresholds.min_repeat_tasks} answered repeat tasks.")
    if repeats_met and not repeatability_met:
        reasons.append(
            f"Repeatability must be >= {thresholds.min_repeatability * 100:.0f}%; "
            f"currently {joint_repeatability * 100:.1f}%."
        )
    if not failure_met:
        reasons.append(
            f"Failure rate must be <= {thresholds.max_failure_rate * 100:.1f}%; "
            f"currently {failure_rate * 100:.1f}%."
        )

    gates_met = (
        min_tasks_met and feature_met and voucher_met
        and repeats_met and repeatability_met and failure_met
    )

    return StabilityGateResult(
        thresholds=thresholds,
        answered_tasks=answered_tasks,
        repeat_tasks_answered=repeat_tasks_answered,
        joint_repeatability=joint_repeatability,
        failure_rate=failure_rate,
        min_feature_exposure_achieved=min_feature,
        min_voucher_exposure_achieved=min_voucher if has_vouchers else 0,
        min_tasks_met=min_tasks_met,
        min_feature_exposure_met=feature_met,
        min_voucher_exposure_met=voucher_met,
        min_repeats_met=repeats_met,
        repeatability_met=repeatability_met,
        failure_rate_met=failure_met,
        gates_met=gates_met,
        reasons=tuple(reasons),
    )


# =============================================================================
# REALISED EXPOSURE
# =============================================================================


def compute_exposure_diagnostics(
    sets: Sequence[ChoiceSet],
    responses: Sequence[Response],
    feature_ids: Sequence[ItemId],
    vouchers: Sequence[Voucher],
) -> ExposureDiagnostics:
    """
    Count how often each item was actually shown in an answered task.

    Only non-failed responses whose set id is known contribute. The money
    signal records how often a voucher was picked as best or worst, which
    shows whether the cash anchors are doing any work.
    """
    set_by_id = {s.id: s for s in sets}
    voucher_ids = {v.id for v in vouchers}

    feature_counts = {fid: 0 for fid in feature_ids}
    voucher_counts = {v.id: 0 for v in vouchers}
    level_counts = {format_amount(v.amount): 0 for v in vouchers}
    label_by_voucher = {v.id: format_amount(v.amount) for v in vouchers}

    answered = best_count = worst_count = 0
    for response in responses:
        if response.failed:
            continue
        choice_set = set_by_id.get(response.set_id)
        if choice_set is None:
            continue
        answered += 1
        for item in choice_set.item_ids:
            if item in feature_counts:
                feature_counts[item] += 1
            elif item in voucher_counts:
                voucher_counts[item] += 1
                level_counts[label_by_voucher[item]] += 1
        best_count += response.most_valued in voucher_ids
        worst_count += response.least_valued in voucher_ids

    denominator = max(1, answered)
    money_signal = MoneySignal(
        voucher_best_count=best_count,
        voucher_worst_count=worst_count,
        voucher_best_rate=best_count / denominator,
        voucher_worst_rate=worst_count / denominator,
        voucher_level_counts=level_counts,
    )

    return ExposureDiagnostics(
        answered_tasks=answered,
        feature_appearances=feature_counts,
        voucher_appearances=voucher_counts,
        money_signal=money_signal,
    )


# plan_task_count: Tech-friendly name for compute_exposure_task_plan
plan_task_count = compute_exposure_task_plan

# check_gates: Tech-friendly name for evaluate_stability_gates
check_gates = evaluate_stability_gates
