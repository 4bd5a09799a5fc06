"""End-to-end study workflow.

Ties the engine together for one respondent: derive vouchers, size the
design from exposure targets, collect oracle answers, estimate WTP, and
(for the BWS-MNL estimator on a near-BIBD design) keep adding task batches
until the stability gates and the bootstrap precision checks pass or the
task cap is reached. Optionally calibrates the most important and most
uncertain features directly against cash afterwards.

The estimator is fixed per run by ``AnalysisSettings.estimator``; the
legacy score and the BWS-MNL estimates are never blended.
"""

from __future__ import annotations

import threading
import time
import warnings
from dataclasses import dataclass, replace
from typing import Any, Callable, Sequence

from pymaxdiff.config import AnalysisSettings
from pymaxdiff.core.exceptions import InsufficientDataError, OracleRetryWarning
from pymaxdiff.core.items import Feature, Response, Voucher
from pymaxdiff.core.mixins import ResultSummaryMixin
from pymaxdiff.core.result import (
    BootstrapResult,
    BwsMnlFitResult,
    CalibrationResult,
    ChoicePlan,
    ExposureTaskPlan,
    FeatureValuation,
    LegacyScoreResult,
    StabilityThresholds,
    StudyResult,
)
from pymaxdiff.core.types import Estimator, ItemId
from pymaxdiff.algorithms.assembly import extend_choice_plan, generate_choice_plan
from pymaxdiff.algorithms.bws_mnl import fit_bws_mnl_money
from pymaxdiff.algorithms.calibration import (
    apply_calibration,
    calibration_search_bounds,
    run_feature_cash_calibration,
    select_calibration_features,
)
from pymaxdiff.algorithms.inference import (
    bootstrap_bws_mnl_money,
    compute_repeatability,
    evaluate_stability_checks,
    top_features_by_wtp,
)
from pymaxdiff.algorithms.scoring import compute_perceived_values
from pymaxdiff.algorithms.stability import (
    compute_exposure_diagnostics,
    compute_exposure_task_plan,
    evaluate_stability_gates,
)
from pymaxdiff.algorithms.vouchers import VoucherBounds, derive_voucher_bounds, generate_vouchers
from pymaxdiff.algorithms.wtp import display_wtp_from_raw
from pymaxdiff.oracle import RankFn, ask_cash_choice, collect_responses

# choose(feature_id, amount) -> "A" / "B" payload
ChooseFn = Callable[[ItemId, float], Any]

STOP_STABILITY_PASS = "stability_pass"
STOP_MAX_TASKS = "max_tasks_reached"
STOP_CANCELLED = "cancelled"

EXTENSION_SEED_OFFSET = 701
EXTENSION_IMPROVEMENT_ITERATIONS = 450
BOOTSTRAP_SEED_OFFSET = 10_000


@dataclass(frozen=True)
class StudyPlan:
    """
    Everything fixed before the first oracle call.

    Attributes:
        features: Features under study
        vouchers: Voucher grid
        voucher_bounds: Bounds the grid was built from
        exposure_plan: Task-count requirements
        choice_plan: Choice sets (grows as batches are added)
        r_target: Per-feature repetition target used for the design
    """

    features: tuple[Feature, ...]
    vouchers: tuple[Voucher, ...]
    voucher_bounds: VoucherBounds
    exposure_plan: ExposureTaskPlan
    choice_plan: ChoicePlan
    r_target: int

    @property
    def feature_ids(self) -> list[ItemId]:
        return [f.id for f in self.features]

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("STUDY PLAN")]
        lines.append(m._format_metric("Features", len(self.features)))
        lines.append(m._format_metric("Voucher Levels", len(self.vouchers)))
        lines.append(m._format_metric("Repetition Target (r)", self.r_target))
        lines.append(m._format_metric("Planned Tasks", self.choice_plan.num_tasks))
        lines.append(m._format_metric("Minimum Tasks", self.exposure_plan.min_tasks))
        lines.append(m._format_metric("Binding Constraint", self.exposure_plan.binding_constraint))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "features": [f.to_dict() for f in self.features],
            "vouchers": [v.to_dict() for v in self.vouchers],
            "voucher_bounds": self.voucher_bounds.to_dict(),
            "exposure_plan": self.exposure_plan.to_dict(),
            "choice_plan": self.choice_plan.to_dict(),
            "r_target": self.r_target,
        }

    def __repr__(self) -> str:
        return (
            f"StudyPlan(features={len(self.features)}, vouchers={len(self.vouchers)}, "
            f"tasks={self.choice_plan.num_tasks}, r={self.r_target})"
        )


# =============================================================================
# PLANNING
# =============================================================================


def plan_study(features: Sequence[Feature], settings: AnalysisSettings | None = None) -> StudyPlan:
    """
    Derive vouchers, the exposure plan and the initial choice sets.

    The design's repetition target is the exposure plan's recommended r,
    so the initial plan already meets the task-count requirement (or the
    task cap, when stabilisation caps it).

    Args:
        features: Features under study
        settings: Run settings (defaults if None)

    Returns:
        StudyPlan

    Example:
        >>> from pymaxdiff import build_features, plan_study
        >>> feats = build_features([{"name": f"Feature {i}", "material_cost": 100} for i in range(8)])
        >>> plan = plan_study(feats)
        >>> plan.choice_plan.num_tasks >= plan.exposure_plan.min_tasks
        True
    """
    settings = (settings or AnalysisSettings()).normalized()
    costs = [f.material_cost for f in features]
    bounds = settings.voucher_bounds or derive_voucher_bounds(costs)
    vouchers = generate_vouchers(costs, bounds)

    features_per_task = settings.items_per_set - 1 if vouchers else settings.items_per_set
    exposure_plan = compute_exposure_task_plan(
        feature_count=len(features),
        voucher_level_count=len(vouchers),
        target_feature_exposures=settings.target_feature_exposures,
        target_voucher_exposures_per_level=settings.target_voucher_exposures_per_level,
        repeat_fraction=settings.repeat_task_fraction,
        features_per_task=features_per_task,
        min_tasks_floor=settings.min_tasks_floor,
        max_tasks_cap=settings.stability_max_tasks if settings.stabilize_to_target else None,
    )
    r_target = max(1, exposure_plan.recommended_r_target)

    choice_plan = generate_choice_plan(
        features,
        vouchers,
        r_target=r_target,
        items_per_set=settings.items_per_set,
        design_mode=settings.design_mode,
        seed=settings.design_seed,
        repeat_fraction=settings.repeat_task_fraction,
        improvement_iterations=settings.improvement_iterations,
    )

    return StudyPlan(
        features=tuple(features),
        vouchers=tuple(vouchers),
        voucher_bounds=bounds,
        exposure_plan=exposure_plan,
        choice_plan=choice_plan,
        r_target=r_target,
    )


# =============================================================================
# ESTIMATION
# =============================================================================


def analyze_responses(
    study: StudyPlan,
    responses: Sequence[Response],
    settings: AnalysisSettings | None = None,
    respondent_id: str = "",
) -> StudyResult:
    """
    Estimate WTP from the responses collected so far.

    With the BWS-MNL estimator this fits the model, bootstraps it,
    evaluates the stability gates and, once the gates hold, the bootstrap
    precision of the top features. With the legacy estimator it returns
    Borda perceived values and no gates.

    Args:
        study: The study plan the responses answer
        responses: Response log
        settings: Run settings (defaults if None)
        respondent_id: Respondent the responses came from

    Returns:
        StudyResult; ``stop_reason`` is ``stability_pass`` when the current
        data already satisfies every check, else ``max_tasks_reached``
    """
    start_time = time.perf_counter()
    settings = (settings or AnalysisSettings()).normalized()
    plan = study.choice_plan
    responses = tuple(responses)

    repeatability = compute_repeatability(plan.sets, responses)
    exposure = compute_exposure_diagnostics(plan.sets, responses, study.feature_ids, study.vouchers)

    if settings.estimator is Estimator.LEGACY_SCORE:
        legacy = compute_perceived_values(responses, study.features, study.vouchers)
        return StudyResult(
            respondent_id=respondent_id,
            estimator=settings.estimator,
            plan=plan,
            responses=responses,
            valuations=tuple(_legacy_valuations(legacy)),
            fit=None,
            bootstrap=None,
            legacy=legacy,
            repeatability=repeatability,
            exposure=exposure,
            gates=None,
            stability_checks=(),
            is_stable=False,
            stop_reason=STOP_MAX_TASKS,
            computation_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    fit = fit_bws_mnl_money(
        plan.sets, responses, study.features, study.vouchers,
        settings.fit_config(),
    )
    bootstrap = bootstrap_bws_mnl_money(
        plan.sets, responses, study.features, study.vouchers,
        settings.bootstrap_samples,
        settings.bootstrap_config(seed=settings.design_seed + BOOTSTRAP_SEED_OFFSET + len(responses)),
        n_jobs=settings.bootstrap_workers,
    )

    failure_rate = fit.failed_task_count / len(responses) if responses else 0.0
    gates = evaluate_stability_gates(
        answered_tasks=exposure.answered_tasks,
        repeat_tasks_answered=repeatability.total_repeat_pairs,
        joint_repeatability=repeatability.joint_agreement_rate,
        failure_rate=failure_rate,
        feature_appearances=exposure.feature_appearances,
        voucher_appearances=exposure.voucher_appearances,
        thresholds=StabilityThresholds(
            min_tasks_before_stability=study.exposure_plan.min_tasks,
            min_feature_appearances=settings.target_feature_exposures,
            min_voucher_appearances=settings.target_voucher_exposures_per_level,
            min_repeat_tasks=settings.min_repeat_tasks,
            min_repeatability=settings.min_repeatability,
            max_failure_rate=settings.max_failure_rate,
        ),
    )

    checks = []
    if gates.gates_met:
        top_ids = top_features_by_wtp(fit.raw_wtp_by_feature, settings.stability_top_n)
        checks = evaluate_stability_checks(
            top_ids, bootstrap.by_feature, settings.stability_target_percent / 100
        )
    satisfied = bool(checks) and all(check.passed for check in checks)

    return StudyResult(
        respondent_id=respondent_id,
        estimator=settings.estimator,
        plan=plan,
        responses=responses,
        valuations=tuple(_model_valuations(study.features, fit, bootstrap)),
        fit=fit,
        bootstrap=bootstrap,
        legacy=None,
        repeatability=repeatability,
        exposure=exposure,
        gates=gates,
        stability_checks=tuple(checks),
        is_stable=satisfied if settings.stabilization_enabled else True,
        stop_reason=STOP_STABILITY_PASS if satisfied and settings.stabilization_enabled else STOP_MAX_TASKS,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def _model_valuations(
    features: Sequence[Feature],
    fit: BwsMnlFitResult,
    bootstrap: BootstrapResult,
) -> list[FeatureValuation]:
    rows = []
    for feature in features:
        utility = fit.utility_by_feature.get(feature.id, 0.0)
        raw = fit.raw_wtp_by_feature.get(feature.id, 0.0)
        display = display_wtp_from_raw(raw)
        stats = bootstrap.by_feature.get(feature.id)
        ci_lower, ci_upper = (stats.p2_5, stats.p97_5) if stats is not None else (raw, raw)
        rows.append(
            FeatureValuation(
                feature_id=feature.id,
                feature_name=feature.name,
                material_cost=feature.material_cost,
                utility=round(utility, 6),
                raw_wtp=round(raw, 2),
                adjusted_wtp=round(display, 2),
                display_wtp=round(display, 2),
                ci_lower_95=round(ci_lower, 2),
                ci_upper_95=round(ci_upper, 2),
                relative_ci_half_width=stats.relative_ci_half_width if stats is not None else None,
            )
        )
    rows.sort(key=lambda v: -v.raw_wtp)
    return rows


def _legacy_valuations(legacy: LegacyScoreResult) -> list[FeatureValuation]:
    rows = []
    for pv in legacy.values:
        display = round(display_wtp_from_raw(pv.perceived_value), 2)
        rows.append(
            FeatureValuation(
                feature_id=pv.feature_id,
                feature_name=pv.feature_name,
                material_cost=pv.material_cost,
                utility=pv.net_score,
                raw_wtp=pv.perceived_value,
                adjusted_wtp=display,
                display_wtp=display,
                ci_lower_95=pv.perceived_value,
                ci_upper_95=pv.perceived_value,
            )
        )
    return rows


# =============================================================================
# FULL RUN
# =============================================================================


def run_study(
    features: Sequence[Feature],
    rank_fn: RankFn,
    settings: AnalysisSettings | None = None,
    choose_fn: ChooseFn | None = None,
    cancel_event: threading.Event | None = None,
    respondent_id: str = "",
) -> StudyResult:
    """
    Run a complete study for one respondent.

    1. Plan the study and ask the oracle to rank every initial set.
    2. Estimate. If stabilisation is enabled, add batches of
       ``stability_batch_size`` tasks (seed ``design_seed + batch + 701``)
       until the gates and precision checks pass or the plan reaches
       ``stability_max_tasks``.
    3. If calibration is enabled and ``choose_fn`` is given, calibrate the
       selected features against cash and apply the calibration strategy.
       Cancelling during calibration stops before the next cash query and
       keeps only the features whose search finished.

    Args:
        features: Features under study
        rank_fn: Oracle ranking callback (see ``collect_responses``)
        settings: Run settings (defaults if None)
        choose_fn: Oracle feature-vs-cash callback ``choose(feature_id, amount)``
        cancel_event: Set it to stop issuing oracle calls
        respondent_id: Recorded on every response

    Returns:
        StudyResult with ``stop_reason`` one of ``stability_pass``,
        ``max_tasks_reached`` or ``cancelled``

    Raises:
        InsufficientDataError: If no choice sets can be built from the features
    """
    start_time = time.perf_counter()
    settings = (settings or AnalysisSettings()).normalized()
    cancel_event = cancel_event or threading.Event()

    study = plan_study(features, settings)
    if not study.choice_plan.sets:
        raise InsufficientDataError(
            f"No choice sets could be generated from {len(features)} feature(s); "
            "at least 2 distinct features are required."
        )

    def collect(sets: Sequence) -> list[Response]:
        return collect_responses(
            sets,
            rank_fn,
            respondent_id=respondent_id,
            max_retries=settings.max_retries,
            backoff_seconds=settings.backoff_seconds,
            inter_call_delay=settings.inter_call_delay,
            max_workers=settings.max_workers,
            cancel_event=cancel_event,
        )

    responses = collect(study.choice_plan.sets)
    result = analyze_responses(study, responses, settings, respondent_id)
    stop_reason = STOP_CANCELLED if cancel_event.is_set() else result.stop_reason
    batches_added = 0

    if settings.stabilization_enabled and not cancel_event.is_set():
        while not result.is_stable:
            plan = study.choice_plan
            batch_size = min(settings.stability_batch_size, settings.stability_max_tasks - plan.num_tasks)
            if batch_size <= 0:
                break
            extended = extend_choice_plan(
                plan,
                study.features,
                study.vouchers,
                batch_size,
                seed=settings.design_seed + batches_added + EXTENSION_SEED_OFFSET,
                repeat_fraction=settings.repeat_task_fraction,
                improvement_iterations=EXTENSION_IMPROVEMENT_ITERATIONS,
            )
            new_sets = extended.sets[plan.num_tasks:]
            if not new_sets:
                break
            study = replace(study, choice_plan=extended)
            batches_added += 1

            responses.extend(collect(new_sets))
            result = analyze_responses(study, responses, settings, respondent_id)
            if cancel_event.is_set():
                break
        stop_reason = STOP_CANCELLED if cancel_event.is_set() else result.stop_reason

    result = replace(result, batches_added=batches_added, stop_reason=stop_reason)

    if (
        settings.enable_calibration
        and choose_fn is not None
        and result.estimator is Estimator.BWS_MNL_MONEY
        and not cancel_event.is_set()
    ):
        result = _calibrate(result, study, settings, choose_fn, cancel_event)
        if cancel_event.is_set():
            result = replace(result, stop_reason=STOP_CANCELLED)

    return replace(result, computation_time_ms=(time.perf_counter() - start_time) * 1000)


def _calibrate(
    result: StudyResult,
    study: StudyPlan,
    settings: AnalysisSettings,
    choose_fn: ChooseFn,
    cancel_event: threading.Event,
) -> StudyResult:
    amounts = [v.amount for v in study.vouchers] or [study.voucher_bounds.min_amount, study.voucher_bounds.max_amount]
    min_x, max_x, min_cap, max_cap = calibration_search_bounds(min(amounts), max(amounts))
    valuation_by_id = {v.feature_id: v for v in result.valuations}

    calibrations: dict[ItemId, CalibrationResult] = {}
    for fid in select_calibration_features(result.valuations, settings.calibration_feature_count):
        if cancel_event.is_set():
            break
        row = valuation_by_id[fid]
        try:
            calibration = run_feature_cash_calibration(
                ask_cash_choice(choose_fn, fid),
                initial_guess=max(1.0, row.raw_wtp),
                min_x=min_x,
                max_x=max_x,
                steps=settings.calibration_steps,
                min_cap=min_cap,
                max_cap=max_cap,
                feature_id=fid,
                cancel_event=cancel_event,
            )
        except Exception as exc:
            warnings.warn(
                f"Calibration skipped for {row.feature_name}: {exc}",
                OracleRetryWarning,
                stacklevel=3,
            )
            continue
        if calibration.cancelled:
            break
        calibrations[fid] = replace(
            calibration,
            calibration_lower=round(calibration.calibration_lower, 2),
            calibration_upper=round(calibration.calibration_upper, 2),
            calibration_mid=round(calibration.calibration_mid, 2),
        )

    valuations, scale = apply_calibration(result.valuations, calibrations, settings.calibration_strategy)
    return replace(
        result,
        valuations=tuple(valuations),
        calibration_scale_factor=scale,
        calibration_strategy=settings.calibration_strategy,
    )
