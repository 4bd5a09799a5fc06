"""Statistical inference for BWS-MNL willingness-to-pay estimates.

Implements the nonparametric bootstrap over best/worst observations,
test-retest repeatability between repeated tasks, and the per-feature
precision checks used to decide whether a run has stabilized.

Tech-Friendly Names (Primary):
    - bootstrap_bws_mnl_money(): Bootstrap WTP distributions
    - compute_repeatability(): Agreement between repeated tasks
    - evaluate_stability_checks(): Relative CI half-width per top feature

References:
    Efron, B., & Tibshirani, R. J. (1994). An Introduction to the Bootstrap.
"""

from __future__ import annotations

import math
import time
from dataclasses import replace
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import numpy as np

from pymaxdiff.core.items import ChoiceSet, Feature, Response, Voucher
from pymaxdiff.core.result import (
    BetaBootstrapSummary,
    BootstrapResult,
    BwsMnlFitResult,
    FeatureBootstrapSummary,
    RepeatabilityResult,
    StabilityFeatureCheck,
)
from pymaxdiff.core.types import ItemId
from pymaxdiff.algorithms.bws_mnl import BwsMnlConfig, build_tasks, fit_tasks


# =============================================================================
# BOOTSTRAP
# =============================================================================


def bootstrap_bws_mnl_money(
    sets: Sequence[ChoiceSet],
    responses: Sequence[Response],
    features: Sequence[Feature],
    vouchers: Sequence[Voucher],
    samples: int,
    config: BwsMnlConfig | None = None,
    n_jobs: int = 1,
) -> BootstrapResult:
    """
    Bootstrap the BWS-MNL fit by resampling observations with replacement.

    All resample indices are drawn up front from ``default_rng(config.seed)``
    so the result does not depend on ``n_jobs``. Resample i is refit with
    seed ``config.seed + i + 1``; fits with a non-finite beta are dropped.

    Args:
        sets: Choice sets
        responses: Response log
        features: Features to summarize
        vouchers: Voucher items
        samples: Number of resamples
        config: Fit hyperparameters
        n_jobs: Worker threads for refitting (1 = sequential)

    Returns:
        BootstrapResult with per-feature WTP and beta distribution summaries

    Example:
        >>> boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 200)
        >>> boot.confidence_interval("heated-seats")
        (112.4, 187.9)
    """
    start_time = time.perf_counter()
    config = config or BwsMnlConfig()

    tasks, _ = build_tasks(sets, responses)
    requested = max(0, int(samples))
    if not tasks or requested == 0 or not features:
        return BootstrapResult(
            by_feature={},
            beta=BetaBootstrapSummary.empty(),
            successful_samples=0,
            requested_samples=requested,
            computation_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    rng = np.random.default_rng(config.seed)
    n = len(tasks)
    draws = [rng.choice(n, size=n, replace=True) for _ in range(requested)]

    def refit(sample: int) -> BwsMnlFitResult:
        resampled = [tasks[i] for i in draws[sample]]
        return fit_tasks(resampled, features, vouchers, replace(config, seed=config.seed + sample + 1))

    if n_jobs > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            fits = list(executor.map(refit, range(requested)))
    else:
        fits = [refit(sample) for sample in range(requested)]

    return _summarize_fits(fits, features, requested, start_time)


def _summarize_fits(
    fits: Sequence[BwsMnlFitResult],
    features: Sequence[Feature],
    requested: int,
    start_time: float,
) -> BootstrapResult:
    feature_ids = [f.id for f in features]
    wtp_samples: dict[ItemId, list[float]] = {fid: [] for fid in feature_ids}
    beta_samples: list[float] = []

    for fit in fits:
        if not math.isfinite(fit.beta):
            continue
        beta_samples.append(fit.beta)
        for fid in feature_ids:
            estimate = fit.raw_wtp_by_feature.get(fid)
            if estimate is not None and math.isfinite(estimate):
                wtp_samples[fid].append(estimate)

    by_feature = {
        fid: _feature_summary(np.asarray(values)) for fid, values in wtp_samples.items() if values
    }
    beta = _beta_summary(np.asarray(beta_samples))

    return BootstrapResult(
        by_feature=by_feature,
        beta=beta,
        successful_samples=len(beta_samples),
        requested_samples=requested,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def _distribution(values: np.ndarray) -> tuple[float, float, float, float, float, float | None]:
    if values.size == 0:
        return 0.0, 0.0, 0.0, 0.0, 0.0, None
    mean = float(np.mean(values))
    std = float(np.std(values))
    p2_5, median, p97_5 = (float(q) for q in np.percentile(values, [2.5, 50.0, 97.5]))
    cv = std / abs(mean) if mean != 0 else None
    return mean, median, p2_5, p97_5, std, cv


def _feature_summary(values: np.ndarray) -> FeatureBootstrapSummary:
    mean, median, p2_5, p97_5, std, cv = _distribution(values)
    return FeatureBootstrapSummary(
        mean=mean,
        median=median,
        p2_5=p2_5,
        p97_5=p97_5,
        std=std,
        cv=cv,
        relative_ci_half_width=(p97_5 - p2_5) / (2 * max(1.0, abs(mean))),
        samples=int(values.size),
    )


def _beta_summary(values: np.ndarray) -> BetaBootstrapSummary:
    mean, median, p2_5, p97_5, std, cv = _distribution(values)
    return BetaBootstrapSummary(
        mean=mean, median=median, p2_5=p2_5, p97_5=p97_5, std=std, cv=cv, samples=int(values.size),
    )


# =============================================================================
# REPEATABILITY
# =============================================================================


def compute_repeatability(
    sets: Sequence[ChoiceSet],
    responses: Sequence[Response],
) -> RepeatabilityResult:
    """
    Compare each repeat task's answer with its source task's answer.

    Only non-failed responses are used; when a set was answered more than
    once the last answer wins. Pairs missing either side are skipped.

    Returns:
        RepeatabilityResult with best, worst and joint agreement counts
    """
    answer_by_set: dict[str, Response] = {}
    for response in responses:
        if not response.failed:
            answer_by_set[response.set_id] = response

    total = best = worst = joint = 0
    for choice_set in sets:
        if choice_set.repeat_of is None:
            continue
        repeat_answer = answer_by_set.get(choice_set.id)
        base_answer = answer_by_set.get(choice_set.repeat_of)
        if repeat_answer is None or base_answer is None:
            continue
        total += 1
        best_match = repeat_answer.most_valued == base_answer.most_valued
        worst_match = repeat_answer.least_valued == base_answer.least_valued
        best += best_match
        worst += worst_match
        joint += best_match and worst_match

    return RepeatabilityResult(
        total_repeat_pairs=total,
        best_agreement_count=best,
        worst_agreement_count=worst,
        joint_agreement_count=joint,
    )


# =============================================================================
# STABILITY CHECKS
# =============================================================================


def top_features_by_wtp(raw_wtp_by_feature: dict[ItemId, float], top_n: int) -> list[ItemId]:
    """Ids of the ``max(1, top_n)`` features with the highest WTP."""
    ranked = sorted(raw_wtp_by_feature.items(), key=lambda kv: -kv[1])
    return [fid for fid, _ in ranked[: max(1, top_n)]]


def evaluate_stability_checks(
    top_feature_ids: Sequence[ItemId],
    bootstrap_by_feature: dict[ItemId, FeatureBootstrapSummary],
    target_relative_half_width: float,
) -> list[StabilityFeatureCheck]:
    """
    Check that each feature's bootstrap interval is tight enough.

    relative half-width = (p97.5 - p2.5) / (2 * max(1, |mean|)); a feature
    passes when it is at most ``target_relative_half_width``. A feature with
    no bootstrap summary fails.
    """
    checks = []
    for fid in top_feature_ids:
        summary = bootstrap_by_feature.get(fid)
        if summary is None:
            checks.append(StabilityFeatureCheck(feature_id=fid, mean=0.0, relative_half_width=None, passed=False))
            continue
        half_width = (summary.p97_5 - summary.p2_5) / (2 * max(1.0, abs(summary.mean)))
        checks.append(
            StabilityFeatureCheck(
                feature_id=fid,
                mean=summary.mean,
                relative_half_width=half_width,
                passed=half_width <= target_relative_half_width,
            )
        )
    return checks


# bootstrap_wtp: Tech-friendly name for bootstrap_bws_mnl_money
bootstrap_wtp = bootstrap_bws_mnl_money
