"""Result dataclasses for MaxDiff design, estimation and stability analysis.

This module provides result containers for every engine component:

Design:
    - SummaryStats, PairCountsSummary, ExactBIBDCheck: design diagnostics parts
    - DesignDiagnostics: item/pair exposure diagnostics for a block list
    - NearBIBDResult: blocks plus diagnostics from the design builder
    - ChoicePlan: final choice sets with voucher assignment

Estimation:
    - PerceivedValue, LegacyScoreResult: Borda/net-score fallback
    - BwsMnlFitResult: best-worst MNL utilities, beta and WTP
    - FeatureBootstrapSummary, BetaBootstrapSummary, BootstrapResult
    - RepeatabilityResult: test-retest agreement between repeated tasks

Stability & calibration:
    - ExposureTaskPlan, StabilityThresholds, StabilityGateResult
    - StabilityFeatureCheck, MoneySignal, ExposureDiagnostics
    - CalibrationStep, CalibrationResult

Workflow:
    - FeatureValuation, StudyResult

Every record serializes through ``to_dict()`` to numeric/string/boolean
leaves only; non-finite floats are emitted as None.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from pymaxdiff.core.items import ChoiceSet, DesignBlock, Response
from pymaxdiff.core.mixins import ResultSummaryMixin
from pymaxdiff.core.types import (
    CalibrationChoice,
    CalibrationPhase,
    CalibrationStrategy,
    DesignMode,
    Estimator,
    ItemId,
    MoneyTransform,
)


def _finite_or_none(value: float | None) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return float(value)


# =============================================================================
# DESIGN DIAGNOSTICS
# =============================================================================


@dataclass(frozen=True)
class SummaryStats:
    """Min/mean/max and coefficient of variation of a set of counts."""

    min: float
    mean: float
    max: float
    cv: float

    @classmethod
    def empty(cls) -> SummaryStats:
        return cls(min=0.0, mean=0.0, max=0.0, cv=0.0)

    def to_dict(self) -> dict[str, Any]:
        return {"min": self.min, "mean": self.mean, "max": self.max, "cv": self.cv}


@dataclass(frozen=True)
class PairCountsSummary:
    """
    Co-occurrence statistics over item pairs.

    Attributes:
        all_pairs: Stats over every possible pair (unseen pairs count as 0)
        observed_pairs: Stats over pairs that appear at least once
        coverage: Fraction of possible pairs seen in at least one block
        never_seen_fraction: 1 - coverage (0 when there are no pairs)
    """

    all_pairs: SummaryStats
    observed_pairs: SummaryStats
    coverage: float
    never_seen_fraction: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "all_pairs": self.all_pairs.to_dict(),
            "observed_pairs": self.observed_pairs.to_dict(),
            "coverage": self.coverage,
            "never_seen_fraction": self.never_seen_fraction,
        }


@dataclass(frozen=True)
class ExactBIBDCheck:
    """
    Whether a design is an exact balanced incomplete block design.

    A design is exact when every item appears r times, every observed pair
    co-occurs lambda times, b*k = v*r and lambda*(v-1) = r*(k-1).
    ``params`` and ``checks`` are only populated for exact designs.
    """

    is_exact: bool
    params: dict[str, int] | None = None
    checks: dict[str, bool] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"is_exact": self.is_exact}
        if self.params is not None:
            out["params"] = dict(self.params)
        if self.checks is not None:
            out["checks"] = dict(self.checks)
        return out


@dataclass(frozen=True)
class DesignDiagnostics:
    """
    Exposure diagnostics for a list of design blocks.

    Attributes:
        item_counts: Appearances per item
        pair_counts: Co-occurrences per ``"a::b"`` pair key
        item_summary: Stats over item appearances
        pair_summary: Stats over pair co-occurrences, with coverage
        item_count_imbalance: max - min item appearances
        pair_count_imbalance: max - min co-occurrence over observed pairs
        pair_squared_deviation: Sum of squared deviations of all pair counts
        objective: Local-search objective value of the block list
        exact_bibd: Exact BIBD detection
    """

    item_counts: dict[ItemId, int]
    pair_counts: dict[str, int]
    item_summary: SummaryStats
    pair_summary: PairCountsSummary
    item_count_imbalance: float
    pair_count_imbalance: float
    pair_squared_deviation: float
    objective: float
    exact_bibd: ExactBIBDCheck

    @classmethod
    def empty(cls) -> DesignDiagnostics:
        """Zero diagnostics for an empty design."""
        return cls(
            item_counts={},
            pair_counts={},
            item_summary=SummaryStats.empty(),
            pair_summary=PairCountsSummary(
                all_pairs=SummaryStats.empty(),
                observed_pairs=SummaryStats.empty(),
                coverage=0.0,
                never_seen_fraction=0.0,
            ),
            item_count_imbalance=0.0,
            pair_count_imbalance=0.0,
            pair_squared_deviation=0.0,
            objective=0.0,
            exact_bibd=ExactBIBDCheck(is_exact=False),
        )

    @property
    def coverage(self) -> float:
        """Fraction of item pairs seen together at least once."""
        return self.pair_summary.coverage

    @property
    def is_exact(self) -> bool:
        return self.exact_bibd.is_exact

    @property
    def num_items(self) -> int:
        return len(self.item_counts)

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("MAXDIFF DESIGN DIAGNOSTICS")]
        status = m._format_status(self.is_exact, "EXACT BIBD", "NEAR-BIBD")
        lines.append(f"\nStatus: {status}")

        lines.append(m._format_section("Item Exposure"))
        lines.append(m._format_metric("Items", self.num_items))
        lines.append(m._format_metric("Min Appearances", self.item_summary.min))
        lines.append(m._format_metric("Mean Appearances", self.item_summary.mean))
        lines.append(m._format_metric("Max Appearances", self.item_summary.max))
        lines.append(m._format_metric("Item CV", self.item_summary.cv))
        lines.append(m._format_metric("Item Imbalance", self.item_count_imbalance))

        lines.append(m._format_section("Pair Exposure"))
        lines.append(m._format_metric("Pair Coverage", self.coverage))
        lines.append(m._format_metric("Observed Pair Mean", self.pair_summary.observed_pairs.mean))
        lines.append(m._format_metric("Pair Imbalance", self.pair_count_imbalance))
        lines.append(m._format_metric("Pair Squared Deviation", self.pair_squared_deviation))
        lines.append(m._format_metric("Objective", self.objective))

        if self.exact_bibd.params is not None:
            lines.append(m._format_section("BIBD Parameters"))
            for name, value in self.exact_bibd.params.items():
                lines.append(m._format_metric(name, value))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "item_counts": dict(self.item_counts),
            "pair_counts": dict(self.pair_counts),
            "item_summary": self.item_summary.to_dict(),
            "pair_summary": self.pair_summary.to_dict(),
            "item_count_imbalance": self.item_count_imbalance,
            "pair_count_imbalance": self.pair_count_imbalance,
            "pair_squared_deviation": self.pair_squared_deviation,
            "objective": self.objective,
            "exact_bibd": self.exact_bibd.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"DesignDiagnostics(items={self.num_items}, "
            f"imbalance={self.item_count_imbalance:g}, coverage={self.coverage:.3f}, "
            f"exact={self.is_exact})"
        )


@dataclass(frozen=True)
class NearBIBDResult:
    """
    Blocks and diagnostics produced by the near-BIBD design builder.

    Attributes:
        blocks: Design blocks in construction order
        diagnostics: Diagnostics over all blocks
        block_size: Effective block size k used
        initial_objective: Objective of the greedy blocks before swap improvement
        computation_time_ms: Time taken in milliseconds
    """

    blocks: tuple[DesignBlock, ...]
    diagnostics: DesignDiagnostics
    block_size: int = 0
    initial_objective: float = 0.0
    computation_time_ms: float = field(default=0.0, compare=False)

    @property
    def num_blocks(self) -> int:
        return len(self.blocks)

    @property
    def block_ids(self) -> list[str]:
        return [block.id for block in self.blocks]

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [self.diagnostics.summary()]
        lines.append(m._format_section("Blocks"))
        lines.append(m._format_metric("Blocks", self.num_blocks))
        lines.append(m._format_metric("Block Size", self.block_size))
        lines.append(m._format_list([", ".join(b.item_ids) for b in self.blocks], item_name="block"))
        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "blocks": [block.to_dict() for block in self.blocks],
            "diagnostics": self.diagnostics.to_dict(),
            "block_size": self.block_size,
            "initial_objective": self.initial_objective,
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        return (
            f"NearBIBDResult(blocks={self.num_blocks}, k={self.block_size}, "
            f"imbalance={self.diagnostics.item_count_imbalance:g}, "
            f"{self.computation_time_ms:.2f}ms)"
        )


@dataclass(frozen=True)
class ChoicePlan:
    """
    Final choice sets for a run, with the feature design behind them.

    Attributes:
        sets: Choice sets in presentation order (core first, then repeats;
            extensions append)
        blocks: Feature-only blocks behind each set, same order and ids
        diagnostics: Feature design diagnostics over core blocks
        design_mode: How the feature blocks were built
        items_per_set: Total items per set (features + voucher)
        features_per_set: Feature slots per set
        voucher_counts: Core-set exposure per voucher id
        seed: Base seed the plan was generated from
    """

    sets: tuple[ChoiceSet, ...]
    blocks: tuple[DesignBlock, ...]
    diagnostics: DesignDiagnostics
    design_mode: DesignMode
    items_per_set: int
    features_per_set: int
    voucher_counts: dict[ItemId, int]
    seed: int = 0

    @property
    def num_tasks(self) -> int:
        return len(self.sets)

    @property
    def num_repeat_tasks(self) -> int:
        return sum(1 for s in self.sets if s.is_repeat)

    @property
    def core_blocks(self) -> list[DesignBlock]:
        return [b for b in self.blocks if not b.is_repeat]

    @property
    def voucher_assignment(self) -> dict[str, ItemId | None]:
        """Voucher id per set id."""
        return {s.id: s.voucher_id for s in self.sets}

    def set_by_id(self) -> dict[str, ChoiceSet]:
        return {s.id: s for s in self.sets}

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("MAXDIFF CHOICE PLAN")]
        lines.append(m._format_section("Plan"))
        lines.append(m._format_metric("Design Mode", self.design_mode.value))
        lines.append(m._format_metric("Tasks", self.num_tasks))
        lines.append(m._format_metric("Repeat Tasks", self.num_repeat_tasks))
        lines.append(m._format_metric("Items per Set", self.items_per_set))
        lines.append(m._format_metric("Features per Set", self.features_per_set))
        if self.voucher_counts:
            lines.append(m._format_section("Voucher Exposure"))
            for voucher_id, count in self.voucher_counts.items():
                lines.append(m._format_metric(voucher_id, count))
        lines.append(m._format_section("Feature Design"))
        lines.append(m._format_metric("Item Imbalance", self.diagnostics.item_count_imbalance))
        lines.append(m._format_metric("Pair Coverage", self.diagnostics.coverage))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sets": [s.to_dict() for s in self.sets],
            "blocks": [b.to_dict() for b in self.blocks],
            "diagnostics": self.diagnostics.to_dict(),
            "design_mode": self.design_mode.value,
            "items_per_set": self.items_per_set,
            "features_per_set": self.features_per_set,
            "voucher_counts": dict(self.voucher_counts),
            "seed": self.seed,
        }

    def __repr__(self) -> str:
        return (
            f"ChoicePlan({self.design_mode.value}, tasks={self.num_tasks}, "
            f"repeats={self.num_repeat_tasks})"
        )


# =============================================================================
# LEGACY SCORING
# =============================================================================


@dataclass(frozen=True)
class PerceivedValue:
    """Legacy perceived value of one feature."""

    feature_id: ItemId
    feature_name: str
    material_cost: float
    perceived_value: float
    net_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_id": self.feature_id,
            "feature_name": self.feature_name,
            "material_cost": self.material_cost,
            "perceived_value": self.perceived_value,
            "net_score": self.net_score,
        }


@dataclass(frozen=True)
class LegacyScoreResult:
    """
    Result of the closed-form Borda/net-score fallback estimator.

    There are no confidence intervals on this path.

    Attributes:
        values: Perceived values sorted descending
        scores: Raw Borda/net score per item (features and vouchers)
        scale: Currency scale applied to normalized feature scores
        computation_time_ms: Time taken in milliseconds
    """

    values: tuple[PerceivedValue, ...]
    scores: dict[ItemId, float]
    scale: float
    computation_time_ms: float = field(default=0.0, compare=False)

    @property
    def perceived_value_by_feature(self) -> dict[ItemId, float]:
        return {v.feature_id: v.perceived_value for v in self.values}

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("LEGACY SCORE REPORT")]
        lines.append(m._format_section("Scaling"))
        lines.append(m._format_metric("Currency Scale", self.scale))
        lines.append(m._format_section("Perceived Values"))
        rows = [(v.feature_name, v.net_score, v.material_cost, v.perceived_value) for v in self.values]
        lines.append(m._format_table(["Feature", "Score", "Cost", "Value"], rows))
        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "values": [v.to_dict() for v in self.values],
            "scores": dict(self.scores),
            "scale": self.scale,
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        return f"LegacyScoreResult(features={len(self.values)}, scale={self.scale:g})"


# =============================================================================
# BWS-MNL ESTIMATION
# =============================================================================


@dataclass(frozen=True)
class BwsMnlFitResult:
    """
    Result of a best-worst multinomial logit fit with a money coefficient.

    Feature utilities are mean-centered (mean feature utility is zero).
    Voucher utility is ``beta * f(amount / money_scale)`` with f given by
    the money transform; WTP inverts that mapping.

    Attributes:
        transform: Money transform used for voucher amounts
        money_scale: Currency units per model unit
        beta: Fitted money coefficient (> 0)
        utility_by_feature: Mean-centered utility per feature
        raw_wtp_model_units_by_feature: WTP in model units
        raw_wtp_by_feature: WTP in currency (may be negative)
        converged: True if the optimizer stopped on negligible improvement
        iterations: Optimizer iterations run
        log_likelihood: Log-likelihood at the best parameters
        task_count: Observations used in the likelihood
        failed_task_count: Responses excluded as failed or invalid
        computation_time_ms: Time taken in milliseconds
    """

    transform: MoneyTransform
    money_scale: float
    beta: float
    utility_by_feature: dict[ItemId, float]
    raw_wtp_model_units_by_feature: dict[ItemId, float]
    raw_wtp_by_feature: dict[ItemId, float]
    converged: bool
    iterations: int
    log_likelihood: float
    task_count: int
    failed_task_count: int
    computation_time_ms: float = field(default=0.0, compare=False)

    @property
    def total_task_count(self) -> int:
        return self.task_count + self.failed_task_count

    @property
    def failure_rate(self) -> float:
        total = self.total_task_count
        return self.failed_task_count / total if total > 0 else 0.0

    @property
    def feature_ids_by_wtp(self) -> list[ItemId]:
        """Feature ids sorted by WTP, highest first."""
        return sorted(self.raw_wtp_by_feature, key=lambda f: -self.raw_wtp_by_feature[f])

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("BWS-MNL MONEY MODEL REPORT")]
        status = m._format_status(self.converged, "CONVERGED", "NOT CONVERGED")
        lines.append(f"\nStatus: {status}")

        lines.append(m._format_section("Model"))
        lines.append(m._format_metric("Money Transform", self.transform.value))
        lines.append(m._format_metric("Money Scale", self.money_scale))
        lines.append(m._format_metric("Beta (money)", self.beta))
        lines.append(m._format_metric("Log-Likelihood", self.log_likelihood))
        lines.append(m._format_metric("Iterations", self.iterations))
        lines.append(m._format_metric("Tasks Used", self.task_count))
        lines.append(m._format_metric("Failed Tasks", self.failed_task_count))

        lines.append(m._format_section("Willingness to Pay"))
        rows = [
            (fid, self.utility_by_feature[fid], self.raw_wtp_by_feature[fid])
            for fid in self.feature_ids_by_wtp
        ]
        lines.append(m._format_table(["Feature", "Utility", "WTP"], rows))
        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "transform": self.transform.value,
            "money_scale": self.money_scale,
            "beta": _finite_or_none(self.beta),
            "utility_by_feature": dict(self.utility_by_feature),
            "raw_wtp_model_units_by_feature": dict(self.raw_wtp_model_units_by_feature),
            "raw_wtp_by_feature": dict(self.raw_wtp_by_feature),
            "converged": self.converged,
            "iterations": self.iterations,
            "log_likelihood": _finite_or_none(self.log_likelihood),
            "task_count": self.task_count,
            "failed_task_count": self.failed_task_count,
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        return (
            f"BwsMnlFitResult(beta={self.beta:.4f}, ll={self.log_likelihood:.3f}, "
            f"tasks={self.task_count}, converged={self.converged})"
        )


@dataclass(frozen=True)
class FeatureBootstrapSummary:
    """
    Bootstrap distribution summary of one feature's WTP.

    Attributes:
        mean, median, p2_5, p97_5, std: Distribution statistics
        cv: std / |mean| (None when mean is 0)
        relative_ci_half_width: (p97.5 - p2.5) / (2 * max(1, |mean|))
        samples: Number of finite bootstrap estimates
    """

    mean: float
    median: float
    p2_5: float
    p97_5: float
    std: float
    cv: float | None
    relative_ci_half_width: float
    samples: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "mean": self.mean,
            "median": self.median,
            "p2_5": self.p2_5,
            "p97_5": self.p97_5,
            "std": self.std,
            "cv": self.cv,
            "relative_ci_half_width": self.relative_ci_half_width,
            "samples": self.samples,
        }


@dataclass(frozen=True)
class BetaBootstrapSummary:
    """Bootstrap distribution summary of the money coefficient."""

    mean: float
    median: float
    p2_5: float
    p97_5: float
    std: float
    cv: float | None
    samples: int

    @classmethod
    def empty(cls) -> BetaBootstrapSummary:
        return cls(mean=0.0, median=0.0, p2_5=0.0, p97_5=0.0, std=0.0, cv=None, samples=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mean": self.mean,
            "median": self.median,
            "p2_5": self.p2_5,
            "p97_5": self.p97_5,
            "std": self.std,
            "cv": self.cv,
            "samples": self.samples,
        }


@dataclass(frozen=True)
class BootstrapResult:
    """
    Nonparametric bootstrap of the BWS-MNL WTP estimates.

    Attributes:
        by_feature: WTP distribution summary per feature
        beta: Distribution summary of the money coefficient
        successful_samples: Resamples that produced a finite fit
        requested_samples: Resamples drawn
        computation_time_ms: Time taken in milliseconds
    """

    by_feature: dict[ItemId, FeatureBootstrapSummary]
    beta: BetaBootstrapSummary
    successful_samples: int
    requested_samples: int
    computation_time_ms: float = field(default=0.0, compare=False)

    def confidence_interval(self, feature_id: ItemId) -> tuple[float, float] | None:
        """95% percentile interval for a feature's WTP, if summarized."""
        stats = self.by_feature.get(feature_id)
        if stats is None or stats.samples == 0:
            return None
        return (stats.p2_5, stats.p97_5)

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("BOOTSTRAP WTP REPORT")]
        lines.append(m._format_section("Resampling"))
        lines.append(m._format_metric("Requested Samples", self.requested_samples))
        lines.append(m._format_metric("Successful Samples", self.successful_samples))
        lines.append(m._format_metric("Beta Mean", self.beta.mean))
        lines.append(m._format_metric("Beta 95% Low", self.beta.p2_5))
        lines.append(m._format_metric("Beta 95% High", self.beta.p97_5))

        lines.append(m._format_section("Feature WTP"))
        rows = [
            (fid, s.mean, s.p2_5, s.p97_5, s.relative_ci_half_width)
            for fid, s in sorted(self.by_feature.items(), key=lambda kv: -kv[1].mean)
        ]
        lines.append(m._format_table(["Feature", "Mean", "2.5%", "97.5%", "Rel. Half-Width"], rows))
        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "by_feature": {fid: s.to_dict() for fid, s in self.by_feature.items()},
            "beta": self.beta.to_dict(),
            "successful_samples": self.successful_samples,
            "requested_samples": self.requested_samples,
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        return (
            f"BootstrapResult(samples={self.successful_samples}/{self.requested_samples}, "
            f"features={len(self.by_feature)})"
        )


@dataclass(frozen=True)
class RepeatabilityResult:
    """
    Agreement between repeat tasks and the tasks they duplicate.

    Attributes:
        total_repeat_pairs: Repeat pairs with usable responses on both sides
        best_agreement_count: Pairs with the same best choice
        worst_agreement_count: Pairs with the same worst choice
        joint_agreement_count: Pairs agreeing on both
    """

    total_repeat_pairs: int
    best_agreement_count: int
    worst_agreement_count: int
    joint_agreement_count: int

    def _rate(self, count: int) -> float:
        return count / self.total_repeat_pairs if self.total_repeat_pairs > 0 else 0.0

    @property
    def best_agreement_rate(self) -> float:
        return self._rate(self.best_agreement_count)

    @property
    def worst_agreement_rate(self) -> float:
        return self._rate(self.worst_agreement_count)

    @property
    def joint_agreement_rate(self) -> float:
        return self._rate(self.joint_agreement_count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_repeat_pairs": self.total_repeat_pairs,
            "best_agreement_count": self.best_agreement_count,
            "worst_agreement_count": self.worst_agreement_count,
            "joint_agreement_count": self.joint_agreement_count,
            "best_agreement_rate": self.best_agreement_rate,
            "worst_agreement_rate": self.worst_agreement_rate,
            "joint_agreement_rate": self.joint_agreement_rate,
        }

    def __repr__(self) -> str:
        return (
            f"RepeatabilityResult(pairs={self.total_repeat_pairs}, "
            f"joint={self.joint_agreement_rate:.2f})"
        )


# =============================================================================
# STABILITY PLANNING
# =============================================================================


@dataclass(frozen=True)
class ExposureTaskPlan:
    """
    Minimum task count needed to reach exposure targets.

    Attributes:
        tasks_for_features: ceil(features * target / features_per_task)
        tasks_for_vouchers: voucher levels * target per level
        min_tasks: max(floor, tasks_for_features, tasks_for_vouchers)
        capped_task_target: min_tasks limited by max_tasks_cap
        cap_below_required: True when the cap is below min_tasks
        recommended_r_target: Per-feature repetition target for the design
        estimated_base_tasks / estimated_repeat_tasks / estimated_total_tasks:
            Tasks the design builder will produce for that r
    """

    feature_count: int
    voucher_level_count: int
    features_per_task: int
    target_feature_exposures: int
    target_voucher_exposures_per_level: int
    tasks_for_features: int
    tasks_for_vouchers: int
    min_tasks: int
    capped_task_target: int
    max_tasks_cap: int | None
    cap_below_required: bool
    recommended_r_target: int
    estimated_base_tasks: int
    estimated_repeat_tasks: int
    estimated_total_tasks: int

    @property
    def binding_constraint(self) -> str:
        """Which requirement sets min_tasks: 'features', 'vouchers' or 'floor'."""
        if self.min_tasks == self.tasks_for_vouchers and self.tasks_for_vouchers > self.tasks_for_features:
            return "vouchers"
        if self.min_tasks == self.tasks_for_features:
            return "features"
        return "floor"

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("EXPOSURE TASK PLAN")]
        lines.append(m._format_section("Requirements"))
        lines.append(m._format_metric("Tasks for Features", self.tasks_for_features))
        lines.append(m._format_metric("Tasks for Vouchers", self.tasks_for_vouchers))
        lines.append(m._format_metric("Minimum Tasks", self.min_tasks))
        lines.append(m._format_metric("Binding Constraint", self.binding_constraint))
        lines.append(m._format_metric("Task Cap", self.max_tasks_cap))
        lines.append(m._format_metric("Cap Below Required", self.cap_below_required))
        lines.append(m._format_section("Design Recommendation"))
        lines.append(m._format_metric("Recommended r", self.recommended_r_target))
        lines.append(m._format_metric("Base Tasks", self.estimated_base_tasks))
        lines.append(m._format_metric("Repeat Tasks", self.estimated_repeat_tasks))
        lines.append(m._format_metric("Total Tasks", self.estimated_total_tasks))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_count": self.feature_count,
            "voucher_level_count": self.voucher_level_count,
            "features_per_task": self.features_per_task,
            "target_feature_exposures": self.target_feature_exposures,
            "target_voucher_exposures_per_level": self.target_voucher_exposures_per_level,
            "tasks_for_features": self.tasks_for_features,
            "tasks_for_vouchers": self.tasks_for_vouchers,
            "min_tasks": self.min_tasks,
            "capped_task_target": self.capped_task_target,
            "max_tasks_cap": self.max_tasks_cap,
            "cap_below_required": self.cap_below_required,
            "recommended_r_target": self.recommended_r_target,
            "estimated_base_tasks": self.estimated_base_tasks,
            "estimated_repeat_tasks": self.estimated_repeat_tasks,
            "estimated_total_tasks": self.estimated_total_tasks,
        }


@dataclass(frozen=True)
class StabilityThresholds:
    """Thresholds an answered run must meet before WTP is trusted."""

    min_tasks_before_stability: int
    min_feature_appearances: int
    min_voucher_appearances: int
    min_repeat_tasks: int
    min_repeatability: float = 0.8
    max_failure_rate: float = 0.02

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_tasks_before_stability": self.min_tasks_before_stability,
            "min_feature_appearances": self.min_feature_appearances,
            "min_voucher_appearances": self.min_voucher_appearances,
            "min_repeat_tasks": self.min_repeat_tasks,
            "min_repeatability": self.min_repeatability,
            "max_failure_rate": self.max_failure_rate,
        }


@dataclass(frozen=True)
class StabilityGateResult:
    """
    Pass/fail report of the information-sufficiency gates.

    ``reasons`` holds one human-readable string per failing gate and is
    empty exactly when ``gates_met`` is True.
    """

    thresholds: StabilityThresholds
    answered_tasks: int
    repeat_tasks_answered: int
    joint_repeatability: float
    failure_rate: float
    min_feature_exposure_achieved: float
    min_voucher_exposure_achieved: float
    min_tasks_met: bool
    min_feature_exposure_met: bool
    min_voucher_exposure_met: bool
    min_repeats_met: bool
    repeatability_met: bool
    failure_rate_met: bool
    gates_met: bool
    reasons: tuple[str, ...]

    @property
    def can_evaluate_stability(self) -> bool:
        return self.gates_met

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("STABILITY GATE REPORT")]
        status = m._format_status(self.gates_met, "GATES MET", "PENDING")
        lines.append(f"\nStatus: {status}")
        lines.append(m._format_section("Gates"))
        lines.append(m._format_metric("Minimum Tasks", self.min_tasks_met))
        lines.append(m._format_metric("Feature Exposure", self.min_feature_exposure_met))
        lines.append(m._format_metric("Voucher Exposure", self.min_voucher_exposure_met))
        lines.append(m._format_metric("Repeat Tasks", self.min_repeats_met))
        lines.append(m._format_metric("Repeatability", self.repeatability_met))
        lines.append(m._format_metric("Failure Rate", self.failure_rate_met))
        lines.append(m._format_section("Unmet"))
        lines.append(m._format_list(list(self.reasons), max_items=10, item_name="reason"))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "thresholds": self.thresholds.to_dict(),
            "answered_tasks": self.answered_tasks,
            "repeat_tasks_answered": self.repeat_tasks_answered,
            "joint_repeatability": self.joint_repeatability,
            "failure_rate": self.failure_rate,
            "min_feature_exposure_achieved": self.min_feature_exposure_achieved,
            "min_voucher_exposure_achieved": self.min_voucher_exposure_achieved,
            "min_tasks_met": self.min_tasks_met,
            "min_feature_exposure_met": self.min_feature_exposure_met,
            "min_voucher_exposure_met": self.min_voucher_exposure_met,
            "min_repeats_met": self.min_repeats_met,
            "repeatability_met": self.repeatability_met,
            "failure_rate_met": self.failure_rate_met,
            "gates_met": self.gates_met,
            "can_evaluate_stability": self.can_evaluate_stability,
            "reasons": list(self.reasons),
        }

    def __repr__(self) -> str:
        state = "met" if self.gates_met else f"{len(self.reasons)} unmet"
        return f"StabilityGateResult({state})"


@dataclass(frozen=True)
class StabilityFeatureCheck:
    """Whether one feature's bootstrap interval is tight enough."""

    feature_id: ItemId
    mean: float
    relative_half_width: float | None
    passed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_id": self.feature_id,
            "mean": self.mean,
            "relative_half_width": self.relative_half_width,
            "passed": self.passed,
        }


@dataclass(frozen=True)
class MoneySignal:
    """How often vouchers were picked as best or worst."""

    voucher_best_count: int
    voucher_worst_count: int
    voucher_best_rate: float
    voucher_worst_rate: float
    voucher_level_counts: dict[str, int]

    @property
    def voucher_chosen_count(self) -> int:
        return self.voucher_best_count + self.voucher_worst_count

    @property
    def voucher_chosen_rate(self) -> float:
        return self.voucher_best_rate + self.voucher_worst_rate

    def to_dict(self) -> dict[str, Any]:
        return {
            "voucher_best_count": self.voucher_best_count,
            "voucher_worst_count": self.voucher_worst_count,
            "voucher_chosen_count": self.voucher_chosen_count,
            "voucher_best_rate": self.voucher_best_rate,
            "voucher_worst_rate": self.voucher_worst_rate,
            "voucher_chosen_rate": self.voucher_chosen_rate,
            "voucher_level_counts": dict(self.voucher_level_counts),
        }


@dataclass(frozen=True)
class ExposureDiagnostics:
    """Exposure achieved by answered (non-failed) tasks."""

    answered_tasks: int
    feature_appearances: dict[ItemId, int]
    voucher_appearances: dict[ItemId, int]
    money_signal: MoneySignal

    def to_dict(self) -> dict[str, Any]:
        return {
            "answered_tasks": self.answered_tasks,
            "feature_appearances": dict(self.feature_appearances),
            "voucher_appearances": dict(self.voucher_appearances),
            "money_signal": self.money_signal.to_dict(),
        }


# =============================================================================
# CALIBRATION
# =============================================================================


@dataclass(frozen=True)
class CalibrationStep:
    """One oracle query in a calibration search."""

    step: int
    amount: float
    choice: CalibrationChoice
    phase: CalibrationPhase

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "amount": self.amount,
            "choice": self.choice.value,
            "phase": self.phase.value,
        }


@dataclass(frozen=True)
class CalibrationResult:
    """
    Feature-vs-cash indifference bracket from bracket-and-bisect search.

    Attributes:
        calibration_lower: Highest amount where the feature was preferred
        calibration_upper: Lowest amount where cash was preferred
        calibration_mid: Geometric midpoint of the bracket
        steps_used: Oracle queries issued
        bracket_straddled: True if the bracket separates an A from a B answer
        transcript: Every query and answer, in order
        feature_id: Feature calibrated, if known
        cancelled: True if the search stopped early on cancellation
    """

    calibration_lower: float
    calibration_upper: float
    calibration_mid: float
    steps_used: int
    bracket_straddled: bool
    transcript: tuple[CalibrationStep, ...]
    feature_id: ItemId | None = None
    cancelled: bool = False
    computation_time_ms: float = field(default=0.0, compare=False)

    @property
    def bracket_width(self) -> float:
        return self.calibration_upper - self.calibration_lower

    def contains(self, amount: float) -> bool:
        return self.calibration_lower <= amount <= self.calibration_upper

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        title = "FEATURE-CASH CALIBRATION"
        if self.feature_id:
            title += f": {self.feature_id}"
        lines = [m._format_header(title)]
        status = m._format_status(self.bracket_straddled, "STRADDLED", "UNSTRADDLED")
        lines.append(f"\nStatus: {status}")
        lines.append(m._format_section("Bracket"))
        lines.append(m._format_metric("Lower", self.calibration_lower))
        lines.append(m._format_metric("Upper", self.calibration_upper))
        lines.append(m._format_metric("Midpoint", self.calibration_mid))
        lines.append(m._format_metric("Queries", self.steps_used))
        if self.cancelled:
            lines.append(m._format_metric("Cancelled", True))
        lines.append(m._format_section("Transcript"))
        rows = [(str(s.step), s.phase.value, s.amount, s.choice.value) for s in self.transcript]
        lines.append(m._format_table(["Step", "Phase", "Amount", "Choice"], rows, max_rows=40))
        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_id": self.feature_id,
            "calibration_lower": self.calibration_lower,
            "calibration_upper": self.calibration_upper,
            "calibration_mid": self.calibration_mid,
            "steps_used": self.steps_used,
            "bracket_straddled": self.bracket_straddled,
            "transcript": [s.to_dict() for s in self.transcript],
            "cancelled": self.cancelled,
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        return (
            f"CalibrationResult([{self.calibration_lower:.2f}, {self.calibration_upper:.2f}], "
            f"mid={self.calibration_mid:.2f}, steps={self.steps_used})"
        )


# =============================================================================
# STUDY WORKFLOW
# =============================================================================


@dataclass(frozen=True)
class FeatureValuation:
    """
    Final valuation of one feature for one respondent.

    Attributes:
        feature_id, feature_name, material_cost: Feature identity
        utility: Model utility (legacy: raw net score)
        raw_wtp: Model WTP in currency, may be negative
        adjusted_wtp: WTP after calibration adjustment
        display_wtp: adjusted_wtp clamped at zero
        ci_lower_95 / ci_upper_95: Bootstrap interval (raw_wtp if none)
        relative_ci_half_width: From the bootstrap, if any
        adjustment_source: 'model', 'scaled' or 'calibrated_override'
        calibration: Calibration result used for this feature, if any
    """

    feature_id: ItemId
    feature_name: str
    material_cost: float
    utility: float
    raw_wtp: float
    adjusted_wtp: float
    display_wtp: float
    ci_lower_95: float
    ci_upper_95: float
    relative_ci_half_width: float | None = None
    adjustment_source: str = "model"
    calibration: CalibrationResult | None = None

    @property
    def value_ratio(self) -> float | None:
        """Display WTP relative to material cost (None without a cost)."""
        if self.material_cost <= 0 or not math.isfinite(self.display_wtp):
            return None
        return self.display_wtp / self.material_cost

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_id": self.feature_id,
            "feature_name": self.feature_name,
            "material_cost": self.material_cost,
            "utility": self.utility,
            "raw_wtp": self.raw_wtp,
            "adjusted_wtp": self.adjusted_wtp,
            "display_wtp": self.display_wtp,
            "ci_lower_95": self.ci_lower_95,
            "ci_upper_95": self.ci_upper_95,
            "relative_ci_half_width": self.relative_ci_half_width,
            "adjustment_source": self.adjustment_source,
            "value_ratio": self.value_ratio,
            "calibration": self.calibration.to_dict() if self.calibration else None,
        }


@dataclass(frozen=True)
class StudyResult:
    """
    Everything produced by one respondent's study run.

    Attributes:
        respondent_id: Who answered
        estimator: Estimator configured for the run
        plan: Final choice plan (after any extensions)
        responses: Response log (attempted tasks only)
        valuations: Per-feature valuations sorted by adjusted WTP
        fit: BWS-MNL fit (None for the legacy estimator)
        bootstrap: Bootstrap summary (None for the legacy estimator)
        legacy: Legacy scores (None for the BWS-MNL estimator)
        repeatability: Repeat-task agreement
        exposure: Exposure achieved by answered tasks
        gates: Last stability gate evaluation, if stabilization ran
        stability_checks: Bootstrap checks on the top features
        is_stable: Gates met and every check passed
        stop_reason: 'stability_pass', 'max_tasks_reached' or 'cancelled'
        batches_added: Plan extensions performed
        calibration_scale_factor: Median calibrated/model WTP ratio (1.0 if none)
        calibration_strategy: Strategy used, if calibration ran
    """

    respondent_id: str
    estimator: Estimator
    plan: ChoicePlan
    responses: tuple[Response, ...]
    valuations: tuple[FeatureValuation, ...]
    fit: BwsMnlFitResult | None
    bootstrap: BootstrapResult | None
    legacy: LegacyScoreResult | None
    repeatability: RepeatabilityResult
    exposure: ExposureDiagnostics
    gates: StabilityGateResult | None
    stability_checks: tuple[StabilityFeatureCheck, ...]
    is_stable: bool
    stop_reason: str
    batches_added: int = 0
    calibration_scale_factor: float = 1.0
    calibration_strategy: CalibrationStrategy | None = None
    computation_time_ms: float = field(default=0.0, compare=False)

    @property
    def failed_task_count(self) -> int:
        return sum(1 for r in self.responses if r.failed)

    @property
    def failure_rate(self) -> float:
        return self.failed_task_count / len(self.responses) if self.responses else 0.0

    @property
    def wtp_by_feature(self) -> dict[ItemId, float]:
        return {v.feature_id: v.adjusted_wtp for v in self.valuations}

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header(f"MAXDIFF STUDY: {self.respondent_id or 'respondent'}")]
        status = m._format_status(self.is_stable, "STABLE", "NOT STABLE")
        lines.append(f"\nStatus: {status} ({self.stop_reason})")
        lines.append(m._format_section("Run"))
        lines.append(m._format_metric("Estimator", self.estimator.value))
        lines.append(m._format_metric("Planned Tasks", self.plan.num_tasks))
        lines.append(m._format_metric("Answered Tasks", self.exposure.answered_tasks))
        lines.append(m._format_metric("Failure Rate", self.failure_rate))
        lines.append(m._format_metric("Joint Repeatability", self.repeatability.joint_agreement_rate))
        lines.append(m._format_metric("Batches Added", self.batches_added))
        lines.append(m._format_metric("Calibration Scale", self.calibration_scale_factor))
        if self.gates is not None and self.gates.reasons:
            lines.append(m._format_section("Unmet Gates"))
            lines.append(m._format_list(list(self.gates.reasons), max_items=10, item_name="reason"))
        lines.append(m._format_section("Valuations"))
        rows = [
            (v.feature_name, v.material_cost, v.display_wtp, v.ci_lower_95, v.ci_upper_95,
             v.adjustment_source)
            for v in self.valuations
        ]
        lines.append(m._format_table(["Feature", "Cost", "WTP", "2.5%", "97.5%", "Source"], rows))
        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "respondent_id": self.respondent_id,
            "estimator": self.estimator.value,
            "plan": self.plan.to_dict(),
            "responses": [r.to_dict() for r in self.responses],
            "valuations": [v.to_dict() for v in self.valuations],
            "fit": self.fit.to_dict() if self.fit else None,
            "bootstrap": self.bootstrap.to_dict() if self.bootstrap else None,
            "legacy": self.legacy.to_dict() if self.legacy else None,
            "repeatability": self.repeatability.to_dict(),
            "exposure": self.exposure.to_dict(),
            "gates": self.gates.to_dict() if self.gates else None,
            "stability_checks": [c.to_dict() for c in self.stability_checks],
            "is_stable": self.is_stable,
            "stop_reason": self.stop_reason,
            "batches_added": self.batches_added,
            "calibration_scale_factor": self.calibration_scale_factor,
            "calibration_strategy": (
                self.calibration_strategy.value if self.calibration_strategy else None
            ),
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        return (
            f"StudyResult({self.respondent_id!r}, tasks={len(self.responses)}, "
            f"stable={self.is_stable}, stop={self.stop_reason})"
        )
