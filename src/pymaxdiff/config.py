"""Run configuration for a MaxDiff study.

AnalysisSettings gathers every tunable of the study workflow in one frozen
record. ``from_dict`` builds it from loosely-typed input (unknown keys are
ignored) and ``normalized`` clamps every field into its supported range, so
a settings blob from any source can be used without further checks.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping

from pymaxdiff.core.types import CalibrationStrategy, DesignMode, Estimator, MoneyTransform
from pymaxdiff.algorithms.bws_mnl import BwsMnlConfig
from pymaxdiff.algorithms.vouchers import VoucherBounds

# Fit hyperparameters used for the main fit and for each bootstrap refit
STUDY_FIT_MAX_ITERS = 360
STUDY_FIT_TOLERANCE = 1e-6
STUDY_FIT_LEARNING_RATE = 0.03
BOOTSTRAP_FIT_MAX_ITERS = 220
BOOTSTRAP_FIT_TOLERANCE = 1e-5
BOOTSTRAP_FIT_LEARNING_RATE = 0.035


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _clamp_int(value: Any, low: int, high: int) -> int:
    return int(_clamp(round(float(value)), low, high))


def _clamp_float(value: Any, low: float, high: float, default: float) -> float:
    number = float(value)
    if not math.isfinite(number):
        number = default
    return float(_clamp(number, low, high))


@dataclass(frozen=True)
class AnalysisSettings:
    """
    Tunables of a study run.

    Attributes:
        design_mode: Near-BIBD or legacy feature blocks
        estimator: BWS-MNL money model or legacy Borda score
        money_transform: log1p or linear voucher utility
        money_scale: Currency units per model unit
        design_seed: Base seed for design, assignment and resampling
        items_per_set: Items shown per task (features plus one voucher)
        repeat_task_fraction: Share of core tasks shown again
        improvement_iterations: Swap proposals for the near-BIBD builder
        voucher_bounds: Explicit voucher grid bounds (derived from costs if None)
        bootstrap_samples: Bootstrap resamples per estimation pass
        bootstrap_workers: Threads used for bootstrap refits
        stabilize_to_target: Extend the plan until estimates stabilise
        stability_target_percent: Max relative CI half-width, in percent
        stability_top_n: Number of top features that must be stable
        stability_batch_size: Tasks added per extension
        stability_max_tasks: Hard cap on tasks per run
        target_feature_exposures: Appearances wanted per feature
        target_voucher_exposures_per_level: Appearances wanted per voucher
        min_tasks_floor: Lower bound on the planned task count
        min_repeat_tasks: Answered repeats needed before judging repeatability
        min_repeatability: Joint best/worst agreement required on repeats
        max_failure_rate: Largest tolerated share of failed tasks
        enable_calibration: Run feature-vs-cash calibration after fitting
        calibration_feature_count: Top features to calibrate
        calibration_steps: Search steps per calibration
        calibration_strategy: How calibration adjusts model WTP
        max_retries: Oracle attempts per task
        backoff_seconds: Linear backoff unit between attempts
        inter_call_delay: Pause between oracle calls, in seconds
        max_workers: Concurrent oracle calls (1 = sequential)
    """

    design_mode: DesignMode = DesignMode.NEAR_BIBD
    estimator: Estimator = Estimator.BWS_MNL_MONEY
    money_transform: MoneyTransform = MoneyTransform.LOG1P
    money_scale: float = 100.0
    design_seed: int = 42
    items_per_set: int = 4
    repeat_task_fraction: float = 0.1
    improvement_iterations: int = 800
    voucher_bounds: VoucherBounds | None = None
    bootstrap_samples: int = 200
    bootstrap_workers: int = 1
    stabilize_to_target: bool = True
    stability_target_percent: float = 15.0
    stability_top_n: int = 5
    stability_batch_size: int = 12
    stability_max_tasks: int = 160
    target_feature_exposures: int = 12
    target_voucher_exposures_per_level: int = 10
    min_tasks_floor: int = 60
    min_repeat_tasks: int = 6
    min_repeatability: float = 0.8
    max_failure_rate: float = 0.02
    enable_calibration: bool = False
    calibration_feature_count: int = 3
    calibration_steps: int = 7
    calibration_strategy: CalibrationStrategy = CalibrationStrategy.SCALE
    max_retries: int = 3
    backoff_seconds: float = 1.0
    inter_call_delay: float = 0.2
    max_workers: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "design_mode", DesignMode(self.design_mode))
        object.__setattr__(self, "estimator", Estimator(self.estimator))
        object.__setattr__(self, "money_transform", MoneyTransform(self.money_transform))
        object.__setattr__(self, "calibration_strategy", CalibrationStrategy(self.calibration_strategy))
        if isinstance(self.voucher_bounds, Mapping):
            object.__setattr__(self, "voucher_bounds", VoucherBounds(**self.voucher_bounds))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AnalysisSettings:
        """Build settings from a mapping, ignoring keys that are not settings."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known}).normalized()

    def normalized(self) -> AnalysisSettings:
        """Return a copy with every field clamped into its supported range."""
        return replace(
            self,
            money_scale=_clamp_float(self.money_scale, 1e-6, 1e9, 100.0),
            design_seed=int(self.design_seed),
            items_per_set=_clamp_int(self.items_per_set, 2, 9),
            repeat_task_fraction=_clamp_float(self.repeat_task_fraction, 0.0, 0.5, 0.1),
            improvement_iterations=_clamp_int(self.improvement_iterations, 0, 100_000),
            bootstrap_samples=_clamp_int(self.bootstrap_samples, 0, 5000),
            bootstrap_workers=_clamp_int(self.bootstrap_workers, 1, 64),
            stabilize_to_target=bool(self.stabilize_to_target),
            stability_target_percent=_clamp_float(self.stability_target_percent, 1.0, 100.0, 15.0),
            stability_top_n=_clamp_int(self.stability_top_n, 1, 50),
            stability_batch_size=_clamp_int(self.stability_batch_size, 1, 500),
            stability_max_tasks=_clamp_int(self.stability_max_tasks, 1, 5000),
            target_feature_exposures=_clamp_int(self.target_feature_exposures, 1, 200),
            target_voucher_exposures_per_level=_clamp_int(self.target_voucher_exposures_per_level, 1, 200),
            min_tasks_floor=_clamp_int(self.min_tasks_floor, 1, 5000),
            min_repeat_tasks=_clamp_int(self.min_repeat_tasks, 0, 500),
            min_repeatability=_clamp_float(self.min_repeatability, 0.0, 1.0, 0.8),
            max_failure_rate=_clamp_float(self.max_failure_rate, 0.0, 1.0, 0.02),
            enable_calibration=bool(self.enable_calibration),
            calibration_feature_count=_clamp_int(self.calibration_feature_count, 0, 50),
            calibration_steps=_clamp_int(self.calibration_steps, 1, 20),
            max_retries=_clamp_int(self.max_retries, 1, 5),
            backoff_seconds=_clamp_float(self.backoff_seconds, 0.0, 60.0, 1.0),
            inter_call_delay=_clamp_float(self.inter_call_delay, 0.0, 60.0, 0.2),
            max_workers=_clamp_int(self.max_workers, 1, 64),
        )

    @property
    def stabilization_enabled(self) -> bool:
        """Adaptive extension runs only for the BWS-MNL estimator on a near-BIBD design."""
        return (
            self.stabilize_to_target
            and self.estimator is Estimator.BWS_MNL_MONEY
            and self.design_mode is DesignMode.NEAR_BIBD
        )

    def fit_config(self, seed: int | None = None) -> BwsMnlConfig:
        """Hyperparameters for the main BWS-MNL fit."""
        return BwsMnlConfig(
            transform=self.money_transform,
            money_scale=self.money_scale,
            max_iters=STUDY_FIT_MAX_ITERS,
            tolerance=STUDY_FIT_TOLERANCE,
            learning_rate=STUDY_FIT_LEARNING_RATE,
            seed=self.design_seed if seed is None else seed,
        )

    def bootstrap_config(self, seed: int) -> BwsMnlConfig:
        """Lighter hyperparameters for bootstrap refits."""
        return BwsMnlConfig(
            transform=self.money_transform,
            money_scale=self.money_scale,
            max_iters=BOOTSTRAP_FIT_MAX_ITERS,
            tolerance=BOOTSTRAP_FIT_TOLERANCE,
            learning_rate=BOOTSTRAP_FIT_LEARNING_RATE,
            seed=seed,
        )

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for key in ("design_mode", "estimator", "money_transform", "calibration_strategy"):
            out[key] = getattr(self, key).value
        out["voucher_bounds"] = self.voucher_bounds.to_dict() if self.voucher_bounds else None
        return out
