"""
PyMaxDiff: MaxDiff Design and Willingness-to-Pay Estimation.

Near-balanced choice-set designs with cash anchors, best-worst
multinomial-logit WTP estimation, bootstrap uncertainty and adaptive
stopping rules.
"""

from pymaxdiff.core.items import (
    Feature,
    Voucher,
    DesignBlock,
    ChoiceSet,
    Response,
    build_features,
)
from pymaxdiff.core.types import (
    MoneyTransform,
    DesignMode,
    Estimator,
    CalibrationChoice,
    CalibrationStrategy,
)
from pymaxdiff.core.result import (
    DesignDiagnostics,
    NearBIBDResult,
    ChoicePlan,
    LegacyScoreResult,
    BwsMnlFitResult,
    BootstrapResult,
    RepeatabilityResult,
    ExposureTaskPlan,
    StabilityThresholds,
    StabilityGateResult,
    CalibrationResult,
    FeatureValuation,
    StudyResult,
)
from pymaxdiff.core.exceptions import (
    PyMaxDiffError,
    DataValidationError,
    ValueRangeError,
    InsufficientDataError,
    OracleError,
    OracleResponseError,
)
from pymaxdiff.algorithms.design import (
    generate_near_bibd_design,
    extend_near_bibd_design,
    add_repeat_tasks,
    compute_design_diagnostics,
)
from pymaxdiff.algorithms.vouchers import VoucherBounds, derive_voucher_bounds, generate_vouchers
from pymaxdiff.algorithms.assembly import generate_choice_plan, extend_choice_plan
from pymaxdiff.algorithms.scoring import compute_perceived_values
from pymaxdiff.algorithms.wtp import wtp_from_utility, utility_from_wtp, display_wtp_from_raw
from pymaxdiff.algorithms.bws_mnl import BwsMnlConfig, fit_bws_mnl_money
from pymaxdiff.algorithms.inference import (
    bootstrap_bws_mnl_money,
    compute_repeatability,
    evaluate_stability_checks,
    top_features_by_wtp,
)
from pymaxdiff.algorithms.stability import (
    compute_exposure_task_plan,
    evaluate_stability_gates,
    compute_exposure_diagnostics,
)
from pymaxdiff.algorithms.calibration import run_feature_cash_calibration, apply_calibration
from pymaxdiff.config import AnalysisSettings
from pymaxdiff.oracle import (
    ParsedRanking,
    ParseFailure,
    parse_rank_payload,
    normalize_response,
    parse_cash_choice,
    collect_responses,
)
from pymaxdiff.study import StudyPlan, plan_study, analyze_responses, run_study

__version__ = "0.1.0"

__all__ = [
    # Items
    "Feature",
    "Voucher",
    "DesignBlock",
    "ChoiceSet",
    "Response",
    "build_features",
    # Enums
    "MoneyTransform",
    "DesignMode",
    "Estimator",
    "CalibrationChoice",
    "CalibrationStrategy",
    # Result types
    "DesignDiagnostics",
    "NearBIBDResult",
    "ChoicePlan",
    "LegacyScoreResult",
    "BwsMnlFitResult",
    "BootstrapResult",
    "RepeatabilityResult",
    "ExposureTaskPlan",
    "StabilityThresholds",
    "StabilityGateResult",
    "CalibrationResult",
    "FeatureValuation",
    "StudyResult",
    # Exceptions
    "PyMaxDiffError",
    "DataValidationError",
    "ValueRangeError",
    "InsufficientDataError",
    "OracleError",
    "OracleResponseError",
    # Design
    "generate_near_bibd_design",
    "extend_near_bibd_design",
    "add_repeat_tasks",
    "compute_design_diagnostics",
    # Vouchers and assembly
    "VoucherBounds",
    "derive_voucher_bounds",
    "generate_vouchers",
    "generate_choice_plan",
    "extend_choice_plan",
    # Estimation
    "compute_perceived_values",
    "wtp_from_utility",
    "utility_from_wtp",
    "display_wtp_from_raw",
    "BwsMnlConfig",
    "fit_bws_mnl_money",
    "bootstrap_bws_mnl_money",
    "compute_repeatability",
    "evaluate_stability_checks",
    "top_features_by_wtp",
    # Stability planning
    "compute_exposure_task_plan",
    "evaluate_stability_gates",
    "compute_exposure_diagnostics",
    # Calibration
    "run_feature_cash_calibration",
    "apply_calibration",
    # Workflow
    "AnalysisSettings",
    "ParsedRanking",
    "ParseFailure",
    "parse_rank_payload",
    "normalize_response",
    "parse_cash_choice",
    "collect_responses",
    "StudyPlan",
    "plan_study",
    "analyze_responses",
    "run_study",
]
