"""Engine algorithms for MaxDiff design and estimation."""

from pymaxdiff.algorithms.design import (
    generate_near_bibd_design,
    extend_near_bibd_design,
    generate_legacy_design,
    extend_legacy_design,
    add_repeat_tasks,
    sample_repeat_blocks,
    compute_design_diagnostics,
)
from pymaxdiff.algorithms.vouchers import (
    VoucherBounds,
    derive_voucher_bounds,
    build_voucher_grid,
    generate_vouchers,
)
from pymaxdiff.algorithms.assembly import (
    generate_choice_plan,
    extend_choice_plan,
)
from pymaxdiff.algorithms.scoring import compute_perceived_values
from pymaxdiff.algorithms.wtp import (
    money_utility_basis,
    wtp_from_utility,
    wtp_from_utility_model_units,
    utility_from_wtp,
    display_wtp_from_raw,
)
from pymaxdiff.algorithms.bws_mnl import (
    BwsMnlConfig,
    TaskObservation,
    build_tasks,
    fit_bws_mnl_money,
    fit_tasks,
)
from pymaxdiff.algorithms.inference import (
    bootstrap_bws_mnl_money,
    compute_repeatability,
    top_features_by_wtp,
    evaluate_stability_checks,
)
from pymaxdiff.algorithms.stability import (
    compute_exposure_task_plan,
    evaluate_stability_gates,
    compute_exposure_diagnostics,
)
from pymaxdiff.algorithms.calibration import (
    run_feature_cash_calibration,
    calibration_search_bounds,
    select_calibration_features,
    calibration_scale_factor,
    apply_calibration,
)

__all__ = [
    # Design
    "generate_near_bibd_design",
    "extend_near_bibd_design",
    "generate_legacy_design",
    "extend_legacy_design",
    "add_repeat_tasks",
    "sample_repeat_blocks",
    "compute_design_diagnostics",
    # Vouchers
    "VoucherBounds",
    "derive_voucher_bounds",
    "build_voucher_grid",
    "generate_vouchers",
    # Assembly
    "generate_choice_plan",
    "extend_choice_plan",
    # Legacy scoring
    "compute_perceived_values",
    # WTP
    "money_utility_basis",
    "wtp_from_utility",
    "wtp_from_utility_model_units",
    "utility_from_wtp",
    "display_wtp_from_raw",
    # BWS-MNL
    "BwsMnlConfig",
    "TaskObservation",
    "build_tasks",
    "fit_bws_mnl_money",
    "fit_tasks",
    # Inference
    "bootstrap_bws_mnl_money",
    "compute_repeatability",
    "top_features_by_wtp",
    "evaluate_stability_checks",
    # Stability
    "compute_exposure_task_plan",
    "evaluate_stability_gates",
    "compute_exposure_diagnostics",
    # Calibration
    "run_feature_cash_calibration",
    "calibration_search_bounds",
    "select_calibration_features",
    "calibration_scale_factor",
    "apply_calibration",
]
