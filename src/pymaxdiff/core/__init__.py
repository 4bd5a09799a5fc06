"""Core data structures for PyMaxDiff."""

from pymaxdiff.core.items import (
    Feature,
    Voucher,
    DesignBlock,
    ChoiceSet,
    Response,
    build_features,
    format_amount,
)
from pymaxdiff.core.types import (
    MoneyTransform,
    DesignMode,
    VoucherSpacing,
    Estimator,
    CalibrationChoice,
    CalibrationPhase,
    CalibrationStrategy,
    pair_key,
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
    ExposureDiagnostics,
    CalibrationResult,
    StudyResult,
)
from pymaxdiff.core.exceptions import (
    PyMaxDiffError,
    DataValidationError,
    ValueRangeError,
    InsufficientDataError,
    OracleError,
    OracleResponseError,
    DataQualityWarning,
    NumericalInstabilityWarning,
    OracleRetryWarning,
)

__all__ = [
    # Items
    "Feature",
    "Voucher",
    "DesignBlock",
    "ChoiceSet",
    "Response",
    "build_features",
    "format_amount",
    # Enums
    "MoneyTransform",
    "DesignMode",
    "VoucherSpacing",
    "Estimator",
    "CalibrationChoice",
    "CalibrationPhase",
    "CalibrationStrategy",
    "pair_key",
    # Results
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
    "ExposureDiagnostics",
    "CalibrationResult",
    "StudyResult",
    # Exceptions
    "PyMaxDiffError",
    "DataValidationError",
    "ValueRangeError",
    "InsufficientDataError",
    "OracleError",
    "OracleResponseError",
    # Warnings
    "DataQualityWarning",
    "NumericalInstabilityWarning",
    "OracleRetryWarning",
]
