"""Custom exceptions and warnings for PyMaxDiff.

This module provides a hierarchy of exceptions for specific error types,
all inheriting from ValueError so callers that already catch ValueError
keep working.

Exception Hierarchy:
    PyMaxDiffError (ValueError)
    ├── DataValidationError
    │   └── ValueRangeError
    ├── InsufficientDataError
    └── OracleError
        └── OracleResponseError

Warning Classes:
    DataQualityWarning (UserWarning)
    NumericalInstabilityWarning (UserWarning)
    OracleRetryWarning (UserWarning)

Note that the design, scoring and estimation functions do not raise for
routine bad input (empty item lists, failed or malformed responses). They
degrade to empty results and tally failures instead, so exceptions here are
reserved for construction-time validation and the oracle boundary.
"""

from __future__ import annotations


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class PyMaxDiffError(ValueError):
    """Base exception for all PyMaxDiff errors.

    Example:
        >>> try:
        ...     Voucher(id="voucher-1", amount=-5)
        ... except PyMaxDiffError as e:
        ...     print(f"PyMaxDiff error: {e}")
    """

    pass


# =============================================================================
# DATA VALIDATION EXCEPTIONS
# =============================================================================


class DataValidationError(PyMaxDiffError):
    """Raised when an item, block or response record fails validation.

    Common causes:
        - Empty item identifiers
        - Malformed records passed to ``build_features``
    """

    pass


class ValueRangeError(DataValidationError):
    """Raised when values are outside expected ranges.

    Common causes:
        - Negative voucher amounts
        - NaN/Inf feature costs

    Example:
        >>> Voucher(id="voucher-1", amount=-10)
        ValueRangeError: Voucher amount must be a finite value >= 0, got -10...
    """

    pass


class InsufficientDataError(PyMaxDiffError):
    """Raised when there is not enough data for an explicit request.

    The engine itself returns empty or zero-valued results for degenerate
    input; this error is raised only by the study workflow when it is asked
    to run with nothing to ask about (e.g. zero features).
    """

    pass


# =============================================================================
# ORACLE EXCEPTIONS
# =============================================================================


class OracleError(PyMaxDiffError):
    """Raised when the external choice oracle cannot be used.

    Transport failures belong to the oracle implementation; the collector
    retries them and records a failed Response once attempts are exhausted.
    """

    pass


class OracleResponseError(OracleError):
    """Raised when an oracle payload does not match any accepted shape.

    Example:
        >>> parse_cash_choice({"choice": "C"})
        OracleResponseError: Expected choice 'A' or 'B', got 'C'
    """

    pass


# =============================================================================
# WARNINGS
# =============================================================================


class DataQualityWarning(UserWarning):
    """Warning for data quality issues that don't prevent computation.

    Emitted when:
        - Duplicate item ids are dropped from a design item list
        - Repeat tasks are requested but no core blocks exist

    Example:
        >>> import warnings
        >>> warnings.filterwarnings('ignore', category=DataQualityWarning)
    """

    pass


class NumericalInstabilityWarning(UserWarning):
    """Warning for numerical issues during estimation.

    Emitted when the BWS-MNL optimizer meets a non-finite log-likelihood
    and stops early, returning the best finite iterate.
    """

    pass


class OracleRetryWarning(UserWarning):
    """Warning emitted each time an oracle attempt fails and is retried."""

    pass
