"""Money transform and willingness-to-pay inversion.

Voucher utility is ``beta * f(amount / money_scale)`` with f = log1p or the
identity. Willingness to pay for a feature with utility u is the amount
whose voucher utility equals u:

    log1p:  WTP = money_scale * expm1(u / beta)
    linear: WTP = money_scale * u / beta

All functions accept scalars or numpy arrays.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike

from pymaxdiff.core.types import MoneyTransform

_MIN_BETA = 1e-8
_MIN_SCALE = 1e-8
_LOG1P_FLOOR = -0.999999


def money_utility_basis(
    amount: ArrayLike,
    transform: MoneyTransform | str,
    money_scale: float = 100.0,
) -> np.ndarray | float:
    """f(max(0, amount) / money_scale): voucher utility per unit of beta."""
    scaled = np.maximum(0.0, np.asarray(amount, dtype=np.float64)) / max(_MIN_SCALE, money_scale)
    if MoneyTransform(transform) is MoneyTransform.LINEAR:
        out = scaled
    else:
        out = np.log1p(scaled)
    return out if out.ndim else float(out)


def wtp_from_utility_model_units(
    utility: ArrayLike,
    beta: float,
    transform: MoneyTransform | str,
) -> np.ndarray | float:
    """WTP in model units (before multiplying by the money scale)."""
    ratio = np.asarray(utility, dtype=np.float64) / max(abs(beta), _MIN_BETA)
    if MoneyTransform(transform) is MoneyTransform.LINEAR:
        out = ratio
    else:
        out = np.expm1(ratio)
    return out if out.ndim else float(out)


def wtp_from_utility(
    utility: ArrayLike,
    beta: float,
    transform: MoneyTransform | str,
    money_scale: float = 1.0,
) -> np.ndarray | float:
    """
    Convert a (mean-centered) feature utility to currency.

    Args:
        utility: Feature utility u
        beta: Money coefficient (its magnitude is used, floored at 1e-8)
        transform: Money transform the model was fitted with
        money_scale: Currency units per model unit

    Returns:
        Willingness to pay in currency (negative for below-average features
        under the linear transform, bounded below by -money_scale for log1p)

    Example:
        >>> round(wtp_from_utility(0.2, 0.2, "log1p", money_scale=100), 4)
        171.8282
    """
    return wtp_from_utility_model_units(utility, beta, transform) * money_scale


def utility_from_wtp(
    wtp: ArrayLike,
    beta: float,
    transform: MoneyTransform | str,
    money_scale: float = 1.0,
) -> np.ndarray | float:
    """
    Inverse of wtp_from_utility.

    For log1p, WTP below -money_scale has no preimage; the model-unit ratio
    is floored at -0.999999 before taking log1p.
    """
    safe_beta = max(abs(beta), _MIN_BETA)
    ratio = np.asarray(wtp, dtype=np.float64) / max(_MIN_SCALE, money_scale)
    if MoneyTransform(transform) is MoneyTransform.LINEAR:
        out = safe_beta * ratio
    else:
        out = safe_beta * np.log1p(np.maximum(_LOG1P_FLOOR, ratio))
    return out if out.ndim else float(out)


def display_wtp_from_raw(raw_wtp: float, allow_negative: bool = False) -> float:
    """WTP for display: non-finite becomes 0, negatives clamp to 0 unless allowed."""
    if not np.isfinite(raw_wtp):
        return 0.0
    if allow_negative:
        return float(raw_wtp)
    return max(0.0, float(raw_wtp))
