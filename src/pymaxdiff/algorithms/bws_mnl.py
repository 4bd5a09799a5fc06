"""Best-worst multinomial logit with a money coefficient (BWS-MNL).

Model for a task with items {x_1..x_K}:

    u(x) = theta_x - mean(theta)          for features
    u(x) = beta * f(amount_x / scale)      for vouchers (f = log1p or identity)
    u(x) = 0                               for anything else

    P(best = b)                 = softmax_k(u)[b]
    P(worst = w | best removed) = softmax_{k != b}(-u)[w]

Parameters are the raw feature utilities theta and log(beta). The negative
log-likelihood is minimized with Adam; the best iterate seen is kept, and
the search stops after 8 consecutive iterations with relative improvement
below the tolerance. log(beta) is clipped to [-12, 8].

Tech-Friendly Names (Primary):
    - fit_bws_mnl_money(): Fit utilities, beta and WTP from responses
    - build_tasks(): Usable best/worst observations and failure tally

References:
    Marley, A. A. J., & Louviere, J. J. (2005). Some probabilistic models
    of best, worst, and best-worst choices. Journal of Mathematical
    Psychology, 49(6), 464-480.

    Kingma, D. P., & Ba, J. (2015). Adam: A method for stochastic
    optimization. ICLR.
"""

from __future__ import annotations

import math
import time
import warnings
from dataclasses import dataclass, replace
from typing import Any, Sequence

import numpy as np
from scipy.special import logsumexp

from pymaxdiff.core.exceptions import NumericalInstabilityWarning, ValueRangeError
from pymaxdiff.core.items import ChoiceSet, Feature, Response, Voucher
from pymaxdiff.core.result import BwsMnlFitResult
from pymaxdiff.core.types import FloatArray, IntArray, ItemId, MoneyTransform
from pymaxdiff.algorithms.wtp import (
    money_utility_basis,
    wtp_from_utility,
    wtp_from_utility_model_units,
)

INITIAL_BETA = 0.2
LOG_BETA_BOUNDS = (-12.0, 8.0)
PATIENCE = 8
ADAM_BETA1 = 0.9
ADAM_BETA2 = 0.999
ADAM_EPS = 1e-8


@dataclass(frozen=True)
class BwsMnlConfig:
    """
    Hyperparameters for the BWS-MNL fit.

    Attributes:
        transform: Money transform for voucher amounts
        money_scale: Currency units per model unit
        max_iters: Optimizer iteration budget
        tolerance: Relative NLL improvement counted as negligible
        learning_rate: Adam step size
        seed: Base seed for bootstrap resampling
    """

    transform: MoneyTransform = MoneyTransform.LOG1P
    money_scale: float = 100.0
    max_iters: int = 300
    tolerance: float = 1e-6
    learning_rate: float = 0.03
    seed: int = 42

    def __post_init__(self) -> None:
        object.__setattr__(self, "transform", MoneyTransform(self.transform))
        if not self.money_scale > 0:
            raise ValueRangeError(f"money_scale must be > 0, got {self.money_scale!r}.")
        if self.max_iters < 1:
            raise ValueRangeError(f"max_iters must be >= 1, got {self.max_iters!r}.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "transform": self.transform.value,
            "money_scale": self.money_scale,
            "max_iters": self.max_iters,
            "tolerance": self.tolerance,
            "learning_rate": self.learning_rate,
            "seed": self.seed,
        }


@dataclass(frozen=True)
class TaskObservation:
    """One usable best/worst observation."""

    set_id: str
    item_ids: tuple[ItemId, ...]
    best_id: ItemId
    worst_id: ItemId


# =============================================================================
# PUBLIC API
# =============================================================================


def build_tasks(
    sets: Sequence[ChoiceSet],
    responses: Sequence[Response],
) -> tuple[list[TaskObservation], int]:
    """
    Turn responses into likelihood observations.

    A response is counted as failed (and excluded) when its set id is
    unknown, it is flagged failed, either choice is outside the set, or
    best == worst.

    Returns:
        Tuple of (observations in response order, failed count)
    """
    set_by_id = {s.id: s for s in sets}
    tasks: list[TaskObservation] = []
    failed = 0
    for response in responses:
        choice_set = set_by_id.get(response.set_id)
        if choice_set is None or not response.is_valid_for(choice_set):
            failed += 1
            continue
        tasks.append(
            TaskObservation(
                set_id=response.set_id,
                item_ids=choice_set.item_ids,
                best_id=response.most_valued,
                worst_id=response.least_valued,
            )
        )
    return tasks, failed


def fit_bws_mnl_money(
    sets: Sequence[ChoiceSet],
    responses: Sequence[Response],
    features: Sequence[Feature],
    vouchers: Sequence[Voucher],
    config: BwsMnlConfig | None = None,
) -> BwsMnlFitResult:
    """
    Fit feature utilities and the money coefficient by maximum likelihood.

    Args:
        sets: Choice sets the responses refer to
        responses: Response log (failed/invalid ones are tallied, not used)
        features: Features whose utilities are estimated
        vouchers: Voucher items (their amounts anchor the money scale)
        config: Hyperparameters (defaults to BwsMnlConfig())

    Returns:
        BwsMnlFitResult. With no features the result is a zero fit
        (beta 0.2, empty maps, converged False, log-likelihood -inf).

    Example:
        >>> result = fit_bws_mnl_money(plan.sets, responses, features, vouchers)
        >>> result.feature_ids_by_wtp[:3]
        ['heated-seats', 'sunroof', 'premium-audio']
    """
    start_time = time.perf_counter()
    config = config or BwsMnlConfig()

    tasks, failed = build_tasks(sets, responses)
    if not features:
        return BwsMnlFitResult(
            transform=config.transform,
            money_scale=config.money_scale,
            beta=INITIAL_BETA,
            utility_by_feature={},
            raw_wtp_model_units_by_feature={},
            raw_wtp_by_feature={},
            converged=False,
            iterations=0,
            log_likelihood=float("-inf"),
            task_count=0,
            failed_task_count=failed,
            computation_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    result = fit_tasks(tasks, features, vouchers, config)
    return replace(
        result,
        failed_task_count=failed,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def fit_tasks(
    tasks: Sequence[TaskObservation],
    features: Sequence[Feature],
    vouchers: Sequence[Voucher],
    config: BwsMnlConfig,
) -> BwsMnlFitResult:
    """
    Fit on pre-built observations (used directly by the bootstrap).

    ``features`` must be non-empty. ``failed_task_count`` is 0 in the result.
    """
    feature_ids = [f.id for f in features]
    encoded = _encode_tasks(tasks, feature_ids, vouchers, config)
    n_features = len(feature_ids)
    log_beta_index = n_features
    lo, hi = LOG_BETA_BOUNDS

    params = np.zeros(n_features + 1)
    params[log_beta_index] = math.log(INITIAL_BETA)
    m = np.zeros_like(params)
    v = np.zeros_like(params)

    best_params = params.copy()
    best_nll = math.inf
    patience = 0
    converged = False
    iteration = 0

    for iteration in range(1, config.max_iters + 1):
        log_likelihood, gradient = _evaluate(params, encoded)
        nll = -log_likelihood
        if not math.isfinite(nll):
            warnings.warn(
                f"BWS-MNL log-likelihood became non-finite at iteration {iteration}; "
                f"returning the best finite iterate.",
                NumericalInstabilityWarning,
                stacklevel=2,
            )
            break

        if nll < best_nll:
            best_nll = nll
            best_params = params.copy()

        if iteration > 1:
            rel_improvement = abs(best_nll - nll) / max(1.0, abs(best_nll))
            patience = patience + 1 if rel_improvement < config.tolerance else 0
            if patience >= PATIENCE:
                converged = True
                break

        # Adam step on the negative log-likelihood
        grad = -gradient
        m = ADAM_BETA1 * m + (1 - ADAM_BETA1) * grad
        v = ADAM_BETA2 * v + (1 - ADAM_BETA2) * grad * grad
        m_hat = m / (1 - ADAM_BETA1 ** iteration)
        v_hat = v / (1 - ADAM_BETA2 ** iteration)
        params = params - config.learning_rate * m_hat / (np.sqrt(v_hat) + ADAM_EPS)
        params[log_beta_index] = min(hi, max(lo, params[log_beta_index]))

    final_ll, _ = _evaluate(best_params, encoded)
    beta = math.exp(min(hi, max(lo, best_params[log_beta_index])))
    theta = best_params[:n_features]
    utilities = theta - theta.mean()

    model_units = np.atleast_1d(wtp_from_utility_model_units(utilities, beta, config.transform))
    currency = np.atleast_1d(
        wtp_from_utility(utilities, beta, config.transform, money_scale=config.money_scale)
    )

    return BwsMnlFitResult(
        transform=config.transform,
        money_scale=config.money_scale,
        beta=beta,
        utility_by_feature={fid: float(u) for fid, u in zip(feature_ids, utilities)},
        raw_wtp_model_units_by_feature={fid: float(w) for fid, w in zip(feature_ids, model_units)},
        raw_wtp_by_feature={fid: float(w) for fid, w in zip(feature_ids, currency)},
        converged=converged,
        iterations=iteration,
        log_likelihood=float(final_ll),
        task_count=len(tasks),
        failed_task_count=0,
    )


# =============================================================================
# LIKELIHOOD
# =============================================================================


@dataclass(frozen=True)
class _EncodedTasks:
    """
    Padded task matrices (T tasks x K slots).

    feature_index is -1 for non-feature slots; money_basis is f(amount) for
    voucher slots and 0 elsewhere; valid masks out padding.
    """

    feature_index: IntArray
    is_voucher: np.ndarray
    money_basis: FloatArray
    valid: np.ndarray
    best: IntArray
    worst: IntArray
    n_features: int


def _encode_tasks(
    tasks: Sequence[TaskObservation],
    feature_ids: Sequence[ItemId],
    vouchers: Sequence[Voucher],
    config: BwsMnlConfig,
) -> _EncodedTasks:
    feature_pos = {fid: i for i, fid in enumerate(feature_ids)}
    basis_by_voucher = {
        v.id: money_utility_basis(v.amount, config.transform, config.money_scale) for v in vouchers
    }
    n_tasks = len(tasks)
    width = max((len(t.item_ids) for t in tasks), default=0)

    feature_index = np.full((n_tasks, width), -1, dtype=np.int64)
    is_voucher = np.zeros((n_tasks, width), dtype=bool)
    money_basis = np.zeros((n_tasks, width))
    valid = np.zeros((n_tasks, width), dtype=bool)
    best = np.zeros(n_tasks, dtype=np.int64)
    worst = np.zeros(n_tasks, dtype=np.int64)

    for t, task in enumerate(tasks):
        for slot, item in enumerate(task.item_ids):
            valid[t, slot] = True
            if item in feature_pos:
                feature_index[t, slot] = feature_pos[item]
            elif item in basis_by_voucher:
                is_voucher[t, slot] = True
                money_basis[t, slot] = basis_by_voucher[item]
        best[t] = task.item_ids.index(task.best_id)
        worst[t] = task.item_ids.index(task.worst_id)

    return _EncodedTasks(
        feature_index=feature_index,
        is_voucher=is_voucher,
        money_basis=money_basis,
        valid=valid,
        best=best,
        worst=worst,
        n_features=len(feature_ids),
    )


def _evaluate(params: FloatArray, enc: _EncodedTasks) -> tuple[float, FloatArray]:
    """Log-likelihood and its gradient with respect to (theta, log beta)."""
    n_features = enc.n_features
    gradient = np.zeros(n_features + 1)
    n_tasks = enc.best.size
    if n_tasks == 0:
        return 0.0, gradient

    lo, hi = LOG_BETA_BOUNDS
    beta = math.exp(min(hi, max(lo, params[n_features])))
    theta = params[:n_features]
    centered = theta - theta.mean()

    is_feature = enc.feature_index >= 0
    utilities = np.where(is_feature, centered[np.maximum(enc.feature_index, 0)], 0.0)
    utilities = np.where(enc.is_voucher, beta * enc.money_basis, utilities)

    rows = np.arange(n_tasks)

    best_logits = np.where(enc.valid, utilities, -np.inf)
    log_den_best = logsumexp(best_logits, axis=1)
    p_best = np.exp(best_logits - log_den_best[:, None])

    remaining = enc.valid.copy()
    remaining[rows, enc.best] = False
    worst_logits = np.where(remaining, -utilities, -np.inf)
    log_den_worst = logsumexp(worst_logits, axis=1)
    p_worst = np.exp(worst_logits - log_den_worst[:, None])

    log_likelihood = float(
        np.sum(utilities[rows, enc.best] - log_den_best)
        + np.sum(-utilities[rows, enc.worst] - log_den_worst)
    )

    d_utility = p_worst - p_best
    d_utility[rows, enc.best] += 1.0
    d_utility[rows, enc.worst] -= 1.0
    d_utility = np.where(np.isfinite(d_utility), d_utility, 0.0)

    g_feature = np.bincount(
        enc.feature_index[is_feature], weights=d_utility[is_feature], minlength=n_features,
    )
    # Mean-centering spreads each feature's gradient over all raw parameters.
    gradient[:n_features] = g_feature - g_feature.sum() / max(1, n_features)
    # du/dlog(beta) = u for voucher slots
    gradient[n_features] = float(np.sum(d_utility[enc.is_voucher] * utilities[enc.is_voucher]))

    return log_likelihood, gradient


# fit_money_model: Tech-friendly name for fit_bws_mnl_money
fit_money_model = fit_bws_mnl_money
