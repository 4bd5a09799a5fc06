"""Near-BIBD design construction for MaxDiff choice sets.

A balanced incomplete block design (BIBD) assigns v items to b blocks of
size k so that every item appears r times and every pair co-occurs lambda
times. Exact BIBDs exist only for special (v, k) combinations, so this
module builds *near*-BIBDs:

1. Greedy construction: seed each block with a least-exposed item, then
   add the candidate minimizing (appearances, max co-occurrence with the
   block, total co-occurrence with the block), ties broken by the seeded
   generator. Candidates are limited to items within one appearance of
   the current minimum.
2. Local search: random item exchanges between two blocks, kept only when
   they strictly lower the balance objective

       1e6 * item_range + 1e4 * observed_pair_range + pair_sq_dev

Tech-Friendly Names (Primary):
    - generate_near_bibd_design(): Build a fresh balanced design
    - extend_near_bibd_design(): Append blocks without touching earlier ones
    - generate_legacy_design(): Round-robin least-appearance blocks
    - extend_legacy_design(): Append round-robin blocks
    - add_repeat_tasks(): Duplicate blocks for test-retest checks
    - compute_design_diagnostics(): Score any block list

References:
    Louviere, J. J., Flynn, T. N., & Marley, A. A. J. (2015). Best-Worst
    Scaling: Theory, Methods and Applications. Cambridge University Press.
"""

from __future__ import annotations

import math
import time
import warnings
from typing import Sequence

import numpy as np

from pymaxdiff.core.exceptions import DataQualityWarning
from pymaxdiff.core.items import DesignBlock
from pymaxdiff.core.result import (
    DesignDiagnostics,
    ExactBIBDCheck,
    NearBIBDResult,
    PairCountsSummary,
    SummaryStats,
)
from pymaxdiff.core.types import IntArray, ItemId, pair_key, round_half_up
from pymaxdiff._kernels import (
    apply_swap_numba,
    block_counts_numba,
    design_objective_numba,
    row_contains_numba,
)

DEFAULT_IMPROVEMENT_ITERATIONS = 600


# =============================================================================
# PUBLIC API
# =============================================================================


def generate_near_bibd_design(
    items: Sequence[ItemId],
    block_size: int,
    r_target: int,
    seed: int,
    improvement_iterations: int = DEFAULT_IMPROVEMENT_ITERATIONS,
    start_index: int = 1,
) -> NearBIBDResult:
    """
    Build a near-balanced incomplete block design over ``items``.

    The block count is b = ceil(v * r / k) with k clamped into [2, v] and
    r floored at 1. Identical arguments always produce identical blocks.

    Args:
        items: Item ids (duplicates are dropped with a DataQualityWarning)
        block_size: Target block size k
        r_target: Target appearances per item
        seed: Seed for the numpy Generator driving all tie-breaks and swaps
        improvement_iterations: Number of random swap proposals
        start_index: Number of the first block id (``set-<start_index>``)

    Returns:
        NearBIBDResult with blocks and diagnostics. Fewer than 2 items or
        ``block_size < 2`` yields an empty design with zero diagnostics.

    Example:
        >>> from pymaxdiff import generate_near_bibd_design
        >>> result = generate_near_bibd_design(list("abcdefg"), 3, 3, seed=1)
        >>> result.num_blocks
        7
        >>> result.diagnostics.item_count_imbalance
        0.0
    """
    start_time = time.perf_counter()

    unique = _unique_items(items)
    v = len(unique)
    if v < 2 or block_size < 2:
        return NearBIBDResult(
            blocks=(),
            diagnostics=DesignDiagnostics.empty(),
            block_size=0,
            computation_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    k = max(2, min(int(block_size), v))
    r = max(1, int(math.floor(r_target or 1)))
    num_blocks = math.ceil(v * r / k)

    rng = np.random.default_rng(seed)
    matrix, initial_score = _build_blocks(
        v, k, num_blocks, rng, np.zeros(v, dtype=np.int64), np.zeros((v, v), dtype=np.int64),
        improvement_iterations,
    )

    first = max(1, int(start_index))
    blocks = tuple(
        DesignBlock(id=f"set-{first + i}", item_ids=tuple(unique[j] for j in row))
        for i, row in enumerate(matrix)
    )

    return NearBIBDResult(
        blocks=blocks,
        diagnostics=compute_design_diagnostics(unique, k, blocks),
        block_size=k,
        initial_objective=initial_score,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def extend_near_bibd_design(
    items: Sequence[ItemId],
    block_size: int,
    existing_blocks: Sequence[DesignBlock],
    additional_block_count: int,
    seed: int,
    improvement_iterations: int = DEFAULT_IMPROVEMENT_ITERATIONS,
) -> NearBIBDResult:
    """
    Append blocks to an existing design without modifying it.

    Item and pair counts are seeded from ``existing_blocks`` so the new
    blocks favour under-exposed items and pairs. The swap search only moves
    items between new blocks. New ids continue ``set-<len(existing) + 1>``.

    Args:
        items: Item ids
        block_size: Target block size k
        existing_blocks: Blocks already shown, returned verbatim first
        additional_block_count: Number of blocks to add
        seed: Seed for the numpy Generator
        improvement_iterations: Number of random swap proposals

    Returns:
        NearBIBDResult with existing + new blocks and merged diagnostics
    """
    start_time = time.perf_counter()

    unique = _unique_items(items)
    v = len(unique)
    existing = tuple(existing_blocks)
    k = max(2, min(int(block_size), max(2, v)))

    if additional_block_count <= 0 or v < 2 or block_size < 2:
        diagnostics = (
            compute_design_diagnostics(unique, k, existing) if v >= 2 else DesignDiagnostics.empty()
        )
        return NearBIBDResult(
            blocks=existing,
            diagnostics=diagnostics,
            block_size=k if v >= 2 else 0,
            computation_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    index_of = {item: i for i, item in enumerate(unique)}
    item_counts, pair_counts = _count_blocks(index_of, existing)

    rng = np.random.default_rng(seed)
    matrix, initial_score = _build_blocks(
        v, k, int(additional_block_count), rng, item_counts, pair_counts, improvement_iterations,
    )

    next_index = len(existing) + 1
    new_blocks = tuple(
        DesignBlock(id=f"set-{next_index + i}", item_ids=tuple(unique[j] for j in row))
        for i, row in enumerate(matrix)
    )
    merged = existing + new_blocks

    return NearBIBDResult(
        blocks=merged,
        diagnostics=compute_design_diagnostics(unique, k, merged),
        block_size=k,
        initial_objective=initial_score,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def generate_legacy_design(
    items: Sequence[ItemId],
    block_size: int,
    r_target: int,
    start_index: int = 1,
) -> NearBIBDResult:
    """
    Round-robin least-appearance design.

    For each of ceil(v * r / k) blocks, items are stably sorted by how often
    they have appeared so far and the first k are taken. No randomness and
    no swap improvement; kept as the baseline design mode.

    Args:
        items: Item ids
        block_size: Block size k
        r_target: Target appearances per item
        start_index: Number of the first block id

    Returns:
        NearBIBDResult with blocks and diagnostics (same shape as the
        near-BIBD builder so both modes can be compared)
    """
    unique = _unique_items(items)
    v = len(unique)
    if v < 2 or block_size < 2:
        return NearBIBDResult(blocks=(), diagnostics=DesignDiagnostics.empty())
    k = max(2, min(int(block_size), v))
    r = max(1, int(math.floor(r_target or 1)))
    return extend_legacy_design(unique, k, (), math.ceil(v * r / k), start_index=start_index)


def extend_legacy_design(
    items: Sequence[ItemId],
    block_size: int,
    existing_blocks: Sequence[DesignBlock],
    additional_block_count: int,
    start_index: int | None = None,
) -> NearBIBDResult:
    """
    Continue a round-robin design from the appearances in ``existing_blocks``.

    New ids start at ``start_index`` (default ``len(existing_blocks) + 1``).
    """
    start_time = time.perf_counter()

    unique = _unique_items(items)
    v = len(unique)
    existing = tuple(existing_blocks)
    if v < 2 or block_size < 2:
        return NearBIBDResult(blocks=existing, diagnostics=DesignDiagnostics.empty())

    k = max(2, min(int(block_size), v))
    appearances = {item: 0 for item in unique}
    for block in existing:
        for item in block.item_ids:
            if item in appearances:
                appearances[item] += 1

    first = len(existing) + 1 if start_index is None else max(1, int(start_index))
    blocks: list[DesignBlock] = list(existing)
    for s in range(max(0, int(additional_block_count))):
        selected = sorted(unique, key=lambda item: appearances[item])[:k]
        for item in selected:
            appearances[item] += 1
        blocks.append(DesignBlock(id=f"set-{first + s}", item_ids=tuple(selected)))

    diagnostics = compute_design_diagnostics(unique, k, blocks)
    return NearBIBDResult(
        blocks=tuple(blocks),
        diagnostics=diagnostics,
        block_size=k,
        initial_objective=diagnostics.objective,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def add_repeat_tasks(
    blocks: Sequence[DesignBlock],
    repeat_fraction: float,
    seed: int,
    start_index: int = 1,
) -> list[DesignBlock]:
    """
    Append duplicates of randomly chosen blocks for repeatability checks.

    ``round(len(blocks) * repeat_fraction)`` sources are drawn without
    replacement from ``blocks``; once the unique pool is exhausted,
    further sources are drawn with replacement. Each duplicate gets id
    ``set-repeat-<n>`` and ``repeat_of`` set to its source id.

    Args:
        blocks: Non-repeat blocks to sample from
        repeat_fraction: Fraction of blocks to duplicate
        seed: Seed for the numpy Generator
        start_index: Number of the first repeat id

    Returns:
        ``blocks`` followed by the repeat blocks
    """
    base = list(blocks)
    if not base or repeat_fraction <= 0:
        return base
    repeat_count = max(0, round_half_up(len(base) * repeat_fraction))
    return base + sample_repeat_blocks(base, repeat_count, seed, start_index)


def sample_repeat_blocks(
    blocks: Sequence[DesignBlock],
    count: int,
    seed: int,
    start_index: int = 1,
) -> list[DesignBlock]:
    """
    Draw ``count`` repeat blocks from ``blocks``.

    Sampling is without replacement until the pool is exhausted, then with
    replacement. Returns only the new repeat blocks.
    """
    base = list(blocks)
    if not base or count <= 0:
        return []

    rng = np.random.default_rng(seed)
    pool = list(base)
    picks: list[DesignBlock] = []
    for _ in range(min(len(pool), count)):
        picks.append(pool.pop(int(rng.integers(len(pool)))))
    while len(picks) < count:
        picks.append(base[int(rng.integers(len(base)))])

    first = max(1, int(start_index))
    return [
        DesignBlock(id=f"set-repeat-{first + i}", item_ids=source.item_ids, repeat_of=source.id)
        for i, source in enumerate(picks)
    ]


def compute_design_diagnostics(
    items: Sequence[ItemId],
    block_size: int,
    blocks: Sequence[DesignBlock],
) -> DesignDiagnostics:
    """
    Compute exposure diagnostics for any list of blocks.

    Counts are taken over ``items`` only; ids in a block that are not in
    ``items`` are ignored. Coefficients of variation use the population
    standard deviation and are 0 when the mean is 0.

    Args:
        items: Item ids the design is over
        block_size: Block size k used in the exact-BIBD check
        blocks: Blocks to score

    Returns:
        DesignDiagnostics
    """
    unique = _unique_items(items, warn=False)
    v = len(unique)
    if v == 0:
        return DesignDiagnostics.empty()

    index_of = {item: i for i, item in enumerate(unique)}
    item_counts, pair_counts = _count_blocks(index_of, blocks)
    score, sq_dev = design_objective_numba(item_counts, np.triu(pair_counts, 1))

    upper = np.triu_indices(v, 1)
    all_pairs = pair_counts[upper]
    observed = all_pairs[all_pairs > 0]
    total_pairs = all_pairs.size
    coverage = observed.size / total_pairs if total_pairs > 0 else 0.0
    never_seen = 1.0 - coverage if total_pairs > 0 else 0.0

    item_summary = _summarize(item_counts)
    observed_summary = _summarize(observed)

    pair_counts_by_key: dict[str, int] = {}
    for i, j in zip(*upper):
        pair_counts_by_key[pair_key(unique[i], unique[j])] = int(pair_counts[i, j])

    return DesignDiagnostics(
        item_counts={item: int(item_counts[i]) for i, item in enumerate(unique)},
        pair_counts=dict(sorted(pair_counts_by_key.items())),
        item_summary=item_summary,
        pair_summary=PairCountsSummary(
            all_pairs=_summarize(all_pairs),
            observed_pairs=observed_summary,
            coverage=float(coverage),
            never_seen_fraction=float(never_seen),
        ),
        item_count_imbalance=item_summary.max - item_summary.min,
        pair_count_imbalance=observed_summary.max - observed_summary.min,
        pair_squared_deviation=float(sq_dev),
        objective=float(score),
        exact_bibd=_check_exact_bibd(v, len(blocks), block_size, item_counts, observed),
    )


# =============================================================================
# CONSTRUCTION
# =============================================================================


def _build_blocks(
    v: int,
    k: int,
    num_blocks: int,
    rng: np.random.Generator,
    item_counts: IntArray,
    pair_counts: IntArray,
    improvement_iterations: int,
) -> tuple[IntArray, float]:
    """
    Greedily build ``num_blocks`` blocks, then improve them by swaps.

    ``item_counts`` and ``pair_counts`` (symmetric) hold prior exposure and
    are updated in place during construction.

    Returns:
        Tuple of (b x k index matrix, objective of the greedy blocks)
    """
    matrix = np.empty((num_blocks, k), dtype=np.int64)
    for row in range(num_blocks):
        block = [_select_from_min_count(item_counts, rng)]
        while len(block) < k:
            nxt = _choose_next_item(block, item_counts, pair_counts, rng)
            if nxt is None:
                break
            block.append(nxt)
        block_arr = np.asarray(block, dtype=np.int64)
        item_counts[block_arr] += 1
        pair_counts[np.ix_(block_arr, block_arr)] += 1
        pair_counts[block_arr, block_arr] -= 1
        matrix[row] = block_arr

    new_items, new_pairs = block_counts_numba(matrix, v)
    initial_score, _ = design_objective_numba(new_items, new_pairs)

    _improve_by_swaps(matrix, new_items, new_pairs, rng, max(0, int(improvement_iterations)))
    return matrix, float(initial_score)


def _select_from_min_count(item_counts: IntArray, rng: np.random.Generator) -> int:
    pool = np.flatnonzero(item_counts == item_counts.min())
    return int(pool[rng.integers(pool.size)])


def _choose_next_item(
    block: list[int],
    item_counts: IntArray,
    pair_counts: IntArray,
    rng: np.random.Generator,
) -> int | None:
    mask = np.ones(item_counts.size, dtype=bool)
    mask[block] = False
    candidates = np.flatnonzero(mask)
    if candidates.size == 0:
        return None

    counts = item_counts[candidates]
    # Allow one level above the minimum so no item starves.
    keep = counts <= counts.min() + 1
    candidates = candidates[keep]
    counts = counts[keep]

    co = pair_counts[np.ix_(candidates, np.asarray(block))]
    pair_max = co.max(axis=1)
    pair_sum = co.sum(axis=1)

    best = np.lexsort((pair_sum, pair_max, counts))[0]
    ties = candidates[
        (counts == counts[best]) & (pair_max == pair_max[best]) & (pair_sum == pair_sum[best])
    ]
    return int(ties[rng.integers(ties.size)])


def _improve_by_swaps(
    matrix: IntArray,
    item_counts: IntArray,
    pair_counts: IntArray,
    rng: np.random.Generator,
    iterations: int,
) -> None:
    """Hill-climb on the design objective by exchanging items between blocks."""
    num_blocks, k = matrix.shape
    if num_blocks < 2:
        return

    best_score, _ = design_objective_numba(item_counts, pair_counts)
    for _ in range(iterations):
        b1 = int(rng.integers(num_blocks))
        b2 = int(rng.integers(num_blocks))
        while b2 == b1:
            b2 = int(rng.integers(num_blocks))
        p1 = int(rng.integers(k))
        p2 = int(rng.integers(k))

        a = matrix[b1, p1]
        c = matrix[b2, p2]
        if a == c:
            continue
        if row_contains_numba(matrix, b1, c) or row_contains_numba(matrix, b2, a):
            continue

        apply_swap_numba(matrix, pair_counts, b1, p1, b2, p2)
        score, _ = design_objective_numba(item_counts, pair_counts)
        if score < best_score:
            best_score = score
        else:
            apply_swap_numba(matrix, pair_counts, b1, p1, b2, p2)


# =============================================================================
# HELPERS
# =============================================================================


def _unique_items(items: Sequence[ItemId], warn: bool = True) -> list[ItemId]:
    seen: set[ItemId] = set()
    out: list[ItemId] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    if warn and len(out) < len(items):
        warnings.warn(
            f"Dropped {len(items) - len(out)} duplicate item id(s) from the design item list.",
            DataQualityWarning,
            stacklevel=3,
        )
    return out


def _count_blocks(
    index_of: dict[ItemId, int],
    blocks: Sequence[DesignBlock],
) -> tuple[IntArray, IntArray]:
    """Item counts and symmetric pair counts over known items."""
    v = len(index_of)
    item_counts = np.zeros(v, dtype=np.int64)
    pair_counts = np.zeros((v, v), dtype=np.int64)
    for block in blocks:
        idx = sorted({index_of[item] for item in block.item_ids if item in index_of})
        if not idx:
            continue
        arr = np.asarray(idx, dtype=np.int64)
        item_counts[arr] += 1
        pair_counts[np.ix_(arr, arr)] += 1
        pair_counts[arr, arr] -= 1
    return item_counts, pair_counts


def _summarize(values: np.ndarray) -> SummaryStats:
    if values.size == 0:
        return SummaryStats.empty()
    values = values.astype(np.float64)
    mean = float(values.mean())
    std = float(values.std())
    return SummaryStats(
        min=float(values.min()),
        mean=mean,
        max=float(values.max()),
        cv=std / abs(mean) if mean != 0 else 0.0,
    )


def _check_exact_bibd(
    v: int,
    b: int,
    k: int,
    item_counts: IntArray,
    observed_pairs: np.ndarray,
) -> ExactBIBDCheck:
    r_values = np.unique(item_counts)
    lambda_values = np.unique(observed_pairs)
    single_r = r_values.size == 1
    single_lambda = lambda_values.size == 1
    r = int(r_values[0]) if single_r else -1
    lam = int(lambda_values[0]) if single_lambda else -1

    bk_equals_vr = single_r and b * k == v * r
    lambda_condition = single_r and single_lambda and lam * (v - 1) == r * (k - 1)
    if not (single_r and single_lambda and bk_equals_vr and lambda_condition):
        return ExactBIBDCheck(is_exact=False)

    return ExactBIBDCheck(
        is_exact=True,
        params={"v": v, "b": b, "r": r, "k": k, "lambda": lam},
        checks={"bk_equals_vr": bool(bk_equals_vr), "lambda_condition": bool(lambda_condition)},
    )


# =============================================================================
# TECH-FRIENDLY ALIASES
# =============================================================================

# build_design: Tech-friendly name for generate_near_bibd_design
build_design = generate_near_bibd_design

# score_design: Tech-friendly name for compute_design_diagnostics
score_design = compute_design_diagnostics
