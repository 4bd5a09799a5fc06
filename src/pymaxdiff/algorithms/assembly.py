"""Choice-set assembly: feature blocks + balanced voucher assignment.

Each core feature block receives exactly one voucher, picked among the
least-used vouchers so far (ties broken by the seeded generator). A repeat
block reuses its source block's voucher so the repeated task is identical
up to presentation order. Presentation order is shuffled per set with
``default_rng(seed + set_index)``.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from pymaxdiff.core.items import ChoiceSet, DesignBlock, Feature, Voucher
from pymaxdiff.core.result import ChoicePlan, DesignDiagnostics
from pymaxdiff.core.types import DesignMode, ItemId, round_half_up
from pymaxdiff.algorithms.design import (
    DEFAULT_IMPROVEMENT_ITERATIONS,
    add_repeat_tasks,
    extend_legacy_design,
    extend_near_bibd_design,
    generate_legacy_design,
    generate_near_bibd_design,
    sample_repeat_blocks,
)

_REPEAT_SEED_OFFSET = 1
_VOUCHER_SEED_OFFSET = 2


def generate_choice_plan(
    features: Sequence[Feature],
    vouchers: Sequence[Voucher],
    r_target: int,
    items_per_set: int = 4,
    design_mode: DesignMode | str = DesignMode.NEAR_BIBD,
    seed: int = 42,
    repeat_fraction: float = 0.1,
    improvement_iterations: int = DEFAULT_IMPROVEMENT_ITERATIONS,
) -> ChoicePlan:
    """
    Build the initial choice sets for a study.

    With vouchers, each set holds ``items_per_set - 1`` features plus one
    voucher; without, ``items_per_set`` features.

    Args:
        features: Features to place
        vouchers: Voucher grid (may be empty)
        r_target: Target appearances per feature
        items_per_set: Total items per choice set
        design_mode: Near-BIBD or legacy round-robin feature blocks
        seed: Base seed for design, repeats, voucher ties and shuffles
        repeat_fraction: Fraction of core sets to repeat
        improvement_iterations: Swap proposals for the near-BIBD builder

    Returns:
        ChoicePlan; empty (no sets) when the design cannot be built

    Example:
        >>> from pymaxdiff import Feature, generate_choice_plan, generate_vouchers
        >>> feats = [Feature(id=f"f{i}", name=f"F{i}", material_cost=100) for i in range(6)]
        >>> plan = generate_choice_plan(feats, generate_vouchers([100] * 6), r_target=3)
        >>> all(len(s.item_ids) == 4 for s in plan.sets)
        True
    """
    mode = DesignMode(design_mode)
    feature_ids = [f.id for f in features]
    features_per_set = _features_per_set(items_per_set, vouchers)

    if mode is DesignMode.LEGACY:
        design = generate_legacy_design(feature_ids, features_per_set, r_target)
    else:
        design = generate_near_bibd_design(
            feature_ids, features_per_set, r_target, seed,
            improvement_iterations=improvement_iterations,
        )

    if not design.blocks:
        return _empty_plan(mode, items_per_set, features_per_set, vouchers, seed)

    blocks = add_repeat_tasks(design.blocks, repeat_fraction, seed + _REPEAT_SEED_OFFSET)
    voucher_counts = {v.id: 0 for v in vouchers}
    rng = np.random.default_rng(seed + _VOUCHER_SEED_OFFSET)
    assignment = _assign_vouchers(blocks, voucher_counts, rng, {})

    sets = tuple(_assemble_set(block, assignment.get(block.id), seed + i) for i, block in enumerate(blocks))

    return ChoicePlan(
        sets=sets,
        blocks=tuple(blocks),
        diagnostics=design.diagnostics,
        design_mode=mode,
        items_per_set=items_per_set,
        features_per_set=features_per_set,
        voucher_counts=voucher_counts,
        seed=seed,
    )


def extend_choice_plan(
    plan: ChoicePlan,
    features: Sequence[Feature],
    vouchers: Sequence[Voucher],
    additional_tasks: int,
    seed: int,
    repeat_fraction: float = 0.1,
    improvement_iterations: int = 450,
) -> ChoicePlan:
    """
    Append tasks to a plan without altering its existing sets.

    ``max(1, round(additional / (1 + repeat_fraction)))`` of the new tasks
    are core sets (capped at ``additional_tasks``); the rest are repeats
    resampled from every core block, old and new. Voucher balancing
    continues from the plan's existing exposure counts.

    Args:
        plan: Plan to extend
        features: Same features the plan was built from
        vouchers: Same voucher grid
        additional_tasks: Number of tasks to add
        seed: Seed for this extension
        repeat_fraction: Fraction of the batch that should be repeats
        improvement_iterations: Swap proposals for the near-BIBD builder

    Returns:
        New ChoicePlan whose first ``plan.num_tasks`` sets equal ``plan.sets``
    """
    if additional_tasks <= 0 or not plan.sets:
        return plan

    rf = min(0.5, max(0.0, repeat_fraction))
    new_core = min(additional_tasks, max(1, round_half_up(additional_tasks / (1 + rf))))
    new_repeat = additional_tasks - new_core

    feature_ids = [f.id for f in features]
    core_blocks = plan.core_blocks

    if plan.design_mode is DesignMode.LEGACY:
        design = extend_legacy_design(feature_ids, plan.features_per_set, core_blocks, new_core)
    else:
        design = extend_near_bibd_design(
            feature_ids, plan.features_per_set, core_blocks, new_core, seed,
            improvement_iterations=improvement_iterations,
        )

    added_core = list(design.blocks[len(core_blocks):])
    if not added_core:
        return plan

    existing_repeats = plan.num_repeat_tasks
    added_repeats = sample_repeat_blocks(
        list(design.blocks), new_repeat, seed + _REPEAT_SEED_OFFSET, start_index=existing_repeats + 1,
    )

    voucher_counts = dict(plan.voucher_counts)
    for v in vouchers:
        voucher_counts.setdefault(v.id, 0)
    rng = np.random.default_rng(seed + _VOUCHER_SEED_OFFSET)
    prior = plan.voucher_assignment
    assignment = _assign_vouchers(added_core + added_repeats, voucher_counts, rng, prior)

    offset = plan.num_tasks
    new_blocks = added_core + added_repeats
    new_sets = [
        _assemble_set(block, assignment.get(block.id), plan.seed + offset + i)
        for i, block in enumerate(new_blocks)
    ]

    return ChoicePlan(
        sets=plan.sets + tuple(new_sets),
        blocks=plan.blocks + tuple(new_blocks),
        diagnostics=design.diagnostics,
        design_mode=plan.design_mode,
        items_per_set=plan.items_per_set,
        features_per_set=plan.features_per_set,
        voucher_counts=voucher_counts,
        seed=plan.seed,
    )


# =============================================================================
# HELPERS
# =============================================================================


def _features_per_set(items_per_set: int, vouchers: Sequence[Voucher]) -> int:
    return items_per_set - 1 if vouchers else items_per_set


def _assign_vouchers(
    blocks: Sequence[DesignBlock],
    voucher_counts: dict[ItemId, int],
    rng: np.random.Generator,
    prior: dict[str, ItemId | None],
) -> dict[str, ItemId | None]:
    """
    Assign vouchers to core blocks min-count-first; repeats inherit.

    ``voucher_counts`` is updated in place with core-block exposure.
    ``prior`` maps already-assigned block ids to vouchers so repeats of old
    blocks inherit correctly.
    """
    assignment: dict[str, ItemId | None] = dict(prior)
    if not voucher_counts:
        return assignment

    voucher_ids = list(voucher_counts)
    for block in blocks:
        if block.is_repeat:
            continue
        counts = np.array([voucher_counts[v] for v in voucher_ids])
        pool = np.flatnonzero(counts == counts.min())
        chosen = voucher_ids[int(pool[rng.integers(pool.size)])]
        voucher_counts[chosen] += 1
        assignment[block.id] = chosen

    for block in blocks:
        if block.is_repeat:
            assignment[block.id] = assignment.get(block.repeat_of)
    return assignment


def _assemble_set(block: DesignBlock, voucher_id: ItemId | None, shuffle_seed: int) -> ChoiceSet:
    items = list(block.item_ids)
    if voucher_id is not None:
        items.append(voucher_id)
    order = np.random.default_rng(shuffle_seed).permutation(len(items))
    return ChoiceSet(
        id=block.id,
        item_ids=tuple(items[i] for i in order),
        repeat_of=block.repeat_of,
        voucher_id=voucher_id,
    )


def _empty_plan(
    mode: DesignMode,
    items_per_set: int,
    features_per_set: int,
    vouchers: Sequence[Voucher],
    seed: int,
) -> ChoicePlan:
    return ChoicePlan(
        sets=(),
        blocks=(),
        diagnostics=DesignDiagnostics.empty(),
        design_mode=mode,
        items_per_set=items_per_set,
        features_per_set=features_per_set,
        voucher_counts={v.id: 0 for v in vouchers},
        seed=seed,
    )
