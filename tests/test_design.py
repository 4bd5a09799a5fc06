"""Tests for near-BIBD design construction and diagnostics."""

import warnings

import numpy as np
import pytest

from pymaxdiff import (
    DesignBlock,
    add_repeat_tasks,
    compute_design_diagnostics,
    extend_near_bibd_design,
    generate_near_bibd_design,
)
from pymaxdiff.algorithms.design import (
    extend_legacy_design,
    generate_legacy_design,
    sample_repeat_blocks,
)
from pymaxdiff.core.exceptions import DataQualityWarning


ITEMS_12 = [f"item-{i}" for i in range(12)]


class TestNearBIBDConstruction:
    """Test the greedy + swap design builder."""

    def test_block_count_is_ceiling_of_v_r_over_k(self):
        """b = ceil(v * r / k)."""
        result = generate_near_bibd_design(ITEMS_12, 3, 5, seed=1)
        assert result.num_blocks == 20  # ceil(12 * 5 / 3)

        result = generate_near_bibd_design(ITEMS_12, 5, 4, seed=1)
        assert result.num_blocks == 10  # ceil(12 * 4 / 5) = ceil(9.6)

    def test_blocks_have_k_distinct_known_items(self):
        """Every block holds exactly k distinct items from the item list."""
        result = generate_near_bibd_design(ITEMS_12, 4, 6, seed=3)
        for block in result.blocks:
            assert len(block.item_ids) == 4
            assert len(set(block.item_ids)) == 4
            assert set(block.item_ids) <= set(ITEMS_12)

    def test_block_ids_are_sequential(self):
        """Block ids run set-1 .. set-b (or from start_index)."""
        result = generate_near_bibd_design(ITEMS_12, 3, 3, seed=0)
        assert result.block_ids == [f"set-{i}" for i in range(1, result.num_blocks + 1)]

        shifted = generate_near_bibd_design(ITEMS_12, 3, 3, seed=0, start_index=10)
        assert shifted.block_ids[0] == "set-10"

    def test_same_seed_gives_identical_design(self):
        """Identical inputs produce identical blocks."""
        a = generate_near_bibd_design(ITEMS_12, 3, 6, seed=99)
        b = generate_near_bibd_design(ITEMS_12, 3, 6, seed=99)
        assert a.blocks == b.blocks
        assert a.diagnostics.objective == b.diagnostics.objective

    def test_different_seeds_can_differ(self):
        """The seed drives tie-breaking."""
        designs = {generate_near_bibd_design(ITEMS_12, 3, 6, seed=s).blocks for s in range(5)}
        assert len(designs) > 1

    @pytest.mark.parametrize("v,k,r", [(7, 3, 3), (12, 3, 5), (10, 4, 7), (9, 5, 4), (15, 3, 12)])
    def test_item_imbalance_at_most_one(self, v, k, r):
        """Item appearance counts differ by at most one."""
        items = [f"x{i}" for i in range(v)]
        result = generate_near_bibd_design(items, k, r, seed=11)
        assert result.diagnostics.item_count_imbalance <= 1

    def test_exact_multiple_gives_equal_counts(self):
        """When b * k = v * r every item appears exactly r times."""
        result = generate_near_bibd_design(list("abcdefg"), 3, 3, seed=1)
        assert result.num_blocks == 7
        assert set(result.diagnostics.item_counts.values()) == {3}
        assert result.diagnostics.item_count_imbalance == 0.0

    def test_local_search_never_worsens_objective(self):
        """The returned objective is no worse than the greedy objective."""
        for seed in range(4):
            result = generate_near_bibd_design(ITEMS_12, 3, 6, seed=seed, improvement_iterations=300)
            assert result.diagnostics.objective <= result.initial_objective

    def test_zero_iterations_keeps_greedy_design(self):
        """Without swaps the final objective equals the greedy objective."""
        result = generate_near_bibd_design(ITEMS_12, 3, 4, seed=2, improvement_iterations=0)
        assert result.diagnostics.objective == pytest.approx(result.initial_objective)

    def test_swap_counts_match_final_blocks(self):
        """Counts carried through the swap search agree with a recount of the blocks."""
        result = generate_near_bibd_design(ITEMS_12, 4, 5, seed=9, improvement_iterations=400)
        counts = result.diagnostics.item_counts
        assert sum(counts.values()) == result.num_blocks * 4
        recount = {item: sum(item in b.item_ids for b in result.blocks) for item in ITEMS_12}
        assert counts == recount
        assert result.diagnostics.item_count_imbalance <= 1

    def test_block_size_clamped_to_item_count(self):
        """k larger than v is clamped to v."""
        result = generate_near_bibd_design(["a", "b", "c"], 5, 2, seed=0)
        assert result.block_size == 3
        assert all(len(b.item_ids) == 3 for b in result.blocks)

    def test_r_floored_at_one(self):
        """r_target below 1 behaves like 1."""
        result = generate_near_bibd_design(ITEMS_12, 3, 0, seed=0)
        assert result.num_blocks == 4


class TestDegenerateDesigns:
    """Test empty-design edge cases."""

    @pytest.mark.parametrize("items,k", [([], 3), (["only"], 3), (["a", "b", "c"], 1), (["a", "b"], 0)])
    def test_empty_design(self, items, k):
        """Fewer than two items or k < 2 yields no blocks and zero diagnostics."""
        result = generate_near_bibd_design(items, k, 3, seed=0)
        assert result.blocks == ()
        assert result.num_blocks == 0
        assert result.diagnostics.item_counts == {}
        assert result.diagnostics.objective == 0.0
        assert not result.diagnostics.is_exact

    def test_duplicate_items_dropped_with_warning(self):
        """Duplicated item ids are de-duplicated and reported."""
        with pytest.warns(DataQualityWarning, match="duplicate"):
            result = generate_near_bibd_design(["a", "b", "a", "c", "d"], 2, 2, seed=0)
        assert set(result.diagnostics.item_counts) == {"a", "b", "c", "d"}

    def test_two_items_pairs(self):
        """v=2, k=2 gives r blocks of the same pair."""
        result = generate_near_bibd_design(["a", "b"], 2, 3, seed=0)
        assert result.num_blocks == 3
        assert result.diagnostics.pair_counts == {"a::b": 3}


class TestDesignDiagnostics:
    """Test compute_design_diagnostics on hand-built block lists."""

    def test_fano_plane_is_exact_bibd(self, fano_items, fano_blocks):
        """The Fano plane is a (7, 7, 3, 3, 1) BIBD."""
        diag = compute_design_diagnostics(fano_items, 3, fano_blocks)
        assert diag.is_exact
        assert diag.exact_bibd.params == {"v": 7, "b": 7, "r": 3, "k": 3, "lambda": 1}
        assert diag.exact_bibd.checks == {"bk_equals_vr": True, "lambda_condition": True}
        assert diag.coverage == 1.0
        assert diag.pair_count_imbalance == 0.0
        assert diag.pair_squared_deviation == 0.0

    def test_dropping_a_block_breaks_exactness(self, fano_items, fano_blocks):
        diag = compute_design_diagnostics(fano_items, 3, fano_blocks[:-1])
        assert not diag.is_exact
        assert diag.exact_bibd.params is None
        assert diag.item_count_imbalance == 1.0

    def test_pair_keys_are_order_independent(self):
        """Pair keys are 'a::b' with a < b."""
        blocks = [DesignBlock(id="set-1", item_ids=("c", "a")), DesignBlock(id="set-2", item_ids=("a", "c"))]
        diag = compute_design_diagnostics(["a", "c"], 2, blocks)
        assert diag.pair_counts == {"a::c": 2}

    def test_unknown_items_ignored(self):
        blocks = [DesignBlock(id="set-1", item_ids=("a", "b", "voucher-1"))]
        diag = compute_design_diagnostics(["a", "b"], 2, blocks)
        assert diag.item_counts == {"a": 1, "b": 1}

    def test_coverage_and_never_seen(self):
        """Coverage counts pairs seen at least once."""
        blocks = [DesignBlock(id="set-1", item_ids=("a", "b"))]
        diag = compute_design_diagnostics(["a", "b", "c"], 2, blocks)
        assert diag.coverage == pytest.approx(1 / 3)
        assert diag.pair_summary.never_seen_fraction == pytest.approx(2 / 3)

    def test_cv_zero_when_balanced(self, fano_items, fano_blocks):
        diag = compute_design_diagnostics(fano_items, 3, fano_blocks)
        assert diag.item_summary.cv == 0.0
        assert diag.item_summary.mean == 3.0

    def test_empty_item_list(self):
        diag = compute_design_diagnostics([], 3, [])
        assert diag.num_items == 0
        assert diag.objective == 0.0

    def test_to_dict_has_plain_values(self, fano_items, fano_blocks):
        out = compute_design_diagnostics(fano_items, 3, fano_blocks).to_dict()
        assert out["exact_bibd"]["is_exact"] is True
        assert out["pair_counts"]["1::2"] == 1
        assert isinstance(out["item_summary"]["mean"], float)


class TestDesignExtension:
    """Test appending blocks to an existing design."""

    def test_existing_blocks_are_preserved(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 4, seed=5)
        extended = extend_near_bibd_design(ITEMS_12, 3, base.blocks, 6, seed=6)
        assert extended.blocks[: base.num_blocks] == base.blocks
        assert extended.num_blocks == base.num_blocks + 6

    def test_new_ids_continue_numbering(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 4, seed=5)
        extended = extend_near_bibd_design(ITEMS_12, 3, base.blocks, 2, seed=6)
        assert extended.block_ids[-2:] == [f"set-{base.num_blocks + 1}", f"set-{base.num_blocks + 2}"]

    def test_counts_are_additive(self):
        """Merged item counts equal base counts plus counts of the new blocks."""
        base = generate_near_bibd_design(ITEMS_12, 3, 4, seed=5)
        extended = extend_near_bibd_design(ITEMS_12, 3, base.blocks, 8, seed=6)
        added = compute_design_diagnostics(ITEMS_12, 3, extended.blocks[base.num_blocks:])
        for item in ITEMS_12:
            assert extended.diagnostics.item_counts[item] == (
                base.diagnostics.item_counts[item] + added.item_counts[item]
            )

    def test_extension_favours_under_exposed_items(self):
        """Starting from a lopsided design, new blocks lift the least-shown items."""
        lopsided = [DesignBlock(id=f"set-{i + 1}", item_ids=("a", "b", "c")) for i in range(3)]
        items = ["a", "b", "c", "d", "e", "f"]
        extended = extend_near_bibd_design(items, 3, lopsided, 3, seed=0)
        counts = extended.diagnostics.item_counts
        assert counts["d"] == counts["e"] == counts["f"] == 3
        assert extended.diagnostics.item_count_imbalance == 0

    def test_zero_additional_returns_existing(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 4, seed=5)
        same = extend_near_bibd_design(ITEMS_12, 3, base.blocks, 0, seed=6)
        assert same.blocks == base.blocks
        assert same.diagnostics.item_counts == base.diagnostics.item_counts


class TestLegacyDesign:
    """Test the round-robin baseline design."""

    def test_round_robin_is_deterministic_and_balanced(self):
        a = generate_legacy_design(ITEMS_12, 3, 3)
        b = generate_legacy_design(ITEMS_12, 3, 3)
        assert a.blocks == b.blocks
        assert a.num_blocks == 12
        assert a.diagnostics.item_count_imbalance == 0

    def test_first_block_takes_first_items(self):
        result = generate_legacy_design(["a", "b", "c", "d"], 2, 1)
        assert result.blocks[0].item_ids == ("a", "b")
        assert result.blocks[1].item_ids == ("c", "d")

    def test_extension_continues_ids(self):
        base = generate_legacy_design(ITEMS_12, 3, 2)
        extended = extend_legacy_design(ITEMS_12, 3, base.blocks, 4)
        assert extended.blocks[: base.num_blocks] == base.blocks
        assert extended.block_ids[-1] == f"set-{base.num_blocks + 4}"

    def test_empty_legacy(self):
        assert generate_legacy_design(["a"], 3, 3).blocks == ()


class TestRepeatTasks:
    """Test repeat block sampling."""

    def test_repeat_count_rounds_fraction(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 5, seed=0).blocks  # 20 blocks
        blocks = add_repeat_tasks(base, 0.1, seed=1)
        repeats = [b for b in blocks if b.is_repeat]
        assert len(blocks) == 22
        assert len(repeats) == 2
        assert blocks[:20] == list(base)

    def test_repeats_copy_their_source(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 5, seed=0).blocks
        by_id = {b.id: b for b in base}
        for block in add_repeat_tasks(base, 0.25, seed=2):
            if block.is_repeat:
                assert block.id.startswith("set-repeat-")
                assert block.item_ids == by_id[block.repeat_of].item_ids

    def test_sources_unique_until_pool_exhausted(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 1, seed=0).blocks  # 4 blocks
        repeats = sample_repeat_blocks(base, 4, seed=3)
        assert len({r.repeat_of for r in repeats}) == 4

        more = sample_repeat_blocks(base, 7, seed=3)
        assert len(more) == 7
        assert [r.id for r in more] == [f"set-repeat-{i}" for i in range(1, 8)]

    def test_no_repeats_for_zero_fraction_or_no_blocks(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 2, seed=0).blocks
        assert add_repeat_tasks(base, 0.0, seed=1) == list(base)
        assert add_repeat_tasks([], 0.5, seed=1) == []

    def test_repeat_sampling_is_seeded(self):
        base = generate_near_bibd_design(ITEMS_12, 3, 5, seed=0).blocks
        assert add_repeat_tasks(base, 0.2, seed=4) == add_repeat_tasks(base, 0.2, seed=4)
