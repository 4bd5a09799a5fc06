"""
EVAL: Minimal data edge cases (one feature, one task, nothing answered).

These tests expose how the design and estimation layers handle degenerate inputs.
"""

import pytest

from pymaxdiff import (
    StabilityThresholds,
    bootstrap_bws_mnl_money,
    compute_exposure_task_plan,
    compute_perceived_values,
    compute_repeatability,
    evaluate_stability_gates,
    fit_bws_mnl_money,
    generate_choice_plan,
    generate_vouchers,
)


class TestTinyDesigns:
    """EVAL: Designs with too few features to fill a set."""

    def test_two_features_fill_every_set(self, two_features):
        """EVAL: v=2 with 4 slots - block size shrinks to 2."""
        plan = generate_choice_plan(two_features, [], r_target=3, items_per_set=4, seed=0)
        assert plan.num_tasks > 0
        assert all(sorted(s.item_ids) == ["a", "b"] for s in plan.sets)

    def test_single_feature_gives_empty_plan(self, single_feature):
        """EVAL: v=1 - no pairs exist, so nothing is generated."""
        vouchers = generate_vouchers([25.0])
        plan = generate_choice_plan(single_feature, vouchers, r_target=5, seed=0)
        assert plan.num_tasks == 0
        assert plan.sets == ()

    def test_exposure_plan_with_zero_features(self):
        """EVAL: feature_count=0 is clamped to 1."""
        plan = compute_exposure_task_plan(0, 0, 12, 10, features_per_task=3)
        assert plan.feature_count == 1
        assert plan.min_tasks >= 1


class TestMinimalEstimation:
    """EVAL: Fits on one task, one feature, or none."""

    def test_single_feature_fit_is_centered(self, one_task_log):
        """EVAL: N=1 - centering forces the only utility to zero."""
        from pymaxdiff import Feature

        sets, responses = one_task_log
        features = [Feature("a", "Alpha", 10.0)]
        fit = fit_bws_mnl_money(sets, responses, features, generate_vouchers([10.0]))
        assert fit.utility_by_feature == {"a": 0.0}
        assert fit.raw_wtp_by_feature["a"] == pytest.approx(0.0, abs=1e-9)

    def test_zero_feature_fit(self, one_task_log):
        """EVAL: No features - returns the zero fit rather than raising."""
        sets, responses = one_task_log
        fit = fit_bws_mnl_money(sets, responses, [], [])
        assert fit.utility_by_feature == {}
        assert fit.converged is False
        assert fit.to_dict()["log_likelihood"] is None

    def test_one_task_bootstrap_has_zero_spread(self, one_task_log, two_features):
        """EVAL: n=1 - every resample is the same task."""
        from pymaxdiff import BwsMnlConfig, Voucher

        sets, responses = one_task_log
        boot = bootstrap_bws_mnl_money(
            sets, responses, two_features, [Voucher("voucher-1", 50.0, level=1)], 5,
            BwsMnlConfig(max_iters=60, seed=3),
        )
        assert boot.successful_samples == 5
        for stats in boot.by_feature.values():
            assert stats.std == pytest.approx(0.0, abs=1e-9)
            assert stats.p2_5 == pytest.approx(stats.p97_5)

    def test_zero_sample_bootstrap(self, one_task_log, two_features):
        sets, responses = one_task_log
        boot = bootstrap_bws_mnl_money(sets, responses, two_features, [], 0)
        assert boot.by_feature == {}
        assert boot.confidence_interval("a") is None


class TestNothingAnswered:
    """EVAL: Every oracle answer failed."""

    def test_fit_tallies_every_failure(self, all_failed_study):
        plan, responses, features, vouchers = all_failed_study
        fit = fit_bws_mnl_money(plan.sets, responses, features, vouchers)
        assert fit.failed_task_count == len(responses)
        assert fit.task_count == 0
        assert all(u == pytest.approx(0.0, abs=1e-9) for u in fit.utility_by_feature.values())

    def test_bootstrap_is_empty(self, all_failed_study):
        plan, responses, features, vouchers = all_failed_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 10)
        assert boot.successful_samples == 0
        assert boot.by_feature == {}

    def test_legacy_scores_are_flat(self, all_failed_study):
        _, responses, features, vouchers = all_failed_study
        result = compute_perceived_values(responses, features, vouchers)
        assert all(v.net_score == 0 for v in result.values)

    def test_repeatability_without_answers(self, all_failed_study):
        plan, responses, _, _ = all_failed_study
        result = compute_repeatability(plan.sets, responses)
        assert result.total_repeat_pairs == 0
        assert result.joint_agreement_rate == 0.0

    def test_gates_with_empty_exposure_maps(self):
        """EVAL: No appearances recorded at all."""
        result = evaluate_stability_gates(
            answered_tasks=0,
            repeat_tasks_answered=0,
            joint_repeatability=0.0,
            failure_rate=1.0,
            feature_appearances={},
            voucher_appearances={},
            thresholds=StabilityThresholds(
                min_tasks_before_stability=1,
                min_feature_appearances=1,
                min_voucher_appearances=1,
                min_repeat_tasks=1,
                min_repeatability=0.5,
                max_failure_rate=0.1,
            ),
        )
        assert not result.gates_met
        assert result.min_voucher_exposure_met
        assert "Need feature exposure >= 1; currently 0." in result.reasons
