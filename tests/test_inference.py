"""Tests for bootstrap, repeatability and stability checks."""

import pytest

from pymaxdiff import (
    BwsMnlConfig,
    ChoiceSet,
    Response,
    bootstrap_bws_mnl_money,
    compute_repeatability,
    evaluate_stability_checks,
    top_features_by_wtp,
)
from pymaxdiff.core.result import FeatureBootstrapSummary


BOOT_CONFIG = BwsMnlConfig(max_iters=220, tolerance=1e-5, learning_rate=0.035, seed=5)


def _summary(mean, low, high, samples=50):
    return FeatureBootstrapSummary(
        mean=mean, median=mean, p2_5=low, p97_5=high, std=0.0, cv=None,
        relative_ci_half_width=(high - low) / (2 * max(1.0, abs(mean))), samples=samples,
    )


class TestBootstrap:
    """Test the nonparametric bootstrap over observations."""

    def test_all_samples_summarized(self, synthetic_study):
        plan, responses, features, vouchers = synthetic_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 25, BOOT_CONFIG)
        assert boot.requested_samples == 25
        assert boot.successful_samples == 25
        assert set(boot.by_feature) == {"f1", "f2", "f3", "f4"}
        assert boot.beta.samples == 25

    def test_percentiles_ordered(self, synthetic_study):
        plan, responses, features, vouchers = synthetic_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 25, BOOT_CONFIG)
        for stats in boot.by_feature.values():
            assert stats.p2_5 <= stats.median <= stats.p97_5
            assert stats.std >= 0
            assert stats.relative_ci_half_width == pytest.approx(
                (stats.p97_5 - stats.p2_5) / (2 * max(1.0, abs(stats.mean)))
            )

    def test_confidence_interval_lookup(self, synthetic_study):
        plan, responses, features, vouchers = synthetic_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 10, BOOT_CONFIG)
        low, high = boot.confidence_interval("f2")
        assert low <= high
        assert boot.confidence_interval("missing") is None

    def test_seeded_and_independent_of_workers(self, synthetic_study):
        """Resample indices are drawn up front, so thread count does not matter."""
        plan, responses, features, vouchers = synthetic_study
        sequential = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 12, BOOT_CONFIG)
        threaded = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 12, BOOT_CONFIG, n_jobs=3)
        assert sequential == threaded

    def test_top_feature_interval_sits_above_bottom(self, synthetic_study):
        plan, responses, features, vouchers = synthetic_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 25, BOOT_CONFIG)
        assert boot.by_feature["f2"].p2_5 > boot.by_feature["f4"].p97_5

    def test_zero_samples_is_empty(self, synthetic_study):
        plan, responses, features, vouchers = synthetic_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, 0, BOOT_CONFIG)
        assert boot.by_feature == {}
        assert boot.successful_samples == 0
        assert boot.beta.samples == 0

    def test_no_usable_tasks_is_empty(self, synthetic_study):
        plan, _, features, vouchers = synthetic_study
        failures = [Response.failure(s.id, "timeout") for s in plan.sets[:5]]
        boot = bootstrap_bws_mnl_money(plan.sets, failures, features, vouchers, 10, BOOT_CONFIG)
        assert boot.by_feature == {}
        assert boot.requested_samples == 10

    def test_no_features_is_empty(self, synthetic_study):
        plan, responses, _, vouchers = synthetic_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, [], vouchers, 10, BOOT_CONFIG)
        assert boot.by_feature == {}

    def test_negative_samples_treated_as_zero(self, synthetic_study):
        plan, responses, features, vouchers = synthetic_study
        boot = bootstrap_bws_mnl_money(plan.sets, responses, features, vouchers, -3, BOOT_CONFIG)
        assert boot.requested_samples == 0


class TestRepeatability:
    """Test test-retest agreement on repeated tasks."""

    def setup_method(self):
        self.sets = [
            ChoiceSet(id="set-1", item_ids=("a", "b", "c")),
            ChoiceSet(id="set-2", item_ids=("a", "b", "d")),
            ChoiceSet(id="set-repeat-1", item_ids=("c", "a", "b"), repeat_of="set-1"),
            ChoiceSet(id="set-repeat-2", item_ids=("d", "b", "a"), repeat_of="set-2"),
        ]

    def test_counts(self):
        responses = [
            Response("set-1", "a", "c"),
            Response("set-2", "a", "b"),
            Response("set-repeat-1", "a", "c"),
            Response("set-repeat-2", "a", "d"),
        ]
        result = compute_repeatability(self.sets, responses)
        assert result.total_repeat_pairs == 2
        assert result.best_agreement_count == 2
        assert result.worst_agreement_count == 1
        assert result.joint_agreement_count == 1
        assert result.joint_agreement_rate == 0.5

    def test_missing_side_skipped(self):
        responses = [Response("set-1", "a", "c"), Response("set-repeat-2", "a", "d")]
        result = compute_repeatability(self.sets, responses)
        assert result.total_repeat_pairs == 0
        assert result.joint_agreement_rate == 0.0

    def test_failed_responses_ignored(self):
        responses = [Response("set-1", "a", "c"), Response.failure("set-repeat-1", "timeout")]
        assert compute_repeatability(self.sets, responses).total_repeat_pairs == 0

    def test_last_answer_wins(self):
        responses = [
            Response("set-1", "b", "c"),
            Response("set-1", "a", "c"),
            Response("set-repeat-1", "a", "c"),
        ]
        result = compute_repeatability(self.sets, responses)
        assert result.joint_agreement_count == 1


class TestStabilityChecks:
    """Test relative CI half-width checks on top features."""

    def test_top_features(self):
        wtp = {"a": 10.0, "b": 50.0, "c": 30.0}
        assert top_features_by_wtp(wtp, 2) == ["b", "c"]
        assert top_features_by_wtp(wtp, 0) == ["b"]

    def test_tight_interval_passes(self):
        checks = evaluate_stability_checks(["a"], {"a": _summary(100.0, 90.0, 110.0)}, 0.15)
        assert checks[0].passed
        assert checks[0].relative_half_width == pytest.approx(0.1)

    def test_wide_interval_fails(self):
        checks = evaluate_stability_checks(["a"], {"a": _summary(100.0, 60.0, 140.0)}, 0.15)
        assert not checks[0].passed
        assert checks[0].relative_half_width == pytest.approx(0.4)

    def test_small_mean_uses_unit_denominator(self):
        checks = evaluate_stability_checks(["a"], {"a": _summary(0.2, 0.0, 0.2)}, 0.15)
        assert checks[0].relative_half_width == pytest.approx(0.1)

    def test_missing_summary_fails(self):
        checks = evaluate_stability_checks(["a", "b"], {"a": _summary(100.0, 95.0, 105.0)}, 0.15)
        assert [c.passed for c in checks] == [True, False]
        assert checks[1].relative_half_width is None
        assert checks[1].mean == 0.0
