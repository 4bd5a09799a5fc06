"""Tests for exposure planning, stability gates and realised exposure."""

import itertools

import pytest

from pymaxdiff import (
    ChoiceSet,
    Response,
    StabilityThresholds,
    Voucher,
    compute_exposure_diagnostics,
    compute_exposure_task_plan,
    evaluate_stability_gates,
)


THRESHOLDS = StabilityThresholds(
    min_tasks_before_stability=60,
    min_feature_appearances=12,
    min_voucher_appearances=10,
    min_repeat_tasks=6,
    min_repeatability=0.8,
    max_failure_rate=0.02,
)

PASSING = dict(
    answered_tasks=70,
    repeat_tasks_answered=6,
    joint_repeatability=0.9,
    failure_rate=0.0,
    feature_appearances={"a": 12, "b": 14},
    voucher_appearances={"voucher-1": 10, "voucher-2": 11},
)


def _gates(**overrides):
    return evaluate_stability_gates(thresholds=THRESHOLDS, **{**PASSING, **overrides})


class TestExposureTaskPlan:
    """Test the task-count planner."""

    def test_twelve_features_seven_vouchers(self):
        plan = compute_exposure_task_plan(12, 7, 12, 10, features_per_task=3)
        assert (plan.tasks_for_features, plan.tasks_for_vouchers, plan.min_tasks) == (48, 70, 70)
        assert plan.binding_constraint == "vouchers"

    def test_recommended_r_reaches_target(self):
        """70 tasks at 10% repeats: 64 core tasks need r = 16 over 12 features."""
        plan = compute_exposure_task_plan(12, 7, 12, 10, repeat_fraction=0.1, features_per_task=3)
        assert plan.recommended_r_target == 16
        assert plan.estimated_base_tasks == 64
        assert plan.estimated_repeat_tasks == 6
        assert plan.estimated_total_tasks == 70
        assert plan.estimated_total_tasks >= plan.min_tasks

    def test_floor_binds_for_small_study(self):
        plan = compute_exposure_task_plan(4, 0, 2, 10, features_per_task=3)
        assert plan.min_tasks == 60
        assert plan.tasks_for_vouchers == 0
        assert plan.binding_constraint == "floor"

    def test_features_bind(self):
        plan = compute_exposure_task_plan(30, 3, 12, 10, features_per_task=3, min_tasks_floor=10)
        assert plan.min_tasks == plan.tasks_for_features == 120
        assert plan.binding_constraint == "features"

    def test_cap_below_required(self):
        plan = compute_exposure_task_plan(12, 7, 12, 10, features_per_task=3, max_tasks_cap=50)
        assert plan.capped_task_target == 50
        assert plan.cap_below_required
        assert plan.recommended_r_target == 12

    def test_cap_above_required_is_harmless(self):
        plan = compute_exposure_task_plan(12, 7, 12, 10, features_per_task=3, max_tasks_cap=500)
        assert plan.capped_task_target == 70
        assert not plan.cap_below_required

    def test_inputs_clamped(self):
        plan = compute_exposure_task_plan(0, -2, 0, 0, repeat_fraction=3.0, features_per_task=20)
        assert plan.feature_count == 1
        assert plan.voucher_level_count == 0
        assert plan.features_per_task == 8
        assert plan.target_feature_exposures == 1

    @pytest.mark.parametrize("features,vouchers,fpt,rf", [
        (5, 7, 3, 0.1), (8, 5, 3, 0.0), (20, 7, 4, 0.2), (3, 3, 2, 0.5), (40, 9, 5, 0.1),
    ])
    def test_total_meets_minimum(self, features, vouchers, fpt, rf):
        plan = compute_exposure_task_plan(features, vouchers, 12, 10, repeat_fraction=rf, features_per_task=fpt)
        assert plan.estimated_total_tasks >= plan.min_tasks
        assert plan.recommended_r_target >= plan.target_feature_exposures


class TestStabilityGates:
    """Test the data-sufficiency gates."""

    def test_all_met(self):
        result = _gates()
        assert result.gates_met
        assert result.reasons == ()
        assert result.can_evaluate_stability

    def test_too_few_tasks(self):
        result = _gates(answered_tasks=59)
        assert not result.gates_met
        assert result.reasons == ("Need at least 60 answered tasks.",)

    def test_low_feature_exposure(self):
        result = _gates(feature_appearances={"a": 11, "b": 20})
        assert result.reasons == ("Need feature exposure >= 12; currently 11.",)

    def test_low_voucher_exposure(self):
        result = _gates(voucher_appearances={"voucher-1": 9, "voucher-2": 12})
        assert result.reasons == ("Need voucher exposure per level >= 10; currently 9.",)

    def test_voucher_gate_vacuous_without_vouchers(self):
        result = _gates(voucher_appearances={})
        assert result.min_voucher_exposure_met
        assert result.gates_met

    def test_too_few_repeats_hides_repeatability_reason(self):
        result = _gates(repeat_tasks_answered=2, joint_repeatability=0.0)
        assert not result.repeatability_met
        assert result.reasons == ("Need at least 6 answered repeat tasks.",)

    def test_low_repeatability(self):
        result = _gates(joint_repeatability=0.5)
        assert result.reasons == ("Repeatability must be >= 80%; currently 50.0%.",)

    def test_high_failure_rate(self):
        result = _gates(failure_rate=0.05)
        assert result.reasons == ("Failure rate must be <= 2.0%; currently 5.0%.",)

    def test_several_reasons_in_order(self):
        result = _gates(answered_tasks=10, failure_rate=0.5, feature_appearances={"a": 1})
        assert len(result.reasons) == 3
        assert result.reasons[0].startswith("Need at least 60")
        assert result.reasons[-1].startswith("Failure rate")

    @pytest.mark.parametrize("flags", list(itertools.product([True, False], repeat=5)))
    def test_reasons_empty_iff_gates_met(self, flags):
        tasks_ok, feature_ok, voucher_ok, repeats_ok, failure_ok = flags
        result = _gates(
            answered_tasks=70 if tasks_ok else 30,
            feature_appearances={"a": 12 if feature_ok else 3},
            voucher_appearances={"voucher-1": 10 if voucher_ok else 2},
            repeat_tasks_answered=6 if repeats_ok else 1,
            failure_rate=0.0 if failure_ok else 0.3,
        )
        assert result.gates_met == all(flags)
        assert (result.reasons == ()) == result.gates_met

    def test_monotone_in_every_input(self):
        """Improving any input never turns a met gate into an unmet one."""
        base = _gates()
        improved = [
            _gates(answered_tasks=200),
            _gates(repeat_tasks_answered=30),
            _gates(joint_repeatability=1.0),
            _gates(failure_rate=0.0),
            _gates(feature_appearances={"a": 40, "b": 40}),
            _gates(voucher_appearances={"voucher-1": 40, "voucher-2": 40}),
        ]
        assert base.gates_met
        assert all(r.gates_met for r in improved)

    def test_task_gate_threshold_is_inclusive(self):
        assert _gates(answered_tasks=60).gates_met
        assert not _gates(answered_tasks=59).gates_met

    def test_to_dict_lists_reasons(self):
        out = _gates(failure_rate=0.5).to_dict()
        assert out["gates_met"] is False
        assert len(out["reasons"]) == 1


class TestExposureDiagnostics:
    """Test realised exposure and the money signal."""

    def setup_method(self):
        self.vouchers = [Voucher("voucher-1", 0), Voucher("voucher-2", 50)]
        self.sets = [
            ChoiceSet(id="set-1", item_ids=("a", "b", "voucher-1"), voucher_id="voucher-1"),
            ChoiceSet(id="set-2", item_ids=("b", "c", "voucher-2"), voucher_id="voucher-2"),
            ChoiceSet(id="set-3", item_ids=("a", "c", "voucher-2"), voucher_id="voucher-2"),
        ]

    def test_counts_only_answered_tasks(self):
        responses = [
            Response("set-1", "a", "voucher-1"),
            Response("set-2", "voucher-2", "c"),
            Response.failure("set-3", "timeout"),
        ]
        diag = compute_exposure_diagnostics(self.sets, responses, ["a", "b", "c"], self.vouchers)
        assert diag.answered_tasks == 2
        assert diag.feature_appearances == {"a": 1, "b": 2, "c": 1}
        assert diag.voucher_appearances == {"voucher-1": 1, "voucher-2": 1}

    def test_money_signal(self):
        responses = [Response("set-1", "a", "voucher-1"), Response("set-2", "voucher-2", "c")]
        signal = compute_exposure_diagnostics(self.sets, responses, ["a", "b", "c"], self.vouchers).money_signal
        assert signal.voucher_best_count == 1
        assert signal.voucher_worst_count == 1
        assert signal.voucher_best_rate == 0.5
        assert signal.voucher_level_counts == {"$0": 1, "$50": 1}

    def test_unknown_sets_ignored(self):
        diag = compute_exposure_diagnostics(self.sets, [Response("set-9", "a", "b")], ["a"], self.vouchers)
        assert diag.answered_tasks == 0
        assert diag.money_signal.voucher_best_rate == 0.0
