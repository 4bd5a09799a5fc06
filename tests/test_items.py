"""Tests for item, task and response records."""

import math

import pytest

from pymaxdiff import (
    ChoiceSet,
    DataValidationError,
    Feature,
    Response,
    ValueRangeError,
    Voucher,
    build_features,
)
from pymaxdiff.core.items import format_amount


class TestFeature:
    def test_cost_coerced_to_float(self):
        feature = Feature(id="a", name="A", material_cost=12)
        assert feature.material_cost == 12.0
        assert isinstance(feature.material_cost, float)

    def test_empty_id_rejected(self):
        with pytest.raises(DataValidationError):
            Feature(id="", name="Nameless")

    @pytest.mark.parametrize("cost", [math.nan, math.inf, -math.inf])
    def test_non_finite_cost_rejected(self, cost):
        with pytest.raises(ValueRangeError):
            Feature(id="a", name="A", material_cost=cost)

    def test_to_dict(self):
        assert Feature(id="a", name="A", material_cost=5, description="d").to_dict() == {
            "id": "a", "name": "A", "material_cost": 5.0, "description": "d",
        }


class TestVoucher:
    def test_negative_amount_rejected(self):
        with pytest.raises(ValueRangeError, match="discounts"):
            Voucher(id="voucher-1", amount=-10)

    def test_nan_amount_rejected(self):
        with pytest.raises(ValueRangeError):
            Voucher(id="voucher-1", amount=math.nan)

    def test_zero_amount_allowed(self):
        assert Voucher(id="voucher-1", amount=0).amount == 0.0

    def test_name_uses_formatted_amount(self):
        assert Voucher(id="voucher-3", amount=50).name == "Voucher ($50)"


class TestFormatAmount:
    @pytest.mark.parametrize("amount,expected", [
        (0, "$0"), (12, "$12"), (12.5, "$12.5"), (12.25, "$12.25"), (1234, "$1,234"),
    ])
    def test_format(self, amount, expected):
        assert format_amount(amount) == expected


class TestChoiceSet:
    def test_membership_and_feature_ids(self):
        choice_set = ChoiceSet(id="set-1", item_ids=["a", "voucher-2", "b"], voucher_id="voucher-2")
        assert "a" in choice_set
        assert "z" not in choice_set
        assert choice_set.feature_ids == ("a", "b")
        assert not choice_set.is_repeat

    def test_repeat_flag(self):
        assert ChoiceSet(id="set-repeat-1", item_ids=("a", "b"), repeat_of="set-1").is_repeat


class TestResponse:
    def setup_method(self):
        self.choice_set = ChoiceSet(id="set-1", item_ids=("a", "b", "c"))

    def test_valid_response(self):
        assert Response("set-1", "a", "c").is_valid_for(self.choice_set)

    def test_best_equals_worst_invalid(self):
        assert not Response("set-1", "a", "a").is_valid_for(self.choice_set)

    def test_outside_choice_invalid(self):
        assert not Response("set-1", "a", "z").is_valid_for(self.choice_set)

    def test_failure_constructor(self):
        failure = Response.failure("set-1", "timeout", respondent_id="p1")
        assert failure.failed
        assert failure.failure_reason == "timeout"
        assert failure.most_valued == failure.least_valued == ""
        assert not failure.is_valid_for(self.choice_set)

    def test_ranking_becomes_tuple(self):
        response = Response("set-1", "a", "c", ranking=["a", "b", "c"])
        assert response.ranking == ("a", "b", "c")
        assert response.to_dict()["ranking"] == ["a", "b", "c"]


class TestBuildFeatures:
    def test_slug_ids_from_names(self):
        features = build_features([{"name": "Heated Seats", "material_cost": 150}])
        assert features == [Feature(id="heated-seats", name="Heated Seats", material_cost=150.0)]

    def test_duplicate_names_get_suffixes(self):
        features = build_features([{"name": "Sunroof"}, {"name": "Sunroof"}, {"name": "Sunroof"}])
        assert [f.id for f in features] == ["sunroof", "sunroof-1", "sunroof-2"]

    def test_punctuation_stripped(self):
        assert build_features([{"name": "Wi-Fi (5G)!"}])[0].id == "wi-fi-5g"

    def test_explicit_id_and_camel_case_cost(self):
        feature = build_features([{"id": "HUD", "name": "Head-up display", "materialCost": 300}])[0]
        assert feature.id == "hud"
        assert feature.material_cost == 300.0

    def test_unsluggable_name_gets_positional_id(self):
        assert build_features([{"name": "!!!"}])[0].id == "feature-0"

    def test_missing_name_rejected(self):
        with pytest.raises(DataValidationError, match="name"):
            build_features([{"material_cost": 10}])
