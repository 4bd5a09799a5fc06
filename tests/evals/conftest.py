"""
Pathological fixtures for EVALs - designed to break the engine.

Each fixture creates data that targets a specific degenerate case in the
design, estimation or oracle layers.
"""

import pytest

from pymaxdiff import (
    ChoiceSet,
    Feature,
    Response,
    Voucher,
    VoucherBounds,
    generate_choice_plan,
    generate_vouchers,
)


# =============================================================================
# MINIMAL DATA FIXTURES
# =============================================================================


@pytest.fixture
def two_features():
    """The smallest study a design can be built for."""
    return [Feature("a", "Alpha", 10.0), Feature("b", "Beta", 20.0)]


@pytest.fixture
def single_feature():
    """One feature - no pairs, no design."""
    return [Feature("solo", "Solo", 25.0)]


@pytest.fixture
def one_task_log():
    """A single answered task."""
    sets = [ChoiceSet(id="set-1", item_ids=("a", "b", "voucher-1"), voucher_id="voucher-1")]
    responses = [Response("set-1", "a", "voucher-1")]
    return sets, responses


# =============================================================================
# FAILURE-HEAVY FIXTURES
# =============================================================================


@pytest.fixture
def all_failed_study():
    """A plan where every oracle answer failed."""
    features = [Feature(f"f{i}", f"F{i}", 100.0) for i in range(1, 6)]
    vouchers = generate_vouchers([100.0], VoucherBounds(0, 100, 3, spacing="linear"))
    plan = generate_choice_plan(features, vouchers, r_target=6, seed=1)
    responses = [Response.failure(s.id, "timeout") for s in plan.sets]
    return plan, responses, features, vouchers


@pytest.fixture
def self_contradicting_log():
    """Answers that name the same item best and worst, or items outside the set."""
    sets = [
        ChoiceSet(id="set-1", item_ids=("a", "b", "c")),
        ChoiceSet(id="set-2", item_ids=("a", "b", "c")),
        ChoiceSet(id="set-3", item_ids=("a", "b", "c")),
    ]
    responses = [
        Response("set-1", "a", "a"),
        Response("set-2", "z", "b"),
        Response("set-9", "a", "b"),
    ]
    return sets, responses


# =============================================================================
# EXTREME VALUE FIXTURES
# =============================================================================


@pytest.fixture
def huge_vouchers():
    """Voucher amounts up to a billion."""
    return generate_vouchers([8e8], VoucherBounds(0, 1e9, 7))


@pytest.fixture
def zero_cost_features():
    """Features with no material cost at all."""
    return [Feature(f"z{i}", f"Z{i}", 0.0) for i in range(1, 5)]


@pytest.fixture
def free_voucher():
    """A single $0 voucher."""
    return [Voucher("voucher-1", 0.0, level=1)]
