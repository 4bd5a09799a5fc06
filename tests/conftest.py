"""Pytest fixtures for PyMaxDiff tests."""

import numpy as np
import pytest

from pymaxdiff import (
    Feature,
    Response,
    VoucherBounds,
    generate_choice_plan,
    generate_vouchers,
)
from pymaxdiff.algorithms.wtp import money_utility_basis


# Known preference order f2 > f3 > f1 > f4, mean zero
TRUE_UTILITIES = {"f1": 0.0, "f2": 1.1, "f3": 0.5, "f4": -1.6}
TRUE_BETA = 1.0


def simulate_responses(plan, utility_of, rng, respondent_id="sim"):
    """
    Draw best/worst answers from the sequential BWS logit.

    ``utility_of`` maps an item id to its true utility. The best item is
    drawn from softmax(u); the worst from softmax(-u) over the rest.
    """
    responses = []
    for choice_set in plan.sets:
        items = list(choice_set.item_ids)
        u = np.array([utility_of(item) for item in items])
        p_best = np.exp(u - u.max())
        p_best /= p_best.sum()
        best = int(rng.choice(len(items), p=p_best))
        rest = [i for i in range(len(items)) if i != best]
        neg = -u[rest]
        p_worst = np.exp(neg - neg.max())
        p_worst /= p_worst.sum()
        worst = rest[int(rng.choice(len(rest), p=p_worst))]
        responses.append(
            Response(
                set_id=choice_set.id,
                most_valued=items[best],
                least_valued=items[worst],
                respondent_id=respondent_id,
            )
        )
    return responses


def deterministic_rank_fn(utility_by_item):
    """Oracle that always picks the highest-utility item as best and lowest as worst."""

    def rank(choice_set):
        ordered = sorted(choice_set.item_ids, key=lambda item: -utility_by_item[item])
        return {"most_valued": ordered[0], "least_valued": ordered[-1], "ranking": ordered}

    return rank


@pytest.fixture
def fano_items() -> list[str]:
    """Seven items for the Fano plane (v=7, k=3, lambda=1)."""
    return [str(i) for i in range(1, 8)]


@pytest.fixture
def fano_blocks():
    """The seven lines of the Fano plane as design blocks."""
    from pymaxdiff import DesignBlock

    lines = [
        ("1", "2", "3"), ("1", "4", "5"), ("1", "6", "7"), ("2", "4", "6"),
        ("2", "5", "7"), ("3", "4", "7"), ("3", "5", "6"),
    ]
    return [DesignBlock(id=f"set-{i + 1}", item_ids=line) for i, line in enumerate(lines)]


@pytest.fixture
def four_features() -> list[Feature]:
    """Four features with equal material cost."""
    return [Feature(id=fid, name=fid.upper(), material_cost=100.0) for fid in TRUE_UTILITIES]


@pytest.fixture
def car_features() -> list[Feature]:
    """A realistic eight-feature study."""
    names_costs = [
        ("heated-seats", "Heated Seats", 150),
        ("sunroof", "Panoramic Sunroof", 900),
        ("premium-audio", "Premium Audio", 600),
        ("lane-assist", "Lane Keeping Assist", 400),
        ("wireless-charging", "Wireless Charging", 80),
        ("ambient-lighting", "Ambient Lighting", 120),
        ("tow-hitch", "Tow Hitch", 250),
        ("remote-start", "Remote Start", 200),
    ]
    return [Feature(id=fid, name=name, material_cost=cost) for fid, name, cost in names_costs]


@pytest.fixture
def small_vouchers():
    """Five voucher levels from $0 to $200."""
    return generate_vouchers(
        [100.0],
        VoucherBounds(min_amount=0, max_amount=200, levels=5, spacing="linear"),
    )


@pytest.fixture
def synthetic_study(four_features, small_vouchers):
    """A large plan answered by simulated respondents with known utilities."""
    plan = generate_choice_plan(
        four_features, small_vouchers, r_target=150, items_per_set=4, seed=7, repeat_fraction=0.0,
    )
    amount_by_id = {v.id: v.amount for v in small_vouchers}

    def utility_of(item):
        if item in TRUE_UTILITIES:
            return TRUE_UTILITIES[item]
        return TRUE_BETA * money_utility_basis(amount_by_id[item], "log1p", 100.0)

    responses = simulate_responses(plan, utility_of, np.random.default_rng(2024))
    return plan, responses, four_features, small_vouchers


@pytest.fixture
def oracle_utilities() -> dict[str, float]:
    """True utilities for the four features and the five small-voucher levels."""
    vouchers = {f"voucher-{level}": -1.2 + 0.6 * (level - 1) for level in range(1, 6)}
    return {**TRUE_UTILITIES, **vouchers}


@pytest.fixture
def rank_oracle(oracle_utilities):
    """Deterministic ranking oracle over ``oracle_utilities``."""
    return deterministic_rank_fn(oracle_utilities)
