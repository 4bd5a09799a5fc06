"""Legacy Borda/net-score perceived value estimator.

A closed-form fallback: count how highly each item was ranked, normalize
feature scores to [0, 1] by the best feature, then add that fraction of a
currency scale on top of each feature's material cost. There is no
likelihood and no uncertainty on this path.
"""

from __future__ import annotations

import time
from typing import Sequence

from pymaxdiff.core.items import Feature, Response, Voucher
from pymaxdiff.core.result import LegacyScoreResult, PerceivedValue
from pymaxdiff.core.types import ItemId


def compute_perceived_values(
    responses: Sequence[Response],
    features: Sequence[Feature],
    vouchers: Sequence[Voucher] = (),
) -> LegacyScoreResult:
    """
    Score features by Borda points and map them onto a currency scale.

    Scoring per non-failed response:
    - ranking of length >= 3: the item at position i of n gets n - 1 - i points
    - otherwise: +1 to the best item, -1 to the worst item

    perceived_value = material_cost + (score / max(1, max feature score)) * scale
    with scale = max(highest voucher amount, mean material cost or 1).

    Args:
        responses: Response log
        features: Features to value
        vouchers: Voucher grid (sets the currency scale)

    Returns:
        LegacyScoreResult with values sorted by perceived value, descending

    Example:
        >>> from pymaxdiff import Feature, Response
        >>> feats = [Feature("a", "A", 10), Feature("b", "B", 10)]
        >>> res = compute_perceived_values([Response("s1", "a", "b")], feats)
        >>> [v.feature_id for v in res.values]
        ['a', 'b']
    """
    start_time = time.perf_counter()

    scores: dict[ItemId, float] = {f.id: 0.0 for f in features}
    for v in vouchers:
        scores[v.id] = 0.0

    for response in responses:
        if response.failed:
            continue
        ranking = response.ranking
        if len(ranking) >= 3:
            n = len(ranking)
            for i, item in enumerate(ranking):
                scores[item] = scores.get(item, 0.0) + max(0, n - 1 - i)
        else:
            scores[response.most_valued] = scores.get(response.most_valued, 0.0) + 1.0
            scores[response.least_valued] = scores.get(response.least_valued, 0.0) - 1.0

    voucher_max = max((v.amount for v in vouchers), default=0.0)
    avg_cost = sum(f.material_cost for f in features) / len(features) if features else 0.0
    scale = max(voucher_max, avg_cost or 1.0)

    max_score = max([1.0] + [scores[f.id] for f in features])
    values = [
        PerceivedValue(
            feature_id=f.id,
            feature_name=f.name,
            material_cost=f.material_cost,
            perceived_value=round(f.material_cost + (scores[f.id] / max_score) * scale, 2),
            net_score=scores[f.id],
        )
        for f in features
    ]
    values.sort(key=lambda pv: -pv.perceived_value)

    return LegacyScoreResult(
        values=tuple(values),
        scores={item: score for item, score in scores.items() if item},
        scale=float(scale),
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


# score_responses: Tech-friendly name for compute_perceived_values
score_responses = compute_perceived_values
