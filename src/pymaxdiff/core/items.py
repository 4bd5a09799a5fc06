"""Item, block, task and response records.

Features and vouchers are the two disjoint item kinds that populate a
MaxDiff choice set. Design blocks are unordered groups of item ids produced by
the design builder; choice sets are blocks with a voucher merged in and a
presentation order fixed. Responses record one respondent's best/worst pick
for one choice set.

All records are immutable and serialize to plain dictionaries.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pymaxdiff.core.exceptions import DataValidationError, ValueRangeError
from pymaxdiff.core.types import ItemId


def _require_id(value: Any, kind: str) -> str:
    if not isinstance(value, str) or not value:
        raise DataValidationError(
            f"{kind} id must be a non-empty string, got {value!r}."
        )
    return value


@dataclass(frozen=True)
class Feature:
    """
    A qualitative item whose monetary value is being estimated.

    Attributes:
        id: Unique item identifier
        name: Display name shown to the respondent
        material_cost: Baseline cost of providing the feature (currency)
        description: Optional longer description
    """

    id: ItemId
    name: str
    material_cost: float = 0.0
    description: str = ""

    def __post_init__(self) -> None:
        _require_id(self.id, "Feature")
        cost = float(self.material_cost)
        if not math.isfinite(cost):
            raise ValueRangeError(
                f"Feature {self.id!r} material_cost must be finite, got {self.material_cost!r}."
            )
        object.__setattr__(self, "material_cost", cost)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "material_cost": self.material_cost,
            "description": self.description,
        }


@dataclass(frozen=True)
class Voucher:
    """
    A monetary anchor item: a cash discount of ``amount``.

    Attributes:
        id: Unique item identifier
        amount: Discount in currency units (>= 0)
        description: Human-readable label
        level: 1-based position in the voucher grid (0 if unknown)
    """

    id: ItemId
    amount: float
    description: str = ""
    level: int = 0

    def __post_init__(self) -> None:
        _require_id(self.id, "Voucher")
        amount = float(self.amount)
        if not math.isfinite(amount) or amount < 0:
            raise ValueRangeError(
                f"Voucher amount must be a finite value >= 0, got {self.amount!r}. "
                f"Hint: vouchers represent discounts, so negative amounts are not meaningful."
            )
        object.__setattr__(self, "amount", amount)

    @property
    def name(self) -> str:
        return f"Voucher ({format_amount(self.amount)})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "description": self.description,
            "level": self.level,
        }


@dataclass(frozen=True)
class DesignBlock:
    """
    An unordered group of item ids produced by the design builder.

    Attributes:
        id: Block identifier (``set-<n>`` or ``set-repeat-<n>``)
        item_ids: Items in the block
        repeat_of: Id of the block this one duplicates, if it is a repeat
    """

    id: str
    item_ids: tuple[ItemId, ...]
    repeat_of: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "item_ids", tuple(self.item_ids))

    @property
    def is_repeat(self) -> bool:
        return self.repeat_of is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "item_ids": list(self.item_ids),
            "repeat_of": self.repeat_of,
        }


@dataclass(frozen=True)
class ChoiceSet:
    """
    A task shown to the respondent: a design block plus at most one voucher,
    in presentation order.

    Attributes:
        id: Task identifier (unique within a run)
        item_ids: Item ids in presentation order
        repeat_of: Id of the task this one repeats, if any
        voucher_id: The voucher merged into the task, if vouchers are in use
    """

    id: str
    item_ids: tuple[ItemId, ...]
    repeat_of: str | None = None
    voucher_id: ItemId | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "item_ids", tuple(self.item_ids))

    @property
    def is_repeat(self) -> bool:
        return self.repeat_of is not None

    @property
    def feature_ids(self) -> tuple[ItemId, ...]:
        return tuple(item for item in self.item_ids if item != self.voucher_id)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.item_ids

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "item_ids": list(self.item_ids),
            "repeat_of": self.repeat_of,
            "voucher_id": self.voucher_id,
        }


@dataclass(frozen=True)
class Response:
    """
    One respondent's answer to one choice set.

    Attributes:
        set_id: Id of the answered choice set
        most_valued: Item chosen as most valued
        least_valued: Item chosen as least valued
        ranking: Optional full ranking, most to least valued
        respondent_id: Who answered (persona id)
        failed: True if the oracle produced no usable answer
        failure_reason: Why the response failed, if it did
    """

    set_id: str
    most_valued: ItemId
    least_valued: ItemId
    ranking: tuple[ItemId, ...] = field(default_factory=tuple)
    respondent_id: str = ""
    failed: bool = False
    failure_reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "ranking", tuple(self.ranking))

    @classmethod
    def failure(cls, set_id: str, reason: str, respondent_id: str = "") -> Response:
        """Build a failed response with empty choices."""
        return cls(
            set_id=set_id,
            most_valued="",
            least_valued="",
            respondent_id=respondent_id,
            failed=True,
            failure_reason=reason,
        )

    def is_valid_for(self, choice_set: ChoiceSet) -> bool:
        """True if this response can be used as a best/worst observation."""
        return (
            not self.failed
            and self.most_valued != self.least_valued
            and self.most_valued in choice_set
            and self.least_valued in choice_set
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "set_id": self.set_id,
            "most_valued": self.most_valued,
            "least_valued": self.least_valued,
            "ranking": list(self.ranking),
            "respondent_id": self.respondent_id,
            "failed": self.failed,
            "failure_reason": self.failure_reason,
        }


# =============================================================================
# HELPERS
# =============================================================================


def format_amount(amount: float) -> str:
    """Format a currency amount without trailing zeros ($12, $12.5)."""
    if float(amount).is_integer():
        return f"${int(amount):,}"
    return "$" + f"{amount:,.2f}".rstrip("0").rstrip(".")


_SLUG_STRIP = re.compile(r"[^a-z0-9-]")


def build_features(records: Iterable[Mapping[str, Any]]) -> list[Feature]:
    """
    Normalize raw feature records into Features with unique slug ids.

    Each record needs a ``name`` and may carry ``id``, ``material_cost``
    (or ``materialCost``) and ``description``. Ids are lower-cased,
    stripped to ``[a-z0-9-]`` and de-duplicated with ``-1``, ``-2`` suffixes.

    Args:
        records: Iterable of mappings describing features

    Returns:
        List of Feature instances in input order

    Example:
        >>> build_features([{"name": "Heated Seats", "material_cost": 150}])
        [Feature(id='heated-seats', name='Heated Seats', material_cost=150.0, description='')]
    """
    seen: set[str] = set()
    features: list[Feature] = []
    for index, record in enumerate(records):
        if "name" not in record:
            raise DataValidationError(
                f"Feature record {index} has no 'name'. Got keys: {sorted(record)}."
            )
        name = str(record["name"])
        raw_id = str(record.get("id") or re.sub(r"\s+", "-", name.lower()))
        base_id = _SLUG_STRIP.sub("", raw_id.lower()) or f"feature-{index}"
        feature_id = base_id
        suffix = 1
        while feature_id in seen:
            feature_id = f"{base_id}-{suffix}"
            suffix += 1
        seen.add(feature_id)
        cost = record.get("material_cost", record.get("materialCost", 0.0))
        features.append(
            Feature(
                id=feature_id,
                name=name,
                material_cost=float(cost),
                description=str(record.get("description") or ""),
            )
        )
    return features
