"""Baseline portion planning across anchor meals and snacks."""

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Protocol

from meal_balance.domain.models import MealItem, to_float
from meal_balance.services.primary_slots import (
    PRODUCTION_PROFILE,
    resolve_primary_slots,
)

DEFAULT_ANCHOR_SHARE = 0.8


class DayPlanner(Protocol):
    """Collaborator that seeds portions before any balancing."""

    def build_anchor_baselines(
        self, items: Sequence[MealItem | None]
    ) -> list[MealItem | None]:
        """Return baseline copies of the items, leaving locked items alone."""

    def plan_kcal_shares(
        self,
        day_kcal: float,
        meals: int,
        anchor_slots: Sequence[int] | None = None,
        anchor_share: float | None = None,
        anchor_weights: Sequence[float] | None = None,
    ) -> list[float]:
        """Split the day's calories into one share per slot."""

    def grams_for_kcal_target(self, item: MealItem, kcal: float) -> float:
        """Return the grams of an item that provide the given calories."""


@dataclass
class DefaultDayPlanner(DayPlanner):
    """Anchors (breakfast, lunch, dinner) take most calories; snacks split the rest."""

    default_anchor_share: float = DEFAULT_ANCHOR_SHARE

    def build_anchor_baselines(
        self, items: Sequence[MealItem | None]
    ) -> list[MealItem | None]:
        baselines: list[MealItem | None] = []
        for item in items:
            if item is None or item.locked:
                baselines.append(item)
                continue
            baselines.append(replace(item, grams=max(0, item.grams)))
        return baselines

    def plan_kcal_shares(
        self,
        day_kcal: float,
        meals: int,
        anchor_slots: Sequence[int] | None = None,
        anchor_share: float | None = None,
        anchor_weights: Sequence[float] | None = None,
    ) -> list[float]:
        if meals <= 0:
            return []
        day_kcal = max(0.0, day_kcal)
        requested = (
            anchor_slots
            if anchor_slots is not None
            else resolve_primary_slots(meals, PRODUCTION_PROFILE)
        )
        anchors = list(dict.fromkeys(slot for slot in requested if 0 <= slot < meals))
        snacks = [slot for slot in range(meals) if slot not in anchors]
        if not anchors:
            return [day_kcal / meals] * meals

        share = self.default_anchor_share if anchor_share is None else anchor_share
        share = 1.0 if not snacks else min(1.0, max(0.0, share))
        weights = _normalized_weights(anchor_weights, len(anchors))

        shares = [0.0] * meals
        for slot, weight in zip(anchors, weights, strict=True):
            shares[slot] = day_kcal * share * weight
        for slot in snacks:
            shares[slot] = day_kcal * (1.0 - share) / len(snacks)
        return shares

    def grams_for_kcal_target(self, item: MealItem, kcal: float) -> float:
        if item.per100g.kcal <= 0:
            return 0.0
        return max(0.0, kcal) * 100 / item.per100g.kcal


def _normalized_weights(weights: Sequence[float] | None, count: int) -> list[float]:
    if weights is None or len(weights) != count:
        return [1.0 / count] * count
    cleaned = [max(0.0, to_float(weight)) for weight in weights]
    total = sum(cleaned)
    if total <= 0:
        return [1.0 / count] * count
    return [weight / total for weight in cleaned]
