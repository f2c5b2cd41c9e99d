"""Auto-balance engine for day meal plans.

The engine nudges unlocked portions in 10 g steps so the day's calories move
toward the target, optionally shifts mass from fat-dense donors into a
carb-dense acceptor, and finally makes sure at least one primary slot
visibly changes when that can be done within tolerance.
"""

import logging
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Protocol

from meal_balance.domain.models import (
    GRAM_QUANTUM,
    Macros,
    MealItem,
    compute_totals,
    normalize_macros,
    quantize_grams,
    round_half_up,
    to_float,
)

Items = list[MealItem | None]

ALL_LOCKED = "all-locked"
KCAL_BAND_RATIO = 0.03
MIN_KCAL_TOL = 60
CARB_FINISH_TOL = 15
KCAL_DRIFT_MARGIN = 10
PROTEIN_PENALTY = 0.6

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceOptions:
    """Tolerances and hints for a single auto-balance run."""

    kcal_tol: float | None = None
    protein_tol: float = 8
    carb_tol: float = 15
    fat_tol: float | None = None
    fat_floor: float = 40
    prefer_index: int | None = None
    primary_slots: tuple[int, ...] | None = None
    target: Macros | None = None

    def kcal_tolerance(self, target: Macros) -> float:
        if self.kcal_tol is not None:
            return self.kcal_tol
        return max(MIN_KCAL_TOL, round_half_up(target.kcal * KCAL_BAND_RATIO))


@dataclass(frozen=True)
class Deviation:
    """Absolute distance of plan totals from the target, per field."""

    kcal: float
    protein: float
    carbs: float
    fats: float


@dataclass(frozen=True)
class BalanceOutcome:
    items: Items
    applied: bool
    enforced: bool = False
    reason: str | None = None


def measure(items: Sequence[MealItem | None], target: Macros) -> Deviation:
    totals = compute_totals(items)
    return Deviation(
        kcal=abs(totals.kcal - target.kcal),
        protein=abs(totals.protein - target.protein),
        carbs=abs(totals.carbs - target.carbs),
        fats=abs(totals.fats - target.fats),
    )


def fats_ok(items: Sequence[MealItem | None], fat_floor: float) -> bool:
    """Check the day's total fat against the floor, both rounded to grams."""
    return round_half_up(compute_totals(items).fats) >= round_half_up(fat_floor)


def kcal_band(target: Macros) -> int:
    return max(1, round_half_up(target.kcal * KCAL_BAND_RATIO))


def _is_movable(item: MealItem | None) -> bool:
    return item is not None and not item.locked


def _visit_order(count: int, prefer_index: int | None) -> list[int]:
    indices = list(range(count))
    if prefer_index is not None and 0 <= prefer_index < count:
        return [prefer_index] + [i for i in indices if i != prefer_index]
    return indices


def tune_calories(
    items: Sequence[MealItem | None],
    target: Macros,
    *,
    prefer_index: int | None = None,
    fat_floor: float = 40,
) -> Items:
    """Run one forward sweep of +10/-10 g trials over every unlocked slot.

    A trial is kept when the fat floor still holds and the calorie deviation
    is no worse than the best so far. Ties are accepted so later slots can
    absorb residual calories.
    """
    work = list(items)
    best = measure(work, target).kcal
    for index in _visit_order(len(work), prefer_index):
        for step in (GRAM_QUANTUM, -GRAM_QUANTUM):
            item = work[index]
            if not _is_movable(item):
                break
            grams = quantize_grams(item.grams + step)
            if grams == item.grams:
                continue
            work[index] = replace(item, grams=grams)
            deviation = measure(work, target).kcal
            if fats_ok(work, fat_floor) and deviation <= best:
                best = deviation
            else:
                work[index] = item
    return work


def settle_calories(
    items: Sequence[MealItem | None],
    target: Macros,
    *,
    kcal_tol: float,
    prefer_index: int | None = None,
    fat_floor: float = 40,
) -> Items:
    """Repeat calorie sweeps while outside tolerance and still improving."""
    work = tune_calories(items, target, prefer_index=prefer_index, fat_floor=fat_floor)
    deviation = measure(work, target).kcal
    while deviation > kcal_tol:
        candidate = tune_calories(
            work, target, prefer_index=prefer_index, fat_floor=fat_floor
        )
        candidate_deviation = measure(candidate, target).kcal
        if candidate_deviation >= deviation:
            break
        work, deviation = candidate, candidate_deviation
    return work


def _kcal_per_step(item: MealItem) -> int:
    return max(0, round_half_up(item.per100g.kcal * 0.1))


def _pick_acceptor(items: Items) -> int | None:
    best_index: int | None = None
    best_score = -1.0
    for index, item in enumerate(items):
        if not _is_movable(item):
            continue
        kcal = max(1.0, item.per100g.kcal)
        carbs = item.per100g.carbs / kcal
        score = carbs - PROTEIN_PENALTY * item.per100g.protein / kcal
        if score > best_score:
            best_index, best_score = index, score
    return best_index


def _rank_donors(items: Items) -> list[int]:
    candidates = [
        index
        for index, item in enumerate(items)
        if _is_movable(item) and item.per100g.fats > 0
    ]
    return sorted(
        candidates,
        key=lambda i: -(items[i].per100g.fats / max(1.0, items[i].per100g.kcal)),
    )


def _carb_step(carb_deviation: float, unlocked: int) -> int:
    if unlocked <= 3:
        return 15 if carb_deviation >= 60 else 10
    return 10 if carb_deviation >= 30 else 5


def redistribute_carbs(
    items: Sequence[MealItem | None],
    target: Macros,
    *,
    protein_tol: float = 8,
    fat_floor: float = 40,
) -> Items:
    """Move mass from fat-dense donors into the most carb-dense slot.

    Only runs when calories already sit inside the tight band. The fat floor
    is checked after each step is applied, so a violating step is kept.
    """
    work = list(items)
    band = kcal_band(target)
    current = measure(work, target)
    if current.kcal > band:
        return work

    while current.carbs > CARB_FINISH_TOL:
        acceptor = _pick_acceptor(work)
        if acceptor is None:
            break
        unlocked = sum(1 for item in work if _is_movable(item))
        step = _carb_step(current.carbs, unlocked)
        before_step = list(work)

        gaining = work[acceptor]
        work[acceptor] = replace(gaining, grams=quantize_grams(gaining.grams + step))
        debt = _kcal_per_step(gaining) * step / GRAM_QUANTUM

        for donor in _rank_donors(work):
            if debt <= 0:
                break
            if donor == acceptor:
                continue
            giving = work[donor]
            if giving.grams <= 0:
                continue
            removed = min(GRAM_QUANTUM, giving.grams)
            trial = list(work)
            trial[donor] = replace(giving, grams=quantize_grams(giving.grams - removed))
            if measure(trial, target).protein > protein_tol:
                continue
            work = trial
            debt -= _kcal_per_step(giving) * removed / GRAM_QUANTUM

        previous = current
        current = measure(work, target)
        if not fats_ok(work, fat_floor):
            break
        if current.kcal > band + KCAL_DRIFT_MARGIN:
            break
        if current.carbs >= previous.carbs:
            work = before_step
            break
    return work


def within_tolerances(
    items: Sequence[MealItem | None], target: Macros, options: BalanceOptions
) -> bool:
    deviation = measure(items, target)
    return (
        deviation.kcal <= options.kcal_tolerance(target)
        and deviation.protein <= options.protein_tol
        and deviation.carbs <= options.carb_tol
        and (options.fat_tol is None or deviation.fats <= options.fat_tol)
    )


def nudge_and_verify(  # noqa: PLR0913
    run: Callable[[Items, Macros, BalanceOptions], Items],
    items: Sequence[MealItem | None],
    target: Macros,
    options: BalanceOptions,
    index: int,
    step: int,
    *,
    pin: bool,
) -> Items | None:
    """Force a step on one slot, rebalance around it and keep it if acceptable."""
    start = items[index]
    if not _is_movable(start):
        return None
    work = list(items)
    work[index] = replace(
        start, grams=quantize_grams(start.grams + step), locked=pin or start.locked
    )
    out = run(work, target, replace(options, prefer_index=index))
    moved = out[index]
    out[index] = replace(moved, locked=start.locked)
    if moved.grams == start.grams:
        return None
    if not within_tolerances(out, target, options):
        return None
    if not fats_ok(out, options.fat_floor):
        return None
    return out


class BalanceEngine(Protocol):
    """Strategy for computing balanced portions."""

    name: str

    def run(self, items: Items, target: Macros, options: BalanceOptions) -> Items:
        """Return rebalanced items without persisting them."""

    def enforce(
        self,
        items: Items,
        target: Macros,
        options: BalanceOptions,
        primary_slots: Sequence[int],
    ) -> Items | None:
        """Force a tolerance-respecting change on a primary slot, if possible."""


@dataclass
class GuidedBalanceEngine(BalanceEngine):
    """Calorie settling, carb finish and must-touch enforcement."""

    name: str = "guided"

    def run(self, items: Items, target: Macros, options: BalanceOptions) -> Items:
        tuned = settle_calories(
            items,
            target,
            kcal_tol=options.kcal_tolerance(target),
            prefer_index=options.prefer_index,
            fat_floor=options.fat_floor,
        )
        deviation = measure(tuned, target)
        if deviation.kcal > kcal_band(target) or deviation.carbs <= options.carb_tol:
            return tuned
        finished = redistribute_carbs(
            tuned,
            target,
            protein_tol=options.protein_tol,
            fat_floor=options.fat_floor,
        )
        # The carb finish may drift calories, never past the tolerance.
        kcal_limit = max(deviation.kcal, options.kcal_tolerance(target))
        if measure(finished, target).kcal > kcal_limit:
            return tuned
        return finished

    def enforce(
        self,
        items: Items,
        target: Macros,
        options: BalanceOptions,
        primary_slots: Sequence[int],
    ) -> Items | None:
        prefer = options.prefer_index
        candidates = list(primary_slots)
        if prefer in primary_slots:
            candidates.insert(0, prefer)
        index = next(
            (slot for slot in candidates if _is_movable(_slot(items, slot))), None
        )
        if index is not None:
            for step in (GRAM_QUANTUM, -GRAM_QUANTUM):
                forced = nudge_and_verify(
                    self.run, items, target, options, index, step, pin=True
                )
                if forced is not None:
                    _logger.info(
                        "Forced change on primary slot %s (%+d g)", index, step
                    )
                    return forced

        if prefer is None or prefer in primary_slots:
            return None
        if not 0 <= prefer < len(items):
            return None
        for step in (GRAM_QUANTUM, -GRAM_QUANTUM):
            forced = nudge_and_verify(
                self.run, items, target, options, prefer, step, pin=True
            )
            if forced is not None:
                _logger.info("Forced change on preferred slot %s (%+d g)", prefer, step)
                return forced
        return None


@dataclass
class CalorieBalanceEngine(BalanceEngine):
    """Calorie settling only, without carb finish or forced changes."""

    name: str = "calorie"

    def run(self, items: Items, target: Macros, options: BalanceOptions) -> Items:
        return settle_calories(
            items,
            target,
            kcal_tol=options.kcal_tolerance(target),
            prefer_index=options.prefer_index,
            fat_floor=options.fat_floor,
        )

    def enforce(
        self,
        items: Items,
        target: Macros,
        options: BalanceOptions,
        primary_slots: Sequence[int],
    ) -> Items | None:
        return None


_ENGINES: dict[str, Callable[[], BalanceEngine]] = {
    "guided": GuidedBalanceEngine,
    "calorie": CalorieBalanceEngine,
}


def build_engine(name: str) -> BalanceEngine:
    """Instantiate a balance engine by its configured name."""
    factory = _ENGINES.get(name.strip().lower())
    if factory is None:
        available = ", ".join(sorted(_ENGINES))
        raise ValueError(f"Unknown auto-balance engine {name!r} (expected {available})")
    return factory()


def _slot(items: Sequence[MealItem | None], index: int) -> MealItem | None:
    if 0 <= index < len(items):
        return items[index]
    return None


def _grams(items: Sequence[MealItem | None], index: int) -> int:
    item = _slot(items, index)
    return item.grams if item is not None else 0


def _changed_unlocked(before: Sequence[MealItem | None], after: Items) -> bool:
    for index, previous in enumerate(before):
        current = after[index] if index < len(after) else None
        if previous is None:
            if current is not None:
                return True
            continue
        if previous.locked:
            continue
        if current is None or previous.grams != current.grams:
            return True
    return False


def _changed_primary(
    before: Sequence[MealItem | None], after: Items, primary_slots: Sequence[int]
) -> bool:
    return any(
        0 <= slot < len(after)
        and _is_movable(before[slot])
        and _grams(before, slot) != _grams(after, slot)
        for slot in primary_slots
    )


def auto_balance(
    engine: BalanceEngine,
    items: Sequence[MealItem | None],
    target: Macros,
    options: BalanceOptions,
    primary_slots: Sequence[int],
) -> BalanceOutcome:
    """Balance a day's items and decide whether the result was applied."""
    before = list(items)
    if not any(_is_movable(item) for item in before):
        return BalanceOutcome(items=before, applied=False, reason=ALL_LOCKED)

    result = engine.run(before, target, options)
    prefer = options.prefer_index
    prefer_unmoved = (
        prefer is not None
        and prefer in primary_slots
        and _grams(before, prefer) == _grams(result, prefer)
    )
    if prefer_unmoved or not _changed_primary(before, result, primary_slots):
        forced = engine.enforce(result, target, options, primary_slots)
        if forced is not None:
            return BalanceOutcome(items=forced, applied=True, enforced=True)

    return BalanceOutcome(items=result, applied=_changed_unlocked(before, result))


def _first_finite(raw: Mapping[str, object], *keys: str) -> float | None:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, bool):
            continue
        number = to_float(value, default=math.nan)
        if not math.isnan(number):
            return number
    return None


def parse_balance_options(
    raw: Mapping[str, object] | None, defaults: BalanceOptions | None = None
) -> BalanceOptions:
    """Read tolerance options, accepting camelCase, snake_case and aliases."""
    options = defaults or BalanceOptions()
    if not raw:
        return options

    overrides: dict[str, object] = {}
    for field_name, keys in (
        ("kcal_tol", ("kcalTol", "kcal_tol")),
        ("protein_tol", ("proteinTol", "protein_tol")),
        ("carb_tol", ("carbsTol", "carbTol", "carbs_tol", "carb_tol")),
        ("fat_tol", ("fatsTol", "fatTol", "fats_tol", "fat_tol")),
        ("fat_floor", ("fatFloor", "fat_floor")),
    ):
        value = _first_finite(raw, *keys)
        if value is not None:
            overrides[field_name] = value

    prefer = _first_finite(raw, "preferIndex", "prefer_index")
    if prefer is not None:
        overrides["prefer_index"] = round_half_up(prefer)

    slots = raw.get("primarySlots", raw.get("primary_slots"))
    if isinstance(slots, list | tuple) and slots:
        overrides["primary_slots"] = tuple(
            max(0, round_half_up(to_float(slot))) for slot in slots
        )

    target = raw.get("target")
    if isinstance(target, Mapping):
        overrides["target"] = normalize_macros(target)

    return replace(options, **overrides)
