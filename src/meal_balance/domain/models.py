"""Domain models for the day meal plan."""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

GRAM_QUANTUM = 10
MIN_MEALS = 1
MAX_MEALS = 6
DEFAULT_MEALS = 5
DEFAULT_ITEM_NAME = "Item"


@dataclass(frozen=True)
class Macros:
    """Calories and macronutrients, either per 100 g or as day totals."""

    kcal: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fats: float = 0.0

    @property
    def calories(self) -> float:
        return self.kcal

    def to_dict(self) -> dict[str, float]:
        return {
            "kcal": self.kcal,
            "calories": self.kcal,
            "protein": self.protein,
            "carbs": self.carbs,
            "fats": self.fats,
        }


@dataclass(frozen=True)
class MacroDelta:
    """Signed difference between plan totals and the day target."""

    calories: float
    protein: float
    carbs: float
    fats: float

    def to_dict(self) -> dict[str, float]:
        return {
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fats": self.fats,
        }


@dataclass(frozen=True)
class MealItem:
    """A portion of one food placed in a meal slot."""

    name: str
    grams: int
    per100g: Macros
    locked: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "grams": self.grams,
            "per100g": self.per100g.to_dict(),
            "locked": self.locked,
        }


@dataclass(frozen=True)
class DaySession:
    """The whole day plan, persisted as a single record."""

    meals: int
    items: tuple[MealItem | None, ...]
    day_target: Macros = field(default_factory=Macros)
    diet_style: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "meals": self.meals,
            "items": [
                item.to_dict() if item is not None else None for item in self.items
            ],
            "dayTarget": self.day_target.to_dict(),
        }
        if self.diet_style is not None:
            payload["dietStyle"] = self.diet_style
        return payload


@dataclass(frozen=True)
class PlanDelta:
    """Plan totals compared against the day target."""

    totals: Macros
    delta: MacroDelta
    target: Macros
    session: DaySession


@dataclass(frozen=True)
class BalanceResult:
    """Outcome of an operation that rewrites portions."""

    applied: bool
    session: DaySession
    reason: str | None = None


def to_float(value: object, default: float = 0.0) -> float:
    """Coerce a loosely typed number, falling back to a default."""
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return default
    else:
        return default
    return number if math.isfinite(number) else default


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def quantize_grams(value: object) -> int:
    """Snap grams to the nearest 10 g step, never below zero."""
    grams = to_float(value)
    return max(0, round_half_up(grams / GRAM_QUANTUM) * GRAM_QUANTUM)


def clamp_meals(value: object, default: int = DEFAULT_MEALS) -> int:
    number = to_float(value, default=float(default))
    return min(MAX_MEALS, max(MIN_MEALS, round_half_up(number)))


def _first_present(raw: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def normalize_macros(raw: object) -> Macros:
    """Resolve macro field aliases into the canonical representation."""
    if isinstance(raw, Macros):
        return raw
    if not isinstance(raw, Mapping):
        return Macros()
    return Macros(
        kcal=max(0.0, to_float(_first_present(raw, "kcal", "calories"))),
        protein=max(0.0, to_float(raw.get("protein"))),
        carbs=max(0.0, to_float(_first_present(raw, "carbs", "carbohydrates"))),
        fats=max(0.0, to_float(_first_present(raw, "fats", "fat"))),
    )


def build_item(food: object, grams: object, locked: bool = False) -> MealItem:
    """Build an item from a food payload (macros nested under per100g or flat)."""
    if isinstance(food, MealItem):
        return MealItem(food.name, quantize_grams(grams), food.per100g, bool(locked))
    if isinstance(food, Macros):
        return MealItem(DEFAULT_ITEM_NAME, quantize_grams(grams), food, bool(locked))
    payload = food if isinstance(food, Mapping) else {}
    name = payload.get("name") or payload.get("title") or DEFAULT_ITEM_NAME
    per100g = payload.get("per100g") or payload
    return MealItem(
        name=str(name),
        grams=quantize_grams(grams),
        per100g=normalize_macros(per100g),
        locked=bool(locked),
    )


def item_from_dict(raw: object) -> MealItem | None:
    if not isinstance(raw, Mapping):
        return None
    return build_item(raw, raw.get("grams"), locked=bool(raw.get("locked")))


def empty_session(
    meals: int, day_target: Macros | None = None, diet_style: str | None = None
) -> DaySession:
    return DaySession(
        meals=meals,
        items=(None,) * meals,
        day_target=day_target or Macros(),
        diet_style=diet_style,
    )


def session_from_dict(raw: object) -> DaySession | None:
    """Parse a stored session, returning None when the shape is unusable."""
    if not isinstance(raw, Mapping):
        return None
    items = raw.get("items")
    if not isinstance(items, list) or not MIN_MEALS <= len(items) <= MAX_MEALS:
        return None
    diet_style = raw.get("dietStyle")
    return DaySession(
        meals=len(items),
        items=tuple(item_from_dict(item) for item in items),
        day_target=normalize_macros(raw.get("dayTarget")),
        diet_style=str(diet_style) if diet_style is not None else None,
    )


def compute_totals(items: Sequence[MealItem | None]) -> Macros:
    """Sum macros over present items, each weighted by grams / 100."""
    kcal = protein = carbs = fats = 0.0
    for item in items:
        if item is None:
            continue
        kcal += item.per100g.kcal * item.grams / 100
        protein += item.per100g.protein * item.grams / 100
        carbs += item.per100g.carbs * item.grams / 100
        fats += item.per100g.fats * item.grams / 100
    return Macros(kcal=kcal, protein=protein, carbs=carbs, fats=fats)


def compute_delta(totals: Macros, target: Macros) -> MacroDelta:
    return MacroDelta(
        calories=totals.kcal - target.kcal,
        protein=totals.protein - target.protein,
        carbs=totals.carbs - target.carbs,
        fats=totals.fats - target.fats,
    )
