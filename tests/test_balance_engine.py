import pytest

from meal_balance.domain.models import Macros, MealItem, compute_totals
from meal_balance.services.balance import (
    ALL_LOCKED,
    BalanceOptions,
    CalorieBalanceEngine,
    GuidedBalanceEngine,
    auto_balance,
    build_engine,
    fats_ok,
    kcal_band,
    parse_balance_options,
    redistribute_carbs,
    settle_calories,
    tune_calories,
    within_tolerances,
)

PLAIN = Macros(kcal=100)
EVEN = Macros(kcal=100, protein=5, carbs=10, fats=4)
CARB_HEAVY = Macros(kcal=100, protein=0, carbs=25, fats=0)
FAT_HEAVY = Macros(kcal=400, protein=0, carbs=0, fats=40)


def _item(per100g: Macros, grams: int, locked: bool = False) -> MealItem:
    return MealItem(name="Food", grams=grams, per100g=per100g, locked=locked)


def _grams(items: list[MealItem | None]) -> list[int | None]:
    return [item.grams if item is not None else None for item in items]


def test_single_sweep_moves_every_unlocked_slot_once() -> None:
    items = [_item(PLAIN, 100), _item(PLAIN, 100)]

    tuned = tune_calories(items, Macros(kcal=1000), fat_floor=0)

    assert _grams(tuned) == [110, 110]
    assert _grams(items) == [100, 100]


def test_sweep_accepts_ties_when_fat_floor_holds() -> None:
    items = [_item(Macros(kcal=100, fats=10), 400)]

    tuned = tune_calories(items, Macros(kcal=405), fat_floor=41)

    assert _grams(tuned) == [410]


def test_sweep_never_breaks_fat_floor() -> None:
    items = [_item(Macros(kcal=100, fats=10), 400)]

    tuned = tune_calories(items, Macros(kcal=300), fat_floor=40)

    assert _grams(tuned) == [400]


def test_sweep_skips_locked_and_empty_slots() -> None:
    items = [_item(PLAIN, 100, locked=True), None, _item(PLAIN, 100)]

    tuned = tune_calories(items, Macros(kcal=1000), fat_floor=0)

    assert _grams(tuned) == [100, None, 110]
    assert tuned[0].locked is True


@pytest.mark.parametrize(("prefer", "expected"), [(None, [110, 100]), (1, [100, 110])])
def test_preferred_slot_is_visited_first(prefer, expected) -> None:
    items = [_item(PLAIN, 100), _item(PLAIN, 100)]

    tuned = tune_calories(items, Macros(kcal=210), prefer_index=prefer, fat_floor=0)

    assert _grams(tuned) == expected


def test_settling_repeats_sweeps_until_within_tolerance() -> None:
    items = [_item(PLAIN, 100)]

    settled = settle_calories(items, Macros(kcal=500), kcal_tol=60, fat_floor=0)

    assert _grams(settled) == [440]


def test_settling_stops_when_no_sweep_improves() -> None:
    items = [_item(PLAIN, 100, locked=True), _item(Macros(kcal=100, fats=10), 400)]

    settled = settle_calories(items, Macros(kcal=100), kcal_tol=60, fat_floor=40)

    assert _grams(settled) == [100, 400]


def test_kcal_band_is_three_percent_with_a_minimum() -> None:
    assert kcal_band(Macros(kcal=2000)) == 60
    assert kcal_band(Macros(kcal=10)) == 1


def test_default_kcal_tolerance_has_a_floor() -> None:
    options = BalanceOptions()

    assert options.kcal_tolerance(Macros(kcal=1000)) == 60
    assert options.kcal_tolerance(Macros(kcal=3000)) == 90
    assert BalanceOptions(kcal_tol=25).kcal_tolerance(Macros(kcal=3000)) == 25


def test_fat_floor_compares_rounded_grams() -> None:
    items = [_item(Macros(kcal=100, fats=39.6), 100)]

    assert fats_ok(items, 40) is True
    assert fats_ok(items, 40.6) is False


def _carb_target(**overrides: float) -> Macros:
    values = {"kcal": 1000, "protein": 0, "carbs": 150, "fats": 80}
    values.update(overrides)
    return Macros(**values)


def test_carb_pass_shifts_mass_from_fat_donor() -> None:
    items = [_item(CARB_HEAVY, 200), _item(FAT_HEAVY, 200)]

    result = redistribute_carbs(items, _carb_target())

    assert _grams(result) == [260, 170]
    assert compute_totals(result).carbs > compute_totals(items).carbs


def test_carb_pass_keeps_the_step_that_breaks_the_fat_floor() -> None:
    items = [_item(CARB_HEAVY, 200), _item(FAT_HEAVY, 200)]

    result = redistribute_carbs(items, _carb_target(), fat_floor=75)

    assert _grams(result) == [240, 180]
    assert fats_ok(result, 75) is False


def test_carb_pass_needs_calories_inside_the_band() -> None:
    items = [_item(CARB_HEAVY, 200), _item(FAT_HEAVY, 250)]

    result = redistribute_carbs(items, _carb_target())

    assert _grams(result) == [200, 250]


def test_carb_pass_reverts_a_step_that_does_not_help() -> None:
    items = [_item(CARB_HEAVY, 200), _item(FAT_HEAVY, 200)]

    result = redistribute_carbs(items, _carb_target(carbs=0))

    assert _grams(result) == [200, 200]


def test_carb_pass_skips_donors_that_would_break_protein() -> None:
    donor = Macros(kcal=400, protein=10, carbs=0, fats=40)
    items = [_item(CARB_HEAVY, 200), _item(donor, 200)]

    result = redistribute_carbs(items, _carb_target(protein=20), protein_tol=0.5)

    assert _grams(result) == [260, 200]


def test_within_tolerances_checks_fats_only_when_requested() -> None:
    items = [_item(EVEN, 500)]
    target = Macros(kcal=500, protein=25, carbs=50, fats=0)

    assert within_tolerances(items, target, BalanceOptions()) is True
    assert within_tolerances(items, target, BalanceOptions(fat_tol=5)) is False


def _must_touch_items() -> list[MealItem | None]:
    return [_item(EVEN, 500), _item(EVEN, 500), None]


def test_enforcement_moves_a_primary_slot_when_plan_is_on_target() -> None:
    target = Macros(kcal=1000, protein=50, carbs=100, fats=40)
    options = BalanceOptions(fat_floor=0, prefer_index=0)

    outcome = auto_balance(
        GuidedBalanceEngine(), _must_touch_items(), target, options, [0, 1]
    )

    assert outcome.applied is True
    assert outcome.enforced is True
    assert _grams(outcome.items) == [510, 490, None]
    assert outcome.items[0].locked is False


def test_enforcement_gives_up_when_tolerances_cannot_hold() -> None:
    target = Macros(kcal=1000, protein=200, carbs=100, fats=40)
    options = BalanceOptions(fat_floor=0, prefer_index=0)

    outcome = auto_balance(
        GuidedBalanceEngine(), _must_touch_items(), target, options, [0, 1]
    )

    assert outcome.applied is False
    assert outcome.enforced is False
    assert outcome.reason is None
    assert _grams(outcome.items) == [500, 500, None]


def test_calorie_engine_never_forces_a_change() -> None:
    target = Macros(kcal=1000, protein=50, carbs=100, fats=40)
    options = BalanceOptions(fat_floor=0, prefer_index=0)

    outcome = auto_balance(
        CalorieBalanceEngine(), _must_touch_items(), target, options, [0, 1]
    )

    assert outcome.applied is False
    assert _grams(outcome.items) == [500, 500, None]


def test_preferred_snack_is_forced_when_primary_slots_are_locked() -> None:
    items = [_item(PLAIN, 500, locked=True), None, _item(PLAIN, 100)]
    options = BalanceOptions(fat_floor=0, prefer_index=2)

    outcome = auto_balance(
        GuidedBalanceEngine(), items, Macros(kcal=610), options, [0]
    )

    assert outcome.applied is True
    assert outcome.enforced is True
    assert _grams(outcome.items) == [500, None, 120]
    assert outcome.items[2].locked is False


def _snack_day() -> list[MealItem | None]:
    return [_item(EVEN, 300, locked=True), _item(EVEN, 500), _item(EVEN, 500)]


def test_preferred_snack_is_pinned_while_others_absorb_the_step() -> None:
    target = Macros(kcal=1300, protein=65, carbs=130, fats=52)
    options = BalanceOptions(prefer_index=2)

    outcome = auto_balance(GuidedBalanceEngine(), _snack_day(), target, options, [0])

    assert outcome.applied is True
    assert outcome.enforced is True
    assert _grams(outcome.items) == [300, 490, 510]
    assert [item.locked for item in outcome.items] == [True, False, False]


def test_out_of_range_preference_is_not_clamped_onto_a_slot() -> None:
    target = Macros(kcal=1300, protein=65, carbs=130, fats=52)
    options = BalanceOptions(prefer_index=7)

    outcome = auto_balance(GuidedBalanceEngine(), _snack_day(), target, options, [0])

    assert outcome.applied is False
    assert outcome.enforced is False
    assert _grams(outcome.items) == [300, 500, 500]


def test_primary_nudge_falls_back_to_a_smaller_portion() -> None:
    dense = Macros(kcal=1000)
    items = [_item(dense, 500), _item(dense, 0)]
    options = BalanceOptions(kcal_tol=60, fat_floor=0)

    outcome = auto_balance(
        GuidedBalanceEngine(), items, Macros(kcal=5000), options, [0, 1]
    )

    assert outcome.enforced is True
    assert _grams(outcome.items) == [490, 10]


def test_carb_finish_is_dropped_when_it_leaves_calorie_tolerance() -> None:
    items = [_item(CARB_HEAVY, 200), _item(FAT_HEAVY, 200)]
    engine = GuidedBalanceEngine()

    tight = engine.run(items, _carb_target(), BalanceOptions(kcal_tol=30))
    loose = engine.run(items, _carb_target(), BalanceOptions())

    assert _grams(tight) == [200, 200]
    assert _grams(loose) == [260, 170]


def test_all_locked_plan_is_left_alone() -> None:
    items = [_item(PLAIN, 100, locked=True), None]

    outcome = auto_balance(
        GuidedBalanceEngine(), items, Macros(kcal=1000), BalanceOptions(), [0]
    )

    assert outcome.applied is False
    assert outcome.reason == ALL_LOCKED
    assert _grams(outcome.items) == [100, None]


def test_build_engine_resolves_configured_names() -> None:
    assert build_engine("guided").name == "guided"
    assert build_engine(" Calorie ").name == "calorie"
    with pytest.raises(ValueError, match="Unknown auto-balance engine"):
        build_engine("magic")


def test_parse_options_accepts_aliases_with_precedence() -> None:
    options = parse_balance_options(
        {
            "kcalTol": "75",
            "carbTol": 30,
            "carbsTol": 12,
            "fat_tol": 9,
            "proteinTol": True,
            "fatFloor": "nan",
            "preferIndex": 1.6,
            "primarySlots": [0, -2, 2.4],
            "target": {"calories": 1800, "fat": 50},
        }
    )

    assert options.kcal_tol == 75
    assert options.carb_tol == 12
    assert options.fat_tol == 9
    assert options.protein_tol == 8
    assert options.fat_floor == 40
    assert options.prefer_index == 2
    assert options.primary_slots == (0, 0, 2)
    assert options.target == Macros(kcal=1800, fats=50)


def test_parse_options_falls_back_to_defaults() -> None:
    defaults = BalanceOptions(fat_floor=30, protein_tol=5)

    assert parse_balance_options(None, defaults) is defaults
    options = parse_balance_options({"primarySlots": []}, defaults)
    assert options.primary_slots is None
    assert options.fat_floor == 30
