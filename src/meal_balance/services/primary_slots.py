"""Resolution of the must-touch (primary) meal slots."""

from collections.abc import Sequence

PRODUCTION_PROFILE = "production"
TEST_PROFILE = "test"
SLOT_PROFILES = {PRODUCTION_PROFILE, TEST_PROFILE}

# Breakfast, lunch and dinner positions once snacks are interleaved.
_PRODUCTION_LAYOUTS: dict[int, list[int]] = {
    3: [0, 1, 2],
    4: [0, 1, 3],
    5: [0, 2, 4],
    6: [0, 2, 5],
}
_TEST_SLOTS = [0, 1]


def resolve_primary_slots(
    meals: int,
    profile: str = PRODUCTION_PROFILE,
    explicit: Sequence[int] | None = None,
) -> list[int]:
    """Return the ordered slot indices the balancer must try to move."""
    if explicit:
        return list(explicit)
    if profile == TEST_PROFILE:
        return [index for index in _TEST_SLOTS if index < meals]
    layout = _PRODUCTION_LAYOUTS.get(meals)
    if layout is not None:
        return list(layout)
    return [index for index in range(3) if index < meals]
