"""Day meal plan session operations."""

import json
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Protocol

from meal_balance.domain.models import (
    DEFAULT_MEALS,
    BalanceResult,
    DaySession,
    Macros,
    MealItem,
    PlanDelta,
    build_item,
    clamp_meals,
    compute_delta,
    compute_totals,
    empty_session,
    normalize_macros,
    quantize_grams,
    round_half_up,
    session_from_dict,
    to_float,
)
from meal_balance.services.balance import (
    BalanceEngine,
    BalanceOptions,
    auto_balance,
    parse_balance_options,
)
from meal_balance.services.planner import DayPlanner
from meal_balance.services.primary_slots import (
    PRODUCTION_PROFILE,
    resolve_primary_slots,
)

DEFAULT_SESSION_KEY = "meal_plan_session"

_logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Key-value persistence for serialized day sessions."""

    def read(self, key: str) -> str | None:
        """Return the serialized session stored under a key, if any."""

    def write(self, key: str, payload: str) -> None:
        """Replace the serialized session stored under a key."""


@dataclass
class MealPlanService:
    """Loads, edits and balances the persisted day plan.

    Every operation re-reads the store, works on an in-memory copy and writes
    the whole session back at most once.
    """

    store: SessionStore
    engine: BalanceEngine
    planner: DayPlanner
    session_key: str = DEFAULT_SESSION_KEY
    primary_slot_profile: str = PRODUCTION_PROFILE
    default_options: BalanceOptions = field(default_factory=BalanceOptions)

    async def load_session(self) -> DaySession:
        """Return the stored session, initializing a default one if needed."""
        raw = self._read()
        session = session_from_dict(raw)
        if session is None:
            meals = DEFAULT_MEALS
            if isinstance(raw, Mapping):
                meals = clamp_meals(raw.get("meals"))
            if raw is not None:
                _logger.warning(
                    "Malformed meal plan session %s, reinitializing", self.session_key
                )
            session = empty_session(meals)
            self._write(session)
            return session

        if session.to_dict() != raw:
            self._write(session)
        return session

    async def init_session(
        self,
        meals: object = DEFAULT_MEALS,
        day_target: Mapping[str, object] | None = None,
        diet_style: str = "normal",
    ) -> None:
        """Start a fresh day plan with empty slots."""
        session = empty_session(
            clamp_meals(meals),
            day_target=normalize_macros(day_target or {}),
            diet_style=diet_style,
        )
        self._write(session)
        _logger.info(
            "Initialized meal plan session: meals=%s kcal=%s",
            session.meals,
            session.day_target.kcal,
        )

    async def upsert_item(
        self,
        index: object,
        food: object,
        grams: object,
        locked: bool = False,
        force: bool = False,
    ) -> None:
        """Place a food in a slot unless the slot is locked (or out of range)."""
        session = await self.load_session()
        position = to_float(index, default=math.nan)
        if math.isnan(position):
            return
        slot = round_half_up(position)
        if not 0 <= slot < session.meals:
            return
        current = session.items[slot]
        if current is not None and current.locked and not force:
            return
        item = build_item(food, grams, locked=locked)
        if item == current:
            return
        items = list(session.items)
        items[slot] = item
        self._write(replace(session, items=tuple(items)))

    async def get_totals(self) -> Macros:
        session = await self.load_session()
        return compute_totals(session.items)

    async def get_delta(self) -> PlanDelta:
        session = await self.load_session()
        totals = compute_totals(session.items)
        return PlanDelta(
            totals=totals,
            delta=compute_delta(totals, session.day_target),
            target=session.day_target,
            session=session,
        )

    async def apply_baseline_portions(
        self,
        anchor_slots: Sequence[int] | None = None,
        anchor_share: float | None = None,
        anchor_weights: Sequence[float] | None = None,
    ) -> BalanceResult:
        """Fill empty portions from the planner's per-slot calorie shares."""
        session = await self.load_session()
        if not session.items:
            return BalanceResult(applied=False, session=session)

        baselines = self.planner.build_anchor_baselines(session.items)
        shares = self.planner.plan_kcal_shares(
            session.day_target.kcal,
            session.meals,
            anchor_slots=anchor_slots,
            anchor_share=anchor_share,
            anchor_weights=anchor_weights,
        )
        items: list[MealItem | None] = []
        for item, share in zip(baselines, shares, strict=True):
            if item is None or item.locked or item.grams > 0:
                items.append(item)
                continue
            grams = self.planner.grams_for_kcal_target(item, share)
            items.append(replace(item, grams=quantize_grams(grams)))

        updated = _snapped(session, items)
        self._write(updated)
        return BalanceResult(applied=True, session=updated)

    async def apply_auto_balance(
        self,
        meal_index_or_options: object = None,
        target_override: Mapping[str, object] | None = None,
        tolerances: Mapping[str, object] | None = None,
    ) -> BalanceResult:
        """Rebalance unlocked portions toward the day target.

        Accepts either ``(meal_index, target, tolerances)`` or a single options
        mapping that may also carry ``preferIndex`` and ``target``.
        """
        options = self._resolve_options(
            meal_index_or_options, target_override, tolerances
        )
        session = await self.load_session()
        target = options.target or session.day_target
        primary_slots = resolve_primary_slots(
            session.meals, self.primary_slot_profile, options.primary_slots
        )

        outcome = auto_balance(
            self.engine, session.items, target, options, primary_slots
        )
        if outcome.reason is not None:
            _logger.info("Auto-balance skipped: %s", outcome.reason)
            return BalanceResult(
                applied=False, session=session, reason=outcome.reason
            )

        updated = _snapped(session, outcome.items)
        self._write(updated)
        _logger.info(
            "Auto-balance engine=%s applied=%s enforced=%s kcal=%.1f target=%.1f",
            self.engine.name,
            outcome.applied,
            outcome.enforced,
            compute_totals(updated.items).kcal,
            target.kcal,
        )
        return BalanceResult(applied=outcome.applied, session=updated)

    def _resolve_options(
        self,
        meal_index_or_options: object,
        target_override: Mapping[str, object] | None,
        tolerances: Mapping[str, object] | None,
    ) -> BalanceOptions:
        if isinstance(meal_index_or_options, Mapping):
            return parse_balance_options(meal_index_or_options, self.default_options)

        options = parse_balance_options(tolerances, self.default_options)
        prefer_index = None
        if meal_index_or_options is not None and not isinstance(
            meal_index_or_options, bool
        ):
            position = to_float(meal_index_or_options, default=math.nan)
            if not math.isnan(position):
                prefer_index = round_half_up(position)
        target = (
            normalize_macros(target_override)
            if isinstance(target_override, Mapping)
            else None
        )
        return replace(options, prefer_index=prefer_index, target=target)

    def _read(self) -> object | None:
        try:
            payload = self.store.read(self.session_key)
        except Exception:
            _logger.exception("Failed to read meal plan session %s", self.session_key)
            return None
        if not payload:
            return None
        try:
            return json.loads(payload)
        except ValueError:
            _logger.warning(
                "Meal plan session %s is not valid JSON", self.session_key
            )
            return None

    def _write(self, session: DaySession) -> None:
        self.store.write(self.session_key, json.dumps(session.to_dict()))


def _snapped(session: DaySession, items: Sequence[MealItem | None]) -> DaySession:
    return replace(
        session,
        items=tuple(
            replace(item, grams=quantize_grams(item.grams))
            if item is not None
            else None
            for item in items
        ),
    )
