"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from meal_balance.adapters.supabase_session_store import SupabaseSessionStore
from meal_balance.config import Settings, default_balance_options
from meal_balance.services.balance import build_engine
from meal_balance.services.meal_plan import MealPlanService
from meal_balance.services.planner import DefaultDayPlanner
from meal_balance.services.primary_slots import SLOT_PROFILES


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    meal_plan_service: MealPlanService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    if resolved_settings.primary_slot_profile not in SLOT_PROFILES:
        raise ValueError(
            f"Unknown primary slot profile {resolved_settings.primary_slot_profile!r}"
        )
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    store = SupabaseSessionStore(supabase_client, table=resolved_settings.session_table)
    meal_plan_service = MealPlanService(
        store=store,
        engine=build_engine(resolved_settings.auto_balance_engine),
        planner=DefaultDayPlanner(),
        session_key=resolved_settings.session_key,
        primary_slot_profile=resolved_settings.primary_slot_profile,
        default_options=default_balance_options(resolved_settings),
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=resolved_settings,
        meal_plan_service=meal_plan_service,
        close_resources=close_resources,
    )
