"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

from meal_balance.services.balance import BalanceOptions

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    session_table: str = "meal_plan_sessions"
    session_key: str = "meal_plan_session"
    auto_balance_engine: str = "guided"
    primary_slot_profile: str = "production"
    default_fat_floor: float = 40
    default_protein_tol: float = 8
    default_carb_tol: float = 15
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def default_balance_options(settings: Settings) -> BalanceOptions:
    """Build the tolerance defaults used when a caller omits them."""
    return BalanceOptions(
        protein_tol=settings.default_protein_tol,
        carb_tol=settings.default_carb_tol,
        fat_floor=settings.default_fat_floor,
    )
