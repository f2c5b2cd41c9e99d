"""Pydantic models for meal plan API payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InitSessionRequest(BaseModel):
    """Body for starting a new day plan."""

    model_config = ConfigDict(populate_by_name=True)

    meals: float = 5
    day_target: dict[str, Any] = Field(default_factory=dict, alias="dayTarget")
    diet_style: str = Field(default="normal", alias="dietStyle")


class UpsertItemRequest(BaseModel):
    """Body for placing a food in a slot."""

    food: dict[str, Any]
    grams: float = 0
    locked: bool = False
    force: bool = False


class BaselineRequest(BaseModel):
    """Body for seeding baseline portions."""

    model_config = ConfigDict(populate_by_name=True)

    anchor_slots: list[int] | None = Field(default=None, alias="anchorSlots")
    anchor_share: float | None = Field(default=None, alias="anchorShare")
    anchor_weights: list[float] | None = Field(default=None, alias="anchorWeights")


class AutoBalanceRequest(BaseModel):
    """Body for an auto-balance run."""

    model_config = ConfigDict(populate_by_name=True)

    meal_index: int | None = Field(default=None, alias="mealIndex")
    target: dict[str, Any] | None = None
    tolerances: dict[str, Any] = Field(default_factory=dict)
