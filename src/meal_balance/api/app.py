"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from meal_balance.api.models import (
    AutoBalanceRequest,
    BaselineRequest,
    InitSessionRequest,
    UpsertItemRequest,
)
from meal_balance.app_logging import configure_logging
from meal_balance.containers import AppContainer
from meal_balance.domain.models import BalanceResult
from meal_balance.services.meal_plan import MealPlanService


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/session")
    async def get_session(request: Request) -> dict[str, object]:
        """Return the current day plan."""
        session = await _service(request).load_session()
        return session.to_dict()

    @app.post("/session")
    async def init_session(
        body: InitSessionRequest, request: Request
    ) -> dict[str, object]:
        """Start a new day plan and return it."""
        service = _service(request)
        await service.init_session(
            meals=body.meals, day_target=body.day_target, diet_style=body.diet_style
        )
        session = await service.load_session()
        return session.to_dict()

    @app.put("/session/items/{index}")
    async def upsert_item(
        index: int, body: UpsertItemRequest, request: Request
    ) -> dict[str, object]:
        """Place a food in a slot and return the resulting plan."""
        service = _service(request)
        await service.upsert_item(
            index, body.food, body.grams, locked=body.locked, force=body.force
        )
        session = await service.load_session()
        return session.to_dict()

    @app.get("/session/totals")
    async def get_totals(request: Request) -> dict[str, float]:
        """Return the day's aggregated macros."""
        totals = await _service(request).get_totals()
        return totals.to_dict()

    @app.get("/session/delta")
    async def get_delta(request: Request) -> dict[str, object]:
        """Return totals, target and their signed difference."""
        plan_delta = await _service(request).get_delta()
        return {
            "totals": plan_delta.totals.to_dict(),
            "delta": plan_delta.delta.to_dict(),
            "target": plan_delta.target.to_dict(),
            "session": plan_delta.session.to_dict(),
        }

    @app.post("/session/baseline")
    async def apply_baseline(
        body: BaselineRequest, request: Request
    ) -> dict[str, object]:
        """Seed empty portions from per-slot calorie shares."""
        result = await _service(request).apply_baseline_portions(
            anchor_slots=body.anchor_slots,
            anchor_share=body.anchor_share,
            anchor_weights=body.anchor_weights,
        )
        return _format_result(result)

    @app.post("/session/auto-balance")
    async def apply_auto_balance(
        body: AutoBalanceRequest, request: Request
    ) -> dict[str, object]:
        """Rebalance unlocked portions toward the day target."""
        result = await _service(request).apply_auto_balance(
            body.meal_index, body.target, body.tolerances
        )
        return _format_result(result)

    return app


def _service(request: Request) -> MealPlanService:
    container: AppContainer = request.app.state.container
    return container.meal_plan_service


def _format_result(result: BalanceResult) -> dict[str, object]:
    payload: dict[str, object] = {
        "applied": result.applied,
        "session": result.session.to_dict(),
    }
    if result.reason:
        payload["summary"] = {"reason": result.reason}
    return payload
