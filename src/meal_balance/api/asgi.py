"""ASGI entrypoint for the meal plan balance API."""

from meal_balance.api.app import create_app
from meal_balance.containers import build_container

app = create_app(build_container())
