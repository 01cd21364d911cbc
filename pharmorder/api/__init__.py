# pharmorder/api/__init__.py
from fastapi import FastAPI

from pharmorder.api.routers import carts, discounts, health, inventory, orders, payments

# rejestracja wszystkich modeli przed konfiguracją mapperów
import pharmorder.data.models  # noqa: F401


def create_app() -> FastAPI:
    app = FastAPI(
        title="PharmOrder Service",
        version="1.0.0",
    )

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(payments.router)
    app.include_router(discounts.router)
    app.include_router(inventory.router)

    return app
