# app/api/__init__.py
from fastapi import FastAPI
from app.api.routers import carts, orders, payments, webhooks
from app.api.routers.health import router as health_router


def create_app() -> FastAPI:
    app = FastAPI(
        title="Tea Shop Order Service",
        version="1.0.0",
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(payments.router)
    app.include_router(webhooks.router)

    return app
