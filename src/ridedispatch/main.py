"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, orders
from .config import settings
from .services.orders.orchestrator import OrchestratorResources, build_orchestrator

logger = logging.getLogger(__name__)


def _lifespan(resources: Optional[OrchestratorResources]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = resources
        if active is None:
            try:
                active = build_orchestrator(settings)
            except Exception as exc:
                logger.error(f"Failed to initialise order pipeline: {exc}")
        if active is not None:
            app.state.orchestrator = active.orchestrator
            app.state.queue = active.queue
            try:
                await active.queue.start()
            except Exception as exc:
                logger.error(f"Failed to start dispatch workers: {exc}")
        try:
            yield
        finally:
            if active is not None:
                await active.close()
            app.state.orchestrator = None
            app.state.queue = None

    return lifespan


def create_app(resources: Optional[OrchestratorResources] = None) -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title=settings.app_name, root_path="", lifespan=_lifespan(resources))
    app.state.orchestrator = None
    app.state.queue = None
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Root endpoint for diagnostics
    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "endpoints": {
                "orders": f"POST {settings.api_prefix}/orders",
                "opera_webhook": f"POST {settings.api_prefix}/opera-webhook",
                "sms": f"POST {settings.api_prefix}/sms",
                "order_status": f"GET {settings.api_prefix}/orders/{{order_id}}",
            },
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(orders.router, prefix=settings.api_prefix)
    return app


app = create_app()
