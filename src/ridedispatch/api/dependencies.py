"""FastAPI dependencies resolving process-wide services from app state."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ..persistence.order_log import OrderLog
from ..services.orders.orchestrator import OrderOrchestrator


def get_orchestrator(request: Request) -> OrderOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order pipeline is not initialised; check the service configuration.",
        )
    return orchestrator


def get_order_log(request: Request) -> OrderLog:
    order_log = getattr(request.app.state, "order_log", None)
    return order_log if order_log is not None else OrderLog()
