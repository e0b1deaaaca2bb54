"""Order intake endpoints: direct API, PMS webhook and SMS."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from ...errors import (
    CRMError,
    ProviderError,
    QueueError,
    QueueTimeoutError,
    ResolutionError,
    TransferNotFoundError,
    ValidationError,
)
from ...models.domain import ProviderOrderResult
from ...persistence.order_log import OrderLog
from ...schemas.orders import (
    DriverInfoModel,
    ErrorResponse,
    OperaWebhookRequest,
    OrderRequest,
    OrderResponse,
    OrderStatusResponse,
    SmsOrderRequest,
)
from ...services.orders import normalizers
from ...services.orders.orchestrator import OrderOrchestrator
from ..dependencies import get_order_log, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _order_response(result: ProviderOrderResult) -> OrderResponse:
    driver = None
    if result.driver_info is not None:
        driver = DriverInfoModel(name=result.driver_info.name, phone=result.driver_info.phone)
    return OrderResponse(order_id=result.order_id, status=result.status, driver_info=driver, timestamp=_now())


def _error_response(status_code: int, message: str, errors: Optional[list[str]] = None) -> JSONResponse:
    body = ErrorResponse(error=message, errors=errors, timestamp=_now())
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def error_to_response(exc: Exception) -> JSONResponse:
    """Map pipeline failures onto HTTP statuses with a uniform error envelope."""
    if isinstance(exc, ValidationError):
        return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), exc.errors)
    if isinstance(exc, (ResolutionError, ValueError)):
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    if isinstance(exc, TransferNotFoundError):
        return _error_response(status.HTTP_404_NOT_FOUND, str(exc))
    if isinstance(exc, (ProviderError, CRMError)):
        return _error_response(status.HTTP_502_BAD_GATEWAY, str(exc))
    if isinstance(exc, QueueTimeoutError):
        return _error_response(status.HTTP_504_GATEWAY_TIMEOUT, str(exc))
    if isinstance(exc, QueueError):
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    logging.exception(f"Unexpected error while processing order: {exc}")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to process order: {exc}")


async def _run(operation: Awaitable[ProviderOrderResult]):
    try:
        result = await operation
    except Exception as exc:
        return error_to_response(exc)
    return _order_response(result)


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_200_OK,
    responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def create_order(payload: OrderRequest, orchestrator: OrderOrchestrator = Depends(get_orchestrator)):
    try:
        order = normalizers.order_from_api_payload(payload, orchestrator.tz)
    except ValueError as exc:
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    return await _run(orchestrator.process_order(order))


@router.post("/opera-webhook", response_model=OrderResponse, status_code=status.HTTP_200_OK)
async def opera_webhook(payload: OperaWebhookRequest, orchestrator: OrderOrchestrator = Depends(get_orchestrator)):
    if not payload.booking_id:
        return _error_response(status.HTTP_400_BAD_REQUEST, "Missing booking_id")
    logger.info(f"Received Opera webhook for booking {payload.booking_id}")
    return await _run(orchestrator.process_transfer(payload.booking_id))


@router.post("/sms", response_model=OrderResponse, status_code=status.HTTP_200_OK)
async def sms_order(payload: SmsOrderRequest, orchestrator: OrderOrchestrator = Depends(get_orchestrator)):
    return await _run(orchestrator.process_sms(payload.text, payload.sender))


@router.get("/orders/{order_id}", response_model=OrderStatusResponse, status_code=status.HTTP_200_OK)
async def get_order(order_id: str, order_log: OrderLog = Depends(get_order_log)) -> OrderStatusResponse:
    """Look up a dispatched order in the order log."""
    try:
        row = await order_log.find_by_order_id(order_id)
    except Exception as exc:
        logging.exception(f"Error reading order log: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to read order log: {str(exc)}",
        ) from exc
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {order_id} not found")
    return OrderStatusResponse(
        order_id=str(row.get("order_id") or order_id),
        status=row.get("status") or "unknown",
        job_id=row.get("job_id"),
        client_id=row.get("client_id"),
        error=row.get("error"),
        updated_at=row.get("updated_at"),
    )
