"""Pydantic request/response models for order endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OrderRequest(BaseModel):
    addresses: List[str] = Field(default_factory=list, description="Pickup and drop-off addresses, in that order.")
    phone: str = Field(..., description="Passenger phone number.")
    client_id: Optional[str] = Field(default=None, description="Corporate client identifier.")
    vehicle_type: Optional[str] = Field(default="sedan", description="'sedan' or 'minivan'.")
    time: Optional[datetime] = Field(default=None, description="Pickup time; defaults to now.")
    options: List[str] = Field(default_factory=list)
    comment: Optional[str] = None
    email: Optional[str] = Field(default=None, description="Recipient of the confirmation e-mail.")


class OperaWebhookRequest(BaseModel):
    booking_id: Optional[str] = None


class SmsOrderRequest(BaseModel):
    text: str
    sender: str


class DriverInfoModel(BaseModel):
    name: str
    phone: str


class OrderResponse(BaseModel):
    success: bool = True
    order_id: str
    status: str
    driver_info: Optional[DriverInfoModel] = None
    timestamp: datetime


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    errors: Optional[List[str]] = None
    timestamp: datetime


class OrderStatusResponse(BaseModel):
    order_id: str
    status: str
    job_id: Optional[str] = None
    client_id: Optional[str] = None
    error: Optional[str] = None
    updated_at: Optional[str] = None
