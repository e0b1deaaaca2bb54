"""Domain models for orders, resolved locations and dispatch jobs."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Literal, Optional

VehicleClass = Literal["sedan", "minivan"]
JobStatus = Literal["pending", "processing", "completed", "failed"]


@dataclass(frozen=True, slots=True)
class CanonicalOrder:
    """Channel-agnostic order record every intake path converges to."""

    pickup_text: str
    dropoff_text: str
    client_id: str
    phone: str
    vehicle_class: VehicleClass
    scheduled_time: datetime
    options: frozenset[str] = frozenset()
    comment: Optional[str] = None
    source_channel: str = "manual"
    booking_id: Optional[str] = None
    contact_email: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ResolvedLocation:
    """Coordinates and canonical label for a free-text address."""

    lat: float
    lon: float
    label: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ResolvedLocation":
        return cls(lat=float(data["lat"]), lon=float(data["lon"]), label=str(data["label"]))


@dataclass(slots=True)
class ProviderRequest:
    """Signed wire payload for the provider's create_order call.

    Field declaration order is the protocol order: the signature is computed
    over the fields in this order and the form body is sent in this order.
    """

    address: str
    device_token: str
    city_id: str
    client_id: str
    company_id: str
    client_phone: str
    tariff_id: str
    order_time: str
    pay_type: str
    comment: str
    current_time: str
    type_request: str
    additional_options: str
    signature: str = ""

    def signed_fields(self) -> dict[str, str]:
        """All fields except the signature, in protocol order."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "signature"}

    def form_fields(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderRequest":
        return cls(**{f.name: str(data.get(f.name, "")) for f in fields(cls)})


@dataclass(frozen=True, slots=True)
class DriverInfo:
    name: str
    phone: str


@dataclass(frozen=True, slots=True)
class ProviderOrderResult:
    """Outcome of a successful dispatch, as reported by the provider."""

    order_id: str
    status: str = "created"
    driver_info: Optional[DriverInfo] = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "status": self.status,
            "driver_info": asdict(self.driver_info) if self.driver_info else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderOrderResult":
        driver = data.get("driver_info")
        return cls(
            order_id=str(data["order_id"]),
            status=str(data.get("status") or "created"),
            driver_info=DriverInfo(name=str(driver.get("name", "")), phone=str(driver.get("phone", "")))
            if isinstance(driver, dict)
            else None,
        )


@dataclass(slots=True)
class DispatchJob:
    """One queued unit of work: send this signed request to the provider."""

    job_id: str
    provider_request: ProviderRequest
    enqueued_at: str
    source_tag: str
    attempt_count: int = 0
    status: JobStatus = "pending"
    last_error: Optional[dict[str, Any]] = None
    result: Optional[ProviderOrderResult] = None
    dispatch_started_at: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.status in ("completed", "failed")

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "provider_request": self.provider_request.form_fields(),
            "enqueued_at": self.enqueued_at,
            "source_tag": self.source_tag,
            "attempt_count": self.attempt_count,
            "status": self.status,
            "last_error": self.last_error,
            "result": self.result.to_dict() if self.result else None,
            "dispatch_started_at": self.dispatch_started_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DispatchJob":
        result = data.get("result")
        return cls(
            job_id=str(data["job_id"]),
            provider_request=ProviderRequest.from_dict(data["provider_request"]),
            enqueued_at=str(data["enqueued_at"]),
            source_tag=str(data.get("source_tag", "")),
            attempt_count=int(data.get("attempt_count", 0)),
            status=data.get("status", "pending"),
            last_error=data.get("last_error"),
            result=ProviderOrderResult.from_dict(result) if result else None,
            dispatch_started_at=data.get("dispatch_started_at"),
        )


@dataclass(frozen=True, slots=True)
class JobHandle:
    """Reference returned by the queue to await a dispatch job."""

    job_id: str


@dataclass(slots=True)
class Transfer:
    """Transfer booking as exposed by the PMS."""

    id: str
    type: str
    pickup_address: str
    dropoff_address: str
    scheduled_time: str
    vehicle_type: str
    status: str = ""
    notes: Optional[str] = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict) -> "Transfer":
        return cls(
            id=str(data["id"]),
            type=str(data.get("type", "OTHER")),
            pickup_address=str(data.get("pickupAddress", "")),
            dropoff_address=str(data.get("dropoffAddress", "")),
            scheduled_time=str(data.get("scheduledTime", "")),
            vehicle_type=str(data.get("vehicleType", "")),
            status=str(data.get("status", "")),
            notes=data.get("notes"),
            raw=data,
        )
