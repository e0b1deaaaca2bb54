"""Order validation against business rules, run before any provider spend."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from ...config import settings
from ...models.domain import ResolvedLocation
from . import rules

PAST_TIME_ERROR = "Order time cannot be in the past"
PHONE_ERROR = "Invalid phone number format"
TOO_CLOSE_ERROR = "Pickup and dropoff locations are too close"
HOURS_ERROR = "Time slot is outside allowed hours (05:00-23:00)"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


class OrderValidator:
    """Checks every rule independently; violations accumulate."""

    def __init__(
        self,
        tz: str | ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz or settings.timezone)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def localize(self, value: datetime) -> datetime:
        """Interpret naive datetimes as service-local time and convert to it."""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def validate(
        self,
        pickup: ResolvedLocation,
        dropoff: ResolvedLocation,
        time: datetime,
        phone: str,
    ) -> ValidationResult:
        errors: list[str] = []
        local_time = self.localize(time)
        now = self._clock()

        logger.info(f"Validating order: pickup={pickup.label!r} dropoff={dropoff.label!r} time={local_time.isoformat()}")

        if local_time < now:
            logger.warning(f"{PAST_TIME_ERROR}: time={local_time.isoformat()} now={now.isoformat()}")
            errors.append(PAST_TIME_ERROR)

        if not rules.is_valid_phone(phone):
            logger.warning(f"{PHONE_ERROR}: {phone!r}")
            errors.append(PHONE_ERROR)

        if rules.locations_too_close(pickup, dropoff):
            logger.warning(f"{TOO_CLOSE_ERROR}: {pickup} / {dropoff}")
            errors.append(TOO_CLOSE_ERROR)

        if not rules.within_operating_hours(local_time):
            logger.warning(f"{HOURS_ERROR}: {local_time.isoformat()}")
            errors.append(HOURS_ERROR)

        if errors:
            logger.error(f"Order validation failed: {errors}")
        else:
            logger.info("Order validation passed")
        return ValidationResult(valid=not errors, errors=errors)
