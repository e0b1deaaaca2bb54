"""Order orchestration: resolve, validate, enqueue, await, fan out.

Geocoding and provider dispatch decide whether an order succeeds. CRM updates,
notifications and order-log writes only log their failures. The order log row
is opened here and closed by the dispatch queue when the job settles, so it is
updated even when the caller stopped waiting.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol
from zoneinfo import ZoneInfo

from ...config import Settings, settings as default_settings
from ...db.redis_client import get_redis_client
from ...errors import DispatchError, QueueError, TransferNotFoundError, ValidationError
from ...models.domain import CanonicalOrder, ProviderOrderResult, ResolvedLocation, Transfer
from ...persistence.order_log import OrderLog
from ..crm.opera import OperaClient
from ..dispatch.queue import DispatchQueue
from ..dispatch.rate_limiter import RedisRateLimiter
from ..dispatch.store import RedisJobStore
from ..geocoding.cache import AddressCache, RedisKeyValueStore
from ..geocoding.geocoder import YandexGeocoder
from ..notifications.email import EmailNotifier, OrderEmailDetails
from ..notifications.sms import SmsNotifier
from ..provider.client import ProviderClient
from ..provider.formatter import ProviderRequestFormatter
from ..validation.rules import normalize_phone
from ..validation.validator import OrderValidator
from . import normalizers

logger = logging.getLogger(__name__)


class AddressResolver(Protocol):
    async def resolve(self, address: str) -> ResolvedLocation:
        ...


class TransferService(Protocol):
    async def get_transfers_for_date(self, day: str) -> list[Transfer]:
        ...

    async def create_booking_transfer(self, booking_id: str, transfer_fields: dict) -> Transfer:
        ...


class EmailSender(Protocol):
    async def send_order_email(self, recipient: str, details: OrderEmailDetails) -> None:
        ...


class SmsSender(Protocol):
    async def send_sms(self, phone: str, message: str) -> None:
        ...


class OrderLogWriter(Protocol):
    async def record_enqueued(self, job_id: str, order: CanonicalOrder) -> None:
        ...

    async def record_settled(
        self, job_id: str, result: ProviderOrderResult | None = None, error: str | None = None
    ) -> None:
        ...


class OrderOrchestrator:
    def __init__(
        self,
        resolver: AddressResolver,
        validator: OrderValidator,
        formatter: ProviderRequestFormatter,
        queue: DispatchQueue,
        *,
        crm: TransferService | None = None,
        email: EmailSender | None = None,
        sms: SmsSender | None = None,
        order_log: OrderLogWriter | None = None,
        job_timeout: float | None = None,
        tz: str | None = None,
    ) -> None:
        self.resolver = resolver
        self.validator = validator
        self.formatter = formatter
        self.queue = queue
        self.crm = crm
        self.email = email
        self.sms = sms
        self.order_log = order_log
        self.job_timeout = job_timeout
        self.tz = ZoneInfo(tz or default_settings.timezone)

    async def process_order(self, order: CanonicalOrder) -> ProviderOrderResult:
        logger.info(f"Processing order for client {order.client_id} (source: {order.source_channel})")
        try:
            result = await self._dispatch(order)
        except DispatchError as exc:
            logger.error(f"Order for client {order.client_id} failed: {exc}")
            raise

        if order.booking_id and self.crm is not None:
            await self._best_effort("CRM status update", self._update_crm_status(order.booking_id, result.order_id))
        await self._send_notifications(order, result)

        logger.info(f"Order {result.order_id} processed for client {order.client_id}")
        return result

    async def _dispatch(self, order: CanonicalOrder) -> ProviderOrderResult:
        pickup, dropoff = await asyncio.gather(
            self.resolver.resolve(order.pickup_text),
            self.resolver.resolve(order.dropoff_text),
        )

        validation = self.validator.validate(pickup, dropoff, order.scheduled_time, order.phone)
        if not validation.valid:
            raise ValidationError(validation.errors)

        request = self.formatter.build(order, pickup, dropoff)
        # The log row exists before the job can settle; the queue updates it at settlement.
        job_id = uuid.uuid4().hex
        if self.order_log is not None:
            await self._best_effort("Order log write", self.order_log.record_enqueued(job_id, order))
        try:
            handle = await self.queue.enqueue(request, source_tag=order.source_channel, job_id=job_id)
        except QueueError as exc:
            if self.order_log is not None:
                await self._best_effort("Order log write", self.order_log.record_settled(job_id, error=str(exc)))
            raise
        return await self.queue.await_result(handle, self.job_timeout)

    async def process_transfer(self, transfer_id: str) -> ProviderOrderResult:
        if self.crm is None:
            raise TransferNotFoundError(transfer_id)
        logger.info(f"Processing transfer {transfer_id}")
        today = datetime.now(self.tz).date().isoformat()
        transfers = await self.crm.get_transfers_for_date(today)
        transfer = next((item for item in transfers if item.id == transfer_id), None)
        if transfer is None:
            raise TransferNotFoundError(transfer_id)
        return await self.process_order(normalizers.order_from_transfer(transfer, self.tz))

    async def process_sms(self, text: str, sender_phone: str) -> ProviderOrderResult:
        logger.info(f"Processing SMS order from {sender_phone}")
        return await self.process_order(normalizers.order_from_sms(text, sender_phone, self.tz))

    async def _update_crm_status(self, booking_id: str, order_id: str) -> None:
        now = datetime.now(self.tz)
        await self.crm.create_booking_transfer(
            booking_id,
            {
                "type": "OTHER",
                "pickupAddress": "Updated by system",
                "dropoffAddress": "Updated by system",
                "scheduledTime": now.isoformat(),
                "vehicleType": "STANDARD",
                "notes": f"Taxi order created: {order_id} ({now:%d.%m.%Y %H:%M})",
            },
        )
        logger.info(f"CRM booking {booking_id} updated with order {order_id}")

    async def _send_notifications(self, order: CanonicalOrder, result: ProviderOrderResult) -> None:
        tasks: dict[str, Awaitable[Any]] = {}
        if self.email is not None and order.contact_email:
            details = OrderEmailDetails(
                order_id=result.order_id,
                pickup_address=order.pickup_text,
                dropoff_address=order.dropoff_text,
                time=order.scheduled_time,
                driver_name=result.driver_info.name if result.driver_info else None,
                driver_phone=result.driver_info.phone if result.driver_info else None,
            )
            tasks["e-mail"] = self.email.send_order_email(order.contact_email, details)
        if self.sms is not None and order.phone:
            driver = result.driver_info.name if result.driver_info else "will be assigned"
            message = f"Your order #{result.order_id} is accepted. Driver: {driver}"
            tasks["SMS"] = self.sms.send_sms(normalize_phone(order.phone), message)
        if not tasks:
            return

        outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
        for channel, outcome in zip(tasks, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Failed to send {channel} notification for order {result.order_id}: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome

    async def _best_effort(self, label: str, operation: Awaitable[Any]) -> None:
        try:
            await operation
        except Exception as exc:
            logger.error(f"{label} failed: {exc}")


@dataclass
class OrchestratorResources:
    """Process-wide objects behind an orchestrator, with their shutdown hooks."""

    orchestrator: OrderOrchestrator
    queue: DispatchQueue
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def close(self) -> None:
        await self.queue.stop()
        for closer in self.closers:
            try:
                await closer()
            except Exception as exc:
                logger.warning(f"Error while closing resource: {exc}")


def build_orchestrator(config: Settings | None = None) -> OrchestratorResources:
    """Construct the orchestrator and its collaborators once, at process start."""
    config = config or default_settings
    order_log = OrderLog()
    formatter = ProviderRequestFormatter(
        config.provider_secret,
        tz=config.timezone,
        city_id=config.provider_city_id,
        company_id=config.provider_company_id,
        device_token=config.provider_device_token,
        pay_type=config.provider_pay_type,
        tariffs={"sedan": config.sedan_tariff_id, "minivan": config.minivan_tariff_id},
    )
    redis = get_redis_client()

    geocoder = YandexGeocoder(base_url=config.geocoder_url, api_key=config.geocoder_api_key)
    provider = ProviderClient(
        base_url=config.provider_base_url,
        app_id=config.provider_app_id,
        tenant_id=config.provider_tenant_id,
        dispatcher_id=config.provider_dispatcher_id,
        timeout=config.provider_timeout_seconds,
        max_attempts=config.provider_max_attempts,
        backoff_seconds=config.provider_backoff_seconds,
    )
    queue = DispatchQueue(
        RedisJobStore(redis, config.queue_name, lease_seconds=config.dispatch_lease_seconds),
        provider,
        RedisRateLimiter(
            redis,
            f"{config.queue_name}:starts",
            config.dispatch_rate_limit,
            config.dispatch_rate_window_seconds,
        ),
        workers=config.dispatch_workers,
        poll_interval=config.dispatch_poll_interval_seconds,
        on_settled=order_log.record_job,
    )
    closers: list[Callable[[], Awaitable[None]]] = [geocoder.close, provider.close]

    crm = None
    if config.opera_api_url and config.opera_api_token:
        crm = OperaClient(config.opera_api_url, config.opera_api_token, config.opera_timeout_seconds)
        closers.append(crm.close)
    else:
        logger.warning("CRM integration disabled - Opera PMS credentials are not configured")

    sms = None
    if config.sms_gateway_url:
        sms = SmsNotifier(config.sms_gateway_url, config.sms_api_key)
        closers.append(sms.close)
    email = None
    if config.smtp_host:
        email = EmailNotifier(
            config.smtp_host,
            config.smtp_port,
            config.smtp_user,
            config.smtp_password,
            config.smtp_sender,
            tz=config.timezone,
        )

    orchestrator = OrderOrchestrator(
        AddressCache(RedisKeyValueStore(redis), geocoder, config.geocode_cache_ttl_seconds),
        OrderValidator(tz=config.timezone),
        formatter,
        queue,
        crm=crm,
        email=email,
        sms=sms,
        order_log=order_log,
        job_timeout=config.dispatch_job_timeout_seconds,
        tz=config.timezone,
    )
    closers.append(redis.aclose)
    return OrchestratorResources(orchestrator=orchestrator, queue=queue, closers=closers)
