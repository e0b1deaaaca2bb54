from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from fastapi.testclient import TestClient

from ridedispatch.api.dependencies import get_order_log
from ridedispatch.errors import ProviderError, QueueTimeoutError, ResolutionError, ValidationError
from ridedispatch.main import create_app
from ridedispatch.models.domain import DriverInfo, ProviderOrderResult
from ridedispatch.services.dispatch.queue import DispatchQueue
from ridedispatch.services.dispatch.rate_limiter import SlidingWindowRateLimiter
from ridedispatch.services.dispatch.store import InMemoryJobStore
from ridedispatch.services.orders.orchestrator import OrchestratorResources


class StubDispatcher:
    async def create_order(self, request):
        raise AssertionError("not expected to dispatch in API tests")


class StubOrchestrator:
    def __init__(self, result=None, error=None):
        self.tz = ZoneInfo("Europe/Moscow")
        self.result = result or ProviderOrderResult(order_id="42", driver_info=DriverInfo("Ivan", "79000000000"))
        self.error = error
        self.orders = []
        self.transfers = []
        self.sms = []

    async def _outcome(self):
        if self.error is not None:
            raise self.error
        return self.result

    async def process_order(self, order):
        self.orders.append(order)
        return await self._outcome()

    async def process_transfer(self, transfer_id):
        self.transfers.append(transfer_id)
        return await self._outcome()

    async def process_sms(self, text, sender):
        self.sms.append((text, sender))
        return await self._outcome()


class StubOrderLog:
    def __init__(self, rows):
        self.rows = rows

    async def find_by_order_id(self, order_id):
        return self.rows.get(order_id)


def _client(orchestrator=None) -> TestClient:
    queue = DispatchQueue(InMemoryJobStore(), StubDispatcher(), SlidingWindowRateLimiter(50, 60.0), claim_timeout=0.05)
    resources = OrchestratorResources(orchestrator=orchestrator or StubOrchestrator(), queue=queue)
    return TestClient(create_app(resources=resources))


ORDER = {"addresses": ["Красная площадь", "Шереметьево"], "phone": "+79123456789", "client_id": "corp-1"}


def test_root_banner():
    with _client() as client:
        response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"


def test_health():
    with _client() as client:
        assert client.get("/api/health").json() == {"status": "ok"}
        queue_status = client.get("/api/health/queue").json()

    assert queue_status["running"] is True
    assert queue_status["pending"] == 0


def test_create_order_success():
    orchestrator = StubOrchestrator()
    with _client(orchestrator) as client:
        response = client.post("/api/orders", json=ORDER)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["order_id"] == "42"
    assert body["driver_info"] == {"name": "Ivan", "phone": "79000000000"}
    assert orchestrator.orders[0].client_id == "corp-1"


def test_create_order_rejects_single_address():
    with _client() as client:
        response = client.post("/api/orders", json={"addresses": ["only"], "phone": "+79123456789"})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_error_mapping():
    cases = [
        (ValidationError(["Invalid phone number format"]), 422),
        (ResolutionError("Атлантида", "no matching location found"), 400),
        (ProviderError("bad tariff", status_code=400), 502),
        (QueueTimeoutError("job-1", 120.0), 504),
        (RuntimeError("boom"), 500),
    ]
    for error, expected in cases:
        with _client(StubOrchestrator(error=error)) as client:
            response = client.post("/api/orders", json=ORDER)
        assert response.status_code == expected, error
        assert response.json()["success"] is False

    with _client(StubOrchestrator(error=ValidationError(["a", "b"]))) as client:
        body = client.post("/api/orders", json=ORDER).json()
    assert body["errors"] == ["a", "b"]


def test_opera_webhook():
    orchestrator = StubOrchestrator()
    with _client(orchestrator) as client:
        missing = client.post("/api/opera-webhook", json={})
        response = client.post("/api/opera-webhook", json={"booking_id": "T-1"})

    assert missing.status_code == 400
    assert response.status_code == 200
    assert orchestrator.transfers == ["T-1"]


def test_sms_endpoint():
    orchestrator = StubOrchestrator()
    with _client(orchestrator) as client:
        response = client.post("/api/sms", json={"text": "Арбат 10 > Внуково", "sender": "79990000000"})

    assert response.status_code == 200
    assert orchestrator.sms == [("Арбат 10 > Внуково", "79990000000")]


def test_get_order_status():
    rows = {
        "42": {
            "order_id": "42",
            "status": "completed",
            "job_id": "job-1",
            "client_id": "corp-1",
            "updated_at": datetime(2025, 6, 1, tzinfo=timezone.utc).isoformat(),
        }
    }
    with _client() as client:
        client.app.dependency_overrides[get_order_log] = lambda: StubOrderLog(rows)
        found = client.get("/api/orders/42")
        missing = client.get("/api/orders/404")

    assert found.status_code == 200
    assert found.json()["status"] == "completed"
    assert missing.status_code == 404


def test_routes_unavailable_without_orchestrator(monkeypatch):
    from ridedispatch import main

    def failing_build(config):
        raise ValueError("Provider signing secret is not configured.")

    monkeypatch.setattr(main, "build_orchestrator", failing_build)
    with TestClient(main.create_app()) as client:
        response = client.post("/api/orders", json=ORDER)

    assert response.status_code == 503
