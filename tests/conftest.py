import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from appointments.database import Database, load_sample_data
from appointments.notifications import NotificationDispatcher
from appointments.notifier import SmsClient
from appointments.reconciler import BookingReconciler
from appointments.worker import NotificationQueue

SHOP = "bysisters.myshopify.com"


class Clock:
    """A clock the tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class SmsGateway:
    """Stands in for the SMS provider behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.deleted: list[str] = []
        self.fail_with: int | None = None
        self.timeout = False

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.timeout:
            raise httpx.ReadTimeout("provider too slow", request=request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"status": "error"})

        if request.method == "POST" and request.url.path.endswith("/sms/send"):
            self.sent.append(json.loads(request.content))
            return httpx.Response(
                200, json={"status": "queued", "result": {"batchId": f"batch-{len(self.sent)}"}}
            )
        if request.method == "DELETE" and request.url.path.endswith("/sms/delete"):
            self.deleted.append(request.url.params["batchId"])
            return httpx.Response(200, json={"status": "deleted"})
        return httpx.Response(404)


@pytest.fixture
def shop() -> str:
    return SHOP


@pytest.fixture
def db() -> Database:
    database = Database()
    load_sample_data(database)
    return database


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2030, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def gateway() -> SmsGateway:
    return SmsGateway()


@pytest_asyncio.fixture
async def sms_client(gateway: SmsGateway):
    client = SmsClient(
        base_url="https://sms.test/v1",
        token="test-token",
        sender_name="BySisters",
        transport=httpx.MockTransport(gateway.handle),
    )
    yield client
    await client.aclose()


@pytest.fixture
def dispatcher(db: Database, sms_client: SmsClient, clock: Clock) -> NotificationDispatcher:
    return NotificationDispatcher(
        db, sms_client, cooldown_minutes=15, time_zone="Europe/Paris", language="da", clock=clock
    )


@pytest.fixture
def queue() -> NotificationQueue:
    return NotificationQueue()


@pytest.fixture
def reconciler(
    db: Database, queue: NotificationQueue, dispatcher: NotificationDispatcher
) -> BookingReconciler:
    return BookingReconciler(db, queue, dispatcher)
