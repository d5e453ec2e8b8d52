"""Pytest configuration and fixtures for API and service tests."""
import json
import os
import tempfile

# Set test env BEFORE any imports that use config
_tmpdir = tempfile.mkdtemp(prefix="robomania-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["INITIAL_ADMIN_PASSWORD"] = "testpass123"
os.environ["INITIAL_ADMIN_USERNAME"] = "admin"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["APP_URL"] = "http://test"
os.environ["RESEND_API_KEY"] = ""

import pytest
from httpx import ASGITransport, AsyncClient

from robomania.errors import CallbackAuthError, GatewayError
from robomania.models import Base
from robomania.models.base import async_session_factory, engine
from robomania.services.gateways import (
    PHONEPE,
    RAZORPAY,
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
    CallbackPayload,
    OrderResult,
    OrderStatus,
    PaymentGateway,
)
from robomania.services.notifications import NotificationDispatcher
from web.api.main import app
from web.auth import create_participant_token

RAZORPAY_TEST_SECRET = "rzp_test_secret"


class FakeGateway(PaymentGateway):
    """In-memory gateway. Tests set the state each order reports."""

    def __init__(self, name: str, signing_secret: str = None):
        super().__init__()
        self.name = name
        self._signing_secret = signing_secret
        self.states: dict[str, OrderStatus] = {}
        self.created: list[dict] = []
        self.status_calls = 0
        self.fail_create = False
        self.fail_status = False

    @property
    def configured(self) -> bool:
        return True

    @property
    def signing_secret(self):
        return self._signing_secret

    def callback_credentials(self):
        return "hook", "secret"

    async def create_order(self, amount, merchant_order_id, redirect_url, expire_after=1800, description=""):
        if self.fail_create:
            raise GatewayError(self.name, "Service unavailable", 503)
        self.created.append({"amount": amount, "merchant_order_id": merchant_order_id, "redirect_url": redirect_url})
        gateway_order_id = f"order_{merchant_order_id[-8:]}" if self.name == RAZORPAY else merchant_order_id
        return OrderResult(
            gateway=self.name,
            merchant_order_id=merchant_order_id,
            gateway_order_id=gateway_order_id,
            checkout_token="checkout-token" if self.name == PHONEPE else None,
            key_id="rzp_test_key" if self.name == RAZORPAY else None,
            redirect_url=redirect_url,
        )

    async def get_order_status(self, merchant_order_id, detailed=True):
        self.status_calls += 1
        if self.fail_status:
            raise GatewayError(self.name, "Gateway timeout", 504)
        return self.states.get(merchant_order_id, OrderStatus(state=STATE_PENDING))

    def validate_callback(self, username, password, auth_header, raw_body):
        if auth_header != f"{username}:{password}":
            raise CallbackAuthError("bad callback credentials")
        body = json.loads(raw_body)
        return CallbackPayload(
            event=body.get("event"),
            merchant_order_id=body.get("merchantOrderId"),
            gateway_order_id=body.get("orderId"),
            raw=body,
        )

    def complete(self, merchant_order_id, transaction_id="TXN123", amount=0):
        self.states[merchant_order_id] = OrderStatus(
            state=STATE_COMPLETED, amount=amount, transaction_id=transaction_id, payment_mode="UPI"
        )

    def fail(self, merchant_order_id, error_code="PAYMENT_DECLINED"):
        self.states[merchant_order_id] = OrderStatus(state=STATE_FAILED, error_code=error_code)


class RecordingSender:
    """Email sender that keeps what it was asked to send."""

    def __init__(self):
        self.sent: list[dict] = []
        self.failures_left = 0

    async def __call__(self, to, subject, html):
        if self.failures_left:
            self.failures_left -= 1
            raise RuntimeError("provider unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def _init_db():
    """Fresh tables for every test (ASGI lifespan doesn't run with httpx)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def session():
    async with async_session_factory() as s:
        yield s


@pytest.fixture
def gateways():
    """Fake gateways installed on the app for the duration of a test."""
    fakes = {
        RAZORPAY: FakeGateway(RAZORPAY, signing_secret=RAZORPAY_TEST_SECRET),
        PHONEPE: FakeGateway(PHONEPE),
    }
    original = app.state.gateways
    app.state.gateways = fakes
    yield fakes
    app.state.gateways = original


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(sender):
    """Dispatcher with a recording sender. Nothing is delivered until the test drains it."""
    dispatcher = NotificationDispatcher(sender=sender, backoff_seconds=0)
    original = app.state.notifier
    app.state.notifier = dispatcher
    yield dispatcher
    app.state.notifier = original


@pytest.fixture
async def client(gateways, notifier):
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def participant_headers():
    """Authorization headers for a signed-in participant."""

    def _headers(email="lead@x.com"):
        return {"Authorization": f"Bearer {create_participant_token(email)}"}

    return _headers


@pytest.fixture
async def auth_headers(client):
    """Login as admin and return Authorization headers for protected endpoints."""
    r = await client.post(
        "/api/auth/login",
        json={"username": "admin", "password": "testpass123"},
    )
    assert r.status_code == 200, f"Login failed: {r.text}"
    token = r.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
