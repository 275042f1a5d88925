"""
Centralized Test Configuration.

Every test gets a fresh application from create_app() backed by in-memory
SQLite, an in-memory Redis stand-in, a notifier whose channels only record
what they were asked to send, and a scripted payment gateway.
"""

import asyncio
import itertools

import pytest
from httpx import AsyncClient, ASGITransport

from healthpal.app.core.config import Settings
from healthpal.app.core.exceptions import PaymentGatewayError
from healthpal.app.core.jwt import create_access_token, user_claims
from healthpal.app.core.security import get_password_hash
from healthpal.app.main import create_app
from healthpal.app.models.enums import UserRole
from healthpal.app.models.user import User
from healthpal.app.services.notifier import Notifier
from healthpal.app.services.payment_gateway import PaymentConfirmation, PaymentIntent

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
WEBHOOK_SECRET = "whsec_test_secret"


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class RecordingChannel:
    """Stands in for SMTP / Twilio. `fail` raises, `delay` stalls."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.delay = 0.0

    async def _deliver(self, record):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("channel unavailable")
        self.sent.append(record)
        return {"success": True}

    async def send_email(self, to, subject, html):
        return await self._deliver({"to": to, "subject": subject, "html": html})

    async def send_sms(self, phone, message):
        return await self._deliver({"to": phone, "message": message})


class FakeGateway:
    """Scripted payment gateway: intents succeed only when told to."""

    configured = True

    def __init__(self):
        self.intents = {}
        self.confirm_calls = 0
        self._ids = itertools.count(1)

    async def create_payment_intent(self, amount, currency, metadata):
        intent_id = f"pi_test_{next(self._ids)}"
        self.intents[intent_id] = {"amount": amount, "status": "requires_payment_method", "metadata": metadata}
        return PaymentIntent(id=intent_id, client_secret=f"{intent_id}_secret", amount=amount,
                             status="requires_payment_method")

    def succeed(self, intent_id):
        self.intents[intent_id]["status"] = "succeeded"

    async def confirm_payment(self, payment_intent_id):
        self.confirm_calls += 1
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: {payment_intent_id}")
        succeeded = intent["status"] == "succeeded"
        return PaymentConfirmation(
            payment_intent_id=payment_intent_id,
            succeeded=succeeded,
            status=intent["status"],
            amount=intent["amount"],
            charge_id=f"ch_{payment_intent_id}" if succeeded else None,
            receipt_url=f"https://pay.example/receipts/{payment_intent_id}" if succeeded else None,
        )


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        debug=True,
        stripe_webhook_secret=WEBHOOK_SECRET,
        adapter_timeout_seconds=1.0,
    )


@pytest.fixture
async def app(settings):
    application = create_app(settings)
    application.state.redis = MockRedis()
    application.state.notifier = Notifier(email=RecordingChannel(), sms=RecordingChannel())
    application.state.payment_gateway = FakeGateway()

    await application.state.db.create_all()
    yield application
    await application.state.db.drop_all()
    await application.state.db.dispose()


@pytest.fixture
async def client(app):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session(app):
    async with app.state.db.session() as session:
        yield session


@pytest.fixture
def notifier(app):
    return app.state.notifier


@pytest.fixture
def gateway(app):
    return app.state.payment_gateway


@pytest.fixture
def make_user(app):
    """Insert a user directly and hand back an auth context for it."""
    counter = itertools.count(1)

    async def _make(role: UserRole, full_name: str = None, phone: str = None):
        n = next(counter)
        async with app.state.db.session() as db:
            user = User(
                full_name=full_name or f"{role.value.title()} {n}",
                email=f"{role.value}{n}@example.com",
                phone=phone,
                hashed_password=get_password_hash("password123"),
                role=role,
                is_active=True,
            )
            db.add(user)
            await db.commit()
            await db.refresh(user)

        token = create_access_token(user_claims(user.email, user.id, role.value))
        return {
            "id": user.id,
            "email": user.email,
            "full_name": user.full_name,
            "token": token,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return _make


@pytest.fixture
async def patient(make_user):
    return await make_user(UserRole.PATIENT, full_name="Layla Patient")


@pytest.fixture
async def doctor(make_user):
    return await make_user(UserRole.DOCTOR, full_name="Omar Doctor")


@pytest.fixture
async def donor(make_user):
    return await make_user(UserRole.DONOR, full_name="Sara Donor", phone="+15550001111")


@pytest.fixture
async def admin(make_user):
    return await make_user(UserRole.ADMIN, full_name="Platform Admin")


@pytest.fixture
def create_sponsorship(client):
    async def _create(owner, goal=100, treatment="Heart surgery", description="Urgent operation"):
        r = await client.post(
            "/v1/sponsorships",
            json={"treatment_type": treatment, "goal_amount": goal, "description": description},
            headers=owner["headers"],
        )
        assert r.status_code == 201, r.text
        return r.json()["sponsorshipId"]

    return _create
