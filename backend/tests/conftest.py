"""
ScholarStream Backend - Test Configuration (conftest.py)
==========================================================

What:  Shared fixtures: a throwaway SQLite database, row factories, an
       in-memory payment provider and an HTTP client wired to the app.

Fixture Hierarchy (all function-scoped):
    database        Database on a tmp_path SQLite file, tables created
    ├── db_session  one AsyncSession on it
    ├── make_user / make_scholarship / make_application   row factories
    fake_provider   FakePaymentProvider (no network)
    test_client     HTTPX AsyncClient → app, with the two above injected
"""

import json
import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional

# Must be set before any scholarstream import reads the settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-secret-not-real"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "1"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from scholarstream.database import Database
from scholarstream.exceptions import NotFoundError, ValidationError
from scholarstream.models.application import ApplicationStatus
from scholarstream.models.scholarship import Scholarship
from scholarstream.models.user import Role, User

# Registers every table on Base.metadata before create_all runs
from scholarstream.models.review import Review  # noqa: F401
from scholarstream.services.identity import Actor, identity_resolver
from scholarstream.services.lifecycle import application_lifecycle
from scholarstream.services.payment_provider import (
    METADATA_APPLICATION_ID,
    METADATA_USER_ID,
    PaymentProvider,
    ProviderEvent,
    ProviderIntent,
    ProviderSession,
)
from scholarstream.services.stripe_service import get_payment_provider

VALID_SIGNATURE = "t=1,v1=valid"


# ══════════════════════════════════════════════════════════════════════════
# Fake payment provider
# ══════════════════════════════════════════════════════════════════════════

class FakePaymentProvider(PaymentProvider):
    """
    In-memory stand-in for Stripe.

    Intents start as ``requires_payment_method``; tests flip them with
    ``succeed()``. Hosted sessions get an intent once ``complete_session()``
    runs, as Stripe does when the customer pays. Webhook payloads are plain
    JSON and ``VALID_SIGNATURE`` is the only accepted signature.
    """

    def __init__(self):
        self.intents: Dict[str, ProviderIntent] = {}
        self.sessions: Dict[str, ProviderSession] = {}
        self.created_intents = []
        self.created_sessions = []
        self._counter = 0

    @property
    def configured(self) -> bool:
        return True

    @property
    def webhook_configured(self) -> bool:
        return True

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter}"

    def add_intent(self, metadata: Dict[str, str], status: str = "succeeded", amount: int = 1500) -> ProviderIntent:
        intent = ProviderIntent(
            id=self._next_id("pi"),
            status=status,
            metadata=dict(metadata),
            amount=amount,
            currency="usd",
            client_secret=None,
        )
        self.intents[intent.id] = intent
        return intent

    def intent_for(self, application_id, user_id=None, status: str = "succeeded") -> ProviderIntent:
        metadata = {METADATA_APPLICATION_ID: str(application_id)}
        if user_id is not None:
            metadata[METADATA_USER_ID] = str(user_id)
        return self.add_intent(metadata, status=status)

    def succeed(self, intent_id: str) -> ProviderIntent:
        intent = self.intents[intent_id]
        self.intents[intent_id] = ProviderIntent(
            id=intent.id,
            status="succeeded",
            metadata=intent.metadata,
            amount=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
        )
        return self.intents[intent_id]

    def complete_session(self, session_id: str) -> ProviderIntent:
        session = self.sessions[session_id]
        intent = self.add_intent(session.metadata, status="succeeded")
        self.sessions[session_id] = ProviderSession(
            id=session.id,
            url=session.url,
            metadata=session.metadata,
            payment_intent_id=intent.id,
        )
        return intent

    async def create_intent(self, amount, currency, metadata) -> ProviderIntent:
        intent_id = self._next_id("pi")
        intent = ProviderIntent(
            id=intent_id,
            status="requires_payment_method",
            metadata=dict(metadata),
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret",
        )
        self.intents[intent_id] = intent
        self.created_intents.append(intent)
        return intent

    async def retrieve_intent(self, intent_ref: str) -> ProviderIntent:
        if intent_ref not in self.intents:
            raise NotFoundError(resource="payment intent", resource_id=intent_ref)
        return self.intents[intent_ref]

    async def create_session(self, amount, currency, product_name, metadata, success_url, cancel_url):
        session_id = self._next_id("cs")
        session = ProviderSession(
            id=session_id,
            url=f"https://checkout.test/{session_id}",
            metadata=dict(metadata),
        )
        self.sessions[session_id] = session
        self.created_sessions.append(
            {
                "amount": amount,
                "currency": currency,
                "product_name": product_name,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "session": session,
            }
        )
        return session

    async def retrieve_session(self, session_ref: str) -> ProviderSession:
        if session_ref not in self.sessions:
            raise NotFoundError(resource="checkout session", resource_id=session_ref)
        return self.sessions[session_ref]

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        if signature != VALID_SIGNATURE:
            raise ValidationError("Invalid webhook signature", field="Stripe-Signature")
        try:
            body = json.loads(payload)
        except ValueError:
            raise ValidationError("Malformed webhook payload")
        data_object = body["data"]["object"]
        return ProviderEvent(id=body["id"], type=body["type"], object_id=data_object.get("id"), data=data_object)


def webhook_payload(event_type: str, object_id: Optional[str], event_id: str = "evt_test_1") -> bytes:
    return json.dumps(
        {"id": event_id, "type": event_type, "data": {"object": {"id": object_id}}}
    ).encode()


# ══════════════════════════════════════════════════════════════════════════
# Database fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'scholarstream_test.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    async with database.session() as session:
        yield session


@pytest.fixture
def make_user(database):
    """
    Usage:
        student = await make_user()
        admin = await make_user(role=Role.ADMIN)
    Returns an Actor; the row is committed.
    """

    async def factory(role: Role = Role.STUDENT, name: Optional[str] = None) -> Actor:
        suffix = uuid.uuid4().hex[:8]
        user = User(
            id=uuid.uuid4(),
            name=name or f"{role.value} {suffix}",
            email=f"{role.value.lower()}-{suffix}@example.com",
            photo_url=f"https://img.example.com/{suffix}.png",
            role=role,
        )
        async with database.session() as session:
            session.add(user)
            await session.commit()
        return Actor.from_user(user)

    return factory


@pytest.fixture
def make_scholarship(database):
    async def factory(
        application_fees: str = "10.00",
        service_charge: str = "5.00",
        name: str = "Global Excellence Scholarship",
    ) -> Scholarship:
        scholarship = Scholarship(
            id=uuid.uuid4(),
            scholarship_name=name,
            university_name="University of Testing",
            university_country="Canada",
            university_city="Toronto",
            university_world_rank=42,
            subject_category="Engineering",
            scholarship_category="Full fund",
            degree="Masters",
            tuition_fees=Decimal("20000.00"),
            application_fees=Decimal(application_fees),
            service_charge=Decimal(service_charge),
            application_deadline=datetime.now(timezone.utc) + timedelta(days=30),
            posted_user_email="admin@example.com",
        )
        async with database.session() as session:
            session.add(scholarship)
            await session.commit()
        return scholarship

    return factory


@pytest.fixture
def make_application(database, make_scholarship):
    """Creates an application through the lifecycle; optional status set directly."""

    async def factory(
        owner: Actor,
        scholarship: Optional[Scholarship] = None,
        status: ApplicationStatus = ApplicationStatus.PENDING,
    ):
        scholarship = scholarship or await make_scholarship()
        async with database.session() as session:
            application = await application_lifecycle.create_application(session, owner, scholarship.id)
            if status is not ApplicationStatus.PENDING:
                application.application_status = status
            await session.commit()
        return application

    return factory


# ══════════════════════════════════════════════════════════════════════════
# HTTP fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_provider():
    return FakePaymentProvider()


def auth_headers(actor: Actor) -> Dict[str, str]:
    return {"Authorization": f"Bearer {identity_resolver.issue(actor.id)}"}


@pytest_asyncio.fixture
async def test_client(database, fake_provider):
    """
    HTTPX AsyncClient talking to the app in-process.

    ASGITransport does not run the lifespan, so the test database is placed
    on ``app.state`` directly.
    """
    from scholarstream.main import app

    app.state.database = database
    app.dependency_overrides[get_payment_provider] = lambda: fake_provider
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
