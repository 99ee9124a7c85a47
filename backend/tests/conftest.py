"""
Pytest fixtures for the test database, HTTP client, payment gateway and users.

Each test gets a fresh in-memory SQLite database. The payment gateway is an
in-memory fake that records every call, so tests can assert on what would
have been sent to the provider. Redis is disabled.
"""

import os

os.environ["REDIS_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_fake"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_fake"

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import AsyncGenerator, Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.exceptions import GatewayError, WebhookSignatureError
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.models.match import Match
from app.models.user import User
from app.schemas.match import AccountDetails, MatchCreate
from app.services import match_service, reservation_service, settlement_service
from app.services.gateway_factory import get_payment_gateway
from app.services.interfaces.payment_gateway import GatewayIntent, IntentSucceeded, PaymentGateway
from app.services.stripe_gateway import parse_event

TEST_DATABASE_URL = "sqlite+aiosqlite://"
MATCH_PASSWORD = "letmein123"
VALID_SIGNATURE = "t=1,v1=valid"


class FakeGateway(PaymentGateway):
    """Recording stand-in for the payment provider."""

    def __init__(self):
        self._ids = count(1)
        self.intents: dict[str, dict] = {}
        self.intent_status: dict[str, str] = {}
        self.canceled: list[str] = []
        self.transfers: dict[str, dict] = {}
        self.transfer_calls = 0
        self.accounts: list[dict] = []
        self.fail_intents = False
        self.fail_transfers = False

    async def create_payment_intent(self, amount, currency, metadata, description=""):
        if self.fail_intents:
            raise GatewayError("Payment provider error during create_payment_intent")
        intent_id = f"pi_test_{next(self._ids)}"
        self.intents[intent_id] = {
            "amount": amount,
            "currency": currency,
            "metadata": dict(metadata),
            "description": description,
        }
        self.intent_status[intent_id] = "requires_payment_method"
        return GatewayIntent(intent_id=intent_id, client_secret=f"{intent_id}_secret")

    async def retrieve_intent_status(self, intent_id):
        return self.intent_status.get(intent_id, "requires_payment_method")

    async def cancel_intent(self, intent_id):
        self.canceled.append(intent_id)
        self.intent_status[intent_id] = "canceled"

    async def create_transfer(self, amount, currency, destination, idempotency_key, metadata=None):
        self.transfer_calls += 1
        if self.fail_transfers:
            raise GatewayError("Payment provider error during create_transfer")
        if idempotency_key not in self.transfers:
            self.transfers[idempotency_key] = {
                "id": f"tr_test_{next(self._ids)}",
                "amount": amount,
                "currency": currency,
                "destination": destination,
                "metadata": dict(metadata or {}),
            }
        return self.transfers[idempotency_key]["id"]

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError("Invalid webhook signature")
        try:
            return parse_event(json.loads(payload))
        except ValueError:
            raise WebhookSignatureError("Invalid webhook payload")

    async def create_connected_account(self, email, metadata):
        account_id = f"acct_test_{next(self._ids)}"
        self.accounts.append({"id": account_id, "email": email, "metadata": dict(metadata)})
        return account_id

    async def create_onboarding_link(self, account_id):
        return f"https://connect.example.test/onboarding/{account_id}"


def stripe_event(event_type: str, intent_id: str, payment_id: Optional[int], **fields) -> dict:
    """Build a Stripe-shaped webhook payload."""
    obj = {"id": intent_id, "object": "payment_intent", "metadata": {}}
    if payment_id is not None:
        obj["metadata"]["payment_id"] = str(payment_id)
    obj.update(fields)
    return {"id": f"evt_{intent_id}_{event_type}", "type": event_type, "data": {"object": obj}}


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema per test on a private in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, gateway: FakeGateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and gateway dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _create_user(db: AsyncSession, email: str, first_name: str, last_name: str) -> User:
    user = User(email=email, first_name=first_name, last_name=last_name)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def organizer(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "organizer@example.com", "Olivia", "Organizer")


@pytest_asyncio.fixture
async def player(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "player@example.com", "Pat", "Player")


@pytest_asyncio.fixture
async def other_player(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "other@example.com", "Sam", "Striker")


def headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def organizer_headers(organizer: User) -> dict:
    return headers_for(organizer)


@pytest_asyncio.fixture
async def player_headers(player: User) -> dict:
    return headers_for(player)


def match_payload(team_id: str = "TEAM-A", spots: int = 10, total_amount: str = "100.00", **overrides) -> dict:
    payload = {
        "team_id": team_id,
        "pitch_name": "Hackney Marshes Pitch 3",
        "match_date": (datetime.now(timezone.utc) + timedelta(days=7)).isoformat(),
        "spots": spots,
        "total_amount": total_amount,
        "password": MATCH_PASSWORD,
        "account_details": {
            "account_name": "Olivia Organizer",
            "account_number": "12345678",
            "bank_name": "Test Bank",
            "sort_code": "12-34-56",
        },
        "auto_payout": False,
    }
    payload.update(overrides)
    return payload


@pytest_asyncio.fixture
async def make_match(db_session: AsyncSession, organizer: User):
    """Factory creating committed matches owned by `organizer`."""

    async def _make(
        team_id: str = "TEAM-A",
        spots: int = 10,
        total_amount: str = "100.00",
        auto_payout: bool = False,
        stripe_account_id: Optional[str] = None,
    ) -> Match:
        data = MatchCreate(
            team_id=team_id,
            pitch_name="Hackney Marshes Pitch 3",
            match_date=datetime.now(timezone.utc) + timedelta(days=7),
            spots=spots,
            total_amount=Decimal(total_amount),
            password=MATCH_PASSWORD,
            account_details=AccountDetails(
                account_name="Olivia Organizer",
                account_number="12345678",
                bank_name="Test Bank",
            ),
            auto_payout=auto_payout,
        )
        match = await match_service.create_match(db_session, organizer.id, data)
        if stripe_account_id:
            match.stripe_account_id = stripe_account_id
        await db_session.commit()
        return await match_service.get_match(db_session, match.id)

    return _make


@pytest_asyncio.fixture
async def match(make_match) -> Match:
    """An ACTIVE 10-spot match priced at 100.00 total."""
    return await make_match()


@pytest_asyncio.fixture
async def pay(db_session: AsyncSession, gateway: FakeGateway):
    """Initiate a payment for `spots` and deliver its success event. Returns the payment id."""

    async def _pay(user: User, match: Match, spots: list[int]) -> int:
        result = await reservation_service.initiate_payment(
            db_session,
            gateway,
            user_id=user.id,
            match_id=match.id,
            spot_numbers=spots,
            password=MATCH_PASSWORD,
            team_id=match.team_id,
        )
        payment = await reservation_service.load_payment(db_session, result["payment_id"])
        await settlement_service.handle_event(
            db_session,
            gateway,
            IntentSucceeded(
                event_id=f"evt_{payment.id}",
                intent_id=payment.gateway_intent_id,
                payment_id=payment.id,
                charge_id=f"ch_{payment.id}",
            ),
        )
        return payment.id

    return _pay
