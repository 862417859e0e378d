"""
Shared test fixtures — per-test SQLite database, staff users, fake
email / payment-link collaborators, FastAPI test client.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from agency.database import Database, get_db
from agency.dependencies import get_email_service, get_payment_links
from agency.main import app
from agency.models.budget import Budget
from agency.models.user import PROJECT_MANAGER, ROLE_ADMIN, ROLE_TEAM_MEMBER, User
from agency.routes.payments import get_webhook_secret
from agency.services.email_service import EmailService
from agency.services.payment_links import PaymentLinkClient

ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}
MANAGER_HEADERS = {"Authorization": "Bearer manager-token"}
MEMBER_HEADERS = {"Authorization": "Bearer member-token"}


# ── Test Database (SQLite file per test) ────────────────

@pytest_asyncio.fixture()
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'agency.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture()
async def db_session(database):
    async with database.session_factory() as session:
        yield session


async def reload(session, model, ident):
    """Re-read a row so changes committed by another session are visible."""
    return await session.get(model, ident, populate_existing=True)


# ── Fake collaborators ──────────────────────────────────

@pytest.fixture
def email_service():
    service = MagicMock(spec=EmailService)
    service.company_name = "Agency"
    service.send_email = AsyncMock(return_value={"success": True, "message": "Email sent"})
    return service


@pytest.fixture
def payment_links():
    links = MagicMock(spec=PaymentLinkClient)
    links.create_link = AsyncMock(
        return_value={"id": "plink_test_123", "url": "https://buy.stripe.com/test_123"}
    )
    return links


@pytest_asyncio.fixture()
async def client(database, email_service, payment_links):
    """FastAPI test client with test DB and fake collaborators injected."""

    async def _override_get_db():
        async with database.session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_payment_links] = lambda: payment_links
    app.dependency_overrides[get_webhook_secret] = lambda: ""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Staff users ─────────────────────────────────────────

@pytest_asyncio.fixture()
async def admin(db_session):
    user = User(name="Ana Admin", email="admin@agency.test", role=ROLE_ADMIN, api_token="admin-token")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture()
async def manager(db_session):
    user = User(
        name="Paulo Manager",
        email="pm@agency.test",
        role=ROLE_TEAM_MEMBER,
        team_role=PROJECT_MANAGER,
        api_token="manager-token",
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture()
async def member(db_session):
    user = User(
        name="Dani Designer",
        email="designer@agency.test",
        role=ROLE_TEAM_MEMBER,
        team_role="Designer",
        api_token="member-token",
    )
    db_session.add(user)
    await db_session.commit()
    return user


# ── Sample budgets ──────────────────────────────────────

SAMPLE_BUDGET = {
    "client_name": "Maria Silva Santos",
    "client_email": "x@y.com",
    "client_phone": "11987654321",
    "company": "Santos Doces",
    "project_type": "Website",
    "complexity": "medio",
    "timeline": "urgente",
    "features": ["blog", "contact form"],
    "details": "Institutional site with blog",
    "estimated_min": Decimal("6000"),
    "estimated_max": Decimal("9000"),
    "final_value": Decimal("8000"),
    "status": "accepted",
}


@pytest.fixture
def make_budget(db_session):
    async def _make(**overrides) -> Budget:
        data = dict(SAMPLE_BUDGET)
        data["features"] = list(SAMPLE_BUDGET["features"])
        data.update(overrides)
        budget = Budget(**data)
        db_session.add(budget)
        await db_session.commit()
        return budget

    return _make
