"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database engine, session factory and sessions (async, file-backed SQLite)
- A fake external accounting system on httpx.MockTransport
- Test data factories
"""
# Operator key must be set before app settings are imported
import os
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("RUN_EMBEDDED_WORKERS", "false")

import pytest
from datetime import date
from typing import Any, AsyncGenerator, Callable

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.database import get_db, init_db
from app.db.models.document import Document, DocumentStatus
from app.db.models.organization import Organization
from app.domain.services.analytics_service import AnalyticsService
from app.domain.services.document_service import DocumentService
from app.domain.services.external_client import ExternalSystemClient
from app.main import app

ADMIN_HEADERS = {"X-Admin-API-Key": "test-admin-key"}

# Workers open their own sessions, so every test gets a database file rather
# than a single shared in-memory connection.


@pytest.fixture(scope="function")
async def async_engine(tmp_path):
    """Create async test database engine"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False
    )
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(session_factory):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def reload(session: AsyncSession, model, obj_id: int):
    """Fetch a row as committed by another session"""
    result = await session.execute(
        select(model).where(model.id == obj_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ============================================================================
# Fake external accounting system
# ============================================================================

def json_response(status_code: int = 200, **body: Any) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=body)


def raise_timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


class FakeExternalSystem:
    """
    Answers with queued handlers in order, then with the default one.
    Every request is recorded.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._handlers: list[Callable[[httpx.Request], httpx.Response]] = []
        self.default = json_response(success=True, externalRef="EXT-1", status="Accepted")

    def queue(self, *handlers: Callable[[httpx.Request], httpx.Response]) -> None:
        self._handlers.extend(handlers)

    def always(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self._handlers.clear()
        self.default = handler

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._handlers.pop(0) if self._handlers else self.default
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def client(self, **kwargs: Any) -> ExternalSystemClient:
        options = {
            "base_url": "http://external.test/api",
            "username": "portal",
            "password": "secret",
            "timeout": 1.0,
            "max_attempts": 3,
            "retry_delay": 0,
            "transport": self.transport,
        }
        options.update(kwargs)
        return ExternalSystemClient(**options)


@pytest.fixture
def external_system() -> FakeExternalSystem:
    return FakeExternalSystem()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def organization_factory(db_session: AsyncSession):
    """Factory for creating test organizations"""
    async def _create_organization(
        name: str = "ООО Ромашка",
        inn: str | None = "7701234567",
    ) -> Organization:
        organization = Organization(name=name, inn=inn)
        db_session.add(organization)
        await db_session.commit()
        await db_session.refresh(organization)
        return organization

    return _create_organization


@pytest.fixture
def document_factory(db_session: AsyncSession):
    """Factory for creating test documents; InvoiceFromSupplier needs no items"""
    async def _create_document(
        organization_id: int,
        document_type: str = "InvoiceFromSupplier",
        number: str = "INV-001",
        status: DocumentStatus = DocumentStatus.DRAFT,
        counterparty_name: str | None = "ООО Поставщик",
        amount: float = 1200.0,
        data: dict[str, Any] | None = None,
    ) -> Document:
        document = await DocumentService(db_session).create_document(
            organization_id,
            document_type,
            number,
            date(2024, 3, 15),
            counterparty_name=counterparty_name,
            counterparty_inn="7709876543",
            amount=amount,
            data=data,
        )
        if status != DocumentStatus.DRAFT:
            document.status = status
            await db_session.commit()
        return document

    return _create_document


@pytest.fixture
def analytics_type_factory(db_session: AsyncSession):
    async def _create_type(code: str = "COST_CENTER", name: str = "Cost centers"):
        return await AnalyticsService(db_session).create_type(code, name)

    return _create_type


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_organization(organization_factory) -> Organization:
    return await organization_factory()


@pytest.fixture
async def sample_document(document_factory, sample_organization) -> Document:
    """A Draft document that passes payload validation"""
    return await document_factory(sample_organization.id)


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()
