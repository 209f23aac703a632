"""
Pytest configuration: in-memory database, AI provider stubs and HTTP client fixtures.
"""
import os

# settings are read at import time; pin test values before importing the app
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("AI_PROVIDER", "mock")

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from unittest.mock import AsyncMock

from portal.models import Base
from portal.models import application, audit, knowledge, moderation  # noqa: F401  (register tables)
from portal.models.application import Application, Document, Message
from portal.services.ai.base import AiModerationResult, AiProviderBase

load_dotenv()

ORG_ID = 1
OTHER_ORG_ID = 2
APPLICANT_ID = 10
CASEWORKER_ID = 20


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def ai_result():
    """Build an AiModerationResult"""
    def _create(flagged=False, categories=None, scores=None):
        return AiModerationResult(
            flagged=flagged,
            categories=categories or {},
            category_scores=scores if scores is not None else {"benign": 0.05},
        )
    return _create


@pytest.fixture
def stub_provider(ai_result):
    """Provider stub whose moderate_text result is set per test"""
    def _create(result=None, side_effect=None):
        provider = AsyncMock(spec=AiProviderBase)
        provider.name = "stub"
        provider.model = "stub-model"
        if side_effect is not None:
            provider.moderate_text.side_effect = side_effect
        else:
            provider.moderate_text.return_value = result or ai_result()
        return provider
    return _create


@pytest.fixture
def seed(db):
    """Insert owning rows (application / message / document) for override tests"""
    async def _application(organization_id=ORG_ID, applicant_user_id=APPLICANT_ID, status="submitted"):
        row = Application(
            organization_id=organization_id,
            applicant_user_id=applicant_user_id,
            title="Two-bed social rent",
            status=status,
        )
        db.add(row)
        await db.flush()
        return row

    async def _message(application_id, body="hello", organization_id=ORG_ID):
        row = Message(
            organization_id=organization_id,
            application_id=application_id,
            sender_user_id=APPLICANT_ID,
            body=body,
        )
        db.add(row)
        await db.flush()
        return row

    async def _document(application_id=None, organization_id=ORG_ID):
        row = Document(
            organization_id=organization_id,
            application_id=application_id,
            uploaded_by_user_id=APPLICANT_ID,
            file_name="payslip.pdf",
            mime_type="application/pdf",
            storage_key="org-1/payslip.pdf",
            file_size=2048,
        )
        db.add(row)
        await db.flush()
        return row

    class _Seed:
        application = staticmethod(_application)
        message = staticmethod(_message)
        document = staticmethod(_document)

    return _Seed


# ── HTTP ──


@pytest.fixture
def auth_headers():
    """Bearer header for a user / organization / role"""
    from portal.core.security import create_access_token

    def _create(user_id=CASEWORKER_ID, organization_id=ORG_ID, role="caseworker", correlation_id=None):
        headers = {"Authorization": f"Bearer {create_access_token(user_id, organization_id, role)}"}
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers
    return _create


@pytest_asyncio.fixture
async def api(session_factory):
    """
    AsyncClient against the app with the database and AI provider overridden.
    Yields (client, app); tests swap ``app.state.ai_provider`` as needed.
    """
    from portal.core.database import get_db
    from portal.main import app
    from portal.services.ai.mock import MockAiProvider

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.state.ai_provider = MockAiProvider()
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, app
    app.dependency_overrides.clear()
