"""
Shared fixtures for AI gateway tests.

Each test gets its own SQLite database file, a frozen clock, a sleep that
only records delays, and a scripted fake LLM provider.
"""
from datetime import datetime

import pytest
import pytest_asyncio

from app.db.init_db import init_db
from app.db.session import create_engine, create_session_factory
from app.llm.gateway import ModelInvocationGateway
from app.services.ai_gateway import build_ai_gateway
from app.services.quota_ledger import QuotaLedger
from app.services.usage_audit import UsageAuditLog

from gateway_fakes import TEST_MODEL, FakeProvider, FakeVectorSearch, FrozenClock, RecordingSleep


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 14, 12, 0, 0))


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def vector_search():
    return FakeVectorSearch()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh database per test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def ledger(session_factory, clock):
    return QuotaLedger(session_factory, clock=clock, model=TEST_MODEL)


@pytest.fixture
def audit(session_factory, clock):
    return UsageAuditLog(session_factory, clock=clock)


@pytest.fixture
def model_gateway(provider, vector_search, sleep, clock):
    return ModelInvocationGateway(
        provider,
        vector_search,
        model=TEST_MODEL,
        max_retries=3,
        base_delay=1.0,
        timeout=5.0,
        sleep=sleep,
        clock=clock,
    )


@pytest.fixture
def ai_gateway(session_factory, provider, vector_search, sleep, clock):
    return build_ai_gateway(
        session_factory,
        provider=provider,
        vector_search=vector_search,
        clock=clock,
        sleep=sleep,
        model=TEST_MODEL,
        max_retries=3,
        base_delay=1.0,
        timeout=5.0,
    )
