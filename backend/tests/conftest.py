"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Markers, isolated settings and engine fixtures
WHY: Engine tests need fast, deterministic timers and recording collaborators
HOW: Environment set before couponbot is imported; fakes live in tests/fixtures
"""

import os
import tempfile

# Must run before couponbot.core.config builds its settings singleton
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="couponbot-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DATA_DIR}/test.db")
os.environ.setdefault("COUPONS_DIR", os.path.join(_TEST_DATA_DIR, "coupons"))
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LLM_PROVIDER", "keyword")
os.environ.setdefault("LUNCH_CUTOFF", "")
os.environ.setdefault("DINNER_CUTOFF", "")

import pytest
import pytest_asyncio

from couponbot.core.database import build_engine, build_session_factory, init_db
from couponbot.core.negotiation_engine import NegotiationEngine
from couponbot.llm.provider_factory import reset_provider
from couponbot.nlu.keyword_nlu import KeywordNLU
from couponbot.nlu.phraser import TemplatePhraser
from couponbot.services.eligibility import DailyEligibility

from fixtures.fakes import MemoryStorage, RecordingTransport, make_config


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "engine: Negotiation engine scenarios with fake collaborators"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "api: HTTP endpoint tests through the FastAPI app"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that wait on real timers"
    )
    config.addinivalue_line(
        "markers", "requires_lm_studio: Tests that require running LM Studio instance"
    )


@pytest.fixture(autouse=True)
def reset_provider_singleton():
    """
    Reset provider singleton before each test.

    WHAT: Clear provider cache between tests
    WHY: Prevent test pollution
    HOW: Call reset_provider() before and after each test
    """
    reset_provider()
    yield
    reset_provider()


@pytest.fixture
def test_config():
    return make_config()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def eligibility(test_config):
    return DailyEligibility(config=test_config, test_mode=True)


@pytest.fixture
def engine_factory(transport, storage, eligibility):
    """Build engines sharing the recording collaborators (callers shut them down)."""

    def factory(config=None, on_failed=None):
        engine = NegotiationEngine(
            transport=transport,
            nlu=KeywordNLU(),
            eligibility=eligibility,
            storage=storage,
            phraser=TemplatePhraser(),
            config=config or make_config(),
            on_failed=on_failed,
        )
        return engine

    return factory


@pytest_asyncio.fixture
async def engine(engine_factory):
    engine = engine_factory()
    yield engine
    await engine.shutdown()


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a throwaway SQLite file."""
    db_engine = build_engine(f"sqlite:///{tmp_path}/storage.db")
    init_db(bind=db_engine)
    yield build_session_factory(db_engine)
    db_engine.dispose()

