"""
Runtime wiring.

WHAT: Builds the engine and its collaborators from settings
WHY: main.py and the tests assemble the same object graph
HOW: Plain factory functions returning a Runtime bundle
"""

from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from .config import Settings, settings as default_settings
from .database import SessionLocal
from .negotiation_engine import NegotiationEngine
from ..llm.provider_factory import get_provider
from ..nlu.keyword_nlu import KeywordNLU
from ..nlu.llm_nlu import LLMNLU
from ..nlu.phraser import TemplatePhraser
from ..services.eligibility import DailyEligibility
from ..services.interfaces import NLU
from ..services.outbox_transport import OutboxTransport
from ..services.storage import SqlStorage
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Everything the HTTP layer needs to reach."""
    engine: NegotiationEngine
    transport: OutboxTransport
    eligibility: DailyEligibility
    storage: SqlStorage


def build_nlu(config: Settings = default_settings) -> NLU:
    """Keyword rules, optionally backed by the configured LLM."""
    keyword = KeywordNLU()
    if config.LLM_PROVIDER == "keyword":
        return keyword
    return LLMNLU(get_provider(), fallback=keyword)


def build_runtime(
    config: Settings = default_settings,
    session_factory: sessionmaker = SessionLocal,
    test_mode: bool = False,
) -> Runtime:
    transport = OutboxTransport()
    eligibility = DailyEligibility(config=config, test_mode=test_mode)
    storage = SqlStorage(session_factory=session_factory, coupons_dir=config.COUPONS_DIR)
    engine = NegotiationEngine(
        transport=transport,
        nlu=build_nlu(config),
        eligibility=eligibility,
        storage=storage,
        phraser=TemplatePhraser(),
        config=config,
        on_failed=eligibility.record_failure,
    )
    logger.info(f"Runtime built (nlu={config.LLM_PROVIDER}, test_mode={test_mode})")
    return Runtime(engine=engine, transport=transport, eligibility=eligibility, storage=storage)
