"""
Status and health check endpoints.

WHAT: Health of database, engine and NLU backend; daily eligibility controls
WHY: Quick diagnostics for the operator dashboard
HOW: Database ping, dispatcher state, provider ping when an LLM is configured
"""

from fastapi import APIRouter, Depends

from ..deps import get_runtime
from ....core.config import settings
from ....core.container import Runtime
from ....core.database import ping_database
from ....llm.provider_factory import get_provider
from ....models.api_schemas import PreferencesRequest
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(runtime: Runtime = Depends(get_runtime)):
    """
    Overall application health check.

    WHAT: Aggregate database, dispatcher and NLU status with app metadata
    WHY: Ops and monitoring tools need one endpoint
    HOW: Healthy when the database answers and, for LLM mode, the model server too

    Returns:
        JSON with overall and per-component status
    """
    db_status = ping_database()

    nlu_status = {"backend": settings.LLM_PROVIDER, "available": True, "error": None}
    if settings.LLM_PROVIDER != "keyword":
        try:
            provider_status = await get_provider().ping()
            nlu_status["available"] = provider_status.available
            nlu_status["error"] = provider_status.error
        except Exception as e:
            logger.error(f"Health check LLM failed: {e}")
            nlu_status["available"] = False
            nlu_status["error"] = str(e)

    healthy = db_status["available"] and nlu_status["available"]

    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "database": {"available": db_status["available"]},
            "nlu": nlu_status,
            "engine": {
                "dispatcher_running": runtime.engine.dispatcher.running,
                "active_conversation": runtime.engine.active_slot.holder,
            },
        },
    }


@router.get("/eligibility")
async def eligibility_status(runtime: Runtime = Depends(get_runtime)):
    """Today's lunch/dinner slot status."""
    return runtime.eligibility.status()


@router.put("/eligibility/preferences")
async def update_preferences(request: PreferencesRequest, runtime: Runtime = Depends(get_runtime)):
    runtime.eligibility.set_preferences(request.category, request.sub_categories)
    if request.paused is not None:
        runtime.eligibility.set_paused(request.category, request.paused)
    return runtime.eligibility.status()
