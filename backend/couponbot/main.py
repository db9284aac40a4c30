"""
FastAPI application entry point.

WHAT: Main application setup and wiring
WHY: Initialize storage, the negotiation engine and routes
HOW: Lifespan builds the runtime, resumes persisted conversations, stops timers on shutdown
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.container import build_runtime
from .core.database import init_db, close_db
from .llm.provider_factory import get_provider
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import api_router

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Startup and shutdown logic
    WHY: Conversations survive restarts; timers must not outlive the loop
    HOW: init_db -> build runtime -> start dispatcher -> resume_all; reverse on exit
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} (nlu={settings.LLM_PROVIDER})")
    init_db()

    runtime = build_runtime(settings)
    app.state.runtime = runtime
    runtime.engine.start()

    try:
        persisted = runtime.storage.load_conversations()
    except Exception as e:
        logger.error(f"Could not load persisted conversations: {e}")
        persisted = []
    await runtime.engine.resume_all(persisted)
    logger.info(f"Startup complete, active conversation: {runtime.engine.active_slot.holder or 'none'}")

    yield

    logger.info("Stopping negotiation engine")
    await runtime.engine.shutdown()
    if settings.LLM_PROVIDER != "keyword":
        await get_provider().close()
    close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(api_router)


@app.get("/")
async def root():
    """Service banner with a pointer to the health check."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "couponbot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
