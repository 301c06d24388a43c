"""FastAPI application exposing the onboarding orchestrator to the dashboard UI."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from marketing_hub.logs import configure_logging
from marketing_hub.web.deps import close_all, get_config, get_db
from marketing_hub.web.routers.jobs import router as jobs_router
from marketing_hub.web.routers.onboarding import router as onboarding_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown: logging, DB + migrations, then tear down sessions."""
    configure_logging(get_config().log_level)
    logger.info("Starting Marketing Hub orchestrator...")
    get_db()
    yield
    await close_all()
    logger.info("Marketing Hub orchestrator shut down.")


app = FastAPI(
    title="Marketing Hub",
    description="Onboarding workflow, platform ingestion and connection handshakes",
    lifespan=lifespan,
)

app.include_router(onboarding_router, prefix="/api")
app.include_router(jobs_router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok"}
