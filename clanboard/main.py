"""
Clanboard cache core - FastAPI service shell
Health/status endpoints plus the background refresh scheduler lifecycle
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from clanboard.db import init_db
from clanboard.scheduler import RefreshScheduler
from clanboard.service import ClanService, get_clan_service
from config.settings import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Clanboard"
APP_STAGE = "Beta"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    service = get_clan_service()
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = RefreshScheduler.from_service(service, settings)
        scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
        service.close()


app = FastAPI(
    title=f"{APP_NAME} ({APP_STAGE})",
    description="Cached, merged clan and player data for Clash of Clans and Clash Royale",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "mode": "cached"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "stage": APP_STAGE,
        "full": f"{APP_NAME} {APP_VERSION} ({APP_STAGE})"
    }


@app.get("/status")
def status(service: ClanService = Depends(get_clan_service)):
    """Per-probe availability and latency over the retention window."""
    try:
        probes = service.latency_status()
    except SQLAlchemyError as e:
        logger.error(f"Status query failed: {e}")
        raise HTTPException(status_code=500, detail="Internal Database Error")
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "probes": probes,
        "jobs": scheduler.status() if scheduler is not None else {},
    }


@app.get("/status/history")
def status_history(service: ClanService = Depends(get_clan_service)):
    """Raw latency samples within the retention window, oldest first."""
    try:
        return service.latency_history()
    except SQLAlchemyError as e:
        logger.error(f"History query failed: {e}")
        raise HTTPException(status_code=500, detail="Internal Database Error")


@app.get("/sideclans")
def side_clans(service: ClanService = Depends(get_clan_service)):
    """Side clan registry with league history."""
    try:
        return service.side_clans()
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching side clans: {e}")
        raise HTTPException(status_code=500, detail="Internal Database Error")


@app.get("/cache/stats")
def cache_stats(service: ClanService = Depends(get_clan_service)):
    """Get cache statistics."""
    return service.cache_stats()
