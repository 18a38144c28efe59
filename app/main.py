"""FastAPI application entry point"""

from fastapi import FastAPI, BackgroundTasks
from typing import Dict, Any
import logging

from app.config.settings import settings
from app.jobs.enrichment_pass import get_orchestrator, run_enrichment_pass

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Repository enrichment and scoring service",
    version=settings.APP_VERSION,
)

# Store last run stats (in-memory, for simple deployment)
last_stats: Dict[str, Any] = {}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/api/health",
            "stats": "/api/stats",
            "enrich": "POST /api/enrich",
        }
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint for serverless platforms"""
    return {
        "status": "healthy",
        "service": "repo-enricher",
        "version": settings.APP_VERSION,
    }


@app.get("/api/stats")
async def get_stats():
    """Stats of the last completed enrichment pass"""
    return last_stats.get("enrichment", {"last_run": None, "running": get_orchestrator().is_running})


@app.post("/api/enrich")
async def trigger_enrichment(background_tasks: BackgroundTasks):
    """Trigger one enrichment pass in the background"""
    if get_orchestrator().is_running:
        return {"status": "skipped", "message": "Enrichment pass already in progress"}

    async def run_pass():
        try:
            result = await run_enrichment_pass()
            last_stats["enrichment"] = result
        except Exception as e:
            logger.error(f"Enrichment pass failed: {e}", exc_info=True)

    background_tasks.add_task(run_pass)
    return {
        "status": "started",
        "message": "Enrichment pass started in background",
    }
