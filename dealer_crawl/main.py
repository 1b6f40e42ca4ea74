"""
Dealer Inventory Crawler - FastAPI Application
Entry points for scheduled (cron), validation and manual crawl runs,
plus read-only views of the target registry and crawl audit.
"""
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from dealer_crawl import __version__
from dealer_crawl.adapters.fetcher import build_fetcher
from dealer_crawl.adapters.ingest_client import HttpIngestClient
from dealer_crawl.adapters.store import CrawlStore
from dealer_crawl.config import config
from dealer_crawl.layers.orchestrator import CrawlMode, CrawlOrchestrator
from dealer_crawl.layers.preflight import PreflightLayer
from dealer_crawl.utils.logger import get_logger, set_trace_id


# Initialize FastAPI app
app = FastAPI(
    title="Dealer Inventory Crawler",
    description="Crawls dealer websites for vehicle listings, gates record quality and tracks source health",
    version=__version__,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = get_logger("main")


# Dependencies (overridden in tests)
@lru_cache
def get_store() -> CrawlStore:
    store = CrawlStore()
    store.create_tables()
    return store


@lru_cache
def get_orchestrator() -> CrawlOrchestrator:
    return CrawlOrchestrator(
        store=get_store(),
        fetcher=build_fetcher(),
        ingest=HttpIngestClient(),
    )


def get_preflight() -> PreflightLayer:
    return PreflightLayer(fetcher=build_fetcher())


# Request models
class CrawlRequest(BaseModel):
    """Request model for a crawl run."""
    mode: str = "cron"  # "cron", "validate" or "manual"
    slugs: Optional[List[str]] = None
    batch_size: Optional[int] = None


class PreflightRequest(BaseModel):
    """Request model for platform preflight."""
    slugs: List[str]


# API Routes
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "fetch_mode": config.FETCH_MODE,
        "ingest_configured": config.is_ingest_configured(),
    }


@app.post("/api/crawl")
async def run_crawl(
    request: CrawlRequest,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    """
    Run one crawl invocation.

    Modes:
    - cron: enabled + passed targets
    - validate: pending/failed targets under the validation run cap
    - manual: the given slugs
    """
    logger.info("crawl_request", mode=request.mode, slugs=request.slugs, batch_size=request.batch_size)

    try:
        mode = CrawlMode(request.mode)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown mode: {request.mode}")
    if mode == CrawlMode.MANUAL and not request.slugs:
        raise HTTPException(status_code=400, detail="manual mode requires slugs")

    try:
        summary = await orchestrator.run(mode, slugs=request.slugs, batch_size=request.batch_size)
        return summary.model_dump(mode="json")
    except Exception as e:
        logger.error("crawl_error", error=str(e), mode=request.mode)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/preflight")
async def run_preflight(
    request: PreflightRequest,
    store: CrawlStore = Depends(get_store),
    preflight: PreflightLayer = Depends(get_preflight),
):
    """
    Check that each target's page carries its platform's markers.

    Results are suggestions only; the registry is not changed.
    """
    trace_id = set_trace_id()
    targets = await run_in_threadpool(store.list_targets, slugs=request.slugs)
    found = {t.slug for t in targets}
    missing = [s for s in request.slugs if s not in found]

    results = []
    for target in targets:
        try:
            result = await preflight.check(target)
            results.append(result.to_dict())
        except Exception as e:
            logger.error("preflight_error", error=str(e), target=target.slug)
            results.append({"slug": target.slug, "status": "fail", "reason": f"error: {e}"})

    return {"trace_id": trace_id, "results": results, "unknown_slugs": missing}


@app.get("/api/targets")
async def list_targets(
    enabled: Optional[bool] = Query(None, description="Filter by enabled flag"),
    store: CrawlStore = Depends(get_store),
):
    """List registered targets in crawl priority order."""
    targets = await run_in_threadpool(store.list_targets, enabled=enabled)
    targets.sort(key=lambda t: t.sort_key())
    return [t.model_dump(mode="json") for t in targets]


@app.get("/api/targets/{slug}/runs")
async def list_target_runs(
    slug: str,
    days: int = Query(7, ge=1, le=90, description="Days of history"),
    store: CrawlStore = Depends(get_store),
):
    """Audit rows for a target, newest first."""
    target = await run_in_threadpool(store.get_target, slug)
    if target is None:
        raise HTTPException(status_code=404, detail=f"Unknown target: {slug}")

    end = datetime.now(timezone.utc).date()
    runs = await run_in_threadpool(store.list_runs, slug, start=end - timedelta(days=days - 1), end=end)
    return {
        "target": target.model_dump(mode="json"),
        "runs": [r.model_dump(mode="json") for r in runs],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
