"""
CRM Vector Sync API - FastAPI backend for sync, semantic search and pattern discovery
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from services.bootstrap import VectorServices, build_services
from shared.config import DEFAULT_MIN_SIMILARITY, LOG_JSON, LOG_LEVEL
from shared.errors import NotFoundError, ProviderUnavailable
from shared.logging_setup import configure_logging
from shared.schemas.cluster import AnalysisType, PatternResult
from shared.schemas.lead import LeadFilter, Outcome
from shared.schemas.search import SemanticSearchResult
from shared.schemas.sync import SyncResult, VectorStatus

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build service clients on startup unless already provided"""
    owned = getattr(app.state, "services", None) is None
    if owned:
        configure_logging(level=LOG_LEVEL, json=LOG_JSON)
        app.state.services = build_services()
    logger.info("Starting CRM Vector Sync API")
    yield
    if owned:
        await app.state.services.aclose()
        app.state.services = None
    logger.info("Shutting down CRM Vector Sync API")


app = FastAPI(
    title="CRM Vector Sync API",
    description="CRM lead sync, semantic search and pattern discovery",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for UI access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services() -> VectorServices:
    return app.state.services


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ProviderUnavailable):
        return HTTPException(status_code=503, detail=str(e))
    logger.error("Request failed", error=str(e))
    return HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Request/Response Models
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    vector_connected: bool
    embedding_configured: bool
    crm_reachable: bool


class SyncRequest(BaseModel):
    """Request to run a sync"""
    mode: str = Field("incremental", pattern="^(full|incremental)$")
    since: Optional[datetime] = None
    wait: bool = Field(False, description="Run inline and return the SyncResult")


class SyncJobResponse(BaseModel):
    """Response when a sync was started in the background"""
    status: str
    mode: str
    message: str


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    filter: Optional[LeadFilter] = None
    limit: int = Field(10, ge=1, le=100)
    min_score: float = Field(DEFAULT_MIN_SIMILARITY, ge=0.0, le=1.0)


class PatternRequest(BaseModel):
    analysis_type: AnalysisType
    filter: Optional[LeadFilter] = None
    num_clusters: int = Field(5, ge=2, le=20)


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Check health of the API and its backends"""
    services = get_services()
    vector = await services.vector_store.health_check()
    crm_ok = await services.crm.check_health()
    healthy = vector["connected"] and services.embedder.available and crm_ok
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        vector_connected=vector["connected"],
        embedding_configured=services.embedder.available,
        crm_reachable=crm_ok,
    )


@app.get("/api/status", response_model=VectorStatus)
async def get_status():
    """Vector backend health, breaker state and sync state"""
    return await get_services().status()


@app.post("/api/sync")
async def start_sync(request: SyncRequest, background_tasks: BackgroundTasks):
    """Start a full or incremental sync"""
    services = get_services()
    if services.context.snapshot().is_syncing:
        raise HTTPException(status_code=409, detail="Sync already in progress")

    if request.mode == "full":
        job = services.orchestrator.full_sync
        args = ()
    else:
        job = services.orchestrator.incremental_sync
        args = (request.since,)

    if request.wait:
        result: SyncResult = await job(*args)
        return result

    logger.info("Starting sync job", mode=request.mode)
    background_tasks.add_task(job, *args)
    return SyncJobResponse(
        status="started",
        mode=request.mode,
        message=f"{request.mode.capitalize()} sync started",
    )


@app.post("/api/leads/{lead_id}/sync", response_model=SyncResult)
async def sync_lead(lead_id: int):
    """Re-embed a single lead"""
    try:
        return await get_services().orchestrator.sync_one(lead_id)
    except (NotFoundError, ProviderUnavailable) as e:
        raise _http_error(e)


@app.post("/api/search", response_model=SemanticSearchResult)
async def semantic_search(request: SearchRequest):
    """Natural-language search across leads"""
    try:
        return await get_services().search.search(
            request.query,
            request.filter,
            limit=request.limit,
            min_score=request.min_score,
        )
    except (NotFoundError, ProviderUnavailable) as e:
        raise _http_error(e)


@app.get("/api/leads/{lead_id}/similar", response_model=SemanticSearchResult)
async def find_similar(
    lead_id: int,
    limit: int = Query(5, ge=1, le=50),
    outcomes: Optional[List[Outcome]] = Query(None),
):
    """Leads similar to an indexed lead"""
    try:
        return await get_services().search.find_similar(lead_id, limit=limit, include_outcomes=outcomes)
    except (NotFoundError, ProviderUnavailable) as e:
        raise _http_error(e)


@app.post("/api/patterns", response_model=PatternResult)
async def discover_patterns(request: PatternRequest):
    """Cluster leads and summarize the patterns found"""
    return await get_services().patterns.discover_patterns(
        request.analysis_type,
        request.filter,
        request.num_clusters,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
