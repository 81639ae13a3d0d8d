"""AD Assessment Backend - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.db.repository import SupabaseRepository, get_repository
from app.routers import ai_config, assessments, upload

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown."""
    logger.info("Starting AD Assessment Backend...")
    logger.info(
        f"Chunking: {settings.analysis_chunk_size} records per chunk, "
        f"{settings.max_parallel_chunks} in parallel, {settings.ai_max_retries} attempts"
    )

    try:
        repository = await get_repository()
        await repository.ping()
        logger.info("Supabase connection initialized")
    except Exception as e:
        logger.warning(f"Supabase initialization failed (service may be unavailable): {e}")

    logger.info("AD Assessment Backend started successfully")

    yield

    logger.info("AD Assessment Backend shutdown complete")


app = FastAPI(
    title="AD Assessment Backend",
    description="Active Directory security assessment - AI analysis of collector dumps",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(upload.router)
app.include_router(assessments.router)
app.include_router(ai_config.router)


@app.get("/health")
async def health_check(
    repository: SupabaseRepository = Depends(get_repository),
) -> dict:
    """
    Health check endpoint for monitoring.

    Reports whether the Supabase store answers a trivial query.
    """
    health = {"status": "healthy", "services": {}}
    try:
        await repository.ping()
        health["services"]["supabase"] = {"status": "healthy"}
    except Exception as e:
        health["services"]["supabase"] = {"status": "unavailable", "error": str(e)}
        health["status"] = "degraded"
    return health
