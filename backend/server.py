from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database

# MentorFlow - usage gating and document generation tracking
from mentorflow import __version__
from mentorflow.config import TrackingSettings
from mentorflow.routes import usage_router as mentorflow_usage_router
from mentorflow.routes import generations_router as mentorflow_generations_router
from mentorflow.services.collaborators import (
    HttpGenerationGateway,
    InProcessBroadcastChannel,
    MongoDocumentStore,
    MongoGenerationGateway,
    MongoQuotaSnapshotProvider,
)
from mentorflow.services.generation_tracker import GenerationTracker

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_generation_tracker(settings: TrackingSettings) -> GenerationTracker:
    """Wire the tracker to MongoDB, or to the remote generation service when configured."""
    if settings.generation_service_url:
        gateway = HttpGenerationGateway(
            settings.generation_service_url,
            api_key=settings.generation_service_api_key,
            timeout=settings.generation_service_timeout_seconds,
        )
        logger.info(f"Generation service: {settings.generation_service_url}")
    else:
        gateway = MongoGenerationGateway()
        logger.info("Generation service: MongoDB queue (document_generation_requests)")

    return GenerationTracker(
        quota_provider=MongoQuotaSnapshotProvider(),
        submission_service=gateway,
        status_service=gateway,
        document_service=gateway,
        channel=InProcessBroadcastChannel(),
        document_store=MongoDocumentStore(),
        settings=settings,
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting MentorFlow API")
    await database.connect()

    settings = TrackingSettings.from_env()
    if not settings.webhook_secret:
        logger.warning("GENERATION_WEBHOOK_SECRET is not set. Status webhooks are accepted unsigned.")
    logger.info(
        f"Generation tracking: poll every {settings.poll_interval_seconds}s, "
        f"timeout after {settings.timeout_seconds}s"
    )

    try:
        async with build_generation_tracker(settings) as tracker:
            app.state.generation_tracker = tracker
            yield
            # Shutdown
            logger.info("Shutting down MentorFlow API")
            app.state.generation_tracker = None
    finally:
        await database.close()

# Create FastAPI app
app = FastAPI(
    title="MentorFlow API",
    description="AI mentoring sessions and document generation with plan-based usage limits",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(mentorflow_usage_router)
app.include_router(mentorflow_generations_router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "MentorFlow",
        "version": __version__,
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check(request: Request):
    tracker = getattr(request.app.state, "generation_tracker", None)
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "active_generations": tracker.active_count() if tracker else 0,
    }

# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Request validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors], "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
