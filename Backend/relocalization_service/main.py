#!/usr/bin/env python3
"""
VOXAR Anchor Relocalization Service - Re-places persisted anchors in a live AR session
Environment mapping readiness, multi-ray placement search and deferred retries
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import router as api_router, set_manager
from .core.relocalization_manager import AnchorRelocalizationManager
from .core.scheduling import AsyncioPeriodicTask, LoopSceneContext
from .utils.config import settings
from .utils.logging_config import setup_logging
from .utils.metrics import metrics as service_metrics, setup_metrics

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Global services
relocalization_manager = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    global relocalization_manager

    # Startup
    logger.info("🚀 Starting VOXAR Anchor Relocalization Service...")
    try:
        loop = asyncio.get_running_loop()

        relocalization_manager = AnchorRelocalizationManager(
            settings=settings,
            scheduler=AsyncioPeriodicTask(loop),
            scene_context=LoopSceneContext(loop)
        )

        # Setup metrics
        setup_metrics()

        # Set services in routes module
        set_manager(relocalization_manager)

        logger.info("✅ Anchor Relocalization Service initialized successfully")
        yield

    except Exception as e:
        logger.error(f"❌ Failed to initialize Anchor Relocalization Service: {e}")
        raise
    finally:
        # Shutdown
        logger.info("🛑 Shutting down Anchor Relocalization Service...")
        if relocalization_manager:
            relocalization_manager.shutdown()
        set_manager(None)
        relocalization_manager = None


# Create FastAPI app
app = FastAPI(
    title="VOXAR Anchor Relocalization Service",
    description="Relocalizes persisted spatial anchors against the live sensed environment",
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    healthy = relocalization_manager is not None and relocalization_manager.health_check()

    if healthy:
        return {
            "status": "healthy",
            "service": "relocalization-service",
            "version": __version__,
            "timestamp": datetime.utcnow().isoformat(),
            "mapping_state": relocalization_manager.mapping.state.to_dict()
        }

    return JSONResponse(
        status_code=503,
        content={
            "status": "unhealthy",
            "service": "relocalization-service",
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# Metrics endpoint
@app.get("/metrics")
async def metrics():
    """Service metrics endpoint"""
    try:
        metrics_data = {'service': service_metrics.get_metrics()}

        if relocalization_manager:
            metrics_data['relocalization'] = relocalization_manager.get_metrics()

        return {
            "service": "relocalization-service",
            "timestamp": datetime.utcnow().isoformat(),
            "metrics": metrics_data
        }

    except Exception as e:
        logger.error(f"Metrics collection failed: {e}")
        return {"error": str(e)}


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": "VOXAR Anchor Relocalization Service",
        "description": "Re-places persisted spatial anchors once the environment is mapped",
        "version": __version__,
        "status": "operational",
        "features": [
            "Surface quality tracking",
            "Environment mapping readiness",
            "Multi-ray placement search",
            "Deferred placement retries",
            "Orientation-preserving reconciliation"
        ],
        "docs": "/docs" if settings.is_development else "disabled",
        "health": "/health",
        "metrics": "/metrics"
    }


if __name__ == "__main__":
    # Development server
    uvicorn.run(
        "relocalization_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True
    )
