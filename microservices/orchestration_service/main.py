"""
Orchestration Service Main Application

FastAPI application for multi-channel campaign orchestration and A/B experiments.
Port: 8260
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from core.config import configure_logging, get_settings

from . import __service__, __version__
from .experiment_service import ExperimentEngine
from .factory import OrchestrationServiceFactory
from .models import (
    CampaignRequest,
    CancelResult,
    CurrentMetrics,
    ErrorResponse,
    EventRecordResult,
    ExperimentAnalysis,
    ExperimentCreateRequest,
    ExperimentDefinition,
    ExperimentEventRequest,
    HealthResponse,
    LivenessResponse,
    OrchestrationResult,
    OrchestrationStatus,
)
from .orchestration_service import OrchestrationService
from .protocols import (
    InvalidSpecError,
    NotFoundError,
    UnsupportedStrategyError,
)

settings = get_settings()
configure_logging(settings.logging)
logger = logging.getLogger(__name__)

# Service configuration
SERVICE_NAME = __service__
SERVICE_PORT = settings.service_port
SERVICE_VERSION = __version__

# Track startup time for uptime calculation
startup_time = time.time()

# Global factory instance
factory: Optional[OrchestrationServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT}")

    if factory is None:
        factory = OrchestrationServiceFactory(settings)
        await factory.initialize()

    yield

    # Cleanup
    logger.info(f"Shutting down {SERVICE_NAME}")
    await factory.close()
    factory = None


# Create FastAPI application
app = FastAPI(
    title="Orchestration Service",
    description="Multi-channel campaign orchestration, performance tracking and A/B experiments",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


@app.exception_handler(InvalidSpecError)
async def invalid_spec_handler(request: Request, exc: InvalidSpecError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="invalid_spec", detail=str(exc), field=exc.field
        ).model_dump(),
    )


@app.exception_handler(UnsupportedStrategyError)
async def unsupported_strategy_handler(request: Request, exc: UnsupportedStrategyError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="unsupported_strategy", detail=str(exc), field="strategy"
        ).model_dump(),
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(
            error=f"{exc.resource_type or 'resource'}_not_found", detail=str(exc)
        ).model_dump(),
    )


# ====================
# Dependencies
# ====================


def get_service() -> OrchestrationService:
    """Get orchestration service from factory"""
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory.service


def get_experiment_engine() -> ExperimentEngine:
    """Get experiment engine from factory"""
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory.experiment_engine


# ====================
# Health Endpoints
# ====================


@app.get("/api/v1/orchestrations/health", response_model=HealthResponse, tags=["Health"])
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    components = {}

    if factory:
        components = await factory.service.get_health()
        components["event_bus"] = "configured" if factory.event_bus else "not_configured"

    return HealthResponse(
        status="healthy" if factory else "initializing",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        components=components,
    )


@app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
async def liveness_check():
    """Liveness check endpoint"""
    return LivenessResponse(
        alive=True,
        uptime_seconds=time.time() - startup_time,
    )


# ====================
# Orchestration Endpoints
# ====================


@app.post(
    "/api/v1/orchestrations",
    response_model=OrchestrationResult,
    status_code=status.HTTP_201_CREATED,
    tags=["Orchestrations"],
)
async def create_orchestration(
    request: CampaignRequest,
    service: OrchestrationService = Depends(get_service),
):
    """Build, schedule and start tracking a multi-channel campaign"""
    return await service.orchestrate_campaign(request)


@app.get(
    "/api/v1/orchestrations/{orchestration_id}",
    response_model=OrchestrationStatus,
    tags=["Orchestrations"],
)
async def get_orchestration_status(
    orchestration_id: str,
    service: OrchestrationService = Depends(get_service),
):
    return await service.get_status(orchestration_id)


@app.post(
    "/api/v1/orchestrations/{orchestration_id}/pause",
    response_model=OrchestrationStatus,
    tags=["Orchestrations"],
)
async def pause_orchestration(
    orchestration_id: str,
    service: OrchestrationService = Depends(get_service),
):
    return await service.pause_campaign(orchestration_id)


@app.post(
    "/api/v1/orchestrations/{orchestration_id}/stop",
    response_model=OrchestrationStatus,
    tags=["Orchestrations"],
)
async def stop_orchestration(
    orchestration_id: str,
    service: OrchestrationService = Depends(get_service),
):
    return await service.stop_campaign(orchestration_id)


@app.get(
    "/api/v1/orchestrations/{orchestration_id}/metrics",
    response_model=CurrentMetrics,
    tags=["Performance"],
)
async def get_orchestration_metrics(
    orchestration_id: str,
    service: OrchestrationService = Depends(get_service),
):
    return await service.get_metrics(orchestration_id)


@app.post(
    "/api/v1/plans/{plan_id}/cancel",
    response_model=CancelResult,
    tags=["Plans"],
)
async def cancel_plan(
    plan_id: str,
    service: OrchestrationService = Depends(get_service),
):
    """Cancel armed triggers; unknown plans return found=false"""
    return await service.cancel_plan(plan_id)


# ====================
# Experiment Endpoints
# ====================


@app.post(
    "/api/v1/experiments",
    response_model=ExperimentDefinition,
    status_code=status.HTTP_201_CREATED,
    tags=["Experiments"],
)
async def create_experiment(
    request: ExperimentCreateRequest,
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    test_id = await engine.create_experiment(
        request.spec, request.control_content, request.audience
    )
    return await engine.get_experiment(test_id)


@app.get(
    "/api/v1/experiments/{test_id}",
    response_model=ExperimentDefinition,
    tags=["Experiments"],
)
async def get_experiment(
    test_id: str,
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    return await engine.get_experiment(test_id)


@app.post(
    "/api/v1/experiments/{test_id}/events",
    response_model=EventRecordResult,
    tags=["Experiments"],
)
async def record_experiment_event(
    test_id: str,
    request: ExperimentEventRequest,
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    return await engine.record_event(test_id, request.variant_id, request.event_type)


@app.get(
    "/api/v1/experiments/{test_id}/analysis",
    response_model=ExperimentAnalysis,
    tags=["Experiments"],
)
async def analyze_experiment(
    test_id: str,
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    return await engine.analyze(test_id)


@app.post(
    "/api/v1/experiments/{test_id}/complete",
    response_model=ExperimentDefinition,
    tags=["Experiments"],
)
async def complete_experiment(
    test_id: str,
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    return await engine.complete_experiment(test_id)


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.orchestration_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        log_level=settings.logging.log_level.lower(),
    )


if __name__ == "__main__":
    main()
