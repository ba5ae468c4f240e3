"""
Health Router for the Photo Pairing Engine
System health checks and status endpoints
"""

import logging
import os
from datetime import datetime

from fastapi import APIRouter, Depends

from photo_pairing import __version__
from photo_pairing.models.schemas import HealthResponse
from photo_pairing.services.config import model_assist_configured
from photo_pairing.services.pipeline import PairingPipeline, get_pairing_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Pairing itself has no external dependencies, so the service is healthy
    whenever it responds. Model assist is reported separately because
    ambiguous fronts are declined while it is unconfigured.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        model_assist_configured=model_assist_configured(),
        timestamp=datetime.utcnow()
    )


@router.get("/health/live")
async def liveness_check():
    """
    Kubernetes liveness check endpoint.

    Returns 200 if the service is alive.
    """
    return {"alive": True, "timestamp": datetime.utcnow().isoformat()}


@router.get("/health/detailed")
async def detailed_health(
    pipeline: PairingPipeline = Depends(get_pairing_pipeline)
):
    """
    Detailed health check with component status.

    Returns the active thresholds and model-assist settings.
    """
    components = {}

    components["pairing"] = {
        "status": "healthy",
        "thresholds": pipeline.thresholds.model_dump(by_alias=True)
    }

    settings = pipeline.settings
    components["model_assist"] = {
        "status": "healthy" if pipeline.disambiguator is not None else "not_configured",
        "model": settings.model,
        "enabled": settings.model_assist_enabled,
        "tiebreak_disabled": settings.disable_tiebreak,
        "timeout_s": settings.model_timeout_s,
        "max_requests": settings.max_model_requests
    }

    components["environment"] = {
        "python_env": os.environ.get("PYTHON_ENV", "development"),
        "port": os.environ.get("PORT", "8000"),
        "has_model_key": model_assist_configured()
    }

    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
        "components": components
    }
