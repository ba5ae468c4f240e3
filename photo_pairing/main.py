"""
Photo Pairing Engine API
FastAPI Backend Entry Point
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from photo_pairing import __version__
from photo_pairing.routers.health import router as health_router
from photo_pairing.routers.pairing import router as pairing_router
from photo_pairing.services.config import model_assist_configured
from photo_pairing.services.invariants import PairingInvariantError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info("PHOTO PAIRING ENGINE API")
    logger.info("=" * 60)
    logger.info(f"Environment: {os.environ.get('PYTHON_ENV', 'development')}")
    logger.info(f"Port: {os.environ.get('PORT', '8000')}")

    if not model_assist_configured():
        logger.warning(
            "No ANTHROPIC_API_KEY/OPENAI_API_KEY set - ambiguous fronts will be declined"
        )
    else:
        logger.info("Model assist key configured")

    logger.info("API started successfully")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down API...")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Photo Pairing Engine API",
    description="""
    ## Photo Pairing Engine

    Groups product photos into front/back products from pre-extracted
    image features (brand, product tokens, variant tokens).

    ### Features
    - Deterministic candidate scoring and gap-enforced auto-pairing
    - Optional model-assisted tie-breaking for ambiguous fronts
    - Singleton recovery (solo products, extras)
    - Per-run metrics and audit trail
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)


# =============================================================================
# CORS Middleware
# =============================================================================

cors_origins_env = os.environ.get("CORS_ORIGINS", "")

if cors_origins_env and cors_origins_env != "*":
    CORS_ORIGINS = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
else:
    CORS_ORIGINS = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True if CORS_ORIGINS != ["*"] else False,  # Can't use credentials with "*"
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "Accept"],
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with detailed messages."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"]
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": errors
        }
    )


@app.exception_handler(PairingInvariantError)
async def invariant_handler(request: Request, exc: PairingInvariantError):
    """A partition violation is a defect in the engine, never in the input."""
    logger.error(f"Pairing invariant violated: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Pairing invariant violated", "type": type(exc).__name__}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    # Don't expose internal errors in production
    if os.environ.get("PYTHON_ENV") == "production":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"}
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": str(exc),
            "type": type(exc).__name__
        }
    )


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(health_router)
app.include_router(pairing_router)


@app.get("/", include_in_schema=False)
async def root():
    return {
        "name": "Photo Pairing Engine API",
        "version": __version__,
        "documentation": "/docs",
        "health": "/api/health"
    }


# =============================================================================
# Run with Uvicorn (for local development)
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    host = os.environ.get("HOST", "0.0.0.0")
    reload = os.environ.get("PYTHON_ENV") != "production"

    uvicorn.run(
        "photo_pairing.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )
