"""
NeuroSynth DCS - FastAPI Application
====================================

HTTP surface over the extraction pipeline.

Run with:
    uvicorn dcsynth.api.main:app --reload

Or:
    python -m dcsynth.api.main
"""

from dotenv import load_dotenv
load_dotenv()  # Load .env file before anything else

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dcsynth.api.dependencies import ServiceContainer, get_settings
from dcsynth.api.routes import extraction_router, health_router
from dcsynth.core.logging_config import RequestLoggingMiddleware, configure_logging
from dcsynth.shared.exceptions import ConfigurationError, InputError

configure_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the orchestrator on startup and drop it on shutdown."""
    logger.info("Starting NeuroSynth DCS API...")

    container = ServiceContainer.get_instance()
    try:
        container.initialize(get_settings())
    except ConfigurationError as e:
        logger.error(f"Failed to initialize extraction service: {e}")

    yield

    logger.info("Shutting down NeuroSynth DCS API...")
    container.shutdown()


# =============================================================================
# Create Application
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        description="""
# NeuroSynth DCS API

Structured extraction and clinical intelligence from neurosurgical inpatient notes.

- **Extraction**: demographics, dates, pathology, procedures, complications,
  medications and functional scores with provenance and confidence
- **Intelligence**: causal timeline, treatment response, functional trajectory
        """,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(extraction_router)

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with clear messages."""
        errors = []
        for error in exc.errors():
            loc = " -> ".join(str(part) for part in error["loc"])
            errors.append(f"{loc}: {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation Error",
                "detail": errors,
                "code": "VALIDATION_ERROR",
            },
        )

    @app.exception_handler(InputError)
    async def input_exception_handler(request: Request, exc: InputError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": "Invalid notes", "detail": str(exc), "code": "INPUT_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors."""
        logger.exception(f"Unhandled error: {exc}")

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "detail": str(exc) if settings.debug else "An error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

def run():
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "dcsynth.api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    run()
