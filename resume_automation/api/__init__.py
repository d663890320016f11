"""
FastAPI application factory and API package.

Run with:
    uvicorn resume_automation.api:app --reload --port 8000

Or:
    python -m resume_automation --serve
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from resume_automation.api.routes import health_router, scoring_router, session_router
from resume_automation.config import get_settings
from resume_automation.exceptions import InputError, StoreFailure

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Application factory — create and configure the FastAPI instance."""
    settings = get_settings()

    application = FastAPI(
        title="Resume Builder API",
        description="Evidence-grounded resume section generation and review",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS — allow the frontend (adjust origins in production)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health_router, tags=["Health"])
    application.include_router(session_router, prefix="/api/sessions", tags=["Sessions"])
    application.include_router(scoring_router, prefix="/api", tags=["Scoring"])

    @application.exception_handler(InputError)
    async def input_error_handler(request: Request, exc: InputError):
        return JSONResponse(
            status_code=400,
            content={"error_kind": exc.kind.value, "detail": exc.message, "field": exc.field},
        )

    @application.exception_handler(StoreFailure)
    async def store_failure_handler(request: Request, exc: StoreFailure):
        logger.error(f"Store failure on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=503,
            content={"error_kind": exc.kind.value, "detail": exc.message},
        )

    logger.info(f"Created {settings.app_name} API")
    return application


# Module-level instance for `uvicorn resume_automation.api:app`
app = create_app()
