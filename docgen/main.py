import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docgen.api.routes import router
from docgen.core.config import Settings
from docgen.core.config import settings
from docgen.core.exceptions import ConfigurationError
from docgen.core.exceptions import GenerationError
from docgen.core.logging import setup_logging
from docgen.generation_logic.orchestrator import GenerationOrchestrator
from docgen.generation_logic.orchestrator import create_orchestrator

logger = logging.getLogger(__name__)


async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.error("HTTP exception: %s (status: %s)", exc.detail, exc.status_code)
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    # Log the detailed Pydantic validation errors to the server console
    logger.error("Request validation failed: %s", exc.errors(), exc_info=False)
    return JSONResponse(
        {"error": "Input validation failed", "details": exc.errors()},
        status_code=422,
    )


async def generation_exception_handler(_request: Request, exc: GenerationError) -> JSONResponse:
    status_code = 400 if isinstance(exc, ConfigurationError) else 503
    logger.error("Generation error (%s): %s", exc.kind.value, exc)
    return JSONResponse({"error": str(exc), "error_kind": exc.kind.value}, status_code=status_code)


def create_app(
    app_settings: Settings = settings,
    orchestrator: GenerationOrchestrator | None = None,
) -> FastAPI:
    """Build the API. The orchestrator is created once per application lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.orchestrator = orchestrator or await create_orchestrator(app_settings)
        logger.info(
            "Application started with %d template(s) and %d backend(s)",
            len(app.state.orchestrator.available_document_types()),
            len(app.state.orchestrator.backends),
        )
        yield
        logger.info("Application shutting down")

    app = FastAPI(title="Document Generation Core", lifespan=lifespan)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(GenerationError, generation_exception_handler)

    @app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
    async def health_check() -> dict[str, str]:
        logger.info("Health check endpoint called")
        return {"status": "ok"}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_allowed_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


def run() -> None:
    setup_logging()
    uvicorn.run("docgen.main:create_app", factory=True, host="0.0.0.0", port=8000, log_config=None)
