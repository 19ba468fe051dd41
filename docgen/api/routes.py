import logging
from typing import Any

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Request

from docgen.generation_logic.orchestrator import GenerationOrchestrator
from docgen.models.generation_models import GenerationAnalytics
from docgen.models.generation_models import GenerationRequest
from docgen.models.generation_models import GenerationResult

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Generation core is not initialised.")
    return orchestrator


@router.post("/generate", response_model=GenerationResult, tags=["Generation"])
async def generate_document(
    payload: GenerationRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResult:
    """Generate one document. Failures come back as a result with ``success=False``."""
    logger.info("Generation requested for document type '%s'", payload.document_type)
    return await orchestrator.generate(payload)


@router.post("/preview", tags=["Generation"])
async def preview_prompt(
    payload: GenerationRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Show the template, context budget and messages a generation would use, without calling a backend."""
    return orchestrator.preview_prompt(payload)


@router.get("/analytics", response_model=GenerationAnalytics, tags=["Telemetry"])
async def get_analytics(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)) -> GenerationAnalytics:
    return orchestrator.analytics()


@router.get("/history", tags=["Telemetry"])
async def get_history(
    document_type: str | None = None,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> list[dict[str, Any]]:
    return [result.summary() for result in orchestrator.history.history(document_type)]


@router.get("/document-types", tags=["Templates"])
async def get_document_types(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)) -> dict[str, list[str]]:
    return {"document_types": orchestrator.available_document_types()}


@router.get("/backends", tags=["Telemetry"])
async def get_backends(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)) -> list[dict[str, Any]]:
    return orchestrator.backend_status()
