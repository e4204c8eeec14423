"""
NeuroSynth DCS - Extraction Routes
==================================

POST /api/v1/extract runs the full pipeline over the submitted notes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from dcsynth.api.dependencies import get_orchestrator
from dcsynth.api.models import ErrorResponse, ExtractRequest, ExtractResponse
from dcsynth.core.config import ExtractionOptions
from dcsynth.pipeline.orchestrator import ClinicalExtractionOrchestrator
from dcsynth.shared.exceptions import InputError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Extraction"])


@router.post(
    "/extract",
    response_model=ExtractResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Invalid notes"},
    },
    summary="Extract a clinical record",
    description="Extract a structured record and clinical intelligence from free-text notes",
)
async def extract_record(
    request: ExtractRequest,
    orchestrator: ClinicalExtractionOrchestrator = Depends(get_orchestrator),
):
    options = ExtractionOptions.from_dict(
        request.options.model_dump() if request.options else None
    )
    try:
        result = await orchestrator.extract(request.note_inputs(), options)
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return ExtractResponse(**result.to_dict())
