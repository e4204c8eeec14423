"""
NeuroSynth DCS - API Models
===========================

Pydantic models for request/response validation.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Extraction Models
# =============================================================================

class NoteModel(BaseModel):
    """One clinical note."""
    text: str = Field(..., min_length=1, description="Free-text note body")
    type: Optional[str] = Field(None, description="Note type, e.g. 'progress', 'operative'")
    reported_date: Optional[date] = Field(None, description="Date the note was written")

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("note text must not be blank")
        return v


class ExtractionOptionsModel(BaseModel):
    """Per-request feature toggles."""
    enable_preprocessing: bool = True
    enable_deduplication: bool = True
    use_llm: Optional[bool] = Field(None, description="None uses the LLM when one is configured")
    llm_provider: Optional[str] = None
    max_refinement_iterations: int = Field(2, ge=0, le=5)
    quality_threshold: float = Field(0.7, ge=0.0, le=1.0)


class ExtractRequest(BaseModel):
    """Extraction request body."""
    notes: List[Union[NoteModel, str]] = Field(..., min_length=1, description="Clinical notes")
    options: Optional[ExtractionOptionsModel] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "notes": [
                    {"text": "Admit 2025-01-10 with SAH, HH 3.", "type": "admission"},
                    "POD#1 s/p coiling, started nimodipine 60mg q4h.",
                    {"text": "Discharge 2025-01-20. mRS 2.", "type": "discharge"},
                ],
                "options": {"use_llm": False, "quality_threshold": 0.7},
            }
        }
    )

    @field_validator("notes")
    @classmethod
    def strings_not_blank(cls, v: List[Union[NoteModel, str]]) -> List[Union[NoteModel, str]]:
        for i, note in enumerate(v):
            if isinstance(note, str) and not note.strip():
                raise ValueError(f"note {i + 1} must not be blank")
        return v

    def note_inputs(self) -> List[Dict[str, Any]]:
        return [
            {"text": n} if isinstance(n, str) else n.model_dump()
            for n in self.notes
        ]


class ExtractResponse(BaseModel):
    """Extraction result."""
    success: bool
    extracted_data: Dict[str, Any]
    intelligence: Dict[str, Any]
    validation: Dict[str, Any]
    quality_metrics: Dict[str, float]
    metadata: Dict[str, Any]


# =============================================================================
# Health Models
# =============================================================================

class ComponentStatus(BaseModel):
    """Status of a component."""
    status: str = Field(..., pattern="^(healthy|degraded|unhealthy|disabled)$")
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    components: Dict[str, ComponentStatus]
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[Union[str, List[str]]] = None
    code: Optional[str] = None
