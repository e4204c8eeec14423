"""
NeuroSynth DCS - Test Configuration
===================================

Shared pytest fixtures for all tests.
"""

from datetime import date
from typing import List, Optional, Sequence

import pytest

from dcsynth.core.config import PipelineConfig
from dcsynth.llm.prompts import LLMExtraction
from dcsynth.shared.models import ClinicalNote


# =============================================================================
# Note Builders
# =============================================================================

def make_note(
    text: str,
    index: int = 0,
    reported_date: Optional[date] = None,
    note_type: Optional[str] = None,
) -> ClinicalNote:
    """Build a ClinicalNote the way the normalizer would number it."""
    return ClinicalNote(
        id=f"note_{index + 1:03d}",
        text=text,
        index=index,
        reported_date=reported_date,
        note_type=note_type,
        original_text=text,
    )


def make_notes(*texts: str) -> List[ClinicalNote]:
    return [make_note(text, i) for i, text in enumerate(texts)]


# =============================================================================
# Mock Data
# =============================================================================

@pytest.fixture
def evd_notes():
    """Four short notes that repeat one EVD placement."""
    return [
        "Admit 2025-01-10 SAH.",
        "POD#0 EVD placed.",
        "POD#0 EVD placed, patient stable.",
        "Discharge 2025-01-20.",
    ]


@pytest.fixture
def sah_course_notes():
    """A fuller SAH admission across admission, operative and discharge notes."""
    return [
        {
            "text": (
                "HPI: 55 year old male presented with subarachnoid hemorrhage. "
                "Admission date: 01/10/2025. MRN: 00412345. Hunt Hess 3, Fisher 3. "
                "Started nimodipine 60 mg PO q4h."
            ),
            "type": "admission",
        },
        {
            "text": "Underwent coiling on 01/11/2025 of ACoA aneurysm. GCS 13.",
            "type": "operative",
        },
        {
            "text": "POD#4 moderate vasospasm on TCDs. GCS 12.",
            "type": "progress",
            "reported_date": "2025-01-15",
        },
        {
            "text": (
                "Discharge date: 01/20/2025. Vasospasm resolved. GCS 15. mRS 2. "
                "Discharged home on nimodipine."
            ),
            "type": "discharge",
        },
    ]


# =============================================================================
# Mock Services
# =============================================================================

class StaticLLMAdapter:
    """LLM adapter double returning a fixed extraction (or raising a fixed error)."""

    def __init__(self, extraction: Optional[LLMExtraction] = None, error: Optional[Exception] = None):
        self.extraction = extraction or LLMExtraction()
        self.error = error
        self.calls: List[Sequence[str]] = []

    async def extract(self, note_text, schema=None, focus_fields=()):
        self.calls.append(tuple(focus_fields))
        if self.error is not None:
            raise self.error
        return self.extraction


class FixedNarrative:
    """Narrative coherence double."""

    def __init__(self, score: float = 1.0, error: Optional[Exception] = None):
        self.score = score
        self.error = error

    async def score_coherence(self, record, notes) -> float:
        if self.error is not None:
            raise self.error
        return self.score


@pytest.fixture
def minimal_config():
    """Pattern-only pipeline configuration."""
    return PipelineConfig.minimal()


@pytest.fixture
def orchestrator(minimal_config):
    """Orchestrator with the LLM disabled."""
    from dcsynth.pipeline.orchestrator import ClinicalExtractionOrchestrator

    return ClinicalExtractionOrchestrator(config=minimal_config)


# =============================================================================
# API Testing
# =============================================================================

@pytest.fixture
def test_client():
    """FastAPI test client running the app lifespan."""
    from fastapi.testclient import TestClient
    from dcsynth.api.dependencies import ServiceContainer
    from dcsynth.api.main import app

    ServiceContainer._instance = None
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
    ServiceContainer._instance = None


# =============================================================================
# Environment
# =============================================================================

@pytest.fixture(autouse=True)
def set_test_env(monkeypatch):
    """Run every test pattern-only with the packaged configuration."""
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("LOG_FORMAT", "console")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("DCS_MERGE_PRIORITY_PATH", raising=False)
    monkeypatch.delenv("LEARNED_PATTERNS_PATH", raising=False)


# =============================================================================
# Helpers
# =============================================================================

def assert_response_ok(response, expected_status: int = 200):
    """Assert response has expected status."""
    assert response.status_code == expected_status, f"Expected {expected_status}, got {response.status_code}: {response.text}"


def assert_confidences_bounded(data):
    """Recursively assert every 'confidence' value in a to_dict() tree is in [0, 1]."""
    if isinstance(data, dict):
        for key, value in data.items():
            if key == "confidence" and value is not None:
                assert 0.0 <= value <= 1.0, f"confidence out of range: {value}"
            else:
                assert_confidences_bounded(value)
    elif isinstance(data, list):
        for item in data:
            assert_confidences_bounded(item)
