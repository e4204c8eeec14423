"""Extraction orchestration."""

from .orchestrator import (
    ClinicalExtractionOrchestrator,
    IterationSnapshot,
    NarrativeGenerator,
    OrchestrationResult,
    extract,
)
