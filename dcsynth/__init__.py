"""
NeuroSynth DCS - Clinical Note Extraction & Intelligence Pipeline

Turns free-text neurosurgical inpatient notes into a structured,
de-duplicated, temporally-resolved clinical record:
- Hybrid extraction: deterministic pattern rules merged with LLM output
- Temporal resolution of POD/HD markers and new-event vs reference mentions
- Clinical intelligence: causal timeline, treatment response, functional trajectory
- Quality-driven refinement loop
"""

__version__ = "1.0.0"
__author__ = "NeuroSynth Team"

from dcsynth.pipeline.orchestrator import ClinicalExtractionOrchestrator, extract

__all__ = ["ClinicalExtractionOrchestrator", "extract", "__version__"]
