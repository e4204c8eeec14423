"""
NeuroSynth DCS - Extraction Quality Scoring
===========================================

Scores one iteration's record so the orchestrator can decide whether to
refine.

    overall = 0.35 * completeness
            + 0.25 * validation confidence
            + 0.25 * narrative coherence (1.0 when no narrative is scored)
            + 0.15 * timeline completeness

Completeness is weighted: required fields count twice.

Usage:
    scorer = QualityScorer()
    metrics = scorer.score(record, validation)
    scorer.missing_fields(record)   # ["pathology.type", "procedures"]
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from dcsynth.shared.models import ExtractedRecord, QualityMetrics, ValidationResult, clamp_confidence

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("dates.admission", "dates.discharge", "pathology.type", "procedures")
OPTIONAL_FIELDS = (
    "demographics.name", "demographics.mrn", "demographics.age", "demographics.sex",
    "pathology.subtype", "pathology.location",
    "complications", "medications", "functional_scores",
)

CHRONOLOGY_PENALTY = 0.2


@dataclass
class QualityConfig:
    """Weights of the overall score; must sum to 1."""
    completeness_weight: float = 0.35
    validation_weight: float = 0.25
    narrative_weight: float = 0.25
    timeline_weight: float = 0.15

    required_weight: float = 2.0
    optional_weight: float = 1.0

    def __post_init__(self):
        total = self.completeness_weight + self.validation_weight + self.narrative_weight + self.timeline_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Quality weights must sum to 1.0, got {total:.3f}")
        if self.required_weight <= 0 or self.optional_weight <= 0:
            raise ValueError("Field weights must be positive")


def field_present(record: ExtractedRecord, path: str) -> bool:
    if "." not in path:
        return bool(getattr(record, path))
    group, name = path.split(".")
    return getattr(getattr(record, group), name) is not None


def timeline_completeness(record: ExtractedRecord) -> float:
    """Share of timeline anchors (admission, discharge, dated events) that are resolved."""
    checks = [record.admission_date is not None, record.discharge_date is not None]
    checks.extend(p.date is not None and p.date_resolved for p in record.procedures)
    checks.extend(c.onset_date is not None and c.date_resolved for c in record.complications)
    return sum(checks) / len(checks)


class QualityScorer:
    """Computes QualityMetrics for a record and its validation result."""

    def __init__(self, config: Optional[QualityConfig] = None):
        self.config = config or QualityConfig()

    def completeness(self, record: ExtractedRecord) -> float:
        present = total = 0.0
        for path in REQUIRED_FIELDS:
            total += self.config.required_weight
            if field_present(record, path):
                present += self.config.required_weight
        for path in OPTIONAL_FIELDS:
            total += self.config.optional_weight
            if field_present(record, path):
                present += self.config.optional_weight
        return present / total

    @staticmethod
    def missing_fields(record: ExtractedRecord) -> List[str]:
        """Required fields first, then optional ones."""
        return [p for p in REQUIRED_FIELDS + OPTIONAL_FIELDS if not field_present(record, p)]

    def score(
        self,
        record: ExtractedRecord,
        validation: ValidationResult,
        narrative_coherence: Optional[float] = None,
    ) -> QualityMetrics:
        completeness = self.completeness(record)
        confidences = record.all_confidences()
        narrative = 1.0 if narrative_coherence is None else clamp_confidence(narrative_coherence)
        timeline = timeline_completeness(record)

        overall = (
            self.config.completeness_weight * completeness
            + self.config.validation_weight * validation.confidence
            + self.config.narrative_weight * narrative
            + self.config.timeline_weight * timeline
        )

        metrics = QualityMetrics(
            completeness=completeness,
            accuracy=validation.confidence,
            confidence=sum(confidences) / len(confidences) if confidences else 0.0,
            consistency=1.0 - CHRONOLOGY_PENALTY * validation.chronology_issues,
            overall=overall,
            timeline_completeness=timeline,
            narrative_coherence=narrative,
        )
        logger.debug(f"Quality: {metrics.to_dict()}")
        return metrics
