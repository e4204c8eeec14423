"""
NeuroSynth DCS - Quality Scorer Unit Tests
==========================================
"""

from datetime import date

import pytest

from dcsynth.core.quality_scorer import QualityConfig, QualityScorer, timeline_completeness
from dcsynth.shared.enums import Source
from dcsynth.shared.models import (
    AdmissionDates,
    ExtractedField,
    ExtractedRecord,
    Procedure,
    ValidationResult,
)


def dated_record():
    return ExtractedRecord(dates=AdmissionDates(
        admission=ExtractedField(date(2025, 1, 10), 0.85, Source.PATTERN),
        discharge=ExtractedField(date(2025, 1, 20), 0.85, Source.PATTERN),
    ))


class TestQualityConfig:
    """Tests for weight validation."""

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError):
            QualityConfig(completeness_weight=0.5)

    def test_field_weights_positive(self):
        with pytest.raises(ValueError):
            QualityConfig(required_weight=0)


class TestCompleteness:
    """Tests for weighted completeness."""

    def test_empty_record(self):
        assert QualityScorer().completeness(ExtractedRecord()) == 0.0

    def test_required_fields_count_double(self):
        assert QualityScorer().completeness(dated_record()) == pytest.approx(4 / 17)

    def test_missing_fields_required_first(self):
        missing = QualityScorer.missing_fields(dated_record())

        assert missing[:2] == ["pathology.type", "procedures"]
        assert "dates.admission" not in missing
        assert missing[-1] == "functional_scores"


class TestTimelineCompleteness:
    """Tests for timeline_completeness."""

    def test_unresolved_events_count_against(self):
        record = dated_record()
        record.procedures = [
            Procedure(name="EVD placement", date=date(2025, 1, 10), date_resolved=True),
            Procedure(name="craniotomy", date=date(2025, 1, 12), date_resolved=False),
        ]
        assert timeline_completeness(record) == pytest.approx(3 / 4)


class TestScore:
    """Tests for QualityScorer.score."""

    def test_overall_formula(self):
        """0.35 completeness + 0.25 validation + 0.25 narrative + 0.15 timeline."""
        metrics = QualityScorer().score(dated_record(), ValidationResult(confidence=0.8))

        assert metrics.overall == pytest.approx(0.35 * 4 / 17 + 0.25 * 0.8 + 0.25 + 0.15)
        assert metrics.timeline_completeness == 1.0
        assert metrics.narrative_coherence == 1.0
        assert metrics.confidence == pytest.approx(0.85)

    def test_narrative_lowers_overall(self):
        scorer = QualityScorer()
        validation = ValidationResult(confidence=0.8)
        baseline = scorer.score(dated_record(), validation).overall

        metrics = scorer.score(dated_record(), validation, narrative_coherence=0.2)
        assert metrics.overall == pytest.approx(baseline - 0.25 * 0.8)

    @pytest.mark.parametrize("coherence, expected", [(1.7, 1.0), (-0.5, 0.0)])
    def test_narrative_clamped_before_weighting(self, coherence, expected):
        """An out-of-range coherence cannot lift a weak record past the threshold."""
        scorer = QualityScorer()
        validation = ValidationResult(confidence=0.8)

        metrics = scorer.score(dated_record(), validation, narrative_coherence=coherence)
        clamped = scorer.score(dated_record(), validation, narrative_coherence=expected)

        assert metrics.narrative_coherence == expected
        assert metrics.overall == pytest.approx(clamped.overall)

    def test_consistency_penalized_per_chronology_issue(self):
        metrics = QualityScorer().score(dated_record(), ValidationResult(confidence=1.0, chronology_issues=2))
        assert metrics.consistency == pytest.approx(0.6)

    def test_metrics_bounded(self):
        metrics = QualityScorer().score(ExtractedRecord(), ValidationResult(confidence=1.0, chronology_issues=9))

        assert metrics.consistency == 0.0
        assert metrics.confidence == 0.0
        assert all(0.0 <= v <= 1.0 for v in metrics.to_dict().values())
