"""
NeuroSynth DCS - Clinical Intelligence Unit Tests
=================================================

Tests for the causal timeline, treatment response pairing, SAH protocol
compliance, functional evolution and the bundle builder.
"""

from datetime import date
from unittest.mock import patch

import pytest

from dcsynth.intelligence import IntelligenceBuilder, build_causal_timeline
from dcsynth.intelligence.functional_evolution import (
    analyze_functional_evolution,
    change_significance,
    normalize_score,
    trajectory_of,
)
from dcsynth.intelligence.treatment_response import (
    check_protocol_compliance,
    classify_response,
    pair_treatment_responses,
    rate_effectiveness,
)
from dcsynth.shared.enums import (
    ChangeSignificance,
    EffectivenessRating,
    EventType,
    MedicationStatus,
    PathologyKind,
    RelationshipType,
    ResponseType,
    ScoreType,
    Source,
    Trajectory,
)
from dcsynth.shared.models import (
    AdmissionDates,
    Complication,
    ExtractedField,
    ExtractedRecord,
    FunctionalScore,
    Medication,
    Pathology,
    Procedure,
)
from tests.conftest import make_note


# =============================================================================
# Fixtures
# =============================================================================

def field(value):
    return ExtractedField(value, 0.9, Source.PATTERN)


def nimodipine(**kwargs):
    return Medication(
        id="med_001", name="nimodipine", start_date=date(2025, 1, 10),
        status=MedicationStatus.STARTED, date_resolved=True, **kwargs
    )


@pytest.fixture
def sah_record():
    return ExtractedRecord(
        dates=AdmissionDates(admission=field(date(2025, 1, 10)), discharge=field(date(2025, 1, 20))),
        pathology=Pathology(type=field(PathologyKind.SAH)),
        procedures=[
            Procedure(id="proc_001", name="EVD placement", date=date(2025, 1, 10), date_resolved=True),
            Procedure(id="proc_002", name="aneurysm coiling", date=date(2025, 1, 11), date_resolved=True),
        ],
        complications=[
            Complication(id="comp_001", name="vasospasm", onset_date=date(2025, 1, 15),
                         resolved=True, date_resolved=True),
        ],
        medications=[nimodipine()],
    )


# =============================================================================
# Causal Timeline
# =============================================================================

class TestCausalTimeline:
    """Tests for build_causal_timeline."""

    def test_events_ordered(self, sah_record):
        timeline = build_causal_timeline(sah_record)

        assert [e.type for e in timeline.events] == [
            EventType.ADMISSION, EventType.PROCEDURE, EventType.MEDICATION_CHANGE,
            EventType.PROCEDURE, EventType.COMPLICATION, EventType.DISCHARGE,
        ]
        assert [e.id for e in timeline.events][:2] == ["event_001", "event_002"]

    def test_relationships(self, sah_record):
        timeline = build_causal_timeline(sah_record)
        edges = {
            (timeline.event(r.from_event_id).name, timeline.event(r.to_event_id).name, r.type): r
            for r in timeline.relationships
        }

        leads_to = edges[("EVD placement", "vasospasm", RelationshipType.LEADS_TO)]
        assert leads_to.confidence == 0.85
        assert leads_to.gap_hours == 120.0
        assert ("nimodipine", "discharge", RelationshipType.RESPONDS_TO) in edges

    def test_edges_point_forward(self, sah_record):
        timeline = build_causal_timeline(sah_record)
        position = {e.id: i for i, e in enumerate(timeline.events)}

        for r in timeline.relationships:
            assert position[r.from_event_id] < position[r.to_event_id]

    def test_prevents_without_vasospasm(self, sah_record):
        sah_record.complications = []
        timeline = build_causal_timeline(sah_record)
        prevents = [r for r in timeline.relationships if r.type == RelationshipType.PREVENTS]

        assert len(prevents) == 1
        assert prevents[0].to_event_id is None

    def test_milestones(self, sah_record):
        milestones = build_causal_timeline(sah_record).milestones

        assert milestones["length_of_stay_days"] == 10
        assert milestones["first_procedure_name"] == "EVD placement"
        assert milestones["first_complication"] == date(2025, 1, 15)

    def test_trigger_within_48_hours(self):
        record = ExtractedRecord(
            complications=[Complication(id="comp_001", name="hydrocephalus", onset_date=date(2025, 1, 12))],
            procedures=[Procedure(id="proc_001", name="EVD placement", date=date(2025, 1, 13))],
        )
        timeline = build_causal_timeline(record)

        assert [r.type for r in timeline.relationships] == [RelationshipType.TRIGGERS]

    def test_same_day_treatment_triggered(self):
        """Hydrocephalus and its EVD on one day: the complication triggers the procedure."""
        record = ExtractedRecord(
            procedures=[Procedure(id="proc_001", name="EVD placement", date=date(2025, 1, 10))],
            complications=[Complication(id="comp_001", name="hydrocephalus", onset_date=date(2025, 1, 10))],
        )
        timeline = build_causal_timeline(record)
        edges = [
            (r.type, timeline.event(r.from_event_id).name, timeline.event(r.to_event_id).name)
            for r in timeline.relationships
        ]

        assert [e.name for e in timeline.events] == ["hydrocephalus", "EVD placement"]
        assert edges == [(RelationshipType.TRIGGERS, "hydrocephalus", "EVD placement")]

    def test_same_day_unrelated_procedure_still_leads_to(self):
        record = ExtractedRecord(
            procedures=[
                Procedure(id="proc_001", name="craniotomy", date=date(2025, 1, 10)),
                Procedure(id="proc_002", name="EVD placement", date=date(2025, 1, 10)),
            ],
            complications=[Complication(id="comp_001", name="hydrocephalus", onset_date=date(2025, 1, 10))],
        )
        timeline = build_causal_timeline(record)
        edges = {
            (r.type, timeline.event(r.from_event_id).name, timeline.event(r.to_event_id).name)
            for r in timeline.relationships
        }

        assert [e.name for e in timeline.events] == ["craniotomy", "hydrocephalus", "EVD placement"]
        assert edges == {
            (RelationshipType.LEADS_TO, "craniotomy", "hydrocephalus"),
            (RelationshipType.TRIGGERS, "hydrocephalus", "EVD placement"),
        }

    def test_undated_entities_skipped(self):
        record = ExtractedRecord(procedures=[Procedure(id="proc_001", name="craniotomy")])
        assert build_causal_timeline(record).events == []


# =============================================================================
# Treatment Response
# =============================================================================

class TestClassifyResponse:
    """Tests for classify_response and rate_effectiveness."""

    @pytest.mark.parametrize("text,expected", [
        ("Vasospasm resolved on TCDs.", ResponseType.RESOLVED),
        ("Partially improved ICP.", ResponseType.PARTIAL),
        ("No change in hydrocephalus.", ResponseType.NO_CHANGE),
        ("Edema worsened overnight.", ResponseType.WORSENED),
        ("ICP improving.", ResponseType.IMPROVED),
        ("Neuro exam stable.", ResponseType.STABLE),
        ("Seen on rounds.", ResponseType.UNKNOWN),
    ])
    def test_classify(self, text, expected):
        assert classify_response(text) == expected

    @pytest.mark.parametrize("score,rating", [
        (80, EffectivenessRating.EXCELLENT),
        (79, EffectivenessRating.GOOD),
        (40, EffectivenessRating.FAIR),
        (39, EffectivenessRating.POOR),
    ])
    def test_rating_bands(self, score, rating):
        assert rate_effectiveness(score) == rating


class TestTreatmentResponse:
    """Tests for pair_treatment_responses."""

    def test_nimodipine_resolves_vasospasm(self):
        notes = [
            make_note("Started nimodipine 60 mg PO q4h.", 0),
            make_note("Vasospasm resolved on TCDs.", 1, reported_date=date(2025, 1, 16)),
        ]
        record = ExtractedRecord(
            dates=AdmissionDates(admission=field(date(2025, 1, 10))),
            medications=[nimodipine(note_id="note_001", span=(8, 18))],
        )
        response = pair_treatment_responses(record, notes)[0]

        assert response.target == "vasospasm"
        assert response.response_type == ResponseType.RESOLVED
        assert response.days_to_response == 6
        assert response.outcome_note_id == "note_002"
        assert response.effectiveness_score == 85
        assert response.effectiveness == EffectivenessRating.EXCELLENT

    def test_unpaired_intervention(self):
        record = ExtractedRecord(procedures=[
            Procedure(id="proc_001", name="EVD placement", date=date(2025, 1, 10)),
        ])
        response = pair_treatment_responses(record, [make_note("EVD placed.")])[0]

        assert response.response_type == ResponseType.UNKNOWN
        assert response.target == "hydrocephalus"
        assert response.effectiveness_score == 0

    def test_outcome_before_intervention_ignored(self):
        notes = [
            make_note("Vasospasm improving.", 0, reported_date=date(2025, 1, 9)),
            make_note("Started nimodipine.", 1, reported_date=date(2025, 1, 10)),
        ]
        record = ExtractedRecord(medications=[nimodipine(note_id="note_002", span=(8, 18))])

        assert pair_treatment_responses(record, notes)[0].response_type == ResponseType.UNKNOWN

    def test_interventions_without_targets_skipped(self):
        record = ExtractedRecord(medications=[Medication(id="med_001", name="pantoprazole")])
        assert pair_treatment_responses(record, [make_note("x")]) == []


class TestProtocolCompliance:
    """Tests for check_protocol_compliance."""

    def test_full_compliance(self, sah_record):
        compliance = check_protocol_compliance(sah_record)

        assert compliance.percentage == 100
        assert compliance.overall == "excellent"

    def test_missing_nimodipine(self, sah_record):
        sah_record.medications = []
        sah_record.procedures = [p for p in sah_record.procedures if p.name != "EVD placement"]
        compliance = check_protocol_compliance(sah_record)

        assert compliance.percentage == 50
        assert compliance.items[0].compliant is False
        assert compliance.items[2].compliant is None

    def test_not_applicable_without_sah(self, sah_record):
        sah_record.pathology = Pathology(type=field(PathologyKind.TBI))
        assert check_protocol_compliance(sah_record) is None


# =============================================================================
# Functional Evolution
# =============================================================================

class TestNormalization:
    """Tests for normalize_score and trajectory helpers."""

    @pytest.mark.parametrize("score_type,value,expected", [
        (ScoreType.KPS, 70, 70.0),
        (ScoreType.GCS, 15, 100.0),
        (ScoreType.GCS, 3, 0.0),
        (ScoreType.MRS, 0, 100.0),
        (ScoreType.MRS, 6, 0.0),
        (ScoreType.ASIA, "E", 100.0),
        (ScoreType.ASIA, "a", 0.0),
    ])
    def test_normalize(self, score_type, value, expected):
        assert normalize_score(score_type, value) == pytest.approx(expected)

    @pytest.mark.parametrize("score_type,value", [
        (ScoreType.ASIA, "X"),
        (ScoreType.KPS, "abc"),
        (ScoreType.KPS, None),
    ])
    def test_unparseable(self, score_type, value):
        assert normalize_score(score_type, value) is None

    def test_trajectory(self):
        assert trajectory_of([50.0])[0] == Trajectory.INSUFFICIENT_DATA
        assert trajectory_of([50.0, 52.0, 51.0])[0] == Trajectory.STABLE
        assert trajectory_of([80.0, 60.0, 40.0]) == (Trajectory.DECLINING, pytest.approx(-20.0))

    def test_change_significance(self):
        assert change_significance(30) == ChangeSignificance.MAJOR
        assert change_significance(-20) == ChangeSignificance.MODERATE
        assert change_significance(5) == ChangeSignificance.MINOR
        assert change_significance(1) == ChangeSignificance.MINIMAL


class TestFunctionalEvolution:
    """Tests for analyze_functional_evolution."""

    def test_improving_gcs(self):
        record = ExtractedRecord(functional_scores=[
            FunctionalScore(id=f"score_00{i}", score_type=ScoreType.GCS, value=v, date=date(2025, 1, d))
            for i, (v, d) in enumerate([(15, 15), (10, 11), (13, 13)], start=1)
        ])
        evolution = analyze_functional_evolution(record)

        assert [p.value for p in evolution.points] == [10, 13, 15]
        assert evolution.trajectory == Trajectory.IMPROVING
        assert evolution.by_type["GCS"] == Trajectory.IMPROVING
        assert evolution.changes[0].significance == ChangeSignificance.MODERATE

    def test_undated_scores_ignored(self):
        record = ExtractedRecord(functional_scores=[
            FunctionalScore(id="score_001", score_type=ScoreType.KPS, value=80),
        ])
        evolution = analyze_functional_evolution(record)

        assert evolution.points == []
        assert evolution.trajectory == Trajectory.INSUFFICIENT_DATA


# =============================================================================
# Builder
# =============================================================================

class TestIntelligenceBuilder:
    """Tests for IntelligenceBuilder."""

    def test_build(self, sah_record):
        bundle = IntelligenceBuilder().build(sah_record, [make_note("Admit 2025-01-10.")])

        assert bundle.error is None
        assert len(bundle.timeline.events) == 6
        assert bundle.protocol_compliance.percentage == 100
        assert bundle.to_dict()["timeline"]["milestones"]["admission"] == "2025-01-10"

    def test_failure_yields_empty_bundle(self, sah_record):
        with patch(
            "dcsynth.intelligence.builder.build_causal_timeline",
            side_effect=RuntimeError("boom"),
        ):
            bundle = IntelligenceBuilder().build(sah_record, [])

        assert bundle.error == "causal timeline failed: boom"
        assert bundle.timeline.events == []
        assert bundle.treatment_responses == []

    def test_missing_record(self):
        bundle = IntelligenceBuilder().build(None, [])
        assert bundle.error
