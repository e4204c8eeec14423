"""
NeuroSynth DCS - Deduplicator Unit Tests
========================================

Tests for note-level duplicate removal and entity grouping.
"""

from datetime import date

import pytest

from dcsynth.core.config import DeduplicationConfig
from dcsynth.core.deduplicator import Deduplicator, fingerprint, jaccard, token_similarity
from dcsynth.shared.enums import EntityKind, MentionKind
from dcsynth.shared.models import ExtractedRecord, FunctionalScore, Procedure
from dcsynth.shared.enums import ScoreType
from tests.conftest import make_note, make_notes


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:
    """Tests for fingerprint / jaccard."""

    def test_fingerprint_ignores_case_and_punctuation(self):
        assert fingerprint("EVD placed.") == fingerprint("evd   placed")

    def test_jaccard_edges(self):
        assert jaccard(set(), set()) == 1.0
        assert jaccard({1}, set()) == 0.0
        assert jaccard({1, 2}, {2, 3}) == pytest.approx(1 / 3)

    def test_token_similarity_ignores_word_order(self):
        assert token_similarity("right frontal EVD", "EVD, right frontal") == 1.0
        assert token_similarity("craniotomy", "VP shunt") < 0.5

    def test_config_rejects_bad_range(self):
        with pytest.raises(ValueError):
            DeduplicationConfig(complementary_min=0.7, complementary_max=0.6)


# =============================================================================
# Note Level Tests
# =============================================================================

class TestNoteDeduplication:
    """Tests for Deduplicator.deduplicate_notes."""

    def test_exact_duplicates_removed(self):
        """Notes identical after comparison normalization collapse to one."""
        notes = make_notes("EVD placed.", "evd placed", "Discharge 2025-01-20.")
        result = Deduplicator().deduplicate_notes(notes)

        assert result.exact_removed == 1
        assert [n.id for n in result.notes] == ["note_001", "note_003"]

    def test_substring_note_removed(self, evd_notes):
        """A note wholly contained in another is dropped."""
        notes = make_notes(*evd_notes)
        result = Deduplicator().deduplicate_notes(notes)

        assert result.near_removed == 1
        assert result.final_count == 3
        assert "note_002" not in [n.id for n in result.notes]

    def test_near_duplicate_removed(self):
        """High shingle overlap keeps only one note."""
        words = [f"word{i}" for i in range(30)]
        changed = list(words)
        changed[15] = "changed"
        notes = make_notes(" ".join(words), " ".join(changed))

        result = Deduplicator().deduplicate_notes(notes)

        assert result.near_removed == 1
        assert result.final_count == 1

    def test_complementary_notes_merged(self):
        """Moderately similar notes from the same post-op day are merged."""
        notes = make_notes(
            "POD#2 patient doing well overnight, afebrile. EVD clamped.",
            "POD#2 patient doing well overnight, afebrile. Started nimodipine.",
        )
        result = Deduplicator().deduplicate_notes(notes)

        assert result.merge_count == 1
        assert result.final_count == 1
        merged = result.notes[0]
        assert "EVD clamped" in merged.text
        assert "Started nimodipine" in merged.text
        assert len(merged.merged_from) == 1

    def test_different_temporal_context_not_merged(self):
        """Similar notes from different post-op days stay separate."""
        notes = make_notes(
            "POD#2 patient doing well overnight, afebrile. EVD clamped.",
            "POD#3 patient doing well overnight, afebrile. Started nimodipine.",
        )
        result = Deduplicator().deduplicate_notes(notes)

        assert result.merge_count == 0
        assert result.final_count == 2

    def test_reported_date_used_as_context(self):
        """Without markers the reported date decides whether notes merge."""
        a = make_note("Patient doing well overnight, afebrile. EVD clamped.", 0, date(2025, 1, 12))
        b = make_note("Patient doing well overnight, afebrile. Started nimodipine.", 1, date(2025, 1, 12))

        assert Deduplicator.temporal_context(a) == ("reported", date(2025, 1, 12))
        assert Deduplicator().deduplicate_notes([a, b]).merge_count == 1

    def test_stats(self, evd_notes):
        result = Deduplicator().deduplicate_notes(make_notes(*evd_notes))
        stats = result.stats()

        assert stats["original_count"] == 4
        assert stats["final_count"] == 3
        assert stats["reduction_percent"] == 25.0


# =============================================================================
# Entity Level Tests
# =============================================================================

def procedure(id, name, when, confidence=0.7, **kwargs):
    return Procedure(
        id=id, name=name, date=when, confidence=confidence,
        date_resolved=when is not None, **kwargs
    )


class TestEntityGrouping:
    """Tests for Deduplicator.group_entities."""

    def test_synonyms_within_window_grouped(self):
        """Synonymous mentions a day apart form one group around the best mention."""
        record = ExtractedRecord(procedures=[
            procedure("proc_001", "EVD placement", date(2025, 1, 10)),
            procedure("proc_002", "external ventricular drain", date(2025, 1, 11), confidence=0.85),
            procedure("proc_003", "EVD", date(2025, 1, 15)),
        ])
        groups = Deduplicator().group_entities(record)

        assert len(groups) == 1
        group = groups[0]
        assert group.canonical_event_id == "proc_002"
        assert group.duplicate_mention_ids == ["proc_001"]
        assert group.similarity_score == 1.0
        assert group.entity_kind == EntityKind.PROCEDURE

    def test_reference_joins_its_event(self):
        """References attach to the event they point at."""
        record = ExtractedRecord(procedures=[
            procedure("proc_001", "EVD placement", date(2025, 1, 10)),
            procedure(
                "proc_002", "EVD placement", date(2025, 1, 14),
                mention_kind=MentionKind.REFERENCE, canonical_id="proc_001",
            ),
        ])
        groups = Deduplicator().group_entities(record)

        assert len(groups) == 1
        assert groups[0].canonical_event_id == "proc_001"
        assert groups[0].duplicate_mention_ids == ["proc_002"]

    def test_scores_with_different_values_kept_apart(self):
        """Two GCS readings on one day are distinct observations."""
        record = ExtractedRecord(functional_scores=[
            FunctionalScore(id="score_001", score_type=ScoreType.GCS, value=13,
                            date=date(2025, 1, 11), date_resolved=True),
            FunctionalScore(id="score_002", score_type=ScoreType.GCS, value=15,
                            date=date(2025, 1, 11), date_resolved=True),
        ])
        assert Deduplicator().group_entities(record) == []

    def test_undated_mention_joins_named_cluster(self):
        record = ExtractedRecord(procedures=[
            procedure("proc_001", "aneurysm coiling", date(2025, 1, 11)),
            procedure("proc_002", "coiling", None),
        ])
        groups = Deduplicator().group_entities(record)

        assert len(groups) == 1
        assert groups[0].canonical_event_id == "proc_001"

    def test_name_similarity(self):
        dedup = Deduplicator()

        assert dedup.name_similarity(EntityKind.PROCEDURE, "ventriculostomy", "EVD") == 1.0
        assert dedup.name_similarity(EntityKind.PROCEDURE, "craniotomy", "VP shunt") < 0.75

    def test_select_canonical_prefers_new_resolved_events(self):
        reference = procedure("a", "EVD", date(2025, 1, 10), confidence=0.95,
                              mention_kind=MentionKind.REFERENCE)
        unresolved = procedure("b", "EVD", None, confidence=0.9)
        chosen = procedure("c", "EVD", date(2025, 1, 11), confidence=0.6)

        assert Deduplicator.select_canonical([reference, unresolved, chosen]) is chosen
