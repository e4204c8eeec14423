"""
NeuroSynth DCS - Pattern/LLM Record Merger
==========================================

Combines the pattern record and the LLM record field by field.

Rules:
- Single-source fields pass through unchanged
- Agreeing dual-source fields become source=merged with an agreement
  bonus: min(0.95, base + 0.05)
- Disagreeing fields are resolved by the MergePriorityTable (LLM wins by
  default; dates, scores, MRN and doses prefer the deterministic pattern
  value) and recorded in merge_conflicts
- Entity arrays are unioned; a pattern and LLM entity with the same
  canonical name and dates within +/-1 day are merged field by field

Usage:
    merger = Merger()
    record = merger.merge(pattern_record, llm_record, groups)
    record.merge_conflicts  # [MergeConflict(field="medications.dose", ...)]
"""

import copy
import logging
from dataclasses import fields
from datetime import date
from typing import Any, List, Optional, Sequence

from dcsynth.core.clinical_patterns import canonical_name
from dcsynth.core.config import MergeConfig
from dcsynth.core.deduplicator import token_similarity
from dcsynth.core.text_normalizer import normalize_for_comparison
from dcsynth.shared.enums import EntityKind, MedicationStatus, PathologyKind, Source
from dcsynth.shared.models import (
    ENTITY_ATTRIBUTES,
    ClinicalEntity,
    DeduplicationGroup,
    ExtractedField,
    ExtractedRecord,
    MergeConflict,
    OtherPathology,
    pathology_label,
)

logger = logging.getLogger(__name__)

NAME_MATCH_THRESHOLD = 0.75


def values_agree(a: Any, b: Any) -> bool:
    """Loose equality: case/punctuation-insensitive for text, exact for dates."""
    if a is None or b is None:
        return a is b
    if isinstance(a, date) or isinstance(b, date):
        return a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return _comparable(a) == _comparable(b)


def _comparable(value: Any) -> str:
    if isinstance(value, (PathologyKind, OtherPathology)):
        value = pathology_label(value)
    elif hasattr(value, "value"):
        value = value.value
    return normalize_for_comparison(str(value)).replace(" ", "")


class Merger:
    """Field-level merge of pattern and LLM extractions."""

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or MergeConfig()
        self.priority = self.config.priority

    def _agreement_confidence(self, *confidences: float) -> float:
        base = max(confidences)
        return max(base, min(self.config.confidence_cap, base + self.config.agreement_bonus))

    # =========================================================================
    # GROUP COLLAPSE
    # =========================================================================

    @staticmethod
    def collapse(record: ExtractedRecord, groups: Sequence[DeduplicationGroup]) -> ExtractedRecord:
        """Collapse each deduplication group onto its canonical mention (in place)."""
        for group in groups:
            entities = record.entities(group.entity_kind)
            canonical = next((e for e in entities if e.id == group.canonical_event_id), None)
            if canonical is None:
                continue

            duplicate_ids = set(group.duplicate_mention_ids)
            duplicates = [e for e in entities if e.id in duplicate_ids]
            for duplicate in duplicates:
                for name in canonical.MERGE_FIELDS:
                    if getattr(canonical, name) is None and getattr(duplicate, name) is not None:
                        setattr(canonical, name, getattr(duplicate, name))
                if getattr(canonical, "status", None) == MedicationStatus.UNKNOWN:
                    canonical.status = duplicate.status
                canonical.confidence = max(canonical.confidence, duplicate.confidence)
                canonical.mention_count += duplicate.mention_count

            record.set_entities(group.entity_kind, [e for e in entities if e.id not in duplicate_ids])
        return record

    # =========================================================================
    # MERGE
    # =========================================================================

    def merge(
        self,
        pattern_record: ExtractedRecord,
        llm_record: Optional[ExtractedRecord] = None,
        groups: Sequence[DeduplicationGroup] = (),
    ) -> ExtractedRecord:
        """
        Merge the two records into a new one.

        Args:
            pattern_record: Deterministic extraction
            llm_record: LLM extraction, or None when running pattern-only
            groups: Entity deduplication groups over both records

        Returns:
            A new ExtractedRecord (inputs are not modified)
        """
        pattern_record = self.collapse(copy.deepcopy(pattern_record), groups)
        if llm_record is None:
            return pattern_record
        llm_record = self.collapse(copy.deepcopy(llm_record), groups)

        merged = ExtractedRecord()
        conflicts: List[MergeConflict] = []

        for group_name in ("demographics", "dates", "pathology"):
            p_group = getattr(pattern_record, group_name)
            l_group = getattr(llm_record, group_name)
            target = getattr(merged, group_name)
            for f in fields(p_group):
                path = f"{group_name}.{f.name}"
                p_value = getattr(p_group, f.name)
                l_value = getattr(l_group, f.name)
                if isinstance(p_value, list):
                    setattr(target, f.name, self._merge_field_list(p_value, l_value))
                else:
                    setattr(target, f.name, self._merge_field(path, p_value, l_value, conflicts))

        for kind in EntityKind:
            merged.set_entities(kind, self._merge_entities(
                kind, pattern_record.entities(kind), llm_record.entities(kind), conflicts
            ))

        merged.merge_conflicts = conflicts
        if conflicts:
            logger.info(f"Merge resolved {len(conflicts)} conflicts: {[c.field for c in conflicts]}")
        return merged

    def _merge_field(
        self,
        path: str,
        pattern_field: Optional[ExtractedField],
        llm_field: Optional[ExtractedField],
        conflicts: List[MergeConflict],
    ) -> Optional[ExtractedField]:
        if pattern_field is None or llm_field is None:
            return pattern_field or llm_field

        if values_agree(pattern_field.value, llm_field.value):
            merged = copy.copy(pattern_field)
            merged.source = Source.MERGED
            merged.confidence = self._agreement_confidence(pattern_field.confidence, llm_field.confidence)
            return merged

        winner = self.priority.winner(path)
        chosen, other = (pattern_field, llm_field) if winner == Source.PATTERN else (llm_field, pattern_field)
        conflicts.append(MergeConflict(
            field=path,
            chosen_value=chosen.value,
            chosen_source=chosen.source,
            alternative_value=other.value,
            alternative_source=other.source,
            reason=f"{winner.value} priority",
        ))
        return chosen

    def _merge_field_list(
        self,
        pattern_fields: List[ExtractedField],
        llm_fields: List[ExtractedField],
    ) -> List[ExtractedField]:
        merged = [copy.copy(f) for f in pattern_fields]
        for candidate in llm_fields:
            match = next((f for f in merged if values_agree(f.value, candidate.value)), None)
            if match is None:
                merged.append(candidate)
            elif match.source == Source.PATTERN:
                match.source = Source.MERGED
                match.confidence = self._agreement_confidence(match.confidence, candidate.confidence)
        return merged

    # =========================================================================
    # ENTITIES
    # =========================================================================

    def _matches(self, kind: EntityKind, a: ClinicalEntity, b: ClinicalEntity) -> bool:
        if canonical_name(kind, a.name) != canonical_name(kind, b.name) and (
            token_similarity(a.name, b.name) < NAME_MATCH_THRESHOLD
        ):
            return False
        if a.event_date is not None and b.event_date is not None:
            return abs((a.event_date - b.event_date).days) <= self.config.date_tolerance_days
        return True

    def _merge_entities(
        self,
        kind: EntityKind,
        pattern_entities: List[ClinicalEntity],
        llm_entities: List[ClinicalEntity],
        conflicts: List[MergeConflict],
    ) -> List[ClinicalEntity]:
        result = list(pattern_entities)
        matched = set()

        for candidate in llm_entities:
            index = next(
                (
                    i for i, existing in enumerate(result)
                    if i not in matched
                    and existing.source == Source.PATTERN
                    and self._matches(kind, existing, candidate)
                ),
                None,
            )
            if index is None:
                result.append(candidate)
                continue
            result[index] = self._merge_pair(kind, result[index], candidate, conflicts)
            matched.add(index)

        return result

    def _merge_pair(
        self,
        kind: EntityKind,
        pattern_entity: ClinicalEntity,
        llm_entity: ClinicalEntity,
        conflicts: List[MergeConflict],
    ) -> ClinicalEntity:
        merged = copy.copy(pattern_entity)
        merged.field_sources = {}
        merged.mention_count = max(pattern_entity.mention_count, llm_entity.mention_count)
        winners = set()
        attribute = ENTITY_ATTRIBUTES[kind]

        for name in pattern_entity.MERGE_FIELDS:
            p_value = getattr(pattern_entity, name)
            l_value = getattr(llm_entity, name)
            if p_value is None and l_value is None:
                continue
            if p_value is None:
                setattr(merged, name, l_value)
                merged.field_sources[name] = Source.LLM
                if name == merged.DATE_FIELD:
                    merged.date_resolved = llm_entity.date_resolved
                continue
            if l_value is None:
                merged.field_sources[name] = Source.PATTERN
                continue
            if values_agree(p_value, l_value):
                merged.field_sources[name] = Source.MERGED
                continue

            path = f"{attribute}.{name}"
            winner = self.priority.winner(path)
            chosen, other = (p_value, l_value) if winner == Source.PATTERN else (l_value, p_value)
            setattr(merged, name, chosen)
            if winner == Source.LLM and name == merged.DATE_FIELD:
                merged.date_resolved = llm_entity.date_resolved
            merged.field_sources[name] = winner
            winners.add(winner)
            conflicts.append(MergeConflict(
                field=path,
                chosen_value=chosen,
                chosen_source=winner,
                alternative_value=other,
                alternative_source=Source.LLM if winner == Source.PATTERN else Source.PATTERN,
                reason=f"{pattern_entity.name}: {winner.value} priority",
            ))

        if getattr(merged, "status", None) == MedicationStatus.UNKNOWN:
            merged.status = llm_entity.status

        if not winners:
            merged.source = Source.MERGED
            merged.confidence = self._agreement_confidence(pattern_entity.confidence, llm_entity.confidence)
        elif len(winners) == 1:
            merged.source = winners.pop()
            merged.confidence = (
                pattern_entity.confidence if merged.source == Source.PATTERN else llm_entity.confidence
            )
        else:
            merged.source = Source.MERGED
            merged.confidence = max(pattern_entity.confidence, llm_entity.confidence)
        return merged
