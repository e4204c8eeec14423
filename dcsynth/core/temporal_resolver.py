"""
NeuroSynth DCS - Temporal Resolution
====================================

Assigns absolute dates to extracted entities and separates new clinical
events from repeated mentions of events already recorded.

Dating order for one mention:
    1. Explicit date near the mention (unless a relative marker is closer)
    2. Relative marker: POD#n, HD#n, "3 days ago", "yesterday", "this morning"
    3. The note's reported date
    4. Admission + 2 days, flagged date_resolved=False
    5. None

Anchors:
    admission  record admission date, else earliest note reported date
    surgery    earliest explicit procedure date (cue or a date stated with the procedure)
    POD#n -> surgery + n (admission + n without a surgery date)
    HD#n  -> admission + (n - 1)

Usage:
    resolver = TemporalResolver()
    anchors = TemporalAnchors.from_records([pattern_record, llm_record], notes)
    resolver.resolve(pattern_record, notes, anchors)
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from dcsynth.core.config import TemporalConfig
from dcsynth.core.negation import sentence_bounds
from dcsynth.core.text_normalizer import find_dates
from dcsynth.shared.enums import EntityKind, MentionKind
from dcsynth.shared.models import ClinicalEntity, ClinicalNote, ExtractedRecord

logger = logging.getLogger(__name__)


# =============================================================================
# MARKERS & CUES
# =============================================================================

POD_PATTERN = re.compile(r"\b(?:POD|post[- ]?op(?:erative)?\s+day)\s*#?\s*(\d{1,3})\b", re.I)
HD_PATTERN = re.compile(r"\b(?:HD|hospital\s+day)\s*#?\s*(\d{1,3})\b", re.I)
DAYS_AGO_PATTERN = re.compile(r"\b(\d{1,2})\s+days?\s+ago\b", re.I)
YESTERDAY_PATTERN = re.compile(r"\b(?:yesterday|last night)\b", re.I)
TODAY_PATTERN = re.compile(r"\b(?:today|this morning|this afternoon|this evening|tonight)\b", re.I)

NEW_EVENT_CUES = re.compile(
    r"\b(?:underwent|performed|today|this morning|was placed|were placed|was started|"
    r"taken to (?:the )?OR)\b",
    re.I,
)

# (cue, classification confidence); first hit wins
REFERENCE_CUES: List[Tuple[re.Pattern, float]] = [
    (re.compile(r"(?:\bs/p\b|\bstatus post\b)", re.I), 0.95),
    (POD_PATTERN, 0.9),
    (re.compile(r"\bpost[- ]?op(?:erative(?:ly)?)?\b", re.I), 0.85),
    (re.compile(r"\b(?:previously|prior|earlier|recent)\b", re.I), 0.85),
    (re.compile(r"\b(?:continues|continued|remains|still|in place|ongoing)\b", re.I), 0.8),
]

NEW_EVENT_CONFIDENCE = 0.9
REFERENCE_WINDOW_CONFIDENCE = 0.8
DEFAULT_NEW_EVENT_CONFIDENCE = 0.7

EXPLICIT_NEAR_CONFIDENCE = 0.9
EXPLICIT_FAR_CONFIDENCE = 0.7
ANCHOR_MARKER_CONFIDENCE = 0.85
RELATIVE_DAY_CONFIDENCE = 0.8
REPORTED_DATE_CONFIDENCE = 0.6
FALLBACK_CONFIDENCE = 0.3
SUPPLIED_DATE_CONFIDENCE = 0.8


@dataclass
class RelativeMarker:
    """A relative date expression found in note text."""
    kind: str           # pod, hd, days_ago
    offset: int
    start: int
    end: int


def find_markers(text: str) -> List[RelativeMarker]:
    markers = []
    for m in POD_PATTERN.finditer(text):
        markers.append(RelativeMarker("pod", int(m.group(1)), m.start(), m.end()))
    for m in HD_PATTERN.finditer(text):
        markers.append(RelativeMarker("hd", int(m.group(1)), m.start(), m.end()))
    for m in DAYS_AGO_PATTERN.finditer(text):
        markers.append(RelativeMarker("days_ago", int(m.group(1)), m.start(), m.end()))
    for m in YESTERDAY_PATTERN.finditer(text):
        markers.append(RelativeMarker("days_ago", 1, m.start(), m.end()))
    for m in TODAY_PATTERN.finditer(text):
        markers.append(RelativeMarker("days_ago", 0, m.start(), m.end()))
    markers.sort(key=lambda mk: mk.start)
    return markers


def _stated_date(entity: ClinicalEntity, note: Optional[ClinicalNote]) -> Optional[date]:
    """Explicit date written in the same sentence as the mention, nearest first."""
    if note is None or not entity.span:
        return None
    start, end = entity.span
    s_start, s_end = sentence_bounds(note.text, start, end)
    candidates = [
        (_distance(d_start, d_end, start, end), value)
        for value, d_start, d_end in find_dates(note.text)
        if d_start >= s_start and d_end <= s_end + 1
    ]
    return min(candidates)[1] if candidates else None


def _distance(span_start: int, span_end: int, start: int, end: int) -> int:
    """Characters between [span_start, span_end) and [start, end); 0 when overlapping."""
    if span_end <= start:
        return start - span_end
    if span_start >= end:
        return span_start - end
    return 0


# =============================================================================
# ANCHORS
# =============================================================================

@dataclass(frozen=True)
class TemporalAnchors:
    """Reference dates relative markers are resolved against."""
    admission: Optional[date] = None
    surgery: Optional[date] = None
    discharge: Optional[date] = None

    @classmethod
    def from_records(
        cls,
        records: Sequence[Optional[ExtractedRecord]],
        notes: Sequence[ClinicalNote],
    ) -> "TemporalAnchors":
        """First record with a value wins (pass the pattern record first)."""
        records = [r for r in records if r is not None]

        admission = next((r.admission_date for r in records if r.admission_date), None)
        if admission is None:
            reported = [n.reported_date for n in notes if n.reported_date]
            admission = min(reported) if reported else None

        discharge = next((r.discharge_date for r in records if r.discharge_date), None)

        notes_by_id = {n.id: n for n in notes}
        explicit: List[date] = []
        for record in records:
            explicit.extend(f.value for f in record.dates.procedure_dates if isinstance(f.value, date))
            for procedure in record.procedures:
                if procedure.date and procedure.date_resolved:
                    explicit.append(procedure.date)
                    continue
                stated = _stated_date(procedure, notes_by_id.get(procedure.note_id))
                if stated is not None:
                    explicit.append(stated)

        window = cls(admission=admission, discharge=discharge)
        explicit = [d for d in explicit if window.contains(d)]
        surgery = min(explicit) if explicit else None

        return cls(admission=admission, surgery=surgery, discharge=discharge)

    def marker_date(self, marker: RelativeMarker, note: Optional[ClinicalNote]) -> Optional[date]:
        if marker.kind == "pod":
            base = self.surgery or self.admission
            return base + timedelta(days=marker.offset) if base else None
        if marker.kind == "hd":
            if self.admission is None:
                return None
            return self.admission + timedelta(days=max(marker.offset - 1, 0))
        if note is not None and note.reported_date:
            return note.reported_date - timedelta(days=marker.offset)
        return None

    def contains(self, value: date) -> bool:
        if self.admission and value < self.admission:
            return False
        if self.discharge and value > self.discharge:
            return False
        return True


# =============================================================================
# RESOLVER
# =============================================================================

class TemporalResolver:
    """Dates entities and classifies their mentions as new events or references."""

    def __init__(self, config: Optional[TemporalConfig] = None):
        self.config = config or TemporalConfig()

    def resolve(
        self,
        record: ExtractedRecord,
        notes: Sequence[ClinicalNote],
        anchors: Optional[TemporalAnchors] = None,
        reference_window_days: Optional[int] = None,
    ) -> ExtractedRecord:
        """
        Resolve dates and mention kinds in place.

        Args:
            record: Pattern or LLM record
            notes: The notes the record was extracted from
            anchors: Shared anchors (computed from this record when omitted)
            reference_window_days: Override for the new-event/reference window

        Returns:
            The same record, for chaining
        """
        anchors = anchors or TemporalAnchors.from_records([record], notes)
        notes_by_id = {n.id: n for n in notes}
        window = self.config.reference_window_days if reference_window_days is None else reference_window_days

        for entity in record.iter_entities():
            self._resolve_entity(entity, notes_by_id.get(entity.note_id), anchors)

        flagged = self.flag_chronology(record, anchors)
        self.classify_mentions(record, notes, window)

        unresolved = sum(1 for e in record.iter_entities() if not e.date_resolved)
        logger.debug(
            f"Temporal resolution: anchors admission={anchors.admission} surgery={anchors.surgery}, "
            f"{unresolved} unresolved, {flagged} outside admission window"
        )
        return record

    # -------------------------------------------------------------------------
    # Dating
    # -------------------------------------------------------------------------

    def _resolve_entity(
        self,
        entity: ClinicalEntity,
        note: Optional[ClinicalNote],
        anchors: TemporalAnchors,
    ) -> None:
        if entity.event_date is not None:
            entity.date_resolved = True
            entity.date_confidence = entity.date_confidence or SUPPLIED_DATE_CONFIDENCE
            return

        if note is not None and entity.span:
            resolved = self._date_from_context(note, entity.span[0], entity.span[1], anchors)
            if resolved is not None:
                entity.event_date, entity.date_confidence = resolved
                entity.date_resolved = True
                return

        if anchors.admission is not None:
            entity.event_date = anchors.admission + timedelta(days=self.config.fallback_offset_days)
            entity.date_confidence = FALLBACK_CONFIDENCE
        else:
            entity.event_date = None
            entity.date_confidence = 0.0
        entity.date_resolved = False

    def _date_from_context(
        self,
        note: ClinicalNote,
        start: int,
        end: int,
        anchors: TemporalAnchors,
    ) -> Optional[Tuple[date, float]]:
        text = note.text

        explicit = None
        explicit_distance = None
        for value, d_start, d_end in find_dates(text):
            distance = _distance(d_start, d_end, start, end)
            if distance <= self.config.date_window_chars and (
                explicit_distance is None or distance < explicit_distance
            ):
                explicit, explicit_distance = value, distance

        marker_value = None
        marker_distance = None
        marker_kind = None
        for marker in find_markers(text):
            distance = _distance(marker.start, marker.end, start, end)
            if distance > self.config.marker_window_chars:
                continue
            if marker_distance is not None and distance >= marker_distance:
                continue
            value = anchors.marker_date(marker, note)
            if value is not None:
                marker_value, marker_distance, marker_kind = value, distance, marker.kind

        if explicit is not None and (marker_value is None or explicit_distance <= marker_distance):
            confidence = (
                EXPLICIT_NEAR_CONFIDENCE
                if explicit_distance <= self.config.nearby_date_chars
                else EXPLICIT_FAR_CONFIDENCE
            )
            return explicit, confidence

        if marker_value is not None:
            confidence = ANCHOR_MARKER_CONFIDENCE if marker_kind in ("pod", "hd") else RELATIVE_DAY_CONFIDENCE
            return marker_value, confidence

        if note.reported_date is not None:
            return note.reported_date, REPORTED_DATE_CONFIDENCE
        return None

    def resolve_text_date(
        self,
        text: str,
        note: Optional[ClinicalNote],
        anchors: TemporalAnchors,
    ) -> Optional[date]:
        """Date an arbitrary sentence: explicit date, then marker, then the note's date."""
        dates = find_dates(text)
        if dates:
            return dates[0][0]
        for marker in find_markers(text):
            value = anchors.marker_date(marker, note)
            if value is not None:
                return value
        return note.reported_date if note is not None else None

    @staticmethod
    def flag_chronology(record: ExtractedRecord, anchors: TemporalAnchors) -> int:
        """Mark entities dated outside [admission, discharge] as unresolved."""
        flagged = 0
        for entity in record.iter_entities():
            value = entity.event_date
            if value is None or not entity.date_resolved:
                continue
            if not anchors.contains(value):
                entity.date_resolved = False
                flagged += 1
                logger.warning(
                    f"{entity.kind.value} '{entity.name}' dated {value} falls outside "
                    f"admission window {anchors.admission}..{anchors.discharge}"
                )
        return flagged

    # -------------------------------------------------------------------------
    # Mention classification
    # -------------------------------------------------------------------------

    def classify_mentions(
        self,
        record: ExtractedRecord,
        notes: Sequence[ClinicalNote],
        window_days: int,
    ) -> None:
        """Walk mentions in note order, linking repeats to their first new event."""
        notes_by_id = {n.id: n for n in notes}

        for kind in EntityKind:
            mentions = [
                e for e in record.entities(kind)
                if e.note_id in notes_by_id and e.span is not None
            ]
            mentions.sort(key=lambda e: (notes_by_id[e.note_id].index, e.span[0]))

            seen: Dict[str, List[ClinicalEntity]] = {}
            for entity in mentions:
                prior = seen.get(entity.name, [])
                mention_kind, confidence, canonical_id = self._classify(
                    entity, notes_by_id[entity.note_id], prior, window_days
                )
                entity.mention_kind = mention_kind
                entity.mention_confidence = confidence
                entity.canonical_id = canonical_id
                seen.setdefault(entity.name, []).append(entity)

    def _classify(
        self,
        entity: ClinicalEntity,
        note: ClinicalNote,
        prior: List[ClinicalEntity],
        window_days: int,
    ) -> Tuple[MentionKind, float, Optional[str]]:
        sent_start, sent_end = sentence_bounds(note.text, entity.span[0], entity.span[1])
        sentence = note.text[sent_start:sent_end]

        if NEW_EVENT_CUES.search(sentence):
            return MentionKind.NEW_EVENT, NEW_EVENT_CONFIDENCE, None
        if not prior:
            return MentionKind.NEW_EVENT, DEFAULT_NEW_EVENT_CONFIDENCE, None

        canonical = next((p for p in prior if p.mention_kind == MentionKind.NEW_EVENT), prior[0])

        for cue, confidence in REFERENCE_CUES:
            if cue.search(sentence):
                return MentionKind.REFERENCE, confidence, canonical.id

        if (
            entity.event_date is not None
            and canonical.event_date is not None
            and abs((entity.event_date - canonical.event_date).days) <= window_days
            and not self._has_new_detail(entity, canonical)
        ):
            return MentionKind.REFERENCE, REFERENCE_WINDOW_CONFIDENCE, canonical.id

        return MentionKind.NEW_EVENT, DEFAULT_NEW_EVENT_CONFIDENCE, None

    @staticmethod
    def _has_new_detail(entity: ClinicalEntity, canonical: ClinicalEntity) -> bool:
        for name in entity.MERGE_FIELDS:
            if name == entity.DATE_FIELD:
                continue
            value = getattr(entity, name)
            known = getattr(canonical, name)
            if value is not None and known is not None and value != known:
                return True
        return False
