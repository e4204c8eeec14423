"""
NeuroSynth DCS - Note & Entity Deduplication
============================================

Daily progress notes repeat themselves. Two passes remove the repetition:

Note level (before extraction):
    1. Exact duplicates: SHA-256 of the comparison-normalized text
    2. Substrings: a note wholly contained in another note
    3. Near duplicates: word-shingle Jaccard >= 0.85
    4. Complementary notes: Jaccard in [0.30, 0.60] with the same temporal
       context (POD/HD number, else date, else reported date) are merged

Entity level (after temporal resolution):
    Mentions with the same canonical name (synonym tables, else rapidfuzz
    token_sort_ratio >= 75) whose dates fall within +/-1 day are grouped; references
    join the group of the event they refer to.

Usage:
    dedup = Deduplicator()
    result = dedup.deduplicate_notes(notes)
    groups = dedup.group_entities(record)
"""

import hashlib
import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from rapidfuzz import fuzz

from dcsynth.core.clinical_patterns import (
    COMPLICATION_SYNONYMS,
    MEDICATION_SYNONYMS,
    PROCEDURE_SYNONYMS,
    build_keyword_processor,
    canonical_name,
)
from dcsynth.core.config import DeduplicationConfig
from dcsynth.core.temporal_resolver import HD_PATTERN, POD_PATTERN
from dcsynth.core.text_normalizer import find_dates, normalize_for_comparison, split_sentences
from dcsynth.shared.enums import EntityKind, MentionKind
from dcsynth.shared.models import (
    ClinicalEntity,
    ClinicalNote,
    DeduplicationGroup,
    ExtractedRecord,
    NoteDeduplicationResult,
)

logger = logging.getLogger(__name__)

PRIORITY_KEYWORDS = ("operative", "procedure", "impression", "assessment", "discharge", "follow-up")
_KEYWORD_PATTERN = re.compile(r"\b(?:" + "|".join(re.escape(k) for k in PRIORITY_KEYWORDS) + r")\b", re.I)

_ENTITY_PROCESSOR = build_keyword_processor(
    {**PROCEDURE_SYNONYMS, **COMPLICATION_SYNONYMS, **MEDICATION_SYNONYMS}
)


def fingerprint(text: str) -> str:
    return hashlib.sha256(normalize_for_comparison(text).encode("utf-8")).hexdigest()


def jaccard(a: Set, b: Set) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def token_similarity(a: str, b: str) -> float:
    """Word-order-insensitive fuzzy name similarity in [0, 1]."""
    return fuzz.token_sort_ratio(normalize_for_comparison(a), normalize_for_comparison(b)) / 100


class Deduplicator:
    """Note-level and entity-level duplicate removal."""

    def __init__(self, config: Optional[DeduplicationConfig] = None):
        self.config = config or DeduplicationConfig()

    # =========================================================================
    # NOTE LEVEL
    # =========================================================================

    def shingles(self, text: str) -> Set[Tuple[str, ...]]:
        words = normalize_for_comparison(text).split()
        k = self.config.shingle_size
        if len(words) < k:
            return {(w,) for w in words}
        return {tuple(words[i:i + k]) for i in range(len(words) - k + 1)}

    def similarity(self, a: str, b: str) -> float:
        return jaccard(self.shingles(a), self.shingles(b))

    @staticmethod
    def priority(note: ClinicalNote) -> float:
        """Information score: longer notes with more entities, markers and key sections rank higher."""
        text = note.text
        entities = len(_ENTITY_PROCESSOR.extract_keywords(text))
        markers = len(POD_PATTERN.findall(text)) + len(HD_PATTERN.findall(text)) + len(find_dates(text))
        keywords = len(_KEYWORD_PATTERN.findall(text))
        return len(text) / 100 + 10 * entities + 5 * markers + 15 * keywords

    @staticmethod
    def temporal_context(note: ClinicalNote) -> Optional[Tuple[str, object]]:
        pod = POD_PATTERN.search(note.text)
        if pod:
            return ("pod", int(pod.group(1)))
        hd = HD_PATTERN.search(note.text)
        if hd:
            return ("hd", int(hd.group(1)))
        dates = find_dates(note.text)
        if dates:
            return ("date", dates[0][0])
        if note.reported_date:
            return ("reported", note.reported_date)
        return None

    def deduplicate_notes(self, notes: Sequence[ClinicalNote]) -> NoteDeduplicationResult:
        """Remove exact, substring and near-duplicate notes; merge complementary ones."""
        result = NoteDeduplicationResult(notes=[], original_count=len(notes))

        # Exact
        seen: Dict[str, str] = {}
        kept: List[ClinicalNote] = []
        for note in notes:
            fp = fingerprint(note.text)
            if fp in seen:
                logger.debug(f"Dropping {note.id}: exact duplicate of {seen[fp]}")
                result.exact_removed += 1
                continue
            seen[fp] = note.id
            kept.append(note)

        # Substring
        normalized = {n.id: normalize_for_comparison(n.text) for n in kept}
        survivors = []
        for note in kept:
            text = normalized[note.id]
            container = next(
                (o for o in kept if o.id != note.id and len(text) < len(normalized[o.id]) and text in normalized[o.id]),
                None,
            )
            if container is not None:
                logger.debug(f"Dropping {note.id}: contained in {container.id}")
                result.near_removed += 1
                continue
            survivors.append(note)

        # Near duplicates
        shingle_sets = {n.id: self.shingles(n.text) for n in survivors}
        priorities = {n.id: self.priority(n) for n in survivors}
        removed: Set[str] = set()
        for i, a in enumerate(survivors):
            if a.id in removed:
                continue
            for b in survivors[i + 1:]:
                if b.id in removed:
                    continue
                sa, sb = shingle_sets[a.id], shingle_sets[b.id]
                if jaccard(sa, sb) < self.config.near_duplicate_threshold:
                    continue
                if sa < sb:
                    drop = a
                elif sb < sa:
                    drop = b
                else:
                    drop = a if priorities[a.id] < priorities[b.id] else b
                removed.add(drop.id)
                result.near_removed += 1
                logger.debug(f"Dropping {drop.id}: near duplicate")
                if drop is a:
                    break
        survivors = [n for n in survivors if n.id not in removed]

        # Complementary merge
        current = {n.id: n for n in survivors}
        order = [n.id for n in survivors]
        for i, a_id in enumerate(order):
            for b_id in order[i + 1:]:
                if a_id not in current or b_id not in current:
                    continue
                a, b = current[a_id], current[b_id]
                score = self.similarity(a.text, b.text)
                if not self.config.complementary_min <= score <= self.config.complementary_max:
                    continue
                context = self.temporal_context(a)
                if context is None or context != self.temporal_context(b):
                    continue

                keep, drop = (a, b) if priorities[a_id] >= priorities[b_id] else (b, a)
                current[keep.id] = self._merge_notes(keep, drop)
                priorities[keep.id] += self.config.merge_priority_bonus
                del current[drop.id]
                result.merge_count += 1
                logger.debug(f"Merged complementary {drop.id} into {keep.id} (similarity {score:.2f})")

        result.notes = [current[i] for i in order if i in current]
        result.final_count = len(result.notes)
        logger.info(
            f"Note deduplication: {result.original_count} -> {result.final_count} "
            f"({result.reduction_percent}% reduction, {result.merge_count} merged)"
        )
        return result

    @staticmethod
    def _merge_notes(keep: ClinicalNote, drop: ClinicalNote) -> ClinicalNote:
        known = {normalize_for_comparison(s.text) for s in split_sentences(keep.text)}
        additions = [
            s.text for s in split_sentences(drop.text)
            if normalize_for_comparison(s.text) not in known
        ]
        text = keep.text if not additions else keep.text + "\n" + "\n".join(additions)
        return replace(
            keep,
            text=text,
            reported_date=keep.reported_date or drop.reported_date,
            merged_from=keep.merged_from + [drop.id] + drop.merged_from,
        )

    # =========================================================================
    # ENTITY LEVEL
    # =========================================================================

    def name_similarity(self, kind: EntityKind, a: str, b: str) -> float:
        if canonical_name(kind, a) == canonical_name(kind, b):
            return 1.0
        return token_similarity(a, b)

    def _same_event(self, kind: EntityKind, a: ClinicalEntity, b: ClinicalEntity) -> bool:
        if self.name_similarity(kind, a.name, b.name) < self.config.entity_similarity_threshold:
            return False
        if kind == EntityKind.FUNCTIONAL_SCORE and a.value != b.value:
            return False
        if a.event_date is None or b.event_date is None:
            return False
        return abs((a.event_date - b.event_date).days) <= self.config.entity_date_window_days

    @staticmethod
    def select_canonical(members: List[ClinicalEntity]) -> ClinicalEntity:
        """New-event mention with a resolved date and highest confidence; ties: earliest date, first seen."""
        def rank(item):
            position, entity = item
            return (
                entity.mention_kind != MentionKind.NEW_EVENT,
                not entity.date_resolved,
                -entity.confidence,
                entity.event_date.toordinal() if entity.event_date else float("inf"),
                position,
            )
        return min(enumerate(members), key=rank)[1]

    def group_entities(self, record: ExtractedRecord) -> List[DeduplicationGroup]:
        """Group repeated mentions of one event; only groups with duplicates are returned."""
        groups: List[DeduplicationGroup] = []

        for kind in EntityKind:
            entities = record.entities(kind)
            ids = {e.id for e in entities}
            references = [
                e for e in entities
                if e.mention_kind == MentionKind.REFERENCE and e.canonical_id in ids
            ]
            reference_ids = {id(e) for e in references}
            primaries = [e for e in entities if id(e) not in reference_ids]

            clusters: List[List[ClinicalEntity]] = []
            for entity in (e for e in primaries if e.event_date is not None):
                cluster = next(
                    (c for c in clusters if any(self._same_event(kind, entity, m) for m in c)),
                    None,
                )
                if cluster is None:
                    clusters.append([entity])
                else:
                    cluster.append(entity)

            for entity in (e for e in primaries if e.event_date is None):
                same_name = [
                    c for c in clusters
                    if self.name_similarity(kind, entity.name, c[0].name) >= self.config.entity_similarity_threshold
                    and (kind != EntityKind.FUNCTIONAL_SCORE or c[0].value == entity.value)
                ]
                if same_name:
                    max(same_name, key=lambda c: max(m.confidence for m in c)).append(entity)
                else:
                    clusters.append([entity])

            for entity in references:
                cluster = next((c for c in clusters if any(m.id == entity.canonical_id for m in c)), None)
                if cluster is None:
                    clusters.append([entity])
                else:
                    cluster.append(entity)

            for cluster in clusters:
                if len(cluster) < 2:
                    continue
                canonical = self.select_canonical(cluster)
                duplicates = [m for m in cluster if m is not canonical]
                groups.append(DeduplicationGroup(
                    canonical_event_id=canonical.id,
                    duplicate_mention_ids=[m.id for m in duplicates],
                    similarity_score=min(self.name_similarity(kind, canonical.name, m.name) for m in duplicates),
                    entity_kind=kind,
                    canonical_name=canonical.name,
                ))

        if groups:
            logger.info(
                f"Entity deduplication: {len(groups)} groups collapsing "
                f"{sum(len(g.duplicate_mention_ids) for g in groups)} mentions"
            )
        return groups
