"""
NeuroSynth DCS - Deterministic Pattern Extraction
=================================================

Rule-based extraction of a partial clinical record from normalized notes.

Per category an ordered list of matchers runs over every note:
    Demographics: labelled regexes, shorthand ("55M"), pronoun fallback
    Dates: cue phrase + nearest following date
    Pathology: FlashText keyword scoring, subtype/location regexes
    Procedures / complications / medications: FlashText synonym tables
    Functional scores: explicit scale regexes, phrase-based estimates

Confidence of a value:
    base (rule specificity)
    + 0.05 per additional note corroborating it (capped at 0.95)
    x 0.7 when hedged ("possible", "r/o")
    x temporal qualifier factor ("history of" 0.8, "plan for" 0.6)
Negated mentions ("no vasospasm", "EVD not needed") are suppressed.

Usage:
    extractor = PatternExtractor()
    record = extractor.extract(notes)
    record.procedures[0].name   # "EVD placement"
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from dcsynth.core.clinical_patterns import (
    ADMISSION_CUES,
    AGE_RULES,
    COMPLICATION_SYNONYMS,
    DATE_CUE_WINDOW,
    DISCHARGE_CUES,
    DOSE_PATTERN,
    FEMALE_PRONOUNS,
    FREQUENCY_CANONICAL,
    FREQUENCY_PATTERN,
    LOCATION_RULES,
    MALE_PRONOUNS,
    MEDICATION_SYNONYMS,
    MRN_RULES,
    NAME_RULES,
    PATHOLOGY_KEYWORDS,
    PATHOLOGY_WEIGHTS,
    PROCEDURE_DATE_CUES,
    PROCEDURE_SYNONYMS,
    ROUTE_CANONICAL,
    ROUTE_PATTERN,
    SCORE_ESTIMATES,
    SCORE_RANGES,
    SCORE_RULES,
    SEVERITY_CANONICAL,
    SEVERITY_PATTERN,
    SEX_RULES,
    SEX_VALUES,
    STATUS_PATTERNS,
    SUBTYPE_LABELS,
    SUBTYPE_RULES,
    PatternRule,
    build_keyword_processor,
    canonical_name,
    is_abbreviation,
)
from dcsynth.core.learned_patterns import LearnedPattern
from dcsynth.core.negation import (
    NegationDetector,
    TemporalQualifierDetector,
    UncertaintyDetector,
    sentence_bounds,
)
from dcsynth.core.text_normalizer import find_dates
from dcsynth.shared.enums import (
    EntityKind,
    MedicationStatus,
    PathologyKind,
    ScoreType,
    Source,
    TemporalQualifier,
)
from dcsynth.shared.models import (
    AdmissionDates,
    ClinicalEntity,
    ClinicalNote,
    Complication,
    ConfidenceLevel,
    Demographics,
    ExtractedField,
    ExtractedRecord,
    FunctionalScore,
    Medication,
    Pathology,
    Procedure,
    pathology_from_label,
)

logger = logging.getLogger(__name__)

CORROBORATION_BONUS = 0.05
CONFIDENCE_CAP = 0.95
UNCERTAINTY_FACTOR = 0.7

ENTITY_CLASSES: Dict[EntityKind, Type[ClinicalEntity]] = {
    EntityKind.PROCEDURE: Procedure,
    EntityKind.COMPLICATION: Complication,
    EntityKind.MEDICATION: Medication,
    EntityKind.FUNCTIONAL_SCORE: FunctionalScore,
}

ID_PREFIXES = {
    EntityKind.PROCEDURE: "proc",
    EntityKind.COMPLICATION: "comp",
    EntityKind.MEDICATION: "med",
    EntityKind.FUNCTIONAL_SCORE: "score",
}

LEARNED_ENTITY_FIELDS = {
    "procedures": EntityKind.PROCEDURE,
    "complications": EntityKind.COMPLICATION,
    "medications": EntityKind.MEDICATION,
}


@dataclass
class PatternMatch:
    """A single rule hit: (value, span, rule id) plus its base confidence."""
    value: Any
    span: Tuple[int, int]
    rule_id: str
    confidence: float
    note_id: str
    order: int = 0


def corroborated(base: float, independent_matches: int) -> float:
    """Raise a base confidence for each additional independent match."""
    if independent_matches <= 1 or base >= CONFIDENCE_CAP:
        return base
    return min(CONFIDENCE_CAP, base + CORROBORATION_BONUS * (independent_matches - 1))


def assign_entity_ids(record: ExtractedRecord) -> None:
    """Give every entity a stable, kind-prefixed id (proc_001, med_002, ...)."""
    for kind, prefix in ID_PREFIXES.items():
        for i, entity in enumerate(record.entities(kind), start=1):
            entity.id = f"{prefix}_{i:03d}"


class PatternExtractor:
    """Deterministic rule engine producing a pattern-sourced record."""

    def __init__(
        self,
        negation: Optional[NegationDetector] = None,
        uncertainty: Optional[UncertaintyDetector] = None,
        qualifiers: Optional[TemporalQualifierDetector] = None,
    ):
        self.negation = negation or NegationDetector()
        self.uncertainty = uncertainty or UncertaintyDetector()
        self.qualifiers = qualifiers or TemporalQualifierDetector()

        self._processors = {
            EntityKind.PROCEDURE: build_keyword_processor(PROCEDURE_SYNONYMS),
            EntityKind.COMPLICATION: build_keyword_processor(COMPLICATION_SYNONYMS),
            EntityKind.MEDICATION: build_keyword_processor(MEDICATION_SYNONYMS),
        }
        self._pathology_processor = build_keyword_processor(PATHOLOGY_KEYWORDS)

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def extract(
        self,
        notes: Sequence[ClinicalNote],
        learned_patterns: Sequence[LearnedPattern] = (),
    ) -> ExtractedRecord:
        """Run every category's rules over the notes."""
        record = ExtractedRecord(
            demographics=self.extract_demographics(notes),
            dates=self.extract_dates(notes),
            pathology=self.extract_pathology(notes),
            procedures=self.extract_entities(notes, EntityKind.PROCEDURE),
            complications=self.extract_entities(notes, EntityKind.COMPLICATION),
            medications=self.extract_entities(notes, EntityKind.MEDICATION),
            functional_scores=self.extract_functional_scores(notes),
        )

        if learned_patterns:
            self.apply_learned_patterns(record, notes, learned_patterns)

        self._apply_corroboration(record)
        assign_entity_ids(record)

        logger.info(
            f"Pattern extraction: {len(record.procedures)} procedure, "
            f"{len(record.complications)} complication, {len(record.medications)} medication, "
            f"{len(record.functional_scores)} score mentions"
        )
        return record

    # =========================================================================
    # RULE HELPERS
    # =========================================================================

    @staticmethod
    def _run_rules(
        notes: Sequence[ClinicalNote],
        rules: Sequence[PatternRule],
        convert: Callable[[str], Any] = lambda v: v.strip(),
    ) -> List[PatternMatch]:
        matches = []
        order = 0
        for note in notes:
            for rule in rules:
                for m in rule.pattern.finditer(note.text):
                    value = convert(m.group(rule.group))
                    if value is None or value == "":
                        continue
                    matches.append(PatternMatch(value, m.span(rule.group), rule.rule_id, rule.confidence, note.id, order))
                    order += 1
        return matches

    @staticmethod
    def _select_best(
        matches: List[PatternMatch],
        key: Callable[[Any], Any] = lambda v: str(v).lower(),
        tie_break: Optional[Callable[[Any], Any]] = None,
    ) -> Optional[ExtractedField]:
        """
        Pick one value from competing matches.

        Matches are grouped by normalized value; a group's confidence is its
        best base confidence corroborated by the number of distinct notes
        that produced it.
        """
        if not matches:
            return None

        groups: "OrderedDict[Any, List[PatternMatch]]" = OrderedDict()
        for m in matches:
            groups.setdefault(key(m.value), []).append(m)

        scored = []
        for position, group in enumerate(groups.values()):
            best = max(group, key=lambda m: (m.confidence, -m.order))
            confidence = corroborated(best.confidence, len({m.note_id for m in group}))
            secondary = tie_break(best.value) if tie_break else position
            scored.append((-confidence, secondary, best, confidence))

        scored.sort(key=lambda item: (item[0], item[1]))
        _, _, best, confidence = scored[0]
        return ExtractedField(
            value=best.value,
            confidence=confidence,
            source=Source.PATTERN,
            rule_id=best.rule_id,
            note_id=best.note_id,
            span=best.span,
        )

    # =========================================================================
    # DEMOGRAPHICS
    # =========================================================================

    def extract_demographics(self, notes: Sequence[ClinicalNote]) -> Demographics:
        def to_age(value: str) -> Optional[int]:
            age = int(value)
            return age if 0 < age <= 120 else None

        demographics = Demographics(
            name=self._select_best(self._run_rules(notes, NAME_RULES)),
            mrn=self._select_best(self._run_rules(notes, MRN_RULES)),
            age=self._select_best(self._run_rules(notes, AGE_RULES, to_age)),
            sex=self._select_best(
                self._run_rules(notes, SEX_RULES, lambda v: SEX_VALUES.get(v.lower()))
            ),
        )

        if demographics.sex is None:
            demographics.sex = self._sex_from_pronouns(notes)
        return demographics

    @staticmethod
    def _sex_from_pronouns(notes: Sequence[ClinicalNote]) -> Optional[ExtractedField]:
        male = sum(len(MALE_PRONOUNS.findall(n.text)) for n in notes)
        female = sum(len(FEMALE_PRONOUNS.findall(n.text)) for n in notes)
        if male >= 2 and male > 2 * female:
            value = "M"
        elif female >= 2 and female > 2 * male:
            value = "F"
        else:
            return None
        return ExtractedField(value, ConfidenceLevel.LOW, Source.PATTERN, rule_id="sex_pronouns")

    # =========================================================================
    # DATES
    # =========================================================================

    @staticmethod
    def _cue_dates(notes: Sequence[ClinicalNote], cues: Sequence[PatternRule]) -> List[PatternMatch]:
        matches = []
        order = 0
        for note in notes:
            for rule in cues:
                for m in rule.pattern.finditer(note.text):
                    window = note.text[m.end(): m.end() + DATE_CUE_WINDOW]
                    found = find_dates(window)
                    if not found:
                        continue
                    value, start, end = found[0]
                    between = window[:start]
                    if "\n" in between or ". " in between:
                        continue
                    span = (m.end() + start, m.end() + end)
                    matches.append(PatternMatch(value, span, rule.rule_id, rule.confidence, note.id, order))
                    order += 1
        return matches

    def extract_dates(self, notes: Sequence[ClinicalNote]) -> AdmissionDates:
        admission = self._select_best(
            self._cue_dates(notes, ADMISSION_CUES), key=lambda d: d, tie_break=lambda d: d.toordinal()
        )
        discharge = self._select_best(
            self._cue_dates(notes, DISCHARGE_CUES), key=lambda d: d, tie_break=lambda d: -d.toordinal()
        )

        procedure_dates: List[ExtractedField] = []
        by_date: Dict[date, List[PatternMatch]] = {}
        for m in self._cue_dates(notes, PROCEDURE_DATE_CUES):
            by_date.setdefault(m.value, []).append(m)
        for value in sorted(by_date):
            best = self._select_best(by_date[value], key=lambda d: d)
            procedure_dates.append(best)

        return AdmissionDates(admission=admission, discharge=discharge, procedure_dates=procedure_dates)

    # =========================================================================
    # PATHOLOGY
    # =========================================================================

    def extract_pathology(self, notes: Sequence[ClinicalNote]) -> Pathology:
        scores: Dict[PathologyKind, float] = {}
        hits: Dict[PathologyKind, List[PatternMatch]] = {}
        order = 0

        for note in notes:
            for label, start, end in self._pathology_processor.extract_keywords(note.text, span_info=True):
                negated, _ = self.negation.check(note.text, start, end)
                if negated:
                    continue
                kind = PathologyKind(label)
                surface = note.text[start:end]
                confidence = ConfidenceLevel.MEDIUM if is_abbreviation(surface) else ConfidenceLevel.HIGH
                uncertain, _ = self.uncertainty.check(note.text, start, end)
                if uncertain:
                    confidence *= UNCERTAINTY_FACTOR

                scores[kind] = scores.get(kind, 0.0) + PATHOLOGY_WEIGHTS.get(kind, 1.0) * confidence
                hits.setdefault(kind, []).append(
                    PatternMatch(kind, (start, end), f"pathology:{kind.value}", confidence, note.id, order)
                )
                order += 1

        pathology = Pathology()
        if scores:
            kind_order = list(PATHOLOGY_KEYWORDS)
            primary = max(scores, key=lambda k: (scores[k], -kind_order.index(k)))
            pathology.type = self._select_best(hits[primary], key=lambda v: v)

        pathology.subtype = self._extract_subtype(notes)
        pathology.location = self._select_best(self._run_rules(notes, LOCATION_RULES))
        return pathology

    def _extract_subtype(self, notes: Sequence[ClinicalNote]) -> Optional[ExtractedField]:
        components: "OrderedDict[str, PatternMatch]" = OrderedDict()
        for m in self._run_rules(notes, SUBTYPE_RULES):
            if m.rule_id not in components:
                components[m.rule_id] = m
        if not components:
            return None

        labels = [SUBTYPE_LABELS[rule_id].format(m.value) for rule_id, m in components.items()]
        first = next(iter(components.values()))
        return ExtractedField(
            value=", ".join(labels),
            confidence=max(m.confidence for m in components.values()),
            source=Source.PATTERN,
            rule_id="subtype:" + "+".join(components),
            note_id=first.note_id,
            span=first.span,
        )

    # =========================================================================
    # ENTITIES
    # =========================================================================

    def extract_entities(self, notes: Sequence[ClinicalNote], kind: EntityKind) -> List[ClinicalEntity]:
        """Extract procedure, complication or medication mentions."""
        processor = self._processors[kind]
        entity_class = ENTITY_CLASSES[kind]
        entities: List[ClinicalEntity] = []

        for note in notes:
            text = note.text
            for canonical, start, end in processor.extract_keywords(text, span_info=True):
                negated, cue = self.negation.check(
                    text, start, end, comma_terminates=kind != EntityKind.COMPLICATION
                )
                if negated:
                    logger.debug(f"Suppressed negated {kind.value} '{canonical}' ({cue}) in {note.id}")
                    continue

                surface = text[start:end]
                confidence = ConfidenceLevel.MEDIUM if is_abbreviation(surface) else ConfidenceLevel.HIGH
                uncertain, _ = self.uncertainty.check(text, start, end)
                if uncertain:
                    confidence *= UNCERTAINTY_FACTOR

                qualifiers = self.qualifiers.detect(text, start, end)
                confidence *= self.qualifiers.confidence_factor(qualifiers)

                entity = entity_class(
                    name=canonical,
                    confidence=confidence,
                    source=Source.PATTERN,
                    note_id=note.id,
                    span=(start, end),
                    rule_id=f"keyword:{kind.value}",
                    qualifiers=sorted(qualifiers, key=lambda q: q.value),
                )
                if kind == EntityKind.COMPLICATION:
                    self._enrich_complication(entity, text, start, end, qualifiers)
                elif kind == EntityKind.MEDICATION:
                    self._enrich_medication(entity, text, start, end)
                entities.append(entity)

        return entities

    @staticmethod
    def _enrich_complication(entity: Complication, text: str, start: int, end: int, qualifiers) -> None:
        sent_start, _ = sentence_bounds(text, start, end)
        before = text[max(sent_start, start - 30):start]
        severity = None
        for severity in SEVERITY_PATTERN.finditer(before):
            pass
        if severity:
            entity.severity = SEVERITY_CANONICAL[severity.group(1).lower()]

        if TemporalQualifier.RESOLVED in qualifiers:
            entity.resolved = True
        elif TemporalQualifier.ONGOING in qualifiers:
            entity.resolved = False

    @staticmethod
    def _enrich_medication(entity: Medication, text: str, start: int, end: int) -> None:
        sent_start, sent_end = sentence_bounds(text, start, end)
        after = text[end:min(sent_end, end + 60)]
        before = text[max(sent_start, start - 40):start]

        dose = DOSE_PATTERN.search(after)
        if dose:
            entity.dose = f"{dose.group(1)} {dose.group(2).lower()}"

        frequency = FREQUENCY_PATTERN.search(after)
        if frequency:
            raw = frequency.group(1).lower()
            entity.frequency = FREQUENCY_CANONICAL.get(raw, raw.replace(" ", "").upper())

        route = ROUTE_PATTERN.search(after)
        if route:
            entity.route = ROUTE_CANONICAL.get(route.group(1).lower(), route.group(1).upper())

        for status, pattern in STATUS_PATTERNS:
            if pattern.search(before) or (status != "continued" and pattern.search(after)):
                entity.status = MedicationStatus(status)
                break

    # =========================================================================
    # FUNCTIONAL SCORES
    # =========================================================================

    def extract_functional_scores(self, notes: Sequence[ClinicalNote]) -> List[FunctionalScore]:
        scores: List[FunctionalScore] = []
        explicit_types = set()

        for note in notes:
            for score_type, rules in SCORE_RULES.items():
                taken: List[Tuple[int, int]] = []
                for rule in rules:
                    for m in rule.pattern.finditer(note.text):
                        start, end = m.span(1)
                        if any(start < t_end and end > t_start for t_start, t_end in taken):
                            continue
                        value = self._score_value(score_type, rule.rule_id, m.group(1))
                        if value is None:
                            continue
                        taken.append((start, end))
                        explicit_types.add(score_type)
                        scores.append(FunctionalScore(
                            score_type=score_type,
                            value=value,
                            confidence=rule.confidence,
                            source=Source.PATTERN,
                            note_id=note.id,
                            span=(start, end),
                            rule_id=rule.rule_id,
                        ))

        for score_type, estimates in SCORE_ESTIMATES.items():
            if score_type in explicit_types:
                continue
            for note in notes:
                for pattern, value in estimates:
                    m = pattern.search(note.text)
                    if m:
                        scores.append(FunctionalScore(
                            score_type=score_type,
                            value=value,
                            confidence=ConfidenceLevel.LOW,
                            source=Source.PATTERN,
                            note_id=note.id,
                            span=m.span(),
                            rule_id=f"estimate:{score_type.value}",
                            estimated=True,
                        ))
                        break

        return scores

    @staticmethod
    def _score_value(score_type: ScoreType, rule_id: str, raw: str):
        if score_type == ScoreType.ASIA:
            return raw.upper()
        if rule_id == "gcs_components":
            parts = [c for c in raw.upper().replace(" ", "") if c.isdigit() or c == "T"]
            if "T" in parts:
                return None
            value = sum(int(p) for p in parts)
        else:
            value = int(raw)
        low, high = SCORE_RANGES[score_type]
        return value if low <= value <= high else None

    # =========================================================================
    # LEARNED PATTERNS & CORROBORATION
    # =========================================================================

    def apply_learned_patterns(
        self,
        record: ExtractedRecord,
        notes: Sequence[ClinicalNote],
        patterns: Sequence[LearnedPattern],
    ) -> None:
        """Run learned rules; scalar fields are only filled when still empty."""
        for pattern in patterns:
            regex = pattern.regex
            rule_id = f"learned:{pattern.id}"
            for note in notes:
                for m in regex.finditer(note.text):
                    value = pattern.render(m)
                    if not value:
                        continue

                    kind = LEARNED_ENTITY_FIELDS.get(pattern.field)
                    if kind is not None:
                        negated, _ = self.negation.check(note.text, m.start(), m.end(), comma_terminates=True)
                        if negated:
                            continue
                        record.entities(kind).append(ENTITY_CLASSES[kind](
                            name=canonical_name(kind, value),
                            confidence=pattern.confidence,
                            source=Source.PATTERN,
                            note_id=note.id,
                            span=m.span(),
                            rule_id=rule_id,
                        ))
                        continue

                    group_name, attr = pattern.field.split(".")
                    group = getattr(record, group_name)
                    if getattr(group, attr) is None:
                        field_value = pathology_from_label(value) if pattern.field == "pathology.type" else value
                        setattr(group, attr, ExtractedField(
                            field_value, pattern.confidence, Source.PATTERN,
                            rule_id=rule_id, note_id=note.id, span=m.span(),
                        ))

    @staticmethod
    def _apply_corroboration(record: ExtractedRecord) -> None:
        for kind in ENTITY_CLASSES:
            entities = record.entities(kind)
            notes_by_name: Dict[str, set] = {}
            for entity in entities:
                notes_by_name.setdefault(entity.name, set()).add(entity.note_id)
            for entity in entities:
                entity.confidence = corroborated(entity.confidence, len(notes_by_name[entity.name]))
