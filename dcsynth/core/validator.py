"""
NeuroSynth DCS - Record Validation
==================================

Structural, chronological, plausibility and source-verification checks on
a merged record.

Errors (record is invalid):
    - missing required field (dates.admission, pathology.type, procedures)
    - discharge before admission
    - dates before 1970-01-01 or in the future
Warnings:
    - procedure or entity dated outside [admission, discharge]
    - anticoagulant with a hemorrhagic pathology
    - nimodipine without SAH

Source verification: every value must appear in the notes verbatim or as a
close paraphrase (rapidfuzz partial_ratio >= 85). Unverified values keep
their place but lose confidence (x0.7).

Usage:
    result = Validator().validate(record, notes)
    result.confidence  # max(0, verification_rate - 0.1 * len(errors))
"""

import logging
from datetime import date
from typing import Callable, List, Optional, Sequence

from rapidfuzz import fuzz

from dcsynth.core.clinical_patterns import (
    ANTICOAGULANTS,
    ENTITY_SYNONYMS,
    HEMORRHAGIC_PATHOLOGIES,
    PATHOLOGY_KEYWORDS,
)
from dcsynth.core.config import ValidationConfig
from dcsynth.core.text_normalizer import normalize_for_comparison
from dcsynth.shared.enums import EntityKind, PathologyKind, Source
from dcsynth.shared.models import (
    ClinicalEntity,
    ClinicalNote,
    ExtractedField,
    ExtractedRecord,
    FunctionalScore,
    OtherPathology,
    ValidationResult,
)

logger = logging.getLogger(__name__)

MIN_CLINICAL_DATE = date(1970, 1, 1)
# shorter values must appear verbatim
MIN_FUZZY_CHARS = 12


class Validator:
    """Checks a record against its source notes."""

    REQUIRED_FIELDS = ("dates.admission", "pathology.type", "procedures")

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        today: Callable[[], date] = date.today,
    ):
        self.config = config or ValidationConfig()
        self._today = today

    def validate(self, record: ExtractedRecord, notes: Sequence[ClinicalNote]) -> ValidationResult:
        result = ValidationResult()

        self._check_required(record, result)
        self._check_chronology(record, result)
        self._check_plausibility(record, result)
        verification_rate = self._verify_sources(record, notes, result)

        result.is_valid = not result.errors
        result.confidence = max(0.0, verification_rate - self.config.error_penalty * len(result.errors))

        logger.info(
            f"Validation: valid={result.is_valid}, {len(result.errors)} errors, "
            f"{len(result.warnings)} warnings, verification={verification_rate:.2f}"
        )
        return result

    # =========================================================================
    # STRUCTURE
    # =========================================================================

    def _check_required(self, record: ExtractedRecord, result: ValidationResult) -> None:
        present = 0
        for path in self.REQUIRED_FIELDS:
            if self._has_value(record, path):
                present += 1
            else:
                result.errors.append(f"Missing required field: {path}")
        result.completeness = present / len(self.REQUIRED_FIELDS)

    @staticmethod
    def _has_value(record: ExtractedRecord, path: str) -> bool:
        if "." not in path:
            return bool(getattr(record, path))
        group, name = path.split(".")
        return getattr(getattr(record, group), name) is not None

    # =========================================================================
    # CHRONOLOGY
    # =========================================================================

    def _check_chronology(self, record: ExtractedRecord, result: ValidationResult) -> None:
        admission = record.admission_date
        discharge = record.discharge_date
        today = self._today()

        dated = [("dates.admission", admission), ("dates.discharge", discharge)]
        dated.extend(("dates.procedure_dates", f.value) for f in record.dates.procedure_dates)
        for path, value in dated:
            if isinstance(value, date) and not MIN_CLINICAL_DATE <= value <= today:
                result.errors.append(f"{path} {value} outside plausible range {MIN_CLINICAL_DATE}..{today}")

        if admission and discharge and discharge < admission:
            result.errors.append(f"Discharge {discharge} precedes admission {admission}")
            result.chronology_issues += 1

        def outside(value: date) -> bool:
            return bool((admission and value < admission) or (discharge and value > discharge))

        for f in record.dates.procedure_dates:
            if isinstance(f.value, date) and outside(f.value):
                result.warnings.append(f"Procedure date {f.value} outside admission window")
                result.chronology_issues += 1

        for entity in record.iter_entities():
            value = entity.event_date
            if value is None:
                continue
            if not MIN_CLINICAL_DATE <= value <= today:
                result.errors.append(f"{entity.kind.value} '{entity.name}' dated {value} is implausible")
            elif entity.kind != EntityKind.FUNCTIONAL_SCORE and outside(value):
                result.warnings.append(
                    f"{entity.kind.value} '{entity.name}' dated {value} outside admission window"
                )
                result.chronology_issues += 1

    # =========================================================================
    # PLAUSIBILITY
    # =========================================================================

    def _check_plausibility(self, record: ExtractedRecord, result: ValidationResult) -> None:
        pathology = record.pathology_type
        medication_names = {m.name.lower() for m in record.medications}

        anticoagulants = sorted(medication_names & {a.lower() for a in ANTICOAGULANTS})
        if anticoagulants and pathology in HEMORRHAGIC_PATHOLOGIES:
            result.warnings.append(
                f"Anticoagulant ({', '.join(anticoagulants)}) documented with hemorrhagic pathology "
                f"{pathology.value}; confirm indication and timing"
            )

        if "nimodipine" in medication_names and pathology is not None and pathology != PathologyKind.SAH:
            result.warnings.append("Nimodipine documented without subarachnoid hemorrhage")

    # =========================================================================
    # SOURCE VERIFICATION
    # =========================================================================

    def _verify_sources(
        self,
        record: ExtractedRecord,
        notes: Sequence[ClinicalNote],
        result: ValidationResult,
    ) -> float:
        corpus = normalize_for_comparison(" ".join(n.text for n in notes))
        corpus_tokens = set(corpus.split())
        total = 0

        for path, f in record.iter_fields():
            total += 1
            if self._field_verified(path, f, corpus):
                result.verified_fields += 1
            else:
                f.confidence *= self.config.unverified_penalty
                result.unverified_fields.append(path)

        for entity in record.iter_entities():
            total += 1
            if self._entity_verified(entity, corpus, corpus_tokens):
                result.verified_fields += 1
            else:
                entity.confidence *= self.config.unverified_penalty
                result.unverified_fields.append(f"{entity.kind.value}:{entity.name}")

        return result.verified_fields / total if total else 1.0

    def _text_verified(self, text: str, corpus: str) -> bool:
        needle = normalize_for_comparison(text)
        if not needle:
            return False
        if needle in corpus:
            return True
        if len(needle) < MIN_FUZZY_CHARS:
            return False
        return fuzz.partial_ratio(needle, corpus) / 100 >= self.config.paraphrase_threshold

    def _field_verified(self, path: str, f: ExtractedField, corpus: str) -> bool:
        if f.source == Source.PATTERN and f.note_id is not None:
            return True
        value = f.value
        if isinstance(value, date):
            return normalize_for_comparison(value.isoformat()) in corpus
        if isinstance(value, PathologyKind):
            terms = [value.value] + PATHOLOGY_KEYWORDS.get(value, [])
            return any(normalize_for_comparison(t) in corpus for t in terms)
        if isinstance(value, OtherPathology):
            return self._text_verified(value.label, corpus)
        if path == "demographics.sex":
            return True
        return self._text_verified(str(value), corpus)

    def _entity_verified(self, entity: ClinicalEntity, corpus: str, corpus_tokens: set) -> bool:
        if entity.source == Source.PATTERN and entity.note_id is not None:
            return True
        if isinstance(entity, FunctionalScore):
            return normalize_for_comparison(entity.score_type.value) in corpus_tokens
        terms: List[str] = [entity.name]
        terms.extend(ENTITY_SYNONYMS.get(entity.kind, {}).get(entity.name, []))
        return any(self._text_verified(t, corpus) for t in terms)
