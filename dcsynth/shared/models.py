"""
NeuroSynth DCS Models
=====================

Core data model shared by every pipeline stage.

Key design principles:
1. Every scalar leaf is an ExtractedField carrying confidence and source
2. Array entities (procedures, complications, medications, scores) are
   typed dataclasses with shared provenance fields
3. Pathology category is a sum type: PathologyKind | OtherPathology
4. to_dict() produces JSON-ready output (ISO dates, enum values)
"""

from dataclasses import dataclass, field, fields
import datetime
from datetime import date
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union

from dcsynth.shared.enums import (
    EntityKind,
    MedicationStatus,
    MentionKind,
    PathologyKind,
    ScoreType,
    Source,
    TemporalQualifier,
)


# =============================================================================
# CONFIDENCE
# =============================================================================

class ConfidenceLevel:
    """Standard confidence anchors used by extraction rules."""
    CRITICAL = 0.95
    HIGH = 0.85
    MEDIUM = 0.70
    LOW = 0.50
    REVIEW_THRESHOLD = 0.70


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0, 1]."""
    return min(1.0, max(0.0, float(value)))


def serialize_value(value: Any) -> Any:
    """Convert dates, enums and pathology types into JSON-ready values."""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, OtherPathology):
        return value.label
    if hasattr(value, "value") and isinstance(getattr(value, "value"), (str, int)):
        return value.value
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def parse_iso_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


# =============================================================================
# PATHOLOGY SUM TYPE
# =============================================================================

@dataclass(frozen=True)
class OtherPathology:
    """Pathology not covered by PathologyKind."""
    label: str


PathologyType = Union[PathologyKind, OtherPathology]


def pathology_from_label(label: str) -> PathologyType:
    """Map a free-text label onto PathologyKind, falling back to OtherPathology."""
    cleaned = (label or "").strip()
    for kind in PathologyKind:
        if cleaned.lower() in (kind.value.lower(), kind.name.lower()):
            return kind

    lowered = cleaned.lower()
    aliases = {
        "subarachnoid": PathologyKind.SAH,
        "aneurysm": PathologyKind.SAH,
        "metasta": PathologyKind.BRAIN_METASTASIS,
        "tumor": PathologyKind.BRAIN_TUMOR,
        "glioma": PathologyKind.BRAIN_TUMOR,
        "glioblastoma": PathologyKind.BRAIN_TUMOR,
        "meningioma": PathologyKind.BRAIN_TUMOR,
        "hydrocephalus": PathologyKind.HYDROCEPHALUS,
        "traumatic": PathologyKind.TBI,
        "subdural": PathologyKind.CHRONIC_SUBDURAL,
        "csf leak": PathologyKind.CSF_LEAK,
        "spin": PathologyKind.SPINE,
        "seizure": PathologyKind.SEIZURE,
        "epilep": PathologyKind.SEIZURE,
        "intracerebral": PathologyKind.ICH,
        "intraparenchymal": PathologyKind.ICH,
        "arteriovenous": PathologyKind.AVM,
    }
    for needle, kind in aliases.items():
        if needle in lowered:
            return kind
    return OtherPathology(label=cleaned)


def pathology_label(pathology: PathologyType) -> str:
    if isinstance(pathology, OtherPathology):
        return pathology.label
    return pathology.value


# =============================================================================
# NOTES
# =============================================================================

@dataclass
class NoteInput:
    """A raw clinical note as supplied by the caller."""
    text: str
    type: Optional[str] = None
    reported_date: Optional[date] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NoteInput":
        reported = data.get("reported_date", data.get("reportedDate"))
        return cls(
            text=data.get("text", ""),
            type=data.get("type"),
            reported_date=parse_iso_date(reported),
        )


@dataclass
class ClinicalNote:
    """A normalized note flowing through the pipeline."""
    id: str
    text: str
    index: int = 0
    reported_date: Optional[date] = None
    note_type: Optional[str] = None
    original_text: str = ""
    merged_from: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "index": self.index,
            "reported_date": serialize_value(self.reported_date),
            "note_type": self.note_type,
            "merged_from": list(self.merged_from),
        }


# =============================================================================
# FIELD-LEVEL VALUES
# =============================================================================

@dataclass
class ExtractedField:
    """A scalar leaf value with provenance."""
    value: Any
    confidence: float
    source: Source
    rule_id: Optional[str] = None
    note_id: Optional[str] = None
    span: Optional[Tuple[int, int]] = None
    date_resolved: bool = True

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": serialize_value(self.value),
            "confidence": round(self.confidence, 4),
            "source": self.source.value,
            "rule_id": self.rule_id,
            "note_id": self.note_id,
        }


@dataclass
class Demographics:
    name: Optional[ExtractedField] = None
    mrn: Optional[ExtractedField] = None
    age: Optional[ExtractedField] = None
    sex: Optional[ExtractedField] = None


@dataclass
class AdmissionDates:
    admission: Optional[ExtractedField] = None
    discharge: Optional[ExtractedField] = None
    procedure_dates: List[ExtractedField] = field(default_factory=list)


@dataclass
class Pathology:
    type: Optional[ExtractedField] = None      # value: PathologyType
    subtype: Optional[ExtractedField] = None
    location: Optional[ExtractedField] = None


# =============================================================================
# ENTITIES
# =============================================================================

@dataclass
class ClinicalEntity:
    """Base for array-valued entities (one instance per mention until merged)."""
    name: str = ""
    confidence: float = ConfidenceLevel.MEDIUM
    source: Source = Source.PATTERN
    id: str = ""
    note_id: Optional[str] = None
    span: Optional[Tuple[int, int]] = None
    rule_id: Optional[str] = None
    date_resolved: bool = False
    date_confidence: float = 0.0
    mention_kind: MentionKind = MentionKind.NEW_EVENT
    mention_confidence: float = 1.0
    canonical_id: Optional[str] = None
    mention_count: int = 1
    qualifiers: List[TemporalQualifier] = field(default_factory=list)
    field_sources: Dict[str, Source] = field(default_factory=dict)

    kind: ClassVar[EntityKind]
    DATE_FIELD: ClassVar[str] = "date"
    # Attributes compared field-by-field when two sources describe one entity
    MERGE_FIELDS: ClassVar[Tuple[str, ...]] = ()

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)

    @property
    def event_date(self) -> Optional[date]:
        return getattr(self, self.DATE_FIELD)

    @event_date.setter
    def event_date(self, value: Optional[date]) -> None:
        setattr(self, self.DATE_FIELD, value)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "span":
                data[f.name] = list(value) if value else None
            elif f.name == "field_sources":
                data[f.name] = {k: v.value for k, v in value.items()}
            elif f.name == "confidence":
                data[f.name] = round(value, 4)
            else:
                data[f.name] = serialize_value(value)
        return data


@dataclass
class Procedure(ClinicalEntity):
    date: Optional[datetime.date] = None

    kind: ClassVar[EntityKind] = EntityKind.PROCEDURE
    MERGE_FIELDS: ClassVar[Tuple[str, ...]] = ("date",)


@dataclass
class Complication(ClinicalEntity):
    onset_date: Optional[date] = None
    severity: Optional[str] = None
    resolved: Optional[bool] = None

    kind: ClassVar[EntityKind] = EntityKind.COMPLICATION
    DATE_FIELD: ClassVar[str] = "onset_date"
    MERGE_FIELDS: ClassVar[Tuple[str, ...]] = ("onset_date", "severity", "resolved")


@dataclass
class Medication(ClinicalEntity):
    dose: Optional[str] = None
    frequency: Optional[str] = None
    route: Optional[str] = None
    start_date: Optional[date] = None
    status: MedicationStatus = MedicationStatus.UNKNOWN

    kind: ClassVar[EntityKind] = EntityKind.MEDICATION
    DATE_FIELD: ClassVar[str] = "start_date"
    MERGE_FIELDS: ClassVar[Tuple[str, ...]] = ("dose", "frequency", "route", "start_date")


@dataclass
class FunctionalScore(ClinicalEntity):
    score_type: ScoreType = ScoreType.KPS
    value: Union[int, str, None] = None
    date: Optional[datetime.date] = None
    estimated: bool = False

    kind: ClassVar[EntityKind] = EntityKind.FUNCTIONAL_SCORE
    MERGE_FIELDS: ClassVar[Tuple[str, ...]] = ("value", "date")

    def __post_init__(self):
        super().__post_init__()
        if not self.name:
            self.name = self.score_type.value


ENTITY_ATTRIBUTES: Dict[EntityKind, str] = {
    EntityKind.PROCEDURE: "procedures",
    EntityKind.COMPLICATION: "complications",
    EntityKind.MEDICATION: "medications",
    EntityKind.FUNCTIONAL_SCORE: "functional_scores",
}


# =============================================================================
# RECORD
# =============================================================================

@dataclass
class MergeConflict:
    """Disagreement between pattern and LLM values for one field."""
    field: str
    chosen_value: Any
    chosen_source: Source
    alternative_value: Any
    alternative_source: Source
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "chosen_value": serialize_value(self.chosen_value),
            "chosen_source": self.chosen_source.value,
            "alternative_value": serialize_value(self.alternative_value),
            "alternative_source": self.alternative_source.value,
            "reason": self.reason,
        }


@dataclass
class ExtractedRecord:
    """Structured clinical record for one patient encounter."""
    demographics: Demographics = field(default_factory=Demographics)
    dates: AdmissionDates = field(default_factory=AdmissionDates)
    pathology: Pathology = field(default_factory=Pathology)
    procedures: List[Procedure] = field(default_factory=list)
    complications: List[Complication] = field(default_factory=list)
    medications: List[Medication] = field(default_factory=list)
    functional_scores: List[FunctionalScore] = field(default_factory=list)
    merge_conflicts: List[MergeConflict] = field(default_factory=list)

    def entities(self, kind: EntityKind) -> List[ClinicalEntity]:
        return getattr(self, ENTITY_ATTRIBUTES[kind])

    def set_entities(self, kind: EntityKind, items: List[ClinicalEntity]) -> None:
        setattr(self, ENTITY_ATTRIBUTES[kind], items)

    def iter_entities(self) -> Iterator[ClinicalEntity]:
        for kind in EntityKind:
            yield from self.entities(kind)

    def iter_fields(self) -> Iterator[Tuple[str, ExtractedField]]:
        """Yield (dotted path, field) for every populated scalar leaf."""
        for group_name in ("demographics", "dates", "pathology"):
            group = getattr(self, group_name)
            for f in fields(group):
                value = getattr(group, f.name)
                if isinstance(value, ExtractedField):
                    yield f"{group_name}.{f.name}", value
                elif isinstance(value, list):
                    for item in value:
                        yield f"{group_name}.{f.name}", item

    def all_confidences(self) -> List[float]:
        values = [f.confidence for _, f in self.iter_fields()]
        values.extend(e.confidence for e in self.iter_entities())
        return values

    @property
    def admission_date(self) -> Optional[date]:
        return self.dates.admission.value if self.dates.admission else None

    @property
    def discharge_date(self) -> Optional[date]:
        return self.dates.discharge.value if self.dates.discharge else None

    @property
    def pathology_type(self) -> Optional[PathologyType]:
        return self.pathology.type.value if self.pathology.type else None

    def is_empty(self) -> bool:
        return not any(True for _ in self.iter_fields()) and not any(
            True for _ in self.iter_entities()
        )

    def to_dict(self) -> Dict[str, Any]:
        def group_dict(group) -> Dict[str, Any]:
            out = {}
            for f in fields(group):
                value = getattr(group, f.name)
                if isinstance(value, list):
                    out[f.name] = [v.to_dict() for v in value]
                else:
                    out[f.name] = value.to_dict() if value else None
            return out

        return {
            "demographics": group_dict(self.demographics),
            "dates": group_dict(self.dates),
            "pathology": group_dict(self.pathology),
            "procedures": [p.to_dict() for p in self.procedures],
            "complications": [c.to_dict() for c in self.complications],
            "medications": [m.to_dict() for m in self.medications],
            "functional_scores": [s.to_dict() for s in self.functional_scores],
            "merge_conflicts": [c.to_dict() for c in self.merge_conflicts],
        }


# =============================================================================
# DEDUPLICATION
# =============================================================================

@dataclass
class DeduplicationGroup:
    """Mentions of one clinical event collapsed onto a canonical entity."""
    canonical_event_id: str
    duplicate_mention_ids: List[str] = field(default_factory=list)
    similarity_score: float = 1.0
    entity_kind: EntityKind = EntityKind.PROCEDURE
    canonical_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canonical_event_id": self.canonical_event_id,
            "duplicate_mention_ids": list(self.duplicate_mention_ids),
            "similarity_score": round(self.similarity_score, 4),
            "entity_kind": self.entity_kind.value,
            "canonical_name": self.canonical_name,
        }


@dataclass
class NoteDeduplicationResult:
    notes: List[ClinicalNote]
    original_count: int = 0
    final_count: int = 0
    exact_removed: int = 0
    near_removed: int = 0
    merge_count: int = 0

    @property
    def reduction_percent(self) -> float:
        if not self.original_count:
            return 0.0
        return round((self.original_count - self.final_count) / self.original_count * 100, 1)

    def stats(self) -> Dict[str, Any]:
        return {
            "original_count": self.original_count,
            "final_count": self.final_count,
            "exact_removed": self.exact_removed,
            "near_removed": self.near_removed,
            "merge_count": self.merge_count,
            "reduction_percent": self.reduction_percent,
        }


# =============================================================================
# VALIDATION & QUALITY
# =============================================================================

@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    completeness: float = 0.0
    confidence: float = 1.0
    verified_fields: int = 0
    unverified_fields: List[str] = field(default_factory=list)
    chronology_issues: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "completeness": round(self.completeness, 4),
            "confidence": round(self.confidence, 4),
            "verified_fields": self.verified_fields,
            "unverified_fields": list(self.unverified_fields),
            "chronology_issues": self.chronology_issues,
        }


@dataclass
class QualityMetrics:
    """Per-iteration quality measurements, all in [0, 1]."""
    completeness: float = 0.0
    accuracy: float = 0.0
    confidence: float = 0.0
    consistency: float = 0.0
    overall: float = 0.0
    timeline_completeness: float = 0.0
    narrative_coherence: float = 1.0

    def __post_init__(self):
        for f in fields(self):
            setattr(self, f.name, clamp_confidence(getattr(self, f.name)))

    def to_dict(self) -> Dict[str, float]:
        return {f.name: round(getattr(self, f.name), 4) for f in fields(self)}
