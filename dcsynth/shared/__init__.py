"""Shared models, enums, exceptions and parsing helpers."""

from dcsynth.shared.enums import (
    EntityKind,
    ExtractionMethod,
    MentionKind,
    PathologyKind,
    ScoreType,
    Source,
)
from dcsynth.shared.exceptions import (
    AdapterError,
    DCSynthException,
    InputError,
    IntelligenceBuildError,
    LLMResponseFormatError,
)
from dcsynth.shared.models import (
    ClinicalNote,
    ConfidenceLevel,
    ExtractedField,
    ExtractedRecord,
    NoteInput,
    OtherPathology,
    QualityMetrics,
    ValidationResult,
)
