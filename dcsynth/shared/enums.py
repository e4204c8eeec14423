"""Shared enumerations for the extraction and intelligence pipeline."""

from enum import Enum


class Source(str, Enum):
    """Provenance of an extracted value."""
    PATTERN = "pattern"
    LLM = "llm"
    MERGED = "merged"


class ExtractionMethod(str, Enum):
    """How the final record was produced."""
    HYBRID = "hybrid"              # Pattern + LLM merged
    PATTERN_ONLY = "pattern-only"  # LLM disabled or failed


class MentionKind(str, Enum):
    """Whether an entity mention introduces an event or restates one."""
    NEW_EVENT = "new_event"
    REFERENCE = "reference"
    AMBIGUOUS = "ambiguous"


class EntityKind(str, Enum):
    """Array-valued entity categories of a record."""
    PROCEDURE = "procedure"
    COMPLICATION = "complication"
    MEDICATION = "medication"
    FUNCTIONAL_SCORE = "functional_score"


class ScoreType(str, Enum):
    """Functional / neurological scales."""
    KPS = "KPS"      # Karnofsky 0-100, higher better
    ECOG = "ECOG"    # 0-5, lower better
    MRS = "mRS"      # modified Rankin 0-6, lower better
    GCS = "GCS"      # Glasgow Coma Scale 3-15, higher better
    NIHSS = "NIHSS"  # 0-42, lower better
    ASIA = "ASIA"    # Impairment grade A-E, E best


class TemporalQualifier(str, Enum):
    """Temporal status cues attached to a mention."""
    HISTORICAL = "historical"
    ONGOING = "ongoing"
    RESOLVED = "resolved"
    PLANNED = "planned"
    ACUTE = "acute"


class MedicationStatus(str, Enum):
    STARTED = "started"
    CONTINUED = "continued"
    DISCONTINUED = "discontinued"
    UNKNOWN = "unknown"


class EventType(str, Enum):
    """Timeline event types."""
    ADMISSION = "admission"
    PROCEDURE = "procedure"
    COMPLICATION = "complication"
    MEDICATION_CHANGE = "medication_change"
    DISCHARGE = "discharge"


class EventCategory(str, Enum):
    """Causal role of a timeline event."""
    DIAGNOSTIC = "diagnostic"
    THERAPEUTIC = "therapeutic"
    COMPLICATION = "complication"
    OUTCOME = "outcome"


class RelationshipType(str, Enum):
    """Directed causal/temporal link between two timeline events."""
    CAUSES = "causes"
    TRIGGERS = "triggers"
    RESPONDS_TO = "responds_to"
    LEADS_TO = "leads_to"
    PREVENTS = "prevents"


class ResponseType(str, Enum):
    """Observed response to an intervention."""
    RESOLVED = "resolved"
    IMPROVED = "improved"
    PARTIAL = "partial"
    STABLE = "stable"
    NO_CHANGE = "no_change"
    WORSENED = "worsened"
    UNKNOWN = "unknown"


class EffectivenessRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"


class Trajectory(str, Enum):
    """Direction of a functional-status series."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    INSUFFICIENT_DATA = "insufficient_data"


class ChangeSignificance(str, Enum):
    MAJOR = "major"
    MODERATE = "moderate"
    MINOR = "minor"
    MINIMAL = "minimal"


class OrchestrationState(str, Enum):
    """States of the extraction orchestrator."""
    INIT = "init"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    REFINING = "refining"
    BUILDING_INTELLIGENCE = "building_intelligence"
    DONE = "done"
    FAILED = "failed"


class PathologyKind(str, Enum):
    """Recognized primary neurosurgical pathologies."""
    SAH = "SAH"                            # Subarachnoid hemorrhage / aneurysm
    BRAIN_TUMOR = "brain_tumor"
    BRAIN_METASTASIS = "brain_metastasis"
    HYDROCEPHALUS = "hydrocephalus"
    TBI = "TBI"
    CHRONIC_SUBDURAL = "chronic_subdural"
    CSF_LEAK = "csf_leak"
    SPINE = "spine"
    SEIZURE = "seizure"
    ICH = "ICH"                            # Intraparenchymal hemorrhage
    AVM = "AVM"
