"""
NeuroSynth DCS - Pipeline Configuration
=======================================

Per-call extraction options and process-level pipeline configuration.

ExtractionOptions carries the caller's feature toggles for one extract()
call; nothing here is global mutable state. PipelineConfig groups the
thresholds used by each stage and can be built from the environment.

Usage:
    options = ExtractionOptions(use_llm=False, quality_threshold=0.8)
    config = PipelineConfig.from_env()
    orchestrator = ClinicalExtractionOrchestrator(config=config)
    result = await orchestrator.extract(notes, options)
"""

import fnmatch
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Union

import yaml

from dcsynth.shared.enums import Source
from dcsynth.shared.exceptions import ConfigurationError


DEFAULT_MERGE_PRIORITY_PATH = Path(__file__).resolve().parent.parent / "config" / "merge_priority.yaml"

# Field paths a merge-priority entry may refer to (fnmatch patterns allowed)
KNOWN_FIELD_PATHS = (
    "demographics.name", "demographics.mrn", "demographics.age", "demographics.sex",
    "dates.admission", "dates.discharge", "dates.procedure_dates",
    "pathology.type", "pathology.subtype", "pathology.location",
    "procedures.date",
    "complications.onset_date", "complications.severity", "complications.resolved",
    "medications.dose", "medications.frequency", "medications.route", "medications.start_date",
    "functional_scores.value", "functional_scores.date",
)


# =============================================================================
# PER-CALL OPTIONS
# =============================================================================

@dataclass
class ExtractionOptions:
    """Options for a single extract() call."""
    enable_preprocessing: bool = True
    enable_deduplication: bool = True
    use_llm: Optional[bool] = None      # None: use the LLM when an adapter is configured
    llm_provider: Optional[str] = None
    max_refinement_iterations: int = 2
    quality_threshold: float = 0.7

    def __post_init__(self):
        try:
            self.quality_threshold = float(self.quality_threshold)
            self.max_refinement_iterations = int(self.max_refinement_iterations)
        except (TypeError, ValueError):
            raise ValueError(
                "quality_threshold must be a number and max_refinement_iterations an integer"
            ) from None
        if not 0.0 <= self.quality_threshold <= 1.0:
            raise ValueError("quality_threshold must be between 0 and 1")
        if self.max_refinement_iterations < 0:
            raise ValueError("max_refinement_iterations must be >= 0")

    _ALIASES = {
        "enablePreprocessing": "enable_preprocessing",
        "enableDeduplication": "enable_deduplication",
        "useLLM": "use_llm",
        "llmProvider": "llm_provider",
        "maxRefinementIterations": "max_refinement_iterations",
        "qualityThreshold": "quality_threshold",
    }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExtractionOptions":
        """Build options from a dict; camelCase keys are accepted."""
        values = {}
        for key, value in (data or {}).items():
            name = cls._ALIASES.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                values[name] = value
            elif name == "use_llm":
                values[name] = None
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# MERGE PRIORITY
# =============================================================================

@dataclass
class MergePriorityTable:
    """
    Which source wins a dual-source field when values disagree.

    Loaded from YAML so the priorities can be tuned without code changes:

        default: llm
        pattern:
          - dates.*
          - medications.dose
    """
    default_winner: Source = Source.LLM
    pattern_fields: FrozenSet[str] = frozenset()
    llm_fields: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if self.default_winner not in (Source.LLM, Source.PATTERN):
            raise ConfigurationError("default merge winner must be 'llm' or 'pattern'")
        overlap = self.pattern_fields & self.llm_fields
        if overlap:
            raise ConfigurationError(f"Fields listed for both sources: {sorted(overlap)}")
        for entry in self.pattern_fields | self.llm_fields:
            if not fnmatch.filter(KNOWN_FIELD_PATHS, entry):
                raise ConfigurationError(f"Unknown merge priority field: {entry}")

    def winner(self, field_path: str) -> Source:
        """Return the source that wins a conflict on field_path."""
        if field_path in self.pattern_fields:
            return Source.PATTERN
        if field_path in self.llm_fields:
            return Source.LLM
        if any(fnmatch.fnmatch(field_path, p) for p in self.pattern_fields):
            return Source.PATTERN
        if any(fnmatch.fnmatch(field_path, p) for p in self.llm_fields):
            return Source.LLM
        return self.default_winner

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MergePriorityTable":
        try:
            default = Source(str(data.get("default", "llm")).lower())
        except ValueError:
            raise ConfigurationError(f"Invalid default merge winner: {data.get('default')}")
        return cls(
            default_winner=default,
            pattern_fields=frozenset(data.get("pattern") or ()),
            llm_fields=frozenset(data.get("llm") or ()),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MergePriorityTable":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load merge priority table {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Merge priority table {path} must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "MergePriorityTable":
        return cls.from_yaml(DEFAULT_MERGE_PRIORITY_PATH)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default": self.default_winner.value,
            "pattern": sorted(self.pattern_fields),
            "llm": sorted(self.llm_fields),
        }


# =============================================================================
# STAGE CONFIGS
# =============================================================================

@dataclass
class DeduplicationConfig:
    """Note- and entity-level deduplication thresholds."""
    near_duplicate_threshold: float = 0.85
    complementary_min: float = 0.30
    complementary_max: float = 0.60
    shingle_size: int = 2
    merge_priority_bonus: float = 5.0

    entity_similarity_threshold: float = 0.75
    entity_date_window_days: int = 1

    def __post_init__(self):
        if not 0.0 < self.near_duplicate_threshold <= 1.0:
            raise ValueError("near_duplicate_threshold must be in (0, 1]")
        if not 0.0 <= self.complementary_min < self.complementary_max <= self.near_duplicate_threshold:
            raise ValueError("complementary range must satisfy 0 <= min < max <= near threshold")
        if self.shingle_size < 1:
            raise ValueError("shingle_size must be >= 1")


@dataclass
class TemporalConfig:
    """Relative-date resolution windows."""
    reference_window_days: int = 0      # 0 = same calendar day
    marker_window_chars: int = 100      # POD/HD search radius around a mention
    date_window_chars: int = 200        # explicit date search radius
    nearby_date_chars: int = 50         # explicit date counts as "nearby"
    fallback_offset_days: int = 2       # admission + N when nothing resolves

    def __post_init__(self):
        if self.reference_window_days < 0:
            raise ValueError("reference_window_days must be >= 0")
        if self.nearby_date_chars > self.date_window_chars:
            raise ValueError("nearby_date_chars must not exceed date_window_chars")


@dataclass
class MergeConfig:
    agreement_bonus: float = 0.05
    confidence_cap: float = 0.95
    date_tolerance_days: int = 1
    priority: MergePriorityTable = field(default_factory=MergePriorityTable.default)

    def __post_init__(self):
        if not 0.0 <= self.confidence_cap <= 1.0:
            raise ValueError("confidence_cap must be between 0 and 1")


@dataclass
class ValidationConfig:
    unverified_penalty: float = 0.7     # confidence multiplier for unverified fields
    paraphrase_threshold: float = 0.85  # partial_ratio (0-1) counted as a paraphrase
    error_penalty: float = 0.1


@dataclass
class LLMConfig:
    """LLM provider settings."""
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 1
    max_tokens: int = 4096
    temperature: float = 0.0

    # Circuit breaker
    failure_threshold: int = 3
    recovery_timeout: float = 60.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass
class PipelineConfig:
    """
    Complete pipeline configuration.

    Usage:
        config = PipelineConfig(
            deduplication=DeduplicationConfig(near_duplicate_threshold=0.9),
            llm=LLMConfig(api_key="sk-...")
        )
    """
    deduplication: DeduplicationConfig = field(default_factory=DeduplicationConfig)
    temporal: TemporalConfig = field(default_factory=TemporalConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)

    learned_patterns_path: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def minimal(cls) -> "PipelineConfig":
        """Pattern-only configuration (no LLM credentials)."""
        return cls(llm=LLMConfig(api_key=""))

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create config from environment variables."""
        priority_path = os.getenv("DCS_MERGE_PRIORITY_PATH")
        patterns_path = os.getenv("LEARNED_PATTERNS_PATH")

        return cls(
            merge=MergeConfig(
                priority=(
                    MergePriorityTable.from_yaml(priority_path)
                    if priority_path else MergePriorityTable.default()
                )
            ),
            llm=LLMConfig(
                provider=os.getenv("DCS_LLM_PROVIDER", "anthropic"),
                model=os.getenv("DCS_LLM_MODEL", "claude-sonnet-4-20250514"),
                api_key=os.getenv("ANTHROPIC_API_KEY", ""),
                timeout_seconds=float(os.getenv("DCS_LLM_TIMEOUT", "30")),
            ),
            learned_patterns_path=Path(patterns_path) if patterns_path else None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "deduplication": asdict(self.deduplication),
            "temporal": asdict(self.temporal),
            "merge": {
                "agreement_bonus": self.merge.agreement_bonus,
                "confidence_cap": self.merge.confidence_cap,
                "date_tolerance_days": self.merge.date_tolerance_days,
                "priority": self.merge.priority.to_dict(),
            },
            "validation": asdict(self.validation),
            "llm": {k: v for k, v in asdict(self.llm).items() if k != "api_key"},
            "learned_patterns_path": str(self.learned_patterns_path) if self.learned_patterns_path else None,
            "log_level": self.log_level,
        }
        return data
