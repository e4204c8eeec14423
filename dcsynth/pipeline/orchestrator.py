"""
NeuroSynth DCS - Clinical Extraction Orchestrator
=================================================

Runs one extraction request through an explicit state machine:

    INIT -> EXTRACTING -> VALIDATING -> BUILDING_INTELLIGENCE -> DONE
                 ^             |
                 |             v   quality < threshold, iterations left
                 +-------- REFINING

When refinement iterations run out, or a refinement does not improve
quality, the best iteration is kept and the run ends in FAILED with
exhausted=True. Intelligence is still built on that best iteration.

Every iteration is captured as an immutable IterationSnapshot. Only
InputError propagates out of extract(); every other failure degrades
(LLM errors to pattern-only, intelligence errors to an empty bundle).

Usage:
    orchestrator = ClinicalExtractionOrchestrator(config=PipelineConfig.from_env())
    result = await orchestrator.extract(notes, {"qualityThreshold": 0.8})

    # or the module-level shortcut
    result = await extract(["Admit 2025-01-10 SAH.", "Discharge 2025-01-20."])
    result.metadata["extraction_method"]   # "pattern-only"
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from dcsynth.core.config import ExtractionOptions, PipelineConfig
from dcsynth.core.deduplicator import Deduplicator
from dcsynth.core.learned_patterns import LearnedPattern, LearnedPatternCache, LearnedPatternStore
from dcsynth.core.logging_config import (
    bind_iteration,
    bind_stage,
    clear_pipeline_context,
    generate_request_id,
    get_request_id,
    set_request_id,
)
from dcsynth.core.merger import Merger
from dcsynth.core.pattern_extractor import PatternExtractor
from dcsynth.core.quality_scorer import QualityScorer
from dcsynth.core.temporal_resolver import TemporalAnchors, TemporalResolver
from dcsynth.core.text_normalizer import TextNormalizer, coerce_notes
from dcsynth.core.validator import Validator
from dcsynth.intelligence.builder import IntelligenceBuilder, IntelligenceBundle
from dcsynth.llm.adapter import LLMExtractorAdapter, create_adapter, llm_extraction_to_record
from dcsynth.llm.prompts import EXTRACTION_SCHEMA
from dcsynth.shared.enums import ExtractionMethod, OrchestrationState
from dcsynth.shared.exceptions import AdapterError, ConfigurationError, InputError
from dcsynth.shared.models import (
    ClinicalNote,
    DeduplicationGroup,
    ExtractedRecord,
    NoteInput,
    QualityMetrics,
    ValidationResult,
    pathology_label,
)
from dcsynth.utils.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

NotesInput = Sequence[Union[NoteInput, str, Dict[str, Any]]]


class NarrativeGenerator(Protocol):
    """Scores how coherent a discharge narrative built from a record would be."""

    async def score_coherence(self, record: ExtractedRecord, notes: Sequence[ClinicalNote]) -> float:
        """Return a coherence score in [0, 1]."""
        ...


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class IterationSnapshot:
    """State captured at the end of one extract/validate iteration."""
    iteration: int
    state: OrchestrationState
    record: ExtractedRecord
    validation: ValidationResult
    quality: QualityMetrics
    extraction_method: ExtractionMethod
    groups: Tuple[DeduplicationGroup, ...] = ()
    llm_error: Optional[str] = None

    @classmethod
    def capture(
        cls,
        iteration: int,
        state: OrchestrationState,
        record: ExtractedRecord,
        validation: ValidationResult,
        quality: QualityMetrics,
        extraction_method: ExtractionMethod,
        groups: Sequence[DeduplicationGroup] = (),
        llm_error: Optional[str] = None,
    ) -> "IterationSnapshot":
        return cls(
            iteration=iteration,
            state=state,
            record=copy.deepcopy(record),
            validation=copy.deepcopy(validation),
            quality=copy.deepcopy(quality),
            extraction_method=extraction_method,
            groups=tuple(copy.deepcopy(list(groups))),
            llm_error=llm_error,
        )


@dataclass
class OrchestrationResult:
    """Final result of one extract() call."""
    success: bool
    extracted_data: ExtractedRecord
    intelligence: IntelligenceBundle
    validation: ValidationResult
    quality_metrics: QualityMetrics
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def terminal_state(self) -> OrchestrationState:
        return OrchestrationState(self.metadata.get("terminal_state", OrchestrationState.FAILED.value))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "extracted_data": self.extracted_data.to_dict(),
            "intelligence": self.intelligence.to_dict(),
            "validation": self.validation.to_dict(),
            "quality_metrics": self.quality_metrics.to_dict(),
            "metadata": dict(self.metadata),
        }


@dataclass
class _ExtractionPass:
    record: ExtractedRecord
    method: ExtractionMethod
    groups: List[DeduplicationGroup]
    llm_error: Optional[str] = None


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class ClinicalExtractionOrchestrator:
    """
    Coordinates every pipeline stage for one request at a time.

    Stage components are stateless between requests; the learned pattern
    store is the only object shared across requests and is read-only here.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        adapter: Optional[LLMExtractorAdapter] = None,
        pattern_store: Optional[LearnedPatternStore] = None,
        narrative: Optional[NarrativeGenerator] = None,
    ):
        self.config = config or PipelineConfig.from_env()

        self.normalizer = TextNormalizer()
        self.deduplicator = Deduplicator(self.config.deduplication)
        self.pattern_extractor = PatternExtractor()
        self.resolver = TemporalResolver(self.config.temporal)
        self.merger = Merger(self.config.merge)
        self.validator = Validator(self.config.validation)
        self.scorer = QualityScorer()
        self.intelligence = IntelligenceBuilder(self.resolver)
        self.narrative = narrative

        if pattern_store is None:
            if self.config.learned_patterns_path:
                pattern_store = LearnedPatternCache.from_yaml(self.config.learned_patterns_path)
            else:
                pattern_store = LearnedPatternCache()
        self.pattern_store = pattern_store

        self._adapters: Dict[str, Optional[LLMExtractorAdapter]] = {}
        if adapter is not None:
            self._adapters[self.config.llm.provider.lower()] = adapter

    # -------------------------------------------------------------------------
    # Adapter selection
    # -------------------------------------------------------------------------

    def _adapter_for(self, options: ExtractionOptions) -> Tuple[Optional[LLMExtractorAdapter], Optional[str]]:
        """Return (adapter, reason it is unavailable)."""
        if options.use_llm is False:
            return None, None

        provider = (options.llm_provider or self.config.llm.provider).lower()
        if provider not in self._adapters:
            try:
                self._adapters[provider] = create_adapter(provider, self.config.llm)
            except ConfigurationError as e:
                logger.warning(f"LLM adapter unavailable: {e}")
                return None, str(e)

        adapter = self._adapters[provider]
        if adapter is None and options.use_llm:
            return None, f"LLM requested but provider '{provider}' is not configured"
        return adapter, None

    def circuit_breakers(self) -> Dict[str, CircuitBreaker]:
        """Breakers of the adapters created so far, keyed by provider."""
        return {
            provider: adapter.breaker
            for provider, adapter in self._adapters.items()
            if isinstance(getattr(adapter, "breaker", None), CircuitBreaker)
        }

    # -------------------------------------------------------------------------
    # State handling
    # -------------------------------------------------------------------------

    @staticmethod
    def _transition(state: OrchestrationState, history: List[str]) -> OrchestrationState:
        history.append(state.value)
        bind_stage(state.value)
        logger.debug(f"State -> {state.value}")
        return state

    # -------------------------------------------------------------------------
    # Extraction
    # -------------------------------------------------------------------------

    @staticmethod
    def _notes_text(notes: Sequence[ClinicalNote]) -> str:
        blocks = []
        for note in notes:
            header = f"[{note.id}"
            if note.note_type:
                header += f" | {note.note_type}"
            if note.reported_date:
                header += f" | {note.reported_date.isoformat()}"
            blocks.append(f"{header}]\n{note.text}")
        return "\n\n".join(blocks)

    async def _run_llm(
        self,
        adapter: LLMExtractorAdapter,
        notes: Sequence[ClinicalNote],
        focus_fields: Sequence[str],
    ) -> Tuple[Optional[ExtractedRecord], Optional[str]]:
        try:
            extraction = await adapter.extract(self._notes_text(notes), EXTRACTION_SCHEMA, focus_fields)
        except AdapterError as e:
            logger.warning(f"LLM extraction failed, continuing pattern-only: {type(e).__name__}: {e}")
            return None, f"{type(e).__name__}: {e}"
        except Exception as e:
            logger.exception(f"Unexpected LLM adapter error, continuing pattern-only: {e}")
            return None, f"{type(e).__name__}: {e}"
        return llm_extraction_to_record(extraction), None

    async def _extract_once(
        self,
        notes: Sequence[ClinicalNote],
        adapter: Optional[LLMExtractorAdapter],
        learned: Sequence[LearnedPattern],
        focus_fields: Sequence[str],
    ) -> _ExtractionPass:
        pattern_job = asyncio.to_thread(self.pattern_extractor.extract, notes, learned)
        if adapter is None:
            pattern_record = await pattern_job
            llm_record, llm_error = None, None
        else:
            pattern_record, (llm_record, llm_error) = await asyncio.gather(
                pattern_job, self._run_llm(adapter, notes, focus_fields)
            )

        # Pattern anchors take precedence over LLM anchors
        anchors = TemporalAnchors.from_records([pattern_record, llm_record], notes)
        self.resolver.resolve(pattern_record, notes, anchors)
        groups = self.deduplicator.group_entities(pattern_record)
        if llm_record is not None:
            self.resolver.resolve(llm_record, notes, anchors)
            groups += self.deduplicator.group_entities(llm_record)

        merged = self.merger.merge(pattern_record, llm_record, groups)
        method = ExtractionMethod.HYBRID if llm_record is not None else ExtractionMethod.PATTERN_ONLY
        return _ExtractionPass(merged, method, groups, llm_error)

    async def _narrative_coherence(
        self,
        record: ExtractedRecord,
        notes: Sequence[ClinicalNote],
    ) -> Optional[float]:
        if self.narrative is None:
            return None
        try:
            return await self.narrative.score_coherence(record, notes)
        except Exception as e:
            logger.warning(f"Narrative coherence unavailable: {e}")
            return None

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def extract(
        self,
        notes: NotesInput,
        options: Union[ExtractionOptions, Dict[str, Any], None] = None,
    ) -> OrchestrationResult:
        """
        Extract a structured record and its intelligence bundle from notes.

        Args:
            notes: Note texts, NoteInput objects or dicts with a 'text' key
            options: ExtractionOptions or a dict of them (camelCase accepted)

        Returns:
            OrchestrationResult

        Raises:
            InputError: No usable notes were supplied, or the options are invalid
        """
        start_time = datetime.now()
        if options is not None and not isinstance(options, (ExtractionOptions, dict)):
            raise InputError(f"Options must be a dict or ExtractionOptions, got {type(options).__name__}")
        if not isinstance(options, ExtractionOptions):
            try:
                options = ExtractionOptions.from_dict(options)
            except (TypeError, ValueError) as e:
                raise InputError(f"Invalid extraction options: {e}") from e
        inputs = coerce_notes(notes)

        owns_request_id = get_request_id() is None
        if owns_request_id:
            set_request_id(generate_request_id())

        history: List[str] = []
        state = self._transition(OrchestrationState.INIT, history)

        clinical_notes = self.normalizer.normalize(inputs, enabled=options.enable_preprocessing)
        note_stats = None
        if options.enable_deduplication:
            dedup = self.deduplicator.deduplicate_notes(clinical_notes)
            clinical_notes = dedup.notes
            note_stats = dedup.stats()

        adapter, adapter_error = self._adapter_for(options)
        logger.info(
            f"Extraction started: {len(inputs)} notes ({len(clinical_notes)} after dedup), "
            f"llm={'on' if adapter else 'off'}, threshold={options.quality_threshold}"
        )

        snapshots: List[IterationSnapshot] = []
        best: Optional[IterationSnapshot] = None
        learned: Tuple[LearnedPattern, ...] = ()
        focus_fields: Tuple[str, ...] = ()
        exhausted = False
        run_error = None
        terminal = OrchestrationState.FAILED

        try:
            while True:
                iteration = len(snapshots)
                bind_iteration(iteration)
                state = self._transition(OrchestrationState.EXTRACTING, history)
                extraction = await self._extract_once(clinical_notes, adapter, learned, focus_fields)

                state = self._transition(OrchestrationState.VALIDATING, history)
                validation = self.validator.validate(extraction.record, clinical_notes)
                coherence = await self._narrative_coherence(extraction.record, clinical_notes)
                quality = self.scorer.score(extraction.record, validation, coherence)

                snapshot = IterationSnapshot.capture(
                    iteration, state, extraction.record, validation, quality,
                    extraction.method, extraction.groups, extraction.llm_error or adapter_error,
                )
                snapshots.append(snapshot)
                improved = best is None or quality.overall > best.quality.overall
                if improved:
                    best = snapshot

                logger.info(
                    f"Iteration {iteration}: quality={quality.overall:.3f} "
                    f"(threshold {options.quality_threshold}), method={extraction.method.value}"
                )

                if quality.overall >= options.quality_threshold:
                    terminal = OrchestrationState.DONE
                    break
                if not improved:
                    logger.info(f"Refinement {iteration} did not improve quality; keeping iteration {best.iteration}")
                    exhausted = True
                    break
                if iteration >= options.max_refinement_iterations:
                    exhausted = True
                    break

                state = self._transition(OrchestrationState.REFINING, history)
                focus_fields = tuple(self.scorer.missing_fields(best.record))
                pathology = best.record.pathology_type
                learned = tuple(self.pattern_store.get(pathology_label(pathology) if pathology else None))
                logger.info(f"Refining: {len(learned)} learned patterns, focus={list(focus_fields)}")
        except Exception as e:
            logger.exception(f"Extraction failed in state {state.value}: {e}")
            run_error = f"{type(e).__name__}: {e}"
            terminal = OrchestrationState.FAILED

        if best is None:
            result = self._failed_result(run_error or "No iteration completed")
        else:
            self._transition(OrchestrationState.BUILDING_INTELLIGENCE, history)
            intelligence = self.intelligence.build(best.record, clinical_notes)
            result = OrchestrationResult(
                success=True,
                extracted_data=best.record,
                intelligence=intelligence,
                validation=best.validation,
                quality_metrics=best.quality,
                metadata={
                    "extraction_method": best.extraction_method.value,
                    "refinement_iterations": len(snapshots) - 1,
                    "llm_error": best.llm_error,
                    "entity_deduplication_groups": [g.to_dict() for g in best.groups],
                    "merge_conflicts": [c.to_dict() for c in best.record.merge_conflicts],
                },
            )

        self._transition(terminal, history)
        duration = (datetime.now() - start_time).total_seconds()
        result.metadata.update({
            "request_id": get_request_id(),
            "terminal_state": terminal.value,
            "exhausted": exhausted,
            "best_iteration": best.iteration if best else None,
            "quality_history": [round(s.quality.overall, 4) for s in snapshots],
            "state_history": history,
            "note_deduplication": note_stats,
            "processing_time_ms": int(duration * 1000),
        })
        if run_error:
            result.metadata["error"] = run_error

        logger.info(
            f"Extraction finished: {terminal.value} after {len(snapshots)} iterations "
            f"in {duration:.2f}s (quality={result.quality_metrics.overall:.3f})"
        )
        clear_pipeline_context()
        if owns_request_id:
            set_request_id(None)
        return result

    @staticmethod
    def _failed_result(error: str) -> OrchestrationResult:
        return OrchestrationResult(
            success=False,
            extracted_data=ExtractedRecord(),
            intelligence=IntelligenceBundle.empty(error=error),
            validation=ValidationResult(is_valid=False, errors=[error], confidence=0.0),
            quality_metrics=QualityMetrics(),
            metadata={
                "extraction_method": ExtractionMethod.PATTERN_ONLY.value,
                "refinement_iterations": 0,
                "llm_error": None,
                "entity_deduplication_groups": [],
                "merge_conflicts": [],
            },
        )


async def extract(
    notes: NotesInput,
    options: Union[ExtractionOptions, Dict[str, Any], None] = None,
    config: Optional[PipelineConfig] = None,
    adapter: Optional[LLMExtractorAdapter] = None,
) -> OrchestrationResult:
    """One-shot extraction with a fresh orchestrator."""
    orchestrator = ClinicalExtractionOrchestrator(config=config, adapter=adapter)
    return await orchestrator.extract(notes, options)
