"""
NeuroSynth DCS - LLM Extractor Adapter
======================================

Boundary between the pipeline and an LLM provider. An adapter returns a
validated LLMExtraction or raises a typed AdapterError; it never hands a raw
string back to the pipeline.

Failure policy:
    connection error   -> one retry with backoff, then LLMUnavailableError
    timeout            -> LLMTimeoutError (no retry)
    unparseable output -> LLMResponseFormatError (no retry)
    repeated failures  -> circuit opens, calls fail fast with LLMUnavailableError

Usage:
    adapter = create_adapter("anthropic", config.llm)
    extraction = await adapter.extract(notes_text, EXTRACTION_SCHEMA)
    record = llm_extraction_to_record(extraction)
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import anthropic

from dcsynth.core.clinical_patterns import canonical_name
from dcsynth.core.config import LLMConfig
from dcsynth.llm.prompts import (
    EXTRACTION_SCHEMA,
    EXTRACTION_SYSTEM_PROMPT,
    LLMExtraction,
    build_extraction_prompt,
)
from dcsynth.shared.enums import EntityKind, MedicationStatus, ScoreType, Source
from dcsynth.shared.exceptions import (
    ConfigurationError,
    LLMParsingError,
    LLMResponseFormatError,
    LLMTimeoutError,
    LLMUnavailableError,
)
from dcsynth.shared.models import (
    AdmissionDates,
    Complication,
    Demographics,
    ExtractedField,
    ExtractedRecord,
    FunctionalScore,
    Medication,
    Pathology,
    Procedure,
    pathology_from_label,
)
from dcsynth.shared.parsing import coerce_structured_payload
from dcsynth.utils.circuit_breaker import CircuitBreaker, retry_with_backoff

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (anthropic.APIConnectionError, ConnectionError)


# =============================================================================
# Contract
# =============================================================================

class LLMExtractorAdapter(Protocol):
    """Protocol for LLM extraction providers."""

    async def extract(
        self,
        note_text: str,
        schema: Dict[str, Any],
        focus_fields: Sequence[str] = (),
    ) -> LLMExtraction:
        """Extract structured data or raise AdapterError."""
        ...


# =============================================================================
# Anthropic
# =============================================================================

class AnthropicExtractorAdapter:
    """Claude-backed extraction via AsyncAnthropic.messages.create."""

    provider = "anthropic"

    def __init__(self, config: LLMConfig, client: Optional[Any] = None):
        self.config = config
        # Retries are governed here, not by the SDK
        self.client = client or anthropic.AsyncAnthropic(api_key=config.api_key, max_retries=0)
        self.breaker = CircuitBreaker(
            name=f"llm:{self.provider}",
            failure_threshold=config.failure_threshold,
            reset_timeout=config.recovery_timeout,
            counted_exceptions=(LLMTimeoutError, LLMUnavailableError),
        )

    async def _call(self, prompt: str) -> str:
        try:
            response = await self.client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                system=EXTRACTION_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise LLMTimeoutError(f"Anthropic request timed out: {e}") from e
        return "".join(getattr(block, "text", "") for block in response.content)

    async def extract(
        self,
        note_text: str,
        schema: Optional[Dict[str, Any]] = None,
        focus_fields: Sequence[str] = (),
    ) -> LLMExtraction:
        prompt = build_extraction_prompt(note_text, focus_fields, schema or EXTRACTION_SCHEMA)

        async with self.breaker:
            try:
                raw = await asyncio.wait_for(
                    retry_with_backoff(
                        lambda: self._call(prompt),
                        max_retries=self.config.max_retries,
                        retryable_exceptions=TRANSIENT_ERRORS,
                    ),
                    timeout=self.config.timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise LLMTimeoutError(f"LLM call exceeded {self.config.timeout_seconds}s") from e
            except TRANSIENT_ERRORS as e:
                raise LLMUnavailableError(f"LLM provider unreachable: {e}") from e
            except anthropic.APIStatusError as e:
                raise LLMUnavailableError(f"LLM provider error {e.status_code}: {e.message}") from e

        try:
            extraction = coerce_structured_payload(raw, LLMExtraction)
        except LLMParsingError as e:
            raise LLMResponseFormatError(str(e)) from e

        logger.info(
            f"LLM extraction: {len(extraction.procedures)} procedures, "
            f"{len(extraction.medications)} medications (confidence {extraction.confidence:.2f})"
        )
        return extraction


def create_adapter(provider: Optional[str], config: LLMConfig) -> Optional[LLMExtractorAdapter]:
    """
    Build the adapter for a provider.

    Returns None when the provider has no credentials configured.

    Raises:
        ConfigurationError: Unknown provider
    """
    name = (provider or config.provider or "").lower()
    if name == "anthropic":
        if not config.enabled:
            logger.info("No Anthropic API key configured; LLM extraction disabled")
            return None
        return AnthropicExtractorAdapter(config)
    raise ConfigurationError(f"Unknown LLM provider: {provider}")


# =============================================================================
# Conversion
# =============================================================================

def _field(value: Any, confidence: float) -> Optional[ExtractedField]:
    if value is None or value == "":
        return None
    return ExtractedField(value=value, confidence=confidence, source=Source.LLM, rule_id="llm")


def _score_type(label: str) -> Optional[ScoreType]:
    lookup = {t.value.upper(): t for t in ScoreType}
    lookup.update({"KARNOFSKY": ScoreType.KPS, "RANKIN": ScoreType.MRS, "MODIFIED RANKIN": ScoreType.MRS})
    return lookup.get(label.strip().upper())


def _status(label: Optional[str]) -> MedicationStatus:
    try:
        return MedicationStatus((label or "").strip().lower())
    except ValueError:
        return MedicationStatus.UNKNOWN


def llm_extraction_to_record(extraction: LLMExtraction) -> ExtractedRecord:
    """Convert a validated LLM extraction into an ExtractedRecord (source=llm)."""
    base = extraction.confidence

    def conf(item_confidence: Optional[float]) -> float:
        return base if item_confidence is None else item_confidence

    record = ExtractedRecord(
        demographics=Demographics(
            name=_field(extraction.demographics.name, base),
            mrn=_field(extraction.demographics.mrn, base),
            age=_field(extraction.demographics.age, base),
            sex=_field(extraction.demographics.sex, base),
        ),
        dates=AdmissionDates(
            admission=_field(extraction.dates.admission, base),
            discharge=_field(extraction.dates.discharge, base),
            procedure_dates=[_field(d, base) for d in extraction.dates.procedure_dates],
        ),
        pathology=Pathology(
            type=_field(pathology_from_label(extraction.pathology.type), base)
            if extraction.pathology.type else None,
            subtype=_field(extraction.pathology.subtype, base),
            location=_field(extraction.pathology.location, base),
        ),
    )

    record.procedures = [
        Procedure(
            name=canonical_name(EntityKind.PROCEDURE, p.name),
            confidence=conf(p.confidence),
            source=Source.LLM,
            date=p.date,
            date_resolved=p.date is not None,
        )
        for p in extraction.procedures
    ]
    record.complications = [
        Complication(
            name=canonical_name(EntityKind.COMPLICATION, c.name),
            confidence=conf(c.confidence),
            source=Source.LLM,
            onset_date=c.onset_date,
            date_resolved=c.onset_date is not None,
            severity=c.severity.lower() if c.severity else None,
            resolved=c.resolved,
        )
        for c in extraction.complications
    ]
    record.medications = [
        Medication(
            name=canonical_name(EntityKind.MEDICATION, m.name),
            confidence=conf(m.confidence),
            source=Source.LLM,
            dose=m.dose,
            frequency=m.frequency,
            route=m.route,
            start_date=m.start_date,
            date_resolved=m.start_date is not None,
            status=_status(m.status),
        )
        for m in extraction.medications
    ]

    scores: List[FunctionalScore] = []
    for s in extraction.functional_scores:
        score_type = _score_type(s.type)
        if score_type is None:
            logger.debug(f"Ignoring LLM score of unknown type {s.type!r}")
            continue
        scores.append(FunctionalScore(
            score_type=score_type,
            value=s.value,
            confidence=conf(s.confidence),
            source=Source.LLM,
            date=s.date,
            date_resolved=s.date is not None,
        ))
    record.functional_scores = scores

    for prefix, entities in (
        ("proc", record.procedures), ("comp", record.complications),
        ("med", record.medications), ("score", record.functional_scores),
    ):
        for i, entity in enumerate(entities, start=1):
            entity.id = f"llm_{prefix}_{i:03d}"

    return record
