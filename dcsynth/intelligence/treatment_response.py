"""
NeuroSynth DCS - Treatment Response Pairing
===========================================

Pairs each intervention (procedure or medication) with the nearest later
note sentence describing the problem it treats, classifies the response
and scores its effectiveness.

Effectiveness (0-100) = speed (0-25) + completeness (0-25)
                      + durability (10-20) + side effects (0-25)
Rating: excellent >= 80, good >= 60, fair >= 40, poor otherwise.

Usage:
    responses = pair_treatment_responses(record, notes, resolver, anchors)
    compliance = check_protocol_compliance(record)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dcsynth.core.clinical_patterns import TREATMENT_TARGETS
from dcsynth.core.temporal_resolver import TemporalAnchors, TemporalResolver
from dcsynth.core.text_normalizer import split_sentences
from dcsynth.shared.enums import EffectivenessRating, PathologyKind, ResponseType
from dcsynth.shared.models import ClinicalEntity, ClinicalNote, ExtractedRecord

logger = logging.getLogger(__name__)

# Checked in order; the first matching cue classifies the sentence
RESPONSE_CUES: List[Tuple[ResponseType, re.Pattern]] = [
    (ResponseType.RESOLVED, re.compile(r"\b(?:resolved|resolution|cleared|normalized|no longer)\b", re.I)),
    (ResponseType.PARTIAL, re.compile(r"\b(?:partial(?:ly)?|some improvement|mild(?:ly)? improv\w*|slight(?:ly)? improv\w*)\b", re.I)),
    (ResponseType.NO_CHANGE, re.compile(r"\b(?:no change|unchanged|persistent|persists|refractory)\b", re.I)),
    (ResponseType.WORSENED, re.compile(r"\b(?:worse(?:ned|ning)?|deteriorat\w*|progress(?:ed|ion)|enlarg\w*)\b", re.I)),
    (ResponseType.IMPROVED, re.compile(r"\b(?:improv\w*|better|decreas\w*|resolving|respond(?:ed|ing))\b", re.I)),
    (ResponseType.STABLE, re.compile(r"\b(?:stable|stabilized)\b", re.I)),
]

COMPLETENESS_POINTS = {
    ResponseType.RESOLVED: 25,
    ResponseType.IMPROVED: 25,
    ResponseType.PARTIAL: 15,
    ResponseType.STABLE: 12,
    ResponseType.NO_CHANGE: 5,
    ResponseType.WORSENED: 0,
}


@dataclass
class TreatmentResponse:
    intervention_id: str
    intervention_name: str
    intervention_kind: str
    intervention_date: Optional[date]
    target: Optional[str]
    response_type: ResponseType = ResponseType.UNKNOWN
    outcome_text: Optional[str] = None
    outcome_date: Optional[date] = None
    outcome_note_id: Optional[str] = None
    days_to_response: Optional[int] = None
    effectiveness_score: int = 0
    effectiveness: EffectivenessRating = EffectivenessRating.UNKNOWN
    score_breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervention_id": self.intervention_id,
            "intervention_name": self.intervention_name,
            "intervention_kind": self.intervention_kind,
            "intervention_date": self.intervention_date.isoformat() if self.intervention_date else None,
            "target": self.target,
            "response_type": self.response_type.value,
            "outcome_text": self.outcome_text,
            "outcome_date": self.outcome_date.isoformat() if self.outcome_date else None,
            "outcome_note_id": self.outcome_note_id,
            "days_to_response": self.days_to_response,
            "effectiveness_score": self.effectiveness_score,
            "effectiveness": self.effectiveness.value,
            "score_breakdown": dict(self.score_breakdown),
        }


@dataclass
class ComplianceItem:
    protocol: str
    expected: str
    actual: str
    compliant: Optional[bool]
    importance: str = "RECOMMENDED"

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class ProtocolCompliance:
    protocol: str
    items: List[ComplianceItem] = field(default_factory=list)
    overall: str = "not_assessed"
    percentage: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": self.protocol,
            "items": [i.to_dict() for i in self.items],
            "overall": self.overall,
            "percentage": self.percentage,
        }


# =============================================================================
# CLASSIFICATION & SCORING
# =============================================================================

def classify_response(text: str) -> ResponseType:
    for response_type, pattern in RESPONSE_CUES:
        if pattern.search(text):
            return response_type
    return ResponseType.UNKNOWN


def rate_effectiveness(score: int) -> EffectivenessRating:
    if score >= 80:
        return EffectivenessRating.EXCELLENT
    if score >= 60:
        return EffectivenessRating.GOOD
    if score >= 40:
        return EffectivenessRating.FAIR
    return EffectivenessRating.POOR


def score_effectiveness(response: TreatmentResponse, later_complications: int) -> None:
    """Fill effectiveness_score, breakdown and rating in place."""
    if response.response_type == ResponseType.UNKNOWN:
        response.effectiveness_score = 0
        response.effectiveness = EffectivenessRating.UNKNOWN
        return

    days = response.days_to_response
    if days is None:
        speed = 10
    elif days <= 1:
        speed = 25
    elif days <= 3:
        speed = 20
    elif days <= 21:
        speed = 15
    else:
        speed = 10

    completeness = COMPLETENESS_POINTS[response.response_type]
    durability = 10 if response.response_type in (ResponseType.WORSENED, ResponseType.NO_CHANGE) else 20
    side_effects = max(0, 25 - 5 * later_complications)

    response.score_breakdown = {
        "speed": speed,
        "completeness": completeness,
        "durability": durability,
        "side_effects": side_effects,
    }
    response.effectiveness_score = speed + completeness + durability + side_effects
    response.effectiveness = rate_effectiveness(response.effectiveness_score)


# =============================================================================
# PAIRING
# =============================================================================

def _mentions(text: str, term: str) -> bool:
    return re.search(r"\b" + re.escape(term) + r"\b", text, re.I) is not None


def _find_outcome(
    intervention: ClinicalEntity,
    targets: List[str],
    notes: Sequence[ClinicalNote],
    resolver: TemporalResolver,
    anchors: TemporalAnchors,
) -> Optional[Tuple[str, str, date, ClinicalNote]]:
    start = intervention.event_date
    origin_index = next((n.index for n in notes if n.id == intervention.note_id), None)
    best = None

    for note in notes:
        for sentence in split_sentences(note.text):
            if intervention.span and note.id == intervention.note_id and (
                sentence.start <= intervention.span[0] < sentence.end
            ):
                continue
            target = next((t for t in targets if _mentions(sentence.text, t)), None)
            if target is None or classify_response(sentence.text) == ResponseType.UNKNOWN:
                continue

            when = resolver.resolve_text_date(sentence.text, note, anchors)
            if start is not None:
                if when is None or when < start:
                    continue
                distance = (when - start).days
            elif origin_index is not None and note.index < origin_index:
                continue
            else:
                distance = 0

            key = (distance, note.index, sentence.start)
            if best is None or key < best[0]:
                best = (key, sentence.text, target, when, note)

    if best is None:
        return None
    _, text, target, when, note = best
    return text, target, when, note


def pair_treatment_responses(
    record: ExtractedRecord,
    notes: Sequence[ClinicalNote],
    resolver: Optional[TemporalResolver] = None,
    anchors: Optional[TemporalAnchors] = None,
) -> List[TreatmentResponse]:
    resolver = resolver or TemporalResolver()
    anchors = anchors or TemporalAnchors.from_records([record], notes)

    interventions: List[Tuple[str, ClinicalEntity]] = [("procedure", p) for p in record.procedures]
    interventions += [("medication", m) for m in record.medications]

    responses = []
    for kind, intervention in interventions:
        targets = TREATMENT_TARGETS.get(intervention.name, [])
        if not targets:
            continue

        response = TreatmentResponse(
            intervention_id=intervention.id,
            intervention_name=intervention.name,
            intervention_kind=kind,
            intervention_date=intervention.event_date,
            target=None,
        )
        outcome = _find_outcome(intervention, targets, notes, resolver, anchors)
        if outcome is not None:
            text, target, when, note = outcome
            response.target = target
            response.outcome_text = text
            response.outcome_date = when
            response.outcome_note_id = note.id
            response.response_type = classify_response(text)
            if when is not None and intervention.event_date is not None:
                response.days_to_response = (when - intervention.event_date).days
        else:
            response.target = targets[0]

        later = sum(
            1 for c in record.complications
            if c.onset_date and intervention.event_date and c.onset_date > intervention.event_date
        )
        score_effectiveness(response, later)
        responses.append(response)

    logger.debug(
        f"Treatment responses: {len(responses)} interventions, "
        f"{sum(1 for r in responses if r.response_type != ResponseType.UNKNOWN)} paired"
    )
    return responses


# =============================================================================
# PROTOCOL COMPLIANCE
# =============================================================================

ANEURYSM_SECURING = {"aneurysm coiling", "aneurysm clipping", "embolization"}
CSF_DIVERSION = {"EVD placement", "VP shunt placement", "lumbar drain placement"}


def check_protocol_compliance(record: ExtractedRecord) -> Optional[ProtocolCompliance]:
    """SAH care bundle: nimodipine, aneurysm secured, hydrocephalus managed."""
    if record.pathology_type != PathologyKind.SAH:
        return None

    procedures = {p.name for p in record.procedures}
    medications = {m.name for m in record.medications}
    hydrocephalus = any(c.name == "hydrocephalus" for c in record.complications)

    compliance = ProtocolCompliance(protocol="SAH")
    compliance.items.append(ComplianceItem(
        protocol="Nimodipine for SAH",
        expected="Nimodipine 60 mg q4h x 21 days",
        actual="Given" if "nimodipine" in medications else "Not documented",
        compliant="nimodipine" in medications,
        importance="MANDATORY",
    ))

    secured = sorted(procedures & ANEURYSM_SECURING)
    compliance.items.append(ComplianceItem(
        protocol="Aneurysm secured",
        expected="Coiling or clipping",
        actual=", ".join(secured) if secured else "Not documented",
        compliant=bool(secured),
        importance="MANDATORY",
    ))

    diversion = sorted(procedures & CSF_DIVERSION)
    compliance.items.append(ComplianceItem(
        protocol="Hydrocephalus managed",
        expected="CSF diversion when hydrocephalus is present",
        actual=", ".join(diversion) if diversion else (
            "No hydrocephalus documented" if not hydrocephalus else "Not documented"
        ),
        compliant=bool(diversion) if hydrocephalus or diversion else None,
    ))

    assessed = [i for i in compliance.items if i.compliant is not None]
    if assessed:
        percent = 100 * sum(1 for i in assessed if i.compliant) / len(assessed)
        compliance.percentage = round(percent)
        compliance.overall = rate_effectiveness(int(percent)).value
    return compliance
